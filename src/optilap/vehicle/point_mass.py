"""Curvilinear point-mass dynamics model for minimum-lap-time transcription.

The vehicle is a point mass moving relative to the track centerline. States
are the speed ``u``, the lateral offset ``n`` (positive to the right of the
centerline), the heading error ``alpha`` relative to the centerline and the
elapsed time. Controls are the tire acceleration ``ax`` and the curvature of
the driven path. The normal force is an algebraic state tied to weight plus
aerodynamic downforce.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import Any

import numpy as np

from optilap.track.models import TrackData
from optilap.utils.constants import GRAVITY, UNBOUNDED
from optilap.utils.numeric_ops import resolve_ops
from optilap.vehicle.model_api import Bounds, DynamicsModelBase, check_parameter_names
from optilap.vehicle.params import PointMassParameters

DEFAULT_ACCEL_DISSIPATION = 1.0e-3
DEFAULT_CURVATURE_DISSIPATION = 10.0
MIN_NORMAL_FORCE_FRACTION = 0.1


class CurvilinearPointMassModel(DynamicsModelBase):
    """Point-mass model in curvilinear track coordinates.

    ``dt/ds = (1 + n kappa) / (u cos alpha)`` converts time derivatives to
    arclength derivatives. The friction-ellipse usage
    ``m^2 (ax^2 + ay^2) / (mu fz)^2`` must stay below one and the positive
    tractive power is exposed as the ``energy`` integral quantity.
    """

    state_names = ("u", "n", "alpha", "time")
    algebraic_names = ("fz",)
    control_names = ("ax", "curvature")
    extra_constraint_names = ("friction_usage",)
    integral_quantity_names = ("energy",)
    parameter_names = ("mass", "friction_coefficient", "drag_coefficient", "lift_coefficient")
    time_state_index = 3
    lateral_state_index = 1

    def __init__(self, track: TrackData, parameters: PointMassParameters) -> None:
        """Initialize model state.

        Args:
            track: Processed track providing curvature and centerline pose.
            parameters: Vehicle parameterization.
        """
        super().__init__(track)
        self.parameters = parameters
        self._extra: Any = np.zeros(1)
        self._integral: Any = np.zeros(1)
        self._lateral = 0.0
        self._heading_error = 0.0

    def _validate_backend(self) -> None:
        """Validate vehicle parameters.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If any vehicle
                parameter violates its bound.
        """
        self.parameters.validate()

    def _aero_scale(self, coefficient: Any) -> Any:
        p = self.parameters
        return 0.5 * p.air_density * coefficient * p.frontal_area

    def _evaluate(self, state: Any, algebraic: Any, control: Any, arclength: float) -> tuple[Any, Any]:
        p = self.parameters
        ops = resolve_ops(state, algebraic, control, *self.parameter_values_raw())

        speed, lateral, heading_error = state[0], state[1], state[2]
        normal_force = algebraic[0]
        accel, path_curvature = control[0], control[1]
        kappa = self.track.curvature_at(arclength)

        drag = self._aero_scale(p.drag_coefficient) * speed * speed
        downforce = self._aero_scale(p.lift_coefficient) * speed * speed
        weight = p.mass * GRAVITY

        dtds = (1.0 + lateral * kappa) / (speed * ops.cos(heading_error))
        speed_rate = (accel - drag / p.mass) * dtds
        lateral_rate = -speed * ops.sin(heading_error) * dtds
        heading_error_rate = speed * path_curvature * dtds - kappa

        lateral_accel = speed * speed * path_curvature
        grip = p.friction_coefficient * normal_force
        friction_usage = p.mass * p.mass * (accel * accel + lateral_accel * lateral_accel) / (grip * grip)

        power = p.mass * accel * speed
        smoothing = p.power_smoothing
        positive_power = 0.5 * (power + ops.sqrt(power * power + smoothing * smoothing))

        self._extra = ops.stack([friction_usage])
        self._integral = ops.stack([positive_power * dtds])
        self._lateral = float(lateral)
        self._heading_error = float(heading_error)

        derivative = ops.stack([speed_rate, lateral_rate, heading_error_rate, dtds])
        residual = ops.stack([(normal_force - (weight + downforce)) / weight])
        return derivative, residual

    def extra_constraints(self) -> Any:
        """Return friction-ellipse usage of the last evaluation.

        Returns:
            One-element array or tensor.
        """
        return self._extra

    def integral_quantities(self) -> Any:
        """Return positive tractive power per unit arclength of the last evaluation.

        Returns:
            One-element array or tensor [J/m].
        """
        return self._integral

    def global_pose(self) -> tuple[float, float, float]:
        """Return global vehicle pose of the last evaluation.

        Returns:
            Tuple ``(x, y, heading)``. The lateral offset is applied along the
            right-hand normal of the centerline.
        """
        x_center, y_center, theta = self.track.centerline_pose(self._arclength)
        x = x_center + self._lateral * np.sin(theta)
        y = y_center - self._lateral * np.cos(theta)
        return float(x), float(y), float(theta + self._heading_error)

    def state_bounds(self) -> Bounds:
        """Return static state bounds.

        Returns:
            ``(lower, upper)`` arrays. The lateral offset is bounded by the
            track limits during transcription.
        """
        p = self.parameters
        lower = np.array([p.min_speed, -UNBOUNDED, -p.max_heading_error, -UNBOUNDED])
        upper = np.array([p.max_speed, UNBOUNDED, p.max_heading_error, UNBOUNDED])
        return lower, upper

    def algebraic_bounds(self) -> Bounds:
        """Return normal-force bounds.

        Returns:
            ``(lower, upper)`` arrays [N].
        """
        weight = float(self.parameters.mass) * GRAVITY
        return np.array([MIN_NORMAL_FORCE_FRACTION * weight]), np.array([UNBOUNDED])

    def control_bounds(self) -> Bounds:
        """Return acceleration and path-curvature bounds.

        Returns:
            ``(lower, upper)`` arrays.
        """
        p = self.parameters
        lower = np.array([-p.max_brake_accel, -p.max_path_curvature])
        upper = np.array([p.max_drive_accel, p.max_path_curvature])
        return lower, upper

    def extra_constraint_bounds(self) -> Bounds:
        """Return friction-ellipse usage bounds.

        Returns:
            ``(lower, upper)`` arrays.
        """
        return np.array([-UNBOUNDED]), np.array([1.0])

    def steady_state(self, speed: float) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return straight-line constant-speed reference.

        Args:
            speed: Reference speed [m/s], clipped into the speed bounds.

        Returns:
            Tuple ``(q, qa, u)`` where drag is balanced by the tire force.
        """
        p = self.parameters
        speed = float(np.clip(speed, p.min_speed, p.max_speed))
        mass = float(p.mass)
        drag = float(self._aero_scale(p.drag_coefficient)) * speed * speed
        downforce = float(self._aero_scale(p.lift_coefficient)) * speed * speed
        state = np.array([speed, 0.0, 0.0, 0.0])
        algebraic = np.array([mass * GRAVITY + downforce])
        control = np.array([drag / mass, 0.0])
        return state, algebraic, control

    def default_dissipations(self) -> dict[str, float]:
        """Return default dissipation weights.

        Returns:
            Mapping from control name to dissipation weight.
        """
        return {"ax": DEFAULT_ACCEL_DISSIPATION, "curvature": DEFAULT_CURVATURE_DISSIPATION}

    def parameter_values_raw(self) -> tuple[Any, ...]:
        """Return differentiable parameter values without conversion.

        Returns:
            Tuple ordered like ``parameter_names``; entries may be tensors.
        """
        return tuple(getattr(self.parameters, name) for name in self.parameter_names)

    def parameter_values(self) -> dict[str, float]:
        """Return current values of the differentiable parameters.

        Returns:
            Mapping from parameter name to float value.
        """
        return {
            name: float(value)
            for name, value in zip(self.parameter_names, self.parameter_values_raw(), strict=True)
        }

    def with_parameters(self, values: Mapping[str, Any]) -> CurvilinearPointMassModel:
        """Return a copy with overridden vehicle parameters.

        Args:
            values: Parameter overrides. Values may be floats or tensors; the
                copy is not re-validated.

        Returns:
            New point-mass model on the same track.
        """
        check_parameter_names(self.parameter_names, values)
        return CurvilinearPointMassModel(
            track=self.track,
            parameters=replace(self.parameters, **dict(values)),
        )


def build_point_mass_model(
    track: TrackData,
    parameters: PointMassParameters | None = None,
) -> CurvilinearPointMassModel:
    """Build a curvilinear point-mass model with sensible defaults.

    Args:
        track: Processed track providing curvature and centerline pose.
        parameters: Optional vehicle parameters. Defaults to
            :class:`PointMassParameters`.

    Returns:
        Fully validated point-mass model.
    """
    model = CurvilinearPointMassModel(track=track, parameters=parameters or PointMassParameters())
    model.validate()
    return model
