"""Shared test helpers."""

from __future__ import annotations

from typing import Any

import numpy as np

from optilap.utils.constants import UNBOUNDED
from optilap.utils.numeric_ops import resolve_ops
from optilap.vehicle.model_api import Bounds, DynamicsModelBase


class UniformTrack:
    """Straight track of constant width without centerline geometry."""

    def __init__(self, length: float = 100.0, half_width: float = 5.0) -> None:
        self.length = float(length)
        self.half_width = float(half_width)

    def track_length(self) -> float:
        """Return the track length [m]."""
        return self.length

    def left_track_limit(self, arc_length: float) -> float:
        """Return the constant left half-width [m]."""
        del arc_length
        return self.half_width

    def right_track_limit(self, arc_length: float) -> float:
        """Return the constant right half-width [m]."""
        del arc_length
        return self.half_width


class ConstantSpeedModel(DynamicsModelBase):
    """Elapsed time only: ``dt/ds = 1 / speed`` with a differentiable speed."""

    state_names = ("time",)
    parameter_names = ("speed",)
    time_state_index = 0

    def __init__(self, track: Any, speed: float = 10.0) -> None:
        super().__init__(track)
        self.speed = speed

    def _evaluate(self, state: Any, algebraic: Any, control: Any, arclength: float) -> tuple[Any, Any]:
        ops = resolve_ops(state, self.speed)
        return ops.stack([1.0 / self.speed]), ops.zeros((0,))

    def state_bounds(self) -> Bounds:
        return np.array([-UNBOUNDED]), np.array([UNBOUNDED])

    def steady_state(self, speed: float) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        return np.zeros(1), np.zeros(0), np.zeros(0)


class ConstantAccelerationModel(DynamicsModelBase):
    """Speed driven by a constant acceleration: ``du/ds = a / u``."""

    state_names = ("u", "time")
    parameter_names = ("acceleration",)
    time_state_index = 1

    def __init__(self, track: Any, acceleration: float = 2.0) -> None:
        super().__init__(track)
        self.acceleration = acceleration

    def _evaluate(self, state: Any, algebraic: Any, control: Any, arclength: float) -> tuple[Any, Any]:
        ops = resolve_ops(state, self.acceleration)
        speed = state[0]
        return ops.stack([self.acceleration / speed, 1.0 / speed]), ops.zeros((0,))

    def state_bounds(self) -> Bounds:
        return np.array([0.1, -UNBOUNDED]), np.array([UNBOUNDED, UNBOUNDED])

    def steady_state(self, speed: float) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        return np.array([speed, 0.0]), np.zeros(0), np.zeros(0)


def constant_acceleration_speeds(
    initial_speed: float,
    acceleration: float,
    arc_length: np.ndarray,
) -> np.ndarray:
    """Integrate ``du/ds = a / u`` with the trapezoidal collocation step.

    Each step solves ``u_i - u_{i-1} = ds / 2 (a / u_{i-1} + a / u_i)`` for the
    positive root ``u_i``.

    Args:
        initial_speed: Speed at the first point [m/s].
        acceleration: Constant acceleration [m/s^2].
        arc_length: Mesh arclengths [m].

    Returns:
        Speed per mesh point.
    """
    speeds = [float(initial_speed)]
    for ds in np.diff(arc_length):
        previous = speeds[-1]
        c = previous + 0.5 * ds * acceleration / previous
        speeds.append(0.5 * (c + np.sqrt(c * c + 2.0 * ds * acceleration)))
    return np.array(speeds)


def trapezoidal_time(speeds: np.ndarray, arc_length: np.ndarray) -> float:
    """Return ``sum ds / 2 (1 / u_{i-1} + 1 / u_i)``."""
    inverse = 1.0 / speeds
    return float(np.sum(np.diff(arc_length) * 0.5 * (inverse[:-1] + inverse[1:])))


class KinematicSpeedModel(DynamicsModelBase):
    """Speed controlled by a free acceleration and capped at ``max_speed``.

    Exposes ``speed_integral`` (``int u ds``) as an integral quantity.
    """

    state_names = ("u", "time")
    control_names = ("accel",)
    integral_quantity_names = ("speed_integral",)
    time_state_index = 1

    def __init__(self, track: Any, max_speed: float = 30.0, max_accel: float = 5.0) -> None:
        super().__init__(track)
        self.max_speed = float(max_speed)
        self.max_accel = float(max_accel)
        self._integral: Any = np.zeros(1)

    def _evaluate(self, state: Any, algebraic: Any, control: Any, arclength: float) -> tuple[Any, Any]:
        ops = resolve_ops(state, control)
        speed = state[0]
        self._integral = ops.stack([speed])
        return ops.stack([control[0] / speed, 1.0 / speed]), ops.zeros((0,))

    def integral_quantities(self) -> Any:
        return self._integral

    def state_bounds(self) -> Bounds:
        return np.array([1.0, -UNBOUNDED]), np.array([self.max_speed, UNBOUNDED])

    def control_bounds(self) -> Bounds:
        return np.array([-self.max_accel]), np.array([self.max_accel])

    def steady_state(self, speed: float) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        return np.array([min(speed, self.max_speed), 0.0]), np.zeros(0), np.zeros(1)


class CorneringSpeedModel(KinematicSpeedModel):
    """Kinematic speed model with a speed cap that varies along the lap.

    The cap ``mean + amplitude * cos(2 pi s / L)`` is exposed as the path
    constraint ``u - cap(s) <= 0``, so the optimal speed profile is not
    constant.
    """

    extra_constraint_names = ("speed_margin",)

    def __init__(
        self,
        track: Any,
        mean_cap: float = 20.0,
        cap_amplitude: float = 5.0,
        max_accel: float = 5.0,
    ) -> None:
        super().__init__(track, max_speed=mean_cap + cap_amplitude + 5.0, max_accel=max_accel)
        self.mean_cap = float(mean_cap)
        self.cap_amplitude = float(cap_amplitude)
        self._extra: Any = np.zeros(1)

    def speed_cap(self, arclength: float) -> float:
        phase = 2.0 * np.pi * arclength / self.track.track_length()
        return self.mean_cap + self.cap_amplitude * float(np.cos(phase))

    def _evaluate(self, state: Any, algebraic: Any, control: Any, arclength: float) -> tuple[Any, Any]:
        ops = resolve_ops(state, control)
        self._extra = ops.stack([state[0] - self.speed_cap(arclength)])
        return super()._evaluate(state, algebraic, control, arclength)

    def extra_constraints(self) -> Any:
        return self._extra

    def extra_constraint_bounds(self) -> Bounds:
        return np.array([-UNBOUNDED]), np.array([0.0])


class LateralOffsetModel(DynamicsModelBase):
    """Constant speed with a lateral offset steered by a free control.

    Carries an algebraic state tied to the lateral offset and one extra path
    constraint, exercising every block of the constraint layout.
    """

    state_names = ("n", "time")
    algebraic_names = ("n_copy",)
    control_names = ("steer",)
    extra_constraint_names = ("steer_squared",)
    time_state_index = 1
    lateral_state_index = 0

    def __init__(self, track: Any, speed: float = 10.0) -> None:
        super().__init__(track)
        self.speed = float(speed)
        self._extra: Any = np.zeros(1)

    def _evaluate(self, state: Any, algebraic: Any, control: Any, arclength: float) -> tuple[Any, Any]:
        ops = resolve_ops(state, algebraic, control)
        self._extra = ops.stack([control[0] * control[0]])
        derivative = ops.stack([control[0], 1.0 / self.speed])
        residual = ops.stack([algebraic[0] - state[0]])
        return derivative, residual

    def extra_constraints(self) -> Any:
        return self._extra

    def state_bounds(self) -> Bounds:
        return np.array([-UNBOUNDED, -UNBOUNDED]), np.array([UNBOUNDED, UNBOUNDED])

    def extra_constraint_bounds(self) -> Bounds:
        return np.array([-UNBOUNDED]), np.array([1.0])

    def steady_state(self, speed: float) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        return np.zeros(2), np.zeros(1), np.zeros(1)
