"""Interfaces between the transcription engine and vehicle dynamics models."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import numpy as np

from optilap.track.models import TrackModel
from optilap.utils.constants import UNBOUNDED
from optilap.utils.exceptions import ConfigurationError

Bounds = tuple[np.ndarray, np.ndarray]


class DynamicsModel(Protocol):
    """Protocol required by the optimal-control transcription.

    Any dynamics model can be transcribed as long as it implements this
    interface. ``evaluate`` may mutate the model: ``extra_constraints``,
    ``integral_quantities`` and ``global_pose`` refer to the most recent
    evaluation. Values passed to ``evaluate`` are either NumPy arrays or
    ``torch`` tensors and the returned arrays must have the same type.
    """

    state_names: tuple[str, ...]
    algebraic_names: tuple[str, ...]
    control_names: tuple[str, ...]
    extra_constraint_names: tuple[str, ...]
    integral_quantity_names: tuple[str, ...]
    parameter_names: tuple[str, ...]
    time_state_index: int
    lateral_state_index: int | None
    track: TrackModel

    def validate(self) -> None:
        """Validate model parameters and variable layout.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If model parameters
                violate required physical or numerical constraints.
        """
        ...

    def evaluate(self, state: Any, algebraic: Any, control: Any, arclength: float) -> tuple[Any, Any]:
        """Evaluate arclength derivatives and algebraic residuals at one point.

        Args:
            state: State sample ``q``.
            algebraic: Algebraic sample ``qa``.
            control: Control sample ``u``.
            arclength: Centerline arclength of the sample [m].

        Returns:
            Tuple ``(dq/ds, residual)``.
        """
        ...

    def extra_constraints(self) -> Any:
        """Return path-constraint values of the last evaluation."""
        ...

    def integral_quantities(self) -> Any:
        """Return arclength rates of the integral quantities of the last evaluation."""
        ...

    def global_pose(self) -> tuple[float, float, float]:
        """Return global ``(x, y, heading)`` of the last evaluation."""
        ...

    def state_bounds(self) -> Bounds:
        """Return static state bounds."""
        ...

    def algebraic_bounds(self) -> Bounds:
        """Return static algebraic-state bounds."""
        ...

    def control_bounds(self) -> Bounds:
        """Return static control bounds."""
        ...

    def control_rate_bounds(self) -> Bounds:
        """Return static control-rate bounds used by the rate formulation."""
        ...

    def extra_constraint_bounds(self) -> Bounds:
        """Return bounds of the path constraints."""
        ...

    def steady_state(self, speed: float) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return a steady-state reference ``(q, qa, u)`` at ``speed``."""
        ...

    def default_dissipations(self) -> dict[str, float]:
        """Return default dissipation weights per control name."""
        ...

    def parameter_values(self) -> dict[str, float]:
        """Return current values of the differentiable parameters."""
        ...

    def with_parameters(self, values: Mapping[str, Any]) -> DynamicsModel:
        """Return a copy of the model with overridden parameters."""
        ...


class DynamicsModelBase(ABC):
    """Nominal OOP base class for transcription-compatible dynamics models.

    The transcription depends on :class:`DynamicsModel` (Protocol) for
    structural flexibility. Concrete models can additionally subclass this
    abstract base class to share the table-driven variable layout, default
    bounds and parameter plumbing. Subclasses declare the layout through
    class attributes and implement ``_evaluate`` plus the static bounds.
    """

    state_names: tuple[str, ...] = ()
    algebraic_names: tuple[str, ...] = ()
    control_names: tuple[str, ...] = ()
    extra_constraint_names: tuple[str, ...] = ()
    integral_quantity_names: tuple[str, ...] = ()
    parameter_names: tuple[str, ...] = ()
    time_state_index: int = 0
    lateral_state_index: int | None = None

    def __init__(self, track: TrackModel) -> None:
        """Initialize shared model state.

        Args:
            track: Track the model drives on.
        """
        self.track = track
        self._arclength = 0.0

    @property
    def n_state(self) -> int:
        """Number of state components."""
        return len(self.state_names)

    @property
    def n_algebraic(self) -> int:
        """Number of algebraic components."""
        return len(self.algebraic_names)

    @property
    def n_control(self) -> int:
        """Number of control channels."""
        return len(self.control_names)

    def validate(self) -> None:
        """Validate variable layout and backend-specific model parameters.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If the declared
                layout is inconsistent or model parameters are invalid.
        """
        if not self.state_names:
            msg = "model must declare at least one state (the elapsed time)"
            raise ConfigurationError(msg)
        names = self.state_names + self.algebraic_names + self.control_names
        if len(set(names)) != len(names):
            msg = f"state, algebraic and control names must be unique, got {names}"
            raise ConfigurationError(msg)
        if not 0 <= self.time_state_index < self.n_state:
            msg = f"time_state_index {self.time_state_index} is outside the state vector"
            raise ConfigurationError(msg)
        if self.lateral_state_index is not None:
            if not 0 <= self.lateral_state_index < self.n_state:
                msg = f"lateral_state_index {self.lateral_state_index} is outside the state vector"
                raise ConfigurationError(msg)
            if self.lateral_state_index == self.time_state_index:
                msg = "lateral_state_index must differ from time_state_index"
                raise ConfigurationError(msg)

        expected_sizes = (
            ("state_bounds", self.state_bounds(), self.n_state),
            ("algebraic_bounds", self.algebraic_bounds(), self.n_algebraic),
            ("control_bounds", self.control_bounds(), self.n_control),
            ("control_rate_bounds", self.control_rate_bounds(), self.n_control),
            (
                "extra_constraint_bounds",
                self.extra_constraint_bounds(),
                len(self.extra_constraint_names),
            ),
        )
        for label, (lower, upper), size in expected_sizes:
            if np.asarray(lower).shape != (size,) or np.asarray(upper).shape != (size,):
                msg = f"{label} must contain {size} lower and upper values"
                raise ConfigurationError(msg)
            if np.any(np.asarray(lower) > np.asarray(upper)):
                msg = f"{label} must satisfy lower <= upper"
                raise ConfigurationError(msg)

        self._validate_backend()

    def _validate_backend(self) -> None:
        """Validate backend-specific model parameters."""

    def evaluate(self, state: Any, algebraic: Any, control: Any, arclength: float) -> tuple[Any, Any]:
        """Evaluate arclength derivatives and algebraic residuals at one point.

        Args:
            state: State sample ``q``.
            algebraic: Algebraic sample ``qa``.
            control: Control sample ``u``.
            arclength: Centerline arclength of the sample [m].

        Returns:
            Tuple ``(dq/ds, residual)`` with the numeric type of the inputs.
        """
        self._arclength = float(arclength)
        return self._evaluate(state, algebraic, control, float(arclength))

    @abstractmethod
    def _evaluate(self, state: Any, algebraic: Any, control: Any, arclength: float) -> tuple[Any, Any]:
        """Model-specific evaluation called by :meth:`evaluate`."""

    def extra_constraints(self) -> Sequence[Any]:
        """Return path-constraint values of the last evaluation.

        Returns:
            Empty sequence unless overridden.
        """
        return ()

    def integral_quantities(self) -> Sequence[Any]:
        """Return integral-quantity rates of the last evaluation.

        Returns:
            Empty sequence unless overridden.
        """
        return ()

    def global_pose(self) -> tuple[float, float, float]:
        """Return global pose of the last evaluated point on the centerline.

        Returns:
            Tuple ``(x, y, heading)``. Tracks without centerline geometry
            report ``(arclength, 0, 0)``.
        """
        centerline_pose = getattr(self.track, "centerline_pose", None)
        if centerline_pose is None:
            return self._arclength, 0.0, 0.0
        return centerline_pose(self._arclength)

    @abstractmethod
    def state_bounds(self) -> Bounds:
        """Return static state bounds ``(lower, upper)``."""

    def algebraic_bounds(self) -> Bounds:
        """Return static algebraic-state bounds.

        Returns:
            Unbounded ``(lower, upper)`` arrays unless overridden.
        """
        return _unbounded(self.n_algebraic)

    def control_bounds(self) -> Bounds:
        """Return static control bounds.

        Returns:
            Unbounded ``(lower, upper)`` arrays unless overridden.
        """
        return _unbounded(self.n_control)

    def control_rate_bounds(self) -> Bounds:
        """Return static control-rate bounds.

        Returns:
            Unbounded ``(lower, upper)`` arrays unless overridden.
        """
        return _unbounded(self.n_control)

    def extra_constraint_bounds(self) -> Bounds:
        """Return path-constraint bounds.

        Returns:
            Unbounded ``(lower, upper)`` arrays unless overridden.
        """
        return _unbounded(len(self.extra_constraint_names))

    @abstractmethod
    def steady_state(self, speed: float) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return a steady-state reference ``(q, qa, u)`` at ``speed``."""

    def default_dissipations(self) -> dict[str, float]:
        """Return default dissipation weights per control name.

        Returns:
            Empty mapping unless overridden.
        """
        return {}

    def parameter_values(self) -> dict[str, float]:
        """Return current values of the differentiable parameters.

        Returns:
            Mapping from ``parameter_names`` to float values.
        """
        return {name: float(getattr(self, name)) for name in self.parameter_names}

    def with_parameters(self, values: Mapping[str, Any]) -> DynamicsModelBase:
        """Return a copy of the model with overridden parameters.

        Args:
            values: Parameter overrides. Values may be floats or tensors.

        Returns:
            New model instance.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If the model declares
                no parameters or an unknown parameter name is requested.
        """
        check_parameter_names(self.parameter_names, values)
        clone = object.__new__(type(self))
        clone.__dict__.update(self.__dict__)
        for name, value in values.items():
            setattr(clone, name, value)
        return clone


def _unbounded(size: int) -> Bounds:
    return np.full(size, -UNBOUNDED), np.full(size, UNBOUNDED)


def check_parameter_names(declared: Sequence[str], values: Mapping[str, Any]) -> None:
    """Validate requested parameter overrides against declared names.

    Args:
        declared: Parameter names declared by a model.
        values: Requested overrides.

    Raises:
        optilap.utils.exceptions.ConfigurationError: If no parameters are
            declared or an override is unknown.
    """
    if not declared:
        msg = "model declares no differentiable parameters"
        raise ConfigurationError(msg)
    unknown = sorted(set(values) - set(declared))
    if unknown:
        msg = f"unknown model parameters {unknown}; expected a subset of {tuple(declared)}"
        raise ConfigurationError(msg)
