"""Optimal-laptime configuration dataclasses."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from optilap.simulation.controls import ControlChannel, channel_kind
from optilap.utils.constants import SMALL_EPS
from optilap.utils.exceptions import ConfigurationError

DEFAULT_FORMULATION = "direct"
VALID_FORMULATIONS = ("direct", "rate")
DEFAULT_SIGMA = 0.5
DEFAULT_STEADY_STATE_SPEED = 20.0
DEFAULT_SOLVER_METHOD = "SLSQP"
VALID_SOLVER_METHODS = ("SLSQP", "trust-constr")
DEFAULT_MAX_ITERATIONS = 500
DEFAULT_TOLERANCE = 1e-8
DEFAULT_DERIVATIVE_METHOD = "finite_difference"
VALID_DERIVATIVE_METHODS = ("finite_difference", "autodiff")
DEFAULT_FINITE_DIFFERENCE_STEP = 1e-7
DEFAULT_VERBOSITY = 0
DEFAULT_SENSITIVITY_METHOD = "autodiff"
VALID_SENSITIVITY_METHODS = ("autodiff", "finite_difference")
DEFAULT_SENSITIVITY_RELATIVE_STEP = 1e-3
DEFAULT_SENSITIVITY_ABSOLUTE_STEP = 1e-6


@dataclass(frozen=True)
class TranscriptionNumerics:
    """Numerical controls for the collocation scheme.

    Args:
        sigma: Implicitness of the collocation scheme in ``[0, 1]``.
            ``0.5`` is the trapezoidal rule, ``1`` backward Euler.
        steady_state_speed: Speed of the steady-state reference used for the
            default initial guess [m/s].
    """

    sigma: float = DEFAULT_SIGMA
    steady_state_speed: float = DEFAULT_STEADY_STATE_SPEED

    def validate(self) -> None:
        """Validate collocation settings.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If ``sigma`` is
                outside ``[0, 1]`` or the reference speed is not positive.
        """
        if not 0.0 <= self.sigma <= 1.0:
            msg = f"sigma must be in [0, 1], got {self.sigma}"
            raise ConfigurationError(msg)
        if not np.isfinite(self.steady_state_speed) or self.steady_state_speed <= 0.0:
            msg = "steady_state_speed must be positive and finite"
            raise ConfigurationError(msg)


@dataclass(frozen=True)
class SolverNumerics:
    """Numerical controls for the NLP solve.

    Args:
        method: SciPy ``minimize`` method (``SLSQP`` or ``trust-constr``).
        max_iterations: Maximum number of solver iterations.
        tolerance: Convergence tolerance passed to the solver.
        derivative_method: Jacobian source, ``finite_difference`` or
            ``autodiff`` (requires torch).
        finite_difference_step: Absolute forward-difference step.
    """

    method: str = DEFAULT_SOLVER_METHOD
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    tolerance: float = DEFAULT_TOLERANCE
    derivative_method: str = DEFAULT_DERIVATIVE_METHOD
    finite_difference_step: float = DEFAULT_FINITE_DIFFERENCE_STEP

    def validate(self) -> None:
        """Validate NLP solver settings.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If any solver
                configuration value violates its bound.
        """
        if self.method not in VALID_SOLVER_METHODS:
            msg = f"method must be one of {VALID_SOLVER_METHODS}, got: {self.method!r}"
            raise ConfigurationError(msg)
        if self.max_iterations < 1:
            msg = "max_iterations must be at least 1"
            raise ConfigurationError(msg)
        if self.tolerance <= 0.0:
            msg = "tolerance must be positive"
            raise ConfigurationError(msg)
        if self.derivative_method not in VALID_DERIVATIVE_METHODS:
            msg = (
                "derivative_method must be one of "
                f"{VALID_DERIVATIVE_METHODS}, got: {self.derivative_method!r}"
            )
            raise ConfigurationError(msg)
        if self.finite_difference_step <= 0.0:
            msg = "finite_difference_step must be positive"
            raise ConfigurationError(msg)


@dataclass(frozen=True)
class SolverRuntime:
    """Runtime controls for solver output.

    Args:
        verbosity: ``0`` is silent, ``1`` renders an iteration progress line,
            ``2`` additionally forwards solver diagnostics.
    """

    verbosity: int = DEFAULT_VERBOSITY

    def validate(self) -> None:
        """Validate runtime output settings.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If ``verbosity`` is
                negative.
        """
        if self.verbosity < 0:
            msg = "verbosity must be non-negative"
            raise ConfigurationError(msg)


@dataclass(frozen=True)
class SensitivityNumerics:
    """Numerical controls of finite-difference parameter sensitivities.

    Args:
        relative_step: Relative perturbation of each parameter.
        absolute_step: Absolute perturbation floor.
    """

    relative_step: float = DEFAULT_SENSITIVITY_RELATIVE_STEP
    absolute_step: float = DEFAULT_SENSITIVITY_ABSOLUTE_STEP

    def validate(self) -> None:
        """Validate perturbation controls.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If a step control is
                not positive.
        """
        if self.relative_step <= 0.0:
            msg = "relative_step must be positive"
            raise ConfigurationError(msg)
        if self.absolute_step <= 0.0:
            msg = "absolute_step must be positive"
            raise ConfigurationError(msg)

    def step_size(self, value: float) -> float:
        """Return the perturbation size for a scalar parameter value.

        Args:
            value: Baseline parameter value.

        Returns:
            Positive perturbation size.
        """
        return max(abs(float(value)) * self.relative_step, self.absolute_step, SMALL_EPS)


@dataclass(frozen=True)
class InitialCondition:
    """Pinned first mesh point of an open track.

    Args:
        state: State sample ``q_0``.
        algebraic: Algebraic sample ``qa_0``.
        control: Control sample ``u_0``.
    """

    state: np.ndarray
    algebraic: np.ndarray
    control: np.ndarray


@dataclass(frozen=True)
class IntegralConstraint:
    """Bounds on the lap integral of a model integral quantity.

    Args:
        name: Name of the integral quantity declared by the model.
        lower: Lower bound of the lap integral.
        upper: Upper bound of the lap integral.
    """

    name: str
    lower: float
    upper: float

    def validate(self) -> None:
        """Validate bound ordering.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If the name is empty
                or ``lower > upper``.
        """
        if not self.name:
            msg = "integral constraint name must be a non-empty string"
            raise ConfigurationError(msg)
        if self.lower > self.upper:
            msg = f"integral constraint {self.name!r} must satisfy lower <= upper"
            raise ConfigurationError(msg)


@dataclass(frozen=True)
class OptimalLaptimeConfig:
    """Top-level configuration of one minimum-lap-time solve.

    Args:
        closed: Whether the track is a closed circuit.
        formulation: ``direct`` or ``rate``.
        controls: Per-control channel descriptors. Controls without entry
            default to a full-mesh channel with the model's dissipation.
        initial_condition: Optional pinned first point for open tracks.
        integral_constraints: Bounds on lap integrals of model quantities.
        warm_start: Start from the cached result under the warm-start key.
        save_warm_start: Store the converged result in the warm-start cache.
        compute_sensitivity: Compute parameter sensitivities after the solve.
        sensitivity_method: ``autodiff`` or ``finite_difference``.
        sensitivity: Finite-difference sensitivity controls.
        numerics: Collocation controls.
        solver: NLP solver controls.
        runtime: Output controls.
    """

    closed: bool = True
    formulation: str = DEFAULT_FORMULATION
    controls: Mapping[str, ControlChannel] = field(default_factory=dict)
    initial_condition: InitialCondition | None = None
    integral_constraints: tuple[IntegralConstraint, ...] = ()
    warm_start: bool = False
    save_warm_start: bool = False
    compute_sensitivity: bool = False
    sensitivity_method: str = DEFAULT_SENSITIVITY_METHOD
    sensitivity: SensitivityNumerics = field(default_factory=SensitivityNumerics)
    numerics: TranscriptionNumerics = field(default_factory=TranscriptionNumerics)
    solver: SolverNumerics = field(default_factory=SolverNumerics)
    runtime: SolverRuntime = field(default_factory=SolverRuntime)

    def validate(self) -> None:
        """Validate combined settings.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If any block is
                invalid or the combination is inconsistent.
            optilap.utils.exceptions.UnsupportedControlChannelType: If a
                control channel is not a supported variant.
        """
        if self.formulation not in VALID_FORMULATIONS:
            msg = (
                f"formulation must be one of {VALID_FORMULATIONS}, "
                f"got: {self.formulation!r}"
            )
            raise ConfigurationError(msg)
        if self.sensitivity_method not in VALID_SENSITIVITY_METHODS:
            msg = (
                "sensitivity_method must be one of "
                f"{VALID_SENSITIVITY_METHODS}, got: {self.sensitivity_method!r}"
            )
            raise ConfigurationError(msg)
        if self.closed and self.initial_condition is not None:
            msg = "initial_condition only applies to open tracks"
            raise ConfigurationError(msg)
        for channel in self.controls.values():
            channel_kind(channel)

        names = [constraint.name for constraint in self.integral_constraints]
        if len(set(names)) != len(names):
            msg = f"integral constraints must have unique names, got {names}"
            raise ConfigurationError(msg)
        for constraint in self.integral_constraints:
            constraint.validate()

        self.sensitivity.validate()
        self.numerics.validate()
        self.solver.validate()
        self.runtime.validate()


def build_optimal_laptime_config(
    closed: bool = True,
    formulation: str = DEFAULT_FORMULATION,
    controls: Mapping[str, ControlChannel] | None = None,
    initial_condition: InitialCondition | None = None,
    integral_constraints: tuple[IntegralConstraint, ...] | list[IntegralConstraint] = (),
    warm_start: bool = False,
    save_warm_start: bool = False,
    compute_sensitivity: bool = False,
    sensitivity_method: str = DEFAULT_SENSITIVITY_METHOD,
    sensitivity: SensitivityNumerics | None = None,
    numerics: TranscriptionNumerics | None = None,
    solver: SolverNumerics | None = None,
    runtime: SolverRuntime | None = None,
) -> OptimalLaptimeConfig:
    """Build a validated optimal-laptime configuration.

    Args:
        closed: Whether the track is a closed circuit.
        formulation: ``direct`` or ``rate``.
        controls: Optional per-control channel descriptors.
        initial_condition: Optional pinned first point for open tracks.
        integral_constraints: Bounds on lap integrals of model quantities.
        warm_start: Start from the cached result.
        save_warm_start: Store the converged result in the cache.
        compute_sensitivity: Compute parameter sensitivities.
        sensitivity_method: ``autodiff`` or ``finite_difference``.
        sensitivity: Optional finite-difference sensitivity controls.
        numerics: Optional collocation controls.
        solver: Optional NLP solver controls.
        runtime: Optional output controls.

    Returns:
        Fully validated configuration.
    """
    config = OptimalLaptimeConfig(
        closed=closed,
        formulation=formulation,
        controls=dict(controls or {}),
        initial_condition=initial_condition,
        integral_constraints=tuple(integral_constraints),
        warm_start=warm_start,
        save_warm_start=save_warm_start,
        compute_sensitivity=compute_sensitivity,
        sensitivity_method=sensitivity_method,
        sensitivity=sensitivity or SensitivityNumerics(),
        numerics=numerics or TranscriptionNumerics(),
        solver=solver or SolverNumerics(),
        runtime=runtime or SolverRuntime(),
    )
    config.validate()
    return config


def build_initial_condition(state: Any, algebraic: Any, control: Any) -> InitialCondition:
    """Build an initial condition from array-likes.

    Args:
        state: State sample ``q_0``.
        algebraic: Algebraic sample ``qa_0``.
        control: Control sample ``u_0``.

    Returns:
        Initial condition with float arrays.
    """
    return InitialCondition(
        state=np.atleast_1d(np.array(state, dtype=float)),
        algebraic=np.atleast_1d(np.array(algebraic, dtype=float)),
        control=np.atleast_1d(np.array(control, dtype=float)),
    )
