"""Parameter sensitivities of converged minimum-lap-time solutions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import numpy as np

from optilap.simulation.config import (
    DEFAULT_SENSITIVITY_METHOD,
    VALID_SENSITIVITY_METHODS,
    SensitivityNumerics,
)
from optilap.simulation.evaluator import TranscriptionEvaluator, theta_quadrature
from optilap.simulation.formulation import TranscriptionFormulation
from optilap.simulation.nlp import to_solver_bounds
from optilap.utils.exceptions import ConfigurationError
from optilap.utils.numeric_ops import resolve_ops
from optilap.vehicle.model_api import DynamicsModel

logger = logging.getLogger(__name__)

ACTIVE_SET_TOLERANCE = 1e-6

ResolveCallback = Callable[[DynamicsModel], Any]


@dataclass(frozen=True)
class ParameterSensitivities:
    """Derivatives of an optimal trajectory with respect to model parameters.

    Every mapping is keyed by parameter name. Array values have the shape of
    the matching :class:`~optilap.simulation.postprocess.OptimizationResult`
    field and are read-only.

    Args:
        method: Method used, ``autodiff`` or ``finite_difference``.
        parameter_values: Baseline parameter values.
        state: ``d state / d p`` per parameter; the time column holds the
            elapsed-time derivative.
        algebraic: ``d algebraic / d p`` per parameter.
        control: ``d control / d p`` per parameter.
        elapsed_time: ``d elapsed_time / d p`` per parameter.
        lap_time: ``d lap_time / d p`` per parameter.
    """

    method: str
    parameter_values: dict[str, float]
    state: dict[str, np.ndarray]
    algebraic: dict[str, np.ndarray]
    control: dict[str, np.ndarray]
    elapsed_time: dict[str, np.ndarray]
    lap_time: dict[str, float]

    def __post_init__(self) -> None:
        """Validate payload consistency and freeze arrays.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If the method is
                unknown or the parameter keys differ between fields.
        """
        if self.method not in VALID_SENSITIVITY_METHODS:
            msg = f"method must be one of {VALID_SENSITIVITY_METHODS}, got {self.method!r}"
            raise ConfigurationError(msg)
        keys = set(self.parameter_values)
        for label in ("state", "algebraic", "control", "elapsed_time", "lap_time"):
            if set(getattr(self, label)) != keys:
                msg = f"{label} sensitivities and parameter_values must share parameter keys"
                raise ConfigurationError(msg)
        for label in ("state", "algebraic", "control", "elapsed_time"):
            for values in getattr(self, label).values():
                values.flags.writeable = False

    @property
    def parameter_names(self) -> tuple[str, ...]:
        """Parameter names in evaluation order."""
        return tuple(self.parameter_values)

    def to_dataframe(self) -> Any:
        """Return lap-time sensitivities as a DataFrame.

        Returns:
            Pandas DataFrame with one row per parameter.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If pandas is not
                installed in the active environment.
        """
        try:
            import pandas as pd  # type: ignore[import-untyped]
        except ModuleNotFoundError as exc:
            msg = (
                "ParameterSensitivities.to_dataframe requires pandas. "
                "Install with `pip install -e '.[pandas]'`."
            )
            raise ConfigurationError(msg) from exc

        rows = [
            {
                "parameter": name,
                "parameter_value": self.parameter_values[name],
                "lap_time_sensitivity": self.lap_time[name],
                "method": self.method,
            }
            for name in self.parameter_names
        ]
        return pd.DataFrame(rows)


def _require_torch() -> Any:
    """Import torch lazily and fail with a configuration-level message.

    Returns:
        Imported ``torch`` module.

    Raises:
        optilap.utils.exceptions.ConfigurationError: If torch is not installed.
    """
    try:
        import torch
    except ModuleNotFoundError as exc:
        msg = (
            "autodiff sensitivity method requires PyTorch. "
            "Install with `pip install -e '.[torch]'`."
        )
        raise ConfigurationError(msg) from exc
    return torch


def _parameter_names(model: DynamicsModel) -> tuple[str, ...]:
    names = tuple(getattr(model, "parameter_names", ()))
    if not names:
        msg = "sensitivities require a model declaring parameter_names"
        raise ConfigurationError(msg)
    return names


def compute_parameter_sensitivities(
    formulation: TranscriptionFormulation,
    result: Any,
    *,
    method: str = DEFAULT_SENSITIVITY_METHOD,
    numerics: SensitivityNumerics | None = None,
    resolve: ResolveCallback | None = None,
) -> ParameterSensitivities:
    """Compute parameter sensitivities of a converged solution.

    Args:
        formulation: Formulation the solution was obtained with.
        result: Converged optimization result.
        method: ``autodiff`` (parametric KKT system, requires torch) or
            ``finite_difference`` (central differences of re-solves).
        numerics: Perturbation controls of the finite-difference method.
        resolve: Callback re-solving the problem for a perturbed model,
            required by the finite-difference method.

    Returns:
        Sensitivities for every parameter declared by the model.

    Raises:
        optilap.utils.exceptions.ConfigurationError: If the method is unknown,
            the model declares no parameters or a required dependency or
            callback is missing.
    """
    if method not in VALID_SENSITIVITY_METHODS:
        msg = f"sensitivity method must be one of {VALID_SENSITIVITY_METHODS}, got {method!r}"
        raise ConfigurationError(msg)
    logger.debug("Computing %s parameter sensitivities", method)
    if method == "autodiff":
        return _compute_sensitivities_autodiff(formulation, result)
    if resolve is None:
        msg = "finite-difference sensitivities require a resolve callback"
        raise ConfigurationError(msg)
    return _compute_sensitivities_finite_difference(
        formulation, result, numerics or SensitivityNumerics(), resolve
    )


def _active_rows(values: np.ndarray, lower: np.ndarray, upper: np.ndarray) -> np.ndarray:
    """Return indices of entries that are equalities or sit on a bound."""
    lower = to_solver_bounds(lower)
    upper = to_solver_bounds(upper)
    finite_lower = np.where(np.isfinite(lower), lower, 0.0)
    finite_upper = np.where(np.isfinite(upper), upper, 0.0)
    tolerance_lower = ACTIVE_SET_TOLERANCE * np.maximum(1.0, np.abs(finite_lower))
    tolerance_upper = ACTIVE_SET_TOLERANCE * np.maximum(1.0, np.abs(finite_upper))
    equality = np.isfinite(lower) & (lower == upper)
    at_lower = np.isfinite(lower) & (values <= lower + tolerance_lower)
    at_upper = np.isfinite(upper) & (values >= upper - tolerance_upper)
    return np.flatnonzero(equality | at_lower | at_upper)


def _compute_sensitivities_autodiff(
    formulation: TranscriptionFormulation,
    result: Any,
) -> ParameterSensitivities:
    """Differentiate the optimum through its KKT conditions.

    With the active constraints ``c_A(x, p) = 0`` and fixed multipliers the
    first-order conditions are differentiated into
    ``[[H, A^T], [A, 0]] [dx/dp; dlambda/dp] = -[L_xp; dc_A/dp]``.

    Args:
        formulation: Formulation of the solve.
        result: Converged optimization result.

    Returns:
        Autodiff sensitivities.
    """
    torch = _require_torch()
    model = formulation.model
    mesh = formulation.mesh
    names = _parameter_names(model)
    baseline = model.parameter_values()
    evaluator = TranscriptionEvaluator(formulation)
    n = formulation.n_variables
    n_parameters = len(names)

    x_opt = np.asarray(result.decision_vector, dtype=float)
    z0 = torch.as_tensor(
        np.concatenate([x_opt, [float(baseline[name]) for name in names]]),
        dtype=torch.float64,
    )

    def split(z: Any) -> tuple[Any, DynamicsModel]:
        variant = model.with_parameters({name: z[n + k] for k, name in enumerate(names)})
        return z[:n], variant

    def fg(z: Any) -> Any:
        x, variant = split(z)
        return evaluator.fg(x, model=variant)

    def time_profile(z: Any) -> Any:
        x, variant = split(z)
        trace = evaluator.evaluate(x, model=variant)
        elapsed, total = theta_quadrature(
            trace.time_derivative, mesh, formulation.sigma, resolve_ops(x)
        )
        return torch.cat([elapsed, total.reshape(1)])

    values = fg(z0).detach().cpu().numpy()
    jacobian = torch.autograd.functional.jacobian(fg, z0).detach().cpu().numpy()

    if n > 0:
        constraint_lower, constraint_upper = formulation.constraint_bounds()
        x_lower, x_upper = formulation.variable_bounds()
        rows = _active_rows(values[1:], constraint_lower, constraint_upper)
        variables = _active_rows(x_opt, x_lower, x_upper)

        constraints_x = jacobian[1:, :n]
        constraints_p = jacobian[1:, n:]
        unit_rows = np.eye(n)[variables]
        active = np.vstack([constraints_x[rows], unit_rows])
        active_p = np.vstack([constraints_p[rows], np.zeros((variables.size, n_parameters))])

        gradient = jacobian[0, :n]
        if active.shape[0]:
            multipliers = np.linalg.lstsq(active.T, -gradient, rcond=None)[0]
        else:
            multipliers = np.zeros(0)
        row_index = torch.as_tensor(rows, dtype=torch.long)
        row_weights = torch.as_tensor(multipliers[: rows.size], dtype=torch.float64)

        def lagrangian(z: Any) -> Any:
            stacked = fg(z)
            return stacked[0] + torch.sum(stacked[1:].index_select(0, row_index) * row_weights)

        hessian = torch.autograd.functional.hessian(lagrangian, z0).detach().cpu().numpy()
        k = active.shape[0]
        kkt = np.block(
            [
                [hessian[:n, :n], active.T],
                [active, np.zeros((k, k))],
            ]
        )
        rhs = -np.vstack([hessian[:n, n:], active_p])
        dx_dp = np.linalg.lstsq(kkt, rhs, rcond=None)[0][:n]
        logger.debug(
            "KKT sensitivity: %d active constraints, %d active bounds",
            rows.size,
            variables.size,
        )
    else:
        dx_dp = np.zeros((0, n_parameters))

    time_jacobian = torch.autograd.functional.jacobian(time_profile, z0).detach().cpu().numpy()
    d_time = time_jacobian[:, :n] @ dx_dp + time_jacobian[:, n:]

    n_points = mesh.n_points
    n_state = formulation.n_state
    n_algebraic = formulation.n_algebraic
    n_control = formulation.n_control
    sample_size = n_points * (n_state + n_algebraic + n_control)
    if n > 0:

        def flatten_samples(x: Any) -> Any:
            samples = formulation.unpack(x)
            return torch.cat(
                [
                    samples.state.reshape(-1),
                    samples.algebraic.reshape(-1),
                    samples.control.reshape(-1),
                ]
            )

        x_tensor = torch.as_tensor(x_opt, dtype=torch.float64)
        sample_jacobian = torch.autograd.functional.jacobian(flatten_samples, x_tensor)
        d_samples = sample_jacobian.detach().cpu().numpy() @ dx_dp
    else:
        d_samples = np.zeros((sample_size, n_parameters))

    state_end = n_points * n_state
    algebraic_end = state_end + n_points * n_algebraic
    state: dict[str, np.ndarray] = {}
    algebraic: dict[str, np.ndarray] = {}
    control: dict[str, np.ndarray] = {}
    elapsed_time: dict[str, np.ndarray] = {}
    lap_time: dict[str, float] = {}
    for k, name in enumerate(names):
        column = d_samples[:, k]
        state_derivative = column[:state_end].reshape(n_points, n_state).copy()
        state_derivative[:, formulation.time_index] = d_time[:n_points, k]
        state[name] = state_derivative
        algebraic[name] = column[state_end:algebraic_end].reshape(n_points, n_algebraic).copy()
        control[name] = column[algebraic_end:].reshape(n_points, n_control).copy()
        elapsed_time[name] = np.array(d_time[:n_points, k])
        lap_time[name] = float(d_time[n_points, k])

    return ParameterSensitivities(
        method="autodiff",
        parameter_values={name: float(baseline[name]) for name in names},
        state=state,
        algebraic=algebraic,
        control=control,
        elapsed_time=elapsed_time,
        lap_time=lap_time,
    )


def _compute_sensitivities_finite_difference(
    formulation: TranscriptionFormulation,
    result: Any,
    numerics: SensitivityNumerics,
    resolve: ResolveCallback,
) -> ParameterSensitivities:
    """Differentiate the optimum by central differences of re-solves.

    Args:
        formulation: Formulation of the solve.
        result: Converged baseline result.
        numerics: Perturbation controls.
        resolve: Callback returning the optimum for a perturbed model.

    Returns:
        Finite-difference sensitivities.
    """
    model = formulation.model
    names = _parameter_names(model)
    baseline = model.parameter_values()

    state: dict[str, np.ndarray] = {}
    algebraic: dict[str, np.ndarray] = {}
    control: dict[str, np.ndarray] = {}
    elapsed_time: dict[str, np.ndarray] = {}
    lap_time: dict[str, float] = {}
    for name in names:
        value = float(baseline[name])
        step = numerics.step_size(value)
        plus = resolve(model.with_parameters({name: value + step}))
        minus = resolve(model.with_parameters({name: value - step}))
        scale = 1.0 / (2.0 * step)
        state[name] = (np.asarray(plus.state) - np.asarray(minus.state)) * scale
        algebraic[name] = (np.asarray(plus.algebraic) - np.asarray(minus.algebraic)) * scale
        control[name] = (np.asarray(plus.control) - np.asarray(minus.control)) * scale
        elapsed_time[name] = (
            np.asarray(plus.elapsed_time) - np.asarray(minus.elapsed_time)
        ) * scale
        lap_time[name] = float((plus.lap_time - minus.lap_time) * scale)
        logger.debug("Finite-difference sensitivity of %s: step %.3e", name, step)

    return ParameterSensitivities(
        method="finite_difference",
        parameter_values={name: float(baseline[name]) for name in names},
        state=state,
        algebraic=algebraic,
        control=control,
        elapsed_time=elapsed_time,
        lap_time=lap_time,
    )
