"""NLP solve driver built on ``scipy.optimize.minimize``."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import numpy as np

from optilap.simulation._progress import render_progress_line, should_report_iteration
from optilap.simulation.config import SolverNumerics, SolverRuntime
from optilap.utils.constants import UNBOUNDED
from optilap.utils.exceptions import ConfigurationError, OptimizationDidNotConverge

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = {
    "SLSQP": (0,),
    "trust-constr": (1, 2),
}
FIXED_POINT_FEASIBILITY_TOLERANCE = 1e-8


@dataclass(frozen=True)
class NlpProblem:
    """Bounded NLP handed to the solver.

    Args:
        fg: Callable returning ``[objective, constraints...]`` for a NumPy
            decision vector.
        x0: Initial decision vector.
        x_lower: Decision-vector lower bounds (``UNBOUNDED`` sentinel allowed).
        x_upper: Decision-vector upper bounds.
        g_lower: Constraint lower bounds.
        g_upper: Constraint upper bounds.
        fg_jacobian: Optional exact Jacobian of ``fg``; forward differences
            are used when omitted.
    """

    fg: Callable[[np.ndarray], np.ndarray]
    x0: np.ndarray
    x_lower: np.ndarray
    x_upper: np.ndarray
    g_lower: np.ndarray
    g_upper: np.ndarray
    fg_jacobian: Callable[[np.ndarray], np.ndarray] | None = None

    @property
    def n_variables(self) -> int:
        """Length of the decision vector."""
        return int(self.x0.size)

    @property
    def n_constraints(self) -> int:
        """Length of the constraint vector."""
        return int(self.g_lower.size)


@dataclass(frozen=True)
class NlpSolution:
    """Raw optimum returned by the solver.

    Args:
        x: Converged decision vector.
        objective: Objective value at ``x``.
        constraints: Constraint values at ``x``.
        status: Solver status code.
        message: Solver termination message.
        iterations: Number of solver iterations.
        multipliers: Constraint multipliers when the solver reports them.
    """

    x: np.ndarray
    objective: float
    constraints: np.ndarray
    status: int
    message: str
    iterations: int
    multipliers: np.ndarray | None = None


def _require_scipy_optimize() -> Any:
    """Import scipy.optimize lazily and fail with clear guidance.

    Returns:
        Imported ``scipy.optimize`` module.

    Raises:
        optilap.utils.exceptions.ConfigurationError: If SciPy is not installed.
    """
    try:
        import scipy.optimize as optimize  # type: ignore[import-untyped]
    except ModuleNotFoundError as exc:
        msg = (
            "The NLP solve driver requires SciPy. "
            "Install or update dependencies with `pip install -e .`."
        )
        raise ConfigurationError(msg) from exc
    return optimize


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
            "derivative_method='autodiff' requires PyTorch. "
            "Install with `pip install -e '.[torch]'`."
        )
        raise ConfigurationError(msg) from exc
    return torch


def to_solver_bounds(values: np.ndarray) -> np.ndarray:
    """Convert ``UNBOUNDED`` sentinels to infinities.

    Args:
        values: Bound array.

    Returns:
        Copy with ``|b| >= UNBOUNDED`` replaced by ``+-inf``.
    """
    converted = np.array(values, dtype=float)
    converted[converted >= UNBOUNDED] = np.inf
    converted[converted <= -UNBOUNDED] = -np.inf
    return converted


def build_autodiff_jacobian(fg_generic: Callable[[Any], Any]) -> Callable[[np.ndarray], np.ndarray]:
    """Build an exact Jacobian of a numeric-generic ``fg`` with torch.

    Args:
        fg_generic: Callable accepting torch tensors and returning the
            stacked objective and constraint tensor.

    Returns:
        Callable mapping a NumPy decision vector to the ``(1 + m, n)``
        Jacobian.
    """
    torch = _require_torch()

    def jacobian(x: np.ndarray) -> np.ndarray:
        point = torch.as_tensor(np.asarray(x, dtype=float), dtype=torch.float64)
        value = torch.autograd.functional.jacobian(fg_generic, point)
        return np.asarray(value.detach().cpu().numpy(), dtype=float)

    return jacobian


class _DerivativeCache:
    """Cache ``fg`` and its Jacobian at the most recent iterate.

    SciPy queries the objective, the constraints and their Jacobians
    separately at the same point; each is served from one evaluation.
    """

    def __init__(self, problem: NlpProblem, optimize: Any, step: float) -> None:
        self._problem = problem
        self._optimize = optimize
        self._step = step
        self._values_x: np.ndarray | None = None
        self._values: np.ndarray | None = None
        self._jacobian_x: np.ndarray | None = None
        self._jacobian: np.ndarray | None = None
        self.evaluations = 0

    def values(self, x: np.ndarray) -> np.ndarray:
        """Return ``[objective, constraints...]`` at ``x``.

        Args:
            x: Decision vector.

        Returns:
            Copy of the cached values; SciPy may modify returned arrays.
        """
        if self._values_x is None or not np.array_equal(x, self._values_x):
            self._values = np.asarray(self._problem.fg(x), dtype=float)
            self._values_x = np.array(x, dtype=float)
            self.evaluations += 1
        return self._values.copy()

    def jacobian(self, x: np.ndarray) -> np.ndarray:
        """Return the ``(1 + m, n)`` Jacobian of ``fg`` at ``x``.

        Args:
            x: Decision vector.

        Returns:
            Copy of the cached exact or forward-difference Jacobian.
        """
        if self._jacobian_x is None or not np.array_equal(x, self._jacobian_x):
            if self._problem.fg_jacobian is not None:
                self._jacobian = np.asarray(self._problem.fg_jacobian(x), dtype=float)
            else:
                self._jacobian = np.atleast_2d(
                    self._optimize.approx_fprime(
                        np.asarray(x, dtype=float), self._problem.fg, self._step
                    )
                )
            self._jacobian_x = np.array(x, dtype=float)
        return self._jacobian.copy()

    def objective(self, x: np.ndarray) -> float:
        """Return the objective value at ``x``."""
        return float(self.values(x)[0])

    def objective_gradient(self, x: np.ndarray) -> np.ndarray:
        """Return the objective gradient at ``x``."""
        return self.jacobian(x)[0]


def _slsqp_constraints(
    cache: _DerivativeCache,
    lower: np.ndarray,
    upper: np.ndarray,
) -> list[dict[str, Any]]:
    """Split two-sided constraint bounds into SLSQP equality/inequality blocks.

    Args:
        cache: Shared evaluation cache.
        lower: Constraint lower bounds with infinities.
        upper: Constraint upper bounds with infinities.

    Returns:
        SLSQP constraint dictionaries.
    """
    equality = np.isfinite(lower) & np.isfinite(upper) & (lower == upper)
    has_lower = np.isfinite(lower) & ~equality
    has_upper = np.isfinite(upper) & ~equality
    constraints: list[dict[str, Any]] = []

    if np.any(equality):
        constraints.append(
            {
                "type": "eq",
                "fun": lambda x: cache.values(x)[1:][equality] - lower[equality],
                "jac": lambda x: cache.jacobian(x)[1:][equality],
            }
        )
    if np.any(has_lower) or np.any(has_upper):
        constraints.append(
            {
                "type": "ineq",
                "fun": lambda x: np.concatenate(
                    [
                        cache.values(x)[1:][has_lower] - lower[has_lower],
                        upper[has_upper] - cache.values(x)[1:][has_upper],
                    ]
                ),
                "jac": lambda x: np.vstack(
                    [
                        cache.jacobian(x)[1:][has_lower],
                        -cache.jacobian(x)[1:][has_upper],
                    ]
                ),
            }
        )
    return constraints


def _solve_fixed_point(problem: NlpProblem) -> NlpSolution:
    """Accept or reject an NLP without free variables.

    Args:
        problem: NLP with an empty decision vector.

    Returns:
        Solution at the empty decision vector.

    Raises:
        optilap.utils.exceptions.OptimizationDidNotConverge: If the fixed
            point violates the constraint bounds.
    """
    x = np.zeros(0)
    values = np.asarray(problem.fg(x), dtype=float)
    constraints = values[1:]
    lower = to_solver_bounds(problem.g_lower)
    upper = to_solver_bounds(problem.g_upper)
    tolerance = FIXED_POINT_FEASIBILITY_TOLERANCE
    feasible = np.all(constraints >= lower - tolerance) and np.all(constraints <= upper + tolerance)
    if not feasible:
        msg = "problem has no free variables and its fixed point violates the constraints"
        raise OptimizationDidNotConverge(msg, status=None, solver_message="infeasible fixed point")
    return NlpSolution(
        x=x,
        objective=float(values[0]),
        constraints=constraints,
        status=0,
        message="no free variables",
        iterations=0,
    )


def _is_converged(method: str, result: Any, tolerance: float) -> bool:
    """Classify a SciPy result as converged.

    trust-constr status 2 stops on a collapsed trust radius; it counts as
    converged only when the constraint violation and the optimality measure
    are within ``tolerance``.

    Args:
        method: Solver method name.
        result: SciPy ``OptimizeResult``.
        tolerance: Solver tolerance of the run.

    Returns:
        ``True`` if the result is in the method's success class.
    """
    status = int(result.status)
    if status not in SUCCESS_STATUSES[method]:
        return False
    if method == "trust-constr" and status == 2:
        violation = float(getattr(result, "constr_violation", np.inf))
        optimality = float(getattr(result, "optimality", np.inf))
        return violation <= tolerance and optimality <= tolerance
    return True


def solve_nlp(
    problem: NlpProblem,
    numerics: SolverNumerics,
    runtime: SolverRuntime,
) -> NlpSolution:
    """Solve a bounded NLP with SciPy.

    Args:
        problem: Objective/constraint callable with variable and constraint
            bounds.
        numerics: Solver method, iteration and tolerance controls.
        runtime: Output controls.

    Returns:
        Converged solution.

    Raises:
        optilap.utils.exceptions.OptimizationDidNotConverge: If the solver
            terminates outside its success class.
        optilap.utils.exceptions.ConfigurationError: If SciPy is unavailable.
    """
    if problem.n_variables == 0:
        return _solve_fixed_point(problem)

    optimize = _require_scipy_optimize()
    cache = _DerivativeCache(problem, optimize, numerics.finite_difference_step)
    x_lower = to_solver_bounds(problem.x_lower)
    x_upper = to_solver_bounds(problem.x_upper)
    g_lower = to_solver_bounds(problem.g_lower)
    g_upper = to_solver_bounds(problem.g_upper)
    bounds = optimize.Bounds(x_lower, x_upper)
    x0 = np.clip(np.asarray(problem.x0, dtype=float), x_lower, x_upper)

    method = numerics.method
    show_progress = runtime.verbosity >= 1
    iteration_count = 0

    def optimization_callback(*_args: Any) -> None:
        nonlocal iteration_count
        iteration_count += 1
        if not show_progress or not should_report_iteration(
            iteration_count, numerics.max_iterations
        ):
            return
        render_progress_line(
            prefix=f"Optimal laptime ({method})",
            fraction=iteration_count / max(numerics.max_iterations, 1),
            suffix=(
                f"iter {iteration_count}/{numerics.max_iterations} "
                f"evals {cache.evaluations}"
            ),
        )

    logger.debug(
        "Solving NLP with %s: %d variables, %d constraints",
        method,
        problem.n_variables,
        problem.n_constraints,
    )
    if method == "SLSQP":
        result = optimize.minimize(
            cache.objective,
            x0=x0,
            jac=cache.objective_gradient,
            method="SLSQP",
            bounds=bounds,
            constraints=_slsqp_constraints(cache, g_lower, g_upper),
            callback=optimization_callback,
            options={
                "maxiter": int(numerics.max_iterations),
                "ftol": float(numerics.tolerance),
                "disp": runtime.verbosity >= 2,
            },
        )
    else:
        constraints = []
        if problem.n_constraints:
            constraints.append(
                optimize.NonlinearConstraint(
                    lambda x: cache.values(x)[1:],
                    g_lower,
                    g_upper,
                    jac=lambda x: cache.jacobian(x)[1:],
                    hess=optimize.BFGS(),
                )
            )
        result = optimize.minimize(
            cache.objective,
            x0=x0,
            jac=cache.objective_gradient,
            hess=optimize.BFGS(),
            method="trust-constr",
            bounds=bounds,
            constraints=constraints,
            callback=optimization_callback,
            options={
                "maxiter": int(numerics.max_iterations),
                "gtol": float(numerics.tolerance),
                "xtol": float(numerics.tolerance),
                "verbose": min(int(runtime.verbosity), 3) if runtime.verbosity >= 2 else 0,
            },
        )

    status = int(result.status)
    message = str(result.message)
    iterations = int(getattr(result, "nit", iteration_count))
    if show_progress:
        render_progress_line(
            prefix=f"Optimal laptime ({method})",
            fraction=1.0,
            suffix=f"iter {iterations} status {status} objective {float(result.fun):.4f}",
            final=True,
        )

    if not _is_converged(method, result, float(numerics.tolerance)):
        msg = f"{method} did not converge (status {status}): {message}"
        raise OptimizationDidNotConverge(msg, status=status, solver_message=message)

    multipliers = None
    if method == "trust-constr" and problem.n_constraints:
        multipliers = np.asarray(result.v[0], dtype=float)

    x = np.asarray(result.x, dtype=float)
    values = cache.values(x)
    logger.info("%s converged after %d iterations: objective %.6f", method, iterations, values[0])
    return NlpSolution(
        x=x,
        objective=float(values[0]),
        constraints=np.array(values[1:]),
        status=status,
        message=message,
        iterations=iterations,
        multipliers=multipliers,
    )
