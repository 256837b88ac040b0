"""Decode converged decision vectors into optimal-laptime results."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import Any

import numpy as np

from optilap.simulation.controls import FULL_MESH
from optilap.simulation.evaluator import TranscriptionEvaluator, theta_quadrature
from optilap.simulation.formulation import TranscriptionFormulation
from optilap.simulation.mesh import Mesh
from optilap.simulation.nlp import NlpSolution
from optilap.utils.exceptions import ConfigurationError
from optilap.utils.numeric_ops import NUMPY_OPS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptimizationResult:
    """Converged minimum-lap-time trajectory.

    All array fields are read-only.

    Args:
        mesh: Collocation mesh of the solve.
        formulation: Formulation kind, ``direct`` or ``rate``.
        state_names: State names in column order.
        algebraic_names: Algebraic-state names in column order.
        control_names: Control names in column order.
        state: States ``(n_points, n_state)``; the time column holds the
            elapsed time.
        algebraic: Algebraic states ``(n_points, n_algebraic)``.
        control: Controls ``(n_points, n_control)``.
        control_rate: Control rates ``(n_points, n_control)`` of full-mesh
            channels in the rate formulation, NaN elsewhere.
        hypermesh_values: Optimized breakpoint values per hypermesh control.
        x: Global x position per mesh point [m].
        y: Global y position per mesh point [m].
        heading: Global heading per mesh point [rad].
        elapsed_time: Elapsed time per mesh point [s], zero at point 0.
        lap_time: Total lap time [s], including the wrap interval when closed.
        objective_value: Objective at the optimum (lap time plus dissipation).
        integral_quantities: Lap integral per model integral quantity.
        decision_vector: Converged decision vector.
        solver_status: Solver status code.
        solver_message: Solver termination message.
        iterations: Number of solver iterations.
        multipliers: Constraint multipliers when reported by the solver.
        sensitivities: Optional parameter sensitivities.
    """

    mesh: Mesh
    formulation: str
    state_names: tuple[str, ...]
    algebraic_names: tuple[str, ...]
    control_names: tuple[str, ...]
    state: np.ndarray
    algebraic: np.ndarray
    control: np.ndarray
    control_rate: np.ndarray
    hypermesh_values: dict[str, np.ndarray]
    x: np.ndarray
    y: np.ndarray
    heading: np.ndarray
    elapsed_time: np.ndarray
    lap_time: float
    objective_value: float
    integral_quantities: dict[str, float]
    decision_vector: np.ndarray
    solver_status: int
    solver_message: str
    iterations: int
    multipliers: np.ndarray | None = None
    sensitivities: Any = field(default=None, compare=False)

    def __post_init__(self) -> None:
        for item in fields(self):
            value = getattr(self, item.name)
            if isinstance(value, np.ndarray):
                value.flags.writeable = False
        for values in self.hypermesh_values.values():
            values.flags.writeable = False

    @property
    def arc_length(self) -> np.ndarray:
        """Mesh arclengths [m]."""
        return self.mesh.arc_length

    @property
    def closed(self) -> bool:
        """Whether the result describes a closed lap."""
        return self.mesh.closed

    def state_column(self, name: str) -> np.ndarray:
        """Return one state trace by name.

        Args:
            name: State name.

        Returns:
            Per-point values.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If ``name`` is unknown.
        """
        return self.state[:, _column_index(self.state_names, name, "state")]

    def control_column(self, name: str) -> np.ndarray:
        """Return one control trace by name.

        Args:
            name: Control name.

        Returns:
            Per-point values.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If ``name`` is unknown.
        """
        return self.control[:, _column_index(self.control_names, name, "control")]

    def to_dataframe(self) -> Any:
        """Return per-point trajectory data as a DataFrame.

        Returns:
            Pandas DataFrame with one row per mesh point.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If pandas is not
                installed in the active environment.
        """
        try:
            import pandas as pd  # type: ignore[import-untyped]
        except ModuleNotFoundError as exc:
            msg = (
                "OptimizationResult.to_dataframe requires pandas. "
                "Install with `pip install -e '.[pandas]'`."
            )
            raise ConfigurationError(msg) from exc

        columns: dict[str, Any] = {
            "arc_length": self.mesh.arc_length,
            "elapsed_time": self.elapsed_time,
            "x": self.x,
            "y": self.y,
            "heading": self.heading,
        }
        groups = (
            (self.state_names, self.state),
            (self.algebraic_names, self.algebraic),
            (self.control_names, self.control),
        )
        for names, values in groups:
            for idx, name in enumerate(names):
                columns.setdefault(name, values[:, idx])
        for idx, name in enumerate(self.control_names):
            if np.any(np.isfinite(self.control_rate[:, idx])):
                columns[f"{name}_rate"] = self.control_rate[:, idx]
        return pd.DataFrame(columns)


def _column_index(names: tuple[str, ...], name: str, label: str) -> int:
    if name not in names:
        msg = f"unknown {label} {name!r}; available: {names}"
        raise ConfigurationError(msg)
    return names.index(name)


def _global_pose(
    formulation: TranscriptionFormulation,
    state: np.ndarray,
    algebraic: np.ndarray,
    control: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Re-invoke the model point by point and collect its global pose.

    Args:
        formulation: Formulation holding the model and mesh.
        state: Per-point states.
        algebraic: Per-point algebraic states.
        control: Per-point controls.

    Returns:
        Tuple ``(x, y, heading)`` of per-point arrays.
    """
    model = formulation.model
    mesh = formulation.mesh
    poses = np.zeros((mesh.n_points, 3))
    for point in range(mesh.n_points):
        model.evaluate(state[point], algebraic[point], control[point], float(mesh.arc_length[point]))
        poses[point] = [float(value) for value in model.global_pose()]
    return poses[:, 0], poses[:, 1], poses[:, 2]


def build_optimization_result(
    formulation: TranscriptionFormulation,
    solution: NlpSolution,
) -> OptimizationResult:
    """Decode a converged NLP solution.

    Elapsed time is recovered by the collocation quadrature of ``dt/ds``
    starting from zero; the lap time adds the wrap interval on closed tracks.

    Args:
        formulation: Formulation of the solve.
        solution: Converged NLP solution.

    Returns:
        Optimal-laptime result.
    """
    evaluator = TranscriptionEvaluator(formulation)
    trace = evaluator.evaluate(np.asarray(solution.x, dtype=float))
    mesh = formulation.mesh
    model = formulation.model
    samples = trace.samples

    time_rates = [float(value) for value in trace.time_derivative]
    elapsed, lap_time = theta_quadrature(time_rates, mesh, formulation.sigma, NUMPY_OPS)
    elapsed = np.asarray(elapsed, dtype=float)

    state = np.array(samples.state, dtype=float)
    state[:, formulation.time_index] = elapsed
    algebraic = np.array(samples.algebraic, dtype=float)
    control = np.array(samples.control, dtype=float)

    control_rate = np.full((mesh.n_points, formulation.n_control), np.nan)
    if formulation.uses_rates:
        full_columns = [
            idx for idx, kind in enumerate(formulation.controls.kinds) if kind == FULL_MESH
        ]
        control_rate[:, full_columns] = np.asarray(samples.control_rate, dtype=float)

    hypermesh_values = {
        formulation.controls.names[idx]: np.array(values, dtype=float)
        for idx, values in zip(formulation.controls.hypermesh, samples.hypermesh_values, strict=True)
    }

    integral_quantities = {}
    for name, rates in zip(model.integral_quantity_names, trace.integral_rates, strict=True):
        _, total = theta_quadrature(
            [float(value) for value in rates], mesh, formulation.sigma, NUMPY_OPS
        )
        integral_quantities[name] = float(total)

    x, y, heading = _global_pose(formulation, state, algebraic, control)
    logger.debug("Decoded result: lap time %.6f s over %d points", lap_time, mesh.n_points)

    return OptimizationResult(
        mesh=mesh,
        formulation=formulation.kind,
        state_names=tuple(model.state_names),
        algebraic_names=tuple(model.algebraic_names),
        control_names=tuple(model.control_names),
        state=state,
        algebraic=algebraic,
        control=control,
        control_rate=control_rate,
        hypermesh_values=hypermesh_values,
        x=np.array(x),
        y=np.array(y),
        heading=np.array(heading),
        elapsed_time=np.array(elapsed),
        lap_time=float(lap_time),
        objective_value=float(trace.objective),
        integral_quantities=integral_quantities,
        decision_vector=np.array(solution.x, dtype=float),
        solver_status=int(solution.status),
        solver_message=str(solution.message),
        iterations=int(solution.iterations),
        multipliers=None if solution.multipliers is None else np.array(solution.multipliers),
    )
