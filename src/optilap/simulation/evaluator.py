"""Objective and constraint evaluation of the transcribed NLP."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np

from optilap.simulation.formulation import TranscriptionFormulation, TranscriptionSamples
from optilap.simulation.mesh import Mesh
from optilap.utils.exceptions import ConfigurationError
from optilap.utils.numeric_ops import NumericOps, resolve_ops
from optilap.vehicle.model_api import DynamicsModel


@dataclass(frozen=True)
class EvaluationTrace:
    """Internal per-point values of one evaluation.

    Args:
        objective: Lap-time quadrature plus dissipation penalty.
        constraints: Constraint vector, excluding the objective.
        samples: Unpacked per-point samples.
        time_derivative: ``dt/ds`` per mesh point.
        integral_rates: Integral-quantity rates per mesh point.
    """

    objective: Any
    constraints: Any
    samples: TranscriptionSamples
    time_derivative: Any
    integral_rates: tuple[Any, ...]


def theta_quadrature(
    rates: Sequence[Any],
    mesh: Mesh,
    sigma: float,
    ops: NumericOps,
) -> tuple[Any, Any]:
    """Integrate per-point arclength rates with the collocation weights.

    Every interval contributes ``ds ((1 - sigma) r_{i-1} + sigma r_i)``; the
    wrap interval of closed meshes contributes to the total only.

    Args:
        rates: Per-point rate values.
        mesh: Collocation mesh.
        sigma: Implicitness of the collocation scheme.
        ops: Backend operations.

    Returns:
        Tuple ``(cumulative, total)`` where ``cumulative`` starts at zero at
        point 0.
    """
    lengths = mesh.element_lengths
    cumulative = [0.0 * rates[0]]
    for idx in range(1, mesh.n_points):
        step = lengths[idx - 1] * ((1.0 - sigma) * rates[idx - 1] + sigma * rates[idx])
        cumulative.append(cumulative[-1] + step)
    total = cumulative[-1]
    if mesh.closed:
        total = total + mesh.wrap_length * ((1.0 - sigma) * rates[-1] + sigma * rates[0])
    return ops.stack(cumulative), total


class TranscriptionEvaluator:
    """Map decision vectors to objective and constraint values.

    The evaluator invokes the dynamics model at every mesh point in increasing
    arclength order. Identical decision vectors always produce identical
    outputs.

    Args:
        formulation: Layout strategy of the transcription.
    """

    def __init__(self, formulation: TranscriptionFormulation) -> None:
        self.formulation = formulation

    def __call__(self, x: np.ndarray) -> tuple[float, np.ndarray]:
        """Evaluate objective and constraints on a NumPy decision vector.

        Args:
            x: Decision vector.

        Returns:
            Tuple ``(objective, constraints)``.
        """
        trace = self.evaluate(np.asarray(x, dtype=float))
        return float(trace.objective), np.asarray(trace.constraints, dtype=float)

    def fg(self, x: Any, model: DynamicsModel | None = None) -> Any:
        """Return ``[objective, constraints...]`` with the numeric type of ``x``.

        Args:
            x: Decision vector (NumPy array or torch tensor).
            model: Optional model overriding the formulation's model.

        Returns:
            Stacked objective and constraint vector.
        """
        ops = resolve_ops(x)
        trace = self.evaluate(x, model=model)
        return ops.concatenate([ops.stack([trace.objective]), trace.constraints], 0)

    def evaluate(self, x: Any, model: DynamicsModel | None = None) -> EvaluationTrace:
        """Evaluate the transcription on a generic decision vector.

        Args:
            x: Decision vector (NumPy array or torch tensor).
            model: Optional model overriding the formulation's model, for
                example a copy carrying differentiable parameters.

        Returns:
            Evaluation trace with the numeric type of ``x``.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If the model returns
                vectors whose sizes break the declared constraint layout.
        """
        formulation = self.formulation
        model = model if model is not None else formulation.model
        mesh = formulation.mesh
        ops = resolve_ops(x)
        samples = formulation.unpack(x)

        derivatives = []
        residuals = []
        extras = []
        integrands = []
        for point in range(mesh.n_points):
            derivative, residual = model.evaluate(
                samples.state[point],
                samples.algebraic[point],
                samples.control[point],
                float(mesh.arc_length[point]),
            )
            derivatives.append(ops.asarray(derivative))
            residuals.append(ops.asarray(residual))
            extras.append(ops.asarray(model.extra_constraints()))
            integrands.append(ops.asarray(model.integral_quantities()))

        t = formulation.time_index
        time_derivative = [derivative[t] for derivative in derivatives]
        sigma = formulation.sigma

        def interval(previous: int, current: int, length: float) -> list[Any]:
            state_defect = formulation.without_time(
                samples.state[current]
                - samples.state[previous]
                - length
                * ((1.0 - sigma) * derivatives[previous] + sigma * derivatives[current]),
                ops,
            )
            return [
                state_defect,
                residuals[current],
                extras[current],
                formulation.control_defects(
                    samples, time_derivative, previous, current, length, ops
                ),
            ]

        pieces: list[Any] = []
        for current, length in enumerate(mesh.element_lengths, start=1):
            pieces.extend(interval(current - 1, current, float(length)))
        if mesh.closed:
            pieces.extend(interval(mesh.n_points - 1, 0, mesh.wrap_length))

        integral_rates = tuple(
            [integrand[idx] for integrand in integrands]
            for idx in range(len(model.integral_quantity_names))
        )
        for idx in formulation.integral_indices:
            _, total = theta_quadrature(integral_rates[idx], mesh, sigma, ops)
            pieces.append(ops.stack([total]))

        produced = sum(int(piece.shape[0]) for piece in pieces)
        if produced != formulation.n_constraints:
            msg = (
                f"constraint layout mismatch: evaluated {produced} entries, "
                f"expected {formulation.n_constraints}; check the sizes returned "
                "by the dynamics model"
            )
            raise ConfigurationError(msg)
        constraints = ops.concatenate(pieces, 0) if pieces else ops.zeros((0,))

        _, lap_time = theta_quadrature(time_derivative, mesh, sigma, ops)
        objective = lap_time + formulation.dissipation(samples, ops)

        return EvaluationTrace(
            objective=objective,
            constraints=constraints,
            samples=samples,
            time_derivative=ops.stack(time_derivative),
            integral_rates=tuple(ops.stack(rates) for rates in integral_rates),
        )
