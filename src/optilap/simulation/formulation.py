"""Decision-vector layout, bounds and initial guess of the transcription.

The decision vector ``x`` holds, for every free mesh point in arclength
order, ``[state without time][algebraic][full-mesh controls]`` followed by
``[full-mesh control rates]`` in the rate formulation. The values of every
hypermesh channel are appended after the per-point blocks. On open tracks
point 0 is pinned to the initial condition and does not appear in ``x``.

The constraint vector holds one block per collocation interval
``i = 1 .. n_points - 1`` (state defects, algebraic residuals at ``i``, extra
path constraints at ``i`` and, in the rate formulation, control defects),
one more block for the wrap interval of closed tracks, and one entry per
integral constraint.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np

from optilap.simulation.config import (
    InitialCondition,
    IntegralConstraint,
    OptimalLaptimeConfig,
)
from optilap.simulation.controls import (
    DONT_OPTIMIZE,
    FULL_MESH,
    HYPERMESH,
    ControlChannel,
    channel_kind,
    create_full_mesh,
    hypermesh_weights,
    resolve_control_channel,
    resolve_control_rates,
    validate_control_channel,
)
from optilap.simulation.mesh import Mesh
from optilap.utils.exceptions import ConfigurationError, InvalidInitialCondition
from optilap.utils.numeric_ops import NumericOps, resolve_ops
from optilap.vehicle.model_api import DynamicsModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TranscriptionSamples:
    """Per-point samples reconstructed from a decision vector.

    Args:
        state: States ``(n_points, n_state)``; the time column is zero except
            for a pinned first point.
        algebraic: Algebraic states ``(n_points, n_algebraic)``.
        control: Controls ``(n_points, n_control)`` after resolving every
            channel onto the mesh.
        full_mesh_control: Full-mesh channel columns ``(n_points, n_full)``.
        control_rate: Full-mesh control rates ``(n_points, n_rate)``; empty
            columns in the direct formulation.
        hypermesh_values: Breakpoint values per hypermesh channel.
    """

    state: Any
    algebraic: Any
    control: Any
    full_mesh_control: Any
    control_rate: Any
    hypermesh_values: tuple[Any, ...]


@dataclass(frozen=True)
class TrajectoryGuess:
    """User-supplied per-point initial guess.

    Args:
        state: States ``(n_points, n_state)``.
        algebraic: Algebraic states ``(n_points, n_algebraic)``.
        control: Controls ``(n_points, n_control)``.
        control_rate: Optional control rates ``(n_points, n_control)``; NaN
            entries fall back to the channel defaults.
        hypermesh_values: Optional breakpoint values per hypermesh control name.
    """

    state: np.ndarray
    algebraic: np.ndarray
    control: np.ndarray
    control_rate: np.ndarray | None = None
    hypermesh_values: Mapping[str, np.ndarray] | None = None


@dataclass(frozen=True)
class ControlLayout:
    """Resolved control channels of one transcription.

    Args:
        names: Control names in model order.
        channels: Channel descriptor per control.
        kinds: Variant identifier per control.
        full_mesh: Indices of full-mesh controls.
        hypermesh: Indices of hypermesh controls.
        fixed_values: Per-point values of don't-optimize controls.
        weights: Interpolation matrix per hypermesh control.
        dissipations: Dissipation weight per full-mesh control.
    """

    names: tuple[str, ...]
    channels: tuple[ControlChannel, ...]
    kinds: tuple[str, ...]
    full_mesh: tuple[int, ...]
    hypermesh: tuple[int, ...]
    fixed_values: dict[int, np.ndarray]
    weights: dict[int, np.ndarray]
    dissipations: tuple[float, ...]

    @property
    def n_hypermesh_values(self) -> int:
        """Total number of hypermesh breakpoint values."""
        return int(sum(self.channels[idx].breakpoints.size for idx in self.hypermesh))


def build_control_layout(
    model: DynamicsModel,
    mesh: Mesh,
    controls: Mapping[str, ControlChannel],
    reference_control: np.ndarray,
) -> ControlLayout:
    """Resolve per-control channel descriptors against a model and mesh.

    Args:
        model: Dynamics model declaring the control names.
        mesh: Collocation mesh.
        controls: Configured channels; missing controls default to full-mesh
            channels weighted by the model's default dissipation.
        reference_control: Steady-state control used for unset values.

    Returns:
        Resolved control layout.

    Raises:
        optilap.utils.exceptions.ConfigurationError: If a configured control
            is unknown to the model or inconsistent with the mesh.
        optilap.utils.exceptions.UnsupportedControlChannelType: If a channel
            is not a supported variant.
    """
    names = tuple(model.control_names)
    unknown = sorted(set(controls) - set(names))
    if unknown:
        msg = f"unknown control channels {unknown}; model controls are {names}"
        raise ConfigurationError(msg)

    defaults = model.default_dissipations()
    channels: list[ControlChannel] = []
    kinds: list[str] = []
    fixed_values: dict[int, np.ndarray] = {}
    weights: dict[int, np.ndarray] = {}
    for idx, name in enumerate(names):
        channel = controls.get(name)
        if channel is None:
            channel = create_full_mesh(dissipation=float(defaults.get(name, 0.0)))
        validate_control_channel(name, channel, mesh)
        kind = channel_kind(channel)
        if kind == DONT_OPTIMIZE:
            fixed_values[idx] = resolve_control_channel(channel, mesh, reference_control[idx])
        elif kind == HYPERMESH:
            weights[idx] = hypermesh_weights(channel, mesh)
        channels.append(channel)
        kinds.append(kind)

    full_mesh = tuple(idx for idx, kind in enumerate(kinds) if kind == FULL_MESH)
    return ControlLayout(
        names=names,
        channels=tuple(channels),
        kinds=tuple(kinds),
        full_mesh=full_mesh,
        hypermesh=tuple(idx for idx, kind in enumerate(kinds) if kind == HYPERMESH),
        fixed_values=fixed_values,
        weights=weights,
        dissipations=tuple(float(channels[idx].dissipation) for idx in full_mesh),
    )


class PeriodicBoundary:
    """Closed-track boundary: every mesh point is free, a wrap block closes the lap."""

    closed = True
    offset = 0


class PinnedStartBoundary:
    """Open-track boundary: point 0 is pinned to the initial condition.

    Args:
        initial_condition: Values of the pinned first point.
    """

    closed = False
    offset = 1

    def __init__(self, initial_condition: InitialCondition) -> None:
        self.initial_condition = initial_condition


Boundary = PeriodicBoundary | PinnedStartBoundary


class TranscriptionFormulation(ABC):
    """Shared layout logic of the direct and rate formulations.

    Args:
        model: Dynamics model.
        mesh: Collocation mesh.
        controls: Resolved control layout.
        boundary: Closed or open boundary strategy.
        sigma: Implicitness of the collocation scheme.
        steady_state_speed: Reference speed of the default initial guess [m/s].
        integral_constraints: Bounds on lap integrals of model quantities.
    """

    kind: str = ""
    uses_rates: bool = False

    def __init__(
        self,
        model: DynamicsModel,
        mesh: Mesh,
        controls: ControlLayout,
        boundary: Boundary,
        *,
        sigma: float,
        steady_state_speed: float,
        integral_constraints: Sequence[IntegralConstraint] = (),
    ) -> None:
        self.model = model
        self.mesh = mesh
        self.controls = controls
        self.boundary = boundary
        self.sigma = float(sigma)
        self.steady_state_speed = float(steady_state_speed)
        self.integral_constraints = tuple(integral_constraints)

        self.n_state = len(model.state_names)
        self.n_algebraic = len(model.algebraic_names)
        self.n_control = len(model.control_names)
        self.n_extra = len(model.extra_constraint_names)
        self.time_index = int(model.time_state_index)
        self.n_full = len(controls.full_mesh)
        self.n_rate = self.n_full if self.uses_rates else 0

        quantity_names = tuple(model.integral_quantity_names)
        for constraint in self.integral_constraints:
            if constraint.name not in quantity_names:
                msg = (
                    f"integral constraint {constraint.name!r} is not an integral "
                    f"quantity of the model {quantity_names}"
                )
                raise ConfigurationError(msg)
        self.integral_indices = tuple(
            quantity_names.index(constraint.name) for constraint in self.integral_constraints
        )

        if isinstance(boundary, PinnedStartBoundary):
            self._check_initial_condition(boundary.initial_condition)
            self._pinned_rates = np.array(
                [
                    resolve_control_rates(controls.channels[idx], mesh)[0]
                    for idx in controls.full_mesh
                ],
                dtype=float,
            )
        else:
            self._pinned_rates = np.zeros(0)

    @property
    def closed(self) -> bool:
        """Whether the formulation includes the wrap block."""
        return self.boundary.closed

    @property
    def offset(self) -> int:
        """Index of the first free mesh point."""
        return self.boundary.offset

    @property
    def free_points(self) -> int:
        """Number of mesh points carried in the decision vector."""
        return self.mesh.n_points - self.offset

    @property
    def n_state_free(self) -> int:
        """Number of state components in the decision vector per point."""
        return self.n_state - 1

    @property
    def n_per_point(self) -> int:
        """Number of decision variables per free mesh point."""
        return self.n_state_free + self.n_algebraic + self.n_full + self.n_rate

    @property
    def n_variables(self) -> int:
        """Length of the decision vector."""
        return self.free_points * self.n_per_point + self.controls.n_hypermesh_values

    @property
    def n_constraints_per_interval(self) -> int:
        """Number of constraint entries per collocation interval."""
        return self.n_state_free + self.n_algebraic + self.n_extra + self.n_rate

    @property
    def n_constraints(self) -> int:
        """Length of the constraint vector, excluding the objective."""
        return (
            self.mesh.n_elements * self.n_constraints_per_interval
            + len(self.integral_constraints)
        )

    def _check_initial_condition(self, initial_condition: InitialCondition) -> None:
        """Validate pinned-point vector sizes.

        Raises:
            optilap.utils.exceptions.InvalidInitialCondition: If any vector
                size does not match the model.
        """
        sizes = (
            ("state", initial_condition.state, self.n_state),
            ("algebraic", initial_condition.algebraic, self.n_algebraic),
            ("control", initial_condition.control, self.n_control),
        )
        for label, values, expected in sizes:
            if np.asarray(values).shape != (expected,):
                msg = (
                    f"initial condition {label} must contain {expected} values, "
                    f"got shape {np.asarray(values).shape}"
                )
                raise InvalidInitialCondition(msg)

    def without_time(self, values: Any, ops: NumericOps) -> Any:
        """Drop the elapsed-time component from a state-sized vector.

        Args:
            values: State-sized vector.
            ops: Backend operations.

        Returns:
            Vector of the remaining state components.
        """
        t = self.time_index
        return ops.concatenate([values[:t], values[t + 1 :]], 0)

    def unpack(self, x: Any) -> TranscriptionSamples:
        """Reconstruct per-point samples from a decision vector.

        Args:
            x: Decision vector (NumPy array or torch tensor).

        Returns:
            Per-point samples with the numeric type of ``x``.
        """
        ops = resolve_ops(x)
        x = ops.asarray(x)
        n_free = self.free_points
        n_points = self.mesh.n_points
        blocks = x[: n_free * self.n_per_point].reshape(n_free, self.n_per_point)

        cursor = 0
        state_free = blocks[:, cursor : cursor + self.n_state_free]
        cursor += self.n_state_free
        algebraic = blocks[:, cursor : cursor + self.n_algebraic]
        cursor += self.n_algebraic
        full_mesh = blocks[:, cursor : cursor + self.n_full]
        cursor += self.n_full
        rates = blocks[:, cursor : cursor + self.n_rate]

        t = self.time_index
        state = ops.concatenate(
            [state_free[:, :t], ops.zeros((n_free, 1)), state_free[:, t:]],
            1,
        )

        if isinstance(self.boundary, PinnedStartBoundary):
            pinned = self.boundary.initial_condition
            full_pinned = pinned.control[list(self.controls.full_mesh)]
            state = ops.concatenate([ops.asarray(pinned.state).reshape(1, self.n_state), state], 0)
            algebraic = ops.concatenate(
                [ops.asarray(pinned.algebraic).reshape(1, self.n_algebraic), algebraic], 0
            )
            full_mesh = ops.concatenate([ops.asarray(full_pinned).reshape(1, self.n_full), full_mesh], 0)
            pinned_rates = self._pinned_rates if self.uses_rates else np.zeros(0)
            rates = ops.concatenate([ops.asarray(pinned_rates).reshape(1, self.n_rate), rates], 0)

        hypermesh_values = []
        start = n_free * self.n_per_point
        for idx in self.controls.hypermesh:
            count = self.controls.channels[idx].breakpoints.size
            hypermesh_values.append(x[start : start + count])
            start += count

        columns = []
        full_column = 0
        hyper_column = 0
        for idx, kind in enumerate(self.controls.kinds):
            if kind == FULL_MESH:
                column = full_mesh[:, full_column]
                full_column += 1
            elif kind == DONT_OPTIMIZE:
                column = ops.asarray(self.controls.fixed_values[idx])
            else:
                column = ops.asarray(self.controls.weights[idx]) @ hypermesh_values[hyper_column]
                hyper_column += 1
            if kind != FULL_MESH and isinstance(self.boundary, PinnedStartBoundary):
                pinned_value = np.asarray(self.boundary.initial_condition.control, dtype=float)
                column = ops.concatenate([ops.asarray(pinned_value[idx : idx + 1]), column[1:]], 0)
            columns.append(column.reshape(-1, 1))
        control = ops.concatenate(columns, 1) if columns else ops.zeros((n_points, 0))

        return TranscriptionSamples(
            state=state,
            algebraic=algebraic,
            control=control,
            full_mesh_control=full_mesh,
            control_rate=rates,
            hypermesh_values=tuple(hypermesh_values),
        )

    def pack(
        self,
        state: np.ndarray,
        algebraic: np.ndarray,
        control: np.ndarray,
        control_rate: np.ndarray | None = None,
        hypermesh_values: Sequence[np.ndarray] = (),
    ) -> np.ndarray:
        """Pack per-point samples into a decision vector.

        Args:
            state: States ``(n_points, n_state)``.
            algebraic: Algebraic states ``(n_points, n_algebraic)``.
            control: Controls ``(n_points, n_control)``; only full-mesh
                columns are packed.
            control_rate: Full-mesh rates ``(n_points, n_full)``, required by
                the rate formulation.
            hypermesh_values: Breakpoint values per hypermesh channel.

        Returns:
            Decision vector.
        """
        state = np.asarray(state, dtype=float)
        free_state = np.delete(state, self.time_index, axis=1)
        parts = [
            free_state,
            np.asarray(algebraic, dtype=float).reshape(self.mesh.n_points, self.n_algebraic),
            np.asarray(control, dtype=float)[:, list(self.controls.full_mesh)],
        ]
        if self.uses_rates:
            if control_rate is None:
                control_rate = np.zeros((self.mesh.n_points, self.n_full))
            parts.append(np.asarray(control_rate, dtype=float).reshape(self.mesh.n_points, self.n_full))
        blocks = np.hstack(parts)[self.offset :]
        hyper = [np.asarray(values, dtype=float).reshape(-1) for values in hypermesh_values]
        return np.concatenate([blocks.reshape(-1), *hyper]) if hyper else blocks.reshape(-1)

    def variable_bounds(self) -> tuple[np.ndarray, np.ndarray]:
        """Return decision-vector bounds.

        Returns:
            ``(lower, upper)`` arrays using the ``UNBOUNDED`` sentinel. The
            lateral component is bounded by the live track limits.
        """
        model = self.model
        state_lower, state_upper = (np.asarray(b, dtype=float) for b in model.state_bounds())
        algebraic_lower, algebraic_upper = (np.asarray(b, dtype=float) for b in model.algebraic_bounds())
        control_lower, control_upper = (np.asarray(b, dtype=float) for b in model.control_bounds())
        rate_lower, rate_upper = (np.asarray(b, dtype=float) for b in model.control_rate_bounds())
        full = list(self.controls.full_mesh)
        lateral = model.lateral_state_index
        track = model.track

        lower_rows = []
        upper_rows = []
        for point in range(self.offset, self.mesh.n_points):
            point_state_lower = state_lower.copy()
            point_state_upper = state_upper.copy()
            if lateral is not None:
                s = float(self.mesh.arc_length[point])
                point_state_lower[lateral] = -track.left_track_limit(s)
                point_state_upper[lateral] = track.right_track_limit(s)
            lower_parts = [
                np.delete(point_state_lower, self.time_index),
                algebraic_lower,
                control_lower[full],
            ]
            upper_parts = [
                np.delete(point_state_upper, self.time_index),
                algebraic_upper,
                control_upper[full],
            ]
            if self.uses_rates:
                lower_parts.append(rate_lower[full])
                upper_parts.append(rate_upper[full])
            lower_rows.append(np.concatenate(lower_parts))
            upper_rows.append(np.concatenate(upper_parts))

        lower = [np.concatenate(lower_rows)] if lower_rows else []
        upper = [np.concatenate(upper_rows)] if upper_rows else []
        for idx in self.controls.hypermesh:
            count = self.controls.channels[idx].breakpoints.size
            lower.append(np.full(count, control_lower[idx]))
            upper.append(np.full(count, control_upper[idx]))
        if not lower:
            return np.zeros(0), np.zeros(0)
        return np.concatenate(lower), np.concatenate(upper)

    def constraint_bounds(self) -> tuple[np.ndarray, np.ndarray]:
        """Return constraint-vector bounds, excluding the objective entry.

        Returns:
            ``(lower, upper)`` arrays: zero for defects and residuals, model
            bounds for path constraints, configured bounds for integrals.
        """
        extra_lower, extra_upper = (
            np.asarray(b, dtype=float) for b in self.model.extra_constraint_bounds()
        )
        zeros_head = np.zeros(self.n_state_free + self.n_algebraic)
        zeros_tail = np.zeros(self.n_rate)
        block_lower = np.concatenate([zeros_head, extra_lower, zeros_tail])
        block_upper = np.concatenate([zeros_head, extra_upper, zeros_tail])

        lower = np.concatenate(
            [
                np.tile(block_lower, self.mesh.n_elements),
                np.array([c.lower for c in self.integral_constraints], dtype=float),
            ]
        )
        upper = np.concatenate(
            [
                np.tile(block_upper, self.mesh.n_elements),
                np.array([c.upper for c in self.integral_constraints], dtype=float),
            ]
        )
        return lower, upper

    def initial_guess(self, guess: Any = None) -> np.ndarray:
        """Build the initial decision vector.

        Args:
            guess: Optional previous result or :class:`TrajectoryGuess`. When
                omitted the steady-state reference is used.

        Returns:
            Initial decision vector clipped into the variable bounds.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If the guess does not
                match the mesh point count or closedness.
        """
        if guess is None:
            state, algebraic, control, rates, hyper = self._steady_state_samples()
        else:
            state, algebraic, control, rates, hyper = self._guess_samples(guess)

        x0 = self.pack(state, algebraic, control, rates, hyper)
        lower, upper = self.variable_bounds()
        return np.clip(x0, lower, upper)

    def _steady_state_samples(self) -> tuple[Any, ...]:
        model = self.model
        mesh = self.mesh
        q, qa, u = (np.asarray(v, dtype=float) for v in model.steady_state(self.steady_state_speed))
        state = np.tile(q, (mesh.n_points, 1))
        lateral = model.lateral_state_index
        if lateral is not None:
            for point, s in enumerate(mesh.arc_length):
                state[point, lateral] = np.clip(
                    state[point, lateral],
                    -model.track.left_track_limit(float(s)),
                    model.track.right_track_limit(float(s)),
                )
        algebraic = np.tile(qa, (mesh.n_points, 1))
        columns = [
            resolve_control_channel(channel, mesh, u[idx])
            for idx, channel in enumerate(self.controls.channels)
        ]
        control = np.column_stack(columns) if columns else np.zeros((mesh.n_points, 0))
        rates = self._default_rates()
        hyper = [self.controls.channels[idx].values for idx in self.controls.hypermesh]
        return state, algebraic, control, rates, hyper

    def _default_rates(self) -> np.ndarray:
        columns = [
            resolve_control_rates(self.controls.channels[idx], self.mesh)
            for idx in self.controls.full_mesh
        ]
        if not columns:
            return np.zeros((self.mesh.n_points, 0))
        return np.column_stack(columns)

    def _guess_samples(self, guess: Any) -> tuple[Any, ...]:
        mesh = self.mesh
        guess_mesh = getattr(guess, "mesh", None)
        if guess_mesh is not None and bool(guess_mesh.closed) != mesh.closed:
            msg = "initial guess closedness does not match the mesh"
            raise ConfigurationError(msg)

        state = np.asarray(guess.state, dtype=float)
        algebraic = np.asarray(guess.algebraic, dtype=float)
        control = np.asarray(guess.control, dtype=float)
        if algebraic.size == 0:
            algebraic = np.zeros((state.shape[0], 0))
        if control.size == 0:
            control = np.zeros((state.shape[0], 0))
        expected = (
            ("state", state, self.n_state),
            ("algebraic", algebraic, self.n_algebraic),
            ("control", control, self.n_control),
        )
        for label, values, columns in expected:
            if values.shape != (mesh.n_points, columns):
                msg = (
                    f"initial guess {label} must have shape ({mesh.n_points}, {columns}), "
                    f"got {values.shape}"
                )
                raise ConfigurationError(msg)

        rates = self._default_rates()
        guess_rates = getattr(guess, "control_rate", None)
        if guess_rates is not None:
            guess_rates = np.asarray(guess_rates, dtype=float)
            if guess_rates.shape == (mesh.n_points, self.n_control):
                selected = guess_rates[:, list(self.controls.full_mesh)]
                rates = np.where(np.isfinite(selected), selected, rates)

        guess_hyper = getattr(guess, "hypermesh_values", None) or {}
        hyper = []
        for idx in self.controls.hypermesh:
            channel = self.controls.channels[idx]
            values = guess_hyper.get(self.controls.names[idx])
            if values is None or np.asarray(values).shape != channel.values.shape:
                values = channel.values
            hyper.append(np.asarray(values, dtype=float))
        return state, algebraic, control, rates, hyper

    @abstractmethod
    def control_defects(
        self,
        samples: TranscriptionSamples,
        time_derivative: Sequence[Any],
        previous: int,
        current: int,
        length: float,
        ops: NumericOps,
    ) -> Any:
        """Return control defects of one interval (empty in the direct formulation)."""

    @abstractmethod
    def dissipation(self, samples: TranscriptionSamples, ops: NumericOps) -> Any:
        """Return the smoothness penalty of all full-mesh channels."""


class DirectFormulation(TranscriptionFormulation):
    """Controls are decision variables; smoothness penalizes control differences."""

    kind = "direct"
    uses_rates = False

    def control_defects(
        self,
        samples: TranscriptionSamples,
        time_derivative: Sequence[Any],
        previous: int,
        current: int,
        length: float,
        ops: NumericOps,
    ) -> Any:
        """Return an empty vector: controls are not tied by defects.

        Returns:
            Zero-length vector.
        """
        return ops.zeros((0,))

    def dissipation(self, samples: TranscriptionSamples, ops: NumericOps) -> Any:
        """Return ``sum d (u_i - u_{i-1})^2 / ds_i`` including the wrap interval.

        Args:
            samples: Unpacked samples.
            ops: Backend operations.

        Returns:
            Scalar penalty.
        """
        penalty: Any = 0.0
        lengths = ops.asarray(self.mesh.element_lengths)
        for column, weight in enumerate(self.controls.dissipations):
            if weight == 0.0:
                continue
            values = samples.full_mesh_control[:, column]
            differences = values[1:] - values[:-1]
            penalty = penalty + weight * ops.sum(differences * differences / lengths)
            if self.closed:
                wrap = values[0] - values[-1]
                penalty = penalty + weight * wrap * wrap / self.mesh.wrap_length
        return penalty


class RateFormulation(TranscriptionFormulation):
    """Control rates are decision variables tied to the controls by defects."""

    kind = "rate"
    uses_rates = True

    def control_defects(
        self,
        samples: TranscriptionSamples,
        time_derivative: Sequence[Any],
        previous: int,
        current: int,
        length: float,
        ops: NumericOps,
    ) -> Any:
        """Return ``u_i - u_{i-1} - ds ((1-sigma) r_{i-1} dt/ds_{i-1} + sigma r_i dt/ds_i)``.

        Args:
            samples: Unpacked samples.
            time_derivative: Per-point ``dt/ds`` values.
            previous: Index of the interval start point.
            current: Index of the interval end point.
            length: Interval length [m].
            ops: Backend operations.

        Returns:
            One defect per full-mesh control.
        """
        controls = samples.full_mesh_control
        rates = samples.control_rate
        return (
            controls[current]
            - controls[previous]
            - length
            * (
                (1.0 - self.sigma) * rates[previous] * time_derivative[previous]
                + self.sigma * rates[current] * time_derivative[current]
            )
        )

    def dissipation(self, samples: TranscriptionSamples, ops: NumericOps) -> Any:
        """Return ``sum d r_i^2 ds_i`` including the wrap interval.

        Args:
            samples: Unpacked samples.
            ops: Backend operations.

        Returns:
            Scalar penalty.
        """
        penalty: Any = 0.0
        lengths = ops.asarray(self.mesh.element_lengths)
        for column, weight in enumerate(self.controls.dissipations):
            if weight == 0.0:
                continue
            rates = samples.control_rate[:, column]
            penalty = penalty + weight * ops.sum(rates[1:] * rates[1:] * lengths)
            if self.closed:
                penalty = penalty + weight * rates[0] * rates[0] * self.mesh.wrap_length
        return penalty


_FORMULATIONS: dict[str, type[TranscriptionFormulation]] = {
    "direct": DirectFormulation,
    "rate": RateFormulation,
}


def build_formulation(
    model: DynamicsModel,
    mesh: Mesh,
    config: OptimalLaptimeConfig,
) -> TranscriptionFormulation:
    """Select and construct the formulation strategy for one solve.

    Args:
        model: Dynamics model.
        mesh: Collocation mesh.
        config: Validated solve configuration.

    Returns:
        Direct or rate formulation with a periodic or pinned-start boundary.

    Raises:
        optilap.utils.exceptions.ConfigurationError: If controls or integral
            constraints do not match the model.
        optilap.utils.exceptions.InvalidInitialCondition: If the initial
            condition has wrong vector sizes.
    """
    reference_state, reference_algebraic, reference_control = (
        np.asarray(v, dtype=float) for v in model.steady_state(config.numerics.steady_state_speed)
    )
    controls = build_control_layout(model, mesh, config.controls, reference_control)

    boundary: Boundary
    if mesh.closed:
        boundary = PeriodicBoundary()
    else:
        initial_condition = config.initial_condition
        if initial_condition is None:
            initial_control = reference_control.copy()
            for idx, values in controls.fixed_values.items():
                initial_control[idx] = values[0]
            for idx in controls.hypermesh:
                initial_control[idx] = controls.weights[idx][0] @ controls.channels[idx].values
            initial_condition = InitialCondition(
                state=reference_state,
                algebraic=reference_algebraic,
                control=initial_control,
            )
        boundary = PinnedStartBoundary(initial_condition)

    formulation = _FORMULATIONS[config.formulation](
        model,
        mesh,
        controls,
        boundary,
        sigma=config.numerics.sigma,
        steady_state_speed=config.numerics.steady_state_speed,
        integral_constraints=config.integral_constraints,
    )
    logger.debug(
        "Built %s formulation: %d variables, %d constraints, closed=%s",
        formulation.kind,
        formulation.n_variables,
        formulation.n_constraints,
        formulation.closed,
    )
    return formulation
