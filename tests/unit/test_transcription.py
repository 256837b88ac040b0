"""Unit tests for the transcription layout and evaluator."""

from __future__ import annotations

import importlib.util
import unittest

import numpy as np

from optilap.simulation import (
    build_initial_condition,
    build_optimal_laptime_config,
    build_uniform_mesh,
    create_dont_optimize,
    create_full_mesh,
    create_hypermesh,
)
from optilap.simulation.evaluator import TranscriptionEvaluator, theta_quadrature
from optilap.simulation.formulation import TrajectoryGuess, build_formulation
from optilap.track import build_straight_track
from optilap.utils.constants import UNBOUNDED
from optilap.utils.exceptions import ConfigurationError, InvalidInitialCondition
from optilap.utils.numeric_ops import NUMPY_OPS
from optilap.vehicle import build_point_mass_model
from tests.helpers import (
    ConstantAccelerationModel,
    KinematicSpeedModel,
    LateralOffsetModel,
    UniformTrack,
    constant_acceleration_speeds,
    trapezoidal_time,
)

TORCH_AVAILABLE = importlib.util.find_spec("torch") is not None


class _OversizedExtraModel(LateralOffsetModel):
    """Return more path-constraint entries than declared."""

    def extra_constraints(self) -> np.ndarray:
        return np.zeros(2)


class FormulationLayoutTests(unittest.TestCase):
    """Validate decision-vector and constraint-vector layouts."""

    def setUp(self) -> None:
        self.track = UniformTrack(length=100.0, half_width=5.0)
        self.closed_mesh = build_uniform_mesh(100.0, 5, closed=True)

    def test_sizes_follow_per_point_blocks(self) -> None:
        """Count state, algebraic, control and rate entries per point."""
        model = LateralOffsetModel(self.track)
        direct = build_formulation(model, self.closed_mesh, build_optimal_laptime_config())
        rate = build_formulation(
            model, self.closed_mesh, build_optimal_laptime_config(formulation="rate")
        )

        self.assertEqual(direct.n_per_point, 3)
        self.assertEqual(direct.n_variables, 15)
        self.assertEqual(direct.n_constraints, 15)
        self.assertEqual(rate.n_per_point, 4)
        self.assertEqual(rate.n_variables, 20)
        self.assertEqual(rate.n_constraints, 20)

    def test_pack_and_unpack_round_trip(self) -> None:
        """Recover the decision vector from unpacked samples."""
        model = LateralOffsetModel(self.track)
        rng = np.random.default_rng(7)
        for formulation_kind in ("direct", "rate"):
            with self.subTest(formulation=formulation_kind):
                formulation = build_formulation(
                    model,
                    self.closed_mesh,
                    build_optimal_laptime_config(formulation=formulation_kind),
                )
                x = rng.normal(size=formulation.n_variables)
                samples = formulation.unpack(x)
                packed = formulation.pack(
                    samples.state,
                    samples.algebraic,
                    samples.control,
                    samples.control_rate,
                    samples.hypermesh_values,
                )
                np.testing.assert_allclose(packed, x)
                np.testing.assert_allclose(samples.state[:, model.time_state_index], 0.0)

    def test_hypermesh_values_are_appended_after_point_blocks(self) -> None:
        """Store breakpoint values once, after the per-point blocks."""
        model = KinematicSpeedModel(self.track)
        config = build_optimal_laptime_config(
            controls={"accel": create_hypermesh([0.0, 50.0], [0.5, -0.5])}
        )
        formulation = build_formulation(model, self.closed_mesh, config)
        x = np.concatenate([np.full(5, 12.0), [1.0, 3.0]])

        samples = formulation.unpack(x)

        self.assertEqual(formulation.n_variables, 7)
        np.testing.assert_allclose(samples.control[:, 0], [1.0, 1.8, 2.6, 2.6, 1.8])
        np.testing.assert_allclose(
            formulation.pack(
                samples.state,
                samples.algebraic,
                samples.control,
                hypermesh_values=samples.hypermesh_values,
            ),
            x,
        )

    def test_open_track_pins_first_point(self) -> None:
        """Exclude point 0 from ``x`` and restore it from the initial condition."""
        model = ConstantAccelerationModel(self.track)
        mesh = build_uniform_mesh(100.0, 4, closed=False)
        config = build_optimal_laptime_config(
            closed=False, initial_condition=build_initial_condition([8.0, 0.0], [], [])
        )
        formulation = build_formulation(model, mesh, config)

        samples = formulation.unpack(np.array([9.0, 10.0, 11.0, 12.0]))

        self.assertEqual(formulation.n_variables, 4)
        np.testing.assert_allclose(samples.state[:, 0], [8.0, 9.0, 10.0, 11.0, 12.0])

    def test_open_track_pins_first_point_of_every_control_channel(self) -> None:
        """Take point-0 controls from the initial condition for fixed channels."""
        model = KinematicSpeedModel(self.track)
        mesh = build_uniform_mesh(100.0, 4, closed=False)
        channels = {
            "dont_optimize": (create_dont_optimize(2.0), np.full(4, 12.0)),
            "hypermesh": (
                create_hypermesh([0.0, 100.0], [2.0, 2.0]),
                np.concatenate([np.full(4, 12.0), [2.0, 2.0]]),
            ),
        }
        for label, (channel, x) in channels.items():
            with self.subTest(channel=label):
                config = build_optimal_laptime_config(
                    closed=False,
                    controls={"accel": channel},
                    initial_condition=build_initial_condition([10.0, 0.0], [], [0.0]),
                )
                samples = build_formulation(model, mesh, config).unpack(x)

                np.testing.assert_allclose(samples.control[:, 0], [0.0, 2.0, 2.0, 2.0, 2.0])

    def test_default_initial_condition_follows_fixed_channel_values(self) -> None:
        """Seed the pinned control from the channel when no condition is given."""
        model = KinematicSpeedModel(self.track)
        mesh = build_uniform_mesh(100.0, 4, closed=False)
        config = build_optimal_laptime_config(
            closed=False, controls={"accel": create_dont_optimize(2.0)}
        )

        samples = build_formulation(model, mesh, config).unpack(np.full(4, 12.0))

        np.testing.assert_allclose(samples.control[:, 0], 2.0)

    def test_initial_condition_sizes_are_checked(self) -> None:
        """Reject pinned vectors that do not match the model."""
        model = ConstantAccelerationModel(self.track)
        mesh = build_uniform_mesh(100.0, 4, closed=False)
        config = build_optimal_laptime_config(
            closed=False, initial_condition=build_initial_condition([8.0], [], [])
        )
        with self.assertRaises(InvalidInitialCondition):
            build_formulation(model, mesh, config)

    def test_unknown_control_names_are_rejected(self) -> None:
        """Reject channels for controls the model does not declare."""
        model = KinematicSpeedModel(self.track)
        config = build_optimal_laptime_config(controls={"steer": create_full_mesh()})
        with self.assertRaises(ConfigurationError):
            build_formulation(model, self.closed_mesh, config)

    def test_variable_bounds_use_live_track_limits(self) -> None:
        """Bound the lateral state by the track half-widths."""
        model = LateralOffsetModel(self.track)
        formulation = build_formulation(model, self.closed_mesh, build_optimal_laptime_config())
        lower, upper = formulation.variable_bounds()

        np.testing.assert_allclose(lower[::3], -5.0)
        np.testing.assert_allclose(upper[::3], 5.0)
        self.assertTrue(np.all(upper[1::3] == UNBOUNDED))

    def test_constraint_bounds_cover_defects_residuals_and_extras(self) -> None:
        """Zero for defects and residuals, model bounds for path constraints."""
        model = LateralOffsetModel(self.track)
        formulation = build_formulation(model, self.closed_mesh, build_optimal_laptime_config())
        lower, upper = formulation.constraint_bounds()

        np.testing.assert_allclose(upper.reshape(5, 3), np.tile([0.0, 0.0, 1.0], (5, 1)))
        np.testing.assert_allclose(lower.reshape(5, 3)[:, :2], 0.0)
        self.assertTrue(np.all(lower.reshape(5, 3)[:, 2] == -UNBOUNDED))

    def test_default_initial_guess_uses_steady_state(self) -> None:
        """Start from the steady-state reference clipped into the bounds."""
        model = KinematicSpeedModel(self.track, max_speed=15.0)
        formulation = build_formulation(model, self.closed_mesh, build_optimal_laptime_config())

        x0 = formulation.initial_guess()

        np.testing.assert_allclose(x0.reshape(5, 2), np.tile([15.0, 0.0], (5, 1)))

    def test_initial_guess_shape_mismatch_is_rejected(self) -> None:
        """Reject guesses sampled on a different mesh."""
        model = KinematicSpeedModel(self.track)
        formulation = build_formulation(model, self.closed_mesh, build_optimal_laptime_config())
        guess = TrajectoryGuess(
            state=np.zeros((4, 2)), algebraic=np.zeros((4, 0)), control=np.zeros((4, 1))
        )

        with self.assertRaises(ConfigurationError):
            formulation.initial_guess(guess)


class EvaluatorTests(unittest.TestCase):
    """Validate defects, objective and quadrature of the evaluator."""

    def setUp(self) -> None:
        self.track = UniformTrack(length=100.0)
        self.closed_mesh = build_uniform_mesh(100.0, 4, closed=True)

    def test_exact_trajectory_has_zero_defects(self) -> None:
        """Vanish all defects on the trapezoidal solution of ``du/ds = a / u``."""
        model = ConstantAccelerationModel(self.track, acceleration=2.0)
        mesh = build_uniform_mesh(100.0, 10, closed=False)
        config = build_optimal_laptime_config(
            closed=False, initial_condition=build_initial_condition([10.0, 0.0], [], [])
        )
        formulation = build_formulation(model, mesh, config)
        speeds = constant_acceleration_speeds(10.0, 2.0, mesh.arc_length)
        state = np.column_stack([speeds, np.zeros_like(speeds)])
        x = formulation.pack(state, np.zeros((mesh.n_points, 0)), np.zeros((mesh.n_points, 0)))

        objective, constraints = TranscriptionEvaluator(formulation)(x)

        np.testing.assert_allclose(constraints, 0.0, atol=1e-12)
        self.assertAlmostEqual(objective, trapezoidal_time(speeds, mesh.arc_length), places=12)

    def test_closed_lap_time_includes_wrap_interval(self) -> None:
        """Integrate ``dt/ds`` over the full lap including the wrap interval."""
        model = KinematicSpeedModel(self.track)
        formulation = build_formulation(model, self.closed_mesh, build_optimal_laptime_config(
            controls={"accel": create_full_mesh()}
        ))
        x = formulation.pack(np.tile([10.0, 0.0], (4, 1)), np.zeros((4, 0)), np.zeros((4, 1)))

        objective, constraints = TranscriptionEvaluator(formulation)(x)

        self.assertAlmostEqual(objective, 10.0, places=12)
        np.testing.assert_allclose(constraints, 0.0, atol=1e-12)

    def test_direct_dissipation_penalizes_control_differences(self) -> None:
        """Add ``d sum (du)^2 / ds`` including the wrap difference."""
        model = KinematicSpeedModel(self.track)
        config = build_optimal_laptime_config(controls={"accel": create_full_mesh(dissipation=2.0)})
        formulation = build_formulation(model, self.closed_mesh, config)
        evaluator = TranscriptionEvaluator(formulation)
        state = np.tile([10.0, 0.0], (4, 1))

        constant = formulation.pack(state, np.zeros((4, 0)), np.zeros((4, 1)))
        varying = formulation.pack(state, np.zeros((4, 0)), np.array([[0.0], [1.0], [0.0], [1.0]]))

        self.assertAlmostEqual(evaluator(constant)[0], 10.0, places=12)
        self.assertAlmostEqual(evaluator(varying)[0], 10.0 + 2.0 * 4.0 / 25.0, places=12)

    def test_rate_dissipation_penalizes_rates(self) -> None:
        """Add ``d sum r^2 ds`` with the wrap interval weighting ``r_0``."""
        model = KinematicSpeedModel(self.track)
        config = build_optimal_laptime_config(
            formulation="rate", controls={"accel": create_full_mesh(dissipation=2.0)}
        )
        formulation = build_formulation(model, self.closed_mesh, config)
        state = np.tile([10.0, 0.0], (4, 1))
        rates = np.array([[1.0], [2.0], [3.0], [4.0]])

        x = formulation.pack(state, np.zeros((4, 0)), np.zeros((4, 1)), rates)
        objective, _ = TranscriptionEvaluator(formulation)(x)

        self.assertAlmostEqual(objective, 10.0 + 2.0 * (4.0 + 9.0 + 16.0 + 1.0) * 25.0, places=9)

    def test_rate_defects_vanish_for_periodic_constant_controls(self) -> None:
        """Close the control-rate defect across the wrap interval."""
        model = KinematicSpeedModel(self.track)
        formulation = build_formulation(
            model, self.closed_mesh, build_optimal_laptime_config(formulation="rate")
        )
        x = formulation.pack(
            np.tile([10.0, 0.0], (4, 1)), np.zeros((4, 0)), np.zeros((4, 1)), np.zeros((4, 1))
        )

        _, constraints = TranscriptionEvaluator(formulation)(x)

        self.assertEqual(constraints.size, 8)
        np.testing.assert_allclose(constraints, 0.0, atol=1e-12)

    def test_oversized_model_output_breaks_strict_accounting(self) -> None:
        """Raise when the model returns more entries than it declares."""
        model = _OversizedExtraModel(self.track)
        formulation = build_formulation(model, self.closed_mesh, build_optimal_laptime_config())
        with self.assertRaises(ConfigurationError):
            TranscriptionEvaluator(formulation)(np.zeros(formulation.n_variables))

    def test_theta_quadrature_integrates_constant_rates(self) -> None:
        """Integrate a constant rate to ``c s`` and ``c L``."""
        cumulative, total = theta_quadrature([3.0] * 4, self.closed_mesh, 0.5, NUMPY_OPS)

        np.testing.assert_allclose(cumulative, 3.0 * self.closed_mesh.arc_length)
        self.assertAlmostEqual(float(total), 300.0)

    def test_evaluation_is_deterministic(self) -> None:
        """Return identical outputs for identical decision vectors."""
        track = build_straight_track(length=200.0, sample_count=41)
        model = build_point_mass_model(track)
        mesh = build_uniform_mesh(track.track_length(), 8, closed=False)
        formulation = build_formulation(model, mesh, build_optimal_laptime_config(closed=False))
        evaluator = TranscriptionEvaluator(formulation)
        x0 = formulation.initial_guess()

        first = evaluator.fg(x0)
        second = evaluator.fg(x0.copy())

        np.testing.assert_array_equal(first, second)

    @unittest.skipUnless(TORCH_AVAILABLE, "torch not installed")
    def test_torch_evaluation_matches_numpy(self) -> None:
        """Evaluate identical values on NumPy arrays and torch tensors."""
        import torch

        track = build_straight_track(length=200.0, sample_count=41)
        model = build_point_mass_model(track)
        mesh = build_uniform_mesh(track.track_length(), 8, closed=False)
        config = build_optimal_laptime_config(closed=False, formulation="rate")
        formulation = build_formulation(model, mesh, config)
        evaluator = TranscriptionEvaluator(formulation)
        x0 = formulation.initial_guess() * 1.01

        numpy_values = evaluator.fg(x0)
        torch_values = evaluator.fg(torch.as_tensor(x0, dtype=torch.float64))

        np.testing.assert_allclose(torch_values.numpy(), numpy_values, rtol=1e-12, atol=1e-12)


if __name__ == "__main__":
    unittest.main()
