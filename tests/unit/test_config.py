"""Unit tests for optimal-laptime configuration validation."""

from __future__ import annotations

import unittest

import numpy as np

from optilap.simulation import (
    IntegralConstraint,
    SensitivityNumerics,
    SolverNumerics,
    SolverRuntime,
    TranscriptionNumerics,
    build_initial_condition,
    build_optimal_laptime_config,
    create_full_mesh,
)
from optilap.utils.exceptions import ConfigurationError, UnsupportedControlChannelType


class OptimalLaptimeConfigTests(unittest.TestCase):
    """Validate configuration defaults and rejection rules."""

    def test_defaults_are_valid(self) -> None:
        """Build the default configuration without errors."""
        config = build_optimal_laptime_config()

        self.assertTrue(config.closed)
        self.assertEqual(config.formulation, "direct")
        self.assertEqual(config.solver.method, "SLSQP")
        self.assertEqual(config.solver.derivative_method, "finite_difference")
        self.assertEqual(config.numerics.sigma, 0.5)
        self.assertEqual(config.sensitivity_method, "autodiff")

    def test_invalid_blocks_are_rejected(self) -> None:
        """Reject out-of-range values in every numerics block."""
        invalid_kwargs = (
            {"formulation": "collocation"},
            {"sensitivity_method": "adjoint"},
            {"numerics": TranscriptionNumerics(sigma=1.5)},
            {"numerics": TranscriptionNumerics(steady_state_speed=0.0)},
            {"solver": SolverNumerics(method="ipopt")},
            {"solver": SolverNumerics(max_iterations=0)},
            {"solver": SolverNumerics(tolerance=0.0)},
            {"solver": SolverNumerics(derivative_method="symbolic")},
            {"solver": SolverNumerics(finite_difference_step=-1e-7)},
            {"runtime": SolverRuntime(verbosity=-1)},
            {"sensitivity": SensitivityNumerics(relative_step=0.0)},
        )
        for kwargs in invalid_kwargs:
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(ConfigurationError):
                    build_optimal_laptime_config(**kwargs)

    def test_initial_condition_is_rejected_on_closed_tracks(self) -> None:
        """Only open tracks accept a pinned initial condition."""
        condition = build_initial_condition([10.0, 0.0], [], [])
        with self.assertRaises(ConfigurationError):
            build_optimal_laptime_config(closed=True, initial_condition=condition)
        config = build_optimal_laptime_config(closed=False, initial_condition=condition)
        np.testing.assert_allclose(config.initial_condition.state, [10.0, 0.0])

    def test_unsupported_control_channel_is_rejected(self) -> None:
        """Reject control descriptors outside the supported variants."""
        with self.assertRaises(UnsupportedControlChannelType):
            build_optimal_laptime_config(controls={"accel": "full"})
        config = build_optimal_laptime_config(controls={"accel": create_full_mesh(dissipation=0.1)})
        self.assertIn("accel", config.controls)

    def test_integral_constraints_are_validated(self) -> None:
        """Reject inverted bounds and duplicate names."""
        with self.assertRaises(ConfigurationError):
            build_optimal_laptime_config(
                integral_constraints=[IntegralConstraint("energy", 2.0, 1.0)]
            )
        with self.assertRaises(ConfigurationError):
            build_optimal_laptime_config(
                integral_constraints=[
                    IntegralConstraint("energy", 0.0, 1.0),
                    IntegralConstraint("energy", 0.0, 2.0),
                ]
            )

    def test_sensitivity_step_uses_relative_and_absolute_controls(self) -> None:
        """Scale perturbations with the parameter and floor them."""
        numerics = SensitivityNumerics(relative_step=1e-3, absolute_step=1e-6)

        self.assertAlmostEqual(numerics.step_size(660.0), 0.66)
        self.assertAlmostEqual(numerics.step_size(0.0), 1e-6)


if __name__ == "__main__":
    unittest.main()
