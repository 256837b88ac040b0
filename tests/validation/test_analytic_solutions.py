"""Validation of optimal laps against analytic solutions."""

from __future__ import annotations

import unittest

import numpy as np

from optilap import solve_optimal_laptime
from optilap.simulation import (
    TranscriptionNumerics,
    TrajectoryGuess,
    build_initial_condition,
    build_optimal_laptime_config,
    build_uniform_mesh,
)
from optilap.track import build_circular_track
from optilap.utils.constants import GRAVITY
from optilap.vehicle import PointMassParameters, build_point_mass_model
from tests.helpers import (
    ConstantAccelerationModel,
    UniformTrack,
    constant_acceleration_speeds,
    trapezoidal_time,
)


class ConstantAccelerationValidationTests(unittest.TestCase):
    """Compare fully determined speed profiles with their closed forms."""

    def _solve(self, element_count: int, sigma: float = 0.5):
        model = ConstantAccelerationModel(UniformTrack(100.0), acceleration=2.0)
        mesh = build_uniform_mesh(100.0, element_count, closed=False)
        config = build_optimal_laptime_config(
            closed=False,
            initial_condition=build_initial_condition([10.0, 0.0], [], []),
            numerics=TranscriptionNumerics(sigma=sigma),
        )
        return solve_optimal_laptime(model, mesh, config)

    def test_trapezoidal_solution_matches_discrete_recursion(self) -> None:
        """Reproduce the trapezoidal recursion point by point."""
        result = self._solve(10)
        expected = constant_acceleration_speeds(10.0, 2.0, result.arc_length)

        np.testing.assert_allclose(result.state_column("u"), expected, rtol=1e-6)
        self.assertAlmostEqual(
            result.lap_time, trapezoidal_time(expected, result.arc_length), places=6
        )

    def test_refined_mesh_converges_to_continuous_time(self) -> None:
        """Approach ``T = (u_end - u_0) / a`` with ``u_end^2 = u_0^2 + 2 a L``."""
        exact = (np.sqrt(10.0**2 + 2.0 * 2.0 * 100.0) - 10.0) / 2.0
        coarse = abs(self._solve(5).lap_time - exact)
        fine = abs(self._solve(40).lap_time - exact)

        self.assertLess(fine, coarse)
        self.assertLess(fine / exact, 1e-3)

    def test_backward_euler_is_less_accurate_than_trapezoid(self) -> None:
        """Show first-order error for ``sigma = 1`` on the same mesh."""
        exact = (np.sqrt(10.0**2 + 2.0 * 2.0 * 100.0) - 10.0) / 2.0
        trapezoid = abs(self._solve(10, sigma=0.5).lap_time - exact)
        backward = abs(self._solve(10, sigma=1.0).lap_time - exact)

        self.assertLess(trapezoid, backward)


class CircleFrictionLimitTests(unittest.TestCase):
    """Compare the point-mass lap on a circle with the friction limit."""

    def test_point_mass_drives_inner_edge_at_friction_limit(self) -> None:
        """Run the inner edge at ``v = sqrt(mu g r)`` without aerodynamics."""
        radius = 50.0
        half_width = 5.0
        params = PointMassParameters(drag_coefficient=0.0, lift_coefficient=0.0)
        track = build_circular_track(radius=radius, sample_count=721, half_width=half_width)
        model = build_point_mass_model(track, params)
        mesh = build_uniform_mesh(track.track_length(), 16, closed=True)
        n_points = mesh.n_points
        guess = TrajectoryGuess(
            state=np.column_stack([np.full(n_points, 20.0), np.zeros((n_points, 3))]),
            algebraic=np.full((n_points, 1), params.mass * GRAVITY),
            control=np.column_stack([np.zeros(n_points), np.full(n_points, 1.0 / radius)]),
        )

        config = build_optimal_laptime_config()
        result = solve_optimal_laptime(model, mesh, config, initial_guess=guess)

        inner_radius = radius - half_width
        limit_speed = np.sqrt(params.friction_coefficient * GRAVITY * inner_radius)
        expected = 2.0 * np.pi * inner_radius / limit_speed
        self.assertAlmostEqual(result.lap_time, expected, delta=0.01 * expected)
        np.testing.assert_allclose(result.state_column("n"), -half_width, atol=0.05)
        np.testing.assert_allclose(result.state_column("u"), limit_speed, rtol=0.01)
        radii = np.hypot(result.x, result.y)
        np.testing.assert_allclose(radii, inner_radius, atol=0.1)


if __name__ == "__main__":
    unittest.main()
