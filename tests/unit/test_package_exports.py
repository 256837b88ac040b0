"""Tests for package export resolution."""

from __future__ import annotations

import unittest

import optilap
import optilap.analysis as analysis_pkg
import optilap.simulation as simulation_pkg
import optilap.track as track_pkg
import optilap.vehicle as vehicle_pkg


class PackageExportTests(unittest.TestCase):
    """Validate eager and lazy export paths of the public packages."""

    def test_top_level_exports_resolve(self) -> None:
        """Expose the solve entry point and its result type."""
        self.assertIsNotNone(optilap.solve_optimal_laptime)
        self.assertIsNotNone(optilap.OptimizationResult)

    def test_simulation_lazy_exports_resolve(self) -> None:
        """Resolve simulation exports that are provided lazily."""
        self.assertIsNotNone(simulation_pkg.OptimizationResult)
        self.assertIsNotNone(simulation_pkg.TrajectoryGuess)
        self.assertIsNotNone(simulation_pkg.WarmStartCache)
        self.assertIs(simulation_pkg.solve_optimal_laptime, optilap.solve_optimal_laptime)
        for name in simulation_pkg.__all__:
            with self.subTest(name=name):
                self.assertIsNotNone(getattr(simulation_pkg, name))

    def test_track_and_vehicle_exports_resolve(self) -> None:
        """Resolve track builders and vehicle models."""
        self.assertIsNotNone(track_pkg.TrackData)
        self.assertIsNotNone(track_pkg.build_oval_track)
        self.assertIsNotNone(vehicle_pkg.CurvilinearPointMassModel)
        self.assertIsNotNone(vehicle_pkg.build_point_mass_model)
        self.assertIsNotNone(analysis_pkg.compute_parameter_sensitivities)

    def test_lazy_export_raises_for_missing_symbol(self) -> None:
        """Raise ``AttributeError`` for unknown lazy export names."""
        with self.assertRaises(AttributeError):
            _ = simulation_pkg.__getattr__("does_not_exist")


if __name__ == "__main__":
    unittest.main()
