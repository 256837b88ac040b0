"""Minimum-lap-time trajectory optimization package."""

from optilap.simulation.postprocess import OptimizationResult
from optilap.simulation.runner import solve_optimal_laptime

__all__ = [
    "OptimizationResult",
    "solve_optimal_laptime",
]
