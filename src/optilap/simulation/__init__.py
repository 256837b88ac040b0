"""Transcription, NLP solve and decoding of minimum-lap-time problems."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from optilap.simulation.config import (
    InitialCondition,
    IntegralConstraint,
    OptimalLaptimeConfig,
    SensitivityNumerics,
    SolverNumerics,
    SolverRuntime,
    TranscriptionNumerics,
    build_initial_condition,
    build_optimal_laptime_config,
)
from optilap.simulation.controls import (
    DontOptimize,
    FullMesh,
    Hypermesh,
    create_dont_optimize,
    create_full_mesh,
    create_hypermesh,
)
from optilap.simulation.mesh import (
    Mesh,
    build_mesh_from_arclength,
    build_segment_mesh,
    build_uniform_mesh,
)

if TYPE_CHECKING:
    from optilap.simulation.formulation import TrajectoryGuess
    from optilap.simulation.postprocess import OptimizationResult
    from optilap.simulation.warm_start import WarmStartCache

__all__ = [
    "DontOptimize",
    "FullMesh",
    "Hypermesh",
    "InitialCondition",
    "IntegralConstraint",
    "Mesh",
    "OptimalLaptimeConfig",
    "OptimizationResult",
    "SensitivityNumerics",
    "SolverNumerics",
    "SolverRuntime",
    "TrajectoryGuess",
    "TranscriptionNumerics",
    "WarmStartCache",
    "build_initial_condition",
    "build_mesh_from_arclength",
    "build_optimal_laptime_config",
    "build_segment_mesh",
    "build_uniform_mesh",
    "create_dont_optimize",
    "create_full_mesh",
    "create_hypermesh",
    "solve_optimal_laptime",
]


def __getattr__(name: str) -> Any:
    """Resolve lazily imported symbols for public package exports.

    Args:
        name: Attribute name requested from the package namespace.

    Returns:
        Exported class or function matching ``name``.

    Raises:
        AttributeError: If ``name`` is not part of the public export surface.
    """
    if name == "OptimizationResult":
        from optilap.simulation.postprocess import OptimizationResult

        return OptimizationResult
    if name == "TrajectoryGuess":
        from optilap.simulation.formulation import TrajectoryGuess

        return TrajectoryGuess
    if name == "WarmStartCache":
        from optilap.simulation.warm_start import WarmStartCache

        return WarmStartCache
    if name == "solve_optimal_laptime":
        from optilap.simulation.runner import solve_optimal_laptime

        return solve_optimal_laptime
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
