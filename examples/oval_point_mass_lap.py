"""Solve a minimum-time lap of the point-mass model on a synthetic oval."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import matplotlib.pyplot as plt

from optilap import OptimizationResult, solve_optimal_laptime
from optilap.simulation import (
    SolverRuntime,
    WarmStartCache,
    build_optimal_laptime_config,
    build_uniform_mesh,
)
from optilap.track import build_oval_track
from optilap.utils import configure_logging
from optilap.vehicle import PointMassParameters, build_point_mass_model

ELEMENT_COUNT = 48
WARM_START_KEY = "oval"


def _example_vehicle_parameters() -> PointMassParameters:
    """Create explicit point-mass parameters for the oval example.

    Returns:
        Vehicle parameter set for the oval runs.
    """
    return PointMassParameters(
        mass=798.0,
        friction_coefficient=1.7,
        drag_coefficient=0.90,
        lift_coefficient=3.20,
        frontal_area=1.50,
        max_drive_accel=9.0,
        max_brake_accel=18.0,
    )


def _export_lap_plots(results: dict[str, OptimizationResult], path: Path) -> None:
    """Export speed traces and racing lines of all formulations.

    Args:
        results: Formulation-name keyed optimization results.
        path: Output path for the figure.
    """
    fig, (speed_axis, line_axis) = plt.subplots(1, 2, figsize=(12.0, 4.8), constrained_layout=True)

    for name, result in results.items():
        speed_axis.plot(result.arc_length, result.state_column("u"), lw=2.0, label=name)
        line_axis.plot(result.x, result.y, lw=1.5, label=name)

    speed_axis.set_xlabel("Arc length [m]")
    speed_axis.set_ylabel("Speed [m/s]")
    speed_axis.grid(alpha=0.35)
    speed_axis.legend()
    line_axis.set_xlabel("x [m]")
    line_axis.set_ylabel("y [m]")
    line_axis.set_aspect("equal")
    line_axis.grid(alpha=0.35)
    fig.suptitle("Point-mass minimum-time lap on an oval")

    fig.savefig(path, dpi=160)
    plt.close(fig)


def main() -> None:
    """Solve the oval in both formulations and export plots plus a summary."""
    configure_logging(logging.INFO)
    logger = logging.getLogger("oval_point_mass_lap")

    project_root = Path(__file__).resolve().parents[1]
    output_dir = project_root / "examples" / "output" / "oval_point_mass"
    output_dir.mkdir(parents=True, exist_ok=True)

    track = build_oval_track()
    model = build_point_mass_model(track, _example_vehicle_parameters())
    mesh = build_uniform_mesh(track.track_length(), ELEMENT_COUNT, closed=True)
    runtime = SolverRuntime(verbosity=1)
    cache = WarmStartCache()

    direct = solve_optimal_laptime(
        model,
        mesh,
        build_optimal_laptime_config(save_warm_start=True, runtime=runtime),
        warm_start_cache=cache,
        warm_start_key=WARM_START_KEY,
    )
    logger.info("direct lap time: %.3f s (%d iterations)", direct.lap_time, direct.iterations)

    rate = solve_optimal_laptime(
        model,
        mesh,
        build_optimal_laptime_config(formulation="rate", warm_start=True, runtime=runtime),
        warm_start_cache=cache,
        warm_start_key=WARM_START_KEY,
    )
    logger.info("rate lap time: %.3f s (%d iterations)", rate.lap_time, rate.iterations)

    results = {"direct": direct, "rate": rate}
    _export_lap_plots(results, output_dir / "oval_lap.png")
    summary = {
        name: {
            "lap_time": result.lap_time,
            "objective_value": result.objective_value,
            "iterations": result.iterations,
            **result.integral_quantities,
        }
        for name, result in results.items()
    }
    (output_dir / "summary.json").write_text(json.dumps(summary, indent=2), encoding="utf-8")

    logger.info("Oval artifacts written to %s", output_dir)


if __name__ == "__main__":
    main()
