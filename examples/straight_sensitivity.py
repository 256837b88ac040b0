"""Compute lap-time parameter sensitivities on an open straight."""

from __future__ import annotations

import importlib.util
import logging
from pathlib import Path

import matplotlib.pyplot as plt

from optilap import solve_optimal_laptime
from optilap.simulation import build_optimal_laptime_config, build_uniform_mesh
from optilap.track import build_straight_track
from optilap.utils import configure_logging
from optilap.vehicle import build_point_mass_model

STRAIGHT_LENGTH = 400.0
ELEMENT_COUNT = 20


def main() -> None:
    """Solve the straight with sensitivities and export a table plus bar chart."""
    configure_logging(logging.INFO)
    logger = logging.getLogger("straight_sensitivity")

    project_root = Path(__file__).resolve().parents[1]
    output_dir = project_root / "examples" / "output" / "straight_sensitivity"
    output_dir.mkdir(parents=True, exist_ok=True)

    method = "autodiff" if importlib.util.find_spec("torch") is not None else "finite_difference"
    track = build_straight_track(length=STRAIGHT_LENGTH)
    model = build_point_mass_model(track)
    mesh = build_uniform_mesh(track.track_length(), ELEMENT_COUNT, closed=False)
    config = build_optimal_laptime_config(
        closed=False,
        compute_sensitivity=True,
        sensitivity_method=method,
    )

    result = solve_optimal_laptime(model, mesh, config)
    logger.info("straight time: %.3f s", result.lap_time)

    table = result.sensitivities.to_dataframe()
    table.to_csv(output_dir / "lap_time_sensitivities.csv", index=False)
    for row in table.itertuples():
        logger.info("d(lap time)/d(%s) = %.4e (%s)", row.parameter, row.lap_time_sensitivity, method)

    fig, axis = plt.subplots(figsize=(8.0, 4.0), constrained_layout=True)
    axis.barh(table["parameter"], table["lap_time_sensitivity"])
    axis.set_xlabel("Lap-time sensitivity [s per unit]")
    axis.set_title(f"Straight of {STRAIGHT_LENGTH:.0f} m ({method})")
    axis.grid(alpha=0.35, axis="x")
    fig.savefig(output_dir / "lap_time_sensitivities.png", dpi=160)
    plt.close(fig)

    logger.info("Sensitivity artifacts written to %s", output_dir)


if __name__ == "__main__":
    main()
