"""Progress-line helpers for iterative NLP solves."""

from __future__ import annotations

import sys

import numpy as np

DEFAULT_PROGRESS_BAR_WIDTH = 30
DEFAULT_ITERATION_REPORT_INTERVAL = 5


def render_progress_line(
    *,
    prefix: str,
    fraction: float,
    suffix: str,
    final: bool = False,
    bar_width: int = DEFAULT_PROGRESS_BAR_WIDTH,
) -> None:
    """Render one in-place text progress line to stderr.

    Args:
        prefix: Prefix shown before the progress bar.
        fraction: Share of the iteration budget used, clipped to ``[0, 1]``.
        suffix: Additional text shown after the percentage.
        final: If ``True``, end the line with a newline.
        bar_width: Number of characters used by the progress bar.
    """
    clamped = float(np.clip(fraction, 0.0, 1.0))
    filled = int(clamped * bar_width)
    bar = "=" * filled + "." * (bar_width - filled)
    end = "\n" if final else ""
    print(
        f"\r{prefix} [{bar}] {100.0 * clamped:5.1f}% {suffix}",
        end=end,
        file=sys.stderr,
        flush=True,
    )


def should_report_iteration(
    iteration: int,
    max_iterations: int,
    interval: int = DEFAULT_ITERATION_REPORT_INTERVAL,
) -> bool:
    """Return whether an iteration should refresh the progress line.

    Args:
        iteration: Completed iteration count (1-based).
        max_iterations: Iteration budget of the solve.
        interval: Refresh period in iterations.

    Returns:
        ``True`` for the first iteration, every ``interval``-th iteration and
        the last budgeted iteration.
    """
    if iteration <= 1 or iteration >= max_iterations:
        return True
    return iteration % max(interval, 1) == 0
