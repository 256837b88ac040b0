"""Synthetic track layout builders for physics-focused test scenarios."""

from __future__ import annotations

import numpy as np

from optilap.track.geometry import build_track_data
from optilap.track.models import MIN_TRACK_POINT_COUNT, TrackData
from optilap.utils.exceptions import TrackDataError

DEFAULT_STRAIGHT_LENGTH = 1_000.0
DEFAULT_STRAIGHT_SAMPLE_COUNT = 501
DEFAULT_CIRCLE_RADIUS = 50.0
DEFAULT_CIRCLE_SAMPLE_COUNT = 721
DEFAULT_OVAL_STRAIGHT_LENGTH = 200.0
DEFAULT_OVAL_RADIUS = 40.0
DEFAULT_OVAL_SAMPLE_COUNT = 801
DEFAULT_HALF_WIDTH = 5.0


def _validate_positive(name: str, value: float) -> None:
    """Validate that a scalar parameter is strictly positive.

    Args:
        name: Parameter name used in error messages.
        value: Parameter value to validate.

    Raises:
        optilap.utils.exceptions.TrackDataError: If ``value`` is not
            strictly positive.
    """
    if value <= 0.0:
        msg = f"{name} must be positive"
        raise TrackDataError(msg)


def _validate_sample_count(sample_count: int) -> None:
    """Validate that sample count is sufficient for geometry derivatives.

    Args:
        sample_count: Number of unique centerline samples.

    Raises:
        optilap.utils.exceptions.TrackDataError: If ``sample_count`` is
            below the minimum required count.
    """
    if sample_count < MIN_TRACK_POINT_COUNT:
        msg = f"sample_count must be at least {MIN_TRACK_POINT_COUNT}"
        raise TrackDataError(msg)


def _closed_loop(points: np.ndarray) -> np.ndarray:
    """Append the first point to the end to create a closed loop.

    Args:
        points: One-dimensional point coordinate array.

    Returns:
        Closed-loop coordinate array with repeated start point at the end.
    """
    return np.concatenate([points, points[:1]])


def build_straight_track(
    length: float = DEFAULT_STRAIGHT_LENGTH,
    sample_count: int = DEFAULT_STRAIGHT_SAMPLE_COUNT,
    half_width: float = DEFAULT_HALF_WIDTH,
) -> TrackData:
    """Build a straight open track with constant width.

    Args:
        length: Total straight-line track length [m].
        sample_count: Number of centerline samples.
        half_width: Distance from centerline to each boundary [m].

    Returns:
        Validated straight ``TrackData`` representation.

    Raises:
        optilap.utils.exceptions.TrackDataError: If geometric input values are
            outside valid bounds.
    """
    _validate_positive("length", length)
    _validate_positive("half_width", half_width)
    _validate_sample_count(sample_count)

    x = np.linspace(0.0, float(length), int(sample_count), dtype=float)
    y = np.zeros_like(x)
    width = np.full_like(x, float(half_width), dtype=float)

    return build_track_data(x=x, y=y, left_width=width, right_width=width.copy())


def build_circular_track(
    radius: float = DEFAULT_CIRCLE_RADIUS,
    sample_count: int = DEFAULT_CIRCLE_SAMPLE_COUNT,
    clockwise: bool = False,
    half_width: float = DEFAULT_HALF_WIDTH,
) -> TrackData:
    """Build a circular closed-loop track with constant curvature.

    Args:
        radius: Circle radius [m].
        sample_count: Number of unique samples around the circle.
        clockwise: Whether to traverse the circle clockwise.
        half_width: Distance from centerline to each boundary [m].

    Returns:
        Validated circular ``TrackData`` representation.

    Raises:
        optilap.utils.exceptions.TrackDataError: If geometric input values are
            outside valid bounds.
    """
    _validate_positive("radius", radius)
    _validate_positive("half_width", half_width)
    _validate_sample_count(sample_count)

    angle = np.linspace(0.0, 2.0 * np.pi, int(sample_count), endpoint=False, dtype=float)
    if clockwise:
        angle = -angle

    x = _closed_loop(float(radius) * np.cos(angle))
    y = _closed_loop(float(radius) * np.sin(angle))
    width = np.full_like(x, float(half_width), dtype=float)

    return build_track_data(x=x, y=y, left_width=width, right_width=width.copy(), closed=True)


def build_oval_track(
    straight_length: float = DEFAULT_OVAL_STRAIGHT_LENGTH,
    radius: float = DEFAULT_OVAL_RADIUS,
    sample_count: int = DEFAULT_OVAL_SAMPLE_COUNT,
    half_width: float = DEFAULT_HALF_WIDTH,
) -> TrackData:
    """Build a counter-clockwise stadium oval with two straights and two hairpins.

    Args:
        straight_length: Length of each straight [m].
        radius: Radius of both semicircular ends [m].
        sample_count: Approximate number of unique samples along the lap.
        half_width: Distance from centerline to each boundary [m].

    Returns:
        Validated oval ``TrackData`` representation.

    Raises:
        optilap.utils.exceptions.TrackDataError: If geometric input values are
            outside valid bounds.
    """
    _validate_positive("straight_length", straight_length)
    _validate_positive("radius", radius)
    _validate_positive("half_width", half_width)
    _validate_sample_count(sample_count)

    lap_length = 2.0 * straight_length + 2.0 * np.pi * radius
    s = np.linspace(0.0, lap_length, int(sample_count), endpoint=False, dtype=float)
    x = np.empty_like(s)
    y = np.empty_like(s)
    arc = np.pi * radius
    for idx, value in enumerate(s):
        if value < straight_length:
            x[idx], y[idx] = value, -radius
        elif value < straight_length + arc:
            phi = (value - straight_length) / radius - 0.5 * np.pi
            x[idx] = straight_length + radius * np.cos(phi)
            y[idx] = radius * np.sin(phi)
        elif value < 2.0 * straight_length + arc:
            x[idx], y[idx] = straight_length - (value - straight_length - arc), radius
        else:
            phi = (value - 2.0 * straight_length - arc) / radius + 0.5 * np.pi
            x[idx] = radius * np.cos(phi)
            y[idx] = radius * np.sin(phi)

    x = _closed_loop(x)
    y = _closed_loop(y)
    width = np.full_like(x, float(half_width), dtype=float)

    return build_track_data(x=x, y=y, left_width=width, right_width=width.copy(), closed=True)
