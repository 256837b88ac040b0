"""Track geometry processing utilities."""

from __future__ import annotations

import numpy as np
import numpy.typing as npt

from optilap.track.models import TrackData
from optilap.utils.constants import SMALL_EPS

FloatArray = npt.NDArray[np.float64]


def cumulative_arc_length(x: FloatArray, y: FloatArray) -> FloatArray:
    """Compute cumulative arc length from Cartesian points.

    Args:
        x: Track x-coordinate samples [m].
        y: Track y-coordinate samples [m].

    Returns:
        Cumulative arc-length samples [m].
    """
    dx = np.diff(x)
    dy = np.diff(y)
    ds = np.hypot(dx, dy)
    s = np.zeros(x.shape[0], dtype=np.float64)
    s[1:] = np.cumsum(ds)
    return np.asarray(s, dtype=np.float64)


def _periodic_derivative(values: FloatArray, arc_length: FloatArray) -> FloatArray:
    """Differentiate a closed-loop signal with periodic central differences.

    Args:
        values: Samples whose last entry repeats the first one.
        arc_length: Monotonic arc-length samples [m].

    Returns:
        Derivative samples with the seam value repeated at the end.
    """
    unique = values[:-1]
    ds = np.diff(arc_length)
    forward = np.roll(unique, -1) - unique
    backward = unique - np.roll(unique, 1)
    ds_backward = np.roll(ds, 1)
    derivative = (forward / ds * ds_backward + backward / ds_backward * ds) / (ds + ds_backward)
    return np.concatenate([derivative, derivative[:1]])


def heading_from_xy(
    x: FloatArray,
    y: FloatArray,
    arc_length: FloatArray,
    closed: bool = False,
) -> FloatArray:
    """Compute unwrapped heading angle along the track.

    Args:
        x: Track x-coordinate samples [m].
        y: Track y-coordinate samples [m].
        arc_length: Monotonic arc-length samples [m].
        closed: Use periodic differences across the start/finish seam.

    Returns:
        Heading angle samples [rad].
    """
    if closed:
        dx = _periodic_derivative(x, arc_length)
        dy = _periodic_derivative(y, arc_length)
    else:
        dx = np.gradient(x, arc_length)
        dy = np.gradient(y, arc_length)
    return np.asarray(np.unwrap(np.arctan2(dy, dx)), dtype=np.float64)


def curvature_from_xy(
    x: FloatArray,
    y: FloatArray,
    arc_length: FloatArray,
    closed: bool = False,
) -> FloatArray:
    """Compute signed curvature from first and second derivatives.

    Args:
        x: Track x-coordinate samples [m].
        y: Track y-coordinate samples [m].
        arc_length: Monotonic arc-length samples [m].
        closed: Use periodic differences across the start/finish seam.

    Returns:
        Signed curvature samples, positive for left turns [1/m].
    """
    derivative = _periodic_derivative if closed else np.gradient
    dx_ds = derivative(x, arc_length)
    dy_ds = derivative(y, arc_length)
    d2x_ds2 = derivative(dx_ds, arc_length)
    d2y_ds2 = derivative(dy_ds, arc_length)

    denominator = np.power(dx_ds * dx_ds + dy_ds * dy_ds, 1.5)
    denominator = np.maximum(denominator, SMALL_EPS)
    numerator = dx_ds * d2y_ds2 - dy_ds * d2x_ds2
    return np.asarray(numerator / denominator, dtype=np.float64)


def build_track_data(
    x: FloatArray,
    y: FloatArray,
    left_width: FloatArray,
    right_width: FloatArray,
    closed: bool = False,
) -> TrackData:
    """Build a complete ``TrackData`` object from raw coordinate arrays.

    Args:
        x: Track x-coordinate samples [m].
        y: Track y-coordinate samples [m].
        left_width: Left half-width samples [m].
        right_width: Right half-width samples [m].
        closed: Whether the last sample repeats the first one.

    Returns:
        Validated track data in arc-length domain.

    Raises:
        optilap.utils.exceptions.TrackDataError: If generated track arrays
            are inconsistent or numerically invalid.
    """
    arc_length = cumulative_arc_length(x, y)
    heading = heading_from_xy(x, y, arc_length, closed=closed)
    curvature = curvature_from_xy(x, y, arc_length, closed=closed)

    data = TrackData(
        x=x,
        y=y,
        arc_length=arc_length,
        heading=heading,
        curvature=curvature,
        left_width=left_width,
        right_width=right_width,
        closed=closed,
    )
    data.validate()
    return data
