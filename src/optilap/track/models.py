"""Track data models and the track contract consumed by the transcription."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import numpy as np

from optilap.utils.exceptions import TrackDataError

MIN_TRACK_POINT_COUNT = 4


class TrackModel(Protocol):
    """Protocol for tracks consumed by dynamics models and the formulation."""

    def track_length(self) -> float:
        """Return total centerline length.

        Returns:
            Track length [m].
        """
        ...

    def left_track_limit(self, arc_length: float) -> float:
        """Return distance from centerline to the left boundary.

        Args:
            arc_length: Centerline arclength [m].

        Returns:
            Non-negative left half-width [m].
        """
        ...

    def right_track_limit(self, arc_length: float) -> float:
        """Return distance from centerline to the right boundary.

        Args:
            arc_length: Centerline arclength [m].

        Returns:
            Non-negative right half-width [m].
        """
        ...


@dataclass(frozen=True)
class TrackData:
    """Processed track representation in arc-length domain.

    Args:
        x: Global x-coordinate samples along the centerline [m].
        y: Global y-coordinate samples along the centerline [m].
        arc_length: Monotonic arc-length coordinate [m].
        heading: Unwrapped centerline heading angle [rad].
        curvature: Signed curvature along arc length, positive for left turns [1/m].
        left_width: Distance from centerline to the left boundary [m].
        right_width: Distance from centerline to the right boundary [m].
        closed: Whether the final sample coincides with the first one.
    """

    x: np.ndarray
    y: np.ndarray
    arc_length: np.ndarray
    heading: np.ndarray
    curvature: np.ndarray
    left_width: np.ndarray
    right_width: np.ndarray
    closed: bool = False

    @property
    def length(self) -> float:
        """Track length [m].

        Returns:
            Final arc-length value of the discretized track [m].
        """
        return float(self.arc_length[-1])

    def track_length(self) -> float:
        """Return total centerline length.

        Returns:
            Track length [m].
        """
        return self.length

    def left_track_limit(self, arc_length: float) -> float:
        """Interpolate the left half-width at an arclength.

        Args:
            arc_length: Centerline arclength [m].

        Returns:
            Left half-width [m].
        """
        return float(np.interp(self._wrap(arc_length), self.arc_length, self.left_width))

    def right_track_limit(self, arc_length: float) -> float:
        """Interpolate the right half-width at an arclength.

        Args:
            arc_length: Centerline arclength [m].

        Returns:
            Right half-width [m].
        """
        return float(np.interp(self._wrap(arc_length), self.arc_length, self.right_width))

    def curvature_at(self, arc_length: float) -> float:
        """Interpolate centerline curvature at an arclength.

        Args:
            arc_length: Centerline arclength [m].

        Returns:
            Signed curvature [1/m].
        """
        return float(np.interp(self._wrap(arc_length), self.arc_length, self.curvature))

    def centerline_pose(self, arc_length: float) -> tuple[float, float, float]:
        """Interpolate centerline position and heading at an arclength.

        Args:
            arc_length: Centerline arclength [m].

        Returns:
            Tuple ``(x, y, heading)`` in global coordinates.
        """
        s = self._wrap(arc_length)
        return (
            float(np.interp(s, self.arc_length, self.x)),
            float(np.interp(s, self.arc_length, self.y)),
            float(np.interp(s, self.arc_length, self.heading)),
        )

    def _wrap(self, arc_length: float) -> float:
        s = float(arc_length)
        if self.closed and s > self.length:
            return s % self.length
        return s

    def validate(self) -> None:
        """Validate consistency of all track arrays.

        Raises:
            optilap.utils.exceptions.TrackDataError: If array lengths, arc
                length monotonicity, widths, or numeric validity checks fail.
        """
        arrays = [
            self.x,
            self.y,
            self.arc_length,
            self.heading,
            self.curvature,
            self.left_width,
            self.right_width,
        ]
        size = arrays[0].size
        if size < MIN_TRACK_POINT_COUNT:
            msg = f"Track must contain at least {MIN_TRACK_POINT_COUNT} points"
            raise TrackDataError(msg)
        if any(arr.size != size for arr in arrays):
            msg = "All track arrays must have equal length"
            raise TrackDataError(msg)
        if np.any(~np.isfinite(self.arc_length)):
            msg = "Arc-length array contains non-finite values"
            raise TrackDataError(msg)
        if not np.all(np.diff(self.arc_length) > 0.0):
            msg = "Arc length must be strictly increasing"
            raise TrackDataError(msg)
        if np.any(self.left_width < 0.0) or np.any(self.right_width < 0.0):
            msg = "Track widths must be non-negative"
            raise TrackDataError(msg)
