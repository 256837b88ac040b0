"""Arclength partitions used as collocation meshes."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from optilap.utils.exceptions import InvalidMeshSpecification

MIN_MESH_POINT_COUNT = 2
CLOSED_START_TOLERANCE = 1e-12
CLOSED_END_TOLERANCE = 1e-10
OPEN_START_TOLERANCE = 1e-12


@dataclass(frozen=True)
class Mesh:
    """Ordered arclength partition of a track.

    Args:
        arc_length: Strictly increasing mesh arclengths ``s_0 < ... < s_{n-1}`` [m].
        track_length: Track length ``L`` [m].
        closed: Whether the track is a closed circuit. Closed meshes start at
            ``0`` and end strictly before ``L``; the remaining wrap interval
            connects the last point back to the first one.
    """

    arc_length: np.ndarray
    track_length: float
    closed: bool

    @property
    def n_points(self) -> int:
        """Number of mesh points."""
        return int(self.arc_length.size)

    @property
    def n_elements(self) -> int:
        """Number of collocation intervals, including the wrap interval."""
        return self.n_points if self.closed else self.n_points - 1

    @property
    def element_lengths(self) -> np.ndarray:
        """Interval lengths ``s_i - s_{i-1}`` for ``i = 1 .. n-1`` [m]."""
        return np.diff(self.arc_length)

    @property
    def wrap_length(self) -> float:
        """Length ``L - s_{n-1}`` of the wrap interval, zero for open meshes [m]."""
        if not self.closed:
            return 0.0
        return float(self.track_length - self.arc_length[-1])

    def validate(self) -> None:
        """Validate ordering and closed/open bound invariants.

        Raises:
            optilap.utils.exceptions.InvalidMeshSpecification: If the mesh is
                too short, non-monotonic or outside the track bounds.
        """
        _validate_arclength(self.arc_length, self.track_length, self.closed)


def _validate_arclength(arc_length: np.ndarray, track_length: float, closed: bool) -> None:
    """Validate raw mesh arclengths against the track length.

    Args:
        arc_length: Candidate mesh arclengths [m].
        track_length: Track length [m].
        closed: Whether the track is closed.

    Raises:
        optilap.utils.exceptions.InvalidMeshSpecification: If any invariant
            is violated.
    """
    if not np.isfinite(track_length) or track_length <= 0.0:
        msg = f"track_length must be positive and finite, got {track_length}"
        raise InvalidMeshSpecification(msg)
    if arc_length.ndim != 1 or arc_length.size < MIN_MESH_POINT_COUNT:
        msg = f"mesh must be one-dimensional with at least {MIN_MESH_POINT_COUNT} points"
        raise InvalidMeshSpecification(msg)
    if np.any(~np.isfinite(arc_length)):
        msg = "mesh arclengths must be finite"
        raise InvalidMeshSpecification(msg)
    if not np.all(np.diff(arc_length) > 0.0):
        msg = "mesh arclengths must be strictly increasing"
        raise InvalidMeshSpecification(msg)

    if closed:
        if abs(arc_length[0]) > CLOSED_START_TOLERANCE:
            msg = f"closed meshes must start at s=0, got {arc_length[0]}"
            raise InvalidMeshSpecification(msg)
        if arc_length[-1] > track_length - CLOSED_END_TOLERANCE:
            msg = (
                "closed meshes must end strictly before the track length, "
                f"got s={arc_length[-1]} for L={track_length}"
            )
            raise InvalidMeshSpecification(msg)
        return

    if arc_length[0] < -OPEN_START_TOLERANCE:
        msg = f"open meshes must start at s>=0, got {arc_length[0]}"
        raise InvalidMeshSpecification(msg)
    if arc_length[-1] > track_length:
        msg = f"open meshes must end at s<=L, got s={arc_length[-1]} for L={track_length}"
        raise InvalidMeshSpecification(msg)


def build_mesh_from_arclength(
    arc_length: np.ndarray,
    track_length: float,
    closed: bool,
) -> Mesh:
    """Build a mesh from an explicit arclength sequence.

    Args:
        arc_length: Mesh arclengths [m].
        track_length: Track length [m].
        closed: Whether the track is closed.

    Returns:
        Validated mesh. Closed meshes have ``s_0`` snapped to exactly ``0``.

    Raises:
        optilap.utils.exceptions.InvalidMeshSpecification: If the arclengths
            violate the mesh invariants.
    """
    values = np.array(arc_length, dtype=float)
    track_length = float(track_length)
    _validate_arclength(values, track_length, closed)
    if closed:
        values[0] = 0.0
    return Mesh(arc_length=values, track_length=track_length, closed=bool(closed))


def build_uniform_mesh(track_length: float, element_count: int, closed: bool) -> Mesh:
    """Build a uniform mesh over the full track.

    Args:
        track_length: Track length ``L`` [m].
        element_count: Number of intervals ``n``.
        closed: Whether the track is closed.

    Returns:
        Validated mesh: ``n`` points ``i L / n`` when closed, ``n + 1`` points
        ending exactly at ``L`` when open.

    Raises:
        optilap.utils.exceptions.InvalidMeshSpecification: If inputs are out of
            bounds.
    """
    if element_count < 1:
        msg = "element_count must be at least 1"
        raise InvalidMeshSpecification(msg)
    track_length = float(track_length)
    if closed:
        arc_length = track_length * np.arange(element_count, dtype=float) / element_count
    else:
        arc_length = np.linspace(0.0, track_length, element_count + 1, dtype=float)
        arc_length[-1] = track_length
    return build_mesh_from_arclength(arc_length, track_length, closed)


def build_segment_mesh(
    s_start: float,
    s_finish: float,
    element_count: int,
    track_length: float,
) -> Mesh:
    """Build a uniform open mesh on the sub-segment ``[s_start, s_finish]``.

    Args:
        s_start: Segment start arclength [m].
        s_finish: Segment end arclength [m].
        element_count: Number of intervals.
        track_length: Track length [m].

    Returns:
        Validated open mesh with ``element_count + 1`` points.

    Raises:
        optilap.utils.exceptions.InvalidMeshSpecification: If the segment is
            empty or outside the track.
    """
    if element_count < 1:
        msg = "element_count must be at least 1"
        raise InvalidMeshSpecification(msg)
    if s_finish <= s_start:
        msg = f"s_finish must be greater than s_start, got [{s_start}, {s_finish}]"
        raise InvalidMeshSpecification(msg)
    arc_length = np.linspace(float(s_start), float(s_finish), element_count + 1, dtype=float)
    return build_mesh_from_arclength(arc_length, track_length, closed=False)
