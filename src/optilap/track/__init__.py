"""Track models, synthetic layout generation, and geometry processing."""

from optilap.track.geometry import build_track_data
from optilap.track.layouts import (
    build_circular_track,
    build_oval_track,
    build_straight_track,
)
from optilap.track.models import TrackData, TrackModel

__all__ = [
    "TrackData",
    "TrackModel",
    "build_circular_track",
    "build_oval_track",
    "build_straight_track",
    "build_track_data",
]
