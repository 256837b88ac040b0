"""Utility helpers."""

from optilap.utils.constants import GRAVITY, SMALL_EPS, STANDARD_AIR_DENSITY, UNBOUNDED
from optilap.utils.logging import configure_logging

__all__ = ["GRAVITY", "SMALL_EPS", "STANDARD_AIR_DENSITY", "UNBOUNDED", "configure_logging"]
