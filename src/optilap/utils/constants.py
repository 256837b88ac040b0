"""Physical and numerical constants used across the library."""

GRAVITY: float = 9.81
STANDARD_AIR_DENSITY: float = 1.225
SMALL_EPS: float = 1e-9
UNBOUNDED: float = 1.0e24
