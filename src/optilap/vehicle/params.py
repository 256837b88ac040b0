"""Vehicle parameter definitions for the curvilinear point-mass model."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from optilap.utils.constants import STANDARD_AIR_DENSITY
from optilap.utils.exceptions import ConfigurationError


@dataclass(frozen=True)
class PointMassParameters:
    """Vehicle parameters for minimum-lap-time point-mass transcription.

    Args:
        mass: Vehicle mass [kg].
        friction_coefficient: Isotropic tire-road friction coefficient (-).
        drag_coefficient: Aerodynamic drag coefficient (-).
        lift_coefficient: Aerodynamic downforce coefficient (-).
        frontal_area: Frontal reference area [m^2].
        air_density: Air density [kg/m^3].
        max_drive_accel: Maximum forward tire acceleration [m/s^2].
        max_brake_accel: Maximum braking deceleration magnitude [m/s^2].
        min_speed: Lower speed bound keeping ``dt/ds`` finite [m/s].
        max_speed: Upper speed bound [m/s].
        max_heading_error: Bound on the heading error relative to the
            centerline [rad].
        max_path_curvature: Bound on the driven path curvature [1/m].
        power_smoothing: Smoothing width of the positive-power integrand [W].
    """

    mass: float = 660.0
    friction_coefficient: float = 1.6
    drag_coefficient: float = 0.9
    lift_coefficient: float = 3.0
    frontal_area: float = 1.5
    air_density: float = STANDARD_AIR_DENSITY
    max_drive_accel: float = 8.0
    max_brake_accel: float = 16.0
    min_speed: float = 1.0
    max_speed: float = 100.0
    max_heading_error: float = 1.0
    max_path_curvature: float = 0.5
    power_smoothing: float = 100.0

    def validate(self) -> None:
        """Validate configuration values before transcription.

        Raises:
            optilap.utils.exceptions.ConfigurationError: If any parameter
                violates its defined bound.
        """
        if self.mass <= 0.0:
            msg = "mass must be positive"
            raise ConfigurationError(msg)
        if self.friction_coefficient <= 0.0:
            msg = "friction_coefficient must be positive"
            raise ConfigurationError(msg)
        if self.drag_coefficient < 0.0:
            msg = "drag_coefficient must be non-negative"
            raise ConfigurationError(msg)
        if self.lift_coefficient < 0.0:
            msg = "lift_coefficient must be non-negative"
            raise ConfigurationError(msg)
        if self.frontal_area <= 0.0:
            msg = "frontal_area must be positive"
            raise ConfigurationError(msg)
        if self.air_density <= 0.0:
            msg = "air_density must be positive"
            raise ConfigurationError(msg)
        if self.max_drive_accel <= 0.0 or self.max_brake_accel <= 0.0:
            msg = "max_drive_accel and max_brake_accel must be positive"
            raise ConfigurationError(msg)
        if self.min_speed <= 0.0:
            msg = "min_speed must be positive"
            raise ConfigurationError(msg)
        if self.max_speed <= self.min_speed:
            msg = "max_speed must be greater than min_speed"
            raise ConfigurationError(msg)
        if not 0.0 < self.max_heading_error < 0.5 * np.pi:
            msg = "max_heading_error must be in (0, pi/2)"
            raise ConfigurationError(msg)
        if self.max_path_curvature <= 0.0:
            msg = "max_path_curvature must be positive"
            raise ConfigurationError(msg)
        if self.power_smoothing <= 0.0:
            msg = "power_smoothing must be positive"
            raise ConfigurationError(msg)
