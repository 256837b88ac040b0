"""Vehicle dynamics models consumed by the transcription engine."""

from optilap.vehicle.model_api import DynamicsModel, DynamicsModelBase
from optilap.vehicle.params import PointMassParameters
from optilap.vehicle.point_mass import CurvilinearPointMassModel, build_point_mass_model

__all__ = [
    "CurvilinearPointMassModel",
    "DynamicsModel",
    "DynamicsModelBase",
    "PointMassParameters",
    "build_point_mass_model",
]
