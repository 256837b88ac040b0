"""Post-solve analysis tools."""

from optilap.analysis.sensitivity import ParameterSensitivities, compute_parameter_sensitivities

__all__ = [
    "ParameterSensitivities",
    "compute_parameter_sensitivities",
]
