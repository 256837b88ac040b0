"""Custom exceptions for optimal lap time computation."""


class LapSimError(Exception):
    """Base exception for simulation errors."""


class ConfigurationError(LapSimError):
    """Raised when model or solver configuration is invalid."""


class TrackDataError(LapSimError):
    """Raised when track data cannot be parsed or validated."""


class InvalidMeshSpecification(ConfigurationError):
    """Raised when mesh arclengths are non-monotonic or out of track bounds."""


class InvalidInitialCondition(ConfigurationError):
    """Raised when state, algebraic, or control vectors have the wrong size."""


class UnsupportedControlChannelType(ConfigurationError):
    """Raised when a control channel is not one of the supported variants."""


class OptimizationDidNotConverge(LapSimError):
    """Raised when the NLP solver terminates outside its success class.

    Args:
        message: Human-readable failure description.
        status: Solver-specific termination status.
        solver_message: Verbatim termination message reported by the solver.
    """

    def __init__(self, message: str, status: int | str | None = None, solver_message: str = ""):
        super().__init__(message)
        self.status = status
        self.solver_message = solver_message
