class MeasurementError(Exception):
    """Base class for errors raised by the measurement engine."""


class InvalidObservationError(MeasurementError, ValueError):
    """Depth frame, mask or ROI is malformed (shape mismatch, empty ROI, ...)."""


class InvalidStateError(MeasurementError, RuntimeError):
    """Operation is not allowed in the current measurement state."""
