"""
Exceptions for the sensor response engine.

Provides a hierarchy of exceptions for invalid inputs:
- SensorResponseError (base)
  - InvalidHistogramError
  - EmorBasisError
  - InvalidSensorRangeError
  - LutExportError
  - ImageLoadError

Recoverable conditions (a skipped histogram pairing, an empty mapping set,
cancellation) are reported through return values, not exceptions.
"""

from typing import Any


class SensorResponseError(Exception):
    """Base exception for sensor response errors.

    Attributes:
        operation: Operation that failed.
        details: Additional error details.
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """Initialize the error.

        Args:
            message: Human-readable error message.
            operation: Operation that was being performed.
            details: Additional context as key-value pairs.
        """
        super().__init__(message)
        self.operation = operation
        self.details = details or {}

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.operation:
            parts.append(f"Operation: {self.operation}")
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"Details: {details_str}")
        return " | ".join(parts)


class InvalidHistogramError(SensorResponseError, ValueError):
    """Histogram pair cannot be compared.

    Raised when:
    - Bucket counts differ between the two histograms
    - An exposure value is not finite or not positive
    """


class EmorBasisError(SensorResponseError, ValueError):
    """EMOR basis tables are missing or malformed."""

    def __init__(self, message: str, path: str | None = None, **kwargs: Any):
        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        super().__init__(message, details=details, **kwargs)
        self.path = path


class InvalidSensorRangeError(SensorResponseError, ValueError):
    """Sensor floor/ceiling cannot be used to normalize a curve.

    Raised when the floor is not below the ceiling, or when the curve is
    flat between them.
    """

    def __init__(self, message: str, channel: int | None = None, **kwargs: Any):
        details = kwargs.pop("details", {})
        if channel is not None:
            details["channel"] = channel
        super().__init__(message, details=details, **kwargs)
        self.channel = channel


class LutExportError(SensorResponseError):
    """A LUT file could not be written or read."""

    def __init__(self, message: str, path: str | None = None, **kwargs: Any):
        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        super().__init__(message, details=details, **kwargs)
        self.path = path


class ImageLoadError(SensorResponseError):
    """A bracket image could not be opened or decoded."""

    def __init__(self, message: str, path: str | None = None, **kwargs: Any):
        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        super().__init__(message, details=details, **kwargs)
        self.path = path
