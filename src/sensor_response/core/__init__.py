"""
Core data models and types for the sensor response engine.
"""

from sensor_response.core.exceptions import (
    EmorBasisError,
    ImageLoadError,
    InvalidHistogramError,
    InvalidSensorRangeError,
    LutExportError,
    SensorResponseError,
)
from sensor_response.core.models import (
    BracketExposure,
    ExposureMapping,
    Histogram,
    ResponseCurve,
)
from sensor_response.core.types import EstimatorStatus, LutDirection, LutFormat

__all__ = [
    # Models
    "BracketExposure",
    "ExposureMapping",
    "Histogram",
    "ResponseCurve",
    # Types
    "EstimatorStatus",
    "LutDirection",
    "LutFormat",
    # Exceptions
    "EmorBasisError",
    "ImageLoadError",
    "InvalidHistogramError",
    "InvalidSensorRangeError",
    "LutExportError",
    "SensorResponseError",
]
