"""
Sensor Response - camera transfer function estimation from bracketed exposures.

This package provides:

- Bracket image loading with Exif exposure extraction
- Exposure mappings from histograms of bracketed images
- EMOR basis-curve fitting by gradient descent, with progress and cancellation
- 1D LUT construction with sensor floor/ceiling normalization
- .spi1d and .cube LUT export
- Diagnostic plots of the fit
"""

__version__ = "0.3.0"

# Core models
from sensor_response.core.models import (
    BracketExposure,
    ExposureMapping,
    Histogram,
    ResponseCurve,
)
from sensor_response.core.types import EstimatorStatus, LutDirection, LutFormat
from sensor_response.core.exceptions import (
    EmorBasisError,
    ImageLoadError,
    InvalidHistogramError,
    InvalidSensorRangeError,
    LutExportError,
    SensorResponseError,
)

# Configuration
from sensor_response.config import Settings, configure, get_settings

# Curves
from sensor_response.curves import (
    EmorBasis,
    EmorEstimator,
    EstimateSnapshot,
    ExposureMappingBuilder,
    Lut1D,
    ResponseVisualizer,
    adjust_lut,
    build_exposure_mappings,
    build_transfer_lut,
    estimate_emor,
    factors_to_curve,
    get_default_basis,
    load_lut,
    save_lut,
)

# Images
from sensor_response.imaging import load_bracket_exposure, load_bracket_set

# Workflow
from sensor_response.workflow import TransferFunctionEstimation, TransferFunctionResult

__all__ = [
    "__version__",
    # Core
    "BracketExposure",
    "ExposureMapping",
    "Histogram",
    "ResponseCurve",
    "EstimatorStatus",
    "LutDirection",
    "LutFormat",
    "EmorBasisError",
    "ImageLoadError",
    "InvalidHistogramError",
    "InvalidSensorRangeError",
    "LutExportError",
    "SensorResponseError",
    # Config
    "Settings",
    "configure",
    "get_settings",
    # Curves
    "EmorBasis",
    "EmorEstimator",
    "EstimateSnapshot",
    "ExposureMappingBuilder",
    "Lut1D",
    "ResponseVisualizer",
    "adjust_lut",
    "build_exposure_mappings",
    "build_transfer_lut",
    "estimate_emor",
    "factors_to_curve",
    "get_default_basis",
    "load_lut",
    "save_lut",
    # Images
    "load_bracket_exposure",
    "load_bracket_set",
    # Workflow
    "TransferFunctionEstimation",
    "TransferFunctionResult",
]
