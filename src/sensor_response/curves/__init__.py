"""
Response curve algebra, EMOR fitting, and LUT export.
"""

from sensor_response.curves.algebra import (
    invert_monotonic,
    is_non_decreasing,
    sample_at_x,
    sample_at_y,
    sample_uniform,
    walk_min_slope,
)
from sensor_response.curves.emor import (
    EmorBasis,
    factors_to_curve,
    get_default_basis,
    load_basis,
)
from sensor_response.curves.mapping import (
    ExposureMappingBuilder,
    build_exposure_mappings,
    select_exposure_pairs,
)
from sensor_response.curves.estimator import (
    EmorEstimator,
    EstimateSnapshot,
    estimate_emor,
    mapping_weight,
)
from sensor_response.curves.lut import (
    Lut1D,
    adjust_lut,
    build_transfer_lut,
    normalize_to_sensor_range,
)
from sensor_response.curves.export import (
    CubeExporter,
    LutExporter,
    Spi1DExporter,
    load_lut,
    save_lut,
)
from sensor_response.curves.visualization import ResponseVisualizer

__all__ = [
    # Algebra
    "invert_monotonic",
    "is_non_decreasing",
    "sample_at_x",
    "sample_at_y",
    "sample_uniform",
    "walk_min_slope",
    # EMOR
    "EmorBasis",
    "factors_to_curve",
    "get_default_basis",
    "load_basis",
    # Mapping
    "ExposureMappingBuilder",
    "build_exposure_mappings",
    "select_exposure_pairs",
    # Estimator
    "EmorEstimator",
    "EstimateSnapshot",
    "estimate_emor",
    "mapping_weight",
    # LUT
    "Lut1D",
    "adjust_lut",
    "build_transfer_lut",
    "normalize_to_sensor_range",
    # Export
    "CubeExporter",
    "LutExporter",
    "Spi1DExporter",
    "load_lut",
    "save_lut",
    # Visualization
    "ResponseVisualizer",
]
