"""
Bracket image loading.
"""

from sensor_response.imaging.brackets import (
    exposure_from_exif,
    load_bracket_exposure,
    load_bracket_set,
)

__all__ = [
    "exposure_from_exif",
    "load_bracket_exposure",
    "load_bracket_set",
]
