"""
Bracket image loading.

Turns image files into :class:`BracketExposure` values: one histogram per
channel plus the relative exposure computed from Exif shutter time,
aperture and ISO.
"""

import io
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from sensor_response.config import get_settings
from sensor_response.core.exceptions import ImageLoadError
from sensor_response.core.logging import get_logger
from sensor_response.core.models import BracketExposure, Histogram

logger = get_logger(__name__)

ImageSource = Union[str, Path, bytes, Image.Image]

# Exif tag ids
EXIF_IFD = 0x8769
EXPOSURE_TIME = 0x829A
F_NUMBER = 0x829D
ISO_SPEED = 0x8827

_SIXTEEN_BIT_MODES = ("I;16", "I;16B", "I;16L", "I")


def _as_float(value: Any) -> Optional[float]:
    """Exif numbers arrive as ints, rationals or one-element tuples."""
    if isinstance(value, (tuple, list)):
        if not value:
            return None
        value = value[0]
    try:
        result = float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    return result if np.isfinite(result) and result > 0.0 else None


def exposure_from_exif(tags: Mapping[int, Any]) -> Optional[float]:
    """Relative light gathered by an exposure.

    Computed as ``exposure_time * iso / f_number**2``. Aperture and ISO
    default to 1 when absent, so a bracket that only varies shutter time
    still gets usable ratios. Without an exposure time there is no
    exposure value.

    Args:
        tags: Exif tags keyed by numeric tag id.

    Returns:
        The relative exposure, or None if it cannot be computed.
    """
    exposure_time = _as_float(tags.get(EXPOSURE_TIME))
    if exposure_time is None:
        return None
    f_number = _as_float(tags.get(F_NUMBER)) or 1.0
    iso = _as_float(tags.get(ISO_SPEED)) or 1.0
    return exposure_time * iso / (f_number * f_number)


def _read_exif(img: Image.Image) -> dict[int, Any]:
    exif = img.getexif()
    tags = dict(exif)
    tags.update(exif.get_ifd(EXIF_IFD))
    return tags


def _channel_arrays(img: Image.Image) -> list[np.ndarray]:
    """Per-channel pixel values normalized to [0, 1]."""
    if img.mode in _SIXTEEN_BIT_MODES:
        arr = np.asarray(img, dtype=np.float64) / 65535.0
        return [arr]
    if img.mode == "L":
        return [np.asarray(img, dtype=np.float64) / 255.0]
    if img.mode != "RGB":
        img = img.convert("RGB")
    arr = np.asarray(img, dtype=np.float64) / 255.0
    return [arr[:, :, c] for c in range(arr.shape[2])]


def _open(source: ImageSource) -> tuple[Image.Image, Optional[str]]:
    if isinstance(source, Image.Image):
        return source, getattr(source, "filename", None) or None
    label = str(source) if isinstance(source, (str, Path)) else None
    try:
        if isinstance(source, bytes):
            img = Image.open(io.BytesIO(source))
        else:
            img = Image.open(source)
        img.load()
    except FileNotFoundError as e:
        raise ImageLoadError("Unable to access image file", path=label) from e
    except (UnidentifiedImageError, OSError) as e:
        raise ImageLoadError("Unrecognized image file format", path=label) from e
    return img, label


def load_bracket_exposure(
    source: ImageSource,
    exposure: Optional[float] = None,
    bucket_count: Optional[int] = None,
) -> BracketExposure:
    """Load one bracket image.

    Args:
        source: Image path, encoded bytes or PIL image.
        exposure: Explicit relative exposure. Overrides Exif data.
        bucket_count: Histogram buckets per channel. Defaults to settings.

    Returns:
        BracketExposure with one histogram per channel.

    Raises:
        ImageLoadError: If the image cannot be opened or decoded.
    """
    bucket_count = bucket_count or get_settings().mapping.histogram_buckets
    img, label = _open(source)

    if exposure is None:
        exposure = exposure_from_exif(_read_exif(img))
        if exposure is None:
            logger.warning(
                f"Image lacks the Exif data needed to compute its exposure: {label}. "
                "It will not take part in transfer function estimation."
            )

    histograms = tuple(
        Histogram.from_values(channel, bucket_count=bucket_count)
        for channel in _channel_arrays(img)
    )
    return BracketExposure(histograms=histograms, exposure=exposure, source=label)


def load_bracket_set(
    sources: Sequence[ImageSource],
    exposures: Optional[Sequence[Optional[float]]] = None,
    bucket_count: Optional[int] = None,
) -> list[BracketExposure]:
    """Load the images of one bracket, sorted by exposure.

    All images of a set must share one resolution; images that differ from
    the first one are skipped with a warning. Images without an exposure
    are kept at the end of the list.

    Args:
        sources: Images of the bracket.
        exposures: Optional explicit exposure per image.
        bucket_count: Histogram buckets per channel.

    Returns:
        The loaded bracket.
    """
    if exposures is not None and len(exposures) != len(sources):
        raise ValueError("exposures must have one entry per source")

    bracket: list[BracketExposure] = []
    size: Optional[tuple[int, int]] = None
    for i, source in enumerate(sources):
        img, label = _open(source)
        if size is None:
            size = img.size
        elif img.size != size:
            logger.warning(
                f"Image has a different resolution than the others in the set: {label}. "
                f"Expected {size[0]}x{size[1]}, got {img.size[0]}x{img.size[1]}; skipping."
            )
            continue
        explicit = exposures[i] if exposures is not None else None
        bracket.append(load_bracket_exposure(img, explicit, bucket_count))

    bracket.sort(key=lambda e: (e.exposure is None, e.exposure or 0.0))
    logger.info(f"Loaded bracket of {len(bracket)} images")
    return bracket
