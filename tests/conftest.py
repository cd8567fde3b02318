"""
Shared fixtures for sensor response tests.
"""

import numpy as np
import pytest

from sensor_response.config import configure
from sensor_response.core.models import BracketExposure, ExposureMapping, Histogram
from sensor_response.curves.emor import EmorBasis


@pytest.fixture(autouse=True)
def reset_settings():
    """Give every test freshly loaded settings."""
    configure()
    yield
    configure()


@pytest.fixture(scope="session")
def basis():
    """Synthetic EMOR basis of the default size."""
    return EmorBasis.synthetic()


@pytest.fixture
def identity_mappings():
    """Three full-range mappings of an identity response at ratio 2."""
    xs = np.linspace(0.025, 0.475, 256)
    curve = np.column_stack((xs, 2.0 * xs))
    return [ExposureMapping(curve=curve, exposure_ratio=2.0) for _ in range(3)]


def _power_mappings(gamma: float, count: int = 3, ratio: float = 2.0) -> list[ExposureMapping]:
    scale = ratio ** (1.0 / gamma)
    xs = np.linspace(0.02, 0.98 / scale, 200)
    curve = np.column_stack((xs, xs * scale))
    return [ExposureMapping(curve=curve, exposure_ratio=ratio) for _ in range(count)]


@pytest.fixture
def power_mappings():
    """Factory for mappings of a to-linear curve ``x ** gamma`` at a given ratio."""
    return _power_mappings


@pytest.fixture
def square_mappings():
    """Mappings of a to-linear curve ``x ** 2``."""
    return _power_mappings(2.0)


def _bracket_from_scene(
    scene: np.ndarray,
    exposures: list[float],
    gamma: float = 2.0,
    channels: int = 3,
) -> list[BracketExposure]:
    """Bracket of a static scene, encoded as ``min(linear, 1) ** (1 / gamma)``."""
    images = []
    for exposure in exposures:
        encoded = np.minimum(scene * exposure, 1.0) ** (1.0 / gamma)
        hist = Histogram.from_values(encoded)
        images.append(
            BracketExposure(
                histograms=tuple(hist for _ in range(channels)),
                exposure=exposure,
                source=f"exposure_{exposure:g}",
            )
        )
    return images


@pytest.fixture
def bracket_from_scene():
    """Factory for bracketed histograms of a synthetic scene."""
    return _bracket_from_scene


@pytest.fixture
def square_bracket_sets():
    """One bracket (exposures 1, 2, 4) of a smooth scene with a square response."""
    scene = np.linspace(0.0, 0.6, 40000)
    return [_bracket_from_scene(scene, [1.0, 2.0, 4.0])]


@pytest.fixture
def degenerate_bracket_sets():
    """A bracket whose histograms hold all their mass in bucket 0."""
    buckets = np.zeros(256, dtype=np.int64)
    buckets[0] = 1000
    hist = Histogram(buckets=buckets)
    return [
        [
            BracketExposure(histograms=(hist, hist, hist), exposure=1.0),
            BracketExposure(histograms=(hist, hist, hist), exposure=2.0),
        ]
    ]
