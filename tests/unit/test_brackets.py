"""
Tests for bracket image loading.
"""

import io

import numpy as np
import pytest
from PIL import Image

from sensor_response.core.exceptions import ImageLoadError
from sensor_response.curves.mapping import build_exposure_mappings
from sensor_response.imaging.brackets import (
    EXPOSURE_TIME,
    F_NUMBER,
    ISO_SPEED,
    exposure_from_exif,
    load_bracket_exposure,
    load_bracket_set,
)


def _png_bytes(img: Image.Image) -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def _gradient_image(exposure: float) -> Image.Image:
    """Gamma 2 encoding of a smooth scene at the given exposure."""
    scene = np.linspace(0.0, 0.5, 256 * 256).reshape(256, 256)
    encoded = np.sqrt(np.clip(scene * exposure, 0.0, 1.0))
    return Image.fromarray(np.rint(encoded * 255).astype(np.uint8))


class TestExposureFromExif:
    """Tests for exposure_from_exif."""

    def test_full_tags(self):
        """Test shutter time, aperture and ISO together."""
        tags = {EXPOSURE_TIME: 0.01, F_NUMBER: 2.0, ISO_SPEED: 400}

        assert exposure_from_exif(tags) == pytest.approx(1.0)

    def test_defaults_for_missing_aperture_and_iso(self):
        """Test that only the exposure time is required."""
        assert exposure_from_exif({EXPOSURE_TIME: 0.5}) == pytest.approx(0.5)

    def test_tuple_iso(self):
        """Test ISO given as a tuple."""
        assert exposure_from_exif({EXPOSURE_TIME: 0.5, ISO_SPEED: (200,)}) == pytest.approx(100.0)

    @pytest.mark.parametrize("tags", [{}, {EXPOSURE_TIME: 0}, {EXPOSURE_TIME: "fast"}])
    def test_missing_exposure(self, tags):
        """Test that no usable exposure time gives None."""
        assert exposure_from_exif(tags) is None


class TestLoadBracketExposure:
    """Tests for load_bracket_exposure."""

    def test_rgb_histograms(self):
        """Test one histogram per RGB channel."""
        img = Image.new("RGB", (4, 4), (0, 128, 255))

        exposure = load_bracket_exposure(img, exposure=2.0)

        assert exposure.channel_count == 3
        assert exposure.exposure == 2.0
        assert exposure.histograms[0].buckets[0] == 16
        assert exposure.histograms[1].buckets[128] == 16
        assert exposure.histograms[2].buckets[255] == 16

    def test_grayscale(self):
        """Test a single channel image."""
        exposure = load_bracket_exposure(Image.new("L", (8, 2), 10), exposure=1.0)

        assert exposure.channel_count == 1
        assert exposure.histograms[0].total == 16

    def test_rgba_is_converted(self):
        """Test that alpha is dropped."""
        exposure = load_bracket_exposure(Image.new("RGBA", (2, 2), (1, 2, 3, 4)), exposure=1.0)

        assert exposure.channel_count == 3

    def test_bucket_count(self):
        """Test a custom histogram size."""
        exposure = load_bracket_exposure(Image.new("L", (2, 2), 255), exposure=1.0, bucket_count=16)

        assert exposure.histograms[0].bucket_count == 16
        assert exposure.histograms[0].buckets[15] == 4

    def test_file_without_exif(self, tmp_path):
        """Test that a file without Exif loads with no exposure."""
        path = tmp_path / "frame.png"
        Image.new("RGB", (4, 4), (50, 50, 50)).save(path)

        exposure = load_bracket_exposure(path)

        assert exposure.exposure is None
        assert exposure.source == str(path)

    def test_bytes(self):
        """Test loading encoded bytes."""
        exposure = load_bracket_exposure(_png_bytes(Image.new("L", (3, 3), 0)), exposure=1.0)

        assert exposure.histograms[0].buckets[0] == 9

    def test_unrecognized_format(self):
        """Test that undecodable data raises ImageLoadError."""
        with pytest.raises(ImageLoadError):
            load_bracket_exposure(b"not an image")

    def test_missing_file(self, tmp_path):
        """Test that a missing file raises ImageLoadError with the path."""
        path = tmp_path / "missing.png"

        with pytest.raises(ImageLoadError) as exc_info:
            load_bracket_exposure(path)

        assert exc_info.value.path == str(path)


class TestLoadBracketSet:
    """Tests for load_bracket_set."""

    def test_sorted_by_exposure(self):
        """Test that the bracket is ordered by exposure with unknowns last."""
        images = [Image.new("L", (4, 4), v) for v in (40, 10, 20, 99)]

        bracket = load_bracket_set(images, exposures=[4.0, 1.0, 2.0, None])

        assert [b.exposure for b in bracket] == [1.0, 2.0, 4.0, None]

    def test_skips_mismatched_resolution(self, caplog):
        """Test that images with another size are skipped."""
        images = [Image.new("L", (4, 4)), Image.new("L", (8, 8)), Image.new("L", (4, 4))]

        bracket = load_bracket_set(images, exposures=[1.0, 2.0, 4.0])

        assert [b.exposure for b in bracket] == [1.0, 4.0]
        assert "different resolution" in caplog.text

    def test_exposure_count_mismatch(self):
        """Test that exposures must match the sources."""
        with pytest.raises(ValueError):
            load_bracket_set([Image.new("L", (2, 2))], exposures=[1.0, 2.0])

    def test_feeds_mapping_builder(self):
        """Test that loaded images produce an exposure mapping."""
        bracket = load_bracket_set(
            [_png_bytes(_gradient_image(2.0)), _png_bytes(_gradient_image(1.0))],
            exposures=[2.0, 1.0],
        )

        mappings = build_exposure_mappings([bracket], floor=(0.0,), ceiling=(1.0,))

        assert len(mappings[0]) == 1
        assert mappings[0][0].exposure_ratio == pytest.approx(2.0)
