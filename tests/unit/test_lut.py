"""
Tests for LUT construction from response curves.
"""

import logging

import numpy as np
import pytest
from pydantic import ValidationError

from sensor_response.core.exceptions import InvalidSensorRangeError
from sensor_response.core.types import LutDirection
from sensor_response.curves.algebra import is_non_decreasing
from sensor_response.curves.lut import (
    Lut1D,
    adjust_lut,
    build_transfer_lut,
    normalize_to_sensor_range,
)


@pytest.fixture
def identity_curve():
    return np.linspace(0.0, 1.0, 1024)


@pytest.fixture
def square_curve():
    return np.linspace(0.0, 1.0, 1024) ** 2


class TestLut1D:
    """Tests for the Lut1D model."""

    def test_shared_range(self):
        """Test that a single range applies to every table."""
        lut = Lut1D(ranges=[(0.0, 2.0)], tables=[[0.0, 1.0], [0.0, 2.0]])

        assert lut.channel_count == 2
        assert lut.range_for(1) == (0.0, 2.0)
        assert lut.apply(1, 1.0) == pytest.approx(1.0)

    def test_accepts_numpy_tables(self):
        """Test that numpy tables are converted to lists."""
        lut = Lut1D(ranges=[(0.0, 1.0)], tables=[np.linspace(0.0, 1.0, 5)])

        assert lut.tables[0] == [0.0, 0.25, 0.5, 0.75, 1.0]

    def test_apply_clamps_to_range(self):
        """Test that inputs outside the range use the table ends."""
        lut = Lut1D(ranges=[(0.0, 1.0)], tables=[[0.2, 0.8]])

        np.testing.assert_allclose(lut.apply(0, np.array([-1.0, 0.5, 2.0])), [0.2, 0.5, 0.8])

    def test_rejects_short_table(self):
        """Test that tables need two samples."""
        with pytest.raises(ValidationError):
            Lut1D(ranges=[(0.0, 1.0)], tables=[[0.5]])

    def test_rejects_range_count(self):
        """Test that ranges must be shared or per table."""
        with pytest.raises(ValidationError):
            Lut1D(ranges=[(0.0, 1.0), (0.0, 1.0)], tables=[[0.0, 1.0]] * 3)

    def test_rejects_empty_range(self):
        """Test that a range with equal ends is rejected."""
        with pytest.raises(ValidationError):
            Lut1D(ranges=[(0.5, 0.5)], tables=[[0.0, 1.0]])

    def test_resample_inverted_flat_table(self, caplog):
        """Test that inverting a flat LUT warns instead of failing."""
        lut = Lut1D(ranges=[(0.0, 1.0)], tables=[[0.5, 0.5, 0.5]])

        with caplog.at_level(logging.WARNING):
            inverted = lut.resample_inverted(8)

        assert len(inverted.tables[0]) == 8
        assert inverted.ranges[0][1] > inverted.ranges[0][0]
        assert "flat" in caplog.text


class TestNormalizeToSensorRange:
    """Tests for floor/ceiling renormalization."""

    def test_full_range_is_unchanged(self, identity_curve):
        """Test that floor 0 and ceiling 1 keep the curve."""
        np.testing.assert_allclose(normalize_to_sensor_range(identity_curve, 0.0, 1.0), identity_curve)

    def test_floor_and_ceiling_map_to_zero_and_one(self, square_curve):
        """Test that the floor maps to 0 and the ceiling to 1."""
        table = normalize_to_sensor_range(square_curve, 0.1, 0.9)
        lut = Lut1D(ranges=[(0.0, 1.0)], tables=[table])

        assert lut.apply(0, 0.1) == pytest.approx(0.0, abs=1e-6)
        assert lut.apply(0, 0.9) == pytest.approx(1.0, abs=1e-6)

    def test_floor_above_ceiling(self, identity_curve):
        """Test that an inverted sensor range is rejected."""
        with pytest.raises(InvalidSensorRangeError):
            normalize_to_sensor_range(identity_curve, 0.8, 0.2)

    def test_flat_curve(self):
        """Test that a curve flat between floor and ceiling is rejected."""
        with pytest.raises(InvalidSensorRangeError) as exc_info:
            normalize_to_sensor_range(np.full(16, 0.5), 0.1, 0.9, channel=2)

        assert exc_info.value.channel == 2


class TestBuildTransferLut:
    """Tests for build_transfer_lut."""

    def test_to_linear(self, identity_curve, square_curve):
        """Test a two-channel to-linear LUT."""
        lut = build_transfer_lut([identity_curve, square_curve])

        assert lut.channel_count == 2
        assert lut.ranges == [(0.0, 1.0)]
        np.testing.assert_allclose(lut.tables[1], square_curve)

    def test_from_linear_default_resolution(self, square_curve):
        """Test that the inverse LUT uses the configured resolution."""
        lut = build_transfer_lut([square_curve], direction=LutDirection.FROM_LINEAR)

        assert len(lut.tables[0]) == 4096
        assert lut.apply(0, 0.25) == pytest.approx(0.5, abs=2e-3)
        assert is_non_decreasing(lut.tables[0])

    def test_from_linear_with_sensor_range(self, identity_curve):
        """Test that linear 0 and 1 map back to the sensor floor and ceiling."""
        lut = build_transfer_lut(
            [identity_curve],
            floor=[0.1],
            ceiling=[0.9],
            direction=LutDirection.FROM_LINEAR,
            resolution=1024,
        )

        assert lut.apply(0, 0.0) == pytest.approx(0.1, abs=1e-3)
        assert lut.apply(0, 1.0) == pytest.approx(0.9, abs=1e-3)

    def test_per_channel_floor(self, identity_curve):
        """Test that floor and ceiling can be given per channel."""
        lut = build_transfer_lut(
            [identity_curve] * 3,
            floor=[0.0, 0.1, 0.2],
            ceiling=[1.0, 1.0, 1.0],
        )

        assert lut.apply(0, 0.2) == pytest.approx(0.2)
        assert lut.apply(2, 0.2) == pytest.approx(0.0, abs=1e-9)

    def test_floor_count_mismatch(self, identity_curve):
        """Test that floors must be shared or per channel."""
        with pytest.raises(ValueError):
            build_transfer_lut([identity_curve] * 3, floor=[0.0, 0.1])

    def test_no_curves(self):
        """Test that at least one curve is required."""
        with pytest.raises(ValueError):
            build_transfer_lut([])


class TestAdjustLut:
    """Tests for applying a sensor range to an existing LUT."""

    def test_to_linear_floor_and_ceiling(self, square_curve):
        """Test that a to-linear LUT maps the floor to 0 and the ceiling to 1."""
        lut = Lut1D(ranges=[(0.0, 1.0)], tables=[square_curve])

        adjusted = adjust_lut(lut, floor=[0.1], ceiling=[0.9])

        assert adjusted.channel_count == 3
        assert adjusted.ranges == [(0.0, 1.0)] * 3
        assert adjusted.apply(2, 0.1) == pytest.approx(0.0, abs=1e-6)
        assert adjusted.apply(2, 0.9) == pytest.approx(1.0, abs=1e-6)

    def test_to_linear_uses_input_range(self):
        """Test that the floor is located within a non-unit input range."""
        lut = Lut1D(ranges=[(0.0, 2.0)], tables=[[0.0, 1.0, 2.0]])

        adjusted = adjust_lut(lut, floor=[0.5], ceiling=[1.5], channels=1)

        assert adjusted.ranges == [(0.0, 2.0)]
        np.testing.assert_allclose(adjusted.tables[0], [-0.5, 0.5, 1.5])

    def test_from_linear_remaps_range(self, identity_curve):
        """Test that a from-linear LUT keeps its table and remaps its range."""
        lut = Lut1D(ranges=[(0.0, 1.0)], tables=[identity_curve])

        adjusted = adjust_lut(lut, floor=[0.2], ceiling=[0.6], direction=LutDirection.FROM_LINEAR)

        assert adjusted.ranges[0] == pytest.approx((-0.5, 2.0))
        np.testing.assert_allclose(adjusted.tables[1], identity_curve)
        assert adjusted.apply(0, 0.0) == pytest.approx(0.2, abs=1e-3)
        assert adjusted.apply(0, 1.0) == pytest.approx(0.6, abs=1e-3)

    def test_per_channel_tables_and_floors(self, identity_curve, square_curve):
        """Test that three tables are adjusted channel by channel."""
        lut = Lut1D(ranges=[(0.0, 1.0)], tables=[identity_curve, square_curve, identity_curve])

        adjusted = adjust_lut(lut, floor=[0.0, 0.0, 0.5], ceiling=[1.0, 1.0, 1.0])

        np.testing.assert_allclose(adjusted.tables[1], square_curve, atol=1e-9)
        assert adjusted.apply(2, 0.5) == pytest.approx(0.0, abs=1e-9)
        assert adjusted.apply(0, 0.5) == pytest.approx(0.5, abs=1e-9)

    def test_floor_above_ceiling(self, identity_curve):
        """Test that an inverted sensor range is rejected with its channel."""
        lut = Lut1D(ranges=[(0.0, 1.0)], tables=[identity_curve])

        with pytest.raises(InvalidSensorRangeError) as exc_info:
            adjust_lut(lut, floor=[0.0, 0.0, 0.7], ceiling=[1.0, 1.0, 0.3])

        assert exc_info.value.channel == 2

    def test_flat_between_floor_and_ceiling(self):
        """Test that a to-linear LUT with no rise in the sensor range is rejected."""
        lut = Lut1D(ranges=[(0.0, 1.0)], tables=[[0.5, 0.5]])

        with pytest.raises(InvalidSensorRangeError):
            adjust_lut(lut, floor=[0.1], ceiling=[0.9])
