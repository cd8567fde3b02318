"""
1D LUT construction from estimated response curves.

The estimated curves are fitted with a (0, 1) floor/ceiling; the sensor's
actual noise floor and ceiling are applied here, at export time, so the
same fit can be re-exported as the floor/ceiling estimates change.
"""

from typing import Any, Sequence

import numpy as np
from pydantic import BaseModel, Field, field_validator, model_validator

from sensor_response.config import get_settings
from sensor_response.core.exceptions import InvalidSensorRangeError
from sensor_response.core.logging import get_logger
from sensor_response.core.types import LutDirection
from sensor_response.curves.algebra import invert_monotonic, sample_uniform

logger = get_logger(__name__)


class Lut1D(BaseModel):
    """Per-channel 1D lookup tables.

    ``ranges`` holds either one input range shared by every table, or one
    range per table.
    """

    ranges: list[tuple[float, float]] = Field(..., min_length=1)
    tables: list[list[float]] = Field(..., min_length=1)

    @field_validator("tables", mode="before")
    @classmethod
    def convert_tables(cls, v: Any) -> list[list[float]]:
        """Convert numpy arrays to lists."""
        return [np.asarray(t, dtype=np.float64).tolist() for t in v]

    @model_validator(mode="after")
    def check_shape(self) -> "Lut1D":
        if any(len(t) < 2 for t in self.tables):
            raise ValueError("Every LUT table needs at least 2 samples")
        if len(self.ranges) not in (1, len(self.tables)):
            raise ValueError("Expected one shared range or one range per table")
        if any(hi == lo for lo, hi in self.ranges):
            raise ValueError("LUT input range must not be empty")
        return self

    @property
    def channel_count(self) -> int:
        return len(self.tables)

    def range_for(self, channel: int) -> tuple[float, float]:
        """Input range of a channel's table."""
        return self.ranges[channel] if len(self.ranges) > 1 else self.ranges[0]

    def apply(self, channel: int, values: Any) -> Any:
        """Look up value(s) through one channel's table."""
        lo, hi = self.range_for(channel)
        t = (np.asarray(values, dtype=np.float64) - lo) / (hi - lo)
        result = sample_uniform(self.tables[channel], np.clip(t, 0.0, 1.0))
        return result

    def resample_inverted(self, resolution: int) -> "Lut1D":
        """Invert every table onto a common output range.

        The new input range spans the lowest to the highest value found in
        any table; each channel is inverted with the running-maximum guard of
        :func:`invert_monotonic`.
        """
        arrays = [np.asarray(t, dtype=np.float64) for t in self.tables]
        lo = min(float(a.min()) for a in arrays)
        hi = max(float(a.max()) for a in arrays)
        span = hi - lo
        if span <= 0.0:
            logger.warning(f"Inverting flat LUT (all values {lo}); result is degenerate")
            hi = lo + 1.0

        tables = []
        for chan, arr in enumerate(arrays):
            normalized = (arr - lo) / span if span > 0.0 else np.zeros_like(arr)
            inverse = invert_monotonic(normalized, resolution)
            in_lo, in_hi = self.range_for(chan)
            tables.append(in_lo + inverse * (in_hi - in_lo))

        return Lut1D(ranges=[(lo, hi)], tables=tables)


def _per_channel(values: Sequence[float], count: int, name: str) -> list[float]:
    values = list(values)
    if len(values) == 1:
        return values * count
    if len(values) != count:
        raise ValueError(f"Expected 1 or {count} {name} values, got {len(values)}")
    return values


def normalize_to_sensor_range(
    table: Any,
    floor: float,
    ceiling: float,
    channel: int | None = None,
) -> np.ndarray:
    """Rescale a to-linear table so the floor maps to 0 and the ceiling to 1."""
    if not floor < ceiling:
        raise InvalidSensorRangeError(
            "Sensor floor must be below the ceiling",
            channel=channel,
            details={"floor": floor, "ceiling": ceiling},
        )
    arr = np.asarray(table, dtype=np.float64)
    out_floor = sample_uniform(arr, floor)
    out_ceil = sample_uniform(arr, ceiling)
    if not out_ceil > out_floor:
        raise InvalidSensorRangeError(
            "Response curve is flat between the sensor floor and ceiling",
            channel=channel,
            details={"floor": floor, "ceiling": ceiling},
        )
    return (arr - out_floor) / (out_ceil - out_floor)


def build_transfer_lut(
    curves: Sequence[Any],
    floor: Sequence[float] = (0.0,),
    ceiling: Sequence[float] = (1.0,),
    direction: LutDirection = LutDirection.TO_LINEAR,
    resolution: int | None = None,
) -> Lut1D:
    """Build a LUT from per-channel to-linear response curves.

    Args:
        curves: One to-linear curve per channel (uniform over [0, 1]).
        floor: Sensor noise floor, one shared value or one per channel.
        ceiling: Sensor ceiling, one shared value or one per channel.
        direction: TO_LINEAR keeps the curves, FROM_LINEAR inverts them.
        resolution: Sample count of the inverted tables.

    Returns:
        The LUT.
    """
    if not curves:
        raise ValueError("At least one curve is required")
    floors = _per_channel(floor, len(curves), "floor")
    ceilings = _per_channel(ceiling, len(curves), "ceiling")

    tables = [
        normalize_to_sensor_range(curve, f, c, channel=i)
        for i, (curve, f, c) in enumerate(zip(curves, floors, ceilings))
    ]
    lut = Lut1D(ranges=[(0.0, 1.0)], tables=tables)

    if direction == LutDirection.FROM_LINEAR:
        resolution = resolution or get_settings().lut.inverse_resolution
        lut = lut.resample_inverted(resolution)

    logger.debug(
        f"Built {direction.value} LUT: {lut.channel_count} channels, "
        f"{len(lut.tables[0])} samples, range {lut.ranges[0]}"
    )
    return lut


def adjust_lut(
    lut: Lut1D,
    floor: Sequence[float] = (0.0,),
    ceiling: Sequence[float] = (1.0,),
    direction: LutDirection = LutDirection.TO_LINEAR,
    channels: int = 3,
) -> Lut1D:
    """Apply a sensor floor and ceiling to an existing LUT.

    Used on LUTs loaded from disk, whose input range need not be (0, 1).
    A to-linear LUT keeps its input range and has its output rescaled so
    the floor and ceiling map to 0 and 1. A from-linear LUT keeps its
    table and has its input range remapped, so linear 0 and 1 look up
    the entries the original range had at the floor and ceiling.

    Args:
        lut: LUT to adjust. With fewer tables than ``channels`` the first
            table is used for every channel.
        floor: Sensor noise floor, one shared value or one per channel.
        ceiling: Sensor ceiling, one shared value or one per channel.
        direction: Which way ``lut`` maps.
        channels: Channel count of the result.

    Returns:
        A new LUT with one table and one range per channel.
    """
    floors = _per_channel(floor, channels, "floor")
    ceilings = _per_channel(ceiling, channels, "ceiling")

    tables = []
    ranges = []
    for chan, (f, c) in enumerate(zip(floors, ceilings)):
        if not f < c:
            raise InvalidSensorRangeError(
                "Sensor floor must be below the ceiling",
                channel=chan,
                details={"floor": f, "ceiling": c},
            )
        source = chan if lut.channel_count >= channels else 0
        table = np.asarray(lut.tables[source], dtype=np.float64)
        lo, hi = lut.range_for(source)

        if direction == LutDirection.TO_LINEAR:
            positions = np.clip([(f - lo) / (hi - lo), (c - lo) / (hi - lo)], 0.0, 1.0)
            out_floor, out_ceil = sample_uniform(table, positions)
            if not out_ceil > out_floor:
                raise InvalidSensorRangeError(
                    "LUT is flat between the sensor floor and ceiling",
                    channel=chan,
                    details={"floor": f, "ceiling": c},
                )
            tables.append((table - out_floor) / (out_ceil - out_floor))
            ranges.append((lo, hi))
        else:
            tables.append(table)
            ranges.append(((lo - f) / (c - f), (hi - f) / (c - f)))

    logger.debug(f"Adjusted {direction.value} LUT to floor {floors}, ceiling {ceilings}")
    return Lut1D(ranges=ranges, tables=tables)
