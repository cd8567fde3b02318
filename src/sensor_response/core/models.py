"""
Core data models for the sensor response engine.

All models use Pydantic for validation and serialization. Models that are
shared between an estimation run and its readers are frozen.
"""

import math
from typing import Any, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Histogram(BaseModel):
    """Bucket counts of one channel of one exposure over a normalized [0,1] domain."""

    model_config = ConfigDict(frozen=True)

    buckets: tuple[int, ...] = Field(..., min_length=2, description="Non-negative bucket counts")

    @field_validator("buckets", mode="before")
    @classmethod
    def convert_buckets(cls, v: Any) -> tuple[int, ...]:
        """Accept lists and numpy arrays."""
        if isinstance(v, np.ndarray):
            v = v.tolist()
        return tuple(int(b) for b in v)

    @field_validator("buckets")
    @classmethod
    def check_non_negative(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        if any(b < 0 for b in v):
            raise ValueError("Histogram buckets must be non-negative")
        return v

    @property
    def bucket_count(self) -> int:
        return len(self.buckets)

    @property
    def total(self) -> int:
        return sum(self.buckets)

    def to_numpy(self) -> np.ndarray:
        """Bucket counts as an int64 array."""
        return np.asarray(self.buckets, dtype=np.int64)

    def cumulative(self) -> np.ndarray:
        """Normalized cumulative distribution (last entry 1.0).

        Only meaningful for a histogram with a non-zero total.
        """
        counts = self.to_numpy().astype(np.float64)
        return np.cumsum(counts) / counts.sum()

    @classmethod
    def from_values(cls, values: Any, bucket_count: int = 256) -> "Histogram":
        """Build a histogram from normalized [0,1] samples.

        Each sample lands in bucket ``round(v * (bucket_count - 1))``.
        Mostly useful for synthetic data; real histograms come from the
        image pipeline.
        """
        v = np.clip(np.asarray(values, dtype=np.float64).ravel(), 0.0, 1.0)
        idx = np.rint(v * (bucket_count - 1)).astype(np.int64)
        return cls(buckets=np.bincount(idx, minlength=bucket_count))


class ExposureMapping(BaseModel):
    """Observed correspondence between two exposures of the same scene.

    ``curve`` holds (x, y) pairs where x is a normalized encoded value of the
    shorter exposure and y the matching value of the longer one.
    """

    model_config = ConfigDict(frozen=True)

    curve: tuple[tuple[float, float], ...] = Field(..., min_length=1)
    exposure_ratio: float = Field(..., gt=0.0, description="Longer / shorter exposure")

    @field_validator("curve", mode="before")
    @classmethod
    def convert_curve(cls, v: Any) -> tuple[tuple[float, float], ...]:
        if isinstance(v, np.ndarray):
            v = v.tolist()
        return tuple((float(x), float(y)) for x, y in v)

    @field_validator("exposure_ratio")
    @classmethod
    def check_finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("Exposure ratio must be finite")
        return v

    @model_validator(mode="after")
    def check_ordered(self) -> "ExposureMapping":
        """Ensure x never decreases along the curve."""
        xs = [p[0] for p in self.curve]
        if any(b < a for a, b in zip(xs, xs[1:])):
            raise ValueError("Exposure mapping x values must be non-decreasing")
        return self

    @property
    def sample_count(self) -> int:
        return len(self.curve)

    @property
    def y_extent(self) -> float:
        """Tonal extent covered by the longer exposure."""
        return abs(self.curve[0][1] - self.curve[-1][1])

    def to_numpy(self) -> np.ndarray:
        """Curve as an (n, 2) float64 array."""
        return np.asarray(self.curve, dtype=np.float64)

    def eval_at_x(self, x: float) -> Optional[float]:
        """Mapped y for a given x, or None outside the observed range."""
        from sensor_response.curves.algebra import sample_at_x

        if not self.curve[0][0] <= x <= self.curve[-1][0]:
            return None
        return sample_at_x(self.curve, x)

    def eval_at_y(self, y: float) -> Optional[float]:
        """Mapped x for a given y, or None outside the observed range."""
        from sensor_response.curves.algebra import sample_at_y

        if not self.curve[0][1] <= y <= self.curve[-1][1]:
            return None
        return sample_at_y(self.curve, y)

    def eval_at_x_array(self, x: np.ndarray) -> np.ndarray:
        """Vectorized :meth:`eval_at_x`; missing samples are NaN."""
        from sensor_response.curves.algebra import sample_at_x

        x = np.asarray(x, dtype=np.float64)
        inside = (x >= self.curve[0][0]) & (x <= self.curve[-1][0])
        return np.where(inside, sample_at_x(self.curve, x), np.nan)

    def eval_at_y_array(self, y: np.ndarray) -> np.ndarray:
        """Vectorized :meth:`eval_at_y`; missing samples are NaN."""
        from sensor_response.curves.algebra import sample_at_y

        y = np.asarray(y, dtype=np.float64)
        inside = (y >= self.curve[0][1]) & (y <= self.curve[-1][1])
        return np.where(inside, sample_at_y(self.curve, y), np.nan)


class BracketExposure(BaseModel):
    """One image of an exposure bracket: per-channel histograms and exposure."""

    model_config = ConfigDict(frozen=True)

    histograms: tuple[Histogram, ...] = Field(..., min_length=1)
    exposure: Optional[float] = Field(default=None, description="Relative light gathered")
    source: Optional[str] = Field(default=None, description="Image path or label")

    @field_validator("exposure")
    @classmethod
    def check_exposure(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not (math.isfinite(v) and v > 0.0):
            raise ValueError("Exposure must be finite and positive")
        return v

    @property
    def channel_count(self) -> int:
        return len(self.histograms)


class ResponseCurve(BaseModel):
    """Discretized to-linear response curve over a uniform [0,1] domain."""

    model_config = ConfigDict(frozen=True)

    values: tuple[float, ...] = Field(..., min_length=2)
    error: Optional[float] = Field(default=None, description="Final fit error")
    factors: tuple[float, ...] = Field(default_factory=tuple)

    @field_validator("values", "factors", mode="before")
    @classmethod
    def convert_to_tuple(cls, v: Any) -> tuple[float, ...]:
        if isinstance(v, np.ndarray):
            v = v.tolist()
        return tuple(float(x) for x in v)

    def to_numpy(self) -> np.ndarray:
        """Samples as a float32 array."""
        return np.asarray(self.values, dtype=np.float32)

    def to_linear(self, encoded: Any) -> Any:
        """Convert normalized encoded value(s) to linear light."""
        from sensor_response.curves.algebra import sample_uniform

        return sample_uniform(self.values, np.clip(encoded, 0.0, 1.0))

    def from_linear(self, linear: Any, resolution: int = 4096) -> Any:
        """Convert linear light value(s) back to normalized encoded values."""
        from sensor_response.curves.algebra import invert_monotonic, sample_uniform

        inverse = invert_monotonic(self.values, resolution)
        return sample_uniform(inverse, np.clip(linear, 0.0, 1.0))
