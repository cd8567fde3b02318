"""
Exposure mapping construction from bracketed histograms.

Two exposures of the same static scene see the same distribution of scene
light, so matching their histograms quantile by quantile gives the
correspondence between the encoded values of the two exposures.
"""

import math
from typing import Iterator, Optional, Sequence

import numpy as np

from sensor_response.config import MappingSettings, get_settings
from sensor_response.core.cancellation import CancelSignal, is_cancelled
from sensor_response.core.exceptions import InvalidHistogramError
from sensor_response.core.logging import LoggingMixin
from sensor_response.core.models import BracketExposure, ExposureMapping, Histogram


def select_exposure_pairs(
    exposures: Sequence[float],
    target_ratio: float = 2.0,
) -> Iterator[tuple[int, int]]:
    """Pair every exposure with the later one closest to ``target_ratio``.

    Exposures must be sorted in ascending order. For each exposure the
    candidates are walked in order and the walk stops at the first ratio
    that is further from the target than the best one so far.

    Yields:
        (shorter index, longer index) pairs.
    """
    for i in range(len(exposures)):
        other = i
        best_ratio = -math.inf
        for j in range(i + 1, len(exposures)):
            ratio = exposures[j] / exposures[i]
            if abs(ratio - target_ratio) > abs(best_ratio - target_ratio):
                break
            other = j
            best_ratio = ratio
        if other > i:
            yield i, other


class ExposureMappingBuilder(LoggingMixin):
    """Builds :class:`ExposureMapping` values from histogram pairs."""

    def __init__(self, settings: MappingSettings | None = None):
        """
        Args:
            settings: Mapping settings. Defaults to the global settings.
        """
        self.settings = settings or get_settings().mapping

    def from_histograms(
        self,
        hist_a: Histogram,
        hist_b: Histogram,
        exposure_a: float,
        exposure_b: float,
        floor: float = 0.0,
        ceiling: float = 1.0,
    ) -> Optional[ExposureMapping]:
        """Match two same-channel histograms quantile by quantile.

        Args:
            hist_a: Histogram of the first exposure.
            hist_b: Histogram of the second exposure.
            exposure_a: Light gathered by the first exposure.
            exposure_b: Light gathered by the second exposure.
            floor: Sensor noise floor; samples at or below it are dropped.
            ceiling: Sensor ceiling; samples at or above it are dropped.

        Returns:
            The mapping, or None when the pair carries no usable data.
        """
        if hist_a.bucket_count != hist_b.bucket_count:
            raise InvalidHistogramError(
                "Histograms must have the same number of buckets",
                operation="from_histograms",
                details={"a": hist_a.bucket_count, "b": hist_b.bucket_count},
            )
        for exposure in (exposure_a, exposure_b):
            if not (math.isfinite(exposure) and exposure > 0.0):
                raise InvalidHistogramError(
                    "Exposures must be finite and positive",
                    operation="from_histograms",
                    details={"exposure": exposure},
                )

        if exposure_a <= exposure_b:
            short, long_, ratio = hist_a, hist_b, exposure_b / exposure_a
        else:
            short, long_, ratio = hist_b, hist_a, exposure_a / exposure_b

        min_population = self.settings.min_population
        if short.total < min_population or long_.total < min_population:
            self.logger.debug(
                f"Skipping histogram pair: population {short.total}/{long_.total} "
                f"below {min_population}"
            )
            return None

        counts = short.to_numpy()
        cdf_short = short.cumulative()
        cdf_long = long_.cumulative()
        n = short.bucket_count
        norm = 1.0 / (n - 1)

        occupied = np.nonzero(counts)[0]
        targets = cdf_short[occupied]

        # Closest CDF entry on the long side, ties going to the lower bucket.
        j = np.minimum(np.searchsorted(cdf_long, targets, side="left"), n - 1)
        j_prev = np.maximum(j - 1, 0)
        take_prev = (j > 0) & (np.abs(cdf_long[j_prev] - targets) <= np.abs(cdf_long[j] - targets))
        j = np.where(take_prev, j_prev, j)

        xs = occupied * norm
        ys = j * norm
        keep = (xs > floor) & (xs < ceiling) & (ys > floor) & (ys < ceiling)
        points = np.column_stack((xs[keep], ys[keep]))

        if len(points) < self.settings.min_points:
            self.logger.debug(
                f"Skipping histogram pair: {len(points)} usable points "
                f"(ratio {ratio:.3f}, floor {floor}, ceiling {ceiling})"
            )
            return None

        return ExposureMapping(curve=points, exposure_ratio=ratio)

    def build(
        self,
        bracket_sets: Sequence[Sequence[BracketExposure]],
        floor: Sequence[float],
        ceiling: Sequence[float],
        target_ratio: float | None = None,
        cancel: Optional[CancelSignal] = None,
    ) -> Optional[list[list[ExposureMapping]]]:
        """Build the mappings of every channel of every bracket set.

        Args:
            bracket_sets: Bracketed image sets; each image carries one
                histogram per channel. Images without an exposure are ignored.
            floor: Per-channel sensor noise floor.
            ceiling: Per-channel sensor ceiling.
            target_ratio: Preferred exposure ratio between paired images.
            cancel: Optional cancellation signal, checked per pairing.

        Returns:
            One list of mappings per channel, or None if cancelled.
        """
        target_ratio = target_ratio or self.settings.target_ratio
        channel_count = len(floor)
        if len(ceiling) != channel_count:
            raise ValueError("floor and ceiling must have one entry per channel")

        mappings: list[list[ExposureMapping]] = [[] for _ in range(channel_count)]
        skipped = 0
        for images in bracket_sets:
            usable = sorted(
                (img for img in images if img.exposure is not None),
                key=lambda img: img.exposure,
            )
            for img in usable:
                if img.channel_count < channel_count:
                    raise InvalidHistogramError(
                        "Image has fewer channels than floor/ceiling entries",
                        operation="build",
                        details={"source": img.source, "channels": img.channel_count},
                    )

            exposures = [img.exposure for img in usable]
            for i, j in select_exposure_pairs(exposures, target_ratio):
                for chan in range(channel_count):
                    if is_cancelled(cancel):
                        self.logger.info("Exposure mapping cancelled")
                        return None
                    mapping = self.from_histograms(
                        usable[i].histograms[chan],
                        usable[j].histograms[chan],
                        usable[i].exposure,
                        usable[j].exposure,
                        floor[chan],
                        ceiling[chan],
                    )
                    if mapping is None:
                        skipped += 1
                    else:
                        mappings[chan].append(mapping)

        self.logger.info(
            f"Built exposure mappings: {[len(m) for m in mappings]} per channel, "
            f"{skipped} pairings skipped",
            extra={"mapping_count": sum(len(m) for m in mappings)},
        )
        return mappings


def build_exposure_mappings(
    bracket_sets: Sequence[Sequence[BracketExposure]],
    floor: Sequence[float] = (0.0, 0.0, 0.0),
    ceiling: Sequence[float] = (1.0, 1.0, 1.0),
    target_ratio: float | None = None,
    cancel: Optional[CancelSignal] = None,
) -> Optional[list[list[ExposureMapping]]]:
    """Convenience wrapper around :meth:`ExposureMappingBuilder.build`."""
    return ExposureMappingBuilder().build(bracket_sets, floor, ceiling, target_ratio, cancel)
