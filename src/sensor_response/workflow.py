"""
Transfer function estimation workflow.

Runs the whole pipeline as one job: exposure mappings from bracketed
histograms, EMOR fitting in chunks of rounds with progress reports and
cancellation checks between chunks, and LUT export of the result.
"""

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence

import numpy as np

from sensor_response.config import Settings, get_settings
from sensor_response.core.cancellation import CancelSignal, is_cancelled
from sensor_response.core.logging import LogContext, LoggingMixin, log_operation, new_run_id
from sensor_response.core.models import BracketExposure, ExposureMapping, ResponseCurve
from sensor_response.core.types import EstimatorStatus, LutDirection, LutFormat
from sensor_response.curves.emor import EmorBasis, get_default_basis
from sensor_response.curves.estimator import EmorEstimator
from sensor_response.curves.export import save_lut
from sensor_response.curves.lut import Lut1D, build_transfer_lut
from sensor_response.curves.mapping import ExposureMappingBuilder

ProgressCallback = Callable[[str, float], None]


@dataclass
class TransferFunctionResult:
    """Published state of an estimation job.

    ``curves`` holds one to-linear curve per channel; a joint fit repeats
    the same curve for every channel.
    """

    curves: list[ResponseCurve]
    error: Optional[float]
    rounds_completed: int
    total_rounds: int
    status: EstimatorStatus
    channel_errors: list[Optional[float]] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "curves": [list(c.values) for c in self.curves],
            "error": self.error,
            "channel_errors": list(self.channel_errors),
            "rounds_completed": self.rounds_completed,
            "total_rounds": self.total_rounds,
            "status": self.status.value,
        }


class TransferFunctionEstimation(LoggingMixin):
    """Estimates per-channel transfer functions from bracketed exposures.

    Example:
        job = TransferFunctionEstimation(bracket_sets, rounds=2000)
        result = job.run(progress=lambda msg, frac: print(msg, frac))
        job.save_lut("camera_to_linear.spi1d")
    """

    def __init__(
        self,
        bracket_sets: Sequence[Sequence[BracketExposure]],
        floor: Sequence[float] = (0.0, 0.0, 0.0),
        ceiling: Sequence[float] = (1.0, 1.0, 1.0),
        rounds: Optional[int] = None,
        joint: bool = True,
        basis: Optional[EmorBasis] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Args:
            bracket_sets: Bracketed image sets of static scenes.
            floor: Per-channel sensor noise floor, normalized.
            ceiling: Per-channel sensor ceiling, normalized.
            rounds: Estimation round budget. Defaults to the configured budget.
            joint: Fit one curve to the mappings of every channel, or one
                curve per channel.
            basis: EMOR basis. Defaults to the shared process basis.
            settings: Settings. Defaults to the global settings.
        """
        if len(floor) != len(ceiling):
            raise ValueError("floor and ceiling must have one entry per channel")
        self.settings = settings or get_settings()
        self.bracket_sets = [list(images) for images in bracket_sets]
        self.floor = list(floor)
        self.ceiling = list(ceiling)
        self.rounds = rounds if rounds is not None else self.settings.estimator.rounds
        self.joint = joint
        self.basis = basis or get_default_basis(self.settings.emor)

        self.mappings: Optional[list[list[ExposureMapping]]] = None
        self._lock = threading.Lock()
        self._result: Optional[TransferFunctionResult] = None

    @property
    def channel_count(self) -> int:
        return len(self.floor)

    @property
    def result(self) -> Optional[TransferFunctionResult]:
        """Most recently published result."""
        with self._lock:
            return self._result

    def _publish(self, result: TransferFunctionResult) -> None:
        with self._lock:
            self._result = result

    def rounds_per_update(self, mapping_count: int) -> int:
        """Rounds per chunk, so each chunk costs about the same."""
        return max(1, self.settings.estimator.rounds_per_update_budget // max(mapping_count, 1))

    def compute_mappings(
        self, cancel: Optional[CancelSignal] = None
    ) -> Optional[list[list[ExposureMapping]]]:
        """Build (and keep) the per-channel exposure mappings."""
        self.log_method_call("compute_mappings", bracket_sets=len(self.bracket_sets))
        builder = ExposureMappingBuilder(self.settings.mapping)
        self.mappings = builder.build(
            self.bracket_sets, self.floor, self.ceiling, cancel=cancel
        )
        return self.mappings

    def run(
        self,
        progress: Optional[ProgressCallback] = None,
        cancel: Optional[CancelSignal] = None,
    ) -> Optional[TransferFunctionResult]:
        """
        Run the estimation job.

        Args:
            progress: Called with (message, fraction) before every chunk.
            cancel: Cancellation signal checked between chunks.

        Returns:
            The last published result, or None if cancelled before any
            result was published.
        """
        report = progress or (lambda message, fraction: None)

        with LogContext(run_id=new_run_id()), log_operation(
            self.logger, "estimate_transfer_function", rounds=self.rounds
        ):
            report("Computing exposure mappings", 0.0)
            mappings = self.compute_mappings(cancel)
            if mappings is None:
                return self.result

            if self.joint:
                groups = [[m for chan in mappings for m in chan]]
            else:
                groups = mappings

            estimators = [
                EmorEstimator(group, basis=self.basis, settings=self.settings.estimator, rounds=self.rounds)
                for group in groups
            ]

            for index, estimator in enumerate(estimators):
                chunk = self.rounds_per_update(len(estimator.mappings))
                with LogContext(channel="all" if self.joint else index):
                    while not estimator.status.is_terminal:
                        done = estimator.snapshot().rounds_completed
                        report(
                            f"Estimating transfer function, round {done}/{self.rounds}",
                            (index + done / self.rounds) / len(estimators),
                        )
                        if is_cancelled(cancel):
                            estimator.cancel()
                            self._publish(self._collect(estimators, EstimatorStatus.CANCELLED))
                            self.logger.info("Transfer function estimation cancelled")
                            return self.result
                        estimator.advance(chunk, cancel=cancel)
                        self._publish(self._collect(estimators))

            result = self._collect(estimators)
            self._publish(result)
            report("Done", 1.0)

        if result.error is not None:
            self.logger.info(
                f"Transfer function estimated: error {result.error:.6g}",
                extra={"error_value": result.error},
            )
        return result

    def _collect(
        self,
        estimators: list[EmorEstimator],
        status: Optional[EstimatorStatus] = None,
    ) -> TransferFunctionResult:
        snapshots = [e.snapshot() for e in estimators]
        curves = []
        for estimator in estimators:
            curve = estimator.response_curve()
            if curve is None:
                # No data for this group: the zero-factor curve
                values = self.basis.to_linear_curve(
                    np.zeros(self.basis.factor_count),
                    min_slope=self.settings.estimator.export_min_slope,
                )
                curve = ResponseCurve(values=values)
            curves.append(curve)
        if len(curves) == 1:
            curves = curves * self.channel_count

        errors = [s.error for s in snapshots]
        known = [e for e in errors if e is not None]
        error = float(np.mean(known)) if known else None

        if status is None:
            statuses = {s.status for s in snapshots}
            if statuses == {EstimatorStatus.NO_DATA}:
                status = EstimatorStatus.NO_DATA
            elif EstimatorStatus.CANCELLED in statuses:
                status = EstimatorStatus.CANCELLED
            elif all(s.is_terminal for s in statuses):
                status = EstimatorStatus.CONVERGED
            else:
                status = EstimatorStatus.FITTING

        return TransferFunctionResult(
            curves=curves,
            error=error,
            rounds_completed=min(s.rounds_completed for s in snapshots),
            total_rounds=self.rounds,
            status=status,
            channel_errors=errors,
        )

    def build_lut(
        self,
        direction: LutDirection = LutDirection.TO_LINEAR,
        resolution: Optional[int] = None,
    ) -> Lut1D:
        """Build a LUT from the latest result, applying the sensor floor and ceiling."""
        result = self.result
        if result is None or result.error is None:
            raise ValueError("No transfer function estimate available")
        return build_transfer_lut(
            [c.to_numpy() for c in result.curves],
            floor=self.floor,
            ceiling=self.ceiling,
            direction=direction,
            resolution=resolution,
        )

    def save_lut(
        self,
        path: Path,
        direction: LutDirection = LutDirection.TO_LINEAR,
        format: Optional[LutFormat] = None,
    ) -> Path:
        """Build the LUT and write it to ``path``."""
        path = Path(path)
        if format is None and not path.suffix:
            format = self.settings.lut.default_format
        save_lut(self.build_lut(direction), path, format=format)
        return path
