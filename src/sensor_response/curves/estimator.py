"""
Gradient-descent fitting of EMOR factors to exposure mappings.

The estimator is driven by the caller in explicit chunks of rounds. Between
rounds it checks a cooperative cancellation signal, and after every round it
publishes an immutable snapshot of its factors and error, so a reader on
another thread can preview the fit while it is still running.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

from sensor_response.config import EstimatorSettings, get_settings
from sensor_response.core.cancellation import CancelSignal, is_cancelled
from sensor_response.core.logging import LoggingMixin
from sensor_response.core.models import ExposureMapping, ResponseCurve
from sensor_response.core.types import EstimatorStatus
from sensor_response.curves.algebra import sample_at_x, sample_at_y, walk_min_slope
from sensor_response.curves.emor import EmorBasis, get_default_basis


@dataclass(frozen=True)
class EstimateSnapshot:
    """Copy of the estimator state at the end of a round."""

    factors: tuple[float, ...]
    error: Optional[float]
    rounds_completed: int
    total_rounds: int
    status: EstimatorStatus

    @property
    def progress(self) -> float:
        """Fraction of the round budget used (1.0 once terminal)."""
        if self.status.is_terminal:
            return 1.0
        return self.rounds_completed / self.total_rounds

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "factors": list(self.factors),
            "error": self.error,
            "rounds_completed": self.rounds_completed,
            "total_rounds": self.total_rounds,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class _MappingTerm:
    """A mapping with everything the error function needs precomputed."""

    points: NDArray[np.float64]
    x_range: tuple[float, float]
    y_range: tuple[float, float]
    weight: float
    x_rows: NDArray[np.float64]  # basis rows at the shorter exposure's linear positions


def mapping_weight(mapping: ExposureMapping, settings: EstimatorSettings) -> float:
    """Confidence weight of a mapping in the fit.

    Mappings covering little tonal range carry little information and are
    discounted (to zero below ``min_extent``); mappings built from more
    samples count more.
    """
    adjusted = max(mapping.y_extent - settings.min_extent, 0.0) / (1.0 - settings.min_extent)
    sample_count_weight = mapping.sample_count / settings.sample_count_norm
    return sample_count_weight * adjusted * adjusted


class EmorEstimator(LoggingMixin):
    """Fits an EMOR factor vector to a set of exposure mappings.

    Status moves from UNINITIALIZED to FITTING on the first round, and ends in
    CONVERGED (budget used up or gradient vanished) or CANCELLED. An empty
    mapping set puts the estimator straight into NO_DATA: it declines to run
    and reports no error value.

    Example:
        estimator = EmorEstimator(mappings, rounds=300)
        while not estimator.status.is_terminal:
            snapshot = estimator.advance(10, cancel=stop_event)
    """

    def __init__(
        self,
        mappings: Sequence[ExposureMapping],
        basis: EmorBasis | None = None,
        settings: EstimatorSettings | None = None,
        rounds: int | None = None,
    ):
        """
        Args:
            mappings: Mappings fitted jointly.
            basis: EMOR basis. Defaults to the shared process basis.
            settings: Estimator settings. Defaults to the global settings.
            rounds: Round budget over which the step size decays.
        """
        self.settings = settings or get_settings().estimator
        self.basis = basis or get_default_basis()
        self.mappings: tuple[ExposureMapping, ...] = tuple(mappings)
        self.total_rounds = rounds if rounds is not None else self.settings.rounds
        if self.total_rounds < 1:
            raise ValueError("Round budget must be positive")

        points = self.settings.points
        self._min_delta = self.settings.min_slope / self.basis.samples
        self._non_mono_weight = (
            self.settings.non_mono_scale * len(self.mappings) * points / self.basis.samples
        )
        self._y_linear = np.linspace(0.0, 1.0, points)
        self._y_rows = self.basis.sample_rows(self._y_linear)
        self._terms = [self._prepare(m) for m in self.mappings]

        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._running = False
        self._round = 0
        self._factors = np.zeros(self.basis.factor_count)

        if self.mappings:
            self._error: Optional[float] = self.calc_error(self._factors)
            self._status = EstimatorStatus.UNINITIALIZED
        else:
            self._error = None
            self._status = EstimatorStatus.NO_DATA
            self.logger.warning("No exposure mappings supplied, nothing to fit")

    def _prepare(self, mapping: ExposureMapping) -> _MappingTerm:
        pts = mapping.to_numpy()
        x_linear = self._y_linear / mapping.exposure_ratio
        return _MappingTerm(
            points=pts,
            x_range=(pts[0, 0], pts[-1, 0]),
            y_range=(pts[0, 1], pts[-1, 1]),
            weight=mapping_weight(mapping, self.settings),
            x_rows=self.basis.sample_rows(x_linear),
        )

    @staticmethod
    def _combine(rows: NDArray[np.float64], factors: NDArray[np.float64]) -> NDArray[np.float64]:
        return rows[0] + rows[1] + factors @ rows[2 : 2 + len(factors)]

    def calc_error(self, factors: ArrayLike) -> float:
        """Weighted fit error of a candidate factor vector.

        Combines a soft monotonicity penalty over the whole curve with the
        disagreement between the candidate curve and every mapping. Samples
        outside a mapping's observed range are skipped.
        """
        if not self.mappings:
            raise ValueError("Cannot compute a fit error without mappings")
        f = np.asarray(factors, dtype=np.float64)

        curve = self.basis.combined_curve(f)
        _, shortfall = walk_min_slope(curve, self._min_delta, lift=False, start=-self._min_delta)
        err_sum = float(shortfall.sum()) * self._non_mono_weight
        weight_sum = self._non_mono_weight * len(curve)

        y = self._combine(self._y_rows, f)
        for term in self._terms:
            if term.weight <= 0.0:
                continue
            x = self._combine(term.x_rows, f)

            in_y = (y >= term.y_range[0]) & (y <= term.y_range[1])
            if in_y.any():
                x_map = sample_at_y(term.points, y[in_y])
                err_sum += float(np.abs(x[in_y] - x_map).sum()) * term.weight
                weight_sum += int(in_y.sum()) * term.weight

            in_x = (x >= term.x_range[0]) & (x <= term.x_range[1])
            if in_x.any():
                y_map = sample_at_x(term.points, x[in_x])
                err_sum += float(np.abs(y[in_x] - y_map).sum()) * term.weight
                weight_sum += int(in_x.sum()) * term.weight

        return err_sum / weight_sum

    def step_size(self, round_index: int) -> float:
        """Step length of a round, decaying linearly over the budget."""
        start = self.settings.start_step_size
        end = self.settings.end_step_size
        t = min(round_index / self.total_rounds, 1.0)
        return start + t * (end - start)

    @property
    def status(self) -> EstimatorStatus:
        with self._lock:
            return self._status

    def snapshot(self) -> EstimateSnapshot:
        """Consistent copy of the published state."""
        with self._lock:
            return self._snapshot_locked()

    def current_estimate(self) -> tuple[NDArray[np.float64], Optional[float]]:
        """Current (factors, error) as an owned copy."""
        snap = self.snapshot()
        return np.array(snap.factors), snap.error

    def cancel(self) -> None:
        """Request cancellation; takes effect before the next round."""
        self._cancel_event.set()
        with self._lock:
            if not self._running and not self._status.is_terminal:
                self._status = EstimatorStatus.CANCELLED
                self.logger.info(f"Estimation cancelled after {self._round} rounds")

    def advance(self, rounds: int, cancel: Optional[CancelSignal] = None) -> EstimateSnapshot:
        """Run up to ``rounds`` more optimization rounds.

        Args:
            rounds: Number of rounds to run in this call.
            cancel: Optional cancellation signal checked before every round.

        Returns:
            Snapshot of the state after the last completed round.
        """
        if rounds < 0:
            raise ValueError("rounds must be non-negative")

        with self._lock:
            if self._status.is_terminal:
                if self._status == EstimatorStatus.NO_DATA:
                    self.logger.info("Nothing to fit, estimator declined to run")
                return self._snapshot_locked()
            if self._status == EstimatorStatus.UNINITIALIZED:
                self.logger.info(
                    f"Starting EMOR fit: {len(self.mappings)} mappings, "
                    f"{self.total_rounds} rounds, initial error {self._error:.6g}",
                    extra={"mapping_count": len(self.mappings), "rounds": self.total_rounds},
                )
            self._running = True

        try:
            for _ in range(rounds):
                if self._cancel_event.is_set() or is_cancelled(cancel):
                    self._finish(EstimatorStatus.CANCELLED, "cancelled")
                    break
                if self._round >= self.total_rounds:
                    self._finish(EstimatorStatus.CONVERGED, "round budget exhausted")
                    break
                if not self._step():
                    self._finish(EstimatorStatus.CONVERGED, "gradient vanished")
                    break
            else:
                if self._round >= self.total_rounds:
                    self._finish(EstimatorStatus.CONVERGED, "round budget exhausted")

            # cancel() during the last round of the chunk
            with self._lock:
                pending = self._cancel_event.is_set() and not self._status.is_terminal
            if pending:
                self._finish(EstimatorStatus.CANCELLED, "cancelled")
        finally:
            with self._lock:
                self._running = False

        return self.snapshot()

    def run(self, cancel: Optional[CancelSignal] = None) -> EstimateSnapshot:
        """Run the remaining round budget."""
        return self.advance(max(self.total_rounds - self._round, 0), cancel=cancel)

    def _step(self) -> bool:
        """One numeric-gradient step. Returns False if the gradient vanished."""
        factors = self._factors
        err = self._error
        delta = self.settings.gradient_delta

        error_diffs = np.empty(len(factors))
        for i in range(len(factors)):
            test_factors = factors.copy()
            test_factors[i] += delta
            error_diffs[i] = self.calc_error(test_factors) - err

        diff_length = float(np.sqrt(np.sum(error_diffs * error_diffs)))
        if not diff_length > 0.0:
            return False

        new_factors = factors - error_diffs * (self.step_size(self._round) / diff_length)
        new_error = self.calc_error(new_factors)

        with self._lock:
            self._factors = new_factors
            self._error = new_error
            self._round += 1
            self._status = EstimatorStatus.FITTING

        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(
                f"Round {self._round}/{self.total_rounds}: error {new_error:.6g}",
                extra={"rounds": self._round, "error_value": new_error},
            )
        return True

    def _finish(self, status: EstimatorStatus, reason: str) -> None:
        with self._lock:
            self._status = status
            rounds, error = self._round, self._error
        self.logger.info(
            f"EMOR fit {status.value} ({reason}) after {rounds} rounds, error {error:.6g}",
            extra={"rounds": rounds, "error_value": error},
        )

    def _snapshot_locked(self) -> EstimateSnapshot:
        return EstimateSnapshot(
            factors=tuple(float(f) for f in self._factors),
            error=self._error,
            rounds_completed=self._round,
            total_rounds=self.total_rounds,
            status=self._status,
        )

    def response_curve(self) -> Optional[ResponseCurve]:
        """To-linear curve for the current factors, or None without data."""
        snap = self.snapshot()
        if snap.error is None:
            return None
        values = self.basis.to_linear_curve(snap.factors, min_slope=self.settings.export_min_slope)
        return ResponseCurve(values=values, error=snap.error, factors=snap.factors)


def estimate_emor(
    mappings: Sequence[ExposureMapping],
    rounds: int | None = None,
    basis: EmorBasis | None = None,
    cancel: Optional[CancelSignal] = None,
) -> Optional[tuple[NDArray[np.float64], float]]:
    """Fit EMOR factors over the full round budget.

    Returns:
        (factors, error), or None when there is nothing to fit.
    """
    estimator = EmorEstimator(mappings, basis=basis, rounds=rounds)
    if estimator.status == EstimatorStatus.NO_DATA:
        return None
    estimator.run(cancel=cancel)
    factors, error = estimator.current_estimate()
    return factors, error
