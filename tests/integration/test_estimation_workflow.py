"""
Integration tests for the transfer function estimation workflow.

Exercises the full pipeline: bracketed histograms -> exposure mappings ->
EMOR fit -> LUT export.
"""

import threading

import numpy as np
import pytest

from sensor_response.core.types import EstimatorStatus, LutDirection
from sensor_response.curves.algebra import is_non_decreasing, sample_uniform
from sensor_response.curves.export import load_lut
from sensor_response.curves.visualization import ResponseVisualizer
from sensor_response.workflow import TransferFunctionEstimation

pytestmark = pytest.mark.integration


class TestTransferFunctionEstimation:
    """End-to-end tests of TransferFunctionEstimation."""

    def test_joint_fit(self, basis, square_bracket_sets):
        """Test a joint fit of all channels with progress reporting."""
        job = TransferFunctionEstimation(square_bracket_sets, rounds=200, basis=basis)
        reports = []

        result = job.run(progress=lambda message, fraction: reports.append((message, fraction)))

        assert result.status == EstimatorStatus.CONVERGED
        assert result.rounds_completed == 200
        assert result.error is not None
        assert len(result.curves) == 3
        assert result.curves[0] == result.curves[2]

        values = result.curves[0].values
        assert is_non_decreasing(values)
        assert sample_uniform(values, 0.5) == pytest.approx(0.25, abs=0.1)

        fractions = [f for _, f in reports]
        assert reports[0][0] == "Computing exposure mappings"
        assert fractions == sorted(fractions)
        assert fractions[-1] == 1.0
        assert job.result is result

    def test_chunk_size(self, basis, square_bracket_sets):
        """Test that chunks shrink as the mapping count grows."""
        job = TransferFunctionEstimation(square_bracket_sets, basis=basis)

        assert job.rounds_per_update(6) == 166
        assert job.rounds_per_update(5000) == 1

    def test_per_channel_fit(self, basis, square_bracket_sets):
        """Test fitting every channel separately."""
        job = TransferFunctionEstimation(square_bracket_sets, rounds=100, joint=False, basis=basis)

        result = job.run()

        assert result.status == EstimatorStatus.CONVERGED
        assert len(result.channel_errors) == 3
        assert all(e is not None for e in result.channel_errors)
        assert result.error == pytest.approx(np.mean(result.channel_errors))

    def test_cancel_between_chunks(self, basis, square_bracket_sets):
        """Test that cancelling keeps the result of the completed chunks."""
        job = TransferFunctionEstimation(square_bracket_sets, rounds=500, basis=basis)
        cancel = threading.Event()

        def progress(message, fraction):
            if fraction > 0.0:
                cancel.set()

        result = job.run(progress=progress, cancel=cancel)

        assert result.status == EstimatorStatus.CANCELLED
        assert result.rounds_completed == 166
        assert result.error is not None

    def test_cancel_during_mapping(self, basis, square_bracket_sets):
        """Test that cancelling before estimation publishes nothing."""
        job = TransferFunctionEstimation(square_bracket_sets, basis=basis)

        assert job.run(cancel=lambda: True) is None

    def test_no_data(self, basis, degenerate_bracket_sets):
        """Test that degenerate input reports no data instead of failing."""
        job = TransferFunctionEstimation(degenerate_bracket_sets, rounds=50, basis=basis)

        result = job.run()

        assert result.status == EstimatorStatus.NO_DATA
        assert result.error is None
        assert result.rounds_completed == 0
        with pytest.raises(ValueError):
            job.build_lut()

    def test_lut_export(self, basis, square_bracket_sets, tmp_path):
        """Test writing both LUT directions after a fit."""
        job = TransferFunctionEstimation(
            square_bracket_sets,
            floor=(0.02, 0.02, 0.02),
            ceiling=(0.98, 0.98, 0.98),
            rounds=100,
            basis=basis,
        )
        job.run()

        to_linear = load_lut(job.save_lut(tmp_path / "to_linear.cube"))
        from_linear = load_lut(job.save_lut(tmp_path / "from_linear.spi1d", LutDirection.FROM_LINEAR))

        assert to_linear.channel_count == 3
        assert len(to_linear.tables[0]) == basis.samples
        assert to_linear.apply(0, 0.02) == pytest.approx(0.0, abs=1e-5)
        assert to_linear.apply(0, 0.98) == pytest.approx(1.0, abs=1e-5)
        assert len(from_linear.tables[0]) == 4096
        assert from_linear.apply(1, 0.0) == pytest.approx(0.02, abs=2e-3)

    def test_save_without_extension_uses_default_format(self, basis, square_bracket_sets, tmp_path):
        """Test that a bare path gets the configured default format."""
        job = TransferFunctionEstimation(square_bracket_sets, rounds=20, basis=basis)
        job.run()

        path = job.save_lut(tmp_path / "camera")

        assert path.read_text().startswith("Version 1")

    def test_diagnostic_plot(self, basis, square_bracket_sets):
        """Test plotting the fitted mappings."""
        job = TransferFunctionEstimation(square_bracket_sets, rounds=50, basis=basis)
        result = job.run()

        fig = ResponseVisualizer().plot_exposure_mappings(job.mappings, result.curves)

        assert len(fig.axes[0].collections) == 3

    def test_to_dict(self, basis, square_bracket_sets):
        """Test result serialization."""
        job = TransferFunctionEstimation(square_bracket_sets, rounds=10, basis=basis)

        data = job.run().to_dict()

        assert data["status"] == "converged"
        assert len(data["curves"]) == 3
        assert data["total_rounds"] == 10
