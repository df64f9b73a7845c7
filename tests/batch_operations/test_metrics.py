"""
Unit tests for core.batch_operations.metrics module.
"""

import pytest

from core.batch_operations.metrics import MetricsAggregator, MetricsSnapshot


class TestMetricsAggregator:
    """Tests for MetricsAggregator."""

    def test_counters(self):
        """Test created/completed/failed/cancelled counters."""
        metrics = MetricsAggregator()
        for _ in range(4):
            metrics.record_created()
        metrics.record_completed(1.0, 10)
        metrics.record_failed()
        metrics.record_cancelled()

        snapshot = metrics.snapshot()
        assert snapshot.total_operations == 4
        assert snapshot.successful_operations == 1
        assert snapshot.failed_operations == 1
        assert snapshot.cancelled_operations == 1

    def test_two_point_average(self):
        """Test each completion is averaged with the previous value."""
        metrics = MetricsAggregator()
        metrics.record_completed(1.0, 10)    # 100 ms/record
        assert metrics.average_processing_time_ms == pytest.approx(100.0)

        metrics.record_completed(3.0, 10)    # 300 ms/record
        assert metrics.average_processing_time_ms == pytest.approx(200.0)

        metrics.record_completed(0.4, 2)     # 200 ms/record
        assert metrics.average_processing_time_ms == pytest.approx(200.0)

    def test_zero_records_does_not_touch_average(self):
        """Test an empty completion only bumps the counter."""
        metrics = MetricsAggregator()
        metrics.record_completed(5.0, 0)
        assert metrics.average_processing_time_ms == 0
        assert metrics.snapshot().successful_operations == 1

    def test_estimate_uses_default_until_measured(self):
        """Test the estimate falls back to the default per-record time."""
        metrics = MetricsAggregator(default_ms_per_record=100)
        assert metrics.estimate_seconds(25) == 3   # 2.5s rounded up

        metrics.record_completed(2.0, 10)          # 200 ms/record
        assert metrics.estimate_seconds(25) == 5

    def test_snapshot_is_a_copy(self):
        """Test snapshots do not change afterwards."""
        metrics = MetricsAggregator()
        snapshot = metrics.snapshot()
        metrics.record_created()
        assert snapshot.total_operations == 0

    def test_snapshot_to_dict_rounds_average(self):
        """Test dict output rounding."""
        data = MetricsSnapshot(average_processing_time_ms=12.3456).to_dict()
        assert data["average_processing_time_ms"] == 12.35
