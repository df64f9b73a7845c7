"""
Unit tests for core.batch_operations.operation module.

Tests OperationRecord state transitions, counters and serialization.
"""

import re
from datetime import datetime, timedelta

import pytest

from core.batch_operations.errors import InvalidStateTransitionError
from core.batch_operations.operation import (
    ItemResult,
    ItemStatus,
    OperationMetadata,
    OperationParameters,
    OperationPriority,
    OperationRecord,
    OperationStatus,
    OperationType,
    compute_progress,
    generate_operation_id,
)

NOW = datetime(2025, 1, 1, 12, 0, 0)


def make_record(items=None, **kwargs):
    items = items if items is not None else list(range(10))
    return OperationRecord(
        id="batch_test",
        operation_type=OperationType.MINT_VOUCHERS,
        initiated_by="user-1",
        parameters=OperationParameters(items=items),
        total_records=len(items),
        created_at=NOW,
        updated_at=NOW,
        **kwargs,
    )


def success(index):
    return ItemResult(record_index=index, status=ItemStatus.SUCCESS, processed_at=NOW, data={"i": index})


def failure(index, error="boom"):
    return ItemResult(record_index=index, status=ItemStatus.FAILED, processed_at=NOW, error=error)


class TestHelpers:
    """Tests for id generation and progress rounding."""

    def test_operation_id_format(self):
        """Test ids look like batch_<hex>_<hex> and are unique."""
        ids = {generate_operation_id() for _ in range(50)}
        assert len(ids) == 50
        for op_id in ids:
            assert re.fullmatch(r"batch_[0-9a-f]+_[0-9a-f]{8}", op_id)

    @pytest.mark.parametrize("processed,total,expected", [
        (0, 10, 0),
        (1, 3, 33),
        (2, 3, 67),
        (1, 200, 1),   # 0.5 rounds up
        (10, 10, 100),
        (5, 0, 0),
    ])
    def test_compute_progress(self, processed, total, expected):
        """Test progress is a whole percent with halves rounded up."""
        assert compute_progress(processed, total) == expected

    def test_priority_rank_order(self):
        """Test high ranks before medium before low."""
        assert OperationPriority.HIGH.rank < OperationPriority.MEDIUM.rank < OperationPriority.LOW.rank


class TestStateTransitions:
    """Tests for the status state machine."""

    def test_new_record_is_queued(self):
        """Test defaults of a new record."""
        record = make_record()
        assert record.status == OperationStatus.QUEUED
        assert record.batch_size == 50
        assert record.priority == OperationPriority.MEDIUM
        assert record.start_time is None

    def test_processing_sets_start_time_once(self):
        """Test a resumed run keeps its original start time."""
        record = make_record()
        record.mark_processing(NOW)
        record.mark_paused(NOW + timedelta(seconds=5))
        record.mark_resumed(NOW + timedelta(seconds=10))
        record.mark_processing(NOW + timedelta(seconds=20))

        assert record.start_time == NOW
        assert record.metadata.paused_at == NOW + timedelta(seconds=5)
        assert record.metadata.resumed_at == NOW + timedelta(seconds=10)

    def test_terminal_transitions_set_end_time(self):
        """Test completed/failed/cancelled record end_time."""
        for mark in ("completed", "cancelled"):
            record = make_record()
            record.mark_processing(NOW)
            getattr(record, f"mark_{mark}")(NOW + timedelta(seconds=3))
            assert record.end_time == NOW + timedelta(seconds=3)
            assert record.is_terminal

    def test_failed_records_error_entry(self):
        """Test mark_failed appends an operation-level error."""
        record = make_record()
        record.mark_processing(NOW)
        record.mark_failed("store unavailable", NOW)

        assert record.status == OperationStatus.FAILED
        assert len(record.errors) == 1
        assert record.errors[0].error == "store unavailable"

    @pytest.mark.parametrize("terminal", ["mark_completed", "mark_cancelled"])
    def test_terminal_states_reject_everything(self, terminal):
        """Test no transition leaves a terminal state."""
        record = make_record()
        record.mark_processing(NOW)
        getattr(record, terminal)(NOW)

        with pytest.raises(InvalidStateTransitionError):
            record.mark_processing(NOW)
        with pytest.raises(InvalidStateTransitionError):
            record.mark_cancelled(NOW)

    def test_resume_requires_paused(self):
        """Test resume from queued is rejected without mutation."""
        record = make_record()
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            record.mark_resumed(NOW)

        assert record.status == OperationStatus.QUEUED
        assert exc_info.value.action == "resume"
        assert exc_info.value.current_status == "queued"

    def test_paused_cannot_complete(self):
        """Test paused only goes to queued or cancelled."""
        record = make_record()
        record.mark_paused(NOW)
        assert not record.can_transition(OperationStatus.COMPLETED)
        assert not record.can_transition(OperationStatus.PROCESSING)
        assert record.can_transition(OperationStatus.CANCELLED)


class TestCounters:
    """Tests for record_chunk bookkeeping."""

    def test_record_chunk_updates_counts(self):
        """Test counts, progress and results after two chunks."""
        record = make_record()
        record.record_chunk([success(0), failure(1), success(2), success(3)], NOW)
        record.record_chunk([success(4), failure(5)], NOW)

        assert record.processed_records == 6
        assert record.successful_records == 4
        assert record.failed_records == 2
        assert record.processed_records == record.successful_records + record.failed_records
        assert record.progress == 60
        assert [r.record_index for r in record.results] == [0, 1, 2, 3, 4, 5]

    def test_success_rate(self):
        """Test success rate over processed items."""
        record = make_record()
        assert record.success_rate == 0
        record.record_chunk([success(0), success(1), failure(2)], NOW)
        assert record.success_rate == 67

    def test_estimated_time_remaining(self):
        """Test remaining time extrapolates the observed rate."""
        record = make_record()
        assert record.estimated_time_remaining(NOW) is None

        record.mark_processing(NOW)
        record.record_chunk([success(i) for i in range(5)], NOW)
        remaining = record.estimated_time_remaining(NOW + timedelta(seconds=10))
        assert remaining == pytest.approx(10.0)

    def test_failed_items_map_back_to_original_data(self):
        """Test failed results resolve to the submitted items."""
        record = make_record(items=["a", "b", "c", "d"])
        record.record_chunk([success(0), failure(1), success(2), failure(3)], NOW)

        assert record.failed_items() == [(1, "b"), (3, "d")]

    def test_can_retry_respects_max_retries(self):
        """Test the retry chain depth limit."""
        record = make_record(metadata=OperationMetadata(retry_count=3))
        assert record.parameters.max_retries == 3
        assert record.can_retry() is False


class TestSerialization:
    """Tests for to_dict / from_dict."""

    def test_round_trip_preserves_state(self):
        """Test a processed record survives serialization."""
        record = make_record(metadata=OperationMetadata(priority=OperationPriority.HIGH, retry_of="batch_src"))
        record.mark_processing(NOW)
        record.record_chunk([success(0), failure(1, "bad voucher")], NOW)

        restored = OperationRecord.from_dict(record.to_dict())

        assert restored.status == OperationStatus.PROCESSING
        assert restored.priority == OperationPriority.HIGH
        assert restored.metadata.retry_of == "batch_src"
        assert restored.start_time == NOW
        assert restored.results[1].error == "bad voucher"
        assert restored.results[0].data == {"i": 0}

    def test_to_dict_can_omit_items_and_results(self):
        """Test lightweight snapshots for status and listing."""
        record = make_record()
        record.record_chunk([success(0)], NOW)

        data = record.to_dict(include_results=False, include_items=False)

        assert "results" not in data
        assert "items" not in data["parameters"]
        assert data["parameters"]["parallel"] is True
        assert data["operation_type"] == "mint-vouchers"

    def test_item_result_dict_shape(self):
        """Test success entries carry data and failures carry error."""
        assert "error" not in success(0).to_dict()
        failed = failure(1).to_dict()
        assert failed["status"] == "failed"
        assert "data" not in failed
