"""
Unit tests for core.batch_operations.chunk_runner module.

Tests chunking, parallel/sequential execution, checkpoints and
pause/cancel handling at chunk boundaries.
"""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, Mock

import pytest

from core.batch_operations.chunk_runner import (
    ChunkRunner,
    ControlSignals,
    RunOutcome,
    create_chunks,
)
from core.batch_operations.events import EventEmitter
from core.batch_operations.item_executor import ItemExecutor
from core.batch_operations.operation import (
    OperationParameters,
    OperationRecord,
    OperationStatus,
    OperationType,
)
from core.batch_operations.store import InMemoryOperationStore

NOW = datetime(2025, 1, 1, 12, 0, 0)


def make_record(items, batch_size=4, parallel=True):
    record = OperationRecord(
        id="batch_runner",
        operation_type=OperationType.MINT_VOUCHERS,
        initiated_by="admin",
        parameters=OperationParameters(items=items, parallel=parallel),
        batch_size=batch_size,
        total_records=len(items),
        created_at=NOW,
        updated_at=NOW,
    )
    record.mark_processing(NOW)
    return record


def make_runner(handler, signals=None, store=None, emitter=None):
    executor = ItemExecutor()
    executor.register(OperationType.MINT_VOUCHERS, handler)
    return ChunkRunner(
        executor=executor,
        store=store if store is not None else InMemoryOperationStore(),
        signals=signals or ControlSignals(),
        emitter=emitter,
        clock=lambda: NOW,
    )


async def echo(item):
    return {"minted": item}


class TestCreateChunks:
    """Tests for create_chunks."""

    def test_even_and_uneven_split(self):
        """Test the last chunk holds the remainder."""
        chunks = create_chunks(list(range(10)), 4)
        assert chunks == [(0, [0, 1, 2, 3]), (4, [4, 5, 6, 7]), (8, [8, 9])]

    def test_start_offset(self):
        """Test chunking from a resume point."""
        assert create_chunks(list("abcdef"), 2, start=4) == [(4, ["e", "f"])]
        assert create_chunks(list("abcd"), 2, start=4) == []

    def test_invalid_size(self):
        """Test zero chunk size is rejected."""
        with pytest.raises(ValueError):
            create_chunks([1], 0)


class TestControlSignals:
    """Tests for ControlSignals."""

    def test_consume_is_one_shot(self):
        """Test a request is returned once then cleared."""
        signals = ControlSignals()
        signals.request_pause("op")
        assert signals.pause_requested("op")
        assert signals.consume("op") == RunOutcome.PAUSED
        assert signals.consume("op") is None

    def test_cancel_wins_over_pause(self):
        """Test cancel takes precedence and clears pause."""
        signals = ControlSignals()
        signals.request_pause("op")
        signals.request_cancel("op")
        assert signals.consume("op") == RunOutcome.CANCELLED
        assert not signals.pause_requested("op")


class TestChunkRunner:
    """Tests for ChunkRunner.run."""

    @pytest.mark.asyncio
    async def test_completes_and_covers_every_index(self):
        """Test 10 items in chunks of 4 produce 10 ordered results."""
        store = InMemoryOperationStore()
        runner = make_runner(echo, store=store)
        record = make_record([f"v{i}" for i in range(10)], batch_size=4)

        outcome = await runner.run(record)

        assert outcome == RunOutcome.COMPLETED
        assert record.status == OperationStatus.COMPLETED
        assert record.total_records == 10
        assert [r.record_index for r in record.results] == list(range(10))
        assert record.results[3].data == {"minted": "v3"}
        assert record.progress == 100
        assert store.get(record.id).status == OperationStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_item_failure_does_not_fail_operation(self):
        """Test one failing item is recorded and siblings still succeed."""
        async def handler(item):
            if item == 2:
                raise RuntimeError("voucher service rejected item")
            return item

        runner = make_runner(handler)
        record = make_record(list(range(5)), batch_size=5)

        outcome = await runner.run(record)

        assert outcome == RunOutcome.COMPLETED
        assert record.successful_records == 4
        assert record.failed_records == 1
        assert record.results[2].error == "voucher service rejected item"

    @pytest.mark.asyncio
    async def test_empty_error_message_uses_class_name(self):
        """Test exceptions without a message are still described."""
        runner = make_runner(AsyncMock(side_effect=KeyError()))
        record = make_record([1], batch_size=1)

        await runner.run(record)

        assert record.results[0].error == "KeyError"

    @pytest.mark.asyncio
    async def test_parallel_results_keep_index_order(self):
        """Test out-of-order completion still yields ordered results."""
        async def handler(item):
            await asyncio.sleep(0.01 * (4 - item))
            return item

        runner = make_runner(handler)
        record = make_record([0, 1, 2, 3], batch_size=4, parallel=True)

        await runner.run(record)

        assert [(r.record_index, r.data) for r in record.results] == [(i, i) for i in range(4)]

    @pytest.mark.asyncio
    async def test_parallel_runs_chunk_concurrently(self):
        """Test all items of a chunk are in flight together."""
        in_flight = 0
        peak = 0

        async def handler(item):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

        await make_runner(handler).run(make_record(list(range(6)), batch_size=3, parallel=True))
        assert peak == 3

    @pytest.mark.asyncio
    async def test_sequential_runs_one_at_a_time(self):
        """Test sequential mode never overlaps items."""
        in_flight = 0
        peak = 0
        order = []

        async def handler(item):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            order.append(item)
            in_flight -= 1

        await make_runner(handler).run(make_record(list(range(6)), batch_size=3, parallel=False))
        assert peak == 1
        assert order == list(range(6))

    @pytest.mark.asyncio
    async def test_persists_and_emits_after_every_chunk(self):
        """Test one save and one progress event per chunk."""
        store = Mock()
        emitter = EventEmitter()
        events = []
        emitter.add_callback(lambda event, payload: events.append((event, payload["processed_records"])))

        runner = make_runner(echo, store=store, emitter=emitter)
        await runner.run(make_record(list(range(10)), batch_size=4))

        # 3 chunks + completion
        assert store.save.call_count == 4
        assert events == [("progress", 4), ("progress", 8), ("progress", 10), ("completed", 10)]

    @pytest.mark.asyncio
    async def test_pause_takes_effect_at_chunk_boundary(self):
        """Test a pause requested mid-chunk lets the chunk finish."""
        signals = ControlSignals()
        record = make_record(list(range(10)), batch_size=4)

        async def handler(item):
            if item == 5:
                signals.request_pause(record.id)
            return item

        outcome = await make_runner(handler, signals=signals).run(record)

        assert outcome == RunOutcome.PAUSED
        assert record.status == OperationStatus.PAUSED
        assert record.processed_records == 8
        assert record.metadata.paused_at == NOW

    @pytest.mark.asyncio
    async def test_resume_continues_from_processed_records(self):
        """Test a second run only processes the remaining items."""
        signals = ControlSignals()
        record = make_record(list(range(10)), batch_size=4)
        seen = []

        async def handler(item):
            seen.append(item)
            if item == 1:
                signals.request_pause(record.id)
            return item

        runner = make_runner(handler, signals=signals)
        assert await runner.run(record) == RunOutcome.PAUSED
        assert record.processed_records == 4

        record.mark_resumed(NOW)
        record.mark_processing(NOW)
        assert await runner.run(record) == RunOutcome.COMPLETED

        assert sorted(seen) == list(range(10))
        assert record.processed_records == record.total_records == 10

    @pytest.mark.asyncio
    async def test_cancel_takes_effect_at_chunk_boundary(self):
        """Test cancel keeps already recorded results."""
        signals = ControlSignals()
        record = make_record(list(range(10)), batch_size=4)

        async def handler(item):
            signals.request_cancel(record.id)
            return item

        outcome = await make_runner(handler, signals=signals).run(record)

        assert outcome == RunOutcome.CANCELLED
        assert record.status == OperationStatus.CANCELLED
        assert len(record.results) == 4
        assert record.end_time == NOW

    @pytest.mark.asyncio
    async def test_request_during_last_chunk_is_ignored(self):
        """Test the operation completes if nothing is left to pause."""
        signals = ControlSignals()
        record = make_record(list(range(4)), batch_size=4)

        async def handler(item):
            signals.request_pause(record.id)
            return item

        outcome = await make_runner(handler, signals=signals).run(record)

        assert outcome == RunOutcome.COMPLETED
        assert not signals.pause_requested(record.id)

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self):
        """Test errors outside item execution escape the runner."""
        store = Mock()
        store.save.side_effect = OSError("disk full")

        with pytest.raises(OSError):
            await make_runner(echo, store=store).run(make_record([1, 2], batch_size=1))
