"""
Chunk-level execution of an operation's items.

Splits the remaining items into contiguous chunks of ``batch_size`` and
runs them one chunk at a time, either all items of a chunk concurrently
or one after another. Pause and cancel requests are only honored between
chunks, and the record is persisted after every chunk, so a chunk is
never half-recorded.
"""

import asyncio
import threading
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional, Set, Tuple

from config.logging_config import get_logger, get_operation_logger

from .events import EventEmitter
from .item_executor import ItemExecutor
from .operation import ItemResult, ItemStatus, OperationRecord
from .store import OperationStore

logger = get_logger(__name__)


class RunOutcome(str, Enum):
    """How a run of the chunk loop ended"""
    COMPLETED = "completed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


def create_chunks(items: List[Any], chunk_size: int, start: int = 0) -> List[Tuple[int, List[Any]]]:
    """
    Split items[start:] into (first_record_index, chunk) pairs.

    >>> create_chunks(["a", "b", "c", "d", "e"], 2)
    [(0, ['a', 'b']), (2, ['c', 'd']), (4, ['e'])]
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return [
        (offset, items[offset:offset + chunk_size])
        for offset in range(start, len(items), chunk_size)
    ]


def _error_message(error: BaseException) -> str:
    return str(error) or type(error).__name__


class ControlSignals:
    """
    Pending pause/cancel requests for running operations.

    Written by the lifecycle methods, consumed by the runner at chunk
    boundaries. Cancel wins over pause.
    """

    def __init__(self):
        self._pause: Set[str] = set()
        self._cancel: Set[str] = set()
        self._lock = threading.Lock()

    def request_pause(self, operation_id: str):
        with self._lock:
            self._pause.add(operation_id)

    def request_cancel(self, operation_id: str):
        with self._lock:
            self._cancel.add(operation_id)

    def pause_requested(self, operation_id: str) -> bool:
        with self._lock:
            return operation_id in self._pause

    def cancel_requested(self, operation_id: str) -> bool:
        with self._lock:
            return operation_id in self._cancel

    def consume(self, operation_id: str) -> Optional[RunOutcome]:
        """Pop the pending request for this id, if any."""
        with self._lock:
            if operation_id in self._cancel:
                self._cancel.discard(operation_id)
                self._pause.discard(operation_id)
                return RunOutcome.CANCELLED
            if operation_id in self._pause:
                self._pause.discard(operation_id)
                return RunOutcome.PAUSED
        return None

    def clear(self, operation_id: str):
        with self._lock:
            self._pause.discard(operation_id)
            self._cancel.discard(operation_id)


class ChunkRunner:
    """
    Drives one operation from its next unprocessed chunk to a checkpoint.

    Usage:
        runner = ChunkRunner(executor, store, signals)
        outcome = await runner.run(record)   # COMPLETED, PAUSED or CANCELLED

    Exceptions other than item failures (store errors, bugs) propagate to
    the caller, which owns marking the operation failed.
    """

    def __init__(
        self,
        executor: ItemExecutor,
        store: OperationStore,
        signals: ControlSignals,
        emitter: Optional[EventEmitter] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.executor = executor
        self.store = store
        self.signals = signals
        self.emitter = emitter or EventEmitter()
        self.clock = clock

    async def run(self, record: OperationRecord) -> RunOutcome:
        """
        Process the remaining chunks of a record already in ``processing``.

        Resumes at ``processed_records``, which is always a chunk boundary.
        """
        log = get_operation_logger(logger, record.id)
        chunks = create_chunks(record.parameters.items, record.batch_size, start=record.processed_records)
        total_chunks = len(chunks)

        log.debug(
            f"{total_chunks} chunk(s) left, batch_size={record.batch_size}, "
            f"mode={'parallel' if record.parameters.parallel else 'sequential'}"
        )

        for number, (start_index, chunk) in enumerate(chunks, start=1):
            signal = self.signals.consume(record.id)
            if signal == RunOutcome.CANCELLED:
                record.mark_cancelled(self.clock())
                self.store.save(record)
                await self._emit("cancelled", record)
                log.info(f"Cancelled at {record.processed_records}/{record.total_records}")
                return RunOutcome.CANCELLED
            if signal == RunOutcome.PAUSED:
                record.mark_paused(self.clock())
                self.store.save(record)
                await self._emit("paused", record)
                log.info(f"Paused at {record.processed_records}/{record.total_records}")
                return RunOutcome.PAUSED

            outcomes = await self.run_chunk(record, start_index, chunk)

            record.record_chunk(outcomes, self.clock())
            self.store.save(record)
            await self._emit("progress", record)

            log.info(
                f"Chunk {number}/{total_chunks}: progress {record.progress}% "
                f"({record.successful_records} ok, {record.failed_records} failed)"
            )

        # Requests that arrived during the last chunk have nothing left to stop
        self.signals.clear(record.id)
        record.mark_completed(self.clock())
        self.store.save(record)
        await self._emit("completed", record)
        return RunOutcome.COMPLETED

    async def run_chunk(
        self,
        record: OperationRecord,
        start_index: int,
        chunk: List[Any],
    ) -> List[ItemResult]:
        """Execute one chunk; results come back in record_index order."""
        if record.parameters.parallel:
            return await self._run_parallel(record, start_index, chunk)
        return await self._run_sequential(record, start_index, chunk)

    async def _run_parallel(self, record: OperationRecord, start_index: int, chunk: List[Any]) -> List[ItemResult]:
        tasks = [self.executor.execute(record.operation_type, item) for item in chunk]
        settled = await asyncio.gather(*tasks, return_exceptions=True)

        processed_at = self.clock()
        results = []
        for offset, value in enumerate(settled):
            if isinstance(value, BaseException):
                results.append(self._failure(record, start_index + offset, value, processed_at))
            else:
                results.append(ItemResult(
                    record_index=start_index + offset,
                    status=ItemStatus.SUCCESS,
                    data=value,
                    processed_at=processed_at,
                ))
        return results

    async def _run_sequential(self, record: OperationRecord, start_index: int, chunk: List[Any]) -> List[ItemResult]:
        results = []
        for offset, item in enumerate(chunk):
            index = start_index + offset
            try:
                data = await self.executor.execute(record.operation_type, item)
            except Exception as e:
                results.append(self._failure(record, index, e, self.clock()))
                continue
            results.append(ItemResult(
                record_index=index,
                status=ItemStatus.SUCCESS,
                data=data,
                processed_at=self.clock(),
            ))
        return results

    def _failure(self, record: OperationRecord, index: int, error: BaseException, processed_at: datetime) -> ItemResult:
        message = _error_message(error)
        logger.debug(f"[Batch:{record.id}] item {index} failed: {message}")
        return ItemResult(
            record_index=index,
            status=ItemStatus.FAILED,
            error=message,
            processed_at=processed_at,
        )

    async def _emit(self, event: str, record: OperationRecord):
        await self.emitter.emit(event, record.to_dict(include_results=False, include_items=False))
