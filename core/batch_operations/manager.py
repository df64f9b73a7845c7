"""
Batch Operation Manager
Lifecycle controller and scheduler for batch operations.

Usage:
    manager = BatchOperationManager(store, executor, ManagerConfig.from_settings())
    await manager.start()

    created = manager.create("mint-vouchers", items, initiated_by="user-1", batch_size=25)
    manager.pause(created["operation_id"])
    manager.resume(created["operation_id"])

    await manager.stop()

The scheduler is a single asyncio task that calls ``tick()`` every
``scheduler_interval_seconds``. Each tick fills every free slot (up to
``max_concurrent_operations``) from the priority queue and starts one
asyncio task per operation. Lifecycle methods are synchronous and run on
the same event loop as the scheduler; the only state they share with a
running operation is the pause/cancel request set.
"""

import asyncio
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from config.constants import (
    BATCH_DEFAULT_SIZE,
    BATCH_MAX_SIZE,
    BATCH_DEFAULT_PRIORITY,
    BATCH_MAX_RETRIES,
    BATCH_PARALLEL_DEFAULT,
    SCHEDULER_MAX_CONCURRENT_OPERATIONS,
    SCHEDULER_INTERVAL_SECONDS,
    OPERATION_TIMEOUT_SECONDS,
    DEFAULT_MS_PER_RECORD,
    RESULTS_DEFAULT_PAGE_SIZE,
    RESULTS_MAX_PAGE_SIZE,
    LIST_DEFAULT_LIMIT,
    LIST_MAX_LIMIT,
)
from config.logging_config import get_logger, get_operation_logger

from .chunk_runner import ChunkRunner, ControlSignals, RunOutcome
from .errors import (
    EmptyItemListError,
    InvalidBatchSizeError,
    InvalidOperationTypeError,
    InvalidPriorityError,
    InvalidStateTransitionError,
    NoFailedItemsError,
    OperationNotFoundError,
    RetryLimitExceededError,
)
from .events import (
    CompletionCallback,
    EventEmitter,
    ProgressCallback,
    format_duration,
    invoke_callback,
    log_completion,
)
from .export import ExportedResults, export_results
from .item_executor import ItemExecutor
from .metrics import MetricsAggregator
from .operation import (
    OperationMetadata,
    OperationParameters,
    OperationPriority,
    OperationRecord,
    OperationStatus,
    OperationType,
    generate_operation_id,
)
from .priority_queue import OperationQueue
from .store import OperationStore

logger = get_logger(__name__)


@dataclass
class ManagerConfig:
    """Scheduler and operation defaults"""
    max_concurrent_operations: int = SCHEDULER_MAX_CONCURRENT_OPERATIONS
    scheduler_interval_seconds: float = SCHEDULER_INTERVAL_SECONDS
    default_batch_size: int = BATCH_DEFAULT_SIZE
    max_batch_size: int = BATCH_MAX_SIZE
    default_priority: str = BATCH_DEFAULT_PRIORITY
    default_max_retries: int = BATCH_MAX_RETRIES
    default_parallel: bool = BATCH_PARALLEL_DEFAULT
    operation_timeout_seconds: Optional[float] = OPERATION_TIMEOUT_SECONDS  # None = no budget
    default_ms_per_record: float = DEFAULT_MS_PER_RECORD

    @classmethod
    def from_settings(cls, settings: Optional[Any] = None) -> "ManagerConfig":
        if settings is None:
            from config.settings import settings

        return cls(
            max_concurrent_operations=settings.max_concurrent_operations,
            scheduler_interval_seconds=settings.scheduler_interval_seconds,
            default_batch_size=settings.default_batch_size,
            max_batch_size=settings.max_batch_size,
            default_priority=settings.default_priority,
            default_max_retries=settings.default_max_retries,
            operation_timeout_seconds=settings.timeout_or_none(settings.operation_timeout_seconds),
            default_ms_per_record=settings.default_ms_per_record,
        )


def _error_message(error: BaseException) -> str:
    return str(error) or type(error).__name__


class BatchOperationManager:
    """
    Owns the priority queue, the in-flight set and the paused set.

    Args:
        store: Durable record store
        executor: Item handler registry
        config: Scheduler settings (default: ManagerConfig())
        clock: Returns "now"; injectable for tests
        on_progress: Observer called after every chunk and state change
        on_complete: Called with (snapshot, duration) when an operation completes
    """

    def __init__(
        self,
        store: OperationStore,
        executor: ItemExecutor,
        config: Optional[ManagerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompletionCallback] = None,
    ):
        self.store = store
        self.executor = executor
        self.config = config or ManagerConfig()
        self.clock = clock or datetime.now

        self.queue = OperationQueue()
        self.signals = ControlSignals()
        self.metrics = MetricsAggregator(self.config.default_ms_per_record)
        self.emitter = EventEmitter()
        if on_progress is not None:
            self.emitter.add_callback(on_progress)
        self.on_complete = on_complete or log_completion

        self.runner = ChunkRunner(
            executor=executor,
            store=store,
            signals=self.signals,
            emitter=self.emitter,
            clock=self.clock,
        )

        # operation id -> running task / priority to resume at
        self._active: Dict[str, asyncio.Task] = {}
        self._paused: Dict[str, OperationPriority] = {}
        self._lock = threading.Lock()

        self._loop_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    # =========================================
    # Lifecycle controller
    # =========================================

    def create(
        self,
        operation_type: str,
        items: List[Any],
        initiated_by: str,
        batch_size: Optional[int] = None,
        priority: Optional[str] = None,
        parallel: Optional[bool] = None,
        max_retries: Optional[int] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Validate, persist as queued, and enqueue a new operation.

        Returns:
            {operation_id, status, total_records, estimated_seconds, estimated_duration}

        Raises:
            InvalidOperationTypeError, EmptyItemListError,
            InvalidBatchSizeError, InvalidPriorityError
        """
        try:
            op_type = OperationType(operation_type)
        except ValueError:
            raise InvalidOperationTypeError(operation_type)

        if not isinstance(items, (list, tuple)) or len(items) == 0:
            raise EmptyItemListError()

        if batch_size is None:
            batch_size = self.config.default_batch_size
        if (
            isinstance(batch_size, bool)
            or not isinstance(batch_size, int)
            or not 1 <= batch_size <= self.config.max_batch_size
        ):
            raise InvalidBatchSizeError(batch_size, self.config.max_batch_size)

        try:
            op_priority = OperationPriority(priority or self.config.default_priority)
        except ValueError:
            raise InvalidPriorityError(priority)

        record = self._new_record(
            op_type,
            list(items),
            initiated_by,
            batch_size=batch_size,
            priority=op_priority,
            parallel=self.config.default_parallel if parallel is None else bool(parallel),
            max_retries=self.config.default_max_retries if max_retries is None else max_retries,
            options=options or {},
        )
        return self._submit(record)

    def _new_record(
        self,
        operation_type: OperationType,
        items: List[Any],
        initiated_by: str,
        batch_size: int,
        priority: OperationPriority,
        parallel: bool,
        max_retries: int,
        options: Dict[str, Any],
        retry_of: Optional[str] = None,
        retry_count: int = 0,
    ) -> OperationRecord:
        now = self.clock()
        return OperationRecord(
            id=generate_operation_id(),
            operation_type=operation_type,
            initiated_by=initiated_by,
            parameters=OperationParameters(
                items=items,
                parallel=parallel,
                max_retries=max_retries,
                original_options=options,
            ),
            status=OperationStatus.QUEUED,
            batch_size=batch_size,
            total_records=len(items),
            created_at=now,
            updated_at=now,
            metadata=OperationMetadata(
                priority=priority,
                retry_count=retry_count,
                retry_of=retry_of,
            ),
        )

    def _submit(self, record: OperationRecord) -> Dict[str, Any]:
        # Persist before enqueueing so the scheduler always finds the record
        self.store.save(record)
        self.queue.enqueue(record.id, record.priority)
        self.metrics.record_created()

        estimated = self.metrics.estimate_seconds(record.total_records)
        logger.info(
            f"[Batch:{record.id}] Created {record.operation_type.value} with "
            f"{record.total_records} items (batch_size={record.batch_size}, "
            f"priority={record.priority.value}, by={record.initiated_by})"
        )
        return {
            "operation_id": record.id,
            "status": record.status.value,
            "total_records": record.total_records,
            "estimated_seconds": estimated,
            "estimated_duration": format_duration(estimated),
        }

    def get_operation(self, operation_id: str) -> OperationRecord:
        """Load a record or raise OperationNotFoundError."""
        record = self.store.get(operation_id)
        if record is None:
            raise OperationNotFoundError(operation_id)
        return record

    def get_status(self, operation_id: str) -> Dict[str, Any]:
        """Record snapshot without items and results, plus derived fields."""
        return self._status_snapshot(self.get_operation(operation_id))

    def _status_snapshot(self, record: OperationRecord) -> Dict[str, Any]:
        snapshot = record.to_dict(include_results=False, include_items=False)
        remaining = record.estimated_time_remaining(self.clock())
        snapshot["success_rate"] = record.success_rate
        snapshot["estimated_time_remaining_seconds"] = (
            round(remaining) if remaining is not None else None
        )
        snapshot["pause_requested"] = self.signals.pause_requested(record.id)
        snapshot["cancel_requested"] = self.signals.cancel_requested(record.id)
        return snapshot

    def get_results(
        self,
        operation_id: str,
        page: int = 1,
        page_size: int = RESULTS_DEFAULT_PAGE_SIZE,
    ) -> Dict[str, Any]:
        """One page of results in record_index order (pages start at 1)."""
        record = self.get_operation(operation_id)
        page = max(int(page), 1)
        page_size = min(max(int(page_size), 1), RESULTS_MAX_PAGE_SIZE)

        total = len(record.results)
        start = (page - 1) * page_size
        return {
            "operation_id": record.id,
            "page": page,
            "page_size": page_size,
            "total": total,
            "total_pages": (total + page_size - 1) // page_size,
            "results": [r.to_dict() for r in record.results[start:start + page_size]],
        }

    def list_operations(
        self,
        initiated_by: Optional[str] = None,
        limit: int = LIST_DEFAULT_LIMIT,
        offset: int = 0,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Newest first; results are never included."""
        limit = min(max(int(limit), 1), LIST_MAX_LIMIT)
        offset = max(int(offset), 0)
        records = self.store.list_operations(
            initiated_by=initiated_by,
            status=OperationStatus(status) if status else None,
            limit=limit,
            offset=offset,
        )
        return [self._status_snapshot(r) for r in records]

    def pause(self, operation_id: str) -> Dict[str, Any]:
        """
        Pause a queued operation now, or ask a processing one to stop at
        its next chunk boundary.
        """
        record = self.get_operation(operation_id)

        if record.status == OperationStatus.PROCESSING:
            self.signals.request_pause(operation_id)
            logger.info(f"[Batch:{operation_id}] Pause requested")
            return self._status_snapshot(record)

        if record.status != OperationStatus.QUEUED:
            raise InvalidStateTransitionError(operation_id, record.status.value, "pause")

        record.mark_paused(self.clock())
        self.store.save(record)
        self.queue.remove(operation_id)
        with self._lock:
            self._paused[operation_id] = record.priority

        logger.info(f"[Batch:{operation_id}] Paused while queued")
        return self._status_snapshot(record)

    def resume(self, operation_id: str) -> Dict[str, Any]:
        """Re-enqueue a paused operation at its original priority."""
        record = self.get_operation(operation_id)
        if record.status != OperationStatus.PAUSED:
            raise InvalidStateTransitionError(operation_id, record.status.value, "resume")

        record.mark_resumed(self.clock())
        self.store.save(record)
        with self._lock:
            self._paused.pop(operation_id, None)
        self.signals.clear(operation_id)
        self.queue.enqueue(operation_id, record.priority)

        logger.info(
            f"[Batch:{operation_id}] Resumed at {record.processed_records}/{record.total_records}"
        )
        return self._status_snapshot(record)

    def cancel(self, operation_id: str) -> Dict[str, Any]:
        """
        Cancel a queued or paused operation now; a processing one stops at
        its next chunk boundary. Results recorded so far are kept.
        """
        record = self.get_operation(operation_id)
        if record.is_terminal:
            raise InvalidStateTransitionError(operation_id, record.status.value, "cancel")

        if record.status == OperationStatus.PROCESSING:
            self.signals.request_cancel(operation_id)
            logger.info(f"[Batch:{operation_id}] Cancel requested")
            return self._status_snapshot(record)

        record.mark_cancelled(self.clock())
        self.store.save(record)
        self.queue.remove(operation_id)
        with self._lock:
            self._paused.pop(operation_id, None)
        self.metrics.record_cancelled()

        logger.info(f"[Batch:{operation_id}] Cancelled")
        return self._status_snapshot(record)

    def retry(self, operation_id: str, initiated_by: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a new high-priority operation from the failed items of a
        finished one. The source record is not modified.

        Raises:
            InvalidStateTransitionError: source is not completed/failed
            NoFailedItemsError: nothing failed
            RetryLimitExceededError: lineage already retried max_retries times
        """
        source = self.get_operation(operation_id)
        if source.status not in (OperationStatus.COMPLETED, OperationStatus.FAILED):
            raise InvalidStateTransitionError(operation_id, source.status.value, "retry")

        failed = source.failed_items()
        if not failed:
            raise NoFailedItemsError(operation_id)

        if not source.can_retry():
            raise RetryLimitExceededError(
                operation_id, source.metadata.retry_count, source.parameters.max_retries
            )

        options = dict(source.parameters.original_options)
        options["source_record_indices"] = [index for index, _ in failed]

        record = self._new_record(
            source.operation_type,
            [item for _, item in failed],
            initiated_by or source.initiated_by,
            batch_size=source.batch_size,
            priority=OperationPriority.HIGH,
            parallel=source.parameters.parallel,
            max_retries=source.parameters.max_retries,
            options=options,
            retry_of=source.id,
            retry_count=source.metadata.retry_count + 1,
        )
        response = self._submit(record)
        response["retry_of"] = source.id
        response["retry_count"] = record.metadata.retry_count

        logger.info(f"[Batch:{operation_id}] Retrying {len(failed)} failed items as {record.id}")
        return response

    def export_results(self, operation_id: str, fmt: str = "json") -> ExportedResults:
        return export_results(self.get_operation(operation_id), fmt)

    def get_metrics(self) -> Dict[str, Any]:
        snapshot = self.metrics.snapshot().to_dict()
        with self._lock:
            active = len(self._active)
            paused = len(self._paused)
        snapshot.update({
            "active_operations_count": active,
            "paused_operations_count": paused,
            "queued_operations_count": len(self.queue),
            "queue_depths": self.queue.depths(),
            "max_concurrent_operations": self.config.max_concurrent_operations,
            "status_counts": self.store.count_by_status(),
        })
        return snapshot

    def add_progress_callback(self, callback: ProgressCallback):
        self.emitter.add_callback(callback)

    def remove_progress_callback(self, callback: ProgressCallback):
        self.emitter.remove_callback(callback)

    # =========================================
    # Scheduler
    # =========================================

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def active_operation_ids(self) -> List[str]:
        with self._lock:
            return list(self._active)

    def rehydrate(self) -> Dict[str, int]:
        """
        Rebuild the queue and paused set from the store.

        Records left in ``processing`` by a previous process are put back in
        the queue and continue from their last persisted chunk.
        """
        counts = {"queued": 0, "paused": 0, "recovered": 0}
        statuses = [OperationStatus.QUEUED, OperationStatus.PROCESSING, OperationStatus.PAUSED]

        for record in self.store.list_by_statuses(statuses):
            with self._lock:
                if record.id in self._active:
                    continue

            if record.status == OperationStatus.PROCESSING:
                record.mark_interrupted(self.clock())
                self.store.save(record)
                counts["recovered"] += 1

            if record.status == OperationStatus.QUEUED:
                if self.queue.enqueue(record.id, record.priority):
                    counts["queued"] += 1
            elif record.status == OperationStatus.PAUSED:
                with self._lock:
                    self._paused[record.id] = record.priority
                counts["paused"] += 1

        if any(counts.values()):
            logger.info(
                f"Rehydrated {counts['queued']} queued ({counts['recovered']} interrupted) "
                f"and {counts['paused']} paused operations"
            )
        return counts

    async def tick(self) -> List[asyncio.Task]:
        """
        Start queued operations until the concurrency cap is reached.

        Returns:
            Tasks started by this tick
        """
        started = []
        while True:
            with self._lock:
                if len(self._active) >= self.config.max_concurrent_operations:
                    break

            entry = self.queue.dequeue()
            if entry is None:
                break

            operation_id, priority = entry
            with self._lock:
                still_running = operation_id in self._active
            if still_running:
                # Resumed before its previous run returned; keep its place for next tick
                self.queue.requeue_front(operation_id, priority)
                break

            task = self._start_operation(operation_id)
            if task is not None:
                started.append(task)
        return started

    def _start_operation(self, operation_id: str) -> Optional[asyncio.Task]:
        record = self.store.get(operation_id)
        if record is None or record.status != OperationStatus.QUEUED:
            logger.warning(
                f"[Batch:{operation_id}] Dequeued but not startable "
                f"({record.status.value if record else 'missing'}), skipping"
            )
            return None

        try:
            record.mark_processing(self.clock())
            self.store.save(record)
        except Exception as e:
            logger.error(f"[Batch:{operation_id}] Failed to start: {e}", exc_info=True)
            self._fail(record, _error_message(e))
            return None

        logger.info(
            f"[Batch:{operation_id}] Processing {record.operation_type.value} "
            f"(priority={record.priority.value}, from record {record.processed_records})"
        )

        task = asyncio.create_task(self._run_operation(record))
        with self._lock:
            self._active[operation_id] = task
        task.add_done_callback(self._handle_task_exception)
        return task

    async def _run_operation(self, record: OperationRecord):
        """
        Drive one operation to a checkpoint. Never raises, except for
        cancellation by ``stop()``, which leaves the record in processing
        for the next start to recover.
        """
        log = get_operation_logger(logger, record.id)
        budget = self.config.operation_timeout_seconds

        try:
            if budget:
                outcome = await asyncio.wait_for(self.runner.run(record), timeout=budget)
            else:
                outcome = await self.runner.run(record)
        except asyncio.TimeoutError:
            if record.status != OperationStatus.PROCESSING:
                # Budget ran out after the final checkpoint was written
                await self._finish(record, RunOutcome(record.status.value))
            else:
                log.error(f"Exceeded run budget of {budget}s")
                self._fail(record, f"Operation exceeded run budget of {budget}s")
        except asyncio.CancelledError:
            log.warning("Interrupted by shutdown")
            raise
        except Exception as e:
            log.error(f"Operation failed: {e}", exc_info=True)
            self._fail(record, _error_message(e))
        else:
            await self._finish(record, outcome)
        finally:
            with self._lock:
                self._active.pop(record.id, None)

    async def _finish(self, record: OperationRecord, outcome: RunOutcome):
        if outcome == RunOutcome.PAUSED:
            current = self.store.get(record.id)
            if current is not None and current.status == OperationStatus.PAUSED:
                with self._lock:
                    self._paused[record.id] = record.priority
            return

        if outcome == RunOutcome.CANCELLED:
            self.metrics.record_cancelled()
            return

        duration = (record.end_time - record.start_time).total_seconds()
        self.metrics.record_completed(duration, record.total_records)
        logger.info(
            f"[Batch:{record.id}] Completed: {record.successful_records} ok, "
            f"{record.failed_records} failed in {format_duration(duration)}"
        )

        try:
            await invoke_callback(
                self.on_complete,
                record.to_dict(include_results=False, include_items=False),
                format_duration(duration),
            )
        except Exception as e:
            logger.error(f"[Batch:{record.id}] Completion notification failed: {e}")

    def _fail(self, record: OperationRecord, message: str):
        """Mark failed and persist; a store error here is logged only."""
        self.signals.clear(record.id)
        try:
            record.mark_failed(message, self.clock())
            self.metrics.record_failed()
            self.store.save(record)
        except Exception as e:
            logger.error(f"[Batch:{record.id}] Could not record failure ({message}): {e}")

    def _handle_task_exception(self, task: asyncio.Task):
        """Log anything that escaped an operation task"""
        if task.cancelled():
            return
        exception = task.exception()
        if exception:
            logger.error(
                f"Operation task crashed: {type(exception).__name__}: {exception}",
                exc_info=exception,
            )

    async def start(self):
        """Rehydrate from the store and launch the scheduler loop."""
        if self.is_running:
            return
        self.rehydrate()
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_loop())
        logger.info(
            f"Batch operation scheduler started "
            f"(max_concurrent={self.config.max_concurrent_operations}, "
            f"interval={self.config.scheduler_interval_seconds}s)"
        )

    async def _run_loop(self):
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}", exc_info=True)

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self.config.scheduler_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass

    async def stop(self, drain_timeout: float = 0):
        """
        Stop the scheduler loop, then cancel in-flight operations.

        Args:
            drain_timeout: Seconds to let running operations finish first.
                Cancelled ones stay ``processing`` and resume on next start.
        """
        if self._stop_event is not None:
            self._stop_event.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        with self._lock:
            tasks = list(self._active.values())

        if tasks and drain_timeout > 0:
            await asyncio.wait(tasks, timeout=drain_timeout)

        pending = [t for t in tasks if not t.done()]
        if pending:
            logger.info(f"Cancelling {len(pending)} running operation(s)")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        logger.info("Batch operation scheduler stopped")
