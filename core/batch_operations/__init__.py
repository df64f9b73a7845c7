"""
Batch operation engine.

Durable, priority-ordered processing of large item lists (mint vouchers,
register merchants, import recipients, send notifications) in chunks,
with pause/resume/cancel and retry of failed items.
"""

from .errors import (
    BatchOperationError,
    SubmissionError,
    InvalidOperationTypeError,
    EmptyItemListError,
    InvalidBatchSizeError,
    InvalidPriorityError,
    OperationNotFoundError,
    InvalidStateTransitionError,
    NoFailedItemsError,
    RetryLimitExceededError,
    HandlerNotRegisteredError,
    ItemTimeoutError,
    UnsupportedExportFormatError,
)
from .operation import (
    OperationRecord,
    OperationType,
    OperationStatus,
    OperationPriority,
    ItemResult,
    ItemStatus,
    TERMINAL_STATUSES,
)
from .store import (
    OperationStore,
    InMemoryOperationStore,
    SQLiteOperationStore,
    create_operation_store,
)
from .priority_queue import OperationQueue
from .item_executor import ItemExecutor, ItemHandler, FunctionItemHandler
from .handlers import (
    ServiceItemHandler,
    ServiceCallError,
    completion_notification,
    create_notification_callback,
    register_service_handlers,
)
from .chunk_runner import ChunkRunner, ControlSignals, RunOutcome, create_chunks
from .metrics import MetricsAggregator, MetricsSnapshot
from .events import (
    EventEmitter,
    ProgressCallback,
    CompletionCallback,
    format_duration,
    create_logging_callback,
    create_websocket_callback,
)
from .export import ExportedResults, export_results
from .manager import BatchOperationManager, ManagerConfig

__all__ = [
    # Errors
    'BatchOperationError',
    'SubmissionError',
    'InvalidOperationTypeError',
    'EmptyItemListError',
    'InvalidBatchSizeError',
    'InvalidPriorityError',
    'OperationNotFoundError',
    'InvalidStateTransitionError',
    'NoFailedItemsError',
    'RetryLimitExceededError',
    'HandlerNotRegisteredError',
    'ItemTimeoutError',
    'UnsupportedExportFormatError',
    # Records
    'OperationRecord',
    'OperationType',
    'OperationStatus',
    'OperationPriority',
    'ItemResult',
    'ItemStatus',
    'TERMINAL_STATUSES',
    # Storage
    'OperationStore',
    'InMemoryOperationStore',
    'SQLiteOperationStore',
    'create_operation_store',
    # Scheduling and execution
    'OperationQueue',
    'ItemExecutor',
    'ItemHandler',
    'FunctionItemHandler',
    'ServiceItemHandler',
    'ServiceCallError',
    'register_service_handlers',
    'completion_notification',
    'create_notification_callback',
    'ChunkRunner',
    'ControlSignals',
    'RunOutcome',
    'create_chunks',
    # Observability
    'MetricsAggregator',
    'MetricsSnapshot',
    'EventEmitter',
    'ProgressCallback',
    'CompletionCallback',
    'format_duration',
    'create_logging_callback',
    'create_websocket_callback',
    # Export
    'ExportedResults',
    'export_results',
    # Manager
    'BatchOperationManager',
    'ManagerConfig',
]
