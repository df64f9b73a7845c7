"""
Batch operation errors.

Submission errors are raised by ``create`` before anything is persisted.
State-transition errors are raised by pause/resume/cancel/retry without
mutating the record. Item-level errors never escape the chunk runner.
"""

from typing import Optional


class BatchOperationError(Exception):
    """Base exception for batch operation errors"""
    pass


class SubmissionError(BatchOperationError):
    """Operation rejected at submission time"""
    pass


class InvalidOperationTypeError(SubmissionError):
    """Unknown operation type"""

    def __init__(self, operation_type: str):
        self.operation_type = operation_type
        super().__init__(f"Invalid operation type: {operation_type!r}")


class EmptyItemListError(SubmissionError):
    """No items supplied"""

    def __init__(self):
        super().__init__("Item list must be a non-empty list")


class InvalidBatchSizeError(SubmissionError):
    """Batch size outside 1..max"""

    def __init__(self, batch_size, max_batch_size: int):
        self.batch_size = batch_size
        self.max_batch_size = max_batch_size
        super().__init__(
            f"Batch size must be between 1 and {max_batch_size}, got {batch_size!r}"
        )


class InvalidPriorityError(SubmissionError):
    """Unknown priority"""

    def __init__(self, priority: str):
        self.priority = priority
        super().__init__(f"Priority must be low, medium, or high, got {priority!r}")


class OperationNotFoundError(BatchOperationError):
    """No record with this id"""

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__(f"Operation {operation_id} not found")


class InvalidStateTransitionError(BatchOperationError):
    """Action not allowed from the current status"""

    def __init__(self, operation_id: str, current_status: str, action: str):
        self.operation_id = operation_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} operation {operation_id} in status '{current_status}'"
        )


class NoFailedItemsError(BatchOperationError):
    """Retry requested but nothing failed"""

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__(f"No failed items to retry in operation {operation_id}")


class RetryLimitExceededError(BatchOperationError):
    """Retry chain is already max_retries deep"""

    def __init__(self, operation_id: str, retry_count: int, max_retries: int):
        self.operation_id = operation_id
        self.retry_count = retry_count
        self.max_retries = max_retries
        super().__init__(
            f"Operation {operation_id} has been retried {retry_count} times "
            f"(max {max_retries})"
        )


class HandlerNotRegisteredError(BatchOperationError):
    """No item handler for this operation type"""

    def __init__(self, operation_type: str):
        self.operation_type = operation_type
        super().__init__(f"No handler registered for operation type: {operation_type}")


class ItemTimeoutError(BatchOperationError):
    """Item handler did not answer in time"""

    def __init__(self, timeout: Optional[float]):
        self.timeout = timeout
        super().__init__(f"Timeout after {timeout}s")


class UnsupportedExportFormatError(BatchOperationError):
    """Export format other than json/csv"""

    def __init__(self, fmt: str):
        self.format = fmt
        super().__init__(f"Format must be json or csv, got {fmt!r}")
