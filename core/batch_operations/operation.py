"""
Batch Operation Definitions
Voucher Batch Operations

Defines the operation record, its per-item results, and the status
state machine. Records are plain dataclasses; every transition goes
through ``OperationRecord._transition`` so illegal moves raise
``InvalidStateTransitionError`` before anything is mutated.
"""

import math
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import InvalidStateTransitionError


class OperationType(str, Enum):
    """Kinds of batch work; selects the item handler"""
    MINT_VOUCHERS = "mint-vouchers"
    REGISTER_MERCHANTS = "register-merchants"
    IMPORT_RECIPIENTS = "import-recipients"
    SEND_NOTIFICATIONS = "send-notifications"


class OperationStatus(str, Enum):
    """Operation status states"""
    QUEUED = "queued"             # Waiting in the priority queue
    PROCESSING = "processing"     # Owned by a worker
    PAUSED = "paused"             # Stopped at a chunk boundary
    COMPLETED = "completed"       # All items processed
    FAILED = "failed"             # Operation-level error
    CANCELLED = "cancelled"       # Cancelled by user


TERMINAL_STATUSES = frozenset({
    OperationStatus.COMPLETED,
    OperationStatus.FAILED,
    OperationStatus.CANCELLED,
})

# status -> statuses reachable from it
ALLOWED_TRANSITIONS: Dict[OperationStatus, frozenset] = {
    OperationStatus.QUEUED: frozenset({
        OperationStatus.PROCESSING,
        OperationStatus.PAUSED,
        OperationStatus.CANCELLED,
    }),
    OperationStatus.PROCESSING: frozenset({
        OperationStatus.COMPLETED,
        OperationStatus.FAILED,
        OperationStatus.CANCELLED,
        OperationStatus.PAUSED,
        OperationStatus.QUEUED,  # restart recovery only
    }),
    OperationStatus.PAUSED: frozenset({
        OperationStatus.QUEUED,
        OperationStatus.CANCELLED,
    }),
    OperationStatus.COMPLETED: frozenset(),
    OperationStatus.FAILED: frozenset(),
    OperationStatus.CANCELLED: frozenset(),
}


class OperationPriority(str, Enum):
    """Scheduling priority; high drains before medium before low"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    OperationPriority.HIGH: 0,
    OperationPriority.MEDIUM: 1,
    OperationPriority.LOW: 2,
}


class ItemStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


def generate_operation_id() -> str:
    """Unique, roughly time-ordered operation id: batch_<ms hex>_<random hex>"""
    return f"batch_{int(time.time() * 1000):x}_{secrets.token_hex(4)}"


def compute_progress(processed: int, total: int) -> int:
    """Whole percent, halves rounded up."""
    if total <= 0:
        return 0
    return int(math.floor(processed * 100 / total + 0.5))


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class ItemResult:
    """Outcome of one item"""
    record_index: int
    status: ItemStatus
    processed_at: datetime
    data: Any = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == ItemStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "record_index": self.record_index,
            "status": self.status.value,
            "processed_at": self.processed_at.isoformat(),
        }
        if self.status == ItemStatus.SUCCESS:
            result["data"] = self.data
        else:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ItemResult":
        return cls(
            record_index=data["record_index"],
            status=ItemStatus(data["status"]),
            processed_at=datetime.fromisoformat(data["processed_at"]),
            data=data.get("data"),
            error=data.get("error"),
        )


@dataclass
class OperationErrorEntry:
    """Operation-level (not item-level) failure"""
    error: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error, "timestamp": self.timestamp.isoformat()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OperationErrorEntry":
        return cls(
            error=data["error"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass
class OperationParameters:
    """Original items plus execution options; never changed after creation"""
    items: List[Any]
    parallel: bool = True
    max_retries: int = 3
    original_options: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": self.items,
            "parallel": self.parallel,
            "max_retries": self.max_retries,
            "original_options": self.original_options,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OperationParameters":
        return cls(
            items=list(data.get("items", [])),
            parallel=data.get("parallel", True),
            max_retries=data.get("max_retries", 3),
            original_options=dict(data.get("original_options", {})),
        )


@dataclass
class OperationMetadata:
    priority: OperationPriority = OperationPriority.MEDIUM
    retry_count: int = 0
    retry_of: Optional[str] = None
    paused_at: Optional[datetime] = None
    resumed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priority": self.priority.value,
            "retry_count": self.retry_count,
            "retry_of": self.retry_of,
            "paused_at": _iso(self.paused_at),
            "resumed_at": _iso(self.resumed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OperationMetadata":
        return cls(
            priority=OperationPriority(data.get("priority", "medium")),
            retry_count=data.get("retry_count", 0),
            retry_of=data.get("retry_of"),
            paused_at=_parse(data.get("paused_at")),
            resumed_at=_parse(data.get("resumed_at")),
        )


@dataclass
class OperationRecord:
    """
    One submitted batch job.

    Counters obey processed_records == successful_records + failed_records
    and processed_records <= total_records. ``results`` is append-only and
    ordered by record_index.
    """

    # Identity
    id: str
    operation_type: OperationType
    initiated_by: str
    parameters: OperationParameters

    # Status
    status: OperationStatus = OperationStatus.QUEUED
    batch_size: int = 50

    # Counters
    total_records: int = 0
    processed_records: int = 0
    successful_records: int = 0
    failed_records: int = 0
    progress: int = 0

    # Timing
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    # Outcomes
    results: List[ItemResult] = field(default_factory=list)
    errors: List[OperationErrorEntry] = field(default_factory=list)
    metadata: OperationMetadata = field(default_factory=OperationMetadata)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def priority(self) -> OperationPriority:
        return self.metadata.priority

    @property
    def remaining_items(self) -> int:
        return self.total_records - self.processed_records

    @property
    def success_rate(self) -> int:
        """Percent of processed items that succeeded"""
        if self.processed_records == 0:
            return 0
        return compute_progress(self.successful_records, self.processed_records)

    def estimated_time_remaining(self, now: datetime) -> Optional[float]:
        """Seconds left at the observed rate, None until something is processed"""
        if not self.start_time or self.processed_records == 0:
            return None
        elapsed = (now - self.start_time).total_seconds()
        if elapsed <= 0:
            return None
        rate = self.processed_records / elapsed
        return self.remaining_items / rate if self.remaining_items > 0 else 0.0

    # =========================================
    # State transitions
    # =========================================

    def can_transition(self, new_status: OperationStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[self.status]

    def _transition(self, new_status: OperationStatus, action: str, now: datetime):
        if not self.can_transition(new_status):
            raise InvalidStateTransitionError(self.id, self.status.value, action)
        self.status = new_status
        self.updated_at = now

    def mark_processing(self, now: datetime):
        self._transition(OperationStatus.PROCESSING, "start", now)
        # A resumed run keeps its original start time
        if self.start_time is None:
            self.start_time = now

    def mark_paused(self, now: datetime):
        self._transition(OperationStatus.PAUSED, "pause", now)
        self.metadata.paused_at = now

    def mark_resumed(self, now: datetime):
        self._transition(OperationStatus.QUEUED, "resume", now)
        self.metadata.resumed_at = now

    def mark_interrupted(self, now: datetime):
        """Back to queued after the process died mid-run."""
        self._transition(OperationStatus.QUEUED, "recover", now)

    def mark_completed(self, now: datetime):
        self._transition(OperationStatus.COMPLETED, "complete", now)
        self.end_time = now

    def mark_failed(self, error: str, now: datetime):
        self._transition(OperationStatus.FAILED, "fail", now)
        self.end_time = now
        self.errors.append(OperationErrorEntry(error=error, timestamp=now))

    def mark_cancelled(self, now: datetime):
        self._transition(OperationStatus.CANCELLED, "cancel", now)
        self.end_time = now

    def record_chunk(self, outcomes: List[ItemResult], now: datetime):
        """Append one chunk's outcomes (already in record_index order)."""
        for outcome in outcomes:
            self.results.append(outcome)
            if outcome.success:
                self.successful_records += 1
            else:
                self.failed_records += 1
        self.processed_records = self.successful_records + self.failed_records
        self.progress = compute_progress(self.processed_records, self.total_records)
        self.updated_at = now

    # =========================================
    # Retry support
    # =========================================

    def failed_results(self) -> List[ItemResult]:
        return [r for r in self.results if not r.success]

    def failed_items(self) -> List[Tuple[int, Any]]:
        """(record_index, original item) for each failed result"""
        items = self.parameters.items
        return [(r.record_index, items[r.record_index]) for r in self.failed_results()]

    def can_retry(self) -> bool:
        return self.metadata.retry_count < self.parameters.max_retries

    # =========================================
    # Serialization
    # =========================================

    def to_dict(self, include_results: bool = True, include_items: bool = True) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        data = {
            "id": self.id,
            "operation_type": self.operation_type.value,
            "status": self.status.value,
            "initiated_by": self.initiated_by,
            "total_records": self.total_records,
            "processed_records": self.processed_records,
            "successful_records": self.successful_records,
            "failed_records": self.failed_records,
            "batch_size": self.batch_size,
            "progress": self.progress,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "errors": [e.to_dict() for e in self.errors],
            "metadata": self.metadata.to_dict(),
        }
        if include_items:
            data["parameters"] = self.parameters.to_dict()
        else:
            params = self.parameters.to_dict()
            params.pop("items")
            data["parameters"] = params
        if include_results:
            data["results"] = [r.to_dict() for r in self.results]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OperationRecord":
        """Create from dictionary"""
        return cls(
            id=data["id"],
            operation_type=OperationType(data["operation_type"]),
            initiated_by=data.get("initiated_by", ""),
            parameters=OperationParameters.from_dict(data.get("parameters", {})),
            status=OperationStatus(data.get("status", "queued")),
            batch_size=data.get("batch_size", 50),
            total_records=data.get("total_records", 0),
            processed_records=data.get("processed_records", 0),
            successful_records=data.get("successful_records", 0),
            failed_records=data.get("failed_records", 0),
            progress=data.get("progress", 0),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            start_time=_parse(data.get("start_time")),
            end_time=_parse(data.get("end_time")),
            results=[ItemResult.from_dict(r) for r in data.get("results", [])],
            errors=[OperationErrorEntry.from_dict(e) for e in data.get("errors", [])],
            metadata=OperationMetadata.from_dict(data.get("metadata", {})),
        )
