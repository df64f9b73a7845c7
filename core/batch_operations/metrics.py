"""
Batch operation metrics.

Counters plus a running per-record processing time. Purely
observational: nothing here feeds back into scheduling.
"""

import math
import threading
from dataclasses import dataclass, asdict
from typing import Any, Dict

from config.constants import DEFAULT_MS_PER_RECORD


@dataclass
class MetricsSnapshot:
    total_operations: int = 0
    successful_operations: int = 0
    failed_operations: int = 0
    cancelled_operations: int = 0
    average_processing_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["average_processing_time_ms"] = round(self.average_processing_time_ms, 2)
        return data


class MetricsAggregator:
    """
    Accumulates operation counts and average time per record.

    The average is a two-point moving average: each completed operation's
    per-record duration is averaged with the previous value.
    """

    def __init__(self, default_ms_per_record: float = DEFAULT_MS_PER_RECORD):
        self.default_ms_per_record = default_ms_per_record
        self._state = MetricsSnapshot()
        self._lock = threading.Lock()

    def record_created(self):
        with self._lock:
            self._state.total_operations += 1

    def record_completed(self, duration_seconds: float, total_records: int):
        with self._lock:
            self._state.successful_operations += 1
            if total_records <= 0:
                return
            per_record_ms = duration_seconds * 1000 / total_records
            if self._state.average_processing_time_ms == 0:
                self._state.average_processing_time_ms = per_record_ms
            else:
                self._state.average_processing_time_ms = (
                    self._state.average_processing_time_ms + per_record_ms
                ) / 2

    def record_failed(self):
        with self._lock:
            self._state.failed_operations += 1

    def record_cancelled(self):
        with self._lock:
            self._state.cancelled_operations += 1

    @property
    def average_processing_time_ms(self) -> float:
        return self._state.average_processing_time_ms

    def estimate_seconds(self, total_records: int) -> int:
        """Rough duration estimate for a new operation."""
        per_record = self._state.average_processing_time_ms or self.default_ms_per_record
        return int(math.ceil(total_records * per_record / 1000))

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(**asdict(self._state))
