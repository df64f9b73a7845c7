"""
Priority queue of queued operation ids.

Three FIFO buckets (high, medium, low). ``dequeue`` always drains high
before medium before low. All mutation goes through one lock, so a
cancel/resume arriving from a request handler cannot interleave with the
scheduler tick.
"""

import threading
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

from .operation import OperationPriority


class OperationQueue:
    """FIFO-within-priority queue of operation ids"""

    def __init__(self):
        self._buckets: Dict[OperationPriority, Deque[str]] = {
            priority: deque()
            for priority in sorted(OperationPriority, key=lambda p: p.rank)
        }
        self._lock = threading.Lock()

    def enqueue(self, operation_id: str, priority: OperationPriority) -> bool:
        """Append to the tail of its bucket. Returns False if already queued."""
        with self._lock:
            if self._contains(operation_id):
                return False
            self._buckets[OperationPriority(priority)].append(operation_id)
            return True

    def requeue_front(self, operation_id: str, priority: OperationPriority) -> bool:
        """Put an id back at the head of its bucket. Returns False if already queued."""
        with self._lock:
            if self._contains(operation_id):
                return False
            self._buckets[OperationPriority(priority)].appendleft(operation_id)
            return True

    def dequeue(self) -> Optional[Tuple[str, OperationPriority]]:
        """Pop the head of the highest non-empty bucket."""
        with self._lock:
            for priority, bucket in self._buckets.items():
                if bucket:
                    return bucket.popleft(), priority
        return None

    def remove(self, operation_id: str) -> bool:
        """Drop an id wherever it sits. Returns True if it was queued."""
        with self._lock:
            for bucket in self._buckets.values():
                if operation_id in bucket:
                    bucket.remove(operation_id)
                    return True
        return False

    def _contains(self, operation_id: str) -> bool:
        return any(operation_id in bucket for bucket in self._buckets.values())

    def __contains__(self, operation_id: str) -> bool:
        with self._lock:
            return self._contains(operation_id)

    def __len__(self) -> int:
        with self._lock:
            return sum(len(bucket) for bucket in self._buckets.values())

    def depths(self) -> Dict[str, int]:
        with self._lock:
            return {priority.value: len(bucket) for priority, bucket in self._buckets.items()}

    def snapshot(self) -> List[str]:
        """Ids in dequeue order"""
        with self._lock:
            return [op_id for bucket in self._buckets.values() for op_id in bucket]

    def clear(self):
        with self._lock:
            for bucket in self._buckets.values():
                bucket.clear()
