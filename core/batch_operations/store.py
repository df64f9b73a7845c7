"""
Operation Store - durable persistence for operation records.

Records are written whole after every chunk, so a crash loses at most the
chunk that was in flight. Two implementations share one interface:

- InMemoryOperationStore: dict of serialized records (tests, dev)
- SQLiteOperationStore: survives restarts

Both hand out fresh copies on every read; a caller mutating a record it
loaded never changes what is stored until it calls ``save``.
"""

import copy
import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from config.logging_config import get_logger

from .operation import OperationRecord, OperationStatus

logger = get_logger(__name__)


class OperationStore(ABC):
    """Abstract record store"""

    @abstractmethod
    def save(self, record: OperationRecord) -> None:
        """Insert or replace a record."""
        ...

    @abstractmethod
    def get(self, operation_id: str) -> Optional[OperationRecord]:
        """Load a record by id, None when missing."""
        ...

    @abstractmethod
    def list_operations(
        self,
        initiated_by: Optional[str] = None,
        status: Optional[OperationStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[OperationRecord]:
        """Newest first, optionally filtered by submitter and status."""
        ...

    @abstractmethod
    def list_by_statuses(self, statuses: Iterable[OperationStatus]) -> List[OperationRecord]:
        """Oldest first; used to rehydrate queues on start."""
        ...

    @abstractmethod
    def count_by_status(self) -> Dict[str, int]:
        ...


class InMemoryOperationStore(OperationStore):
    """Process-local store keeping serialized snapshots"""

    def __init__(self):
        self._records: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def save(self, record: OperationRecord) -> None:
        snapshot = copy.deepcopy(record.to_dict())
        with self._lock:
            self._records[record.id] = snapshot

    def get(self, operation_id: str) -> Optional[OperationRecord]:
        with self._lock:
            snapshot = self._records.get(operation_id)
        return OperationRecord.from_dict(snapshot) if snapshot else None

    def _all(self) -> List[OperationRecord]:
        with self._lock:
            snapshots = list(self._records.values())
        return [OperationRecord.from_dict(s) for s in snapshots]

    def list_operations(
        self,
        initiated_by: Optional[str] = None,
        status: Optional[OperationStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[OperationRecord]:
        records = [
            r for r in self._all()
            if (initiated_by is None or r.initiated_by == initiated_by)
            and (status is None or r.status == status)
        ]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[offset:offset + limit]

    def list_by_statuses(self, statuses: Iterable[OperationStatus]) -> List[OperationRecord]:
        wanted = set(statuses)
        records = [r for r in self._all() if r.status in wanted]
        records.sort(key=lambda r: r.created_at)
        return records

    def count_by_status(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for record in self._all():
            counts[record.status.value] = counts.get(record.status.value, 0) + 1
        return counts

    def __len__(self) -> int:
        return len(self._records)


class SQLiteOperationStore(OperationStore):
    """
    SQLite repository for operation records.

    Query columns (status, submitter, priority, timestamps) are kept beside
    the full JSON document so list/rehydrate queries hit indexes.
    """

    def __init__(self, db_path: str = "data/batch_operations.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info(f"SQLiteOperationStore initialized: {self.db_path}")

    @contextmanager
    def _get_connection(self):
        """Get database connection with context manager."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS batch_operations (
                    id TEXT PRIMARY KEY,
                    operation_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    initiated_by TEXT NOT NULL,
                    priority TEXT NOT NULL DEFAULT 'medium',

                    -- Full record, stored as JSON
                    record_json TEXT NOT NULL,

                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_batch_ops_status_created
                ON batch_operations(status, created_at)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_batch_ops_initiator_created
                ON batch_operations(initiated_by, created_at DESC)
            """)

    def save(self, record: OperationRecord) -> None:
        """Save or update a record."""
        document = json.dumps(record.to_dict(), default=str)
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO batch_operations (
                    id, operation_type, status, initiated_by, priority,
                    record_json, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    priority = excluded.priority,
                    record_json = excluded.record_json,
                    updated_at = excluded.updated_at
            """, (
                record.id,
                record.operation_type.value,
                record.status.value,
                record.initiated_by,
                record.priority.value,
                document,
                record.created_at.isoformat(),
                record.updated_at.isoformat(),
            ))

    def _row_to_record(self, row: sqlite3.Row) -> OperationRecord:
        return OperationRecord.from_dict(json.loads(row["record_json"]))

    def get(self, operation_id: str) -> Optional[OperationRecord]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT record_json FROM batch_operations WHERE id = ?",
                (operation_id,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def list_operations(
        self,
        initiated_by: Optional[str] = None,
        status: Optional[OperationStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[OperationRecord]:
        clauses = []
        params: list = []
        if initiated_by is not None:
            clauses.append("initiated_by = ?")
            params.append(initiated_by)
        if status is not None:
            clauses.append("status = ?")
            params.append(OperationStatus(status).value)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.extend([limit, offset])

        with self._get_connection() as conn:
            rows = conn.execute(f"""
                SELECT record_json FROM batch_operations
                {where}
                ORDER BY created_at DESC
                LIMIT ? OFFSET ?
            """, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def list_by_statuses(self, statuses: Iterable[OperationStatus]) -> List[OperationRecord]:
        values = [OperationStatus(s).value for s in statuses]
        if not values:
            return []
        placeholders = ", ".join("?" for _ in values)
        with self._get_connection() as conn:
            rows = conn.execute(f"""
                SELECT record_json FROM batch_operations
                WHERE status IN ({placeholders})
                ORDER BY created_at ASC
            """, values).fetchall()
        return [self._row_to_record(row) for row in rows]

    def count_by_status(self) -> Dict[str, int]:
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT status, COUNT(*) AS count
                FROM batch_operations
                GROUP BY status
            """).fetchall()
        return {row["status"]: row["count"] for row in rows}


def create_operation_store(settings=None) -> OperationStore:
    """Build the store selected by ``store_backend`` (sqlite | memory)."""
    if settings is None:
        from config.settings import settings

    backend = settings.store_backend.lower()
    if backend == "memory":
        logger.warning("Using in-memory operation store; records are lost on restart")
        return InMemoryOperationStore()
    if backend == "sqlite":
        return SQLiteOperationStore(str(settings.database_path))
    raise ValueError(f"Unknown store backend: {settings.store_backend!r}")
