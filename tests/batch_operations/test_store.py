"""
Unit tests for core.batch_operations.store module.

Both store implementations run through the same tests.
"""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from core.batch_operations.operation import (
    OperationParameters,
    OperationPriority,
    OperationRecord,
    OperationStatus,
    OperationType,
    OperationMetadata,
)
from core.batch_operations.store import (
    InMemoryOperationStore,
    SQLiteOperationStore,
    create_operation_store,
)

BASE = datetime(2025, 1, 1, 9, 0, 0)


def make_record(op_id, minutes=0, initiated_by="user-1", status=OperationStatus.QUEUED):
    created = BASE + timedelta(minutes=minutes)
    return OperationRecord(
        id=op_id,
        operation_type=OperationType.SEND_NOTIFICATIONS,
        initiated_by=initiated_by,
        parameters=OperationParameters(items=[{"to": "a"}, {"to": "b"}]),
        status=status,
        total_records=2,
        created_at=created,
        updated_at=created,
        metadata=OperationMetadata(priority=OperationPriority.LOW),
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryOperationStore()
    return SQLiteOperationStore(str(tmp_path / "ops.db"))


class TestOperationStore:
    """Tests shared by every OperationStore."""

    def test_save_and_get(self, store):
        """Test a saved record can be loaded back."""
        store.save(make_record("op-1"))

        loaded = store.get("op-1")
        assert loaded is not None
        assert loaded.id == "op-1"
        assert loaded.priority == OperationPriority.LOW
        assert loaded.parameters.items == [{"to": "a"}, {"to": "b"}]

    def test_get_missing_returns_none(self, store):
        """Test unknown ids return None."""
        assert store.get("nope") is None

    def test_reads_are_copies(self, store):
        """Test mutating a loaded record does not touch the store."""
        store.save(make_record("op-1"))

        loaded = store.get("op-1")
        loaded.processed_records = 2
        loaded.parameters.items.append({"to": "c"})

        again = store.get("op-1")
        assert again.processed_records == 0
        assert len(again.parameters.items) == 2

    def test_save_overwrites(self, store):
        """Test saving again replaces the stored state."""
        record = make_record("op-1")
        store.save(record)
        record.mark_processing(BASE)
        store.save(record)

        assert store.get("op-1").status == OperationStatus.PROCESSING

    def test_list_operations_newest_first_with_filters(self, store):
        """Test listing order, submitter filter, status filter and paging."""
        store.save(make_record("old", minutes=0))
        store.save(make_record("mid", minutes=1, status=OperationStatus.COMPLETED))
        store.save(make_record("new", minutes=2))
        store.save(make_record("other", minutes=3, initiated_by="user-2"))

        mine = store.list_operations(initiated_by="user-1")
        assert [r.id for r in mine] == ["new", "mid", "old"]

        completed = store.list_operations(initiated_by="user-1", status=OperationStatus.COMPLETED)
        assert [r.id for r in completed] == ["mid"]

        page = store.list_operations(initiated_by="user-1", limit=1, offset=1)
        assert [r.id for r in page] == ["mid"]

        everyone = store.list_operations()
        assert len(everyone) == 4

    def test_list_by_statuses_oldest_first(self, store):
        """Test rehydration listing order and filtering."""
        store.save(make_record("b", minutes=2, status=OperationStatus.PAUSED))
        store.save(make_record("a", minutes=1))
        store.save(make_record("done", minutes=0, status=OperationStatus.COMPLETED))

        records = store.list_by_statuses([OperationStatus.QUEUED, OperationStatus.PAUSED])
        assert [r.id for r in records] == ["a", "b"]
        assert store.list_by_statuses([]) == []

    def test_count_by_status(self, store):
        """Test per-status counts."""
        store.save(make_record("a"))
        store.save(make_record("b"))
        store.save(make_record("c", status=OperationStatus.FAILED))

        assert store.count_by_status() == {"queued": 2, "failed": 1}


class TestSQLiteOperationStore:
    """SQLite-specific behavior."""

    def test_survives_reopen(self, tmp_path):
        """Test records persist across store instances."""
        db_path = str(tmp_path / "nested" / "ops.db")
        SQLiteOperationStore(db_path).save(make_record("op-1"))

        reopened = SQLiteOperationStore(db_path)
        assert reopened.get("op-1").id == "op-1"


class TestCreateOperationStore:
    """Tests for the settings-driven factory."""

    def test_memory_backend(self):
        """Test memory backend selection."""
        store = create_operation_store(SimpleNamespace(store_backend="memory"))
        assert isinstance(store, InMemoryOperationStore)

    def test_sqlite_backend(self, tmp_path):
        """Test sqlite backend selection."""
        settings = SimpleNamespace(store_backend="SQLite", database_path=tmp_path / "ops.db")
        assert isinstance(create_operation_store(settings), SQLiteOperationStore)

    def test_unknown_backend(self):
        """Test unknown backends are rejected."""
        with pytest.raises(ValueError):
            create_operation_store(SimpleNamespace(store_backend="mongo"))
