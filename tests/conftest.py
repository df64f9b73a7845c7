"""
Pytest configuration and shared fixtures for batch operation tests.
"""
import asyncio
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, List

import pytest

# Console logging only while testing
os.environ.setdefault("LOG_FILE", "")

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.batch_operations import (
    BatchOperationManager,
    InMemoryOperationStore,
    ItemExecutor,
    ManagerConfig,
    OperationType,
    SQLiteOperationStore,
)


# ============================================================================
# Helpers
# ============================================================================

class FakeClock:
    """Deterministic clock; only moves when told to."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 10, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class RecordingHandler:
    """
    Item handler that remembers what it saw.

    Items that are dicts with ``"fail": True`` raise; everything else
    succeeds and echoes back ``{"ok": item}``.
    """

    def __init__(self):
        self.calls: List[Any] = []

    async def __call__(self, item: Any) -> Any:
        self.calls.append(item)
        await asyncio.sleep(0)
        if isinstance(item, dict) and item.get("fail"):
            raise RuntimeError(item.get("reason", "handler rejected item"))
        return {"ok": item}


async def drain(manager: BatchOperationManager, max_ticks: int = 100):
    """Tick and await started tasks until nothing more starts."""
    for _ in range(max_ticks):
        tasks = await manager.tick()
        if not tasks:
            return
        await asyncio.gather(*tasks)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return InMemoryOperationStore()


@pytest.fixture
def sqlite_store(tmp_path):
    return SQLiteOperationStore(str(tmp_path / "operations.db"))


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def executor(handler):
    """Executor with the recording handler registered for every type."""
    executor = ItemExecutor()
    for operation_type in OperationType:
        executor.register(operation_type, handler)
    return executor


@pytest.fixture
def manager_config():
    return ManagerConfig(
        max_concurrent_operations=3,
        scheduler_interval_seconds=0.01,
        operation_timeout_seconds=None,
    )


@pytest.fixture
def manager(memory_store, executor, manager_config, clock):
    return BatchOperationManager(
        store=memory_store,
        executor=executor,
        config=manager_config,
        clock=clock,
    )


@pytest.fixture
def run_to_idle():
    """``await run_to_idle(manager)`` processes everything queued."""
    return drain
