"""
Progress and completion events.

Observers receive the operation snapshot dict after every chunk
(progress) and once when an operation completes. Callbacks may be plain
functions or coroutines.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Union

from config.logging_config import get_logger

logger = get_logger(__name__)


# callback(event_name, payload)
ProgressCallback = Callable[[str, Dict[str, Any]], Union[None, Awaitable[None]]]

# callback(operation_snapshot, human_duration)
CompletionCallback = Callable[[Dict[str, Any], str], Union[None, Awaitable[None]]]


def format_duration(seconds: float) -> str:
    """1h 2m 3s / 2m 3s / 3s"""
    total = int(max(seconds, 0))
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)

    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


async def invoke_callback(callback: Callable, *args) -> None:
    """Call a sync or async callback and await it if needed."""
    result = callback(*args)
    if asyncio.iscoroutine(result):
        await result


class EventEmitter:
    """Fans out progress events to registered observers."""

    def __init__(self):
        self._callbacks: List[ProgressCallback] = []

    def add_callback(self, callback: ProgressCallback):
        self._callbacks.append(callback)

    def remove_callback(self, callback: ProgressCallback):
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def emit(self, event: str, payload: Dict[str, Any]):
        """Observer errors are logged, never raised into the engine."""
        for callback in list(self._callbacks):
            try:
                await invoke_callback(callback, event, payload)
            except Exception as e:
                logger.error(f"Progress observer failed on {event}: {e}")


def create_logging_callback(log_level: str = "debug") -> ProgressCallback:
    """Observer that writes every event to the log."""
    log_func = getattr(logger, log_level.lower(), logger.debug)

    def callback(event: str, payload: Dict[str, Any]):
        log_func(
            f"[Batch:{payload.get('id')}] {event}: "
            f"{payload.get('processed_records', 0)}/{payload.get('total_records', 0)} "
            f"({payload.get('progress', 0)}%)"
        )

    return callback


def create_websocket_callback(connection_manager: Any) -> ProgressCallback:
    """
    Observer that broadcasts events over WebSocket.

    Args:
        connection_manager: object with ``async broadcast(dict)``
    """
    async def callback(event: str, payload: Dict[str, Any]):
        await connection_manager.broadcast({
            "event": event,
            "operation_id": payload.get("id"),
            "initiated_by": payload.get("initiated_by"),
            "status": payload.get("status"),
            "progress": payload.get("progress"),
            "processed_records": payload.get("processed_records"),
            "successful_records": payload.get("successful_records"),
            "failed_records": payload.get("failed_records"),
            "total_records": payload.get("total_records"),
        })

    return callback


async def log_completion(snapshot: Dict[str, Any], duration: str) -> None:
    """Default completion notifier."""
    logger.info(
        f"[Batch:{snapshot.get('id')}] {snapshot.get('operation_type')} finished in {duration}: "
        f"{snapshot.get('successful_records')} ok, {snapshot.get('failed_records')} failed "
        f"(notify {snapshot.get('initiated_by')})"
    )
