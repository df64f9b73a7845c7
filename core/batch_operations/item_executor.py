"""
Item execution.
Dispatches one work item to the handler registered for its operation type.

The executor keeps no per-item state and never retries; retry is an
operation-level action. A handler error propagates to the chunk runner,
which records it as a failed item.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

from config.logging_config import get_logger

from .errors import HandlerNotRegisteredError, ItemTimeoutError
from .operation import OperationType

logger = get_logger(__name__)


class ItemHandler(ABC):
    """Processes a single item of one operation type."""

    @abstractmethod
    async def handle(self, item: Any) -> Any:
        """Return the item's result data or raise on failure."""
        ...


class FunctionItemHandler(ItemHandler):
    """Adapts a plain ``async def fn(item)`` to ItemHandler."""

    def __init__(self, func: Callable[[Any], Awaitable[Any]]):
        self.func = func

    async def handle(self, item: Any) -> Any:
        return await self.func(item)


class ItemExecutor:
    """
    Registry of item handlers keyed by operation type.

    Usage:
        executor = ItemExecutor(item_timeout=30)
        executor.register(OperationType.MINT_VOUCHERS, MintVoucherHandler())
        data = await executor.execute(OperationType.MINT_VOUCHERS, item)
    """

    def __init__(self, item_timeout: Optional[float] = None):
        """
        Args:
            item_timeout: Seconds allowed per handler call, None for no limit
        """
        self.item_timeout = item_timeout
        self._handlers: Dict[OperationType, ItemHandler] = {}

    def register(self, operation_type: OperationType, handler) -> None:
        """Register a handler (ItemHandler or async callable)."""
        if not isinstance(handler, ItemHandler):
            handler = FunctionItemHandler(handler)
        self._handlers[OperationType(operation_type)] = handler
        logger.debug(f"Registered handler for {OperationType(operation_type).value}")

    def unregister(self, operation_type: OperationType) -> None:
        self._handlers.pop(OperationType(operation_type), None)

    def has_handler(self, operation_type: OperationType) -> bool:
        return OperationType(operation_type) in self._handlers

    @property
    def registered_types(self):
        return sorted(t.value for t in self._handlers)

    async def execute(self, operation_type: OperationType, item: Any) -> Any:
        """
        Run one item.

        Raises:
            HandlerNotRegisteredError: no handler for operation_type
            ItemTimeoutError: handler exceeded item_timeout
            Exception: whatever the handler raised
        """
        handler = self._handlers.get(OperationType(operation_type))
        if handler is None:
            raise HandlerNotRegisteredError(OperationType(operation_type).value)

        if self.item_timeout is None:
            return await handler.handle(item)

        try:
            return await asyncio.wait_for(handler.handle(item), timeout=self.item_timeout)
        except asyncio.TimeoutError:
            raise ItemTimeoutError(self.item_timeout)
