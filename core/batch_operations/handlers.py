"""
Service-backed item handlers.

Each operation type forwards its items, unchanged, to the domain service
that owns them (vouchers, merchants, notifications). A non-2xx answer
raises and becomes a failed item; the JSON body becomes the item's data.

Configuration:
    VOUCHER_SERVICE_URL, MERCHANT_SERVICE_URL, NOTIFICATION_SERVICE_URL
    SERVICE_TIMEOUT_SECONDS
"""

from typing import Any, Dict, Optional, Tuple

import httpx

from config.logging_config import get_logger

from .item_executor import ItemExecutor, ItemHandler
from .operation import OperationType

logger = get_logger(__name__)


class ServiceCallError(Exception):
    """Domain service answered with an error status"""

    def __init__(self, url: str, status_code: int, detail: str = ""):
        self.url = url
        self.status_code = status_code
        self.detail = detail
        message = f"{url} returned HTTP {status_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ServiceItemHandler(ItemHandler):
    """POSTs one item as JSON to a fixed service endpoint."""

    def __init__(self, client: httpx.AsyncClient, base_url: str, path: str):
        self.client = client
        self.url = f"{base_url.rstrip('/')}/{path.lstrip('/')}"

    async def handle(self, item: Any) -> Any:
        response = await self.client.post(self.url, json=item)

        if response.status_code >= 400:
            raise ServiceCallError(self.url, response.status_code, _error_detail(response))

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body)
    return str(body)


# operation type -> (settings attribute holding the base url, endpoint path)
SERVICE_ROUTES: Dict[OperationType, Tuple[str, str]] = {
    OperationType.MINT_VOUCHERS: ("voucher_service_url", "/vouchers/mint"),
    OperationType.IMPORT_RECIPIENTS: ("voucher_service_url", "/vouchers/recipients"),
    OperationType.REGISTER_MERCHANTS: ("merchant_service_url", "/merchants/register"),
    OperationType.SEND_NOTIFICATIONS: ("notification_service_url", "/notifications/send"),
}


def register_service_handlers(
    executor: ItemExecutor,
    client: httpx.AsyncClient,
    settings: Optional[Any] = None,
) -> ItemExecutor:
    """
    Register a ServiceItemHandler for every operation type.

    Args:
        executor: Executor to populate
        client: Shared httpx client (owned by the caller)
        settings: Object with the *_service_url attributes (default: global settings)
    """
    if settings is None:
        from config.settings import settings

    for operation_type, (url_attr, path) in SERVICE_ROUTES.items():
        handler = ServiceItemHandler(client, getattr(settings, url_attr), path)
        executor.register(operation_type, handler)
        logger.info(f"{operation_type.value} -> {handler.url}")

    return executor


COMPLETION_NOTIFICATION_PATH = "/notifications/send"
COMPLETION_NOTIFICATION_TYPE = "bulk_operation_complete"


def completion_notification(snapshot: Dict[str, Any], duration: str) -> Dict[str, Any]:
    """Notification service payload for a finished operation."""
    return {
        "user_id": snapshot.get("initiated_by"),
        "type": COMPLETION_NOTIFICATION_TYPE,
        "data": {
            "operation_id": snapshot.get("id"),
            "operation_type": snapshot.get("operation_type"),
            "total_records": snapshot.get("total_records"),
            "successful_records": snapshot.get("successful_records"),
            "failed_records": snapshot.get("failed_records"),
            "duration": duration,
        },
        "options": {"priority": "medium"},
    }


def create_notification_callback(client: httpx.AsyncClient, base_url: str):
    """
    Completion callback that tells the submitter their operation finished.

    A non-2xx answer raises ServiceCallError; the manager logs it and the
    operation stays completed.
    """
    handler = ServiceItemHandler(client, base_url, COMPLETION_NOTIFICATION_PATH)

    async def callback(snapshot: Dict[str, Any], duration: str) -> None:
        await handler.handle(completion_notification(snapshot, duration))
        logger.info(
            f"[Batch:{snapshot.get('id')}] Completion sent to {snapshot.get('initiated_by')} "
            f"({snapshot.get('successful_records')} ok, {snapshot.get('failed_records')} failed, {duration})"
        )

    return callback
