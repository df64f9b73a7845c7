"""
Batch Operations API Router

FastAPI endpoints for submitting and controlling batch operations.
Request validation and access checks live here; everything else is
delegated to the BatchOperationManager stored on ``app.state``.

Caller identity is taken from the ``X-User-Id`` / ``X-User-Role`` headers
set by the upstream auth gateway.
"""

import asyncio
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import Response
from starlette.status import WS_1008_POLICY_VIOLATION
from pydantic import BaseModel, Field
from slowapi import Limiter
from slowapi.util import get_remote_address

from config.constants import (
    LIST_DEFAULT_LIMIT,
    LIST_MAX_LIMIT,
    RESULTS_DEFAULT_PAGE_SIZE,
    RESULTS_MAX_PAGE_SIZE,
)
from config.logging_config import get_logger
from config.settings import settings
from core.batch_operations import (
    BatchOperationError,
    BatchOperationManager,
    InvalidStateTransitionError,
    NoFailedItemsError,
    OperationNotFoundError,
    OperationRecord,
    OperationStatus,
    OperationType,
    RetryLimitExceededError,
    SubmissionError,
    UnsupportedExportFormatError,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/batch-operations", tags=["Batch Operations"])

limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)

# Operation types only admins may submit
ADMIN_ONLY_TYPES = {OperationType.MINT_VOUCHERS.value, OperationType.REGISTER_MERCHANTS.value}


# ==================== MODELS ====================

class CreateOperationRequest(BaseModel):
    """New batch operation"""
    operation_type: str = Field(..., description="mint-vouchers | register-merchants | import-recipients | send-notifications")
    items: List[Any] = Field(..., description="Work items, forwarded verbatim to the handler")
    batch_size: Optional[int] = Field(default=None, description="Items per chunk (1-100)")
    priority: Optional[str] = Field(default=None, description="high | medium | low")
    parallel: Optional[bool] = Field(default=None, description="Run a chunk's items concurrently")
    max_retries: Optional[int] = Field(default=None, ge=0, le=10)
    options: Dict[str, Any] = Field(default_factory=dict)


class CreateOperationResponse(BaseModel):
    operation_id: str
    status: str
    total_records: int
    estimated_seconds: int
    estimated_duration: str
    retry_of: Optional[str] = None
    retry_count: Optional[int] = None


class OperationStatusResponse(BaseModel):
    """Operation snapshot without items and results"""
    id: str
    operation_type: str
    status: str
    initiated_by: str
    total_records: int
    processed_records: int
    successful_records: int
    failed_records: int
    batch_size: int
    progress: int
    created_at: str
    updated_at: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    errors: List[Dict[str, Any]] = []
    metadata: Dict[str, Any] = {}
    parameters: Dict[str, Any] = {}
    success_rate: int = 0
    estimated_time_remaining_seconds: Optional[int] = None
    pause_requested: bool = False
    cancel_requested: bool = False


class OperationListResponse(BaseModel):
    operations: List[OperationStatusResponse]
    limit: int
    offset: int


class ResultsPageResponse(BaseModel):
    operation_id: str
    page: int
    page_size: int
    total: int
    total_pages: int
    results: List[Dict[str, Any]]


class MetricsResponse(BaseModel):
    total_operations: int
    successful_operations: int
    failed_operations: int
    cancelled_operations: int
    average_processing_time_ms: float
    active_operations_count: int
    paused_operations_count: int
    queued_operations_count: int
    queue_depths: Dict[str, int]
    max_concurrent_operations: int
    status_counts: Dict[str, int]


class Caller(BaseModel):
    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


# ==================== DEPENDENCIES ====================

def get_manager(request: Request) -> BatchOperationManager:
    manager = getattr(request.app.state, "batch_manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Batch operation engine not initialized")
    return manager


def get_caller(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: str = Header(default="user"),
) -> Caller:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return Caller(user_id=x_user_id, role=x_user_role.lower())


# ==================== HELPERS ====================

def _http_error(exc: BatchOperationError) -> HTTPException:
    """Map engine errors to HTTP status codes"""
    if isinstance(exc, (SubmissionError, UnsupportedExportFormatError)):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, OperationNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidStateTransitionError, NoFailedItemsError, RetryLimitExceededError)):
        return HTTPException(status_code=409, detail=str(exc))
    logger.error(f"Unexpected batch operation error: {exc}")
    return HTTPException(status_code=500, detail="Batch operation request failed")


def _authorized_operation(manager: BatchOperationManager, operation_id: str, caller: Caller) -> OperationRecord:
    """Load a record the caller may see (submitter or admin)."""
    try:
        record = manager.get_operation(operation_id)
    except OperationNotFoundError as e:
        raise _http_error(e)

    if record.initiated_by != caller.user_id and not caller.is_admin:
        raise HTTPException(status_code=403, detail="Access denied")
    return record


# ==================== ENDPOINTS ====================

@router.post(
    "/create",
    response_model=CreateOperationResponse,
    status_code=201,
    summary="Create a batch operation",
)
@limiter.limit(settings.write_rate_limit)
async def create_operation(
    request: Request,
    body: CreateOperationRequest,
    caller: Caller = Depends(get_caller),
    manager: BatchOperationManager = Depends(get_manager),
):
    """
    Queue a new batch operation.

    **Permissions:** mint-vouchers and register-merchants require the admin role.
    """
    if body.operation_type in ADMIN_ONLY_TYPES and not caller.is_admin:
        raise HTTPException(
            status_code=403,
            detail=f"Admin role required for {body.operation_type}"
        )

    try:
        created = manager.create(
            body.operation_type,
            body.items,
            initiated_by=caller.user_id,
            batch_size=body.batch_size,
            priority=body.priority,
            parallel=body.parallel,
            max_retries=body.max_retries,
            options=body.options,
        )
    except BatchOperationError as e:
        raise _http_error(e)

    return CreateOperationResponse(**created)


@router.get(
    "/status/{operation_id}",
    response_model=OperationStatusResponse,
    summary="Get operation status",
)
@limiter.limit(settings.read_rate_limit)
async def get_operation_status(
    request: Request,
    operation_id: str,
    caller: Caller = Depends(get_caller),
    manager: BatchOperationManager = Depends(get_manager),
):
    """Poll this endpoint to follow progress."""
    _authorized_operation(manager, operation_id, caller)
    return manager.get_status(operation_id)


@router.get(
    "/my-operations",
    response_model=OperationListResponse,
    summary="List the caller's operations",
)
@limiter.limit(settings.read_rate_limit)
async def list_my_operations(
    request: Request,
    limit: int = Query(default=LIST_DEFAULT_LIMIT, ge=1, le=LIST_MAX_LIMIT),
    offset: int = Query(default=0, ge=0),
    status: Optional[OperationStatus] = Query(default=None),
    caller: Caller = Depends(get_caller),
    manager: BatchOperationManager = Depends(get_manager),
):
    operations = manager.list_operations(
        initiated_by=caller.user_id,
        limit=limit,
        offset=offset,
        status=status.value if status else None,
    )
    return OperationListResponse(operations=operations, limit=limit, offset=offset)


@router.post(
    "/pause/{operation_id}",
    response_model=OperationStatusResponse,
    summary="Pause an operation",
)
@limiter.limit(settings.write_rate_limit)
async def pause_operation(
    request: Request,
    operation_id: str,
    caller: Caller = Depends(get_caller),
    manager: BatchOperationManager = Depends(get_manager),
):
    """
    Queued operations pause immediately; processing ones stop at the
    end of the current chunk (``pause_requested`` is true until then).
    """
    _authorized_operation(manager, operation_id, caller)
    try:
        return manager.pause(operation_id)
    except BatchOperationError as e:
        raise _http_error(e)


@router.post(
    "/resume/{operation_id}",
    response_model=OperationStatusResponse,
    summary="Resume a paused operation",
)
@limiter.limit(settings.write_rate_limit)
async def resume_operation(
    request: Request,
    operation_id: str,
    caller: Caller = Depends(get_caller),
    manager: BatchOperationManager = Depends(get_manager),
):
    _authorized_operation(manager, operation_id, caller)
    try:
        return manager.resume(operation_id)
    except BatchOperationError as e:
        raise _http_error(e)


@router.delete(
    "/cancel/{operation_id}",
    response_model=OperationStatusResponse,
    summary="Cancel an operation",
)
@limiter.limit(settings.write_rate_limit)
async def cancel_operation(
    request: Request,
    operation_id: str,
    caller: Caller = Depends(get_caller),
    manager: BatchOperationManager = Depends(get_manager),
):
    """Results recorded before the cancel are kept."""
    _authorized_operation(manager, operation_id, caller)
    try:
        return manager.cancel(operation_id)
    except BatchOperationError as e:
        raise _http_error(e)


@router.post(
    "/retry/{operation_id}",
    response_model=CreateOperationResponse,
    status_code=201,
    summary="Retry failed items",
)
@limiter.limit(settings.write_rate_limit)
async def retry_operation(
    request: Request,
    operation_id: str,
    caller: Caller = Depends(get_caller),
    manager: BatchOperationManager = Depends(get_manager),
):
    """Creates a new high-priority operation holding only the failed items."""
    _authorized_operation(manager, operation_id, caller)
    try:
        created = manager.retry(operation_id, initiated_by=caller.user_id)
    except BatchOperationError as e:
        raise _http_error(e)
    return CreateOperationResponse(**created)


@router.get(
    "/results/{operation_id}",
    response_model=ResultsPageResponse,
    summary="Get paginated results",
)
@limiter.limit(settings.read_rate_limit)
async def get_operation_results(
    request: Request,
    operation_id: str,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=RESULTS_DEFAULT_PAGE_SIZE, ge=1, le=RESULTS_MAX_PAGE_SIZE),
    caller: Caller = Depends(get_caller),
    manager: BatchOperationManager = Depends(get_manager),
):
    _authorized_operation(manager, operation_id, caller)
    return manager.get_results(operation_id, page=page, page_size=page_size)


@router.get(
    "/export/{operation_id}",
    summary="Download results as JSON or CSV",
)
@limiter.limit(settings.read_rate_limit)
async def export_operation_results(
    request: Request,
    operation_id: str,
    format: str = Query(default="json", description="json | csv"),
    caller: Caller = Depends(get_caller),
    manager: BatchOperationManager = Depends(get_manager),
):
    _authorized_operation(manager, operation_id, caller)
    try:
        exported = manager.export_results(operation_id, format)
    except BatchOperationError as e:
        raise _http_error(e)

    return Response(
        content=exported.content,
        media_type=exported.media_type,
        headers={"Content-Disposition": f"attachment; filename={exported.filename}"},
    )


@router.get(
    "/metrics",
    response_model=MetricsResponse,
    summary="Engine metrics (admin)",
)
@limiter.limit(settings.read_rate_limit)
async def get_metrics(
    request: Request,
    caller: Caller = Depends(get_caller),
    manager: BatchOperationManager = Depends(get_manager),
):
    if not caller.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return manager.get_metrics()


@router.websocket("/ws")
async def operations_websocket(websocket: WebSocket):
    """
    Progress feed.

    Requires the same ``X-User-Id`` / ``X-User-Role`` headers as the HTTP
    routes; anonymous clients are closed with 1008. Every chunk, pause,
    cancel and completion is pushed as
    ``{"event": ..., "operation_id": ..., "progress": ...}`` to the
    submitter and to admins.
    """
    user_id = websocket.headers.get("x-user-id")
    if not user_id:
        await websocket.close(code=WS_1008_POLICY_VIOLATION)
        return

    caller = Caller(user_id=user_id, role=websocket.headers.get("x-user-role", "user").lower())
    connections = websocket.app.state.connections
    await connections.connect(websocket, caller)

    try:
        await websocket.send_json({"event": "connected", "user_id": caller.user_id})

        while True:
            try:
                await asyncio.wait_for(websocket.receive_text(), timeout=30.0)
            except asyncio.TimeoutError:
                await websocket.send_json({"event": "ping"})

    except WebSocketDisconnect:
        logger.debug(f"WebSocket client {caller.user_id} disconnected")
    finally:
        connections.disconnect(websocket)
