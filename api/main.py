#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
FastAPI Web Server - REST API for voucher batch operations.

This module wires the batch operation engine into a web application:
- Batch operation routes (create, status, pause/resume/cancel, retry, export)
- Real-time progress updates via WebSocket
- Health monitoring

Usage:
    # Start server
    uvicorn api.main:app --host 0.0.0.0 --port 8000

    # Or run directly
    python start_batch_processor.py

API Documentation:
    - OpenAPI docs: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc

Key Endpoints:
    POST /api/batch-operations/create - Queue a batch operation
    GET /api/batch-operations/status/{id} - Operation progress
    GET /api/batch-operations/results/{id} - Paginated item results
    WS /api/batch-operations/ws - Progress feed
    GET /health - Health check

Configuration:
    See config/settings.py; every setting can be overridden by an
    environment variable or the .env file.
"""

import time
from typing import Dict, Optional

import httpx
from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config.logging_config import get_logger
from config.settings import settings
from core.batch_operations import (
    BatchOperationManager,
    ItemExecutor,
    ManagerConfig,
    OperationStore,
    create_logging_callback,
    create_notification_callback,
    create_operation_store,
    create_websocket_callback,
    register_service_handlers,
)
from api.batch_operations_router import Caller, router as batch_operations_router, limiter

logger = get_logger(__name__)

VERSION = "1.0.0"


# =============================================================================
# WebSocket Manager
# =============================================================================

class ConnectionManager:
    """
    Manage WebSocket connections for real-time updates.

    Each connection remembers its caller; an event is delivered to admins
    and to the user who submitted the operation.

    Example:
        >>> connections = ConnectionManager()
        >>> await connections.connect(websocket, Caller(user_id="user-1"))
        >>> await connections.broadcast({"event": "progress", "initiated_by": "user-1"})
    """

    def __init__(self):
        self.active_connections: Dict[WebSocket, Caller] = {}

    async def connect(self, websocket: WebSocket, caller: Caller):
        await websocket.accept()
        self.active_connections[websocket] = caller

    def disconnect(self, websocket: WebSocket):
        self.active_connections.pop(websocket, None)

    async def broadcast(self, message: dict):
        """
        Send a message to every client allowed to see it.

        Clients whose send fails are dropped.
        """
        owner = message.get("initiated_by")
        for connection, caller in list(self.active_connections.items()):
            if not caller.is_admin and caller.user_id != owner:
                continue
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.debug(f"Dropping WebSocket client: {e}")
                self.disconnect(connection)


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Voucher Batch Operations API",
    description="Durable, priority-ordered batch processing for vouchers, merchants, recipients and notifications",
    version=VERSION,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(batch_operations_router)

app.state.connections = ConnectionManager()
start_time = time.time()


def build_manager(
    connections: ConnectionManager,
    client: Optional[httpx.AsyncClient] = None,
    store: Optional[OperationStore] = None,
) -> BatchOperationManager:
    """
    Store, executor and HTTP client from settings.

    The httpx client is shared by the item handlers and the completion
    notifier and is closed on shutdown.
    """
    if client is None:
        client = httpx.AsyncClient(timeout=settings.service_timeout_seconds)
    app.state.http_client = client

    executor = ItemExecutor(item_timeout=settings.timeout_or_none(settings.item_timeout_seconds))
    register_service_handlers(executor, client, settings)

    manager = BatchOperationManager(
        store=store if store is not None else create_operation_store(settings),
        executor=executor,
        config=ManagerConfig.from_settings(settings),
        on_progress=create_websocket_callback(connections),
        on_complete=create_notification_callback(client, settings.notification_service_url),
    )
    manager.add_progress_callback(create_logging_callback())
    return manager


@app.on_event("startup")
async def startup_batch_operations():
    """Build the engine (unless one was injected) and start the scheduler."""
    if getattr(app.state, "batch_manager", None) is None:
        app.state.batch_manager = build_manager(app.state.connections)

    try:
        await app.state.batch_manager.start()
    except Exception as e:
        logger.error(f"Startup: Failed to start batch scheduler: {e}")
        raise


@app.on_event("shutdown")
async def shutdown_batch_operations():
    manager = getattr(app.state, "batch_manager", None)
    if manager is not None:
        await manager.stop(drain_timeout=5.0)

    client = getattr(app.state, "http_client", None)
    if client is not None:
        await client.aclose()
        app.state.http_client = None


# =============================================================================
# Health Check & Monitoring
# =============================================================================

@app.get("/health")
async def health_check():
    """Basic health check endpoint"""
    manager = getattr(app.state, "batch_manager", None)
    return {
        "status": "healthy",
        "version": VERSION,
        "scheduler_running": bool(manager and manager.is_running),
        "uptime_seconds": round(time.time() - start_time, 1),
        "timestamp": time.time(),
    }
