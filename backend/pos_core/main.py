"""FastAPI application entry point."""

import asyncio
import json
import logging
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

import pos_core.models  # noqa: F401  (registers tables on Base.metadata)
from pos_core import __version__
from pos_core.api.routes import api_router
from pos_core.core.config import settings
from pos_core.core.exceptions import ServiceError
from pos_core.core.metrics import MetricsMiddleware, metrics
from pos_core.core.rbac import RequireManager, token_data_from_payload
from pos_core.core.responses import error_response
from pos_core.core.security import decode_access_token
from pos_core.db.base import Base
from pos_core.db.session import SessionLocal, engine
from pos_core.services.websocket_service import (
    ClientConnection,
    EventType,
    broadcaster,
    manager as ws_manager,
)


class JSONFormatter(logging.Formatter):
    def format(self, record):
        return json.dumps({
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        })


# Configure logging - use JSON format in production, human-readable in dev
root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, settings.log_level))
root_logger.handlers.clear()

if settings.debug:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
else:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

root_logger.addHandler(handler)
logger = logging.getLogger(__name__)
request_logger = logging.getLogger("requests")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all HTTP requests and responses."""

    async def dispatch(self, request: Request, call_next):
        # Skip logging for health checks
        if request.url.path in ["/health", "/health/ready", "/", "/docs", "/openapi.json"]:
            return await call_next(request)

        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            request_logger.error(
                f"Error: {request.method} {request.url.path} - "
                f"Exception: {str(e)} - Time: {process_time:.3f}s - Client: {client_ip}"
            )
            raise

        process_time = time.time() - start_time
        log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
        request_logger.log(
            log_level,
            f"{request.method} {request.url.path} - "
            f"Status: {response.status_code} - Time: {process_time:.3f}s - Client: {client_ip}"
        )
        return response


async def _shutdown_realtime() -> None:
    await broadcaster.drain()
    await ws_manager.close_all()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"Starting POS order service {__version__}")

    # Create tables if they don't exist (for SQLite dev)
    if settings.is_sqlite:
        db_path = engine.url.database
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created (SQLite mode)")

    yield

    # Stop taking subscribers, then give open sockets a bounded time to close
    ws_manager.stop_accepting()
    try:
        await asyncio.wait_for(_shutdown_realtime(), timeout=settings.shutdown_grace_seconds)
    except asyncio.TimeoutError:
        logger.warning(
            f"Forced shutdown: real-time connections did not close within "
            f"{settings.shutdown_grace_seconds}s"
        )

    await engine.dispose()
    logger.info("Shutting down POS order service")


app = FastAPI(
    title="POS Order Service",
    description="Order, payment, table and stock API for restaurant point-of-sale terminals",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc.__cause__)
    return error_response(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return error_response(400, ", ".join(messages) or "Validation failed")


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    response = error_response(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return error_response(500, "Internal server error")


# Metrics middleware (Prometheus-compatible)
app.add_middleware(MetricsMiddleware)

# Request logging middleware
app.add_middleware(RequestLoggingMiddleware)

# CORS middleware - added last so it runs first (Starlette LIFO order)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Requested-With"],
    max_age=600,  # Cache preflight for 10 minutes
)

# Include API routes
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
def health_check():
    """Basic liveness check endpoint."""
    return {"status": "healthy", "version": __version__}


@app.get("/health/ready")
async def readiness_check():
    """Readiness probe with database and WebSocket manager checks."""
    checks = {"database": "unknown", "websocket_manager": "unknown"}

    try:
        async with SessionLocal() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = "unhealthy"

    stats = ws_manager.get_stats()
    checks["websocket_manager"] = (
        f"healthy ({stats['active_connections']} connections)"
        if stats["accepting"]
        else "shutting down"
    )

    all_healthy = all(c.startswith("healthy") for c in checks.values())
    return {
        "status": "ready" if all_healthy else "degraded",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }


@app.get("/metrics")
def prometheus_metrics(current_user: RequireManager):
    """Prometheus-compatible metrics endpoint."""
    return PlainTextResponse(metrics.get_prometheus_metrics(), media_type="text/plain")


async def _handle_client_message(client: ClientConnection, message: Dict[str, Any]) -> None:
    event = message.get("event")

    if event == "identify":
        ws_manager.identify(client.socket_id, message.get("userId"), message.get("username"))
        await ws_manager.emit_to_socket(client.socket_id, EventType.IDENTIFIED, {
            "userId": client.user_id,
            "username": client.username,
        })
    elif event == "ping":
        await ws_manager.emit_to_socket(client.socket_id, EventType.PONG, {})
    elif event in ("join", "leave"):
        room = message.get("room")
        if isinstance(room, str) and 0 < len(room) <= 64:
            if event == "join":
                ws_manager.join(client.socket_id, room)
            else:
                ws_manager.leave(client.socket_id, room)
    else:
        logger.debug(f"Ignoring unknown WebSocket event {event!r} from {client.socket_id}")


@app.websocket("/ws")
async def websocket_updates(websocket: WebSocket, token: Optional[str] = Query(None)):
    """Real-time order, table and payment events.

    A token is optional and only used to label the connection.
    """
    user = token_data_from_payload(decode_access_token(token)) if token else None
    client = await ws_manager.connect(
        websocket,
        ip=websocket.client.host if websocket.client else None,
        user_agent=websocket.headers.get("user-agent"),
        user_id=user.user_id if user else None,
        username=user.username if user else None,
    )
    if client is None:
        return

    try:
        while True:
            data = await websocket.receive_text()

            if len(data) > settings.ws_max_message_size:
                logger.warning(f"WebSocket message too large from {client.socket_id}")
                continue

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                if data == "ping":
                    await websocket.send_text("pong")
                continue

            if isinstance(message, dict):
                await _handle_client_message(client, message)
    except WebSocketDisconnect:
        ws_manager.disconnect(client.socket_id)
    except Exception as e:
        logger.error(f"WebSocket error for {client.socket_id}: {e}", exc_info=True)
        ws_manager.disconnect(client.socket_id)
