import logging
import os
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.middleware.trustedhost import TrustedHostMiddleware

from backoffice.api.bulk_operations import router as bulk_operations_router
from backoffice.api.deps import get_db
from backoffice.api.websocket import router as websocket_router
from backoffice.core.config import APP_VERSION, settings
from backoffice.core.errors import HTTPError, http_error_handler
from backoffice.core.logging import setup_logging
from backoffice.db.session import async_session_maker
from backoffice.services.audit import DatabaseAuditSink
from backoffice.services.bulk import (
    BulkOperationEngine,
    OperationRegistry,
    RateLimiter,
    SqlAlchemyEntityStore,
    WebSocketProgressNotifier,
)
from backoffice.services.websocket import manager

logger = logging.getLogger(__name__)


def create_bulk_engine(session_maker: async_sessionmaker[AsyncSession]) -> BulkOperationEngine:
    """Wire the bulk engine to the database, audit log and WebSocket progress."""
    audit = DatabaseAuditSink(session_maker)
    return BulkOperationEngine(
        store=SqlAlchemyEntityStore(session_maker),
        audit=audit,
        rate_limiter=RateLimiter(window_seconds=settings.BULK_RATE_LIMIT_WINDOW_SECONDS, audit=audit),
        registry=OperationRegistry(retention_seconds=settings.BULK_RETENTION_SECONDS),
        notifier=WebSocketProgressNotifier(manager),
        default_batch_size=settings.BULK_DEFAULT_BATCH_SIZE,
        max_batch_size=settings.BULK_MAX_BATCH_SIZE,
        batch_delay_ms=settings.BULK_BATCH_DELAY_MS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown."""
    # Setup structured logging first
    setup_logging()

    logger.info("Starting bulk operation engine")
    app.state.bulk_engine = create_bulk_engine(async_session_maker)

    yield

    # Shutdown
    logger.info("Stopping bulk operation engine")
    await app.state.bulk_engine.shutdown()


app = FastAPI(
    title=settings.APP_NAME,
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    redirect_slashes=False,
)

# Register custom exception handler for standardized error responses
app.add_exception_handler(HTTPError, http_error_handler)


# Request ID middleware (add first for request tracking)
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add unique request ID for tracking and debugging."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id

    # Bind request_id to all log entries during this request
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)

    try:
        response = await call_next(request)
    finally:
        structlog.contextvars.clear_contextvars()

    response.headers["X-Request-ID"] = request_id
    return response


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://frontend:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Production security middleware
if not settings.DEBUG:
    # Prevent host header attacks (configure allowed hosts via env var)
    allowed_hosts = os.environ.get("ALLOWED_HOSTS", "")
    if allowed_hosts:
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=[h.strip() for h in allowed_hosts.split(",")]
        )


# Security headers middleware
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add OWASP-recommended security headers to all responses."""
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Cross-Origin-Opener-Policy"] = "same-origin"
    response.headers["Cross-Origin-Resource-Policy"] = "same-origin"

    # Only enable HSTS in production with HTTPS
    if not settings.DEBUG:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    return response


@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Health check endpoint for container orchestration.

    Returns 200 when the database is reachable, 503 otherwise.
    """
    checks = {
        "status": "healthy",
        "database": False,
    }

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["status"] = "unhealthy"

    status_code = 200 if checks["database"] else 503
    return JSONResponse(content=checks, status_code=status_code)


# Include routers with /api prefix
app.include_router(bulk_operations_router, prefix="/api")
app.include_router(websocket_router, prefix="/api")
