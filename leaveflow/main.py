"""
Leave Approval Service - FastAPI application

Middleware order (last added = first to execute): CORS -> CorrelationId -> Logging.
Every error leaves the service as {"success": false, "errors": [...], "request_id": ...}.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

import leaveflow.models  # noqa: F401  (model registration)
from leaveflow.core.config import settings
from leaveflow.core.exceptions import AppException, StaleStateError
from leaveflow.core.init_system import init_system_data
from leaveflow.core.limiter import limiter
from leaveflow.core.logging import request_id_var, setup_logging
from leaveflow.core.middleware import CorrelationIdMiddleware, LoggingMiddleware
from leaveflow.database import SessionLocal, init_db
from leaveflow.routers.api_router import api_router

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"Starting {settings.app_name} v{settings.version} ({settings.environment})",
        extra={"workflow_strategy": settings.workflow.strategy}
    )
    init_db()
    init_system_data()
    logger.info("✓ Database and leave categories ready")
    yield
    logger.info("Leave approval service stopped")


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Multi-level leave approval workflow service",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[settings.request_id_header, "X-Process-Time"],
)


# ============================================================================
# ERROR RESPONSES
# ============================================================================
def _error_response(
    status_code: int,
    errors: List[Dict[str, Any]],
    headers: Optional[Dict[str, str]] = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "errors": errors, "request_id": request_id_var.get() or None},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in error["loc"][1:]) or "body", "msg": error["msg"], "code": "VALIDATION_ERROR"}
        for error in exc.errors()
    ]
    logger.warning(f"Rejected malformed request to {request.url.path}", extra={"errors": errors})
    return _error_response(422, errors)


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    """Workflow errors carry their own status, code and details."""
    logger.warning(exc.message, extra={"code": exc.error_code, "path": request.url.path})
    # The client may resend a decision that lost a version race
    headers = {"Retry-After": "1"} if isinstance(exc, StaleStateError) else None
    return _error_response(
        exc.status_code,
        [{"msg": exc.message, "code": exc.error_code, "details": exc.details or {}}],
        headers,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Identity failures from auth_deps and unknown routes."""
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return _error_response(exc.status_code, [{"msg": message}], getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled server error", extra={"path": request.url.path})
    return _error_response(500, [{"msg": "An unexpected server error occurred."}])


app.include_router(api_router, prefix=settings.api_prefix)


# ============================================================================
# OPERATIONAL ENDPOINTS
# ============================================================================
@app.get("/", tags=["Health"])
def root():
    return {
        "message": "Leave Approval Service API",
        "version": settings.version,
        "docs": "/docs",
    }


@app.get("/health", tags=["Health"])
def health_check():
    return {
        "status": "up",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.version,
        "environment": settings.environment,
        "workflow_strategy": settings.workflow.strategy,
    }


@app.get("/readiness", tags=["Health"])
def readiness_check():
    """Ready once the leave database answers."""
    try:
        with SessionLocal() as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Readiness check failed: {e}")
        return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, [{"msg": "Leave database unavailable"}])
    return {"status": "ready", "components": {"database": "connected"}}
