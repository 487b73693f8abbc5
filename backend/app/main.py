"""Ops Query Workflow - FastAPI Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.config import settings
from app.database import init_db
from app.middleware.error_capture import ErrorCaptureMiddleware
from app.api import approvals, queries
from app.api.common import failure, limiter
from app.services.error_logger import log_error
from app.services.query_errors import QueryWorkflowError, StorageError

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup unless schema is managed externally."""
    if settings.auto_create_tables:
        await init_db()
        logger.info("Database tables ensured (%s)", "sqlite" if settings.is_sqlite else "server")
    yield


app = FastAPI(
    title="Ops Query Workflow API",
    description="Query lifecycle and Management approval workflow for loan applications",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ── Error envelopes ──────────────────────────────────────────

@app.exception_handler(QueryWorkflowError)
async def workflow_error_handler(request: Request, exc: QueryWorkflowError):
    if isinstance(exc, StorageError):
        await log_error(
            exc,
            module="query_workflow",
            request_method=request.method,
            request_path=str(request.url.path),
            status_code=exc.status_code,
            user_id=request.headers.get("x-user-id"),
            user_role=request.headers.get("x-user-role"),
        )
    else:
        logger.info(
            "%s %s rejected: %s (%s)",
            request.method, request.url.path, exc.kind, exc.message,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.to_dict()},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content=failure("validation_error", "Invalid request", errors=jsonable_encoder(exc.errors())),
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    kinds = {401: "authentication_error", 403: "authorization_error", 404: "not_found"}
    return JSONResponse(
        status_code=exc.status_code,
        content=failure(kinds.get(exc.status_code, "http_error"), str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


# ── Security headers middleware ──────────────────────────────

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds standard security headers to every response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if settings.environment != "development":
            response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"
        return response


app.add_middleware(SlowAPIMiddleware)

# Error capture wraps the routes; security headers and CORS sit outside it
app.add_middleware(ErrorCaptureMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Content-Type", "Accept", "X-Requested-With",
        "X-User-Id", "X-User-Name", "X-User-Role", "X-User-Branches",
        "X-User-Permissions", "X-User-Team-Preferences",
    ],
)

# Routers
app.include_router(queries.router, prefix="/api/queries", tags=["Queries"])
app.include_router(approvals.router, prefix="/api/approval-requests", tags=["Approval Requests"])


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "opsquery-api", "version": APP_VERSION}
