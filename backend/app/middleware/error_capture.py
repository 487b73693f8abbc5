"""Middleware that records failed requests in the error_logs table.

5xx responses are stored as ERROR, other 4xx as WARNING.  401/403 are left
out as routine access noise.  Unhandled exceptions become a 500 envelope.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from app.models.error_log import ErrorSeverity
from app.services.error_logger import log_error_standalone, severity_for_status

logger = logging.getLogger("opsquery.middleware")

_MAX_BODY_SIZE = 4096
_SKIPPED_STATUSES = (401, 403)


class ErrorCaptureMiddleware(BaseHTTPMiddleware):
    """Persists failed requests and converts unhandled exceptions to 500."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.time()
        request_body: Optional[str] = None

        if request.method in ("POST", "PUT", "PATCH"):
            try:
                body_bytes = await request.body()
                if len(body_bytes) <= _MAX_BODY_SIZE:
                    request_body = body_bytes.decode("utf-8", errors="replace")
            except Exception as e:
                logger.debug("Could not read request body: %s", e)

        context = {
            "module": "middleware.error_capture",
            "request_method": request.method,
            "request_path": str(request.url.path),
            "request_body": request_body,
            "user_id": request.headers.get("x-user-id"),
            "user_role": request.headers.get("x-user-role"),
            "ip_address": request.client.host if request.client else None,
        }

        try:
            response = await call_next(request)
        except Exception as exc:
            elapsed_ms = round((time.time() - start) * 1000, 2)
            await log_error_standalone(
                exc,
                severity=ErrorSeverity.CRITICAL if "database" in str(exc).lower() else ErrorSeverity.ERROR,
                status_code=500,
                response_time_ms=elapsed_ms,
                **context,
            )
            logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": {"kind": "internal_error", "message": "Internal Server Error"},
                },
            )

        if response.status_code >= 400 and response.status_code not in _SKIPPED_STATUSES:
            await log_error_standalone(
                Exception(f"HTTP {response.status_code} on {request.method} {request.url.path}"),
                severity=severity_for_status(response.status_code),
                function_name="dispatch",
                status_code=response.status_code,
                response_time_ms=round((time.time() - start) * 1000, 2),
                **context,
            )
        return response
