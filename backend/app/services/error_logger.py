"""Error recording for the query workflow service.

Failures go to the Python logger and, when a session is available, to the
``error_logs`` table.  Workflow errors carry their taxonomy ``kind`` so the
table can be filtered by what went wrong rather than by message text.

    from app.services.error_logger import log_error
    try:
        ...
    except StorageError as e:
        await log_error(e, db=db, module="query_engine", function_name="revert")
        raise
"""

from __future__ import annotations

import logging
import traceback as tb_module
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.error_log import ErrorLog, ErrorSeverity
from app.services.query_errors import QueryWorkflowError

logger = logging.getLogger("opsquery.errors")


def _sanitize_text(value: object, *, max_len: Optional[int] = None) -> str:
    """Strip control characters other than common whitespace."""
    text = "".join(ch if (ch >= " " or ch in "\n\r\t") else " " for ch in str(value))
    return text[:max_len] if max_len is not None else text


def severity_for_status(status_code: Optional[int]) -> ErrorSeverity:
    if status_code is None or status_code >= 500:
        return ErrorSeverity.ERROR
    if status_code >= 400:
        return ErrorSeverity.WARNING
    return ErrorSeverity.INFO


def error_kind(exc: Exception) -> Optional[str]:
    return exc.kind if isinstance(exc, QueryWorkflowError) else None


async def log_error(
    exc: Exception,
    *,
    db: Optional[AsyncSession] = None,
    severity: ErrorSeverity = ErrorSeverity.ERROR,
    module: Optional[str] = None,
    function_name: Optional[str] = None,
    request_method: Optional[str] = None,
    request_path: Optional[str] = None,
    request_body: Optional[str] = None,
    status_code: Optional[int] = None,
    response_time_ms: Optional[float] = None,
    user_id: Optional[str] = None,
    user_role: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> Optional[ErrorLog]:
    """Log ``exc`` and persist it when ``db`` is given.

    Returns the stored row, or None when persistence was skipped or failed.
    """
    error_type = type(exc).__name__
    kind = error_kind(exc)
    message = _sanitize_text(exc, max_len=2000)
    traceback_str = None
    line_number = None

    if exc.__traceback__:
        traceback_str = _sanitize_text(
            "".join(tb_module.format_exception(type(exc), exc, exc.__traceback__)),
            max_len=10000,
        )
        frame = exc.__traceback__
        while frame.tb_next:
            frame = frame.tb_next
        module = module or frame.tb_frame.f_code.co_filename
        function_name = function_name or frame.tb_frame.f_code.co_name
        line_number = frame.tb_lineno

    log_msg = f"[{severity.value.upper()}] {error_type}"
    if kind:
        log_msg += f"({kind})"
    log_msg += f": {message}"
    if request_path:
        log_msg = f"{request_method or '?'} {request_path} -> {log_msg}"
    if severity in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL):
        logger.error(log_msg, exc_info=exc if exc.__traceback__ else None)
    else:
        logger.warning(log_msg)

    if db is None:
        return None

    try:
        entry = ErrorLog(
            severity=severity,
            error_type=error_type,
            error_kind=kind,
            message=message,
            traceback=traceback_str,
            module=_sanitize_text(module, max_len=300) if module else None,
            function_name=_sanitize_text(function_name, max_len=200) if function_name else None,
            line_number=line_number,
            request_method=request_method,
            request_path=_sanitize_text(request_path, max_len=500) if request_path else None,
            request_body=_sanitize_text(request_body, max_len=5000) if request_body else None,
            status_code=status_code,
            response_time_ms=response_time_ms,
            user_id=_sanitize_text(user_id, max_len=64) if user_id else None,
            user_role=_sanitize_text(user_role, max_len=20) if user_role else None,
            ip_address=_sanitize_text(ip_address, max_len=45) if ip_address else None,
        )
        db.add(entry)
        await db.flush()
        return entry
    except Exception as db_err:
        # Error logging must never take the request down with it
        logger.warning("Failed to persist error log to DB: %s", db_err)
        return None


async def log_error_standalone(exc: Exception, **context) -> Optional[ErrorLog]:
    """``log_error`` in its own session, for callers outside a request's session."""
    from app.database import async_session

    try:
        async with async_session() as db:
            entry = await log_error(exc, db=db, **context)
            await db.commit()
            return entry
    except Exception as db_err:
        logger.warning("Failed standalone error log: %s", db_err)
        return None
