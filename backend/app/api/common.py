"""Shared pieces of the query workflow routers: response envelope and rate limiter."""

from typing import Any

from slowapi import Limiter
from slowapi.util import get_remote_address

from app.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)


def ok(data: Any) -> dict:
    return {"success": True, "data": data}


def failure(kind: str, message: str, **details) -> dict:
    error = {"kind": kind, "message": message}
    if details:
        error["details"] = details
    return {"success": False, "error": error}
