"""Shared SlowAPI limiter used by the webhook routes and the application."""

from __future__ import annotations

from fastapi import Request
from slowapi import Limiter

from .settings import get_settings


def get_client_ip(request: Request) -> str:
    """Extract a best-effort client IP for rate limiting.

    Prefer ``X-Forwarded-For`` (first hop) if present, otherwise use the
    socket peer address.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def webhook_rate_limit() -> str:
    return get_settings().webhook_rate_limit


limiter = Limiter(key_func=get_client_ip, enabled=get_settings().rate_limit_enabled)


__all__ = ["get_client_ip", "limiter", "webhook_rate_limit"]
