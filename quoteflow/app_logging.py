"""Logging for the quoteflow API.

Two daily-rotated files are written to ``LOG_DIR``: ``app.log`` receives the
``quoteflow`` logger hierarchy and ``access.log`` one JSON line per request.
Every request gets an id (taken from ``X-Request-Id`` or generated), which is
echoed on the response and stamped onto application records emitted while
the request is being served, so a webhook's service log lines can be matched
to its access line.

Webhook payloads carry customer addresses and message bodies; those keys are
masked before a request body reaches the access log.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import time
from contextvars import ContextVar
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from uuid import uuid4

from fastapi import FastAPI, Request

from .core.rate_limit import get_client_ip

APP_LOGGER_NAME = "quoteflow"
ACCESS_LOGGER_NAME = "uvicorn.access"
TEXT_FORMAT = "[%(asctime)s] %(levelname)s in %(name)s: %(message)s"
UNLOGGED_PATHS = frozenset({"/api/health", "/api/metrics"})

SENSITIVE_FIELDS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
        "from",
        "sender",
        "from_email",
        "to",
        "recipient",
        "body",
        "phone",
    }
)

_request_id: ContextVar[str | None] = ContextVar("quoteflow_request_id", default=None)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() == "true"


@dataclasses.dataclass(frozen=True)
class LogConfig:
    log_dir: str
    level: int
    json: bool
    retention_days: int
    rotate_utc: bool

    @classmethod
    def from_env(cls) -> "LogConfig":
        level_name = os.getenv("LOG_LEVEL", "INFO").upper()
        return cls(
            log_dir=os.getenv("LOG_DIR", "logs"),
            level=getattr(logging, level_name, logging.INFO),
            json=_env_flag("LOG_JSON"),
            retention_days=int(os.getenv("LOG_RETENTION_DAYS", "7")),
            rotate_utc=_env_flag("LOG_ROTATE_UTC"),
        )

    def handler(self, filename: str) -> TimedRotatingFileHandler:
        handler = TimedRotatingFileHandler(
            os.path.join(self.log_dir, filename),
            when="midnight",
            backupCount=self.retention_days,
            utc=self.rotate_utc,
        )
        handler.setFormatter(JsonFormatter() if self.json else logging.Formatter(TEXT_FORMAT))
        handler.addFilter(RequestIdFilter())
        return handler


class RequestIdFilter(logging.Filter):
    """Attach the current request id (or ``-``) to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get() or "-"
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, selected with LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "request_id": getattr(record, "request_id", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def _scrub(data: object) -> object:
    """Mask sensitive keys at any depth of a decoded JSON document."""

    if isinstance(data, dict):
        return {
            key: "***" if key.lower() in SENSITIVE_FIELDS else _scrub(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [_scrub(value) for value in data]
    return data


async def _buffer_body(request: Request) -> object | None:
    """Read the body once and make it replayable for the route handler."""

    raw = await request.body()

    async def replay() -> dict:
        return {"type": "http.request", "body": raw, "more_body": False}

    request._receive = replay  # type: ignore[attr-defined]
    if not raw:
        return None
    try:
        return _scrub(json.loads(raw))
    except ValueError:
        return raw.decode("utf-8", errors="replace")


def _install_access_logging(app: FastAPI) -> None:
    """Register the access-log middleware on ``app``."""

    capture_bodies = _env_flag("LOG_REQUEST_BODIES")
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        if request.url.path in UNLOGGED_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        token = _request_id.set(request_id)
        started = time.perf_counter()
        try:
            body = await _buffer_body(request) if capture_bodies else None
            response = await call_next(request)
        finally:
            _request_id.reset(token)

        entry: dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "client_ip": get_client_ip(request),
            "headers": _scrub(dict(request.headers)),
        }
        if body is not None:
            entry["body"] = body
        response.headers["X-Request-Id"] = request_id
        access_logger.info(json.dumps(entry, default=str))
        return response


def init_logging(app: FastAPI | None = None) -> None:
    """Attach file handlers to the application and access loggers.

    The application logger keeps handlers it already has, so calling this
    twice does not duplicate lines. Access handlers are always replaced,
    which drops the console handler uvicorn installs.
    """

    config = LogConfig.from_env()
    os.makedirs(config.log_dir, exist_ok=True)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    if not app_logger.handlers:
        app_logger.addHandler(config.handler("app.log"))
    app_logger.setLevel(config.level)

    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)
    access_logger.handlers.clear()
    access_logger.addHandler(config.handler("access.log"))
    access_logger.setLevel(config.level)

    if app is not None:
        cast(Any, app).logger = app_logger
        _install_access_logging(app)


__all__ = [
    "APP_LOGGER_NAME",
    "JsonFormatter",
    "LogConfig",
    "RequestIdFilter",
    "init_logging",
]
