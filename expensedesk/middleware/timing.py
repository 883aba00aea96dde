"""
Per-request correlation id and duration.

Every response carries ``X-Request-ID`` (the caller's value when it is a
sane token, otherwise a fresh one) and ``X-Request-Duration-Ms``.  One log
line per request is written with the caller and any ids from the URL so a
slow approval or a failing push can be traced back to its request.
"""

import logging
import re
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

# Health probes and the long-lived notification stream
_QUIET_PATHS = frozenset({"/api/v1/health", "/api/v1/notifications/stream"})

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

# URL parameter -> log record attribute
_URL_IDS = {
    "pid": "project_id",
    "project_id": "project_id",
    "expense_id": "expense_id",
    "delegation_id": "delegation_id",
    "chat_id": "chat_id",
}


def _request_id() -> str:
    supplied = request.headers.get("X-Request-ID", "")
    if _REQUEST_ID_RE.match(supplied):
        return supplied
    return uuid.uuid4().hex[:12]


def _level_for(status: int, duration_ms: float, slow_ms: float) -> int:
    if status >= 500:
        return logging.ERROR
    if duration_ms > slow_ms:
        return logging.WARNING
    return logging.DEBUG


def init_request_timing(app: Flask):
    """Attach request-id and duration hooks to ``app``."""
    slow_ms = float(app.config.get("SLOW_REQUEST_MS", 1000))

    @app.before_request
    def _start_clock():
        g.request_start = time.perf_counter()
        g.request_id = _request_id()

    @app.after_request
    def _stamp_response(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"

        if request.path in _QUIET_PATHS:
            return response

        caller = getattr(g, "current_user", None)
        view_args = request.view_args or {}
        extra = {
            "request_id": g.request_id,
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "remote_addr": request.remote_addr,
            "user_id": caller.id if caller is not None else None,
        }
        for param, attr in _URL_IDS.items():
            if param in view_args:
                extra[attr] = view_args[param]

        logger.log(_level_for(response.status_code, duration_ms, slow_ms),
                   "%s %s -> %d", request.method, request.path, response.status_code,
                   extra=extra)
        return response
