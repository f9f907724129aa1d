"""
Request timing middleware.

Stamps each request with an id (X-Request-ID, reused when the client sends
one) and reports how long the API took to answer. Requests slower than
SLOW_REQUEST_MS are logged as warnings.
"""

import logging
import time
import uuid

from flask import Flask, current_app, g, request

logger = logging.getLogger(__name__)

# Probes hit every few seconds
_QUIET_PATHS = frozenset({"/api/v1/health/live", "/api/v1/health/ready"})


def _new_request_id() -> str:
    return uuid.uuid4().hex[:12]


def init_request_timing(app: Flask):
    """Register the before/after hooks on ``app``."""

    @app.before_request
    def _stamp_request():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or _new_request_id()

    @app.after_request
    def _report_duration(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        elapsed_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed_ms:.1f}"

        if not request.path.startswith("/api/") or request.path in _QUIET_PATHS:
            return response

        # request_id, user_id and group_id come from RequestContextFilter
        extra = {
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": elapsed_ms,
            "remote_addr": request.remote_addr,
        }
        label = f"{request.method} {request.path} {response.status_code}"

        if response.is_streamed:
            # SSE: the handler returned before the first event was sent
            logger.debug("Stream opened: %s", label, extra=extra)
        elif response.status_code >= 500:
            logger.error("Server error: %s", label, extra=extra)
        elif elapsed_ms > current_app.config.get("SLOW_REQUEST_MS", 1000):
            logger.warning("Slow request: %s", label, extra=extra)
        else:
            logger.debug("Request: %s", label, extra=extra)

        return response
