"""
Request timing middleware.

Tags every request with a request id, measures its duration and logs it.
Adds X-Request-ID and X-Request-Duration-Ms headers to all responses.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

# Probes are polled constantly; keep them out of the log.
_SKIP_LOG_PREFIXES = ("/api/v1/health",)

SLOW_THRESHOLD_MS = 1000


def init_request_timing(app: Flask):
    """Register before/after hooks for request timing."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _log_request(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        response.headers["X-Request-ID"] = g.request_id

        if request.path.startswith(_SKIP_LOG_PREFIXES):
            return response

        actor = getattr(g, "actor", None)
        extra = {
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "remote_addr": request.remote_addr,
            "request_id": g.request_id,
            "actor_id": actor.id if actor else None,
            "actor_role": actor.role if actor else None,
        }
        if response.status_code >= 500:
            log = logger.error
        elif duration_ms > SLOW_THRESHOLD_MS:
            log = logger.warning
        else:
            log = logger.debug
        log("%s %s %d", request.method, request.path, response.status_code, extra=extra)
        return response
