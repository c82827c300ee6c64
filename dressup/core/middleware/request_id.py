"""
Request correlation middleware.

Every request gets an id (the caller's X-Request-ID when it looks sane,
a fresh uuid otherwise). The id is bound to the logging context for the
lifetime of the request and echoed back on the response.
"""
import logging
import re
import time
from typing import Optional
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from dressup.core.logging import latency_bucket_ms, request_id_ctx_var

logger = logging.getLogger("dressup")

# Caller ids end up in every log line of the request
INCOMING_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

# Load balancer and uptime checks
QUIET_PATHS = frozenset({"/healthz", "/api/health"})


def accept_request_id(value: Optional[str]) -> str:
    if value and INCOMING_ID_RE.match(value):
        return value
    return str(uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id to each request and log its outcome."""

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = accept_request_id(request.headers.get(self.header_name))
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)
        started = time.perf_counter()
        fields = {"request_id": rid, "path": request.url.path, "method": request.method}

        try:
            response = await call_next(request)
        except Exception:
            fields["latency_bucket"] = latency_bucket_ms((time.perf_counter() - started) * 1000)
            logger.exception("request.failed", extra=fields)
            raise
        finally:
            request_id_ctx_var.reset(token)

        response.headers[self.header_name] = rid
        fields["status"] = response.status_code
        fields["latency_bucket"] = latency_bucket_ms((time.perf_counter() - started) * 1000)
        level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
        logger.log(level, "request.complete", extra=fields)
        return response
