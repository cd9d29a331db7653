"""Middleware: request ID injection, access logging."""

import hashlib
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("tally.access")

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag each request with an ID, echoed back in the response headers.

    A well-formed incoming X-Request-ID is reused so traces can span services.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = _incoming_request_id(request) or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class AccessLogMiddleware(BaseHTTPMiddleware):
    """One log line per request: id, hashed owner, route, status, latency."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.monotonic()
        response = await call_next(request)
        elapsed_ms = (time.monotonic() - start) * 1000

        owner = getattr(request.state, "user_id", None)
        logger.info(
            "request_id=%s owner=%s method=%s path=%s query=%s status=%d elapsed_ms=%.1f",
            getattr(request.state, "request_id", "-"),
            _hash_owner(owner) if owner else "-",
            request.method,
            request.url.path,
            request.url.query or "-",
            response.status_code,
            elapsed_ms,
        )
        return response


def _incoming_request_id(request: Request) -> str | None:
    value = request.headers.get(REQUEST_ID_HEADER)
    if not value:
        return None
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return None


def _hash_owner(uid: str) -> str:
    # Owner ids never reach the log in clear.
    return hashlib.sha256(str(uid).encode()).hexdigest()[:12]
