"""
Request-bounding and cache middleware.

Clients poll the conversation endpoints every few seconds, so responses must
never be served from a browser or proxy cache. Each request is also bounded
by a timeout, the only cancellation primitive the service offers.
"""

import asyncio
import logging
import time
from typing import Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from marketchat.config import settings
from marketchat.errors import RequestTimedOut, error_body
from marketchat.storage import request_deadline

logger = logging.getLogger(__name__)


class NoCacheMiddleware(BaseHTTPMiddleware):
    """Add Cache-Control headers forbidding any caching of API responses."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
        response.headers["Pragma"] = "no-cache"
        response.headers["Expires"] = "0"
        return response


class RequestTimeoutMiddleware(BaseHTTPMiddleware):
    """
    Answer 504 when a request runs longer than its timeout.

    A sync handler cannot be interrupted in its worker thread, so the
    deadline is also published through storage.request_deadline; the
    message store checks it before every write and refuses to commit once
    the client has been told the request failed.

    Without an explicit `timeout_seconds` the configured
    REQUEST_TIMEOUT_SECONDS is read on every request.
    """

    def __init__(self, app: ASGIApp, timeout_seconds: Optional[float] = None):
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, request: Request, call_next) -> Response:
        timeout = self.timeout_seconds if self.timeout_seconds is not None else settings.REQUEST_TIMEOUT_SECONDS
        token = request_deadline.set(time.monotonic() + timeout)
        try:
            return await asyncio.wait_for(call_next(request), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"Request timed out after {timeout}s: {request.method} {request.url.path}")
            error = RequestTimedOut()
            return JSONResponse(status_code=error.status_code, content=error_body(error))
        finally:
            request_deadline.reset(token)
