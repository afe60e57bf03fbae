"""CORS and request-id middleware.

The request id (taken from an incoming ``X-Request-Id`` header or generated)
is echoed on the response and stamped on every ``script_governance`` log
record emitted while the request is handled, so a refused approval or a
lost version race can be traced back to its HTTP call.
"""

import logging
import time
import uuid
from contextvars import ContextVar

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from scriptgov.core.config import settings

logger = logging.getLogger("script_governance")

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

QUIET_PATHS = ("/api/health",)


class RequestIdFilter(logging.Filter):
    """Copy the current request id onto log records as ``request_id``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
        finally:
            request_id_var.reset(token)

        duration = round((time.perf_counter() - started) * 1000, 2)
        response.headers["X-Request-Id"] = request_id
        response.headers["X-Response-Time-Ms"] = str(duration)

        if response.status_code >= 500:
            level = logging.WARNING
        elif request.url.path in QUIET_PATHS:
            level = logging.DEBUG
        else:
            level = logging.INFO
        logger.log(
            level,
            "%s %s %s %sms [%s]",
            request.method, request.url.path, response.status_code, duration, request_id,
        )
        return response


def setup_middleware(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id", "X-Response-Time-Ms"],
    )
    app.add_middleware(RequestContextMiddleware)
