# src/lockvault/api/structured_logging.py
from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from lockvault.env import env_truthy
from lockvault.runtime.event_log import log_event

Json = Dict[str, Any]


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Structured request logging middleware.

    Controls:
      - LOCKVAULT_LOG_REQUESTS=0 to disable (default on)
      - LOCKVAULT_LOG_REQUEST_HEADERS=1 to include a small header subset
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        self._enabled = env_truthy("LOCKVAULT_LOG_REQUESTS", True)
        self._log_headers = env_truthy("LOCKVAULT_LOG_REQUEST_HEADERS")
        self._logger = logging.getLogger("lockvault.http")

    def _header_subset(self, request: Request) -> Json:
        if not self._log_headers:
            return {}
        out: Json = {}
        for k in ["user-agent", "content-type", "content-length", "x-forwarded-for"]:
            v = request.headers.get(k)
            if v:
                out[k] = v
        return out

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        started = time.monotonic()
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id

        status = 500
        err: Optional[str] = None
        response: Optional[Response] = None

        try:
            response = await call_next(request)
            status = int(response.status_code)
            response.headers.setdefault("x-request-id", request_id)
            return response
        except Exception as e:
            err = str(e)
            raise
        finally:
            log_event(
                self._logger,
                "http_request",
                request_id=request_id,
                method=request.method,
                path=str(request.url.path or ""),
                status=status,
                duration_ms=int((time.monotonic() - started) * 1000),
                client=str(request.client.host) if request.client else "",
                headers=self._header_subset(request),
                error=err,
            )
