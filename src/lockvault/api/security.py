from __future__ import annotations

from typing import Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from lockvault.env import env_int, env_truthy


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Fail-fast request size limiter.

    - Enforces Content-Length when present.
    - Also caps the buffered body of mutating requests (chunked uploads).

    Configure:
      LOCKVAULT_MAX_REQUEST_BYTES (default: 64_000)
      LOCKVAULT_SIZE_LIMIT_DISABLE=1 to disable (only when enforced at the edge)
    """

    def __init__(
        self,
        app,
        *,
        max_bytes: Optional[int] = None,
        exempt_prefixes: Tuple[str, ...] = ("/docs", "/openapi.json", "/health", "/v1/health"),
    ):
        super().__init__(app)
        self._enabled = not env_truthy("LOCKVAULT_SIZE_LIMIT_DISABLE")
        self._max_bytes = int(max_bytes) if max_bytes is not None else env_int("LOCKVAULT_MAX_REQUEST_BYTES", 64_000)
        self._exempt_prefixes = exempt_prefixes

    def _too_large(self) -> JSONResponse:
        return JSONResponse(
            status_code=413,
            content={
                "ok": False,
                "error": {"code": "request_too_large", "message": "Request body too large", "details": {}},
            },
        )

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        path = request.url.path or ""
        for ex in self._exempt_prefixes:
            if path.startswith(ex):
                return await call_next(request)

        cl = request.headers.get("content-length")
        if cl:
            try:
                if int(cl) > self._max_bytes:
                    return self._too_large()
            except ValueError:
                # Malformed header; fall back to the buffered body cap.
                pass

        if (request.method or "").upper() in {"POST", "PUT", "PATCH"}:
            body = await request.body()
            if body and len(body) > self._max_bytes:
                return self._too_large()

        return await call_next(request)
