from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from lockvault.api.config import load_api_config
from lockvault.api.errors import ApiError
from lockvault.api.routes_public import public_router
from lockvault.api.security import RequestSizeLimitMiddleware
from lockvault.api.structured_logging import RequestLogMiddleware
from lockvault.runtime.errors import LedgerError
from lockvault.runtime.event_log import configure_structured_logging
from lockvault.runtime.service import LedgerService
from lockvault.runtime.service_boot import build_service as _build_service


def build_service() -> LedgerService:
    """Build the LedgerService for the API runtime.

    This wrapper exists so tests can monkeypatch `lockvault.api.app.build_service`
    without reaching into runtime modules.
    """
    return _build_service()


def create_app(*, boot_runtime: bool = True) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): open the ledger DB and attach app.state.service
      - False: keep lightweight for unit tests; callers attach a service themselves
    """
    configure_structured_logging()
    cfg = load_api_config()

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        yield
        svc = getattr(app.state, "service", None)
        close = getattr(svc, "close", None)
        if callable(close):
            close()

    # Disable docs in production.
    if cfg.docs_enabled:
        app = FastAPI(title="lockvault API", lifespan=_lifespan)
    else:
        app = FastAPI(title="lockvault API", docs_url=None, redoc_url=None, openapi_url=None, lifespan=_lifespan)

    app.state.cfg = cfg
    app.state.service = build_service() if boot_runtime else None

    @app.exception_handler(ApiError)
    async def _api_error(_request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_json())

    @app.exception_handler(LedgerError)
    async def _ledger_error(_request: Request, exc: LedgerError) -> JSONResponse:
        err = ApiError.from_rejection(exc.code, exc.reason, exc.details)
        return JSONResponse(status_code=err.status_code, content=err.to_json())

    # --- Middleware ---
    # Added last runs first: request logging wraps the size limiter.
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=cfg.max_request_bytes)
    app.add_middleware(RequestLogMiddleware)

    # --- Routers ---
    app.include_router(public_router)

    return app
