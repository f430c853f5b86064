from __future__ import annotations

from typing import Any, Dict

from fastapi import Request

from lockvault.api.errors import ApiError
from lockvault.ledger.types import Position
from lockvault.runtime.service import LedgerService

Json = Dict[str, Any]


def _service(request: Request) -> LedgerService:
    svc = getattr(request.app.state, "service", None)
    if svc is None:
        raise ApiError.internal("not_ready", "service not attached to app.state", {})
    return svc


def _account_param(account: Any) -> str:
    a = str(account or "").strip()
    if not a:
        raise ApiError.bad_request("bad_request", "missing account", {})
    return a


def _position_json(index: int, pos: Position) -> Json:
    out = pos.to_json()
    out["index"] = int(index)
    return out
