from __future__ import annotations

from fastapi import APIRouter, Request

from lockvault.api.errors import ApiError
from lockvault.api.routes_public_parts.common import Json, _account_param, _position_json, _service

router = APIRouter()


@router.get("/accounts/{account}")
def account_get(account: str, request: Request) -> Json:
    svc = _service(request)
    a = _account_param(account)
    return {
        "ok": True,
        "account": a,
        "balance": svc.balance_of(a),
        "next_nonce": svc.next_nonce(a),
        "positions": len(svc.positions(a)),
        "is_owner": svc.gate.is_owner(a),
    }


@router.get("/accounts/{account}/positions")
def positions_list(account: str, request: Request) -> Json:
    a = _account_param(account)
    items = [_position_json(i, p) for i, p in enumerate(_service(request).positions(a))]
    return {"ok": True, "account": a, "positions": items}


@router.get("/accounts/{account}/positions/{index}")
def position_get(account: str, index: int, request: Request) -> Json:
    a = _account_param(account)
    pos = _service(request).position(a, index)
    if pos is None:
        raise ApiError.not_found("invalid_index", "no such position", {"account": a, "index": index})
    return {"ok": True, "account": a, "position": _position_json(index, pos)}


@router.get("/accounts/{account}/positions/{index}/pending")
def position_pending(account: str, index: int, request: Request) -> Json:
    """Reward a claim would pay now; 0 while locked, claimed or unknown."""
    a = _account_param(account)
    return {"ok": True, "account": a, "index": index, "pending_reward": _service(request).pending_reward(a, index)}
