from __future__ import annotations

from fastapi import APIRouter, Request

from lockvault.api.routes_public_parts.common import Json, _service

router = APIRouter()


@router.get("/stats")
def stats(request: Request) -> Json:
    return {"ok": True, "stats": _service(request).stats().to_json()}


@router.get("/solvency")
def solvency(request: Request) -> Json:
    """Custody balance against total_staked + reserved_rewards + reward_pool."""
    return {"ok": True, "solvency": _service(request).solvency()}
