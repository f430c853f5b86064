from __future__ import annotations

from fastapi import APIRouter, Request

from lockvault.api.routes_public_parts.common import Json, _service

router = APIRouter()


@router.get("/plans")
def plans(request: Request) -> Json:
    return {"ok": True, "plans": [p.to_json() for p in _service(request).plans()]}
