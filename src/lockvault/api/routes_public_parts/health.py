from __future__ import annotations

import time

from fastapi import APIRouter, Request

router = APIRouter()


def _health_payload(request: Request) -> dict[str, object]:
    # health must never fail; it reports readiness instead
    svc = getattr(request.app.state, "service", None)
    cfg = getattr(request.app.state, "cfg", None)

    ledger: dict[str, object] = {"ready": svc is not None}
    if svc is not None:
        stats = svc.stats()
        ledger.update(
            {
                "refund_mode": stats.refund_mode,
                "paused": svc.gate.is_paused(),
                "total_positions": stats.total_positions,
            }
        )

    return {
        "ok": True,
        "service": "lockvault",
        "version": "v1",
        "ts_ms": int(time.time() * 1000),
        "mode": getattr(cfg, "mode", None),
        "ledger": ledger,
    }


@router.get("/v1/health")
def v1_health(request: Request) -> dict[str, object]:
    return _health_payload(request)


@router.get("/health")
def health(request: Request) -> dict[str, object]:
    # unversioned alias for ops tooling
    return _health_payload(request)
