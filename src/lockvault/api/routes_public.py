# src/lockvault/api/routes_public.py
from __future__ import annotations

from fastapi import APIRouter

from lockvault.api.routes_public_parts.accounts import router as accounts_router
from lockvault.api.routes_public_parts.actions import router as actions_router
from lockvault.api.routes_public_parts.health import router as health_router
from lockvault.api.routes_public_parts.metrics import router as metrics_router
from lockvault.api.routes_public_parts.plans import router as plans_router
from lockvault.api.routes_public_parts.stats import router as stats_router

public_router = APIRouter()

# health carries its own versioned and unversioned paths
public_router.include_router(health_router, prefix="", tags=["health"])
public_router.include_router(plans_router, prefix="/v1", tags=["plans"])
public_router.include_router(stats_router, prefix="/v1", tags=["stats"])
public_router.include_router(accounts_router, prefix="/v1", tags=["accounts"])
public_router.include_router(actions_router, prefix="/v1", tags=["actions"])

# Ops
public_router.include_router(metrics_router, prefix="/v1", tags=["metrics"])
