from __future__ import annotations

from fastapi import APIRouter

from . import builds, health, ws

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(builds.router)

ws_router = ws.router

__all__ = ["api_router", "ws_router"]
