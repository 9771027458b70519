from __future__ import annotations
from fastapi import APIRouter

from . import health, safety, flows, sessions

api = APIRouter()
api.include_router(health.router,   prefix="/health",   tags=["health"])
api.include_router(safety.router,   prefix="/safety",   tags=["safety"])
api.include_router(flows.router,    prefix="/flows",    tags=["flows"])
api.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
