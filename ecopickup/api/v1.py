"""Centralized v1 API router — all module routers are included here."""

from fastapi import APIRouter

from ecopickup.modules.pickup.router import router as pickup_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(pickup_router)
