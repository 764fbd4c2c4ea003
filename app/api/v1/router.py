"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from app.api.v1.health import router as health_router
from app.api.v1.panels import router as panels_router
from app.api.v1.imagery import router as imagery_router
from app.api.v1.geocode import router as geocode_router
from app.api.v1.verification import router as verification_router
from app.api.v1.farms import router as farms_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(panels_router, tags=["analysis"])
v1_router.include_router(imagery_router, tags=["imagery"])
v1_router.include_router(geocode_router, tags=["geocode"])
v1_router.include_router(verification_router, tags=["verification"])
v1_router.include_router(farms_router, tags=["farms"])
