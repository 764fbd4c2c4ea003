"""Farm overview (weather, soil, NDVI) and farm registration."""

from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.api.v1.errors import UPSTREAM_ERRORS, to_http_exception
from app.auth.supabase_auth import verify_jwt
from app.clients.agromonitoring import AgroMonitoringClient
from app.services.farm_overview import (
    FarmRegistrationError,
    FarmRegistry,
    fetch_agro_overview,
)

router = APIRouter()

# Set by main.py during lifespan
_agro: Optional[AgroMonitoringClient] = None
_registry: Optional[FarmRegistry] = None


def set_services(agro: AgroMonitoringClient, registry: FarmRegistry):
    global _agro, _registry
    _agro = agro
    _registry = registry


class CreateFarmRequest(BaseModel):
    name: str
    coords: List[Tuple[float, float]] = Field(..., min_length=3)  # (lat, lng)


@router.get("/farms/polygons/{polygon_id}/overview")
async def farm_overview(polygon_id: str):
    """All AgroMonitoring data for a polygon. Failed sources are listed under errors."""
    if _agro is None:
        raise HTTPException(status_code=503, detail="AgroMonitoring client not initialized")
    if not _agro.is_configured():
        return {"enabled": False, "data": {}, "errors": {}}
    outcome = await fetch_agro_overview(_agro, polygon_id)
    return {"enabled": True, "data": outcome.values, "errors": outcome.errors}


@router.post("/farms")
async def create_farm(request: CreateFarmRequest, user=Depends(verify_jwt)):
    if _registry is None:
        raise HTTPException(status_code=503, detail="Farm registry not initialized")
    try:
        return await _registry.create_farm(user.id, request.name, request.coords)
    except FarmRegistrationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except UPSTREAM_ERRORS as exc:
        raise to_http_exception(exc)
