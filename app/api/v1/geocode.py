"""Location search for the farm-boundary map."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from app.api.v1.errors import UPSTREAM_ERRORS, to_http_exception
from app.clients.geocoding import GeocodingClient

router = APIRouter()

# Set by main.py during lifespan
_geocoder: Optional[GeocodingClient] = None


def set_geocoder(geocoder: GeocodingClient):
    global _geocoder
    _geocoder = geocoder


@router.get("/geocode/search")
async def search(q: str = Query(""), limit: int = Query(5, ge=1, le=20)):
    """Ranked place candidates. Queries under 3 characters return nothing."""
    if _geocoder is None:
        raise HTTPException(status_code=503, detail="Geocoder not initialized")
    try:
        candidates = await _geocoder.search(q, limit=limit)
    except UPSTREAM_ERRORS as exc:
        raise to_http_exception(exc)
    return {
        "results": [dict(c.model_dump(), label=c.label) for c in candidates],
        "count": len(candidates),
    }
