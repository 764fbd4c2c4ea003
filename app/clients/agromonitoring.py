"""AgroMonitoring client: polygon registration, weather, soil and NDVI for a farm polygon.

Every call needs an API key; without one the client is disabled.
"""

import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from app.clients.base import (
    FeatureDisabledError,
    build_http_client,
    raise_for_status,
)
from app.config import settings

SERVICE = "agromonitoring"

DAY_SECONDS = 24 * 3600


def polygon_geojson(coords: Sequence[Tuple[float, float]]) -> Dict[str, Any]:
    """GeoJSON Polygon geometry from (lat, lng) pairs, closing the ring if needed."""
    ring = [[lng, lat] for lat, lng in coords]
    if ring and ring[0] != ring[-1]:
        ring.append(list(ring[0]))
    return {"type": "Polygon", "coordinates": [ring]}


class AgroMonitoringClient:

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.agromonitoring_api_key
        self.base_url = (base_url if base_url is not None else settings.agromonitoring_url).rstrip("/")
        self._client = build_http_client(self.base_url, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    def is_configured(self) -> bool:
        return bool(self.api_key and self.base_url)

    async def _get(self, path: str, fallback: str, **params) -> Any:
        if not self.is_configured():
            raise FeatureDisabledError("AgroMonitoring API key is not configured")
        response = await self._client.get(path, params={**params, "appid": self.api_key})
        raise_for_status(response, SERVICE, fallback)
        return response.json()

    async def register_polygon(self, name: str, coords: Sequence[Tuple[float, float]]) -> str:
        """Register a farm boundary and return the AgroMonitoring polygon id."""
        if not self.is_configured():
            raise FeatureDisabledError("AgroMonitoring API key is not configured")
        response = await self._client.post(
            "/polygons",
            params={"appid": self.api_key},
            json={
                "name": name,
                "geo_json": {
                    "type": "Feature",
                    "properties": {},
                    "geometry": polygon_geojson(coords),
                },
            },
        )
        raise_for_status(response, SERVICE, "Polygon registration failed")
        return response.json()["id"]

    async def get_forecast(self, polygon_id: str) -> List[Dict[str, Any]]:
        return await self._get("/weather/forecast", "Weather forecast failed", polyid=polygon_id)

    async def get_current_weather(self, polygon_id: str) -> Dict[str, Any]:
        return await self._get("/weather", "Current weather failed", polyid=polygon_id)

    async def get_soil(self, polygon_id: str) -> Dict[str, Any]:
        return await self._get("/soil", "Soil data failed", polyid=polygon_id)

    async def get_uvi(self, polygon_id: str) -> Dict[str, Any]:
        return await self._get("/uvi", "UV index failed", polyid=polygon_id)

    async def get_ndvi_history(self, polygon_id: str, days: int = 365) -> List[Dict[str, Any]]:
        end = int(time.time())
        return await self._get(
            "/ndvi/history",
            "NDVI history failed",
            polyid=polygon_id,
            start=end - days * DAY_SECONDS,
            end=end,
        )

    async def search_latest_image(self, polygon_id: str, days: int = 30) -> Optional[Dict[str, Any]]:
        """Most recent satellite scene for the polygon, or None."""
        end = int(time.time())
        scenes = await self._get(
            "/image/search",
            "Satellite image search failed",
            polyid=polygon_id,
            start=end - days * DAY_SECONDS,
            end=end,
        )
        if not scenes:
            return None
        return max(scenes, key=lambda s: s.get("dt", 0))
