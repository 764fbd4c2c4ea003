"""Farm-level data: concurrent AgroMonitoring fetches and farm registration."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Mapping, Optional, Sequence, Tuple

from app.clients.agromonitoring import AgroMonitoringClient, polygon_geojson
from app.db.supabase_client import get_supabase

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    values: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)


async def gather_settled(calls: Mapping[str, Awaitable[Any]]) -> BatchOutcome:
    """Run all calls concurrently; each failure is recorded without affecting the others."""
    names = list(calls)
    results = await asyncio.gather(*calls.values(), return_exceptions=True)
    outcome = BatchOutcome()
    for name, result in zip(names, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            logger.warning("%s fetch failed: %s", name, result)
            outcome.errors[name] = str(result) or type(result).__name__
        else:
            outcome.values[name] = result
    return outcome


async def fetch_agro_overview(agro: AgroMonitoringClient, polygon_id: str) -> BatchOutcome:
    """Weather, soil, NDVI and imagery for a registered farm polygon."""
    return await gather_settled({
        "forecast": agro.get_forecast(polygon_id),
        "soil": agro.get_soil(polygon_id),
        "ndvi_history": agro.get_ndvi_history(polygon_id),
        "latest_image": agro.search_latest_image(polygon_id),
        "current_weather": agro.get_current_weather(polygon_id),
        "uvi": agro.get_uvi(polygon_id),
    })


class FarmRegistrationError(RuntimeError):
    pass


class FarmRegistry:
    """Creates farms from drawn or uploaded boundaries."""

    def __init__(self, agro: AgroMonitoringClient, client=None):
        self._agro = agro
        self._supabase = client

    def _db(self):
        return self._supabase if self._supabase is not None else get_supabase()

    async def create_farm(
        self,
        user_id: str,
        name: str,
        coords: Sequence[Tuple[float, float]],
    ) -> Dict[str, Optional[str]]:
        """Store the boundary, register it with AgroMonitoring and link the two.

        coords are (lat, lng) pairs.
        """
        try:
            response = self._db().rpc(
                "create_farm_with_boundary",
                {"p_user_id": user_id, "p_name": name, "p_geojson": polygon_geojson(coords)},
            ).execute()
        except Exception as exc:
            if "Invalid polygon" in str(exc):
                raise FarmRegistrationError(
                    "Invalid farm boundary. Please ensure the polygon doesn't intersect itself."
                ) from exc
            raise

        farm = response.data or {}
        farm_id = farm.get("farm_id") if isinstance(farm, dict) else None
        if not farm_id:
            raise FarmRegistrationError("Failed to create farm in database.")

        agro_id = await self._agro.register_polygon(name, coords)
        self._db().table("farms").update({"agromonitoring_id": agro_id}).eq("id", farm_id).execute()
        logger.info("Registered farm %s with AgroMonitoring polygon %s", farm_id, agro_id)
        return {"farm_id": farm_id, "agromonitoring_id": agro_id}
