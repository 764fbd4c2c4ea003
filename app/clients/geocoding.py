"""Place search through the Photon geocoder (free, no API key)."""

from typing import List, Optional

import httpx
from pydantic import BaseModel

from app.clients.base import build_http_client, raise_for_status
from app.config import settings

SERVICE = "geocoding"

MIN_QUERY_LENGTH = 3


class LocationCandidate(BaseModel):
    id: Optional[str] = None
    name: str = ""
    city: str = ""
    state: str = ""
    country: str = ""
    lat: float
    lng: float
    type: str = ""

    @property
    def label(self) -> str:
        return ", ".join(p for p in (self.name, self.city, self.state, self.country) if p)


class GeocodingClient:
    """Free-text location search. Callers debounce keystrokes; this client does not."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.geocoding_url).rstrip("/")
        self._client = build_http_client(self.base_url, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def search(self, query: str, limit: int = 5, lang: str = "en") -> List[LocationCandidate]:
        query = (query or "").strip()
        if not self.base_url or len(query) < MIN_QUERY_LENGTH:
            return []

        response = await self._client.get(
            "/api/", params={"q": query, "limit": limit, "lang": lang}
        )
        raise_for_status(response, SERVICE, "Location search failed")

        candidates = []
        for feature in response.json().get("features") or []:
            props = feature.get("properties", {})
            lng, lat = feature["geometry"]["coordinates"][:2]
            osm_id = props.get("osm_id")
            candidates.append(
                LocationCandidate(
                    id=str(osm_id) if osm_id is not None else None,
                    name=props.get("name") or "",
                    city=props.get("city") or props.get("county") or "",
                    state=props.get("state") or "",
                    country=props.get("country") or "",
                    lat=lat,
                    lng=lng,
                    type=props.get("type") or "",
                )
            )
        return candidates
