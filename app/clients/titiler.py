"""TiTiler client for drone imagery.

Builds COG tile/preview URLs with dynamic styling and reads raster metadata
(bounds, info, statistics, point values). The tile server does all raster
work; this module only assembles query strings.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

import httpx

from app.clients.base import (
    FeatureDisabledError,
    build_http_client,
    probe,
    raise_for_status,
)
from app.config import settings

SERVICE = "titiler"


@dataclass(frozen=True)
class LayerStyle:
    """Styling options passed through to the tile server."""
    name: str = ""
    bidx: Optional[str] = None  # comma-separated band indexes, e.g. "1,2,3"
    expression: Optional[str] = None
    colormap: Optional[str] = None
    rescale: Optional[str] = None  # "min,max"
    nodata: Optional[float] = None
    max_size: int = 512


# Predefined layer configurations
LAYER_CONFIGS: Dict[str, LayerStyle] = {
    "rgb": LayerStyle(name="True Color", bidx="1,2,3"),
    "ndvi": LayerStyle(name="NDVI", colormap="rdylgn", rescale="-1,1"),
    "ndre": LayerStyle(name="NDRE", colormap="rdylgn", rescale="-1,1"),
    "moisture": LayerStyle(name="Moisture", colormap="blues", rescale="0,1"),
    "thermal": LayerStyle(name="Thermal", colormap="inferno", rescale="20,45"),  # Celsius
    "lai": LayerStyle(name="LAI", colormap="greens", rescale="0,8"),
}


def style_for(layer_type: str, **overrides) -> LayerStyle:
    style = LAYER_CONFIGS.get(layer_type, LayerStyle(name=layer_type))
    return replace(style, **overrides) if overrides else style


def local_file_url(filename: str) -> str:
    """URL of a file in the tile server's mounted imagery folder."""
    return f"file://{settings.imagery_dir.rstrip('/')}/{filename}"


def _style_params(source_url: str, style: Optional[LayerStyle]) -> List[Tuple[str, str]]:
    params: List[Tuple[str, str]] = [("url", source_url)]
    if style is None:
        return params
    # TiTiler expects one bidx parameter per band
    if style.bidx:
        for band in style.bidx.split(","):
            if band.strip():
                params.append(("bidx", band.strip()))
    if style.expression:
        params.append(("expression", style.expression))
    if style.colormap:
        params.append(("colormap_name", style.colormap))
    if style.rescale:
        params.append(("rescale", style.rescale))
    if style.nodata is not None:
        params.append(("nodata", str(style.nodata)))
    return params


class TiTilerClient:
    """Requests against /cog/* endpoints. Source rasters are local files unless a URL is given."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.titiler_url).rstrip("/")
        self._client = build_http_client(self.base_url, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    def is_configured(self) -> bool:
        return bool(self.base_url)

    def is_local_mode(self) -> bool:
        return self.is_configured() and "localhost" in self.base_url

    def _require(self) -> None:
        if not self.is_configured():
            raise FeatureDisabledError("TiTiler URL is not configured")

    # ------------------------------------------------------------------
    # URL builders
    # ------------------------------------------------------------------

    def tile_url(
        self,
        filename: str,
        style: Optional[LayerStyle] = None,
        source_url: Optional[str] = None,
    ) -> Optional[str]:
        """XYZ template for a map tile layer, or None when TiTiler is not configured."""
        if not self.is_configured():
            return None
        query = httpx.QueryParams(_style_params(source_url or local_file_url(filename), style))
        return f"{self.base_url}/cog/tiles/{{z}}/{{x}}/{{y}}?{query}"

    def preview_url(
        self,
        filename: str,
        style: Optional[LayerStyle] = None,
        source_url: Optional[str] = None,
    ) -> Optional[str]:
        if not self.is_configured():
            return None
        style = style or LayerStyle()
        params = _style_params(source_url or local_file_url(filename), style)
        params.insert(1, ("max_size", str(style.max_size)))
        return f"{self.base_url}/cog/preview?{httpx.QueryParams(params)}"

    # ------------------------------------------------------------------
    # JSON endpoints
    # ------------------------------------------------------------------

    async def _get_json(self, path: str, source_url: str, fallback: str) -> Any:
        self._require()
        response = await self._client.get(path, params={"url": source_url})
        raise_for_status(response, SERVICE, fallback)
        return response.json()

    async def bounds(self, filename: str, source_url: Optional[str] = None) -> List[float]:
        """[minx, miny, maxx, maxy] for fitting the map view."""
        data = await self._get_json(
            "/cog/bounds", source_url or local_file_url(filename), "Failed to get bounds"
        )
        return data["bounds"]

    async def info(self, filename: str, source_url: Optional[str] = None) -> Dict[str, Any]:
        """CRS, dimensions, bands."""
        return await self._get_json(
            "/cog/info", source_url or local_file_url(filename), "Failed to get info"
        )

    async def statistics(self, filename: str, source_url: Optional[str] = None) -> Dict[str, Any]:
        """Per-band min, max, mean, std."""
        return await self._get_json(
            "/cog/statistics", source_url or local_file_url(filename), "Failed to get statistics"
        )

    async def point(
        self, filename: str, lon: float, lat: float, source_url: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self._get_json(
            f"/cog/point/{lon},{lat}",
            source_url or local_file_url(filename),
            "Failed to get point value",
        )

    async def check_health(self) -> bool:
        if not self.is_configured():
            return False
        return await probe(self._client, "/healthz", settings.health_check_timeout_seconds)
