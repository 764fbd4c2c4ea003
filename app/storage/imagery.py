"""Drone imagery storage: GeoTIFF uploads to Supabase Storage plus flight/layer records."""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import httpx

from app.clients.base import RemoteServiceError
from app.clients.titiler import TiTilerClient
from app.config import settings
from app.db.supabase_client import get_supabase
from app.jobs.models import FlightRecord, LayerRecord, ProcessingJobRecord

logger = logging.getLogger(__name__)

KNOWN_LAYER_TYPES = ("rgb", "ndvi", "ndre", "moisture", "thermal", "lai", "gndvi", "savi")
ACTIVE_PROCESSING_STATUSES = ["pending", "uploading", "queued", "processing"]

_TIFF_SUFFIX = re.compile(r"\.(tif|tiff)$", re.IGNORECASE)


def build_layer_filename(farm_id: str, flight_date: str, layer_type: str) -> str:
    """farmId_YYYYMMDD_layerType.tif"""
    return f"{farm_id}_{flight_date.replace('-', '')}_{layer_type}.tif"


def parse_imagery_filename(filename: str) -> Tuple[Optional[str], str]:
    """Extract (YYYY-MM-DD date or None, layer type) from an imagery filename.

    Understands farmId_YYYYMMDD_layer.tif, YYYYMMDD_layer.tif, layer.tif and
    layer_YYYYMMDD.tif. Layer type defaults to rgb.
    """
    parts = _TIFF_SUFFIX.sub("", filename).split("_")
    date = None
    layer_type = "rgb"
    for part in parts:
        if re.fullmatch(r"\d{8}", part):
            date = f"{part[:4]}-{part[4:6]}-{part[6:8]}"
        elif re.fullmatch(r"\d{4}-\d{2}-\d{2}", part):
            date = part
    for part in parts:
        if part.lower() in KNOWN_LAYER_TYPES:
            layer_type = part.lower()
    return date, layer_type


@dataclass
class UploadResult:
    flight_id: str
    flight_date: str
    storage_path: str
    layer: Dict[str, Any] = field(default_factory=dict)


class ImageryStore:

    def __init__(self, client=None, titiler: Optional[TiTilerClient] = None, bucket: Optional[str] = None):
        self._supabase = client
        self._titiler = titiler
        self.bucket = bucket or settings.imagery_bucket

    def _db(self):
        return self._supabase if self._supabase is not None else get_supabase()

    def _storage(self):
        return self._db().storage.from_(self.bucket)

    def get_public_url(self, farm_id: str, filename: str) -> str:
        return self._storage().get_public_url(f"{farm_id}/{filename}")

    async def upload_drone_imagery(
        self,
        data: bytes,
        farm_id: str,
        flight_date: str,
        layer_type: str,
        pilot_name: Optional[str] = None,
        drone_model: Optional[str] = None,
        altitude: Optional[float] = None,
    ) -> UploadResult:
        """Store a GeoTIFF and upsert its flight and layer rows."""
        filename = build_layer_filename(farm_id, flight_date, layer_type)
        storage_path = f"{farm_id}/{filename}"

        self._storage().upload(
            storage_path,
            data,
            file_options={"cache-control": "3600", "upsert": "true", "content-type": "image/tiff"},
        )

        flight_id = self._get_or_create_flight(
            farm_id, flight_date, pilot_name, drone_model, altitude
        )

        crs, bounds, statistics = await self._raster_metadata(farm_id, filename)

        response = (
            self._db().table("drone_imagery_layers")
            .upsert(
                {
                    "flight_id": flight_id,
                    "layer_type": layer_type,
                    "filename": filename,
                    "file_size_bytes": len(data),
                    "crs": crs,
                    "bounds": bounds,
                    "statistics": statistics,
                },
                on_conflict="flight_id,layer_type",
            )
            .execute()
        )
        layer = response.data[0] if response.data else {}
        logger.info("Stored %s for farm %s (flight %s)", filename, farm_id, flight_id)
        return UploadResult(
            flight_id=flight_id,
            flight_date=flight_date,
            storage_path=storage_path,
            layer=layer,
        )

    def _get_or_create_flight(
        self,
        farm_id: str,
        flight_date: str,
        pilot_name: Optional[str],
        drone_model: Optional[str],
        altitude: Optional[float],
    ) -> str:
        existing = (
            self._db().table("drone_flights")
            .select("id")
            .eq("farm_id", farm_id)
            .eq("flight_date", flight_date)
            .limit(1)
            .execute()
        )
        if existing.data:
            return existing.data[0]["id"]

        created = (
            self._db().table("drone_flights")
            .insert({
                "farm_id": farm_id,
                "flight_date": flight_date,
                "pilot_name": pilot_name,
                "drone_model": drone_model,
                "altitude_meters": altitude,
            })
            .execute()
        )
        return created.data[0]["id"]

    async def _raster_metadata(self, farm_id: str, filename: str):
        """(crs, bounds, statistics) from TiTiler; all None when it is unavailable."""
        if self._titiler is None or not self._titiler.is_configured():
            return None, None, None
        public_url = self.get_public_url(farm_id, filename)
        crs = bounds = statistics = None
        try:
            info = await self._titiler.info(filename, source_url=public_url)
            crs = info.get("crs")
            bounds = info.get("bounds")
            statistics = await self._titiler.statistics(filename, source_url=public_url)
        except (httpx.HTTPError, RemoteServiceError) as exc:
            logger.warning("TiTiler not available for metadata extraction: %s", exc)
        return crs, bounds, statistics

    def delete_imagery(self, farm_id: str, layer_id: str, filename: str) -> None:
        self._storage().remove([f"{farm_id}/{filename}"])
        self._db().table("drone_imagery_layers").delete().eq("id", layer_id).execute()

    def ensure_bucket(self) -> bool:
        """Whether the imagery bucket exists. Listing needs fewer rights than listBuckets."""
        try:
            self._storage().list("", {"limit": 1})
        except Exception as exc:
            message = str(exc)
            if "Bucket not found" in message or "404" in message:
                logger.warning(
                    "%s bucket does not exist. Please create it in the Supabase dashboard.",
                    self.bucket,
                )
                return False
            # Permission or network problems: let the upload itself try
            logger.warning("Storage access warning: %s", message)
        return True

    def list_flights(self, farm_id: str) -> List[FlightRecord]:
        """Flights for a farm with their layers, newest first."""
        response = (
            self._db().table("drone_flights")
            .select("*, drone_imagery_layers(*)")
            .eq("farm_id", farm_id)
            .order("flight_date", desc=True)
            .execute()
        )
        return [FlightRecord.from_row(row) for row in response.data or []]

    def list_active_processing_jobs(self, farm_id: str) -> List[ProcessingJobRecord]:
        response = (
            self._db().table("processing_jobs")
            .select("*, drone_flights!inner(farm_id)")
            .eq("drone_flights.farm_id", farm_id)
            .in_("status", ACTIVE_PROCESSING_STATUSES)
            .order("created_at", desc=True)
            .execute()
        )
        return [ProcessingJobRecord.model_validate(row) for row in response.data or []]


def layer_filename(flight: FlightRecord, layer_type: str, farm_id: str) -> str:
    """Filename of a flight's layer, falling back to the naming convention."""
    layer: Optional[LayerRecord] = flight.layer(layer_type)
    if layer is not None and layer.filename:
        return layer.filename
    return f"{farm_id}_{flight.date}_{layer_type}.tif"


def preview_source(flight: FlightRecord, layer_type: str) -> Optional[str]:
    """Filename the preview for a layer reads from; multispectral bands share one file."""
    if flight.bands:
        return flight.bands[0].filename
    layer = flight.layer(layer_type)
    return layer.filename if layer else None
