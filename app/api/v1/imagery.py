"""Drone imagery: tile/preview URLs, raster bounds, flights, uploads and orthophoto processing."""

from typing import Dict, List, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from pydantic import BaseModel

from app.api.v1.errors import UPSTREAM_ERRORS, to_http_exception
from app.clients.cloud_import import GoogleDriveImporter
from app.clients.titiler import TiTilerClient, style_for
from app.jobs.periodic import ProcessingJobsWatcher
from app.jobs.poller import PollHandle
from app.services.orthophoto import OrthophotoProcessor
from app.storage.imagery import ImageryStore, layer_filename, preview_source

router = APIRouter()

# Set by main.py during lifespan
_titiler: Optional[TiTilerClient] = None
_store: Optional[ImageryStore] = None
_drive: Optional[GoogleDriveImporter] = None
_orthophoto: Optional[OrthophotoProcessor] = None

# Orthophoto poll sequences by processing job task id
_orthophoto_polls: Dict[str, PollHandle] = {}

# Background refresh of active processing jobs by farm id
_watchers: Dict[str, ProcessingJobsWatcher] = {}


def set_services(titiler, store, drive=None, orthophoto=None):
    global _titiler, _store, _drive, _orthophoto
    _titiler = titiler
    _store = store
    _drive = drive
    _orthophoto = orthophoto


def cancel_orthophoto_polls() -> None:
    for handle in _orthophoto_polls.values():
        handle.cancel()
    _orthophoto_polls.clear()


def stop_watchers() -> None:
    for watcher in _watchers.values():
        watcher.stop()
    _watchers.clear()


def _require(service, name: str):
    if service is None:
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return service


class GoogleDriveImportRequest(BaseModel):
    folder_id: str


# ---------------------------------------------------------------------------
# Tile server
# ---------------------------------------------------------------------------

@router.get("/imagery/tile-url")
async def tile_url(
    filename: str,
    layer_type: str = "rgb",
    source_url: Optional[str] = None,
    nodata: Optional[float] = None,
):
    """XYZ template for the map. url is null when no tile server is configured."""
    titiler = _require(_titiler, "TiTiler client")
    url = titiler.tile_url(filename, style_for(layer_type, nodata=nodata), source_url=source_url)
    return {"url": url, "enabled": url is not None}


@router.get("/imagery/preview-url")
async def preview_url(
    filename: str,
    layer_type: str = "rgb",
    source_url: Optional[str] = None,
    max_size: int = 800,
):
    titiler = _require(_titiler, "TiTiler client")
    url = titiler.preview_url(
        filename, style_for(layer_type, max_size=max_size), source_url=source_url
    )
    return {"url": url, "enabled": url is not None}


@router.get("/imagery/bounds")
async def bounds(filename: str, source_url: Optional[str] = None) -> Dict[str, List[float]]:
    titiler = _require(_titiler, "TiTiler client")
    try:
        return {"bounds": await titiler.bounds(filename, source_url=source_url)}
    except UPSTREAM_ERRORS as exc:
        raise to_http_exception(exc)


# ---------------------------------------------------------------------------
# Flights and storage
# ---------------------------------------------------------------------------

@router.get("/imagery/farms/{farm_id}/flights")
async def list_flights(farm_id: str):
    store = _require(_store, "Imagery store")
    return {"flights": [f.model_dump() for f in store.list_flights(farm_id)]}


@router.get("/imagery/farms/{farm_id}/flights/{flight_id}/layers/{layer_type}")
async def layer_urls(farm_id: str, flight_id: str, layer_type: str):
    """Tile and preview URLs for one layer of a flight."""
    store = _require(_store, "Imagery store")
    titiler = _require(_titiler, "TiTiler client")
    flight = next((f for f in store.list_flights(farm_id) if f.id == flight_id), None)
    if flight is None:
        raise HTTPException(status_code=404, detail="Flight not found")

    filename = layer_filename(flight, layer_type, farm_id)
    preview_file = preview_source(flight, layer_type) or filename

    def source(name: str) -> Optional[str]:
        if flight.storage_location == "local":
            return None
        return store.get_public_url(farm_id, name)

    tiles = titiler.tile_url(filename, style_for(layer_type), source_url=source(filename))
    preview = titiler.preview_url(preview_file, style_for(layer_type), source_url=source(preview_file))
    return {
        "filename": filename,
        "tile_url": tiles,
        "preview_url": preview,
        "enabled": tiles is not None,
    }


@router.get("/imagery/farms/{farm_id}/processing-jobs")
async def list_processing_jobs(farm_id: str):
    """Active orthophoto jobs. Served from the watcher's last refresh while one runs."""
    store = _require(_store, "Imagery store")
    watcher = _watchers.get(farm_id)
    jobs = watcher.jobs if watcher is not None else store.list_active_processing_jobs(farm_id)
    return {"jobs": [j.model_dump(mode="json") for j in jobs], "watching": watcher is not None}


@router.post("/imagery/farms/{farm_id}/processing-jobs/watch")
async def watch_processing_jobs(farm_id: str):
    """Refresh the farm's active processing jobs in the background."""
    store = _require(_store, "Imagery store")
    watcher = _watchers.get(farm_id)
    if watcher is None:
        watcher = _watchers[farm_id] = ProcessingJobsWatcher(store, farm_id)
        watcher.refresh()
        watcher.start()
    return {"farm_id": farm_id, "watching": True, "interval": watcher.interval}


@router.delete("/imagery/farms/{farm_id}/processing-jobs/watch")
async def unwatch_processing_jobs(farm_id: str):
    watcher = _watchers.pop(farm_id, None)
    if watcher is not None:
        watcher.stop()
    return {"farm_id": farm_id, "watching": False}


@router.post("/imagery/farms/{farm_id}/upload")
async def upload_imagery(
    farm_id: str,
    file: UploadFile = File(...),
    flight_date: str = Form(...),
    layer_type: str = Form(...),
    pilot_name: Optional[str] = Form(None),
    drone_model: Optional[str] = Form(None),
    altitude: Optional[float] = Form(None),
):
    """Store a GeoTIFF for a flight and register its layer."""
    store = _require(_store, "Imagery store")
    result = await store.upload_drone_imagery(
        await file.read(),
        farm_id=farm_id,
        flight_date=flight_date,
        layer_type=layer_type,
        pilot_name=pilot_name,
        drone_model=drone_model,
        altitude=altitude,
    )
    return {
        "success": True,
        "flight": {"id": result.flight_id, "date": result.flight_date},
        "layer": result.layer,
        "storage_path": result.storage_path,
    }


@router.delete("/imagery/farms/{farm_id}/layers/{layer_id}")
async def delete_layer(farm_id: str, layer_id: str, filename: str):
    """Remove a layer's file from storage and its row."""
    store = _require(_store, "Imagery store")
    store.delete_imagery(farm_id, layer_id, filename)
    return {"success": True, "layer_id": layer_id}


@router.post("/imagery/farms/{farm_id}/import/google-drive")
async def import_google_drive(farm_id: str, request: GoogleDriveImportRequest):
    drive = _require(_drive, "Google Drive importer")
    try:
        return await drive.import_folder(request.folder_id, farm_id)
    except UPSTREAM_ERRORS as exc:
        raise to_http_exception(exc)


@router.post("/imagery/farms/{farm_id}/orthophoto")
async def process_orthophoto(
    farm_id: str,
    files: List[UploadFile] = File(...),
    farm_name: str = Form(""),
    flight_date: str = Form(...),
    pilot_name: Optional[str] = Form(None),
    drone_model: Optional[str] = Form(None),
):
    """Start WebODM processing of raw images. Progress shows up in processing-jobs."""
    processor = _require(_orthophoto, "Orthophoto processor")
    images = [(f.filename or f"image_{i}.jpg", await f.read()) for i, f in enumerate(files)]
    try:
        handle = await processor.process(
            farm_id,
            farm_name or farm_id,
            images,
            flight_date=flight_date,
            pilot_name=pilot_name,
            drone_model=drone_model,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except UPSTREAM_ERRORS as exc:
        raise to_http_exception(exc)
    for task_id in [k for k, h in _orthophoto_polls.items() if h.done]:
        del _orthophoto_polls[task_id]
    _orthophoto_polls[handle.job_id] = handle
    return {"task_id": handle.job_id, "status": "processing"}
