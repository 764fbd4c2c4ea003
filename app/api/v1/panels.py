"""Plant-count analysis panels: cache lookup, submit, poll state, visualizations."""

from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel

from app.clients.compute import OUTPUT_TYPES
from app.jobs.panel import AnalysisPanel, PanelRegistry

router = APIRouter()

# Set by main.py during lifespan
_registry: Optional[PanelRegistry] = None


def set_registry(registry: PanelRegistry):
    global _registry
    _registry = registry


def _panels() -> PanelRegistry:
    if _registry is None:
        raise HTTPException(status_code=503, detail="Panel registry not initialized")
    return _registry


def _existing(panel_id: str) -> AnalysisPanel:
    panel = _panels().get(panel_id)
    if panel is None:
        raise HTTPException(status_code=404, detail="Panel not found")
    return panel


def _state(panel: AnalysisPanel) -> dict:
    body = panel.state.model_dump(mode="json")
    body["has_image"] = panel.state.has_image
    return body


class CacheLookupRequest(BaseModel):
    flight_id: Optional[str] = None


class AnalyzeRequest(BaseModel):
    filename: str
    flight_id: Optional[str] = None
    farm_id: Optional[str] = None
    layer_id: Optional[str] = None


@router.post("/panels/{panel_id}/cache")
async def load_cached(panel_id: str, request: CacheLookupRequest):
    """Show the latest cached counting result for a flight, if any."""
    panel = _panels().get_or_create(panel_id)
    await panel.load_cached(request.flight_id)
    return _state(panel)


@router.post("/panels/{panel_id}/analyze")
async def analyze(panel_id: str, request: AnalyzeRequest):
    """Start counting plants in an image the compute server already holds.

    Any analysis still running on this panel is cancelled first.
    Poll GET /api/v1/panels/{panel_id} for progress.
    """
    panel = _panels().get_or_create(panel_id)
    await panel.start_analysis(
        request.filename,
        flight_id=request.flight_id,
        farm_id=request.farm_id,
        layer_id=request.layer_id,
    )
    return _state(panel)


@router.post("/panels/{panel_id}/upload")
async def upload(
    panel_id: str,
    file: UploadFile = File(...),
    farm_id: Optional[str] = Form(None),
):
    """Upload an image to the compute server and count plants in it."""
    if not file.content_type or not file.content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="File must be an image")
    panel = _panels().get_or_create(panel_id)
    data = await file.read()
    await panel.start_upload(
        data,
        file.filename or "upload",
        content_type=file.content_type,
        farm_id=farm_id,
    )
    return _state(panel)


@router.get("/panels/{panel_id}")
async def get_panel(panel_id: str):
    return _state(_existing(panel_id))


@router.get("/panels/{panel_id}/visualization/{output_type}")
async def get_visualization(panel_id: str, output_type: str):
    """Result image for the panel's job: counting | size_annotated | size_colored | heatmap."""
    if output_type not in OUTPUT_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown output type '{output_type}'. Valid: {list(OUTPUT_TYPES)}",
        )
    panel = _existing(panel_id)
    image = await panel.fetch_visualization(output_type)
    if image is None:
        raise HTTPException(status_code=404, detail="Visualization not available")
    return Response(content=image, media_type="image/png")


@router.delete("/panels/{panel_id}")
async def close_panel(panel_id: str):
    if not _panels().close(panel_id):
        raise HTTPException(status_code=404, detail="Panel not found")
    return {"panel_id": panel_id, "closed": True}
