"""Health of this service and of the external services it depends on."""

import asyncio
from typing import Optional

from fastapi import APIRouter, HTTPException

from app.clients.compute import ComputeClient
from app.jobs.periodic import ServiceMonitor

router = APIRouter()

# Set by main.py during lifespan
_monitor: Optional[ServiceMonitor] = None
_compute: Optional[ComputeClient] = None


def set_services(monitor: ServiceMonitor, compute: ComputeClient):
    global _monitor, _compute
    _monitor = monitor
    _compute = compute


@router.get("/health")
async def health_check():
    """Liveness plus the last result of the periodic upstream checks."""
    return {
        "status": "healthy",
        "services": _monitor.snapshot() if _monitor else {},
    }


@router.get("/health/services")
async def check_services():
    """Check every upstream now, concurrently, each with its own bounded timeout."""
    if _monitor is None or _compute is None:
        raise HTTPException(status_code=503, detail="Service monitor not initialized")
    compute_ok, titiler_ok, webodm_ok = await asyncio.gather(
        _compute.check_health(),
        _monitor.check_titiler(),
        _monitor.check_webodm(),
    )
    return {"compute": compute_ok, "titiler": titiler_ok, "webodm": webodm_ok}
