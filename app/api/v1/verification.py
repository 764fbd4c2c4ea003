"""Milestone verification, proxied to the compute backend."""

from typing import Optional

from fastapi import APIRouter, HTTPException

from app.api.v1.errors import UPSTREAM_ERRORS, to_http_exception
from app.clients.compute import ComputeClient

router = APIRouter()

# Set by main.py during lifespan
_compute: Optional[ComputeClient] = None


def set_compute(compute: ComputeClient):
    global _compute
    _compute = compute


@router.post("/milestones/{milestone_id}/verify")
async def verify_milestone(milestone_id: str):
    """Trigger multi-source ML verification for a milestone.

    Returns {status, verdict, overall_confidence, recommendation, report}
    as produced by the compute backend.
    """
    if _compute is None:
        raise HTTPException(status_code=503, detail="Compute client not initialized")
    try:
        return await _compute.verify_milestone(milestone_id)
    except UPSTREAM_ERRORS as exc:
        raise to_http_exception(exc)
