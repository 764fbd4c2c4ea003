"""Client for the AgriPay compute backend (plant counting and milestone verification)."""

from typing import Any, Dict, Optional

import httpx

from app.clients.base import build_http_client, probe, raise_for_status
from app.config import settings
from app.jobs.models import JobSnapshot

SERVICE = "compute"

# Short type key -> visualization served by GET /download/{job_id}/{type}
OUTPUT_TYPES = ("counting", "size_annotated", "size_colored", "heatmap")


class ComputeClient:
    """Thin async wrapper over the compute server's HTTP API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.compute_api_url).rstrip("/")
        self._client = build_http_client(self.base_url, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Plant counting
    # ------------------------------------------------------------------

    async def analyze_by_filename(
        self, filename: str, model_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Analyze an image the compute server can already read from its imagery dir.

        Returns {job_id, status, message}.
        """
        response = await self._client.post(
            "/api/v1/analyze/plant-count",
            json={"filename": filename, "model_id": model_id or settings.default_model_id},
        )
        raise_for_status(response, SERVICE, "Analysis request failed")
        return response.json()

    async def upload_and_analyze(
        self,
        data: bytes,
        filename: str,
        content_type: str = "image/jpeg",
    ) -> Dict[str, Any]:
        """Upload an image and start a counting job. Returns {job_id, status, progress, message}."""
        response = await self._client.post(
            "/upload",
            files={"file": (filename, data, content_type)},
        )
        raise_for_status(response, SERVICE, "Upload failed. Is the compute server running?")
        return response.json()

    async def get_job_status(self, job_id: str) -> JobSnapshot:
        response = await self._client.get(f"/status/{job_id}")
        raise_for_status(response, SERVICE, "Failed to fetch job status")
        body = response.json()
        body.setdefault("job_id", job_id)
        return JobSnapshot.model_validate(body)

    async def get_result_image(self, job_id: str, output_type: str) -> bytes:
        if output_type not in OUTPUT_TYPES:
            raise ValueError(f"Unknown output type '{output_type}'. Valid: {list(OUTPUT_TYPES)}")
        response = await self._client.get(f"/download/{job_id}/{output_type}")
        raise_for_status(response, SERVICE, "Could not fetch result image")
        return response.content

    # ------------------------------------------------------------------
    # Milestone verification
    # ------------------------------------------------------------------

    async def verify_milestone(self, milestone_id: str) -> Dict[str, Any]:
        """Returns {status, verdict, overall_confidence, recommendation, report}."""
        response = await self._client.post(
            "/api/v1/verify-milestone",
            json={"milestone_id": milestone_id},
        )
        raise_for_status(response, SERVICE, "Verification failed")
        return response.json()

    async def check_health(self) -> bool:
        return await probe(
            self._client, "/health", settings.health_check_timeout_seconds
        )
