"""WebODM client for orthophoto generation from raw drone images."""

import json
from typing import Any, Dict, Iterable, Optional, Tuple

import httpx

from app.clients.base import (
    FeatureDisabledError,
    build_http_client,
    probe,
    raise_for_status,
)
from app.config import settings
from app.jobs.models import JobSnapshot

SERVICE = "webodm"

# Processing options for fast orthophoto-only runs
DEFAULT_TASK_OPTIONS = [
    {"name": "fast-orthophoto", "value": True},
    {"name": "orthophoto-resolution", "value": 5},
]


class WebODMClient:

    def __init__(
        self,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.webodm_url).rstrip("/")
        self._client = build_http_client(self.base_url, transport=transport)
        self._token: Optional[str] = None

    async def aclose(self) -> None:
        await self._client.aclose()

    def is_configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> Dict[str, str]:
        if not self._token:
            raise RuntimeError("Not logged in to WebODM")
        return {"Authorization": f"JWT {self._token}"}

    async def check_health(self) -> bool:
        if not self.is_configured():
            return False
        return await probe(self._client, "/api/", settings.health_check_timeout_seconds)

    async def login(
        self, username: Optional[str] = None, password: Optional[str] = None
    ) -> str:
        if not self.is_configured():
            raise FeatureDisabledError("WebODM URL is not configured")
        response = await self._client.post(
            "/api/token-auth/",
            data={
                "username": username or settings.webodm_username,
                "password": password or settings.webodm_password,
            },
        )
        raise_for_status(response, SERVICE, "WebODM login failed")
        self._token = response.json()["token"]
        return self._token

    async def create_project(self, name: str) -> int:
        response = await self._client.post(
            "/api/projects/", json={"name": name}, headers=self._headers()
        )
        raise_for_status(response, SERVICE, "Could not create WebODM project")
        return response.json()["id"]

    async def create_task(
        self,
        project_id: int,
        images: Iterable[Tuple[str, bytes]],
        options: Optional[list] = None,
    ) -> str:
        """Upload images and start processing. Returns the task id."""
        files = [("images", (name, data, "image/jpeg")) for name, data in images]
        response = await self._client.post(
            f"/api/projects/{project_id}/tasks/",
            files=files,
            data={"options": json.dumps(options or DEFAULT_TASK_OPTIONS)},
            headers=self._headers(),
        )
        raise_for_status(response, SERVICE, "Could not create WebODM task")
        return str(response.json()["id"])

    async def get_task_status(self, project_id: int, task_id: str) -> JobSnapshot:
        response = await self._client.get(
            f"/api/projects/{project_id}/tasks/{task_id}/", headers=self._headers()
        )
        raise_for_status(response, SERVICE, "Failed to fetch task status")
        return task_to_snapshot(response.json())

    def orthophoto_tiles_url(self, project_id: int, task_id: str) -> str:
        return f"{self.base_url}/api/projects/{project_id}/tasks/{task_id}/orthophoto/tiles/{{z}}/{{x}}/{{y}}.png"

    def orthophoto_download_url(self, project_id: int, task_id: str) -> str:
        return f"{self.base_url}/api/projects/{project_id}/tasks/{task_id}/download/orthophoto.tif"


def task_to_snapshot(task: Dict[str, Any]) -> JobSnapshot:
    """Convert a WebODM task body into a JobSnapshot."""
    running_progress = task.get("running_progress") or 0
    return JobSnapshot(
        job_id=str(task["id"]),
        status=task.get("status") or 10,
        progress=running_progress * 100,
        message=task.get("last_error") or _status_text(task.get("status")),
        result={
            "processing_time": task.get("processing_time"),
            "available_assets": task.get("available_assets", []),
        },
        error=task.get("last_error"),
    )


def _status_text(code: Optional[int]) -> str:
    return {
        10: "Queued on WebODM",
        20: "Generating orthophoto…",
        30: "Processing failed",
        40: "Orthophoto ready",
        50: "Task canceled",
    }.get(code, "Waiting for WebODM")