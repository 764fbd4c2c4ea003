"""Orthophoto generation from raw drone images via WebODM.

Creates the flight and processing_jobs rows, starts a WebODM task and
polls it, mirroring progress into processing_jobs so the dashboard's
processing list can show it.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from app.clients.base import FeatureDisabledError
from app.clients.webodm import WebODMClient
from app.db.supabase_client import get_supabase
from app.jobs.models import JobSnapshot, JobStatus
from app.jobs.poller import JobPoller, PollHandle

logger = logging.getLogger(__name__)

MIN_IMAGES = 3


class OrthophotoProcessor:

    def __init__(
        self,
        webodm: WebODMClient,
        client=None,
        poll_interval: Optional[float] = None,
    ):
        self._webodm = webodm
        self._supabase = client
        self._poll_interval = poll_interval

    def _db(self):
        return self._supabase if self._supabase is not None else get_supabase()

    def _update_job(self, job_row_id: str, **fields) -> None:
        self._db().table("processing_jobs").update(fields).eq("id", job_row_id).execute()

    async def process(
        self,
        farm_id: str,
        farm_name: str,
        images: List[Tuple[str, bytes]],
        flight_date: str,
        pilot_name: Optional[str] = None,
        drone_model: Optional[str] = None,
    ) -> PollHandle:
        """Start processing and return the handle of the WebODM poll sequence."""
        if len(images) < MIN_IMAGES:
            raise ValueError(f"Please select at least {MIN_IMAGES} images for processing")
        if not self._webodm.is_configured():
            raise FeatureDisabledError("WebODM URL is not configured")

        await self._webodm.login()

        flight = (
            self._db().table("drone_flights")
            .insert({
                "farm_id": farm_id,
                "flight_date": flight_date,
                "pilot_name": pilot_name,
                "drone_model": drone_model,
                "status": "processing",
            })
            .execute()
        ).data[0]
        job_row = (
            self._db().table("processing_jobs")
            .insert({
                "flight_id": flight["id"],
                "status": "uploading",
                "images_count": len(images),
            })
            .execute()
        ).data[0]

        project_id = await self._webodm.create_project(f"{farm_name} {flight_date}")
        task_id = await self._webodm.create_task(project_id, images)
        self._update_job(job_row["id"], status="queued", webodm_project_id=project_id, webodm_task_id=task_id)
        started = datetime.now(timezone.utc)

        def on_update(snapshot: JobSnapshot) -> None:
            if snapshot.status not in (JobStatus.COMPLETED, JobStatus.FAILED):
                self._update_job(job_row["id"], status=snapshot.status.value, progress=snapshot.progress)

        def on_complete(snapshot: JobSnapshot) -> None:
            completed = datetime.now(timezone.utc)
            self._update_job(
                job_row["id"],
                status="completed",
                progress=100,
                processing_time=(snapshot.result or {}).get("processing_time")
                or (completed - started).total_seconds(),
                completed_at=completed.isoformat(),
                outputs={
                    "orthophoto": self._webodm.orthophoto_download_url(project_id, task_id),
                    "tiles": self._webodm.orthophoto_tiles_url(project_id, task_id),
                },
            )
            self._db().table("drone_flights").update({"status": "completed"}).eq("id", flight["id"]).execute()
            logger.info("Orthophoto ready for farm %s (task %s)", farm_id, task_id)

        def on_failure(message: str) -> None:
            logger.error("Orthophoto processing for farm %s failed: %s", farm_id, message)
            self._update_job(job_row["id"], status="failed", error=message)
            self._db().table("drone_flights").update({"status": "failed"}).eq("id", flight["id"]).execute()

        poller = JobPoller(
            lambda _task_id: self._webodm.get_task_status(project_id, _task_id),
            interval=self._poll_interval,
            lost_connection_message="Lost connection to WebODM",
        )
        return poller.start(task_id, on_update=on_update, on_complete=on_complete, on_failure=on_failure)
