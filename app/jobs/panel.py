"""Plant-count analysis panel.

Server-side state for one analysis view: shows a cached result when one
exists, otherwise submits a counting job, polls it, saves the result to the
cache and loads the default visualization.

A panel owns at most one poll sequence. Starting a new analysis, selecting
another flight or closing the panel cancels the previous sequence first, and
responses belonging to a superseded operation are dropped.
"""

import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

import httpx
from pydantic import BaseModel, Field

from app.clients.base import RemoteServiceError
from app.clients.compute import OUTPUT_TYPES, ComputeClient
from app.config import settings
from app.jobs.models import JobSnapshot
from app.jobs.poller import JobPoller, PollHandle
from app.storage.results_cache import ResultCache

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_TYPE = "counting"
SUBMIT_FAILED_MESSAGE = "Failed to submit analysis job"


class PanelStatus(str, Enum):
    IDLE = "idle"
    LOADING_CACHE = "loading_cache"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


class PanelState(BaseModel):
    status: PanelStatus = PanelStatus.IDLE
    progress: int = 0
    message: str = ""
    job_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    cached: bool = False
    output_type: Optional[str] = None
    image: Optional[bytes] = Field(default=None, exclude=True)

    @property
    def has_image(self) -> bool:
        return self.image is not None


class AnalysisPanel:

    def __init__(
        self,
        compute: ComputeClient,
        cache: ResultCache,
        poll_interval: Optional[float] = None,
        model_id: Optional[str] = None,
    ):
        self._compute = compute
        self._cache = cache
        self._poller = JobPoller(compute.get_job_status, interval=poll_interval)
        self.model_id = model_id or settings.default_model_id
        self.state = PanelState()
        self._poll: Optional[PollHandle] = None
        self._generation = 0
        self._closed = False

    @property
    def active_poll(self) -> Optional[PollHandle]:
        return self._poll

    @property
    def closed(self) -> bool:
        return self._closed

    def _supersede(self) -> int:
        """Cancel the current poll sequence and start a new operation generation."""
        if self._poll is not None:
            self._poll.cancel()
            self._poll = None
        self._generation += 1
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    def _submission_failed(self, generation: int, message: str) -> None:
        if self._is_current(generation):
            self.state.status = PanelStatus.FAILED
            self.state.message = message

    async def load_cached(self, flight_id: Optional[str]) -> PanelState:
        """Show the latest cached result for a flight, or reset to idle."""
        generation = self._supersede()
        if not flight_id:
            self.state = PanelState()
            return self.state

        self.state = PanelState(status=PanelStatus.LOADING_CACHE)
        cached = self._cache.get_cached_result(flight_id, self.model_id)
        if not self._is_current(generation):
            return self.state

        if cached is None:
            self.state = PanelState()
            return self.state

        data = cached.result_data or {}
        self.state = PanelState(
            status=PanelStatus.COMPLETED,
            progress=100,
            job_id=cached.job_id,
            cached=True,
            result={
                "total_count": data.get("total_count"),
                "average_size": data.get("average_size"),
                "processing_time_seconds": cached.processing_time_seconds,
            },
        )
        return self.state

    async def start_analysis(
        self,
        filename: str,
        flight_id: Optional[str] = None,
        farm_id: Optional[str] = None,
        layer_id: Optional[str] = None,
    ) -> Optional[PollHandle]:
        """Count plants in an image the compute server already holds."""
        return await self._start(
            lambda: self._compute.analyze_by_filename(filename, self.model_id),
            filename=filename,
            flight_id=flight_id,
            farm_id=farm_id,
            layer_id=layer_id,
            submitting_message="Submitting analysis job...",
        )

    async def start_upload(
        self,
        data: bytes,
        filename: str,
        content_type: str = "image/jpeg",
        farm_id: Optional[str] = None,
    ) -> Optional[PollHandle]:
        """Upload an image to the compute server and count plants in it."""
        return await self._start(
            lambda: self._compute.upload_and_analyze(data, filename, content_type),
            filename=filename,
            farm_id=farm_id,
            submitting_message="Uploading image...",
        )

    async def _start(
        self,
        submit: Callable,
        filename: str,
        flight_id: Optional[str] = None,
        farm_id: Optional[str] = None,
        layer_id: Optional[str] = None,
        submitting_message: str = "",
    ) -> Optional[PollHandle]:
        if self._closed:
            raise RuntimeError("Panel is closed")
        generation = self._supersede()
        self.state = PanelState(status=PanelStatus.ANALYZING, message=submitting_message)

        try:
            submitted = await submit()
            job_id = submitted["job_id"]
        except (httpx.HTTPError, RemoteServiceError) as exc:
            self._submission_failed(generation, str(exc) or SUBMIT_FAILED_MESSAGE)
            logger.warning("Submitting analysis for %s failed: %s", filename, exc)
            return None
        except (KeyError, TypeError, ValueError) as exc:
            # 2xx without a usable job id
            self._submission_failed(generation, SUBMIT_FAILED_MESSAGE)
            logger.warning("Compute server returned no job for %s: %r", filename, exc)
            return None

        if not self._is_current(generation):
            return None

        self.state.job_id = job_id
        self.state.message = "Job submitted. Processing..."

        def on_update(snapshot: JobSnapshot) -> None:
            self.state.progress = snapshot.progress
            self.state.message = snapshot.message or "Processing..."

        async def on_complete(snapshot: JobSnapshot) -> None:
            result = snapshot.result or {}
            self.state.result = result
            self.state.status = PanelStatus.COMPLETED
            self._cache.save_result(
                result,
                farm_id=farm_id,
                flight_id=flight_id,
                layer_id=layer_id,
                job_id=job_id,
                filename=filename,
                model_id=self.model_id,
            )
            await self.fetch_visualization(DEFAULT_OUTPUT_TYPE)

        def on_failure(message: str) -> None:
            self.state.status = PanelStatus.FAILED
            self.state.message = message

        self._poll = self._poller.start(
            job_id,
            on_update=on_update,
            on_complete=on_complete,
            on_failure=on_failure,
        )
        return self._poll

    async def fetch_visualization(self, output_type: str) -> Optional[bytes]:
        """Load one of the result images for the current job. Missing images leave it empty."""
        if output_type not in OUTPUT_TYPES:
            raise ValueError(f"Unknown output type '{output_type}'. Valid: {list(OUTPUT_TYPES)}")
        job_id = self.state.job_id
        if not job_id:
            return None

        generation = self._generation
        self.state.output_type = output_type
        self.state.image = None
        try:
            image = await self._compute.get_result_image(job_id, output_type)
        except (httpx.HTTPError, RemoteServiceError) as exc:
            logger.warning("Visualization %s for job %s unavailable: %s", output_type, job_id, exc)
            return None

        if not self._is_current(generation) or self.state.job_id != job_id:
            return None
        self.state.image = image
        return image

    def close(self) -> None:
        """Tear down: stop polling and ignore anything still in flight."""
        self._supersede()
        self._closed = True


class PanelRegistry:
    """One AnalysisPanel per key (typically a farm or flight view).

    Panels live until DELETE, shutdown or evict_idle(). A panel counts as
    idle once it has no running poll and nobody has read it for max_idle
    seconds; the lifespan runs evict_idle periodically so panels of
    vanished browsers do not pile up.
    """

    def __init__(self, factory: Callable[[], AnalysisPanel], clock: Callable[[], float] = time.monotonic):
        self._factory = factory
        self._clock = clock
        self._panels: Dict[str, AnalysisPanel] = {}
        self._last_used: Dict[str, float] = {}

    def get(self, key: str) -> Optional[AnalysisPanel]:
        panel = self._panels.get(key)
        if panel is not None:
            self._last_used[key] = self._clock()
        return panel

    def get_or_create(self, key: str) -> AnalysisPanel:
        panel = self._panels.get(key)
        if panel is None or panel.closed:
            panel = self._factory()
            self._panels[key] = panel
        self._last_used[key] = self._clock()
        return panel

    def close(self, key: str) -> bool:
        panel = self._panels.pop(key, None)
        self._last_used.pop(key, None)
        if panel is None:
            return False
        panel.close()
        return True

    def close_all(self) -> None:
        for key in list(self._panels):
            self.close(key)

    def evict_idle(self, max_idle: Optional[float] = None) -> int:
        """Close panels without a running poll that were not used for max_idle seconds."""
        max_idle = max_idle if max_idle is not None else settings.panel_idle_seconds
        now = self._clock()
        stale = [
            key for key, panel in self._panels.items()
            if (panel.active_poll is None or panel.active_poll.done)
            and now - self._last_used.get(key, now) >= max_idle
        ]
        for key in stale:
            self.close(key)
        if stale:
            logger.info("Evicted %d idle analysis panels", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._panels)
