"""Periodic background checks: service health and active orthophoto jobs."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

from app.clients.titiler import TiTilerClient
from app.clients.webodm import WebODMClient
from app.config import settings
from app.jobs.models import ProcessingJobRecord
from app.storage.imagery import ImageryStore

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs fn immediately and then every interval seconds until cancelled.

    A failing tick is logged and does not stop later ticks. With repeat=False
    the function runs once.
    """

    def __init__(
        self,
        name: str,
        fn: Callable[[], Any],
        interval: float,
        repeat: bool = True,
    ):
        self.name = name
        self.interval = interval
        self.repeat = repeat
        self.ticks = 0
        self._fn = fn
        self._task: Optional[asyncio.Task] = None

    def start(self) -> "PeriodicTask":
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=self.name)
        return self

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        if self._task is not None:
            await asyncio.wait({self._task})

    async def _run(self) -> None:
        while True:
            self.ticks += 1
            try:
                result = self._fn()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Periodic task %s failed: %s", self.name, exc)
            if not self.repeat:
                return
            await asyncio.sleep(self.interval)


class ServiceMonitor:
    """Tracks whether TiTiler and WebODM are reachable.

    TiTiler is only re-checked periodically in local mode; a hosted tile
    server is checked once.
    """

    def __init__(
        self,
        titiler: TiTilerClient,
        webodm: WebODMClient,
        interval: Optional[float] = None,
    ):
        self._titiler = titiler
        self._webodm = webodm
        self.interval = interval if interval is not None else settings.health_check_interval_seconds
        self.titiler_online = False
        self.webodm_online = False
        self._tasks: List[PeriodicTask] = []

    async def check_titiler(self) -> bool:
        self.titiler_online = await self._titiler.check_health()
        return self.titiler_online

    async def check_webodm(self) -> bool:
        self.webodm_online = await self._webodm.check_health()
        return self.webodm_online

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            PeriodicTask(
                "titiler-health",
                self.check_titiler,
                self.interval,
                repeat=self._titiler.is_local_mode(),
            ).start(),
            PeriodicTask("webodm-health", self.check_webodm, self.interval).start(),
        ]

    def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        self._tasks = []

    def snapshot(self) -> Dict[str, Any]:
        return {
            "titiler": {
                "configured": self._titiler.is_configured(),
                "local_mode": self._titiler.is_local_mode(),
                "online": self.titiler_online,
            },
            "webodm": {
                "configured": self._webodm.is_configured(),
                "online": self.webodm_online,
            },
        }


class ProcessingJobsWatcher:
    """Keeps the list of a farm's in-progress orthophoto jobs fresh."""

    def __init__(
        self,
        store: ImageryStore,
        farm_id: str,
        interval: Optional[float] = None,
    ):
        self._store = store
        self.farm_id = farm_id
        self.interval = interval if interval is not None else settings.processing_jobs_refresh_seconds
        self.jobs: List[ProcessingJobRecord] = []
        self._task: Optional[PeriodicTask] = None

    def refresh(self) -> List[ProcessingJobRecord]:
        self.jobs = self._store.list_active_processing_jobs(self.farm_id)
        return self.jobs

    def start(self) -> None:
        if self._task is None:
            self._task = PeriodicTask(
                f"processing-jobs-{self.farm_id}", self.refresh, self.interval
            ).start()

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
