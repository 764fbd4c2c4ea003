"""Polling of long-running remote jobs.

A submission returns a job id; the poller then fetches the job's status on a
fixed interval until it completes or fails. Each poll sequence is owned by
the caller through a PollHandle, which must be cancelled on teardown.

Requests are serialized: the next status fetch is scheduled only after the
previous response has been handled, so slow responses never overlap.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx

from app.clients.base import RemoteServiceError
from app.config import settings
from app.jobs.models import JobSnapshot, JobStatus

logger = logging.getLogger(__name__)

LOST_CONNECTION_MESSAGE = "Lost connection to compute server"
FAILED_FALLBACK_MESSAGE = "Analysis failed"

StatusFetcher = Callable[[str], Awaitable[JobSnapshot]]
Callback = Optional[Callable[..., Any]]


class PollOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    LOST_CONNECTION = "lost_connection"
    CANCELLED = "cancelled"


class PollHandle:
    """Caller-owned handle on one poll sequence."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        self.outcome: Optional[PollOutcome] = None
        self.requests_made = 0
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._task is None or self._task.done()

    def cancel(self) -> None:
        """Stop polling. No status fetch and no callback happens after this returns."""
        if self._cancelled:
            return
        self._cancelled = True
        if self.outcome is None:
            self.outcome = PollOutcome.CANCELLED
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> PollOutcome:
        """Wait for the sequence to end and return how it ended."""
        if self._task is not None:
            await asyncio.wait({self._task})
            if not self._task.cancelled() and self._task.exception() is not None:
                raise self._task.exception()
        return self.outcome or PollOutcome.CANCELLED


async def _invoke(callback: Callback, *args) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class JobPoller:
    """Turns a job id into a sequence of status updates ending in success or failure."""

    def __init__(
        self,
        fetch_status: StatusFetcher,
        interval: Optional[float] = None,
        lost_connection_message: str = LOST_CONNECTION_MESSAGE,
    ):
        self._fetch_status = fetch_status
        self.interval = interval if interval is not None else settings.job_poll_interval_seconds
        self.lost_connection_message = lost_connection_message

    def start(
        self,
        job_id: str,
        on_update: Callback = None,
        on_complete: Callback = None,
        on_failure: Callback = None,
    ) -> PollHandle:
        """Begin polling job_id. Must be called from a running event loop."""
        handle = PollHandle(job_id)
        handle._task = asyncio.create_task(
            self._run(handle, on_update, on_complete, on_failure),
            name=f"poll-{job_id}",
        )
        return handle

    async def submit_and_poll(
        self,
        submit: Callable[[], Awaitable[str]],
        on_update: Callback = None,
        on_complete: Callback = None,
        on_failure: Callback = None,
    ) -> PollHandle:
        """Run the submission, then poll the job it created.

        Submission errors propagate to the caller; nothing is polled then.
        """
        job_id = await submit()
        return self.start(job_id, on_update, on_complete, on_failure)

    async def _run(
        self,
        handle: PollHandle,
        on_update: Callback,
        on_complete: Callback,
        on_failure: Callback,
    ) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if handle.cancelled:
                return

            handle.requests_made += 1
            try:
                snapshot = await self._fetch_status(handle.job_id)
            except (httpx.HTTPError, RemoteServiceError, ValueError) as exc:
                if handle.cancelled:
                    return
                logger.warning("Polling job %s failed: %s", handle.job_id, exc)
                handle.outcome = PollOutcome.LOST_CONNECTION
                await self._notify_failure(handle, on_failure, self.lost_connection_message)
                return

            if handle.cancelled:
                return

            try:
                await _invoke(on_update, snapshot)
                if snapshot.status == JobStatus.COMPLETED:
                    handle.outcome = PollOutcome.COMPLETED
                    await _invoke(on_complete, snapshot)
                    return
            except Exception as exc:
                # A failing callback still ends the sequence in a terminal state
                logger.error("Handling status of job %s failed: %s", handle.job_id, exc)
                handle.outcome = PollOutcome.FAILED
                await self._notify_failure(handle, on_failure, str(exc) or FAILED_FALLBACK_MESSAGE)
                return

            if snapshot.status == JobStatus.FAILED:
                handle.outcome = PollOutcome.FAILED
                await self._notify_failure(
                    handle, on_failure, snapshot.error or FAILED_FALLBACK_MESSAGE
                )
                return

    @staticmethod
    async def _notify_failure(handle: PollHandle, on_failure: Callback, message: str) -> None:
        try:
            await _invoke(on_failure, message)
        except Exception as exc:
            logger.error("Failure callback for job %s raised: %s", handle.job_id, exc)
