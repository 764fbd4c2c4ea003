"""Tests for periodic health checks and processing-job refresh."""

import asyncio

import httpx

from app.clients.titiler import TiTilerClient
from app.clients.webodm import WebODMClient
from app.jobs.periodic import PeriodicTask, ProcessingJobsWatcher, ServiceMonitor
from app.storage.imagery import ImageryStore
from tests.conftest import wait_until


class TestPeriodicTask:

    async def test_runs_immediately_and_repeats(self):
        calls = []
        task = PeriodicTask("tick", lambda: calls.append(1), interval=0.01).start()
        await wait_until(lambda: len(calls) >= 3)
        task.cancel()
        await task.wait()
        assert not task.running

    async def test_failing_tick_does_not_stop_task(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first tick fails")

        task = PeriodicTask("flaky", flaky, interval=0.01).start()
        await wait_until(lambda: len(calls) >= 2)
        task.cancel()

    async def test_run_once(self):
        calls = []
        task = PeriodicTask("once", lambda: calls.append(1), interval=0.01, repeat=False).start()
        await task.wait()
        await asyncio.sleep(0.03)
        assert calls == [1]
        assert task.ticks == 1

    async def test_cancel_stops_ticks(self):
        calls = []
        task = PeriodicTask("tick", lambda: calls.append(1), interval=0.01).start()
        await wait_until(lambda: len(calls) >= 1)
        task.cancel()
        await task.wait()
        count = len(calls)
        await asyncio.sleep(0.05)
        assert len(calls) == count


def health_transport(state):
    def handler(request):
        state["calls"].append(request.url.host)
        if request.url.host in state["down"]:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200)
    return httpx.MockTransport(handler)


class TestServiceMonitor:

    async def test_checks_are_independent(self):
        state = {"calls": [], "down": {"odm"}}
        transport = health_transport(state)
        monitor = ServiceMonitor(
            TiTilerClient(base_url="http://localhost:8000", transport=transport),
            WebODMClient(base_url="http://odm", transport=transport),
            interval=0.01,
        )
        monitor.start()
        await wait_until(lambda: state["calls"].count("localhost") >= 2)
        monitor.stop()

        snapshot = monitor.snapshot()
        assert snapshot["titiler"] == {"configured": True, "local_mode": True, "online": True}
        assert snapshot["webodm"] == {"configured": True, "online": False}

    async def test_hosted_tile_server_checked_once(self):
        state = {"calls": [], "down": set()}
        transport = health_transport(state)
        monitor = ServiceMonitor(
            TiTilerClient(base_url="https://tiles.example.com", transport=transport),
            WebODMClient(base_url="http://odm", transport=transport),
            interval=0.01,
        )
        monitor.start()
        await wait_until(lambda: state["calls"].count("odm") >= 3)
        monitor.stop()

        assert state["calls"].count("tiles.example.com") == 1
        assert monitor.titiler_online

    async def test_recovery_is_picked_up(self):
        state = {"calls": [], "down": {"odm"}}
        transport = health_transport(state)
        monitor = ServiceMonitor(
            TiTilerClient(base_url="", transport=transport),
            WebODMClient(base_url="http://odm", transport=transport),
            interval=0.01,
        )
        monitor.start()
        await wait_until(lambda: state["calls"].count("odm") >= 1)
        assert not monitor.webodm_online
        state["down"].clear()
        await wait_until(lambda: monitor.webodm_online)
        monitor.stop()


class TestProcessingJobsWatcher:

    async def test_refreshes_jobs(self, fake_db):
        fake_db.tables["processing_jobs"] = [{"id": "j1", "status": "processing", "progress": 10}]
        watcher = ProcessingJobsWatcher(ImageryStore(client=fake_db), "farm-1", interval=0.01)
        watcher.start()
        await wait_until(lambda: len(watcher.jobs) == 1)

        fake_db.tables["processing_jobs"][0]["status"] = "completed"
        await wait_until(lambda: watcher.jobs == [])
        watcher.stop()
