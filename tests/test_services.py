"""Tests for farm overview batching, farm registration and orthophoto processing."""

import asyncio

import httpx
import pytest

from app.clients.agromonitoring import AgroMonitoringClient
from app.clients.base import FeatureDisabledError, RemoteServiceError
from app.clients.webodm import task_to_snapshot
from app.jobs.poller import PollOutcome
from app.services.farm_overview import (
    FarmRegistrationError,
    FarmRegistry,
    fetch_agro_overview,
    gather_settled,
)
from app.services.orthophoto import OrthophotoProcessor


async def value(v, delay=0.0):
    await asyncio.sleep(delay)
    return v


async def boom(message):
    raise RemoteServiceError("agromonitoring", 500, message)


class TestGatherSettled:

    async def test_failures_are_isolated(self):
        outcome = await gather_settled({
            "forecast": value([1, 2], delay=0.01),
            "soil": boom("Soil data failed (500)"),
            "uvi": value({"uvi": 7}),
        })
        assert outcome.values == {"forecast": [1, 2], "uvi": {"uvi": 7}}
        assert outcome.errors == {"soil": "Soil data failed (500)"}

    async def test_calls_run_concurrently(self):
        loop = asyncio.get_running_loop()
        started = loop.time()
        await gather_settled({f"c{i}": value(i, delay=0.1) for i in range(5)})
        assert loop.time() - started < 0.4

    async def test_agro_overview_with_one_failing_source(self):
        def handler(request):
            if request.url.path == "/soil":
                return httpx.Response(500, json={"message": "soil service down"})
            if request.url.path == "/image/search":
                return httpx.Response(200, json=[{"dt": 1}, {"dt": 2}])
            return httpx.Response(200, json={"path": request.url.path})

        agro = AgroMonitoringClient(
            api_key="k", base_url="http://agro.test", transport=httpx.MockTransport(handler)
        )
        outcome = await fetch_agro_overview(agro, "poly-1")

        assert outcome.errors == {"soil": "soil service down"}
        assert set(outcome.values) == {
            "forecast", "ndvi_history", "latest_image", "current_weather", "uvi",
        }
        assert outcome.values["latest_image"] == {"dt": 2}


class TestFarmRegistry:

    COORDS = [(33.0, 73.0), (33.1, 73.0), (33.1, 73.1)]

    def agro(self):
        return AgroMonitoringClient(
            api_key="k",
            base_url="http://agro.test",
            transport=httpx.MockTransport(lambda r: httpx.Response(201, json={"id": "poly-1"})),
        )

    async def test_create_farm_links_polygon(self, fake_db):
        fake_db.rpc_results["create_farm_with_boundary"] = {"farm_id": "farm-1"}
        fake_db.tables["farms"] = [{"id": "farm-1"}]

        created = await FarmRegistry(self.agro(), client=fake_db).create_farm("user-1", "North", self.COORDS)

        assert created == {"farm_id": "farm-1", "agromonitoring_id": "poly-1"}
        assert fake_db.tables["farms"][0]["agromonitoring_id"] == "poly-1"
        rpc = fake_db.ops("rpc", "create_farm_with_boundary")[0][2]
        assert rpc["p_user_id"] == "user-1"
        assert rpc["p_geojson"]["coordinates"][0][0] == [73.0, 33.0]

    async def test_invalid_polygon_is_explained(self, fake_db):
        fake_db.rpc_results["create_farm_with_boundary"] = Exception("Invalid polygon: self-intersection")
        with pytest.raises(FarmRegistrationError, match="intersect itself"):
            await FarmRegistry(self.agro(), client=fake_db).create_farm("user-1", "North", self.COORDS)

    async def test_other_database_errors_propagate(self, fake_db):
        fake_db.rpc_results["create_farm_with_boundary"] = ConnectionError("db offline")
        with pytest.raises(ConnectionError):
            await FarmRegistry(self.agro(), client=fake_db).create_farm("user-1", "North", self.COORDS)

    async def test_missing_farm_id(self, fake_db):
        fake_db.rpc_results["create_farm_with_boundary"] = None
        with pytest.raises(FarmRegistrationError):
            await FarmRegistry(self.agro(), client=fake_db).create_farm("user-1", "North", self.COORDS)


class FakeWebODM:
    """Scripted WebODM: replays task bodies for get_task_status."""

    def __init__(self, tasks, configured=True):
        self.tasks = list(tasks)
        self.configured = configured
        self.logged_in = False
        self.created = []

    def is_configured(self):
        return self.configured

    async def login(self):
        self.logged_in = True
        return "tok"

    async def create_project(self, name):
        self.created.append(("project", name))
        return 5

    async def create_task(self, project_id, images):
        self.created.append(("task", project_id, len(images)))
        return "task-1"

    async def get_task_status(self, project_id, task_id):
        item = self.tasks.pop(0) if len(self.tasks) > 1 else self.tasks[0]
        if isinstance(item, Exception):
            raise item
        return task_to_snapshot(dict(item, id=task_id))

    def orthophoto_download_url(self, project_id, task_id):
        return f"http://odm/{project_id}/{task_id}/orthophoto.tif"

    def orthophoto_tiles_url(self, project_id, task_id):
        return f"http://odm/{project_id}/{task_id}/tiles"


IMAGES = [(f"img_{i}.jpg", b"jpeg") for i in range(3)]


class TestOrthophoto:

    async def test_successful_run(self, fake_db):
        webodm = FakeWebODM([
            {"status": 20, "running_progress": 0.3},
            {"status": 40, "running_progress": 1.0, "processing_time": 42.0},
        ])
        processor = OrthophotoProcessor(webodm, client=fake_db, poll_interval=0.01)

        handle = await processor.process("farm-1", "North", IMAGES, flight_date="2025-05-01")
        assert await handle.wait() is PollOutcome.COMPLETED

        assert webodm.logged_in
        assert webodm.created == [("project", "North 2025-05-01"), ("task", 5, 3)]
        job = fake_db.tables["processing_jobs"][0]
        assert job["status"] == "completed"
        assert job["progress"] == 100
        assert job["processing_time"] == 42.0
        assert job["webodm_task_id"] == "task-1"
        assert job["outputs"]["orthophoto"] == "http://odm/5/task-1/orthophoto.tif"
        assert fake_db.tables["drone_flights"][0]["status"] == "completed"
        progress_updates = [c[2] for c in fake_db.ops("processing_jobs", "update") if c[2].get("status") == "processing"]
        assert progress_updates == [{"status": "processing", "progress": 30}]

    async def test_failed_task(self, fake_db):
        webodm = FakeWebODM([{"status": 30, "last_error": "Not enough overlap"}])
        processor = OrthophotoProcessor(webodm, client=fake_db, poll_interval=0.01)

        handle = await processor.process("farm-1", "North", IMAGES, flight_date="2025-05-01")
        assert await handle.wait() is PollOutcome.FAILED

        job = fake_db.tables["processing_jobs"][0]
        assert job["status"] == "failed"
        assert job["error"] == "Not enough overlap"
        assert fake_db.tables["drone_flights"][0]["status"] == "failed"

    async def test_lost_connection(self, fake_db):
        webodm = FakeWebODM([httpx.ConnectError("refused")])
        processor = OrthophotoProcessor(webodm, client=fake_db, poll_interval=0.01)

        handle = await processor.process("farm-1", "North", IMAGES, flight_date="2025-05-01")
        assert await handle.wait() is PollOutcome.LOST_CONNECTION
        assert fake_db.tables["processing_jobs"][0]["error"] == "Lost connection to WebODM"

    async def test_database_outage_still_ends_sequence(self, fake_db):
        webodm = FakeWebODM([{"status": 20, "running_progress": 0.5}])
        processor = OrthophotoProcessor(webodm, client=fake_db, poll_interval=0.01)

        handle = await processor.process("farm-1", "North", IMAGES, flight_date="2025-05-01")
        fake_db.fail = ConnectionError("supabase offline")

        assert await handle.wait() is PollOutcome.FAILED
        assert handle.done

    async def test_too_few_images(self, fake_db):
        processor = OrthophotoProcessor(FakeWebODM([]), client=fake_db)
        with pytest.raises(ValueError):
            await processor.process("farm-1", "North", IMAGES[:2], flight_date="2025-05-01")
        assert fake_db.calls == []

    async def test_unconfigured(self, fake_db):
        processor = OrthophotoProcessor(FakeWebODM([], configured=False), client=fake_db)
        with pytest.raises(FeatureDisabledError):
            await processor.process("farm-1", "North", IMAGES, flight_date="2025-05-01")
