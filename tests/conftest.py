"""Shared fixtures: an in-memory Supabase stand-in and a scripted compute server."""

import asyncio
import itertools
from typing import Any, Dict, List, Optional

import pytest

from app.clients.base import RemoteServiceError
from app.jobs.models import JobSnapshot


# ---------------------------------------------------------------------------
# Supabase
# ---------------------------------------------------------------------------

class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Subset of the postgrest query builder used by the app."""

    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._on_conflict: Optional[str] = None
        self._filters: List = []
        self._order: Optional[tuple] = None
        self._limit: Optional[int] = None

    def select(self, *columns):
        self._op = "select"
        return self

    def insert(self, payload):
        self._op, self._payload = "insert", payload
        return self

    def upsert(self, payload, on_conflict=None):
        self._op, self._payload, self._on_conflict = "upsert", payload, on_conflict
        return self

    def update(self, payload):
        self._op, self._payload = "update", payload
        return self

    def delete(self):
        self._op = "delete"
        return self

    def eq(self, column, value):
        self._filters.append((column, lambda v, value=value: v == value))
        return self

    def in_(self, column, values):
        self._filters.append((column, lambda v, values=values: v in values))
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def limit(self, n):
        self._limit = n
        return self

    def _matches(self, row):
        # Filters on joined tables ("other.column") are not modelled
        return all(
            check(row.get(column))
            for column, check in self._filters
            if "." not in column
        )

    def execute(self):
        self._db.calls.append((self._table, self._op, self._payload))
        if self._db.fail is not None:
            raise self._db.fail
        rows = self._db.tables.setdefault(self._table, [])

        if self._op == "insert":
            row = dict(self._payload)
            row.setdefault("id", f"{self._table}-{next(self._db.ids)}")
            rows.append(row)
            return FakeResponse([dict(row)])

        if self._op == "upsert":
            keys = (self._on_conflict or "id").split(",")
            for existing in rows:
                if all(existing.get(k) == self._payload.get(k) for k in keys):
                    existing.update(self._payload)
                    return FakeResponse([dict(existing)])
            row = dict(self._payload)
            row.setdefault("id", f"{self._table}-{next(self._db.ids)}")
            rows.append(row)
            return FakeResponse([dict(row)])

        matched = [r for r in rows if self._matches(r)]

        if self._op == "update":
            for r in matched:
                r.update(self._payload)
            return FakeResponse([dict(r) for r in matched])

        if self._op == "delete":
            self._db.tables[self._table] = [r for r in rows if r not in matched]
            return FakeResponse([dict(r) for r in matched])

        if self._order is not None:
            column, desc = self._order
            matched = sorted(matched, key=lambda r: r.get(column) or "", reverse=desc)
        if self._limit is not None:
            matched = matched[: self._limit]
        return FakeResponse([dict(r) for r in matched])


class FakeBucket:
    def __init__(self, db: "FakeSupabase", name: str):
        self._db = db
        self.name = name

    def upload(self, path, data, file_options=None):
        self._db.storage_objects[(self.name, path)] = data
        return {"path": path}

    def get_public_url(self, path):
        return f"https://storage.example.com/{self.name}/{path}"

    def remove(self, paths):
        for path in paths:
            self._db.storage_objects.pop((self.name, path), None)

    def list(self, prefix="", options=None):
        if self._db.storage_error is not None:
            raise self._db.storage_error
        return []


class FakeStorage:
    def __init__(self, db):
        self._db = db

    def from_(self, bucket):
        return FakeBucket(self._db, bucket)


class FakeRpc:
    def __init__(self, db, name, params):
        self._db, self._name, self._params = db, name, params

    def execute(self):
        self._db.calls.append(("rpc", self._name, self._params))
        result = self._db.rpc_results[self._name]
        if isinstance(result, Exception):
            raise result
        return FakeResponse(result)


class FakeSupabase:
    def __init__(self):
        self.tables: Dict[str, List[dict]] = {}
        self.calls: List[tuple] = []
        self.rpc_results: Dict[str, Any] = {}
        self.storage_objects: Dict[tuple, bytes] = {}
        self.storage = FakeStorage(self)
        self.fail: Optional[Exception] = None
        self.storage_error: Optional[Exception] = None
        self.ids = itertools.count(1)

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params):
        return FakeRpc(self, name, params)

    def ops(self, table, op):
        return [c for c in self.calls if c[0] == table and c[1] == op]


@pytest.fixture
def fake_db():
    return FakeSupabase()


# ---------------------------------------------------------------------------
# Compute server
# ---------------------------------------------------------------------------

class FakeCompute:
    """Compute client stand-in that replays scripted status snapshots."""

    def __init__(self, statuses=None, job_ids=("job-1", "job-2", "job-3")):
        self.statuses: Dict[str, List[Any]] = {}
        self.status_calls: List[str] = []
        self.submissions: List[dict] = []
        self.image_calls: List[tuple] = []
        self.images: Dict[str, bytes] = {"counting": b"\x89PNG-counting"}
        self.submit_error: Optional[Exception] = None
        self._job_ids = iter(job_ids)
        if statuses is not None:
            self.statuses["job-1"] = list(statuses)

    def script(self, job_id: str, *snapshots):
        self.statuses[job_id] = list(snapshots)

    async def _submit(self, **kwargs):
        if self.submit_error is not None:
            raise self.submit_error
        job_id = next(self._job_ids)
        self.submissions.append(dict(kwargs, job_id=job_id))
        return {"job_id": job_id, "status": "pending", "message": "submitted"}

    async def analyze_by_filename(self, filename, model_id=None):
        return await self._submit(filename=filename, model_id=model_id)

    async def upload_and_analyze(self, data, filename, content_type="image/jpeg"):
        return await self._submit(filename=filename, size=len(data))

    async def get_job_status(self, job_id):
        self.status_calls.append(job_id)
        script = self.statuses.get(job_id) or [{"status": "processing", "progress": 10}]
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return JobSnapshot.model_validate(dict(item, job_id=job_id))

    async def get_result_image(self, job_id, output_type):
        self.image_calls.append((job_id, output_type))
        if output_type not in self.images:
            raise RemoteServiceError("compute", 404, "Could not fetch result image")
        return self.images[output_type]


async def wait_until(predicate, timeout: float = 2.0, step: float = 0.005):
    """Yield to the event loop until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(step)
