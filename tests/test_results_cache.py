"""Tests for the ML result cache."""

import logging

from app.config import settings
from app.storage.results_cache import ResultCache


def _row(flight_id, analyzed_at, total, model_id="wheat_plant_counter_v1"):
    return {
        "id": f"r-{total}",
        "flight_id": flight_id,
        "model_id": model_id,
        "job_id": f"job-{total}",
        "result_data": {"total_count": total},
        "processing_time_seconds": 4.2,
        "analyzed_at": analyzed_at,
    }


class TestLookup:

    def test_no_rows_returns_none(self, fake_db):
        assert ResultCache(fake_db).get_cached_result("flight-1") is None

    def test_latest_row_wins(self, fake_db):
        fake_db.tables["ml_results"] = [
            _row("flight-1", "2025-05-01T08:00:00+00:00", 100),
            _row("flight-1", "2025-05-03T08:00:00+00:00", 300),
            _row("flight-1", "2025-05-02T08:00:00+00:00", 200),
        ]
        cached = ResultCache(fake_db).get_cached_result("flight-1")
        assert cached.result_data["total_count"] == 300
        assert cached.job_id == "job-300"

    def test_filters_by_flight_and_model(self, fake_db):
        fake_db.tables["ml_results"] = [
            _row("flight-2", "2025-05-09T08:00:00+00:00", 900),
            _row("flight-1", "2025-05-08T08:00:00+00:00", 800, model_id="other_model"),
            _row("flight-1", "2025-05-01T08:00:00+00:00", 100),
        ]
        cache = ResultCache(fake_db)
        assert cache.get_cached_result("flight-1").result_data["total_count"] == 100
        assert cache.get_cached_result("flight-1", "other_model").result_data["total_count"] == 800

    def test_transport_failure_reads_as_no_cache(self, fake_db, caplog):
        fake_db.fail = ConnectionError("database unreachable")
        with caplog.at_level(logging.WARNING):
            assert ResultCache(fake_db).get_cached_result("flight-1") is None
        assert "Cache lookup failed" in caplog.text

    def test_malformed_row_reads_as_no_cache(self, fake_db, caplog):
        fake_db.tables["ml_results"] = [_row("flight-1", None, 100)]
        with caplog.at_level(logging.WARNING):
            assert ResultCache(fake_db).get_cached_result("flight-1") is None
        assert "malformed cached result" in caplog.text


class TestSave:

    def test_save_inserts_new_row(self, fake_db):
        cache = ResultCache(fake_db)
        ok = cache.save_result(
            {"total_count": 532, "average_size": 12.4, "processing_time_seconds": 9.5},
            farm_id="farm-1",
            flight_id="flight-1",
            job_id="job-1",
            filename="farm-1_20250501_rgb.tif",
        )
        assert ok is True
        row = fake_db.tables["ml_results"][0]
        assert row["model_id"] == settings.default_model_id
        assert row["result_data"]["total_count"] == 532
        assert row["processing_time_seconds"] == 9.5
        assert row["layer_id"] is None
        assert row["analyzed_at"]

    def test_newer_save_supersedes_without_update(self, fake_db):
        cache = ResultCache(fake_db)
        cache.save_result({"total_count": 1}, flight_id="flight-1", job_id="a")
        cache.save_result({"total_count": 2}, flight_id="flight-1", job_id="b")
        fake_db.tables["ml_results"][0]["analyzed_at"] = "2000-01-01T00:00:00+00:00"

        assert len(fake_db.tables["ml_results"]) == 2
        assert fake_db.ops("ml_results", "update") == []
        assert cache.get_cached_result("flight-1").job_id == "b"

    def test_save_failure_is_logged_not_raised(self, fake_db, caplog):
        fake_db.fail = RuntimeError("insert rejected")
        with caplog.at_level(logging.WARNING):
            assert ResultCache(fake_db).save_result({"total_count": 1}, job_id="x") is False
        assert "Could not save ML results" in caplog.text
