"""ML result cache backed by the generic ml_results table.

Lookups and saves are best-effort: failures are logged and never reach the
caller. A lookup failure reads as "nothing cached".
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.config import settings
from app.db.supabase_client import get_supabase
from app.jobs.models import CachedResult

logger = logging.getLogger(__name__)

TABLE = "ml_results"


class ResultCache:

    def __init__(self, client=None):
        self._supabase = client

    def _db(self):
        return self._supabase if self._supabase is not None else get_supabase()

    def get_cached_result(
        self, flight_id: str, model_id: Optional[str] = None
    ) -> Optional[CachedResult]:
        """Most recent result for (flight, model), or None."""
        model_id = model_id or settings.default_model_id
        try:
            response = (
                self._db().table(TABLE)
                .select("*")
                .eq("flight_id", flight_id)
                .eq("model_id", model_id)
                .order("analyzed_at", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            logger.warning("Cache lookup failed for flight %s: %s", flight_id, exc)
            return None

        if not response.data:
            return None
        try:
            return CachedResult.model_validate(response.data[0])
        except ValidationError as exc:
            logger.warning("Ignoring malformed cached result for flight %s: %s", flight_id, exc)
            return None

    def save_result(
        self,
        result: Dict[str, Any],
        farm_id: Optional[str] = None,
        flight_id: Optional[str] = None,
        layer_id: Optional[str] = None,
        job_id: Optional[str] = None,
        filename: Optional[str] = None,
        model_id: Optional[str] = None,
    ) -> bool:
        """Insert a new result row. Rows are never updated; newer rows supersede older ones."""
        row = {
            "farm_id": farm_id,
            "flight_id": flight_id or None,
            "layer_id": layer_id or None,
            "job_id": job_id or None,
            "model_id": model_id or settings.default_model_id,
            "image_filename": filename,
            "result_data": result,
            "processing_time_seconds": result.get("processing_time_seconds"),
            "analyzed_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self._db().table(TABLE).insert(row).execute()
        except Exception as exc:
            logger.warning("Could not save ML results for job %s: %s", job_id, exc)
            return False
        return True
