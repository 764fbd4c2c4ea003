"""Records exchanged with the compute server, the orthophoto processor and the database."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class JobStatus(str, Enum):
    QUEUED = "queued"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: Any) -> "JobStatus":
        """Map a remote status (string or WebODM numeric code) to a JobStatus."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return _WEBODM_CODES.get(value, cls.QUEUED)
        text = str(value or "").lower()
        if text in _ALIASES:
            return _ALIASES[text]
        return cls(text)


_ALIASES = {
    "pending": JobStatus.QUEUED,
    "running": JobStatus.PROCESSING,
    "canceled": JobStatus.FAILED,
    "cancelled": JobStatus.FAILED,
}

# WebODM task status codes
_WEBODM_CODES = {
    10: JobStatus.QUEUED,
    20: JobStatus.PROCESSING,
    30: JobStatus.FAILED,
    40: JobStatus.COMPLETED,
    50: JobStatus.FAILED,
}

TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class JobSnapshot(BaseModel):
    """One observation of a remote job, as returned by a status poll."""
    job_id: str
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    message: str = ""
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value):
        return JobStatus.parse(value)

    @field_validator("progress", mode="before")
    @classmethod
    def _round_progress(cls, value):
        # Shown as received; the remote side does not promise monotonic values
        if value is None:
            return 0
        return int(round(float(value)))

    @field_validator("message", mode="before")
    @classmethod
    def _message_or_empty(cls, value):
        return value or ""

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class CachedResult(BaseModel):
    """A row of the ml_results table."""
    id: Optional[str] = None
    farm_id: Optional[str] = None
    flight_id: Optional[str] = None
    layer_id: Optional[str] = None
    job_id: Optional[str] = None
    model_id: str
    image_filename: Optional[str] = None
    result_data: Dict[str, Any] = Field(default_factory=dict)
    processing_time_seconds: Optional[float] = None
    analyzed_at: datetime


class LayerRecord(BaseModel):
    """A row of drone_imagery_layers."""
    id: Optional[str] = None
    flight_id: Optional[str] = None
    layer_type: str
    filename: Optional[str] = None
    file_size_bytes: Optional[int] = None
    crs: Optional[Any] = None
    bounds: Optional[List[float]] = None
    statistics: Optional[Dict[str, Any]] = None
    is_band: bool = False
    band_number: Optional[int] = None


class FlightRecord(BaseModel):
    """A drone flight and its imagery layers, shaped for the dashboard."""
    id: str
    date: str  # YYYYMMDD
    display_date: str
    pilot_name: Optional[str] = None
    drone_model: Optional[str] = None
    altitude: Optional[float] = None
    storage_location: str = "local"
    layers: List[str] = Field(default_factory=list)
    layers_data: List[LayerRecord] = Field(default_factory=list)
    bands: List[LayerRecord] = Field(default_factory=list)

    def layer(self, layer_type: str) -> Optional[LayerRecord]:
        for layer in self.layers_data:
            if layer.layer_type == layer_type:
                return layer
        return None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "FlightRecord":
        layers = [LayerRecord(**l) for l in row.get("drone_imagery_layers") or []]
        bands = sorted(
            (l for l in layers if l.is_band),
            key=lambda l: l.band_number or 0,
        )
        return cls(
            id=row["id"],
            date=row["flight_date"].replace("-", ""),
            display_date=row["flight_date"],
            pilot_name=row.get("pilot_name"),
            drone_model=row.get("drone_model"),
            altitude=row.get("altitude_meters"),
            storage_location=row.get("storage_location") or "local",
            layers=[l.layer_type for l in layers],
            layers_data=layers,
            bands=bands,
        )


class ProcessingJobRecord(BaseModel):
    """A row of processing_jobs (orthophoto generation)."""
    id: str
    flight_id: Optional[str] = None
    status: str = "pending"
    progress: float = 0
    images_count: Optional[int] = None
    outputs: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
