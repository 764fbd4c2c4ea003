"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_anon_key: str = ""
    imagery_bucket: str = "drone-imagery"

    # External services (empty URL disables the feature)
    titiler_url: str = ""
    compute_api_url: str = "http://localhost:8001"
    webodm_url: str = ""
    geocoding_url: str = "https://photon.komoot.io"
    agromonitoring_url: str = "http://api.agromonitoring.com/agro/1.0"

    # Credentials
    agromonitoring_api_key: Optional[str] = None
    google_drive_api_key: Optional[str] = None
    webodm_username: str = "admin"
    webodm_password: str = "admin"

    # Timing (seconds)
    request_timeout_seconds: float = 30.0
    health_check_timeout_seconds: float = 3.0
    job_poll_interval_seconds: float = 2.0
    health_check_interval_seconds: float = 30.0
    processing_jobs_refresh_seconds: float = 10.0
    panel_idle_seconds: float = 1800.0
    panel_eviction_interval_seconds: float = 300.0

    # Imagery and models
    imagery_dir: str = "/data"
    default_model_id: str = "wheat_plant_counter_v1"

    # Service
    port: int = 8002
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
