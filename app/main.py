"""AgriPay Dashboard Service - FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.logging_config import configure_logging
from app.api.v1.router import v1_router
from app.api.v1.health import router as health_root_router
from app.api.v1 import farms as farms_api
from app.api.v1 import geocode as geocode_api
from app.api.v1 import health as health_api
from app.api.v1 import imagery as imagery_api
from app.api.v1 import panels as panels_api
from app.api.v1 import verification as verification_api
from app.clients.agromonitoring import AgroMonitoringClient
from app.clients.cloud_import import GoogleDriveImporter
from app.clients.compute import ComputeClient
from app.clients.geocoding import GeocodingClient
from app.clients.titiler import TiTilerClient
from app.clients.webodm import WebODMClient
from app.jobs.panel import AnalysisPanel, PanelRegistry
from app.jobs.periodic import PeriodicTask, ServiceMonitor
from app.services.farm_overview import FarmRegistry
from app.services.orthophoto import OrthophotoProcessor
from app.storage.imagery import ImageryStore
from app.storage.results_cache import ResultCache

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    configure_logging(settings.log_level)

    logger.info("Starting AgriPay Dashboard Service on port %s", settings.port)
    logger.info("Compute API: %s", settings.compute_api_url)
    logger.info("TiTiler: %s", settings.titiler_url or "(disabled)")
    logger.info("WebODM: %s", settings.webodm_url or "(disabled)")

    compute = ComputeClient()
    titiler = TiTilerClient()
    webodm = WebODMClient()
    geocoder = GeocodingClient()
    agro = AgroMonitoringClient()
    cache = ResultCache()
    store = ImageryStore(titiler=titiler)
    drive = GoogleDriveImporter(store)
    if settings.supabase_url:
        store.ensure_bucket()

    panels = PanelRegistry(lambda: AnalysisPanel(compute, cache))
    monitor = ServiceMonitor(titiler, webodm)
    monitor.start()
    eviction = PeriodicTask(
        "panel-eviction", panels.evict_idle, settings.panel_eviction_interval_seconds
    ).start()
    logger.info("Health monitors started")

    # Wire services into API endpoints
    panels_api.set_registry(panels)
    health_api.set_services(monitor, compute)
    imagery_api.set_services(titiler, store, drive, OrthophotoProcessor(webodm))
    geocode_api.set_geocoder(geocoder)
    verification_api.set_compute(compute)
    farms_api.set_services(agro, FarmRegistry(agro))

    yield

    # Shutdown
    logger.info("Shutting down AgriPay Dashboard Service")
    monitor.stop()
    eviction.cancel()
    panels.close_all()
    imagery_api.cancel_orthophoto_polls()
    imagery_api.stop_watchers()
    for client in (compute, titiler, webodm, geocoder, agro, drive):
        await client.aclose()


app = FastAPI(
    title="AgriPay Dashboard Service",
    description="Farm dashboard backend: drone imagery, plant counting and milestone verification",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: frontend dev servers and any configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000", "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(v1_router)  # All /api/v1/* endpoints
