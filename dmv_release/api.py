"""
HTTP interface for release automation

POST /dmv-automation starts a batch. With ``realTime`` the response is an
event stream that stays open until every vehicle reaches a terminal state;
without it the batch runs to completion and a summary is returned.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional, Union

from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import JobStoreError, NoEligibleVehiclesError
from .services.automation.automation_service import DriverBuilder, DriverFactory, ReleaseOrchestrator
from .services.automation.confirmation import ConfirmationMatcher
from .services.automation.form_helpers import FORM_VERSION
from .services.job_store import JobRecordStore, unique_ids
from .services.persistence_service import create_store
from .services.stream_encoder import EVENT_STREAM_MEDIA_TYPE, STREAM_HEADERS, encode_stream
from .settings import ReleaseSettings, get_settings

logger = logging.getLogger(__name__)


# ── Request Models ──────────────────────────────────────────────────

class ReleaseRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    vehicle_ids: Optional[list[Union[str, int]]] = Field(default=None, alias="vehicleIds")
    real_time: bool = Field(default=False, alias="realTime")

    def ids(self) -> list[str]:
        return unique_ids(str(vehicle_id) for vehicle_id in self.vehicle_ids or [])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# ── App Factory ─────────────────────────────────────────────────────

def create_app(settings: Optional[ReleaseSettings] = None,
               store: Optional[JobRecordStore] = None,
               driver_factory: Optional[DriverBuilder] = None,
               matcher: Optional[ConfirmationMatcher] = None) -> FastAPI:
    settings = settings or get_settings()
    store = store or create_store(settings)
    orchestrator = ReleaseOrchestrator(store, settings, driver_factory=driver_factory, matcher=matcher)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Release service ready (backend={settings.driver_backend}, store={settings.store_backend})")
        yield
        # Batches outlive their requests; let them reach a terminal state
        await orchestrator.drain(timeout=settings.shutdown_timeout_seconds)

    app = FastAPI(
        title="DMV Release Automation",
        description="Submits Notice of Release of Liability forms for sold vehicles",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    @app.post("/dmv-automation")
    async def dmv_automation(request: ReleaseRequest):
        vehicle_ids = request.ids()
        if not vehicle_ids:
            return _error(400, "Vehicle IDs are required")

        if request.real_time:
            batch = orchestrator.start(vehicle_ids)
            return StreamingResponse(
                encode_stream(orchestrator.stream(batch)),
                media_type=EVENT_STREAM_MEDIA_TYPE,
                headers=STREAM_HEADERS,
            )

        try:
            outcomes = await orchestrator.run_sync(vehicle_ids)
        except NoEligibleVehiclesError as e:
            return _error(400, e.message)
        except JobStoreError as e:
            logger.error(f"Release batch failed: {e}")
            return _error(500, e.message)

        return {
            "success": True,
            "results": [outcome.to_dict() for outcome in outcomes],
            "processed": len(outcomes),
        }

    @app.get("/release-jobs")
    async def release_jobs(ids: str = Query(default="")):
        vehicle_ids = unique_ids(ids.split(","))
        if not vehicle_ids:
            return _error(400, "Vehicle IDs are required")
        try:
            jobs = await store.get_jobs(vehicle_ids)
        except JobStoreError as e:
            logger.error(f"Could not read release jobs: {e}")
            return _error(500, e.message)
        return {"jobs": [job.to_record() for job in jobs]}

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "activeBatches": orchestrator.active_batches,
            "driverBackend": settings.driver_backend,
            "formVersion": FORM_VERSION,
            "availableBackends": DriverFactory.get_available_backends(),
        }

    return app
