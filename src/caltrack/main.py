"""
Calibration record service
Main FastAPI application: record persistence and real-time synchronization
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, get_settings
from .health import readiness
from .routers import machines, realtime, records
from .services.broadcaster import ChangeBroadcaster
from .services.machine_registry import MachineRegistry
from .services.record_service import RecordService
from .services.record_store import RecordStore
from .services.storage import build_blob_store
from .utils.errors import (
    CaltrackError,
    caltrack_error_handler,
    error_handler,
    request_validation_handler,
    unhandled_error_handler,
)

logger = logging.getLogger(__name__)


def build_registry(settings: Settings) -> MachineRegistry:
    if settings.machines_file is not None:
        return MachineRegistry.from_file(settings.machines_file)
    return MachineRegistry.default()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application; services are created when the lifespan starts."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        registry = build_registry(settings)
        blobs = build_blob_store(settings)
        store = RecordStore(settings.database_path, mode=settings.storage_mode)
        await store.open()
        broadcaster = ChangeBroadcaster(queue_size=settings.subscriber_queue_size)

        app.state.machine_registry = registry
        app.state.blob_store = blobs
        app.state.record_store = store
        app.state.broadcaster = broadcaster
        app.state.record_service = RecordService(
            registry=registry,
            store=store,
            blobs=blobs,
            broadcaster=broadcaster,
            allowed_image_types=settings.allowed_image_types,
            max_upload_bytes=settings.max_upload_bytes,
        )
        logger.info(
            f"Calibration service ready: {len(registry)} machines, "
            f"{settings.storage_mode} storage, {settings.blob_backend} blobs"
        )

        try:
            yield
        finally:
            # Stop accepting work, end viewer streams, then flush and close storage
            app.state.record_service = None
            broadcaster.close()
            await store.close()
            logger.info("Calibration service stopped")

    app = FastAPI(
        title="Calibration Records",
        description="""
    ## Calibration record service

    Logs pass/fail calibration results for liquid-dispensing machines,
    stores optional photos, and pushes every change to connected viewers.

    ### Endpoints:
    - `GET /api/machines` - machine registry (name -> nominal volume)
    - `GET|POST|DELETE /api/records` - calibration records
    - `GET /api/summary` - per-machine status
    - `WS /ws`, `GET /api/events` - `records-updated` notifications
    """,
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add standardized error handling
    app.add_exception_handler(CaltrackError, caltrack_error_handler)
    app.add_exception_handler(StarletteHTTPException, error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Include API routers
    app.include_router(machines.router)
    app.include_router(records.router)
    app.include_router(realtime.router)
    app.include_router(readiness.router)

    if settings.blob_backend == "local":
        # The directory is created by the blob store when the lifespan starts
        app.mount(
            settings.uploads_url_prefix,
            StaticFiles(directory=str(settings.uploads_dir), check_dir=False),
            name="uploads"
        )

    # Prebuilt UI last so it never shadows the API
    if settings.static_dir is not None:
        app.mount("/", StaticFiles(directory=str(settings.static_dir), html=True), name="ui")

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app on the configured host and port."""
    import uvicorn

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
