import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, status

from sheetpipe.api.v1.cells import router as cells_router
from sheetpipe.api.v1.events import processing_router, router as events_router
from sheetpipe.api.v1.sheets import router as sheets_router
from sheetpipe.consumers.enrichment import Enricher, enricher_from_config
from sheetpipe.consumers.event_processor import build_processor
from sheetpipe.core.auth import ApiKeyIdentityProvider, IdentityProvider
from sheetpipe.core.config import PROCESSOR_AUTOSTART, PROJECT_NAME, VERSION
from sheetpipe.core.db import close_db, init_db
from sheetpipe.core.exception_handlers import setup_exception_handlers
from sheetpipe.core.logging import setup_logging
from sheetpipe.events.broadcaster import StatusBroadcaster
from sheetpipe.services import event_queue

setup_logging()
log = logging.getLogger("sheetpipe")


def create_app(
    identity_provider: Optional[IdentityProvider] = None,
    enricher: Optional[Enricher] = None,
    start_processor: Optional[bool] = None,
    manage_db: bool = True,
) -> FastAPI:
    """
    Builds the API. The broadcaster and the processor are created here, once,
    and shared through `app.state`.
    """
    autostart = PROCESSOR_AUTOSTART if start_processor is None else start_processor

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handles startup and shutdown events."""
        log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
        if manage_db:
            await init_db() # Connect to DB and generate schemas
        if autostart:
            app.state.processor.start()
        yield
        await app.state.processor.stop()
        app.state.broadcaster.close_all()
        if manage_db:
            await close_db()
        log.info(f"{PROJECT_NAME} stopped.")

    app = FastAPI(
        title=PROJECT_NAME,
        version=VERSION,
        lifespan=lifespan,
        # Configure API documentation and paths
        docs_url="/docs",
        redoc_url="/redoc"
    )

    broadcaster = StatusBroadcaster(event_queue.status_snapshot)
    app.state.identity_provider = identity_provider or ApiKeyIdentityProvider()
    app.state.broadcaster = broadcaster
    app.state.processor = build_processor(broadcaster, enricher or enricher_from_config())

    # Include routers for modular API structure
    app.include_router(cells_router, prefix="/api/v1/sheets", tags=["Cells"])
    app.include_router(events_router, prefix="/api/v1/sheets", tags=["Event Queue"])
    app.include_router(sheets_router, prefix="/api/v1/sheets", tags=["Sheet Data"])
    app.include_router(processing_router, prefix="/api/v1/events", tags=["Processing"])

    setup_exception_handlers(app)

    @app.get("/health", status_code=status.HTTP_200_OK)
    async def health_check():
        """Simple health check endpoint."""
        return {
            "status": "ok",
            "app_name": PROJECT_NAME,
            "processor_running": app.state.processor.is_running,
        }

    return app


app = create_app()
