"""FastAPI application factory."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .. import __version__
from ..core.config import Settings, get_settings
from ..core.factories import ProcessingPipelineFactory
from ..core.logging_config import get_logger, setup_logger
from .errors import register_exception_handlers
from .routes import router

logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the processing stack and own the sweeper for the app's lifetime."""
    settings: Settings = app.state.settings
    store = ProcessingPipelineFactory.create_store(settings)
    app.state.store = store
    app.state.service = ProcessingPipelineFactory.create_service(settings, store=store)
    app.state.sweeper = ProcessingPipelineFactory.create_sweeper(store, settings)

    app.state.sweeper.start()
    logger.info(f"Image transform API started (uploads={store.upload_dir}, outputs={store.output_dir})")
    try:
        yield
    finally:
        await app.state.sweeper.stop()
        logger.info("Image transform API stopped")


def create_application(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    setup_logger("images-transform", level=settings.log_level)

    app = FastAPI(
        title="Image Transform API",
        description="Resize, crop, rotate, filter and convert uploaded images",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    register_exception_handlers(app)

    app.include_router(router)
    # Same routes under the /api prefix used by the web client
    app.include_router(router, prefix="/api", include_in_schema=False)
    return app
