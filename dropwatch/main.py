"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from dropwatch.api.routes import hot_windows, predictions, retailers
from dropwatch.cache import cache
from dropwatch.config import settings
from dropwatch.db.models import Base
from dropwatch.db.session import engine
from dropwatch.ingest.proxy_manager import proxy_rotator
from dropwatch.ingest.rate_limiter import rate_limiter
from dropwatch.predict.hour_model import hour_model_store
from dropwatch.worker.scheduler import setup_scheduler
from dropwatch.worker.tasks import task_runner

# Configure structured logging
from dropwatch.logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)

# Global scheduler
scheduler = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global scheduler

    # Startup
    logger.info("Starting dropwatch...")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if hour_model_store.load():
        logger.info(f"Loaded hour model for {len(hour_model_store.current.retailers)} retailers")

    if settings.shared_politeness_enabled:
        rate_limiter.set_shared_store(cache)
        logger.info("Politeness timestamps shared through redis")

    logger.info(f"Configured {proxy_rotator.proxy_count} proxies")

    await task_runner.initialize()

    scheduler = setup_scheduler()
    scheduler.start()
    logger.info("Scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down...")

    if scheduler:
        scheduler.shutdown()

    await task_runner.close()
    await engine.dispose()

    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="dropwatch",
    description="Retailer availability acquisition and drop-window prediction",
    version="0.1.0",
    lifespan=lifespan,
)

# Add Prometheus instrumentation
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=True,
    excluded_handlers=["/metrics", "/health"],
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

# Include API routes
app.include_router(predictions.router)
app.include_router(hot_windows.router)
app.include_router(retailers.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run(
        "dropwatch.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
