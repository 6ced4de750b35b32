"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api.monitors_router import router as monitors_router
from .config import settings
from .database import close_db_engine, init_db
from .engine import build_engine
from .services.scheduler import start_scheduler, stop_scheduler
from .utils.logging_config import setup_logging
from .utils.time_utils import utcnow


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging(log_file=settings.log_file)
    app.state.started_at = utcnow()
    await init_db()

    engine = build_engine()
    app.state.engine = engine

    if settings.scheduler_enabled:
        logger.info("🔄 Starting monitor scheduler...")
        await start_scheduler(engine.scheduler)
    else:
        logger.info("Scheduler disabled by SCHEDULER_ENABLED=false")

    try:
        yield
    finally:
        await stop_scheduler()
        await engine.close()
        await close_db_engine()
        logger.info("👋 Shutdown complete")


app = FastAPI(
    title="Pagewatch",
    description="Webpage value monitoring engine",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(monitors_router, prefix="/api/v1", tags=["monitors"])


@app.get("/health")
async def health():
    started_at = getattr(app.state, "started_at", None)
    return {
        "status": "ok",
        "started_at": started_at.isoformat() if started_at else None,
    }
