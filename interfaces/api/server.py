"""
Warranty Tracker API server.

Builds the FastAPI app: opens the stores on the configured SQLite file,
seeds the default categories, wires the report exporter and expiration
sweep onto ``app.state``, mounts the /api router and starts the daily
sweep scheduler in the lifespan.

    uvicorn interfaces.api.server:create_app --factory
"""

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.export import ReportExporter
from core.config import TrackerConfig, get_config
from core.scheduler import JobScheduler
from tools.tracker.categories import CategoryStore
from tools.tracker.email_templates import Mailer
from tools.tracker.expiration_sweep import ExpirationSweep
from tools.tracker.products import ProductStore
from tools.tracker.services import ServiceStore
from tools.tracker.users import UserStore

logger = logging.getLogger("tracker.server")


# ---------------------------------------------------------------------------
# App lifespan (startup / shutdown)
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the sweep scheduler on startup, close the stores on shutdown."""
    logger.info("Warranty Tracker starting up")
    scheduler: JobScheduler = app.state.scheduler
    scheduler_task = None
    if app.state.config.sweep.enabled:
        scheduler_task = asyncio.create_task(scheduler.run())
        logger.info("Sweep scheduler loop started as background task")
    yield
    scheduler.stop()
    if scheduler_task:
        scheduler_task.cancel()
    for store in (app.state.services, app.state.products, app.state.categories, app.state.users):
        store.close()
    logger.info("Warranty Tracker shutting down")


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Request-model failures are client errors: 400 with the field list."""
    logger.info("Validation error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=400,
        content={"detail": "Validation error", "errors": jsonable_encoder(exc.errors())},
    )


async def database_error_handler(request: Request, exc: sqlite3.Error):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

def create_app(config: TrackerConfig | None = None) -> FastAPI:
    """Build a fully wired app. Tests pass their own config (temp db)."""
    config = config or get_config()
    db_path = config.database.db_path
    threshold = config.status.threshold_days

    users = UserStore(db_path)
    categories = CategoryStore(db_path)
    categories.seed_defaults()
    products = ProductStore(db_path, threshold_days=threshold)
    services = ServiceStore(db_path, threshold_days=threshold)

    mailer = Mailer(config.email)
    sweep = ExpirationSweep(
        products, services, users, mailer,
        lookahead_days=config.sweep.lookahead_days,
    )
    scheduler = JobScheduler(check_interval=config.sweep.check_interval)
    scheduler.add_daily_job("Expiration sweep", sweep.run_sweep, config.sweep.run_at_time)

    app = FastAPI(title="Warranty Tracker", lifespan=lifespan)

    # Shared state for the routers, no circular imports
    app.state.config = config
    app.state.users = users
    app.state.categories = categories
    app.state.products = products
    app.state.services = services
    app.state.mailer = mailer
    app.state.sweep = sweep
    app.state.scheduler = scheduler
    app.state.exporter = ReportExporter(
        products, services, categories,
        date_format=config.export.date_format,
        threshold_days=threshold,
    )

    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(sqlite3.Error, database_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    from interfaces.api.routes import router as api_router
    app.include_router(api_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "scheduler": [j.to_dict() for j in scheduler.list_all()]}

    logger.info("App created (db=%s)", db_path)
    return app
