"""FastAPI application factory for the RTM-Triage API."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rtm_triage import __version__
from rtm_triage.api.routers import alerts, health, triage
from rtm_triage.app_initializer import TriageApplication

logger = logging.getLogger(__name__)


def create_app(
    config_path: Optional[str] = None,
    triage_app: Optional[TriageApplication] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config_path: Path to configuration file
        triage_app: Pre-built application (custom stores, tests)

    Returns:
        Configured FastAPI application instance
    """
    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    triage_app = triage_app or TriageApplication(config_path=config_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting RTM-Triage API server...")
        await triage_app.initialize()
        _start_background_tasks(app)
        logger.info("RTM-Triage API server ready")
        try:
            yield
        finally:
            await _stop_background_tasks(app)
            await triage_app.shutdown()
            logger.info("Shutdown complete")

    app = FastAPI(
        title="RTM-Triage API",
        description="Clinical alert risk scoring and triage prioritization",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store in app state for dependency injection
    app.state.triage_app = triage_app
    app.state.background_tasks = []

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"detail": {"code": "validation_error", "errors": jsonable_encoder(exc.errors())}},
        )

    app.include_router(health.router)
    app.include_router(alerts.router)
    app.include_router(triage.router)

    return app


def _start_background_tasks(app: FastAPI):
    """Start periodic re-ranking and maintenance."""
    triage_app: TriageApplication = app.state.triage_app
    scheduler = triage_app.config_manager.get_scheduler_config()
    if not scheduler.enabled:
        logger.info("Background scheduler disabled")
        return

    async def rank_refresher():
        """Periodically re-rank every organization's queue."""
        while True:
            try:
                await asyncio.sleep(scheduler.rank_interval_seconds)
                counts = await triage_app.engine.refresh_all_ranks()
                logger.debug(f"Periodic re-rank: {counts}")
            except asyncio.CancelledError:
                logger.info("Rank refresher cancelled")
                break
            except Exception as e:
                logger.error(f"Rank refresher error: {e}")

    async def maintenance_runner():
        """Reactivate snoozes, release stale claims and escalate SLA breaches."""
        while True:
            try:
                await asyncio.sleep(scheduler.maintenance_interval_seconds)
                report = await triage_app.engine.run_maintenance()
                if report.reactivated_snoozes or report.released_claims or report.escalated:
                    logger.info(f"Maintenance: {report.model_dump()}")
            except asyncio.CancelledError:
                logger.info("Maintenance runner cancelled")
                break
            except Exception as e:
                logger.error(f"Maintenance runner error: {e}")

    app.state.background_tasks.append(asyncio.create_task(rank_refresher()))
    app.state.background_tasks.append(asyncio.create_task(maintenance_runner()))


async def _stop_background_tasks(app: FastAPI):
    tasks = app.state.background_tasks
    if not tasks:
        return
    logger.info(f"Cancelling {len(tasks)} background tasks...")
    for task in tasks:
        if not task.done():
            task.cancel()
    try:
        await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout=5.0)
    except asyncio.TimeoutError:
        logger.warning("Some background tasks did not complete within timeout")
    tasks.clear()
