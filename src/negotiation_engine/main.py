"""FastAPI application entry point for the Negotiation Engine.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, register and start the
       job scheduler.
    2. Running: Serve the REST API at /api/v1/* and the health check.
    3. Shutdown: Stop the scheduler, close database and Redis connections.

Run with:
    uvicorn negotiation_engine.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from negotiation_engine.config import get_settings
from negotiation_engine.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
    )

    # 2. Initialize database
    from negotiation_engine.infrastructure.database.engine import (
        close_db,
        get_session_factory,
        init_db,
    )

    await init_db()

    # 3. Initialize Redis
    from negotiation_engine.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    # 4. Job scheduler
    from negotiation_engine.orchestration.jobs import register_default_jobs
    from negotiation_engine.orchestration.scheduler import JobScheduler

    scheduler = JobScheduler(
        get_session_factory(),
        poll_interval_seconds=settings.scheduler_poll_interval_seconds,
        stale_after_seconds=settings.scheduler_stale_lock_seconds,
    )
    register_default_jobs(scheduler, settings)
    app.state.scheduler = scheduler
    if settings.scheduler_enabled:
        scheduler.start()

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await scheduler.stop()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Negotiation Engine",
        description=(
            "Marketplace negotiations with escrow, contract revisions "
            "and e-signature tracking."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from negotiation_engine.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from negotiation_engine.api.routes.contracts import router as contracts_router
    from negotiation_engine.api.routes.health import router as health_router
    from negotiation_engine.api.routes.jobs import router as jobs_router
    from negotiation_engine.api.routes.metrics import router as metrics_router
    from negotiation_engine.api.routes.negotiations import router as negotiations_router
    from negotiation_engine.api.routes.webhooks import router as webhooks_router

    app.include_router(health_router)
    app.include_router(negotiations_router)
    app.include_router(contracts_router)
    app.include_router(webhooks_router)
    app.include_router(jobs_router)
    app.include_router(metrics_router)

    return app


# The app instance used by Uvicorn
app = create_app()
