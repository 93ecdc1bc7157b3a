"""Calendar sync API: FastAPI application factory.

The app factory creates a FastAPI instance with:
- Lifespan handler that opens the DB pool, ensures the calendar tables exist,
  and wires the sync service into the routers
- Health endpoint at GET /api/health
- The scheduled trigger router at /api/cron/calendar-sync

Serve with ``uvicorn matterflow.api.app:create_app --factory``.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from matterflow.api.deps import SyncService, build_sync_service, wire_sync_dependencies
from matterflow.api.middleware import register_error_handlers
from matterflow.api.routers.calendar_sync import router as calendar_sync_router
from matterflow.calendar.schema import ensure_calendar_schema
from matterflow.config import SyncServiceConfig, config_path_from_env, load_config
from matterflow.core.logging import configure_logging
from matterflow.core.metrics import init_metrics
from matterflow.core.telemetry import init_telemetry
from matterflow.db import Database

logger = logging.getLogger(__name__)

SERVICE_NAME = "matterflow-calendar-sync"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle for the DB pool and sync service.

    When a service was injected through ``create_app`` nothing is opened.
    """
    if getattr(app.state, "sync_service", None) is not None:
        yield
        return

    config: SyncServiceConfig = app.state.config
    log_root = config.logging.log_root
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=Path(log_root) if log_root else None,
    )
    init_telemetry(SERVICE_NAME)
    init_metrics(SERVICE_NAME)

    db = Database.from_env(config.database.name, schema=config.database.schema)
    pool = await db.connect()
    try:
        await ensure_calendar_schema(pool)
        wire_sync_dependencies(app, build_sync_service(config, pool))
        logger.info("Calendar sync service ready for account=%s", config.sync.account_id)
        yield
    finally:
        await db.close()


def create_app(
    config: SyncServiceConfig | None = None,
    service: SyncService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    config:
        Service configuration. Loaded from ``MATTERFLOW_SYNC_CONFIG`` (or
        ``calendar_sync.toml``) when omitted.
    service:
        Pre-built sync service. When given, the lifespan skips database
        setup entirely.
    """
    app = FastAPI(
        title="MatterFlow Calendar Sync",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.router.redirect_slashes = False

    if service is not None:
        wire_sync_dependencies(app, service)
    else:
        app.state.config = config if config is not None else load_config(config_path_from_env())

    register_error_handlers(app)
    app.include_router(calendar_sync_router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app
