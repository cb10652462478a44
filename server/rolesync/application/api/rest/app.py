import logging
from contextlib import asynccontextmanager

import logfire
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rolesync.application.api.v1.errors import map_rolesync_error
from rolesync.application.api.v1.routes import health, link, reconcile
from rolesync.application.di import create_container
from rolesync.config import Config, configure_logging
from rolesync.domain.entitlement.schedule.sweep_schedule import SweepSchedule
from rolesync.domain.entitlement.service.role_mapper import RoleMapper
from rolesync.domain.shared.error import RolesyncError
from rolesync.infrastructure.persistence.migrate import run_migrations
from rolesync.infrastructure.schedule.scheduler import ScheduleConfig, Scheduler
from rolesync.util.di.fastapi import setup_dishka

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = app.state.dishka_container
    config = await container.get(Config)

    # Fail fast on a missing or invalid role mapping
    await container.get(RoleMapper)

    schedules = []
    if config.sweep.cron:
        schedules.append(ScheduleConfig(SweepSchedule, cron=config.sweep.cron, id="sweep"))

    async with Scheduler(container, schedules):
        yield

    await container.close()


def create_app(config: Config | None = None) -> FastAPI:
    """Create FastAPI application."""
    # Pydantic Settings populates from env vars at runtime
    config = config or Config()  # type: ignore[call-arg]

    # Configure logging early
    configure_logging(config.logging)
    logger.info("Starting rolesync server: %s v%s", config.server.name, config.server.version)

    if config.database.auto_migrate:
        run_migrations(config.database.url)

    app_instance = FastAPI(
        title=config.server.name,
        description=config.server.description,
        version=config.server.version,
        lifespan=lifespan,
    )

    # Instrument FastAPI and the platform client for automatic tracing
    logfire.instrument_httpx()
    logfire.instrument_fastapi(app_instance)

    # Setup dependency injection
    container = create_container(config)
    setup_dishka(container, app_instance)

    # Register v1 routes with /api/v1 prefix
    app_instance.include_router(health.router, prefix="/api/v1")
    app_instance.include_router(link.router, prefix="/api/v1")
    app_instance.include_router(reconcile.router, prefix="/api/v1")

    # Global rolesync error handler - maps domain and infrastructure errors to HTTP responses
    @app_instance.exception_handler(RolesyncError)
    async def rolesync_error_handler(request: Request, exc: RolesyncError):
        http_exc = map_rolesync_error(exc)
        return JSONResponse(
            status_code=http_exc.status_code,
            content=http_exc.detail,
            headers=http_exc.headers,
        )

    # Global exception handler - logs all unhandled exceptions
    @app_instance.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(
            "Unhandled exception on %s %s",
            request.method,
            request.url.path,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app_instance
