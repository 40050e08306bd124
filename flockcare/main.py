"""flockcare - per-batch care task scheduling with an idempotent completion ledger."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from flockcare.core.db_client import init_db
from flockcare.core.logging import configure_logfire, instrument_fastapi
from flockcare.core.redis_client import redis_client
from flockcare.interface.task_router import batch_router, install_error_handlers, router


logger = logging.getLogger(__name__)


async def check_redis_connectivity() -> None:
    """Verify Redis connectivity (optional service).

    Only checks if Redis is configured. Logs a warning if unavailable but doesn't fail.
    """
    if not redis_client.is_available:
        logger.info("startup_validation", extra={"service": "redis", "status": "disabled"})
        return

    try:
        result = await redis_client.ping()
        if result:
            logger.info("startup_validation", extra={"service": "redis", "status": "ok"})
        else:
            logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable"})
    except Exception as e:
        logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable", "error": str(e)})


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Startup
    configure_logfire()
    await check_redis_connectivity()

    await init_db()
    logger.info("Database initialized")

    yield
    # Shutdown
    await redis_client.close()


def create_app() -> FastAPI:
    """Build the task service application."""
    application = FastAPI(
        title="flockcare",
        description="Per-batch care task scheduling with an idempotent completion ledger",
        version="0.1.0",
        lifespan=lifespan,
    )
    install_error_handlers(application)
    application.include_router(router)
    application.include_router(batch_router)

    @application.get("/health")
    async def health_check() -> JSONResponse:
        """Health check endpoint."""
        return JSONResponse(
            content={"status": "healthy", "redis": redis_client.get_health_status()},
            status_code=200,
        )

    return application


app = create_app()

# Instrument FastAPI with Logfire
instrument_fastapi(app)
