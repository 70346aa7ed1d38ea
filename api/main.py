"""FastAPI application for the seat pool service."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.error_handlers import register_error_handlers
from api.middleware import RequestContextMiddleware
from api.routes import health
from api.routes.v1 import (
    pools_router,
    seats_router,
    subscriptions_router,
    status_sync_router,
)
from api.services import StatusSyncRunner
from seatpool.config import SWEEP_ENABLED
from seatpool.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the status sweep in the background while the app is up."""
    runner = None
    if SWEEP_ENABLED:
        runner = StatusSyncRunner()
        app.state.status_sync_runner = runner
        await runner.start()
    else:
        logger.info("status_sync_disabled")

    yield

    if runner is not None:
        await runner.stop()


app = FastAPI(
    title="Seat Pool API",
    description="Shared-account seat allocation and subscription renewals",
    version="1.0.0",
    lifespan=lifespan,
)

# Binds request_id into the log context for everything below it
app.add_middleware(RequestContextMiddleware)

# Register global error handlers
register_error_handlers(app)

# v1 routes
app.include_router(pools_router, prefix="/api", tags=["pools"])
app.include_router(seats_router, prefix="/api", tags=["seats"])
app.include_router(subscriptions_router, prefix="/api", tags=["subscriptions"])
app.include_router(status_sync_router, prefix="/api", tags=["status-sync"])

# Health check routes
app.include_router(health.router, prefix="/api", tags=["health"])
