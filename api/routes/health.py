"""Health check API routes.

Provides endpoints for:
- GET /health - Basic liveness check
- GET /health/ready - Readiness check (DB connectivity)
- GET /health/detailed - Component status, sweep runner included
"""

from fastapi import APIRouter, HTTPException, Request, status

from api.services.health_service import DetailedHealth, HealthService

router = APIRouter(prefix="/health", tags=["health"])

# Shared health service instance
health_service = HealthService()


@router.get("")
async def health() -> dict:
    """Basic liveness check.

    Returns:
        dict: {"status": "ok"}
    """
    return {"status": "ok"}


@router.get("/ready")
async def ready() -> dict:
    """Readiness check.

    Raises:
        HTTPException 503: Database unavailable
    """
    db_healthy = health_service.check_database()

    if not db_healthy:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not ready: database unavailable",
        )

    return {
        "status": "ok",
        "database": db_healthy,
    }


@router.get("/detailed", response_model=DetailedHealth)
async def detailed(request: Request) -> DetailedHealth:
    """Component-level health."""
    runner = getattr(request.app.state, "status_sync_runner", None)
    return health_service.get_detailed_health(
        sweep_running=runner.running if runner is not None else None
    )
