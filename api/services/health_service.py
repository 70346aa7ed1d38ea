"""Health checks for the seat pool service.

Provides methods to check:
- Database connectivity
- Whether the background status sweep is running
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import text
from sqlmodel import Session

from seatpool.db.engine import engine
from seatpool.db.models import utcnow
from seatpool.logging import get_logger

logger = get_logger(__name__)


class ComponentHealth(BaseModel):
    """Health status for a single component."""
    name: str
    status: str  # "healthy", "unhealthy", "disabled"
    latency_ms: Optional[float] = None
    message: Optional[str] = None


class DetailedHealth(BaseModel):
    """Health status with all component statuses."""
    status: str  # "healthy", "unhealthy"
    timestamp: datetime
    version: str
    components: list[ComponentHealth]


class HealthService:
    """Service for checking component health."""

    def __init__(self, version: str = "1.0.0"):
        self.version = version

    def check_database(self) -> bool:
        """Return True if a trivial query succeeds."""
        try:
            with Session(engine) as session:
                session.execute(text("SELECT 1")).fetchone()
            return True
        except Exception as exc:
            logger.error("database_health_check_failed", error=str(exc))
            return False

    def get_detailed_health(self, sweep_running: Optional[bool] = None) -> DetailedHealth:
        """Database status plus the sweep runner state, if one was started."""
        started = utcnow()
        db_healthy = self.check_database()
        latency = (utcnow() - started).total_seconds() * 1000

        components = [
            ComponentHealth(
                name="database",
                status="healthy" if db_healthy else "unhealthy",
                latency_ms=round(latency, 2),
                message=None if db_healthy else "Database connection failed",
            )
        ]
        if sweep_running is None:
            components.append(ComponentHealth(name="status_sync", status="disabled"))
        else:
            components.append(
                ComponentHealth(
                    name="status_sync",
                    status="healthy" if sweep_running else "unhealthy",
                    message=None if sweep_running else "Sweep loop is not running",
                )
            )

        overall = "healthy"
        if any(c.status == "unhealthy" for c in components):
            overall = "unhealthy"

        return DetailedHealth(
            status=overall,
            timestamp=started,
            version=self.version,
            components=components,
        )
