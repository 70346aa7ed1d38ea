"""API services module."""

from api.services.seat_service import SeatService
from api.services.pool_service import PoolService
from api.services.subscription_service import SubscriptionService, apply_transition
from api.services.status_sync_service import (
    StatusSyncService,
    StatusSyncRunner,
    SweepResult,
    run_status_sweep,
)
from api.services.health_service import HealthService

__all__ = [
    "SeatService",
    "PoolService",
    "SubscriptionService",
    "apply_transition",
    "StatusSyncService",
    "StatusSyncRunner",
    "SweepResult",
    "run_status_sweep",
    "HealthService",
]
