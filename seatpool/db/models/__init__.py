"""SQLModel tables and schemas for the seat pool service."""

from seatpool.db.models.base import (
    UTCDatetime,
    UUIDModel,
    TimestampMixin,
    to_naive_utc,
    utcnow,
)
from seatpool.db.models.pool import (
    PoolType,
    PoolStatus,
    SeatStatus,
    ResourcePoolBase,
    ResourcePool,
    ResourcePoolCreate,
    ResourcePoolUpdate,
    ResourcePoolRead,
    PoolSeatBase,
    PoolSeat,
    PoolSeatRead,
    SeatAssignment,
    PoolStats,
    ResourcePoolWithSeats,
    AssignmentRead,
)
from seatpool.db.models.subscription import (
    RenewalStrategy,
    SubscriptionStatus,
    OverdueReason,
    SubscriptionEventType,
    SubscriptionBase,
    Subscription,
    SubscriptionCreate,
    SubscriptionUpdate,
    SubscriptionRead,
    SubscriptionEventBase,
    SubscriptionEvent,
    SubscriptionEventRead,
)

__all__ = [
    # Base
    "UUIDModel",
    "TimestampMixin",
    "utcnow",
    "to_naive_utc",
    "UTCDatetime",
    # Pools
    "PoolType",
    "PoolStatus",
    "SeatStatus",
    "ResourcePoolBase",
    "ResourcePool",
    "ResourcePoolCreate",
    "ResourcePoolUpdate",
    "ResourcePoolRead",
    "PoolSeatBase",
    "PoolSeat",
    "PoolSeatRead",
    "SeatAssignment",
    "PoolStats",
    "ResourcePoolWithSeats",
    "AssignmentRead",
    # Subscriptions
    "RenewalStrategy",
    "SubscriptionStatus",
    "OverdueReason",
    "SubscriptionEventType",
    "SubscriptionBase",
    "Subscription",
    "SubscriptionCreate",
    "SubscriptionUpdate",
    "SubscriptionRead",
    "SubscriptionEventBase",
    "SubscriptionEvent",
    "SubscriptionEventRead",
]
