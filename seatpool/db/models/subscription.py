"""Subscription and subscription event models.

A subscription is a client's recurring entitlement to a service. It renews
on its own cadence (see seatpool.renewal) unless it is bound to a live
resource pool, in which case the pool's end date wins.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy import JSON, DateTime
from sqlmodel import Field, SQLModel

from seatpool.db.models.base import UTCDatetime, UUIDModel, TimestampMixin, utcnow


class RenewalStrategy(str, Enum):
    """Formula governing the renewal cadence."""

    MONTHLY = "MONTHLY"
    EVERY_N_DAYS = "EVERY_N_DAYS"


class SubscriptionStatus(str, Enum):
    """Status of a subscription."""

    active = "active"
    paused = "paused"
    completed = "completed"
    overdue = "overdue"
    canceled = "canceled"
    archived = "archived"


class OverdueReason(str, Enum):
    """Why a subscription is overdue. Remediation differs per reason."""

    renewal_due = "renewal_due"
    pool_expired = "pool_expired"
    manual = "manual"


class SubscriptionEventType(str, Enum):
    """Types of lifecycle events."""

    created = "created"
    renewed = "renewed"
    custom_date_set = "custom_date_set"
    custom_date_cleared = "custom_date_cleared"
    completed = "completed"
    overdue = "overdue"
    reverted = "reverted"
    updated = "updated"
    archived = "archived"
    paused = "paused"
    resumed = "resumed"
    canceled = "canceled"


# =============================================================================
# Subscriptions
# =============================================================================


class SubscriptionBase(SQLModel):
    """Base fields for subscriptions."""

    service_id: UUID = Field(index=True)
    client_id: UUID = Field(index=True)
    sale_id: Optional[UUID] = None

    strategy: RenewalStrategy = Field(default=RenewalStrategy.MONTHLY)
    interval_days: Optional[int] = Field(default=None, gt=0)

    target_end_at: Optional[UTCDatetime] = Field(default=None, sa_type=DateTime)
    notes: Optional[str] = None


class Subscription(UUIDModel, SubscriptionBase, TimestampMixin, table=True):
    """Subscription table.

    resource_pool_id and resource_pool_seat_id are set and cleared together
    by the seat allocator.
    """

    __tablename__ = "subscriptions"

    # Cycle timestamps
    started_at: datetime = Field(sa_type=DateTime)
    current_cycle_start_at: datetime = Field(sa_type=DateTime)
    last_renewal_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    next_renewal_at: Optional[datetime] = Field(default=None, index=True, sa_type=DateTime)
    custom_next_renewal_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    iterations_done: int = Field(default=0)

    status: SubscriptionStatus = Field(default=SubscriptionStatus.active, index=True)
    overdue_reason: Optional[OverdueReason] = None

    resource_pool_id: Optional[UUID] = Field(
        default=None, foreign_key="resource_pools.id", index=True
    )
    resource_pool_seat_id: Optional[UUID] = Field(
        default=None, foreign_key="resource_pool_seats.id", index=True
    )


class SubscriptionCreate(SubscriptionBase):
    """Schema for creating a subscription."""

    started_at: Optional[UTCDatetime] = None


class SubscriptionUpdate(SQLModel):
    """Schema for editable subscription fields."""

    strategy: Optional[RenewalStrategy] = None
    interval_days: Optional[int] = Field(default=None, gt=0)
    target_end_at: Optional[UTCDatetime] = None
    notes: Optional[str] = None


class SubscriptionRead(SubscriptionBase):
    """Schema for reading subscription data."""

    id: UUID
    started_at: datetime
    current_cycle_start_at: datetime
    last_renewal_at: Optional[datetime] = None
    next_renewal_at: Optional[datetime] = None
    custom_next_renewal_at: Optional[datetime] = None
    iterations_done: int
    status: SubscriptionStatus
    overdue_reason: Optional[OverdueReason] = None
    resource_pool_id: Optional[UUID] = None
    resource_pool_seat_id: Optional[UUID] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


# =============================================================================
# Subscription Events (append-only)
# =============================================================================


class SubscriptionEventBase(SQLModel):
    """Base fields for subscription events."""

    type: SubscriptionEventType = Field(index=True)
    at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    meta: dict = Field(default_factory=dict, sa_type=JSON)


class SubscriptionEvent(UUIDModel, SubscriptionEventBase, table=True):
    """Subscription event table.

    Rows are written once and never updated.
    """

    __tablename__ = "subscription_events"

    subscription_id: UUID = Field(foreign_key="subscriptions.id", index=True)
    created_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=DateTime)


class SubscriptionEventRead(SubscriptionEventBase):
    """Schema for reading subscription events."""

    id: UUID
    subscription_id: UUID
    created_at: datetime
