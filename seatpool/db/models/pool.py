"""Resource pool and seat models.

A resource pool is a shared account (family plan, team workspace, admin
console...) with a fixed number of seats and a validity window. Seats are
the unit of capacity handed out to subscriptions.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from seatpool.db.models.base import UTCDatetime, UUIDModel, TimestampMixin


class PoolType(str, Enum):
    """Kind of shared account behind a pool."""

    admin_console = "admin_console"
    family = "family"
    team = "team"
    workspace = "workspace"


class PoolStatus(str, Enum):
    """Status of a resource pool."""

    active = "active"
    paused = "paused"
    completed = "completed"
    overdue = "overdue"
    expired = "expired"


class SeatStatus(str, Enum):
    """Status of a single seat."""

    available = "available"
    reserved = "reserved"
    assigned = "assigned"


# =============================================================================
# Resource Pools
# =============================================================================


class ResourcePoolBase(SQLModel):
    """Base fields for resource pools."""

    provider: str = Field(index=True)  # e.g. "spotify", "microsoft_365"
    pool_type: PoolType = Field(index=True)

    # Credential pair for the shared account
    login_email: str
    login_secret: Optional[str] = None
    notes: Optional[str] = None

    # Validity window
    start_at: UTCDatetime = Field(sa_type=DateTime)
    end_at: UTCDatetime = Field(index=True, sa_type=DateTime)


class ResourcePool(UUIDModel, ResourcePoolBase, TimestampMixin, table=True):
    """Resource pool table.

    used_seats is maintained by the seat allocator only and always equals
    the number of seats in 'assigned' state.
    """

    __tablename__ = "resource_pools"

    max_seats: int = Field(gt=0)
    used_seats: int = Field(default=0, ge=0)
    status: PoolStatus = Field(default=PoolStatus.active, index=True)
    is_alive: bool = Field(default=True)

    # Highest seat_index ever handed out; new seats continue after it
    last_seat_index: int = Field(default=0, ge=0)


class ResourcePoolCreate(ResourcePoolBase):
    """Schema for creating a pool."""

    max_seats: int = Field(gt=0)


class ResourcePoolUpdate(SQLModel):
    """Schema for updating a pool. All fields optional."""

    provider: Optional[str] = None
    pool_type: Optional[PoolType] = None
    login_email: Optional[str] = None
    login_secret: Optional[str] = None
    notes: Optional[str] = None
    start_at: Optional[UTCDatetime] = None
    end_at: Optional[UTCDatetime] = None
    max_seats: Optional[int] = Field(default=None, gt=0)
    is_alive: Optional[bool] = None
    status: Optional[PoolStatus] = None


class ResourcePoolRead(ResourcePoolBase):
    """Schema for reading pool data."""

    id: UUID
    max_seats: int
    used_seats: int
    status: PoolStatus
    is_alive: bool
    created_at: datetime
    updated_at: Optional[datetime] = None


# =============================================================================
# Seats
# =============================================================================


class PoolSeatBase(SQLModel):
    """Base fields for pool seats.

    The assignment fields are set together on assign and cleared together
    on release.
    """

    seat_index: int = Field(ge=1)
    seat_status: SeatStatus = Field(default=SeatStatus.available, index=True)

    assigned_email: Optional[str] = Field(default=None, index=True)
    assigned_client_id: Optional[UUID] = Field(default=None, index=True)
    assigned_subscription_id: Optional[UUID] = Field(default=None, index=True)
    assigned_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    unassigned_at: Optional[datetime] = Field(default=None, sa_type=DateTime)


class PoolSeat(UUIDModel, PoolSeatBase, TimestampMixin, table=True):
    """Seat table.

    seat_index is a human-visible identifier: stable for the life of the
    seat and never reused within a pool.
    """

    __tablename__ = "resource_pool_seats"
    __table_args__ = (
        UniqueConstraint("pool_id", "seat_index", name="uq_pool_seat_index"),
    )

    pool_id: UUID = Field(foreign_key="resource_pools.id", index=True)


class PoolSeatRead(PoolSeatBase):
    """Schema for reading seat data."""

    id: UUID
    pool_id: UUID
    created_at: datetime
    updated_at: Optional[datetime] = None


class SeatAssignment(SQLModel):
    """Who a seat is handed to.

    At least one of email or subscription_id identifies the holder.
    """

    email: Optional[str] = None
    client_id: Optional[UUID] = None
    subscription_id: Optional[UUID] = None
    assigned_at: Optional[UTCDatetime] = None


class PoolStats(SQLModel):
    """Seat counters for a pool."""

    total_seats: int
    used_seats: int
    available_seats: int
    assigned_seats: int
    reserved_seats: int


class ResourcePoolWithSeats(ResourcePoolRead):
    """Pool with its seats in index order."""

    seats: list[PoolSeatRead] = []


class AssignmentRead(SQLModel):
    """An assigned seat joined with the pool it belongs to."""

    seat_id: UUID
    seat_index: int
    seat_status: SeatStatus
    assigned_email: Optional[str] = None
    assigned_client_id: Optional[UUID] = None
    assigned_subscription_id: Optional[UUID] = None
    assigned_at: Optional[datetime] = None
    pool_id: UUID
    provider: str
    pool_type: PoolType
    login_email: str
    pool_end_at: datetime
    pool_status: PoolStatus
