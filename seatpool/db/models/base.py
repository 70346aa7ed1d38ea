"""Base models for SQLModel tables.

All tables use UUID primary keys. Timestamps are stored as naive UTC in
plain DateTime columns, so every datetime column declares sa_type=DateTime.
Incoming values with an offset are converted at the schema boundary by
UTCDatetime.
"""

from datetime import datetime, timezone
from typing import Annotated, Optional
from uuid import UUID, uuid4

from pydantic import AfterValidator
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an offset-aware datetime to naive UTC.

    Naive values are taken to be UTC already and returned unchanged.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# Datetime accepted from clients: "2024-03-01T00:00:00Z" and
# "2024-03-01T02:00:00+02:00" both become datetime(2024, 3, 1)
UTCDatetime = Annotated[datetime, AfterValidator(to_naive_utc)]


class UUIDModel(SQLModel):
    """Base model with UUID primary key.

    All tables should inherit from this to ensure consistent
    primary key handling across the system.
    """

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        index=True,
        nullable=False,
    )


class TimestampMixin(SQLModel):
    """Mixin for created_at and updated_at timestamps.

    Use with UUIDModel:
        class ResourcePool(UUIDModel, TimestampMixin, table=True):
            provider: str
    """

    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=DateTime,
    )
    updated_at: Optional[datetime] = Field(
        default=None,
        sa_type=DateTime,
        sa_column_kwargs={"onupdate": utcnow},
    )
