"""Resource pool routes.

Provides endpoints for:
- Pool CRUD, resize and archiving
- Pool stats and seat-holder search
- Listing available seats and taking the next free seat
"""

from datetime import datetime
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlmodel import Session

from api.services import PoolService, SeatService
from seatpool.db.engine import get_session_dependency
from seatpool.db.models import (
    PoolSeatRead,
    PoolStats,
    PoolStatus,
    PoolType,
    ResourcePoolCreate,
    ResourcePoolRead,
    ResourcePoolUpdate,
    ResourcePoolWithSeats,
    SeatAssignment,
)


router = APIRouter(prefix="/v1/pools", tags=["pools"])

seat_service = SeatService()
pool_service = PoolService(seat_service)


# =============================================================================
# Request Models
# =============================================================================


class ResizePoolRequest(BaseModel):
    """Request to change the number of seats."""

    max_seats: int = Field(gt=0)


class BulkArchiveRequest(BaseModel):
    """Request to archive several pools at once."""

    pool_ids: list[UUID] = Field(min_length=1)


# =============================================================================
# Pools
# =============================================================================


@router.post("", response_model=ResourcePoolRead, status_code=status.HTTP_201_CREATED)
async def create_pool(
    request: ResourcePoolCreate,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Create a pool together with its seats."""
    return pool_service.create_pool(session, request)


@router.get("", response_model=list[ResourcePoolRead])
async def list_pools(
    session: Annotated[Session, Depends(get_session_dependency)],
    provider: Optional[str] = None,
    pool_status: Annotated[Optional[PoolStatus], Query(alias="status")] = None,
    pool_type: Optional[PoolType] = None,
    alive: Optional[bool] = None,
    time_bucket: Optional[str] = None,
    start_after: Optional[datetime] = None,
    start_before: Optional[datetime] = None,
    end_after: Optional[datetime] = None,
    end_before: Optional[datetime] = None,
):
    """List pools, soonest end first."""
    return pool_service.list_pools(
        session,
        provider=provider,
        status=pool_status,
        pool_type=pool_type,
        alive=alive,
        time_bucket=time_bucket,
        start_after=start_after,
        start_before=start_before,
        end_after=end_after,
        end_before=end_before,
    )


@router.get("/search", response_model=list[ResourcePoolRead])
async def search_pools(
    session: Annotated[Session, Depends(get_session_dependency)],
    email: str = Query(min_length=1),
):
    """Pools with a seat holder whose email contains the search term."""
    return pool_service.search_pools_by_seat_email(session, email)


@router.post("/archive", response_model=list[ResourcePoolRead])
async def bulk_archive_pools(
    request: BulkArchiveRequest,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Archive several pools in one transaction."""
    return pool_service.bulk_archive_pools(session, request.pool_ids)


@router.get("/{pool_id}", response_model=ResourcePoolWithSeats)
async def get_pool(
    pool_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Get a pool with its seats."""
    return pool_service.get_pool_with_seats(session, pool_id)


@router.patch("/{pool_id}", response_model=ResourcePoolRead)
async def update_pool(
    pool_id: UUID,
    request: ResourcePoolUpdate,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Update pool attributes. A max_seats change resizes the pool."""
    return pool_service.update_pool(session, pool_id, request)


@router.post("/{pool_id}/resize", response_model=ResourcePoolRead)
async def resize_pool(
    pool_id: UUID,
    request: ResizePoolRequest,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Grow or shrink a pool. Assigned seats are never removed."""
    return pool_service.resize_pool(session, pool_id, request.max_seats)


@router.post("/{pool_id}/archive", response_model=ResourcePoolRead)
async def archive_pool(
    pool_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Mark a pool expired and no longer alive."""
    return pool_service.archive_pool(session, pool_id)


@router.delete("/{pool_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_pool(
    pool_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Delete a pool and its seats, unlinking seated subscriptions."""
    pool_service.delete_pool(session, pool_id)


@router.get("/{pool_id}/stats", response_model=PoolStats)
async def get_pool_stats(
    pool_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    return pool_service.get_pool_stats(session, pool_id)


# =============================================================================
# Seats within a pool
# =============================================================================


@router.get("/{pool_id}/seats/available", response_model=list[PoolSeatRead])
async def list_available_seats(
    pool_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Available seats, lowest index first."""
    return seat_service.list_available_seats(session, pool_id)


@router.post("/{pool_id}/seats/next", response_model=PoolSeatRead)
async def assign_next_free_seat(
    pool_id: UUID,
    request: SeatAssignment,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Assign the available seat with the lowest index."""
    return seat_service.assign_next_free_seat(session, pool_id, request)
