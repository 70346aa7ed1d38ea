"""Seat routes: assign, release and list assignments."""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlmodel import Session

from api.services import PoolService, SeatService
from seatpool.db.engine import get_session_dependency
from seatpool.db.models import AssignmentRead, PoolSeatRead, SeatAssignment


router = APIRouter(prefix="/v1/seats", tags=["seats"])

seat_service = SeatService()
pool_service = PoolService(seat_service)


@router.get("/assignments", response_model=list[AssignmentRead])
async def list_assignments(
    session: Annotated[Session, Depends(get_session_dependency)],
    pool_id: Optional[UUID] = None,
    provider: Optional[str] = None,
    email: Optional[str] = None,
):
    """Assigned seats across pools."""
    return pool_service.list_assignments(
        session, pool_id=pool_id, provider=provider, email=email
    )


@router.get("/{seat_id}", response_model=PoolSeatRead)
async def get_seat(
    seat_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    return seat_service.get_seat(session, seat_id)


@router.post("/{seat_id}/assign", response_model=PoolSeatRead)
async def assign_seat(
    seat_id: UUID,
    request: SeatAssignment,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Assign a specific seat. The seat must be available."""
    return seat_service.assign_seat(session, seat_id, request)


@router.post("/{seat_id}/release", response_model=PoolSeatRead)
async def release_seat(
    seat_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Free a seat and unlink the subscription holding it."""
    return seat_service.release_seat(session, seat_id)
