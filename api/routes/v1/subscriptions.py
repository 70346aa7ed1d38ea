"""Subscription routes.

Provides endpoints for:
- Subscription CRUD
- Lifecycle actions (renew, overdue, complete, archive, revert, pause,
  resume, cancel)
- Manual renewal date
- Pool link/unlink
- History, renewals and due buckets
"""

from datetime import datetime
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlmodel import Session

from api.services import SeatService, SubscriptionService
from seatpool.db.engine import get_session_dependency
from seatpool.db.models import (
    ResourcePoolRead,
    SubscriptionCreate,
    SubscriptionEventRead,
    SubscriptionRead,
    SubscriptionStatus,
    SubscriptionUpdate,
    UTCDatetime,
)


router = APIRouter(prefix="/v1/subscriptions", tags=["subscriptions"])

subscription_service = SubscriptionService(SeatService())


# =============================================================================
# Request/Response Models
# =============================================================================


class CustomRenewalDateRequest(BaseModel):
    """Request to override the next renewal date."""

    custom_next_renewal_at: UTCDatetime


class PoolLinkRequest(BaseModel):
    """Request to seat a subscription in a pool."""

    pool_id: UUID
    seat_id: Optional[UUID] = None  # None takes the lowest free seat


class DueBucketsResponse(BaseModel):
    """Active subscriptions grouped by renewal proximity."""

    due_today: list[SubscriptionRead]
    due_in_3_days: list[SubscriptionRead]
    overdue: list[SubscriptionRead]


class NextRenewalResponse(BaseModel):
    subscription_id: UUID
    next_renewal_at: datetime


# =============================================================================
# Collection
# =============================================================================


@router.post("", response_model=SubscriptionRead, status_code=status.HTTP_201_CREATED)
async def create_subscription(
    request: SubscriptionCreate,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Create an active subscription."""
    return subscription_service.create_subscription(session, request)


@router.get("", response_model=list[SubscriptionRead])
async def list_subscriptions(
    session: Annotated[Session, Depends(get_session_dependency)],
    sub_status: Annotated[Optional[SubscriptionStatus], Query(alias="status")] = None,
    client_id: Optional[UUID] = None,
    pool_id: Optional[UUID] = None,
):
    """List subscriptions, next renewal first."""
    return subscription_service.list_subscriptions(
        session, status=sub_status, client_id=client_id, pool_id=pool_id
    )


@router.get("/due-buckets", response_model=DueBucketsResponse)
async def get_due_buckets(
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Active subscriptions due today, within three days, or overdue."""
    buckets = subscription_service.get_due_buckets(session)
    return DueBucketsResponse(
        **{
            key: [SubscriptionRead.model_validate(sub) for sub in subs]
            for key, subs in buckets.items()
        }
    )


# =============================================================================
# Single subscription
# =============================================================================


@router.get("/{subscription_id}", response_model=SubscriptionRead)
async def get_subscription(
    subscription_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    return subscription_service.get_subscription(session, subscription_id)


@router.patch("/{subscription_id}", response_model=SubscriptionRead)
async def update_subscription(
    subscription_id: UUID,
    request: SubscriptionUpdate,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Edit notes, cadence or target end date."""
    return subscription_service.update_subscription(session, subscription_id, request)


@router.delete("/{subscription_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_subscription(
    subscription_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Delete a subscription and its history. A held seat is released."""
    subscription_service.delete_subscription(session, subscription_id)


@router.get("/{subscription_id}/next-renewal", response_model=NextRenewalResponse)
async def get_next_renewal(
    subscription_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Effective next renewal date, live pool override applied."""
    return NextRenewalResponse(
        subscription_id=subscription_id,
        next_renewal_at=subscription_service.get_next_renewal(session, subscription_id),
    )


# =============================================================================
# Lifecycle
# =============================================================================


@router.post("/{subscription_id}/renew", response_model=SubscriptionRead)
async def renew_subscription(
    subscription_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Renew now and start a new cycle."""
    return subscription_service.renew_now(session, subscription_id)


@router.post("/{subscription_id}/overdue", response_model=SubscriptionRead)
async def mark_overdue(
    subscription_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    return subscription_service.mark_overdue(session, subscription_id)


@router.post("/{subscription_id}/complete", response_model=SubscriptionRead)
async def complete_subscription(
    subscription_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    return subscription_service.complete(session, subscription_id)


@router.post("/{subscription_id}/archive", response_model=SubscriptionRead)
async def archive_subscription(
    subscription_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Archive a subscription. A held seat stays assigned."""
    return subscription_service.archive(session, subscription_id)


@router.post("/{subscription_id}/revert", response_model=SubscriptionRead)
async def revert_subscription(
    subscription_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Restore the status an archived subscription had."""
    return subscription_service.revert(session, subscription_id)


@router.post("/{subscription_id}/pause", response_model=SubscriptionRead)
async def pause_subscription(
    subscription_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    return subscription_service.pause(session, subscription_id)


@router.post("/{subscription_id}/resume", response_model=SubscriptionRead)
async def resume_subscription(
    subscription_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    return subscription_service.resume(session, subscription_id)


@router.post("/{subscription_id}/cancel", response_model=SubscriptionRead)
async def cancel_subscription(
    subscription_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    return subscription_service.cancel(session, subscription_id)


# =============================================================================
# Manual renewal date
# =============================================================================


@router.put("/{subscription_id}/custom-renewal-date", response_model=SubscriptionRead)
async def set_custom_renewal_date(
    subscription_id: UUID,
    request: CustomRenewalDateRequest,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Override the next renewal date. Rejected while a live pool pins it."""
    return subscription_service.set_custom_renewal_date(
        session, subscription_id, request.custom_next_renewal_at
    )


@router.delete("/{subscription_id}/custom-renewal-date", response_model=SubscriptionRead)
async def clear_custom_renewal_date(
    subscription_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    return subscription_service.clear_custom_renewal_date(session, subscription_id)


# =============================================================================
# Pool link
# =============================================================================


@router.post("/{subscription_id}/pool-link", response_model=SubscriptionRead)
async def link_to_pool(
    subscription_id: UUID,
    request: PoolLinkRequest,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Seat the subscription in a pool, on a given seat or the next free one."""
    return subscription_service.link_subscription_to_pool(
        session, subscription_id, request.pool_id, seat_id=request.seat_id
    )


@router.delete("/{subscription_id}/pool-link", response_model=SubscriptionRead)
async def unlink_from_pool(
    subscription_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Release the subscription's seat."""
    return subscription_service.unlink_subscription_from_pool(session, subscription_id)


@router.get("/{subscription_id}/pool", response_model=Optional[ResourcePoolRead])
async def get_subscription_pool(
    subscription_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """The pool the subscription is bound to, or null."""
    return subscription_service.get_pool_for_subscription(session, subscription_id)


# =============================================================================
# History
# =============================================================================


@router.get("/{subscription_id}/history", response_model=list[SubscriptionEventRead])
async def get_history(
    subscription_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """All lifecycle events, newest first."""
    return subscription_service.get_subscription_history(session, subscription_id)


@router.get("/{subscription_id}/renewals", response_model=list[SubscriptionEventRead])
async def get_renewals(
    subscription_id: UUID,
    session: Annotated[Session, Depends(get_session_dependency)],
):
    """Renewal events only, newest first."""
    return subscription_service.get_renewal_history(session, subscription_id)
