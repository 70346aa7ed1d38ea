"""Pool-aware renewal dates.

A subscription bound to an alive pool renews when the pool ends. These
helpers load the bound pool and feed it to seatpool.renewal, and re-pin a
subscription's next_renewal_at whenever its pool binding changes.
"""

from datetime import datetime
from typing import Optional

from sqlmodel import Session

from seatpool import renewal
from seatpool.db.models import (
    ResourcePool,
    Subscription,
    SubscriptionEventType,
)
from seatpool.lifecycle import is_scheduled
from seatpool.logging import get_logger

from api.services.subscription_events import record_event

logger = get_logger(__name__)


def get_bound_pool(session: Session, sub: Subscription) -> Optional[ResourcePool]:
    """The pool a subscription is linked to, if any."""
    if sub.resource_pool_id is None:
        return None
    return session.get(ResourcePool, sub.resource_pool_id)


def has_live_pool(session: Session, sub: Subscription) -> bool:
    """True when an alive pool currently pins the renewal date."""
    return renewal.pool_override(get_bound_pool(session, sub)) is not None


def effective_next_renewal(session: Session, sub: Subscription) -> datetime:
    """Next renewal date after the pool override."""
    return renewal.compute_next_renewal(sub, get_bound_pool(session, sub))


def baseline_next_renewal(session: Session, sub: Subscription) -> datetime:
    """Formula date ignoring any manual override, after the pool override."""
    return renewal.compute_next_renewal_without_custom(sub, get_bound_pool(session, sub))


def sync_renewal_with_pool(
    session: Session,
    sub: Subscription,
    reason: str,
    now: datetime,
) -> None:
    """Recompute next_renewal_at after a pool link or unlink.

    Runs inside the caller's transaction. Subscriptions that no longer carry
    a schedule (completed, canceled, archived) are left alone.
    """
    if not is_scheduled(sub.status):
        return

    previous = sub.next_renewal_at
    pool = get_bound_pool(session, sub)
    sub.next_renewal_at = renewal.compute_next_renewal(sub, pool)
    sub.updated_at = now
    session.add(sub)

    record_event(
        session,
        sub.id,
        SubscriptionEventType.updated,
        now,
        reason=reason,
        previous_next_renewal_at=previous,
        new_next_renewal_at=sub.next_renewal_at,
        pool_id=sub.resource_pool_id,
        pool_aware=renewal.pool_override(pool) is not None,
    )
    logger.info(
        "renewal_date_recalculated",
        subscription_id=str(sub.id),
        reason=reason,
        next_renewal_at=sub.next_renewal_at.isoformat(),
    )
