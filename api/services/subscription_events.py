"""Append-only subscription event log.

Events document every lifecycle change. They are written in the same
transaction as the change they describe and are never updated.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from sqlmodel import Session, select

from seatpool.db.models import SubscriptionEvent, SubscriptionEventType


def _jsonable(value: Any) -> Any:
    """Convert a metadata value to something the JSON column accepts."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def record_event(
    session: Session,
    subscription_id: UUID,
    event_type: SubscriptionEventType,
    at: datetime,
    **meta: Any,
) -> SubscriptionEvent:
    """Add an event to the session. The caller commits."""
    event = SubscriptionEvent(
        subscription_id=subscription_id,
        type=event_type,
        at=at,
        meta=_jsonable(meta),
    )
    session.add(event)
    return event


def list_events(
    session: Session,
    subscription_id: UUID,
    event_type: Optional[SubscriptionEventType] = None,
) -> list[SubscriptionEvent]:
    """Events for a subscription, newest first."""
    stmt = select(SubscriptionEvent).where(
        SubscriptionEvent.subscription_id == subscription_id
    )
    if event_type is not None:
        stmt = stmt.where(SubscriptionEvent.type == event_type)
    stmt = stmt.order_by(SubscriptionEvent.at.desc(), SubscriptionEvent.created_at.desc())
    return list(session.exec(stmt).all())


def latest_event(
    session: Session,
    subscription_id: UUID,
    event_type: SubscriptionEventType,
) -> Optional[SubscriptionEvent]:
    """Most recent event of a given type, if any."""
    events = list_events(session, subscription_id, event_type)
    return events[0] if events else None
