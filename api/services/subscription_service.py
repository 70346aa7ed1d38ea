"""Subscription service.

Provides:
- Subscription creation, update, deletion and queries
- Lifecycle operations (renew, overdue, complete, archive, revert, pause,
  resume, cancel) validated against seatpool.lifecycle
- Manual renewal-date overrides
- Linking to and unlinking from resource pools

Every status change is a conditional write keyed on the status and
updated_at the caller read, written in the same transaction as its event.
A concurrent writer that got there first turns the change into a no-op
(the status sweep) or an InvalidState error (API callers).
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import delete, update
from sqlmodel import Session, select

from seatpool import renewal
from seatpool.db.engine import atomic
from seatpool.db.models import (
    OverdueReason,
    ResourcePool,
    SeatAssignment,
    Subscription,
    SubscriptionCreate,
    SubscriptionEvent,
    SubscriptionEventType,
    SubscriptionStatus,
    SubscriptionUpdate,
    utcnow,
)
from seatpool.lifecycle import (
    LifecycleAction,
    allowed_sources,
    can_apply,
    can_link,
    is_scheduled,
    target_status,
)
from seatpool.logging import get_logger

from api.exceptions import (
    IntegrityViolation,
    InvalidDateRange,
    InvalidState,
    PoolOverrideActive,
    SubscriptionNotFound,
    ValidationError,
)
from api.services.pool_awareness import (
    baseline_next_renewal,
    effective_next_renewal,
    get_bound_pool,
    has_live_pool,
    sync_renewal_with_pool,
)
from api.services.seat_service import SeatService
from api.services.subscription_events import latest_event, list_events, record_event

logger = get_logger(__name__)


def apply_transition(
    session: Session,
    sub: Subscription,
    action: LifecycleAction,
    now: datetime,
    target: Optional[SubscriptionStatus] = None,
    **values: Any,
) -> bool:
    """Conditionally move a subscription to the status an action leads to.

    The UPDATE only matches if status and updated_at are still what `sub`
    holds. Returns False, leaving the row untouched, when another writer
    changed it first. Does not commit.
    """
    current = sub.status
    if target is None:
        target = target_status(current, action)

    result = session.execute(
        update(Subscription)
        .where(
            Subscription.id == sub.id,
            Subscription.status == current,
            Subscription.updated_at == sub.updated_at,
        )
        .values(status=target, updated_at=now, **values)
    )
    session.refresh(sub)
    return result.rowcount == 1


class SubscriptionService:
    """Service for subscriptions and their lifecycle."""

    def __init__(self, seat_service: Optional[SeatService] = None):
        self.seats = seat_service or SeatService()

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def get_subscription(self, session: Session, subscription_id: UUID) -> Subscription:
        sub = session.get(Subscription, subscription_id)
        if not sub:
            raise SubscriptionNotFound(subscription_id)
        return sub

    def _require(self, sub: Subscription, action: LifecycleAction) -> None:
        if not can_apply(sub.status, action):
            raise InvalidState(
                f"Cannot {action.value.replace('_', ' ')} a subscription that is {sub.status.value}",
                current_status=sub.status.value,
                allowed=allowed_sources(action),
            )

    def _transition(
        self,
        session: Session,
        sub: Subscription,
        action: LifecycleAction,
        now: datetime,
        target: Optional[SubscriptionStatus] = None,
        **values: Any,
    ) -> None:
        """apply_transition for API callers: losing the race is an error."""
        expected = sub.status
        if not apply_transition(session, sub, action, now, target=target, **values):
            raise InvalidState(
                f"Subscription {sub.id} changed while applying {action.value}",
                current_status=sub.status.value,
                allowed=[expected.value],
                error_code="CONCURRENT_MODIFICATION",
            )

    # ==========================================================================
    # Create / update / delete
    # ==========================================================================

    def create_subscription(
        self,
        session: Session,
        data: SubscriptionCreate,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Create an active subscription with its first renewal date.

        Raises:
            InvalidDateRange: If target_end_at is not after started_at
        """
        now = now or utcnow()
        started_at = data.started_at or now
        if data.target_end_at is not None and data.target_end_at <= started_at:
            raise InvalidDateRange(
                "target_end_at must be after started_at",
                details={
                    "started_at": started_at.isoformat(),
                    "target_end_at": data.target_end_at.isoformat(),
                },
            )

        with atomic(session):
            sub = Subscription.model_validate(
                data,
                update={
                    "started_at": started_at,
                    "current_cycle_start_at": started_at,
                    "status": SubscriptionStatus.active,
                    "created_at": now,
                },
            )
            sub.next_renewal_at = renewal.compute_next_renewal(sub)
            session.add(sub)
            session.flush()
            record_event(
                session,
                sub.id,
                SubscriptionEventType.created,
                now,
                sale_id=sub.sale_id,
                strategy=sub.strategy,
                interval_days=sub.interval_days,
                next_renewal_at=sub.next_renewal_at,
            )

        session.refresh(sub)
        logger.info(
            "subscription_created",
            subscription_id=str(sub.id),
            client_id=str(sub.client_id),
            strategy=sub.strategy.value,
        )
        return sub

    def update_subscription(
        self,
        session: Session,
        subscription_id: UUID,
        changes: SubscriptionUpdate,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Edit notes, cadence or target end. A cadence change re-plans the next renewal."""
        now = now or utcnow()
        updates = changes.model_dump(exclude_unset=True)
        if updates.get("strategy") is None:
            updates.pop("strategy", None)

        with atomic(session):
            sub = self.get_subscription(session, subscription_id)
            target_end_at = updates.get("target_end_at", sub.target_end_at)
            if target_end_at is not None and target_end_at <= sub.started_at:
                raise InvalidDateRange(
                    "target_end_at must be after started_at",
                    details={
                        "started_at": sub.started_at.isoformat(),
                        "target_end_at": target_end_at.isoformat(),
                    },
                )

            previous = sub.next_renewal_at
            for key, value in updates.items():
                setattr(sub, key, value)
            if is_scheduled(sub.status) and {"strategy", "interval_days"} & updates.keys():
                sub.next_renewal_at = effective_next_renewal(session, sub)
            sub.updated_at = now
            session.add(sub)

            record_event(
                session,
                sub.id,
                SubscriptionEventType.updated,
                now,
                reason="fields_changed",
                fields=sorted(updates),
                previous_next_renewal_at=previous,
                new_next_renewal_at=sub.next_renewal_at,
            )

        logger.info("subscription_updated", subscription_id=str(sub.id), fields=sorted(updates))
        return sub

    def delete_subscription(
        self,
        session: Session,
        subscription_id: UUID,
        now: Optional[datetime] = None,
    ) -> None:
        """Delete a subscription and its history, releasing its seat first."""
        now = now or utcnow()
        with atomic(session):
            sub = self.get_subscription(session, subscription_id)
            if sub.resource_pool_seat_id is not None:
                seat = self.seats.get_seat(session, sub.resource_pool_seat_id)
                pool = self.seats.lock_pool(session, seat.pool_id)
                self.seats.detach_seat(session, pool, seat, now)
                self.seats.check_pool_integrity(session, pool)

            session.execute(
                delete(SubscriptionEvent).where(SubscriptionEvent.subscription_id == sub.id)
            )
            session.delete(sub)

        logger.info("subscription_deleted", subscription_id=str(subscription_id))

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    def renew_now(
        self,
        session: Session,
        subscription_id: UUID,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Start a new cycle at `now`.

        Raises:
            InvalidState: If the subscription is completed, canceled or archived
        """
        now = now or utcnow()
        with atomic(session):
            sub = self.get_subscription(session, subscription_id)
            self._require(sub, LifecycleAction.renew)

            pool = get_bound_pool(session, sub)
            previous = sub.next_renewal_at
            patch = renewal.on_renew(sub, now, pool)
            self._transition(
                session,
                sub,
                LifecycleAction.renew,
                now,
                overdue_reason=None,
                **patch.as_dict(),
            )
            record_event(
                session,
                sub.id,
                SubscriptionEventType.renewed,
                now,
                renewal_number=patch.iterations_done,
                renewed_at=now,
                previous_next_renewal_at=previous,
                next_renewal_at=patch.next_renewal_at,
                strategy=sub.strategy,
                interval_days=sub.interval_days,
                pool_id=sub.resource_pool_id,
                pool_aware=renewal.pool_override(pool) is not None,
            )

        logger.info(
            "subscription_renewed",
            subscription_id=str(sub.id),
            iterations_done=sub.iterations_done,
            next_renewal_at=sub.next_renewal_at.isoformat(),
        )
        return sub

    def mark_overdue(
        self,
        session: Session,
        subscription_id: UUID,
        now: Optional[datetime] = None,
        reason: OverdueReason = OverdueReason.manual,
    ) -> Subscription:
        now = now or utcnow()
        with atomic(session):
            sub = self.get_subscription(session, subscription_id)
            self._require(sub, LifecycleAction.mark_overdue)
            previous_status = sub.status
            self._transition(session, sub, LifecycleAction.mark_overdue, now, overdue_reason=reason)
            record_event(
                session,
                sub.id,
                SubscriptionEventType.overdue,
                now,
                reason=reason,
                previous_status=previous_status,
                next_renewal_at=sub.next_renewal_at,
            )

        logger.info("subscription_marked_overdue", subscription_id=str(sub.id), reason=reason.value)
        return sub

    def complete(
        self,
        session: Session,
        subscription_id: UUID,
        now: Optional[datetime] = None,
    ) -> Subscription:
        now = now or utcnow()
        with atomic(session):
            sub = self.get_subscription(session, subscription_id)
            self._require(sub, LifecycleAction.complete)
            previous_status = sub.status
            self._transition(
                session,
                sub,
                LifecycleAction.complete,
                now,
                next_renewal_at=None,
                overdue_reason=None,
            )
            record_event(
                session,
                sub.id,
                SubscriptionEventType.completed,
                now,
                previous_status=previous_status,
                iterations_done=sub.iterations_done,
                auto_completed=False,
            )

        logger.info("subscription_completed", subscription_id=str(sub.id))
        return sub

    def archive(
        self,
        session: Session,
        subscription_id: UUID,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Archive a subscription, remembering its status for revert.

        A linked seat stays assigned.
        """
        now = now or utcnow()
        with atomic(session):
            sub = self.get_subscription(session, subscription_id)
            self._require(sub, LifecycleAction.archive)
            previous_status = sub.status
            previous_reason = sub.overdue_reason
            self._transition(
                session,
                sub,
                LifecycleAction.archive,
                now,
                next_renewal_at=None,
                overdue_reason=None,
            )
            record_event(
                session,
                sub.id,
                SubscriptionEventType.archived,
                now,
                previous_status=previous_status,
                previous_overdue_reason=previous_reason,
                pool_id=sub.resource_pool_id,
                seat_id=sub.resource_pool_seat_id,
            )

        logger.info(
            "subscription_archived",
            subscription_id=str(sub.id),
            previous_status=previous_status.value,
        )
        return sub

    def revert(
        self,
        session: Session,
        subscription_id: UUID,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Restore the status an archived subscription had before archiving.

        The renewal date is recomputed from the formula, ignoring any manual
        override, and pinned by a live pool.
        """
        now = now or utcnow()
        with atomic(session):
            sub = self.get_subscription(session, subscription_id)
            self._require(sub, LifecycleAction.revert)

            archived = latest_event(session, sub.id, SubscriptionEventType.archived)
            if archived is None or "previous_status" not in archived.meta:
                logger.critical("archive_record_missing", subscription_id=str(sub.id))
                raise IntegrityViolation(
                    f"Subscription {sub.id} is archived but has no archive record",
                    details={"subscription_id": str(sub.id)},
                )

            restored = SubscriptionStatus(archived.meta["previous_status"])
            reason = archived.meta.get("previous_overdue_reason")
            next_renewal_at = baseline_next_renewal(session, sub) if is_scheduled(restored) else None

            self._transition(
                session,
                sub,
                LifecycleAction.revert,
                now,
                target=restored,
                next_renewal_at=next_renewal_at,
                overdue_reason=OverdueReason(reason) if restored == SubscriptionStatus.overdue and reason else None,
            )
            record_event(
                session,
                sub.id,
                SubscriptionEventType.reverted,
                now,
                previous_status=SubscriptionStatus.archived,
                restored_status=restored,
                new_next_renewal_at=next_renewal_at,
                strategy=sub.strategy,
                pool_aware=has_live_pool(session, sub),
            )

        logger.info(
            "subscription_reverted",
            subscription_id=str(sub.id),
            restored_status=restored.value,
        )
        return sub

    def pause(
        self,
        session: Session,
        subscription_id: UUID,
        now: Optional[datetime] = None,
    ) -> Subscription:
        now = now or utcnow()
        with atomic(session):
            sub = self.get_subscription(session, subscription_id)
            self._require(sub, LifecycleAction.pause)
            previous_status = sub.status
            self._transition(session, sub, LifecycleAction.pause, now, overdue_reason=None)
            record_event(
                session,
                sub.id,
                SubscriptionEventType.paused,
                now,
                previous_status=previous_status,
            )

        logger.info("subscription_paused", subscription_id=str(sub.id))
        return sub

    def resume(
        self,
        session: Session,
        subscription_id: UUID,
        now: Optional[datetime] = None,
    ) -> Subscription:
        now = now or utcnow()
        with atomic(session):
            sub = self.get_subscription(session, subscription_id)
            self._require(sub, LifecycleAction.resume)
            next_renewal_at = effective_next_renewal(session, sub)
            self._transition(
                session, sub, LifecycleAction.resume, now, next_renewal_at=next_renewal_at
            )
            record_event(
                session,
                sub.id,
                SubscriptionEventType.resumed,
                now,
                next_renewal_at=next_renewal_at,
            )

        logger.info("subscription_resumed", subscription_id=str(sub.id))
        return sub

    def cancel(
        self,
        session: Session,
        subscription_id: UUID,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Cancel a subscription. Only archive is possible afterwards."""
        now = now or utcnow()
        with atomic(session):
            sub = self.get_subscription(session, subscription_id)
            self._require(sub, LifecycleAction.cancel)
            previous_status = sub.status
            self._transition(
                session,
                sub,
                LifecycleAction.cancel,
                now,
                next_renewal_at=None,
                overdue_reason=None,
            )
            record_event(
                session,
                sub.id,
                SubscriptionEventType.canceled,
                now,
                previous_status=previous_status,
            )

        logger.info("subscription_canceled", subscription_id=str(sub.id))
        return sub

    # ==========================================================================
    # Manual renewal date
    # ==========================================================================

    def set_custom_renewal_date(
        self,
        session: Session,
        subscription_id: UUID,
        when: datetime,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Override the next renewal date until the next renewal.

        Raises:
            PoolOverrideActive: If a live pool pins the renewal date
            InvalidDateRange: If the date is not after the current cycle start
        """
        now = now or utcnow()
        with atomic(session):
            sub = self.get_subscription(session, subscription_id)
            self._require(sub, LifecycleAction.set_custom_date)
            if has_live_pool(session, sub):
                raise PoolOverrideActive(sub.id, sub.resource_pool_id, sub.status.value)
            if when <= sub.current_cycle_start_at:
                raise InvalidDateRange(
                    "Custom renewal date must be after the current cycle start",
                    details={
                        "current_cycle_start_at": sub.current_cycle_start_at.isoformat(),
                        "custom_next_renewal_at": when.isoformat(),
                    },
                )

            previous = sub.next_renewal_at
            self._transition(
                session,
                sub,
                LifecycleAction.set_custom_date,
                now,
                custom_next_renewal_at=when,
                next_renewal_at=when,
            )
            record_event(
                session,
                sub.id,
                SubscriptionEventType.custom_date_set,
                now,
                previous_next_renewal_at=previous,
                custom_next_renewal_at=when,
            )

        logger.info(
            "custom_renewal_date_set",
            subscription_id=str(sub.id),
            custom_next_renewal_at=when.isoformat(),
        )
        return sub

    def clear_custom_renewal_date(
        self,
        session: Session,
        subscription_id: UUID,
        now: Optional[datetime] = None,
    ) -> Subscription:
        now = now or utcnow()
        with atomic(session):
            sub = self.get_subscription(session, subscription_id)
            self._require(sub, LifecycleAction.clear_custom_date)

            previous = sub.next_renewal_at
            cleared = sub.custom_next_renewal_at
            next_renewal_at = baseline_next_renewal(session, sub)
            self._transition(
                session,
                sub,
                LifecycleAction.clear_custom_date,
                now,
                custom_next_renewal_at=None,
                next_renewal_at=next_renewal_at,
            )
            record_event(
                session,
                sub.id,
                SubscriptionEventType.custom_date_cleared,
                now,
                cleared_custom_next_renewal_at=cleared,
                previous_next_renewal_at=previous,
                new_next_renewal_at=next_renewal_at,
            )

        logger.info("custom_renewal_date_cleared", subscription_id=str(sub.id))
        return sub

    # ==========================================================================
    # Pool linking
    # ==========================================================================

    def link_subscription_to_pool(
        self,
        session: Session,
        subscription_id: UUID,
        pool_id: UUID,
        seat_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Seat a subscription in a pool.

        Without seat_id the lowest free seat is taken. The renewal date is
        re-pinned in the same transaction as the seat assignment.
        """
        sub = self.get_subscription(session, subscription_id)
        if not can_link(sub.status):
            raise InvalidState(
                f"Cannot link a subscription that is {sub.status.value}",
                current_status=sub.status.value,
                allowed=sorted(s.value for s in SubscriptionStatus if can_link(s)),
            )

        assignment = SeatAssignment(subscription_id=sub.id, client_id=sub.client_id)
        if seat_id is None:
            self.seats.assign_next_free_seat(session, pool_id, assignment, now=now)
        else:
            seat = self.seats.get_seat(session, seat_id)
            if seat.pool_id != pool_id:
                raise ValidationError(
                    f"Seat {seat_id} does not belong to pool {pool_id}",
                    details={"seat_id": str(seat_id), "pool_id": str(pool_id)},
                )
            self.seats.assign_seat(session, seat_id, assignment, now=now)

        session.refresh(sub)
        return sub

    def unlink_subscription_from_pool(
        self,
        session: Session,
        subscription_id: UUID,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Release the subscription's seat. Unlinked subscriptions are left as they are."""
        now = now or utcnow()
        sub = self.get_subscription(session, subscription_id)

        if sub.resource_pool_seat_id is not None:
            self.seats.release_seat(session, sub.resource_pool_seat_id, now=now)
        elif sub.resource_pool_id is not None:
            with atomic(session):
                sub.resource_pool_id = None
                sync_renewal_with_pool(session, sub, "pool_unlinked", now)
        else:
            logger.debug("subscription_not_linked", subscription_id=str(sub.id))

        session.refresh(sub)
        return sub

    # ==========================================================================
    # Queries
    # ==========================================================================

    def list_subscriptions(
        self,
        session: Session,
        status: Optional[SubscriptionStatus] = None,
        client_id: Optional[UUID] = None,
        pool_id: Optional[UUID] = None,
    ) -> list[Subscription]:
        stmt = select(Subscription)
        if status:
            stmt = stmt.where(Subscription.status == status)
        if client_id:
            stmt = stmt.where(Subscription.client_id == client_id)
        if pool_id:
            stmt = stmt.where(Subscription.resource_pool_id == pool_id)
        stmt = stmt.order_by(Subscription.next_renewal_at, Subscription.created_at)
        return list(session.exec(stmt).all())

    def get_next_renewal(self, session: Session, subscription_id: UUID) -> datetime:
        """Effective next renewal date, live pool override applied."""
        sub = self.get_subscription(session, subscription_id)
        return effective_next_renewal(session, sub)

    def get_subscription_history(
        self, session: Session, subscription_id: UUID
    ) -> list[SubscriptionEvent]:
        """All events, newest first."""
        self.get_subscription(session, subscription_id)
        return list_events(session, subscription_id)

    def get_renewal_history(
        self, session: Session, subscription_id: UUID
    ) -> list[SubscriptionEvent]:
        self.get_subscription(session, subscription_id)
        return list_events(session, subscription_id, SubscriptionEventType.renewed)

    def get_pool_for_subscription(
        self, session: Session, subscription_id: UUID
    ) -> Optional[ResourcePool]:
        sub = self.get_subscription(session, subscription_id)
        return get_bound_pool(session, sub)

    def get_due_buckets(
        self, session: Session, now: Optional[datetime] = None
    ) -> dict[str, list[Subscription]]:
        """Active subscriptions grouped by how soon they renew."""
        now = now or utcnow()
        buckets: dict[str, list[Subscription]] = {
            "due_today": [],
            "due_in_3_days": [],
            "overdue": [],
        }
        keys = {"due_today": "due_today", "due_soon": "due_in_3_days", "overdue": "overdue"}

        for sub in self.list_subscriptions(session, status=SubscriptionStatus.active):
            bucket = renewal.due_bucket(effective_next_renewal(session, sub), now)
            if bucket:
                buckets[keys[bucket]].append(sub)
        return buckets
