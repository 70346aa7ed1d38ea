"""Status synchronizer.

Reconciles stored statuses with the clock:
- Pools past end_at become expired and stop being alive
- Active pools close to end_at become overdue
- Subscriptions past target_end_at are completed
- Subscriptions bound to a dead pool become overdue (reason pool_expired)
- Active subscriptions whose renewal date passed become overdue
  (reason renewal_due)

Each item is written in its own transaction with the same conditional
writes the API uses, so the sweep never overrides a change that landed
after it read the row. Running it twice in a row changes nothing the
second time. Per-item failures are logged and counted, not raised.

StatusSyncRunner repeats the sweep in the background of the API process;
the app lifespan owns the instance.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import update
from sqlmodel import Session, SQLModel, select

from seatpool import renewal
from seatpool.config import POOL_WARNING_HOURS, SWEEP_INTERVAL_SECONDS, SWEEP_RETRY_SECONDS
from seatpool.db.engine import atomic, get_session
from seatpool.db.models import (
    OverdueReason,
    PoolStatus,
    ResourcePool,
    Subscription,
    SubscriptionEventType,
    SubscriptionStatus,
    utcnow,
)
from seatpool.lifecycle import SWEEPABLE_STATUSES, LifecycleAction
from seatpool.logging import get_logger, with_context

from api.services.pool_awareness import get_bound_pool
from api.services.subscription_events import record_event
from api.services.subscription_service import apply_transition

logger = get_logger(__name__)

LIVE_POOL_STATUSES = (PoolStatus.active, PoolStatus.overdue)


class SweepResult(SQLModel):
    """Counters reported by one sweep."""

    pools_expired: int = 0
    pools_marked_overdue: int = 0
    subscriptions_marked_overdue: int = 0
    subscriptions_completed: int = 0
    failures: int = 0


class StatusSyncService:
    """Service running the status reconciliation sweep."""

    def run_sweep(self, session: Session, now: Optional[datetime] = None) -> SweepResult:
        """Run every reconciliation step once.

        Returns:
            SweepResult with the number of rows each step changed
        """
        now = now or utcnow()
        result = SweepResult()

        ctx = with_context(operation="status_sweep", sweep_at=now.isoformat())
        try:
            self._expire_pools(session, now, result)
            self._flag_ending_pools(session, now, result)
            self._auto_complete(session, now, result)
            self._mark_dead_pool_subscriptions(session, now, result)
            self._mark_renewals_due(session, now, result)
            logger.info("status_sweep_finished", **result.model_dump())
        finally:
            structlog.contextvars.unbind_contextvars(*ctx)
        return result

    # ==========================================================================
    # Pools
    # ==========================================================================

    def _expire_pools(self, session: Session, now: datetime, result: SweepResult) -> None:
        pool_ids = session.exec(
            select(ResourcePool.id).where(
                ResourcePool.end_at < now,
                ResourcePool.status.in_(LIVE_POOL_STATUSES),
            )
        ).all()

        for pool_id in pool_ids:
            try:
                with atomic(session):
                    changed = session.execute(
                        update(ResourcePool)
                        .where(
                            ResourcePool.id == pool_id,
                            ResourcePool.end_at < now,
                            ResourcePool.status.in_(LIVE_POOL_STATUSES),
                        )
                        .values(status=PoolStatus.expired, is_alive=False, updated_at=now)
                    ).rowcount
            except Exception:
                logger.exception("pool_expiry_failed", pool_id=str(pool_id))
                result.failures += 1
                continue

            if changed:
                result.pools_expired += 1
                logger.info("pool_expired", pool_id=str(pool_id))

    def _flag_ending_pools(self, session: Session, now: datetime, result: SweepResult) -> None:
        horizon = now + timedelta(hours=POOL_WARNING_HOURS)
        pool_ids = session.exec(
            select(ResourcePool.id).where(
                ResourcePool.status == PoolStatus.active,
                ResourcePool.end_at >= now,
                ResourcePool.end_at <= horizon,
            )
        ).all()

        for pool_id in pool_ids:
            try:
                with atomic(session):
                    changed = session.execute(
                        update(ResourcePool)
                        .where(
                            ResourcePool.id == pool_id,
                            ResourcePool.status == PoolStatus.active,
                        )
                        .values(status=PoolStatus.overdue, updated_at=now)
                    ).rowcount
            except Exception:
                logger.exception("pool_overdue_failed", pool_id=str(pool_id))
                result.failures += 1
                continue

            if changed:
                result.pools_marked_overdue += 1
                logger.info("pool_marked_overdue", pool_id=str(pool_id))

    # ==========================================================================
    # Subscriptions
    # ==========================================================================

    def _auto_complete(self, session: Session, now: datetime, result: SweepResult) -> None:
        subs = session.exec(
            select(Subscription).where(
                Subscription.status.in_(list(SWEEPABLE_STATUSES)),
                Subscription.target_end_at.is_not(None),
                Subscription.target_end_at < now,
            )
        ).all()

        for sub in subs:
            sub_id = sub.id
            try:
                with atomic(session):
                    previous_status = sub.status
                    changed = apply_transition(
                        session,
                        sub,
                        LifecycleAction.auto_complete,
                        now,
                        next_renewal_at=None,
                        overdue_reason=None,
                    )
                    if changed:
                        record_event(
                            session,
                            sub.id,
                            SubscriptionEventType.completed,
                            now,
                            previous_status=previous_status,
                            iterations_done=sub.iterations_done,
                            target_end_at=sub.target_end_at,
                            auto_completed=True,
                        )
            except Exception:
                logger.exception("subscription_auto_complete_failed", subscription_id=str(sub_id))
                result.failures += 1
                continue

            if changed:
                result.subscriptions_completed += 1
                logger.info("subscription_auto_completed", subscription_id=str(sub_id))

    def _mark_dead_pool_subscriptions(
        self, session: Session, now: datetime, result: SweepResult
    ) -> None:
        dead_pools = select(ResourcePool.id).where(ResourcePool.is_alive == False)  # noqa: E712
        subs = session.exec(
            select(Subscription).where(
                Subscription.status.in_(list(SWEEPABLE_STATUSES)),
                Subscription.resource_pool_id.in_(dead_pools),
            )
        ).all()

        for sub in subs:
            sub_id = sub.id
            if sub.overdue_reason == OverdueReason.pool_expired:
                continue
            try:
                with atomic(session):
                    previous_status = sub.status
                    pool_id = sub.resource_pool_id
                    # The dead pool no longer pins the date
                    next_renewal_at = renewal.compute_next_renewal(sub, get_bound_pool(session, sub))
                    changed = apply_transition(
                        session,
                        sub,
                        LifecycleAction.pool_expired,
                        now,
                        overdue_reason=OverdueReason.pool_expired,
                        next_renewal_at=next_renewal_at,
                    )
                    if changed:
                        record_event(
                            session,
                            sub.id,
                            SubscriptionEventType.overdue,
                            now,
                            reason=OverdueReason.pool_expired,
                            previous_status=previous_status,
                            pool_id=pool_id,
                            next_renewal_at=next_renewal_at,
                        )
            except Exception:
                logger.exception("subscription_pool_expired_failed", subscription_id=str(sub_id))
                result.failures += 1
                continue

            if changed:
                result.subscriptions_marked_overdue += 1
                logger.info(
                    "subscription_marked_overdue",
                    subscription_id=str(sub_id),
                    reason=OverdueReason.pool_expired.value,
                )

    def _mark_renewals_due(self, session: Session, now: datetime, result: SweepResult) -> None:
        subs = session.exec(
            select(Subscription).where(Subscription.status == SubscriptionStatus.active)
        ).all()

        for sub in subs:
            sub_id = sub.id
            try:
                with atomic(session):
                    pool = get_bound_pool(session, sub)
                    if not renewal.is_renewal_overdue(sub, now, pool):
                        continue
                    changed = apply_transition(
                        session,
                        sub,
                        LifecycleAction.renewal_due,
                        now,
                        overdue_reason=OverdueReason.renewal_due,
                    )
                    if changed:
                        record_event(
                            session,
                            sub.id,
                            SubscriptionEventType.overdue,
                            now,
                            reason=OverdueReason.renewal_due,
                            previous_status=SubscriptionStatus.active,
                            next_renewal_at=renewal.compute_next_renewal(sub, pool),
                        )
            except Exception:
                logger.exception("subscription_renewal_due_failed", subscription_id=str(sub_id))
                result.failures += 1
                continue

            if changed:
                result.subscriptions_marked_overdue += 1
                logger.info(
                    "subscription_marked_overdue",
                    subscription_id=str(sub_id),
                    reason=OverdueReason.renewal_due.value,
                )


def run_status_sweep(now: Optional[datetime] = None) -> SweepResult:
    """Run one sweep on a fresh session."""
    with get_session() as session:
        return StatusSyncService().run_sweep(session, now=now)


class StatusSyncRunner:
    """Background task repeating the sweep every SWEEP_INTERVAL_SECONDS."""

    def __init__(
        self,
        interval_seconds: int = SWEEP_INTERVAL_SECONDS,
        retry_seconds: int = SWEEP_RETRY_SECONDS,
    ):
        self.interval_seconds = interval_seconds
        self.retry_seconds = retry_seconds
        self.running = False
        self.task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the background loop."""
        if self.running:
            logger.warning("status_sync_already_running")
            return

        self.running = True
        self.task = asyncio.create_task(self._run_loop())
        logger.info("status_sync_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop the background loop."""
        if not self.running:
            return

        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        self.task = None
        logger.info("status_sync_stopped")

    async def _run_loop(self) -> None:
        while self.running:
            try:
                # The sweep uses blocking database calls
                await asyncio.to_thread(run_status_sweep)
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                logger.info("status_sync_cancelled")
                break
            except Exception:
                logger.exception("status_sync_loop_failed", retry_seconds=self.retry_seconds)
                await asyncio.sleep(self.retry_seconds)
