"""Resource pool service.

Provides:
- Pool creation (with its initial seats), update and resize
- Archiving (single and bulk) and hard deletion
- Listing with filters, stats and seat-holder search
"""

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlmodel import Session, select

from seatpool.db.engine import atomic
from seatpool.db.models import (
    AssignmentRead,
    PoolSeat,
    PoolSeatRead,
    PoolStats,
    PoolStatus,
    PoolType,
    ResourcePool,
    ResourcePoolCreate,
    ResourcePoolRead,
    ResourcePoolUpdate,
    ResourcePoolWithSeats,
    SeatStatus,
    Subscription,
    to_naive_utc,
    utcnow,
)
from seatpool.logging import get_logger

from api.exceptions import InvalidDateRange, PoolNotFound, ValidationError
from api.services.pool_awareness import sync_renewal_with_pool
from api.services.seat_service import SeatService

logger = get_logger(__name__)

TIME_BUCKETS = ("today", "3days", "overdue", "expired")


def _validate_window(start_at: datetime, end_at: datetime) -> None:
    if end_at <= start_at:
        raise InvalidDateRange(
            "end_at must be after start_at",
            details={"start_at": start_at.isoformat(), "end_at": end_at.isoformat()},
        )


class PoolService:
    """Service for resource pools."""

    def __init__(self, seat_service: Optional[SeatService] = None):
        self.seats = seat_service or SeatService()

    # ==========================================================================
    # Create / update
    # ==========================================================================

    def create_pool(self, session: Session, data: ResourcePoolCreate) -> ResourcePool:
        """Create a pool and its seats 1..max_seats in one transaction.

        Raises:
            InvalidDateRange: If end_at is not after start_at
        """
        _validate_window(data.start_at, data.end_at)

        with atomic(session):
            pool = ResourcePool.model_validate(data)
            session.add(pool)
            session.flush()
            self.seats.init_seats(session, pool, data.max_seats)

        session.refresh(pool)
        logger.info(
            "pool_created",
            pool_id=str(pool.id),
            provider=pool.provider,
            pool_type=pool.pool_type.value,
            max_seats=pool.max_seats,
        )
        return pool

    def get_pool(self, session: Session, pool_id: UUID) -> ResourcePool:
        pool = session.get(ResourcePool, pool_id)
        if not pool:
            raise PoolNotFound(pool_id)
        return pool

    def resize_pool(
        self, session: Session, pool_id: UUID, new_max: int
    ) -> ResourcePool:
        """Change the number of seats.

        The pool row stays locked while the seat set is read and changed.

        Raises:
            PoolNotFound: If the pool does not exist
            InsufficientFreeSeats: If shrinking would evict an assigned seat
        """
        with atomic(session):
            pool = self.seats.lock_pool(session, pool_id)
            previous = pool.max_seats
            self.seats.resize_seats(session, pool, new_max)
            self.seats.check_pool_integrity(session, pool)

        logger.info(
            "pool_resized",
            pool_id=str(pool_id),
            previous_max_seats=previous,
            max_seats=new_max,
        )
        return pool

    def update_pool(
        self,
        session: Session,
        pool_id: UUID,
        changes: ResourcePoolUpdate,
        now: Optional[datetime] = None,
    ) -> ResourcePool:
        """Update pool attributes.

        A max_seats change goes through the resize rules. Changing end_at or
        is_alive re-pins the renewal date of the subscriptions bound to it.
        """
        now = now or utcnow()
        # Only the free-text fields may be cleared
        updates = {
            key: value
            for key, value in changes.model_dump(exclude_unset=True).items()
            if value is not None or key in ("login_secret", "notes")
        }

        with atomic(session):
            pool = self.seats.lock_pool(session, pool_id)
            _validate_window(
                updates.get("start_at") or pool.start_at,
                updates.get("end_at") or pool.end_at,
            )

            new_max = updates.pop("max_seats", None)
            if new_max is not None and new_max != pool.max_seats:
                self.seats.resize_seats(session, pool, new_max)

            repin = any(
                key in updates and updates[key] != getattr(pool, key)
                for key in ("end_at", "is_alive")
            )
            for key, value in updates.items():
                setattr(pool, key, value)
            pool.updated_at = now
            session.add(pool)

            if repin:
                for sub in self._bound_subscriptions(session, pool.id):
                    sync_renewal_with_pool(session, sub, "pool_updated", now)
            self.seats.check_pool_integrity(session, pool)

        logger.info("pool_updated", pool_id=str(pool_id), fields=sorted(updates))
        return pool

    # ==========================================================================
    # Archive / delete
    # ==========================================================================

    def archive_pool(
        self, session: Session, pool_id: UUID, now: Optional[datetime] = None
    ) -> ResourcePool:
        """Retire a pool: expired and no longer alive.

        Seats stay as they are. Bound subscriptions stop being pinned to the
        pool end right away and are moved to overdue by the next status
        sweep.
        """
        now = now or utcnow()
        with atomic(session):
            pool = self.seats.lock_pool(session, pool_id)
            self._retire(session, pool, now)

        logger.info("pool_archived", pool_id=str(pool_id))
        return pool

    def bulk_archive_pools(
        self, session: Session, pool_ids: list[UUID], now: Optional[datetime] = None
    ) -> list[ResourcePool]:
        """Archive several pools. Unknown ids fail the whole batch."""
        now = now or utcnow()
        archived = []
        with atomic(session):
            for pool_id in pool_ids:
                pool = self.seats.lock_pool(session, pool_id)
                self._retire(session, pool, now)
                archived.append(pool)

        logger.info("pools_archived", count=len(archived))
        return archived

    def delete_pool(
        self, session: Session, pool_id: UUID, now: Optional[datetime] = None
    ) -> None:
        """Delete a pool and its seats.

        Subscriptions holding a seat are unlinked first and fall back to
        their own renewal schedule.
        """
        now = now or utcnow()
        with atomic(session):
            pool = self.seats.lock_pool(session, pool_id)
            seats = session.exec(select(PoolSeat).where(PoolSeat.pool_id == pool.id)).all()

            unlinked = 0
            for seat in seats:
                if seat.seat_status == SeatStatus.available:
                    continue
                if self.seats.detach_seat(session, pool, seat, now) is not None:
                    unlinked += 1
            for sub in self._bound_subscriptions(session, pool.id):
                sub.resource_pool_id = None
                sub.resource_pool_seat_id = None
                sync_renewal_with_pool(session, sub, "pool_unlinked", now)
                unlinked += 1

            session.flush()
            for seat in seats:
                session.delete(seat)
            session.flush()
            session.delete(pool)

        logger.info("pool_deleted", pool_id=str(pool_id), subscriptions_unlinked=unlinked)

    def _retire(self, session: Session, pool: ResourcePool, now: datetime) -> None:
        was_alive = pool.is_alive
        pool.status = PoolStatus.expired
        pool.is_alive = False
        pool.updated_at = now
        session.add(pool)
        if was_alive:
            for sub in self._bound_subscriptions(session, pool.id):
                sync_renewal_with_pool(session, sub, "pool_archived", now)

    def _bound_subscriptions(self, session: Session, pool_id: UUID) -> list[Subscription]:
        stmt = select(Subscription).where(Subscription.resource_pool_id == pool_id)
        return list(session.exec(stmt).all())

    # ==========================================================================
    # Queries
    # ==========================================================================

    def list_pools(
        self,
        session: Session,
        provider: Optional[str] = None,
        status: Optional[PoolStatus] = None,
        pool_type: Optional[PoolType] = None,
        alive: Optional[bool] = None,
        time_bucket: Optional[str] = None,
        start_after: Optional[datetime] = None,
        start_before: Optional[datetime] = None,
        end_after: Optional[datetime] = None,
        end_before: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> list[ResourcePool]:
        """List pools, soonest end first.

        time_bucket is one of:
        - today: ends today
        - 3days: ends within the next three days, today included
        - overdue: ended before today but still active or overdue
        - expired: status expired
        """
        stmt = select(ResourcePool)
        if provider:
            stmt = stmt.where(ResourcePool.provider == provider)
        if status:
            stmt = stmt.where(ResourcePool.status == status)
        if pool_type:
            stmt = stmt.where(ResourcePool.pool_type == pool_type)
        if alive is not None:
            stmt = stmt.where(ResourcePool.is_alive == alive)

        if time_bucket:
            if time_bucket not in TIME_BUCKETS:
                raise ValidationError(
                    f"Unknown time bucket '{time_bucket}'",
                    details={"allowed": list(TIME_BUCKETS)},
                )
            today = (now or utcnow()).replace(hour=0, minute=0, second=0, microsecond=0)
            if time_bucket == "today":
                stmt = stmt.where(
                    ResourcePool.end_at >= today,
                    ResourcePool.end_at < today + timedelta(days=1),
                )
            elif time_bucket == "3days":
                stmt = stmt.where(
                    ResourcePool.end_at >= today,
                    ResourcePool.end_at < today + timedelta(days=3),
                )
            elif time_bucket == "overdue":
                stmt = stmt.where(
                    ResourcePool.end_at < today,
                    ResourcePool.status.in_([PoolStatus.active, PoolStatus.overdue]),
                )
            else:
                stmt = stmt.where(ResourcePool.status == PoolStatus.expired)

        if start_after:
            stmt = stmt.where(ResourcePool.start_at >= to_naive_utc(start_after))
        if start_before:
            stmt = stmt.where(ResourcePool.start_at <= to_naive_utc(start_before))
        if end_after:
            stmt = stmt.where(ResourcePool.end_at >= to_naive_utc(end_after))
        if end_before:
            stmt = stmt.where(ResourcePool.end_at <= to_naive_utc(end_before))

        stmt = stmt.order_by(ResourcePool.end_at)
        return list(session.exec(stmt).all())

    def get_pool_with_seats(self, session: Session, pool_id: UUID) -> ResourcePoolWithSeats:
        pool = self.get_pool(session, pool_id)
        seats = self.seats.list_seats(session, pool_id)
        data = ResourcePoolRead.model_validate(pool).model_dump()
        data["seats"] = [PoolSeatRead.model_validate(s) for s in seats]
        return ResourcePoolWithSeats(**data)

    def get_pool_stats(self, session: Session, pool_id: UUID) -> PoolStats:
        """Seat counters for a pool, counted from the seat rows."""
        pool = self.get_pool(session, pool_id)
        rows = session.exec(
            select(PoolSeat.seat_status, func.count())
            .where(PoolSeat.pool_id == pool_id)
            .group_by(PoolSeat.seat_status)
        ).all()
        counts = {status: count for status, count in rows}
        assigned = counts.get(SeatStatus.assigned, 0)
        return PoolStats(
            total_seats=sum(counts.values()),
            used_seats=pool.used_seats,
            available_seats=counts.get(SeatStatus.available, 0),
            assigned_seats=assigned,
            reserved_seats=counts.get(SeatStatus.reserved, 0),
        )

    def search_pools_by_seat_email(self, session: Session, term: str) -> list[ResourcePool]:
        """Pools with a seat holder whose email contains the term (case-insensitive)."""
        if not term:
            return []
        pool_ids = select(PoolSeat.pool_id).where(
            PoolSeat.assigned_email.ilike(f"%{term}%")
        )
        stmt = (
            select(ResourcePool)
            .where(ResourcePool.id.in_(pool_ids))
            .order_by(ResourcePool.end_at)
        )
        return list(session.exec(stmt).all())

    def list_assignments(
        self,
        session: Session,
        pool_id: Optional[UUID] = None,
        provider: Optional[str] = None,
        email: Optional[str] = None,
    ) -> list[AssignmentRead]:
        """Assigned seats across pools, joined with their pool."""
        stmt = (
            select(PoolSeat, ResourcePool)
            .join(ResourcePool, PoolSeat.pool_id == ResourcePool.id)
            .where(PoolSeat.seat_status == SeatStatus.assigned)
        )
        if pool_id:
            stmt = stmt.where(PoolSeat.pool_id == pool_id)
        if provider:
            stmt = stmt.where(ResourcePool.provider == provider)
        if email:
            stmt = stmt.where(PoolSeat.assigned_email.ilike(f"%{email}%"))
        stmt = stmt.order_by(ResourcePool.end_at, PoolSeat.seat_index)

        return [
            AssignmentRead(
                seat_id=seat.id,
                seat_index=seat.seat_index,
                seat_status=seat.seat_status,
                assigned_email=seat.assigned_email,
                assigned_client_id=seat.assigned_client_id,
                assigned_subscription_id=seat.assigned_subscription_id,
                assigned_at=seat.assigned_at,
                pool_id=pool.id,
                provider=pool.provider,
                pool_type=pool.pool_type,
                login_email=pool.login_email,
                pool_end_at=pool.end_at,
                pool_status=pool.status,
            )
            for seat, pool in session.exec(stmt).all()
        ]
