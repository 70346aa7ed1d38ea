"""Seat allocation engine.

Provides:
- Seat creation and resizing for a pool
- Assigning a specific seat or the next free seat
- Releasing seats
- The used_seats consistency check

All seat_status and used_seats writes go through this module. Each
allocation locks the pool row for the duration of the transaction and
claims the seat with a conditional update, so two callers can never end
up holding the same seat. used_seats is moved with a single SQL UPDATE
rather than from the loaded row.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func, update
from sqlmodel import Session, select

from seatpool.db.engine import atomic
from seatpool.db.models import (
    PoolSeat,
    ResourcePool,
    SeatAssignment,
    SeatStatus,
    Subscription,
    utcnow,
)
from seatpool.logging import get_logger

from api.exceptions import (
    ConflictError,
    InsufficientFreeSeats,
    IntegrityViolation,
    PoolFull,
    PoolNotFound,
    SeatAlreadyAssigned,
    SeatNotFound,
    SubscriptionNotFound,
    ValidationError,
)
from api.services.pool_awareness import sync_renewal_with_pool

logger = get_logger(__name__)


class SeatService:
    """Service for seat allocation within resource pools."""

    # ==========================================================================
    # Building blocks (run inside the caller's transaction, never commit)
    # ==========================================================================

    def lock_pool(self, session: Session, pool_id: UUID) -> ResourcePool:
        """Load a pool with a row lock held until the transaction ends.

        Raises:
            PoolNotFound: If the pool does not exist
        """
        stmt = select(ResourcePool).where(ResourcePool.id == pool_id).with_for_update()
        pool = session.exec(stmt).first()
        if not pool:
            raise PoolNotFound(pool_id)
        return pool

    def init_seats(self, session: Session, pool: ResourcePool, count: int) -> list[PoolSeat]:
        """Create seats 1..count for a pool that has none yet."""
        existing = session.exec(
            select(func.count()).select_from(PoolSeat).where(PoolSeat.pool_id == pool.id)
        ).one()
        if existing:
            raise ConflictError(
                f"Pool {pool.id} already has {existing} seats",
                error_code="SEATS_ALREADY_INITIALIZED",
                details={"pool_id": str(pool.id), "seat_count": existing},
            )

        seats = [
            PoolSeat(pool_id=pool.id, seat_index=index)
            for index in range(1, count + 1)
        ]
        session.add_all(seats)
        pool.last_seat_index = count
        session.add(pool)
        session.flush()
        return seats

    def resize_seats(self, session: Session, pool: ResourcePool, new_max: int) -> ResourcePool:
        """Grow or shrink the seat set of a locked pool.

        Growing appends seats after the highest index ever used. Shrinking
        removes available seats only, highest index first, and fails
        without touching anything when there are not enough of them.
        """
        if new_max < 1:
            raise ValidationError(
                "max_seats must be at least 1",
                details={"requested_max_seats": new_max},
            )

        seats = list(
            session.exec(
                select(PoolSeat)
                .where(PoolSeat.pool_id == pool.id)
                .order_by(PoolSeat.seat_index.desc())
            ).all()
        )
        current = len(seats)

        if new_max > current:
            start = pool.last_seat_index + 1
            added = [
                PoolSeat(pool_id=pool.id, seat_index=index)
                for index in range(start, start + new_max - current)
            ]
            session.add_all(added)
            pool.last_seat_index = start + len(added) - 1
        elif new_max < current:
            to_remove = current - new_max
            removable = [s for s in seats if s.seat_status == SeatStatus.available]
            if len(removable) < to_remove:
                assigned = sum(1 for s in seats if s.seat_status == SeatStatus.assigned)
                raise InsufficientFreeSeats(pool.id, new_max, assigned, len(removable))
            for seat in removable[:to_remove]:
                session.delete(seat)

        pool.max_seats = new_max
        session.add(pool)
        session.flush()
        return pool

    def _claim_seat(
        self,
        session: Session,
        seat: PoolSeat,
        assignment: SeatAssignment,
        now: datetime,
    ) -> bool:
        """Flip one seat from available to assigned.

        The WHERE clause re-checks the status, so a seat taken since it was
        read is left alone and False is returned.
        """
        result = session.execute(
            update(PoolSeat)
            .where(PoolSeat.id == seat.id, PoolSeat.seat_status == SeatStatus.available)
            .values(
                seat_status=SeatStatus.assigned,
                assigned_email=assignment.email,
                assigned_client_id=assignment.client_id,
                assigned_subscription_id=assignment.subscription_id,
                assigned_at=assignment.assigned_at or now,
                unassigned_at=None,
                updated_at=now,
            )
        )
        if result.rowcount != 1:
            return False
        session.refresh(seat)
        return True

    def _validate_assignment(
        self, session: Session, assignment: SeatAssignment
    ) -> tuple[Optional[Subscription], SeatAssignment]:
        """Check the holder fields and load the subscription being seated.

        Returns the subscription and the assignment to write. The caller's
        assignment is left as it was; a missing client_id is filled in on a
        copy.
        """
        if not assignment.email and assignment.subscription_id is None:
            raise ValidationError("A seat assignment needs an email or a subscription_id")

        if assignment.subscription_id is None:
            return None, assignment

        sub = session.get(Subscription, assignment.subscription_id)
        if not sub:
            raise SubscriptionNotFound(assignment.subscription_id)
        if sub.resource_pool_seat_id is not None:
            raise ConflictError(
                f"Subscription {sub.id} already holds seat {sub.resource_pool_seat_id}",
                error_code="SUBSCRIPTION_ALREADY_LINKED",
                details={
                    "subscription_id": str(sub.id),
                    "seat_id": str(sub.resource_pool_seat_id),
                },
            )
        if assignment.client_id is None:
            assignment = assignment.model_copy(update={"client_id": sub.client_id})
        return sub, assignment

    def _attach(
        self,
        session: Session,
        pool: ResourcePool,
        seat: PoolSeat,
        sub: Optional[Subscription],
        now: datetime,
    ) -> None:
        """Bookkeeping after a successful claim."""
        self._shift_used_seats(session, pool, 1)
        if sub is not None:
            sub.resource_pool_id = pool.id
            sub.resource_pool_seat_id = seat.id
            sync_renewal_with_pool(session, sub, "pool_linked", now)
        self.check_pool_integrity(session, pool)

    def _shift_used_seats(self, session: Session, pool: ResourcePool, delta: int) -> None:
        """Move used_seats by delta in one UPDATE and reload the pool.

        The increment runs in SQL, so it is applied to the committed value
        even when the pool row was read before another allocation landed.
        """
        session.flush()
        session.execute(
            update(ResourcePool)
            .where(ResourcePool.id == pool.id)
            .values(used_seats=ResourcePool.used_seats + delta)
            .execution_options(synchronize_session=False)
        )
        session.refresh(pool)

    def detach_seat(
        self,
        session: Session,
        pool: ResourcePool,
        seat: PoolSeat,
        now: datetime,
    ) -> Optional[Subscription]:
        """Clear a seat and the subscription that points at it.

        Returns the unlinked subscription, if there was one.
        """
        if seat.seat_status == SeatStatus.assigned:
            self._shift_used_seats(session, pool, -1)

        sub = session.exec(
            select(Subscription).where(Subscription.resource_pool_seat_id == seat.id)
        ).first()

        seat.seat_status = SeatStatus.available
        seat.assigned_email = None
        seat.assigned_client_id = None
        seat.assigned_subscription_id = None
        seat.assigned_at = None
        seat.unassigned_at = now
        session.add(seat)

        if sub is not None:
            sub.resource_pool_id = None
            sub.resource_pool_seat_id = None
            sync_renewal_with_pool(session, sub, "pool_unlinked", now)
        return sub

    def check_pool_integrity(self, session: Session, pool: ResourcePool) -> None:
        """Verify used_seats against the assigned seat rows.

        A mismatch means something bypassed the allocator. It is reported,
        never repaired.

        Raises:
            IntegrityViolation: If the counters disagree
        """
        session.flush()
        assigned = session.exec(
            select(func.count())
            .select_from(PoolSeat)
            .where(PoolSeat.pool_id == pool.id, PoolSeat.seat_status == SeatStatus.assigned)
        ).one()
        total = session.exec(
            select(func.count()).select_from(PoolSeat).where(PoolSeat.pool_id == pool.id)
        ).one()

        problems = []
        if pool.used_seats != assigned:
            problems.append("used_seats_mismatch")
        if not 0 <= pool.used_seats <= pool.max_seats:
            problems.append("used_seats_out_of_range")
        if total != pool.max_seats:
            problems.append("seat_count_mismatch")
        if not problems:
            return

        details = {
            "pool_id": str(pool.id),
            "used_seats": pool.used_seats,
            "assigned_seats": assigned,
            "max_seats": pool.max_seats,
            "seat_count": total,
            "problems": problems,
        }
        logger.critical("pool_integrity_violation", **details)
        raise IntegrityViolation(
            f"Pool {pool.id} failed its seat consistency check",
            details=details,
        )

    # ==========================================================================
    # Operations
    # ==========================================================================

    def get_seat(self, session: Session, seat_id: UUID) -> PoolSeat:
        seat = session.get(PoolSeat, seat_id)
        if not seat:
            raise SeatNotFound(seat_id)
        return seat

    def list_seats(self, session: Session, pool_id: UUID) -> list[PoolSeat]:
        """All seats of a pool in index order."""
        if not session.get(ResourcePool, pool_id):
            raise PoolNotFound(pool_id)
        stmt = select(PoolSeat).where(PoolSeat.pool_id == pool_id).order_by(PoolSeat.seat_index)
        return list(session.exec(stmt).all())

    def list_available_seats(self, session: Session, pool_id: UUID) -> list[PoolSeat]:
        """Available seats of a pool, lowest index first."""
        if not session.get(ResourcePool, pool_id):
            raise PoolNotFound(pool_id)
        stmt = (
            select(PoolSeat)
            .where(PoolSeat.pool_id == pool_id, PoolSeat.seat_status == SeatStatus.available)
            .order_by(PoolSeat.seat_index)
        )
        return list(session.exec(stmt).all())

    def assign_seat(
        self,
        session: Session,
        seat_id: UUID,
        assignment: SeatAssignment,
        now: Optional[datetime] = None,
    ) -> PoolSeat:
        """Assign a specific seat.

        Args:
            session: Database session
            seat_id: Seat to assign
            assignment: Holder of the seat
            now: Clock override

        Returns:
            The assigned seat

        Raises:
            SeatNotFound: If the seat does not exist
            SeatAlreadyAssigned: If the seat is not available
        """
        now = now or utcnow()
        with atomic(session):
            seat = self.get_seat(session, seat_id)
            pool = self.lock_pool(session, seat.pool_id)
            sub, assignment = self._validate_assignment(session, assignment)

            if seat.seat_status != SeatStatus.available or not self._claim_seat(
                session, seat, assignment, now
            ):
                session.refresh(seat)
                logger.error(
                    "seat_already_assigned",
                    seat_id=str(seat.id),
                    pool_id=str(pool.id),
                    seat_status=seat.seat_status.value,
                )
                raise SeatAlreadyAssigned(seat.id, seat.seat_status.value)

            self._attach(session, pool, seat, sub, now)

        logger.info(
            "seat_assigned",
            seat_id=str(seat.id),
            pool_id=str(seat.pool_id),
            seat_index=seat.seat_index,
            subscription_id=str(assignment.subscription_id) if assignment.subscription_id else None,
        )
        return seat

    def assign_next_free_seat(
        self,
        session: Session,
        pool_id: UUID,
        assignment: SeatAssignment,
        now: Optional[datetime] = None,
    ) -> PoolSeat:
        """Assign the available seat with the lowest index.

        Raises:
            PoolNotFound: If the pool does not exist
            PoolFull: If no seat is available
        """
        now = now or utcnow()
        with atomic(session):
            pool = self.lock_pool(session, pool_id)
            sub, assignment = self._validate_assignment(session, assignment)

            candidates = session.exec(
                select(PoolSeat)
                .where(PoolSeat.pool_id == pool.id, PoolSeat.seat_status == SeatStatus.available)
                .order_by(PoolSeat.seat_index)
            ).all()

            seat = None
            for candidate in candidates:
                if self._claim_seat(session, candidate, assignment, now):
                    seat = candidate
                    break
            if seat is None:
                logger.info("pool_full", pool_id=str(pool.id), max_seats=pool.max_seats)
                raise PoolFull(pool.id)

            self._attach(session, pool, seat, sub, now)

        logger.info(
            "seat_assigned",
            seat_id=str(seat.id),
            pool_id=str(pool_id),
            seat_index=seat.seat_index,
            subscription_id=str(assignment.subscription_id) if assignment.subscription_id else None,
        )
        return seat

    def release_seat(
        self,
        session: Session,
        seat_id: UUID,
        now: Optional[datetime] = None,
    ) -> PoolSeat:
        """Free a seat and unlink its subscription.

        Releasing an available seat changes nothing.
        """
        now = now or utcnow()
        with atomic(session):
            seat = self.get_seat(session, seat_id)
            if seat.seat_status == SeatStatus.available:
                return seat
            pool = self.lock_pool(session, seat.pool_id)
            sub = self.detach_seat(session, pool, seat, now)
            self.check_pool_integrity(session, pool)

        logger.info(
            "seat_released",
            seat_id=str(seat.id),
            pool_id=str(seat.pool_id),
            seat_index=seat.seat_index,
            subscription_id=str(sub.id) if sub else None,
        )
        return seat
