"""Tests for pool creation, resizing, archiving and queries."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlmodel import select

from api.exceptions import (
    InsufficientFreeSeats,
    InvalidDateRange,
    PoolNotFound,
    ValidationError,
)
from seatpool.db.models import (
    PoolSeat,
    PoolStatus,
    PoolType,
    ResourcePool,
    ResourcePoolCreate,
    ResourcePoolUpdate,
    SeatAssignment,
    SeatStatus,
    SubscriptionEventType,
)
from api.services.subscription_events import list_events

from tests.conftest import NOW


def seat_indices(seat_service, session, pool_id):
    return [s.seat_index for s in seat_service.list_seats(session, pool_id)]


class TestCreatePool:
    def test_creates_seats(self, session, seat_service, make_pool):
        pool = make_pool(max_seats=4)

        assert pool.used_seats == 0
        assert pool.status == PoolStatus.active
        assert pool.is_alive is True
        assert seat_indices(seat_service, session, pool.id) == [1, 2, 3, 4]
        assert all(
            s.seat_status == SeatStatus.available
            for s in seat_service.list_seats(session, pool.id)
        )

    def test_end_must_follow_start(self, session, pool_service):
        with pytest.raises(InvalidDateRange):
            pool_service.create_pool(
                session,
                ResourcePoolCreate(
                    provider="spotify",
                    pool_type=PoolType.family,
                    login_email="owner@example.com",
                    start_at=NOW,
                    end_at=NOW,
                    max_seats=2,
                ),
            )

        assert pool_service.list_pools(session) == []


class TestResizePool:
    def test_grow_appends_after_highest_index(self, session, pool_service, seat_service, make_pool):
        pool = make_pool(max_seats=2)

        pool_service.resize_pool(session, pool.id, 4)

        assert seat_indices(seat_service, session, pool.id) == [1, 2, 3, 4]
        session.refresh(pool)
        assert pool.max_seats == 4

    def test_removed_indices_are_not_reused(self, session, pool_service, seat_service, make_pool):
        pool = make_pool(max_seats=3)

        pool_service.resize_pool(session, pool.id, 2)
        pool_service.resize_pool(session, pool.id, 4)

        assert seat_indices(seat_service, session, pool.id) == [1, 2, 4, 5]

    def test_shrink_removes_highest_free_seats(self, session, pool_service, seat_service, make_pool):
        pool = make_pool(max_seats=4)
        seats = seat_service.list_seats(session, pool.id)
        seat_service.assign_seat(session, seats[0].id, SeatAssignment(email="a@example.com"), now=NOW)
        seat_service.assign_seat(session, seats[2].id, SeatAssignment(email="c@example.com"), now=NOW)

        pool_service.resize_pool(session, pool.id, 2)

        assert seat_indices(seat_service, session, pool.id) == [1, 3]
        session.refresh(pool)
        assert pool.max_seats == 2
        assert pool.used_seats == 2

    def test_shrink_below_assigned_fails_without_changes(
        self, session, pool_service, seat_service, make_pool
    ):
        """Two of three seats assigned: shrinking to one is refused."""
        pool = make_pool(max_seats=3)
        for email in ("a@example.com", "b@example.com"):
            seat_service.assign_next_free_seat(session, pool.id, SeatAssignment(email=email), now=NOW)

        with pytest.raises(InsufficientFreeSeats) as exc_info:
            pool_service.resize_pool(session, pool.id, 1)

        assert exc_info.value.details == {
            "pool_id": str(pool.id),
            "requested_max_seats": 1,
            "assigned_seats": 2,
            "removable_seats": 1,
        }
        session.refresh(pool)
        assert pool.max_seats == 3
        assert pool.used_seats == 2
        assert seat_indices(seat_service, session, pool.id) == [1, 2, 3]

    def test_rejects_zero_seats(self, session, pool_service, make_pool):
        pool = make_pool()

        with pytest.raises(ValidationError):
            pool_service.resize_pool(session, pool.id, 0)

    def test_unknown_pool(self, session, pool_service):
        with pytest.raises(PoolNotFound):
            pool_service.resize_pool(session, uuid4(), 3)


class TestUpdatePool:
    def test_updates_attributes(self, session, pool_service, make_pool):
        pool = make_pool()

        updated = pool_service.update_pool(
            session,
            pool.id,
            ResourcePoolUpdate(provider="netflix", notes="shared with the team"),
            now=NOW,
        )

        assert updated.provider == "netflix"
        assert updated.notes == "shared with the team"
        assert updated.updated_at == NOW

    def test_max_seats_goes_through_resize(self, session, pool_service, seat_service, make_pool):
        pool = make_pool(max_seats=2)

        pool_service.update_pool(session, pool.id, ResourcePoolUpdate(max_seats=3), now=NOW)

        assert seat_indices(seat_service, session, pool.id) == [1, 2, 3]

    def test_invalid_window(self, session, pool_service, make_pool):
        pool = make_pool(start_at=NOW - timedelta(days=10))

        with pytest.raises(InvalidDateRange):
            pool_service.update_pool(
                session,
                pool.id,
                ResourcePoolUpdate(end_at=NOW - timedelta(days=20)),
                now=NOW,
            )

    def test_end_change_repins_bound_subscriptions(
        self, session, pool_service, subscription_service, make_pool, make_subscription
    ):
        pool = make_pool(end_at=datetime(2024, 3, 1))
        sub = make_subscription()
        subscription_service.link_subscription_to_pool(session, sub.id, pool.id, now=NOW)

        pool_service.update_pool(
            session,
            pool.id,
            ResourcePoolUpdate(end_at=datetime(2024, 4, 1)),
            now=NOW + timedelta(hours=1),
        )

        session.refresh(sub)
        assert sub.next_renewal_at == datetime(2024, 4, 1)
        latest = list_events(session, sub.id, SubscriptionEventType.updated)[0]
        assert latest.meta["reason"] == "pool_updated"
        assert latest.meta["new_next_renewal_at"] == "2024-04-01T00:00:00"

    def test_dead_pool_stops_pinning(
        self, session, pool_service, subscription_service, make_pool, make_subscription
    ):
        pool = make_pool(end_at=datetime(2024, 3, 1))
        sub = make_subscription()
        subscription_service.link_subscription_to_pool(session, sub.id, pool.id, now=NOW)

        pool_service.update_pool(session, pool.id, ResourcePoolUpdate(is_alive=False), now=NOW)

        session.refresh(sub)
        assert sub.next_renewal_at == datetime(2024, 2, 15, 12, 0)
        assert sub.resource_pool_id == pool.id


class TestArchiveAndDelete:
    def test_archive_pool(self, session, pool_service, make_pool):
        pool = make_pool()

        archived = pool_service.archive_pool(session, pool.id, now=NOW)

        assert archived.status == PoolStatus.expired
        assert archived.is_alive is False

    def test_bulk_archive(self, session, pool_service, make_pool):
        pools = [make_pool(), make_pool()]

        archived = pool_service.bulk_archive_pools(session, [p.id for p in pools], now=NOW)

        assert {p.status for p in archived} == {PoolStatus.expired}

    def test_archive_releases_renewal_pin(
        self, session, pool_service, subscription_service, make_pool, make_subscription
    ):
        pool = make_pool(end_at=datetime(2024, 3, 1))
        sub = make_subscription()
        subscription_service.link_subscription_to_pool(session, sub.id, pool.id, now=NOW)
        session.refresh(sub)
        assert sub.next_renewal_at == datetime(2024, 3, 1)

        pool_service.archive_pool(session, pool.id, now=NOW + timedelta(hours=1))

        session.refresh(sub)
        assert sub.next_renewal_at == datetime(2024, 2, 15, 12, 0)
        assert sub.resource_pool_id == pool.id
        event = list_events(session, sub.id, SubscriptionEventType.updated)[0]
        assert event.meta["reason"] == "pool_archived"
        assert event.meta["pool_aware"] is False

    def test_bulk_archive_releases_renewal_pin(
        self, session, pool_service, subscription_service, make_pool, make_subscription
    ):
        pools = [make_pool(end_at=datetime(2024, 3, 1)), make_pool(end_at=datetime(2024, 4, 1))]
        subs = [make_subscription(), make_subscription()]
        for pool, sub in zip(pools, subs):
            subscription_service.link_subscription_to_pool(session, sub.id, pool.id, now=NOW)

        pool_service.bulk_archive_pools(
            session, [p.id for p in pools], now=NOW + timedelta(hours=1)
        )

        for sub in subs:
            session.refresh(sub)
            assert sub.next_renewal_at == datetime(2024, 2, 15, 12, 0)

    def test_bulk_archive_unknown_id_changes_nothing(self, session, pool_service, make_pool):
        pool = make_pool()

        with pytest.raises(PoolNotFound):
            pool_service.bulk_archive_pools(session, [pool.id, uuid4()], now=NOW)

        session.refresh(pool)
        assert pool.status == PoolStatus.active
        assert pool.is_alive is True

    def test_delete_unlinks_subscriptions(
        self, session, pool_service, subscription_service, make_pool, make_subscription
    ):
        pool = make_pool(end_at=datetime(2024, 3, 1))
        sub = make_subscription()
        subscription_service.link_subscription_to_pool(session, sub.id, pool.id, now=NOW)
        pool_id = pool.id

        pool_service.delete_pool(session, pool_id, now=NOW)

        assert session.get(ResourcePool, pool_id) is None
        assert session.exec(select(PoolSeat).where(PoolSeat.pool_id == pool_id)).all() == []
        session.refresh(sub)
        assert sub.resource_pool_id is None
        assert sub.resource_pool_seat_id is None
        assert sub.next_renewal_at == datetime(2024, 2, 15, 12, 0)

    def test_delete_unknown_pool(self, session, pool_service):
        with pytest.raises(PoolNotFound):
            pool_service.delete_pool(session, uuid4())


class TestListPools:
    def test_filters_by_provider_and_type(self, session, pool_service, make_pool):
        make_pool(provider="spotify", pool_type=PoolType.family)
        make_pool(provider="microsoft_365", pool_type=PoolType.admin_console)

        by_provider = pool_service.list_pools(session, provider="microsoft_365")
        by_type = pool_service.list_pools(session, pool_type=PoolType.family)

        assert [p.provider for p in by_provider] == ["microsoft_365"]
        assert [p.provider for p in by_type] == ["spotify"]

    def test_ordered_by_end(self, session, pool_service, make_pool):
        late = make_pool(end_at=NOW + timedelta(days=60))
        early = make_pool(end_at=NOW + timedelta(days=5))

        assert [p.id for p in pool_service.list_pools(session)] == [early.id, late.id]

    def test_time_buckets(self, session, pool_service, make_pool):
        today = make_pool(end_at=datetime(2024, 1, 15, 20, 0))
        soon = make_pool(end_at=datetime(2024, 1, 17, 9, 0))
        make_pool(end_at=datetime(2024, 2, 1))
        overdue = make_pool(end_at=datetime(2024, 1, 10))
        expired = make_pool(end_at=datetime(2024, 1, 12))
        pool_service.archive_pool(session, expired.id, now=NOW)

        def bucket(name):
            return {p.id for p in pool_service.list_pools(session, time_bucket=name, now=NOW)}

        assert bucket("today") == {today.id}
        assert bucket("3days") == {today.id, soon.id}
        assert bucket("overdue") == {overdue.id}
        assert bucket("expired") == {expired.id}

    def test_unknown_time_bucket(self, session, pool_service):
        with pytest.raises(ValidationError):
            pool_service.list_pools(session, time_bucket="next_year")

    def test_date_range_filters(self, session, pool_service, make_pool):
        make_pool(end_at=NOW + timedelta(days=5))
        middle = make_pool(end_at=NOW + timedelta(days=20))
        make_pool(end_at=NOW + timedelta(days=40))

        pools = pool_service.list_pools(
            session,
            end_after=NOW + timedelta(days=10),
            end_before=NOW + timedelta(days=30),
        )

        assert [p.id for p in pools] == [middle.id]

    def test_alive_filter(self, session, pool_service, make_pool):
        alive = make_pool()
        dead = make_pool()
        pool_service.archive_pool(session, dead.id, now=NOW)

        assert [p.id for p in pool_service.list_pools(session, alive=True)] == [alive.id]
        assert [p.id for p in pool_service.list_pools(session, alive=False)] == [dead.id]


class TestPoolQueries:
    def test_pool_with_seats(self, session, pool_service, make_pool):
        pool = make_pool(max_seats=2)

        detail = pool_service.get_pool_with_seats(session, pool.id)

        assert detail.id == pool.id
        assert [s.seat_index for s in detail.seats] == [1, 2]

    def test_stats(self, session, pool_service, seat_service, make_pool):
        pool = make_pool(max_seats=3)
        seat_service.assign_next_free_seat(session, pool.id, SeatAssignment(email="a@example.com"), now=NOW)

        stats = pool_service.get_pool_stats(session, pool.id)

        assert stats.total_seats == 3
        assert stats.used_seats == 1
        assert stats.assigned_seats == 1
        assert stats.available_seats == 2
        assert stats.reserved_seats == 0

    def test_search_by_seat_email(self, session, pool_service, seat_service, make_pool):
        pool = make_pool()
        make_pool()
        seat_service.assign_next_free_seat(
            session, pool.id, SeatAssignment(email="Alice@Example.com"), now=NOW
        )

        assert [p.id for p in pool_service.search_pools_by_seat_email(session, "alice")] == [pool.id]
        assert pool_service.search_pools_by_seat_email(session, "bob") == []
        assert pool_service.search_pools_by_seat_email(session, "") == []

    def test_list_assignments(self, session, pool_service, seat_service, make_pool):
        spotify = make_pool(provider="spotify")
        office = make_pool(provider="microsoft_365", login_email="admin@corp.example")
        seat_service.assign_next_free_seat(session, spotify.id, SeatAssignment(email="a@example.com"), now=NOW)
        seat_service.assign_next_free_seat(session, office.id, SeatAssignment(email="b@example.com"), now=NOW)

        everything = pool_service.list_assignments(session)
        office_only = pool_service.list_assignments(session, provider="microsoft_365")

        assert len(everything) == 2
        assert len(office_only) == 1
        assert office_only[0].assigned_email == "b@example.com"
        assert office_only[0].login_email == "admin@corp.example"
        assert office_only[0].seat_index == 1
        assert pool_service.list_assignments(session, email="a@")[0].pool_id == spotify.id
