"""Tests for subscription lifecycle, renewal dates and pool linking."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import update
from sqlmodel import select

from api.exceptions import (
    IntegrityViolation,
    InvalidDateRange,
    InvalidState,
    PoolOverrideActive,
    SubscriptionNotFound,
    ValidationError,
)
from api.services import subscription_service as subscription_module
from api.services.subscription_service import apply_transition
from seatpool.db.models import (
    OverdueReason,
    RenewalStrategy,
    SeatStatus,
    Subscription,
    SubscriptionCreate,
    SubscriptionEvent,
    SubscriptionEventType,
    SubscriptionStatus,
    SubscriptionUpdate,
)
from seatpool.lifecycle import LifecycleAction

from tests.conftest import NOW

FORMULA_NEXT = datetime(2024, 2, 15, 12, 0)
POOL_END = datetime(2024, 3, 1)


def event_types(events):
    return [e.type for e in events]


class TestCreateSubscription:
    def test_first_renewal_from_strategy(self, session, subscription_service, make_subscription):
        sub = make_subscription()

        assert sub.status == SubscriptionStatus.active
        assert sub.started_at == NOW
        assert sub.current_cycle_start_at == NOW
        assert sub.next_renewal_at == FORMULA_NEXT
        assert sub.iterations_done == 0

        created = subscription_service.get_subscription_history(session, sub.id)[0]
        assert created.type == SubscriptionEventType.created
        assert created.meta["strategy"] == "MONTHLY"
        assert created.meta["next_renewal_at"] == "2024-02-15T12:00:00"

    def test_every_n_days(self, make_subscription):
        sub = make_subscription(strategy=RenewalStrategy.EVERY_N_DAYS, interval_days=10)

        assert sub.next_renewal_at == NOW + timedelta(days=10)

    def test_target_end_must_follow_start(self, session, subscription_service):
        with pytest.raises(InvalidDateRange):
            subscription_service.create_subscription(
                session,
                SubscriptionCreate(
                    service_id=uuid4(),
                    client_id=uuid4(),
                    started_at=NOW,
                    target_end_at=NOW - timedelta(days=1),
                ),
                now=NOW,
            )


class TestUpdateAndDelete:
    def test_cadence_change_replans_renewal(self, session, subscription_service, make_subscription):
        sub = make_subscription()

        updated = subscription_service.update_subscription(
            session,
            sub.id,
            SubscriptionUpdate(strategy=RenewalStrategy.EVERY_N_DAYS, interval_days=10),
            now=NOW + timedelta(hours=1),
        )

        assert updated.next_renewal_at == NOW + timedelta(days=10)
        event = subscription_service.get_subscription_history(session, sub.id)[0]
        assert event.type == SubscriptionEventType.updated
        assert event.meta["reason"] == "fields_changed"
        assert event.meta["fields"] == ["interval_days", "strategy"]

    def test_notes_do_not_move_renewal(self, session, subscription_service, make_subscription):
        sub = make_subscription()

        updated = subscription_service.update_subscription(
            session, sub.id, SubscriptionUpdate(notes="family plan"), now=NOW
        )

        assert updated.notes == "family plan"
        assert updated.next_renewal_at == FORMULA_NEXT

    def test_delete_releases_seat(
        self, session, subscription_service, seat_service, make_pool, make_subscription
    ):
        pool = make_pool()
        sub = make_subscription()
        subscription_service.link_subscription_to_pool(session, sub.id, pool.id, now=NOW)
        seat_id = sub.resource_pool_seat_id
        sub_id = sub.id

        subscription_service.delete_subscription(session, sub_id, now=NOW)

        assert session.get(Subscription, sub_id) is None
        assert session.exec(
            select(SubscriptionEvent).where(SubscriptionEvent.subscription_id == sub_id)
        ).all() == []
        assert seat_service.get_seat(session, seat_id).seat_status == SeatStatus.available
        session.refresh(pool)
        assert pool.used_seats == 0

    def test_unknown_subscription(self, session, subscription_service):
        with pytest.raises(SubscriptionNotFound):
            subscription_service.get_subscription(session, uuid4())


class TestRenew:
    def test_renew_starts_new_cycle(self, session, subscription_service, make_subscription):
        sub = make_subscription()
        renewed_at = datetime(2024, 2, 20, 9, 0)

        renewed = subscription_service.renew_now(session, sub.id, now=renewed_at)

        assert renewed.status == SubscriptionStatus.active
        assert renewed.iterations_done == 1
        assert renewed.last_renewal_at == renewed_at
        assert renewed.current_cycle_start_at == renewed_at
        assert renewed.next_renewal_at == datetime(2024, 3, 20, 9, 0)

        event = subscription_service.get_renewal_history(session, sub.id)[0]
        assert event.meta["renewal_number"] == 1
        assert event.meta["previous_next_renewal_at"] == "2024-02-15T12:00:00"
        assert event.meta["next_renewal_at"] == "2024-03-20T09:00:00"
        assert event.meta["pool_aware"] is False

    def test_renew_clears_overdue(self, session, subscription_service, make_subscription):
        sub = make_subscription()
        subscription_service.mark_overdue(session, sub.id, now=NOW + timedelta(hours=1))

        renewed = subscription_service.renew_now(session, sub.id, now=NOW + timedelta(hours=2))

        assert renewed.status == SubscriptionStatus.active
        assert renewed.overdue_reason is None

    def test_renew_consumes_custom_date(self, session, subscription_service, make_subscription):
        sub = make_subscription()
        subscription_service.set_custom_renewal_date(
            session, sub.id, datetime(2024, 2, 1), now=NOW + timedelta(hours=1)
        )

        renewed = subscription_service.renew_now(session, sub.id, now=datetime(2024, 2, 1))

        assert renewed.custom_next_renewal_at is None
        assert renewed.next_renewal_at == datetime(2024, 3, 1)

    def test_renew_pinned_by_live_pool(
        self, session, subscription_service, make_pool, make_subscription
    ):
        pool = make_pool(end_at=POOL_END)
        sub = make_subscription()
        subscription_service.link_subscription_to_pool(session, sub.id, pool.id, now=NOW)

        renewed = subscription_service.renew_now(session, sub.id, now=NOW + timedelta(days=1))

        assert renewed.next_renewal_at == POOL_END
        event = subscription_service.get_renewal_history(session, sub.id)[0]
        assert event.meta["pool_aware"] is True
        assert event.meta["pool_id"] == str(pool.id)

    def test_renew_completed_is_rejected(self, session, subscription_service, make_subscription):
        sub = make_subscription()
        subscription_service.complete(session, sub.id, now=NOW + timedelta(hours=1))

        with pytest.raises(InvalidState) as exc_info:
            subscription_service.renew_now(session, sub.id, now=NOW + timedelta(hours=2))

        assert exc_info.value.details["current_status"] == "completed"
        assert exc_info.value.details["allowed_statuses"] == ["active", "overdue", "paused"]


class TestArchiveAndRevert:
    def test_archive_then_revert_restores_overdue(
        self, session, subscription_service, make_subscription
    ):
        """An overdue subscription archived and reverted comes back overdue."""
        sub = make_subscription()
        subscription_service.mark_overdue(session, sub.id, now=NOW + timedelta(hours=1))

        archived = subscription_service.archive(session, sub.id, now=NOW + timedelta(hours=2))
        assert archived.status == SubscriptionStatus.archived
        assert archived.next_renewal_at is None

        reverted = subscription_service.revert(session, sub.id, now=NOW + timedelta(hours=3))

        assert reverted.status == SubscriptionStatus.overdue
        assert reverted.overdue_reason == OverdueReason.manual
        assert reverted.next_renewal_at == FORMULA_NEXT

        history = subscription_service.get_subscription_history(session, sub.id)
        assert event_types(history)[:3] == [
            SubscriptionEventType.reverted,
            SubscriptionEventType.archived,
            SubscriptionEventType.overdue,
        ]
        assert history[1].meta["previous_status"] == "overdue"
        assert history[1].meta["previous_overdue_reason"] == "manual"
        assert history[0].meta["restored_status"] == "overdue"

    def test_revert_ignores_custom_date(self, session, subscription_service, make_subscription):
        sub = make_subscription()
        subscription_service.set_custom_renewal_date(
            session, sub.id, datetime(2024, 2, 1), now=NOW + timedelta(hours=1)
        )
        subscription_service.archive(session, sub.id, now=NOW + timedelta(hours=2))

        reverted = subscription_service.revert(session, sub.id, now=NOW + timedelta(hours=3))

        assert reverted.status == SubscriptionStatus.active
        assert reverted.next_renewal_at == FORMULA_NEXT

    def test_archive_keeps_seat(
        self, session, subscription_service, seat_service, make_pool, make_subscription
    ):
        pool = make_pool()
        sub = make_subscription()
        subscription_service.link_subscription_to_pool(session, sub.id, pool.id, now=NOW)

        archived = subscription_service.archive(session, sub.id, now=NOW + timedelta(hours=1))

        seat = seat_service.get_seat(session, archived.resource_pool_seat_id)
        assert seat.seat_status == SeatStatus.assigned

    def test_revert_requires_archived(self, session, subscription_service, make_subscription):
        sub = make_subscription()

        with pytest.raises(InvalidState):
            subscription_service.revert(session, sub.id, now=NOW)

    def test_revert_without_archive_record(self, session, subscription_service, make_subscription):
        sub = make_subscription()
        session.execute(
            update(Subscription)
            .where(Subscription.id == sub.id)
            .values(status=SubscriptionStatus.archived)
        )
        session.commit()

        with pytest.raises(IntegrityViolation):
            subscription_service.revert(session, sub.id, now=NOW)

        session.refresh(sub)
        assert sub.status == SubscriptionStatus.archived


class TestPauseResumeCancel:
    def test_pause_and_resume(self, session, subscription_service, make_subscription):
        sub = make_subscription()

        paused = subscription_service.pause(session, sub.id, now=NOW + timedelta(hours=1))
        assert paused.status == SubscriptionStatus.paused

        resumed = subscription_service.resume(session, sub.id, now=NOW + timedelta(hours=2))
        assert resumed.status == SubscriptionStatus.active
        assert resumed.next_renewal_at == FORMULA_NEXT

    def test_resume_requires_paused(self, session, subscription_service, make_subscription):
        sub = make_subscription()

        with pytest.raises(InvalidState):
            subscription_service.resume(session, sub.id, now=NOW)

    def test_cancel_then_archive(self, session, subscription_service, make_subscription):
        sub = make_subscription()

        canceled = subscription_service.cancel(session, sub.id, now=NOW + timedelta(hours=1))
        assert canceled.status == SubscriptionStatus.canceled
        assert canceled.next_renewal_at is None

        with pytest.raises(InvalidState):
            subscription_service.renew_now(session, sub.id, now=NOW + timedelta(hours=2))

        subscription_service.archive(session, sub.id, now=NOW + timedelta(hours=2))
        reverted = subscription_service.revert(session, sub.id, now=NOW + timedelta(hours=3))
        assert reverted.status == SubscriptionStatus.canceled
        assert reverted.next_renewal_at is None

    def test_complete_clears_schedule(self, session, subscription_service, make_subscription):
        sub = make_subscription()

        completed = subscription_service.complete(session, sub.id, now=NOW + timedelta(hours=1))

        assert completed.status == SubscriptionStatus.completed
        assert completed.next_renewal_at is None
        event = subscription_service.get_subscription_history(session, sub.id)[0]
        assert event.meta["auto_completed"] is False


class TestCustomRenewalDate:
    def test_set_and_clear(self, session, subscription_service, make_subscription):
        sub = make_subscription()

        custom = subscription_service.set_custom_renewal_date(
            session, sub.id, datetime(2024, 2, 1), now=NOW + timedelta(hours=1)
        )
        assert custom.next_renewal_at == datetime(2024, 2, 1)
        assert subscription_service.get_next_renewal(session, sub.id) == datetime(2024, 2, 1)

        cleared = subscription_service.clear_custom_renewal_date(
            session, sub.id, now=NOW + timedelta(hours=2)
        )
        assert cleared.custom_next_renewal_at is None
        assert cleared.next_renewal_at == FORMULA_NEXT

    def test_date_must_follow_cycle_start(self, session, subscription_service, make_subscription):
        sub = make_subscription()

        with pytest.raises(InvalidDateRange):
            subscription_service.set_custom_renewal_date(session, sub.id, NOW, now=NOW)

    def test_live_pool_blocks_override(
        self, session, subscription_service, make_pool, make_subscription
    ):
        pool = make_pool(end_at=POOL_END)
        sub = make_subscription()
        subscription_service.link_subscription_to_pool(session, sub.id, pool.id, now=NOW)

        with pytest.raises(PoolOverrideActive) as exc_info:
            subscription_service.set_custom_renewal_date(
                session, sub.id, datetime(2024, 2, 1), now=NOW + timedelta(hours=1)
            )

        assert exc_info.value.error_code == "POOL_OVERRIDE_ACTIVE"
        session.refresh(sub)
        assert sub.custom_next_renewal_at is None
        assert sub.next_renewal_at == POOL_END


class TestPoolLinking:
    def test_link_pins_renewal_to_pool_end(
        self, session, subscription_service, make_pool, make_subscription
    ):
        """MONTHLY from 2024-01-15 linked to a pool ending 2024-03-01 renews 2024-03-01."""
        pool = make_pool(end_at=POOL_END)
        sub = make_subscription()

        linked = subscription_service.link_subscription_to_pool(session, sub.id, pool.id, now=NOW)

        assert linked.next_renewal_at == POOL_END
        assert linked.resource_pool_id == pool.id
        assert subscription_service.get_pool_for_subscription(session, sub.id).id == pool.id
        event = subscription_service.get_subscription_history(session, sub.id)[0]
        assert event.meta["reason"] == "pool_linked"
        assert event.meta["pool_aware"] is True

    def test_pool_wins_over_earlier_custom_date(
        self, session, subscription_service, make_pool, make_subscription
    ):
        pool = make_pool(end_at=POOL_END)
        sub = make_subscription()
        subscription_service.set_custom_renewal_date(
            session, sub.id, datetime(2024, 2, 1), now=NOW + timedelta(hours=1)
        )

        linked = subscription_service.link_subscription_to_pool(
            session, sub.id, pool.id, now=NOW + timedelta(hours=2)
        )
        assert linked.next_renewal_at == POOL_END

        unlinked = subscription_service.unlink_subscription_from_pool(
            session, sub.id, now=NOW + timedelta(hours=3)
        )
        assert unlinked.next_renewal_at == datetime(2024, 2, 1)

    def test_link_specific_seat(
        self, session, subscription_service, seat_service, make_pool, make_subscription
    ):
        pool = make_pool(max_seats=3)
        seat = seat_service.list_seats(session, pool.id)[2]
        sub = make_subscription()

        linked = subscription_service.link_subscription_to_pool(
            session, sub.id, pool.id, seat_id=seat.id, now=NOW
        )

        assert linked.resource_pool_seat_id == seat.id

    def test_seat_from_another_pool(
        self, session, subscription_service, seat_service, make_pool, make_subscription
    ):
        pool = make_pool()
        other = make_pool()
        seat = seat_service.list_seats(session, other.id)[0]
        sub = make_subscription()

        with pytest.raises(ValidationError):
            subscription_service.link_subscription_to_pool(
                session, sub.id, pool.id, seat_id=seat.id, now=NOW
            )

    def test_link_rejected_when_completed(
        self, session, subscription_service, make_pool, make_subscription
    ):
        pool = make_pool()
        sub = make_subscription()
        subscription_service.complete(session, sub.id, now=NOW + timedelta(hours=1))

        with pytest.raises(InvalidState):
            subscription_service.link_subscription_to_pool(session, sub.id, pool.id, now=NOW)

    def test_link_rejected_when_paused(
        self, session, subscription_service, seat_service, make_pool, make_subscription
    ):
        pool = make_pool()
        sub = make_subscription()
        subscription_service.pause(session, sub.id, now=NOW + timedelta(hours=1))

        with pytest.raises(InvalidState) as exc_info:
            subscription_service.link_subscription_to_pool(
                session, sub.id, pool.id, now=NOW + timedelta(hours=2)
            )

        assert exc_info.value.details == {
            "current_status": "paused",
            "allowed_statuses": ["active", "overdue"],
        }
        assert len(seat_service.list_available_seats(session, pool.id)) == 3

    def test_unlink_restores_formula(
        self, session, subscription_service, seat_service, make_pool, make_subscription
    ):
        pool = make_pool(end_at=POOL_END)
        sub = make_subscription()
        linked = subscription_service.link_subscription_to_pool(session, sub.id, pool.id, now=NOW)
        seat_id = linked.resource_pool_seat_id

        unlinked = subscription_service.unlink_subscription_from_pool(
            session, sub.id, now=NOW + timedelta(hours=1)
        )

        assert unlinked.resource_pool_id is None
        assert unlinked.next_renewal_at == FORMULA_NEXT
        assert seat_service.get_seat(session, seat_id).seat_status == SeatStatus.available
        session.refresh(pool)
        assert pool.used_seats == 0

    def test_unlink_unlinked_is_noop(self, session, subscription_service, make_subscription):
        sub = make_subscription()

        unlinked = subscription_service.unlink_subscription_from_pool(session, sub.id, now=NOW)

        assert unlinked.next_renewal_at == FORMULA_NEXT
        assert len(subscription_service.get_subscription_history(session, sub.id)) == 1


class TestQueries:
    def test_due_buckets(self, session, subscription_service, make_subscription):
        today = make_subscription(started_at=datetime(2023, 12, 15, 12, 0))
        soon = make_subscription(started_at=datetime(2023, 12, 17, 12, 0))
        late = make_subscription(started_at=datetime(2023, 12, 10, 12, 0))
        make_subscription()

        buckets = subscription_service.get_due_buckets(session, now=NOW)

        assert [s.id for s in buckets["due_today"]] == [today.id]
        assert [s.id for s in buckets["due_in_3_days"]] == [soon.id]
        assert [s.id for s in buckets["overdue"]] == [late.id]

    def test_history_newest_first(self, session, subscription_service, make_subscription):
        sub = make_subscription()
        subscription_service.renew_now(session, sub.id, now=NOW + timedelta(days=1))
        subscription_service.pause(session, sub.id, now=NOW + timedelta(days=2))

        history = subscription_service.get_subscription_history(session, sub.id)

        assert event_types(history) == [
            SubscriptionEventType.paused,
            SubscriptionEventType.renewed,
            SubscriptionEventType.created,
        ]

    def test_list_by_status(self, session, subscription_service, make_subscription):
        active = make_subscription()
        paused = make_subscription()
        subscription_service.pause(session, paused.id, now=NOW + timedelta(hours=1))

        listed = subscription_service.list_subscriptions(session, status=SubscriptionStatus.active)

        assert [s.id for s in listed] == [active.id]


class TestConditionalTransition:
    def test_stale_snapshot_is_not_written(self, session, make_subscription):
        sub = make_subscription()

        # Another writer changes the row; the loaded object keeps its old values
        session.execute(
            update(Subscription)
            .where(Subscription.id == sub.id)
            .values(updated_at=NOW + timedelta(minutes=5))
            .execution_options(synchronize_session=False)
        )

        changed = apply_transition(session, sub, LifecycleAction.mark_overdue, NOW)

        assert changed is False
        assert sub.status == SubscriptionStatus.active
        assert sub.updated_at == NOW + timedelta(minutes=5)

    def test_lost_race_is_reported(
        self, session, subscription_service, make_subscription, monkeypatch
    ):
        sub = make_subscription()
        real_apply = subscription_module.apply_transition

        def concurrent_apply(session, sub, *args, **kwargs):
            session.execute(
                update(Subscription)
                .where(Subscription.id == sub.id)
                .values(updated_at=NOW + timedelta(minutes=5))
                .execution_options(synchronize_session=False)
            )
            return real_apply(session, sub, *args, **kwargs)

        monkeypatch.setattr(subscription_module, "apply_transition", concurrent_apply)

        with pytest.raises(InvalidState) as exc_info:
            subscription_service.pause(session, sub.id, now=NOW + timedelta(hours=1))

        assert exc_info.value.error_code == "CONCURRENT_MODIFICATION"
        session.refresh(sub)
        assert sub.status == SubscriptionStatus.active
