"""Subscription lifecycle transition table.

Every status change a subscription can go through is listed here as an
(action, from-status) -> to-status entry. Services ask this module whether
an action is valid before touching the database; anything not listed is
rejected.

revert is the one action whose target depends on history (the status
recorded when the subscription was archived), so its entry maps to None
and the caller supplies the target.
"""

from enum import Enum
from typing import Optional

from seatpool.db.models import SubscriptionStatus


class LifecycleAction(str, Enum):
    """Actions that may change a subscription's status."""

    renew = "renew"
    mark_overdue = "mark_overdue"  # operator action
    renewal_due = "renewal_due"  # sweep: renewal date passed
    pool_expired = "pool_expired"  # sweep: bound pool died
    complete = "complete"
    auto_complete = "auto_complete"  # sweep: target_end_at passed
    archive = "archive"
    revert = "revert"
    pause = "pause"
    resume = "resume"
    cancel = "cancel"
    set_custom_date = "set_custom_date"
    clear_custom_date = "clear_custom_date"


S = SubscriptionStatus

TRANSITIONS: dict[LifecycleAction, dict[SubscriptionStatus, Optional[SubscriptionStatus]]] = {
    LifecycleAction.renew: {
        S.active: S.active,
        S.overdue: S.active,
        S.paused: S.active,
    },
    LifecycleAction.mark_overdue: {
        S.active: S.overdue,
    },
    LifecycleAction.renewal_due: {
        S.active: S.overdue,
    },
    LifecycleAction.pool_expired: {
        S.active: S.overdue,
        S.overdue: S.overdue,  # re-tagged with the pool reason
    },
    LifecycleAction.complete: {
        S.active: S.completed,
        S.overdue: S.completed,
        S.paused: S.completed,
    },
    LifecycleAction.auto_complete: {
        S.active: S.completed,
        S.overdue: S.completed,
    },
    LifecycleAction.archive: {
        S.active: S.archived,
        S.overdue: S.archived,
        S.completed: S.archived,
        S.paused: S.archived,
        S.canceled: S.archived,
    },
    LifecycleAction.revert: {
        S.archived: None,
    },
    LifecycleAction.pause: {
        S.active: S.paused,
        S.overdue: S.paused,
    },
    LifecycleAction.resume: {
        S.paused: S.active,
    },
    LifecycleAction.cancel: {
        S.active: S.canceled,
        S.overdue: S.canceled,
        S.paused: S.canceled,
    },
    LifecycleAction.set_custom_date: {
        S.active: S.active,
    },
    LifecycleAction.clear_custom_date: {
        S.active: S.active,
    },
}

# Statuses whose renewal schedule is still tracked
SCHEDULED_STATUSES = frozenset({S.active, S.overdue, S.paused})

# Statuses the status synchronizer may move
SWEEPABLE_STATUSES = frozenset({S.active, S.overdue})

# Statuses that may take a seat in a pool
LINKABLE_STATUSES = frozenset({S.active, S.overdue})


def can_apply(status: SubscriptionStatus, action: LifecycleAction) -> bool:
    """Check whether an action is valid from the given status."""
    return SubscriptionStatus(status) in TRANSITIONS[action]


def target_status(
    status: SubscriptionStatus, action: LifecycleAction
) -> Optional[SubscriptionStatus]:
    """Status reached by applying an action.

    Raises:
        KeyError: If the action is not valid from this status
    """
    return TRANSITIONS[action][SubscriptionStatus(status)]


def allowed_sources(action: LifecycleAction) -> list[str]:
    """Statuses an action may be applied from, for error messages."""
    return sorted(s.value for s in TRANSITIONS[action])


def is_scheduled(status: SubscriptionStatus) -> bool:
    """True if the subscription still carries a next renewal date."""
    return SubscriptionStatus(status) in SCHEDULED_STATUSES


def can_link(status: SubscriptionStatus) -> bool:
    """True if a subscription in this status may be seated in a pool."""
    return SubscriptionStatus(status) in LINKABLE_STATUSES
