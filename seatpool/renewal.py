"""Renewal strategies for subscriptions.

Pure functions over a subscription snapshot. Nothing here touches the
database: callers load the subscription (and its pool, if any) and apply
the returned dates or patches themselves.

Two layers:
- Strategy handlers (MONTHLY, EVERY_N_DAYS) compute a date from the
  subscription's own cycle, honoring a manual override when asked to.
- Pool awareness: when the subscription is bound to an alive pool, the
  pool's end_at replaces whatever the strategy computed.
"""

import calendar
import math
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Optional, Protocol

from seatpool.config import DEFAULT_INTERVAL_DAYS, DUE_SOON_DAYS
from seatpool.db.models import RenewalStrategy


class PoolSnapshot(Protocol):
    """The pool fields pool awareness needs."""

    is_alive: bool
    end_at: datetime


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping to the last day of the target month.

    Jan 31 + 1 month is Feb 29 (leap year) or Feb 28, never March.
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_days(value: datetime, days: int) -> datetime:
    """Add whole days."""
    return value + timedelta(days=days)


@dataclass
class RenewalPatch:
    """Field changes produced by a renewal. Not applied by this module."""

    current_cycle_start_at: datetime
    last_renewal_at: datetime
    next_renewal_at: datetime
    custom_next_renewal_at: Optional[datetime]
    iterations_done: int

    def as_dict(self) -> dict:
        return asdict(self)


class StrategyHandler:
    """Base renewal strategy.

    Subclasses implement advance(), which moves an anchor date forward by
    one renewal period for the given subscription.
    """

    key: RenewalStrategy

    def advance(self, anchor: datetime, sub) -> datetime:
        raise NotImplementedError

    def cycle_anchor(self, sub) -> datetime:
        """Last renewal, or the cycle start if the subscription never renewed."""
        return sub.last_renewal_at or sub.current_cycle_start_at

    def compute_next_renewal(self, sub) -> datetime:
        """Next renewal date, honoring a manual override."""
        if sub.custom_next_renewal_at:
            return sub.custom_next_renewal_at
        return self.compute_next_renewal_without_custom(sub)

    def compute_next_renewal_without_custom(self, sub) -> datetime:
        """Next renewal date from the formula alone."""
        return self.advance(self.cycle_anchor(sub), sub)

    def on_renew(self, sub, now: datetime) -> RenewalPatch:
        """Patch for renewing at `now`.

        The manual override is consumed by the renewal it caused.
        """
        return RenewalPatch(
            current_cycle_start_at=now,
            last_renewal_at=now,
            next_renewal_at=self.advance(now, sub),
            custom_next_renewal_at=None,
            iterations_done=(sub.iterations_done or 0) + 1,
        )


class MonthlyStrategy(StrategyHandler):
    """Renews one calendar month after the last renewal."""

    key = RenewalStrategy.MONTHLY

    def advance(self, anchor: datetime, sub) -> datetime:
        return add_months(anchor, 1)


class EveryNDaysStrategy(StrategyHandler):
    """Renews interval_days after the last renewal."""

    key = RenewalStrategy.EVERY_N_DAYS

    def advance(self, anchor: datetime, sub) -> datetime:
        return add_days(anchor, sub.interval_days or DEFAULT_INTERVAL_DAYS)


STRATEGIES: dict[RenewalStrategy, StrategyHandler] = {
    RenewalStrategy.MONTHLY: MonthlyStrategy(),
    RenewalStrategy.EVERY_N_DAYS: EveryNDaysStrategy(),
}


def get_strategy(key) -> StrategyHandler:
    """Look up a strategy handler by key or key string.

    Raises:
        ValueError: If the key is not a known strategy
    """
    return STRATEGIES[RenewalStrategy(key)]


# =============================================================================
# Pool awareness
# =============================================================================


def pool_override(pool: Optional[PoolSnapshot]) -> Optional[datetime]:
    """The date a bound pool imposes, or None when the pool does not apply."""
    if pool is not None and pool.is_alive:
        return pool.end_at
    return None


def compute_next_renewal(sub, pool: Optional[PoolSnapshot] = None) -> datetime:
    """Effective next renewal date.

    An alive pool's end_at wins over both the formula and a manual override.
    """
    pinned = pool_override(pool)
    if pinned is not None:
        return pinned
    return get_strategy(sub.strategy).compute_next_renewal(sub)


def compute_next_renewal_without_custom(
    sub, pool: Optional[PoolSnapshot] = None
) -> datetime:
    """Formula date (ignoring any override), still subject to the pool."""
    pinned = pool_override(pool)
    if pinned is not None:
        return pinned
    return get_strategy(sub.strategy).compute_next_renewal_without_custom(sub)


def on_renew(sub, now: datetime, pool: Optional[PoolSnapshot] = None) -> RenewalPatch:
    """Renewal patch with the pool override applied to next_renewal_at."""
    patch = get_strategy(sub.strategy).on_renew(sub, now)
    pinned = pool_override(pool)
    if pinned is not None:
        patch.next_renewal_at = pinned
    return patch


def is_renewal_overdue(sub, now: datetime, pool: Optional[PoolSnapshot] = None) -> bool:
    """True when the effective renewal date is strictly in the past."""
    return compute_next_renewal(sub, pool) < now


# =============================================================================
# Due buckets
# =============================================================================


def days_until(when: datetime, now: datetime) -> int:
    """Whole days from now until `when`, rounded up."""
    return math.ceil((when - now).total_seconds() / 86400)


def due_bucket(when: Optional[datetime], now: datetime) -> Optional[str]:
    """Classify a renewal date as 'due_today', 'due_soon' or 'overdue'.

    Returns None for dates further out than DUE_SOON_DAYS or no date at all.
    """
    if when is None:
        return None
    diff = days_until(when, now)
    if diff == 0:
        return "due_today"
    if 0 < diff <= DUE_SOON_DAYS:
        return "due_soon"
    if diff < 0:
        return "overdue"
    return None
