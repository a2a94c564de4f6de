"""Period-index expiration math.

Every cyclic policy maps an instant to an integer cycle index; two instants
share a cycle iff their indices are equal, and a task is expired iff
``cycle_index(assigned_at) < cycle_index(now)``. Relative, fixed and permanent
policies compare instants directly. All functions here are pure: ``now`` and
the zone are always passed in.
"""

import calendar
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional

from questcycle.models.policy import (
    DailyPolicy,
    ExpirePolicy,
    FixedPolicy,
    MonthlyPolicy,
    PermanentPolicy,
    RelativePolicy,
    WeeklyPolicy,
)
from questcycle.utils.time import ensure_utc, resolve_zone, utc_now

_EPOCH = date(1970, 1, 1)


def _epoch_day(day: date) -> int:
    return (day - _EPOCH).days


def _from_epoch_day(index: int) -> date:
    return _EPOCH + timedelta(days=index)


def _month_length(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _previous_month(year: int, month: int) -> tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)


def _next_month(year: int, month: int) -> tuple[int, int]:
    return (year + 1, 1) if month == 12 else (year, month + 1)


def _local(instant: datetime, zone: tzinfo) -> datetime:
    return ensure_utc(instant).astimezone(zone)


def _before_reset(instant: datetime, day: date, reset_time: time, zone: tzinfo) -> bool:
    """True if ``instant`` precedes the reset on local ``day``.

    Compared in UTC, so a repeated or skipped local hour cannot move an
    instant back across the reset.
    """
    reset = datetime.combine(day, reset_time, tzinfo=zone).astimezone(timezone.utc)
    return ensure_utc(instant) < reset


def daily_index(instant: datetime, reset_time: time, zone: tzinfo = timezone.utc) -> int:
    day = _local(instant, zone).date()
    if _before_reset(instant, day, reset_time, zone):
        day -= timedelta(days=1)
    return _epoch_day(day)


def weekly_index(
    instant: datetime, reset_day: int, reset_time: time, zone: tzinfo = timezone.utc
) -> int:
    today = _local(instant, zone).date()
    offset = (today.weekday() - reset_day) % 7
    anchor = today - timedelta(days=offset)
    if offset == 0 and _before_reset(instant, today, reset_time, zone):
        anchor -= timedelta(days=7)
    return _epoch_day(anchor)


def monthly_index(
    instant: datetime, reset_day: int, reset_time: time, zone: tzinfo = timezone.utc
) -> int:
    local = _local(instant, zone)
    year, month = local.year, local.month
    effective_day = min(reset_day, _month_length(year, month))
    if local.day < effective_day or (
        local.day == effective_day
        and _before_reset(instant, local.date(), reset_time, zone)
    ):
        year, month = _previous_month(year, month)
    return year * 100 + month


def cycle_index(
    instant: datetime, policy: ExpirePolicy, zone: tzinfo = timezone.utc
) -> Optional[int]:
    """Cycle index of ``instant``, or None for non-cyclic policies."""
    if isinstance(policy, DailyPolicy):
        return daily_index(instant, policy.reset_time, zone)
    if isinstance(policy, WeeklyPolicy):
        return weekly_index(instant, int(policy.reset_day_of_week), policy.reset_time, zone)
    if isinstance(policy, MonthlyPolicy):
        return monthly_index(instant, policy.reset_day_of_month, policy.reset_time, zone)
    return None


def is_expired(
    assigned_at: datetime,
    now: datetime,
    policy: ExpirePolicy,
    zone: tzinfo = timezone.utc,
) -> bool:
    if isinstance(policy, PermanentPolicy):
        return False
    if isinstance(policy, RelativePolicy):
        if policy.duration <= timedelta(0):
            return True
        return ensure_utc(assigned_at) + policy.duration < ensure_utc(now)
    if isinstance(policy, FixedPolicy):
        if policy.end is None:
            return False
        return ensure_utc(now) > ensure_utc(policy.end)
    return cycle_index(assigned_at, policy, zone) < cycle_index(now, policy, zone)


def in_fixed_window(now: datetime, policy: ExpirePolicy) -> bool:
    """True unless a fixed policy's window excludes ``now``; open bounds match."""
    if not isinstance(policy, FixedPolicy):
        return True
    now = ensure_utc(now)
    if policy.start is not None and now < ensure_utc(policy.start):
        return False
    if policy.end is not None and now > ensure_utc(policy.end):
        return False
    return True


def next_reset(
    assigned_at: datetime, policy: ExpirePolicy, zone: tzinfo = timezone.utc
) -> Optional[datetime]:
    """First instant at which something assigned at ``assigned_at`` counts as expired."""
    if isinstance(policy, PermanentPolicy):
        return None
    if isinstance(policy, RelativePolicy):
        return ensure_utc(assigned_at) + policy.duration
    if isinstance(policy, FixedPolicy):
        return ensure_utc(policy.end) if policy.end else None

    if isinstance(policy, DailyPolicy):
        anchor = _from_epoch_day(daily_index(assigned_at, policy.reset_time, zone))
        boundary = anchor + timedelta(days=1)
    elif isinstance(policy, WeeklyPolicy):
        anchor = _from_epoch_day(
            weekly_index(assigned_at, int(policy.reset_day_of_week), policy.reset_time, zone)
        )
        boundary = anchor + timedelta(days=7)
    else:
        index = monthly_index(assigned_at, policy.reset_day_of_month, policy.reset_time, zone)
        year, month = _next_month(index // 100, index % 100)
        boundary = date(year, month, min(policy.reset_day_of_month, _month_length(year, month)))

    return datetime.combine(boundary, policy.reset_time, tzinfo=zone).astimezone(timezone.utc)


class Clock:
    """Injectable source of "now" plus the zone cycle boundaries are computed in."""

    def __init__(self, zone: tzinfo | str | None = None):
        self.zone = resolve_zone(zone) if isinstance(zone, str) or zone is None else zone

    def now(self) -> datetime:
        return utc_now()

    def is_expired(
        self, assigned_at: datetime, policy: ExpirePolicy, now: Optional[datetime] = None
    ) -> bool:
        return is_expired(assigned_at, now or self.now(), policy, self.zone)

    def in_fixed_window(self, policy: ExpirePolicy, now: Optional[datetime] = None) -> bool:
        return in_fixed_window(now or self.now(), policy)

    def next_reset(self, assigned_at: datetime, policy: ExpirePolicy) -> Optional[datetime]:
        return next_reset(assigned_at, policy, self.zone)
