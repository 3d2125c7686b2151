"""Recurrence math — next due instants for reports and scheduled tasks.

Everything here is pure: ``now`` is always passed in, nothing touches the
database or the clock.  Local wall-clock times are converted with the IANA
tz database (``zoneinfo``), so each target date gets its own UTC offset
(EDT vs. EST for US-Eastern) rather than the offset in effect at ``now``.

Weekdays use Sunday=0 .. Saturday=6 numbering, matching how schedules are
stored by the client.
"""

from __future__ import annotations

import calendar
import logging
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

ONCE = "once"
DAILY = "daily"
WEEKLY = "weekly"
BIWEEKLY = "biweekly"
MONTHLY = "monthly"

REPORT_FREQUENCIES = (DAILY, WEEKLY, MONTHLY)
TASK_FREQUENCIES = (ONCE, DAILY, WEEKLY, BIWEEKLY, MONTHLY)

DEFAULT_WEEKDAY = 1  # Monday
DEFAULT_MONTH_DAY = 1


# -- Timestamp helpers ---------------------------------------------------------


def to_iso(dt: datetime) -> str:
    """Format an aware datetime as a fixed-width UTC ISO string.

    Millisecond precision is always present so stored values sort
    lexicographically in time order.
    """
    return dt.astimezone(UTC).isoformat(timespec="milliseconds")


def parse_iso(value: str) -> datetime:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def parse_schedule_time(value: str) -> tuple[int, int]:
    """Parse ``"HH:MM"`` (seconds ignored) into ``(hour, minute)``."""
    parts = value.strip().split(":")
    try:
        hour = int(parts[0])
        minute = int(parts[1]) if len(parts) > 1 else 0
    except ValueError:
        msg = f"Invalid schedule time: {value!r}"
        raise ValueError(msg) from None
    if not (0 <= hour < 24 and 0 <= minute < 60):
        msg = f"Invalid schedule time: {value!r}"
        raise ValueError(msg)
    return hour, minute


def resolve_timezone(name: str | None, default: str) -> ZoneInfo:
    """Look up an IANA zone, falling back to *default* for unknown names."""
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, using %s", name, default)
    return ZoneInfo(default)


# -- Calendar helpers ----------------------------------------------------------


def weekday_number(d: date) -> int:
    """Weekday with Sunday=0 .. Saturday=6."""
    return (d.weekday() + 1) % 7


def clamp_day(year: int, month: int, day: int) -> date:
    """Build a date, clamping *day* to the last day of the month."""
    last = calendar.monthrange(year, month)[1]
    return date(year, month, max(1, min(day, last)))


def add_months(d: date, months: int, day: int | None = None) -> date:
    """Shift *d* by whole months, landing on *day* (default: same day), clamped."""
    index = d.year * 12 + (d.month - 1) + months
    year, month_index = divmod(index, 12)
    return clamp_day(year, month_index + 1, day or d.day)


def localize(d: date, hour: int, minute: int, tz: ZoneInfo) -> datetime:
    """Return the UTC instant of wall-clock *d* at hour:minute in *tz*.

    Uses the offset in effect on *d* itself.  A wall time inside a
    spring-forward gap resolves to the instant just after the jump.
    """
    local = datetime.combine(d, time(hour, minute), tzinfo=tz)
    return local.astimezone(UTC)


def _step(d: date, frequency: str, day: int | None) -> date:
    if frequency in (ONCE, DAILY):
        return d + timedelta(days=1)
    if frequency == WEEKLY:
        return d + timedelta(days=7)
    if frequency == BIWEEKLY:
        return d + timedelta(days=14)
    if frequency == MONTHLY:
        return add_months(d, 1, day)
    msg = f"Unknown frequency: {frequency!r}"
    raise ValueError(msg)


def _push_past(
    target: date,
    hour: int,
    minute: int,
    tz: ZoneInfo,
    now: datetime,
    frequency: str,
    day: int | None,
) -> datetime:
    """Localize *target*, stepping whole periods until strictly after *now*."""
    result = localize(target, hour, minute, tz)
    while result <= now:
        target = _step(target, frequency, day)
        result = localize(target, hour, minute, tz)
    return result


# -- Reports -------------------------------------------------------------------


def next_report_run(
    frequency: str,
    schedule_time: str,
    schedule_day: int | None,
    now: datetime,
    timezone: str = "America/New_York",
) -> datetime:
    """Next occurrence of a report schedule, strictly after *now* (UTC).

    ``schedule_day`` is the weekday for weekly reports and the day of the
    month for monthly ones; it is ignored for daily reports.
    """
    if frequency not in REPORT_FREQUENCIES:
        msg = f"Unknown report frequency: {frequency!r}"
        raise ValueError(msg)

    tz = resolve_timezone(timezone, "America/New_York")
    hour, minute = parse_schedule_time(schedule_time)
    local_now = now.astimezone(tz)
    today = local_now.date()
    passed = hour * 60 + minute <= local_now.hour * 60 + local_now.minute

    month_day = None
    if frequency == DAILY:
        target = today + timedelta(days=1) if passed else today
    elif frequency == WEEKLY:
        wanted = DEFAULT_WEEKDAY if schedule_day is None else schedule_day % 7
        delta = (wanted - weekday_number(today)) % 7
        if delta == 0 and passed:
            delta = 7
        target = today + timedelta(days=delta)
    else:
        month_day = schedule_day or DEFAULT_MONTH_DAY
        if today.day > month_day or (today.day == month_day and passed):
            target = add_months(today, 1, month_day)
        else:
            target = clamp_day(today.year, today.month, month_day)

    return _push_past(target, hour, minute, tz, now, frequency, month_day)


# -- Scheduled tasks -----------------------------------------------------------


def next_task_run(
    frequency: str,
    hour: int,
    minute: int,
    schedule_day: int | None,
    timezone: str | None,
    now: datetime,
    default_timezone: str = "America/New_York",
) -> datetime | None:
    """Next run of a task after one dispatch at *now*; None for one-time tasks.

    Anchors on today's local slot and adds the frequency's increment
    (+1/+7/+14 days, or +1 month onto ``schedule_day``).
    """
    if frequency == ONCE:
        return None
    if frequency not in TASK_FREQUENCIES:
        msg = f"Unknown task frequency: {frequency!r}"
        raise ValueError(msg)

    tz = resolve_timezone(timezone, default_timezone)
    month_day = schedule_day if frequency == MONTHLY else None
    today = now.astimezone(tz).date()
    target = _step(today, frequency, month_day)
    return _push_past(target, hour, minute, tz, now, frequency, month_day)


def first_task_run(
    frequency: str,
    hour: int,
    minute: int,
    schedule_day: int | None,
    timezone: str | None,
    now: datetime,
    default_timezone: str = "America/New_York",
) -> datetime:
    """First run of a newly created task, strictly after *now*."""
    if frequency not in TASK_FREQUENCIES:
        msg = f"Unknown task frequency: {frequency!r}"
        raise ValueError(msg)

    tz = resolve_timezone(timezone, default_timezone)
    today = now.astimezone(tz).date()
    slot_passed = localize(today, hour, minute, tz) <= now

    month_day = None
    if frequency in (ONCE, DAILY):
        target = today + timedelta(days=1) if slot_passed else today
    elif frequency in (WEEKLY, BIWEEKLY):
        wanted = DEFAULT_WEEKDAY if schedule_day is None else schedule_day % 7
        delta = (wanted - weekday_number(today)) % 7
        if delta == 0 and slot_passed:
            delta = 7 if frequency == WEEKLY else 14
        target = today + timedelta(days=delta)
    else:
        month_day = schedule_day or DEFAULT_MONTH_DAY
        target = clamp_day(today.year, today.month, month_day)
        if localize(target, hour, minute, tz) <= now:
            target = add_months(target, 1, month_day)

    return _push_past(target, hour, minute, tz, now, frequency, month_day)
