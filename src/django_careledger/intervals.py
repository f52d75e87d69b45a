"""Interval arithmetic and conflict detection for service bookings.

Bookings are half-open intervals ``[start, end)`` on a 24h clock anchored on
their service date. When ``end <= start`` the interval wraps past midnight and
occupies ``[start, 24:00)`` on the service date plus ``[00:00, end)`` on the
following day.

Overlap is decided on absolute minute ranges (days since epoch * 1440 +
minute of day), which is equivalent to intersecting the per-day segments on
every shared calendar day.
"""

import re
from dataclasses import dataclass, field
from datetime import date, time, timedelta
from enum import Enum
from typing import Iterable

from django_careledger.exceptions import ValidationError


MINUTES_PER_DAY = 24 * 60

_TIME_PATTERN = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::(\d{2}))?\s*$")


class ActorKind(str, Enum):
    """Who a booking is checked against."""

    STAFF = "staff"
    CUSTOMER = "customer"


def parse_time(value) -> time:
    """Parse a time-of-day with minute precision.

    Accepts ``datetime.time`` or ``"HH:MM"`` / ``"HH:MM:00"`` strings.
    ``"24:00"`` is accepted as an end-of-day marker and maps to midnight,
    which the wrap rule then places on the following day. Bookings are
    whole minutes, so non-zero seconds are rejected rather than truncated.

    Raises:
        ValidationError: If the value is not a valid time of day or has
            sub-minute precision
    """
    if isinstance(value, time):
        if value.second or value.microsecond:
            raise ValidationError(f"Time {value} has sub-minute precision, expected HH:MM")
        return value
    if not isinstance(value, str):
        raise ValidationError(f"Expected a time of day, got {value!r}")

    match = _TIME_PATTERN.match(value)
    if not match:
        raise ValidationError(f"Unparseable time {value!r}, expected HH:MM")

    hours, minutes = int(match.group(1)), int(match.group(2))
    seconds = int(match.group(3) or 0)
    if (hours, minutes, seconds) == (24, 0, 0):
        return time(0, 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        raise ValidationError(f"Time {value!r} is out of range")
    if seconds:
        raise ValidationError(f"Time {value!r} has sub-minute precision, expected HH:MM")
    return time(hours, minutes)


def parse_date(value) -> date:
    """Parse a calendar date from ``datetime.date`` or ``YYYY-MM-DD``."""
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Unparseable date {value!r}, expected YYYY-MM-DD")


def minute_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def duration_minutes(start, end) -> int:
    """Length of ``[start, end)`` in minutes under the midnight-wrap rule.

    ``end == start`` is a full 24 hour wrap.
    """
    start_min = minute_of_day(parse_time(start))
    end_min = minute_of_day(parse_time(end))
    if end_min <= start_min:
        end_min += MINUTES_PER_DAY
    return end_min - start_min


def wraps_midnight(start, end) -> bool:
    return minute_of_day(parse_time(end)) <= minute_of_day(parse_time(start))


def absolute_range(service_date, start, end) -> tuple[int, int]:
    """Absolute ``[begin, end)`` minute range of a booking."""
    day_offset = parse_date(service_date).toordinal() * MINUTES_PER_DAY
    begin = day_offset + minute_of_day(parse_time(start))
    return begin, begin + duration_minutes(start, end)


def occupied_segments(service_date, start, end) -> list[tuple[date, int, int]]:
    """Per-day ``(date, start_minute, end_minute)`` segments a booking occupies.

    Example:
        occupied_segments(date(2024, 1, 1), "22:00", "06:00")
        # [(2024-01-01, 1320, 1440), (2024-01-02, 0, 360)]
    """
    service_date = parse_date(service_date)
    start_min = minute_of_day(parse_time(start))
    total = duration_minutes(start, end)

    segments = []
    day, cursor, remaining = service_date, start_min, total
    while remaining > 0:
        span = min(remaining, MINUTES_PER_DAY - cursor)
        segments.append((day, cursor, cursor + span))
        remaining -= span
        day, cursor = day + timedelta(days=1), 0
    return segments


def occupied_dates(service_date, start, end) -> list[date]:
    """Calendar days a booking touches, in order."""
    return [segment[0] for segment in occupied_segments(service_date, start, end)]


def intervals_overlap(first: tuple[int, int], second: tuple[int, int]) -> bool:
    """Half-open overlap test; ranges that only touch do not overlap."""
    return first[0] < second[1] and second[0] < first[1]


@dataclass(frozen=True)
class ConflictSummary:
    """Summary of an existing entry that overlaps a proposed booking."""

    entry_id: str
    service_date: date
    start_time: time
    end_time: time
    customer_id: str
    staff_id: str


@dataclass(frozen=True)
class ConflictResult:
    """Outcome of a conflict check.

    An empty ``conflicts`` tuple is the NoConflict outcome.
    """

    actor_kind: ActorKind
    actor_id: str
    service_date: date
    conflicts: tuple[ConflictSummary, ...] = field(default_factory=tuple)

    @property
    def has_conflict(self) -> bool:
        return bool(self.conflicts)

    @property
    def conflicting_ids(self) -> list[str]:
        return [c.entry_id for c in self.conflicts]


def _summarize(entry) -> ConflictSummary:
    return ConflictSummary(
        entry_id=entry.id,
        service_date=entry.service_date,
        start_time=entry.start_time,
        end_time=entry.end_time,
        customer_id=entry.customer_id,
        staff_id=entry.staff_id,
    )


def check_conflict(
    actor_kind,
    actor_id: str,
    service_date,
    start,
    end,
    existing_entries: Iterable,
    exclude_entry_id: str | None = None,
) -> ConflictResult:
    """Decide whether a proposed booking overlaps existing entries.

    The caller restricts ``existing_entries`` to the same actor on the
    calendar days the proposal could touch (previous, same and next day when
    wrap-around is possible). This function only does interval arithmetic.

    Args:
        actor_kind: ActorKind (or its string value)
        actor_id: The staff or customer id being checked
        service_date: Date of the proposed booking
        start: Proposed start time
        end: Proposed end time (``<= start`` wraps past midnight)
        existing_entries: Committed entries with service_date/start_time/end_time
        exclude_entry_id: Entry to ignore, for edit-in-place checks

    Returns:
        ConflictResult listing every overlapping entry

    Raises:
        ValidationError: If a time or date is malformed
    """
    actor_kind = ActorKind(actor_kind)
    service_date = parse_date(service_date)
    proposed = absolute_range(service_date, start, end)

    conflicts = []
    for entry in existing_entries:
        if exclude_entry_id is not None and entry.id == exclude_entry_id:
            continue
        existing = absolute_range(entry.service_date, entry.start_time, entry.end_time)
        if intervals_overlap(proposed, existing):
            conflicts.append(_summarize(entry))

    conflicts.sort(key=lambda c: (c.service_date, c.start_time, c.entry_id))
    return ConflictResult(
        actor_kind=actor_kind,
        actor_id=actor_id,
        service_date=service_date,
        conflicts=tuple(conflicts),
    )


def check_batch(
    actor_kind,
    actor_id: str,
    dates: Iterable,
    start,
    end,
    entries_by_date: dict,
) -> dict[date, ConflictResult]:
    """Check one proposed time range on several distinct dates.

    Each date is checked only against ``entries_by_date[date]``. Proposals
    in the same batch never conflict with each other because dates are
    distinct.

    Raises:
        ValidationError: If the same date appears twice
    """
    parsed = [parse_date(d) for d in dates]
    if len(set(parsed)) != len(parsed):
        raise ValidationError("Batch booking dates must be distinct")

    return {
        day: check_conflict(actor_kind, actor_id, day, start, end, entries_by_date.get(day, ()))
        for day in parsed
    }
