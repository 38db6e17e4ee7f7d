from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, time, timedelta

from shiftledger.services.timesheet_types import Category, ShiftInterval, SubInterval
from shiftledger.services.timezone_rules import TimezoneResolver, as_utc, get_timezone_resolver

# Local wall-clock times where category eligibility can change within a day.
# Local midnight of the next day is always the last candidate.
CRITICAL_TIMES: tuple[time, ...] = (time(6, 0), time(22, 0))


def next_boundary(current: datetime, resolver: TimezoneResolver) -> datetime:
    local_day = resolver.local_of(current).date()
    for critical_time in CRITICAL_TIMES:
        candidate = resolver.utc_of(datetime.combine(local_day, critical_time))
        if candidate > current:
            return candidate
    return resolver.utc_of(datetime.combine(local_day + timedelta(days=1), time(0, 0)))


def walk(
    start: datetime,
    end: datetime,
    *,
    resolver: TimezoneResolver | None = None,
    subject_id: int | None = None,
    entry_id: int | None = None,
    notes: str | None = None,
) -> Iterator[SubInterval]:
    """Yield consecutive pieces of ``[start, end)`` split at local 00:00, 06:00 and 22:00.

    The pieces are unclassified and cover the interval without gaps or
    overlaps. Calling again with the same arguments yields the same pieces.
    """
    resolver = resolver or get_timezone_resolver()
    current = as_utc(start)
    stop = as_utc(end)
    while current < stop:
        candidate = min(next_boundary(current, resolver), stop)
        yield SubInterval(
            start=current,
            end=candidate,
            subject_id=subject_id,
            entry_id=entry_id,
            notes=notes,
        )
        current = candidate


def segment_shift(
    shift: ShiftInterval,
    *,
    activity: Category | None = None,
    resolver: TimezoneResolver | None = None,
) -> list[SubInterval]:
    if shift.end is None:
        return []
    resolver = resolver or get_timezone_resolver()
    start = as_utc(shift.start)
    end = as_utc(shift.end)

    if activity is not None:
        # Special activities are one block on the local date the shift started.
        return [
            SubInterval(
                start=start,
                end=end,
                subject_id=shift.subject_id,
                category=activity,
                attributed_date=resolver.local_of(start).date(),
                notes=shift.notes,
                entry_id=shift.entry_id,
            )
        ]

    return list(
        walk(
            start,
            end,
            resolver=resolver,
            subject_id=shift.subject_id,
            entry_id=shift.entry_id,
            notes=shift.notes,
        )
    )
