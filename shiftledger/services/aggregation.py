from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, timedelta

from shiftledger.services.timesheet_types import Category, DailyTotals, SubInterval, round_hours
from shiftledger.services.timezone_rules import TimezoneResolver, get_timezone_resolver

_HOUR = timedelta(hours=1)


@dataclass
class DayAccumulator:
    subject_id: int
    work_date: date
    durations: dict[Category, timedelta] = field(default_factory=lambda: defaultdict(timedelta))
    notes: set[str] = field(default_factory=set)
    entry_ids: set[int] = field(default_factory=set)

    def add(self, piece: SubInterval) -> None:
        if piece.category is None:
            raise ValueError("Sub-interval must be classified before aggregation")
        self.durations[piece.category] += piece.duration
        if piece.notes:
            self.notes.add(piece.notes.strip())
        if piece.entry_id is not None:
            self.entry_ids.add(piece.entry_id)

    def merge(self, other: DayAccumulator) -> None:
        for category, duration in other.durations.items():
            self.durations[category] += duration
        self.notes |= other.notes
        self.entry_ids |= other.entry_ids

    def to_totals(self) -> DailyTotals:
        clock = sum(self.durations.values(), timedelta())
        hours = {category.value: round_hours(duration / _HOUR) for category, duration in self.durations.items()}
        merged_notes = "; ".join(sorted(note for note in self.notes if note)) or None
        return DailyTotals(
            subject_id=self.subject_id,
            work_date=self.work_date,
            clock_hours=round_hours(clock / _HOUR),
            notes=merged_notes,
            source_entry_ids=tuple(sorted(self.entry_ids)),
            **hours,
        )


def work_date_of(piece: SubInterval, resolver: TimezoneResolver) -> date:
    if piece.attributed_date is not None:
        return piece.attributed_date
    return resolver.local_of(piece.midpoint).date()


def accumulate(
    sub_intervals: Iterable[SubInterval],
    *,
    resolver: TimezoneResolver | None = None,
) -> dict[tuple[int, date], DayAccumulator]:
    resolver = resolver or get_timezone_resolver()
    days: dict[tuple[int, date], DayAccumulator] = {}
    for piece in sub_intervals:
        if piece.subject_id is None:
            raise ValueError("Sub-interval has no subject")
        key = (piece.subject_id, work_date_of(piece, resolver))
        day = days.get(key)
        if day is None:
            day = DayAccumulator(subject_id=key[0], work_date=key[1])
            days[key] = day
        day.add(piece)
    return days


def merge_accumulators(
    partials: Iterable[dict[tuple[int, date], DayAccumulator]],
) -> dict[tuple[int, date], DayAccumulator]:
    merged: dict[tuple[int, date], DayAccumulator] = {}
    for partial in partials:
        for key, day in partial.items():
            existing = merged.get(key)
            if existing is None:
                existing = DayAccumulator(subject_id=key[0], work_date=key[1])
                merged[key] = existing
            existing.merge(day)
    return merged


def aggregate(
    sub_intervals: Iterable[SubInterval],
    *,
    resolver: TimezoneResolver | None = None,
) -> dict[tuple[int, date], DailyTotals]:
    """Sum classified sub-intervals into one totals record per (subject, local work date).

    Durations are summed exactly and rounded to hundredths of an hour only at
    the end, so the result does not depend on input order.
    """
    days = accumulate(sub_intervals, resolver=resolver)
    return {key: days[key].to_totals() for key in sorted(days)}
