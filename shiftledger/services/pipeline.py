from __future__ import annotations

import logging
from collections.abc import Collection, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any

from shiftledger.errors import InvalidInterval, UnknownActivityTag
from shiftledger.services.aggregation import DayAccumulator, accumulate, merge_accumulators
from shiftledger.services.boundaries import segment_shift
from shiftledger.services.breaks import apply_breaks
from shiftledger.services.classification import activity_tag_from_notes, classify, parse_activity_tag
from shiftledger.services.timesheet_types import (
    Category,
    DailyTotals,
    HolidayCalendar,
    ShiftInterval,
)
from shiftledger.services.timezone_rules import TimezoneResolver, as_utc, get_timezone_resolver
from shiftledger.settings import get_max_shift_duration, get_min_shift_duration, get_settings

logger = logging.getLogger("shiftledger.pipeline")

MAX_DAY_HOURS = 24.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_today(resolver: TimezoneResolver) -> date:
    return resolver.local_of(_utcnow()).date()


@dataclass(frozen=True, slots=True)
class SkippedShift:
    entry_id: int | None
    subject_id: int
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"entry_id": self.entry_id, "subject_id": self.subject_id, "reason": self.reason}


@dataclass(frozen=True, slots=True)
class ShiftNotice:
    entry_id: int | None
    subject_id: int
    code: str
    detail: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "subject_id": self.subject_id,
            "code": self.code,
            "detail": self.detail,
        }


@dataclass(frozen=True, slots=True)
class DayIssue:
    subject_id: int
    work_date: date
    errors: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "work_date": self.work_date.isoformat(),
            "errors": list(self.errors),
        }


@dataclass
class ShiftOutcome:
    shift: ShiftInterval
    days: dict[tuple[int, date], DayAccumulator] = field(default_factory=dict)
    skipped: SkippedShift | None = None
    notices: list[ShiftNotice] = field(default_factory=list)
    capped_end: datetime | None = None


@dataclass
class BatchResult:
    totals: dict[tuple[int, date], DailyTotals] = field(default_factory=dict)
    skipped: list[SkippedShift] = field(default_factory=list)
    notices: list[ShiftNotice] = field(default_factory=list)
    overridden: list[tuple[int, date]] = field(default_factory=list)
    day_issues: list[DayIssue] = field(default_factory=list)
    capped: list[ShiftOutcome] = field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {
            "days": len(self.totals),
            "skipped_shifts": len(self.skipped),
            "notices": len(self.notices),
            "overridden_days": len(self.overridden),
            "invalid_days": len(self.day_issues),
            "capped_shifts": len(self.capped),
        }


def validate_interval(
    shift: ShiftInterval,
    *,
    min_duration: timedelta,
) -> timedelta:
    if shift.end is None:
        raise InvalidInterval("open_interval", entry_id=shift.entry_id)
    duration = as_utc(shift.end) - as_utc(shift.start)
    if duration <= timedelta(0):
        raise InvalidInterval("end_not_after_start", entry_id=shift.entry_id)
    if duration < min_duration:
        raise InvalidInterval("shorter_than_minimum", entry_id=shift.entry_id)
    return duration


def resolve_activity(shift: ShiftInterval) -> Category | None:
    tag = shift.activity_tag if shift.activity_tag is not None else activity_tag_from_notes(shift.notes)
    return parse_activity_tag(tag)


def process_shift(
    shift: ShiftInterval,
    holiday_calendar: HolidayCalendar,
    *,
    resolver: TimezoneResolver,
    min_duration: timedelta,
    max_duration: timedelta,
) -> ShiftOutcome:
    outcome = ShiftOutcome(shift=shift)
    try:
        duration = validate_interval(shift, min_duration=min_duration)
    except InvalidInterval as exc:
        outcome.skipped = SkippedShift(entry_id=shift.entry_id, subject_id=shift.subject_id, reason=exc.reason)
        return outcome

    working = shift
    if duration > max_duration:
        capped_end = as_utc(shift.start) + max_duration
        outcome.capped_end = capped_end
        working = ShiftInterval(
            subject_id=shift.subject_id,
            start=shift.start,
            end=capped_end,
            activity_tag=shift.activity_tag,
            entry_id=shift.entry_id,
            notes=shift.notes,
        )

    try:
        activity = resolve_activity(working)
    except UnknownActivityTag as exc:
        activity = None
        outcome.notices.append(
            ShiftNotice(
                entry_id=shift.entry_id,
                subject_id=shift.subject_id,
                code="UNKNOWN_ACTIVITY_TAG",
                detail=exc.tag,
            )
        )

    pieces = segment_shift(working, activity=activity, resolver=resolver)
    if activity is None:
        pieces = [piece.with_category(classify(piece, holiday_calendar, resolver)) for piece in pieces]
    outcome.days = accumulate(pieces, resolver=resolver)
    return outcome


def validate_day(totals: DailyTotals, *, today: date) -> list[str]:
    errors: list[str] = []
    for category in Category:
        if totals.hours(category) < 0:
            errors.append(f"{category.value}_negative")
    if totals.total_hours > MAX_DAY_HOURS:
        errors.append("total_exceeds_24h")
    if totals.work_date > today:
        errors.append("work_date_in_future")
    return errors


def run_batch(
    shifts: Sequence[ShiftInterval],
    holiday_calendar: HolidayCalendar,
    *,
    resolver: TimezoneResolver | None = None,
    skip_keys: Collection[tuple[int, date]] = (),
    today: date | None = None,
    workers: int | None = None,
) -> BatchResult:
    """Turn clocked shifts into per-day category totals after breaks.

    A bad shift or an invalid day is reported on the result and never stops
    the batch. Days listed in ``skip_keys`` (days under a manual override)
    are left out of ``totals``.
    """
    resolver = resolver or get_timezone_resolver()
    settings = get_settings()
    workers = settings.batch_workers if workers is None else workers
    today = today or local_today(resolver)
    min_duration = get_min_shift_duration()
    max_duration = get_max_shift_duration()

    def _process(shift: ShiftInterval) -> ShiftOutcome:
        return process_shift(
            shift,
            holiday_calendar,
            resolver=resolver,
            min_duration=min_duration,
            max_duration=max_duration,
        )

    outcomes: Iterable[ShiftOutcome]
    if workers > 1 and len(shifts) > 1:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="timesheet-batch") as executor:
            outcomes = list(executor.map(_process, shifts))
    else:
        outcomes = [_process(shift) for shift in shifts]

    result = BatchResult()
    partials: list[dict[tuple[int, date], DayAccumulator]] = []
    for outcome in outcomes:
        if outcome.skipped is not None:
            result.skipped.append(outcome.skipped)
            logger.warning("shift_skipped", extra=outcome.skipped.to_dict())
            continue
        if outcome.capped_end is not None:
            result.capped.append(outcome)
            logger.warning(
                "shift_capped",
                extra={
                    "entry_id": outcome.shift.entry_id,
                    "subject_id": outcome.shift.subject_id,
                    "capped_end": outcome.capped_end.isoformat(),
                },
            )
        result.notices.extend(outcome.notices)
        partials.append(outcome.days)

    blocked = set(skip_keys)
    for key, day in sorted(merge_accumulators(partials).items()):
        if key in blocked:
            result.overridden.append(key)
            continue
        totals = apply_breaks(day.to_totals())
        errors = validate_day(totals, today=today)
        if errors:
            result.day_issues.append(DayIssue(subject_id=key[0], work_date=key[1], errors=tuple(errors)))
            continue
        result.totals[key] = totals

    logger.info("timesheet_batch_complete", extra={"shifts": len(shifts), **result.summary()})
    return result