from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Literal

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from shiftledger.errors import ConcurrentEditConflict
from shiftledger.models import (
    DailyTimesheet,
    ManualOverride,
    SecurityAlert,
    TimeEntry,
    TimesheetState,
)
from shiftledger.services.holidays import load_holiday_calendar
from shiftledger.services.pipeline import BatchResult, run_batch
from shiftledger.services.reconciliation import (
    Applied,
    CategoryEdit,
    OverrideRequired,
    OverrideState,
    Rebalanced,
    Rejected,
    is_within_tolerance,
    resolve_edit,
)
from shiftledger.services.timesheet_types import (
    HOUR_FIELD_NAMES,
    Category,
    DailyTotals,
    ShiftInterval,
    round_hours,
)
from shiftledger.services.timezone_rules import as_utc, get_timezone_resolver
from shiftledger.settings import get_max_shift_duration, get_settings

logger = logging.getLogger("shiftledger.timesheets")

DayKey = tuple[int, date]

_KEY_LOCKS_GUARD = threading.Lock()
# Per-day lock and the number of callers holding or waiting on it.
_KEY_LOCKS: dict[DayKey, tuple[threading.Lock, int]] = {}


@dataclass(frozen=True, slots=True)
class EffectiveDay:
    totals: DailyTotals
    state: TimesheetState
    clock_total: float
    version: int | None = None
    override_id: int | None = None
    override_reason: str | None = None
    is_true_override: bool | None = None

    @property
    def within_tolerance(self) -> bool:
        return is_within_tolerance(self.totals, self.clock_total, get_settings().reconcile_tolerance_hours)


@dataclass(frozen=True, slots=True)
class EditOutcome:
    resolution: Literal["APPLIED", "REBALANCED", "OVERRIDDEN"]
    day: EffectiveDay
    regular_delta: float | None = None


@dataclass
class RecomputeOutcome:
    result: BatchResult
    start_date: date
    end_date: date
    days_written: int = 0
    days_removed: int = 0


@contextmanager
def day_lock(employee_id: int, work_date: date) -> Iterator[None]:
    """Serialise work on one (employee, day) inside this process.

    Other processes are kept out by the row locks taken in ``_load_day``.
    """
    key = (employee_id, work_date)
    with _KEY_LOCKS_GUARD:
        lock, holders = _KEY_LOCKS.get(key, (None, 0))
        if lock is None:
            lock = threading.Lock()
        _KEY_LOCKS[key] = (lock, holders + 1)
    try:
        with lock:
            yield
    finally:
        with _KEY_LOCKS_GUARD:
            _, holders = _KEY_LOCKS[key]
            if holders <= 1:
                del _KEY_LOCKS[key]
            else:
                _KEY_LOCKS[key] = (lock, holders - 1)


def active_day_locks() -> int:
    with _KEY_LOCKS_GUARD:
        return len(_KEY_LOCKS)


def _hours_from_row(row: DailyTimesheet | ManualOverride) -> dict[str, float]:
    return {name: float(getattr(row, f"hours_{name}") or 0) for name in HOUR_FIELD_NAMES}


def _write_hours(row: DailyTimesheet | ManualOverride, totals: DailyTotals) -> None:
    for name in HOUR_FIELD_NAMES:
        setattr(row, f"hours_{name}", getattr(totals, name))


def _totals_from_row(row: DailyTimesheet) -> DailyTotals:
    return DailyTotals(
        subject_id=row.employee_id,
        work_date=row.work_date,
        clock_hours=float(row.clock_hours or 0),
        break_hours=float(row.break_hours or 0),
        notes=row.notes,
        source_entry_ids=tuple(row.source_entry_ids or ()),
        **_hours_from_row(row),
    )


def _totals_from_override(override: ManualOverride, row: DailyTimesheet | None) -> DailyTotals:
    return DailyTotals(
        subject_id=override.employee_id,
        work_date=override.work_date,
        clock_hours=float(row.clock_hours or 0) if row is not None else float(override.clock_hours or 0),
        break_hours=float(row.break_hours or 0) if row is not None else 0.0,
        notes=row.notes if row is not None else None,
        **_hours_from_row(override),
    )


def _clock_total(row: DailyTimesheet | None, override: ManualOverride | None) -> float:
    if row is not None:
        return round_hours(float(row.clock_hours or 0) - float(row.break_hours or 0))
    if override is not None:
        return round_hours(float(override.clock_hours or 0))
    return 0.0


def _load_day(
    db: Session,
    employee_id: int,
    work_date: date,
    *,
    for_update: bool = False,
) -> tuple[DailyTimesheet | None, ManualOverride | None]:
    # Re-read rows so commits from other sessions are visible.
    row_stmt = (
        select(DailyTimesheet)
        .where(DailyTimesheet.employee_id == employee_id, DailyTimesheet.work_date == work_date)
        .execution_options(populate_existing=True)
    )
    override_stmt = (
        select(ManualOverride)
        .where(ManualOverride.employee_id == employee_id, ManualOverride.work_date == work_date)
        .execution_options(populate_existing=True)
    )
    if for_update:
        row_stmt = row_stmt.with_for_update()
        override_stmt = override_stmt.with_for_update()
    return db.scalar(row_stmt), db.scalar(override_stmt)


def _build_effective_day(
    employee_id: int,
    work_date: date,
    row: DailyTimesheet | None,
    override: ManualOverride | None,
) -> EffectiveDay:
    clock_total = _clock_total(row, override)
    version = row.version_id if row is not None else None
    if override is not None:
        return EffectiveDay(
            totals=_totals_from_override(override, row),
            state=TimesheetState.OVERRIDDEN,
            clock_total=clock_total,
            version=version,
            override_id=override.id,
            override_reason=override.reason,
            is_true_override=override.is_true_override,
        )
    if row is not None:
        totals = _totals_from_row(row)
    else:
        totals = DailyTotals(subject_id=employee_id, work_date=work_date)
    return EffectiveDay(
        totals=totals,
        state=TimesheetState.COMPUTED,
        clock_total=clock_total,
        version=version,
    )


def get_effective_day(db: Session, employee_id: int, work_date: date) -> EffectiveDay:
    row, override = _load_day(db, employee_id, work_date)
    return _build_effective_day(employee_id, work_date, row, override)


def list_effective_days(db: Session, *, employee_id: int, year: int, month: int) -> list[EffectiveDay]:
    start_date = date(year, month, 1)
    end_date = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)

    rows = db.scalars(
        select(DailyTimesheet).where(
            DailyTimesheet.employee_id == employee_id,
            DailyTimesheet.work_date >= start_date,
            DailyTimesheet.work_date < end_date,
        ).execution_options(populate_existing=True)
    ).all()
    overrides = db.scalars(
        select(ManualOverride).where(
            ManualOverride.employee_id == employee_id,
            ManualOverride.work_date >= start_date,
            ManualOverride.work_date < end_date,
        ).execution_options(populate_existing=True)
    ).all()
    rows_by_date = {row.work_date: row for row in rows}
    overrides_by_date = {override.work_date: override for override in overrides}

    return [
        _build_effective_day(employee_id, work_date, rows_by_date.get(work_date), overrides_by_date.get(work_date))
        for work_date in sorted(set(rows_by_date) | set(overrides_by_date))
    ]


def _to_shift(entry: TimeEntry) -> ShiftInterval:
    return ShiftInterval(
        subject_id=entry.employee_id,
        start=as_utc(entry.clock_in_ts),
        end=as_utc(entry.clock_out_ts) if entry.clock_out_ts is not None else None,
        activity_tag=entry.activity_tag,
        entry_id=entry.id,
        notes=entry.notes,
    )


def _local_day_start_utc(value: date) -> datetime:
    return get_timezone_resolver().utc_of(datetime.combine(value, time(0, 0)))


def _record_capped_shifts(db: Session, result: BatchResult) -> None:
    for outcome in result.capped:
        entry_id = outcome.shift.entry_id
        existing = None
        if entry_id is not None:
            existing = db.scalar(
                select(SecurityAlert).where(
                    SecurityAlert.alert_type == "excessive_duration",
                    SecurityAlert.time_entry_id == entry_id,
                )
            )
        if existing is not None:
            continue
        duration = outcome.shift.duration
        original_hours = round_hours(duration.total_seconds() / 3600) if duration is not None else None
        db.add(
            SecurityAlert(
                alert_type="excessive_duration",
                severity="high",
                message=f"Time entry of {original_hours}h capped to {get_settings().max_shift_hours}h",
                employee_id=outcome.shift.subject_id,
                time_entry_id=entry_id,
                details={
                    "original_duration_hours": original_hours,
                    "corrected_duration_hours": get_settings().max_shift_hours,
                    "auto_corrected": True,
                },
            )
        )


def recompute_range(
    db: Session,
    *,
    start_date: date,
    end_date: date,
    employee_id: int | None = None,
    today: date | None = None,
) -> RecomputeOutcome:
    """Re-run the forward pipeline for every local work date in ``[start_date, end_date]``.

    Days carrying a manual override are left untouched. Computed rows whose
    clock data disappeared are removed, so re-running over unchanged entries
    leaves the table as it was.
    """
    window_start = _local_day_start_utc(start_date) - get_max_shift_duration()
    window_end = _local_day_start_utc(end_date + timedelta(days=1))

    entry_stmt = select(TimeEntry).where(
        TimeEntry.clock_out_ts.is_not(None),
        TimeEntry.clock_in_ts >= window_start,
        TimeEntry.clock_in_ts < window_end,
    )
    override_stmt = select(ManualOverride.employee_id, ManualOverride.work_date).where(
        ManualOverride.work_date >= start_date,
        ManualOverride.work_date <= end_date,
    )
    row_stmt = select(DailyTimesheet).where(
        DailyTimesheet.work_date >= start_date,
        DailyTimesheet.work_date <= end_date,
    )
    if employee_id is not None:
        entry_stmt = entry_stmt.where(TimeEntry.employee_id == employee_id)
        override_stmt = override_stmt.where(ManualOverride.employee_id == employee_id)
        row_stmt = row_stmt.where(DailyTimesheet.employee_id == employee_id)

    entries = db.scalars(entry_stmt.order_by(TimeEntry.clock_in_ts.asc(), TimeEntry.id.asc())).all()
    overridden_keys = {(item[0], item[1]) for item in db.execute(override_stmt).all()}
    result = run_batch(
        [_to_shift(entry) for entry in entries],
        load_holiday_calendar(db),
        skip_keys=overridden_keys,
        today=today,
    )

    outcome = RecomputeOutcome(result=result, start_date=start_date, end_date=end_date)
    existing_rows = {(row.employee_id, row.work_date): row for row in db.scalars(row_stmt).all()}
    issue_keys = {(issue.subject_id, issue.work_date) for issue in result.day_issues}
    touched: set[DayKey] = set()

    for key, totals in result.totals.items():
        if not start_date <= key[1] <= end_date:
            continue
        row = existing_rows.get(key)
        if row is None:
            row = DailyTimesheet(employee_id=key[0], work_date=key[1])
            db.add(row)
        _write_hours(row, totals)
        row.clock_hours = totals.clock_hours
        row.break_hours = totals.break_hours
        row.notes = totals.notes
        row.source_entry_ids = list(totals.source_entry_ids)
        touched.add(key)
        outcome.days_written += 1

    for key, row in existing_rows.items():
        if key in touched or key in overridden_keys or key in issue_keys:
            continue
        db.delete(row)
        touched.add(key)
        outcome.days_removed += 1

    _record_capped_shifts(db, result)
    try:
        db.commit()
    except (StaleDataError, IntegrityError) as exc:
        # Another writer updated or inserted one of these days first.
        db.rollback()
        raise ConcurrentEditConflict(
            employee_id or 0,
            f"{start_date.isoformat()}..{end_date.isoformat()}",
            "Timesheets changed while recomputing, retry the recompute.",
        ) from exc

    logger.info(
        "timesheet_recompute_complete",
        extra={
            "employee_id": employee_id,
            "start_date": start_date,
            "end_date": end_date,
            "days_written": outcome.days_written,
            "days_removed": outcome.days_removed,
            **result.summary(),
        },
    )
    return outcome


def affected_local_dates(entry: TimeEntry) -> list[date]:
    resolver = get_timezone_resolver()
    end = entry.clock_out_ts or entry.clock_in_ts
    first = resolver.local_of(as_utc(entry.clock_in_ts)).date()
    last = resolver.local_of(as_utc(end)).date()
    return [first + timedelta(days=offset) for offset in range((last - first).days + 1)]


def recompute_for_entry(db: Session, entry_id: int, *, today: date | None = None) -> RecomputeOutcome:
    entry = db.get(TimeEntry, entry_id)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Time entry not found")
    dates = affected_local_dates(entry)
    return recompute_range(
        db,
        start_date=dates[0],
        end_date=dates[-1],
        employee_id=entry.employee_id,
        today=today,
    )


def _persist_resolution(
    db: Session,
    *,
    employee_id: int,
    work_date: date,
    row: DailyTimesheet | None,
    override: ManualOverride | None,
    resolution: Applied | Rebalanced | OverrideRequired,
    clock_total: float,
    actor: str,
) -> None:
    if isinstance(resolution, OverrideRequired):
        if override is None:
            override = ManualOverride(employee_id=employee_id, work_date=work_date)
            db.add(override)
        _write_hours(override, resolution.allocation)
        override.clock_hours = clock_total
        override.reason = resolution.reason
        override.is_true_override = resolution.is_true_override
        override.created_by = actor
        return

    if row is None:
        row = DailyTimesheet(employee_id=employee_id, work_date=work_date)
        db.add(row)
    _write_hours(row, resolution.totals)


def apply_timesheet_edit(
    db: Session,
    *,
    employee_id: int,
    work_date: date,
    category: Category,
    hours: float,
    justification: str | None = None,
    expected_version: int | None = None,
    actor: str = "admin",
) -> EditOutcome:
    """Administrative edit of one category for one day.

    Edits of the same day are serialised by a per-day lock in this process
    and by ``SELECT ... FOR UPDATE`` across processes. A write that loses the
    optimistic version check, or races another first insert of the day, is
    decided again against the fresh rows. Nothing is written when the edit is
    rejected.
    """
    settings = get_settings()
    edit = CategoryEdit(category=category, value=hours, justification=justification)
    attempts = max(1, settings.edit_conflict_retries + 1)

    with day_lock(employee_id, work_date):
        for attempt in range(attempts):
            row, override = _load_day(db, employee_id, work_date, for_update=True)
            if expected_version is not None and row is not None and row.version_id != expected_version:
                db.rollback()
                raise ConcurrentEditConflict(employee_id, work_date.isoformat())

            current = _build_effective_day(employee_id, work_date, row, override)
            resolution = resolve_edit(
                current.totals,
                edit,
                clock_total=current.clock_total,
                override=(
                    OverrideState(reason=override.reason, is_true_override=override.is_true_override)
                    if override is not None
                    else None
                ),
                tolerance=settings.reconcile_tolerance_hours,
            )
            if isinstance(resolution, Rejected):
                db.rollback()
                logger.info(
                    "timesheet_edit_rejected",
                    extra={
                        "employee_id": employee_id,
                        "work_date": work_date,
                        "category": category.value,
                        "field": resolution.error.field,
                    },
                )
                raise resolution.error

            _persist_resolution(
                db,
                employee_id=employee_id,
                work_date=work_date,
                row=row,
                override=override,
                resolution=resolution,
                clock_total=current.clock_total,
                actor=actor,
            )
            try:
                db.commit()
            except (StaleDataError, IntegrityError):
                # Lost a version check, or another process inserted this day first.
                db.rollback()
                logger.warning(
                    "timesheet_edit_conflict",
                    extra={"employee_id": employee_id, "work_date": work_date, "attempt": attempt + 1},
                )
                if expected_version is not None:
                    raise ConcurrentEditConflict(employee_id, work_date.isoformat())
                continue
            break
        else:
            raise ConcurrentEditConflict(employee_id, work_date.isoformat())

        day = get_effective_day(db, employee_id, work_date)

    if isinstance(resolution, OverrideRequired):
        kind: Literal["APPLIED", "REBALANCED", "OVERRIDDEN"] = "OVERRIDDEN"
        regular_delta = None
    elif isinstance(resolution, Rebalanced):
        kind = "REBALANCED"
        regular_delta = resolution.regular_delta
    else:
        kind = "APPLIED"
        regular_delta = None

    logger.info(
        "timesheet_edit_resolved",
        extra={
            "employee_id": employee_id,
            "work_date": work_date,
            "category": category.value,
            "hours": hours,
            "resolution": kind,
            "regular_delta": regular_delta,
            "actor": actor,
        },
    )
    return EditOutcome(resolution=kind, day=day, regular_delta=regular_delta)


def list_manual_overrides(db: Session, *, employee_id: int, year: int, month: int) -> list[ManualOverride]:
    start_date = date(year, month, 1)
    end_date = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return list(
        db.scalars(
            select(ManualOverride)
            .where(
                ManualOverride.employee_id == employee_id,
                ManualOverride.work_date >= start_date,
                ManualOverride.work_date < end_date,
            )
            .order_by(ManualOverride.work_date.asc(), ManualOverride.id.asc())
        ).all()
    )


def clear_overrides(db: Session, override_ids: Iterable[int], *, today: date | None = None) -> list[EffectiveDay]:
    """Return overridden days to the computed state and recompute them from clock data."""
    ids = sorted(set(override_ids))
    overrides = list(db.scalars(select(ManualOverride).where(ManualOverride.id.in_(ids))).all())
    found = {override.id for override in overrides}
    missing = [override_id for override_id in ids if override_id not in found]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Manual override not found: {', '.join(str(item) for item in missing)}",
        )

    keys = sorted({(override.employee_id, override.work_date) for override in overrides})
    for override in overrides:
        db.delete(override)
    db.commit()

    days: list[EffectiveDay] = []
    for employee_id, work_date in keys:
        with day_lock(employee_id, work_date):
            recompute_range(db, start_date=work_date, end_date=work_date, employee_id=employee_id, today=today)
        days.append(get_effective_day(db, employee_id, work_date))

    logger.info("manual_overrides_cleared", extra={"override_ids": ids, "days": len(keys)})
    return days


def clear_override(db: Session, override_id: int, *, today: date | None = None) -> EffectiveDay:
    return clear_overrides(db, [override_id], today=today)[0]
