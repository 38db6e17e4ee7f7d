from __future__ import annotations

import os
import tempfile
import threading
import unittest
from datetime import date, datetime, timezone
from unittest.mock import patch

from fastapi import HTTPException
from sqlalchemy import create_engine, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from shiftledger.db import Base
from shiftledger.errors import ConcurrentEditConflict, ValidationError
from shiftledger.models import DailyTimesheet, Employee, Holiday, ManualOverride, SecurityAlert, TimeEntry, TimesheetState
from shiftledger.services.timesheet_types import Category
from shiftledger.services.timesheets import (
    active_day_locks,
    apply_timesheet_edit,
    clear_override,
    day_lock,
    get_effective_day,
    list_effective_days,
    list_manual_overrides,
    recompute_for_entry,
    recompute_range,
)

TODAY = date(2024, 2, 1)
MONDAY = date(2024, 1, 15)


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TimesheetServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.db = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)()
        self.db.add(Employee(id=1, full_name="Ana Pop"))
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _add_entry(self, entry_id: int, start: datetime, end: datetime | None, **kwargs) -> TimeEntry:  # type: ignore[no-untyped-def]
        entry = TimeEntry(id=entry_id, employee_id=1, clock_in_ts=start, clock_out_ts=end, **kwargs)
        self.db.add(entry)
        self.db.commit()
        return entry

    def _recompute_monday(self):  # type: ignore[no-untyped-def]
        return recompute_range(self.db, start_date=MONDAY, end_date=MONDAY, employee_id=1, today=TODAY)

    def test_recompute_writes_daily_totals(self) -> None:
        self._add_entry(1, _utc(2024, 1, 15, 6, 0), _utc(2024, 1, 15, 14, 0), notes="Depozit")

        outcome = self._recompute_monday()

        self.assertEqual(outcome.days_written, 1)
        day = get_effective_day(self.db, 1, MONDAY)
        self.assertEqual(day.state, TimesheetState.COMPUTED)
        self.assertEqual(day.totals.regular, 7.5)
        self.assertEqual(day.totals.break_hours, 0.5)
        self.assertEqual(day.totals.notes, "Depozit")
        self.assertEqual(day.totals.source_entry_ids, (1,))
        self.assertEqual(day.clock_total, 7.5)
        self.assertTrue(day.within_tolerance)
        self.assertEqual(day.version, 1)

    def test_recompute_twice_keeps_single_row(self) -> None:
        self._add_entry(1, _utc(2024, 1, 15, 6, 0), _utc(2024, 1, 15, 14, 0))

        self._recompute_monday()
        self._recompute_monday()

        rows = self.db.scalars(select(DailyTimesheet)).all()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].hours_regular, 7.5)

    def test_recompute_removes_days_without_clock_data(self) -> None:
        entry = self._add_entry(1, _utc(2024, 1, 15, 6, 0), _utc(2024, 1, 15, 14, 0))
        self._recompute_monday()

        self.db.delete(entry)
        self.db.commit()
        outcome = self._recompute_monday()

        self.assertEqual(outcome.days_removed, 1)
        self.assertEqual(self.db.scalar(select(func.count(DailyTimesheet.id))), 0)
        self.assertEqual(get_effective_day(self.db, 1, MONDAY).totals.total_hours, 0.0)

    def test_open_entries_are_not_segmented(self) -> None:
        self._add_entry(1, _utc(2024, 1, 15, 6, 0), None)

        outcome = self._recompute_monday()

        self.assertEqual(outcome.days_written, 0)
        self.assertEqual(outcome.result.totals, {})

    def test_holidays_from_table_are_used(self) -> None:
        self.db.add(Holiday(day_date=MONDAY, name="Test holiday"))
        self.db.commit()
        self._add_entry(1, _utc(2024, 1, 15, 6, 0), _utc(2024, 1, 15, 14, 0))

        self._recompute_monday()

        self.assertEqual(get_effective_day(self.db, 1, MONDAY).totals.holiday, 7.5)

    def test_capped_entry_raises_one_security_alert(self) -> None:
        self._add_entry(7, _utc(2024, 1, 15, 6, 0), _utc(2024, 1, 16, 12, 0))

        for _ in range(2):
            recompute_range(self.db, start_date=MONDAY, end_date=date(2024, 1, 16), employee_id=1, today=TODAY)

        alerts = self.db.scalars(select(SecurityAlert)).all()
        self.assertEqual(len(alerts), 1)
        self.assertEqual(alerts[0].time_entry_id, 7)
        self.assertEqual(alerts[0].alert_type, "excessive_duration")

    def test_recompute_for_entry_covers_every_local_date(self) -> None:
        self._add_entry(3, _utc(2024, 1, 15, 18, 0), _utc(2024, 1, 16, 5, 0))

        outcome = recompute_for_entry(self.db, 3, today=TODAY)

        self.assertEqual((outcome.start_date, outcome.end_date), (MONDAY, date(2024, 1, 16)))
        self.assertEqual(outcome.days_written, 2)
        days = list_effective_days(self.db, employee_id=1, year=2024, month=1)
        self.assertEqual([day.totals.work_date for day in days], [MONDAY, date(2024, 1, 16)])

    def test_recompute_for_missing_entry_is_not_found(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            recompute_for_entry(self.db, 999)
        self.assertEqual(ctx.exception.status_code, 404)

    def test_edit_is_rebalanced_against_regular(self) -> None:
        self._add_entry(1, _utc(2024, 1, 15, 6, 0), _utc(2024, 1, 15, 14, 0))
        self._recompute_monday()

        outcome = apply_timesheet_edit(
            self.db,
            employee_id=1,
            work_date=MONDAY,
            category=Category.DRIVING,
            hours=3.0,
            expected_version=1,
        )

        self.assertEqual(outcome.resolution, "REBALANCED")
        self.assertEqual(outcome.regular_delta, -3.0)
        self.assertEqual(outcome.day.totals.regular, 4.5)
        self.assertEqual(outcome.day.totals.driving, 3.0)
        self.assertEqual(outcome.day.version, 2)
        self.assertTrue(outcome.day.within_tolerance)
        self.assertEqual(self.db.scalar(select(func.count(ManualOverride.id))), 0)

    def test_stale_expected_version_is_a_conflict(self) -> None:
        self._add_entry(1, _utc(2024, 1, 15, 6, 0), _utc(2024, 1, 15, 14, 0))
        self._recompute_monday()
        apply_timesheet_edit(self.db, employee_id=1, work_date=MONDAY, category=Category.DRIVING, hours=1.0)

        with self.assertRaises(ConcurrentEditConflict):
            apply_timesheet_edit(
                self.db,
                employee_id=1,
                work_date=MONDAY,
                category=Category.DRIVING,
                hours=2.0,
                expected_version=1,
            )
        self.assertEqual(get_effective_day(self.db, 1, MONDAY).totals.driving, 1.0)

    def test_rejected_edit_writes_nothing(self) -> None:
        self._add_entry(1, _utc(2024, 1, 15, 6, 0), _utc(2024, 1, 15, 14, 0))
        self._recompute_monday()

        with self.assertRaises(ValidationError) as ctx:
            apply_timesheet_edit(self.db, employee_id=1, work_date=MONDAY, category=Category.NIGHT, hours=-2.0)

        self.assertEqual(ctx.exception.field, "night")
        day = get_effective_day(self.db, 1, MONDAY)
        self.assertEqual((day.totals.regular, day.totals.night, day.version), (7.5, 0.0, 1))

    def test_override_survives_recompute_until_cleared(self) -> None:
        self._add_entry(1, _utc(2024, 1, 15, 6, 0), _utc(2024, 1, 15, 14, 0))
        self._recompute_monday()

        with self.assertRaises(ValidationError) as ctx:
            apply_timesheet_edit(self.db, employee_id=1, work_date=MONDAY, category=Category.NIGHT, hours=10.0)
        self.assertEqual(ctx.exception.field, "justification")

        outcome = apply_timesheet_edit(
            self.db,
            employee_id=1,
            work_date=MONDAY,
            category=Category.NIGHT,
            hours=10.0,
            justification="Night convoy confirmed by site manager",
            actor="maria",
        )
        self.assertEqual(outcome.resolution, "OVERRIDDEN")
        self.assertEqual(outcome.day.state, TimesheetState.OVERRIDDEN)
        self.assertTrue(outcome.day.is_true_override)
        self.assertEqual(outcome.day.totals.night, 10.0)

        rerun = self._recompute_monday()
        self.assertEqual(rerun.result.overridden, [(1, MONDAY)])
        self.assertEqual(get_effective_day(self.db, 1, MONDAY).state, TimesheetState.OVERRIDDEN)

        overrides = list_manual_overrides(self.db, employee_id=1, year=2024, month=1)
        self.assertEqual(len(overrides), 1)
        self.assertEqual(overrides[0].created_by, "maria")

        cleared = clear_override(self.db, overrides[0].id, today=TODAY)
        self.assertEqual(cleared.state, TimesheetState.COMPUTED)
        self.assertEqual(cleared.totals.regular, 7.5)
        self.assertEqual(cleared.totals.night, 0.0)
        self.assertEqual(self.db.scalar(select(func.count(ManualOverride.id))), 0)

    def test_clearing_unknown_override_is_not_found(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            clear_override(self.db, 404)
        self.assertEqual(ctx.exception.status_code, 404)

    def test_edit_lost_to_a_concurrent_writer_is_decided_again(self) -> None:
        self._add_entry(1, _utc(2024, 1, 15, 6, 0), _utc(2024, 1, 15, 14, 0))
        self._recompute_monday()
        real_commit = self.db.commit
        calls: list[int] = []

        def _commit_after_other_writer() -> None:
            calls.append(1)
            if len(calls) == 1:
                # Another writer moves an hour to equipment and bumps the version first.
                self.db.rollback()
                self.db.execute(
                    update(DailyTimesheet)
                    .where(DailyTimesheet.employee_id == 1, DailyTimesheet.work_date == MONDAY)
                    .values(hours_equipment=1.0, hours_regular=6.5, version_id=DailyTimesheet.version_id + 1)
                    .execution_options(synchronize_session=False)
                )
                real_commit()
                raise StaleDataError("daily_timesheets row changed")
            real_commit()

        with patch.object(self.db, "commit", side_effect=_commit_after_other_writer):
            with self.assertLogs("shiftledger.timesheets", level="WARNING") as logs:
                outcome = apply_timesheet_edit(
                    self.db,
                    employee_id=1,
                    work_date=MONDAY,
                    category=Category.DRIVING,
                    hours=3.0,
                )

        self.assertEqual(len(calls), 2)
        self.assertTrue(any("timesheet_edit_conflict" in line for line in logs.output))
        self.assertEqual(outcome.resolution, "REBALANCED")
        self.assertEqual(outcome.day.totals.equipment, 1.0)
        self.assertEqual(outcome.day.totals.driving, 3.0)
        self.assertEqual(outcome.day.totals.regular, 3.5)
        self.assertEqual(outcome.day.version, 3)

    def test_lost_version_check_with_expected_version_is_a_conflict(self) -> None:
        self._add_entry(1, _utc(2024, 1, 15, 6, 0), _utc(2024, 1, 15, 14, 0))
        self._recompute_monday()

        with patch.object(self.db, "commit", side_effect=StaleDataError("daily_timesheets row changed")):
            with self.assertRaises(ConcurrentEditConflict):
                apply_timesheet_edit(
                    self.db,
                    employee_id=1,
                    work_date=MONDAY,
                    category=Category.DRIVING,
                    hours=3.0,
                    expected_version=1,
                )

        self.assertEqual(get_effective_day(self.db, 1, MONDAY).totals.regular, 7.5)

    def test_first_insert_race_is_retried(self) -> None:
        real_commit = self.db.commit
        calls: list[int] = []

        def _commit_after_duplicate_insert() -> None:
            calls.append(1)
            if len(calls) == 1:
                raise IntegrityError("INSERT INTO daily_timesheets", {}, Exception("UNIQUE constraint failed"))
            real_commit()

        with patch.object(self.db, "commit", side_effect=_commit_after_duplicate_insert):
            outcome = apply_timesheet_edit(
                self.db,
                employee_id=1,
                work_date=MONDAY,
                category=Category.LEAVE,
                hours=0.4,
            )

        self.assertEqual(len(calls), 2)
        self.assertEqual(outcome.resolution, "APPLIED")
        self.assertEqual(self.db.scalar(select(func.count(DailyTimesheet.id))), 1)

    def test_day_locks_are_released_after_use(self) -> None:
        with day_lock(1, MONDAY):
            with day_lock(1, date(2024, 1, 16)):
                self.assertEqual(active_day_locks(), 2)
        self.assertEqual(active_day_locks(), 0)

        self._add_entry(1, _utc(2024, 1, 15, 6, 0), _utc(2024, 1, 15, 14, 0))
        self._recompute_monday()
        apply_timesheet_edit(self.db, employee_id=1, work_date=MONDAY, category=Category.DRIVING, hours=1.0)
        self.assertEqual(active_day_locks(), 0)


class ConcurrentTimesheetEditTests(unittest.TestCase):
    """Edits from separate sessions against one SQLite file."""

    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        path = os.path.join(self.tmpdir.name, "timesheets.db")
        self.engine = create_engine(
            f"sqlite:///{path}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        with self.session_factory() as db:
            db.add(Employee(id=1, full_name="Ana Pop"))
            db.add(
                TimeEntry(
                    id=1,
                    employee_id=1,
                    clock_in_ts=_utc(2024, 1, 15, 6, 0),
                    clock_out_ts=_utc(2024, 1, 15, 14, 0),
                )
            )
            db.commit()
            recompute_range(db, start_date=MONDAY, end_date=MONDAY, employee_id=1, today=TODAY)

    def tearDown(self) -> None:
        self.engine.dispose()
        self.tmpdir.cleanup()

    def test_parallel_edits_of_one_day_are_applied_in_turn(self) -> None:
        barrier = threading.Barrier(2)
        errors: list[Exception] = []

        def _edit(category: Category, hours: float) -> None:
            try:
                with self.session_factory() as db:
                    barrier.wait()
                    apply_timesheet_edit(db, employee_id=1, work_date=MONDAY, category=category, hours=hours)
            except Exception as exc:
                errors.append(exc)

        threads = [
            threading.Thread(target=_edit, args=(Category.DRIVING, 2.0)),
            threading.Thread(target=_edit, args=(Category.EQUIPMENT, 1.0)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(errors, [])
        with self.session_factory() as db:
            day = get_effective_day(db, 1, MONDAY)
        self.assertEqual(day.totals.driving, 2.0)
        self.assertEqual(day.totals.equipment, 1.0)
        self.assertEqual(day.totals.regular, 4.5)
        self.assertEqual(day.version, 3)
        self.assertTrue(day.within_tolerance)
        self.assertEqual(active_day_locks(), 0)

    def test_reads_see_edits_committed_by_another_session(self) -> None:
        with self.session_factory() as reader, self.session_factory() as writer:
            self.assertEqual(get_effective_day(reader, 1, MONDAY).version, 1)

            apply_timesheet_edit(writer, employee_id=1, work_date=MONDAY, category=Category.DRIVING, hours=3.0)

            day = get_effective_day(reader, 1, MONDAY)
            self.assertEqual(day.version, 2)
            self.assertEqual(day.totals.regular, 4.5)
            self.assertEqual(list_effective_days(reader, employee_id=1, year=2024, month=1)[0].totals.driving, 3.0)


if __name__ == "__main__":
    unittest.main()
