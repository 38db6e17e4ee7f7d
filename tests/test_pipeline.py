from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

from shiftledger.errors import InvalidInterval
from shiftledger.services.pipeline import local_today, run_batch, validate_day, validate_interval
from shiftledger.services.timesheet_types import DailyTotals, HolidayCalendar, ShiftInterval
from shiftledger.services.timezone_rules import TimezoneResolver

RESOLVER = TimezoneResolver.from_hours(2, 3)
TODAY = date(2024, 2, 1)


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def _shift(entry_id: int, start: datetime, hours: float, **kwargs) -> ShiftInterval:  # type: ignore[no-untyped-def]
    return ShiftInterval(
        subject_id=kwargs.pop("subject_id", 1),
        start=start,
        end=start + timedelta(hours=hours),
        entry_id=entry_id,
        **kwargs,
    )


class ValidateIntervalTests(unittest.TestCase):
    def test_rejects_open_inverted_and_short_intervals(self) -> None:
        start = _utc(2024, 1, 15, 6, 0)
        cases = [
            (ShiftInterval(subject_id=1, start=start, end=None), "open_interval"),
            (ShiftInterval(subject_id=1, start=start, end=start), "end_not_after_start"),
            (ShiftInterval(subject_id=1, start=start, end=start - timedelta(hours=1)), "end_not_after_start"),
            (ShiftInterval(subject_id=1, start=start, end=start + timedelta(minutes=5)), "shorter_than_minimum"),
        ]
        for shift, reason in cases:
            with self.subTest(reason=reason):
                with self.assertRaises(InvalidInterval) as ctx:
                    validate_interval(shift, min_duration=timedelta(minutes=10))
                self.assertEqual(ctx.exception.reason, reason)

    def test_returns_duration_for_valid_interval(self) -> None:
        start = _utc(2024, 1, 15, 6, 0)
        shift = ShiftInterval(subject_id=1, start=start, end=start + timedelta(hours=8))
        self.assertEqual(validate_interval(shift, min_duration=timedelta(minutes=10)), timedelta(hours=8))


class ValidateDayTests(unittest.TestCase):
    def test_reports_negative_excessive_and_future_days(self) -> None:
        totals = DailyTotals(subject_id=1, work_date=date(2024, 3, 1), regular=-1.0, night=26.0)
        self.assertEqual(
            validate_day(totals, today=TODAY),
            ["regular_negative", "total_exceeds_24h", "work_date_in_future"],
        )

    def test_valid_day_has_no_errors(self) -> None:
        totals = DailyTotals(subject_id=1, work_date=date(2024, 1, 15), regular=7.5)
        self.assertEqual(validate_day(totals, today=TODAY), [])


class RunBatchTests(unittest.TestCase):
    def _run(self, shifts, **kwargs):  # type: ignore[no-untyped-def]
        kwargs.setdefault("resolver", RESOLVER)
        kwargs.setdefault("today", TODAY)
        kwargs.setdefault("workers", 1)
        return run_batch(shifts, kwargs.pop("calendar", HolidayCalendar()), **kwargs)

    def test_weekday_day_shift_gets_day_break(self) -> None:
        # Monday 08:00-16:00 local.
        result = self._run([_shift(1, _utc(2024, 1, 15, 6, 0), 8)])

        totals = result.totals[(1, date(2024, 1, 15))]
        self.assertEqual(totals.regular, 7.5)
        self.assertEqual(totals.clock_hours, 8.0)
        self.assertEqual(totals.break_hours, 0.5)
        self.assertEqual(totals.total_hours, totals.payable_clock_hours)

    def test_overnight_shift_produces_two_days(self) -> None:
        result = self._run([_shift(1, _utc(2024, 1, 15, 18, 0), 11)])

        monday = result.totals[(1, date(2024, 1, 15))]
        tuesday = result.totals[(1, date(2024, 1, 16))]
        self.assertEqual((monday.regular, monday.night, monday.break_hours), (2.0, 2.0, 0.0))
        self.assertEqual((tuesday.regular, tuesday.night, tuesday.break_hours), (1.0, 5.75, 0.25))

    def test_holiday_hours_follow_calendar(self) -> None:
        calendar = HolidayCalendar.from_dates([date(2024, 1, 24)])
        result = self._run([_shift(1, _utc(2024, 1, 24, 6, 0), 8)], calendar=calendar)

        totals = result.totals[(1, date(2024, 1, 24))]
        self.assertEqual(totals.holiday, 7.5)
        self.assertEqual(totals.regular, 0.0)

    def test_invalid_shift_is_skipped_without_stopping_batch(self) -> None:
        start = _utc(2024, 1, 15, 6, 0)
        shifts = [
            ShiftInterval(subject_id=1, start=start, end=start, entry_id=1),
            ShiftInterval(subject_id=1, start=start, end=None, entry_id=2),
            _shift(3, _utc(2024, 1, 16, 6, 0), 8),
        ]

        result = self._run(shifts)

        self.assertEqual([item.entry_id for item in result.skipped], [1, 2])
        self.assertEqual([item.reason for item in result.skipped], ["end_not_after_start", "open_interval"])
        self.assertIn((1, date(2024, 1, 16)), result.totals)

    def test_shift_longer_than_a_day_is_capped(self) -> None:
        result = self._run([_shift(9, _utc(2024, 1, 15, 6, 0), 30)])

        self.assertEqual(len(result.capped), 1)
        self.assertEqual(result.capped[0].capped_end, _utc(2024, 1, 16, 6, 0))
        clock = sum(day.clock_hours for day in result.totals.values())
        self.assertEqual(clock, 24.0)

    def test_activity_tag_and_notes_route_to_activity_bucket(self) -> None:
        result = self._run(
            [
                _shift(1, _utc(2024, 1, 15, 6, 0), 6, activity_tag="Tip: Condus"),
                _shift(2, _utc(2024, 1, 16, 6, 0), 5, notes="Santier nou. Tip: Condus utilaj"),
            ]
        )

        self.assertEqual(result.totals[(1, date(2024, 1, 15))].driving, 6.0)
        self.assertEqual(result.totals[(1, date(2024, 1, 15))].break_hours, 0.0)
        self.assertEqual(result.totals[(1, date(2024, 1, 16))].equipment, 5.0)

    def test_unknown_tag_is_reported_and_treated_as_normal_work(self) -> None:
        result = self._run([_shift(5, _utc(2024, 1, 15, 6, 0), 3, activity_tag="flying")])

        self.assertEqual([(item.entry_id, item.code) for item in result.notices], [(5, "UNKNOWN_ACTIVITY_TAG")])
        self.assertEqual(result.totals[(1, date(2024, 1, 15))].regular, 3.0)

    def test_overridden_days_are_left_out(self) -> None:
        key = (1, date(2024, 1, 15))
        result = self._run([_shift(1, _utc(2024, 1, 15, 6, 0), 8)], skip_keys={key})

        self.assertNotIn(key, result.totals)
        self.assertEqual(result.overridden, [key])

    def test_future_day_is_reported_not_written(self) -> None:
        result = self._run([_shift(1, _utc(2024, 3, 4, 6, 0), 8)])

        self.assertEqual(result.totals, {})
        self.assertEqual(result.day_issues[0].errors, ("work_date_in_future",))

    def test_default_today_is_the_local_date(self) -> None:
        # Summer shift, local 19:00 to 00:30, finishing before UTC midnight.
        clock_out = _utc(2024, 7, 15, 21, 30)
        shift = ShiftInterval(subject_id=1, start=_utc(2024, 7, 15, 16, 0), end=clock_out, entry_id=1)

        with patch("shiftledger.services.pipeline._utcnow", return_value=clock_out):
            self.assertEqual(local_today(RESOLVER), date(2024, 7, 16))
            result = self._run([shift], today=None)

        self.assertEqual(result.day_issues, [])
        self.assertEqual(sorted(result.totals), [(1, date(2024, 7, 15)), (1, date(2024, 7, 16))])
        self.assertEqual(result.totals[(1, date(2024, 7, 16))].night, 0.5)

    def test_parallel_run_matches_sequential_and_reruns_are_identical(self) -> None:
        shifts = [
            _shift(index, _utc(2024, 1, 8, 5, 0) + timedelta(hours=13 * index), 9.5, subject_id=1 + index % 3)
            for index in range(20)
        ]

        sequential = self._run(shifts, workers=1)
        parallel = self._run(shifts, workers=4)
        again = self._run(shifts, workers=4)

        self.assertEqual(parallel.totals, sequential.totals)
        self.assertEqual(again.totals, parallel.totals)


if __name__ == "__main__":
    unittest.main()
