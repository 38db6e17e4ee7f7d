from __future__ import annotations

import unittest
from datetime import date

from shiftledger.services.breaks import apply_breaks
from shiftledger.services.timesheet_types import DailyTotals


def _day(**hours: float) -> DailyTotals:
    return DailyTotals(subject_id=1, work_date=date(2024, 1, 15), **hours)


class BreakDeductionTests(unittest.TestCase):
    def test_day_break_applies_at_exactly_four_hours(self) -> None:
        result = apply_breaks(_day(regular=4.0, clock_hours=4.0))
        self.assertEqual(result.regular, 3.5)
        self.assertEqual(result.break_hours, 0.5)

    def test_no_day_break_just_under_threshold(self) -> None:
        totals = _day(regular=3.99, clock_hours=3.99)
        result = apply_breaks(totals)
        self.assertEqual(result, totals)
        self.assertEqual(result.break_hours, 0.0)

    def test_day_break_is_split_proportionally(self) -> None:
        result = apply_breaks(_day(regular=6.0, sunday=4.0, clock_hours=10.0))
        self.assertAlmostEqual(result.regular, 5.7)
        self.assertAlmostEqual(result.sunday, 3.8)
        self.assertEqual(result.break_hours, 0.5)

    def test_night_break_at_threshold(self) -> None:
        result = apply_breaks(_day(night=4.0, clock_hours=4.0))
        self.assertEqual(result.night, 3.75)
        self.assertEqual(result.break_hours, 0.25)

    def test_no_night_break_under_threshold(self) -> None:
        result = apply_breaks(_day(night=3.99, clock_hours=3.99))
        self.assertEqual(result.night, 3.99)
        self.assertEqual(result.break_hours, 0.0)

    def test_both_breaks_use_totals_before_deduction(self) -> None:
        result = apply_breaks(_day(regular=5.0, night=4.0, clock_hours=9.0))
        self.assertEqual(result.regular, 4.5)
        self.assertEqual(result.night, 3.75)
        self.assertEqual(result.break_hours, 0.75)
        self.assertEqual(result.payable_clock_hours, 8.25)
        self.assertEqual(result.total_hours, result.payable_clock_hours)

    def test_activity_and_leave_hours_are_never_reduced(self) -> None:
        totals = _day(driving=8.0, leave=8.0, clock_hours=8.0)
        self.assertEqual(apply_breaks(totals), totals)

    def test_day_group_counts_weekend_and_holiday_hours(self) -> None:
        result = apply_breaks(_day(saturday=2.0, holiday=2.0, clock_hours=4.0))
        self.assertAlmostEqual(result.saturday, 1.75)
        self.assertAlmostEqual(result.holiday, 1.75)
        self.assertEqual(result.break_hours, 0.5)


if __name__ == "__main__":
    unittest.main()
