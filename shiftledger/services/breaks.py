from __future__ import annotations

from dataclasses import replace

from shiftledger.services.timesheet_types import (
    DAY_GROUP_CATEGORIES,
    Category,
    DailyTotals,
    round_hours,
)

DAY_BREAK_THRESHOLD_HOURS = 4.0
DAY_BREAK_HOURS = 0.5
NIGHT_BREAK_THRESHOLD_HOURS = 4.0
NIGHT_BREAK_HOURS = 0.25


def day_group_hours(totals: DailyTotals) -> float:
    return sum(totals.hours(category) for category in DAY_GROUP_CATEGORIES)


def apply_breaks(totals: DailyTotals) -> DailyTotals:
    """Deduct the unpaid 30 minute day break and 15 minute night break.

    Both deductions read the totals as they were before any deduction. Days
    under a threshold get no deduction for that group. Activity and leave
    buckets are never touched.
    """
    day_total = day_group_hours(totals)
    night_total = totals.night
    updated: dict[Category, float] = {}
    deducted = 0.0

    if day_total >= DAY_BREAK_THRESHOLD_HOURS:
        for category in DAY_GROUP_CATEGORIES:
            current = totals.hours(category)
            share = DAY_BREAK_HOURS * (current / day_total)
            updated[category] = max(0.0, current - share)
            deducted += current - updated[category]

    if night_total >= NIGHT_BREAK_THRESHOLD_HOURS:
        updated[Category.NIGHT] = max(0.0, night_total - NIGHT_BREAK_HOURS)
        deducted += night_total - updated[Category.NIGHT]

    if not updated:
        return totals
    return replace(
        totals.with_hours(updated),
        break_hours=round_hours(totals.break_hours + deducted),
    )
