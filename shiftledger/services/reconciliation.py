from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Union

from shiftledger.errors import ValidationError
from shiftledger.services.timesheet_types import Category, DailyTotals, round_hours

DEFAULT_TOLERANCE_HOURS = 0.5


@dataclass(frozen=True, slots=True)
class CategoryEdit:
    category: Category
    value: float
    justification: str | None = None


@dataclass(frozen=True, slots=True)
class OverrideState:
    reason: str
    is_true_override: bool


@dataclass(frozen=True, slots=True)
class Applied:
    totals: DailyTotals


@dataclass(frozen=True, slots=True)
class Rebalanced:
    totals: DailyTotals
    regular_delta: float


@dataclass(frozen=True, slots=True)
class OverrideRequired:
    allocation: DailyTotals
    reason: str
    is_true_override: bool


@dataclass(frozen=True, slots=True)
class Rejected:
    error: ValidationError


Resolution = Union[Applied, Rebalanced, OverrideRequired, Rejected]


def _sum_except(totals: DailyTotals, *excluded: Category) -> float:
    return sum(totals.hours(category) for category in Category if category not in excluded)


def _fits(total: float, clock_total: float, tolerance: float) -> bool:
    return abs(round_hours(total - clock_total)) <= tolerance


def is_within_tolerance(totals: DailyTotals, clock_total: float, tolerance: float = DEFAULT_TOLERANCE_HOURS) -> bool:
    return _fits(totals.total_hours, clock_total, tolerance)


def resolve_edit(
    current: DailyTotals,
    edit: CategoryEdit,
    *,
    clock_total: float,
    override: OverrideState | None = None,
    tolerance: float = DEFAULT_TOLERANCE_HOURS,
) -> Resolution:
    """Decide how an administrator's edit of one category is applied to a day.

    The function never writes anything; the caller persists the returned
    variant. Regular hours act as the flexible bucket that absorbs an edit of
    any other category. When that is not enough, or the day is already
    overridden, the edit becomes an explicit override that needs a
    justification.
    """
    if not math.isfinite(edit.value):
        return Rejected(ValidationError(edit.category.value, "Hours must be a finite number"))
    if edit.value < 0:
        return Rejected(ValidationError(edit.category.value, "Hours must not be negative"))

    value = round_hours(edit.value)
    regular = current.regular
    if edit.category is Category.REGULAR:
        desired_total = _sum_except(current, Category.REGULAR) + value
    else:
        others = _sum_except(current, edit.category, Category.REGULAR)
        desired_total = others + value + regular

    edited = current.with_hours({edit.category: value})

    if override is None:
        if _fits(desired_total, clock_total, tolerance):
            return Applied(edited)

        if edit.category is not Category.REGULAR:
            # Negative excess tops regular back up after a category was lowered.
            excess = desired_total - clock_total
            new_regular = max(0.0, regular - excess)
            rebalanced_total = desired_total - regular + new_regular
            if _fits(rebalanced_total, clock_total, tolerance):
                return Rebalanced(
                    edited.with_hours({Category.REGULAR: new_regular}),
                    regular_delta=round_hours(new_regular - regular),
                )

    justification = (edit.justification or "").strip()
    if not justification and override is not None:
        justification = override.reason.strip()
    if not justification:
        return Rejected(
            ValidationError("justification", "A justification is required when the allocation overrides clock time")
        )

    return OverrideRequired(
        allocation=edited,
        reason=justification,
        is_true_override=not is_within_tolerance(edited, clock_total, tolerance),
    )
