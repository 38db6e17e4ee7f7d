from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta


class Category(str, enum.Enum):
    REGULAR = "regular"
    NIGHT = "night"
    SATURDAY = "saturday"
    SUNDAY = "sunday"
    HOLIDAY = "holiday"
    DRIVING = "driving"
    PASSENGER = "passenger"
    EQUIPMENT = "equipment"
    LEAVE = "leave"
    MEDICAL_LEAVE = "medical_leave"


# Categories produced by boundary walking, in classification precedence order.
CLOCK_CATEGORIES: tuple[Category, ...] = (
    Category.HOLIDAY,
    Category.SUNDAY,
    Category.SATURDAY,
    Category.NIGHT,
    Category.REGULAR,
)

ACTIVITY_CATEGORIES: tuple[Category, ...] = (
    Category.DRIVING,
    Category.PASSENGER,
    Category.EQUIPMENT,
)

# Day-group buckets sharing the 30 minute break.
DAY_GROUP_CATEGORIES: tuple[Category, ...] = (
    Category.REGULAR,
    Category.SATURDAY,
    Category.SUNDAY,
    Category.HOLIDAY,
)


def round_hours(value: float) -> float:
    # Normalises -0.0 and float noise so equal totals serialise identically.
    rounded = round(value + 0.0, 2)
    return 0.0 if rounded == 0 else rounded


@dataclass(frozen=True, slots=True)
class ShiftInterval:
    subject_id: int
    start: datetime
    end: datetime | None
    activity_tag: str | None = None
    entry_id: int | None = None
    notes: str | None = None

    @property
    def duration(self) -> timedelta | None:
        if self.end is None:
            return None
        return self.end - self.start


@dataclass(frozen=True, slots=True)
class SubInterval:
    start: datetime
    end: datetime
    subject_id: int | None = None
    category: Category | None = None
    # Set for special activity shifts, which are attributed to their start date.
    attributed_date: date | None = None
    notes: str | None = None
    entry_id: int | None = None

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def midpoint(self) -> datetime:
        return self.start + (self.end - self.start) / 2

    def with_category(self, category: Category) -> SubInterval:
        return replace(self, category=category)


@dataclass(frozen=True, slots=True)
class HolidayCalendar:
    dates: frozenset[date] = frozenset()

    @classmethod
    def from_dates(cls, values: Iterable[date]) -> HolidayCalendar:
        return cls(dates=frozenset(values))

    def __contains__(self, value: object) -> bool:
        return value in self.dates


@dataclass(frozen=True, slots=True)
class DailyTotals:
    subject_id: int
    work_date: date
    regular: float = 0.0
    night: float = 0.0
    saturday: float = 0.0
    sunday: float = 0.0
    holiday: float = 0.0
    driving: float = 0.0
    passenger: float = 0.0
    equipment: float = 0.0
    leave: float = 0.0
    medical_leave: float = 0.0
    clock_hours: float = 0.0
    break_hours: float = 0.0
    notes: str | None = None
    source_entry_ids: tuple[int, ...] = field(default_factory=tuple)

    @property
    def key(self) -> tuple[int, date]:
        return self.subject_id, self.work_date

    @property
    def total_hours(self) -> float:
        return round_hours(sum(self.hours(category) for category in Category))

    @property
    def payable_clock_hours(self) -> float:
        """Clock-derived duration for the day after statutory breaks."""
        return round_hours(self.clock_hours - self.break_hours)

    def hours(self, category: Category) -> float:
        return float(getattr(self, category.value))

    def as_hours_dict(self) -> dict[Category, float]:
        return {category: self.hours(category) for category in Category}

    def with_hours(self, values: dict[Category, float]) -> DailyTotals:
        return replace(self, **{category.value: round_hours(value) for category, value in values.items()})


HOUR_FIELD_NAMES: tuple[str, ...] = tuple(category.value for category in Category)

