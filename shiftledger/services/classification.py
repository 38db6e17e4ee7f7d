from __future__ import annotations

import re

from shiftledger.errors import UnknownActivityTag
from shiftledger.services.timesheet_types import Category, HolidayCalendar, SubInterval
from shiftledger.services.timezone_rules import TimezoneResolver, get_timezone_resolver

NIGHT_START_HOUR = 22
NIGHT_END_HOUR = 6

SATURDAY = 5
SUNDAY = 6

# Longer phrases first: "condus utilaj" is equipment work, not driving.
_ACTIVITY_ALIASES: tuple[tuple[str, Category | None], ...] = (
    ("condus utilaj", Category.EQUIPMENT),
    ("utilaj", Category.EQUIPMENT),
    ("equipment", Category.EQUIPMENT),
    ("condus", Category.DRIVING),
    ("driving", Category.DRIVING),
    ("pasager", Category.PASSENGER),
    ("passenger", Category.PASSENGER),
    ("normal", None),
    ("regular", None),
)
_TAG_PREFIX = re.compile(r"^\s*tip\s*:\s*", re.IGNORECASE)
_NOTES_TAG = re.compile(r"tip:\s*(condus utilaj|utilaj|condus|pasager|normal)", re.IGNORECASE)


def classify(
    sub_interval: SubInterval,
    holiday_calendar: HolidayCalendar,
    resolver: TimezoneResolver | None = None,
) -> Category:
    resolver = resolver or get_timezone_resolver()
    local_mid = resolver.local_of(sub_interval.midpoint)

    if local_mid.date() in holiday_calendar:
        return Category.HOLIDAY
    weekday = local_mid.weekday()
    if weekday == SUNDAY:
        return Category.SUNDAY
    if weekday == SATURDAY:
        return Category.SATURDAY
    if local_mid.hour >= NIGHT_START_HOUR or local_mid.hour < NIGHT_END_HOUR:
        return Category.NIGHT
    return Category.REGULAR


def parse_activity_tag(tag: str | None) -> Category | None:
    """Map a free-text activity tag to a special activity bucket.

    Returns ``None`` for normal shifts. Raises ``UnknownActivityTag`` when the
    tag is present but not recognised.
    """
    if tag is None:
        return None
    normalized = " ".join(_TAG_PREFIX.sub("", tag).lower().split())
    if not normalized:
        return None
    for alias, category in _ACTIVITY_ALIASES:
        if normalized == alias:
            return category
    raise UnknownActivityTag(tag)


def activity_tag_from_notes(notes: str | None) -> str | None:
    if not notes:
        return None
    match = _NOTES_TAG.search(notes)
    if match is None:
        return None
    return match.group(1)
