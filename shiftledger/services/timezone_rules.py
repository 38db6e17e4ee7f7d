from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache

from shiftledger.settings import get_settings

# Seasonal transitions happen at 01:00 UTC on the last Sunday of March and October.
TRANSITION_UTC_TIME = time(1, 0)


def last_sunday(year: int, month: int) -> date:
    if month == 12:
        day = date(year + 1, 1, 1) - timedelta(days=1)
    else:
        day = date(year, month + 1, 1) - timedelta(days=1)
    # weekday(): Monday=0 .. Sunday=6
    return day - timedelta(days=(day.weekday() + 1) % 7)


def as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


class TimezoneResolver:
    """Fixed civil timezone with one summer-time transition pair per year.

    Local values are naive wall-clock datetimes. The resolver holds no state
    besides its two offsets, so one instance can be shared across threads.
    """

    def __init__(self, standard_offset: timedelta, summer_offset: timedelta):
        self.standard_offset = standard_offset
        self.summer_offset = summer_offset

    @classmethod
    def from_hours(cls, standard_hours: int, summer_hours: int) -> TimezoneResolver:
        return cls(timedelta(hours=standard_hours), timedelta(hours=summer_hours))

    def transitions(self, year: int) -> tuple[datetime, datetime]:
        starts = datetime.combine(last_sunday(year, 3), TRANSITION_UTC_TIME, tzinfo=timezone.utc)
        ends = datetime.combine(last_sunday(year, 10), TRANSITION_UTC_TIME, tzinfo=timezone.utc)
        return starts, ends

    def is_summer_time(self, instant: datetime) -> bool:
        utc_instant = as_utc(instant)
        starts, ends = self.transitions(utc_instant.year)
        return starts <= utc_instant < ends

    def offset_for(self, instant: datetime) -> timedelta:
        if self.is_summer_time(instant):
            return self.summer_offset
        return self.standard_offset

    def local_of(self, instant: datetime) -> datetime:
        utc_instant = as_utc(instant)
        return (utc_instant + self.offset_for(utc_instant)).replace(tzinfo=None)

    def utc_of(self, local: datetime, assumed_offset: timedelta | None = None) -> datetime:
        wall = local.replace(tzinfo=None)
        if assumed_offset is not None:
            return (wall - assumed_offset).replace(tzinfo=timezone.utc)

        candidates = []
        for offset in (self.summer_offset, self.standard_offset):
            instant = (wall - offset).replace(tzinfo=timezone.utc)
            if self.offset_for(instant) == offset:
                candidates.append(instant)
        if len(candidates) == 1:
            return candidates[0]

        # Skipped or repeated wall-clock hour: use the rule in force before the transition.
        earlier_offset = self.offset_for((wall - timedelta(days=1)).replace(tzinfo=timezone.utc))
        return (wall - earlier_offset).replace(tzinfo=timezone.utc)


@lru_cache
def get_timezone_resolver() -> TimezoneResolver:
    settings = get_settings()
    return TimezoneResolver.from_hours(
        settings.standard_utc_offset_hours,
        settings.summer_utc_offset_hours,
    )
