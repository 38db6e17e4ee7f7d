from __future__ import annotations

from datetime import date

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from shiftledger.models import Holiday
from shiftledger.schemas import HolidayCreateRequest
from shiftledger.services.timesheet_types import HolidayCalendar


def load_holiday_calendar(db: Session) -> HolidayCalendar:
    return HolidayCalendar.from_dates(db.scalars(select(Holiday.day_date)).all())


def list_holidays(db: Session, *, year: int | None = None) -> list[Holiday]:
    stmt = select(Holiday).order_by(Holiday.day_date.asc())
    if year is not None:
        stmt = stmt.where(Holiday.day_date >= date(year, 1, 1), Holiday.day_date <= date(year, 12, 31))
    return list(db.scalars(stmt).all())


def create_holiday(db: Session, payload: HolidayCreateRequest) -> Holiday:
    existing = db.scalar(select(Holiday).where(Holiday.day_date == payload.day_date))
    if existing is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Holiday already exists for this date")

    holiday = Holiday(day_date=payload.day_date, name=payload.name.strip())
    db.add(holiday)
    db.commit()
    db.refresh(holiday)
    return holiday


def delete_holiday(db: Session, holiday_id: int) -> Holiday:
    holiday = db.get(Holiday, holiday_id)
    if holiday is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Holiday not found")
    db.delete(holiday)
    db.commit()
    return holiday
