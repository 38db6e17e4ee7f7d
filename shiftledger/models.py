from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shiftledger.db import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditActorType(str, enum.Enum):
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class TimesheetState(str, enum.Enum):
    COMPUTED = "COMPUTED"
    OVERRIDDEN = "OVERRIDDEN"


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    time_entries: Mapped[list[TimeEntry]] = relationship(back_populates="employee")
    daily_timesheets: Mapped[list[DailyTimesheet]] = relationship(back_populates="employee")
    manual_overrides: Mapped[list[ManualOverride]] = relationship(back_populates="employee")


class TimeEntry(Base):
    """Clock-in/clock-out record written by the capture subsystem."""

    __tablename__ = "time_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    clock_in_ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    clock_out_ts: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    activity_tag: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    employee: Mapped[Employee] = relationship(back_populates="time_entries")


class Holiday(Base):
    __tablename__ = "holidays"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    day_date: Mapped[date] = mapped_column(Date, nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class DailyTimesheet(Base):
    __tablename__ = "daily_timesheets"
    __table_args__ = (
        UniqueConstraint("employee_id", "work_date", name="uq_daily_timesheets_employee_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    hours_regular: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_night: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_saturday: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_sunday: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_holiday: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_driving: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_passenger: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_equipment: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_leave: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_medical_leave: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    clock_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    break_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_entry_ids: Mapped[list[int]] = mapped_column(JSONType, nullable=False, default=list)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("1"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )

    employee: Mapped[Employee] = relationship(back_populates="daily_timesheets")

    __mapper_args__ = {"version_id_col": version_id}


class ManualOverride(Base):
    __tablename__ = "manual_overrides"
    __table_args__ = (
        UniqueConstraint("employee_id", "work_date", name="uq_manual_overrides_employee_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    hours_regular: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_night: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_saturday: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_sunday: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_holiday: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_driving: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_passenger: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_equipment: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_leave: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    hours_medical_leave: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    clock_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    reason: Mapped[str] = mapped_column(String(1000), nullable=False)
    is_true_override: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    created_by: Mapped[str] = mapped_column(String(255), nullable=False, default="admin")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )

    employee: Mapped[Employee] = relationship(back_populates="manual_overrides")


class SecurityAlert(Base):
    __tablename__ = "security_alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    alert_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[str] = mapped_column(String(1000), nullable=False)
    employee_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    time_entry_id: Mapped[int | None] = mapped_column(
        ForeignKey("time_entries.id", ondelete="SET NULL"),
        nullable=True,
    )
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
