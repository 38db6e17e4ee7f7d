from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from shiftledger.models import TimesheetState
from shiftledger.services.timesheet_types import Category

MAX_RECOMPUTE_SPAN_DAYS = 62


class HolidayCreateRequest(BaseModel):
    day_date: date
    name: str = Field(min_length=2, max_length=255)


class HolidayRead(BaseModel):
    id: int
    day_date: date
    name: str

    model_config = ConfigDict(from_attributes=True)


class RecomputeRequest(BaseModel):
    start_date: date
    end_date: date
    employee_id: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def validate_range(self) -> "RecomputeRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be greater than or equal to start_date")
        if (self.end_date - self.start_date).days >= MAX_RECOMPUTE_SPAN_DAYS:
            raise ValueError(f"Recompute range must be shorter than {MAX_RECOMPUTE_SPAN_DAYS} days")
        return self


class DailyTimesheetRead(BaseModel):
    employee_id: int
    work_date: date
    state: TimesheetState
    hours_regular: float = 0
    hours_night: float = 0
    hours_saturday: float = 0
    hours_sunday: float = 0
    hours_holiday: float = 0
    hours_driving: float = 0
    hours_passenger: float = 0
    hours_equipment: float = 0
    hours_leave: float = 0
    hours_medical_leave: float = 0
    total_hours: float = 0
    clock_hours: float = 0
    break_hours: float = 0
    clock_total: float = 0
    within_tolerance: bool = True
    version: int | None = None
    notes: str | None = None
    override_reason: str | None = None
    is_true_override: bool | None = None


class SkippedShiftRead(BaseModel):
    entry_id: int | None
    subject_id: int
    reason: str


class ShiftNoticeRead(BaseModel):
    entry_id: int | None
    subject_id: int
    code: str
    detail: str


class DayIssueRead(BaseModel):
    subject_id: int
    work_date: date
    errors: list[str]


class RecomputeResponse(BaseModel):
    start_date: date
    end_date: date
    days_written: int
    days_removed: int
    skipped: list[SkippedShiftRead] = Field(default_factory=list)
    notices: list[ShiftNoticeRead] = Field(default_factory=list)
    day_issues: list[DayIssueRead] = Field(default_factory=list)
    overridden_days: list[date] = Field(default_factory=list)
    capped_entry_ids: list[int] = Field(default_factory=list)


class TimesheetEditRequest(BaseModel):
    employee_id: int = Field(ge=1)
    work_date: date
    category: Category
    hours: float = Field(allow_inf_nan=False)
    justification: str | None = Field(default=None, max_length=1000)
    expected_version: int | None = Field(default=None, ge=1)


class TimesheetEditResponse(BaseModel):
    resolution: Literal["APPLIED", "REBALANCED", "OVERRIDDEN"]
    regular_delta: float | None = None
    timesheet: DailyTimesheetRead


class ManualOverrideRead(BaseModel):
    id: int
    employee_id: int
    work_date: date
    hours_regular: float
    hours_night: float
    hours_saturday: float
    hours_sunday: float
    hours_holiday: float
    hours_driving: float
    hours_passenger: float
    hours_equipment: float
    hours_leave: float
    hours_medical_leave: float
    clock_hours: float
    reason: str
    is_true_override: bool
    created_by: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OverrideBulkClearRequest(BaseModel):
    override_ids: list[int] = Field(min_length=1, max_length=200)


class OverrideClearResponse(BaseModel):
    cleared: int
    timesheets: list[DailyTimesheetRead] = Field(default_factory=list)
