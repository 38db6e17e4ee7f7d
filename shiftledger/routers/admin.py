from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from shiftledger.audit import log_audit, timesheet_entity_id
from shiftledger.db import get_db
from shiftledger.errors import ConcurrentEditConflict, ValidationError
from shiftledger.models import AuditActorType
from shiftledger.schemas import (
    DailyTimesheetRead,
    DayIssueRead,
    HolidayCreateRequest,
    HolidayRead,
    ManualOverrideRead,
    OverrideBulkClearRequest,
    OverrideClearResponse,
    RecomputeRequest,
    RecomputeResponse,
    ShiftNoticeRead,
    SkippedShiftRead,
    TimesheetEditRequest,
    TimesheetEditResponse,
)
from shiftledger.services.holidays import create_holiday, delete_holiday, list_holidays
from shiftledger.services.timesheets import (
    EffectiveDay,
    RecomputeOutcome,
    apply_timesheet_edit,
    clear_override,
    clear_overrides,
    get_effective_day,
    list_effective_days,
    list_manual_overrides,
    recompute_for_entry,
    recompute_range,
)

router = APIRouter(tags=["admin"])

ACTOR_HEADER = "X-Admin-Actor"


def _client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def _user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


def _actor(request: Request) -> str:
    actor = (request.headers.get(ACTOR_HEADER) or "").strip()
    return actor or "admin"


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _to_timesheet_read(day: EffectiveDay) -> DailyTimesheetRead:
    totals = day.totals
    return DailyTimesheetRead(
        employee_id=totals.subject_id,
        work_date=totals.work_date,
        state=day.state,
        total_hours=totals.total_hours,
        clock_hours=totals.clock_hours,
        break_hours=totals.break_hours,
        clock_total=day.clock_total,
        within_tolerance=day.within_tolerance,
        version=day.version,
        notes=totals.notes,
        override_reason=day.override_reason,
        is_true_override=day.is_true_override,
        **{f"hours_{category.value}": value for category, value in totals.as_hours_dict().items()},
    )


def _to_recompute_response(outcome: RecomputeOutcome) -> RecomputeResponse:
    result = outcome.result
    return RecomputeResponse(
        start_date=outcome.start_date,
        end_date=outcome.end_date,
        days_written=outcome.days_written,
        days_removed=outcome.days_removed,
        skipped=[SkippedShiftRead(**item.to_dict()) for item in result.skipped],
        notices=[ShiftNoticeRead(**item.to_dict()) for item in result.notices],
        day_issues=[
            DayIssueRead(subject_id=item.subject_id, work_date=item.work_date, errors=list(item.errors))
            for item in result.day_issues
        ],
        overridden_days=sorted({work_date for _, work_date in result.overridden}),
        capped_entry_ids=sorted(
            item.shift.entry_id for item in result.capped if item.shift.entry_id is not None
        ),
    )


@router.post("/api/admin/timesheets/recompute", response_model=RecomputeResponse)
def recompute_timesheets_endpoint(
    payload: RecomputeRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> RecomputeResponse:
    outcome = recompute_range(
        db,
        start_date=payload.start_date,
        end_date=payload.end_date,
        employee_id=payload.employee_id,
    )
    response = _to_recompute_response(outcome)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor(request),
        action="TIMESHEETS_RECOMPUTED",
        success=True,
        entity_type="daily_timesheet",
        entity_id=str(payload.employee_id) if payload.employee_id is not None else None,
        ip=_client_ip(request),
        user_agent=_user_agent(request),
        details={
            "start_date": payload.start_date.isoformat(),
            "end_date": payload.end_date.isoformat(),
            "days_written": outcome.days_written,
            "days_removed": outcome.days_removed,
            **outcome.result.summary(),
        },
        request_id=_request_id(request),
    )
    return response


@router.post("/api/admin/timesheets/recompute-entry/{entry_id}", response_model=RecomputeResponse)
def recompute_entry_endpoint(
    entry_id: int,
    request: Request,
    db: Session = Depends(get_db),
) -> RecomputeResponse:
    outcome = recompute_for_entry(db, entry_id)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor(request),
        action="TIME_ENTRY_RECOMPUTED",
        success=True,
        entity_type="time_entry",
        entity_id=str(entry_id),
        ip=_client_ip(request),
        user_agent=_user_agent(request),
        details={
            "start_date": outcome.start_date.isoformat(),
            "end_date": outcome.end_date.isoformat(),
            "days_written": outcome.days_written,
        },
        request_id=_request_id(request),
    )
    return _to_recompute_response(outcome)


@router.get("/api/admin/timesheets", response_model=list[DailyTimesheetRead])
def list_timesheets_endpoint(
    employee_id: int = Query(..., ge=1),
    year: int = Query(..., ge=1970),
    month: int = Query(..., ge=1, le=12),
    db: Session = Depends(get_db),
) -> list[DailyTimesheetRead]:
    days = list_effective_days(db, employee_id=employee_id, year=year, month=month)
    return [_to_timesheet_read(day) for day in days]


@router.get("/api/admin/timesheets/day", response_model=DailyTimesheetRead)
def get_timesheet_day_endpoint(
    employee_id: int = Query(..., ge=1),
    work_date: date = Query(...),
    db: Session = Depends(get_db),
) -> DailyTimesheetRead:
    return _to_timesheet_read(get_effective_day(db, employee_id, work_date))


@router.post("/api/admin/timesheets/edit", response_model=TimesheetEditResponse)
def edit_timesheet_endpoint(
    payload: TimesheetEditRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> TimesheetEditResponse:
    request.state.employee_id = payload.employee_id
    request.state.work_date = payload.work_date.isoformat()
    actor = _actor(request)
    audit_details = {
        "employee_id": payload.employee_id,
        "work_date": payload.work_date.isoformat(),
        "category": payload.category.value,
        "hours": payload.hours,
        "justification": payload.justification,
        "expected_version": payload.expected_version,
    }
    try:
        outcome = apply_timesheet_edit(
            db,
            employee_id=payload.employee_id,
            work_date=payload.work_date,
            category=payload.category,
            hours=payload.hours,
            justification=payload.justification,
            expected_version=payload.expected_version,
            actor=actor,
        )
    except (ValidationError, ConcurrentEditConflict) as exc:
        log_audit(
            db,
            actor_type=AuditActorType.ADMIN,
            actor_id=actor,
            action="TIMESHEET_EDIT",
            success=False,
            entity_type="daily_timesheet",
            entity_id=timesheet_entity_id(payload.employee_id, payload.work_date),
            ip=_client_ip(request),
            user_agent=_user_agent(request),
            details={**audit_details, "error": exc.to_api_error().code, "message": str(exc)},
            request_id=_request_id(request),
        )
        raise

    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor,
        action="TIMESHEET_EDIT",
        success=True,
        entity_type="daily_timesheet",
        entity_id=timesheet_entity_id(payload.employee_id, payload.work_date),
        ip=_client_ip(request),
        user_agent=_user_agent(request),
        details={
            **audit_details,
            "resolution": outcome.resolution,
            "regular_delta": outcome.regular_delta,
        },
        request_id=_request_id(request),
    )
    return TimesheetEditResponse(
        resolution=outcome.resolution,
        regular_delta=outcome.regular_delta,
        timesheet=_to_timesheet_read(outcome.day),
    )


@router.get("/api/admin/manual-overrides", response_model=list[ManualOverrideRead])
def list_manual_overrides_endpoint(
    employee_id: int = Query(..., ge=1),
    year: int = Query(..., ge=1970),
    month: int = Query(..., ge=1, le=12),
    db: Session = Depends(get_db),
) -> list[ManualOverrideRead]:
    return list_manual_overrides(db, employee_id=employee_id, year=year, month=month)


@router.delete("/api/admin/manual-overrides/{override_id}", response_model=DailyTimesheetRead)
def clear_manual_override_endpoint(
    override_id: int,
    request: Request,
    db: Session = Depends(get_db),
) -> DailyTimesheetRead:
    day = clear_override(db, override_id)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor(request),
        action="MANUAL_OVERRIDE_CLEAR",
        success=True,
        entity_type="manual_override",
        entity_id=str(override_id),
        ip=_client_ip(request),
        user_agent=_user_agent(request),
        details={
            "employee_id": day.totals.subject_id,
            "work_date": day.totals.work_date.isoformat(),
        },
        request_id=_request_id(request),
    )
    return _to_timesheet_read(day)


@router.post("/api/admin/manual-overrides/clear", response_model=OverrideClearResponse)
def bulk_clear_manual_overrides_endpoint(
    payload: OverrideBulkClearRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> OverrideClearResponse:
    days = clear_overrides(db, payload.override_ids)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor(request),
        action="MANUAL_OVERRIDE_BULK_CLEAR",
        success=True,
        entity_type="manual_override",
        ip=_client_ip(request),
        user_agent=_user_agent(request),
        details={
            "override_ids": sorted(set(payload.override_ids)),
            "days": [timesheet_entity_id(day.totals.subject_id, day.totals.work_date) for day in days],
        },
        request_id=_request_id(request),
    )
    return OverrideClearResponse(
        cleared=len(days),
        timesheets=[_to_timesheet_read(day) for day in days],
    )


@router.get("/api/admin/holidays", response_model=list[HolidayRead])
def list_holidays_endpoint(
    year: int | None = Query(default=None, ge=1970),
    db: Session = Depends(get_db),
) -> list[HolidayRead]:
    return list_holidays(db, year=year)


@router.post("/api/admin/holidays", response_model=HolidayRead, status_code=status.HTTP_201_CREATED)
def create_holiday_endpoint(
    payload: HolidayCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> HolidayRead:
    holiday = create_holiday(db, payload)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor(request),
        action="HOLIDAY_CREATED",
        success=True,
        entity_type="holiday",
        entity_id=str(holiday.id),
        ip=_client_ip(request),
        user_agent=_user_agent(request),
        details={"day_date": holiday.day_date.isoformat(), "name": holiday.name},
        request_id=_request_id(request),
    )
    return holiday


@router.delete("/api/admin/holidays/{holiday_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_holiday_endpoint(
    holiday_id: int,
    request: Request,
    db: Session = Depends(get_db),
) -> None:
    holiday = delete_holiday(db, holiday_id)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor(request),
        action="HOLIDAY_DELETED",
        success=True,
        entity_type="holiday",
        entity_id=str(holiday_id),
        ip=_client_ip(request),
        user_agent=_user_agent(request),
        details={"day_date": holiday.day_date.isoformat(), "name": holiday.name},
        request_id=_request_id(request),
    )
