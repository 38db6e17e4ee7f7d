from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class InvalidInterval(Exception):
    """A clocked interval that cannot be segmented (open, inverted or too short)."""

    def __init__(self, reason: str, *, entry_id: int | None = None):
        super().__init__(reason)
        self.reason = reason
        self.entry_id = entry_id


class UnknownActivityTag(Exception):
    def __init__(self, tag: str):
        super().__init__(f"Unknown activity tag: {tag!r}")
        self.tag = tag


class ValidationError(Exception):
    """Rejected administrative edit. ``field`` names the offending input."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message

    def to_api_error(self) -> ApiError:
        return ApiError(
            status_code=422,
            code="VALIDATION_ERROR",
            message=f"{self.field}: {self.message}",
        )


class ConcurrentEditConflict(Exception):
    def __init__(self, employee_id: int, work_date: str, message: str | None = None):
        super().__init__(message or "Timesheet was modified concurrently, reload and retry.")
        self.employee_id = employee_id
        self.work_date = work_date
        self.message = str(self)

    def to_api_error(self) -> ApiError:
        return ApiError(status_code=409, code="EDIT_CONFLICT", message=self.message)


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
