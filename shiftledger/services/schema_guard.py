from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from shiftledger.models import AuditLog, DailyTimesheet, Holiday, ManualOverride, SecurityAlert, TimeEntry

ALEMBIC_HEAD = "0001_initial"

# Tables the timesheet engine reads or writes while serving requests.
CHECKED_MODELS = (TimeEntry, Holiday, DailyTimesheet, ManualOverride, SecurityAlert, AuditLog)

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "audit_actor_type": {"ADMIN", "SYSTEM"},
}


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
        }


def required_columns() -> dict[str, set[str]]:
    return {model.__tablename__: {column.name for column in model.__table__.columns} for model in CHECKED_MODELS}


def _check_tables(inspector: Any, issues: list[str]) -> None:
    for table_name, columns in required_columns().items():
        if not inspector.has_table(table_name):
            issues.append(f"MISSING_TABLE:{table_name}")
            continue
        present = {str(item["name"]) for item in inspector.get_columns(table_name)}
        missing = sorted(columns - present)
        if missing:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing)}")


def _check_enums(engine: Engine, inspector: Any, issues: list[str], warnings: list[str]) -> None:
    if not engine.dialect.supports_native_enum:
        # Backends without native enum types store the labels as strings.
        return
    labels_by_name = {
        str(item.get("name")): {str(label) for label in item.get("labels") or ()} for item in inspector.get_enums()
    }
    for enum_name, required in REQUIRED_ENUM_VALUES.items():
        labels = labels_by_name.get(enum_name)
        if labels is None:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing = sorted(required - labels)
        if missing:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing)}")


def _check_alembic_version(engine: Engine, issues: list[str]) -> None:
    try:
        with engine.connect() as connection:
            value = connection.execute(text("SELECT version_num FROM alembic_version")).scalar()
    except SQLAlchemyError as exc:
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")
        return
    version = str(value or "").strip()
    if not version:
        issues.append("ALEMBIC_VERSION_EMPTY")
    elif version != ALEMBIC_HEAD:
        issues.append(f"ALEMBIC_VERSION_MISMATCH:{version}")


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    """Compare the live database with the models before serving requests."""
    issues: list[str] = []
    warnings: list[str] = []
    inspector = inspect(engine)
    _check_tables(inspector, issues)
    _check_enums(engine, inspector, issues, warnings)
    _check_alembic_version(engine, issues)
    return SchemaGuardResult(
        ok=not issues,
        checked_at_utc=datetime.now(timezone.utc),
        issues=issues,
        warnings=warnings,
    )
