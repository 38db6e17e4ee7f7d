from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from shiftledger.models import AuditActorType, AuditLog

logger = logging.getLogger("shiftledger.audit")


def timesheet_entity_id(employee_id: int, work_date: date) -> str:
    return f"{employee_id}:{work_date.isoformat()}"


def log_audit(
    db: Session,
    *,
    actor_id: str,
    action: str,
    success: bool,
    actor_type: AuditActorType = AuditActorType.ADMIN,
    entity_type: str | None = None,
    entity_id: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditLog | None:
    """Persist one audit row for an administrative action on timesheet data.

    A failed write is rolled back, logged and reported as ``None``.
    """
    payload = dict(details or {})
    if request_id:
        payload.setdefault("request_id", request_id)

    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        ip=ip,
        user_agent=user_agent,
        success=success,
        details=payload,
    )
    db.add(audit)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor_type": actor_type.value,
                "actor_id": actor_id,
                "entity_id": entity_id,
                "success": success,
            },
        )
        return None

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "success": success,
            "details": payload,
        },
    )
    return audit
