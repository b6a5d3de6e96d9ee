from __future__ import annotations

import enum
import logging
from collections.abc import Mapping
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import AuditActorType, AuditLog

logger = logging.getLogger("app.audit")

SYNC_AUDIT_ACTION = "HALO_SYNC"
SYNC_AUDIT_ENTITY = "fiscal_year"


def _json_safe(value: Any) -> Any:
    # details is a JSON/JSONB column; sync summaries carry dates, enums and Decimals.
    if isinstance(value, Mapping):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_safe(item) for item in value]
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: Mapping[str, Any] | None = None,
    request_id: str | None = None,
) -> bool:
    """Write one audit row. Returns False when the row could not be stored."""
    safe_details = _json_safe(details or {})
    if request_id:
        safe_details.setdefault("request_id", request_id)

    db.add(
        AuditLog(
            ts_utc=datetime.now(timezone.utc),
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            success=success,
            details=safe_details,
        )
    )
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor_type": actor_type.value,
                "actor_id": actor_id,
                "success": success,
            },
        )
        return False

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
            "details": safe_details,
        },
    )
    return True


def log_sync_audit(
    db: Session,
    *,
    trigger: str,
    fiscal_year_id: int | None,
    summary: Mapping[str, Any],
    success: bool,
    actor_type: AuditActorType,
    actor_id: str,
    request_id: str | None = None,
) -> bool:
    """Audit row for one sync run, keyed to its fiscal year."""
    return log_audit(
        db,
        actor_type=actor_type,
        actor_id=actor_id,
        action=SYNC_AUDIT_ACTION,
        success=success,
        entity_type=SYNC_AUDIT_ENTITY,
        entity_id=str(fiscal_year_id) if fiscal_year_id is not None else None,
        details={"trigger": trigger, **summary},
        request_id=request_id,
    )
