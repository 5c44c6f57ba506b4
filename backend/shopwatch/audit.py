import logging
from datetime import datetime, timezone
from uuid import UUID
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy import func
from . import models

ops_logger = logging.getLogger("shopwatch.ops")


def record(
    db: Session,
    actor_id: str | UUID | None,
    action: str,
    target_type: str | None = None,
    target_id: str | UUID | None = None,
    outcome: str = "success",
    details: dict | None = None,
) -> models.AuditLog | None:
    """Append an activity row after the primary command has settled.

    Auditing is observational: a failed write is rolled back and reported on
    the ops logger, and the caller carries on.
    """
    log = models.AuditLog(
        actor_id=UUID(str(actor_id)) if actor_id else None,
        action=action,
        target_type=target_type,
        target_id=UUID(str(target_id)) if target_id else None,
        outcome=outcome,
        details=details or {},
        created_at=datetime.now(timezone.utc),
    )
    try:
        db.add(log)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        ops_logger.exception("audit write failed for %s on %s %s", action, target_type, target_id)
        return None
    return log


def generate_report(
    db: Session,
    start: datetime,
    end: datetime,
    actor_id: UUID | None = None,
):
    query = db.query(models.AuditLog).filter(
        models.AuditLog.created_at >= start,
        models.AuditLog.created_at <= end,
    )
    if actor_id:
        query = query.filter(models.AuditLog.actor_id == actor_id)
    rows = (
        query.with_entities(
            models.AuditLog.action,
            models.AuditLog.outcome,
            func.count(models.AuditLog.id),
        )
        .group_by(models.AuditLog.action, models.AuditLog.outcome)
        .all()
    )
    return [{"action": r[0], "outcome": r[1], "count": r[2]} for r in rows]
