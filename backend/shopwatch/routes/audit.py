from uuid import UUID
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session
from fastapi import APIRouter, Depends
from ..database import get_db
from ..auth import get_current_actor
from .. import models, policy, schemas, audit

router = APIRouter(prefix="/api/audit", tags=["audit"])


def _require_audit_reader(db: Session, actor: policy.Principal) -> None:
    policy.require(actor, "audit.read", policy.Resource("audit"), policy.RoleDirectory(db))


@router.get("/", response_model=list[schemas.AuditLogOut])
async def list_logs(
    actor_id: Optional[UUID] = None,
    action: Optional[str] = None,
    target_id: Optional[UUID] = None,
    limit: int = 200,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    _require_audit_reader(db, actor)
    query = db.query(models.AuditLog)
    if actor_id:
        query = query.filter(models.AuditLog.actor_id == actor_id)
    if action:
        query = query.filter(models.AuditLog.action == action)
    if target_id:
        query = query.filter(models.AuditLog.target_id == target_id)
    return query.order_by(models.AuditLog.created_at.desc()).limit(limit).all()


@router.get("/report", response_model=list[schemas.AuditReportItem])
async def audit_report(
    start: datetime,
    end: datetime,
    actor_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    _require_audit_reader(db, actor)
    return audit.generate_report(db, start, end, actor_id)
