"""Compliance history API routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import errors, models, policy, schemas
from ..auth import get_current_actor
from ..database import get_db

router = APIRouter(prefix="/api/compliance", tags=["compliance"])


def _readable_shop(db: Session, shop_id: UUID, actor: policy.Principal) -> models.Shop:
    shop = db.get(models.Shop, shop_id)
    if shop is None:
        raise errors.NotFoundError("Shop not found")
    policy.require(actor, "history.read", policy.describe(shop), policy.RoleDirectory(db))
    return shop


@router.get("/shops/{shop_id}/history", response_model=list[schemas.ComplianceHistoryOut])
async def compliance_history(
    shop_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    _readable_shop(db, shop_id, actor)
    return (
        db.query(models.ComplianceHistoryRecord)
        .filter(models.ComplianceHistoryRecord.shop_id == shop_id)
        .order_by(models.ComplianceHistoryRecord.sequence.desc())
        .limit(limit)
        .all()
    )


@router.get("/shops/{shop_id}/latest", response_model=schemas.ComplianceHistoryOut)
async def latest_compliance(
    shop_id: UUID,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    _readable_shop(db, shop_id, actor)
    record = (
        db.query(models.ComplianceHistoryRecord)
        .filter(models.ComplianceHistoryRecord.shop_id == shop_id)
        .order_by(models.ComplianceHistoryRecord.sequence.desc())
        .first()
    )
    if record is None:
        raise errors.NotFoundError("Shop has not been scored yet")
    return record
