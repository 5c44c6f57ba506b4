from uuid import UUID
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_actor, get_optional_actor
from .. import policy, schemas
from ..services import lifecycle, registry
from ..services.dispatcher import deliver_lifecycle_events

router = APIRouter(prefix="/api/shops", tags=["shops"])


@router.post("/", response_model=schemas.ShopOut)
def register_shop(
    data: schemas.ShopCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    outcome = registry.register_shop(db, actor, data)
    background.add_task(deliver_lifecycle_events, outcome.events)
    return outcome.entity


@router.get("/", response_model=list[schemas.ShopOut])
async def list_shops(
    status: Optional[str] = Query(None, description="Filter by registration status"),
    owner_id: Optional[UUID] = Query(None, description="Filter by owner"),
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_optional_actor),
):
    return registry.list_shops(db, actor, status=status, owner_id=owner_id)


@router.get("/{shop_id}", response_model=schemas.ShopOut)
async def get_shop(
    shop_id: UUID,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_optional_actor),
):
    return registry.get_shop(db, shop_id, actor)


@router.patch("/{shop_id}", response_model=schemas.ShopOut)
def update_shop(
    shop_id: UUID,
    data: schemas.ShopUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    outcome = registry.update_shop(db, shop_id, actor, data)
    background.add_task(deliver_lifecycle_events, outcome.events)
    return outcome.entity


@router.delete("/{shop_id}")
def delete_shop(
    shop_id: UUID,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    outcome = registry.delete_shop(db, shop_id, actor)
    background.add_task(deliver_lifecycle_events, outcome.events)
    return {"status": "deleted"}


def _transition(db, shop_id, action, actor, background, **inputs):
    outcome = lifecycle.transition_shop(db, shop_id, action, actor, **inputs)
    background.add_task(deliver_lifecycle_events, outcome.events)
    return outcome.entity


@router.post("/{shop_id}/approve", response_model=schemas.ShopOut)
def approve_shop(
    shop_id: UUID,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    return _transition(db, shop_id, "approve", actor, background)


@router.post("/{shop_id}/reject", response_model=schemas.ShopOut)
def reject_shop(
    shop_id: UUID,
    data: schemas.ShopReject,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    return _transition(db, shop_id, "reject", actor, background, reason=data.reason)


@router.post("/{shop_id}/suspend", response_model=schemas.ShopOut)
def suspend_shop(
    shop_id: UUID,
    data: schemas.ShopSuspend,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    return _transition(
        db, shop_id, "suspend", actor, background, reason=data.reason, duration_days=data.duration_days
    )


@router.post("/{shop_id}/reinstate", response_model=schemas.ShopOut)
def reinstate_shop(
    shop_id: UUID,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    return _transition(db, shop_id, "reinstate", actor, background)


@router.post("/{shop_id}/warnings", response_model=schemas.ComplianceWarningOut)
def issue_warning(
    shop_id: UUID,
    data: schemas.WarningCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    outcome = registry.issue_warning(db, shop_id, actor, data)
    background.add_task(deliver_lifecycle_events, outcome.events)
    return outcome.entity


@router.get("/{shop_id}/warnings", response_model=list[schemas.ComplianceWarningOut])
async def list_warnings(
    shop_id: UUID,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    return registry.list_warnings(db, shop_id, actor)
