from uuid import UUID
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_actor
from .. import policy, schemas
from ..services import lifecycle, registry
from ..services.dispatcher import deliver_lifecycle_events

router = APIRouter(prefix="/api/inspections", tags=["inspections"])


@router.post("/", response_model=schemas.InspectionOut)
def schedule_inspection(
    data: schemas.InspectionCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    outcome = registry.schedule_inspection(db, actor, data)
    background.add_task(deliver_lifecycle_events, outcome.events)
    return outcome.entity


@router.get("/", response_model=list[schemas.InspectionOut])
async def list_inspections(
    shop_id: Optional[UUID] = Query(None),
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    return registry.list_inspections(db, actor, shop_id=shop_id, status=status)


@router.get("/{inspection_id}", response_model=schemas.InspectionOut)
async def get_inspection(
    inspection_id: UUID,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    return registry.get_inspection(db, inspection_id, actor)


@router.post("/{inspection_id}/start", response_model=schemas.InspectionOut)
def start_inspection(
    inspection_id: UUID,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    outcome = lifecycle.transition_inspection(db, inspection_id, "start", actor)
    background.add_task(deliver_lifecycle_events, outcome.events)
    return outcome.entity


@router.post("/{inspection_id}/complete", response_model=schemas.InspectionOut)
def complete_inspection(
    inspection_id: UUID,
    data: schemas.InspectionComplete,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    outcome = lifecycle.transition_inspection(
        db, inspection_id, "complete", actor, score=data.score, issues=data.issues, notes=data.notes
    )
    background.add_task(deliver_lifecycle_events, outcome.events)
    return outcome.entity


@router.post("/{inspection_id}/cancel", response_model=schemas.InspectionOut)
def cancel_inspection(
    inspection_id: UUID,
    data: schemas.InspectionCancel,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    outcome = lifecycle.transition_inspection(db, inspection_id, "cancel", actor, reason=data.reason)
    background.add_task(deliver_lifecycle_events, outcome.events)
    return outcome.entity
