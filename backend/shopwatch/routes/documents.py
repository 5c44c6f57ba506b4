from uuid import UUID
from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_actor
from .. import policy, schemas
from ..services import lifecycle, registry
from ..services.dispatcher import deliver_lifecycle_events

router = APIRouter(prefix="/api/documents", tags=["documents"])


@router.post("/", response_model=schemas.DocumentOut)
def submit_document(
    data: schemas.DocumentCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    outcome = registry.submit_document(db, actor, data)
    background.add_task(deliver_lifecycle_events, outcome.events)
    return outcome.entity


@router.get("/", response_model=list[schemas.DocumentOut])
async def list_documents(
    shop_id: UUID,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    return registry.list_documents(db, shop_id, actor)


@router.get("/{document_id}", response_model=schemas.DocumentOut)
async def get_document(
    document_id: UUID,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    return registry.get_document(db, document_id, actor)


@router.post("/{document_id}/approve", response_model=schemas.DocumentOut)
def approve_document(
    document_id: UUID,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    outcome = lifecycle.transition_document(db, document_id, "approve", actor)
    background.add_task(deliver_lifecycle_events, outcome.events)
    return outcome.entity


@router.post("/{document_id}/reject", response_model=schemas.DocumentOut)
def reject_document(
    document_id: UUID,
    data: schemas.DocumentReject,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    outcome = lifecycle.transition_document(db, document_id, "reject", actor, reason=data.reason)
    background.add_task(deliver_lifecycle_events, outcome.events)
    return outcome.entity
