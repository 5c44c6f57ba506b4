from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_actor
from .. import errors, models, policy, schemas
from ..services import registry

router = APIRouter(prefix="/api/profiles", tags=["profiles"])


@router.get("/me", response_model=schemas.ActorOut)
async def read_me(
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    profile = db.get(models.Actor, actor.id)
    if profile is None:
        raise errors.NotFoundError("Profile not found")
    return profile


@router.patch("/me", response_model=schemas.ActorOut)
async def update_me(
    data: schemas.ActorUpdate,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    return registry.update_profile(db, actor, data)
