from uuid import UUID
from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_actor, get_optional_actor
from .. import policy, schemas
from ..services import registry
from ..services.dispatcher import deliver_lifecycle_events

router = APIRouter(prefix="/api/reviews", tags=["reviews"])
favorites_router = APIRouter(prefix="/api/favorites", tags=["favorites"])


@router.post("/", response_model=schemas.ReviewOut)
def submit_review(
    data: schemas.ReviewCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    outcome = registry.submit_review(db, actor, data)
    background.add_task(deliver_lifecycle_events, outcome.events)
    return outcome.entity


@router.get("/", response_model=list[schemas.ReviewOut])
async def list_reviews(
    shop_id: UUID,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_optional_actor),
):
    return registry.list_reviews(db, shop_id, actor)


@router.patch("/{review_id}", response_model=schemas.ReviewOut)
def update_review(
    review_id: UUID,
    data: schemas.ReviewUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    outcome = registry.update_review(db, review_id, actor, data)
    background.add_task(deliver_lifecycle_events, outcome.events)
    return outcome.entity


@router.delete("/{review_id}")
def delete_review(
    review_id: UUID,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    outcome = registry.delete_review(db, review_id, actor)
    background.add_task(deliver_lifecycle_events, outcome.events)
    return {"status": "deleted"}


@favorites_router.post("/", response_model=schemas.FavoriteOut)
def add_favorite(
    data: schemas.FavoriteCreate,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    return registry.add_favorite(db, actor, data.shop_id).entity


@favorites_router.get("/", response_model=list[schemas.FavoriteOut])
async def list_favorites(
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    return registry.list_favorites(db, actor)


@favorites_router.delete("/{favorite_id}")
def remove_favorite(
    favorite_id: UUID,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    registry.remove_favorite(db, favorite_id, actor)
    return {"status": "deleted"}
