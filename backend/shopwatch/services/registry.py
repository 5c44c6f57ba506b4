"""Registry commands: the writes that are not status transitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .. import audit, errors, locks, models, policy, ratelimit, schemas
from . import scoring
from .events import LifecycleEvent
from .lifecycle import recompute_after_change

# purpose: register shops and their records through authorize, mutate, score, notify, audit
# status: active
# depends_on: policy, ratelimit, locks, services.scoring, services.lifecycle

logger = logging.getLogger(__name__)


@dataclass
class CommandOutcome:
    entity: Any
    events: list[LifecycleEvent] = field(default_factory=list)
    compliance: scoring.ComplianceResult | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _shop_resource(kind: str, shop: models.Shop) -> policy.Resource:
    """Resource for a child row that does not exist yet."""
    return policy.Resource(kind, None, frozenset({shop.owner_id}), shop.status)


def _get_shop(db: Session, shop_id: UUID) -> models.Shop:
    shop = db.get(models.Shop, shop_id)
    if shop is None:
        raise errors.NotFoundError("Shop not found")
    return shop


def _get(db: Session, model: type, entity_id: UUID, label: str):
    entity = db.get(model, entity_id)
    if entity is None:
        raise errors.NotFoundError(f"{label} not found")
    return entity


def _commit(db: Session, conflict_message: str) -> None:
    try:
        db.commit()
    except (IntegrityError, StaleDataError) as exc:
        db.rollback()
        raise errors.ConflictError(conflict_message) from exc


def _event(
    entity: str,
    entity_id: UUID,
    shop: models.Shop,
    action: str,
    actor: policy.Principal,
    *,
    to_status: str | None = None,
    notification_type: str | None = None,
    **details: Any,
) -> LifecycleEvent:
    return LifecycleEvent(
        entity=entity,
        entity_id=entity_id,
        shop_id=shop.id,
        action=action,
        from_status=None,
        to_status=to_status,
        actor_id=actor.id,
        owner_id=shop.owner_id,
        notification_type=notification_type,
        details={"shop_name": shop.name, **details},
    )


def _audited(db: Session, actor: policy.Principal, action: str, target_type: str, target_id, run):
    """Run a command and record its outcome, success or error code."""

    try:
        outcome = run()
    except errors.ShopwatchError as exc:
        db.rollback()
        audit.record(db, actor.id, action, target_type, target_id, exc.code, {"error": str(exc)})
        raise
    entity_id = getattr(outcome.entity, "id", None) or target_id
    audit.record(db, actor.id, action, target_type, entity_id)
    return outcome


# profiles

def ensure_actor(db: Session, actor_id: UUID, role: str) -> models.Actor:
    """Profile creation hook: the first authenticated sighting creates the profile."""

    if role not in models.ROLES:
        raise errors.AuthorizationError(f"unknown role '{role}'")
    profile = db.get(models.Actor, actor_id)
    if profile is None:
        profile = models.Actor(id=actor_id, role=role)
        db.add(profile)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            profile = db.get(models.Actor, actor_id)
        else:
            db.refresh(profile)
            logger.info("created %s profile %s", role, actor_id)
    if profile.role != role:
        raise errors.AuthorizationError("role claim does not match the stored profile")
    return profile


def update_profile(db: Session, actor: policy.Principal, data: schemas.ActorUpdate) -> models.Actor:
    if actor.id is None:
        raise errors.AuthorizationError("sign in to update your profile")
    profile = _get(db, models.Actor, actor.id, "Profile")
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(profile, key, value)
    profile.updated_at = _utcnow()
    db.commit()
    db.refresh(profile)
    return profile


# shops

def register_shop(db: Session, actor: policy.Principal, data: schemas.ShopCreate) -> CommandOutcome:
    def run():
        ratelimit.get_rate_limiter().enforce(actor.id, "shop.create")
        policy.require(actor, "shop.create", policy.Resource("shop"), policy.RoleDirectory(db))
        shop = models.Shop(
            owner_id=actor.id,
            status="pending",
            compliance_score=0,
            compliance_status="pending",
            **data.model_dump(),
        )
        db.add(shop)
        _commit(db, "shop could not be registered")
        db.refresh(shop)
        return CommandOutcome(shop, [_event("shop", shop.id, shop, "created", actor, to_status="pending")])

    return _audited(db, actor, "shop.create", "shop", None, run)


def update_shop(
    db: Session, shop_id: UUID, actor: policy.Principal, data: schemas.ShopUpdate
) -> CommandOutcome:
    def run():
        shop = _get_shop(db, shop_id)
        with locks.shop_lock(shop.id):
            db.refresh(shop)
            policy.require(actor, "shop.update", policy.describe(shop), policy.RoleDirectory(db))
            for key, value in data.model_dump(exclude_unset=True).items():
                setattr(shop, key, value)
            shop.updated_at = _utcnow()
            _commit(db, "shop was modified concurrently; retry")
            db.refresh(shop)
        return CommandOutcome(shop, [_event("shop", shop.id, shop, "updated", actor, to_status=shop.status)])

    return _audited(db, actor, "shop.update", "shop", shop_id, run)


def delete_shop(db: Session, shop_id: UUID, actor: policy.Principal) -> CommandOutcome:
    def run():
        shop = _get_shop(db, shop_id)
        with locks.shop_lock(shop.id):
            policy.require(actor, "shop.delete", policy.describe(shop), policy.RoleDirectory(db))
            event = _event("shop", shop.id, shop, "deleted", actor)
            db.delete(shop)
            _commit(db, "shop could not be deleted")
        return CommandOutcome(None, [event])

    return _audited(db, actor, "shop.delete", "shop", shop_id, run)


def get_shop(db: Session, shop_id: UUID, actor: policy.Principal) -> models.Shop:
    shop = _get_shop(db, shop_id)
    policy.require(actor, "shop.read", policy.describe(shop), policy.RoleDirectory(db))
    return shop


def list_shops(
    db: Session,
    actor: policy.Principal,
    *,
    status: str | None = None,
    owner_id: UUID | None = None,
) -> list[models.Shop]:
    """Shops the actor may read: every shop for officials, otherwise approved plus own."""

    query = db.query(models.Shop)
    roles = policy.RoleDirectory(db)
    if actor.id is None or roles.role_of(actor.id) != "government":
        visible = models.Shop.status == "approved"
        if actor.id is not None:
            visible = or_(visible, models.Shop.owner_id == actor.id)
        query = query.filter(visible)
    if status:
        query = query.filter(models.Shop.status == status)
    if owner_id:
        query = query.filter(models.Shop.owner_id == owner_id)
    return query.order_by(models.Shop.created_at.desc()).all()


def issue_warning(
    db: Session, shop_id: UUID, actor: policy.Principal, data: schemas.WarningCreate
) -> CommandOutcome:
    def run():
        shop = _get_shop(db, shop_id)
        policy.require(actor, "shop.warn", policy.describe(shop), policy.RoleDirectory(db))
        warning = models.ComplianceWarning(
            shop_id=shop.id,
            issued_by=actor.id,
            severity=data.severity,
            message=data.message,
            created_at=_utcnow(),
        )
        db.add(warning)
        _commit(db, "warning could not be recorded")
        db.refresh(warning)
        event = _event(
            "warning",
            warning.id,
            shop,
            "issued",
            actor,
            notification_type="compliance_warning",
            message=warning.message,
            severity=warning.severity,
        )
        return CommandOutcome(warning, [event])

    return _audited(db, actor, "shop.warn", "shop", shop_id, run)


def list_warnings(db: Session, shop_id: UUID, actor: policy.Principal) -> list[models.ComplianceWarning]:
    shop = _get_shop(db, shop_id)
    policy.require(actor, "history.read", policy.describe(shop), policy.RoleDirectory(db))
    return (
        db.query(models.ComplianceWarning)
        .filter(models.ComplianceWarning.shop_id == shop.id)
        .order_by(models.ComplianceWarning.created_at.desc())
        .all()
    )


# documents

def submit_document(
    db: Session,
    actor: policy.Principal,
    data: schemas.DocumentCreate,
    *,
    today: date | None = None,
) -> CommandOutcome:
    today = today or date.today()

    def run():
        shop = _get_shop(db, data.shop_id)
        ratelimit.get_rate_limiter().enforce(actor.id, "document.create")
        policy.require(actor, "document.create", _shop_resource("document", shop), policy.RoleDirectory(db))
        if data.document_type not in models.DOCUMENT_TYPES:
            raise errors.ValidationError(f"unknown document type '{data.document_type}'")
        if data.expiry_date is not None and data.expiry_date < today:
            raise errors.ValidationError("expiry_date is already in the past")
        with locks.shop_lock(shop.id):
            document = models.Document(
                shop_id=shop.id,
                document_type=data.document_type,
                file_url=data.file_url,
                expiry_date=data.expiry_date,
                status="pending",
                created_at=_utcnow(),
            )
            db.add(document)
            shop.updated_at = _utcnow()
            _commit(db, "shop was modified concurrently; retry")
            db.refresh(document)
            events = [
                _event("document", document.id, shop, "submitted", actor, to_status="pending")
            ]
            compliance, extra = recompute_after_change(db, shop, actor.id, today=today)
        return CommandOutcome(document, events + extra, compliance)

    return _audited(db, actor, "document.create", "document", None, run)


def get_document(db: Session, document_id: UUID, actor: policy.Principal) -> models.Document:
    document = _get(db, models.Document, document_id, "Document")
    policy.require(actor, "document.read", policy.describe(document), policy.RoleDirectory(db))
    return document


def list_documents(db: Session, shop_id: UUID, actor: policy.Principal) -> list[models.Document]:
    shop = _get_shop(db, shop_id)
    policy.require(actor, "document.read", _shop_resource("document", shop), policy.RoleDirectory(db))
    return (
        db.query(models.Document)
        .filter(models.Document.shop_id == shop.id)
        .order_by(models.Document.created_at.desc())
        .all()
    )


# inspections

def schedule_inspection(
    db: Session, actor: policy.Principal, data: schemas.InspectionCreate
) -> CommandOutcome:
    def run():
        shop = _get_shop(db, data.shop_id)
        roles = policy.RoleDirectory(db)
        policy.require(actor, "inspection.schedule", _shop_resource("inspection", shop), roles)
        inspector_id = data.inspector_id or actor.id
        if roles.role_of(inspector_id) != "government":
            raise errors.ValidationError("inspector must be a government official")
        if shop.status == "rejected":
            raise errors.ConflictError("cannot schedule an inspection for a rejected shop")
        inspection = models.Inspection(
            shop_id=shop.id,
            inspector_id=inspector_id,
            inspection_type=data.inspection_type,
            scheduled_date=data.scheduled_date,
            notes=data.notes,
            status="scheduled",
            issues=[],
            created_at=_utcnow(),
        )
        db.add(inspection)
        _commit(db, "inspection could not be scheduled")
        db.refresh(inspection)
        event = LifecycleEvent(
            entity="inspection",
            entity_id=inspection.id,
            shop_id=shop.id,
            action="scheduled",
            from_status=None,
            to_status="scheduled",
            actor_id=actor.id,
            owner_id=shop.owner_id,
            inspector_id=inspector_id,
            notification_type="inspection_scheduled",
            details={
                "shop_name": shop.name,
                "inspection_type": inspection.inspection_type,
                "scheduled_date": data.scheduled_date.date(),
            },
        )
        return CommandOutcome(inspection, [event])

    return _audited(db, actor, "inspection.schedule", "inspection", None, run)


def get_inspection(db: Session, inspection_id: UUID, actor: policy.Principal) -> models.Inspection:
    inspection = _get(db, models.Inspection, inspection_id, "Inspection")
    policy.require(actor, "inspection.read", policy.describe(inspection), policy.RoleDirectory(db))
    return inspection


def list_inspections(
    db: Session,
    actor: policy.Principal,
    *,
    shop_id: UUID | None = None,
    status: str | None = None,
) -> list[models.Inspection]:
    query = db.query(models.Inspection)
    roles = policy.RoleDirectory(db)
    if shop_id is not None:
        shop = _get_shop(db, shop_id)
        resource = _shop_resource("inspection", shop)
        if not policy.authorize(actor, "inspection.read", resource, roles):
            # inspectors see their own assignments on shops they do not own
            query = query.filter(models.Inspection.inspector_id == actor.id)
        query = query.filter(models.Inspection.shop_id == shop.id)
    elif actor.id is None or roles.role_of(actor.id) != "government":
        query = query.join(models.Shop).filter(
            or_(models.Shop.owner_id == actor.id, models.Inspection.inspector_id == actor.id)
        )
    if status:
        query = query.filter(models.Inspection.status == status)
    return query.order_by(models.Inspection.scheduled_date.desc()).all()


# reviews

def _validate_rating(rating: Any) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise errors.ValidationError("rating must be an integer between 1 and 5")
    return rating


def submit_review(db: Session, actor: policy.Principal, data: schemas.ReviewCreate) -> CommandOutcome:
    def run():
        shop = _get_shop(db, data.shop_id)
        ratelimit.get_rate_limiter().enforce(actor.id, "review.create")
        policy.require(actor, "review.create", _shop_resource("review", shop), policy.RoleDirectory(db))
        rating = _validate_rating(data.rating)
        if shop.status != "approved":
            raise errors.ConflictError("reviews are only accepted for approved shops")
        with locks.shop_lock(shop.id):
            exists = (
                db.query(models.Review.id)
                .filter_by(user_id=actor.id, shop_id=shop.id)
                .first()
            )
            if exists:
                raise errors.ConflictError("you have already reviewed this shop")
            review = models.Review(
                shop_id=shop.id,
                user_id=actor.id,
                rating=rating,
                comment=data.comment,
                created_at=_utcnow(),
            )
            db.add(review)
            _commit(db, "you have already reviewed this shop")
            db.refresh(review)
            event = _event(
                "review", review.id, shop, "created", actor, notification_type="new_review", rating=rating
            )
            compliance, extra = recompute_after_change(db, shop, actor.id)
        return CommandOutcome(review, [event] + extra, compliance)

    return _audited(db, actor, "review.create", "review", None, run)


def update_review(
    db: Session, review_id: UUID, actor: policy.Principal, data: schemas.ReviewUpdate
) -> CommandOutcome:
    def run():
        review = _get(db, models.Review, review_id, "Review")
        policy.require(actor, "review.update", policy.describe(review), policy.RoleDirectory(db))
        changes = data.model_dump(exclude_unset=True)
        if "rating" in changes:
            changes["rating"] = _validate_rating(changes["rating"])
        shop = review.shop
        with locks.shop_lock(shop.id):
            for key, value in changes.items():
                setattr(review, key, value)
            review.updated_at = _utcnow()
            _commit(db, "review was modified concurrently; retry")
            db.refresh(review)
            compliance, extra = recompute_after_change(db, shop, actor.id)
        return CommandOutcome(review, extra, compliance)

    return _audited(db, actor, "review.update", "review", review_id, run)


def delete_review(db: Session, review_id: UUID, actor: policy.Principal) -> CommandOutcome:
    def run():
        review = _get(db, models.Review, review_id, "Review")
        policy.require(actor, "review.delete", policy.describe(review), policy.RoleDirectory(db))
        shop = review.shop
        with locks.shop_lock(shop.id):
            db.delete(review)
            _commit(db, "review could not be deleted")
            compliance, extra = recompute_after_change(db, shop, actor.id)
        return CommandOutcome(None, extra, compliance)

    return _audited(db, actor, "review.delete", "review", review_id, run)


def list_reviews(db: Session, shop_id: UUID, actor: policy.Principal) -> list[models.Review]:
    shop = _get_shop(db, shop_id)
    policy.require(actor, "review.read", _shop_resource("review", shop), policy.RoleDirectory(db))
    return (
        db.query(models.Review)
        .filter(models.Review.shop_id == shop.id)
        .order_by(models.Review.created_at.desc())
        .all()
    )


# favorites

def add_favorite(db: Session, actor: policy.Principal, shop_id: UUID) -> CommandOutcome:
    def run():
        shop = _get_shop(db, shop_id)
        roles = policy.RoleDirectory(db)
        policy.require(actor, "favorite.create", _shop_resource("favorite", shop), roles)
        policy.require(actor, "shop.read", policy.describe(shop), roles)
        if db.query(models.Favorite.id).filter_by(user_id=actor.id, shop_id=shop.id).first():
            raise errors.ConflictError("shop is already in your favorites")
        favorite = models.Favorite(user_id=actor.id, shop_id=shop.id, created_at=_utcnow())
        db.add(favorite)
        _commit(db, "shop is already in your favorites")
        db.refresh(favorite)
        return CommandOutcome(favorite)

    return _audited(db, actor, "favorite.create", "favorite", None, run)


def remove_favorite(db: Session, favorite_id: UUID, actor: policy.Principal) -> CommandOutcome:
    def run():
        favorite = _get(db, models.Favorite, favorite_id, "Favorite")
        policy.require(actor, "favorite.delete", policy.describe(favorite), policy.RoleDirectory(db))
        db.delete(favorite)
        _commit(db, "favorite could not be removed")
        return CommandOutcome(None)

    return _audited(db, actor, "favorite.delete", "favorite", favorite_id, run)


def list_favorites(db: Session, actor: policy.Principal) -> list[models.Favorite]:
    if actor.id is None:
        raise errors.AuthorizationError("sign in to see favorites")
    return (
        db.query(models.Favorite)
        .filter(models.Favorite.user_id == actor.id)
        .order_by(models.Favorite.created_at.desc())
        .all()
    )
