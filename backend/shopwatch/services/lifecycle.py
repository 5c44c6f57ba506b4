"""State machines for shops, documents and inspections."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .. import audit, errors, locks, models, policy
from . import scoring
from .events import LifecycleEvent

# purpose: validate and apply status transitions, then trigger scoring, events and audit
# status: active
# inputs: entity id, transition name, acting principal, transition inputs
# outputs: TransitionOutcome carrying the updated entity, committed events and any new score

logger = logging.getLogger(__name__)
ops_logger = logging.getLogger("shopwatch.ops")

EXPIRY_WARNING_DAYS = int(os.getenv("DOCUMENT_EXPIRY_WARNING_DAYS", "14"))

# shop statuses whose compliance is tracked automatically
SCORED_SHOP_STATUSES = ("approved", "suspended")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class TransitionContext:
    actor: policy.Principal
    inputs: dict[str, Any]
    now: datetime
    today: date
    details: dict[str, Any] = field(default_factory=dict)

    def require_text(self, name: str) -> str:
        value = self.inputs.get(name)
        if not isinstance(value, str) or not value.strip():
            raise errors.ValidationError(f"{name} is required")
        return value.strip()


Hook = Callable[[Any, TransitionContext], None]


@dataclass(frozen=True)
class Transition:
    name: str
    sources: frozenset[str]
    target: str
    apply: Hook | None = None
    notification: str | None = None
    recompute: bool = False


@dataclass(frozen=True)
class StateMachine:
    entity: str
    transitions: dict[str, Transition]

    def transition_for(self, action: str, current: str) -> Transition:
        transition = self.transitions.get(action)
        if transition is None or current not in transition.sources:
            raise errors.InvalidTransition(self.entity, action, current)
        return transition


def _machine(entity: str, *transitions: Transition) -> StateMachine:
    return StateMachine(entity, {t.name: t for t in transitions})


def _touch(entity: Any, ctx: TransitionContext) -> None:
    entity.updated_at = ctx.now


# shop hooks

def _approve_shop(shop: models.Shop, ctx: TransitionContext) -> None:
    shop.compliance_status = "pending"
    shop.approved_at = ctx.now
    shop.approved_by = ctx.actor.id
    shop.rejection_reason = None


def _reject_shop(shop: models.Shop, ctx: TransitionContext) -> None:
    shop.rejection_reason = ctx.require_text("reason")
    ctx.details["reason"] = shop.rejection_reason


def _suspend_shop(shop: models.Shop, ctx: TransitionContext) -> None:
    reason = ctx.require_text("reason")
    days = ctx.inputs.get("duration_days")
    if isinstance(days, bool) or not isinstance(days, int) or days < 1:
        raise errors.ValidationError("duration_days must be a positive whole number of days")
    shop.suspension_reason = reason
    shop.suspended_until = ctx.now + timedelta(days=days)
    ctx.details.update(reason=reason, suspended_until=shop.suspended_until.date())


def _reinstate_shop(shop: models.Shop, ctx: TransitionContext) -> None:
    shop.suspension_reason = None
    shop.suspended_until = None


SHOP_MACHINE = _machine(
    "shop",
    Transition("approve", frozenset({"pending"}), "approved", _approve_shop, "shop_approved", recompute=True),
    Transition("reject", frozenset({"pending"}), "rejected", _reject_shop, "shop_rejected"),
    Transition("suspend", frozenset({"approved"}), "suspended", _suspend_shop, "shop_suspended"),
    Transition("reinstate", frozenset({"suspended"}), "approved", _reinstate_shop, "shop_reinstated"),
)


# document hooks

def _review_document(document: models.Document, ctx: TransitionContext) -> None:
    document.reviewed_by = ctx.actor.id
    document.reviewed_at = ctx.now


def _reject_document(document: models.Document, ctx: TransitionContext) -> None:
    reason = (ctx.inputs.get("reason") or "").strip()
    document.rejection_reason = reason or None
    ctx.details["reason"] = reason or "no reason given"
    _review_document(document, ctx)


def _expire_document(document: models.Document, ctx: TransitionContext) -> None:
    if document.expiry_date is None or document.expiry_date >= ctx.today:
        raise errors.ValidationError("document has not reached its expiry date")


DOCUMENT_MACHINE = _machine(
    "document",
    Transition("approve", frozenset({"pending"}), "approved", _review_document, "document_approved", recompute=True),
    Transition("reject", frozenset({"pending"}), "rejected", _reject_document, "document_rejected", recompute=True),
    Transition(
        "expire", frozenset({"pending", "approved"}), "expired", _expire_document, "document_expired", recompute=True
    ),
)


# inspection hooks

def _start_inspection(inspection: models.Inspection, ctx: TransitionContext) -> None:
    if ctx.now < _as_utc(inspection.scheduled_date):
        raise errors.ValidationError("inspection cannot start before its scheduled date")
    inspection.started_at = ctx.now


def _complete_inspection(inspection: models.Inspection, ctx: TransitionContext) -> None:
    score = ctx.inputs.get("score")
    if isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= 100:
        raise errors.ValidationError("score must be an integer between 0 and 100")
    issues = ctx.inputs.get("issues") or []
    if not isinstance(issues, list) or not all(isinstance(item, str) for item in issues):
        raise errors.ValidationError("issues must be a list of strings")
    inspection.score = score
    inspection.issues = list(issues)
    if ctx.inputs.get("notes"):
        inspection.notes = ctx.inputs["notes"]
    inspection.completed_at = ctx.now
    ctx.details["score"] = score


def _cancel_inspection(inspection: models.Inspection, ctx: TransitionContext) -> None:
    inspection.cancellation_reason = ctx.require_text("reason")
    inspection.cancelled_by = ctx.actor.id
    ctx.details["reason"] = inspection.cancellation_reason


INSPECTION_MACHINE = _machine(
    "inspection",
    Transition("start", frozenset({"scheduled"}), "in_progress", _start_inspection, "inspection_started"),
    Transition(
        "complete",
        frozenset({"in_progress"}),
        "completed",
        _complete_inspection,
        "inspection_completed",
        recompute=True,
    ),
    Transition(
        "cancel", frozenset({"scheduled", "in_progress"}), "cancelled", _cancel_inspection, "inspection_cancelled"
    ),
)


@dataclass
class TransitionOutcome:
    entity: Any
    events: list[LifecycleEvent] = field(default_factory=list)
    compliance: scoring.ComplianceResult | None = None


def _shop_of(entity: Any) -> models.Shop:
    return entity if isinstance(entity, models.Shop) else entity.shop


def _event_details(entity: Any, shop: models.Shop) -> dict[str, Any]:
    details: dict[str, Any] = {"shop_name": shop.name}
    if isinstance(entity, models.Document):
        details.update(document_type=entity.document_type, expiry_date=entity.expiry_date)
    elif isinstance(entity, models.Inspection):
        details.update(inspection_type=entity.inspection_type, scheduled_date=entity.scheduled_date.date())
    return details


def compliance_events(
    shop: models.Shop, outcome: scoring.RecomputeOutcome, actor_id: UUID | None
) -> list[LifecycleEvent]:
    if not outcome.status_changed or outcome.previous_status == "pending":
        return []
    return [
        LifecycleEvent(
            entity="shop",
            entity_id=shop.id,
            shop_id=shop.id,
            action="compliance_changed",
            from_status=outcome.previous_status,
            to_status=outcome.result.status,
            actor_id=actor_id,
            owner_id=shop.owner_id,
            notification_type="compliance_status_changed",
            details={
                "shop_name": shop.name,
                "compliance_status": outcome.result.status,
                "compliance_score": outcome.result.score,
            },
        )
    ]


def recompute_after_change(
    db: Session, shop: models.Shop, actor_id: UUID | None, *, today: date | None = None
) -> tuple[scoring.ComplianceResult | None, list[LifecycleEvent]]:
    """Recompute a tracked shop's score; failures are logged, not raised."""

    if shop.status not in SCORED_SHOP_STATUSES:
        return None, []
    shop_id = shop.id
    try:
        outcome = scoring.recompute(db, shop_id, today=today)
    except (errors.ConflictError, errors.TransientError, SQLAlchemyError):
        db.rollback()
        ops_logger.exception("compliance recompute failed for shop %s; handing it to the worker", shop_id)
        _schedule_recompute(shop_id)
        return None, []
    except errors.ShopwatchError:
        db.rollback()
        ops_logger.exception("compliance recompute failed for shop %s", shop_id)
        return None, []
    return outcome.result, compliance_events(shop, outcome, actor_id)


def _schedule_recompute(shop_id: UUID) -> None:
    from ..tasks import enqueue_recompute

    try:
        enqueue_recompute(shop_id)
    except Exception:
        ops_logger.exception("could not schedule compliance recompute for shop %s", shop_id)


def compute_compliance(
    db: Session, shop_id: UUID, actor: policy.Principal, *, today: date | None = None
) -> tuple[scoring.ComplianceResult, list[LifecycleEvent]]:
    """On-demand recompute for the shop's owner or an official, whatever the shop status."""

    shop = db.get(models.Shop, shop_id)
    if shop is None:
        raise errors.NotFoundError("Shop not found")
    try:
        policy.require(actor, "compliance.compute", policy.describe(shop), policy.RoleDirectory(db))
        outcome = scoring.recompute(db, shop.id, today=today)
    except errors.ShopwatchError as exc:
        audit.record(db, actor.id, "compliance.compute", "shop", shop_id, exc.code, {"error": str(exc)})
        raise
    audit.record(
        db,
        actor.id,
        "compliance.compute",
        "shop",
        shop_id,
        details={"score": outcome.result.score, "status": outcome.result.status},
    )
    return outcome.result, compliance_events(shop, outcome, actor.id)


def _apply(
    db: Session,
    machine: StateMachine,
    entity: Any,
    action: str,
    actor: policy.Principal,
    inputs: dict[str, Any],
    today: date | None,
) -> TransitionOutcome:
    shop = _shop_of(entity)
    policy.require(actor, f"{machine.entity}.{action}", policy.describe(entity), policy.RoleDirectory(db))
    transition = machine.transition_for(action, entity.status)

    now = _utcnow()
    ctx = TransitionContext(actor=actor, inputs=inputs, now=now, today=today or now.date())
    previous = entity.status
    if transition.apply is not None:
        transition.apply(entity, ctx)
    entity.status = transition.target
    _touch(entity, ctx)
    if shop is not entity:
        _touch(shop, ctx)
    try:
        db.commit()
    except StaleDataError as exc:
        raise errors.ConflictError(f"{machine.entity} was modified concurrently; retry") from exc
    db.refresh(entity)
    logger.info("%s %s: %s -> %s", machine.entity, entity.id, previous, entity.status)

    events = [
        LifecycleEvent(
            entity=machine.entity,
            entity_id=entity.id,
            shop_id=shop.id,
            action=action,
            from_status=previous,
            to_status=entity.status,
            actor_id=actor.id,
            owner_id=shop.owner_id,
            inspector_id=getattr(entity, "inspector_id", None),
            notification_type=transition.notification,
            details={**_event_details(entity, shop), **ctx.details},
        )
    ]
    compliance = None
    if transition.recompute:
        compliance, extra = recompute_after_change(db, shop, actor.id, today=today)
        events.extend(extra)
    return TransitionOutcome(entity=entity, events=events, compliance=compliance)


def _transition(
    db: Session,
    machine: StateMachine,
    model: type,
    entity_id: UUID,
    action: str,
    actor: policy.Principal,
    inputs: dict[str, Any],
    today: date | None = None,
) -> TransitionOutcome:
    entity = db.get(model, entity_id)
    if entity is None:
        audit.record(db, actor.id, f"{machine.entity}.{action}", machine.entity, entity_id, "not_found")
        raise errors.NotFoundError(f"{machine.entity.capitalize()} not found")
    shop_id = _shop_of(entity).id
    try:
        with locks.shop_lock(shop_id):
            db.refresh(entity)
            outcome = _apply(db, machine, entity, action, actor, inputs, today)
    except errors.ShopwatchError as exc:
        db.rollback()
        audit.record(
            db,
            actor.id,
            f"{machine.entity}.{action}",
            machine.entity,
            entity_id,
            exc.code,
            {"error": str(exc)},
        )
        raise
    audit.record(
        db,
        actor.id,
        f"{machine.entity}.{action}",
        machine.entity,
        entity_id,
        "success",
        {"from": outcome.events[0].from_status, "to": outcome.events[0].to_status},
    )
    return outcome


def transition_shop(
    db: Session, shop_id: UUID, action: str, actor: policy.Principal, **inputs: Any
) -> TransitionOutcome:
    return _transition(db, SHOP_MACHINE, models.Shop, shop_id, action, actor, inputs)


def transition_document(
    db: Session,
    document_id: UUID,
    action: str,
    actor: policy.Principal,
    *,
    today: date | None = None,
    **inputs: Any,
) -> TransitionOutcome:
    return _transition(db, DOCUMENT_MACHINE, models.Document, document_id, action, actor, inputs, today)


def transition_inspection(
    db: Session, inspection_id: UUID, action: str, actor: policy.Principal, **inputs: Any
) -> TransitionOutcome:
    return _transition(db, INSPECTION_MACHINE, models.Inspection, inspection_id, action, actor, inputs)


def expire_documents(db: Session, today: date | None = None) -> list[LifecycleEvent]:
    """Move every lapsed pending or approved document to expired."""

    today = today or date.today()
    due = (
        db.query(models.Document.id)
        .filter(
            models.Document.expiry_date.isnot(None),
            models.Document.expiry_date < today,
            models.Document.status.in_(("pending", "approved")),
        )
        .all()
    )
    events: list[LifecycleEvent] = []
    for (document_id,) in due:
        try:
            outcome = transition_document(db, document_id, "expire", policy.SERVICE, today=today)
        except errors.ShopwatchError as exc:
            # raced with a review or another sweep
            logger.warning("skipping expiry of document %s: %s", document_id, exc)
            continue
        events.extend(outcome.events)
    logger.info("expired %d documents", len(due))
    return events


def warn_expiring_documents(
    db: Session, today: date | None = None, lead_days: int = EXPIRY_WARNING_DAYS
) -> list[LifecycleEvent]:
    """Emit one document_expiring event per document inside the lead window."""

    today = today or date.today()
    horizon = today + timedelta(days=lead_days)
    candidates = (
        db.query(models.Document)
        .filter(
            models.Document.expiry_date.isnot(None),
            models.Document.expiry_date >= today,
            models.Document.expiry_date <= horizon,
            models.Document.status.in_(("pending", "approved")),
            models.Document.expiry_warning_sent_at.is_(None),
        )
        .all()
    )
    roles = policy.RoleDirectory(db)
    events: list[LifecycleEvent] = []
    for document in candidates:
        policy.require(policy.SERVICE, "document.warn_expiry", policy.describe(document), roles)
        shop = document.shop
        with locks.shop_lock(shop.id):
            db.refresh(document)
            if document.expiry_warning_sent_at is not None:
                continue
            document.expiry_warning_sent_at = _utcnow()
            db.commit()
        events.append(
            LifecycleEvent(
                entity="document",
                entity_id=document.id,
                shop_id=shop.id,
                action="expiry_warning",
                from_status=document.status,
                to_status=document.status,
                actor_id=policy.SERVICE_ACTOR_ID,
                owner_id=shop.owner_id,
                notification_type="document_expiring",
                details=_event_details(document, shop),
            )
        )
        audit.record(db, policy.SERVICE_ACTOR_ID, "document.warn_expiry", "document", document.id)
    return events
