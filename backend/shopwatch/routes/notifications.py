from uuid import UUID
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_actor, get_optional_actor
from .. import errors, models, policy, pubsub, schemas


async def _publish_notification_event(user_id: UUID, event_type: str, payload: dict) -> None:
    """Push a read/delete change to the recipient's live feed."""
    await pubsub.publish_notification_event(user_id, {"type": event_type, "data": payload})


def _owned_notification(
    db: Session, notification_id: UUID, actor: policy.Principal, action: str
) -> models.Notification:
    notif = db.get(models.Notification, notification_id)
    if not notif:
        raise errors.NotFoundError("Notification not found")
    policy.require(actor, action, policy.describe(notif), policy.RoleDirectory(db))
    return notif


router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("/", response_model=list[schemas.NotificationOut])
async def list_notifications(
    is_read: Optional[bool] = Query(None, description="Filter by read status"),
    type: Optional[str] = Query(None, description="Filter by notification type"),
    date_from: Optional[str] = Query(None, description="Filter from date (YYYY-MM-DD)"),
    date_to: Optional[str] = Query(None, description="Filter to date (YYYY-MM-DD)"),
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    query = db.query(models.Notification).filter(
        models.Notification.user_id == actor.id,
        models.Notification.dismissed_at.is_(None),
    )

    if is_read is not None:
        query = query.filter(models.Notification.is_read == is_read)

    if type:
        query = query.filter(models.Notification.type == type)

    if date_from:
        try:
            from_date = datetime.strptime(date_from, "%Y-%m-%d")
            query = query.filter(models.Notification.created_at >= from_date)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid date_from format")

    if date_to:
        try:
            to_date = datetime.strptime(date_to, "%Y-%m-%d") + timedelta(days=1)
            query = query.filter(models.Notification.created_at < to_date)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid date_to format")

    return query.order_by(models.Notification.created_at.desc()).all()


@router.get("/preferences", response_model=list[schemas.NotificationPreferenceOut])
async def list_preferences(
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    return db.query(models.NotificationPreference).filter_by(user_id=actor.id).all()


@router.put(
    "/preferences/{pref_type}/{channel}",
    response_model=schemas.NotificationPreferenceOut,
)
async def set_preference(
    pref_type: str,
    channel: str,
    pref: schemas.NotificationPreferenceUpdate,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    if channel not in models.CHANNELS:
        raise errors.ValidationError(f"unknown channel '{channel}'")
    obj = (
        db.query(models.NotificationPreference)
        .filter_by(user_id=actor.id, pref_type=pref_type, channel=channel)
        .first()
    )
    if obj:
        obj.enabled = pref.enabled
    else:
        obj = models.NotificationPreference(
            user_id=actor.id,
            pref_type=pref_type,
            channel=channel,
            enabled=pref.enabled,
        )
        db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


@router.get("/templates", response_model=list[schemas.NotificationTemplateOut])
async def list_templates(
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_optional_actor),
):
    policy.require(actor, "template.read", policy.Resource("template"), policy.RoleDirectory(db))
    return db.query(models.NotificationTemplate).order_by(models.NotificationTemplate.type).all()


@router.post("/mark-all-read")
async def mark_all_read(
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    """Mark all unread notifications as read"""
    updated = (
        db.query(models.Notification)
        .filter(
            models.Notification.user_id == actor.id,
            models.Notification.is_read.is_(False),
        )
        .all()
    )
    for notif in updated:
        notif.is_read = True
    db.commit()
    for notif in updated:
        payload = jsonable_encoder(schemas.NotificationOut.model_validate(notif))
        await _publish_notification_event(actor.id, "notification_read", payload)
    return {"message": "All notifications marked as read", "count": len(updated)}


@router.post("/{notification_id}/read", response_model=schemas.NotificationOut)
async def mark_read(
    notification_id: UUID,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    notif = _owned_notification(db, notification_id, actor, "notification.update")
    notif.is_read = True
    db.commit()
    db.refresh(notif)
    payload = jsonable_encoder(schemas.NotificationOut.model_validate(notif))
    await _publish_notification_event(actor.id, "notification_read", payload)
    return notif


@router.get("/{notification_id}/logs", response_model=list[schemas.NotificationLogOut])
async def delivery_logs(
    notification_id: UUID,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    notif = _owned_notification(db, notification_id, actor, "notification.read")
    return notif.logs


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: UUID,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    """Hide a notification from the inbox; delivery logs are kept."""
    notif = _owned_notification(db, notification_id, actor, "notification.delete")
    payload = jsonable_encoder(schemas.NotificationOut.model_validate(notif))
    notif.is_read = True
    notif.dismissed_at = datetime.now(timezone.utc)
    db.commit()
    await _publish_notification_event(actor.id, "notification_deleted", payload)
    return {"message": "Notification deleted"}
