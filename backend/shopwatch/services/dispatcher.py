"""Channel-parallel notification delivery with per-channel logs."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Sequence
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import errors, models, notify, policy, pubsub, schemas
from ..database import SessionLocal
from .events import LifecycleEvent, NotificationRequest, notifications_for

# purpose: fan notification requests out to email, sms and in-app delivery
# status: active
# inputs: NotificationRequest (recipient, type, optional text, channels)
# outputs: DispatchResult with a sent/failed outcome per channel; NotificationLog rows

logger = logging.getLogger(__name__)
ops_logger = logging.getLogger("shopwatch.ops")

CHANNELS = models.CHANNELS
MAX_ATTEMPTS = int(os.getenv("NOTIFICATION_MAX_ATTEMPTS", "3"))
BACKOFF_SECONDS = float(os.getenv("NOTIFICATION_BACKOFF_SECONDS", "0.5"))
TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "10"))

DEFAULT_TEMPLATES: dict[str, tuple[str, str, tuple[str, ...]]] = {
    "shop_approved": (
        "Shop approved",
        "{shop_name} has been approved and is now publicly listed.",
        ("in_app", "email"),
    ),
    "shop_rejected": (
        "Shop registration rejected",
        "{shop_name} was not approved: {reason}",
        ("in_app", "email"),
    ),
    "shop_suspended": (
        "Shop suspended",
        "{shop_name} is suspended until {suspended_until}: {reason}",
        ("in_app", "email", "sms"),
    ),
    "shop_reinstated": (
        "Shop reinstated",
        "{shop_name} has been reinstated.",
        ("in_app", "email"),
    ),
    "document_approved": (
        "Document approved",
        "Your {document_type} for {shop_name} was approved.",
        ("in_app",),
    ),
    "document_rejected": (
        "Document rejected",
        "Your {document_type} for {shop_name} was rejected: {reason}",
        ("in_app", "email"),
    ),
    "document_expiring": (
        "Document expiring soon",
        "Your {document_type} for {shop_name} expires on {expiry_date}.",
        ("in_app", "email"),
    ),
    "document_expired": (
        "Document expired",
        "Your {document_type} for {shop_name} expired on {expiry_date}.",
        ("in_app", "email"),
    ),
    "inspection_scheduled": (
        "Inspection scheduled",
        "A {inspection_type} inspection of {shop_name} is scheduled for {scheduled_date}.",
        ("in_app", "email"),
    ),
    "inspection_started": (
        "Inspection started",
        "The {inspection_type} inspection of {shop_name} is under way.",
        ("in_app",),
    ),
    "inspection_completed": (
        "Inspection completed",
        "{shop_name} scored {score} in its {inspection_type} inspection.",
        ("in_app", "email"),
    ),
    "inspection_cancelled": (
        "Inspection cancelled",
        "The {inspection_type} inspection of {shop_name} was cancelled: {reason}",
        ("in_app", "email"),
    ),
    "compliance_warning": (
        "Compliance warning",
        "{shop_name}: {message}",
        ("in_app", "email", "sms"),
    ),
    "compliance_status_changed": (
        "Compliance status changed",
        "{shop_name} is now {compliance_status} with a score of {compliance_score}.",
        ("in_app", "email"),
    ),
    "new_review": (
        "New review",
        "{shop_name} received a {rating}-star review.",
        ("in_app",),
    ),
}


class RecipientUnreachable(RuntimeError):
    """Raised when the recipient has no address for a channel."""


class _TemplateContext(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


@dataclass(frozen=True)
class ChannelOutcome:
    status: str  # sent, failed
    reason: str | None = None
    attempts: int = 0

    @property
    def sent(self) -> bool:
        return self.status == "sent"


@dataclass
class DispatchResult:
    notification_id: UUID
    channels: dict[str, ChannelOutcome] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return any(outcome.sent for outcome in self.channels.values())

    def channel_results(self) -> dict[str, schemas.ChannelResultOut]:
        return {
            channel: schemas.ChannelResultOut(sent=outcome.sent, error=outcome.reason)
            for channel, outcome in self.channels.items()
        }


def render(
    db: Session, notification_type: str, context: dict
) -> tuple[str, str, tuple[str, ...]]:
    """Resolve title, message and default channels for a notification type."""

    template = (
        db.query(models.NotificationTemplate)
        .filter(models.NotificationTemplate.type == notification_type)
        .one_or_none()
    )
    if template is not None:
        title, message = template.title_template, template.message_template
        channels = tuple(template.default_channels or ("in_app",))
    elif notification_type in DEFAULT_TEMPLATES:
        title, message, channels = DEFAULT_TEMPLATES[notification_type]
    else:
        title = notification_type.replace("_", " ").capitalize()
        message, channels = title, ("in_app",)
    values = _TemplateContext({key: value for key, value in context.items() if value is not None})
    return title.format_map(values), message.format_map(values), channels


def channel_enabled(db: Session, user_id: UUID, notification_type: str, channel: str) -> bool:
    pref = (
        db.query(models.NotificationPreference)
        .filter_by(user_id=user_id, pref_type=notification_type, channel=channel)
        .first()
    )
    return pref is None or bool(pref.enabled)


Sender = Callable[[models.Notification, models.Actor], Awaitable[None]]


class NotificationDispatcher:
    """Deliver one notification over several channels.

    Channels run concurrently and fail independently. A channel whose log
    row already says ``sent`` is never delivered again.
    """

    def __init__(
        self,
        db: Session,
        *,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_seconds: float = BACKOFF_SECONDS,
        timeout_seconds: float = TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.db = db
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep
        self._roles = policy.RoleDirectory(db)

    async def dispatch(self, request: NotificationRequest) -> DispatchResult:
        notification = self._ensure_notification(request)
        recipient = self.db.get(models.Actor, notification.user_id)
        if recipient is None:
            raise errors.NotFoundError("Recipient not found")

        existing = {log.channel: log for log in notification.logs}
        result = DispatchResult(notification_id=notification.id)
        pending: list[str] = []
        for channel in notification.channels or []:
            log = existing.get(channel)
            if log is not None and log.status == "sent":
                result.channels[channel] = ChannelOutcome("sent", attempts=0)
            elif not channel_enabled(self.db, recipient.id, notification.type, channel):
                result.channels[channel] = ChannelOutcome("failed", "disabled by preference")
            else:
                pending.append(channel)

        outcomes = await asyncio.gather(
            *(self._deliver_with_retry(channel, notification, recipient) for channel in pending)
        )
        for channel, outcome in zip(pending, outcomes):
            result.channels[channel] = outcome
        self._write_logs(notification, existing, result)
        return result

    def _ensure_notification(self, request: NotificationRequest) -> models.Notification:
        if request.notification_id is not None:
            notification = self.db.get(models.Notification, request.notification_id)
            if notification is None:
                raise errors.NotFoundError("Notification not found")
            return notification

        policy.require(policy.SERVICE, "notification.create", policy.Resource("notification"), self._roles)
        if self.db.get(models.Actor, request.recipient_id) is None:
            raise errors.NotFoundError("Recipient not found")
        context = dict(request.payload)
        if request.shop_id is not None and "shop_name" not in context:
            shop = self.db.get(models.Shop, request.shop_id)
            context["shop_name"] = shop.name if shop else "your shop"
        title, message, default_channels = render(self.db, request.type, context)
        channels = [channel for channel in (request.channels or default_channels) if channel in CHANNELS]
        if not channels:
            raise errors.ValidationError("at least one delivery channel is required")
        notification = models.Notification(
            user_id=request.recipient_id,
            shop_id=request.shop_id,
            type=request.type,
            title=request.title or title,
            message=request.message or message,
            channels=list(dict.fromkeys(channels)),
            payload=context,
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)
        request.notification_id = notification.id
        return notification

    async def _deliver_with_retry(
        self, channel: str, notification: models.Notification, recipient: models.Actor
    ) -> ChannelOutcome:
        sender = self._sender(channel)
        attempt = 0
        reason = None
        while attempt < self.max_attempts:
            attempt += 1
            try:
                await asyncio.wait_for(sender(notification, recipient), timeout=self.timeout_seconds)
                return ChannelOutcome("sent", attempts=attempt)
            except (RecipientUnreachable, notify.TransportNotConfigured) as exc:
                return ChannelOutcome("failed", str(exc), attempts=attempt)
            except asyncio.TimeoutError:
                reason = f"{channel} delivery timed out"
            except errors.TransientError as exc:
                reason = str(exc)
            except Exception as exc:
                logger.exception("unexpected %s delivery failure for %s", channel, notification.id)
                reason = f"{type(exc).__name__}: {exc}"
            if attempt < self.max_attempts:
                await self._sleep(self.backoff_seconds * (2 ** (attempt - 1)))
        ops_logger.warning(
            "notification %s %s delivery failed after %d attempts: %s",
            notification.id,
            channel,
            attempt,
            reason,
        )
        return ChannelOutcome("failed", reason, attempts=attempt)

    def _sender(self, channel: str) -> Sender:
        return {
            "email": self._send_email,
            "sms": self._send_sms,
            "in_app": self._send_in_app,
        }[channel]

    async def _send_email(self, notification: models.Notification, recipient: models.Actor) -> None:
        if not recipient.email:
            raise RecipientUnreachable("recipient has no email address")
        await asyncio.to_thread(notify.send_email, recipient.email, notification.title, notification.message)

    async def _send_sms(self, notification: models.Notification, recipient: models.Actor) -> None:
        if not recipient.phone_number:
            raise RecipientUnreachable("recipient has no phone number")
        await asyncio.to_thread(notify.send_sms, recipient.phone_number, notification.message)

    async def _send_in_app(self, notification: models.Notification, recipient: models.Actor) -> None:
        payload = jsonable_encoder(schemas.NotificationOut.model_validate(notification))
        await pubsub.publish_notification_event(
            recipient.id, {"type": "notification_created", "data": payload}
        )

    def _write_logs(
        self,
        notification: models.Notification,
        existing: dict[str, models.NotificationLog],
        result: DispatchResult,
    ) -> None:
        now = datetime.now(timezone.utc)
        for channel, outcome in result.channels.items():
            log = existing.get(channel)
            if log is not None and log.status == "sent":
                continue
            if log is None:
                log = models.NotificationLog(
                    notification_id=notification.id,
                    channel=channel,
                    attempts=0,
                    created_at=now,
                )
                self.db.add(log)
            if outcome.reason == "disabled by preference":
                log.status = "skipped"
            else:
                log.status = outcome.status
            log.attempts = (log.attempts or 0) + outcome.attempts
            log.error = outcome.reason
            log.updated_at = now
            if outcome.sent:
                log.sent_at = now
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            ops_logger.exception("could not record delivery logs for notification %s", notification.id)


async def dispatch_requests(
    db: Session, requests: Iterable[NotificationRequest]
) -> list[DispatchResult]:
    dispatcher = NotificationDispatcher(db)
    results = []
    for request in requests:
        try:
            results.append(await dispatcher.dispatch(request))
        except errors.ShopwatchError:
            db.rollback()
            ops_logger.exception("dropping %s notification for %s", request.type, request.recipient_id)
    return results


async def deliver_lifecycle_events(
    events: Sequence[LifecycleEvent],
    session_factory: Callable[[], Session] = SessionLocal,
) -> None:
    """Run the post-commit side effects of a command.

    Scheduled after the response; nothing here can fail the command.
    """

    if not events:
        return
    db = session_factory()
    try:
        for event in events:
            try:
                await pubsub.publish_shop_event(event.shop_id, event.owner_id, event.feed_payload())
            except Exception:  # the change feed is best-effort
                ops_logger.exception("change feed publish failed for %s", event.name)
            await dispatch_requests(db, notifications_for(event))
    finally:
        db.close()


async def retry_failed(db: Session, *, limit: int = 100) -> list[DispatchResult]:
    """Re-dispatch notifications that still have failed channels."""

    rows = (
        db.query(models.NotificationLog.notification_id)
        .filter(
            models.NotificationLog.status == "failed",
            models.NotificationLog.attempts < MAX_ATTEMPTS * 3,
        )
        .distinct()
        .limit(limit)
        .all()
    )
    requests = []
    for (notification_id,) in rows:
        notification = db.get(models.Notification, notification_id)
        if notification is None:
            continue
        requests.append(
            NotificationRequest(
                recipient_id=notification.user_id,
                type=notification.type,
                notification_id=notification.id,
            )
        )
    return await dispatch_requests(db, requests)
