"""Lifecycle events and the notifications they trigger."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any
from uuid import UUID

# purpose: describe committed state changes and map them onto notification requests
# status: active


@dataclass(frozen=True)
class LifecycleEvent:
    """One committed change, consumed by the dispatcher and the change feed."""

    entity: str
    entity_id: UUID
    shop_id: UUID
    action: str
    from_status: str | None
    to_status: str | None
    actor_id: UUID | None
    owner_id: UUID
    inspector_id: UUID | None = None
    notification_type: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def name(self) -> str:
        return f"{self.entity}_{self.action}"

    def feed_payload(self) -> dict[str, Any]:
        return {
            "type": self.name,
            "entity": self.entity,
            "id": str(self.entity_id),
            "shop_id": str(self.shop_id),
            "from_status": self.from_status,
            "to_status": self.to_status,
            "timestamp": self.occurred_at.isoformat(),
        }


@dataclass
class NotificationRequest:
    recipient_id: UUID
    type: str
    title: str | None = None
    message: str | None = None
    shop_id: UUID | None = None
    channels: tuple[str, ...] | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    notification_id: UUID | None = None


def _owner(event: LifecycleEvent) -> list[UUID]:
    return [event.owner_id]


def _counterparty(event: LifecycleEvent) -> list[UUID]:
    """Whoever did not perform the cancellation: owner or inspector."""

    if event.actor_id == event.owner_id and event.inspector_id:
        return [event.inspector_id]
    return [event.owner_id]


# notification type -> recipients of that notification
RECIPIENTS = {
    "shop_approved": _owner,
    "shop_rejected": _owner,
    "shop_suspended": _owner,
    "shop_reinstated": _owner,
    "document_approved": _owner,
    "document_rejected": _owner,
    "document_expiring": _owner,
    "document_expired": _owner,
    "inspection_scheduled": _owner,
    "inspection_started": _owner,
    "inspection_completed": _owner,
    "inspection_cancelled": _counterparty,
    "compliance_warning": _owner,
    "compliance_status_changed": _owner,
    "new_review": _owner,
}


def _plain(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def notifications_for(event: LifecycleEvent) -> list[NotificationRequest]:
    if event.notification_type is None:
        return []
    selector = RECIPIENTS.get(event.notification_type, _owner)
    payload = {
        "event": event.name,
        "entity": event.entity,
        "entity_id": str(event.entity_id),
        **{key: _plain(value) for key, value in event.details.items() if value is not None},
    }
    return [
        NotificationRequest(
            recipient_id=recipient,
            type=event.notification_type,
            shop_id=event.shop_id,
            payload=payload,
        )
        for recipient in selector(event)
    ]
