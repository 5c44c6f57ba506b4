"""Pydantic schemas for notifications, delivery logs and the send-notification function."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

Channel = Literal["email", "sms", "in_app"]


class NotificationOut(BaseModel):
    id: UUID
    user_id: UUID
    shop_id: UUID | None = None
    type: str
    title: str
    message: str
    channels: list[str] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)
    is_read: bool
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class NotificationLogOut(BaseModel):
    id: UUID
    notification_id: UUID
    channel: str
    status: str
    attempts: int
    error: str | None = None
    sent_at: datetime | None = None
    model_config = ConfigDict(from_attributes=True)


class NotificationPreferenceUpdate(BaseModel):
    enabled: bool


class NotificationPreferenceOut(BaseModel):
    id: UUID
    user_id: UUID
    pref_type: str
    channel: str
    enabled: bool
    model_config = ConfigDict(from_attributes=True)


class NotificationTemplateOut(BaseModel):
    type: str
    title_template: str
    message_template: str
    default_channels: list[str] = Field(default_factory=list)
    model_config = ConfigDict(from_attributes=True)


class SendNotificationRequest(BaseModel):
    user_id: UUID = Field(alias="userId")
    type: str
    title: str
    message: str
    shop_id: UUID | None = Field(default=None, alias="shopId")
    channels: list[Channel] = Field(default_factory=lambda: ["in_app"], min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class ChannelResultOut(BaseModel):
    sent: bool
    error: str | None = None


class SendNotificationResponse(BaseModel):
    success: bool
    notification_id: UUID = Field(alias="notificationId")
    channel_results: dict[str, ChannelResultOut] = Field(alias="channelResults")

    model_config = ConfigDict(populate_by_name=True)


class AuditLogOut(BaseModel):
    id: UUID
    actor_id: UUID | None = None
    action: str
    target_type: str | None = None
    target_id: UUID | None = None
    outcome: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AuditReportItem(BaseModel):
    action: str
    outcome: str
    count: int
