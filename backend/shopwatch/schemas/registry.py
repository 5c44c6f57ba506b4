"""Pydantic schemas for shop, document, inspection, review and favorite APIs."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["customer", "shop_owner", "government"]
DocumentType = Literal[
    "business_license",
    "tax_certificate",
    "health_permit",
    "fire_safety_certificate",
    "trade_license",
    "owner_identity",
    "other",
]
InspectionType = Literal["routine", "complaint", "follow_up", "renewal"]
Severity = Literal["low", "medium", "high"]


class ActorOut(BaseModel):
    id: UUID
    role: Role
    email: str | None = None
    phone_number: str | None = None
    full_name: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ActorUpdate(BaseModel):
    email: str | None = None
    phone_number: str | None = None
    full_name: str | None = None


class ShopCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    category: str | None = None
    address: str | None = None
    description: str | None = None


class ShopUpdate(BaseModel):
    """Owner-editable shop details; status fields are not accepted here."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    category: str | None = None
    address: str | None = None
    description: str | None = None


class ShopOut(BaseModel):
    id: UUID
    owner_id: UUID
    name: str
    category: str | None = None
    address: str | None = None
    description: str | None = None
    status: str
    compliance_score: int
    compliance_status: str
    rejection_reason: str | None = None
    suspension_reason: str | None = None
    suspended_until: datetime | None = None
    approved_at: datetime | None = None
    last_compliance_check: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ShopReject(BaseModel):
    reason: str = Field(min_length=1)


class ShopSuspend(BaseModel):
    reason: str = Field(min_length=1)
    duration_days: int = Field(ge=1, le=3650)


class WarningCreate(BaseModel):
    message: str = Field(min_length=1)
    severity: Severity = "medium"


class ComplianceWarningOut(BaseModel):
    id: UUID
    shop_id: UUID
    issued_by: UUID
    severity: str
    message: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DocumentCreate(BaseModel):
    shop_id: UUID
    document_type: DocumentType
    file_url: str | None = None
    expiry_date: date | None = None


class DocumentReject(BaseModel):
    reason: str | None = None


class DocumentOut(BaseModel):
    id: UUID
    shop_id: UUID
    document_type: str
    file_url: str | None = None
    status: str
    expiry_date: date | None = None
    rejection_reason: str | None = None
    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InspectionCreate(BaseModel):
    shop_id: UUID
    inspection_type: InspectionType = "routine"
    scheduled_date: datetime
    inspector_id: UUID | None = None
    notes: str | None = None


class InspectionComplete(BaseModel):
    score: int
    issues: list[str] = Field(default_factory=list)
    notes: str | None = None


class InspectionCancel(BaseModel):
    reason: str = Field(min_length=1)


class InspectionOut(BaseModel):
    id: UUID
    shop_id: UUID
    inspector_id: UUID
    inspection_type: str
    status: str
    scheduled_date: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    score: int | None = None
    issues: list[str] = Field(default_factory=list)
    notes: str | None = None
    cancellation_reason: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReviewCreate(BaseModel):
    shop_id: UUID
    rating: int
    comment: str | None = None


class ReviewUpdate(BaseModel):
    rating: int | None = None
    comment: str | None = None


class ReviewOut(BaseModel):
    id: UUID
    shop_id: UUID
    user_id: UUID
    rating: int
    comment: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FavoriteCreate(BaseModel):
    shop_id: UUID


class FavoriteOut(BaseModel):
    id: UUID
    shop_id: UUID
    user_id: UUID
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
