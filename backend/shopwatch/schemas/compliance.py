"""Pydantic schemas for compliance scoring and the compute-compliance function."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ComplianceFactorOut(BaseModel):
    score: float
    weight: float


class ComplianceResultOut(BaseModel):
    score: int
    status: str
    factors: dict[str, ComplianceFactorOut]
    recommendations: list[str] = Field(default_factory=list)


class ComputeComplianceRequest(BaseModel):
    shop_id: UUID = Field(alias="shopId")

    model_config = ConfigDict(populate_by_name=True)


class ComplianceHistoryOut(BaseModel):
    id: UUID
    shop_id: UUID | None = None
    sequence: int
    score: int
    status: str
    factors: dict = Field(default_factory=dict)
    recommendations: list[str] = Field(default_factory=list)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
