"""Weighted compliance scoring for shops."""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .. import errors, locks, models, policy

# purpose: derive a shop's compliance score, band and recommendations from its records
# status: active
# inputs: documents, completed inspections, reviews and prior history for one shop
# outputs: ComplianceResult plus one appended ComplianceHistoryRecord per recompute

logger = logging.getLogger(__name__)

WEIGHTS: dict[str, float] = {
    "documents": 0.40,
    "inspections": 0.30,
    "reviews": 0.20,
    "history": 0.10,
}

REQUIRED_DOCUMENT_TYPES: tuple[str, ...] = tuple(
    value.strip()
    for value in os.getenv("REQUIRED_DOCUMENT_TYPES", "business_license,tax_certificate").split(",")
    if value.strip()
)

RECENT_INSPECTIONS = 3
HISTORY_ZERO_AT_DROP = 50

COMPLIANT_THRESHOLD = 70
WARNING_THRESHOLD = 50

RECOMMENDATIONS: dict[str, tuple[str, ...]] = {
    "documents": (
        "Upload every required document and renew any that are rejected or expired.",
        "Check document expiry dates and submit renewals before they lapse.",
    ),
    "inspections": (
        "Resolve the issues raised in recent inspections.",
        "Request a follow-up inspection once corrective work is complete.",
    ),
    "reviews": (
        "Respond to customer reviews and address recurring complaints.",
    ),
    "history": (
        "Compliance has declined since the previous check; review recent document and inspection changes.",
    ),
}


@dataclass(frozen=True)
class DocumentSnapshot:
    document_type: str
    status: str
    created_at: datetime | None = None


@dataclass(frozen=True)
class ScoringInputs:
    """Everything the score depends on, already read from storage."""

    documents: tuple[DocumentSnapshot, ...] = ()
    # completed inspection scores, most recent first
    inspection_scores: tuple[int, ...] = ()
    ratings: tuple[int, ...] = ()
    # base scores of earlier history records, most recent first
    previous_bases: tuple[int, ...] = ()
    required_types: tuple[str, ...] = REQUIRED_DOCUMENT_TYPES


@dataclass(frozen=True)
class ComplianceResult:
    score: int
    status: str
    factors: dict[str, float]
    base_score: int
    recommendations: tuple[str, ...] = field(default_factory=tuple)

    def factor_breakdown(self) -> dict[str, dict[str, float]]:
        return {
            name: {"score": self.factors[name], "weight": weight}
            for name, weight in WEIGHTS.items()
        }


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def document_factor(documents: Iterable[DocumentSnapshot], required_types: Sequence[str]) -> float:
    """Share of required types whose latest document is approved and current.

    ``documents`` arrive in submission order, so the last one seen per type wins.
    """

    if not required_types:
        return 100.0
    latest: dict[str, DocumentSnapshot] = {}
    for doc in documents:
        latest[doc.document_type] = doc
    satisfied = sum(
        1
        for doc_type in required_types
        if doc_type in latest and latest[doc_type].status == "approved"
    )
    return clamp(100.0 * satisfied / len(required_types))


def inspection_factor(scores: Sequence[int]) -> float:
    recent = list(scores)[:RECENT_INSPECTIONS]
    if not recent:
        return 100.0
    return clamp(sum(recent) / len(recent))


def review_factor(ratings: Sequence[int]) -> float:
    if not ratings:
        return 100.0
    return clamp(sum(ratings) / len(ratings) * 20.0)


def base_score(documents: float, inspections: float, reviews: float) -> int:
    """Score with the history factor held at 100; the trend is measured on this."""

    return round_half_up(
        WEIGHTS["documents"] * documents
        + WEIGHTS["inspections"] * inspections
        + WEIGHTS["reviews"] * reviews
        + WEIGHTS["history"] * 100.0
    )


def history_factor(current_base: int, previous_bases: Sequence[int]) -> float:
    """Compare against the most recent earlier base that differs from this one.

    Re-running on unchanged inputs therefore keeps the same reference point.
    """

    reference = next((value for value in previous_bases if value != current_base), None)
    if reference is None or current_base >= reference:
        return 100.0
    drop = reference - current_base
    return clamp(100.0 - drop * (100.0 / HISTORY_ZERO_AT_DROP))


def status_for(score: int) -> str:
    if score >= COMPLIANT_THRESHOLD:
        return "compliant"
    if score >= WARNING_THRESHOLD:
        return "warning"
    return "non_compliant"


def recommendations_for(factors: dict[str, float]) -> tuple[str, ...]:
    lowest = min(WEIGHTS, key=lambda name: factors[name])
    if factors[lowest] >= 100.0:
        return ()
    return RECOMMENDATIONS[lowest]


def score_inputs(inputs: ScoringInputs) -> ComplianceResult:
    """Pure scoring function; identical inputs always give identical results."""

    documents = document_factor(inputs.documents, inputs.required_types)
    inspections = inspection_factor(inputs.inspection_scores)
    reviews = review_factor(inputs.ratings)
    base = base_score(documents, inspections, reviews)
    history = history_factor(base, inputs.previous_bases)
    raw = (
        WEIGHTS["documents"] * documents
        + WEIGHTS["inspections"] * inspections
        + WEIGHTS["reviews"] * reviews
        + WEIGHTS["history"] * history
    )
    score = int(clamp(round_half_up(raw)))
    factors = {
        "documents": round(documents, 2),
        "inspections": round(inspections, 2),
        "reviews": round(reviews, 2),
        "history": round(history, 2),
    }
    return ComplianceResult(
        score=score,
        status=status_for(score),
        factors=factors,
        base_score=base,
        recommendations=recommendations_for(factors),
    )


def load_inputs(
    db: Session,
    shop_id: UUID,
    *,
    today: date | None = None,
    required_types: Sequence[str] = REQUIRED_DOCUMENT_TYPES,
) -> ScoringInputs:
    """Read the scoring inputs for one shop."""

    documents = (
        db.query(models.Document)
        .filter(models.Document.shop_id == shop_id)
        .order_by(models.Document.created_at.asc())
        .all()
    )
    inspection_scores = (
        db.query(models.Inspection.score)
        .filter(
            models.Inspection.shop_id == shop_id,
            models.Inspection.status == "completed",
            models.Inspection.score.isnot(None),
        )
        .order_by(models.Inspection.completed_at.desc())
        .limit(RECENT_INSPECTIONS)
        .all()
    )
    ratings = (
        db.query(models.Review.rating)
        .filter(models.Review.shop_id == shop_id)
        .all()
    )
    inputs = ScoringInputs(
        documents=tuple(
            DocumentSnapshot(doc.document_type, doc.effective_status(today), doc.created_at)
            for doc in documents
        ),
        inspection_scores=tuple(row[0] for row in inspection_scores),
        ratings=tuple(row[0] for row in ratings),
        required_types=tuple(required_types),
    )
    current = base_score(
        document_factor(inputs.documents, inputs.required_types),
        inspection_factor(inputs.inspection_scores),
        review_factor(inputs.ratings),
    )
    # only the latest differing base matters, so fetch that single row
    reference = (
        db.query(models.ComplianceHistoryRecord.base_score)
        .filter(
            models.ComplianceHistoryRecord.shop_id == shop_id,
            models.ComplianceHistoryRecord.base_score.isnot(None),
            models.ComplianceHistoryRecord.base_score != current,
        )
        .order_by(models.ComplianceHistoryRecord.sequence.desc())
        .limit(1)
        .scalar()
    )
    if reference is None:
        return inputs
    return replace(inputs, previous_bases=(reference,))


@dataclass(frozen=True)
class RecomputeOutcome:
    result: ComplianceResult
    previous_status: str
    history_record_id: UUID

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.result.status


def recompute(
    db: Session,
    shop_id: UUID,
    *,
    actor: policy.Principal = policy.SERVICE,
    today: date | None = None,
    required_types: Sequence[str] = REQUIRED_DOCUMENT_TYPES,
) -> RecomputeOutcome:
    """Score the shop, persist the result and append one history record."""

    with locks.shop_lock(shop_id):
        shop = db.get(models.Shop, shop_id)
        if shop is None:
            raise errors.NotFoundError("Shop not found")
        policy.require(actor, "compliance.recompute", policy.describe(shop), policy.RoleDirectory(db))

        result = score_inputs(load_inputs(db, shop_id, today=today, required_types=required_types))
        previous_status = shop.compliance_status
        now = datetime.now(timezone.utc)
        last_sequence = (
            db.query(func.max(models.ComplianceHistoryRecord.sequence))
            .filter(models.ComplianceHistoryRecord.shop_id == shop_id)
            .scalar()
        )
        factors: dict = result.factor_breakdown()
        factors["base_score"] = result.base_score
        record = models.ComplianceHistoryRecord(
            shop_id=shop_id,
            sequence=(last_sequence or 0) + 1,
            score=result.score,
            base_score=result.base_score,
            status=result.status,
            factors=factors,
            recommendations=list(result.recommendations),
            created_at=now,
        )
        db.add(record)
        shop.compliance_score = result.score
        shop.compliance_status = result.status
        shop.last_compliance_check = now
        shop.updated_at = now
        try:
            db.commit()
        except (IntegrityError, StaleDataError) as exc:
            db.rollback()
            raise errors.ConflictError("concurrent compliance recompute; retry") from exc
        logger.info(
            "recomputed compliance for shop %s: %s (%s)", shop_id, result.score, result.status
        )
        return RecomputeOutcome(result=result, previous_status=previous_status, history_record_id=record.id)
