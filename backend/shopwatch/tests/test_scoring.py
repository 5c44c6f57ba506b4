import uuid
from datetime import date, datetime, timedelta, timezone

import pytest

from shopwatch import errors, models
from shopwatch.services import scoring
from shopwatch.services.scoring import DocumentSnapshot, ScoringInputs

from .conftest import make_actor

REQUIRED = ("business_license", "tax_certificate")


def approved(doc_type):
    return DocumentSnapshot(doc_type, "approved")


def test_new_shop_scores_sixty_warning():
    result = scoring.score_inputs(ScoringInputs(required_types=REQUIRED))
    assert result.factors == {"documents": 0.0, "inspections": 100.0, "reviews": 100.0, "history": 100.0}
    assert result.score == 60
    assert result.status == "warning"


def test_fully_documented_shop_with_mixed_reviews():
    inputs = ScoringInputs(
        documents=(approved("business_license"), approved("tax_certificate")),
        inspection_scores=(90,),
        ratings=(5, 3),
        required_types=REQUIRED,
    )
    result = scoring.score_inputs(inputs)
    assert result.factors["documents"] == 100.0
    assert result.factors["inspections"] == 90.0
    assert result.factors["reviews"] == 80.0
    assert result.factors["history"] == 100.0
    assert result.score == 93
    assert result.status == "compliant"


def test_status_bands():
    assert scoring.status_for(100) == "compliant"
    assert scoring.status_for(70) == "compliant"
    assert scoring.status_for(69) == "warning"
    assert scoring.status_for(50) == "warning"
    assert scoring.status_for(49) == "non_compliant"
    assert scoring.status_for(0) == "non_compliant"


def test_latest_document_per_type_decides():
    docs = (approved("business_license"), DocumentSnapshot("business_license", "rejected"))
    assert scoring.document_factor(docs, REQUIRED) == 0.0
    docs = (DocumentSnapshot("business_license", "rejected"), approved("business_license"))
    assert scoring.document_factor(docs, REQUIRED) == 50.0


def test_expired_document_counts_zero():
    docs = (approved("business_license"), DocumentSnapshot("tax_certificate", "expired"))
    assert scoring.document_factor(docs, REQUIRED) == 50.0


def test_only_three_most_recent_inspections_count():
    assert scoring.inspection_factor((90, 80, 70, 0)) == 80.0
    assert scoring.inspection_factor((60,)) == 60.0
    assert scoring.inspection_factor(()) == 100.0


def test_history_factor_declines_with_drop():
    assert scoring.history_factor(80, (80,)) == 100.0
    assert scoring.history_factor(90, (80,)) == 100.0
    assert scoring.history_factor(70, (80,)) == 80.0
    assert scoring.history_factor(30, (80,)) == 0.0
    # unchanged bases are skipped so a repeat run keeps the earlier reference
    assert scoring.history_factor(70, (70, 80)) == 80.0


def test_scores_stay_in_range():
    worst = ScoringInputs(
        documents=(DocumentSnapshot("business_license", "rejected"),),
        inspection_scores=(0, 0, 0),
        ratings=(1, 1),
        previous_bases=(100,),
        required_types=REQUIRED,
    )
    result = scoring.score_inputs(worst)
    assert 0 <= result.score <= 100
    assert result.status == scoring.status_for(result.score)


def test_recommendations_follow_lowest_factor():
    result = scoring.score_inputs(ScoringInputs(required_types=REQUIRED))
    assert result.recommendations == scoring.RECOMMENDATIONS["documents"]
    perfect = ScoringInputs(
        documents=(approved("business_license"), approved("tax_certificate")),
        required_types=REQUIRED,
    )
    assert scoring.score_inputs(perfect).recommendations == ()


def test_round_half_up():
    assert scoring.round_half_up(92.5) == 93
    assert scoring.round_half_up(92.49) == 92


def _shop_with_records(db):
    owner = make_actor("shop_owner")
    inspector = make_actor("government")
    shop = models.Shop(owner_id=owner, name="Scored", status="approved")
    db.add(shop)
    db.commit()
    for doc_type in REQUIRED:
        db.add(models.Document(shop_id=shop.id, document_type=doc_type, status="approved"))
    db.add(
        models.Inspection(
            shop_id=shop.id,
            inspector_id=inspector,
            status="completed",
            scheduled_date=datetime.now(timezone.utc) - timedelta(days=2),
            completed_at=datetime.now(timezone.utc) - timedelta(days=1),
            score=90,
        )
    )
    for rating in (5, 3):
        db.add(models.Review(shop_id=shop.id, user_id=make_actor("customer"), rating=rating))
    db.commit()
    return shop


def test_recompute_is_idempotent_and_appends_history(db):
    shop = _shop_with_records(db)
    first = scoring.recompute(db, shop.id, required_types=REQUIRED)
    second = scoring.recompute(db, shop.id, required_types=REQUIRED)
    assert first.result.score == second.result.score == 93
    assert first.result.factors == second.result.factors
    history = (
        db.query(models.ComplianceHistoryRecord)
        .filter_by(shop_id=shop.id)
        .order_by(models.ComplianceHistoryRecord.sequence)
        .all()
    )
    assert [record.sequence for record in history] == [1, 2]
    db.refresh(shop)
    assert shop.compliance_score == 93
    assert shop.compliance_status == "compliant"
    assert shop.last_compliance_check is not None


def test_recompute_history_factor_tracks_decline(db):
    shop = _shop_with_records(db)
    scoring.recompute(db, shop.id, required_types=REQUIRED)
    assert scoring.load_inputs(db, shop.id, required_types=REQUIRED).previous_bases == ()
    license_doc = db.query(models.Document).filter_by(shop_id=shop.id, document_type="business_license").one()
    license_doc.status = "rejected"
    db.commit()
    outcome = scoring.recompute(db, shop.id, required_types=REQUIRED)
    # base drops from 93 to 73, a 20 point decline
    assert outcome.result.base_score == 73
    assert outcome.result.factors["history"] == 60.0
    again = scoring.recompute(db, shop.id, required_types=REQUIRED)
    assert again.result.score == outcome.result.score
    # only the reference row is read back, however long the history grows
    assert scoring.load_inputs(db, shop.id, required_types=REQUIRED).previous_bases == (93,)
    history = db.query(models.ComplianceHistoryRecord).filter_by(shop_id=shop.id).all()
    assert sorted(record.base_score for record in history) == [73, 73, 93]


def test_lapsed_expiry_counts_as_expired(db):
    shop = _shop_with_records(db)
    doc = db.query(models.Document).filter_by(shop_id=shop.id, document_type="tax_certificate").one()
    doc.expiry_date = date.today() - timedelta(days=1)
    db.commit()
    inputs = scoring.load_inputs(db, shop.id, required_types=REQUIRED)
    assert scoring.document_factor(inputs.documents, REQUIRED) == 50.0


def test_recompute_unknown_shop(db):
    with pytest.raises(errors.NotFoundError):
        scoring.recompute(db, uuid.uuid4())
