import logging
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from shopwatch import errors, models, notify, policy
from shopwatch.services import lifecycle, scoring

from .conftest import TestingSessionLocal, actor_headers, approved_shop, register_shop


def test_approval_initialises_compliance(client):
    _, owner = actor_headers("shop_owner")
    _, gov = actor_headers("government")
    shop = register_shop(client, owner)
    assert shop["status"] == "pending"
    assert shop["compliance_status"] == "pending"

    resp = client.post(f"/api/shops/{shop['id']}/approve", headers=gov)
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "approved"
    assert data["compliance_score"] == 60
    assert data["compliance_status"] == "warning"

    history = client.get(f"/api/compliance/shops/{shop['id']}/history", headers=owner)
    assert history.status_code == 200
    assert len(history.json()) == 1
    assert history.json()[0]["score"] == 60

    notifications = client.get("/api/notifications/", headers=owner).json()
    assert [n["type"] for n in notifications] == ["shop_approved"]


def test_customer_cannot_approve(client):
    _, owner = actor_headers("shop_owner")
    _, customer = actor_headers("customer")
    shop = register_shop(client, owner)
    resp = client.post(f"/api/shops/{shop['id']}/approve", headers=customer)
    assert resp.status_code == 403
    assert resp.json()["code"] == "authorization_error"
    assert client.get(f"/api/shops/{shop['id']}", headers=owner).json()["status"] == "pending"


def test_rejected_shop_is_terminal(client):
    _, owner = actor_headers("shop_owner")
    _, gov = actor_headers("government")
    shop = register_shop(client, owner)
    resp = client.post(f"/api/shops/{shop['id']}/reject", json={"reason": "incomplete"}, headers=gov)
    assert resp.status_code == 200
    assert resp.json()["rejection_reason"] == "incomplete"

    again = client.post(f"/api/shops/{shop['id']}/approve", headers=gov)
    assert again.status_code == 409
    assert again.json()["code"] == "invalid_transition"
    assert client.get(f"/api/shops/{shop['id']}", headers=gov).json()["status"] == "rejected"


def test_reject_requires_reason(client):
    _, owner = actor_headers("shop_owner")
    _, gov = actor_headers("government")
    shop = register_shop(client, owner)
    resp = client.post(f"/api/shops/{shop['id']}/reject", json={"reason": ""}, headers=gov)
    assert resp.status_code == 422


def test_suspend_and_reinstate(client):
    _, owner = actor_headers("shop_owner")
    _, gov = actor_headers("government")
    shop = approved_shop(client, owner, gov)
    resp = client.post(
        f"/api/shops/{shop['id']}/suspend",
        json={"reason": "health hazard", "duration_days": 14},
        headers=gov,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "suspended"
    assert data["suspension_reason"] == "health hazard"
    assert data["suspended_until"] is not None

    # suspended shops are no longer public
    assert client.get(f"/api/shops/{shop['id']}").status_code == 403

    resp = client.post(f"/api/shops/{shop['id']}/reinstate", headers=gov)
    assert resp.status_code == 200
    assert resp.json()["status"] == "approved"
    assert resp.json()["suspended_until"] is None
    assert client.get(f"/api/shops/{shop['id']}").status_code == 200


def test_invalid_transition_leaves_state_unchanged(db):
    owner = uuid.uuid4()
    gov = uuid.uuid4()
    db.add_all([models.Actor(id=owner, role="shop_owner"), models.Actor(id=gov, role="government")])
    shop = models.Shop(owner_id=owner, name="Unchanged", status="pending")
    db.add(shop)
    db.commit()
    version = shop.version

    with pytest.raises(errors.InvalidTransition):
        lifecycle.transition_shop(db, shop.id, "reinstate", policy.Principal(id=gov, role="government"))
    db.refresh(shop)
    assert shop.status == "pending"
    assert shop.version == version
    failure = db.query(models.AuditLog).filter_by(target_id=shop.id, action="shop.reinstate").one()
    assert failure.outcome == "invalid_transition"


def _document(client, owner, shop_id, doc_type="business_license", **extra):
    resp = client.post(
        "/api/documents/",
        json={"shop_id": shop_id, "document_type": doc_type, "file_url": "s3://docs/x.pdf", **extra},
        headers=owner,
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_document_review_recomputes(client):
    _, owner = actor_headers("shop_owner")
    _, gov = actor_headers("government")
    shop = approved_shop(client, owner, gov)
    license_doc = _document(client, owner, shop["id"])
    tax_doc = _document(client, owner, shop["id"], "tax_certificate")

    assert client.post(f"/api/documents/{license_doc['id']}/approve", headers=gov).status_code == 200
    resp = client.post(f"/api/documents/{tax_doc['id']}/approve", headers=gov)
    assert resp.json()["status"] == "approved"

    refreshed = client.get(f"/api/shops/{shop['id']}", headers=owner).json()
    assert refreshed["compliance_score"] == 100
    assert refreshed["compliance_status"] == "compliant"

    notifications = client.get("/api/notifications/", headers=owner).json()
    types = {n["type"] for n in notifications}
    assert "document_approved" in types
    assert "compliance_status_changed" in types


def test_document_cannot_be_approved_twice(client):
    _, owner = actor_headers("shop_owner")
    _, gov = actor_headers("government")
    shop = approved_shop(client, owner, gov)
    doc = _document(client, owner, shop["id"])
    client.post(f"/api/documents/{doc['id']}/reject", json={"reason": "blurry scan"}, headers=gov)
    resp = client.post(f"/api/documents/{doc['id']}/approve", headers=gov)
    assert resp.status_code == 409
    assert client.get(f"/api/documents/{doc['id']}", headers=owner).json()["status"] == "rejected"


def test_document_with_past_expiry_is_refused(client):
    _, owner = actor_headers("shop_owner")
    shop = register_shop(client, owner)
    resp = client.post(
        "/api/documents/",
        json={"shop_id": shop["id"], "document_type": "health_permit", "expiry_date": "2000-01-01"},
        headers=owner,
    )
    assert resp.status_code == 422
    assert resp.json()["code"] == "validation_error"


def _schedule(client, gov, shop_id, when):
    resp = client.post(
        "/api/inspections/",
        json={"shop_id": shop_id, "inspection_type": "routine", "scheduled_date": when.isoformat()},
        headers=gov,
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_inspection_workflow(client):
    _, owner = actor_headers("shop_owner")
    _, gov = actor_headers("government")
    shop = approved_shop(client, owner, gov)
    inspection = _schedule(client, gov, shop["id"], datetime.now(timezone.utc) - timedelta(hours=1))
    assert inspection["status"] == "scheduled"

    started = client.post(f"/api/inspections/{inspection['id']}/start", headers=gov)
    assert started.status_code == 200
    assert started.json()["status"] == "in_progress"

    bad = client.post(f"/api/inspections/{inspection['id']}/complete", json={"score": 101}, headers=gov)
    assert bad.status_code == 422

    done = client.post(
        f"/api/inspections/{inspection['id']}/complete",
        json={"score": 40, "issues": ["no fire extinguisher"]},
        headers=gov,
    )
    assert done.status_code == 200
    assert done.json()["score"] == 40
    assert done.json()["issues"] == ["no fire extinguisher"]

    # base falls from 60 to 42, so the history factor drops to 64
    refreshed = client.get(f"/api/shops/{shop['id']}", headers=owner).json()
    assert refreshed["compliance_score"] == 38
    assert refreshed["compliance_status"] == "non_compliant"

    again = client.post(f"/api/inspections/{inspection['id']}/complete", json={"score": 90}, headers=gov)
    assert again.status_code == 409


def test_inspection_cannot_start_early(client):
    _, owner = actor_headers("shop_owner")
    _, gov = actor_headers("government")
    shop = approved_shop(client, owner, gov)
    inspection = _schedule(client, gov, shop["id"], datetime.now(timezone.utc) + timedelta(days=3))
    resp = client.post(f"/api/inspections/{inspection['id']}/start", headers=gov)
    assert resp.status_code == 422
    assert client.get(f"/api/inspections/{inspection['id']}", headers=gov).json()["status"] == "scheduled"


def test_only_assigned_inspector_can_start(client):
    _, owner = actor_headers("shop_owner")
    _, gov = actor_headers("government")
    _, other_gov = actor_headers("government")
    shop = approved_shop(client, owner, gov)
    inspection = _schedule(client, gov, shop["id"], datetime.now(timezone.utc) - timedelta(hours=1))
    assert client.post(f"/api/inspections/{inspection['id']}/start", headers=other_gov).status_code == 403
    assert client.post(f"/api/inspections/{inspection['id']}/start", headers=owner).status_code == 403


def test_owner_cancels_inspection_and_inspector_is_told(client):
    _, owner = actor_headers("shop_owner")
    _, gov = actor_headers("government")
    shop = approved_shop(client, owner, gov)
    inspection = _schedule(client, gov, shop["id"], datetime.now(timezone.utc) + timedelta(days=1))
    resp = client.post(
        f"/api/inspections/{inspection['id']}/cancel", json={"reason": "closed for renovation"}, headers=owner
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert resp.json()["cancellation_reason"] == "closed for renovation"

    inbox = client.get("/api/notifications/", headers=gov).json()
    assert [n["type"] for n in inbox] == ["inspection_cancelled"]


def test_cannot_schedule_for_rejected_shop(client):
    _, owner = actor_headers("shop_owner")
    _, gov = actor_headers("government")
    shop = register_shop(client, owner)
    client.post(f"/api/shops/{shop['id']}/reject", json={"reason": "fraud"}, headers=gov)
    resp = client.post(
        "/api/inspections/",
        json={"shop_id": shop["id"], "scheduled_date": "2030-01-01T09:00:00"},
        headers=gov,
    )
    assert resp.status_code == 409


def test_expiry_sweep_and_warning(db):
    owner = uuid.uuid4()
    db.add(models.Actor(id=owner, role="shop_owner", email="sweep@example.com"))
    shop = models.Shop(owner_id=owner, name="Sweep", status="approved", compliance_status="compliant")
    db.add(shop)
    db.commit()
    today = datetime.now(timezone.utc).date()
    lapsed = models.Document(
        shop_id=shop.id, document_type="business_license", status="approved", expiry_date=today - timedelta(days=1)
    )
    rejected = models.Document(
        shop_id=shop.id, document_type="tax_certificate", status="rejected", expiry_date=today - timedelta(days=1)
    )
    soon = models.Document(
        shop_id=shop.id, document_type="health_permit", status="approved", expiry_date=today + timedelta(days=5)
    )
    db.add_all([lapsed, rejected, soon])
    db.commit()

    events = lifecycle.expire_documents(db, today)
    assert [e.notification_type for e in events if e.entity == "document" and e.shop_id == shop.id] == ["document_expired"]
    db.refresh(lapsed)
    db.refresh(rejected)
    assert lapsed.status == "expired"
    assert rejected.status == "rejected"
    history = db.query(models.ComplianceHistoryRecord).filter_by(shop_id=shop.id).count()
    assert history == 1

    warnings = lifecycle.warn_expiring_documents(db, today, lead_days=14)
    assert [e.entity_id for e in warnings if e.shop_id == shop.id] == [soon.id]
    again = lifecycle.warn_expiring_documents(db, today, lead_days=14)
    assert [e for e in again if e.shop_id == shop.id] == []


def test_expiry_task_delivers_notifications(db):
    from shopwatch import tasks

    owner = uuid.uuid4()
    db.add(models.Actor(id=owner, role="shop_owner", email="task@example.com"))
    shop = models.Shop(owner_id=owner, name="Task", status="pending")
    db.add(shop)
    db.commit()
    yesterday = datetime.now(timezone.utc).date() - timedelta(days=1)
    db.add(models.Document(shop_id=shop.id, document_type="owner_identity", status="pending", expiry_date=yesterday))
    db.commit()

    assert tasks.expire_documents_sweep.delay().get() >= 1
    session = TestingSessionLocal()
    try:
        inbox = session.query(models.Notification).filter_by(user_id=owner).all()
        assert [n.type for n in inbox] == ["document_expired"]
    finally:
        session.close()
    assert any(email[0] == "task@example.com" for email in notify.EMAIL_OUTBOX)


def test_storage_failure_during_recompute_keeps_committed_approval(client, db, monkeypatch, caplog):
    _, owner = actor_headers("shop_owner")
    _, gov = actor_headers("government")
    shop = register_shop(client, owner, name="Flaky Storage")

    def unreadable(*args, **kwargs):
        raise OperationalError("SELECT documents", {}, Exception("database is locked"))

    monkeypatch.setattr(scoring, "load_inputs", unreadable)
    with caplog.at_level(logging.ERROR, logger="shopwatch.ops"):
        resp = client.post(f"/api/shops/{shop['id']}/approve", headers=gov)

    assert resp.status_code == 200
    assert resp.json()["status"] == "approved"
    assert f"compliance recompute failed for shop {shop['id']}" in caplog.text
    assert f"could not schedule compliance recompute for shop {shop['id']}" in caplog.text

    row = (
        db.query(models.AuditLog)
        .filter_by(target_id=uuid.UUID(shop["id"]), action="shop.approve")
        .one()
    )
    assert row.outcome == "success"
    inbox = client.get("/api/notifications/", headers=owner).json()
    assert [n["type"] for n in inbox] == ["shop_approved"]


def test_contended_recompute_is_handed_to_worker(client, monkeypatch):
    _, owner = actor_headers("shop_owner")
    _, gov = actor_headers("government")
    shop = register_shop(client, owner, name="Busy Counter")
    real_recompute = scoring.recompute
    calls = []

    def contended(db, shop_id, **kwargs):
        calls.append(shop_id)
        if len(calls) == 1:
            raise errors.ConflictError("concurrent compliance recompute; retry")
        return real_recompute(db, shop_id, **kwargs)

    monkeypatch.setattr(scoring, "recompute", contended)
    resp = client.post(f"/api/shops/{shop['id']}/approve", headers=gov)
    assert resp.status_code == 200
    assert len(calls) == 2

    refreshed = client.get(f"/api/shops/{shop['id']}", headers=owner).json()
    assert refreshed["compliance_score"] == 60
    assert refreshed["compliance_status"] == "warning"
    history = client.get(f"/api/compliance/shops/{shop['id']}/history", headers=owner).json()
    assert [record["sequence"] for record in history] == [1]
