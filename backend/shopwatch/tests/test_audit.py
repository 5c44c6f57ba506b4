import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import OperationalError

from shopwatch import audit, models

from .conftest import actor_headers, approved_shop, register_shop


def test_commands_are_audited(client, db):
    owner_id, owner = actor_headers("shop_owner")
    gov_id, gov = actor_headers("government")
    _, customer = actor_headers("customer")
    shop = register_shop(client, owner, name="Audited")
    client.post(f"/api/shops/{shop['id']}/approve", headers=customer)
    client.post(f"/api/shops/{shop['id']}/approve", headers=gov)

    shop_id = uuid.UUID(shop["id"])
    rows = (
        db.query(models.AuditLog)
        .filter(models.AuditLog.target_id == shop_id)
        .order_by(models.AuditLog.created_at)
        .all()
    )
    assert [(r.action, r.outcome) for r in rows] == [
        ("shop.create", "success"),
        ("shop.approve", "authorization_error"),
        ("shop.approve", "success"),
    ]
    assert rows[0].actor_id == owner_id
    assert rows[2].actor_id == gov_id
    assert rows[2].details == {"from": "pending", "to": "approved"}


def test_audit_listing_is_for_officials(client):
    _, owner = actor_headers("shop_owner")
    _, gov = actor_headers("government")
    shop = approved_shop(client, owner, gov, name="Listed")

    assert client.get("/api/audit/", headers=owner).status_code == 403
    resp = client.get(f"/api/audit/?target_id={shop['id']}&action=shop.approve", headers=gov)
    assert resp.status_code == 200
    assert [row["outcome"] for row in resp.json()] == ["success"]


def test_audit_report_counts_outcomes(client):
    gov_id, gov = actor_headers("government")
    _, owner = actor_headers("shop_owner")
    shop = register_shop(client, owner, name="Reported")
    client.post(f"/api/shops/{shop['id']}/reject", json={"reason": "duplicate"}, headers=gov)
    client.post(f"/api/shops/{shop['id']}/approve", headers=gov)

    now = datetime.now(timezone.utc)
    resp = client.get(
        "/api/audit/report",
        params={
            "start": (now - timedelta(hours=1)).isoformat(),
            "end": (now + timedelta(hours=1)).isoformat(),
            "actor_id": str(gov_id),
        },
        headers=gov,
    )
    assert resp.status_code == 200
    counts = {(item["action"], item["outcome"]): item["count"] for item in resp.json()}
    assert counts[("shop.reject", "success")] == 1
    assert counts[("shop.approve", "invalid_transition")] == 1


def test_failed_audit_write_does_not_raise(db, monkeypatch, caplog):
    def broken_commit():
        raise OperationalError("INSERT INTO audit_logs", {}, Exception("disk full"))

    monkeypatch.setattr(db, "commit", broken_commit)
    with caplog.at_level(logging.ERROR, logger="shopwatch.ops"):
        assert audit.record(db, uuid.uuid4(), "shop.update", "shop", uuid.uuid4()) is None
    assert "audit write failed for shop.update" in caplog.text


def test_unknown_target_is_audited_as_not_found(client, db):
    gov_id, gov = actor_headers("government")
    missing = uuid.uuid4()
    resp = client.post(f"/api/shops/{missing}/approve", headers=gov)
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Shop not found", "code": "not_found"}
    row = db.query(models.AuditLog).filter_by(target_id=missing).one()
    assert (row.actor_id, row.outcome) == (gov_id, "not_found")
