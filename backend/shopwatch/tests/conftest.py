import os
os.environ["TESTING"] = "1"
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ.setdefault("NOTIFICATION_BACKOFF_SECONDS", "0")
import pytest
from fastapi.testclient import TestClient

import sys
from pathlib import Path

import uuid

sys.path.append(str(Path(__file__).resolve().parents[2]))

from shopwatch.main import app
from shopwatch.database import Base, SessionLocal as TestingSessionLocal, engine
from shopwatch import models, notify, pubsub, ratelimit

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)


@pytest.fixture(autouse=True)
def isolated_side_channels():
    notify.EMAIL_OUTBOX.clear()
    notify.SMS_OUTBOX.clear()
    ratelimit.get_rate_limiter().reset()
    pubsub.reset()
    yield


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


def make_actor(role: str, *, email: str | None = None, phone: str | None = None) -> uuid.UUID:
    """
    purpose: insert a profile directly so tests control contact details
    outputs: the new actor id
    status: active
    """

    db = TestingSessionLocal()
    actor = models.Actor(
        id=uuid.uuid4(),
        role=role,
        email=email or f"{role}-{uuid.uuid4().hex[:8]}@example.com",
        phone_number=phone,
    )
    db.add(actor)
    db.commit()
    actor_id = actor.id
    db.close()
    return actor_id


def headers_for(actor_id: uuid.UUID, role: str) -> dict:
    return {"X-Actor-Id": str(actor_id), "X-Actor-Role": role}


def actor_headers(role: str, **kwargs) -> tuple[uuid.UUID, dict]:
    actor_id = make_actor(role, **kwargs)
    return actor_id, headers_for(actor_id, role)


def register_shop(client, owner_headers, name="Corner Grocery") -> dict:
    resp = client.post("/api/shops/", json={"name": name, "category": "grocery"}, headers=owner_headers)
    assert resp.status_code == 200, resp.text
    return resp.json()


def approved_shop(client, owner_headers, gov_headers, name="Corner Grocery") -> dict:
    shop = register_shop(client, owner_headers, name=name)
    resp = client.post(f"/api/shops/{shop['id']}/approve", headers=gov_headers)
    assert resp.status_code == 200, resp.text
    return resp.json()
