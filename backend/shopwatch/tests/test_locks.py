import threading
import uuid

import pytest

from shopwatch import errors, locks, models, policy
from shopwatch.services import lifecycle, scoring

from .conftest import TestingSessionLocal, make_actor


def _run_in_threads(count, target):
    start = threading.Barrier(count)
    results = [None] * count

    def worker(index):
        start.wait()
        try:
            results[index] = target()
        except Exception as exc:
            results[index] = exc

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results


def test_shop_lock_is_reentrant_and_released():
    shop_id = uuid.uuid4()
    before = locks.active_locks()
    with locks.shop_lock(shop_id):
        with locks.shop_lock(shop_id):
            assert locks.active_locks() == before + 1
    assert locks.active_locks() == before


def test_busy_shop_times_out():
    shop_id = uuid.uuid4()
    held = threading.Event()
    release = threading.Event()

    def holder():
        with locks.shop_lock(shop_id):
            held.set()
            release.wait(5)

    thread = threading.Thread(target=holder)
    thread.start()
    try:
        assert held.wait(5)
        with pytest.raises(errors.TransientError):
            with locks.shop_lock(shop_id, timeout=0.05):
                pass
    finally:
        release.set()
        thread.join()
    assert shop_id not in locks._SHOP_LOCKS

    with locks.shop_lock(shop_id, timeout=0.05):
        pass


def _approved_shop_row():
    db = TestingSessionLocal()
    try:
        shop = models.Shop(owner_id=make_actor("shop_owner"), name="Crowded", status="approved")
        db.add(shop)
        db.commit()
        return shop.id
    finally:
        db.close()


def test_concurrent_recomputes_are_serialised():
    shop_id = _approved_shop_row()

    def recompute():
        db = TestingSessionLocal()
        try:
            return scoring.recompute(db, shop_id).result.score
        finally:
            db.close()

    results = _run_in_threads(4, recompute)
    assert results == [60, 60, 60, 60]

    db = TestingSessionLocal()
    try:
        sequences = [
            row.sequence
            for row in db.query(models.ComplianceHistoryRecord)
            .filter_by(shop_id=shop_id)
            .order_by(models.ComplianceHistoryRecord.sequence)
        ]
    finally:
        db.close()
    assert sequences == [1, 2, 3, 4]


def test_racing_approvals_apply_once():
    owner = make_actor("shop_owner")
    official = policy.Principal(id=make_actor("government"), role="government")
    db = TestingSessionLocal()
    try:
        shop = models.Shop(owner_id=owner, name="Contested", status="pending")
        db.add(shop)
        db.commit()
        shop_id = shop.id
    finally:
        db.close()

    def approve():
        session = TestingSessionLocal()
        try:
            return lifecycle.transition_shop(session, shop_id, "approve", official).entity.status
        finally:
            session.close()

    results = _run_in_threads(2, approve)
    assert sorted(type(result).__name__ for result in results) == ["InvalidTransition", "str"]
    assert "approved" in results

    db = TestingSessionLocal()
    try:
        history = db.query(models.ComplianceHistoryRecord).filter_by(shop_id=shop_id).count()
        outcomes = sorted(
            row.outcome
            for row in db.query(models.AuditLog).filter_by(target_id=shop_id, action="shop.approve")
        )
    finally:
        db.close()
    assert history == 1
    assert outcomes == ["invalid_transition", "success"]
