"""Per-shop mutual exclusion for lifecycle and scoring writes."""

from __future__ import annotations

import os
from contextlib import contextmanager
from threading import Lock, RLock
from typing import Iterator
from uuid import UUID

from . import errors

# purpose: serialise mutations and recomputes per shop without a global lock
# status: active

LOCK_TIMEOUT_SECONDS = float(os.getenv("SHOP_LOCK_TIMEOUT_SECONDS", "10"))

_REGISTRY_LOCK = Lock()
_SHOP_LOCKS: dict[UUID, tuple[RLock, int]] = {}


def _checkout(shop_id: UUID) -> RLock:
    with _REGISTRY_LOCK:
        lock, holders = _SHOP_LOCKS.get(shop_id, (None, 0))
        if lock is None:
            lock = RLock()
        _SHOP_LOCKS[shop_id] = (lock, holders + 1)
        return lock


def _release(shop_id: UUID) -> None:
    with _REGISTRY_LOCK:
        lock, holders = _SHOP_LOCKS[shop_id]
        if holders <= 1:
            del _SHOP_LOCKS[shop_id]
        else:
            _SHOP_LOCKS[shop_id] = (lock, holders - 1)


@contextmanager
def shop_lock(shop_id: UUID, timeout: float | None = None) -> Iterator[None]:
    """Hold the shop's lock; reentrant within one thread."""

    lock = _checkout(shop_id)
    acquired = lock.acquire(timeout=LOCK_TIMEOUT_SECONDS if timeout is None else timeout)
    try:
        if not acquired:
            raise errors.TransientError(f"shop {shop_id} is busy; retry shortly")
        yield
    finally:
        if acquired:
            lock.release()
        _release(shop_id)


def active_locks() -> int:
    with _REGISTRY_LOCK:
        return len(_SHOP_LOCKS)
