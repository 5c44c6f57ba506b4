"""Per-actor moving-window limits for user-initiated writes."""

from __future__ import annotations

import os
import time
from uuid import UUID

from limits import RateLimitItem, parse
from limits.storage import MemoryStorage, Storage
from limits.strategies import MovingWindowRateLimiter

from . import errors

# purpose: cap how often one actor may register shops, submit documents or reviews
# status: active
# depends_on: limits (the engine behind slowapi)

DEFAULT_LIMITS: dict[str, str] = {
    "shop.create": os.getenv("RATE_LIMIT_SHOP_CREATE", "10/hour"),
    "document.create": os.getenv("RATE_LIMIT_DOCUMENT_CREATE", "30/hour"),
    "review.create": os.getenv("RATE_LIMIT_REVIEW_CREATE", "20/hour"),
}


class ActorRateLimiter:
    """Owns the counters; nothing else mutates them."""

    def __init__(self, limits: dict[str, str] | None = None, storage: Storage | None = None) -> None:
        self._items: dict[str, RateLimitItem] = {
            action: parse(spec) for action, spec in (limits or DEFAULT_LIMITS).items()
        }
        self._storage = storage or MemoryStorage()
        self._strategy = MovingWindowRateLimiter(self._storage)

    def enforce(self, actor_id: UUID | None, action: str) -> None:
        """Count one attempt; raise RateLimitError when the window is full."""

        item = self._items.get(action)
        if item is None or actor_id is None:
            return
        if self._strategy.hit(item, action, str(actor_id)):
            return
        stats = self._strategy.get_window_stats(item, action, str(actor_id))
        retry_after = int(stats.reset_time - time.time()) + 1
        raise errors.RateLimitError(
            f"too many {action.replace('.', ' ')} requests; limit is {item}",
            retry_after=retry_after,
        )

    def reset(self) -> None:
        self._storage.reset()


_LIMITER: ActorRateLimiter | None = None


def get_rate_limiter() -> ActorRateLimiter:
    global _LIMITER
    if _LIMITER is None:
        _LIMITER = ActorRateLimiter()
    return _LIMITER
