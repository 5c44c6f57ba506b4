from __future__ import annotations

import asyncio
import json
import os
import weakref
from contextlib import asynccontextmanager, suppress
from datetime import date, datetime
from typing import Any, AsyncIterator
from uuid import UUID

import redis.asyncio as redis

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_TIMEOUT_SECONDS = float(os.getenv("REDIS_TIMEOUT_SECONDS", "5"))
# one client per event loop; workers run each delivery under asyncio.run
_redis: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, redis.Redis]" = weakref.WeakKeyDictionary()
_fake_server = None


def reset() -> None:
    global _fake_server
    _redis.clear()
    _fake_server = None


async def get_redis():
    global _fake_server
    loop = asyncio.get_running_loop()
    client = _redis.get(loop)
    if client is None:
        if os.getenv("TESTING") == "1":
            import fakeredis
            from fakeredis import aioredis
            if _fake_server is None:
                _fake_server = fakeredis.FakeServer()
            client = aioredis.FakeRedis(server=_fake_server)
        else:
            client = redis.from_url(
                REDIS_URL,
                socket_timeout=REDIS_TIMEOUT_SECONDS,
                socket_connect_timeout=REDIS_TIMEOUT_SECONDS,
            )
        _redis[loop] = client
    return client

def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


def _serialize_event(event: dict[str, Any]) -> str:
    return json.dumps(event, default=_json_default)


def shop_channel(shop_id: UUID | str) -> str:
    return f"shops:{shop_id}"


def owner_channel(owner_id: UUID | str) -> str:
    return f"shops:owner:{owner_id}"


def notification_channel(user_id: UUID | str) -> str:
    return f"notifications:{user_id}"


async def publish_shop_event(shop_id: UUID | str, owner_id: UUID | str, event: dict[str, Any]) -> None:
    """Publish a shop insert/update on the shop's feed and its owner's feed."""

    r = await get_redis()
    message = _serialize_event(event)
    await r.publish(shop_channel(shop_id), message)
    await r.publish(owner_channel(owner_id), message)


async def publish_notification_event(user_id: UUID | str, event: dict[str, Any]) -> int:
    """Push an in-app notification to connected clients; returns receiver count."""

    r = await get_redis()
    return await r.publish(notification_channel(user_id), _serialize_event(event))


async def _messages(pubsub) -> AsyncIterator[str]:
    async for message in pubsub.listen():
        if message.get("type") != "message":
            continue
        data = message.get("data")
        if isinstance(data, bytes):
            yield data.decode()
        else:
            yield str(data)


@asynccontextmanager
async def subscription(channel: str) -> AsyncIterator[AsyncIterator[str]]:
    """Subscribe to one channel; messages published after entry are yielded as text."""

    r = await get_redis()
    pubsub = r.pubsub()
    await pubsub.subscribe(channel)
    try:
        yield _messages(pubsub)
    finally:
        with suppress(Exception):
            await pubsub.unsubscribe(channel)
        with suppress(AttributeError):
            await pubsub.close()
