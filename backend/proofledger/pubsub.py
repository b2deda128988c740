from __future__ import annotations

import json
import os
from datetime import datetime
from typing import Any

import redis.asyncio as redis

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
_redis = None
_fake_server = None

async def get_redis():
    global _redis, _fake_server
    if os.getenv("TESTING") == "1":
        from fakeredis import FakeServer, aioredis
        if _fake_server is None:
            _fake_server = FakeServer()
        # fake connections bind to the loop that opened them; each test client runs its own
        return aioredis.FakeRedis(server=_fake_server)
    if _redis is None:
        _redis = redis.from_url(REDIS_URL)
    return _redis

def _json_default(value: Any) -> Any:
    # purpose: convert datetime objects to ISO strings for event payloads
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _serialize_event(event: dict[str, Any]) -> str:
    # purpose: normalise event dictionaries into JSON strings for redis pub/sub
    return json.dumps(event, default=_json_default)


async def publish_channel_event(channel_id: str, event: dict[str, Any]) -> None:
    """Broadcast proof lifecycle changes (submitted, verified, deleted)."""

    r = await get_redis()
    await r.publish(f"channel:{channel_id}", _serialize_event(event))


async def publish_pipeline_event(channel_id: str, event: dict[str, Any]) -> None:
    """Publish proof generation progress for dashboard observers."""

    # purpose: let other tabs follow a generation run started elsewhere
    r = await get_redis()
    await r.publish(f"pipeline:{channel_id}", _serialize_event(event))
