"""
Shared Redis connection and JSON (de)serialisation for stored records.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from redis.asyncio import Redis

from .settings import settings

_client: Optional[Redis] = None


def get_redis_client(url: Optional[str] = None) -> Redis:
    """Process-wide client, created on first use from `url` or REDIS_URL."""
    global _client
    if _client is None:
        _client = Redis.from_url(url or settings.redis_url, decode_responses=True)
    return _client


async def close_redis_client() -> None:
    global _client
    client, _client = _client, None
    if client is not None:
        await client.aclose()


async def load_json(redis: Redis, key: str) -> Optional[Any]:
    """Decoded value at `key`; None when absent or not valid JSON."""
    raw = await redis.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


async def store_json(redis: Redis, key: str, value: Any) -> None:
    await redis.set(key, json.dumps(value, ensure_ascii=False))


__all__ = ["get_redis_client", "close_redis_client", "load_json", "store_json"]
