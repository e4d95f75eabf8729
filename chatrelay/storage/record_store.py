"""
Keyed record store used by the relay core.

Records are JSON objects stored under `relay:{table}:{key}`. The core only
needs upsert / select / delete, so that is all this layer exposes.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from redis.asyncio import Redis

from chatrelay.redis_client import load_json, store_json

RECORD_KEY_TEMPLATE = "relay:{table}:{key}"

CONVERSATIONS_TABLE = "conversations"
SESSIONS_TABLE = "sessions"
MESSAGES_TABLE = "messages"


class RecordStore:
    def __init__(self, redis: Redis) -> None:
        self.redis = redis

    @staticmethod
    def record_key(table: str, key: str) -> str:
        return RECORD_KEY_TEMPLATE.format(table=table, key=key)

    async def select(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        """
        Return the stored record, or None when missing or malformed.
        """
        data = await load_json(self.redis, self.record_key(table, key))
        if not isinstance(data, dict):
            return None
        return data

    async def upsert(self, table: str, key: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge `fields` into the stored record, creating it when missing.
        Returns the resulting record.
        """
        existing = await self.select(table, key) or {}
        merged = {**existing, **fields}
        await store_json(self.redis, self.record_key(table, key), merged)
        return merged

    async def delete(self, table: str, key: str) -> None:
        await self.redis.delete(self.record_key(table, key))


__all__ = [
    "RECORD_KEY_TEMPLATE",
    "CONVERSATIONS_TABLE",
    "SESSIONS_TABLE",
    "MESSAGES_TABLE",
    "RecordStore",
]
