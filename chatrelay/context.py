"""
Process-wide relay state: Redis, the record store, the shared HTTP client and
the conversation manager. Created in the app lifespan and stored on
`app.state.relay`.
"""

from __future__ import annotations

from typing import Optional

import httpx
from redis.asyncio import Redis

from chatrelay.conversation.generator import Generator
from chatrelay.conversation.manager import ConversationManager
from chatrelay.conversation.platform import MessagingPlatform
from chatrelay.logging_config import logger
from chatrelay.redis_client import close_redis_client, get_redis_client
from chatrelay.services.search_service import SearchService
from chatrelay.settings import Settings
from chatrelay.storage.record_store import RecordStore


class RelayContext:
    def __init__(
        self,
        settings: Settings,
        *,
        redis: Optional[Redis] = None,
        http: Optional[httpx.AsyncClient] = None,
        platform: Optional[MessagingPlatform] = None,
    ) -> None:
        self.settings = settings
        self._owns_redis = redis is None
        self._owns_http = http is None

        self.redis = redis if redis is not None else get_redis_client(settings.redis_url)
        self.http = http if http is not None else httpx.AsyncClient(timeout=settings.upstream_timeout)
        self.store = RecordStore(self.redis)

        search = SearchService(self.http, url=settings.search_url) if settings.search_enabled else None
        self.manager = ConversationManager(
            self.store,
            self.http,
            settings=settings,
            search=search,
            platform=platform,
        )
        self.generator = Generator(self.manager)

    async def start(self) -> None:
        count = await self.manager.setup()
        if count == 0:
            logger.warning("no upstream credentials configured; every request will fail")

    async def stop(self) -> None:
        await self.manager.stop()
        if self._owns_http:
            await self.http.aclose()
        if self._owns_redis:
            await close_redis_client()


__all__ = ["RelayContext"]
