"""
Registry of user conversations and owner of the session pool.
"""

from __future__ import annotations

import asyncio
import random
from typing import Callable, Dict, List, Optional

import httpx

from chatrelay.conversation.assistant import Assistant, ImageDescriber, ImageGenerator
from chatrelay.conversation.conversation import Conversation
from chatrelay.conversation.exceptions import GenerationError, GenerationErrorType
from chatrelay.conversation.platform import MessagingPlatform
from chatrelay.conversation.session import Session
from chatrelay.logging_config import logger
from chatrelay.services.search_service import SearchService
from chatrelay.settings import Settings
from chatrelay.storage.record_store import RecordStore
from chatrelay.upstream.openai_client import UpstreamClient

ClientFactory = Callable[[str], UpstreamClient]


class ConversationManager:
    def __init__(
        self,
        store: RecordStore,
        http: Optional[httpx.AsyncClient] = None,
        *,
        settings: Settings,
        client_factory: Optional[ClientFactory] = None,
        search: Optional[SearchService] = None,
        platform: Optional[MessagingPlatform] = None,
        image_describer: Optional[ImageDescriber] = None,
        image_generator: Optional[ImageGenerator] = None,
    ) -> None:
        if http is None and client_factory is None:
            raise ValueError("either an HTTP client or a client factory is required")

        self.store = store
        self.http = http
        self.settings = settings
        self.search = search
        self.platform = platform
        self.image_describer = image_describer
        self.image_generator = image_generator
        self._client_factory = client_factory

        self.sessions: Dict[str, Session] = {}
        self.conversations: Dict[str, Conversation] = {}
        self.active = False

    def _client(self, token: str) -> UpstreamClient:
        if self._client_factory is not None:
            return self._client_factory(token)
        return UpstreamClient(self.http, base_url=self.settings.upstream_base_url)

    def _session(self, token: str) -> Session:
        client = self._client(token)
        assistant = Assistant(
            client,
            self.settings,
            search=self.search,
            describer=self.image_describer,
            image_generator=self.image_generator,
        )
        return Session(self, token, client=client, assistant=assistant)

    async def setup(self, credentials: Optional[List[str]] = None) -> int:
        """
        Create one session per credential and load their persisted status.
        Returns how many sessions were set up.
        """
        tokens = credentials if credentials is not None else self.settings.credentials
        created = [self._session(token) for token in tokens]
        for session in created:
            self.sessions[session.id] = session

        results = await asyncio.gather(
            *(session.disabled() for session in created), return_exceptions=True
        )
        for session, result in zip(created, results):
            if isinstance(result, BaseException):
                logger.warning("failed to check status of session %s: %s", session.id, result)

        self.active = True
        logger.info("set up %d session(s)", len(self.sessions))
        return len(self.sessions)

    async def stop(self) -> None:
        sessions = list(self.sessions.values())
        await asyncio.gather(*(session.stop() for session in sessions))
        for session in sessions:
            self.sessions.pop(session.id, None)
        self.active = False

    async def create(self, user: str) -> Conversation:
        """Return the user's active conversation, or register a new one."""
        if self.has(user):
            return self.conversations[user]

        conversation = Conversation(self, await self.session(), user)
        self.conversations[user] = conversation
        return conversation

    def get(self, user: str) -> Optional[Conversation]:
        return self.conversations.get(user)

    def has(self, user: str) -> bool:
        conversation = self.conversations.get(user)
        return conversation is not None and conversation.active

    def load(self, session: Session) -> int:
        """Number of active conversations bound to `session`."""
        return sum(
            1
            for conversation in self.conversations.values()
            if conversation.active and conversation.session.id == session.id
        )

    async def session(self, sessions: Optional[List[Session]] = None) -> Session:
        """
        Pick a session for a new or failing-over conversation.
        Raises GenerationError(NO_FREE_SESSIONS) when none is usable.
        """
        candidates = sessions if sessions is not None else await self.free_sessions()
        if not candidates:
            raise GenerationError(GenerationErrorType.NO_FREE_SESSIONS)

        fresh = all(self.load(session) == 0 for session in candidates)
        if fresh:
            # Nothing in use yet; spread the first conversations randomly.
            return random.choice(candidates)
        return candidates[-1]

    async def free_sessions(self) -> List[Session]:
        """Usable sessions, sorted by load in descending order."""
        candidates = sorted(self.sessions.values(), key=self.load, reverse=True)
        await asyncio.gather(*(session.disabled() for session in candidates))
        return [session for session in candidates if session.usable]


__all__ = ["ClientFactory", "ConversationManager"]
