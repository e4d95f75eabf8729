"""
One upstream credential and its lifecycle.

A session is INACTIVE until `init()` authenticates it, RUNNING afterwards,
and DISABLED for good once the upstream reports the credential unusable.
The disabled flag is persisted in the `sessions` table so it survives
restarts.
"""

from __future__ import annotations

import hashlib
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterator, List, Optional, Union

from chatrelay.conversation.assistant import Assistant
from chatrelay.conversation.exceptions import (
    GenerationError,
    GenerationErrorType,
    SessionBusyError,
    SessionDisabledError,
    SessionNotReadyError,
)
from chatrelay.conversation.prompts import STARTER_PROMPTS
from chatrelay.logging_config import logger
from chatrelay.models import ChatResponse, ImageAttachment, ResponseMessage, SessionRecord
from chatrelay.storage.record_store import SESSIONS_TABLE
from chatrelay.upstream.openai_client import UpstreamClient
from chatrelay.utils import shuffled

if TYPE_CHECKING:
    from chatrelay.conversation.conversation import Conversation
    from chatrelay.conversation.manager import ConversationManager

OnProgress = Callable[[ResponseMessage], Union[Awaitable[None], None]]


class SessionState(str, Enum):
    RUNNING = "running"
    INACTIVE = "inactive"
    DISABLED = "disabled"


class StopState(str, Enum):
    # Session can be started again later.
    NORMAL = "normal"
    # Credential is unusable; persisted as inactive.
    PERMANENT = "permanent"


@dataclass
class GenerationOptions:
    conversation: "Conversation"
    prompt: str
    on_progress: OnProgress
    trigger: Any = None
    images: List[ImageAttachment] = field(default_factory=list)


@dataclass
class SessionDebug:
    count: int = 0
    duration: float = 0.0


def session_id(token: str) -> str:
    return hashlib.md5(token.encode("utf-8")).hexdigest()


class Session:
    def __init__(
        self,
        manager: "ConversationManager",
        token: str,
        *,
        client: UpstreamClient,
        assistant: Optional[Assistant] = None,
    ) -> None:
        self.manager = manager
        self.token = token
        self.id = session_id(token)

        self.client = client
        self.assistant = assistant or Assistant(client, manager.settings)

        self.state = SessionState.INACTIVE
        self.locked = False
        self.generating = False
        self.debug = SessionDebug()

    @contextmanager
    def _lock(self) -> Iterator[None]:
        self.locked = True
        try:
            yield
        finally:
            self.locked = False

    @property
    def active(self) -> bool:
        return self.state == SessionState.RUNNING

    @property
    def usable(self) -> bool:
        return not self.locked and self.state != SessionState.DISABLED

    async def session_data(self) -> Optional[SessionRecord]:
        data = await self.manager.store.select(SESSIONS_TABLE, self.id)
        if data is None:
            return None
        return SessionRecord.model_validate(data)

    async def disabled(self) -> bool:
        """
        Whether this session was disabled, locally or in a previous run.
        A persisted `active: false` row disables the local session too.
        """
        if self.state == SessionState.DISABLED:
            return True

        data = await self.session_data()
        if data is not None and not data.active:
            await self.stop(StopState.PERMANENT)
            return True
        return False

    async def init(self) -> None:
        if await self.disabled():
            raise SessionDisabledError(self.id)
        if self.active:
            return
        if self.locked:
            raise SessionBusyError(self.id)

        with self._lock():
            await self.manager.store.upsert(
                SESSIONS_TABLE, self.id, SessionRecord(active=True).model_dump()
            )
            await self.client.setup(self.token)
            self.state = SessionState.RUNNING

        logger.info("session %s initialized", self.id)

    async def stop(self, mode: StopState = StopState.NORMAL) -> None:
        with self._lock():
            if mode == StopState.PERMANENT:
                self.state = SessionState.DISABLED
                await self.manager.store.upsert(
                    SESSIONS_TABLE, self.id, SessionRecord(active=False).model_dump()
                )
                logger.warning("session %s disabled permanently", self.id)
            else:
                self.state = SessionState.INACTIVE

    async def generate(self, options: GenerationOptions) -> ChatResponse:
        if self.state == SessionState.DISABLED:
            raise GenerationError(GenerationErrorType.SESSION_UNUSABLE)
        if not self.active:
            raise SessionNotReadyError(self.id)
        if self.locked:
            raise SessionBusyError(self.id)

        started = time.monotonic()
        self.generating = True
        try:
            message = await self.assistant.ask(options)
        finally:
            self.generating = False

        self.debug.count += 1
        self.debug.duration += time.monotonic() - started
        return ChatResponse(id=message.id, message=message)

    def suggestions(self, count: int = 3) -> List[str]:
        return shuffled(STARTER_PROMPTS)[:count]


__all__ = [
    "GenerationOptions",
    "OnProgress",
    "Session",
    "SessionDebug",
    "SessionState",
    "StopState",
    "session_id",
]
