"""
Per-user conversation state and the generation retry loop.

A conversation is bound to one session at a time. `generate()` is never
entered twice concurrently for the same conversation: the second caller is
rejected with `ConversationBusyError` and may wait on `done` instead.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Set

from chatrelay.conversation.cooldown import Cooldown
from chatrelay.conversation.exceptions import (
    ConversationBusyError,
    ConversationInactiveError,
    GenerationError,
    GenerationErrorType,
    UpstreamAPIError,
)
from chatrelay.conversation.interaction import GeneratedInteraction, Interaction
from chatrelay.conversation.session import GenerationOptions, SessionState, StopState
from chatrelay.conversation.signals import Signal
from chatrelay.logging_config import logger
from chatrelay.models import (
    ChatResponse,
    ConversationRecord,
    MessageRecord,
    ResponseMessage,
    ThreadBinding,
)
from chatrelay.storage.record_store import CONVERSATIONS_TABLE, MESSAGES_TABLE
from chatrelay.utils import maybe_await

if TYPE_CHECKING:
    from chatrelay.conversation.manager import ConversationManager
    from chatrelay.conversation.session import Session

RETRY_NOTICE = "Something went wrong while processing your message, retrying"


def _requires_failover(exc: BaseException) -> bool:
    if isinstance(exc, UpstreamAPIError):
        return exc.is_quota_exhausted() or exc.is_account_unusable()
    return isinstance(exc, GenerationError) and exc.type == GenerationErrorType.SESSION_UNUSABLE


def _is_fatal(exc: BaseException) -> bool:
    if isinstance(exc, GenerationError):
        if exc.cause is not None and not isinstance(exc.cause, UpstreamAPIError):
            return True
        return exc.type in (GenerationErrorType.EMPTY, GenerationErrorType.LENGTH)
    if isinstance(exc, UpstreamAPIError):
        return not exc.is_server_side()
    return False


def _as_generation_error(exc: BaseException) -> GenerationError:
    if isinstance(exc, GenerationError):
        return exc
    if isinstance(exc, UpstreamAPIError) and exc.status_code == 429:
        return GenerationError(GenerationErrorType.RATE_LIMIT, cause=exc)
    return GenerationError(GenerationErrorType.OTHER, cause=exc)


class Conversation:
    def __init__(self, manager: "ConversationManager", session: "Session", user: str) -> None:
        self.manager = manager
        self.session = session
        self.user = user

        self.cooldown = Cooldown(manager.settings.conversation_cooldown_seconds)
        self.done = Signal("conversation.done")

        self.thread: Optional[ThreadBinding] = None
        self.history: List[Interaction] = []

        self.id = uuid.uuid4().hex
        self.history = []
        self.updated_at: Optional[float] = None
        self.active = False
        self.locked = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def settings(self):
        return self.manager.settings

    @property
    def previous(self) -> Optional[Interaction]:
        if not self.history:
            return None
        return self.history[-1]

    async def cached_conversation(self) -> Optional[ConversationRecord]:
        data = await self.manager.store.select(CONVERSATIONS_TABLE, self.user)
        if data is None:
            return None
        return ConversationRecord.model_validate(data)

    async def count(self) -> int:
        """Stored interaction count, or -1 when there is no stored conversation."""
        data = await self.cached_conversation()
        return data.count if data is not None else -1

    async def restore(self, thread: ThreadBinding) -> None:
        """Resume a conversation from its stored record."""
        self.thread = thread

        data = await self.cached_conversation()
        if data is None:
            raise LookupError(f"Conversation for {self.user} does not exist")

        for entry in data.history or []:
            self.history.append(
                Interaction(
                    input=entry.input,
                    output=ChatResponse(id="", message=ResponseMessage(text=entry.output)),
                )
            )

        self.updated_at = data.updated_at if data.updated_at is not None else time.time()
        self._apply_reset_timer(self.updated_at)
        self.active = True

    async def init(self, thread: Optional[ThreadBinding] = None) -> None:
        """
        Start the conversation, also called after each reset.
        Every call issues a fresh conversation id.
        """
        if thread is not None:
            self.thread = thread
        self.id = uuid.uuid4().hex
        self.history = []

        await self.manager.store.upsert(
            CONVERSATIONS_TABLE,
            self.user,
            {
                "created_at": time.time(),
                "active": True,
                "channel": self.thread.channel if self.thread else None,
                "guild": self.thread.guild if self.thread else None,
                "history": None,
            },
        )

        self._apply_reset_timer()
        self.active = True

    def reset_time(self, relative: bool = False) -> Optional[float]:
        """When the conversation resets due to inactivity; None without history."""
        if not self.history:
            return None
        reset_at = (self.updated_at or 0.0) + self.settings.conversation_reset_seconds
        return max(reset_at - time.time() if relative else reset_at, 0.0)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _apply_reset_timer(self, updated_at: Optional[float] = None) -> None:
        self._cancel_timer()
        if updated_at is None or self.updated_at is None:
            self.updated_at = time.time()

        delay = self.reset_time(relative=True)
        if delay is None:
            delay = self.settings.conversation_reset_seconds

        self._timer = asyncio.get_running_loop().call_later(delay, self._schedule_expiry)

    def _schedule_expiry(self) -> None:
        task = asyncio.ensure_future(self._expire())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _expire(self) -> None:
        self._timer = None
        logger.info("conversation of %s expired after inactivity", self.user)
        try:
            await self.send_reset_notice(inactive=True)
        except Exception as exc:
            logger.debug("reset notice for %s failed: %s", self.user, exc)
        await self.reset()

    async def send_reset_notice(self, inactive: bool = False) -> None:
        platform = self.manager.platform
        if platform is None or self.thread is None:
            return
        await platform.send_reset_notice(self, inactive)

    async def reset(self, soft: bool = False) -> None:
        """
        Clear history and remove the stored record. Unless `soft`, the bound
        thread is archived too. Unlocks an in-flight generation.
        """
        # Cleared before any await: a generation finishing meanwhile must
        # see an inactive conversation.
        self.active = False
        self.locked = False
        self.history = []
        self._cancel_timer()

        if self.thread is not None and not soft and self.manager.platform is not None:
            await self.manager.platform.archive_thread(self.thread, "Conversation was reset")
        await self.manager.store.delete(CONVERSATIONS_TABLE, self.user)

    @contextmanager
    def _lock(self) -> Iterator[None]:
        self.locked = True
        try:
            yield
        finally:
            self.locked = False
            self.done.emit()

    async def _failover(self) -> None:
        if self.session.state != SessionState.DISABLED:
            await self.session.stop(StopState.PERMANENT)

        previous = self.session.id
        self.session = await self.manager.session()
        await self.session.init()
        logger.warning(
            "conversation of %s moved from session %s to %s", self.user, previous, self.session.id
        )

    async def generate(self, options: GenerationOptions) -> GeneratedInteraction:
        if not self.active:
            raise ConversationInactiveError(self.user)
        if self.locked:
            raise ConversationBusyError(self.user)

        max_tries = self.settings.generation_max_tries
        requested_at = time.time()
        response: Optional[ChatResponse] = None
        tries = 0

        with self._lock():
            self._cancel_timer()

            while tries < max_tries and self.locked:
                tries += 1
                try:
                    response = await self.session.generate(options)
                    break
                except Exception as exc:
                    if _requires_failover(exc):
                        await self._failover()
                        continue
                    if _is_fatal(exc):
                        raise
                    if tries >= max_tries:
                        raise _as_generation_error(exc) from exc

                    await maybe_await(
                        options.on_progress(ResponseMessage(type="Notice", text=RETRY_NOTICE))
                    )
                    logger.warning(
                        "failed to generate a response for %s, retrying: %s [%s/%s]",
                        self.user,
                        exc,
                        tries,
                        max_tries,
                    )
                    await asyncio.sleep(self.settings.generation_retry_delay_seconds)

            if not self.active:
                # Reset while generating.
                raise GenerationError(GenerationErrorType.CONVERSATION)
            if response is None:
                raise GenerationError(GenerationErrorType.SESSION_UNUSABLE)

        interaction = GeneratedInteraction(
            input=options.prompt,
            output=response,
            trigger=options.trigger,
            tries=tries,
        )
        self.history.append(interaction)
        self._apply_reset_timer()

        await self._persist(interaction, requested_at)
        self.cooldown.use()
        return interaction

    async def _persist(self, interaction: GeneratedInteraction, requested_at: float) -> None:
        cached_count = await self.count()
        if not self.active:
            # Reset while persisting; the record was deleted.
            return

        fields: Dict[str, Any] = {
            "updated_at": self.updated_at,
            "history": [entry.to_history().model_dump() for entry in self.history],
        }
        if cached_count != -1:
            fields["count"] = cached_count + 1
        await self.manager.store.upsert(CONVERSATIONS_TABLE, self.user, fields)

        if not self.settings.collect_messages:
            return

        message = interaction.output.message
        record = MessageRecord(
            id=interaction.output.id,
            conversation=self.id,
            input=interaction.input,
            output=message.text,
            suggestions=[suggestion.text for suggestion in message.suggestions],
            sources=message.sources,
            queries=message.queries,
            created_at=time.time(),
            requested_at=requested_at,
        )
        await self.manager.store.upsert(MESSAGES_TABLE, record.id, record.model_dump())


__all__ = ["Conversation", "RETRY_NOTICE"]
