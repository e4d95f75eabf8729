"""
Inbound prompt handling at the platform boundary.

The generator resolves (or resumes) the author's conversation, enforces the
busy and cooldown rules, runs the optional moderation check and reports all
results to a `Renderer`, which owns the actual presentation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Protocol

from chatrelay.conversation.conversation import Conversation
from chatrelay.conversation.exceptions import GenerationError, GenerationErrorType
from chatrelay.conversation.interaction import GeneratedInteraction
from chatrelay.conversation.manager import ConversationManager
from chatrelay.conversation.session import GenerationOptions, SessionState
from chatrelay.logging_config import logger
from chatrelay.models import ImageAttachment, ResponseMessage, ThreadBinding
from chatrelay.services import moderation_service
from chatrelay.services.moderation_service import ModerationResult
from chatrelay.upstream.openai_client import UpstreamClient

ModerationCheck = Callable[[UpstreamClient, str], Awaitable[Optional[ModerationResult]]]

SESSION_STARTING_NOTICE = "Your assigned session is currently starting up"
BUSY_NOTICE = "You already have a request running in this conversation, wait for it to finish"
COOLDOWN_NOTICE = "Whoa-whoa... slow down. You can send another message in {seconds} seconds"
FLAGGED_NOTICE = "Your message was flagged by the moderation filter ({category})"
INTRODUCTION_NOTICE = "Hey there, send me a message to start talking"


@dataclass
class InboundPrompt:
    text: str
    author: str
    thread: Optional[ThreadBinding] = None
    # Prompt came from a suggested response; skips moderation.
    used_suggestion: bool = False
    images: List[ImageAttachment] = field(default_factory=list)


class Renderer(Protocol):
    async def progress(self, conversation: Conversation, message: ResponseMessage) -> None:
        ...

    async def notice(self, conversation: Optional[Conversation], text: str) -> Any:
        """Show a transient notice; returns a reference for `retract()`."""
        ...

    async def retract(self, notice: Any) -> None:
        ...

    async def done(self, conversation: Conversation, interaction: GeneratedInteraction) -> Any:
        """Render the final reply; the result is stored as `interaction.reply`."""
        ...

    async def error(self, conversation: Optional[Conversation], error: BaseException) -> None:
        ...


class Generator:
    def __init__(
        self,
        manager: ConversationManager,
        *,
        moderation: Optional[ModerationCheck] = None,
    ) -> None:
        self.manager = manager
        if moderation is None and manager.settings.moderation_enabled:
            moderation = moderation_service.check
        self.moderation = moderation

    async def _resolve(self, prompt: InboundPrompt) -> Conversation:
        conversation = self.manager.get(prompt.author)
        if conversation is None:
            conversation = await self.manager.create(prompt.author)
            if prompt.thread is not None:
                try:
                    await conversation.restore(prompt.thread)
                except LookupError:
                    logger.debug("no stored conversation for %s", prompt.author)

        # Pick a new session in case the current one was disabled.
        if conversation.session.state == SessionState.DISABLED:
            conversation.session = await self.manager.session()
        return conversation

    async def handle(
        self, prompt: InboundPrompt, renderer: Renderer
    ) -> Optional[GeneratedInteraction]:
        """
        Answer one inbound prompt. Returns the generated interaction, or
        None when the request was rejected or failed (after telling the
        renderer why).
        """
        content = prompt.text.strip()
        if not content:
            await renderer.notice(None, INTRODUCTION_NOTICE)
            return None

        conversation: Optional[Conversation] = None
        try:
            conversation = await self._resolve(prompt)

            if conversation.session.locked:
                await renderer.notice(conversation, SESSION_STARTING_NOTICE)
                return None
            if not conversation.session.active:
                await conversation.session.init()
            if not conversation.active:
                await conversation.init(prompt.thread)
        except GenerationError as exc:
            if exc.type != GenerationErrorType.NO_FREE_SESSIONS:
                logger.exception("failed to resume conversation of %s", prompt.author)
            await renderer.error(conversation, exc)
            return None
        except Exception as exc:
            logger.exception("failed to resume conversation of %s", prompt.author)
            await renderer.error(conversation, exc)
            return None

        if conversation.locked:
            notice = await renderer.notice(conversation, BUSY_NOTICE)
            conversation.done.once(lambda: renderer.retract(notice))
            return None

        # Message from a different thread than the one the conversation is bound to.
        if (
            conversation.thread is not None
            and prompt.thread is not None
            and conversation.thread.channel != prompt.thread.channel
        ):
            return None

        cooldown = conversation.cooldown
        if cooldown.active:
            remaining = cooldown.remaining
            if remaining > (cooldown.state.expires_in or 0) / 2:
                notice = await renderer.notice(
                    conversation, COOLDOWN_NOTICE.format(seconds=int(remaining) + 1)
                )
                cooldown.done.once(lambda: renderer.retract(notice))
                return None

            await cooldown.done.wait()
            # Another request started while waiting.
            if conversation.locked or conversation.session.locked:
                return None

        if self.moderation is not None and not prompt.used_suggestion:
            result = await self.moderation(conversation.session.client, content)
            if result is not None and result.flagged:
                logger.info(
                    "prompt of %s flagged for %s (%.2f)",
                    prompt.author,
                    result.highest_category,
                    result.highest_score,
                )
                await renderer.notice(
                    conversation, FLAGGED_NOTICE.format(category=result.highest_category)
                )
                return None

        options = GenerationOptions(
            conversation=conversation,
            prompt=content,
            on_progress=lambda message: renderer.progress(conversation, message),
            trigger=prompt,
            images=list(prompt.images),
        )

        try:
            interaction = await conversation.generate(options)
        except GenerationError as exc:
            logger.warning("generation for %s failed: %s", prompt.author, exc)
            await renderer.error(conversation, exc)
            return None
        except Exception as exc:
            logger.exception("generation for %s failed", prompt.author)
            await renderer.error(conversation, exc)
            return None

        interaction.reply = await renderer.done(conversation, interaction)
        return interaction


__all__ = ["Generator", "InboundPrompt", "ModerationCheck", "Renderer"]
