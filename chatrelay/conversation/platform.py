from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from chatrelay.models import ThreadBinding

if TYPE_CHECKING:
    from chatrelay.conversation.conversation import Conversation


class MessagingPlatform(Protocol):
    """Side effects on the chat platform a conversation is bound to."""

    async def archive_thread(self, thread: ThreadBinding, reason: str) -> None:
        ...

    async def send_reset_notice(self, conversation: "Conversation", inactive: bool) -> None:
        ...


__all__ = ["MessagingPlatform"]
