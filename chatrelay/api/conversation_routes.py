from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, AsyncIterator, List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel, Field

from chatrelay.context import RelayContext
from chatrelay.conversation.conversation import Conversation
from chatrelay.conversation.exceptions import GenerationError
from chatrelay.conversation.generator import InboundPrompt
from chatrelay.conversation.interaction import GeneratedInteraction
from chatrelay.deps import get_relay
from chatrelay.errors import conflict, error_payload, not_found, to_http_error, too_many_requests
from chatrelay.logging_config import logger
from chatrelay.models import ImageAttachment, ResponseMessage, ThreadBinding

router = APIRouter(prefix="/v1", tags=["conversations"])


class CreateConversationRequest(BaseModel):
    channel: Optional[str] = Field(default=None, description="Thread to bind the conversation to")
    guild: Optional[str] = None


class ConversationResponse(BaseModel):
    id: str
    user: str
    session: str
    active: bool
    locked: bool
    thread: Optional[ThreadBinding] = None
    history: int = Field(0, description="Number of interactions kept in memory")
    count: int = Field(-1, description="Stored interaction count, -1 when not stored")
    cooldown_remaining: float = 0.0
    reset_at: Optional[float] = None
    suggestions: List[str] = Field(default_factory=list)


class MessageRequest(BaseModel):
    text: str = Field(..., min_length=1)
    channel: Optional[str] = None
    guild: Optional[str] = None
    used_suggestion: bool = False
    images: List[ImageAttachment] = Field(default_factory=list)


class SessionStatus(BaseModel):
    id: str
    state: str
    locked: bool
    generating: bool
    conversations: int
    count: int
    duration: float


def _thread(channel: Optional[str], guild: Optional[str]) -> Optional[ThreadBinding]:
    if channel is None:
        return None
    return ThreadBinding(channel=channel, guild=guild)


async def _describe(conversation: Conversation, suggestions: List[str]) -> ConversationResponse:
    return ConversationResponse(
        id=conversation.id,
        user=conversation.user,
        session=conversation.session.id,
        active=conversation.active,
        locked=conversation.locked,
        thread=conversation.thread,
        history=len(conversation.history),
        count=await conversation.count(),
        cooldown_remaining=conversation.cooldown.remaining,
        reset_at=conversation.reset_time(),
        suggestions=suggestions,
    )


def _sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


class QueueRenderer:
    """Renders generator output as server-sent events through a queue."""

    def __init__(self) -> None:
        self.queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self.closed = False

    def _put(self, event: str, data: Any) -> None:
        if not self.closed:
            self.queue.put_nowait(_sse(event, data))

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.queue.put_nowait(None)

    async def progress(self, conversation: Conversation, message: ResponseMessage) -> None:
        self._put("progress", message.model_dump())

    async def notice(self, conversation: Optional[Conversation], text: str) -> str:
        notice_id = uuid.uuid4().hex
        self._put("notice", {"id": notice_id, "text": text})
        return notice_id

    async def retract(self, notice: str) -> None:
        self._put("retract", {"id": notice})

    async def done(self, conversation: Conversation, interaction: GeneratedInteraction) -> str:
        self._put(
            "done",
            {**interaction.output.model_dump(), "tries": interaction.tries},
        )
        return interaction.output.id

    async def error(self, conversation: Optional[Conversation], error: BaseException) -> None:
        self._put("error", error_payload(error).model_dump())


@router.post("/conversations/{user_id}", response_model=ConversationResponse)
async def create_conversation(
    user_id: str,
    payload: Optional[CreateConversationRequest] = None,
    relay: RelayContext = Depends(get_relay),
) -> ConversationResponse:
    """
    Start a conversation for `user_id`, or resume the stored one bound to
    the same thread.
    """
    payload = payload or CreateConversationRequest()
    thread = _thread(payload.channel, payload.guild)
    manager = relay.manager

    try:
        conversation = await manager.create(user_id)
        if not conversation.active:
            cached = await conversation.cached_conversation()
            if (
                cached is not None
                and thread is not None
                and cached.channel == thread.channel
            ):
                await conversation.restore(thread)
            if not conversation.session.active:
                await conversation.session.init()
            if not conversation.active:
                await conversation.init(thread)
    except (GenerationError, RuntimeError) as exc:
        logger.warning("failed to start conversation for %s: %s", user_id, exc)
        raise to_http_error(exc) from exc

    return await _describe(conversation, conversation.session.suggestions(3))


@router.get("/conversations/{user_id}", response_model=ConversationResponse)
async def get_conversation(
    user_id: str,
    relay: RelayContext = Depends(get_relay),
) -> ConversationResponse:
    conversation = relay.manager.get(user_id)
    if conversation is None or not conversation.active:
        raise not_found(f"Conversation of '{user_id}' not found")
    return await _describe(conversation, [])


@router.delete("/conversations/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def reset_conversation(
    user_id: str,
    soft: bool = Query(False, description="Keep the bound thread open"),
    relay: RelayContext = Depends(get_relay),
) -> Response:
    conversation = relay.manager.get(user_id)
    if conversation is None or not conversation.active:
        raise not_found(f"Conversation of '{user_id}' not found")
    await conversation.reset(soft=soft)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/conversations/{user_id}/messages")
async def send_message(
    user_id: str,
    payload: MessageRequest,
    relay: RelayContext = Depends(get_relay),
) -> StreamingResponse:
    """
    Send a prompt and stream `notice`, `progress`, `done` and `error`
    events back as server-sent events.
    """
    conversation = relay.manager.get(user_id)
    if conversation is not None and conversation.active:
        if conversation.locked:
            raise conflict("You already have a request running in this conversation")
        cooldown = conversation.cooldown
        if cooldown.active and cooldown.remaining > (cooldown.state.expires_in or 0) / 2:
            raise too_many_requests(
                "Slow down",
                details={"retry_after": cooldown.remaining},
            )

    prompt = InboundPrompt(
        text=payload.text,
        author=user_id,
        thread=_thread(payload.channel, payload.guild),
        used_suggestion=payload.used_suggestion,
        images=payload.images,
    )
    renderer = QueueRenderer()

    async def run() -> None:
        try:
            await relay.generator.handle(prompt, renderer)
        finally:
            renderer.close()

    task = asyncio.create_task(run())

    async def events() -> AsyncIterator[str]:
        try:
            while True:
                chunk = await renderer.queue.get()
                if chunk is None:
                    break
                yield chunk
        finally:
            # The generation keeps running if the client disconnects.
            renderer.closed = True
        await task

    return StreamingResponse(events(), media_type="text/event-stream")


@router.get("/sessions", response_model=List[SessionStatus])
async def list_sessions(relay: RelayContext = Depends(get_relay)) -> List[SessionStatus]:
    manager = relay.manager
    return [
        SessionStatus(
            id=session.id,
            state=session.state.value,
            locked=session.locked,
            generating=session.generating,
            conversations=manager.load(session),
            count=session.debug.count,
            duration=session.debug.duration,
        )
        for session in manager.sessions.values()
    ]


__all__ = ["router", "QueueRenderer"]
