from .conversation import ConversationRecord, HistoryEntry, ThreadBinding
from .message import (
    ChatResponse,
    CompletionChoice,
    CompletionData,
    GeneratedImage,
    ImageAttachment,
    MessageRecord,
    MessageType,
    ResponseMessage,
    SourceAttribution,
    SuggestedResponse,
)
from .session import SessionRecord

__all__ = [
    "ChatResponse",
    "CompletionChoice",
    "CompletionData",
    "ConversationRecord",
    "GeneratedImage",
    "HistoryEntry",
    "ImageAttachment",
    "MessageRecord",
    "MessageType",
    "ResponseMessage",
    "SessionRecord",
    "SourceAttribution",
    "SuggestedResponse",
    "ThreadBinding",
]
