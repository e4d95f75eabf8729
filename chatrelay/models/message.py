from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

MessageType = Literal["Notice", "ChatNotice", "Chat", "Suggestion"]


class SourceAttribution(BaseModel):
    """
    One web search result offered to the model as context.
    """

    title: str = Field("", description="Title of the search result")
    url: str = Field(..., description="Link to the result")
    description: str = Field("", description="Snippet shown by the search engine")
    query: Optional[str] = Field(default=None, description="Query which produced this result")


class ImageAttachment(BaseModel):
    """
    Description of an image attached by the user.
    """

    name: Optional[str] = Field(default=None, description="Original file name")
    url: Optional[str] = Field(default=None, description="Where the image can be fetched")
    description: str = Field("", description="Text description fed into the prompt")


class GeneratedImage(BaseModel):
    prompt: str
    url: str


class SuggestedResponse(BaseModel):
    type: Literal["Suggestion"] = "Suggestion"
    text: str


class CompletionChoice(BaseModel):
    """
    Accumulated text of a streamed completion.
    """

    text: str = ""
    finish_reason: Optional[str] = None


class CompletionData(BaseModel):
    created: Optional[int] = None
    response: CompletionChoice
    usage: Optional[Dict[str, Any]] = None


class ResponseMessage(BaseModel):
    """
    Partial or final message produced while answering a prompt.
    """

    id: str = Field("", description="Identifier of the response")
    type: MessageType = Field("Chat", description="Kind of message")
    text: str = Field("", description="Generated or notice text")
    notice: Optional[str] = Field(default=None, description="Extra notice for ChatNotice messages")
    sources: Optional[List[SourceAttribution]] = None
    suggestions: List[SuggestedResponse] = Field(default_factory=list)
    attachments: List[ImageAttachment] = Field(default_factory=list)
    images: List[GeneratedImage] = Field(default_factory=list)
    queries: Optional[List[str]] = None
    raw: Optional[CompletionChoice] = Field(
        default=None, description="Raw completion metadata (finish reason)"
    )


class ChatResponse(BaseModel):
    id: str
    message: ResponseMessage


class MessageRecord(BaseModel):
    """
    Anonymized copy of one interaction, stored for dataset collection.
    Keyed by response id; only the conversation id is kept, never the user.
    """

    id: str
    conversation: str = Field(..., description="Conversation id at generation time")
    input: str
    output: str
    suggestions: List[str] = Field(default_factory=list)
    sources: Optional[List[SourceAttribution]] = None
    queries: Optional[List[str]] = None
    created_at: float = Field(..., description="Completion timestamp (epoch seconds)")
    requested_at: float = Field(..., description="Request timestamp (epoch seconds)")


__all__ = [
    "MessageType",
    "SourceAttribution",
    "ImageAttachment",
    "GeneratedImage",
    "SuggestedResponse",
    "CompletionChoice",
    "CompletionData",
    "ResponseMessage",
    "ChatResponse",
    "MessageRecord",
]
