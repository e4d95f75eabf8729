from typing import List, Optional

from pydantic import BaseModel, Field


class ThreadBinding(BaseModel):
    """
    External thread a conversation is bound to on the messaging platform.
    """

    channel: str = Field(..., description="Thread / channel id")
    guild: Optional[str] = Field(default=None, description="Server the thread lives in")


class HistoryEntry(BaseModel):
    input: str
    output: str


class ConversationRecord(BaseModel):
    """
    Persisted state of a user's conversation, keyed by user id.
    """

    created_at: Optional[float] = Field(default=None, description="Creation timestamp (epoch seconds)")
    active: bool = Field(default=False)
    channel: Optional[str] = None
    guild: Optional[str] = None
    history: Optional[List[HistoryEntry]] = Field(
        default=None, description="Stripped-down history of prompts and replies"
    )
    updated_at: Optional[float] = Field(
        default=None, description="Last generation timestamp (epoch seconds)"
    )
    count: int = Field(default=0, description="Total interactions in this conversation", ge=0)


__all__ = ["ThreadBinding", "HistoryEntry", "ConversationRecord"]
