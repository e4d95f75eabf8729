from pydantic import BaseModel, Field


class SessionRecord(BaseModel):
    """
    Persisted status of an upstream credential, keyed by session id.
    `active=False` marks a permanently disabled session.
    """

    active: bool = Field(..., description="Whether the credential may be used")


__all__ = ["SessionRecord"]
