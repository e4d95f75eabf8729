from __future__ import annotations

from enum import Enum
from typing import Optional

# Upstream error ids that mean the credential can no longer be used.
QUOTA_ERROR_IDS = frozenset({"insufficient_quota"})
UNUSABLE_ACCOUNT_ERROR_IDS = frozenset(
    {"account_deactivated", "invalid_api_key", "access_terminated", "billing_not_active"}
)


class GenerationErrorType(str, Enum):
    RATE_LIMIT = "rate_limit"
    SESSION_UNUSABLE = "session_unusable"
    NO_FREE_SESSIONS = "no_free_sessions"
    CONVERSATION = "conversation"
    EMPTY = "empty"
    LENGTH = "length"
    OTHER = "other"


class GenerationError(Exception):
    """Raised when a response could not be generated."""

    def __init__(self, type: GenerationErrorType, cause: Optional[BaseException] = None):
        self.type = type
        self.cause = cause
        message = f"Failed to generate response with code {type.name}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class UpstreamAPIError(Exception):
    """
    Failed request against the upstream completion API.

    `status_code` is None for transport failures (connection reset, timeout)
    where no HTTP response was received.
    """

    def __init__(
        self,
        *,
        endpoint: str,
        status_code: Optional[int],
        error_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        self.endpoint = endpoint
        self.status_code = status_code
        self.error_id = error_id
        self.message = message
        super().__init__(
            f"Upstream API error {status_code if status_code is not None else 'transport'}"
            f" at {endpoint}: {error_id or '-'} {message or ''}".rstrip()
        )

    def is_quota_exhausted(self) -> bool:
        return self.error_id in QUOTA_ERROR_IDS

    def is_account_unusable(self) -> bool:
        if self.error_id in UNUSABLE_ACCOUNT_ERROR_IDS:
            return True
        return self.status_code in (401, 403)

    def is_server_side(self) -> bool:
        if self.is_quota_exhausted():
            return False
        if self.status_code is None:
            return True
        return self.status_code >= 500 or self.status_code in (408, 429)


class SessionDisabledError(RuntimeError):
    """Raised when initializing a permanently disabled session."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__("Session has been disabled permanently")


class SessionBusyError(RuntimeError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__("Session is busy")


class SessionNotReadyError(RuntimeError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__("Session is still starting")


class ConversationInactiveError(RuntimeError):
    def __init__(self, user: str):
        self.user = user
        super().__init__("Conversation is inactive")


class ConversationBusyError(RuntimeError):
    def __init__(self, user: str):
        self.user = user
        super().__init__("Already busy")


__all__ = [
    "GenerationErrorType",
    "GenerationError",
    "UpstreamAPIError",
    "SessionDisabledError",
    "SessionBusyError",
    "SessionNotReadyError",
    "ConversationInactiveError",
    "ConversationBusyError",
]
