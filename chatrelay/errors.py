from typing import Any, Dict, Optional, Tuple

from fastapi import HTTPException, status
from pydantic import BaseModel, Field

from chatrelay.conversation.exceptions import (
    ConversationBusyError,
    ConversationInactiveError,
    GenerationError,
    GenerationErrorType,
    SessionBusyError,
    SessionDisabledError,
    SessionNotReadyError,
)


class ErrorResponse(BaseModel):
    """
    Error body returned by every relay endpoint, e.g.
    {"error": "conflict", "message": "...", "code": 409, "details": {"type": "conversation"}}
    """

    error: str = Field(..., description="Machine-readable error kind")
    message: str = Field(..., description="Human-readable explanation")
    code: int = Field(..., description="HTTP status code")
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Structured context, e.g. the generation error type"
    )


# HTTP status -> `error` field of the body.
ERROR_KINDS: Dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: "bad_request",
    status.HTTP_404_NOT_FOUND: "not_found",
    status.HTTP_409_CONFLICT: "conflict",
    status.HTTP_429_TOO_MANY_REQUESTS: "too_many_requests",
    status.HTTP_502_BAD_GATEWAY: "bad_gateway",
    status.HTTP_503_SERVICE_UNAVAILABLE: "service_unavailable",
}

# Generation error type -> (status, client-facing message).
GENERATION_ERRORS: Dict[GenerationErrorType, Tuple[int, str]] = {
    GenerationErrorType.NO_FREE_SESSIONS: (
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "No upstream session is available right now, try again later",
    ),
    GenerationErrorType.SESSION_UNUSABLE: (
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "No upstream session is available right now, try again later",
    ),
    GenerationErrorType.LENGTH: (status.HTTP_400_BAD_REQUEST, "The message is too long"),
    GenerationErrorType.EMPTY: (
        status.HTTP_400_BAD_REQUEST,
        "The model returned an empty response",
    ),
    GenerationErrorType.RATE_LIMIT: (
        status.HTTP_429_TOO_MANY_REQUESTS,
        "The upstream API is rate limited",
    ),
    GenerationErrorType.CONVERSATION: (
        status.HTTP_409_CONFLICT,
        "The conversation was reset while generating",
    ),
}


def _response(
    code: int, message: str, details: Optional[Dict[str, Any]] = None
) -> ErrorResponse:
    return ErrorResponse(error=ERROR_KINDS[code], message=message, code=code, details=details)


def http_error(
    code: int, message: str, *, details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    body = _response(code, message, details)
    return HTTPException(status_code=code, detail=body.model_dump())


def not_found(message: str) -> HTTPException:
    return http_error(status.HTTP_404_NOT_FOUND, message)


def conflict(message: str) -> HTTPException:
    return http_error(status.HTTP_409_CONFLICT, message)


def too_many_requests(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(status.HTTP_429_TOO_MANY_REQUESTS, message, details=details)


def service_unavailable(message: str) -> HTTPException:
    return http_error(status.HTTP_503_SERVICE_UNAVAILABLE, message)


def error_payload(exc: BaseException) -> ErrorResponse:
    """Translate a relay exception into the body (and status) clients see."""
    if isinstance(exc, GenerationError):
        details = {"type": exc.type.value}
        if exc.type in GENERATION_ERRORS:
            code, message = GENERATION_ERRORS[exc.type]
            return _response(code, message, details)
        return _response(status.HTTP_502_BAD_GATEWAY, str(exc) or "Generation failed", details)

    if isinstance(exc, (ConversationBusyError, SessionBusyError, SessionNotReadyError)):
        return _response(status.HTTP_409_CONFLICT, str(exc))
    if isinstance(exc, SessionDisabledError):
        return _response(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))
    if isinstance(exc, ConversationInactiveError):
        return _response(status.HTTP_404_NOT_FOUND, str(exc))
    return _response(status.HTTP_502_BAD_GATEWAY, str(exc) or exc.__class__.__name__)


def to_http_error(exc: BaseException) -> HTTPException:
    body = error_payload(exc)
    return HTTPException(status_code=body.code, detail=body.model_dump())


__all__ = [
    "ErrorResponse",
    "error_payload",
    "http_error",
    "not_found",
    "conflict",
    "too_many_requests",
    "service_unavailable",
    "to_http_error",
]
