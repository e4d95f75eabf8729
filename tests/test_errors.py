import pytest

from chatrelay.conversation.exceptions import (
    ConversationBusyError,
    ConversationInactiveError,
    GenerationError,
    GenerationErrorType,
    SessionDisabledError,
    UpstreamAPIError,
)
from chatrelay.errors import error_payload, to_http_error


@pytest.mark.parametrize(
    "error_type, code, kind",
    [
        (GenerationErrorType.NO_FREE_SESSIONS, 503, "service_unavailable"),
        (GenerationErrorType.SESSION_UNUSABLE, 503, "service_unavailable"),
        (GenerationErrorType.LENGTH, 400, "bad_request"),
        (GenerationErrorType.EMPTY, 400, "bad_request"),
        (GenerationErrorType.RATE_LIMIT, 429, "too_many_requests"),
        (GenerationErrorType.CONVERSATION, 409, "conflict"),
        (GenerationErrorType.OTHER, 502, "bad_gateway"),
    ],
)
def test_generation_errors_map_to_status(error_type, code, kind):
    body = error_payload(GenerationError(error_type))

    assert body.code == code
    assert body.error == kind
    assert body.details == {"type": error_type.value}


def test_relay_state_errors_map_to_status():
    assert error_payload(ConversationBusyError("user-1")).code == 409
    assert error_payload(ConversationInactiveError("user-1")).code == 404
    assert error_payload(SessionDisabledError("abc")).code == 503


def test_unknown_errors_are_bad_gateway():
    exc = to_http_error(UpstreamAPIError(endpoint="x", status_code=400))

    assert exc.status_code == 502
    assert exc.detail["error"] == "bad_gateway"
    assert exc.detail["details"] is None
