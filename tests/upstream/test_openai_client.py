import json

import httpx
import pytest

from chatrelay.conversation.exceptions import (
    GenerationError,
    GenerationErrorType,
    UpstreamAPIError,
)
from chatrelay.upstream.openai_client import UpstreamClient


def _sse(*chunks: str, done: bool = True) -> bytes:
    lines = [
        "data: " + json.dumps({"created": 1, "choices": [{"text": chunk, "finish_reason": None}]})
        for chunk in chunks
    ]
    if done:
        lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode("utf-8")


def _client(handler) -> UpstreamClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return UpstreamClient(http, base_url="https://upstream.local/v1/")


@pytest.mark.asyncio
async def test_complete_streams_and_accumulates_text():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=_sse("Hel", "lo", " world"))

    client = _client(handler)
    await client.setup("sk-test")

    progress = []
    data = await client.complete({"model": "m", "prompt": "hi"}, lambda d: progress.append(d.response.text))

    assert data.response.text == "Hello world"
    assert progress == ["Hel", "Hello", "Hello world"]
    assert seen["url"] == "https://upstream.local/v1/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["stream"] is True


@pytest.mark.asyncio
async def test_complete_awaits_async_progress_callbacks():
    client = _client(lambda request: httpx.Response(200, content=_sse("a", "b")))
    await client.setup("sk-test")
    progress = []

    async def on_progress(data):
        progress.append(data.response.text)

    await client.complete({"prompt": "x"}, on_progress)

    assert progress == ["a", "ab"]


@pytest.mark.asyncio
async def test_quota_error_is_classified():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            429,
            json={"error": {"code": "insufficient_quota", "message": "You exceeded your quota"}},
        )

    client = _client(handler)
    await client.setup("sk-test")

    with pytest.raises(UpstreamAPIError) as excinfo:
        await client.complete({"prompt": "x"})

    error = excinfo.value
    assert error.status_code == 429
    assert error.error_id == "insufficient_quota"
    assert error.is_quota_exhausted()
    assert not error.is_server_side()


@pytest.mark.asyncio
async def test_unauthorized_marks_account_unusable():
    client = _client(lambda request: httpx.Response(401, json={"error": {"type": "invalid_request_error"}}))
    await client.setup("sk-test")

    with pytest.raises(UpstreamAPIError) as excinfo:
        await client.complete({"prompt": "x"})

    assert excinfo.value.is_account_unusable()
    assert not excinfo.value.is_server_side()


@pytest.mark.asyncio
async def test_server_errors_and_transport_failures_are_server_side():
    client = _client(lambda request: httpx.Response(503, text="unavailable"))
    await client.setup("sk-test")
    with pytest.raises(UpstreamAPIError) as excinfo:
        await client.complete({"prompt": "x"})
    assert excinfo.value.is_server_side()
    assert excinfo.value.error_id is None

    def broken(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(broken)
    await client.setup("sk-test")
    with pytest.raises(UpstreamAPIError) as excinfo:
        await client.complete({"prompt": "x"})
    assert excinfo.value.status_code is None
    assert excinfo.value.is_server_side()


@pytest.mark.asyncio
async def test_stream_without_content_is_empty_error():
    client = _client(lambda request: httpx.Response(200, content=b"data: [DONE]\n\n"))
    await client.setup("sk-test")

    with pytest.raises(GenerationError) as excinfo:
        await client.complete({"prompt": "x"})

    assert excinfo.value.type == GenerationErrorType.EMPTY


@pytest.mark.asyncio
async def test_requests_require_setup():
    client = _client(lambda request: httpx.Response(200, content=_sse("a")))

    with pytest.raises(RuntimeError):
        await client.complete({"prompt": "x"})


@pytest.mark.asyncio
async def test_moderate_returns_json_body():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/moderations"
        return httpx.Response(200, json={"results": [{"flagged": False}]})

    client = _client(handler)
    await client.setup("sk-test")

    assert await client.moderate("hello") == {"results": [{"flagged": False}]}
