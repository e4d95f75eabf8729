import json
from typing import List

import httpx
from fastapi.testclient import TestClient

from chatrelay.context import RelayContext
from chatrelay.routes import create_app
from conftest import DummyRedis, make_settings


def _completion_handler(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    text = "Ask about the weather|Tell me a joke" if body["stop"] == ["\n"] else "Hello from upstream"
    frames = [
        "data: " + json.dumps({"choices": [{"text": text, "finish_reason": "stop"}]}),
        "data: [DONE]",
    ]
    return httpx.Response(200, content=("\n\n".join(frames) + "\n\n").encode("utf-8"))


def _client(credentials: str = "tok-a,tok-b") -> TestClient:
    settings = make_settings(upstream_credentials=credentials)
    http = httpx.AsyncClient(transport=httpx.MockTransport(_completion_handler))
    relay = RelayContext(settings, redis=DummyRedis(), http=http)
    return TestClient(create_app(settings, relay=relay))


def _events(text: str) -> List[tuple]:
    events = []
    for block in text.strip().split("\n\n"):
        lines = block.split("\n")
        name = lines[0][len("event: "):]
        data = json.loads(lines[1][len("data: "):])
        events.append((name, data))
    return events


def test_health_reports_pool():
    with _client() as client:
        resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "sessions": 2, "conversations": 0}


def test_conversation_lifecycle_over_http():
    with _client() as client:
        resp = client.post("/v1/conversations/user-1", json={"channel": "thread-1", "guild": "g"})
        assert resp.status_code == 200
        created = resp.json()
        assert created["active"] is True
        assert created["thread"] == {"channel": "thread-1", "guild": "g"}
        assert len(created["suggestions"]) == 3

        # Creating again returns the running conversation.
        again = client.post("/v1/conversations/user-1", json={"channel": "thread-1"})
        assert again.json()["id"] == created["id"]

        resp = client.post(
            "/v1/conversations/user-1/messages",
            json={"text": "Hi!", "channel": "thread-1"},
        )
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        events = _events(resp.text)
        names = [name for name, _ in events]
        assert "progress" in names
        assert names[-1] == "done"
        done = events[-1][1]
        assert done["message"]["text"] == "Hello from upstream"
        assert [s["text"] for s in done["message"]["suggestions"]] == [
            "Ask about the weather",
            "Tell me a joke",
        ]
        assert done["tries"] == 1

        # The cooldown is still running.
        resp = client.post("/v1/conversations/user-1/messages", json={"text": "More?"})
        assert resp.status_code == 429
        assert resp.json()["detail"]["error"] == "too_many_requests"

        state = client.get("/v1/conversations/user-1").json()
        assert state["history"] == 1
        assert state["count"] == 1
        assert state["cooldown_remaining"] > 0

        sessions = client.get("/v1/sessions").json()
        assert len(sessions) == 2
        assert sum(s["conversations"] for s in sessions) == 1
        assert sum(s["count"] for s in sessions) == 1

        assert client.delete("/v1/conversations/user-1", params={"soft": "true"}).status_code == 204
        resp = client.get("/v1/conversations/user-1")
        assert resp.status_code == 404
        assert resp.json()["detail"]["error"] == "not_found"


def test_unknown_conversation_returns_404():
    with _client() as client:
        assert client.get("/v1/conversations/nobody").status_code == 404
        assert client.delete("/v1/conversations/nobody").status_code == 404


def test_empty_pool_returns_503():
    with _client(credentials="") as client:
        resp = client.post("/v1/conversations/user-1", json={"channel": "thread-1"})

    assert resp.status_code == 503
    assert resp.json()["detail"]["details"] == {"type": "no_free_sessions"}


def test_message_errors_are_streamed():
    with _client(credentials="") as client:
        resp = client.post("/v1/conversations/user-1/messages", json={"text": "Hi!"})

    events = _events(resp.text)
    assert events[-1][0] == "error"
    assert events[-1][1]["code"] == 503
