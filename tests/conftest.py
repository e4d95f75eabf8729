"""
Shared pytest configuration.

This file ensures the project root is on sys.path so that `import chatrelay`
works consistently in all tests, and provides the in-memory doubles used
across the suite.
"""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional


# Ensure project root is importable for test modules.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import pytest  # noqa: E402

from chatrelay.conversation.manager import ConversationManager  # noqa: E402
from chatrelay.models import CompletionChoice, CompletionData, ThreadBinding  # noqa: E402
from chatrelay.settings import Settings  # noqa: E402
from chatrelay.storage.record_store import RecordStore  # noqa: E402
from chatrelay.utils import maybe_await  # noqa: E402


class DummyRedis:
    """
    Minimal Redis replacement supporting the commands used by the record store.
    """

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}

    async def get(self, key: str):
        return self._data.get(key)

    async def set(self, key: str, value: str):
        self._data[key] = value

    async def delete(self, key: str):
        self._data.pop(key, None)


class FakeUpstreamClient:
    """
    Stand-in for UpstreamClient.

    Main completions pop entries from `replies` (a string is returned as the
    completion text, an exception is raised); once exhausted `default` is
    used. Search-query and suggestion completions are answered with
    `queries` / `suggestions`.
    """

    def __init__(self, replies: Optional[List[Any]] = None, *, default: str = "Hello there!") -> None:
        self.token: Optional[str] = None
        self.replies: List[Any] = list(replies or [])
        self.default = default
        self.queries = "N"
        self.suggestions = "Tell me more|Why is that?"
        self.calls: List[Dict[str, Any]] = []
        self.moderation: Dict[str, Any] = {"results": []}

    @property
    def main_calls(self) -> List[Dict[str, Any]]:
        return [body for body in self.calls if body["stop"] != ["\n"]]

    async def setup(self, token: str) -> None:
        self.token = token

    async def complete(self, body: Dict[str, Any], progress=None) -> CompletionData:
        self.calls.append(body)

        if body["stop"] == ["\n"]:
            text = self.queries if body["prompt"].endswith("Queries: ") else self.suggestions
            return CompletionData(response=CompletionChoice(text=text, finish_reason="stop"))

        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, BaseException):
            raise reply

        data = CompletionData(response=CompletionChoice(text=reply, finish_reason="stop"))
        if progress is not None:
            await maybe_await(progress(data))
        return data

    async def moderate(self, text: str) -> Dict[str, Any]:
        return self.moderation


class RecordingPlatform:
    def __init__(self) -> None:
        self.archived: List[Any] = []
        self.notices: List[Any] = []

    async def archive_thread(self, thread, reason: str) -> None:
        self.archived.append((thread, reason))

    async def send_reset_notice(self, conversation, inactive: bool) -> None:
        self.notices.append((conversation.user, inactive))


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "generation_retry_delay_seconds": 0,
        "generation_max_tries": 3,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_manager(
    settings: Optional[Settings] = None,
    *,
    redis: Optional[DummyRedis] = None,
    clients: Optional[Dict[str, FakeUpstreamClient]] = None,
    **kwargs: Any,
) -> ConversationManager:
    clients = clients if clients is not None else {}
    store = RecordStore(redis or DummyRedis())
    return ConversationManager(
        store,
        settings=settings or make_settings(),
        client_factory=lambda token: clients.setdefault(token, FakeUpstreamClient()),
        **kwargs,
    )


async def start_conversation(manager: ConversationManager, user: str = "user-1", channel: str = "thread-1"):
    conversation = await manager.create(user)
    if not conversation.session.active:
        await conversation.session.init()
    await conversation.init(ThreadBinding(channel=channel, guild="guild-1"))
    return conversation


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def redis() -> DummyRedis:
    return DummyRedis()
