import hashlib
import json
from collections import Counter

import httpx
import pytest

from chatrelay.conversation.exceptions import GenerationError, GenerationErrorType
from chatrelay.conversation.manager import ConversationManager
from chatrelay.conversation.session import SessionState, StopState
from chatrelay.storage.record_store import RecordStore
from chatrelay.upstream.openai_client import UpstreamClient
from conftest import DummyRedis, make_manager, make_settings, start_conversation


class FlakyRedis(DummyRedis):
    """Fails reads for one key, like a broken connection for that request."""

    def __init__(self, failing_key: str) -> None:
        super().__init__()
        self.failing_key = failing_key

    async def get(self, key: str):
        if key == self.failing_key:
            raise ConnectionError("redis unavailable")
        return await super().get(key)


@pytest.mark.asyncio
async def test_setup_creates_one_session_per_credential():
    redis = DummyRedis()
    disabled_id = hashlib.md5(b"tok-b").hexdigest()
    redis._data[f"relay:sessions:{disabled_id}"] = json.dumps({"active": False})
    manager = make_manager(redis=redis)

    count = await manager.setup(["tok-a", "tok-b", "tok-c"])

    assert count == 3
    assert manager.active
    assert manager.sessions[disabled_id].state == SessionState.DISABLED


@pytest.mark.asyncio
async def test_setup_tolerates_failing_status_check():
    failing_id = hashlib.md5(b"tok-b").hexdigest()
    manager = make_manager(redis=FlakyRedis(f"relay:sessions:{failing_id}"))

    count = await manager.setup(["tok-a", "tok-b"])

    assert count == 2
    assert manager.active


@pytest.mark.asyncio
async def test_create_is_idempotent_while_active():
    manager = make_manager()
    await manager.setup(["tok-a"])

    conversation = await start_conversation(manager, "user-1")
    again = await manager.create("user-1")

    assert again is conversation
    assert manager.has("user-1")
    assert manager.get("user-1") is conversation
    assert manager.get("someone-else") is None


@pytest.mark.asyncio
async def test_fresh_pool_selects_sessions_evenly():
    manager = make_manager()
    await manager.setup(["tok-a", "tok-b"])

    picks = Counter()
    for _ in range(1000):
        picks[(await manager.session()).id] += 1

    assert set(picks) == set(manager.sessions)
    for count in picks.values():
        assert 400 <= count <= 600


@pytest.mark.asyncio
async def test_loaded_pool_picks_last_of_descending_list():
    manager = make_manager()
    await manager.setup(["tok-a", "tok-b"])
    busy, idle = list(manager.sessions.values())

    conversation = await manager.create("user-1")
    conversation.session = busy
    await busy.init()
    await conversation.init()

    free = await manager.free_sessions()
    assert [session.id for session in free] == [busy.id, idle.id]
    assert manager.load(busy) == 1
    assert manager.load(idle) == 0

    for _ in range(20):
        assert (await manager.session()).id == idle.id


@pytest.mark.asyncio
async def test_free_sessions_skip_locked_and_disabled():
    manager = make_manager()
    await manager.setup(["tok-a", "tok-b", "tok-c"])
    a, b, c = list(manager.sessions.values())

    b.locked = True
    await c.stop(StopState.PERMANENT)

    assert [session.id for session in await manager.free_sessions()] == [a.id]


@pytest.mark.asyncio
async def test_no_usable_session_raises_no_free_sessions():
    manager = make_manager()
    await manager.setup(["tok-a"])
    await next(iter(manager.sessions.values())).stop(StopState.PERMANENT)

    with pytest.raises(GenerationError) as excinfo:
        await manager.session()
    assert excinfo.value.type == GenerationErrorType.NO_FREE_SESSIONS

    with pytest.raises(GenerationError):
        await manager.session([])


@pytest.mark.asyncio
async def test_stop_clears_pool():
    manager = make_manager()
    await manager.setup(["tok-a", "tok-b"])
    for session in manager.sessions.values():
        await session.init()

    await manager.stop()

    assert manager.sessions == {}
    assert not manager.active


def test_manager_requires_http_client_or_factory():
    with pytest.raises(ValueError):
        ConversationManager(RecordStore(DummyRedis()), settings=make_settings())


@pytest.mark.asyncio
async def test_sessions_use_shared_http_client_without_factory():
    settings = make_settings()
    async with httpx.AsyncClient() as http:
        manager = ConversationManager(RecordStore(DummyRedis()), http, settings=settings)
        await manager.setup(["tok-a"])

        (session,) = manager.sessions.values()
        assert isinstance(session.client, UpstreamClient)
        assert session.client.http is http
