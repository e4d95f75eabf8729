import asyncio
import logging

import pytest

from chatrelay.conversation.cooldown import Cooldown
from chatrelay.conversation.signals import Signal


@pytest.mark.asyncio
async def test_use_activates_and_expires_with_single_done():
    cooldown = Cooldown(0.05)
    emitted = []
    cooldown.done.connect(lambda: emitted.append(True))

    assert cooldown.use() == 0.05
    assert cooldown.active
    assert 0 < cooldown.remaining <= 0.05

    await asyncio.wait_for(cooldown.done.wait(), timeout=1)
    await asyncio.sleep(0.05)

    assert not cooldown.active
    assert cooldown.remaining == 0
    assert emitted == [True]


@pytest.mark.asyncio
async def test_use_replaces_running_timer():
    cooldown = Cooldown(0.05)
    emitted = []
    cooldown.done.connect(lambda: emitted.append(True))

    cooldown.use()
    await asyncio.sleep(0.02)
    cooldown.use(0.08)
    await asyncio.sleep(0.05)

    # The first timer would have fired by now.
    assert cooldown.active
    assert emitted == []

    await asyncio.sleep(0.1)
    assert not cooldown.active
    assert emitted == [True]


@pytest.mark.asyncio
async def test_cancel_emits_done_only_when_active():
    cooldown = Cooldown(10)
    emitted = []
    cooldown.done.connect(lambda: emitted.append(True))

    assert cooldown.cancel() is False
    assert emitted == []

    cooldown.use()
    assert cooldown.cancel() is True
    assert not cooldown.active
    assert emitted == [True]


@pytest.mark.asyncio
async def test_signal_once_listeners_and_waiters():
    signal = Signal("test")
    always, once = [], []
    signal.connect(lambda: always.append(1))
    signal.once(lambda: once.append(1))

    waiter = asyncio.ensure_future(signal.wait())
    await asyncio.sleep(0)
    assert signal.listener_count == 3

    signal.emit()
    await asyncio.wait_for(waiter, timeout=1)
    signal.emit()

    assert always == [1, 1]
    assert once == [1]
    assert signal.listener_count == 1


@pytest.mark.asyncio
async def test_signal_runs_coroutine_listeners():
    signal = Signal("test")
    seen = []

    async def listener():
        seen.append("ran")

    signal.once(listener)
    signal.emit()
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert seen == ["ran"]


@pytest.mark.asyncio
async def test_signal_logs_failing_coroutine_listener(caplog):
    signal = Signal("retract")

    async def listener():
        raise RuntimeError("retract failed")

    signal.once(listener)
    with caplog.at_level(logging.ERROR, logger="chatrelay"):
        signal.emit()
        await asyncio.sleep(0)
        await asyncio.sleep(0)

    failures = [r for r in caplog.records if "async listener failed" in r.getMessage()]
    assert len(failures) == 1
    assert isinstance(failures[0].exc_info[1], RuntimeError)
