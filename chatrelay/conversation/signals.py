from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, List, Set, Tuple

from chatrelay.logging_config import logger

Listener = Callable[[], Any]


class Signal:
    """
    Minimal "done"-style notification.

    Listeners registered with `connect()` run on every emit, those added
    with `once()` only on the next one. `wait()` suspends until the next
    emit.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: List[Tuple[Listener, bool]] = []
        self._waiters: List[asyncio.Future] = []
        self._tasks: Set[asyncio.Future] = set()

    def connect(self, listener: Listener) -> None:
        self._listeners.append((listener, False))

    def once(self, listener: Listener) -> None:
        self._listeners.append((listener, True))

    async def wait(self) -> None:
        future = asyncio.get_running_loop().create_future()
        self._waiters.append(future)
        try:
            await future
        finally:
            if future in self._waiters:
                self._waiters.remove(future)

    def emit(self) -> None:
        listeners, self._listeners = self._listeners, [
            (fn, one) for fn, one in self._listeners if not one
        ]
        waiters, self._waiters = self._waiters, []

        for future in waiters:
            if not future.done():
                future.set_result(None)

        for listener, _ in listeners:
            try:
                result = listener()
            except Exception:
                logger.exception("signal %s: listener %r failed", self.name, listener)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._listener_done)

    def _listener_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("signal %s: async listener failed", self.name, exc_info=exc)

    @property
    def listener_count(self) -> int:
        return len(self._listeners) + len(self._waiters)


__all__ = ["Signal"]
