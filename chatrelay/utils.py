from __future__ import annotations

import inspect
import random
from typing import Any, List, Sequence, TypeVar

T = TypeVar("T")


async def maybe_await(result: Any) -> Any:
    """Await `result` when a callback returned an awaitable."""
    if inspect.isawaitable(result):
        return await result
    return result


def shuffled(items: Sequence[T]) -> List[T]:
    copy = list(items)
    random.shuffle(copy)
    return copy


__all__ = ["maybe_await", "shuffled"]
