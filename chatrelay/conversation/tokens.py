from __future__ import annotations

import math
from typing import Callable, Optional

TokenCounter = Callable[[str], int]

# Rough estimate: 1 token ~ 4 characters of English text.
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class TokenBudget:
    """Measures prompt length in model tokens against a maximum."""

    def __init__(self, max_tokens: int, counter: Optional[TokenCounter] = None) -> None:
        self.max_tokens = max_tokens
        self._counter = counter or estimate_tokens

    def count(self, text: str) -> int:
        return self._counter(text)

    def acceptable(self, text: str, max_tokens: Optional[int] = None) -> bool:
        limit = self.max_tokens if max_tokens is None else max_tokens
        return self.count(text) < limit


__all__ = ["CHARS_PER_TOKEN", "TokenCounter", "TokenBudget", "estimate_tokens"]
