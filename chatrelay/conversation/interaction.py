from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from chatrelay.models import ChatResponse, HistoryEntry


@dataclass
class Interaction:
    """One prompt / response pair of a conversation."""

    input: str
    output: ChatResponse
    # Inbound event which caused this interaction, if any.
    trigger: Any = None
    # Rendered reply on the messaging platform; set after the fact.
    reply: Any = None
    time: float = field(default_factory=time.time)

    def to_history(self) -> HistoryEntry:
        return HistoryEntry(input=self.input, output=self.output.message.text)


@dataclass
class GeneratedInteraction(Interaction):
    tries: int = 1


__all__ = ["Interaction", "GeneratedInteraction"]
