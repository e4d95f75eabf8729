from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

from .signals import Signal


@dataclass
class CooldownState:
    active: bool = False
    started_at: Optional[float] = None
    expires_in: Optional[float] = None


class Cooldown:
    """
    Per-conversation throttle: a timed flag which emits `done` when it
    expires or is cancelled.
    """

    def __init__(self, time: float) -> None:
        self.time = time
        self.state = CooldownState()
        self.done = Signal("cooldown.done")
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def active(self) -> bool:
        return self.state.active

    @property
    def expires_at(self) -> Optional[float]:
        if not self.state.active or self.state.started_at is None or self.state.expires_in is None:
            return None
        return self.state.started_at + self.state.expires_in

    @property
    def remaining(self) -> float:
        expires_at = self.expires_at
        if expires_at is None:
            return 0.0
        return max(expires_at - time.time(), 0.0)

    def use(self, time_override: Optional[float] = None) -> float:
        """
        Activate the cooldown, replacing a running one.
        Returns the window length in seconds.
        """
        expires_in = self.time if time_override is None else time_override

        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(expires_in, self._expire)

        self.state = CooldownState(active=True, started_at=time.time(), expires_in=expires_in)
        return expires_in

    def cancel(self) -> bool:
        """
        Stop a running cooldown. Emits `done` just like a natural expiry.
        Returns whether a cooldown was stopped.
        """
        if not self.state.active:
            return False

        self.state = CooldownState()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        self.done.emit()
        return True

    def _expire(self) -> None:
        self._timer = None
        self.state = CooldownState()
        self.done.emit()


__all__ = ["Cooldown", "CooldownState"]
