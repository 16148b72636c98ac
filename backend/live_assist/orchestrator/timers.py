from __future__ import annotations

import asyncio
import logging
from typing import Callable

logger = logging.getLogger("orchestrator.timers")


class DeferredAction:
    """
    A named, cancelable callback scheduled on the running loop.
    Arming an armed action restarts its countdown.
    """

    def __init__(self, name: str, delay_sec: float, callback: Callable[[], None]):
        self.name = name
        self.delay_sec = float(delay_sec)
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self, delay_sec: float | None = None) -> None:
        self.disarm()
        loop = asyncio.get_running_loop()
        delay = self.delay_sec if delay_sec is None else float(delay_sec)
        self._handle = loop.call_later(max(0.0, delay), self._fire)

    def disarm(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        try:
            self._callback()
        except Exception:
            logger.exception("Deferred action %s failed", self.name)


class TimerSet:
    def __init__(self):
        self._actions: dict[str, DeferredAction] = {}

    def add(self, name: str, delay_sec: float, callback: Callable[[], None]) -> DeferredAction:
        action = DeferredAction(name, delay_sec, callback)
        self._actions[name] = action
        return action

    def get(self, name: str) -> DeferredAction:
        return self._actions[name]

    def pending(self) -> list[str]:
        return sorted(name for name, action in self._actions.items() if action.armed)

    def cancel_all(self) -> None:
        for action in self._actions.values():
            action.disarm()
