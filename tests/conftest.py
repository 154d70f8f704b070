"""Shared fixtures: a manual-clock scheduler for deterministic timing."""

from __future__ import annotations

from collections import deque
from typing import Callable

import pytest


class ManualTimer:
    def __init__(self, when: float, seq: int, callback: Callable[[], None]) -> None:
        self.when = when
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose clock only moves when the test calls ``advance``."""

    def __init__(self) -> None:
        self.now = 0.0
        self._seq = 0
        self._soon: deque[Callable[[], None]] = deque()
        self._timers: list[ManualTimer] = []

    def call_soon(self, callback: Callable[[], None]) -> None:
        self._soon.append(callback)

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> ManualTimer:
        self._seq += 1
        timer = ManualTimer(self.now + max(0.0, delay_s), self._seq, callback)
        self._timers.append(timer)
        return timer

    @property
    def pending_timers(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled)

    def run_pending(self) -> None:
        while self._soon:
            self._soon.popleft()()

    def advance(self, seconds: float = 0.0) -> None:
        target = self.now + seconds
        self.run_pending()
        while True:
            due = [t for t in self._timers if not t.cancelled and t.when <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: (t.when, t.seq))
            self._timers.remove(timer)
            self.now = max(self.now, timer.when)
            timer.callback()
            self.run_pending()
        self._timers = [t for t in self._timers if not t.cancelled]
        self.now = target


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()
