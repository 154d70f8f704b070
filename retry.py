"""Delayed re-attempts after recoverable capture errors."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from interfaces import Scheduler, TimerHandle
from models import RetrySchedule

logger = logging.getLogger(__name__)


class RetryController:
    """Holds at most one pending retry.

    A new ``schedule`` call supersedes the pending one. Firing invokes the
    callback once and never reschedules on its own.
    """

    def __init__(self, scheduler: Scheduler) -> None:
        self._scheduler = scheduler
        self._handle: Optional[TimerHandle] = None
        self._delay_ms = 0
        self._attempts = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def schedule_state(self) -> RetrySchedule:
        return RetrySchedule(
            pending=self.pending,
            delay_ms=self._delay_ms if self.pending else 0,
            attempts=self._attempts,
        )

    def schedule(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        self.cancel()
        delay_ms = max(0, int(delay_ms))
        self._attempts += 1
        self._delay_ms = delay_ms
        logger.debug(f"Retry #{self._attempts} scheduled in {delay_ms} ms")

        handle: Optional[TimerHandle] = None

        def _fire() -> None:
            if self._handle is not handle:
                return
            self._handle = None
            self._delay_ms = 0
            callback()

        handle = self._scheduler.call_later(delay_ms / 1000.0, _fire)
        self._handle = handle
        return handle

    def cancel(self) -> None:
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        self._delay_ms = 0
        handle.cancel()
        logger.debug("Pending retry cancelled")

    def reset(self) -> None:
        self.cancel()
        self._attempts = 0
