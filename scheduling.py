"""Host event-loop scheduling: Qt scheduler and a cancellable periodic task."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from interfaces import Scheduler, TimerHandle

try:
    from PySide6.QtCore import QObject, Qt, QTimer, Signal
except Exception:  # pragma: no cover
    QObject = None  # type: ignore
    Qt = None  # type: ignore
    QTimer = None  # type: ignore
    Signal = None  # type: ignore

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs ``callback`` every ``interval_s`` on the scheduler.

    The callback returns False to stop. The task keeps a single pending tick
    and checks its cancellation flag before rescheduling, so ``cancel()``
    takes effect synchronously.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        interval_s: float,
        callback: Callable[[], bool],
    ) -> None:
        self._scheduler = scheduler
        self._interval_s = interval_s
        self._callback = callback
        self._handle: Optional[TimerHandle] = None
        self._cancelled = False
        self._started = False

    @property
    def running(self) -> bool:
        return self._started and not self._cancelled

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._handle = self._scheduler.call_later(0.0, self._tick)

    def cancel(self) -> None:
        self._cancelled = True
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.cancel()

    def _tick(self) -> None:
        self._handle = None
        if self._cancelled:
            return
        keep_going = self._callback()
        if self._cancelled or not keep_going:
            self._cancelled = True
            return
        self._handle = self._scheduler.call_later(self._interval_s, self._tick)


class _QtTimerHandle:
    def __init__(self, timer: object) -> None:
        self._timer = timer

    def cancel(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.stop()
            timer.deleteLater()

    def _fire(self, callback: Callable[[], None]) -> None:
        if self._timer is None:
            return
        self.cancel()
        _run_logged(callback)


def _run_logged(callback: Callable[[], None]) -> None:
    try:
        callback()
    except Exception:
        logger.exception("Scheduled callback failed")


def _make_invoker() -> object:
    class _Invoker(QObject):
        invoke = Signal(object)

        def __init__(self) -> None:
            super().__init__()
            self.invoke.connect(self._run, Qt.QueuedConnection)

        def _run(self, callback: Callable[[], None]) -> None:
            _run_logged(callback)

    return _Invoker()


class QtScheduler:
    """Scheduler backed by the Qt event loop of the thread that creates it."""

    def __init__(self) -> None:
        if QObject is None:
            raise RuntimeError("PySide6 is not installed")
        self._invoker = _make_invoker()

    def call_soon(self, callback: Callable[[], None]) -> None:
        # Queued signal delivery hops onto the invoker's thread.
        self._invoker.invoke.emit(callback)

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle:
        timer = QTimer(self._invoker)
        timer.setSingleShot(True)
        handle = _QtTimerHandle(timer)
        timer.timeout.connect(lambda: handle._fire(callback))
        timer.start(max(0, int(delay_s * 1000)))
        return handle
