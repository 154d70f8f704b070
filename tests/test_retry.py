from __future__ import annotations

from models import RetrySchedule
from retry import RetryController


def test_retry_fires_once_after_delay(scheduler) -> None:  # noqa: ANN001
    retry = RetryController(scheduler)
    calls: list[int] = []

    retry.schedule(1000, lambda: calls.append(1))
    assert retry.pending is True
    assert retry.schedule_state == RetrySchedule(pending=True, delay_ms=1000, attempts=1)

    scheduler.advance(0.999)
    assert calls == []

    scheduler.advance(0.001)
    assert calls == [1]
    assert retry.pending is False

    scheduler.advance(5.0)
    assert calls == [1]


def test_new_schedule_supersedes_pending_one(scheduler) -> None:  # noqa: ANN001
    retry = RetryController(scheduler)
    calls: list[str] = []

    retry.schedule(500, lambda: calls.append("first"))
    retry.schedule(500, lambda: calls.append("second"))
    scheduler.advance(1.0)

    assert calls == ["second"]
    assert retry.attempts == 2


def test_cancel_prevents_firing(scheduler) -> None:  # noqa: ANN001
    retry = RetryController(scheduler)
    calls: list[int] = []

    retry.schedule(100, lambda: calls.append(1))
    retry.cancel()
    retry.cancel()  # no-op
    scheduler.advance(1.0)

    assert calls == []
    assert retry.pending is False
    assert scheduler.pending_timers == 0


def test_reset_clears_attempts(scheduler) -> None:  # noqa: ANN001
    retry = RetryController(scheduler)
    retry.schedule(100, lambda: None)
    scheduler.advance(0.1)
    assert retry.attempts == 1

    retry.reset()
    assert retry.schedule_state == RetrySchedule()
