"""End-to-end capture: real DashscopeRecognitionAdapter driven by the state machine."""

from __future__ import annotations

import threading
import time
from queue import Queue
from typing import Callable
from unittest.mock import MagicMock, patch

import numpy as np

from level_monitor import AudioLevelMonitor
from models import AudioConstraints, AudioFrame, CaptureOptions, CaptureState
from recognizer import DashscopeRecognitionAdapter
from state_machine import VoiceCaptureStateMachine


def _loud_frame() -> AudioFrame:
    return AudioFrame(pcm16_bytes=np.full(1600, 3000, dtype=np.int16).tobytes())


def _chunk(text: str) -> dict:
    return {"output": {"choices": [{"message": {"content": [{"text": text}]}}]}}


class FakeRecorder:
    """Delivers one second of speech, then end-of-stream on stop."""

    def __init__(self) -> None:
        self.queue: Queue[AudioFrame | None] | None = None

    def start(self, audio_queue: Queue[AudioFrame | None]) -> None:
        self.queue = audio_queue
        for _ in range(10):
            audio_queue.put(_loud_frame())

    def stop(self) -> None:
        if self.queue is not None:
            self.queue.put(None)


class FakeStream:
    def latest(self, n_samples: int) -> np.ndarray:
        return np.zeros(n_samples)

    def close(self) -> None:
        pass


class FakeMicrophone:
    def open(self, constraints: AudioConstraints) -> FakeStream:
        return FakeStream()


def _pump_until(scheduler, predicate: Callable[[], bool], timeout: float = 3.0) -> bool:  # noqa: ANN001
    """Run callbacks posted by the worker thread until ``predicate`` holds."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        scheduler.run_pending()
        if predicate():
            return True
        time.sleep(0.01)
    return False


def _build(scheduler, adapter: DashscopeRecognitionAdapter, grace_window_ms: int):  # noqa: ANN001, ANN202
    voice_inputs: list[str] = []
    machine = VoiceCaptureStateMachine(
        adapter=adapter,
        monitor=AudioLevelMonitor(FakeMicrophone()),
        scheduler=scheduler,
        options=CaptureOptions(show_confirmation=False, grace_window_ms=grace_window_ms),
        on_voice_input=voice_inputs.append,
    )
    return machine, voice_inputs


def _listen(scheduler, machine: VoiceCaptureStateMachine) -> None:  # noqa: ANN001
    assert machine.request_start() is True
    assert _pump_until(scheduler, lambda: machine.state == CaptureState.LISTENING)


@patch("recognizer.dashscope")
def test_trailing_utterance_recognised_after_stop_is_delivered(mock_ds: MagicMock, scheduler) -> None:  # noqa: ANN001
    def slow_response(**_: object):
        time.sleep(0.3)
        return iter([_chunk("hello"), _chunk("hello world")])

    mock_ds.MultiModalConversation.call.side_effect = slow_response

    adapter = DashscopeRecognitionAdapter(api_key="test-key", recorder=FakeRecorder())
    machine, voice_inputs = _build(scheduler, adapter, adapter.flush_budget_ms)
    _listen(scheduler, machine)

    assert machine.request_stop() is True
    assert machine.state == CaptureState.PROCESSING

    # The manual clock never moves: only the adapter's end finishes the stop.
    assert _pump_until(scheduler, lambda: bool(voice_inputs))
    assert voice_inputs == ["hello world"]
    assert machine.state == CaptureState.IDLE
    assert scheduler.pending_timers == 0
    assert mock_ds.MultiModalConversation.call.call_count == 1


@patch("recognizer.dashscope")
def test_grace_window_caps_a_stalled_flush(mock_ds: MagicMock, scheduler) -> None:  # noqa: ANN001
    release = threading.Event()

    def stalled_response(**_: object):
        release.wait(timeout=3.0)
        return iter([_chunk("too late")])

    mock_ds.MultiModalConversation.call.side_effect = stalled_response

    adapter = DashscopeRecognitionAdapter(api_key="test-key", recorder=FakeRecorder())
    machine, voice_inputs = _build(scheduler, adapter, 150)
    _listen(scheduler, machine)

    machine.request_stop()
    scheduler.advance(0.15)
    assert machine.state == CaptureState.IDLE
    assert voice_inputs == []

    release.set()
    adapter._thread.join(timeout=3.0)
    scheduler.run_pending()

    assert voice_inputs == []
    assert machine.transcript.is_empty
