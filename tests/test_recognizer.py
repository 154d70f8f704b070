"""Tests for DashscopeRecognitionAdapter."""

from __future__ import annotations

import base64
import threading
from queue import Queue
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from models import AudioFrame
from recognizer import DashscopeRecognitionAdapter, _pcm_rms, _pcm_to_wav_base64


# ---------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------

def _make_frame(amplitude: int = 0, n_samples: int = 1600) -> AudioFrame:
    """100 ms of constant-amplitude PCM at 16 kHz."""
    return AudioFrame(
        pcm16_bytes=np.full(n_samples, amplitude, dtype=np.int16).tobytes(),
        sample_rate=16000,
        channels=1,
        timestamp_ms=0,
    )


class FakeRecorder:
    def __init__(self, frames: list[AudioFrame] | None = None, error: Exception | None = None) -> None:
        self.frames = frames or []
        self.error = error
        self.started = 0
        self.stopped = 0
        self.queue: Queue[AudioFrame | None] | None = None

    def start(self, audio_queue: Queue[AudioFrame | None]) -> None:
        if self.error is not None:
            raise self.error
        self.started += 1
        self.queue = audio_queue
        for frame in self.frames:
            audio_queue.put(frame)

    def stop(self) -> None:
        self.stopped += 1
        if self.queue is not None:
            self.queue.put(None)


class Events:
    def __init__(self) -> None:
        self.items: list[tuple] = []
        self.ended = threading.Event()

    def callbacks(self) -> dict:
        return {
            "on_interim": lambda text: self.items.append(("interim", text)),
            "on_final": lambda text: self.items.append(("final", text)),
            "on_start": lambda: self.items.append(("start",)),
            "on_end": self._on_end,
            "on_error": lambda code, message, recoverable: self.items.append(
                ("error", code, message, recoverable)
            ),
        }

    def _on_end(self) -> None:
        self.items.append(("end",))
        self.ended.set()

    def of(self, kind: str) -> list[tuple]:
        return [item for item in self.items if item[0] == kind]


def _chunk(text: str) -> dict:
    return {"output": {"choices": [{"message": {"content": [{"text": text}]}}]}}


def _fake_streaming_response(**_: object):
    yield _chunk("hello")
    yield _chunk("hello world")


def _run(adapter: DashscopeRecognitionAdapter) -> Events:
    events = Events()
    assert adapter.start(**events.callbacks()) is True
    adapter.stop()
    assert events.ended.wait(timeout=3.0)
    return events


SPEECH = [_make_frame(3000)] * 3
SILENCE = [_make_frame(0)] * 8


# ---------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------

def test_pcm_to_wav_base64_produces_valid_base64() -> None:
    pcm = b"\x00\x00" * 1600  # 100ms of silence at 16kHz
    result = _pcm_to_wav_base64(pcm, sample_rate=16000, channels=1)

    decoded = base64.b64decode(result)
    assert decoded[:4] == b"RIFF"


def test_pcm_rms() -> None:
    assert _pcm_rms(b"") == 0.0
    assert _pcm_rms(_make_frame(0).pcm16_bytes) == 0.0
    assert _pcm_rms(_make_frame(3000).pcm16_bytes) == pytest.approx(3000.0)


# ---------------------------------------------------------------
# start() preconditions
# ---------------------------------------------------------------

@patch("recognizer.dashscope", None)
def test_start_fails_without_dashscope() -> None:
    recorder = FakeRecorder()
    adapter = DashscopeRecognitionAdapter(api_key="test-key", recorder=recorder)

    assert adapter.start(**Events().callbacks()) is False
    assert recorder.started == 0


@patch("recognizer.dashscope", MagicMock())
@patch.dict("os.environ", {"DASHSCOPE_API_KEY": ""}, clear=False)
def test_start_fails_without_api_key() -> None:
    recorder = FakeRecorder()
    adapter = DashscopeRecognitionAdapter(api_key="", recorder=recorder)

    assert adapter.start(**Events().callbacks()) is False
    assert recorder.started == 0


@patch("recognizer.dashscope", MagicMock())
def test_start_fails_when_recorder_fails() -> None:
    recorder = FakeRecorder(error=RuntimeError("sounddevice is not installed"))
    adapter = DashscopeRecognitionAdapter(api_key="test-key", recorder=recorder)

    assert adapter.start(**Events().callbacks()) is False


@patch("recognizer.dashscope", MagicMock())
def test_second_start_while_recording_is_rejected() -> None:
    recorder = FakeRecorder()
    adapter = DashscopeRecognitionAdapter(api_key="test-key", recorder=recorder)
    events = Events()

    assert adapter.start(**events.callbacks()) is True
    assert adapter.start(**Events().callbacks()) is False

    adapter.stop()
    adapter.stop()
    assert events.ended.wait(timeout=3.0)
    assert recorder.stopped == 1


# ---------------------------------------------------------------
# Streaming recognition
# ---------------------------------------------------------------

@patch("recognizer.dashscope")
def test_utterance_cut_on_silence_emits_interims_and_final(mock_ds: MagicMock) -> None:
    mock_ds.MultiModalConversation.call.side_effect = _fake_streaming_response

    recorder = FakeRecorder(SPEECH + SILENCE)
    events = _run(DashscopeRecognitionAdapter(api_key="test-key", recorder=recorder))

    assert events.items == [
        ("start",),
        ("interim", "hello"),
        ("interim", "hello world"),
        ("final", "hello world"),
        ("end",),
    ]
    assert mock_ds.MultiModalConversation.call.call_count == 1


@patch("recognizer.dashscope")
def test_two_utterances_give_two_finals(mock_ds: MagicMock) -> None:
    mock_ds.MultiModalConversation.call.side_effect = _fake_streaming_response

    recorder = FakeRecorder(SPEECH + SILENCE + SPEECH + SILENCE)
    events = _run(DashscopeRecognitionAdapter(api_key="test-key", recorder=recorder))

    assert events.of("final") == [("final", "hello world"), ("final", "hello world")]


@patch("recognizer.dashscope")
def test_trailing_utterance_is_flushed_on_stop(mock_ds: MagicMock) -> None:
    mock_ds.MultiModalConversation.call.side_effect = _fake_streaming_response

    recorder = FakeRecorder(SPEECH)
    events = _run(DashscopeRecognitionAdapter(api_key="test-key", recorder=recorder))

    assert events.of("final") == [("final", "hello world")]
    assert events.items[-1] == ("end",)


@patch("recognizer.dashscope")
def test_silence_only_never_calls_service(mock_ds: MagicMock) -> None:
    recorder = FakeRecorder(SILENCE)
    events = _run(DashscopeRecognitionAdapter(api_key="test-key", recorder=recorder))

    assert events.items == [("start",), ("end",)]
    mock_ds.MultiModalConversation.call.assert_not_called()


@patch("recognizer.dashscope")
def test_blank_result_is_not_reported_as_final(mock_ds: MagicMock) -> None:
    mock_ds.MultiModalConversation.call.return_value = iter([_chunk("")])

    recorder = FakeRecorder(SPEECH)
    events = _run(DashscopeRecognitionAdapter(api_key="test-key", recorder=recorder))

    assert events.of("final") == []
    assert events.of("error") == []


# ---------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------

@patch("recognizer.dashscope")
def test_network_error_maps_correctly(mock_ds: MagicMock) -> None:
    mock_ds.MultiModalConversation.call.side_effect = ConnectionError("network timeout")

    recorder = FakeRecorder(SPEECH)
    events = _run(DashscopeRecognitionAdapter(api_key="test-key", recorder=recorder))

    errors = events.of("error")
    assert len(errors) == 1
    assert errors[0][1] == "NETWORK_ERROR"
    assert errors[0][3] is True
    assert events.items[-1] == ("end",)


@patch("recognizer.dashscope")
def test_auth_error_maps_correctly(mock_ds: MagicMock) -> None:
    mock_ds.MultiModalConversation.call.side_effect = Exception("401 Unauthorized: invalid api key")

    recorder = FakeRecorder(SPEECH)
    events = _run(DashscopeRecognitionAdapter(api_key="bad-key", recorder=recorder))

    errors = events.of("error")
    assert len(errors) == 1
    assert errors[0][1] == "AUTH_FAILED"
    assert errors[0][3] is False


@patch("recognizer.dashscope")
def test_error_mid_stream_stops_segment_loop(mock_ds: MagicMock) -> None:
    def broken_stream(**_: object):
        yield _chunk("hel")
        raise RuntimeError("bad chunk")

    mock_ds.MultiModalConversation.call.side_effect = broken_stream

    recorder = FakeRecorder(SPEECH + SILENCE + SPEECH + SILENCE)
    events = _run(DashscopeRecognitionAdapter(api_key="test-key", recorder=recorder))

    assert events.of("interim") == [("interim", "hel")]
    assert [e[1] for e in events.of("error")] == ["ASR_PROTOCOL_ERROR"]
    assert mock_ds.MultiModalConversation.call.call_count == 1


def test_flush_budget_covers_request_timeout() -> None:
    adapter = DashscopeRecognitionAdapter(
        api_key="test-key", recorder=FakeRecorder(), request_timeout_s=2.0
    )

    assert adapter.flush_budget_ms == 2500
