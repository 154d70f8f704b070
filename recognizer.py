"""Recognition adapter using DashScope qwen3-asr-flash.

qwen3-asr-flash accepts complete audio and streams back recognition results
via ``stream=True``. For continuous dictation the adapter records PCM from
the microphone, cuts it into utterances on silence, and sends each utterance
as base64 WAV. Streamed chunks are reported as interim text and the last one
as a final fragment. ``stop()`` ends recording; the trailing utterance is
still recognised and delivered before ``on_end``.
"""

from __future__ import annotations

import base64
import io
import logging
import os
import threading
import wave
from dataclasses import dataclass
from queue import Empty, Queue
from typing import Optional

import numpy as np

from errors import ASR_PROTOCOL_ERROR, AUTH_FAILED, NETWORK_ERROR, PERMISSION_DENIED
from interfaces import (
    AdapterErrorCallback,
    EndCallback,
    FinalCallback,
    InterimCallback,
    Recorder,
    StartCallback,
)
from models import AudioFrame
from recorder import SoundDeviceRecorder

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

logger = logging.getLogger(__name__)

_PREROLL_MS = 300
_FLUSH_MARGIN_MS = 500


def _pcm_to_wav_base64(
    pcm: bytes,
    sample_rate: int = 16000,
    channels: int = 1,
    sample_width: int = 2,
) -> str:
    """Convert raw PCM bytes to a base64-encoded WAV string."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return base64.b64encode(buf.getvalue()).decode("ascii")


def _pcm_rms(pcm: bytes) -> float:
    samples = np.frombuffer(pcm[: len(pcm) - len(pcm) % 2], dtype=np.int16)
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(samples.astype(np.float64) ** 2)))


@dataclass
class _Callbacks:
    on_interim: InterimCallback
    on_final: FinalCallback
    on_start: StartCallback
    on_end: EndCallback
    on_error: AdapterErrorCallback


class DashscopeRecognitionAdapter:
    def __init__(
        self,
        api_key: str,
        recorder: Optional[Recorder] = None,
        model: str = "qwen3-asr-flash",
        request_timeout_s: float = 10.0,
        silence_rms: float = 500.0,
        silence_ms: int = 700,
        max_segment_s: float = 15.0,
        queue_maxsize: int = 200,
    ) -> None:
        self._api_key = api_key
        self._recorder = recorder or SoundDeviceRecorder()
        self._model = model
        self._request_timeout_s = request_timeout_s
        self._silence_rms = silence_rms
        self._silence_ms = silence_ms
        self._max_segment_s = max_segment_s
        self._queue_maxsize = queue_maxsize
        self._lock = threading.Lock()
        self._recording = False
        self._thread: Optional[threading.Thread] = None

    def start(
        self,
        on_interim: InterimCallback,
        on_final: FinalCallback,
        on_start: StartCallback,
        on_end: EndCallback,
        on_error: AdapterErrorCallback,
    ) -> bool:
        with self._lock:
            if self._recording:
                logger.warning("Recognition already running")
                return False
            if dashscope is None:
                logger.error("dashscope is not installed")
                return False
            if not self._resolve_api_key():
                logger.error("No DashScope API key configured")
                return False

            audio_queue: Queue[AudioFrame | None] = Queue(maxsize=self._queue_maxsize)
            try:
                self._recorder.start(audio_queue)
            except Exception:
                logger.exception("Failed to start recorder")
                return False
            self._recording = True

            # Each session's worker owns its queue and callbacks, so a previous
            # worker may still be flushing its last utterance.
            callbacks = _Callbacks(on_interim, on_final, on_start, on_end, on_error)
            self._thread = threading.Thread(
                target=self._worker, args=(audio_queue, callbacks), daemon=True
            )
            self._thread.start()
            return True

    @property
    def flush_budget_ms(self) -> int:
        """Upper bound on the time from ``stop()`` to ``on_end``.

        The trailing utterance is recognised after stop, so a caller waiting
        for late finals should wait at least this long.
        """
        return int(self._request_timeout_s * 1000) + _FLUSH_MARGIN_MS

    def stop(self) -> None:
        with self._lock:
            if not self._recording:
                return
            self._recording = False
        try:
            self._recorder.stop()
        except Exception:
            logger.exception("Failed to stop recorder")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _resolve_api_key(self) -> str:
        return self._api_key or os.getenv("DASHSCOPE_API_KEY", "")

    def _worker(self, audio_queue: Queue[AudioFrame | None], callbacks: _Callbacks) -> None:
        callbacks.on_start()
        try:
            self._segment_loop(audio_queue, callbacks)
        except Exception as exc:
            logger.exception("Recognition worker failed")
            callbacks.on_error(ASR_PROTOCOL_ERROR, str(exc), True)
        finally:
            callbacks.on_end()

    def _segment_loop(self, audio_queue: Queue[AudioFrame | None], callbacks: _Callbacks) -> None:
        """Consume frames until the end-of-stream marker, recognising each utterance."""
        segment = bytearray()
        sample_rate = 16000
        channels = 1
        heard_speech = False
        silence_ms = 0.0

        while True:
            try:
                frame = audio_queue.get(timeout=0.2)
            except Empty:
                continue
            if frame is None:
                break

            sample_rate = frame.sample_rate
            channels = frame.channels
            bytes_per_ms = sample_rate * channels * 2 / 1000.0
            segment.extend(frame.pcm16_bytes)
            frame_ms = len(frame.pcm16_bytes) / bytes_per_ms

            if _pcm_rms(frame.pcm16_bytes) >= self._silence_rms:
                heard_speech = True
                silence_ms = 0.0
            elif heard_speech:
                silence_ms += frame_ms

            if not heard_speech:
                keep = int(_PREROLL_MS * bytes_per_ms)
                keep -= keep % (2 * channels)
                if len(segment) > keep:
                    del segment[: len(segment) - keep]
                continue

            segment_s = len(segment) / bytes_per_ms / 1000.0
            if silence_ms >= self._silence_ms or segment_s >= self._max_segment_s:
                if not self._recognize_segment(bytes(segment), sample_rate, channels, callbacks):
                    return
                segment.clear()
                heard_speech = False
                silence_ms = 0.0

        if heard_speech and segment:
            self._recognize_segment(bytes(segment), sample_rate, channels, callbacks)

    def _recognize_segment(
        self,
        pcm: bytes,
        sample_rate: int,
        channels: int,
        callbacks: _Callbacks,
    ) -> bool:
        """Send one utterance to dashscope. Returns False after reporting an error."""
        if dashscope is None:
            callbacks.on_error(ASR_PROTOCOL_ERROR, "dashscope is not installed", False)
            return False

        wav_base64 = _pcm_to_wav_base64(pcm, sample_rate, channels)
        try:
            response = dashscope.MultiModalConversation.call(
                api_key=self._resolve_api_key(),
                model=self._model,
                messages=[
                    {"role": "system", "content": [{"text": ""}]},
                    {"role": "user", "content": [{"audio": wav_base64}]},
                ],
                result_format="message",
                asr_options={"enable_itn": False},
                stream=True,
                timeout=self._request_timeout_s,
            )
            latest_text = ""
            for chunk in response:
                text = self._extract_text(chunk)
                if text:
                    latest_text = text
                    callbacks.on_interim(text)
        except Exception as exc:
            code, message, recoverable = self._classify(exc)
            logger.warning(f"Recognition failed ({code}): {message}")
            callbacks.on_error(code, message, recoverable)
            return False

        if latest_text.strip():
            callbacks.on_final(latest_text)
        return True

    def _extract_text(self, chunk: object) -> str:
        """Pull text from a dashscope streaming chunk dict."""
        if isinstance(chunk, dict):
            choices = chunk.get("output", {}).get("choices", [])
            if not choices:
                return ""
            content = choices[0].get("message", {}).get("content", [])
            if not content:
                return ""
            value = content[0]
            if isinstance(value, dict):
                return str(value.get("text", ""))
        return ""

    def _classify(self, exc: Exception) -> tuple[str, str, bool]:
        """Map an SDK/network exception to (code, message, recoverable)."""
        message = str(exc)
        low = message.lower()
        if "401" in low or "auth" in low or "api key" in low:
            return AUTH_FAILED, message, False
        if "permission" in low or "not allowed" in low:
            return PERMISSION_DENIED, message, False
        if "timeout" in low or "network" in low or "connection" in low:
            return NETWORK_ERROR, message, True
        return ASR_PROTOCOL_ERROR, message, True
