"""Microphone adapters based on sounddevice.

``SoundDeviceRecorder`` feeds int16 PCM frames to a recognition adapter.
``SoundDeviceMicrophone`` opens a float32 stream that keeps the most recent
samples for level analysis.
"""

from __future__ import annotations

import logging
import threading
import time
from queue import Empty, Full, Queue
from typing import Any, Optional

import numpy as np

from errors import CaptureFailure, media_error
from models import AudioConstraints, AudioFrame

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)


def _close_stream(stream: Any) -> None:
    try:
        stream.close()
    except Exception as exc:
        logger.warning(f"Closing input stream failed: {exc}")


class SoundDeviceRecorder:
    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_ms: int = 100,
        device: Optional[int | str] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self.device = device
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self.dropped_chunks = 0
        self._audio_queue: Queue[AudioFrame | None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self, audio_queue: Queue[AudioFrame | None]) -> None:
        with self._lock:
            if self._running:
                return
            if sd is None:
                raise RuntimeError("sounddevice is not installed")
            self._audio_queue = audio_queue
            self.dropped_chunks = 0
            blocksize = int(self.sample_rate * (self.chunk_ms / 1000.0))
            stream = sd.InputStream(
                device=self.device,
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                blocksize=blocksize,
                callback=self._on_audio,
            )
            try:
                stream.start()
            except Exception:
                _close_stream(stream)
                raise
            self._stream = stream
            self._running = True
            logger.info(f"Recorder started: {self.sample_rate}Hz, {self.channels}ch")

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            stream, self._stream = self._stream, None
            if stream is not None:
                stream.stop()
                stream.close()
            self._put_sentinel()
            if self.dropped_chunks:
                logger.warning(f"Recorder dropped {self.dropped_chunks} chunks")
            logger.info("Recorder stopped")

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.warning(f"Recorder callback status: {status}")
        if not self._running or self._audio_queue is None:
            return
        frame = AudioFrame(
            pcm16_bytes=np.asarray(indata, dtype=np.int16).tobytes(),
            sample_rate=self.sample_rate,
            channels=self.channels,
            timestamp_ms=int(time.time() * 1000),
        )
        try:
            self._audio_queue.put_nowait(frame)
        except Full:
            self.dropped_chunks += 1

    def _put_sentinel(self) -> None:
        if self._audio_queue is None:
            return
        try:
            self._audio_queue.put_nowait(None)
        except Full:
            # Consumer is behind; make room so it still sees end-of-stream.
            try:
                self._audio_queue.get_nowait()
                self._audio_queue.put_nowait(None)
            except (Empty, Full):
                logger.warning("Could not deliver end-of-stream marker")


class _LevelStream:
    """Ring buffer of the most recent mono samples from an input stream."""

    def __init__(self, stream: Any, buffer_size: int) -> None:
        self._stream = stream
        self._buffer = np.zeros(buffer_size, dtype=np.float32)
        self._lock = threading.Lock()
        self._closed = False

    def push(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.debug(f"Level stream status: {status}")
        samples = np.asarray(indata, dtype=np.float32)
        mono = samples.mean(axis=1) if samples.ndim > 1 else samples
        mono = mono[-self._buffer.size:]
        if mono.size == 0:
            return
        with self._lock:
            self._buffer = np.roll(self._buffer, -mono.size)
            self._buffer[-mono.size:] = mono

    def latest(self, n_samples: int) -> np.ndarray:
        with self._lock:
            if n_samples >= self._buffer.size:
                return self._buffer.copy()
            return self._buffer[-n_samples:].copy()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()


class SoundDeviceMicrophone:
    def __init__(
        self,
        sample_rate: int = 16000,
        device: Optional[int | str] = None,
        buffer_size: int = 2048,
        blocksize: int = 256,
    ) -> None:
        self.sample_rate = sample_rate
        self.device = device
        self.buffer_size = buffer_size
        self.blocksize = blocksize

    def open(self, constraints: AudioConstraints) -> _LevelStream:
        if sd is None:
            raise CaptureFailure(media_error(RuntimeError("sounddevice is not installed")))
        # PortAudio exposes no echo/noise/gain switches; the OS input chain
        # applies them when enabled at the device level.
        logger.debug(f"Opening level stream with {constraints}")
        level_stream = _LevelStream(None, self.buffer_size)
        stream = None
        try:
            stream = sd.InputStream(
                device=self.device,
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self.blocksize,
                callback=level_stream.push,
            )
            stream.start()
        except Exception as exc:
            if stream is not None:
                _close_stream(stream)
            raise CaptureFailure(media_error(exc)) from exc
        level_stream._stream = stream
        return level_stream
