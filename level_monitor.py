"""Live microphone loudness for the recording indicator."""

from __future__ import annotations

import logging
from typing import Callable, Optional

import numpy as np

from analyser import NumpyFrequencyAnalyser
from errors import CaptureFailure, media_error
from interfaces import FrequencyAnalyser, MicrophoneSource, MicrophoneStream
from models import AudioConstraints

logger = logging.getLogger(__name__)

DEFAULT_FFT_SIZE = 256
DEFAULT_SMOOTHING = 0.8
DEFAULT_LEVEL_CEILING = 128.0


def compute_level(data: np.ndarray, ceiling: float = DEFAULT_LEVEL_CEILING) -> float:
    """Average bin magnitude divided by ``ceiling``, clamped to [0, 1]."""
    values = np.asarray(data, dtype=np.float64)
    if values.size == 0 or ceiling <= 0:
        return 0.0
    average = float(np.mean(np.abs(values)))
    if np.isnan(average):
        return 0.0
    return float(min(max(average / ceiling, 0.0), 1.0))


class AudioLevelMonitor:
    def __init__(
        self,
        source: MicrophoneSource,
        analyser_factory: Optional[Callable[[], FrequencyAnalyser]] = None,
        constraints: Optional[AudioConstraints] = None,
        ceiling: float = DEFAULT_LEVEL_CEILING,
    ) -> None:
        self._source = source
        self._analyser_factory = analyser_factory or (
            lambda: NumpyFrequencyAnalyser(DEFAULT_FFT_SIZE, DEFAULT_SMOOTHING)
        )
        self.constraints = constraints or AudioConstraints()
        self.ceiling = ceiling
        self._stream: Optional[MicrophoneStream] = None
        self._analyser: Optional[FrequencyAnalyser] = None

    @property
    def active(self) -> bool:
        return self._stream is not None

    def acquire(self) -> None:
        """Open the microphone. Raises CaptureFailure on any media error."""
        if self._stream is not None:
            return
        try:
            stream = self._source.open(self.constraints)
        except CaptureFailure:
            raise
        except Exception as exc:
            raise CaptureFailure(media_error(exc)) from exc
        self._stream = stream
        self._analyser = self._analyser_factory()
        logger.debug("Microphone acquired for level monitoring")

    def sample(self) -> float:
        stream, analyser = self._stream, self._analyser
        if stream is None or analyser is None:
            return 0.0
        try:
            data = analyser.byte_frequency_data(stream.latest(analyser.fft_size))
        except Exception as exc:
            logger.warning(f"Audio level sample failed: {exc}")
            return 0.0
        return compute_level(data, self.ceiling)

    def release(self) -> None:
        stream, self._stream = self._stream, None
        analyser, self._analyser = self._analyser, None
        if analyser is not None:
            analyser.reset()
        if stream is None:
            return
        try:
            stream.close()
        except Exception as exc:
            logger.warning(f"Closing microphone stream failed: {exc}")
        logger.debug("Microphone released")
