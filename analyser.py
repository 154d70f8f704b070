"""Frequency analyser producing byte-scaled magnitude spectra.

Follows the behaviour of a Web Audio ``AnalyserNode``: a Blackman window over
the last ``fft_size`` samples, magnitude normalised by the FFT size, temporal
smoothing between calls, then a linear map of the decibel range
``[min_decibels, max_decibels]`` onto ``0..255``.
"""

from __future__ import annotations

import numpy as np


class NumpyFrequencyAnalyser:
    def __init__(
        self,
        fft_size: int = 256,
        smoothing: float = 0.8,
        min_decibels: float = -100.0,
        max_decibels: float = -30.0,
    ) -> None:
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= 32, got {fft_size}")
        if not 0.0 <= smoothing <= 1.0:
            raise ValueError(f"smoothing must be within [0, 1], got {smoothing}")
        if min_decibels >= max_decibels:
            raise ValueError("min_decibels must be lower than max_decibels")
        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_decibels = min_decibels
        self.max_decibels = max_decibels
        self._window = np.blackman(fft_size)
        self._previous = np.zeros(self.frequency_bin_count, dtype=np.float64)

    @property
    def frequency_bin_count(self) -> int:
        return self.fft_size // 2

    def byte_frequency_data(self, samples: np.ndarray) -> np.ndarray:
        frame = np.zeros(self.fft_size, dtype=np.float64)
        tail = np.nan_to_num(np.asarray(samples, dtype=np.float64).ravel()[-self.fft_size:])
        if tail.size:
            frame[-tail.size:] = tail

        spectrum = np.abs(np.fft.rfft(frame * self._window))[: self.frequency_bin_count]
        spectrum /= self.fft_size
        smoothed = self.smoothing * self._previous + (1.0 - self.smoothing) * spectrum
        self._previous = smoothed

        with np.errstate(divide="ignore"):
            decibels = 20.0 * np.log10(smoothed)
        scaled = 255.0 * (decibels - self.min_decibels) / (self.max_decibels - self.min_decibels)
        scaled = np.nan_to_num(scaled, nan=0.0, neginf=0.0, posinf=255.0)
        return np.clip(scaled, 0.0, 255.0).astype(np.uint8)

    def reset(self) -> None:
        self._previous = np.zeros(self.frequency_bin_count, dtype=np.float64)
