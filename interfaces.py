"""Protocol interfaces used by VoiceCaptureStateMachine and its collaborators."""

from __future__ import annotations

from queue import Queue
from typing import Callable, Protocol

import numpy as np

from models import AudioConstraints, AudioFrame, CaptureOptions, PasteResult

InterimCallback = Callable[[str], None]
FinalCallback = Callable[[str], None]
StartCallback = Callable[[], None]
EndCallback = Callable[[], None]
AdapterErrorCallback = Callable[[str, str, bool], None]


class RecognitionAdapter(Protocol):
    def start(
        self,
        on_interim: InterimCallback,
        on_final: FinalCallback,
        on_start: StartCallback,
        on_end: EndCallback,
        on_error: AdapterErrorCallback,
    ) -> bool: ...

    def stop(self) -> None: ...


class Recorder(Protocol):
    def start(self, audio_queue: Queue[AudioFrame | None]) -> None: ...

    def stop(self) -> None: ...


class MicrophoneStream(Protocol):
    def latest(self, n_samples: int) -> np.ndarray: ...

    def close(self) -> None: ...


class MicrophoneSource(Protocol):
    def open(self, constraints: AudioConstraints) -> MicrophoneStream: ...


class FrequencyAnalyser(Protocol):
    fft_size: int

    @property
    def frequency_bin_count(self) -> int: ...

    def byte_frequency_data(self, samples: np.ndarray) -> np.ndarray: ...

    def reset(self) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_soon(self, callback: Callable[[], None]) -> None:
        """Queue ``callback`` on the host loop. Safe from any thread."""
        ...

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle: ...


class PasteService(Protocol):
    def paste_text(self, text: str) -> PasteResult: ...


class ConfigStore(Protocol):
    def get_api_key(self) -> str: ...

    def set_api_key(self, key: str) -> None: ...

    def get_hotkey(self) -> str: ...

    def set_hotkey(self, hotkey: str) -> None: ...

    def get_options(self) -> CaptureOptions: ...

    def set_options(self, options: CaptureOptions) -> None: ...
