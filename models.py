"""Core data models for voice capture."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class CaptureState(str, Enum):
    IDLE = "IDLE"
    LISTENING = "LISTENING"
    PROCESSING = "PROCESSING"
    CONFIRMING = "CONFIRMING"
    ERROR = "ERROR"


class ErrorKind(str, Enum):
    START_FAILED = "start_failed"
    RECOGNITION_ERROR = "recognition_error"
    EMPTY_TRANSCRIPT = "empty_transcript"
    PERMISSION_DENIED = "permission_denied"


@dataclass(frozen=True)
class Transcript:
    committed: str = ""
    interim: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.committed and not self.interim


@dataclass(frozen=True)
class CaptureError:
    kind: ErrorKind
    message: str
    recoverable: bool
    code: str = ""


@dataclass(frozen=True)
class RetrySchedule:
    pending: bool = False
    delay_ms: int = 0
    attempts: int = 0


@dataclass
class CaptureOptions:
    disabled: bool = False
    auto_submit: bool = False
    show_confirmation: bool = True
    placeholder: str = "Click to speak..."
    grace_window_ms: int = 150
    retry_delay_ms: int = 1000
    frame_interval_ms: int = 16
    auto_retry_limit: int = 0
    level_ceiling: float = 128.0


@dataclass(frozen=True)
class AudioConstraints:
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True


@dataclass
class AudioFrame:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1
    timestamp_ms: int = 0


@dataclass
class PasteResult:
    success: bool
    reason: str
    clipboard_restored: bool
