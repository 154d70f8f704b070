"""Shared error codes, user-facing messages and media error mapping."""

from __future__ import annotations

from models import CaptureError, ErrorKind

# Codes reported by recognition adapters and the paste service.
PERMISSION_DENIED = "PERMISSION_DENIED"
NETWORK_ERROR = "NETWORK_ERROR"
AUTH_FAILED = "AUTH_FAILED"
NO_SPEECH = "NO_SPEECH"
NO_ACTIVE_TARGET = "NO_ACTIVE_TARGET"
ASR_PROTOCOL_ERROR = "ASR_PROTOCOL_ERROR"

ERROR_MESSAGES = {
    PERMISSION_DENIED: "Microphone access denied.",
    NETWORK_ERROR: "Network connection issues detected, please retry.",
    AUTH_FAILED: "API key is invalid.",
    NO_SPEECH: "No speech detected.",
    NO_ACTIVE_TARGET: "No active input target, result kept in clipboard.",
    ASR_PROTOCOL_ERROR: "ASR response format is invalid.",
}

KIND_MESSAGES = {
    ErrorKind.START_FAILED: "Failed to start speech recognition",
    ErrorKind.RECOGNITION_ERROR: "Voice input error",
    ErrorKind.EMPTY_TRANSCRIPT: "No speech detected. Please try again.",
    ErrorKind.PERMISSION_DENIED: "Microphone access denied",
}

_PERMISSION_HINTS = ("permission", "denied", "not allowed", "not-allowed", "notallowed")


class CaptureFailure(Exception):
    """Raised on the media path; carries the CaptureError to surface."""

    def __init__(self, error: CaptureError) -> None:
        super().__init__(error.message)
        self.error = error


def media_error(exc: BaseException) -> CaptureError:
    """Map a microphone/device exception to a CaptureError."""
    message = str(exc) or exc.__class__.__name__
    low = message.lower()
    if isinstance(exc, PermissionError) or any(hint in low for hint in _PERMISSION_HINTS):
        return CaptureError(
            kind=ErrorKind.PERMISSION_DENIED,
            message=f"{KIND_MESSAGES[ErrorKind.PERMISSION_DENIED]}: {message}",
            recoverable=True,
            code=PERMISSION_DENIED,
        )
    return CaptureError(
        kind=ErrorKind.START_FAILED,
        message=f"Microphone unavailable: {message}",
        recoverable=True,
    )
