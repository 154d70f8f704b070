"""State-machine based voice capture orchestration.

All public methods and all adapter callbacks run on the host event loop.
Adapter callbacks may arrive from worker threads; they are re-dispatched with
``Scheduler.call_soon`` and tagged with the session that registered them, so
a callback from an ended session is dropped instead of mutating the current
one.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from errors import ERROR_MESSAGES, KIND_MESSAGES, PERMISSION_DENIED, CaptureFailure
from interfaces import RecognitionAdapter, Scheduler, TimerHandle
from level_monitor import AudioLevelMonitor
from models import CaptureError, CaptureOptions, CaptureState, ErrorKind, RetrySchedule, Transcript
from retry import RetryController
from scheduling import PeriodicTask
from transcript import TranscriptAccumulator

logger = logging.getLogger(__name__)

StateCallback = Callable[[CaptureState, CaptureState], None]
VoiceInputCallback = Callable[[str], None]
ErrorCallback = Callable[[CaptureError], None]
TranscriptCallback = Callable[[Transcript], None]
LevelCallback = Callable[[float], None]

STATUS_TEXT = {
    CaptureState.LISTENING: "Listening... Speak now",
    CaptureState.PROCESSING: "Processing speech...",
    CaptureState.CONFIRMING: "Please confirm your input",
}

TOGGLE_KEYS = frozenset({" ", "Space", "Enter", "Return"})
CANCEL_KEYS = frozenset({"Escape", "Esc"})


class VoiceCaptureStateMachine:
    def __init__(
        self,
        adapter: RecognitionAdapter,
        monitor: AudioLevelMonitor,
        scheduler: Scheduler,
        options: Optional[CaptureOptions] = None,
        on_voice_input: Optional[VoiceInputCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_state_change: Optional[StateCallback] = None,
        on_transcript: Optional[TranscriptCallback] = None,
        on_audio_level: Optional[LevelCallback] = None,
    ) -> None:
        self._adapter = adapter
        self._monitor = monitor
        self._scheduler = scheduler
        self.options = options or CaptureOptions()
        self._monitor.ceiling = self.options.level_ceiling
        self._on_voice_input = on_voice_input
        self._on_error = on_error
        self._on_state_change = on_state_change
        self._on_transcript = on_transcript
        self._on_audio_level = on_audio_level

        self._state = CaptureState.IDLE
        self._transcript = TranscriptAccumulator()
        self._error: Optional[CaptureError] = None
        self._retry = RetryController(scheduler)
        self._session_id = 0
        self._adapter_active = False
        self._stopping = False
        self._grace_timer: Optional[TimerHandle] = None
        self._level_task: Optional[PeriodicTask] = None
        self._audio_level = 0.0
        self._closed = False

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def transcript(self) -> Transcript:
        return self._transcript.snapshot()

    @property
    def error(self) -> Optional[CaptureError]:
        return self._error

    @property
    def audio_level(self) -> float:
        return self._audio_level

    @property
    def retry_schedule(self) -> RetrySchedule:
        return self._retry.schedule_state

    @property
    def is_retrying(self) -> bool:
        return self._retry.pending

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def status_text(self) -> str:
        if self._state == CaptureState.ERROR:
            return self._error.message if self._error else KIND_MESSAGES[ErrorKind.RECOGNITION_ERROR]
        return STATUS_TEXT.get(self._state, self.options.placeholder)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def request_start(self) -> bool:
        if self._closed or self._state != CaptureState.IDLE:
            return False
        if self.options.disabled:
            logger.debug("Start ignored: voice input disabled")
            return False
        self._begin_session()
        return True

    def request_stop(self) -> bool:
        if self._closed:
            return False
        if self._state == CaptureState.PROCESSING and not self._stopping:
            logger.info("Stop requested before recognition started; aborting session")
            self._abort_session()
            return True
        if self._state != CaptureState.LISTENING:
            return False

        self._stopping = True
        self._stop_adapter()
        self._cancel_level_sampling()
        self._monitor.release()
        self._set_audio_level(0.0)
        self._transition(CaptureState.PROCESSING)

        session_id = self._session_id
        self._grace_timer = self._scheduler.call_later(
            self.options.grace_window_ms / 1000.0,
            lambda: self._finish_stop(session_id),
        )
        return True

    def confirm(self, text: Optional[str] = None) -> bool:
        """Submit the transcript shown for confirmation, or an edited ``text``."""
        if self._closed or self._state != CaptureState.CONFIRMING:
            return False
        final_text = (text if text is not None else self._transcript.committed).strip()
        if not final_text:
            self._fail(
                CaptureError(
                    kind=ErrorKind.EMPTY_TRANSCRIPT,
                    message=KIND_MESSAGES[ErrorKind.EMPTY_TRANSCRIPT],
                    recoverable=True,
                )
            )
            return False
        self._emit_voice_input(final_text)
        self._clear()
        self._transition(CaptureState.IDLE)
        return True

    def cancel(self) -> bool:
        if self._closed:
            return False
        if self._state not in (
            CaptureState.LISTENING,
            CaptureState.PROCESSING,
            CaptureState.CONFIRMING,
        ):
            return False
        self._abort_session()
        return True

    def retry(self) -> bool:
        if self._closed or self._state != CaptureState.ERROR:
            return False
        if self._error is None or not self._error.recoverable:
            return False
        self._retry.schedule(self.options.retry_delay_ms, self._fire_retry)
        return True

    def dismiss(self) -> bool:
        if self._closed or self._state != CaptureState.ERROR:
            return False
        self._retry.reset()
        self._clear()
        self._transition(CaptureState.IDLE)
        return True

    def close(self) -> None:
        """Terminal teardown. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._retry.reset()
        self._cancel_grace_timer()
        self._cancel_level_sampling()
        self._stop_adapter()
        self._monitor.release()
        self._stopping = False
        self._transcript.reset()
        self._error = None
        self._audio_level = 0.0
        self._transition(CaptureState.IDLE)
        logger.info("Voice capture closed")

    def toggle(self) -> bool:
        """Main button action for the current state."""
        if self._state == CaptureState.IDLE:
            return self.request_start()
        if self._state == CaptureState.LISTENING:
            return self.request_stop()
        if self._state == CaptureState.CONFIRMING:
            return self.confirm()
        if self._state == CaptureState.ERROR:
            return self.retry()
        return False

    def handle_key(self, key: str) -> bool:
        if self.options.disabled:
            return False
        if key in TOGGLE_KEYS:
            if self._state == CaptureState.IDLE:
                return self.request_start()
            if self._state == CaptureState.LISTENING:
                return self.request_stop()
            if self._state == CaptureState.CONFIRMING:
                return self.confirm()
        elif key in CANCEL_KEYS:
            if self._state == CaptureState.LISTENING:
                return self.request_stop()
            if self._state == CaptureState.CONFIRMING:
                return self.cancel()
        return False

    def reset_transcript(self) -> None:
        """Clear the transcript without stopping the recording."""
        self._transcript.reset()
        self._notify_transcript()

    def set_disabled(self, disabled: bool) -> None:
        self.options.disabled = disabled

    def replace_adapter(self, adapter: RecognitionAdapter) -> None:
        if self._state in (
            CaptureState.LISTENING,
            CaptureState.PROCESSING,
            CaptureState.CONFIRMING,
        ):
            self._abort_session()
        self._adapter = adapter

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def _begin_session(self) -> None:
        self._cancel_level_sampling()
        self._cancel_grace_timer()
        self._session_id += 1
        session_id = self._session_id
        self._stopping = False
        self._transcript.reset()
        self._error = None
        self._transition(CaptureState.PROCESSING)
        self._notify_transcript()
        self._scheduler.call_soon(lambda: self._open_session(session_id))

    def _open_session(self, session_id: int) -> None:
        if self._closed or session_id != self._session_id:
            return
        if self._state != CaptureState.PROCESSING or self._stopping:
            return

        try:
            self._monitor.acquire()
        except CaptureFailure as exc:
            self._fail(exc.error)
            return

        reason = ""
        try:
            started = self._adapter.start(
                on_interim=self._bind(session_id, self._handle_interim),
                on_final=self._bind(session_id, self._handle_final),
                on_start=self._bind(session_id, self._handle_start),
                on_end=self._bind(session_id, self._handle_end),
                on_error=self._bind(session_id, self._handle_adapter_error),
            )
        except Exception as exc:
            logger.exception("Recognition adapter raised on start")
            started = False
            reason = str(exc)

        if not started:
            message = KIND_MESSAGES[ErrorKind.START_FAILED]
            self._fail(
                CaptureError(
                    kind=ErrorKind.START_FAILED,
                    message=f"{message}: {reason}" if reason else message,
                    recoverable=True,
                )
            )
            return
        self._adapter_active = True

    def _finish_stop(self, session_id: int) -> None:
        self._grace_timer = None
        if self._closed or session_id != self._session_id or not self._stopping:
            return
        self._stopping = False

        if self._transcript.interim:
            logger.debug("Discarding interim fragment at stop")
        self._transcript.set_interim(None)
        text = self._transcript.committed.strip()

        if not text:
            logger.info("Stopped with empty transcript")
            self._clear()
            self._transition(CaptureState.IDLE)
            return
        if self.options.show_confirmation and not self.options.auto_submit:
            self._notify_transcript()
            self._transition(CaptureState.CONFIRMING)
            return

        self._emit_voice_input(text)
        self._clear()
        self._transition(CaptureState.IDLE)

    def _abort_session(self) -> None:
        self._stopping = False
        self._cancel_grace_timer()
        self._stop_adapter()
        self._cancel_level_sampling()
        self._monitor.release()
        self._set_audio_level(0.0)
        self._clear()
        self._transition(CaptureState.IDLE)

    def _fire_retry(self) -> None:
        if self._closed or self._state != CaptureState.ERROR:
            return
        logger.info(f"Retrying voice capture (attempt {self._retry.attempts})")
        self._begin_session()

    def _fail(self, error: CaptureError) -> None:
        self._stopping = False
        self._cancel_grace_timer()
        self._stop_adapter()
        self._cancel_level_sampling()
        self._monitor.release()
        self._set_audio_level(0.0)
        self._transcript.set_interim(None)
        self._error = error
        self._transition(CaptureState.ERROR)
        logger.warning(f"Voice capture error [{error.kind.value}]: {error.message}")
        self._safe_call(self._on_error, error)
        self._maybe_auto_retry(error)

    def _maybe_auto_retry(self, error: CaptureError) -> None:
        limit = self.options.auto_retry_limit
        if limit <= 0 or not error.recoverable or error.kind == ErrorKind.EMPTY_TRANSCRIPT:
            return
        if self._retry.attempts >= limit:
            logger.info(f"Automatic retry limit reached ({limit})")
            return
        delay_ms = self.options.retry_delay_ms * (self._retry.attempts + 1)
        self._retry.schedule(delay_ms, self._fire_retry)

    # ------------------------------------------------------------------
    # Adapter callbacks (dispatched on the host loop)
    # ------------------------------------------------------------------

    def _bind(self, session_id: int, handler: Callable[..., None]) -> Callable[..., None]:
        def _callback(*args: Any) -> None:
            self._scheduler.call_soon(lambda: self._dispatch(session_id, handler, args))

        return _callback

    def _dispatch(self, session_id: int, handler: Callable[..., None], args: tuple) -> None:
        if self._closed or session_id != self._session_id:
            logger.debug(f"Dropping {handler.__name__} from stale session {session_id}")
            return
        handler(*args)

    def _handle_start(self) -> None:
        if self._state != CaptureState.PROCESSING or self._stopping:
            return
        self._retry.reset()
        self._transition(CaptureState.LISTENING)
        self._start_level_sampling()

    def _handle_interim(self, text: str) -> None:
        if self._state != CaptureState.LISTENING:
            return
        self._transcript.set_interim(text)
        self._notify_transcript()

    def _handle_final(self, text: str) -> None:
        in_grace = self._state == CaptureState.PROCESSING and self._stopping
        if self._state != CaptureState.LISTENING and not in_grace:
            logger.debug("Dropping final fragment outside the capture window")
            return
        if self._transcript.append_final(text):
            self._transcript.set_interim(None)
            self._notify_transcript()

    def _handle_end(self) -> None:
        if self._state == CaptureState.PROCESSING and self._stopping:
            # Adapter drained after stop; no more finals will come for this session.
            logger.debug("Recognition adapter drained, finishing stop early")
            self._cancel_grace_timer()
            self._finish_stop(self._session_id)
            return
        # The engine may end on its own (timeouts); only an explicit stop ends the capture.
        logger.debug(f"Recognition adapter ended (state={self._state.value})")

    def _handle_adapter_error(self, code: str, message: str, recoverable: bool) -> None:
        if self._stopping or self._state not in (CaptureState.PROCESSING, CaptureState.LISTENING):
            logger.warning(f"Ignoring adapter error after stop: {code}: {message}")
            return
        kind = ErrorKind.PERMISSION_DENIED if code == PERMISSION_DENIED else ErrorKind.RECOGNITION_ERROR
        text = message or ERROR_MESSAGES.get(code) or KIND_MESSAGES[kind]
        self._fail(CaptureError(kind=kind, message=text, recoverable=bool(recoverable), code=code))

    # ------------------------------------------------------------------
    # Audio level sampling
    # ------------------------------------------------------------------

    def _start_level_sampling(self) -> None:
        self._cancel_level_sampling()
        task = PeriodicTask(
            self._scheduler,
            self.options.frame_interval_ms / 1000.0,
            self._sample_level,
        )
        self._level_task = task
        task.start()

    def _sample_level(self) -> bool:
        if self._closed or self._state != CaptureState.LISTENING:
            return False
        self._set_audio_level(self._monitor.sample(), force=True)
        return True

    def _cancel_level_sampling(self) -> None:
        task, self._level_task = self._level_task, None
        if task is not None:
            task.cancel()

    def _set_audio_level(self, level: float, force: bool = False) -> None:
        if not force and level == self._audio_level:
            return
        self._audio_level = level
        self._safe_call(self._on_audio_level, level)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _stop_adapter(self) -> None:
        if not self._adapter_active:
            return
        self._adapter_active = False
        try:
            self._adapter.stop()
        except Exception:
            logger.exception("Recognition adapter failed to stop")

    def _cancel_grace_timer(self) -> None:
        timer, self._grace_timer = self._grace_timer, None
        if timer is not None:
            timer.cancel()

    def _clear(self) -> None:
        self._transcript.reset()
        self._error = None
        self._notify_transcript()

    def _emit_voice_input(self, text: str) -> None:
        logger.info(f"Voice input captured ({len(text)} chars)")
        self._safe_call(self._on_voice_input, text)

    def _notify_transcript(self) -> None:
        self._safe_call(self._on_transcript, self._transcript.snapshot())

    def _safe_call(self, callback: Optional[Callable[..., None]], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Voice capture callback failed")

    def _transition(self, to_state: CaptureState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        logger.debug(f"Voice capture {from_state.value} -> {to_state.value}")
        self._safe_call(self._on_state_change, from_state, to_state)
