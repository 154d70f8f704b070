"""Application entrypoint."""

from __future__ import annotations

import logging
import sys
from dataclasses import replace

from auto_paste import ClipboardPasteService
from config import JsonConfigStore
from errors import ERROR_MESSAGES, NO_ACTIVE_TARGET
from hotkey import GlobalHotkeyAdapter
from level_monitor import AudioLevelMonitor
from models import CaptureError, CaptureOptions, CaptureState, Transcript
from overlay import CaptureOverlay
from recognizer import DashscopeRecognitionAdapter
from recorder import SoundDeviceMicrophone
from scheduling import QtScheduler
from state_machine import VoiceCaptureStateMachine

try:
    from PySide6.QtCore import QSize
    from PySide6.QtGui import QAction, QBrush, QColor, QIcon, QPainter, QPixmap
    from PySide6.QtWidgets import QApplication, QInputDialog, QMenu, QMessageBox, QSystemTrayIcon
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

STATE_COLORS = {
    CaptureState.IDLE: "#888888",
    CaptureState.PROCESSING: "#FFC107",
    CaptureState.LISTENING: "#FF4444",
    CaptureState.CONFIRMING: "#3B82F6",
    CaptureState.ERROR: "#FF8800",
}


def _create_icon(color: str = "#888888", size: int = 22) -> QIcon:
    """Generate a simple circular tray icon with the given color."""
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(QColor(0, 0, 0, 0))
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setBrush(QBrush(QColor(color)))
    painter.setPen(QColor(color))
    painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


def _session_options(options: CaptureOptions, adapter: DashscopeRecognitionAdapter) -> CaptureOptions:
    # Stop must outlast the adapter flushing its trailing utterance.
    return replace(options, grace_window_ms=max(options.grace_window_ms, adapter.flush_budget_ms))


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.config_store = JsonConfigStore()
        logging.basicConfig(level=self.config_store.get_log_level(), format=LOG_FORMAT)

        self.scheduler = QtScheduler()
        self.paste_service = ClipboardPasteService()
        adapter = DashscopeRecognitionAdapter(api_key=self.config_store.get_api_key())
        self.overlay = CaptureOverlay(
            on_confirm=lambda: self.machine.confirm(),
            on_cancel=lambda: self.machine.cancel(),
            on_retry=lambda: self.machine.retry(),
            on_dismiss=lambda: self.machine.dismiss(),
        )
        self.machine = VoiceCaptureStateMachine(
            adapter=adapter,
            monitor=AudioLevelMonitor(SoundDeviceMicrophone()),
            scheduler=self.scheduler,
            options=_session_options(self.config_store.get_options(), adapter),
            on_voice_input=self._on_voice_input,
            on_error=self._on_error,
            on_state_change=self._on_state_change,
            on_transcript=self._on_transcript,
            on_audio_level=self.overlay.set_level,
        )
        self.hotkey = GlobalHotkeyAdapter(
            toggle_key=self.config_store.get_hotkey(),
            cancel_key=self.config_store.get_cancel_key(),
        )

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_create_icon(STATE_COLORS[CaptureState.IDLE]))
        self.tray.setToolTip("Voice Capture: Ready")
        self._setup_menu()
        self.tray.show()

    def _setup_menu(self) -> None:
        menu = QMenu()

        api_action = QAction("Set API Key", menu)
        api_action.triggered.connect(self._set_api_key)
        menu.addAction(api_action)

        hotkey_action = QAction("Set Hotkey", menu)
        hotkey_action.triggered.connect(self._set_hotkey)
        menu.addAction(hotkey_action)

        confirm_action = QAction("Confirm Before Pasting", menu)
        confirm_action.setCheckable(True)
        confirm_action.setChecked(self.machine.options.show_confirmation)
        confirm_action.toggled.connect(self._set_show_confirmation)
        menu.addAction(confirm_action)

        menu.addSeparator()
        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)

        self.tray.setContextMenu(menu)

    def _set_api_key(self) -> None:
        value, ok = QInputDialog.getText(None, "API Key", "DashScope API Key")
        if not ok:
            return
        self.config_store.set_api_key(value)
        self.machine.replace_adapter(DashscopeRecognitionAdapter(api_key=value))
        QMessageBox.information(None, "Saved", "API Key saved and applied.")

    def _set_hotkey(self) -> None:
        value, ok = QInputDialog.getText(None, "Hotkey", "Use pynput key format, e.g. Key.alt_l")
        if not ok or not value:
            return
        self.config_store.set_hotkey(value)
        QMessageBox.information(None, "Saved", "Hotkey saved. Restart app to apply.")

    def _set_show_confirmation(self, checked: bool) -> None:
        self.machine.options.show_confirmation = checked
        stored = self.config_store.get_options()
        stored.show_confirmation = checked
        self.config_store.set_options(stored)

    # ------------------------------------------------------------------
    # State machine callbacks (already on the Qt thread)
    # ------------------------------------------------------------------

    def _on_voice_input(self, text: str) -> None:
        result = self.paste_service.paste_text(text)
        if not result.success:
            logger.warning(f"Paste failed: {result.reason}")
            self.tray.showMessage("Voice Capture", ERROR_MESSAGES[NO_ACTIVE_TARGET])

    def _on_error(self, error: CaptureError) -> None:
        logger.info(f"Capture error surfaced to user: {error.kind.value}")

    def _on_transcript(self, transcript: Transcript) -> None:
        self.overlay.set_transcript(transcript)

    def _on_state_change(self, from_state: CaptureState, to_state: CaptureState) -> None:
        self.tray.setIcon(_create_icon(STATE_COLORS[to_state]))
        self.tray.setToolTip(f"Voice Capture: {self.machine.status_text}")
        error = self.machine.error
        self.overlay.show_state(
            to_state,
            self.machine.status_text,
            recoverable=bool(error and error.recoverable),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        try:
            # pynput calls back on its own thread; hop onto the Qt loop.
            self.hotkey.start(
                on_toggle=lambda: self.scheduler.call_soon(self.machine.toggle),
                on_cancel=lambda: self.scheduler.call_soon(lambda: self.machine.handle_key("Escape")),
            )
        except Exception as exc:
            logger.warning(f"Hotkey disabled: {exc}")
            self.tray.showMessage("Voice Capture", f"Hotkey disabled: {exc}")
        return self.app.exec()

    def quit(self) -> None:
        self.hotkey.stop()
        self.machine.close()
        self.app.quit()


def main() -> int:
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
