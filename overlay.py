"""Overlay window showing capture status, transcript and audio level."""

from __future__ import annotations

import html
from typing import Callable

from models import CaptureState, Transcript

try:
    from PySide6.QtCore import Qt, QTimer
    from PySide6.QtWidgets import (
        QApplication,
        QHBoxLayout,
        QLabel,
        QProgressBar,
        QPushButton,
        QVBoxLayout,
        QWidget,
    )
except Exception:  # pragma: no cover
    Qt = None  # type: ignore
    QTimer = None  # type: ignore
    QApplication = None  # type: ignore
    QHBoxLayout = object  # type: ignore
    QLabel = object  # type: ignore
    QProgressBar = object  # type: ignore
    QPushButton = object  # type: ignore
    QVBoxLayout = object  # type: ignore
    QWidget = object  # type: ignore

_BASE_STYLE = "font-size: 18px; padding: 12px; background: rgba(0,0,0,190); border-radius: 12px;"


def transcript_markup(transcript: Transcript) -> str:
    """Rich text for the transcript label; interim text is italic."""
    parts = [html.escape(transcript.committed)]
    if transcript.interim:
        parts.append(f"<i>{html.escape(transcript.interim)}</i>")
    return " ".join(p for p in parts if p)


class CaptureOverlay(QWidget):
    def __init__(
        self,
        on_confirm: Callable[[], None],
        on_cancel: Callable[[], None],
        on_retry: Callable[[], None],
        on_dismiss: Callable[[], None],
    ) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self.setWindowFlags(Qt.WindowStaysOnTopHint | Qt.FramelessWindowHint | Qt.Tool)
        self.setAttribute(Qt.WA_TranslucentBackground, True)
        self.setFixedWidth(600)

        self._status = QLabel("")
        self._status.setStyleSheet("color: white;" + _BASE_STYLE)
        self._text = QLabel("")
        self._text.setWordWrap(True)
        self._text.setTextFormat(Qt.RichText)
        self._text.setStyleSheet("color: white;" + _BASE_STYLE)

        self._level = QProgressBar()
        self._level.setRange(0, 100)
        self._level.setTextVisible(False)
        self._level.setFixedHeight(6)

        self._confirm = QPushButton("Confirm")
        self._cancel = QPushButton("Cancel")
        self._retry = QPushButton("Retry")
        self._dismiss = QPushButton("Dismiss")
        self._confirm.clicked.connect(on_confirm)
        self._cancel.clicked.connect(on_cancel)
        self._retry.clicked.connect(on_retry)
        self._dismiss.clicked.connect(on_dismiss)

        buttons = QHBoxLayout()
        for button in (self._confirm, self._cancel, self._retry, self._dismiss):
            buttons.addWidget(button)

        layout = QVBoxLayout()
        layout.setContentsMargins(0, 0, 0, 0)
        layout.addWidget(self._status)
        layout.addWidget(self._level)
        layout.addWidget(self._text)
        layout.addLayout(buttons)
        self.setLayout(layout)

        self._hide_timer: QTimer | None = None
        self._show_buttons(CaptureState.IDLE, recoverable=False)

    def show_state(self, state: CaptureState, status_text: str, recoverable: bool = False) -> None:
        self._cancel_hide_timer()
        color = "#FF6B6B" if state == CaptureState.ERROR else "white"
        self._status.setStyleSheet(f"color: {color};" + _BASE_STYLE)
        self._status.setText(status_text)
        self._level.setVisible(state == CaptureState.LISTENING)
        self._show_buttons(state, recoverable)
        if state == CaptureState.IDLE:
            self.hide_with_delay(400)
            return
        self._center_top()
        self.show()

    def set_transcript(self, transcript: Transcript) -> None:
        self._text.setText(transcript_markup(transcript))

    def set_level(self, level: float) -> None:
        self._level.setValue(int(round(level * 100)))

    def hide_with_delay(self, delay_ms: int = 400) -> None:
        self._cancel_hide_timer()
        self._hide_timer = QTimer()
        self._hide_timer.setSingleShot(True)
        self._hide_timer.timeout.connect(self.hide)
        self._hide_timer.start(delay_ms)

    def _show_buttons(self, state: CaptureState, recoverable: bool) -> None:
        self._confirm.setVisible(state == CaptureState.CONFIRMING)
        self._cancel.setVisible(state in (CaptureState.CONFIRMING, CaptureState.LISTENING))
        self._retry.setVisible(state == CaptureState.ERROR and recoverable)
        self._dismiss.setVisible(state == CaptureState.ERROR)

    def _center_top(self) -> None:
        if QApplication is None:
            return
        screen = QApplication.primaryScreen()
        if screen is None:
            return
        geom = screen.availableGeometry()
        self.adjustSize()
        x = geom.x() + (geom.width() - self.width()) // 2
        y = geom.y() + 40  # below the menu bar
        self.move(x, y)

    def _cancel_hide_timer(self) -> None:
        if self._hide_timer is not None:
            self._hide_timer.stop()
            self._hide_timer = None
