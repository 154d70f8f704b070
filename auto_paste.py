"""Delivers confirmed transcripts into the focused application via the clipboard."""

from __future__ import annotations

import logging
import sys
import time

from errors import NO_ACTIVE_TARGET
from models import PasteResult

try:
    import pyperclip
except Exception:  # pragma: no cover
    pyperclip = None  # type: ignore

try:
    from pynput.keyboard import Controller, Key
except Exception:  # pragma: no cover
    Controller = None  # type: ignore
    Key = None  # type: ignore

logger = logging.getLogger(__name__)


def _paste_modifier() -> object:
    return Key.cmd if sys.platform == "darwin" else Key.ctrl


class ClipboardPasteService:
    def __init__(self, restore_delay_s: float = 0.1, restore_clipboard: bool = True) -> None:
        self._restore_delay_s = restore_delay_s
        self._restore_clipboard = restore_clipboard

    def paste_text(self, text: str) -> PasteResult:
        text = text.strip()
        if not text:
            return PasteResult(success=False, reason="empty text", clipboard_restored=True)
        if pyperclip is None or Controller is None or Key is None:
            return PasteResult(
                success=False,
                reason="clipboard/keyboard dependency missing",
                clipboard_restored=False,
            )

        previous: str | None = None
        try:
            previous = pyperclip.paste()
            pyperclip.copy(text)
            self._send_paste_shortcut()
        except Exception as exc:
            logger.warning(f"Paste failed: {exc}")
            # Leave the transcript on the clipboard so the user can paste it.
            return PasteResult(
                success=False,
                reason=f"{NO_ACTIVE_TARGET}: {exc}",
                clipboard_restored=False,
            )

        if not self._restore_clipboard or previous is None:
            return PasteResult(success=True, reason="ok", clipboard_restored=False)
        time.sleep(self._restore_delay_s)
        try:
            pyperclip.copy(previous)
        except Exception as exc:
            logger.warning(f"Clipboard restore failed: {exc}")
            return PasteResult(success=True, reason="ok", clipboard_restored=False)
        return PasteResult(success=True, reason="ok", clipboard_restored=True)

    def _send_paste_shortcut(self) -> None:
        keyboard = Controller()
        modifier = _paste_modifier()
        with keyboard.pressed(modifier):
            keyboard.press("v")
            keyboard.release("v")
