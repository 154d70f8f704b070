"""Global hotkey adapter based on pynput.

The toggle key acts like space/Enter on the capture button and the cancel
key like Escape. Callbacks run on the pynput listener thread; callers
marshal them onto their own loop.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore

logger = logging.getLogger(__name__)


class GlobalHotkeyAdapter:
    def __init__(self, toggle_key: str = "Key.alt_l", cancel_key: str = "Key.esc") -> None:
        self._toggle_key = toggle_key
        self._cancel_key = cancel_key
        self._listener: Optional[object] = None
        self._held: set[str] = set()
        self._lock = threading.Lock()

    def start(self, on_toggle: Callable[[], None], on_cancel: Callable[[], None]) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")
        actions = {self._toggle_key: on_toggle, self._cancel_key: on_cancel}

        def _on_press(key: object) -> None:
            name = str(key)
            action = actions.get(name)
            if action is None:
                return
            with self._lock:
                # Auto-repeat while held must not toggle again.
                if name in self._held:
                    return
                self._held.add(name)
            action()

        def _on_release(key: object) -> None:
            with self._lock:
                self._held.discard(str(key))

        self._listener = keyboard.Listener(on_press=_on_press, on_release=_on_release)
        self._listener.start()
        logger.info(f"Hotkeys active: toggle={self._toggle_key} cancel={self._cancel_key}")

    def stop(self) -> None:
        listener = self._listener
        if listener is not None:
            listener.stop()
            self._listener = None
        with self._lock:
            self._held.clear()
