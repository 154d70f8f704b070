"""Simple JSON-based config store."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, fields
from pathlib import Path

from models import CaptureOptions

logger = logging.getLogger(__name__)

DEFAULT_HOTKEY = "Key.alt_l"
DEFAULT_CANCEL_KEY = "Key.esc"
DEFAULT_LOG_LEVEL = "INFO"


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "voice_capture" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_key(self) -> str:
        return str(self._read_all().get("api_key", ""))

    def set_api_key(self, key: str) -> None:
        self._update(api_key=key)

    def get_hotkey(self) -> str:
        return str(self._read_all().get("hotkey", DEFAULT_HOTKEY))

    def set_hotkey(self, hotkey: str) -> None:
        self._update(hotkey=hotkey)

    def get_cancel_key(self) -> str:
        return str(self._read_all().get("cancel_key", DEFAULT_CANCEL_KEY))

    def get_log_level(self) -> str:
        return str(self._read_all().get("log_level", DEFAULT_LOG_LEVEL)).upper()

    def get_options(self) -> CaptureOptions:
        """Capture options; unknown or mistyped entries fall back to defaults."""
        stored = self._read_all().get("capture", {})
        defaults = CaptureOptions()
        if not isinstance(stored, dict):
            return defaults
        values = {}
        for field in fields(CaptureOptions):
            if field.name not in stored:
                continue
            default = getattr(defaults, field.name)
            value = stored[field.name]
            if isinstance(default, bool):
                ok = isinstance(value, bool)
            elif isinstance(default, (int, float)):
                ok = isinstance(value, (int, float)) and not isinstance(value, bool)
            else:
                ok = isinstance(value, type(default))
            if ok:
                values[field.name] = type(default)(value)
            else:
                logger.warning(f"Ignoring invalid config value capture.{field.name}={value!r}")
        return CaptureOptions(**values)

    def set_options(self, options: CaptureOptions) -> None:
        self._update(capture=asdict(options))

    def _update(self, **changes: object) -> None:
        data = self._read_all()
        data.update(changes)
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning(f"Unreadable config {self._path}: {exc}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
