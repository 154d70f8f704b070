from __future__ import annotations

import json
from pathlib import Path

from config import JsonConfigStore
from models import CaptureOptions


def test_config_read_write(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    store = JsonConfigStore(path=path)

    assert store.get_api_key() == ""
    assert store.get_hotkey() == "Key.alt_l"

    store.set_api_key("abc")
    store.set_hotkey("Key.alt_r")

    reloaded = JsonConfigStore(path=path)
    assert reloaded.get_api_key() == "abc"
    assert reloaded.get_hotkey() == "Key.alt_r"


def test_config_invalid_json_fallback(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{invalid", encoding="utf-8")

    store = JsonConfigStore(path=path)
    assert store.get_api_key() == ""
    assert store.get_hotkey() == "Key.alt_l"
    assert store.get_options() == CaptureOptions()


def test_config_non_object_json_fallback(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")

    store = JsonConfigStore(path=path)
    assert store.get_api_key() == ""

    store.set_api_key("abc")
    assert json.loads(path.read_text(encoding="utf-8")) == {"api_key": "abc"}


def test_cancel_key_and_log_level_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    store = JsonConfigStore(path=path)

    assert store.get_cancel_key() == "Key.esc"
    assert store.get_log_level() == "INFO"

    path.write_text(json.dumps({"log_level": "debug", "cancel_key": "Key.f8"}), encoding="utf-8")
    assert store.get_log_level() == "DEBUG"
    assert store.get_cancel_key() == "Key.f8"


def test_options_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    store = JsonConfigStore(path=path)
    store.set_api_key("abc")

    options = CaptureOptions(auto_submit=True, show_confirmation=False, grace_window_ms=300)
    store.set_options(options)

    reloaded = JsonConfigStore(path=path)
    assert reloaded.get_options() == options
    assert reloaded.get_api_key() == "abc"


def test_options_ignore_mistyped_values(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "capture": {
                    "auto_submit": "yes",
                    "grace_window_ms": True,
                    "retry_delay_ms": 2500,
                    "level_ceiling": 100,
                    "placeholder": 42,
                    "unknown_option": 1,
                }
            }
        ),
        encoding="utf-8",
    )

    options = JsonConfigStore(path=path).get_options()

    assert options.auto_submit is False
    assert options.grace_window_ms == 150
    assert options.retry_delay_ms == 2500
    assert options.level_ceiling == 100.0
    assert isinstance(options.level_ceiling, float)
    assert options.placeholder == "Click to speak..."


def test_options_section_not_a_dict(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"capture": "fast"}), encoding="utf-8")

    assert JsonConfigStore(path=path).get_options() == CaptureOptions()
