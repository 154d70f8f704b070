"""Merges final and interim speech fragments into one transcript."""

from __future__ import annotations

from typing import Optional

from models import Transcript


class TranscriptAccumulator:
    def __init__(self) -> None:
        self._committed = ""
        self._interim = ""

    @property
    def committed(self) -> str:
        return self._committed

    @property
    def interim(self) -> str:
        return self._interim

    def append_final(self, fragment: str) -> bool:
        """Append a finalized fragment. Returns False if it was blank."""
        text = (fragment or "").strip()
        if not text:
            return False
        self._committed = f"{self._committed} {text}" if self._committed else text
        return True

    def set_interim(self, fragment: Optional[str]) -> None:
        self._interim = fragment or ""

    def reset(self) -> None:
        self._committed = ""
        self._interim = ""

    def snapshot(self) -> Transcript:
        return Transcript(committed=self._committed, interim=self._interim)
