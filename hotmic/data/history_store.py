from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

from loguru import logger

from hotmic.config import Config
from hotmic.data.settings_store import KEY_HISTORY, SettingsStore


DAY_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class HistoryEntry:
    timestamp: int
    raw_text: str
    processed_text: str
    audio_path: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "timestamp": self.timestamp,
            "rawText": self.raw_text,
            "processedText": self.processed_text,
        }
        if self.audio_path:
            out["audioPath"] = self.audio_path
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        return cls(
            timestamp=int(data.get("timestamp") or 0),
            raw_text=str(data.get("rawText") or ""),
            processed_text=str(data.get("processedText") or ""),
            audio_path=data.get("audioPath") or None,
        )


class HistoryStore:
    """Newest-first transcription history kept for a fixed number of days."""

    def __init__(
        self,
        settings: SettingsStore,
        *,
        retention_days: int = Config.HISTORY_RETENTION_DAYS,
        clock: Callable[[], float] = time.time,
    ):
        self._settings = settings
        self.retention_days = retention_days
        self._clock = clock
        self._lock = threading.RLock()

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _load(self) -> list[HistoryEntry]:
        raw = self._settings.get(KEY_HISTORY, [])
        if not isinstance(raw, list):
            logger.warning("Stored history is not a list; ignoring")
            return []
        entries = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            try:
                entries.append(HistoryEntry.from_dict(item))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed history entry: {e}")
        return entries

    def _save(self, entries: list[HistoryEntry]) -> None:
        self._settings.set(KEY_HISTORY, [e.to_dict() for e in entries])

    def append(self, raw_text: str, processed_text: str, audio_path: str | None = None) -> HistoryEntry:
        entry = HistoryEntry(self.now_ms(), raw_text, processed_text, audio_path)
        with self._lock:
            entries = self._load()
            entries.insert(0, entry)
            self._save(entries)
        self.sweep()
        return entry

    def update(self, audio_path: str, raw_text: str, processed_text: str) -> bool:
        with self._lock:
            entries = self._load()
            for idx, entry in enumerate(entries):
                if entry.audio_path == audio_path:
                    entries[idx] = replace(entry, raw_text=raw_text, processed_text=processed_text)
                    self._save(entries)
                    return True
        return False

    def find(self, audio_path: str) -> HistoryEntry | None:
        with self._lock:
            for entry in self._load():
                if entry.audio_path == audio_path:
                    return entry
        return None

    def list(self) -> list[HistoryEntry]:
        self.sweep()
        with self._lock:
            return self._load()

    def sweep(self) -> list[HistoryEntry]:
        """Drop entries older than the retention window and delete their audio."""
        cutoff = self.now_ms() - self.retention_days * DAY_MS
        with self._lock:
            entries = self._load()
            kept = [e for e in entries if e.timestamp > cutoff]
            removed = [e for e in entries if e.timestamp <= cutoff]
            if removed:
                self._save(kept)
        for entry in removed:
            self._remove_audio(entry.audio_path)
        if removed:
            logger.info(f"History sweep removed {len(removed)} entries")
        return removed

    def clear(self) -> None:
        with self._lock:
            entries = self._load()
            self._save([])
        for entry in entries:
            self._remove_audio(entry.audio_path)

    @staticmethod
    def _remove_audio(path: str | None) -> None:
        if not path:
            return
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not delete recording {path}: {e}")
