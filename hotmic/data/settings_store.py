from __future__ import annotations

import json
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger

from hotmic.config import Config


KEY_API_KEY = "apiKey"
KEY_SHORTCUT = "shortcut"
KEY_PROMPT_SETTINGS = "promptSettings"
KEY_HISTORY = "history"
KEY_SHOW_IN_DOCK = "showInDock"


@dataclass(frozen=True)
class PromptSettings:
    enabled: bool = True
    prompt: str = Config.DEFAULT_PROMPT

    def to_dict(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "prompt": self.prompt}

    @classmethod
    def from_dict(cls, data: Any) -> "PromptSettings":
        if not isinstance(data, dict):
            return cls()
        prompt = data.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            prompt = Config.DEFAULT_PROMPT
        return cls(enabled=bool(data.get("enabled", True)), prompt=prompt)


class SettingsStore:
    """JSON values keyed by name in a small SQLite table."""

    def __init__(self, db_path: Path | None = None):
        self._db_path = Path(db_path or Config.SETTINGS_DB_PATH)
        self._lock = threading.Lock()
        self.init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    def init_schema(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS settings (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            logger.warning(f"Stored setting '{key}' is not valid JSON; using default")
            return default

    def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value)
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                    """,
                    (key, encoded, datetime.now().isoformat()),
                )

    def delete(self, key: str) -> bool:
        with self._lock:
            with self._connect() as conn:
                cur = conn.execute("DELETE FROM settings WHERE key = ?", (key,))
                return cur.rowcount > 0

    @property
    def api_key(self) -> str:
        value = self.get(KEY_API_KEY, "")
        return value if isinstance(value, str) else ""

    @api_key.setter
    def api_key(self, value: str) -> None:
        self.set(KEY_API_KEY, (value or "").strip())

    @property
    def shortcut(self) -> str:
        value = self.get(KEY_SHORTCUT, Config.DEFAULT_HOTKEY)
        if not isinstance(value, str) or not value.strip():
            return Config.DEFAULT_HOTKEY
        return value

    @shortcut.setter
    def shortcut(self, value: str) -> None:
        self.set(KEY_SHORTCUT, value)

    @property
    def prompt_settings(self) -> PromptSettings:
        return PromptSettings.from_dict(self.get(KEY_PROMPT_SETTINGS))

    @prompt_settings.setter
    def prompt_settings(self, value: PromptSettings) -> None:
        self.set(KEY_PROMPT_SETTINGS, value.to_dict())

    @property
    def show_in_dock(self) -> bool:
        return bool(self.get(KEY_SHOW_IN_DOCK, True))

    @show_in_dock.setter
    def show_in_dock(self, value: bool) -> None:
        self.set(KEY_SHOW_IN_DOCK, bool(value))
