from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any

from loguru import logger

from hotmic.config import Config


PRETTY_LOG_NAME = "latest.log"
STRUCTURED_LOG_NAME = "latest.structured.jsonl"

LINE_FORMAT = (
    "{time:HH:mm:ss.SSS} {level:<5} "
    "[{extra[component]:<9}] "
    "[{extra[session]:<6}] "
    "[{extra[stage]:<15}] "
    "{message}"
)

_VALID_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}

_configured_paths: dict[str, str] | None = None


def _normalize_level(level: str | None) -> str:
    raw = (level or "INFO").strip().upper()
    return raw if raw in _VALID_LEVELS else "INFO"


def setup_logging(
    *,
    component: str = "app",
    log_dir: Path | None = None,
    force: bool = False,
    add_stderr: bool = True,
) -> dict[str, str]:
    """Route loguru to stderr, a readable log file and a JSON-lines file.

    Both files are truncated on every start. Calling again is a no-op unless
    ``force`` is set.
    """
    global _configured_paths
    if _configured_paths is not None and not force:
        return dict(_configured_paths)

    target_dir = log_dir or Config.LOG_DIR
    target_dir.mkdir(parents=True, exist_ok=True)
    pretty_path = target_dir / PRETTY_LOG_NAME
    structured_path = target_dir / STRUCTURED_LOG_NAME
    level = _normalize_level(os.getenv("HOTMIC_LOG_LEVEL", "DEBUG"))

    logger.remove()
    logger.configure(extra={"component": component, "session": "------", "stage": component})

    common = {"level": level, "enqueue": False, "backtrace": False, "diagnose": False}
    if add_stderr:
        logger.add(sys.stderr, format=LINE_FORMAT, colorize=False, **common)
    logger.add(pretty_path, format=LINE_FORMAT, encoding="utf-8", mode="w", **common)
    logger.add(structured_path, serialize=True, encoding="utf-8", mode="w", **common)

    _configured_paths = {"pretty": str(pretty_path), "structured": str(structured_path)}
    return dict(_configured_paths)


def emit_event(
    bound_logger: Any,
    message: str,
    *,
    level: str = "INFO",
    event: str | None = None,
    stage: str | None = None,
    session_id: str | None = None,
    duration_ms: int | float | None = None,
    outcome: str | None = None,
    error_category: str | None = None,
    meta: dict[str, Any] | None = None,
) -> None:
    """Log ``message`` with structured extras that land in the JSON-lines sink."""
    extras: dict[str, Any] = {
        key: value
        for key, value in (
            ("event", event),
            ("stage", stage),
            ("duration_ms", duration_ms),
            ("outcome", outcome),
            ("error_category", error_category),
            ("meta", meta),
        )
        if value is not None
    }
    if session_id is not None:
        extras["session_id"] = session_id
        extras["session"] = session_id[-6:]

    target = bound_logger.bind(**extras) if extras else bound_logger
    target.log(_normalize_level(level), message)
