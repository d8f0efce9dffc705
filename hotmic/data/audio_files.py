from __future__ import annotations

import contextlib
import time
from pathlib import Path
from typing import Iterator

from loguru import logger

from hotmic.config import Config


class AudioFileStore:
    def __init__(self, temp_dir: Path | None = None, recordings_dir: Path | None = None):
        self.temp_dir = Path(temp_dir or Config.TEMP_DIR)
        self.recordings_dir = Path(recordings_dir or Config.RECORDINGS_DIR)

    @staticmethod
    def _name(extension: str) -> str:
        return f"recording-{int(time.time() * 1000)}.{extension.lstrip('.')}"

    @contextlib.contextmanager
    def temp_file(self, data: bytes, extension: str) -> Iterator[Path]:
        """Write ``data`` to a scratch file that is removed when the block exits."""
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        path = self.temp_dir / self._name(extension)
        path.write_bytes(data)
        try:
            yield path
        finally:
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not remove temp recording {path}: {e}")

    def persist(self, data: bytes, extension: str) -> Path:
        self.recordings_dir.mkdir(parents=True, exist_ok=True)
        path = self.recordings_dir / self._name(extension)
        counter = 1
        while path.exists():
            path = self.recordings_dir / f"{path.stem.split('_')[0]}_{counter}.{extension.lstrip('.')}"
            counter += 1
        path.write_bytes(data)
        logger.debug(f"Saved recording to {path}")
        return path
