from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Callable, Optional

import aiohttp
from loguru import logger

from hotmic.config import Config
from hotmic.core.error_taxonomy import ApiError, ConfigError, EmptyTranscriptError
from hotmic.microphone import AudioClip
from hotmic.wav import ensure_container


ProgressCallback = Callable[[str], None]


def _error_message(raw: str) -> str:
    """Pull a readable message out of an OpenAI-style error body."""
    try:
        payload = json.loads(raw)
    except (ValueError, TypeError):
        return raw[:500]
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
        if isinstance(err, str) and err:
            return err
        if isinstance(payload.get("message"), str):
            return payload["message"]
    return raw[:500]


class TranscriptionClient:
    """Uploads a finished recording and returns the transcript text."""

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        *,
        url: str = Config.TRANSCRIPTION_URL,
        model: str = Config.TRANSCRIPTION_MODEL,
        timeout_secs: float = Config.UPLOAD_TIMEOUT_SECS,
    ):
        self._session = session
        self.url = url
        self.model = model
        self.timeout_secs = timeout_secs

    async def transcribe(
        self,
        clip: AudioClip,
        api_key: str,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        data, mime, ext = ensure_container(clip)
        return await self._post(data, f"recording.{ext}", mime, api_key, on_progress)

    async def transcribe_file(
        self,
        path: str | Path,
        api_key: str,
        *,
        content_type: str = "audio/webm",
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        p = Path(path)
        try:
            data = p.read_bytes()
        except OSError as e:
            raise ApiError(f"Could not read recording {p.name}: {e}") from e
        return await self._post(data, p.name, content_type, api_key, on_progress)

    async def _post(
        self,
        file_content: bytes,
        filename: str,
        content_type: str,
        api_key: str,
        on_progress: Optional[ProgressCallback],
    ) -> str:
        if not api_key:
            raise ConfigError("API key not set")

        if self._session is not None:
            return await self._send(self._session, file_content, filename, content_type, api_key, on_progress)
        async with aiohttp.ClientSession() as session:
            return await self._send(session, file_content, filename, content_type, api_key, on_progress)

    async def _send(
        self,
        session: Any,
        file_content: bytes,
        filename: str,
        content_type: str,
        api_key: str,
        on_progress: Optional[ProgressCallback],
    ) -> str:
        data = aiohttp.FormData()
        data.add_field("file", file_content, filename=filename, content_type=content_type)
        data.add_field("model", self.model)
        headers = {"Authorization": f"Bearer {api_key}"}

        logger.debug(f"Uploading {filename} ({len(file_content)} bytes, {content_type})")
        try:
            async with session.post(
                self.url,
                data=data,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout_secs),
            ) as resp:
                if on_progress is not None:
                    on_progress("receiving")
                raw = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ApiError(f"Transcription request failed: {e or type(e).__name__}") from e

        if status < 200 or status >= 300:
            raise ApiError(f"Transcription failed ({status}): {_error_message(raw)}", status=status)

        try:
            payload = json.loads(raw) if raw else {}
        except ValueError as e:
            raise ApiError(f"Transcription response was not JSON: {raw[:200]}", status=status) from e
        if not isinstance(payload, dict):
            raise ApiError("Transcription response was not a JSON object", status=status)

        text = payload.get("text")
        if not isinstance(text, str) or not text.strip():
            raise EmptyTranscriptError()
        return text.strip()
