from __future__ import annotations

import contextlib
import io
import os
import shutil
import subprocess
import tempfile
import wave
from typing import TYPE_CHECKING

from loguru import logger

from hotmic.core.error_taxonomy import EncodingError

if TYPE_CHECKING:
    from hotmic.microphone import AudioClip


MIME_PCM = "audio/pcm"
MIME_WAV = "audio/wav"
MIME_WEBM = "audio/webm"

_EXTENSIONS = {MIME_PCM: "pcm", MIME_WAV: "wav", MIME_WEBM: "webm"}


def extension_for(mime: str) -> str:
    return _EXTENSIONS.get(mime, "bin")


def mime_for_extension(extension: str) -> str:
    ext = (extension or "").lower().lstrip(".")
    for mime, known in _EXTENSIONS.items():
        if known == ext:
            return mime
    return "application/octet-stream"


def ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None


def pcm_to_wav(audio_bytes: bytes, sample_rate: int, channels: int) -> bytes:
    if len(audio_bytes) % 2:
        raise EncodingError("PCM payload is not aligned to 16-bit samples")
    try:
        buf = io.BytesIO()
        with contextlib.closing(wave.open(buf, "wb")) as wf:
            wf.setnchannels(max(1, int(channels or 1)))
            wf.setsampwidth(2)  # int16 PCM
            wf.setframerate(max(1, int(sample_rate or 16000)))
            wf.writeframes(audio_bytes)
        return buf.getvalue()
    except (wave.Error, ValueError) as e:
        raise EncodingError(f"WAV encoding failed: {e}") from e


def encode_opus_webm(audio_bytes: bytes, sample_rate: int, channels: int) -> bytes:
    """Encode int16 PCM into WebM/Opus with ffmpeg.

    The PCM is wrapped as a temp WAV first so ffmpeg sees proper duration metadata.
    """
    if not ffmpeg_available():
        raise EncodingError("ffmpeg not found on PATH")

    wav_bytes = pcm_to_wav(audio_bytes, sample_rate, channels)
    wav_path = ""
    webm_path = ""
    try:
        with tempfile.NamedTemporaryFile(suffix=".wav", delete=False) as wav_file:
            wav_file.write(wav_bytes)
            wav_path = wav_file.name
        webm_path = wav_path[: -len(".wav")] + ".webm"

        cmd = [
            "ffmpeg",
            "-y",
            "-i",
            wav_path,
            "-vn",
            "-c:a",
            "libopus",
            "-ar",
            "48000",
            "-ac",
            str(max(1, int(channels or 1))),
            "-b:a",
            "32k",
            "-application",
            "voip",
            "-f",
            "webm",
            webm_path,
        ]
        try:
            subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise EncodingError(f"ffmpeg opus encode failed: {e}") from e

        with open(webm_path, "rb") as f:
            return f.read()
    finally:
        for path in (wav_path, webm_path):
            if path:
                try:
                    os.remove(path)
                except FileNotFoundError:
                    pass
                except OSError as e:
                    logger.debug(f"Could not remove encoder temp file {path}: {e}")


def ensure_container(clip: "AudioClip") -> tuple[bytes, str, str]:
    """Return ``(bytes, mime, extension)`` ready to upload.

    Headerless PCM is wrapped as WAV. If wrapping fails the raw bytes are sent as-is.
    """
    if clip.mime != MIME_PCM:
        return clip.data, clip.mime, extension_for(clip.mime)
    try:
        return pcm_to_wav(clip.data, clip.sample_rate, clip.channels), MIME_WAV, "wav"
    except EncodingError as e:
        logger.warning(f"WAV wrap failed ({e}); uploading raw PCM")
        return clip.data, MIME_PCM, "pcm"
