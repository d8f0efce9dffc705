from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np
from loguru import logger

from hotmic.audio_level import byte_frequency_data
from hotmic.config import Config
from hotmic.core.error_taxonomy import DeviceError, EncodingError
from hotmic.wav import MIME_PCM, MIME_WEBM, encode_opus_webm, extension_for, ffmpeg_available

try:
    import sounddevice as sd
    HAS_SOUNDDEVICE = True
except Exception:
    sd = None
    HAS_SOUNDDEVICE = False
    logger.warning("Sounddevice not available. Microphone input will be disabled.")


AGC_TARGET_PEAK = 0.9 * 32767
AGC_MAX_GAIN = 8.0

_echo_cancel_logged = False


@dataclass(frozen=True)
class RecorderConstraints:
    sample_rate: int = Config.SAMPLE_RATE
    channels: int = 1
    echo_cancellation: bool = True
    auto_gain_control: bool = False
    preferred_codec: str = "opus"
    device: Optional[str] = None

    @classmethod
    def from_config(cls) -> "RecorderConstraints":
        device = Config.MIC_DEVICE if Config.MIC_DEVICE and Config.MIC_DEVICE != "default" else None
        return cls(
            sample_rate=Config.SAMPLE_RATE,
            channels=Config.CHANNELS,
            echo_cancellation=Config.ECHO_CANCELLATION,
            auto_gain_control=Config.AUTO_GAIN_CONTROL,
            preferred_codec=Config.PREFERRED_CODEC,
            device=device,
        )


@dataclass(frozen=True)
class AudioClip:
    data: bytes
    mime: str
    duration_ms: int
    sample_rate: int
    channels: int = 1

    @property
    def extension(self) -> str:
        return extension_for(self.mime)

    @property
    def is_empty(self) -> bool:
        return len(self.data) == 0


def apply_software_gain(pcm: bytes) -> bytes:
    """Peak-normalise an int16 block, boosting by at most ``AGC_MAX_GAIN``."""
    samples = np.frombuffer(pcm, dtype=np.int16)
    if samples.size == 0:
        return pcm
    peak = float(np.max(np.abs(samples.astype(np.int32))))
    if peak <= 0:
        return pcm
    gain = min(AGC_MAX_GAIN, AGC_TARGET_PEAK / peak)
    if gain <= 1.0:
        return pcm
    boosted = np.clip(samples.astype(np.float32) * gain, -32768, 32767).astype(np.int16)
    return boosted.tobytes()


def negotiate_codec(preferred: str) -> str:
    if (preferred or "").lower() == "opus":
        if ffmpeg_available():
            return MIME_WEBM
        logger.info("Opus requested but ffmpeg is not on PATH; recording with default PCM codec")
    return MIME_PCM


class Recorder:
    """Captures microphone audio into chunks while a session is recording.

    Blocks arrive on the sounddevice callback thread and are handed to the event
    loop; a background task groups them into chunks every ``chunk_interval_ms``.
    """

    def __init__(
        self,
        constraints: RecorderConstraints | None = None,
        *,
        chunk_interval_ms: int = Config.CHUNK_INTERVAL_MS,
        on_chunk: Callable[[bytes], None] | None = None,
        block_size: int = Config.BLOCK_SIZE,
        stream_factory: Callable[..., Any] | None = None,
    ):
        self.constraints = constraints or RecorderConstraints.from_config()
        self.chunk_interval_ms = chunk_interval_ms
        self.on_chunk = on_chunk
        self.block_size = block_size
        self._stream_factory = stream_factory
        self._stream = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._collect_task: asyncio.Task | None = None
        self._pending: list[bytes] = []
        self._chunks: list[bytes] = []
        self._latest_block: np.ndarray | None = None
        self._open = False
        self._closed = False
        self.mime = MIME_PCM

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        global _echo_cancel_logged
        if self._open:
            return
        if self._closed:
            raise DeviceError("Recorder has already been closed")
        factory = self._stream_factory
        if factory is None:
            if not HAS_SOUNDDEVICE:
                raise DeviceError("Sounddevice is not available, cannot open the microphone.")
            factory = sd.InputStream

        self._loop = asyncio.get_running_loop()
        self.mime = negotiate_codec(self.constraints.preferred_codec)
        if self.constraints.echo_cancellation and not _echo_cancel_logged:
            logger.info("Echo cancellation requested; availability depends on the host audio stack")
            _echo_cancel_logged = True

        kwargs: dict[str, Any] = {
            "samplerate": self.constraints.sample_rate,
            "channels": self.constraints.channels,
            "blocksize": self.block_size,
            "dtype": "int16",
            "callback": self._audio_callback,
        }
        if self.constraints.device is not None:
            kwargs["device"] = self.constraints.device

        try:
            self._stream = factory(**kwargs)
            self._stream.start()
        except Exception as e:
            self._discard_stream()
            text = str(e).lower()
            denied = "permission" in text or "denied" in text or "not allowed" in text
            logger.error(f"Microphone error: {e}")
            raise DeviceError(f"Could not open microphone: {e}", permission_denied=denied) from e

        self._open = True
        self._collect_task = self._loop.create_task(self._collect_loop())
        logger.info(f"Microphone stream started ({self.mime})")

    def _audio_callback(self, indata, frames, time, status):
        if status:
            logger.warning(f"Audio status: {status}")
        if not self._open or self._loop is None:
            return
        block = np.array(indata, copy=True)
        try:
            self._loop.call_soon_threadsafe(self._on_block, block)
        except RuntimeError:
            # Loop already closed during shutdown.
            pass

    def _on_block(self, block: np.ndarray) -> None:
        self._latest_block = block
        self._pending.append(block.tobytes())

    def collect_chunk(self) -> bytes:
        if not self._pending:
            return b""
        data = b"".join(self._pending)
        self._pending.clear()
        if self.constraints.auto_gain_control:
            data = apply_software_gain(data)
        self._chunks.append(data)
        if self.on_chunk is not None:
            try:
                self.on_chunk(data)
            except Exception as e:
                logger.warning(f"Chunk callback failed: {e}")
        return data

    async def _collect_loop(self) -> None:
        interval = self.chunk_interval_ms / 1000.0
        while self._open:
            await asyncio.sleep(interval)
            self.collect_chunk()

    def frequency_bins(self):
        if not self._open:
            return None
        block = self._latest_block
        if block is None:
            return np.zeros(Config.FFT_SIZE // 2, dtype=np.uint8)
        return byte_frequency_data(block, Config.FFT_SIZE)

    async def finalize(self, chunks: list[bytes] | None = None) -> AudioClip:
        """Collect any remaining audio and assemble the finished clip.

        ``chunks`` is the caller's own copy of the audio delivered through
        ``on_chunk``; when omitted the recorder's internal buffer is used.
        """
        self.collect_chunk()
        pcm = b"".join(self._chunks if chunks is None else chunks)
        sr = self.constraints.sample_rate
        ch = max(1, self.constraints.channels)
        duration_ms = int(len(pcm) / 2 / ch / max(1, sr) * 1000)

        if not pcm:
            return AudioClip(b"", MIME_PCM, 0, sr, ch)

        if self.mime == MIME_WEBM:
            loop = asyncio.get_running_loop()
            try:
                data = await loop.run_in_executor(None, encode_opus_webm, pcm, sr, ch)
                return AudioClip(data, MIME_WEBM, duration_ms, sr, ch)
            except EncodingError as e:
                logger.warning(f"Opus encode failed ({e}); falling back to PCM")

        return AudioClip(pcm, MIME_PCM, duration_ms, sr, ch)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._open = False

        task = self._collect_task
        self._collect_task = None
        if task is not None and not task.done():
            task.cancel()

        self._discard_stream()
        logger.info("Microphone stream closed")

    def _discard_stream(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
        except Exception as e:
            logger.debug(f"Stream stop failed: {e}")
        try:
            stream.close()
        except Exception as e:
            logger.debug(f"Stream close failed: {e}")
