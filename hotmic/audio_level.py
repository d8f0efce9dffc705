from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable, Optional, Protocol, Sequence

import numpy as np
from loguru import logger

from hotmic.config import Config

MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0


def byte_frequency_data(samples: np.ndarray, fft_size: int = Config.FFT_SIZE) -> np.ndarray:
    """Return the magnitude spectrum of ``samples`` as bytes (0..255).

    Uses a Blackman window and maps -100..-30 dB onto 0..255, the same scaling
    browsers use for ``AnalyserNode.getByteFrequencyData``.
    """
    data = np.asarray(samples)
    if data.dtype == np.int16:
        data = data.astype(np.float32) / 32768.0
    else:
        data = data.astype(np.float32)
    if data.ndim > 1:
        data = data.mean(axis=1)

    frame = np.zeros(fft_size, dtype=np.float32)
    tail = data[-fft_size:]
    frame[fft_size - tail.size:] = tail

    window = np.blackman(fft_size)
    spectrum = np.fft.rfft(frame * window)[: fft_size // 2]
    magnitude = np.abs(spectrum) / fft_size
    with np.errstate(divide="ignore"):
        db = 20.0 * np.log10(magnitude)
    scaled = (db - MIN_DECIBELS) * (255.0 / (MAX_DECIBELS - MIN_DECIBELS))
    scaled = np.nan_to_num(scaled, nan=0.0, neginf=0.0, posinf=255.0)
    return np.clip(scaled, 0, 255).astype(np.uint8)


class FrequencySource(Protocol):
    def frequency_bins(self) -> Optional[Sequence[int]]: ...


class AudioLevelMeter:
    """Turns frequency bins into a smoothed 0..1 loudness value."""

    def __init__(
        self,
        *,
        gain: float = Config.LEVEL_GAIN,
        noise_gate: float = Config.LEVEL_NOISE_GATE,
        window: int = Config.LEVEL_WINDOW,
        interval_ms: int = Config.LEVEL_INTERVAL_MS,
    ):
        self.gain = gain
        self.noise_gate = noise_gate
        self.interval_ms = interval_ms
        self._history: deque[float] = deque(maxlen=max(1, int(window)))
        self._task: asyncio.Task | None = None

    def process(self, bins: Sequence[int]) -> float:
        if bins is None or len(bins) == 0:
            raw = 0.0
        else:
            avg = float(np.mean(np.asarray(bins, dtype=np.float64))) / 255.0
            raw = min(1.0, avg * self.gain)
        if raw < self.noise_gate:
            raw = 0.0
        self._history.append(raw)
        return sum(self._history) / len(self._history)

    def reset(self) -> None:
        self._history.clear()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, source: FrequencySource, on_level: Callable[[float], None]) -> None:
        self.stop()
        self.reset()
        self._task = asyncio.get_running_loop().create_task(self._run(source, on_level))

    async def _run(self, source: FrequencySource, on_level: Callable[[float], None]) -> None:
        interval = self.interval_ms / 1000.0
        while True:
            bins = source.frequency_bins()
            if bins is None:
                logger.debug("Level meter source closed; stopping")
                return
            level = self.process(bins)
            try:
                on_level(level)
            except Exception as e:
                logger.debug(f"Level callback failed: {e}")
            await asyncio.sleep(interval)

    def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
