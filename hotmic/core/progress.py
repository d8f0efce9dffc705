from __future__ import annotations

from enum import Enum
from typing import Protocol, runtime_checkable

from loguru import logger


class ProgressStep(str, Enum):
    RECORDING = "recording"
    START = "start"
    API = "api"
    RECEIVING = "receiving"
    PROCESSING = "processing"
    WARNING = "warning"
    COMPLETE = "complete"
    NO_SPEECH = "no_speech"
    ERROR = "error"
    CANCELLED = "cancelled"


STEP_MESSAGES: dict[ProgressStep, str] = {
    ProgressStep.RECORDING: "Recording...",
    ProgressStep.START: "Preparing audio...",
    ProgressStep.API: "Sending to Whisper API...",
    ProgressStep.RECEIVING: "Receiving transcription...",
    ProgressStep.PROCESSING: "Processing with AI...",
    ProgressStep.COMPLETE: "Copied to clipboard!",
    ProgressStep.NO_SPEECH: "No speech detected.",
    ProgressStep.CANCELLED: "Cancelled",
}


def default_message(step: ProgressStep) -> str:
    return STEP_MESSAGES.get(step, "")


@runtime_checkable
class ProgressSink(Protocol):
    def show(self) -> None: ...

    def update(self, step: ProgressStep, message: str = "") -> None: ...

    def update_level(self, level: float) -> None: ...

    def close(self) -> None: ...


class NullProgressSink:
    def show(self) -> None:
        pass

    def update(self, step: ProgressStep, message: str = "") -> None:
        pass

    def update_level(self, level: float) -> None:
        pass

    def close(self) -> None:
        pass


class LoggingProgressSink:
    """Headless sink: progress goes to the log instead of a window."""

    def __init__(self) -> None:
        self.visible = False
        self.last_step: ProgressStep | None = None
        self.last_message = ""

    def show(self) -> None:
        self.visible = True

    def update(self, step: ProgressStep, message: str = "") -> None:
        self.last_step = step
        self.last_message = message or default_message(step)
        level = "WARNING" if step in (ProgressStep.ERROR, ProgressStep.WARNING) else "INFO"
        logger.log(level, f"[progress] {step.value}: {self.last_message}")

    def update_level(self, level: float) -> None:
        pass

    def close(self) -> None:
        self.visible = False
