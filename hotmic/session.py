"""Recording/transcription session lifecycle.

``SessionController`` owns at most one ``Session`` at a time and drives it
through the state machine: record, finalize, upload, transcribe, optionally
post-process, then hand the text to history and the clipboard. Everything runs
on one asyncio loop; cancellation is cooperative and checked after every await.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from loguru import logger

from hotmic.audio_level import AudioLevelMeter
from hotmic.config import Config
from hotmic.core.error_taxonomy import (
    ApiError,
    ConfigError,
    EmptyTranscriptError,
    ErrorCategory,
    classify_exception,
    user_message_for_exception,
)
from hotmic.core.events import EventBus, HistoryChanged, LevelUpdated, ProgressChanged, SessionFinished
from hotmic.core.logging_setup import emit_event
from hotmic.core.progress import NullProgressSink, ProgressSink, ProgressStep, default_message
from hotmic.core.state_machine import SessionState, SessionStateMachine
from hotmic.data.audio_files import AudioFileStore
from hotmic.data.history_store import HistoryStore
from hotmic.data.settings_store import SettingsStore
from hotmic.microphone import AudioClip, Recorder
from hotmic.post_processing import PostProcessor
from hotmic.transcription import TranscriptionClient
from hotmic.wav import ensure_container, mime_for_extension


def _new_session_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class Session:
    id: str = field(default_factory=_new_session_id)
    started_at: float = field(default_factory=time.time)
    machine: SessionStateMachine = field(default_factory=SessionStateMachine)
    audio_chunks: list[bytes] = field(default_factory=list)
    cancel_requested: bool = False
    api_key: str = ""
    recorder: Any = None
    meter: Any = None
    auto_stop_handle: Optional[asyncio.TimerHandle] = None
    retranscribe_path: Optional[str] = None
    resources_released: bool = False

    @property
    def state(self) -> SessionState:
        return self.machine.state


@dataclass(frozen=True)
class SessionOutcome:
    session_id: str
    state: SessionState
    raw_text: str = ""
    processed_text: str = ""
    error: Optional[str] = None


class SessionController:
    def __init__(
        self,
        *,
        settings: SettingsStore,
        history: HistoryStore,
        transcriber: TranscriptionClient,
        post_processor: PostProcessor,
        audio_files: AudioFileStore,
        bus: EventBus | None = None,
        sink: ProgressSink | None = None,
        clipboard: Any = None,
        recorder_factory: Callable[[Callable[[bytes], None]], Any] | None = None,
        meter_factory: Callable[[], Any] | None = None,
        max_recording_ms: int = Config.MAX_RECORDING_MS,
        complete_close_delay_ms: int = Config.COMPLETE_CLOSE_DELAY_MS,
        error_close_delay_ms: int = Config.ERROR_CLOSE_DELAY_MS,
        keep_recordings: bool = Config.KEEP_RECORDINGS,
    ):
        self._settings = settings
        self._history = history
        self._transcriber = transcriber
        self._post_processor = post_processor
        self._audio_files = audio_files
        self._bus = bus or EventBus()
        self._sink: ProgressSink = sink or NullProgressSink()
        self._clipboard = clipboard
        self._recorder_factory = recorder_factory or (lambda on_chunk: Recorder(on_chunk=on_chunk))
        self._meter_factory = meter_factory or AudioLevelMeter
        self.max_recording_ms = max_recording_ms
        self.complete_close_delay_ms = complete_close_delay_ms
        self.error_close_delay_ms = error_close_delay_ms
        self.keep_recordings = keep_recordings

        self._session: Session | None = None
        self._close_handle: asyncio.TimerHandle | None = None
        self._background: set[asyncio.Task] = set()

    @property
    def state(self) -> SessionState:
        session = self._session
        return session.state if session is not None else SessionState.IDLE

    @property
    def current_session(self) -> Session | None:
        return self._session

    @property
    def sink(self) -> ProgressSink:
        return self._sink

    @property
    def bus(self) -> EventBus:
        return self._bus

    # ------------------------------------------------------------------
    # Public operations

    async def start(self) -> bool:
        """Begin recording. Returns False when a session is already active."""
        if self._session is not None:
            logger.debug(f"Start ignored; session busy ({self.state.value})")
            return False

        session = Session(api_key=self._settings.api_key)
        self._session = session
        self._cancel_close_timer()
        self._sink.show()

        if not session.api_key:
            self._fail(session, ConfigError("API key not set"))
            return False

        self._transition(session, SessionState.RECORDING)
        session.recorder = self._recorder_factory(session.audio_chunks.append)
        try:
            await session.recorder.open()
        except Exception as e:
            self._fail(session, e)
            return False

        if session.cancel_requested:
            self._release(session)
            return False

        self._report(session, ProgressStep.RECORDING)
        session.meter = self._meter_factory()
        session.meter.start(session.recorder, lambda level: self._on_level(session, level))

        loop = asyncio.get_running_loop()
        session.auto_stop_handle = loop.call_later(
            self.max_recording_ms / 1000.0, self._auto_stop, session
        )
        return True

    async def stop(self) -> SessionOutcome | None:
        session = self._session
        if session is None or session.state != SessionState.RECORDING:
            return None

        self._release(session)
        self._transition(session, SessionState.FINALIZING)
        self._report(session, ProgressStep.START)
        try:
            clip = await session.recorder.finalize(session.audio_chunks)
            if session.cancel_requested:
                return self._cancelled_outcome(session)
            if clip.is_empty:
                raise EmptyTranscriptError()
            return await self._upload(session, clip)
        except Exception as e:
            return self._fail(session, e)

    async def toggle(self) -> Any:
        state = self.state
        if state == SessionState.IDLE:
            return await self.start()
        if state == SessionState.RECORDING:
            return await self.stop()
        logger.debug(f"Toggle ignored while {state.value}")
        return None

    def cancel(self, reason: str = "user") -> bool:
        session = self._session
        if session is None or session.machine.is_terminal:
            return False

        session.cancel_requested = True
        self._release(session)
        self._transition(session, SessionState.CANCELLED, reason=reason)
        self._cancel_close_timer()
        self._report(session, ProgressStep.CANCELLED)
        self._sink.close()
        self._finish(session, SessionOutcome(session.id, SessionState.CANCELLED))
        return True

    async def retranscribe(self, audio_path: str) -> SessionOutcome | None:
        """Upload an already saved recording again and refresh its history entry."""
        if self._session is not None:
            logger.debug("Re-transcribe ignored; session busy")
            return None

        session = Session(api_key=self._settings.api_key, retranscribe_path=str(audio_path))
        self._session = session
        self._cancel_close_timer()
        self._sink.show()

        if not session.api_key:
            return self._fail(session, ConfigError("API key not set"))

        try:
            self._transition(session, SessionState.UPLOADING)
            self._report(session, ProgressStep.API)
            path = Path(audio_path)
            raw = await self._transcriber.transcribe_file(
                path,
                session.api_key,
                content_type=mime_for_extension(path.suffix),
                on_progress=lambda _step: self._enter_transcribing(session),
            )
            if session.cancel_requested:
                return self._cancelled_outcome(session)
            self._enter_transcribing(session)

            processed = await self._post_process(session, raw)
            if session.cancel_requested:
                return self._cancelled_outcome(session)

            if not self._history.update(str(audio_path), raw, processed):
                logger.info("Re-transcribed recording has no history entry; appending a new one")
                self._history.append(raw, processed, None)
            self._bus.publish(HistoryChanged())
            self._write_clipboard(processed)
            return self._complete(session, raw, processed)
        except Exception as e:
            return self._fail(session, e)

    def shutdown(self) -> None:
        self.cancel(reason="shutdown")
        self._cancel_close_timer()
        for task in list(self._background):
            task.cancel()
        self._background.clear()
        self._sink.close()

    # ------------------------------------------------------------------
    # Pipeline steps

    async def _upload(self, session: Session, clip: AudioClip) -> SessionOutcome:
        data, mime, ext = ensure_container(clip)
        self._transition(session, SessionState.UPLOADING)
        self._report(session, ProgressStep.API)
        emit_event(
            logger,
            "Uploading recording",
            event="session.upload",
            stage="uploading",
            session_id=session.id,
            duration_ms=clip.duration_ms,
            meta={"bytes": len(data), "mime": mime},
        )

        with self._audio_files.temp_file(data, ext) as temp_path:
            raw = await self._transcriber.transcribe_file(
                temp_path,
                session.api_key,
                content_type=mime,
                on_progress=lambda _step: self._enter_transcribing(session),
            )
        if session.cancel_requested:
            return self._cancelled_outcome(session)
        self._enter_transcribing(session)

        processed = await self._post_process(session, raw)
        if session.cancel_requested:
            return self._cancelled_outcome(session)

        audio_path = self._persist(data, ext)
        self._history.append(raw, processed, audio_path)
        self._bus.publish(HistoryChanged())
        self._write_clipboard(processed)
        return self._complete(session, raw, processed)

    async def _post_process(self, session: Session, raw: str) -> str:
        prompt_settings = self._settings.prompt_settings
        if not prompt_settings.enabled or not session.api_key:
            return raw
        self._transition(session, SessionState.POST_PROCESSING)
        self._report(session, ProgressStep.PROCESSING)
        return await self._post_processor.rewrite(
            raw,
            prompt_settings,
            session.api_key,
            on_warning=lambda message: self._report(session, ProgressStep.WARNING, message),
        )

    def _enter_transcribing(self, session: Session) -> None:
        if session.cancel_requested or session.state != SessionState.UPLOADING:
            return
        self._transition(session, SessionState.TRANSCRIBING)
        self._report(session, ProgressStep.RECEIVING)

    def _persist(self, data: bytes, ext: str) -> str | None:
        if not self.keep_recordings:
            return None
        try:
            return str(self._audio_files.persist(data, ext))
        except OSError as e:
            logger.warning(f"Could not save recording: {e}")
            return None

    def _write_clipboard(self, text: str) -> None:
        if self._clipboard is None:
            return
        try:
            self._clipboard.write(text)
        except Exception as e:
            logger.warning(f"Clipboard write failed: {e}")

    # ------------------------------------------------------------------
    # Terminal states

    def _complete(self, session: Session, raw: str, processed: str) -> SessionOutcome:
        self._transition(session, SessionState.COMPLETED)
        self._report(session, ProgressStep.COMPLETE)
        self._schedule_close(self.complete_close_delay_ms)
        outcome = SessionOutcome(session.id, SessionState.COMPLETED, raw, processed)
        self._finish(session, outcome)
        return outcome

    def _fail(self, session: Session, exc: BaseException) -> SessionOutcome:
        if session.cancel_requested:
            return self._cancelled_outcome(session)

        self._release(session)
        category = classify_exception(exc)
        message = str(exc) if isinstance(exc, ApiError) else user_message_for_exception(exc)

        no_speech = category == ErrorCategory.NO_SPEECH
        emit_event(
            logger,
            f"Session failed: {exc}",
            level="INFO" if no_speech else "ERROR",
            event="session.failed",
            stage=session.state.value,
            session_id=session.id,
            outcome="no_speech" if no_speech else "error",
            error_category=category.value,
        )
        self._transition(session, SessionState.FAILED, reason=category.value)
        self._report(session, ProgressStep.NO_SPEECH if no_speech else ProgressStep.ERROR, message)
        self._schedule_close(self.error_close_delay_ms)
        outcome = SessionOutcome(session.id, SessionState.FAILED, error=message)
        self._finish(session, outcome)
        return outcome

    @staticmethod
    def _cancelled_outcome(session: Session) -> SessionOutcome:
        logger.info(f"Discarding result of cancelled session {session.id}")
        return SessionOutcome(session.id, SessionState.CANCELLED)

    def _finish(self, session: Session, outcome: SessionOutcome) -> None:
        path = [session.machine.history[0].source.value] if session.machine.history else []
        path.extend(step.target.value for step in session.machine.history)
        emit_event(
            logger,
            f"Session {session.id} finished: {' -> '.join(path)}",
            level="DEBUG",
            event="session.finished",
            stage=outcome.state.value,
            session_id=session.id,
            duration_ms=int((time.time() - session.started_at) * 1000),
            outcome=outcome.state.value,
            meta={"path": path},
        )
        self._bus.publish(
            SessionFinished(
                session_id=session.id,
                state=outcome.state.value,
                processed_text=outcome.processed_text or None,
                error_message=outcome.error,
            )
        )
        if self._session is session:
            self._session = None

    # ------------------------------------------------------------------
    # Helpers

    def _transition(self, session: Session, target: SessionState, *, reason: str | None = None) -> None:
        source = session.state
        if session.machine.transition(target) is None:
            return
        emit_event(
            logger,
            f"Session {source.value} -> {target.value}",
            level="DEBUG",
            event="session.transition",
            stage=target.value,
            session_id=session.id,
            duration_ms=int((time.time() - session.started_at) * 1000),
            meta={"reason": reason} if reason else None,
        )

    def _report(self, session: Session, step: ProgressStep, message: str = "") -> None:
        if session.cancel_requested and step != ProgressStep.CANCELLED:
            return
        text = message or default_message(step)
        try:
            self._sink.update(step, text)
        except Exception as e:
            logger.warning(f"Progress sink update failed: {e}")
        self._bus.publish(ProgressChanged(session.id, session.state.value, step.value, text))

    def _on_level(self, session: Session, level: float) -> None:
        if session.cancel_requested or session.state != SessionState.RECORDING:
            return
        self._sink.update_level(level)
        self._bus.publish(LevelUpdated(session.id, level))

    def _release(self, session: Session) -> None:
        """Stop the meter, the auto-stop timer and the microphone, once per session."""
        if session.resources_released:
            return
        session.resources_released = True
        if session.auto_stop_handle is not None:
            session.auto_stop_handle.cancel()
            session.auto_stop_handle = None
        if session.meter is not None:
            session.meter.stop()
        if session.recorder is not None:
            try:
                session.recorder.close()
            except Exception as e:
                logger.warning(f"Recorder close failed: {e}")

    def _auto_stop(self, session: Session) -> None:
        if self._session is not session or session.state != SessionState.RECORDING:
            return
        logger.info(f"Auto-stopping recording after {self.max_recording_ms} ms")
        task = asyncio.get_running_loop().create_task(self.stop())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _schedule_close(self, delay_ms: int) -> None:
        self._cancel_close_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._sink.close()
            return
        self._close_handle = loop.call_later(delay_ms / 1000.0, self._close_sink)

    def _close_sink(self) -> None:
        self._close_handle = None
        self._sink.close()

    def _cancel_close_timer(self) -> None:
        if self._close_handle is not None:
            self._close_handle.cancel()
            self._close_handle = None
