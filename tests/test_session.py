import asyncio
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from loguru import logger

from hotmic.core.error_taxonomy import ApiError, DeviceError
from hotmic.core.events import EventBus, HistoryChanged, ProgressChanged, SessionFinished
from hotmic.core.progress import ProgressStep
from hotmic.core.state_machine import SessionState
from hotmic.data.audio_files import AudioFileStore
from hotmic.data.history_store import HistoryStore
from hotmic.data.settings_store import PromptSettings, SettingsStore
from hotmic.microphone import AudioClip
from hotmic.post_processing import PostProcessor
from hotmic.session import SessionController
from hotmic.wav import MIME_PCM, MIME_WAV

ONE_SECOND = b"\x01\x00" * 16000


class _FakeRecorder:
    def __init__(self, on_chunk, *, open_error=None):
        self.on_chunk = on_chunk
        self.open_error = open_error
        self.chunks = []
        self.is_open = False
        self.close_calls = 0

    async def open(self):
        if self.open_error is not None:
            raise self.open_error
        self.is_open = True

    def push(self, data: bytes):
        self.chunks.append(data)
        self.on_chunk(data)

    def frequency_bins(self):
        return [0] * 8 if self.is_open else None

    async def finalize(self, chunks=None):
        self.finalized_with = chunks
        pcm = b"".join(self.chunks if chunks is None else chunks)
        return AudioClip(pcm, MIME_PCM, len(pcm) // 32, 16000, 1)

    def close(self):
        self.close_calls += 1
        self.is_open = False


class _FakeTranscriber:
    def __init__(self, text="hello world", *, error=None, gate: asyncio.Event | None = None):
        self.text = text
        self.error = error
        self.gate = gate
        self.started = asyncio.Event()
        self.calls = []

    async def transcribe_file(self, path, api_key, *, content_type, on_progress=None):
        self.calls.append(
            {"path": path, "exists": path.exists(), "api_key": api_key, "content_type": content_type}
        )
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if on_progress is not None:
            on_progress("receiving")
        return self.text


class _FakeSink:
    def __init__(self):
        self.calls = []
        self.levels = []

    def show(self):
        self.calls.append(("show",))

    def update(self, step, message=""):
        self.calls.append(("update", step, message))

    def update_level(self, level):
        self.levels.append(level)

    def close(self):
        self.calls.append(("close",))

    def steps(self):
        return [c[1] for c in self.calls if c[0] == "update"]

    def close_count(self):
        return sum(1 for c in self.calls if c[0] == "close")


class _FakeClipboard:
    def __init__(self):
        self.writes = []

    def write(self, text):
        self.writes.append(text)
        return True


class _RaisingSession:
    def __init__(self):
        self.post_calls = 0

    def post(self, url, **kwargs):
        self.post_calls += 1
        raise ConnectionResetError("chat endpoint unreachable")


def _make(tmp_path, *, transcriber=None, api_key="gsk_test", prompt_enabled=False, open_error=None, **kwargs):
    settings = SettingsStore(db_path=tmp_path / "settings.db")
    settings.api_key = api_key
    settings.prompt_settings = PromptSettings(enabled=prompt_enabled, prompt="Make it an email.")
    history = HistoryStore(settings)
    bus = EventBus()
    finished = []
    progress = []
    bus.subscribe(SessionFinished, finished.append)
    bus.subscribe(ProgressChanged, progress.append)
    recorders = []

    def recorder_factory(on_chunk):
        recorder = _FakeRecorder(on_chunk, open_error=open_error)
        recorders.append(recorder)
        return recorder

    post_session = kwargs.pop("post_session", _RaisingSession())
    env = SimpleNamespace(
        settings=settings,
        history=history,
        bus=bus,
        finished=finished,
        progress=progress,
        recorders=recorders,
        transcriber=transcriber or _FakeTranscriber(),
        sink=_FakeSink(),
        clipboard=_FakeClipboard(),
        meter=MagicMock(),
        temp_dir=tmp_path / "tmp",
        recordings_dir=tmp_path / "recordings",
        post_session=post_session,
    )
    env.controller = SessionController(
        settings=settings,
        history=history,
        transcriber=env.transcriber,
        post_processor=PostProcessor(post_session),
        audio_files=AudioFileStore(env.temp_dir, env.recordings_dir),
        bus=bus,
        sink=env.sink,
        clipboard=env.clipboard,
        recorder_factory=recorder_factory,
        meter_factory=lambda: env.meter,
        **kwargs,
    )
    return env


@pytest.mark.asyncio
async def test_end_to_end_hello_world(tmp_path):
    env = _make(tmp_path)
    history_events = []
    env.bus.subscribe(HistoryChanged, history_events.append)

    assert await env.controller.start() is True
    recorder = env.recorders[0]
    recorder.push(ONE_SECOND)
    recorder.push(ONE_SECOND)
    outcome = await env.controller.stop()

    assert outcome.state is SessionState.COMPLETED
    assert outcome.raw_text == "hello world"
    assert outcome.processed_text == "hello world"
    assert env.controller.state is SessionState.IDLE

    entries = env.history.list()
    assert len(entries) == 1
    assert entries[0].raw_text == "hello world"
    assert entries[0].processed_text == "hello world"
    assert entries[0].audio_path is not None
    assert Path(entries[0].audio_path).parent == env.recordings_dir
    assert Path(entries[0].audio_path).exists()
    assert env.clipboard.writes == ["hello world"]
    assert len(history_events) == 1

    call = env.transcriber.calls[0]
    assert call["exists"] is True
    assert call["content_type"] == MIME_WAV
    assert not call["path"].exists()
    assert list(env.temp_dir.iterdir()) == []

    assert recorder.close_calls == 1
    env.meter.stop.assert_called_once()
    assert env.post_session.post_calls == 0
    assert env.sink.steps() == [
        ProgressStep.RECORDING,
        ProgressStep.START,
        ProgressStep.API,
        ProgressStep.RECEIVING,
        ProgressStep.COMPLETE,
    ]
    assert [f.state for f in env.finished] == ["completed"]


@pytest.mark.asyncio
async def test_start_while_recording_is_ignored(tmp_path):
    env = _make(tmp_path)

    assert await env.controller.start() is True
    assert await env.controller.start() is False
    assert await env.controller.retranscribe(str(tmp_path / "x.webm")) is None

    assert len(env.recorders) == 1
    assert env.controller.state is SessionState.RECORDING
    env.controller.cancel()


@pytest.mark.asyncio
async def test_stop_is_noop_when_idle_or_already_stopped(tmp_path):
    env = _make(tmp_path)
    assert await env.controller.stop() is None

    await env.controller.start()
    env.recorders[0].push(ONE_SECOND)
    first = await env.controller.stop()
    second = await env.controller.stop()

    assert first.state is SessionState.COMPLETED
    assert second is None


@pytest.mark.asyncio
async def test_stop_before_any_chunk_is_no_speech(tmp_path):
    env = _make(tmp_path)

    await env.controller.start()
    outcome = await env.controller.stop()

    assert outcome.state is SessionState.FAILED
    assert outcome.error == "No speech detected."
    assert env.transcriber.calls == []
    assert env.history.list() == []
    assert env.recorders[0].close_calls == 1
    assert env.sink.steps()[-1] is ProgressStep.NO_SPEECH
    assert env.controller.state is SessionState.IDLE


@pytest.mark.asyncio
async def test_cancel_mid_upload_discards_result(tmp_path):
    gate = asyncio.Event()
    env = _make(tmp_path, transcriber=_FakeTranscriber("late result", gate=gate))

    await env.controller.start()
    env.recorders[0].push(ONE_SECOND)
    stop_task = asyncio.create_task(env.controller.stop())
    await env.transcriber.started.wait()

    assert env.controller.cancel("escape") is True
    assert env.controller.state is SessionState.IDLE
    gate.set()
    outcome = await stop_task

    assert outcome.state is SessionState.CANCELLED
    assert env.history.list() == []
    assert env.clipboard.writes == []
    assert list(env.temp_dir.iterdir()) == []
    assert not env.recordings_dir.exists() or list(env.recordings_dir.iterdir()) == []
    assert env.sink.steps()[-1] is ProgressStep.CANCELLED
    assert env.sink.close_count() == 1
    assert [f.state for f in env.finished] == ["cancelled"]


@pytest.mark.asyncio
async def test_cancel_while_recording_releases_resources_once(tmp_path):
    env = _make(tmp_path)

    await env.controller.start()
    env.recorders[0].push(ONE_SECOND)

    assert env.controller.cancel() is True
    assert env.controller.cancel() is False
    assert await env.controller.stop() is None

    assert env.recorders[0].close_calls == 1
    env.meter.stop.assert_called_once()
    assert env.transcriber.calls == []
    assert env.controller.state is SessionState.IDLE


@pytest.mark.asyncio
async def test_post_processing_failure_still_completes_with_raw_text(tmp_path):
    env = _make(tmp_path, prompt_enabled=True)

    await env.controller.start()
    env.recorders[0].push(ONE_SECOND)
    outcome = await env.controller.stop()

    assert outcome.state is SessionState.COMPLETED
    assert outcome.processed_text == "hello world"
    assert env.post_session.post_calls == 1
    assert ProgressStep.PROCESSING in env.sink.steps()
    assert ProgressStep.WARNING in env.sink.steps()
    assert env.clipboard.writes == ["hello world"]


@pytest.mark.asyncio
async def test_post_processing_result_goes_to_clipboard(tmp_path):
    class _Response:
        status = 200

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def text(self):
            return '{"choices": [{"message": {"content": "Hi,\\n\\nhello world\\n\\nBest"}}]}'

    post_session = MagicMock()
    post_session.post.return_value = _Response()
    env = _make(tmp_path, prompt_enabled=True, post_session=post_session)

    await env.controller.start()
    env.recorders[0].push(ONE_SECOND)
    outcome = await env.controller.stop()

    assert outcome.processed_text == "Hi,\n\nhello world\n\nBest"
    assert env.clipboard.writes == ["Hi,\n\nhello world\n\nBest"]
    entry = env.history.list()[0]
    assert entry.raw_text == "hello world"
    assert entry.processed_text == "Hi,\n\nhello world\n\nBest"


@pytest.mark.asyncio
async def test_missing_api_key_fails_fast(tmp_path):
    env = _make(tmp_path, api_key="")

    assert await env.controller.start() is False

    assert env.recorders == []
    assert env.controller.state is SessionState.IDLE
    assert env.sink.steps() == [ProgressStep.ERROR]
    assert env.finished[0].error_message == "API key not set. Please configure it in Settings."


@pytest.mark.asyncio
async def test_device_error_fails_session(tmp_path):
    env = _make(tmp_path, open_error=DeviceError("No default input device"))

    assert await env.controller.start() is False

    assert env.controller.state is SessionState.IDLE
    assert env.recorders[0].close_calls == 1
    assert [f.state for f in env.finished] == ["failed"]
    assert env.sink.steps()[-1] is ProgressStep.ERROR


@pytest.mark.asyncio
async def test_api_error_fails_and_cleans_temp_file(tmp_path):
    env = _make(tmp_path, transcriber=_FakeTranscriber(error=ApiError("Transcription failed (500): boom", status=500)))

    await env.controller.start()
    env.recorders[0].push(ONE_SECOND)
    outcome = await env.controller.stop()

    assert outcome.state is SessionState.FAILED
    assert "boom" in outcome.error
    assert env.history.list() == []
    assert env.clipboard.writes == []
    assert list(env.temp_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_auto_stop_after_max_duration(tmp_path):
    env = _make(tmp_path, transcriber=_FakeTranscriber("auto stopped"), max_recording_ms=20)

    await env.controller.start()
    env.recorders[0].push(ONE_SECOND)

    for _ in range(100):
        if env.finished:
            break
        await asyncio.sleep(0.01)

    assert [f.state for f in env.finished] == ["completed"]
    assert env.clipboard.writes == ["auto stopped"]


@pytest.mark.asyncio
async def test_new_session_cancels_pending_overlay_close(tmp_path):
    env = _make(tmp_path, complete_close_delay_ms=50)

    await env.controller.start()
    env.recorders[0].push(ONE_SECOND)
    await env.controller.stop()
    await env.controller.start()
    await asyncio.sleep(0.1)

    assert env.sink.close_count() == 0
    env.controller.cancel()


@pytest.mark.asyncio
async def test_retranscribe_updates_existing_entry(tmp_path):
    env = _make(tmp_path, transcriber=_FakeTranscriber("better text"))
    audio = tmp_path / "recording-1.webm"
    audio.write_bytes(b"webm")
    original = env.history.append("old text", "old text", str(audio))

    outcome = await env.controller.retranscribe(str(audio))

    assert outcome.state is SessionState.COMPLETED
    entries = env.history.list()
    assert len(entries) == 1
    assert entries[0].timestamp == original.timestamp
    assert entries[0].raw_text == "better text"
    assert entries[0].audio_path == str(audio)
    assert env.transcriber.calls[0]["content_type"] == "audio/webm"
    assert env.clipboard.writes == ["better text"]


@pytest.mark.asyncio
async def test_retranscribe_of_swept_entry_appends_without_audio(tmp_path):
    env = _make(tmp_path, transcriber=_FakeTranscriber("fresh"))
    audio = tmp_path / "recording-2.wav"
    audio.write_bytes(b"RIFF")

    await env.controller.retranscribe(str(audio))

    entries = env.history.list()
    assert len(entries) == 1
    assert entries[0].raw_text == "fresh"
    assert entries[0].audio_path is None


@pytest.mark.asyncio
async def test_toggle_starts_then_stops(tmp_path):
    env = _make(tmp_path)

    assert await env.controller.toggle() is True
    env.recorders[0].push(ONE_SECOND)
    outcome = await env.controller.toggle()

    assert outcome.state is SessionState.COMPLETED


@pytest.mark.asyncio
async def test_every_terminal_state_publishes_one_finish(tmp_path):
    env = _make(tmp_path)

    await env.controller.start()
    env.recorders[0].push(ONE_SECOND)
    await env.controller.stop()
    await env.controller.start()
    await env.controller.stop()
    await env.controller.start()
    env.controller.cancel()

    assert [f.state for f in env.finished] == ["completed", "failed", "cancelled"]


@pytest.mark.asyncio
async def test_clip_is_built_from_session_chunks(tmp_path):
    env = _make(tmp_path)

    await env.controller.start()
    recorder = env.recorders[0]
    # Audio delivered through the chunk callback only, never into the recorder's own buffer.
    recorder.on_chunk(ONE_SECOND)
    outcome = await env.controller.stop()

    assert outcome.state is SessionState.COMPLETED
    assert recorder.chunks == []
    assert recorder.finalized_with == [ONE_SECOND]
    assert len(env.transcriber.calls) == 1


@pytest.mark.asyncio
async def test_finished_session_logs_its_state_path(tmp_path):
    records = []
    handler_id = logger.add(
        lambda message: records.append(message.record["extra"]),
        level="DEBUG",
        filter=lambda record: record["extra"].get("event") == "session.finished",
    )
    try:
        env = _make(tmp_path)
        await env.controller.start()
        env.recorders[0].push(ONE_SECOND)
        await env.controller.stop()

        await env.controller.start()
        env.controller.cancel()
    finally:
        logger.remove(handler_id)

    assert [r["meta"]["path"] for r in records] == [
        ["idle", "recording", "finalizing", "uploading", "transcribing", "completed"],
        ["idle", "recording", "cancelled"],
    ]
    assert [r["outcome"] for r in records] == ["completed", "cancelled"]


@pytest.mark.asyncio
async def test_device_failure_uses_category_message(tmp_path):
    env = _make(tmp_path, open_error=RuntimeError("Error querying device: Permission denied"))

    assert await env.controller.start() is False

    outcome = env.finished[-1]
    assert outcome.state == "failed"
    assert "microphone" in outcome.error_message.lower()
