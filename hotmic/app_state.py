from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

import aiohttp
from loguru import logger

from hotmic.clipboard import ClipboardWriter
from hotmic.core.events import CancelRequested, EventBus, ProgressChanged, SessionFinished, Subscription
from hotmic.core.progress import LoggingProgressSink, ProgressStep, ProgressSink
from hotmic.data.audio_files import AudioFileStore
from hotmic.data.history_store import HistoryEntry, HistoryStore
from hotmic.data.settings_store import PromptSettings, SettingsStore
from hotmic.hotkeys import HotkeyManager, normalize_hotkey
from hotmic.post_processing import PostProcessor
from hotmic.session import SessionController
from hotmic.transcription import TranscriptionClient


class AppState:
    """Process-wide application state with an explicit init/shutdown lifecycle."""

    def __init__(
        self,
        *,
        settings: SettingsStore | None = None,
        audio_files: AudioFileStore | None = None,
        overlay: Any = None,
        clipboard: ClipboardWriter | None = None,
        keyboard_module: Any = None,
        recorder_factory: Callable | None = None,
    ):
        self._settings_override = settings
        self._audio_files_override = audio_files
        self.overlay = overlay
        self.clipboard = clipboard or ClipboardWriter()
        self._keyboard_module = keyboard_module
        self._recorder_factory = recorder_factory

        self.loop: asyncio.AbstractEventLoop | None = None
        self.http: aiohttp.ClientSession | None = None
        self.settings: SettingsStore | None = None
        self.history: HistoryStore | None = None
        self.bus: EventBus | None = None
        self.controller: SessionController | None = None
        self.hotkeys: HotkeyManager | None = None
        self.notifier: Optional[Callable[[str], None]] = None
        self._subscriptions: list[Subscription] = []
        self._tasks: set[asyncio.Task] = set()
        self._initialized = False
        self._shut_down = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def init(self) -> None:
        if self._initialized:
            return
        self.loop = asyncio.get_running_loop()
        self.http = aiohttp.ClientSession()
        self.settings = self._settings_override or SettingsStore()
        self.history = HistoryStore(self.settings)
        self.bus = EventBus()

        sink: ProgressSink = self.overlay if self.overlay is not None else LoggingProgressSink()
        self.controller = SessionController(
            settings=self.settings,
            history=self.history,
            transcriber=TranscriptionClient(self.http),
            post_processor=PostProcessor(self.http),
            audio_files=self._audio_files_override or AudioFileStore(),
            bus=self.bus,
            sink=sink,
            clipboard=self.clipboard,
            recorder_factory=self._recorder_factory,
        )

        self._subscriptions = [
            self.bus.subscribe(ProgressChanged, self._on_progress),
            self.bus.subscribe(CancelRequested, self._on_cancel_requested),
            self.bus.subscribe(SessionFinished, self._on_session_finished),
        ]

        self.hotkeys = HotkeyManager(
            on_toggle=self.toggle_recording,
            on_cancel=lambda: self.request_cancel("escape"),
            keyboard_module=self._keyboard_module,
        )
        self.hotkeys.register(self.settings.shortcut)

        removed = self.history.sweep()
        if removed:
            logger.info(f"Startup sweep removed {len(removed)} old history entries")

        self._initialized = True
        self._shut_down = False
        logger.info("HotMic ready")

    async def shutdown(self) -> None:
        if self._shut_down or not self._initialized:
            return
        self._shut_down = True

        if self.controller is not None:
            self.controller.shutdown()
        if self.hotkeys is not None:
            self.hotkeys.unregister_all()
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []
        if self.bus is not None:
            self.bus.close()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        if self.overlay is not None and hasattr(self.overlay, "stop"):
            self.overlay.stop()
        if self.http is not None:
            await self.http.close()
            self.http = None
        self._initialized = False
        logger.info("HotMic shut down")

    # Thread-safe entry points (tray menu, hotkey hook, overlay thread)

    def _submit(self, factory: Callable[[], Awaitable[Any]]) -> None:
        loop = self.loop
        if loop is None or loop.is_closed():
            logger.warning("Event loop not running; ignoring request")
            return

        def _spawn() -> None:
            task = loop.create_task(factory())
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

        loop.call_soon_threadsafe(_spawn)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"Background task failed: {exc}")

    def toggle_recording(self) -> None:
        self._submit(lambda: self.controller.toggle())

    def request_cancel(self, reason: str = "user") -> None:
        if self.bus is not None:
            self.bus.publish(CancelRequested(reason))

    def retranscribe(self, audio_path: str) -> None:
        self._submit(lambda: self.controller.retranscribe(audio_path))

    def copy_text(self, text: str) -> bool:
        return self.clipboard.write(text)

    def recent_history(self, limit: int = 10) -> list[HistoryEntry]:
        if self.history is None:
            return []
        return self.history.list()[:limit]

    # Settings

    def set_shortcut(self, shortcut: str) -> bool:
        hotkey = normalize_hotkey(shortcut)
        if not hotkey:
            return False
        if self.hotkeys is not None and not self.hotkeys.register(hotkey):
            return False
        self.settings.shortcut = hotkey
        return True

    def save_settings(self, api_key: str, shortcut: str, prompt: PromptSettings, show_in_dock: bool) -> None:
        self.settings.api_key = api_key
        self.settings.prompt_settings = prompt
        self.settings.show_in_dock = show_in_dock
        if shortcut and not self.set_shortcut(shortcut):
            logger.warning(f"Could not apply hotkey {shortcut!r}; keeping previous binding")
        logger.info("Settings saved")

    def set_show_in_dock(self, enabled: bool) -> None:
        self.settings.show_in_dock = enabled

    def open_settings(self) -> None:
        # Opening settings cancels any active session.
        self.request_cancel("settings")
        if self.overlay is None or not hasattr(self.overlay, "call"):
            logger.warning("Settings window needs the Tk overlay")
            return

        def _build(root) -> None:
            from hotmic.ui import SettingsWindow

            SettingsWindow(
                root,
                api_key=self.settings.api_key,
                shortcut=self.settings.shortcut,
                prompt_settings=self.settings.prompt_settings,
                show_in_dock=self.settings.show_in_dock,
                list_history=self.history.list,
                on_save=self.save_settings,
                on_copy=self.copy_text,
                on_retranscribe=self.retranscribe,
            )

        self.overlay.call(_build)

    # Event handlers

    def _on_progress(self, event: ProgressChanged) -> None:
        if self.hotkeys is None:
            return
        if event.step == ProgressStep.RECORDING.value:
            self.hotkeys.arm_cancel()
        else:
            self.hotkeys.disarm_cancel()

    def _on_cancel_requested(self, event: CancelRequested) -> None:
        loop = self.loop
        if loop is None or loop.is_closed() or self.controller is None:
            return
        loop.call_soon_threadsafe(self.controller.cancel, event.reason)

    def _on_session_finished(self, event: SessionFinished) -> None:
        if self.hotkeys is not None:
            self.hotkeys.disarm_cancel()
        if event.error_message:
            message = event.error_message
        elif event.processed_text:
            message = "Transcript copied to clipboard"
        else:
            message = "Recording cancelled"
        logger.info(f"Session {event.session_id} finished: {event.state}")
        if self.notifier is not None:
            try:
                self.notifier(message)
            except Exception as e:
                logger.debug(f"Notification failed: {e}")
