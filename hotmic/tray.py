"""
System tray icon for HotMic: start/stop recording, settings, recent transcripts, quit.
"""
import threading
from pathlib import Path
from typing import Callable

import pystray
from loguru import logger
from PIL import Image, ImageDraw

from hotmic.app_state import AppState
from hotmic.core.state_machine import SessionState


def load_icon() -> Image.Image:
    """Load the tray icon, drawing a simple microphone if no asset ships."""
    icon_path = Path(__file__).parent / "assets" / "icon.png"
    if icon_path.exists():
        try:
            img = Image.open(icon_path)
            return img.resize((64, 64), Image.Resampling.LANCZOS)
        except OSError as e:
            logger.debug(f"Tray icon asset unreadable: {e}")

    img = Image.new("RGBA", (64, 64), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    draw.rounded_rectangle((22, 6, 42, 40), radius=10, fill=(226, 60, 60, 255))
    draw.arc((14, 20, 50, 50), start=0, end=180, fill=(226, 60, 60, 255), width=4)
    draw.line((32, 50, 32, 58), fill=(226, 60, 60, 255), width=4)
    return img


def _preview(text: str, limit: int = 50) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."


def build_menu(app: AppState, on_quit: Callable[[], None]) -> pystray.Menu:
    def toggle(icon, item):
        app.toggle_recording()

    def open_settings(icon, item):
        app.open_settings()

    def copy_entry(text: str):
        def _copy(icon, item):
            app.copy_text(text)
        return _copy

    def recent_items():
        entries = app.recent_history(limit=10)
        if not entries:
            return [pystray.MenuItem("No recent transcripts", lambda i, t: None, enabled=False)]
        return [pystray.MenuItem(_preview(e.processed_text), copy_entry(e.processed_text)) for e in entries]

    def toggle_dock(icon, item):
        app.set_show_in_dock(not item.checked)

    def quit_app(icon, item):
        # Shutdown waits on the event loop; keep the tray thread responsive.
        threading.Thread(target=on_quit, daemon=True).start()

    return pystray.Menu(
        pystray.MenuItem(
            lambda item: "Stop Recording" if app.controller and app.controller.state == SessionState.RECORDING else "Start Recording",
            toggle,
            default=True,
        ),
        pystray.MenuItem("Settings", open_settings),
        pystray.Menu.SEPARATOR,
        pystray.MenuItem("Recent transcripts", pystray.Menu(recent_items)),
        pystray.MenuItem(
            "Show in Dock",
            toggle_dock,
            checked=lambda item: bool(app.settings and app.settings.show_in_dock),
        ),
        pystray.Menu.SEPARATOR,
        pystray.MenuItem("Quit", quit_app),
    )


def setup_tray(app: AppState, on_quit: Callable[[], None]) -> pystray.Icon:
    icon = pystray.Icon("HotMic", load_icon(), "HotMic", build_menu(app, on_quit))

    def notify(message: str) -> None:
        try:
            icon.notify(message, "HotMic")
        except Exception as e:
            logger.debug(f"Tray notification unsupported: {e}")

    app.notifier = notify
    return icon
