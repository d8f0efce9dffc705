import asyncio
import os
import threading
from typing import Optional

from loguru import logger

from hotmic.app_state import AppState
from hotmic.config import Config
from hotmic.core.logging_setup import setup_logging
from hotmic.overlay import HAS_TK, TkOverlay

loop: Optional[asyncio.AbstractEventLoop] = None


def _ensure_loop() -> asyncio.AbstractEventLoop:
    global loop
    if loop is None:
        loop = asyncio.new_event_loop()
    return loop


def _run_event_loop():
    asyncio.set_event_loop(_ensure_loop())
    loop.run_forever()


def _start_background_loop() -> threading.Thread:
    thread = threading.Thread(target=_run_event_loop, name="hotmic-loop", daemon=True)
    thread.start()
    return thread


def main():
    paths = setup_logging(component="hotmic")
    logger.info(f"Logging to {paths['pretty']}")
    Config.DATA_DIR.mkdir(parents=True, exist_ok=True)

    _start_background_loop()

    app = AppState()
    if HAS_TK:
        app.overlay = TkOverlay(on_cancel=lambda: app.request_cancel("overlay"))
        app.overlay.start()

    try:
        asyncio.run_coroutine_threadsafe(app.init(), loop).result(timeout=30)
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        raise SystemExit(1)

    if not app.settings.api_key:
        logger.warning("No API key configured; open Settings from the tray to add one")

    from hotmic.tray import setup_tray

    icon = None

    def quit_app():
        try:
            asyncio.run_coroutine_threadsafe(app.shutdown(), loop).result(timeout=10)
        except Exception as e:
            logger.error(f"Shutdown error: {e}")
        if icon is not None:
            icon.stop()
        loop.call_soon_threadsafe(loop.stop)

    icon = setup_tray(app, quit_app)
    try:
        icon.run()
    except KeyboardInterrupt:
        pass
    finally:
        if app.initialized:
            quit_app()
        logger.info("Exited")
        os._exit(0)


if __name__ == "__main__":
    main()
