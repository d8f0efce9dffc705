"""
Floating always-on-top overlay showing recording level and session progress.
Runs its own Tk mainloop in a daemon thread; other threads talk to it through a
command queue drained every 16 ms.
"""

import queue
import threading
from typing import Callable, Optional

try:
    import tkinter as tk
    HAS_TK = True
except ImportError:
    tk = None
    HAS_TK = False

from loguru import logger

from hotmic.core.progress import ProgressStep, default_message


WIDTH, HEIGHT = 320, 64
BAR_X, BAR_Y, BAR_W, BAR_H = 16, 40, WIDTH - 32, 8

_STEP_COLORS = {
    ProgressStep.ERROR: "#e23c3c",
    ProgressStep.WARNING: "#f0b429",
    ProgressStep.NO_SPEECH: "#bbbbbb",
    ProgressStep.COMPLETE: "#55ff8c",
}


class TkOverlay:
    """Tk implementation of the progress sink."""

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None):
        self._on_cancel = on_cancel
        self._root = None
        self._thread: Optional[threading.Thread] = None
        self._command_queue: "queue.Queue[tuple]" = queue.Queue()
        self._running = False
        self._ready = threading.Event()

        self._canvas = None
        self._status_id = None
        self._bar_id = None
        self._close_id = None
        self._recording = False

    @property
    def root(self):
        return self._root

    def start(self) -> None:
        if not HAS_TK:
            logger.warning("Tkinter not available; overlay disabled")
            return
        if self._thread and self._thread.is_alive():
            return
        self._running = True
        self._thread = threading.Thread(target=self._run_tk, name="hotmic-overlay", daemon=True)
        self._thread.start()
        self._ready.wait(timeout=5.0)

    def stop(self) -> None:
        self._running = False
        self._command_queue.put(("quit", None))

    def show(self) -> None:
        self._command_queue.put(("show", None))

    def update(self, step: ProgressStep, message: str = "") -> None:
        self._command_queue.put(("update", (step, message or default_message(step))))

    def update_level(self, level: float) -> None:
        self._command_queue.put(("level", level))

    def close(self) -> None:
        self._command_queue.put(("hide", None))

    def call(self, fn: Callable[[object], None]) -> None:
        """Run ``fn(root)`` on the Tk thread."""
        self._command_queue.put(("call", fn))

    def _run_tk(self) -> None:
        try:
            self._root = tk.Tk()
            self._root.withdraw()
            self._root.overrideredirect(True)
            self._root.attributes("-topmost", True)
            try:
                self._root.attributes("-alpha", 0.95)
            except tk.TclError:
                pass
            self._root.geometry(f"{WIDTH}x{HEIGHT}")

            self._canvas = tk.Canvas(
                self._root, width=WIDTH, height=HEIGHT, highlightthickness=0, bg="black"
            )
            self._canvas.pack(fill="both", expand=True)
            self._status_id = self._canvas.create_text(
                16, 20, text="", anchor="w", fill="white", font=("Segoe UI", 11)
            )
            self._close_id = self._canvas.create_text(
                WIDTH - 16, 20, text="×", anchor="e", fill="#999999", font=("Segoe UI", 14)
            )
            self._canvas.create_rectangle(
                BAR_X, BAR_Y, BAR_X + BAR_W, BAR_Y + BAR_H, fill="#222222", outline="#222222"
            )
            self._bar_id = self._canvas.create_rectangle(
                BAR_X, BAR_Y, BAR_X, BAR_Y + BAR_H, fill="#55ff8c", outline="#55ff8c"
            )
            self._canvas.tag_bind(self._close_id, "<Button-1>", self._on_cancel_click)
            self._root.bind("<Escape>", self._on_cancel_click)

            self._root.update_idletasks()
            x = (self._root.winfo_screenwidth() - WIDTH) // 2
            y = int(self._root.winfo_screenheight() * 0.10)
            self._root.geometry(f"+{x}+{y}")

            self._ready.set()
            self._process_commands()
            self._root.mainloop()
        except Exception as e:
            logger.error(f"Tkinter overlay error: {e}")
        finally:
            self._ready.set()
            self._running = False

    def _process_commands(self) -> None:
        if not self._running or not self._root:
            return

        try:
            while True:
                try:
                    cmd, data = self._command_queue.get_nowait()
                except queue.Empty:
                    break

                if cmd == "quit":
                    self._root.quit()
                    return
                elif cmd == "show":
                    self._set_level(0.0)
                    self._root.deiconify()
                    self._root.lift()
                elif cmd == "hide":
                    self._recording = False
                    self._root.withdraw()
                elif cmd == "update":
                    step, message = data
                    self._recording = step == ProgressStep.RECORDING
                    if not self._recording:
                        self._set_level(0.0)
                    self._canvas.itemconfig(
                        self._status_id, text=message, fill=_STEP_COLORS.get(step, "white")
                    )
                elif cmd == "level":
                    if self._recording:
                        self._set_level(float(data or 0.0))
                elif cmd == "call":
                    data(self._root)
        except Exception as e:
            logger.error(f"Command processing error: {e}")

        self._root.after(16, self._process_commands)

    def _set_level(self, level: float) -> None:
        width = int(BAR_W * max(0.0, min(1.0, level)))
        self._canvas.coords(self._bar_id, BAR_X, BAR_Y, BAR_X + width, BAR_Y + BAR_H)

    def _on_cancel_click(self, event=None):
        if self._on_cancel:
            threading.Thread(target=self._on_cancel, daemon=True).start()
