from __future__ import annotations

from typing import Any, Callable, Optional

from loguru import logger

from hotmic.config import Config


def normalize_hotkey(accelerator: str) -> str:
    # Settings may hold accelerators like "Command+Shift+Space"; keyboard expects "ctrl+shift+space".
    hotkey = (accelerator or "").strip()
    if not hotkey:
        return ""
    mapped: list[str] = []
    for part in hotkey.split("+"):
        key = part.strip().lower()
        if not key:
            continue
        if key in {"control", "ctrl", "command", "cmd", "commandorcontrol", "cmdorctrl"}:
            mapped.append("ctrl")
        elif key == "shift":
            mapped.append("shift")
        elif key in {"alt", "option"}:
            mapped.append("alt")
        elif key in {"meta", "super", "win", "windows"}:
            mapped.append("windows")
        elif key in {"escape", "esc"}:
            mapped.append("esc")
        else:
            mapped.append(key)
    return "+".join(mapped)


def hotkey_to_display(hotkey: str) -> str:
    parts = [p.strip() for p in (hotkey or "").split("+") if p.strip()]
    out: list[str] = []
    for p in parts:
        if p == "ctrl":
            out.append("Ctrl")
        elif p == "alt":
            out.append("Alt")
        elif p == "shift":
            out.append("Shift")
        elif p in {"windows", "win"}:
            out.append("Meta")
        else:
            out.append(p.upper() if len(p) == 1 else p.capitalize())
    return " + ".join(out)


class HotkeyManager:
    """Process-wide hotkeys: one toggle binding plus Escape while recording.

    Callbacks fire on the keyboard hook thread; callers are expected to hop onto
    their own event loop.
    """

    def __init__(
        self,
        on_toggle: Callable[[], None],
        on_cancel: Callable[[], None],
        *,
        keyboard_module: Any = None,
    ):
        self._on_toggle = on_toggle
        self._on_cancel = on_cancel
        self._kb = keyboard_module
        self._hotkey: Optional[str] = None
        self._cancel_handle: Any = None

    @property
    def hotkey(self) -> Optional[str]:
        return self._hotkey

    @property
    def cancel_armed(self) -> bool:
        return self._cancel_handle is not None

    def _keyboard(self) -> Any:
        if self._kb is not None:
            return self._kb
        try:
            import keyboard as kb  # type: ignore
        except Exception as exc:  # pragma: no cover - platform/env dependent
            logger.warning(f"Hotkeys disabled (keyboard module missing or headless env): {exc}")
            return None
        self._kb = kb
        return kb

    def register(self, shortcut: str) -> bool:
        """Replace every binding with ``shortcut`` as the toggle hotkey."""
        kb = self._keyboard()
        if kb is None:
            return False
        hotkey = normalize_hotkey(shortcut) or Config.DEFAULT_HOTKEY
        try:
            kb.clear_all_hotkeys()
            self._cancel_handle = None
            kb.add_hotkey(hotkey, self._on_toggle)
        except Exception as exc:
            logger.error(f"Failed to register hotkey {hotkey}: {exc}")
            self._hotkey = None
            return False
        self._hotkey = hotkey
        logger.info(f"Hotkey registered: {hotkey} (Toggle)")
        return True

    def arm_cancel(self) -> None:
        kb = self._keyboard()
        if kb is None or self._cancel_handle is not None:
            return
        try:
            self._cancel_handle = kb.add_hotkey(Config.CANCEL_HOTKEY, self._on_cancel)
        except Exception as exc:
            logger.warning(f"Could not bind cancel hotkey: {exc}")

    def disarm_cancel(self) -> None:
        kb = self._kb
        handle = self._cancel_handle
        self._cancel_handle = None
        if kb is None or handle is None:
            return
        try:
            kb.remove_hotkey(handle)
        except (KeyError, ValueError) as exc:
            logger.debug(f"Cancel hotkey already removed: {exc}")

    def unregister_all(self) -> None:
        kb = self._kb
        self._cancel_handle = None
        self._hotkey = None
        if kb is None:
            return
        try:
            kb.clear_all_hotkeys()
        except Exception as exc:
            logger.debug(f"Clearing hotkeys failed: {exc}")
