import tkinter as tk
from datetime import datetime
from tkinter import messagebox, ttk
from typing import Callable

from hotmic.data.history_store import HistoryEntry
from hotmic.data.settings_store import PromptSettings
from hotmic.hotkeys import hotkey_to_display


class SettingsWindow:
    """Settings and history window, built as a Toplevel on the overlay's Tk root."""

    def __init__(
        self,
        root: tk.Tk,
        *,
        api_key: str,
        shortcut: str,
        prompt_settings: PromptSettings,
        show_in_dock: bool,
        list_history: Callable[[], list[HistoryEntry]],
        on_save: Callable[[str, str, PromptSettings, bool], None],
        on_copy: Callable[[str], None],
        on_retranscribe: Callable[[str], None],
    ):
        self.list_history = list_history
        self.on_save = on_save
        self.on_copy = on_copy
        self.on_retranscribe = on_retranscribe

        self.window = tk.Toplevel(root)
        self.window.title("HotMic Settings")
        self.window.geometry("560x600")
        self.window.minsize(480, 520)

        self.api_key_var = tk.StringVar(value=api_key)
        self.hotkey_var = tk.StringVar(value=hotkey_to_display(shortcut))
        self.prompt_enabled_var = tk.BooleanVar(value=prompt_settings.enabled)
        self.show_in_dock_var = tk.BooleanVar(value=show_in_dock)
        self._entries: list[HistoryEntry] = []

        self._build_controls(prompt_settings.prompt)
        self.refresh_history()
        self.window.lift()
        self.window.focus_force()

    def _build_controls(self, prompt: str):
        frame = ttk.Frame(self.window, padding=12)
        frame.pack(fill="both", expand=True)
        frame.columnconfigure(1, weight=1)

        ttk.Label(frame, text="Groq API key").grid(row=0, column=0, sticky="w", pady=4)
        ttk.Entry(frame, textvariable=self.api_key_var, show="*").grid(row=0, column=1, sticky="ew", pady=4)

        ttk.Label(frame, text="Hotkey").grid(row=1, column=0, sticky="w", pady=4)
        ttk.Entry(frame, textvariable=self.hotkey_var).grid(row=1, column=1, sticky="ew", pady=4)

        ttk.Checkbutton(
            frame, text="Post-process transcript with AI", variable=self.prompt_enabled_var
        ).grid(row=2, column=0, columnspan=2, sticky="w", pady=4)

        ttk.Label(frame, text="Prompt").grid(row=3, column=0, sticky="nw", pady=4)
        self.prompt_text = tk.Text(frame, height=5, wrap="word")
        self.prompt_text.insert("1.0", prompt)
        self.prompt_text.grid(row=3, column=1, sticky="ew", pady=4)

        ttk.Checkbutton(frame, text="Show in Dock", variable=self.show_in_dock_var).grid(
            row=4, column=0, columnspan=2, sticky="w", pady=4
        )
        ttk.Button(frame, text="Save", command=self._save).grid(row=5, column=1, sticky="e", pady=8)

        ttk.Label(frame, text="History (last 30 days)").grid(row=6, column=0, columnspan=2, sticky="w")
        self.history_list = tk.Listbox(frame, height=10)
        self.history_list.grid(row=7, column=0, columnspan=2, sticky="nsew", pady=4)
        frame.rowconfigure(7, weight=1)

        buttons = ttk.Frame(frame)
        buttons.grid(row=8, column=0, columnspan=2, sticky="e")
        ttk.Button(buttons, text="Copy", command=self._copy_selected).pack(side="left", padx=4)
        ttk.Button(buttons, text="Re-transcribe", command=self._retranscribe_selected).pack(side="left", padx=4)
        ttk.Button(buttons, text="Refresh", command=self.refresh_history).pack(side="left", padx=4)

    def refresh_history(self):
        self._entries = self.list_history()
        self.history_list.delete(0, "end")
        for entry in self._entries:
            stamp = datetime.fromtimestamp(entry.timestamp / 1000).strftime("%Y-%m-%d %H:%M")
            preview = entry.processed_text.replace("\n", " ")
            if len(preview) > 60:
                preview = preview[:57] + "..."
            self.history_list.insert("end", f"[{stamp}] {preview}")

    def _selected(self):
        selection = self.history_list.curselection()
        if not selection:
            return None
        return self._entries[selection[0]]

    def _copy_selected(self):
        entry = self._selected()
        if entry is not None:
            self.on_copy(entry.processed_text)

    def _retranscribe_selected(self):
        entry = self._selected()
        if entry is None:
            return
        if not entry.audio_path:
            messagebox.showinfo("HotMic", "This entry has no saved recording.", parent=self.window)
            return
        self.on_retranscribe(entry.audio_path)

    def _save(self):
        prompt = PromptSettings(
            enabled=self.prompt_enabled_var.get(),
            prompt=self.prompt_text.get("1.0", "end").strip(),
        )
        self.on_save(
            self.api_key_var.get().strip(),
            self.hotkey_var.get().strip(),
            prompt,
            self.show_in_dock_var.get(),
        )
