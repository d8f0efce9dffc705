from hotmic.config import Config
from hotmic.data.settings_store import KEY_PROMPT_SETTINGS, PromptSettings, SettingsStore


def test_defaults_when_nothing_stored(tmp_path):
    store = SettingsStore(db_path=tmp_path / "settings.db")

    assert store.api_key == ""
    assert store.shortcut == Config.DEFAULT_HOTKEY
    assert store.prompt_settings == PromptSettings(enabled=True, prompt=Config.DEFAULT_PROMPT)
    assert store.show_in_dock is True


def test_values_survive_reopen(tmp_path):
    db_path = tmp_path / "settings.db"
    store = SettingsStore(db_path=db_path)
    store.api_key = "  gsk_test  "
    store.shortcut = "ctrl+alt+d"
    store.prompt_settings = PromptSettings(enabled=False, prompt="Summarize.")
    store.show_in_dock = False

    reopened = SettingsStore(db_path=db_path)
    assert reopened.api_key == "gsk_test"
    assert reopened.shortcut == "ctrl+alt+d"
    assert reopened.prompt_settings == PromptSettings(enabled=False, prompt="Summarize.")
    assert reopened.show_in_dock is False


def test_prompt_settings_use_camel_case_keys(tmp_path):
    store = SettingsStore(db_path=tmp_path / "settings.db")
    store.prompt_settings = PromptSettings(enabled=True, prompt="Fix grammar.")

    assert store.get(KEY_PROMPT_SETTINGS) == {"enabled": True, "prompt": "Fix grammar."}


def test_malformed_prompt_settings_fall_back(tmp_path):
    store = SettingsStore(db_path=tmp_path / "settings.db")
    store.set(KEY_PROMPT_SETTINGS, "not a dict")

    assert store.prompt_settings == PromptSettings()


def test_delete_reports_whether_key_existed(tmp_path):
    store = SettingsStore(db_path=tmp_path / "settings.db")
    store.set("custom", [1, 2])

    assert store.get("custom") == [1, 2]
    assert store.delete("custom") is True
    assert store.delete("custom") is False
    assert store.get("custom", "fallback") == "fallback"
