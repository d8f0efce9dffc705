import os

from hotmic.config import Config


def test_defaults_match_groq_endpoints():
    assert Config.TRANSCRIPTION_URL.endswith("/openai/v1/audio/transcriptions")
    assert Config.TRANSCRIPTION_MODEL == "whisper-large-v3"
    assert Config.CHAT_COMPLETIONS_URL.endswith("/openai/v1/chat/completions")
    assert Config.POST_PROCESS_TEMPERATURE == 0.7
    assert Config.POST_PROCESS_MAX_TOKENS == 4096


def test_session_timing_defaults():
    assert Config.MAX_RECORDING_MS == 30000
    assert Config.CHUNK_INTERVAL_MS == 1000
    assert Config.COMPLETE_CLOSE_DELAY_MS == 1500
    assert Config.ERROR_CLOSE_DELAY_MS == 2000
    assert Config.TEMP_DIR.name == "hot-mic"


def test_set_keep_recordings_updates_env(monkeypatch):
    monkeypatch.setattr(Config, "KEEP_RECORDINGS", True)
    monkeypatch.delenv("HOTMIC_KEEP_RECORDINGS", raising=False)

    Config.set_keep_recordings(False)

    assert Config.KEEP_RECORDINGS is False
    assert os.environ["HOTMIC_KEEP_RECORDINGS"] == "0"
    monkeypatch.delenv("HOTMIC_KEEP_RECORDINGS", raising=False)
