import os
import tempfile
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default) in ("1", "true", "True")


class Config:
    # Remote APIs (OpenAI-compatible endpoints, Groq by default)
    TRANSCRIPTION_URL = os.getenv(
        "HOTMIC_TRANSCRIPTION_URL", "https://api.groq.com/openai/v1/audio/transcriptions"
    )
    TRANSCRIPTION_MODEL = os.getenv("HOTMIC_TRANSCRIPTION_MODEL", "whisper-large-v3")
    CHAT_COMPLETIONS_URL = os.getenv(
        "HOTMIC_CHAT_URL", "https://api.groq.com/openai/v1/chat/completions"
    )
    POST_PROCESS_MODEL = os.getenv("HOTMIC_POST_PROCESS_MODEL", "llama-3.3-70b-versatile")
    POST_PROCESS_TEMPERATURE = 0.7
    POST_PROCESS_MAX_TOKENS = 4096
    UPLOAD_TIMEOUT_SECS = float(os.getenv("HOTMIC_UPLOAD_TIMEOUT_SEC", "30"))
    POST_PROCESS_TIMEOUT_SECS = float(os.getenv("HOTMIC_POST_PROCESS_TIMEOUT_SEC", "30"))

    # Session timing
    MAX_RECORDING_MS = int(os.getenv("HOTMIC_MAX_RECORDING_MS", "30000"))
    CHUNK_INTERVAL_MS = 1000
    COMPLETE_CLOSE_DELAY_MS = 1500
    ERROR_CLOSE_DELAY_MS = 2000

    # Audio settings
    SAMPLE_RATE = 16000
    CHANNELS = 1
    BLOCK_SIZE = 1024
    ECHO_CANCELLATION = _flag("HOTMIC_ECHO_CANCELLATION", "1")
    AUTO_GAIN_CONTROL = _flag("HOTMIC_AUTO_GAIN", "0")
    # "opus" needs ffmpeg on PATH; anything else records headerless PCM wrapped as WAV.
    PREFERRED_CODEC = os.getenv("HOTMIC_PREFERRED_CODEC", "opus").lower()
    MIC_DEVICE = os.getenv("HOTMIC_MIC_DEVICE", "default")

    # Level meter tuning
    LEVEL_INTERVAL_MS = int(os.getenv("HOTMIC_LEVEL_INTERVAL_MS", "100"))
    LEVEL_GAIN = float(os.getenv("HOTMIC_LEVEL_GAIN", "3.0"))
    LEVEL_NOISE_GATE = float(os.getenv("HOTMIC_LEVEL_NOISE_GATE", "0.05"))
    LEVEL_WINDOW = 3
    FFT_SIZE = 1024

    # Storage
    DATA_DIR = Path(os.getenv("HOTMIC_DATA_DIR", str(Path.home() / ".hotmic"))).expanduser()
    SETTINGS_DB_PATH = DATA_DIR / "settings.db"
    RECORDINGS_DIR = DATA_DIR / "recordings"
    LOG_DIR = DATA_DIR / "logs"
    TEMP_DIR = Path(tempfile.gettempdir()) / "hot-mic"
    HISTORY_RETENTION_DAYS = 30
    KEEP_RECORDINGS = _flag("HOTMIC_KEEP_RECORDINGS", "1")

    # User-facing defaults; runtime values live in the settings store.
    DEFAULT_HOTKEY = "ctrl+shift+space"
    DEFAULT_PROMPT = (
        "Please format this transcript as a professional email with a greeting and sign-off. "
        "Make it concise and clear while maintaining the key information."
    )
    CANCEL_HOTKEY = "esc"

    DEBUG = _flag("HOTMIC_DEBUG", "0")

    @classmethod
    def set_debug(cls, enabled: bool) -> None:
        cls.DEBUG = bool(enabled)
        os.environ["HOTMIC_DEBUG"] = "1" if enabled else "0"

    @classmethod
    def set_keep_recordings(cls, enabled: bool) -> None:
        cls.KEEP_RECORDINGS = bool(enabled)
        os.environ["HOTMIC_KEEP_RECORDINGS"] = "1" if enabled else "0"
