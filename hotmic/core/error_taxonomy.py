from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    TRANSIENT_NETWORK = "transient_network"
    TRANSIENT_PROVIDER = "transient_provider"
    AUTH_INVALID = "auth_invalid"
    AUTH_EXPIRED = "auth_expired"
    DEVICE_UNAVAILABLE = "device_unavailable"
    DEVICE_PERMISSION = "device_permission"
    CONFIG_INVALID = "config_invalid"
    PROVIDER_LIMIT = "provider_limit"
    NO_SPEECH = "no_speech"
    INTERNAL_BUG = "internal_bug"


_CATEGORY_TO_USER_MESSAGE: dict[ErrorCategory, str] = {
    ErrorCategory.TRANSIENT_NETWORK: "Could not reach the transcription service. Please check your internet connection and try again.",
    ErrorCategory.TRANSIENT_PROVIDER: "The transcription service is temporarily unavailable. Please try again shortly.",
    ErrorCategory.AUTH_INVALID: "Invalid API key. Please check your key in Settings.",
    ErrorCategory.AUTH_EXPIRED: "The API account requires payment or the plan has expired.",
    ErrorCategory.DEVICE_UNAVAILABLE: "No microphone is available. Please connect one and try again.",
    ErrorCategory.DEVICE_PERMISSION: "Microphone access is blocked. Please grant microphone permissions and retry.",
    ErrorCategory.CONFIG_INVALID: "API key not set. Please configure it in Settings.",
    ErrorCategory.PROVIDER_LIMIT: "Rate limit or quota reached. Please wait a moment and retry.",
    ErrorCategory.NO_SPEECH: "No speech detected.",
    ErrorCategory.INTERNAL_BUG: "Recording failed due to an internal error. Please retry.",
}


class HotMicError(RuntimeError):
    """Base class for session errors; each subclass maps onto one category."""

    category: ErrorCategory = ErrorCategory.INTERNAL_BUG


class DeviceError(HotMicError):
    """Microphone unavailable or access denied."""

    def __init__(self, message: str, *, permission_denied: bool = False):
        super().__init__(message)
        self.permission_denied = permission_denied
        self.category = ErrorCategory.DEVICE_PERMISSION if permission_denied else ErrorCategory.DEVICE_UNAVAILABLE


class EncodingError(HotMicError):
    """Container formatting failed; callers fall back to raw bytes."""


class ApiError(HotMicError):
    """Non-2xx response, network failure or timeout talking to a remote API."""

    def __init__(self, message: str, *, status: int | None = None):
        super().__init__(message)
        self.status = status
        self.category = _category_for_status(status, message)


class EmptyTranscriptError(HotMicError):
    """The API answered normally but recognized no speech."""

    category = ErrorCategory.NO_SPEECH

    def __init__(self, message: str = "No speech detected"):
        super().__init__(message)


class ConfigError(HotMicError):
    """Required configuration (usually the API key) is missing."""

    category = ErrorCategory.CONFIG_INVALID


def _category_for_status(status: int | None, message: str) -> ErrorCategory:
    if status is None:
        category = classify_error_message(message)
        return ErrorCategory.TRANSIENT_NETWORK if category is ErrorCategory.INTERNAL_BUG else category
    if status in (401, 403):
        return ErrorCategory.AUTH_INVALID
    if status == 402:
        return ErrorCategory.AUTH_EXPIRED
    if status == 429:
        return ErrorCategory.PROVIDER_LIMIT
    if status >= 500:
        return ErrorCategory.TRANSIENT_PROVIDER
    return classify_error_message(message)


def classify_error_message(message: str) -> ErrorCategory:
    text = (message or "").lower().strip()
    if not text:
        return ErrorCategory.INTERNAL_BUG

    if "no speech" in text:
        return ErrorCategory.NO_SPEECH
    if any(token in text for token in ("payment required", "plan expired", "subscription")):
        return ErrorCategory.AUTH_EXPIRED
    if any(token in text for token in ("402", "quota exceeded", "credit", "insufficient balance")):
        return ErrorCategory.PROVIDER_LIMIT
    if any(token in text for token in ("401", "unauthorized", "invalid api key", "authentication failed")):
        return ErrorCategory.AUTH_INVALID
    if any(token in text for token in ("403", "forbidden")):
        return ErrorCategory.AUTH_INVALID
    if any(token in text for token in ("permission denied", "access denied", "microphone access")):
        return ErrorCategory.DEVICE_PERMISSION
    if any(token in text for token in ("device unavailable", "no default input", "invalid device", "no audio input")):
        return ErrorCategory.DEVICE_UNAVAILABLE
    if any(token in text for token in ("timeout", "timed out", "connection", "dns", "network")):
        return ErrorCategory.TRANSIENT_NETWORK
    if any(token in text for token in ("rate limit", "429", "too many requests")):
        return ErrorCategory.PROVIDER_LIMIT
    if any(token in text for token in ("api key not set", "missing api key", "configuration")):
        return ErrorCategory.CONFIG_INVALID
    if any(token in text for token in ("service unavailable", "internal server error", "503", "502", "bad gateway")):
        return ErrorCategory.TRANSIENT_PROVIDER
    return ErrorCategory.INTERNAL_BUG


def classify_exception(exc: BaseException) -> ErrorCategory:
    if isinstance(exc, HotMicError):
        return exc.category
    return classify_error_message(str(exc))


def user_message_for_category(category: ErrorCategory) -> str:
    return _CATEGORY_TO_USER_MESSAGE.get(category, _CATEGORY_TO_USER_MESSAGE[ErrorCategory.INTERNAL_BUG])


def user_message_for_exception(exc: BaseException) -> str:
    return user_message_for_category(classify_exception(exc))
