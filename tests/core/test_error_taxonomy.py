from hotmic.core.error_taxonomy import (
    ApiError,
    ConfigError,
    DeviceError,
    EmptyTranscriptError,
    ErrorCategory,
    classify_error_message,
    classify_exception,
    user_message_for_category,
    user_message_for_exception,
)


def test_classify_auth_invalid():
    assert classify_error_message("401 unauthorized: invalid api key") is ErrorCategory.AUTH_INVALID


def test_classify_provider_limit():
    assert classify_error_message("429 rate limit exceeded") is ErrorCategory.PROVIDER_LIMIT


def test_classify_network_timeout():
    assert classify_error_message("upload timeout while connecting") is ErrorCategory.TRANSIENT_NETWORK


def test_classify_device_permission():
    assert classify_error_message("microphone access denied by OS") is ErrorCategory.DEVICE_PERMISSION


def test_api_error_category_follows_status():
    assert ApiError("nope", status=401).category is ErrorCategory.AUTH_INVALID
    assert ApiError("pay up", status=402).category is ErrorCategory.AUTH_EXPIRED
    assert ApiError("slow down", status=429).category is ErrorCategory.PROVIDER_LIMIT
    assert ApiError("boom", status=503).category is ErrorCategory.TRANSIENT_PROVIDER


def test_api_error_without_status_is_network():
    assert ApiError("Transcription request failed: ServerDisconnectedError").category is ErrorCategory.TRANSIENT_NETWORK


def test_session_errors_map_to_categories():
    assert classify_exception(EmptyTranscriptError()) is ErrorCategory.NO_SPEECH
    assert classify_exception(ConfigError("API key not set")) is ErrorCategory.CONFIG_INVALID
    assert classify_exception(DeviceError("gone")) is ErrorCategory.DEVICE_UNAVAILABLE
    assert classify_exception(DeviceError("blocked", permission_denied=True)) is ErrorCategory.DEVICE_PERMISSION
    assert classify_exception(ValueError("something odd")) is ErrorCategory.INTERNAL_BUG


def test_user_message_for_missing_key():
    assert user_message_for_exception(ConfigError("API key not set")) == "API key not set. Please configure it in Settings."


def test_user_message_exists_for_all_categories():
    for category in ErrorCategory:
        message = user_message_for_category(category)
        assert isinstance(message, str)
        assert message
