# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from config import AppConfig
from constants import (
    CAPTURE_MAX_DURATION_MS_DEFAULT,
    SYNTHESIS_VOICE_DEFAULT,
    TRANSCRIPTION_CONFIDENCE_THRESHOLD_DEFAULT,
)

_ENV_VARS = (
    "API_BASE_URL", "WS_BASE_URL", "API_TOKEN", "API_TIMEOUT_MS",
    "WS_RECONNECT_ATTEMPTS", "WS_RECONNECT_INTERVAL_MS", "WS_HEARTBEAT_INTERVAL_MS",
    "DEFAULT_VOICE", "DEFAULT_VOICE_SPEED", "VOICE_MAX_RECORDING_MS",
    "VOICE_CONFIDENCE_THRESHOLD", "VOICE_ENABLE_VAD", "DEBUG",
)


@pytest.fixture(name="clean_env")
def fixture_clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults_when_environment_is_silent(clean_env: pytest.MonkeyPatch) -> None:
    config = AppConfig.load_from_env()

    assert config.default_voice == SYNTHESIS_VOICE_DEFAULT
    assert config.max_recording_ms == CAPTURE_MAX_DURATION_MS_DEFAULT
    assert config.confidence_threshold == TRANSCRIPTION_CONFIDENCE_THRESHOLD_DEFAULT
    assert config.api_token is None
    assert config.debug is False


def test_environment_overrides(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("WS_BASE_URL", "wss://assistant.example/")
    clean_env.setenv("API_TOKEN", "secret")
    clean_env.setenv("WS_RECONNECT_ATTEMPTS", "9")
    clean_env.setenv("DEFAULT_VOICE", "onyx")
    clean_env.setenv("DEFAULT_VOICE_SPEED", "1.5")
    clean_env.setenv("VOICE_ENABLE_VAD", "false")
    clean_env.setenv("DEBUG", "1")

    config = AppConfig.load_from_env()

    assert config.ws_url == "wss://assistant.example/ws"
    assert config.api_token == "secret"
    assert config.ws_reconnect_attempts == 9
    assert config.default_voice == "onyx"
    assert config.default_voice_speed == 1.5
    assert config.enable_vad is False
    assert config.debug is True


def test_bad_numeric_value_raises(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("API_TIMEOUT_MS", "soon")

    with pytest.raises(ValueError):
        AppConfig.load_from_env()


def test_config_is_immutable() -> None:
    config = AppConfig()

    with pytest.raises(AttributeError):
        config.default_voice = "other"  # type: ignore[misc]
