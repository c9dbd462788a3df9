"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No transport or capture logic
- No protocol constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    CAPTURE_CHUNK_INTERVAL_MS_DEFAULT,
    CAPTURE_LEVEL_INTERVAL_MS_DEFAULT,
    CAPTURE_MAX_DURATION_MS_DEFAULT,
    CAPTURE_SAMPLE_RATE_HZ_DEFAULT,
    DEFAULT_API_BASE_URL,
    DEFAULT_API_TIMEOUT_MS,
    DEFAULT_WS_BASE_URL,
    SYNTHESIS_FORMAT_DEFAULT,
    SYNTHESIS_SPEED_DEFAULT,
    SYNTHESIS_VOICE_DEFAULT,
    SYNTHESIS_VOLUME_DEFAULT,
    TRANSCRIPTION_CONFIDENCE_THRESHOLD_DEFAULT,
    TRANSCRIPTION_LANGUAGE_DEFAULT,
    VAD_ENABLED_DEFAULT,
    VAD_SENSITIVITY_DEFAULT,
    VAD_SILENCE_STOP_MS_DEFAULT,
    WS_HEARTBEAT_INTERVAL_MS_DEFAULT,
    WS_MAX_MESSAGE_SIZE_DEFAULT,
    WS_PATH,
    WS_RECONNECT_ATTEMPTS_DEFAULT,
    WS_RECONNECT_INTERVAL_MS_DEFAULT,
    WS_RECONNECT_MAX_DELAY_MS_DEFAULT,
    WS_RECONNECT_MAX_TOTAL_DELAY_MS_DEFAULT,
)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw else default


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable client configuration.

    Constructed once at process startup.
    Passed downward to ClientSession, which hands plain values to components.
    """

    # ------------------------------------------------------------------
    # Endpoints / auth
    # ------------------------------------------------------------------

    api_base_url: str = DEFAULT_API_BASE_URL
    ws_base_url: str = DEFAULT_WS_BASE_URL
    api_token: str | None = None
    api_timeout_ms: int = DEFAULT_API_TIMEOUT_MS

    # ------------------------------------------------------------------
    # Session transport
    # ------------------------------------------------------------------

    ws_reconnect_attempts: int = WS_RECONNECT_ATTEMPTS_DEFAULT
    ws_reconnect_interval_ms: int = WS_RECONNECT_INTERVAL_MS_DEFAULT
    ws_reconnect_max_delay_ms: int = WS_RECONNECT_MAX_DELAY_MS_DEFAULT
    ws_reconnect_max_total_delay_ms: int = WS_RECONNECT_MAX_TOTAL_DELAY_MS_DEFAULT
    ws_heartbeat_interval_ms: int = WS_HEARTBEAT_INTERVAL_MS_DEFAULT
    ws_max_message_size: int = WS_MAX_MESSAGE_SIZE_DEFAULT

    # ------------------------------------------------------------------
    # Synthesis
    # ------------------------------------------------------------------

    default_voice: str = SYNTHESIS_VOICE_DEFAULT
    default_voice_speed: float = SYNTHESIS_SPEED_DEFAULT
    voice_format: str = SYNTHESIS_FORMAT_DEFAULT
    voice_volume: float = SYNTHESIS_VOLUME_DEFAULT

    # ------------------------------------------------------------------
    # Capture / transcription
    # ------------------------------------------------------------------

    voice_language: str = TRANSCRIPTION_LANGUAGE_DEFAULT
    max_recording_ms: int = CAPTURE_MAX_DURATION_MS_DEFAULT
    chunk_interval_ms: int = CAPTURE_CHUNK_INTERVAL_MS_DEFAULT
    level_interval_ms: int = CAPTURE_LEVEL_INTERVAL_MS_DEFAULT
    sample_rate_hz: int = CAPTURE_SAMPLE_RATE_HZ_DEFAULT
    confidence_threshold: float = TRANSCRIPTION_CONFIDENCE_THRESHOLD_DEFAULT
    enable_vad: bool = VAD_ENABLED_DEFAULT
    vad_sensitivity: float = VAD_SENSITIVITY_DEFAULT
    silence_stop_ms: int = VAD_SILENCE_STOP_MS_DEFAULT

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    debug: bool = False

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------

    @property
    def ws_url(self) -> str:
        """Full socket URL (token is attached by the transport)."""
        return self.ws_base_url.rstrip("/") + WS_PATH

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        return AppConfig(
            api_base_url=os.environ.get("API_BASE_URL", DEFAULT_API_BASE_URL),
            ws_base_url=os.environ.get("WS_BASE_URL", DEFAULT_WS_BASE_URL),
            api_token=os.environ.get("API_TOKEN") or None,
            api_timeout_ms=_env_int("API_TIMEOUT_MS", DEFAULT_API_TIMEOUT_MS),

            ws_reconnect_attempts=_env_int(
                "WS_RECONNECT_ATTEMPTS", WS_RECONNECT_ATTEMPTS_DEFAULT
            ),
            ws_reconnect_interval_ms=_env_int(
                "WS_RECONNECT_INTERVAL_MS", WS_RECONNECT_INTERVAL_MS_DEFAULT
            ),
            ws_reconnect_max_delay_ms=_env_int(
                "WS_RECONNECT_MAX_DELAY_MS", WS_RECONNECT_MAX_DELAY_MS_DEFAULT
            ),
            ws_reconnect_max_total_delay_ms=_env_int(
                "WS_RECONNECT_MAX_TOTAL_DELAY_MS", WS_RECONNECT_MAX_TOTAL_DELAY_MS_DEFAULT
            ),
            ws_heartbeat_interval_ms=_env_int(
                "WS_HEARTBEAT_INTERVAL_MS", WS_HEARTBEAT_INTERVAL_MS_DEFAULT
            ),
            ws_max_message_size=_env_int("WS_MAX_MESSAGE_SIZE", WS_MAX_MESSAGE_SIZE_DEFAULT),

            default_voice=os.environ.get("DEFAULT_VOICE", SYNTHESIS_VOICE_DEFAULT),
            default_voice_speed=_env_float("DEFAULT_VOICE_SPEED", SYNTHESIS_SPEED_DEFAULT),
            voice_format=os.environ.get("VOICE_FORMAT", SYNTHESIS_FORMAT_DEFAULT),
            voice_volume=_env_float("VOICE_VOLUME", SYNTHESIS_VOLUME_DEFAULT),

            voice_language=os.environ.get("VOICE_LANGUAGE", TRANSCRIPTION_LANGUAGE_DEFAULT),
            max_recording_ms=_env_int("VOICE_MAX_RECORDING_MS", CAPTURE_MAX_DURATION_MS_DEFAULT),
            chunk_interval_ms=_env_int("VOICE_CHUNK_INTERVAL_MS", CAPTURE_CHUNK_INTERVAL_MS_DEFAULT),
            level_interval_ms=_env_int("VOICE_LEVEL_INTERVAL_MS", CAPTURE_LEVEL_INTERVAL_MS_DEFAULT),
            sample_rate_hz=_env_int("VOICE_SAMPLE_RATE", CAPTURE_SAMPLE_RATE_HZ_DEFAULT),
            confidence_threshold=_env_float(
                "VOICE_CONFIDENCE_THRESHOLD", TRANSCRIPTION_CONFIDENCE_THRESHOLD_DEFAULT
            ),
            enable_vad=_env_bool("VOICE_ENABLE_VAD", VAD_ENABLED_DEFAULT),
            vad_sensitivity=_env_float("VOICE_VAD_SENSITIVITY", VAD_SENSITIVITY_DEFAULT),
            silence_stop_ms=_env_int("VOICE_SILENCE_STOP_MS", VAD_SILENCE_STOP_MS_DEFAULT),

            debug=_env_bool("DEBUG", False),
        )
