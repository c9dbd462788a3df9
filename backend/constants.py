"""
CONSTANTS-AS-CONTRACT
---------------------
Single source of truth for protocol constants and client defaults.

Rules:
- If changing a value changes runtime behavior, it belongs here
  (or in config.py if it is deployment-specific).
- No magic numbers elsewhere in the codebase.
- Defaults here are what AppConfig falls back to when the environment is silent.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# Endpoints
# =============================================================================

API_VERSION: Final[str] = "v1"

WS_PATH: Final[str] = "/ws"
WS_TOKEN_QUERY_PARAM: Final[str] = "token"

TRANSCRIBE_PATH: Final[str] = f"/api/{API_VERSION}/voice/transcribe"
SYNTHESIZE_PATH: Final[str] = f"/api/{API_VERSION}/voice/synthesize"
VOICES_PATH: Final[str] = f"/api/{API_VERSION}/voice/voices"

DEFAULT_API_BASE_URL: Final[str] = "http://localhost:8081"
DEFAULT_WS_BASE_URL: Final[str] = "ws://localhost:8081"
DEFAULT_API_TIMEOUT_MS: Final[int] = 30_000

# =============================================================================
# Session transport
# =============================================================================

WS_RECONNECT_ATTEMPTS_DEFAULT: Final[int] = 5
WS_RECONNECT_INTERVAL_MS_DEFAULT: Final[int] = 3_000
WS_RECONNECT_MAX_DELAY_MS_DEFAULT: Final[int] = 30_000
WS_RECONNECT_MAX_TOTAL_DELAY_MS_DEFAULT: Final[int] = 120_000

WS_HEARTBEAT_INTERVAL_MS_DEFAULT: Final[int] = 30_000
# Consecutive unanswered pings before the connection is declared dead
WS_HEARTBEAT_MAX_MISSED: Final[int] = 2

WS_MAX_MESSAGE_SIZE_DEFAULT: Final[int] = 1024 * 1024

WS_CLOSE_NORMAL: Final[int] = 1000
WS_CLOSE_ABNORMAL: Final[int] = 1006

# =============================================================================
# Capture
# =============================================================================

CAPTURE_SAMPLE_RATE_HZ_DEFAULT: Final[int] = 16_000
CAPTURE_CHANNELS: Final[int] = 1

CAPTURE_MAX_DURATION_MS_DEFAULT: Final[int] = 300_000  # 5 minutes
CAPTURE_CHUNK_INTERVAL_MS_DEFAULT: Final[int] = 1_000
CAPTURE_LEVEL_INTERVAL_MS_DEFAULT: Final[int] = 16  # ~60 Hz, animation-frame cadence
CAPTURE_DURATION_TICK_MS: Final[int] = 1_000

CAPTURE_BLOB_CONTENT_TYPE: Final[str] = "audio/wav"

# =============================================================================
# Level analysis (mirrors a browser AnalyserNode with default dB range)
# =============================================================================

LEVEL_FFT_SIZE: Final[int] = 256
LEVEL_MIN_DECIBELS: Final[float] = -100.0
LEVEL_MAX_DECIBELS: Final[float] = -30.0

# =============================================================================
# Voice activity stop policy
# =============================================================================

VAD_ENABLED_DEFAULT: Final[bool] = True
VAD_SENSITIVITY_DEFAULT: Final[float] = 0.5
VAD_SILENCE_STOP_MS_DEFAULT: Final[int] = 1_500

# Level thresholds at sensitivity 0.0 and 1.0; linear in between.
VAD_LEVEL_THRESHOLD_AT_MIN_SENSITIVITY: Final[float] = 0.30
VAD_LEVEL_THRESHOLD_AT_MAX_SENSITIVITY: Final[float] = 0.02

# =============================================================================
# Transcription / synthesis
# =============================================================================

TRANSCRIPTION_LANGUAGE_DEFAULT: Final[str] = "en"
TRANSCRIPTION_CONFIDENCE_THRESHOLD_DEFAULT: Final[float] = 0.7

SYNTHESIS_VOICE_DEFAULT: Final[str] = "nova"
SYNTHESIS_SPEED_DEFAULT: Final[float] = 1.0
SYNTHESIS_SPEED_MIN: Final[float] = 0.25
SYNTHESIS_SPEED_MAX: Final[float] = 4.0
SYNTHESIS_FORMAT_DEFAULT: Final[str] = "mp3"
SYNTHESIS_VOLUME_DEFAULT: Final[float] = 1.0

SUPPORTED_SYNTHESIS_FORMATS: Final[Tuple[str, ...]] = ("mp3", "wav", "ogg")

# =============================================================================
# Orchestrator
# =============================================================================

# Upper bound on a single wait for the capture stop event; the wait re-checks
# the engine state after each slice so a missed wakeup cannot hang forever.
ORCHESTRATOR_STOP_RECHECK_MS: Final[int] = 100
