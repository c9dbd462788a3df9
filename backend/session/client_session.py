"""
Client session container.

- Explicitly constructed; there are no module-level default instances
- Owns the HTTP client, the session transport and every voice component
- Passed by reference to whatever needs them (entry point, UI, tests)
- aclose() tears everything down in dependency order
- Contains no interaction logic (see interaction/orchestrator.py)
"""

from __future__ import annotations

from typing import Any

import httpx

from audio.capture import VoiceCaptureEngine
from audio.devices import AudioInputSource, AudioOutputSink
from config import AppConfig
from interaction.orchestrator import FallbackAnnouncer, InteractionOrchestrator
from observability.logger import log_event, now_ms
from session.transport import Connector, SessionTransport
from voice.catalog import VoiceCatalog
from voice.http import build_http_client
from voice.synthesis import SynthesisPlayer
from voice.transcription import TranscriptionGateway


class ClientSession:
    """Owner of one client's connection, devices and voice services."""

    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        transport: SessionTransport,
        capture: VoiceCaptureEngine,
        transcription: TranscriptionGateway,
        synthesis: SynthesisPlayer,
        catalog: VoiceCatalog,
        orchestrator: InteractionOrchestrator,
        session_id: str | None = None,
    ) -> None:
        self.http = http
        self.transport = transport
        self.capture = capture
        self.transcription = transcription
        self.synthesis = synthesis
        self.catalog = catalog
        self.orchestrator = orchestrator
        self.session_id = session_id
        self._closed = False

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @staticmethod
    def from_config(
        config: AppConfig,
        *,
        session_id: str | None = None,
        user_id: str | None = None,
        input_source: AudioInputSource | None = None,
        output_sink: AudioOutputSink | None = None,
        connector: Connector | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        fallback_announcer: FallbackAnnouncer | None = None,
    ) -> ClientSession:
        """
        Wire a full session from configuration.

        Devices default to the sounddevice-backed implementations; tests pass
        fakes (and a fake connector / httpx.MockTransport) instead.
        """
        if input_source is None or output_sink is None:
            # PortAudio is only loaded when a real device is needed
            from audio.sounddevice_io import (  # pylint: disable=import-outside-toplevel
                SoundDeviceInputSource,
                SoundDeviceOutputSink,
            )
            if input_source is None:
                input_source = SoundDeviceInputSource(sample_rate_hz=config.sample_rate_hz)
            if output_sink is None:
                output_sink = SoundDeviceOutputSink()

        http = build_http_client(
            base_url=config.api_base_url,
            token=config.api_token,
            timeout_ms=config.api_timeout_ms,
            transport=http_transport,
        )

        transport = SessionTransport(
            url=config.ws_url,
            token=config.api_token,
            reconnect_attempts=config.ws_reconnect_attempts,
            reconnect_interval_ms=config.ws_reconnect_interval_ms,
            reconnect_max_delay_ms=config.ws_reconnect_max_delay_ms,
            reconnect_max_total_delay_ms=config.ws_reconnect_max_total_delay_ms,
            heartbeat_interval_ms=config.ws_heartbeat_interval_ms,
            max_message_size=config.ws_max_message_size,
            session_id=session_id,
            user_id=user_id,
            connector=connector,
        )

        capture = VoiceCaptureEngine(
            input_source,
            max_duration_ms=config.max_recording_ms,
            chunk_interval_ms=config.chunk_interval_ms,
            level_interval_ms=config.level_interval_ms,
            enable_vad=config.enable_vad,
            vad_sensitivity=config.vad_sensitivity,
            silence_stop_ms=config.silence_stop_ms,
            session_id=session_id,
        )

        transcription = TranscriptionGateway(
            http,
            language=config.voice_language,
            confidence_threshold=config.confidence_threshold,
            session_id=session_id,
        )

        synthesis = SynthesisPlayer(
            http,
            output_sink,
            voice=config.default_voice,
            speed=config.default_voice_speed,
            fmt=config.voice_format,
            volume=config.voice_volume,
            session_id=session_id,
        )

        orchestrator = InteractionOrchestrator(
            capture,
            transcription,
            synthesis,
            fallback_announcer=fallback_announcer,
            session_id=session_id,
        )

        log_event({
            "ts_ms": now_ms(),
            "event_type": "CLIENT_SESSION_CREATED",
            "session_id": session_id,
            "api_base_url": config.api_base_url,
            "ws_url": config.ws_url,
        })

        return ClientSession(
            http=http,
            transport=transport,
            capture=capture,
            transcription=transcription,
            synthesis=synthesis,
            catalog=VoiceCatalog(http, session_id=session_id),
            orchestrator=orchestrator,
            session_id=session_id,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, user_id: str | None = None) -> None:
        """Open the real-time connection for this session."""
        await self.transport.connect(self.session_id, user_id)

    async def aclose(self) -> None:
        """Disconnect, release devices, close the HTTP pool. Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self.transport.aclose()
        await self.orchestrator.aclose()
        await self.http.aclose()
        log_event({
            "ts_ms": now_ms(),
            "event_type": "CLIENT_SESSION_CLOSED",
            "session_id": self.session_id,
        })

    async def __aenter__(self) -> ClientSession:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
