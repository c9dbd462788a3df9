"""
Synthesis player: text -> server TTS -> local playback.

Responsibilities:
- POST text/voice/speed/format to the synthesis endpoint
- Decode either response form (raw audio body, or JSON envelope with base64)
- Own exactly one PlaybackHandle and mirror its progress into SynthesisPlayback

Non-responsibilities:
- Does not stop current playback when a new synthesis starts; superseding
  is the caller's decision (InteractionOrchestrator does it)
- No retries

On failure the previous handle and its playback are left untouched.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, replace
from typing import Callable

import httpx

from audio.devices import AudioDecodeError, AudioOutputSink, DeviceError, PlaybackHandle
from audio.frames import AudioBlob
from constants import (
    SUPPORTED_SYNTHESIS_FORMATS,
    SYNTHESIS_FORMAT_DEFAULT,
    SYNTHESIS_SPEED_DEFAULT,
    SYNTHESIS_SPEED_MAX,
    SYNTHESIS_SPEED_MIN,
    SYNTHESIS_VOICE_DEFAULT,
    SYNTHESIS_VOLUME_DEFAULT,
    SYNTHESIZE_PATH,
)
from listeners import ListenerSet, Unsubscribe
from observability.logger import log_debug, log_event, now_ms
from observability.metrics import timed
from voice.http import VoiceServiceError, is_json_response, raise_for_status, unwrap_envelope

_FORMAT_CONTENT_TYPES = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
}


class SynthesisError(Exception):
    """Synthesis response could not be turned into playable audio."""


@dataclass(frozen=True)
class SynthesisPlayback:
    is_synthesizing: bool = False
    is_playing: bool = False
    position_seconds: float = 0.0
    duration_seconds: float = 0.0
    last_error: str | None = None


def decode_synthesis_response(resp: httpx.Response, fmt: str) -> AudioBlob:
    """
    Extract audio from a synthesis response.

    Accepts a raw audio body (any non-JSON content type) or the JSON envelope
    {success, data: {audio: <base64>, content_type}}.

    Raises:
        VoiceServiceError for HTTP failure or success=false.
        SynthesisError for an envelope without decodable audio or an empty body.
    """
    fallback_type = _FORMAT_CONTENT_TYPES.get(fmt, "application/octet-stream")

    if is_json_response(resp):
        data = unwrap_envelope(resp)
        if not isinstance(data, dict) or not isinstance(data.get("audio"), str):
            raise SynthesisError("Synthesis envelope carries no audio")
        try:
            audio = base64.b64decode(data["audio"], validate=True)
        except (binascii.Error, ValueError) as e:
            raise SynthesisError(f"Synthesis audio is not valid base64: {e}") from e
        content_type = str(data.get("content_type") or fallback_type)
    else:
        raise_for_status(resp)
        audio = resp.content
        content_type = resp.headers.get("content-type", "").split(";", 1)[0].strip()
        content_type = content_type or fallback_type

    if not audio:
        raise SynthesisError("Synthesis returned no audio")
    return AudioBlob(data=audio, content_type=content_type)


class SynthesisPlayer:
    """Synthesizes text on the server and plays it through an AudioOutputSink."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        sink: AudioOutputSink,
        *,
        voice: str = SYNTHESIS_VOICE_DEFAULT,
        speed: float = SYNTHESIS_SPEED_DEFAULT,
        fmt: str = SYNTHESIS_FORMAT_DEFAULT,
        volume: float = SYNTHESIS_VOLUME_DEFAULT,
        session_id: str | None = None,
    ) -> None:
        if fmt not in SUPPORTED_SYNTHESIS_FORMATS:
            raise ValueError(f"Unsupported synthesis format: {fmt!r}")
        self._http = http
        self._sink = sink
        self._voice = voice
        self._speed = min(SYNTHESIS_SPEED_MAX, max(SYNTHESIS_SPEED_MIN, speed))
        self._fmt = fmt
        self._volume = min(1.0, max(0.0, volume))
        self._session_id = session_id

        self._handle: PlaybackHandle | None = None
        self._state = SynthesisPlayback()
        self._listeners = ListenerSet("synthesis.state")

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> SynthesisPlayback:
        return self._state

    @property
    def is_synthesizing(self) -> bool:
        return self._state.is_synthesizing

    @property
    def is_playing(self) -> bool:
        return self._state.is_playing

    @property
    def has_audio(self) -> bool:
        return self._handle is not None

    def on_state_change(self, callback: Callable[[SynthesisPlayback], None]) -> Unsubscribe:
        return self._listeners.add(callback)

    # ------------------------------------------------------------------
    # Synthesis
    # ------------------------------------------------------------------

    async def synthesize_text(self, text: str) -> bool:
        """
        Synthesize `text` and load it for playback (not started).

        Returns:
            True when new audio is loaded. False on any failure; last_error
            is set and the previous playback is left as it was.
        """
        if not text.strip():
            self._publish(replace(self._state, last_error="Nothing to synthesize"))
            return False

        self._publish(replace(self._state, is_synthesizing=True, last_error=None))

        try:
            with timed(
                "synthesis_round_trip",
                session_id=self._session_id,
                details={"chars": len(text), "voice": self._voice, "format": self._fmt},
            ) as extra:
                resp = await self._http.post(
                    SYNTHESIZE_PATH,
                    json={
                        "text": text,
                        "voice": self._voice,
                        "speed": self._speed,
                        "format": self._fmt,
                    },
                )
                extra["status"] = resp.status_code
                extra["bytes"] = len(resp.content)

            blob = decode_synthesis_response(resp, self._fmt)
            handle = self._sink.load(blob)
        except (VoiceServiceError, SynthesisError, AudioDecodeError, DeviceError) as e:
            return self._fail(str(e))
        except httpx.HTTPError as e:
            return self._fail(f"{type(e).__name__}: {e}")

        if self._handle is not None:
            self._handle.close()
        self._handle = handle
        handle.set_volume(self._volume)
        handle.bind(
            on_position=self._on_position,
            on_ended=self._on_ended,
            on_error=self._on_error,
        )

        log_debug({
            "ts_ms": now_ms(),
            "event_type": "SYNTHESIS_LOADED",
            "session_id": self._session_id,
            "content_type": blob.content_type,
            "bytes": len(blob),
            "duration_s": handle.duration,
        })
        self._publish(SynthesisPlayback(duration_seconds=handle.duration))
        return True

    # ------------------------------------------------------------------
    # Transport controls
    # ------------------------------------------------------------------

    def play(self) -> bool:
        """Start or resume the loaded audio. Returns False if nothing could play."""
        if self._handle is None:
            return False
        try:
            self._handle.play()
        except DeviceError as e:
            self._on_error(e)
            return False
        self._publish(replace(self._state, is_playing=True, last_error=None))
        return True

    def pause(self) -> None:
        if self._handle is None:
            return
        self._handle.pause()
        self._publish(replace(
            self._state,
            is_playing=False,
            position_seconds=self._handle.position,
        ))

    def stop(self) -> None:
        """Halt and rewind to 0."""
        if self._handle is None:
            return
        self._handle.stop()
        self._publish(replace(self._state, is_playing=False, position_seconds=0.0))

    def set_position(self, seconds: float) -> None:
        if self._handle is None:
            return
        self._handle.seek(seconds)
        self._publish(replace(self._state, position_seconds=self._handle.position))

    def set_volume(self, volume: float) -> None:
        self._volume = min(1.0, max(0.0, volume))
        if self._handle is not None:
            self._handle.set_volume(self._volume)

    def release(self) -> None:
        """Close the current handle and forget it."""
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        handle.close()
        self._publish(SynthesisPlayback(
            is_synthesizing=self._state.is_synthesizing,
            last_error=self._state.last_error,
        ))

    # ------------------------------------------------------------------
    # Handle callbacks
    # ------------------------------------------------------------------

    def _on_position(self, seconds: float) -> None:
        self._publish(replace(self._state, position_seconds=seconds))

    def _on_ended(self) -> None:
        log_debug({
            "ts_ms": now_ms(),
            "event_type": "PLAYBACK_ENDED",
            "session_id": self._session_id,
            "duration_s": self._state.duration_seconds,
        })
        self._publish(replace(self._state, is_playing=False, position_seconds=0.0))

    def _on_error(self, e: Exception) -> None:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "PLAYBACK_FAILED",
            "session_id": self._session_id,
            "exception": type(e).__name__,
            "message": str(e),
        })
        self._publish(replace(self._state, is_playing=False, last_error=str(e)))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fail(self, message: str) -> bool:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "SYNTHESIS_FAILED",
            "session_id": self._session_id,
            "message": message,
        })
        self._publish(replace(self._state, is_synthesizing=False, last_error=message))
        return False

    def _publish(self, new_state: SynthesisPlayback) -> None:
        if new_state == self._state:
            return
        self._state = new_state
        self._listeners.emit(new_state)
