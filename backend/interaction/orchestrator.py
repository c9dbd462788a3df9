"""
Interaction orchestrator: one user turn at a time across capture, STT and TTS.

Responsibilities:
- record -> wait for stop -> transcribe, as one awaitable
- speak: supersede prior playback, synthesize, play
- Refuse a second capture or a second synthesis while one is in flight
  (explicit guard checks; there is only one logical thread)

Non-responsibilities:
- No retries: a failed or rejected transcription/synthesis ends that interaction
- No conversation semantics (reply generation is an injected collaborator)
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from audio.capture import VoiceCaptureEngine
from constants import ORCHESTRATOR_STOP_RECHECK_MS
from listeners import ListenerSet, Unsubscribe
from observability.logger import log_event, now_ms
from voice.synthesis import SynthesisPlayer
from voice.transcription import TranscriptionGateway

FallbackAnnouncer = Callable[[str], Awaitable[None]]
ReplyFor = Callable[[str], Awaitable[str | None]]


class InteractionOrchestrator:
    """Coordinates one capture engine, one transcription gateway and one player."""

    def __init__(
        self,
        capture: VoiceCaptureEngine,
        transcription: TranscriptionGateway,
        synthesis: SynthesisPlayer,
        *,
        fallback_announcer: FallbackAnnouncer | None = None,
        session_id: str | None = None,
        stop_recheck_ms: int = ORCHESTRATOR_STOP_RECHECK_MS,
    ) -> None:
        self._capture = capture
        self._transcription = transcription
        self._synthesis = synthesis
        self._fallback = fallback_announcer
        self._session_id = session_id
        self._recheck_s = stop_recheck_ms / 1000.0

        self._capturing = False
        self._speaking = False
        self._listeners = ListenerSet("orchestrator.processing")

    @property
    def is_processing(self) -> bool:
        return self._capturing or self._speaking

    def on_processing_change(self, callback: Callable[[bool], None]) -> Unsubscribe:
        return self._listeners.add(callback)

    # ------------------------------------------------------------------
    # Record -> transcribe
    # ------------------------------------------------------------------

    async def record_and_transcribe(self, language: str | None = None) -> str | None:
        """
        Capture until stopped (caller, silence or duration ceiling), then
        transcribe.

        Returns:
            The accepted transcript, or None when busy, when capture failed,
            when nothing was recorded, or when transcription failed/rejected.
        """
        if self._capturing or self._capture.is_recording or self._transcription.is_transcribing:
            self._log_busy("record_and_transcribe")
            return None

        self._set_flags(capturing=True)
        try:
            await self._capture.start_recording()
            if not self._capture.is_recording:
                # Device error; already surfaced in capture state
                return None

            await self._wait_for_capture_stop()

            blob = self._capture.get_recording_blob()
            if blob is None:
                log_event({
                    "ts_ms": now_ms(),
                    "event_type": "INTERACTION_EMPTY_RECORDING",
                    "session_id": self._session_id,
                })
                return None

            try:
                result = await self._transcription.transcribe_audio(blob, language)
            except Exception as e:  # pylint: disable=broad-exception-caught
                self._log_failure("transcription", e)
                return None
            return result.text if result is not None else None
        except asyncio.CancelledError:
            self._capture.stop_recording(reason="cancelled")
            raise
        finally:
            self._capture.release_recording()
            self._set_flags(capturing=False)

    def stop_recording(self) -> None:
        """End the in-flight capture (no-op when idle)."""
        self._capture.stop_recording(reason="manual")

    async def _wait_for_capture_stop(self) -> None:
        while self._capture.is_recording:
            try:
                await asyncio.wait_for(self._capture.wait_until_stopped(), self._recheck_s)
            except asyncio.TimeoutError:
                continue

    # ------------------------------------------------------------------
    # Speak
    # ------------------------------------------------------------------

    async def speak_text(self, text: str) -> bool:
        """
        Replace any current playback with `text` spoken aloud.

        Returns:
            True when synthesized audio started playing. False when busy or
            on failure (the fallback announcer, if configured, runs then).
        """
        if self._speaking or self._synthesis.is_synthesizing:
            self._log_busy("speak_text")
            return False

        self._set_flags(speaking=True)
        try:
            self._synthesis.stop()
            self._synthesis.release()

            try:
                ok = await self._synthesis.synthesize_text(text)
            except Exception as e:  # pylint: disable=broad-exception-caught
                self._log_failure("synthesis", e)
                ok = False

            if not ok:
                await self._announce_fallback(text)
                return False

            return self._synthesis.play()
        finally:
            self._set_flags(speaking=False)

    async def _announce_fallback(self, text: str) -> None:
        if self._fallback is None:
            return
        log_event({
            "ts_ms": now_ms(),
            "event_type": "SYNTHESIS_FALLBACK",
            "session_id": self._session_id,
            "reason": self._synthesis.state.last_error,
            "chars": len(text),
        })
        try:
            await self._fallback(text)
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._log_failure("fallback_announcer", e)

    # ------------------------------------------------------------------
    # Full turn
    # ------------------------------------------------------------------

    async def converse(self, reply_for: ReplyFor) -> str | None:
        """
        One spoken turn: record, transcribe, ask `reply_for`, speak the reply.

        Returns the reply text, or None if any step produced nothing.
        """
        text = await self.record_and_transcribe()
        if text is None:
            return None

        try:
            reply = await reply_for(text)
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._log_failure("reply", e)
            return None

        if not reply:
            return None
        await self.speak_text(reply)
        return reply

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Stop capture and playback and release both devices."""
        await self._capture.aclose()
        self._synthesis.stop()
        self._synthesis.release()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_flags(self, *, capturing: bool | None = None, speaking: bool | None = None) -> None:
        before = self.is_processing
        if capturing is not None:
            self._capturing = capturing
        if speaking is not None:
            self._speaking = speaking
        after = self.is_processing
        if after != before:
            self._listeners.emit(after)

    def _log_busy(self, operation: str) -> None:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "INTERACTION_REFUSED",
            "session_id": self._session_id,
            "operation": operation,
            "reason": "busy",
        })

    def _log_failure(self, stage: str, e: Exception) -> None:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "INTERACTION_FAILED",
            "session_id": self._session_id,
            "stage": stage,
            "exception": type(e).__name__,
            "message": str(e),
        })
