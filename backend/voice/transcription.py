"""
Transcription gateway: upload a finished recording, get text back.

Policy:
- One POST per call, no retries
- Results below the confidence threshold are rejected (null result plus a
  LOW_CONFIDENCE error); acting on noise is worse than asking again
- An empty transcript is NO_SPEECH, reported separately from low confidence
- Failures never raise out of transcribe_audio(); they land in last_error
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import httpx

from audio.frames import AudioBlob
from constants import (
    TRANSCRIBE_PATH,
    TRANSCRIPTION_CONFIDENCE_THRESHOLD_DEFAULT,
    TRANSCRIPTION_LANGUAGE_DEFAULT,
)
from listeners import ListenerSet, Unsubscribe
from observability.logger import log_debug, log_event, now_ms
from observability.metrics import timed
from voice.http import VoiceServiceError, unwrap_envelope


class TranscriptionErrorKind(str, Enum):
    HTTP = "http"
    APPLICATION = "application"
    NETWORK = "network"
    LOW_CONFIDENCE = "low_confidence"
    NO_SPEECH = "no_speech"


class TranscriptionError(Exception):
    """A transcription attempt that produced no usable text."""

    def __init__(self, kind: TranscriptionErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    confidence: float
    language: str
    duration_ms: int


@dataclass(frozen=True)
class TranscriptionFailure:
    kind: TranscriptionErrorKind
    message: str


@dataclass(frozen=True)
class TranscriptionState:
    is_transcribing: bool = False
    last_result: TranscriptionResult | None = None
    last_error: TranscriptionFailure | None = None


def parse_result(data: Any, fallback_language: str) -> TranscriptionResult:
    """
    Build a TranscriptionResult from the envelope's `data` member.

    Raises:
        TranscriptionError(APPLICATION) when required fields are missing.
    """
    if not isinstance(data, dict):
        raise TranscriptionError(
            TranscriptionErrorKind.APPLICATION,
            "Transcription response has no data object",
        )
    try:
        confidence = float(data["confidence"])
    except (KeyError, TypeError, ValueError) as e:
        raise TranscriptionError(
            TranscriptionErrorKind.APPLICATION,
            "Transcription response missing confidence",
        ) from e

    try:
        duration_ms = int(float(data.get("duration_ms") or 0))
    except (TypeError, ValueError, OverflowError) as e:
        raise TranscriptionError(
            TranscriptionErrorKind.APPLICATION,
            f"Transcription response has invalid duration_ms: {data.get('duration_ms')!r}",
        ) from e

    return TranscriptionResult(
        text=str(data.get("text") or ""),
        confidence=min(1.0, max(0.0, confidence)),
        language=str(data.get("language") or fallback_language),
        duration_ms=duration_ms,
    )


class TranscriptionGateway:
    """Uploads recordings to the transcription endpoint and gates on confidence."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        language: str = TRANSCRIPTION_LANGUAGE_DEFAULT,
        confidence_threshold: float = TRANSCRIPTION_CONFIDENCE_THRESHOLD_DEFAULT,
        session_id: str | None = None,
    ) -> None:
        if not 0.0 <= confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be in [0, 1]")
        self._http = http
        self._language = language
        self._threshold = confidence_threshold
        self._session_id = session_id
        self._state = TranscriptionState()
        self._listeners = ListenerSet("transcription.state")

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> TranscriptionState:
        return self._state

    @property
    def is_transcribing(self) -> bool:
        return self._state.is_transcribing

    @property
    def last_result(self) -> TranscriptionResult | None:
        return self._state.last_result

    @property
    def last_error(self) -> TranscriptionFailure | None:
        return self._state.last_error

    def on_state_change(self, callback: Callable[[TranscriptionState], None]) -> Unsubscribe:
        return self._listeners.add(callback)

    # ------------------------------------------------------------------
    # Command
    # ------------------------------------------------------------------

    async def transcribe_audio(
        self,
        blob: AudioBlob,
        language: str | None = None,
    ) -> TranscriptionResult | None:
        """
        Upload `blob` and return the accepted transcript, or None.

        Returns None (and sets last_error) on HTTP failure, success=false,
        network failure, low confidence or an empty transcript.
        """
        lang = language or self._language
        self._publish(TranscriptionState(
            is_transcribing=True,
            last_result=self._state.last_result,
        ))

        try:
            result = await self._request(blob, lang)
            self._gate(result)
        except TranscriptionError as e:
            self._fail(e.kind, e.message)
            return None
        except VoiceServiceError as e:
            kind = (
                TranscriptionErrorKind.APPLICATION if e.application
                else TranscriptionErrorKind.HTTP
            )
            self._fail(kind, e.message)
            return None
        except httpx.HTTPError as e:
            self._fail(TranscriptionErrorKind.NETWORK, f"{type(e).__name__}: {e}")
            return None

        log_debug({
            "ts_ms": now_ms(),
            "event_type": "TRANSCRIPTION_COMPLETED",
            "session_id": self._session_id,
            "confidence": result.confidence,
            "language": result.language,
            "chars": len(result.text),
        })
        self._publish(TranscriptionState(last_result=result))
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _request(self, blob: AudioBlob, lang: str) -> TranscriptionResult:
        with timed(
            "transcription_round_trip",
            session_id=self._session_id,
            details={"bytes": len(blob), "content_type": blob.content_type},
        ) as extra:
            resp = await self._http.post(
                TRANSCRIBE_PATH,
                files={"audio": (f"recording.{blob.extension}", blob.data, blob.content_type)},
                data={"language": lang},
            )
            extra["status"] = resp.status_code

        return parse_result(unwrap_envelope(resp), lang)

    def _gate(self, result: TranscriptionResult) -> None:
        if result.confidence < self._threshold:
            raise TranscriptionError(
                TranscriptionErrorKind.LOW_CONFIDENCE,
                f"Low confidence transcription: {result.confidence}",
            )
        if not result.text.strip():
            raise TranscriptionError(
                TranscriptionErrorKind.NO_SPEECH,
                "No speech detected",
            )

    def _fail(self, kind: TranscriptionErrorKind, message: str) -> None:
        rejected = kind in (
            TranscriptionErrorKind.LOW_CONFIDENCE,
            TranscriptionErrorKind.NO_SPEECH,
        )
        log_event({
            "ts_ms": now_ms(),
            "event_type": "TRANSCRIPTION_REJECTED" if rejected else "TRANSCRIPTION_FAILED",
            "session_id": self._session_id,
            "kind": kind.value,
            "message": message,
        })
        self._publish(TranscriptionState(
            last_error=TranscriptionFailure(kind=kind, message=message),
        ))

    def _publish(self, new_state: TranscriptionState) -> None:
        self._state = new_state
        self._listeners.emit(new_state)
