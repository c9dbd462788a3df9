"""Voice catalog: the list of synthesis voices the server offers."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable

import httpx

from constants import VOICES_PATH
from listeners import ListenerSet, Unsubscribe
from observability.logger import log_event, now_ms
from voice.http import VoiceServiceError, unwrap_envelope


@dataclass(frozen=True)
class VoiceInfo:
    id: str
    name: str
    language: str = ""
    gender: str = ""
    description: str = ""


@dataclass(frozen=True)
class CatalogState:
    voices: tuple[VoiceInfo, ...] = ()
    is_loading: bool = False
    error: str | None = None


def _parse_voice(raw: Any) -> VoiceInfo | None:
    if not isinstance(raw, dict) or not raw.get("id"):
        return None
    return VoiceInfo(
        id=str(raw["id"]),
        name=str(raw.get("name") or raw["id"]),
        language=str(raw.get("language") or ""),
        gender=str(raw.get("gender") or ""),
        description=str(raw.get("description") or ""),
    )


class VoiceCatalog:
    """Loads and caches the voices listing."""

    def __init__(self, http: httpx.AsyncClient, *, session_id: str | None = None) -> None:
        self._http = http
        self._session_id = session_id
        self._state = CatalogState()
        self._listeners = ListenerSet("catalog.state")

    @property
    def state(self) -> CatalogState:
        return self._state

    @property
    def voices(self) -> list[VoiceInfo]:
        return list(self._state.voices)

    @property
    def is_loading(self) -> bool:
        return self._state.is_loading

    @property
    def error(self) -> str | None:
        return self._state.error

    def on_state_change(self, callback: Callable[[CatalogState], None]) -> Unsubscribe:
        return self._listeners.add(callback)

    async def load_voices(self) -> list[VoiceInfo]:
        """
        Fetch the voices listing.

        Returns [] and sets error on failure; the previously loaded list is
        cleared in that case.
        """
        self._publish(replace(self._state, is_loading=True, error=None))
        try:
            resp = await self._http.get(VOICES_PATH)
            data = unwrap_envelope(resp)
        except VoiceServiceError as e:
            return self._fail(f"Failed to load voices: {e.message}")
        except httpx.HTTPError as e:
            return self._fail(f"Failed to load voices: {type(e).__name__}: {e}")

        raw_voices = data.get("voices") if isinstance(data, dict) else None
        if not isinstance(raw_voices, list):
            return self._fail("Failed to load voices: response has no voices list")

        voices = tuple(v for v in (_parse_voice(r) for r in raw_voices) if v is not None)
        self._publish(CatalogState(voices=voices))
        return list(voices)

    def _fail(self, message: str) -> list[VoiceInfo]:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "VOICES_LOAD_FAILED",
            "session_id": self._session_id,
            "message": message,
        })
        self._publish(CatalogState(error=message))
        return []

    def _publish(self, new_state: CatalogState) -> None:
        self._state = new_state
        self._listeners.emit(new_state)
