# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Callable

import httpx

from voice.catalog import VoiceCatalog, VoiceInfo
from voice.http import build_http_client

Handler = Callable[[httpx.Request], httpx.Response]


def _load(handler: Handler) -> tuple[list[VoiceInfo], VoiceCatalog, list[bool]]:
    async def scenario() -> tuple[list[VoiceInfo], VoiceCatalog, list[bool]]:
        http = build_http_client(
            base_url="http://api.test/",
            token="tok",
            timeout_ms=1000,
            transport=httpx.MockTransport(handler),
        )
        async with http:
            catalog = VoiceCatalog(http)
            loading: list[bool] = []
            catalog.on_state_change(lambda s: loading.append(s.is_loading))
            voices = await catalog.load_voices()
        return voices, catalog, loading

    return asyncio.run(scenario())


def test_voices_are_parsed() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={
            "success": True,
            "data": {"voices": [
                {"id": "nova", "name": "Nova", "language": "en", "gender": "female", "description": "Bright"},
                {"id": "onyx", "name": "Onyx"},
                {"name": "missing id"},
            ]},
        })

    voices, catalog, loading = _load(handler)

    assert seen[0].method == "GET"
    assert seen[0].url.path == "/api/v1/voice/voices"
    assert voices == [
        VoiceInfo(id="nova", name="Nova", language="en", gender="female", description="Bright"),
        VoiceInfo(id="onyx", name="Onyx"),
    ]
    assert catalog.voices == voices
    assert catalog.error is None
    assert loading == [True, False]


def test_failure_returns_empty_and_sets_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    voices, catalog, _ = _load(handler)

    assert voices == []
    assert catalog.voices == []
    assert catalog.error is not None
    assert catalog.error.startswith("Failed to load voices")
    assert not catalog.is_loading


def test_application_error_message_is_surfaced() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "error": {"message": "not authorized"}})

    voices, catalog, _ = _load(handler)

    assert voices == []
    assert catalog.error == "Failed to load voices: not authorized"


def test_missing_voices_list_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "data": {}})

    voices, catalog, _ = _load(handler)

    assert voices == []
    assert catalog.error is not None
