# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import base64
import json
from typing import Any, Callable

import httpx

from audio.devices import (
    AudioDecodeError,
    AudioOutputSink,
    EndedCallback,
    ErrorCallback,
    PlaybackHandle,
    PositionCallback,
)
from audio.frames import AudioBlob
from voice.http import build_http_client
from voice.synthesis import SynthesisPlayer

Handler = Callable[[httpx.Request], httpx.Response]


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class FakeHandle(PlaybackHandle):
    def __init__(self, blob: AudioBlob, duration: float = 2.0) -> None:
        self.blob = blob
        self._duration = duration
        self._position = 0.0
        self.playing = False
        self.closed = False
        self.volume = 1.0
        self.on_position: PositionCallback | None = None
        self.on_ended: EndedCallback | None = None
        self.on_error: ErrorCallback | None = None

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def position(self) -> float:
        return self._position

    def bind(self, *, on_position: PositionCallback, on_ended: EndedCallback, on_error: ErrorCallback) -> None:
        self.on_position = on_position
        self.on_ended = on_ended
        self.on_error = on_error

    def set_volume(self, volume: float) -> None:
        self.volume = volume

    def play(self) -> None:
        self.playing = True

    def pause(self) -> None:
        self.playing = False

    def seek(self, seconds: float) -> None:
        self._position = min(self._duration, max(0.0, seconds))

    def close(self) -> None:
        self.closed = True
        self.playing = False

    def advance(self, seconds: float) -> None:
        self._position = seconds
        assert self.on_position is not None
        self.on_position(seconds)

    def finish(self) -> None:
        self.playing = False
        self._position = 0.0
        assert self.on_ended is not None
        self.on_ended()


class FakeSink(AudioOutputSink):
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.handles: list[FakeHandle] = []

    def load(self, blob: AudioBlob) -> PlaybackHandle:
        if self.fail:
            raise AudioDecodeError("cannot decode")
        handle = FakeHandle(blob)
        self.handles.append(handle)
        return handle


def _player_run(handler: Handler, sink: FakeSink, body: Callable[[SynthesisPlayer], Any]) -> Any:
    async def scenario() -> Any:
        http = build_http_client(
            base_url="http://api.test",
            token=None,
            timeout_ms=1000,
            transport=httpx.MockTransport(handler),
        )
        async with http:
            player = SynthesisPlayer(http, sink, voice="nova", speed=1.25, fmt="mp3", volume=0.8)
            return await body(player)

    return asyncio.run(scenario())


def _audio_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=b"ID3fakeaudio", headers={"content-type": "audio/mpeg"})


def _server_error(request: httpx.Request) -> httpx.Response:
    return httpx.Response(500, text="internal error")


# ---------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------

def test_server_error_returns_false_and_stays_unplayed() -> None:
    sink = FakeSink()

    async def body(player: SynthesisPlayer) -> Any:
        ok = await player.synthesize_text("hello")
        return ok, player.state

    ok, state = _player_run(_server_error, sink, body)

    assert ok is False
    assert not sink.handles
    assert state.is_playing is False
    assert state.is_synthesizing is False
    assert state.position_seconds == 0.0
    assert state.duration_seconds == 0.0
    assert "500" in (state.last_error or "")


def test_binary_body_is_loaded_and_request_is_well_formed() -> None:
    sink = FakeSink()
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _audio_ok(request)

    async def body(player: SynthesisPlayer) -> Any:
        ok = await player.synthesize_text("hello there")
        return ok, player.state

    ok, state = _player_run(handler, sink, body)

    assert ok is True
    assert seen[0].url.path == "/api/v1/voice/synthesize"
    assert json.loads(seen[0].content) == {
        "text": "hello there",
        "voice": "nova",
        "speed": 1.25,
        "format": "mp3",
    }
    handle = sink.handles[0]
    assert handle.blob == AudioBlob(data=b"ID3fakeaudio", content_type="audio/mpeg")
    assert handle.volume == 0.8
    assert state.duration_seconds == 2.0
    assert state.is_playing is False


def test_base64_envelope_is_decoded() -> None:
    sink = FakeSink()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={
            "success": True,
            "data": {"audio": base64.b64encode(b"RIFFwav").decode(), "content_type": "audio/wav"},
        })

    async def body(player: SynthesisPlayer) -> bool:
        return await player.synthesize_text("hi")

    assert _player_run(handler, sink, body) is True
    assert sink.handles[0].blob == AudioBlob(data=b"RIFFwav", content_type="audio/wav")


def test_error_envelope_sets_last_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "error": {"message": "voice not found"}})

    async def body(player: SynthesisPlayer) -> Any:
        return await player.synthesize_text("hi"), player.state.last_error

    ok, error = _player_run(handler, FakeSink(), body)

    assert ok is False
    assert error == "voice not found"


def test_decode_failure_returns_false() -> None:
    async def body(player: SynthesisPlayer) -> Any:
        return await player.synthesize_text("hi"), player.state.last_error

    ok, error = _player_run(_audio_ok, FakeSink(fail=True), body)

    assert ok is False
    assert error == "cannot decode"


def test_failure_leaves_previous_playback_untouched() -> None:
    sink = FakeSink()
    responses = [_audio_ok, _server_error]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)(request)

    async def body(player: SynthesisPlayer) -> Any:
        assert await player.synthesize_text("first")
        player.play()
        ok = await player.synthesize_text("second")
        return ok, player.state

    ok, state = _player_run(handler, sink, body)

    assert ok is False
    assert len(sink.handles) == 1
    assert sink.handles[0].playing is True
    assert sink.handles[0].closed is False
    assert state.is_playing is True


def test_transport_controls_and_natural_end() -> None:
    sink = FakeSink()

    async def body(player: SynthesisPlayer) -> list[Any]:
        await player.synthesize_text("hello")
        handle = sink.handles[0]
        snapshots: list[Any] = []

        assert player.play() is True
        handle.advance(0.5)
        snapshots.append(player.state)

        player.pause()
        snapshots.append(player.state)

        player.set_position(1.5)
        snapshots.append(player.state)

        player.stop()
        snapshots.append(player.state)

        player.play()
        handle.finish()
        snapshots.append(player.state)
        return snapshots

    playing, paused, seeked, stopped, ended = _player_run(_audio_ok, sink, body)

    assert playing.is_playing and playing.position_seconds == 0.5
    assert not paused.is_playing and paused.position_seconds == 0.5
    assert seeked.position_seconds == 1.5
    assert not stopped.is_playing and stopped.position_seconds == 0.0
    assert not ended.is_playing and ended.position_seconds == 0.0


def test_release_closes_handle() -> None:
    sink = FakeSink()

    async def body(player: SynthesisPlayer) -> bool:
        await player.synthesize_text("hello")
        player.play()
        player.release()
        return player.has_audio

    has_audio = _player_run(_audio_ok, sink, body)

    assert has_audio is False
    assert sink.handles[0].closed is True


def test_empty_text_is_refused_without_request() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return _audio_ok(request)

    async def body(player: SynthesisPlayer) -> bool:
        return await player.synthesize_text("   ")

    assert _player_run(handler, FakeSink(), body) is False
    assert not calls
