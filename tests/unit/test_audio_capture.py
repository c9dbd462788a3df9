# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Any

import numpy as np
import pytest

import audio.capture as capture_mod
from audio.capture import CaptureState, VoiceCaptureEngine
from audio.devices import AudioInputSource, DeviceError


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class FakeInputSource(AudioInputSource):
    """Produces a fixed PCM chunk on every drain while open and not paused."""

    def __init__(
        self,
        *,
        chunk: bytes = b"\x01\x00" * 160,
        open_error: Exception | None = None,
        open_gate: asyncio.Event | None = None,
    ) -> None:
        self.chunk = chunk
        self.open_error = open_error
        self.open_gate = open_gate
        self.is_open = False
        self.paused = False
        self.open_calls = 0
        self.close_calls = 0
        self.window = np.zeros(256, dtype=np.float32)

    @property
    def sample_rate(self) -> int:
        return 16000

    @property
    def channels(self) -> int:
        return 1

    async def open(self) -> None:
        self.open_calls += 1
        if self.open_gate is not None:
            await self.open_gate.wait()
        if self.open_error is not None:
            raise self.open_error
        self.is_open = True

    def close(self) -> None:
        self.close_calls += 1
        self.is_open = False

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def drain(self) -> bytes:
        if not self.is_open or self.paused:
            return b""
        return self.chunk

    def analysis_window(self) -> np.ndarray:
        return self.window


class ScriptedMeter:
    """Returns scripted levels in order, repeating the last one."""

    def __init__(self, levels: list[float]) -> None:
        self.levels = list(levels)

    def reset(self) -> None:
        pass

    def level(self, samples: np.ndarray) -> float:
        if len(self.levels) > 1:
            return self.levels.pop(0)
        return self.levels[0]


def _engine(source: FakeInputSource, **overrides: Any) -> VoiceCaptureEngine:
    kwargs: dict[str, Any] = {
        "max_duration_ms": 5_000,
        "chunk_interval_ms": 20,
        "level_interval_ms": 5,
        "enable_vad": False,
        "duration_tick_ms": 1_000,
    }
    kwargs.update(overrides)
    return VoiceCaptureEngine(source, **kwargs)


def _collect_events(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(capture_mod, "log_event", emitted.append)
    return emitted


# ---------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------

def test_duration_ceiling_stops_without_manual_stop(monkeypatch: pytest.MonkeyPatch) -> None:
    events = _collect_events(monkeypatch)

    async def scenario() -> tuple[VoiceCaptureEngine, Any]:
        source = FakeInputSource()
        engine = _engine(source, max_duration_ms=200)

        await engine.start_recording()
        assert engine.is_recording
        await asyncio.wait_for(engine.wait_until_stopped(), timeout=2.0)

        blob = engine.get_recording_blob()
        assert source.close_calls == 1
        assert not source.is_open
        return engine, blob

    engine, blob = asyncio.run(scenario())

    assert not engine.is_recording
    assert not engine.state.is_recording
    assert blob is not None
    assert blob.content_type == "audio/wav"
    assert blob.data[:4] == b"RIFF"
    stopped = [e for e in events if e["event_type"] == "CAPTURE_STOPPED"]
    assert stopped[-1]["reason"] == "max_duration"


def test_chunks_are_collected_on_interval() -> None:
    async def scenario() -> int:
        engine = _engine(FakeInputSource(), chunk_interval_ms=20)
        await engine.start_recording()
        await asyncio.sleep(0.11)
        engine.stop_recording()
        assert engine.recording is not None
        return len(engine.recording.chunks)

    # ~5 interval chunks plus the final flush on stop
    assert 4 <= asyncio.run(scenario()) <= 7


def test_chunk_listeners_see_every_stored_chunk() -> None:
    async def scenario() -> tuple[list[bytes], list[bytes], list[bytes]]:
        engine = _engine(FakeInputSource(chunk=b"\x05\x00" * 80), chunk_interval_ms=20)
        streamed: list[bytes] = []
        unsubscribe = engine.on_chunk(streamed.append)

        await engine.start_recording()
        await asyncio.sleep(0.07)
        engine.stop_recording()
        assert engine.recording is not None
        stored = list(engine.recording.chunks)

        unsubscribe()
        after: list[bytes] = []
        engine.on_chunk(after.append)
        return streamed, stored, after

    streamed, stored, after = asyncio.run(scenario())

    assert streamed == stored
    assert len(streamed) >= 2
    assert not after


def test_stop_is_idempotent_and_closes_device_once() -> None:
    async def scenario() -> tuple[FakeInputSource, list[CaptureState]]:
        source = FakeInputSource()
        engine = _engine(source)
        states: list[CaptureState] = []
        engine.on_state_change(states.append)

        await engine.start_recording()
        engine.stop_recording()
        count = len(states)
        engine.stop_recording()
        engine.stop_recording(reason="timeout")
        assert len(states) == count
        return source, states

    source, states = asyncio.run(scenario())

    assert source.open_calls == 1
    assert source.close_calls == 1
    assert states[-1].is_recording is False


def test_stop_when_never_started_is_noop() -> None:
    source = FakeInputSource()
    engine = _engine(source)

    engine.stop_recording()

    assert source.close_calls == 0
    assert engine.get_recording_blob() is None


def test_device_error_surfaces_and_never_half_starts(monkeypatch: pytest.MonkeyPatch) -> None:
    events = _collect_events(monkeypatch)

    async def scenario() -> VoiceCaptureEngine:
        engine = _engine(FakeInputSource(open_error=DeviceError("Permission denied")))
        await engine.start_recording()
        await asyncio.wait_for(engine.wait_until_stopped(), timeout=0.5)
        return engine

    engine = asyncio.run(scenario())

    assert not engine.is_recording
    assert engine.state.error == "Permission denied"
    assert engine.get_recording_blob() is None
    assert any(e["event_type"] == "CAPTURE_DEVICE_ERROR" for e in events)


def test_unexpected_open_failure_leaves_engine_idle(monkeypatch: pytest.MonkeyPatch) -> None:
    events = _collect_events(monkeypatch)
    source = FakeInputSource(open_error=ValueError("No input device matching 'usb mic'"))

    async def scenario() -> tuple[VoiceCaptureEngine, bool]:
        engine = _engine(source)
        await engine.start_recording()
        recording_after_failure = engine.is_recording
        await asyncio.wait_for(engine.wait_until_stopped(), timeout=0.5)

        source.open_error = None
        await engine.start_recording()
        assert engine.is_recording
        engine.stop_recording()
        return engine, recording_after_failure

    engine, recording_after_failure = asyncio.run(scenario())

    assert recording_after_failure is False
    assert source.open_calls == 2
    assert not source.is_open
    failures = [e for e in events if e["event_type"] == "CAPTURE_DEVICE_ERROR"]
    assert failures[0]["exception"] == "ValueError"
    assert not any(e["event_type"] == "CAPTURE_START_IGNORED" for e in events)
    assert engine.state.is_recording is False


def test_failed_open_error_is_observable() -> None:
    async def scenario() -> VoiceCaptureEngine:
        engine = _engine(FakeInputSource(open_error=RuntimeError("backend crashed")))
        await engine.start_recording()
        return engine

    engine = asyncio.run(scenario())

    assert not engine.is_recording
    assert engine.state.error == "backend crashed"


def test_cancelled_open_resets_engine() -> None:
    async def scenario() -> tuple[VoiceCaptureEngine, FakeInputSource]:
        gate = asyncio.Event()
        source = FakeInputSource(open_gate=gate)
        engine = _engine(source)

        start = asyncio.create_task(engine.start_recording())
        await asyncio.sleep(0.01)
        start.cancel()
        with pytest.raises(asyncio.CancelledError):
            await start
        assert not engine.is_recording

        gate.set()
        await engine.start_recording()
        assert engine.is_recording
        engine.stop_recording()
        return engine, source

    engine, source = asyncio.run(scenario())

    assert source.open_calls == 2
    assert not engine.is_recording


def test_no_audio_means_no_blob() -> None:
    async def scenario() -> Any:
        engine = _engine(FakeInputSource(chunk=b""))
        await engine.start_recording()
        engine.stop_recording()
        return engine.get_recording_blob()

    assert asyncio.run(scenario()) is None


def test_release_recording_destroys_it() -> None:
    async def scenario() -> tuple[Any, Any]:
        engine = _engine(FakeInputSource())
        await engine.start_recording()
        engine.stop_recording()
        before = engine.get_recording_blob()
        engine.release_recording()
        return before, engine.get_recording_blob()

    before, after = asyncio.run(scenario())

    assert before is not None
    assert after is None


def test_duration_does_not_tick_while_paused() -> None:
    async def scenario() -> tuple[int, int, int]:
        source = FakeInputSource()
        engine = _engine(source, duration_tick_ms=20)

        await engine.start_recording()
        await asyncio.sleep(0.105)
        engine.pause_recording()
        assert source.paused
        assert engine.state.is_paused
        paused_at = engine.state.duration_seconds
        await asyncio.sleep(0.1)
        during_pause = engine.state.duration_seconds
        engine.resume_recording()
        await asyncio.sleep(0.05)
        after = engine.state.duration_seconds
        engine.stop_recording()
        return paused_at, during_pause, after

    paused_at, during_pause, after = asyncio.run(scenario())

    assert paused_at >= 3
    assert during_pause == paused_at
    assert after > during_pause


def test_level_is_published_in_unit_range() -> None:
    async def scenario() -> list[float]:
        engine = _engine(FakeInputSource(), level_meter=ScriptedMeter([0.25, 0.5, 0.75]))
        levels: list[float] = []
        engine.on_state_change(lambda s: levels.append(s.audio_level))

        await engine.start_recording()
        await asyncio.sleep(0.05)
        engine.stop_recording()
        return levels

    levels = asyncio.run(scenario())

    assert 0.75 in levels
    assert all(0.0 <= level <= 1.0 for level in levels)
    # Level resets when capture ends
    assert levels[-1] == 0.0


def test_silence_after_speech_auto_stops(monkeypatch: pytest.MonkeyPatch) -> None:
    events = _collect_events(monkeypatch)

    async def scenario() -> tuple[VoiceCaptureEngine, FakeInputSource]:
        source = FakeInputSource()
        engine = _engine(
            source,
            enable_vad=True,
            vad_sensitivity=0.5,
            silence_stop_ms=30,
            level_meter=ScriptedMeter([0.9, 0.9, 0.9, 0.0]),
        )
        await engine.start_recording()
        await asyncio.wait_for(engine.wait_until_stopped(), timeout=1.0)
        return engine, source

    engine, source = asyncio.run(scenario())

    assert not engine.is_recording
    assert source.close_calls == 1
    stopped = [e for e in events if e["event_type"] == "CAPTURE_STOPPED"]
    assert stopped[-1]["reason"] == "silence"


def test_silence_before_speech_does_not_stop() -> None:
    async def scenario() -> bool:
        engine = _engine(
            FakeInputSource(),
            enable_vad=True,
            silence_stop_ms=20,
            level_meter=ScriptedMeter([0.0]),
        )
        await engine.start_recording()
        await asyncio.sleep(0.1)
        still_recording = engine.is_recording
        engine.stop_recording()
        return still_recording

    assert asyncio.run(scenario()) is True


def test_start_while_recording_tears_down_previous(monkeypatch: pytest.MonkeyPatch) -> None:
    events = _collect_events(monkeypatch)

    async def scenario() -> FakeInputSource:
        source = FakeInputSource()
        engine = _engine(source)
        await engine.start_recording()
        await engine.start_recording()
        assert engine.is_recording
        engine.stop_recording()
        return source

    source = asyncio.run(scenario())

    assert source.open_calls == 2
    assert source.close_calls == 2
    reasons = [e["reason"] for e in events if e["event_type"] == "CAPTURE_STOPPED"]
    assert reasons == ["superseded", "manual"]


def test_stop_during_device_open_releases_device() -> None:
    async def scenario() -> tuple[VoiceCaptureEngine, FakeInputSource]:
        gate = asyncio.Event()
        source = FakeInputSource(open_gate=gate)
        engine = _engine(source)

        start = asyncio.create_task(engine.start_recording())
        await asyncio.sleep(0.01)
        assert engine.is_recording

        engine.stop_recording()
        gate.set()
        await start
        return engine, source

    engine, source = asyncio.run(scenario())

    assert not engine.is_recording
    assert source.close_calls == 1
    assert not source.is_open
