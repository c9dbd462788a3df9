"""
Voice capture engine: one microphone recording at a time.

Responsibilities:
- Acquire / release the input device (via AudioInputSource)
- Collect PCM chunks on a fixed cadence into the current Recording
- Publish a high-rate input level for UI feedback
- Enforce the hard duration ceiling and the optional silence auto-stop
- Hand out the finished recording as one WAV AudioBlob

Non-responsibilities:
- No uploading (TranscriptionGateway)
- No single-interaction policy across components (InteractionOrchestrator)

Concurrency model:
- While recording, four tasks run: chunk collection, duration tick, level
  monitor and the duration ceiling. None of them awaits another.
- stop_recording() is synchronous and idempotent; it cancels every capture
  task (except the caller, when a task stops its own recording) and always
  closes the device.
- A generation counter discards an open() that completes after the capture
  it belonged to was stopped.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine

from audio.devices import AudioInputSource, DeviceError
from audio.frames import AudioBlob
from audio.level import LevelMeter
from audio.pcm import pcm16_to_wav
from audio.vad import SilenceDetector, threshold_for_sensitivity
from constants import (
    CAPTURE_BLOB_CONTENT_TYPE,
    CAPTURE_CHUNK_INTERVAL_MS_DEFAULT,
    CAPTURE_DURATION_TICK_MS,
    CAPTURE_LEVEL_INTERVAL_MS_DEFAULT,
    CAPTURE_MAX_DURATION_MS_DEFAULT,
    VAD_ENABLED_DEFAULT,
    VAD_SENSITIVITY_DEFAULT,
    VAD_SILENCE_STOP_MS_DEFAULT,
)
from listeners import ListenerSet, Unsubscribe
from observability.logger import log_debug, log_event, now_ms
from tasks import cancel_others, wait_others


# ---------------------------------------------------------------------
# State
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class CaptureState:
    """Observable capture snapshot."""
    is_recording: bool = False
    is_paused: bool = False
    duration_seconds: int = 0
    audio_level: float = 0.0
    error: str | None = None


@dataclass
class Recording:
    """
    Audio captured by one start/stop cycle.

    Owned by the engine while capturing. After stop it stays available for
    get_recording_blob() until release_recording() or the next start.
    """
    sample_rate_hz: int
    channels: int
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    chunks: list[bytes] = field(default_factory=list)
    duration_seconds: int = 0
    is_paused: bool = False

    @property
    def byte_count(self) -> int:
        return sum(len(c) for c in self.chunks)


# ---------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------

class VoiceCaptureEngine:
    """Record from one AudioInputSource with chunking, level metering and auto-stop."""

    def __init__(
        self,
        source: AudioInputSource,
        *,
        max_duration_ms: int = CAPTURE_MAX_DURATION_MS_DEFAULT,
        chunk_interval_ms: int = CAPTURE_CHUNK_INTERVAL_MS_DEFAULT,
        level_interval_ms: int = CAPTURE_LEVEL_INTERVAL_MS_DEFAULT,
        enable_vad: bool = VAD_ENABLED_DEFAULT,
        vad_sensitivity: float = VAD_SENSITIVITY_DEFAULT,
        silence_stop_ms: int = VAD_SILENCE_STOP_MS_DEFAULT,
        duration_tick_ms: int = CAPTURE_DURATION_TICK_MS,
        session_id: str | None = None,
        level_meter: LevelMeter | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_duration_ms <= 0:
            raise ValueError("max_duration_ms must be > 0")
        if chunk_interval_ms <= 0 or level_interval_ms <= 0:
            raise ValueError("chunk_interval_ms and level_interval_ms must be > 0")

        self._source = source
        self._max_duration_s = max_duration_ms / 1000.0
        self._chunk_interval_s = chunk_interval_ms / 1000.0
        self._level_interval_s = level_interval_ms / 1000.0
        self._tick_s = duration_tick_ms / 1000.0
        self._session_id = session_id
        self._meter = level_meter or LevelMeter()
        self._clock = clock

        self._silence: SilenceDetector | None = None
        if enable_vad:
            self._silence = SilenceDetector(
                threshold_for_sensitivity(vad_sensitivity),
                silence_stop_ms,
            )

        self._state = CaptureState()
        self._recording: Recording | None = None
        self._active = False
        self._opening = False
        self._gen = 0
        self._tasks: list[asyncio.Task[Any]] = []
        self._stopped = asyncio.Event()
        self._stopped.set()

        self._state_listeners = ListenerSet("capture.state")
        self._chunk_listeners = ListenerSet("capture.chunk")

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._active or self._opening

    @property
    def recording(self) -> Recording | None:
        return self._recording

    def on_state_change(self, callback: Callable[[CaptureState], None]) -> Unsubscribe:
        """Subscribe to CaptureState snapshots."""
        return self._state_listeners.add(callback)

    def on_chunk(self, callback: Callable[[bytes], None]) -> Unsubscribe:
        """Subscribe to raw PCM16 chunks as they are collected (for live streaming)."""
        return self._chunk_listeners.add(callback)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start_recording(self) -> None:
        """
        Acquire the device and begin a new Recording.

        A live capture is stopped first. A start issued while a previous
        start is still acquiring the device is ignored.

        Device failures are surfaced through state.error; this method does
        not raise them.
        """
        if self._opening:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "CAPTURE_START_IGNORED",
                "session_id": self._session_id,
                "reason": "open_in_progress",
            })
            return

        if self._active:
            self.stop_recording(reason="superseded")

        self._recording = None
        self._gen += 1
        gen = self._gen
        self._opening = True
        self._stopped.clear()
        self._publish(replace(self._state, error=None))

        try:
            await self._source.open()
        except asyncio.CancelledError:
            if gen == self._gen:
                self.stop_recording(reason="cancelled")
                self._source.close()
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            # Any backend failure ends the open attempt
            if gen == self._gen:
                self._abort_open(e)
            return

        if gen != self._gen:
            # Stopped while the device was being acquired
            self._source.close()
            return

        self._opening = False
        self._active = True
        self._recording = Recording(
            sample_rate_hz=self._source.sample_rate,
            channels=self._source.channels,
        )
        self._meter.reset()
        if self._silence is not None:
            self._silence.reset()

        self._tasks = [
            self._spawn(self._chunk_loop(gen)),
            self._spawn(self._duration_loop(gen)),
            self._spawn(self._level_loop(gen)),
            self._spawn(self._ceiling(gen)),
        ]

        log_event({
            "ts_ms": now_ms(),
            "event_type": "CAPTURE_STARTED",
            "session_id": self._session_id,
            "sample_rate_hz": self._recording.sample_rate_hz,
            "channels": self._recording.channels,
            "max_duration_s": self._max_duration_s,
            "vad": self._silence is not None,
        })
        self._publish(CaptureState(is_recording=True))

    def stop_recording(self, reason: str = "manual") -> None:
        """
        End the current capture. No-op when not recording.

        Always cancels the capture tasks and releases the device. Audio still
        buffered in the source is flushed into the Recording first.
        """
        if self._opening:
            self._gen += 1
            self._opening = False
            self._stopped.set()
            self._publish(replace(self._state, is_recording=False, is_paused=False))
            log_event({
                "ts_ms": now_ms(),
                "event_type": "CAPTURE_STOPPED",
                "session_id": self._session_id,
                "reason": reason,
                "phase": "opening",
            })
            return

        if not self._active:
            return

        self._active = False
        self._gen += 1
        self._cancel_tasks()

        rec = self._recording
        flush_error: str | None = None
        try:
            tail = self._source.drain()
            if tail and rec is not None:
                rec.chunks.append(tail)
                self._chunk_listeners.emit(tail)
        except DeviceError as e:
            flush_error = str(e)
        finally:
            self._source.close()

        if rec is not None:
            rec.is_paused = False

        self._stopped.set()

        log_event({
            "ts_ms": now_ms(),
            "event_type": "CAPTURE_STOPPED",
            "session_id": self._session_id,
            "reason": reason,
            "duration_seconds": rec.duration_seconds if rec else 0,
            "chunks": len(rec.chunks) if rec else 0,
            "bytes": rec.byte_count if rec else 0,
        })
        self._publish(CaptureState(
            is_recording=False,
            is_paused=False,
            duration_seconds=rec.duration_seconds if rec else 0,
            audio_level=0.0,
            error=flush_error or self._state.error,
        ))

    def pause_recording(self) -> None:
        """Suspend accumulation without releasing the device."""
        if not self._active or self._recording is None or self._recording.is_paused:
            return
        self._source.pause()
        self._recording.is_paused = True
        self._publish(replace(self._state, is_paused=True, audio_level=0.0))

    def resume_recording(self) -> None:
        """Resume accumulation after pause_recording()."""
        if not self._active or self._recording is None or not self._recording.is_paused:
            return
        self._source.resume()
        self._recording.is_paused = False
        if self._silence is not None:
            self._silence.reset()
        self._publish(replace(self._state, is_paused=False))

    async def wait_until_stopped(self) -> None:
        """Resolve when the current capture (if any) has stopped."""
        await self._stopped.wait()

    def get_recording_blob(self) -> AudioBlob | None:
        """
        WAV blob of the finished recording, or None if no audio was collected.

        Returns None while a capture is still running.
        """
        rec = self._recording
        if rec is None or self._active or not rec.chunks:
            return None
        wav = pcm16_to_wav(
            b"".join(rec.chunks),
            sample_rate_hz=rec.sample_rate_hz,
            channels=rec.channels,
        )
        return AudioBlob(data=wav, content_type=CAPTURE_BLOB_CONTENT_TYPE)

    def release_recording(self) -> None:
        """Destroy the finished recording."""
        if self._active:
            return
        self._recording = None

    async def aclose(self) -> None:
        """Stop any capture and wait for the capture tasks to unwind."""
        tasks = list(self._tasks)
        self.stop_recording(reason="closed")
        self.release_recording()
        await wait_others(tasks)

    # ------------------------------------------------------------------
    # Capture tasks
    # ------------------------------------------------------------------

    async def _chunk_loop(self, gen: int) -> None:
        try:
            while True:
                await asyncio.sleep(self._chunk_interval_s)
                if gen != self._gen or self._recording is None:
                    return
                try:
                    data = self._source.drain()
                except DeviceError as e:
                    self._fail(gen, e)
                    return
                if data:
                    self._recording.chunks.append(data)
                    log_debug({
                        "ts_ms": now_ms(),
                        "event_type": "CAPTURE_CHUNK",
                        "session_id": self._session_id,
                        "index": len(self._recording.chunks) - 1,
                        "bytes": len(data),
                    })
                    self._chunk_listeners.emit(data)
        except asyncio.CancelledError:
            return

    async def _duration_loop(self, gen: int) -> None:
        try:
            while True:
                await asyncio.sleep(self._tick_s)
                rec = self._recording
                if gen != self._gen or rec is None:
                    return
                if rec.is_paused:
                    continue
                rec.duration_seconds += 1
                self._publish(replace(self._state, duration_seconds=rec.duration_seconds))
        except asyncio.CancelledError:
            return

    async def _level_loop(self, gen: int) -> None:
        try:
            while True:
                await asyncio.sleep(self._level_interval_s)
                rec = self._recording
                if gen != self._gen or rec is None:
                    return
                if rec.is_paused:
                    continue

                level = self._meter.level(self._source.analysis_window())
                if level != self._state.audio_level:
                    self._publish(replace(self._state, audio_level=level))

                if self._silence is not None and self._silence.observe(level, self._clock()):
                    self.stop_recording(reason="silence")
                    return
        except asyncio.CancelledError:
            return

    async def _ceiling(self, gen: int) -> None:
        try:
            await asyncio.sleep(self._max_duration_s)
        except asyncio.CancelledError:
            return
        if gen == self._gen:
            self.stop_recording(reason="max_duration")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _abort_open(self, e: Exception) -> None:
        message = str(e) or type(e).__name__
        self._gen += 1
        self._opening = False
        self._stopped.set()
        self._source.close()
        log_event({
            "ts_ms": now_ms(),
            "event_type": "CAPTURE_DEVICE_ERROR",
            "session_id": self._session_id,
            "message": message,
            "exception": type(e).__name__,
        })
        self._publish(CaptureState(error=message))

    def _fail(self, gen: int, e: DeviceError) -> None:
        if gen != self._gen:
            return
        log_event({
            "ts_ms": now_ms(),
            "event_type": "CAPTURE_DEVICE_ERROR",
            "session_id": self._session_id,
            "message": str(e),
        })
        self._state = replace(self._state, error=str(e))
        self.stop_recording(reason="device_error")

    def _cancel_tasks(self) -> None:
        cancel_others(self._tasks)
        self._tasks = []

    def _publish(self, new_state: CaptureState) -> None:
        if new_state == self._state:
            return
        self._state = new_state
        self._state_listeners.emit(new_state)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        return asyncio.create_task(coro)
