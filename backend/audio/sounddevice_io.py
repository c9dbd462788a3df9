"""
PortAudio-backed input and output devices (via sounddevice).

Threading:
- sounddevice invokes stream callbacks on its own audio thread.
- Callbacks never touch engine state directly; they hand data to the event
  loop with loop.call_soon_threadsafe and all bookkeeping happens there.
"""

from __future__ import annotations

import asyncio
from typing import Any

import numpy as np
import sounddevice as sd

from audio.devices import (
    AudioDecodeError,
    AudioInputSource,
    AudioOutputSink,
    DeviceError,
    EndedCallback,
    ErrorCallback,
    PlaybackHandle,
    PositionCallback,
)
from audio.frames import AudioBlob
from audio.pcm import decode_audio, pcm16le_to_float32
from constants import CAPTURE_CHANNELS, CAPTURE_SAMPLE_RATE_HZ_DEFAULT, LEVEL_FFT_SIZE
from observability.logger import log_debug, log_event, now_ms

_INPUT_BLOCK_MS = 20
_ANALYSIS_WINDOW_SAMPLES = LEVEL_FFT_SIZE * 4
_POSITION_NOTIFY_S = 0.1


def _post(loop: asyncio.AbstractEventLoop | None, fn: Any, *args: Any) -> None:
    """Schedule fn(*args) on loop from the audio thread; dropped if the loop is gone."""
    if loop is None:
        return
    try:
        loop.call_soon_threadsafe(fn, *args)
    except RuntimeError:
        # Loop closed during teardown
        pass


# ---------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------

class SoundDeviceInputSource(AudioInputSource):
    """Microphone input as PCM16 through a sounddevice.InputStream."""

    def __init__(
        self,
        *,
        sample_rate_hz: int = CAPTURE_SAMPLE_RATE_HZ_DEFAULT,
        channels: int = CAPTURE_CHANNELS,
        device: int | str | None = None,
    ) -> None:
        self._sample_rate = sample_rate_hz
        self._channels = channels
        self._device = device

        self._stream: sd.InputStream | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._paused = False
        self._buffer = bytearray()
        self._window = np.zeros(0, dtype=np.float32)

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def channels(self) -> int:
        return self._channels

    async def open(self) -> None:
        if self._stream is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._paused = False
        self._buffer.clear()
        self._window = np.zeros(0, dtype=np.float32)

        try:
            stream = sd.InputStream(
                samplerate=self._sample_rate,
                channels=self._channels,
                dtype="int16",
                blocksize=int(self._sample_rate * _INPUT_BLOCK_MS / 1000),
                device=self._device,
                callback=self._callback,
            )
        except (sd.PortAudioError, ValueError) as e:
            # sounddevice raises ValueError when no device matches `device`
            raise DeviceError(f"Input device unavailable: {e}") from e

        try:
            stream.start()
        except sd.PortAudioError as e:
            stream.close()
            raise DeviceError(f"Input device unavailable: {e}") from e

        self._stream = stream
        log_event({
            "ts_ms": now_ms(),
            "event_type": "INPUT_DEVICE_OPENED",
            "device": self._device,
            "sample_rate_hz": self._sample_rate,
            "channels": self._channels,
        })

    def close(self) -> None:
        stream = self._stream
        if stream is None:
            return
        self._stream = None
        try:
            stream.abort()
            stream.close()
        except sd.PortAudioError as e:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "INPUT_DEVICE_CLOSE_FAILED",
                "message": str(e),
            })
        log_event({
            "ts_ms": now_ms(),
            "event_type": "INPUT_DEVICE_CLOSED",
            "device": self._device,
        })

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def drain(self) -> bytes:
        data = bytes(self._buffer)
        self._buffer.clear()
        return data

    def analysis_window(self) -> np.ndarray:
        return self._window

    # ------------------------------------------------------------------
    # Audio thread -> loop
    # ------------------------------------------------------------------

    def _callback(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        _post(self._loop, self._ingest, bytes(indata), str(status) if status else "")

    def _ingest(self, data: bytes, status: str) -> None:
        if status:
            log_debug({
                "ts_ms": now_ms(),
                "event_type": "INPUT_STREAM_STATUS",
                "status": status,
            })
        if self._stream is None or self._paused:
            return
        self._buffer.extend(data)
        samples = pcm16le_to_float32(data, self._channels)
        self._window = np.concatenate((self._window, samples))[-_ANALYSIS_WINDOW_SAMPLES:]


# ---------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------

class SoundDevicePlayback(PlaybackHandle):
    """Decoded audio played through a callback-driven sounddevice.OutputStream."""

    def __init__(
        self,
        frames: np.ndarray,
        sample_rate: int,
        *,
        device: int | str | None = None,
    ) -> None:
        self._frames = frames
        self._sample_rate = sample_rate
        self._device = device

        self._loop: asyncio.AbstractEventLoop | None = None
        self._stream: sd.OutputStream | None = None
        self._pos = 0
        self._last_notified = 0
        self._volume = 1.0
        self._reached_end = False
        self._closed = False

        self._on_position: PositionCallback | None = None
        self._on_ended: EndedCallback | None = None
        self._on_error: ErrorCallback | None = None

    @property
    def duration(self) -> float:
        return len(self._frames) / self._sample_rate

    @property
    def position(self) -> float:
        return self._pos / self._sample_rate

    def bind(
        self,
        *,
        on_position: PositionCallback,
        on_ended: EndedCallback,
        on_error: ErrorCallback,
    ) -> None:
        self._on_position = on_position
        self._on_ended = on_ended
        self._on_error = on_error

    def set_volume(self, volume: float) -> None:
        self._volume = min(1.0, max(0.0, volume))

    def play(self) -> None:
        """
        Start or resume playback.

        Raises:
            DeviceError if the output stream cannot be opened or started.
        """
        if self._closed:
            return
        if self._pos >= len(self._frames):
            self._pos = 0
        self._reached_end = False
        self._loop = asyncio.get_running_loop()

        if self._stream is None:
            try:
                self._stream = sd.OutputStream(
                    samplerate=self._sample_rate,
                    channels=self._frames.shape[1],
                    dtype="float32",
                    device=self._device,
                    callback=self._callback,
                    finished_callback=self._finished,
                )
            except (sd.PortAudioError, ValueError) as e:
                raise DeviceError(f"Output device unavailable: {e}") from e

        stream = self._stream
        if stream.active:
            return
        try:
            stream.start()
        except sd.PortAudioError as e:
            self._stream = None
            stream.close()
            raise DeviceError(f"Output device unavailable: {e}") from e

    def pause(self) -> None:
        if self._stream is not None and self._stream.active:
            self._stream.stop()

    def seek(self, seconds: float) -> None:
        clamped = min(self.duration, max(0.0, seconds))
        self._pos = int(clamped * self._sample_rate)
        self._last_notified = self._pos

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.abort()
            stream.close()
        except sd.PortAudioError as e:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "OUTPUT_DEVICE_CLOSE_FAILED",
                "message": str(e),
            })

    # ------------------------------------------------------------------
    # Audio thread
    # ------------------------------------------------------------------

    def _callback(self, outdata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
        start = self._pos
        end = min(start + frames, len(self._frames))
        n = end - start
        outdata[:n] = self._frames[start:end] * self._volume
        outdata[n:] = 0
        self._pos = end

        if end - self._last_notified >= int(_POSITION_NOTIFY_S * self._sample_rate):
            self._last_notified = end
            _post(self._loop, self._notify_position)

        if end >= len(self._frames):
            self._reached_end = True
            raise sd.CallbackStop

    def _finished(self) -> None:
        _post(self._loop, self._notify_finished)

    # ------------------------------------------------------------------
    # Loop side
    # ------------------------------------------------------------------

    def _notify_position(self) -> None:
        if not self._closed and self._on_position is not None:
            self._on_position(self.position)

    def _notify_finished(self) -> None:
        if self._closed or not self._reached_end:
            return
        self._reached_end = False
        self._pos = 0
        self._last_notified = 0
        if self._on_ended is not None:
            self._on_ended()


class SoundDeviceOutputSink(AudioOutputSink):
    """Loads blobs into SoundDevicePlayback handles on one output device."""

    def __init__(self, *, device: int | str | None = None) -> None:
        self._device = device

    def load(self, blob: AudioBlob) -> PlaybackHandle:
        try:
            frames, sample_rate = decode_audio(blob.data)
        except RuntimeError as e:
            raise AudioDecodeError(
                f"Cannot decode {blob.content_type} ({len(blob)} bytes): {e}"
            ) from e
        if frames.size == 0:
            raise AudioDecodeError(f"Decoded {blob.content_type} contains no audio")
        return SoundDevicePlayback(frames, sample_rate, device=self._device)
