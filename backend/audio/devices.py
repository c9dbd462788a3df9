"""
Audio device capability contracts.

This module defines the *interfaces only*. Capture and playback engines are
written against these so their logic is independent of any audio backend and
testable with fakes. Concrete implementations live in audio/sounddevice_io.py.

Key invariants:
- One open input device per AudioInputSource at a time.
- open() either fully acquires the device or raises DeviceError; there is no
  half-open state.
- close() is idempotent.
- Playback handles report progress through callbacks invoked on the event loop.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

import numpy as np

from audio.frames import AudioBlob


class DeviceError(Exception):
    """
    Audio device could not be acquired or failed while open.

    Fatal for the current capture/playback attempt; never retried automatically.
    """


class AudioDecodeError(Exception):
    """Audio bytes could not be decoded into playable samples."""


# ---------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------

class AudioInputSource(ABC):
    """
    Abstract microphone-like input.

    Implementations are responsible for:
    - Acquiring and releasing the device
    - Buffering captured PCM16 until drain()
    - Keeping a short rolling window of recent samples for level analysis

    Non-responsibilities:
    - No chunk timing, no duration policy, no level computation
    """

    @property
    @abstractmethod
    def sample_rate(self) -> int:
        """Sample rate of the delivered PCM in Hz."""
        raise NotImplementedError

    @property
    @abstractmethod
    def channels(self) -> int:
        """Interleaved channel count of the delivered PCM."""
        raise NotImplementedError

    @abstractmethod
    async def open(self) -> None:
        """
        Acquire the device and begin capturing.

        Raises:
            DeviceError on permission denial or when no device is available.
        """
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Stop capturing and release the device. Idempotent."""
        raise NotImplementedError

    @abstractmethod
    def pause(self) -> None:
        """Stop accumulating audio without releasing the device."""
        raise NotImplementedError

    @abstractmethod
    def resume(self) -> None:
        """Resume accumulating audio after pause()."""
        raise NotImplementedError

    @abstractmethod
    def drain(self) -> bytes:
        """Return and clear all PCM16 captured since the previous drain."""
        raise NotImplementedError

    @abstractmethod
    def analysis_window(self) -> np.ndarray:
        """
        Most recent mono float32 samples for level analysis.

        Must not consume audio from the drain() buffer.
        May be shorter than requested (or empty) right after open().
        """
        raise NotImplementedError


# ---------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------

PositionCallback = Callable[[float], None]
EndedCallback = Callable[[], None]
ErrorCallback = Callable[[Exception], None]


class PlaybackHandle(ABC):
    """
    One loaded, playable piece of audio.

    Callbacks registered via bind() are invoked on the event loop thread.
    """

    @property
    @abstractmethod
    def duration(self) -> float:
        """Total duration in seconds."""
        raise NotImplementedError

    @property
    @abstractmethod
    def position(self) -> float:
        """Current playback position in seconds."""
        raise NotImplementedError

    @abstractmethod
    def bind(
        self,
        *,
        on_position: PositionCallback,
        on_ended: EndedCallback,
        on_error: ErrorCallback,
    ) -> None:
        """Register progress callbacks (replaces any previous binding)."""
        raise NotImplementedError

    @abstractmethod
    def set_volume(self, volume: float) -> None:
        """Set output gain in [0, 1]."""
        raise NotImplementedError

    @abstractmethod
    def play(self) -> None:
        """Start or resume playback from the current position."""
        raise NotImplementedError

    @abstractmethod
    def pause(self) -> None:
        """Halt playback, keeping the position."""
        raise NotImplementedError

    @abstractmethod
    def seek(self, seconds: float) -> None:
        """Move the position (clamped to [0, duration])."""
        raise NotImplementedError

    def stop(self) -> None:
        """Halt playback and rewind to the start."""
        self.pause()
        self.seek(0.0)

    @abstractmethod
    def close(self) -> None:
        """Halt playback and release the output resource. Idempotent."""
        raise NotImplementedError


class AudioOutputSink(ABC):
    """Factory for playback handles on one output device."""

    @abstractmethod
    def load(self, blob: AudioBlob) -> PlaybackHandle:
        """
        Decode a blob into a playable handle (not yet playing).

        Raises:
            AudioDecodeError if the bytes cannot be decoded.
            DeviceError if the output device cannot be opened.
        """
        raise NotImplementedError
