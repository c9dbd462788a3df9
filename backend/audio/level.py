"""
Spectrum-based input level meter.

Reduces the latest window of input samples to one amplitude scalar in [0, 1]
for UI feedback. The reduction matches a browser AnalyserNode read through
getByteFrequencyData():

    1. Blackman-window the last `fft_size` samples
    2. |rFFT| / fft_size, first fft_size/2 bins
    3. Exponential smoothing across calls (smoothing time constant)
    4. 20*log10 -> dB, map [min_db, max_db] linearly onto [0, 255], clamp
    5. level = mean(bytes) / 255
"""

from __future__ import annotations

import numpy as np
from scipy import signal

from constants import LEVEL_FFT_SIZE, LEVEL_MAX_DECIBELS, LEVEL_MIN_DECIBELS

_SMOOTHING_TIME_CONSTANT = 0.8
_MAG_FLOOR = 1e-12


class LevelMeter:
    """
    Stateful level meter (smoothing carries across calls).

    Call reset() at the start of each capture so a new recording does not
    inherit the previous one's spectrum.
    """

    def __init__(
        self,
        *,
        fft_size: int = LEVEL_FFT_SIZE,
        min_db: float = LEVEL_MIN_DECIBELS,
        max_db: float = LEVEL_MAX_DECIBELS,
        smoothing: float = _SMOOTHING_TIME_CONSTANT,
    ) -> None:
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError("fft_size must be a power of two >= 32")
        if max_db <= min_db:
            raise ValueError("max_db must be > min_db")
        if not 0.0 <= smoothing < 1.0:
            raise ValueError("smoothing must be in [0, 1)")

        self._fft_size = fft_size
        self._min_db = min_db
        self._max_db = max_db
        self._smoothing = smoothing
        self._window = signal.get_window("blackman", fft_size, fftbins=False).astype(np.float32)
        self._smoothed = np.zeros(fft_size // 2, dtype=np.float64)

    @property
    def fft_size(self) -> int:
        """Number of samples analysed per call."""
        return self._fft_size

    def reset(self) -> None:
        """Clear the smoothing state."""
        self._smoothed[:] = 0.0

    def level(self, samples: np.ndarray) -> float:
        """
        Compute the level of the most recent samples.

        Windows shorter than fft_size are zero-padded at the front.
        An empty window yields the decayed previous spectrum.
        """
        frame = np.zeros(self._fft_size, dtype=np.float32)
        if samples.size:
            tail = np.asarray(samples, dtype=np.float32).reshape(-1)[-self._fft_size:]
            frame[-tail.size:] = tail

        spectrum = np.fft.rfft(frame * self._window)[: self._fft_size // 2]
        magnitude = np.abs(spectrum) / self._fft_size

        self._smoothed = (
            self._smoothing * self._smoothed
            + (1.0 - self._smoothing) * magnitude
        )

        db = 20.0 * np.log10(np.maximum(self._smoothed, _MAG_FLOOR))
        scaled = 255.0 * (db - self._min_db) / (self._max_db - self._min_db)
        byte_values = np.clip(np.floor(scaled), 0.0, 255.0)

        value = float(byte_values.mean() / 255.0)
        return min(1.0, max(0.0, value))
