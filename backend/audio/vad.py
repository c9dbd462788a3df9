"""
A minimal, level-based silence detector for auto-stopping a capture.

Operates on the scalar input level produced by audio.level.LevelMeter
(already smoothed, in [0, 1]) rather than raw frames. Reports silence only
after speech has been heard and the level then stays below threshold for a
configurable stretch of time.
"""

from __future__ import annotations

from constants import (
    VAD_LEVEL_THRESHOLD_AT_MAX_SENSITIVITY,
    VAD_LEVEL_THRESHOLD_AT_MIN_SENSITIVITY,
)


def threshold_for_sensitivity(sensitivity: float) -> float:
    """
    Map a sensitivity in [0, 1] to a level threshold.

    Higher sensitivity means a lower threshold, so quieter input counts as
    speech. Values outside [0, 1] are clamped.
    """
    s = min(1.0, max(0.0, sensitivity))
    lo = VAD_LEVEL_THRESHOLD_AT_MAX_SENSITIVITY
    hi = VAD_LEVEL_THRESHOLD_AT_MIN_SENSITIVITY
    return hi - (hi - lo) * s


class SilenceDetector:
    """
    Simple level-threshold silence detector.

    Silence never fires before the first above-threshold observation, so a
    recording that starts quiet is not stopped before the user speaks.
    """

    def __init__(self, threshold: float, silence_ms: int):
        if silence_ms <= 0:
            raise ValueError("silence_ms must be > 0")
        self._threshold = threshold
        self._silence_s = silence_ms / 1000.0
        self._heard_speech = False
        self._quiet_since: float | None = None

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def heard_speech(self) -> bool:
        return self._heard_speech

    def observe(self, level: float, now_s: float) -> bool:
        """
        Observe one level sample taken at monotonic time now_s.

        Returns:
            True once speech has been heard and the level has stayed below
            threshold for at least silence_ms. False otherwise.
        """
        if level >= self._threshold:
            self._heard_speech = True
            self._quiet_since = None
            return False

        if not self._heard_speech:
            return False

        if self._quiet_since is None:
            self._quiet_since = now_s
            return False

        return (now_s - self._quiet_since) >= self._silence_s

    def reset(self) -> None:
        """Forget speech history; the next recording starts fresh."""
        self._heard_speech = False
        self._quiet_since = None
