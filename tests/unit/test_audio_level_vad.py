# pylint: disable=missing-module-docstring,missing-function-docstring

import numpy as np
import pytest

from audio.level import LevelMeter
from audio.vad import SilenceDetector, threshold_for_sensitivity


def _noise(n: int, amplitude: float = 0.5) -> np.ndarray:
    rng = np.random.default_rng(0)
    return rng.uniform(-amplitude, amplitude, n).astype(np.float32)


def test_silence_reads_zero() -> None:
    meter = LevelMeter()

    assert meter.level(np.zeros(256, dtype=np.float32)) == 0.0


def test_loud_noise_reads_high_and_is_clamped() -> None:
    meter = LevelMeter()

    levels = [meter.level(_noise(256)) for _ in range(10)]

    assert levels[-1] > 0.5
    assert all(0.0 <= level <= 1.0 for level in levels)


def test_smoothing_makes_level_decay_gradually() -> None:
    meter = LevelMeter()
    for _ in range(10):
        meter.level(_noise(256))

    loud = meter.level(_noise(256))
    first_quiet = meter.level(np.zeros(256, dtype=np.float32))

    assert 0.0 < first_quiet < loud


def test_reset_clears_history() -> None:
    meter = LevelMeter()
    meter.level(_noise(256))

    meter.reset()

    assert meter.level(np.zeros(256, dtype=np.float32)) == 0.0


def test_short_and_empty_windows_are_accepted() -> None:
    meter = LevelMeter()

    assert 0.0 <= meter.level(_noise(40)) <= 1.0
    assert 0.0 <= meter.level(np.zeros(0, dtype=np.float32)) <= 1.0


def test_fft_size_must_be_power_of_two() -> None:
    with pytest.raises(ValueError):
        LevelMeter(fft_size=100)


def test_threshold_falls_as_sensitivity_rises() -> None:
    low = threshold_for_sensitivity(0.0)
    mid = threshold_for_sensitivity(0.5)
    high = threshold_for_sensitivity(1.0)

    assert low > mid > high
    assert threshold_for_sensitivity(5.0) == high


def test_detector_requires_speech_then_sustained_quiet() -> None:
    detector = SilenceDetector(threshold=0.2, silence_ms=500)

    # Quiet before any speech never fires
    assert detector.observe(0.0, 0.0) is False
    assert detector.observe(0.0, 10.0) is False

    assert detector.observe(0.6, 10.1) is False
    assert detector.observe(0.05, 10.2) is False
    assert detector.observe(0.05, 10.5) is False
    # Speech resumes; quiet window restarts
    assert detector.observe(0.5, 10.6) is False
    assert detector.observe(0.05, 10.7) is False
    assert detector.observe(0.05, 11.3) is True


def test_detector_reset_forgets_speech() -> None:
    detector = SilenceDetector(threshold=0.2, silence_ms=100)
    detector.observe(0.9, 0.0)

    detector.reset()

    assert detector.heard_speech is False
    assert detector.observe(0.0, 1.0) is False
    assert detector.observe(0.0, 2.0) is False
