"""PCM conversion and container utilities."""
from __future__ import annotations

import io

import numpy as np
import soundfile as sf


def pcm16le_to_float32(pcm_bytes: bytes, channels: int = 1) -> np.ndarray:
    """
    Convert PCM16 little-endian bytes to mono float32 in [-1.0, 1.0).

    Interleaved multi-channel input is averaged down to mono.
    No resampling.
    """
    frame_bytes = 2 * channels
    usable = len(pcm_bytes) - (len(pcm_bytes) % frame_bytes)
    if usable != len(pcm_bytes):
        # Truncated frame; drop the partial tail
        pcm_bytes = pcm_bytes[:usable]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")  # little-endian int16
    audio_f32 = audio_i16.astype(np.float32) / 32768.0
    if channels > 1:
        audio_f32 = audio_f32.reshape(-1, channels).mean(axis=1)
    return audio_f32


def pcm16_to_wav(pcm_bytes: bytes, *, sample_rate_hz: int, channels: int = 1) -> bytes:
    """Wrap raw PCM16 samples in a WAV container."""
    frame_bytes = 2 * channels
    usable = len(pcm_bytes) - (len(pcm_bytes) % frame_bytes)
    samples = np.frombuffer(pcm_bytes[:usable], dtype="<i2").reshape(-1, channels)

    buf = io.BytesIO()
    sf.write(buf, samples, sample_rate_hz, format="WAV", subtype="PCM_16")
    return buf.getvalue()


def decode_audio(data: bytes) -> tuple[np.ndarray, int]:
    """
    Decode container bytes (WAV/OGG/FLAC/MP3) to float32 frames.

    Returns:
        (frames, sample_rate) with frames shaped (n_frames, channels).

    Raises:
        soundfile.LibsndfileError (a RuntimeError) for undecodable data.
    """
    frames, sample_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
    return frames, int(sample_rate)
