"""
Audio data primitives.

Pure data containers only.
No behavior, no device access, no timing logic.
"""

from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class AudioBlob:
    """
    A finished, immutable piece of encoded audio.

    data:
        Container bytes (WAV for recordings; whatever the synthesis
        endpoint returned for playback).

    content_type:
        MIME type of `data`, e.g. "audio/wav" or "audio/mpeg".
    """
    data: bytes
    content_type: str

    def __len__(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        """File extension implied by content_type, used for upload filenames."""
        subtype = self.content_type.split("/", 1)[-1].split(";", 1)[0].strip()
        return {
            "mpeg": "mp3",
            "x-wav": "wav",
            "wave": "wav",
        }.get(subtype, subtype or "bin")
