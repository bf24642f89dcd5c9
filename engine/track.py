from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from engine.pcm import duration_for


@dataclass(frozen=True, slots=True)
class DecodedAudio:
    """Decoder output: float32 frames shaped (frames, channels)."""
    frames: np.ndarray
    sample_rate: int
    channels: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AudioTrack:
    file_path: str
    sample_rate: int
    channels: int
    buffer: bytes
    duration_s: float
    volume: float = 1.0
    metadata: dict[str, Any] = field(default_factory=dict)
    codec_info: str | None = None

    @classmethod
    def from_buffer(cls, file_path: str, sample_rate: int, channels: int, buffer: bytes, **kwargs: Any) -> "AudioTrack":
        return cls(
            file_path=file_path,
            sample_rate=int(sample_rate),
            channels=int(channels),
            buffer=buffer,
            duration_s=duration_for(len(buffer), sample_rate, channels),
            **kwargs,
        )

    @property
    def title(self) -> str:
        for key in ("title", "TITLE", "Title"):
            v = self.metadata.get(key)
            if v:
                return str(v)
        return ""

    @property
    def artist(self) -> str:
        for key in ("artist", "ARTIST", "Artist"):
            v = self.metadata.get(key)
            if v:
                return str(v)
        return ""
