from __future__ import annotations

import math

import numpy as np

from engine.errors import InvalidFormatError

BYTES_PER_SAMPLE = 2
INT16_SCALE = 32767.0


def clamp_volume(volume: float) -> float:
    v = float(volume)
    if math.isnan(v):
        return 0.0
    return min(1.0, max(0.0, v))


def frame_bytes(channels: int) -> int:
    return int(channels) * BYTES_PER_SAMPLE


def build_pcm_buffer(frames: np.ndarray, sample_rate: int, channels: int, volume: float) -> bytes:
    """Scale, clamp and quantize decoded frames into an int16 LE interleaved buffer.

    ``frames`` is a (frames, channels) float array. Volume is applied before
    clamping so that an attenuating volume brings over-range samples back in
    range instead of clipping them first.
    """
    if int(sample_rate) <= 0 or int(channels) <= 0:
        raise InvalidFormatError(f"invalid format: sample_rate={sample_rate} channels={channels}")

    pcm = np.asarray(frames, dtype=np.float32)
    if pcm.ndim == 1:
        pcm = pcm.reshape(-1, int(channels))
    elif pcm.ndim != 2 or pcm.shape[1] != int(channels):
        raise InvalidFormatError(f"frames shaped {pcm.shape} do not match {channels} channels")

    scaled = pcm * np.float32(clamp_volume(volume))
    np.clip(scaled, -1.0, 1.0, out=scaled)
    # Truncation toward zero matches a plain int16 cast of sample * 32767.
    quantized = (scaled * INT16_SCALE).astype("<i2")
    return quantized.reshape(-1).tobytes()


def byte_offset_for(seconds: float, sample_rate: int, channels: int, buffer_len: int | None = None) -> int:
    """Byte offset of a seek target inside a prepared buffer.

    Seeks land on whole seconds: floor(seconds) * rate * channels * 2.
    The result is clamped to the buffer when its length is given.
    """
    whole = max(0, int(math.floor(max(0.0, float(seconds)))))
    offset = whole * int(sample_rate) * frame_bytes(channels)
    if buffer_len is not None:
        fb = frame_bytes(channels)
        limit = (int(buffer_len) // fb) * fb
        offset = min(offset, limit)
    return offset


def duration_for(buffer_len: int, sample_rate: int, channels: int) -> float:
    samples = int(buffer_len) // BYTES_PER_SAMPLE
    return samples / float(int(sample_rate) * int(channels))
