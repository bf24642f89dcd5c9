from __future__ import annotations

from pathlib import Path
from typing import Any

import av
import fleep
import numpy as np

from engine.errors import AudioFileNotFoundError, DecodeError, UnsupportedFormatError
from engine.track import DecodedAudio

# Compressed and uncompressed-PCM containers.
SUPPORTED_EXTENSIONS = (".mp3", ".wav")

_SNIFF_BYTES = 128


def is_supported_audio_path(path: str | Path) -> bool:
    return Path(path).suffix.lower() in SUPPORTED_EXTENSIONS


def _sniff(path: Path) -> None:
    """Reject files whose header is recognised as something other than audio."""
    with path.open("rb") as check_file:
        info = fleep.get(check_file.read(_SNIFF_BYTES))
    if info.type and "audio" not in info.type:
        raise UnsupportedFormatError(f"{path.name} is not an audio file (detected {', '.join(info.type)})")


def _extract_metadata(container) -> dict[str, Any]:
    md: dict[str, Any] = {}
    for k, v in dict(getattr(container, "metadata", {}) or {}).items():
        if isinstance(k, str):
            md[k.lower()] = v
    return md


def planar_to_frames(planar: np.ndarray, channels: int) -> np.ndarray:
    """Turn one fltp resampler frame, shaped (channels, samples), into (samples, channels)."""
    arr = np.asarray(planar, dtype=np.float32)
    if arr.ndim != 2 or arr.shape[0] != channels:
        raise DecodeError(f"unexpected resampler output shape {arr.shape} for {channels} channels")
    return np.ascontiguousarray(arr.T)


def _channel_count(stream) -> int:
    cc = stream.codec_context
    n = getattr(cc, "channels", None)
    if not n:
        layout = getattr(cc, "layout", None)
        n = len(layout.channels) if layout is not None else 0
    return int(n or 0)


def decode_file(path: str | Path) -> DecodedAudio:
    """Decode a whole audio file into float32 frames at its native rate."""
    p = Path(path)
    if not p.is_file():
        raise AudioFileNotFoundError(f"audio file not found: {p}")
    if not is_supported_audio_path(p):
        raise UnsupportedFormatError(f"unsupported file format: {p.suffix or p.name}")
    _sniff(p)

    try:
        container = av.open(str(p))
    except Exception as e:
        raise DecodeError(f"failed to open {p.name}: {type(e).__name__}: {e}") from e

    try:
        stream = next((s for s in container.streams if s.type == "audio"), None)
        if stream is None:
            raise DecodeError(f"no audio stream in {p.name}")

        sample_rate = int(stream.rate or stream.codec_context.sample_rate or 0)
        source_channels = _channel_count(stream)
        channels = 1 if source_channels == 1 else 2
        layout = "mono" if channels == 1 else "stereo"
        resampler = av.AudioResampler(format="fltp", layout=layout, rate=sample_rate or None)

        chunks: list[np.ndarray] = []
        for packet in container.demux(stream):
            for frame in packet.decode():
                for out in resampler.resample(frame):
                    pcm = planar_to_frames(out.to_ndarray(), channels)
                    if pcm.size:
                        chunks.append(pcm)
        # Flush resampler tail.
        for out in resampler.resample(None):
            pcm = planar_to_frames(out.to_ndarray(), channels)
            if pcm.size:
                chunks.append(pcm)

        metadata = _extract_metadata(container)
        metadata.setdefault("codec", stream.codec_context.name)
    except DecodeError:
        raise
    except Exception as e:
        raise DecodeError(f"failed to decode {p.name}: {type(e).__name__}: {e}") from e
    finally:
        container.close()

    if not chunks or sample_rate <= 0:
        raise DecodeError(f"no audio samples decoded from {p.name}")

    frames = np.concatenate(chunks, axis=0).astype(np.float32, copy=False)
    return DecodedAudio(frames=frames, sample_rate=sample_rate, channels=channels, metadata=metadata)
