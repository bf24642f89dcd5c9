from __future__ import annotations


class KaraokeError(Exception):
    """Base for every recoverable player/lyrics failure."""


class AudioFileNotFoundError(KaraokeError, FileNotFoundError):
    pass


class UnsupportedFormatError(KaraokeError):
    pass


class DecodeError(KaraokeError):
    pass


class DeviceUnavailableError(KaraokeError):
    pass


class NoTrackLoadedError(KaraokeError):
    pass


class InvalidFormatError(KaraokeError, ValueError):
    """Zero sample rate or zero channels handed to the buffer builder."""


class UnorderedTimelineError(KaraokeError, ValueError):
    def __init__(self, index: int, timestamp: float, previous: float) -> None:
        super().__init__(
            f"lyric timestamps go backwards at line {index}: {timestamp:.2f}s < {previous:.2f}s"
        )
        self.index = index
        self.timestamp = timestamp
        self.previous = previous
