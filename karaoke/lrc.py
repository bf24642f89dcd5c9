"""
LRC lyric files.

A lyric line is one or more `[mm:ss.xx]` time tags (centiseconds optional)
followed by the text. Header tags such as `[ti:Title]` and `[offset:+250]`
are collected separately. Anything else is ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from karaoke.timeline import LyricTimeline, load_checked
from engine.errors import UnorderedTimelineError

_TIME_TAG = re.compile(r"\[(\d{1,3}):(\d{2})(?:\.(\d{1,3}))?\]")
_LEADING_TIME_TAGS = re.compile(r"^(?:\[\d{1,3}:\d{2}(?:\.\d{1,3})?\])+")
_HEADER_TAG = re.compile(r"^\[([A-Za-z]+):([^\]]*)\]\s*$")

LYRICS_EXTENSIONS = (".lrc", ".txt")


@dataclass(frozen=True, slots=True)
class LrcDocument:
    entries: tuple[tuple[float, str], ...]
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def offset_ms(self) -> int:
        raw = self.tags.get("offset", "").strip()
        try:
            return int(raw)
        except ValueError:
            return 0

    def timeline(self) -> tuple[LyricTimeline, Optional[UnorderedTimelineError]]:
        return load_checked(self.entries)


def _tag_seconds(minutes: str, seconds: str, fraction: Optional[str]) -> float:
    total = int(minutes) * 60 + int(seconds)
    if fraction:
        # ".5" -> 500ms, ".45" -> 450ms, ".123" -> 123ms
        total += int(fraction.ljust(3, "0")[:3]) / 1000.0
    return float(total)


def parse_lrc(text: str) -> LrcDocument:
    entries: list[tuple[float, str]] = []
    tags: dict[str, str] = {}
    compressed = False

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        head = _LEADING_TIME_TAGS.match(line)
        if head is None:
            header = _HEADER_TAG.match(line)
            if header is not None:
                tags[header.group(1).lower()] = header.group(2).strip()
            continue

        stamps = [_tag_seconds(m, s, f) for m, s, f in _TIME_TAG.findall(head.group(0))]
        lyric = line[head.end():].strip()
        if len(stamps) > 1:
            compressed = True
        for t in stamps:
            entries.append((t, lyric))

    doc_offset = LrcDocument(entries=(), tags=tags).offset_ms
    if doc_offset:
        shift = doc_offset / 1000.0
        entries = [(max(0.0, t - shift), lyric) for t, lyric in entries]

    # Repeated-tag lines list a chorus once for several times; spread them out.
    if compressed:
        entries.sort(key=lambda e: e[0])

    return LrcDocument(entries=tuple(entries), tags=tags)


def load_lrc(path: str | Path) -> LrcDocument:
    p = Path(path)
    return parse_lrc(p.read_text(encoding="utf-8", errors="replace"))


def find_lyrics_for(audio_path: str | Path) -> Optional[Path]:
    """Sibling lyrics file with the same stem as the audio file."""
    p = Path(audio_path)
    for ext in LYRICS_EXTENSIONS:
        candidate = p.with_suffix(ext)
        if candidate.is_file():
            return candidate
    return None


def format_timestamp(seconds: float) -> str:
    seconds = max(0.0, float(seconds))
    cs_total = int(round(seconds * 100))
    minutes, cs_rem = divmod(cs_total, 6000)
    secs, cs = divmod(cs_rem, 100)
    return f"[{minutes:02d}:{secs:02d}.{cs:02d}]"


def parse_timestamp(value: str) -> float:
    """Parse `mm:ss.xx` (brackets optional) into seconds."""
    raw = value.strip()
    if raw.startswith("[") and raw.endswith("]"):
        raw = raw[1:-1]
    m = re.fullmatch(r"(\d{1,3}):(\d{2})\.(\d{2})", raw)
    if m is None:
        raise ValueError(f"invalid time format: {value!r}")
    return _tag_seconds(m.group(1), m.group(2), m.group(3))


def format_duration(seconds: float) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"
