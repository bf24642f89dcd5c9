from __future__ import annotations

import argparse
import dataclasses
import queue
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence, TextIO

from engine.errors import KaraokeError
from engine.messages.events import LyricsWarningEvent, TrackFinishedEvent
from engine.pcm import clamp_volume
from engine.player import PlaybackController, PlaybackSnapshot
from engine.state import PlaybackState
from engine.tuning import load_tuning
from karaoke.lrc import find_lyrics_for, format_duration
from karaoke.timeline import LyricTimeline
from log.log_manager import LogManager

VOLUME_STEP = 0.1

HELP = "commands: p=pause/resume s=stop f=forward b=back +=louder -=quieter n=next q=quit"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="karaoke-player", description="Terminal karaoke player")
    parser.add_argument("files", nargs="+", help="Audio files (.mp3, .wav); a sibling .lrc supplies the lyrics")
    parser.add_argument("--lyrics", help="Lyrics file for the first track (overrides the sibling .lrc)")
    parser.add_argument("--volume", type=float, help="Initial volume 0.0-1.0")
    parser.add_argument("--device", help="Output device index or name")
    return parser


def start_command_reader(stream: TextIO) -> "queue.Queue[str]":
    """Feed stripped stdin lines into a queue from a daemon thread; EOF queues 'q'."""
    commands: "queue.Queue[str]" = queue.Queue()

    def reader() -> None:
        for line in stream:
            cmd = line.strip()
            if cmd:
                commands.put(cmd)
        commands.put("q")

    threading.Thread(target=reader, name="KaraokeStdin", daemon=True).start()
    return commands


def render_status(snap: PlaybackSnapshot, text: Optional[str]) -> str:
    s = snap.session
    lyric = text if text else "..."
    return (
        f"[{format_duration(snap.position)}/{format_duration(snap.duration)}] {lyric}"
        f"  | score {s.score} streak {s.streak} accuracy {s.accuracy:.0f}%"
    )


def render_lyrics(timeline: LyricTimeline, index: int) -> list[str]:
    """Five-line lyric window around the active line, which is marked with ">"."""
    rows: list[str] = []
    for line in timeline.window(index):
        if line is None:
            rows.append("")
            continue
        marker = ">" if line.index == index else " "
        rows.append(f"{marker} {'(music)' if line.is_rest else line.text}")
    return rows


def _lyric_text(controller: PlaybackController, index: Optional[int]) -> Optional[str]:
    if index is None or index < 0 or index >= len(controller.timeline):
        return None
    return controller.timeline[index].text


def handle_command(controller: PlaybackController, cmd: str) -> Optional[str]:
    """Apply one stdin command. Returns "next" or "quit" when the track loop should end."""
    key = cmd[:1].lower()
    if key == "q":
        return "quit"
    if key == "n":
        return "next"
    if key == "p":
        state = controller.state
        if state is PlaybackState.PLAYING:
            controller.pause()
        elif state is PlaybackState.PAUSED:
            controller.resume()
        else:
            controller.play()
    elif key == "s":
        controller.stop()
    elif key == "f":
        controller.seek_by(controller.tuning.seek_step_s)
    elif key == "b":
        controller.seek_by(-controller.tuning.seek_step_s)
    elif key == "+":
        controller.set_volume(controller.volume + VOLUME_STEP)
    elif key == "-":
        controller.set_volume(controller.volume - VOLUME_STEP)
    return None


def play_file(
    controller: PlaybackController,
    path: str,
    commands: "queue.Queue[str]",
    out: TextIO,
    *,
    lyrics: Optional[str] = None,
) -> str:
    """Play one track to completion. Returns "finished", "next", "quit" or "failed"."""
    try:
        track = controller.load_file(path)
    except KaraokeError as e:
        print(f"cannot load {path}: {e}", file=out)
        return "failed"

    lyrics_path = Path(lyrics) if lyrics else find_lyrics_for(path)
    if lyrics_path is not None:
        controller.load_lyrics(lyrics_path)

    title = track.title or Path(path).stem
    by = f" - {track.artist}" if track.artist else ""
    print(f"== {title}{by} ({format_duration(track.duration_s)}, {len(controller.timeline)} lyric lines)", file=out)

    try:
        controller.play()
    except KaraokeError as e:
        print(f"cannot play {path}: {e}", file=out)
        return "failed"

    last_index: Optional[int] = None
    while True:
        for evt in controller.pump():
            if isinstance(evt, LyricsWarningEvent):
                print(f"lyrics disabled: {evt.message}", file=out)
            elif isinstance(evt, TrackFinishedEvent):
                s = evt.session
                print(f"== finished: score {s.score}, best streak {s.streak}, accuracy {s.accuracy:.0f}% - {s.rating()}", file=out)
                return "finished"

        snap = controller.snapshot()
        if snap.active_index != last_index:
            last_index = snap.active_index
            print(render_status(snap, _lyric_text(controller, last_index)), file=out)
            if controller.timeline:
                for row in render_lyrics(controller.timeline, last_index):
                    print(row, file=out)

        try:
            cmd = commands.get(timeout=controller.tuning.tick_interval_s)
        except queue.Empty:
            continue
        try:
            action = handle_command(controller, cmd)
        except KaraokeError as e:
            print(f"error: {e}", file=out)
            continue
        if action is not None:
            controller.stop()
            return action
        snap = controller.snapshot()
        print(render_status(snap, _lyric_text(controller, snap.active_index)), file=out)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    tuning = load_tuning()
    if args.volume is not None:
        tuning = dataclasses.replace(tuning, default_volume=clamp_volume(args.volume))
    if args.device:
        device = args.device.strip()
        tuning = dataclasses.replace(tuning, output_device=int(device) if device.isdigit() else device)

    log = LogManager("player")
    controller = PlaybackController(tuning=tuning, log=log)
    commands = start_command_reader(sys.stdin)
    print(HELP)

    played = 0
    try:
        for i, path in enumerate(args.files):
            outcome = play_file(controller, path, commands, sys.stdout, lyrics=args.lyrics if i == 0 else None)
            if outcome != "failed":
                played += 1
            if outcome == "quit":
                break
    except KeyboardInterrupt:
        pass
    finally:
        controller.close()

    return 0 if played else 1


if __name__ == "__main__":
    raise SystemExit(main())
