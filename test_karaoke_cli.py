import io
import queue
import threading
import time

from app.karaoke_player import build_parser, handle_command, play_file, render_lyrics
from engine.state import PlaybackState
from karaoke.timeline import LyricTimeline


def test_parser_accepts_files_and_options() -> None:
    args = build_parser().parse_args(["a.mp3", "b.wav", "--volume", "0.4", "--device", "2"])
    assert args.files == ["a.mp3", "b.wav"]
    assert args.volume == 0.4
    assert args.device == "2"


def test_commands_drive_controller(controller) -> None:
    controller.load_file("song.wav")

    assert handle_command(controller, "p") is None
    assert controller.state is PlaybackState.PLAYING
    handle_command(controller, "p")
    assert controller.state is PlaybackState.PAUSED
    handle_command(controller, "f")
    assert controller.position == 2.0
    handle_command(controller, "b")
    assert controller.position == 0.0
    handle_command(controller, "-")
    assert controller.volume == 0.9
    handle_command(controller, "+")
    assert controller.volume == 1.0
    handle_command(controller, "s")
    assert controller.state is PlaybackState.STOPPED
    assert handle_command(controller, "n") == "next"
    assert handle_command(controller, "quit") == "quit"


def test_play_file_quits_on_command(controller) -> None:
    commands: "queue.Queue[str]" = queue.Queue()
    commands.put("q")
    out = io.StringIO()

    assert play_file(controller, "song.wav", commands, out) == "quit"
    assert controller.state is PlaybackState.STOPPED
    assert "== Song" in out.getvalue()


def test_play_file_runs_to_completion(controller, clock) -> None:
    commands: "queue.Queue[str]" = queue.Queue()
    out = io.StringIO()

    def finish_when_playing() -> None:
        deadline = time.monotonic() + 2.0
        while controller.state is not PlaybackState.PLAYING and time.monotonic() < deadline:
            time.sleep(0.002)
        clock.advance(5.0)

    threading.Thread(target=finish_when_playing, daemon=True).start()
    assert play_file(controller, "song.wav", commands, out) == "finished"
    assert "finished: score" in out.getvalue()


def test_play_file_reports_load_failure(controller) -> None:
    out = io.StringIO()
    assert play_file(controller, "missing.wav", queue.Queue(), out) == "failed"
    assert "cannot load missing.wav" in out.getvalue()


def test_render_lyrics_marks_active_line() -> None:
    tl = LyricTimeline.load([(0.0, "A"), (3.0, "B"), (6.0, "")])

    assert render_lyrics(tl, 2) == ["  A", "  B", "> (music)", "", ""]
    # Before the first line nothing is marked; upcoming lines still show.
    assert render_lyrics(tl, -1) == ["", "", "", "  A", "  B"]


def test_play_file_prints_lyric_window(controller, tmp_path) -> None:
    lrc = tmp_path / "song.lrc"
    lrc.write_text("[00:00.00]Hello\n[00:01.00]\n", encoding="utf-8")
    commands: "queue.Queue[str]" = queue.Queue()
    commands.put("q")
    out = io.StringIO()

    assert play_file(controller, "song.wav", commands, out, lyrics=str(lrc)) == "quit"
    lines = out.getvalue().splitlines()
    assert "> Hello" in lines
    assert "  (music)" in lines
