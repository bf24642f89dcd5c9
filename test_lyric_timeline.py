import pytest

from engine.errors import UnorderedTimelineError
from karaoke.timeline import LyricTimeline, load_checked


def _abc() -> LyricTimeline:
    return LyricTimeline.load([(0.0, "A"), (3.0, "B"), (6.0, "")])


def test_active_index_scenario() -> None:
    tl = _abc()
    assert tl.active_index(4.0) == 1
    assert tl[tl.active_index(4.0)].text == "B"
    assert tl.active_index(0.5) == 0
    assert tl.active_index(-1.0) == 0
    assert tl.active_index(6.0) == 2
    assert tl[2].is_rest


def test_active_index_before_first_line() -> None:
    tl = LyricTimeline.load([(2.0, "late start")])
    assert tl.active_index(1.99) == -1
    assert tl.active_index(2.0) == 0


def test_active_index_is_monotonic() -> None:
    tl = LyricTimeline.load([(0.5, "a"), (0.5, "b"), (1.0, "c"), (2.25, "d"), (9.0, "e")])
    last = -1
    p = -1.0
    while p < 12.0:
        idx = tl.active_index(p)
        assert idx >= last
        last = idx
        p += 0.05


def test_empty_timeline() -> None:
    tl = LyricTimeline.empty()
    assert not tl
    assert len(tl) == 0
    assert tl.active_index(10.0) == -1


def test_validate_rejects_unordered() -> None:
    tl = LyricTimeline.load([(0.0, "a"), (5.0, "b"), (4.0, "c")])
    with pytest.raises(UnorderedTimelineError) as exc:
        tl.validate()
    assert exc.value.index == 2
    assert exc.value.timestamp == 4.0


def test_load_checked_degrades_to_empty() -> None:
    tl, err = load_checked([(3.0, "b"), (1.0, "a")])
    assert err is not None
    assert len(tl) == 0

    tl, err = load_checked([(1.0, "a"), (1.0, "a again"), (3.0, "b")])
    assert err is None
    assert [line.index for line in tl] == [0, 1, 2]


def test_window_pads_edges() -> None:
    tl = _abc()
    win = tl.window(0, before=2, after=2)
    assert len(win) == 5
    assert win[0] is None and win[1] is None
    assert win[2].text == "A"
    assert win[3].text == "B"
