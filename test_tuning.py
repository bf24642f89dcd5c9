import json

import pytest

from engine.tuning import DEFAULT_TICK_INTERVAL_MS, KaraokeTuning, load_tuning

ENV_KEYS = (
    "KARAOKE_TICK_INTERVAL_MS",
    "KARAOKE_DEFAULT_VOLUME",
    "KARAOKE_SEEK_STEP_S",
    "KARAOKE_OUTPUT_DEVICE",
    "KARAOKE_BLOCK_FRAMES",
)


@pytest.fixture
def tuning_file(tmp_path, monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    path = tmp_path / "karaoke_tuning.json"
    monkeypatch.setenv("KARAOKE_TUNING_PATH", str(path))
    return path


def test_defaults_when_file_missing(tuning_file) -> None:
    t = load_tuning()
    assert t == KaraokeTuning()
    assert t.tick_interval_ms == DEFAULT_TICK_INTERVAL_MS
    assert t.tick_interval_s == pytest.approx(0.1)


def test_corrupt_file_yields_defaults(tuning_file) -> None:
    tuning_file.write_text("{not json", encoding="utf-8")
    assert load_tuning() == KaraokeTuning()


def test_file_sections(tuning_file) -> None:
    tuning_file.write_text(
        json.dumps({"player": {"tick_interval_ms": 50, "default_volume": 0.6, "seek_step_s": 5}, "output": {"device": "3", "block_frames": 512}}),
        encoding="utf-8",
    )
    t = load_tuning()
    assert t.tick_interval_ms == 50
    assert t.default_volume == pytest.approx(0.6)
    assert t.seek_step_s == 5
    assert t.output_device == 3
    assert t.block_frames == 512


def test_env_overrides_file(tuning_file, monkeypatch) -> None:
    tuning_file.write_text(json.dumps({"player": {"tick_interval_ms": 50}, "output": {"device": "Speakers"}}), encoding="utf-8")
    monkeypatch.setenv("KARAOKE_TICK_INTERVAL_MS", "20")
    monkeypatch.setenv("KARAOKE_DEFAULT_VOLUME", "7")

    t = load_tuning()
    assert t.tick_interval_ms == 20
    assert t.default_volume == 1.0
    assert t.output_device == "Speakers"


def test_bad_values_fall_back(tuning_file, monkeypatch) -> None:
    monkeypatch.setenv("KARAOKE_SEEK_STEP_S", "soon")
    monkeypatch.setenv("KARAOKE_BLOCK_FRAMES", "1")
    t = load_tuning()
    assert t.seek_step_s == 10
    assert t.block_frames == 64


def test_non_finite_values_fall_back(tuning_file, monkeypatch) -> None:
    monkeypatch.setenv("KARAOKE_TICK_INTERVAL_MS", "inf")
    monkeypatch.setenv("KARAOKE_SEEK_STEP_S", "-inf")
    monkeypatch.setenv("KARAOKE_DEFAULT_VOLUME", "nan")
    t = load_tuning()
    assert t.tick_interval_ms == DEFAULT_TICK_INTERVAL_MS
    assert t.seek_step_s == 10
    assert t.default_volume == 1.0
