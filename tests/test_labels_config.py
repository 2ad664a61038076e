import json
import math

import pytest

from clearview.utils.config import ENV_OVERRIDES, Config, resolve_confidence_threshold
from clearview.utils.constants import PLACEHOLDER_COLOR
from clearview.utils.failures import ConfigError, FailureManager, SourceUnavailableError
from clearview.utils.labels import load_class_names, load_colors, parse_rgb


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


def test_class_names_keep_every_line(tmp_path) -> None:
    path = tmp_path / "coco.names"
    path.write_text("person\nbicycle\n\ncar\n")

    assert load_class_names(path) == ["person", "bicycle", "", "car"]


def test_missing_class_file_fails_fast(tmp_path) -> None:
    with pytest.raises(ConfigError) as info:
        load_class_names(tmp_path / "absent.names")
    assert info.value.critical


def test_empty_class_file_is_rejected(tmp_path) -> None:
    path = tmp_path / "coco.names"
    path.write_text("")

    with pytest.raises(ConfigError):
        load_class_names(path)


def test_unusable_color_lines_keep_their_class_slot(tmp_path) -> None:
    path = tmp_path / "colors.txt"
    path.write_text("255,0,0\n\n1,2\n0, 255 ,0\n300,0,0\nred,green,blue\n0,0,255\n")

    colors = load_colors(path)

    assert len(colors) == 7
    assert colors[0] == (255, 0, 0)
    assert colors[3] == (0, 255, 0)
    assert colors[6] == (0, 0, 255)
    assert [colors[i] for i in (1, 2, 4, 5)] == [PLACEHOLDER_COLOR] * 4


def test_colors_without_valid_lines_are_rejected(tmp_path) -> None:
    path = tmp_path / "colors.txt"
    path.write_text("nope\n1,2,3,4\n")

    with pytest.raises(ConfigError):
        load_colors(path)


@pytest.mark.parametrize("line", ["1,2", "-1,0,0", "0,0,256", "a,b,c"])
def test_parse_rgb_rejects_bad_triples(line) -> None:
    with pytest.raises(ValueError):
        parse_rgb(line)


def test_packaged_defaults_are_loaded() -> None:
    config = Config()

    assert config.get_int('dehaze.window_size') == 15
    assert config.get_float('dehaze.omega') == pytest.approx(0.95)
    assert config.get_float('detect.confidence') == pytest.approx(0.3)
    assert config.get('pipeline.overflow_policy') == "drop_oldest"
    assert config.get_bool('capture.loop') is True


def test_later_files_merge_into_earlier_sections(tmp_path) -> None:
    (tmp_path / "a.json").write_text(json.dumps({"detect": {"confidence": 0.3, "input_size": 416}}))
    (tmp_path / "b.json").write_text(json.dumps({"detect": {"confidence": 0.5}}))
    (tmp_path / "c.json").write_text("{not json")

    config = Config(tmp_path)

    assert config.get('detect') == {"confidence": 0.5, "input_size": 416}


def test_missing_config_dir_gives_empty_config(tmp_path) -> None:
    config = Config(tmp_path / "nowhere")

    assert config.config == {}
    assert config.get('detect.confidence', 0.3) == 0.3


def test_environment_overrides_files(tmp_path, monkeypatch) -> None:
    (tmp_path / "p.json").write_text(json.dumps({"capture": {"source": "a.mp4"}}))
    monkeypatch.setenv("CLEARVIEW_VIDEO", "b.mp4")
    monkeypatch.setenv("CLEARVIEW_CONFIDENCE", "0.7")

    config = Config(tmp_path)

    assert config.get('capture.source') == "b.mp4"
    assert config.get_float('detect.confidence') == pytest.approx(0.7)


def test_typed_getters_fall_back_on_bad_values(tmp_path) -> None:
    config = Config(tmp_path)
    config.set('pipeline.queue_size', "many")
    config.set('display.enabled', "off")

    assert config.get_int('pipeline.queue_size', 4) == 4
    assert config.get_bool('display.enabled', True) is False
    assert config.get('pipeline.missing.deeper', "x") == "x"


def test_save_round_trips(tmp_path) -> None:
    config = Config(tmp_path)
    config.set('capture.source', "clip.mp4")
    target = tmp_path / "out" / "saved.json"
    target.parent.mkdir()

    config.save_to_file(str(target))

    assert json.loads(target.read_text()) == {"capture": {"source": "clip.mp4"}}


@pytest.mark.parametrize("value, expected", [
    ("0.5", 0.5),
    (0, 0.0),
    (1, 1.0),
    ("abc", 0.3),
    (None, 0.3),
    (1.5, 0.3),
    (-0.1, 0.3),
    (float("nan"), 0.3),
])
def test_confidence_threshold_resolution(value, expected) -> None:
    assert math.isclose(resolve_confidence_threshold(value), expected)


def test_failure_manager_counts_by_type_and_alerts() -> None:
    failures = FailureManager({'threshold': 2, 'window_seconds': 60})

    failures.record_failure(SourceUnavailableError("gone", critical=True))
    failures.record_failure(ValueError("bad"))
    assert not failures.is_threshold_exceeded("ValueError")
    failures.record_failure(ValueError("worse"))

    assert failures.is_threshold_exceeded("ValueError")
    assert failures.count("SourceUnavailableError") == 1
    assert failures.count("ValueError") == 2
    assert [str(e) for e in failures.get_recent_history(2)] == ["bad", "worse"]
    failures.clear()
    assert failures.count("ValueError") == 0
