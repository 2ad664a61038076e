import numpy as np
import pytest

from clearview.Handlers.Video_Input_Handler import VideoInputHandler, is_stream_url
from clearview.main import apply_args, main, parse_args, validate_paths
from clearview.utils.config import ENV_OVERRIDES, Config
from clearview.utils.failures import ModelLoadError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


def test_arguments_override_config(tmp_path) -> None:
    config = Config(tmp_path)
    args = parse_args([
        "-v", "clip.mp4", "-m", "models", "-c", "0.6",
        "--overflow-policy", "block", "--queue-size", "8", "--no-display",
    ])

    apply_args(config, args)

    assert config.get('capture.source') == "clip.mp4"
    assert config.get('detect.model_dir') == "models"
    assert config.get('detect.confidence') == "0.6"
    assert config.get('pipeline.overflow_policy') == "block"
    assert config.get_int('pipeline.queue_size') == 8
    assert config.get_bool('display.enabled', True) is False


def test_unset_arguments_keep_config_values(tmp_path) -> None:
    config = Config(tmp_path)
    config.set('capture.source', "from_file.mp4")

    apply_args(config, parse_args([]))

    assert config.get('capture.source') == "from_file.mp4"
    assert config.get('display.enabled') is None


def test_validate_paths_reports_missing_inputs(tmp_path) -> None:
    config = Config(tmp_path)
    assert validate_paths(config) == ["no video source given", "no model directory given"]

    config.set('capture.source', str(tmp_path / "missing.mp4"))
    config.set('detect.model_dir', str(tmp_path / "missing"))
    errors = validate_paths(config)
    assert len(errors) == 2
    assert "does not exist" in errors[0]


def test_validate_paths_accepts_urls_and_existing_dirs(tmp_path) -> None:
    config = Config(tmp_path)
    config.set('capture.source', "rtsp://camera.local/stream")
    config.set('detect.model_dir', str(tmp_path))

    assert validate_paths(config) == []


@pytest.mark.parametrize("path, expected", [
    ("http://example.com/a.mp4", True),
    ("RTSP://10.0.0.2:554/live", True),
    ("videos/a.mp4", False),
    ("file:///tmp/a.mp4", False),
])
def test_stream_url_detection(path, expected) -> None:
    assert is_stream_url(path) is expected


def test_main_fails_with_usage_on_missing_paths(tmp_path, capsys) -> None:
    code = main(["--config-dir", str(tmp_path), "--no-display",
                 "--video", str(tmp_path / "nope.mp4")])

    assert code == 1
    assert "Usage" in capsys.readouterr().err


def test_main_fails_fast_on_missing_class_file(tmp_path) -> None:
    pytest.importorskip("torch")
    video = tmp_path / "clip.mp4"
    video.write_bytes(b"")
    models = tmp_path / "models"
    models.mkdir()

    code = main(["--config-dir", str(tmp_path), "--no-display",
                 "--video", str(video), "--model-dir", str(models)])

    assert code == 1


def test_model_loader_prefers_darknet_files(tmp_path) -> None:
    pytest.importorskip("torch")
    from clearview.Handlers.Model_Detection_Handler import DarknetDetector, UltralyticsDetector
    from clearview.Handlers.Model_Loader_Handler import ModelLoader

    (tmp_path / "best.pt").write_bytes(b"")
    assert isinstance(ModelLoader().resolve(tmp_path), UltralyticsDetector)

    (tmp_path / "yolov3.cfg").write_text("")
    (tmp_path / "yolov3.weights").write_bytes(b"")
    detector = ModelLoader(320).resolve(tmp_path)
    assert isinstance(detector, DarknetDetector)
    assert detector.input_size == 320
    assert detector.net is None


def test_model_loader_rejects_empty_dir(tmp_path) -> None:
    pytest.importorskip("torch")
    from clearview.Handlers.Model_Loader_Handler import ModelLoader

    with pytest.raises(ModelLoadError):
        ModelLoader().resolve(tmp_path)


def test_video_input_reads_and_rewinds(tmp_path) -> None:
    cv2 = pytest.importorskip("cv2")
    path = tmp_path / "clip.avi"
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), 10.0, (32, 24))
    if not writer.isOpened():
        pytest.skip("no MJPG encoder available")
    for i in range(3):
        writer.write(np.full((24, 32, 3), 60 * i, dtype=np.uint8))
    writer.release()

    source = VideoInputHandler(str(path))
    assert source.start()
    try:
        assert source.fps == pytest.approx(10.0)
        frames = [source.read_frame() for _ in range(3)]
        assert all(f is not None and f.shape == (24, 32, 3) for f in frames)
        assert source.read_frame() is None
        assert source.rewind()
        assert source.read_frame() is not None
    finally:
        source.stop()
    assert source.read_frame() is None


def test_video_input_refuses_missing_file(tmp_path) -> None:
    source = VideoInputHandler(str(tmp_path / "missing.mp4"))

    assert source.start() is False
    assert source.read_frame() is None
    assert source.rewind() is False
