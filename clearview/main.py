"""
Clearview — Entry Point

Staged pipeline around a single event bus:
    CaptureStage → CAPTURED → DehazeStage → DEHAZED → DetectStage → ANNOTATED → viewer
                                            ↕ EventBus (one dispatch thread)
"""
import argparse
import signal
import sys
from pathlib import Path
from threading import Event as ThreadEvent
from typing import Callable, List, Optional, Sequence, Tuple

from clearview.core.bus import EventBus
from clearview.core.channel import OverflowPolicy
from clearview.core.events import Event, EventType
from clearview.core.protocols import Detector, FrameSource
from clearview.core.stages import CaptureStage, DehazeStage, DetectStage
from clearview.Handlers.Dehaze_Handler import DehazeHandler
from clearview.Handlers.Video_Input_Handler import VideoInputHandler, is_stream_url
from clearview.utils.config import Config, resolve_confidence_threshold
from clearview.utils.constants import (
    DEFAULT_CFG_FILE, DEFAULT_CLASSES_FILE, DEFAULT_COLORS_FILE, DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_DARK_WINDOW, DEFAULT_FALLBACK_FPS, DEFAULT_GUIDED_EPS,
    DEFAULT_GUIDED_RADIUS, DEFAULT_INPUT_SIZE, DEFAULT_NMS_IOU, DEFAULT_OMEGA,
    DEFAULT_OVERFLOW_POLICY, DEFAULT_QUEUE_SIZE, DEFAULT_T0, DEFAULT_WEIGHTS_FILE,
    DEFAULT_WINDOW_HEIGHT, DEFAULT_WINDOW_WIDTH,
)
from clearview.utils.failures import ClearviewError, FailureManager
from clearview.utils.labels import load_class_names, load_colors
from clearview.utils.logger import Logger

EventHandler = Callable[[Event], None]


class ClearviewPipeline:
    """
    Pipeline orchestrator.

    Wires the stages to the bus, freezes the handler table, and owns the
    start/stop ordering: consumers start before the producer, the producer
    stops before the consumers, the bus goes last.
    """

    def __init__(
        self,
        config: Config,
        source: FrameSource,
        detector: Detector,
        class_names: Sequence[str],
        colors: Sequence[Tuple[int, int, int]],
        render_handler: Optional[EventHandler] = None,
    ):
        self.config = config
        self.logger = Logger("ClearviewPipeline")
        self.stop_event = ThreadEvent()
        self.failures = FailureManager(config.get('failures', {}))

        queue_size = config.get_int('pipeline.queue_size', DEFAULT_QUEUE_SIZE)
        policy = OverflowPolicy.parse(config.get('pipeline.overflow_policy', DEFAULT_OVERFLOW_POLICY))

        # Under BLOCK the bus queue is bounded too, so a full stage holds back capture
        bus_bound = queue_size if policy is OverflowPolicy.BLOCK else None
        self.bus = EventBus(self.failures, max_pending=bus_bound)

        nms_iou = config.get('detect.nms_iou', DEFAULT_NMS_IOU)

        self.capture_stage = CaptureStage(
            source=source,
            bus=self.bus,
            fallback_fps=config.get_float('capture.fallback_fps', DEFAULT_FALLBACK_FPS),
            loop=config.get_bool('capture.loop', True),
            failures=self.failures,
        )
        self.dehaze_stage = DehazeStage(
            bus=self.bus,
            dehazer=DehazeHandler(
                window_size=config.get_int('dehaze.window_size', DEFAULT_DARK_WINDOW),
                omega=config.get_float('dehaze.omega', DEFAULT_OMEGA),
                t0=config.get_float('dehaze.t0', DEFAULT_T0),
                guided_radius=config.get_int('dehaze.guided_radius', DEFAULT_GUIDED_RADIUS),
                guided_eps=config.get_float('dehaze.guided_eps', DEFAULT_GUIDED_EPS),
            ),
            queue_size=queue_size,
            overflow_policy=policy,
            failures=self.failures,
        )
        self.detect_stage = DetectStage(
            bus=self.bus,
            detector=detector,
            class_names=class_names,
            colors=colors,
            confidence=resolve_confidence_threshold(
                config.get('detect.confidence', DEFAULT_CONFIDENCE_THRESHOLD)
            ),
            fold_objectness=config.get_bool('detect.fold_objectness', False),
            nms_iou=None if nms_iou is None else float(nms_iou),
            queue_size=queue_size,
            overflow_policy=policy,
            failures=self.failures,
        )

        # Registration happens here, before the loop starts and freezes the table
        self.bus.register_handler(EventType.CAPTURED, self.dehaze_stage.handle_event)
        self.bus.register_handler(EventType.DEHAZED, self.detect_stage.handle_event)
        self.bus.register_handler(EventType.SOURCE_UNAVAILABLE, self._on_source_unavailable)
        self.bus.register_handler(EventType.STAGE_FAILED, self._on_stage_failed)
        if render_handler is not None:
            self.bus.register_handler(EventType.ANNOTATED, render_handler)

        self.logger.info(f"Pipeline assembled (queue_size={queue_size}, overflow={policy.value})")

    @property
    def stages(self):
        return [self.capture_stage, self.dehaze_stage, self.detect_stage]

    def _on_source_unavailable(self, event: Event) -> None:
        self.logger.critical(f"Video source unavailable: {event.reason}; shutting down")
        self.stop_event.set()

    def _on_stage_failed(self, event: Event) -> None:
        self.logger.critical(f"{event.reason}; shutting down")
        self.stop_event.set()

    def start(self) -> None:
        self.logger.info("Starting pipeline...")
        self.bus.start_event_loop()
        self.detect_stage.start()
        self.dehaze_stage.start()
        self.capture_stage.start()
        self.logger.info("Pipeline stages running")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until a shutdown is requested."""
        return self.stop_event.wait(timeout)

    def stop(self) -> None:
        """Stop producer first, then consumers, then the bus."""
        self.stop_event.set()
        self.logger.info("Stopping pipeline...")
        for stage in self.stages:
            stage.stop()
        self.bus.shutdown_event_loop()
        self.logger.info("Pipeline stopped")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="clearview",
        description="Clearview - real-time dehazing and object detection",
    )
    parser.add_argument('--video', '-v', type=str, default=None,
                        help='Path or URL of the video source')
    parser.add_argument('--model-dir', '-m', type=str, default=None,
                        help='Directory with the detector model and class/color files')
    parser.add_argument('--confidence', '-c', type=str, default=None,
                        help=f'Detection confidence threshold (default {DEFAULT_CONFIDENCE_THRESHOLD})')
    parser.add_argument('--config-dir', type=str, default=None,
                        help='Directory of JSON config files')
    parser.add_argument('--overflow-policy', choices=[p.value for p in OverflowPolicy], default=None,
                        help='What a full stage queue does with new frames')
    parser.add_argument('--queue-size', type=int, default=None,
                        help='Capacity of each stage queue')
    parser.add_argument('--no-display', action='store_true',
                        help='Run headless without the viewer window')
    return parser.parse_args(argv)


def apply_args(config: Config, args: argparse.Namespace) -> None:
    """Command-line values override config files and environment."""
    overrides = {
        'capture.source': args.video,
        'detect.model_dir': args.model_dir,
        'detect.confidence': args.confidence,
        'pipeline.overflow_policy': args.overflow_policy,
        'pipeline.queue_size': args.queue_size,
    }
    for key, value in overrides.items():
        if value is not None:
            config.set(key, value)
    if args.no_display:
        config.set('display.enabled', False)


def validate_paths(config: Config) -> List[str]:
    """Return a list of problems with the source and model paths."""
    errors = []
    source = config.get('capture.source')
    if not source:
        errors.append("no video source given")
    elif not is_stream_url(str(source)) and not Path(source).exists():
        errors.append(f"video path ({source}) does not exist")

    model_dir = config.get('detect.model_dir')
    if not model_dir:
        errors.append("no model directory given")
    elif not Path(model_dir).is_dir():
        errors.append(f"model directory ({model_dir}) does not exist")
    return errors


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config = Config(args.config_dir)
    apply_args(config, args)
    Logger.setup(config.get('logging', {}))
    logger = Logger("Clearview")

    errors = validate_paths(config)
    if errors:
        for error in errors:
            logger.error(f"Error: {error}")
        print("Usage: clearview --video <path|url> --model-dir <dir> [--confidence <value>]",
              file=sys.stderr)
        return 1

    from clearview.Handlers.Model_Loader_Handler import ModelLoader

    model_dir = Path(config.get('detect.model_dir'))
    try:
        class_names = load_class_names(model_dir / config.get('detect.classes_file', DEFAULT_CLASSES_FILE))
        colors = load_colors(model_dir / config.get('detect.colors_file', DEFAULT_COLORS_FILE))
        detector = ModelLoader(config.get_int('detect.input_size', DEFAULT_INPUT_SIZE)).resolve(
            model_dir,
            cfg_file=config.get('detect.cfg_file', DEFAULT_CFG_FILE),
            weights_file=config.get('detect.weights_file', DEFAULT_WEIGHTS_FILE),
        )
    except ClearviewError as e:
        logger.critical(e.message)
        return 1

    source = VideoInputHandler(config.get('capture.source'))
    display = config.get_bool('display.enabled', True)

    if not display:
        pipeline = ClearviewPipeline(config, source, detector, class_names, colors)
        signal.signal(signal.SIGINT, lambda sig, frame: pipeline.stop_event.set())
        signal.signal(signal.SIGTERM, lambda sig, frame: pipeline.stop_event.set())
        pipeline.start()
        try:
            pipeline.wait()
        finally:
            pipeline.stop()
        return 0

    from PyQt6.QtCore import QTimer
    from PyQt6.QtWidgets import QApplication
    from clearview.Handlers.Frame_Viewer_Handler import FrameViewerHandler

    app = QApplication(sys.argv)
    viewer = FrameViewerHandler(
        width=config.get_int('display.width', DEFAULT_WINDOW_WIDTH),
        height=config.get_int('display.height', DEFAULT_WINDOW_HEIGHT),
    )
    pipeline = ClearviewPipeline(config, source, detector, class_names, colors,
                                 render_handler=viewer.handle_event)
    viewer.on_close = pipeline.stop_event.set
    signal.signal(signal.SIGINT, lambda sig, frame: pipeline.stop_event.set())

    # Qt owns the main thread; watch for shutdown requests from other threads
    watchdog = QTimer()
    watchdog.timeout.connect(lambda: app.quit() if pipeline.stop_event.is_set() else None)
    watchdog.start(100)

    pipeline.start()
    viewer.show()
    try:
        return app.exec()
    finally:
        pipeline.stop()
        viewer.stop()


if __name__ == "__main__":
    sys.exit(main())
