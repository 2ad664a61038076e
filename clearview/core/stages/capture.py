"""
Capture Stage — pulls frames from a FrameSource and posts them to the bus.

Free-running: it is not fed by the bus, it paces itself on the source's
nominal frame rate. At end of stream it seeks back to the first frame and
keeps going, so a file source behaves like a continuous monitoring feed.
"""
import math
import threading
import time
from typing import Optional

from clearview.core.bus import EventBus
from clearview.core.events import Event, EventType, FramePair
from clearview.core.protocols import FrameSource
from clearview.core.stages.base import StageWorker
from clearview.utils.constants import DEFAULT_FALLBACK_FPS
from clearview.utils.failures import FailureManager, SourceUnavailableError


class CaptureStage(StageWorker):
    """
    Pipeline Stage 0: frame acquisition.

    Posts one CAPTURED event per decoded frame. The same buffer is used as
    both ``original`` and ``working``; downstream stages never write into
    ``working`` without copying first.
    """

    accepted_type = EventType.SOURCE_READY

    def __init__(
        self,
        source: FrameSource,
        bus: EventBus,
        fallback_fps: float = DEFAULT_FALLBACK_FPS,
        loop: bool = True,
        failures: Optional[FailureManager] = None,
    ):
        """
        Args:
            source: Any object implementing the FrameSource protocol.
            bus: Event bus receiving CAPTURED events.
            fallback_fps: Pacing used when the source reports no usable rate.
            loop: Rewind at end of stream instead of finishing.
        """
        super().__init__("CaptureStage", bus, failures)
        self.source = source
        self.fallback_fps = fallback_fps
        self.loop = loop
        self.frames_emitted = 0
        self.unavailable = threading.Event()

    def frame_interval(self) -> float:
        """Seconds between frames, derived from the source rate."""
        fps = self.source.fps
        if fps is None or not math.isfinite(fps) or fps <= 0:
            self.logger.warning(f"Source reports no usable frame rate ({fps}); using {self.fallback_fps} FPS")
            fps = self.fallback_fps
        return 1.0 / max(fps, 1e-3)

    def _wake(self) -> None:
        self.bus.wake()

    def _signal_unavailable(self, reason: str) -> None:
        self.failures.record_failure(SourceUnavailableError(reason, critical=True))
        self.unavailable.set()
        self.post(EventType.SOURCE_UNAVAILABLE, reason=reason)

    def _next_frame(self):
        """Read a frame, rewinding once at end of stream."""
        frame = self.source.read_frame()
        if frame is not None or not self.loop:
            return frame

        self.logger.info("End of stream, looping back to first frame")
        if not self.source.rewind():
            self._signal_unavailable("Source could not seek back to the first frame")
            return None

        frame = self.source.read_frame()
        if frame is None:
            self._signal_unavailable("Source produced no frames after rewinding")
        return frame

    def run(self) -> None:
        """Main capture loop — runs until cancelled or the source fails."""
        if not self.source.start():
            self.logger.error("Frame source failed to start")
            self._signal_unavailable("Frame source could not be opened")
            return

        interval = self.frame_interval()
        self.logger.info(f"Capture stage running ({1.0 / interval:.1f} FPS)")

        try:
            while not self.token.cancelled:
                loop_start = time.monotonic()

                frame = self._next_frame()
                if frame is None:
                    if not self.loop and not self.unavailable.is_set():
                        self.logger.info("Video playback finished")
                    break

                pair = FramePair(original=frame, working=frame, index=self.frames_emitted)
                # Waits here when the bus is bounded and full
                if not self.bus.post_event(Event(EventType.CAPTURED, pair), block=True, token=self.token):
                    break
                self.frames_emitted += 1

                # Subtract processing time; the wait doubles as the cancellation point
                remaining = interval - (time.monotonic() - loop_start)
                if remaining > 0 and self.token.wait(remaining):
                    break
        finally:
            self.source.stop()
            self.logger.info(f"Capture stage stopped after {self.frames_emitted} frame(s)")
