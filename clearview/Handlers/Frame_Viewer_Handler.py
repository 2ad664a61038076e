"""Frame Viewer Handler — Qt window showing original and annotated frames.

Subscribes to ANNOTATED events through ``handle_event`` (called on the bus
thread), keeps only the newest pairs in a small bounded queue, and polls it
from the Qt thread at ~30 fps.
"""
from queue import Queue, Empty, Full
from typing import Callable, Optional

import cv2
import numpy as np
from PyQt6.QtWidgets import QMainWindow, QLabel, QVBoxLayout, QWidget
from PyQt6.QtCore import QTimer, Qt
from PyQt6.QtGui import QImage, QPixmap

from clearview.core.events import Event, EventType, FramePair
from clearview.utils.constants import DEFAULT_WINDOW_HEIGHT, DEFAULT_WINDOW_WIDTH, VIEWER_QUEUE_SIZE
from clearview.utils.logger import Logger


def side_by_side(pair: FramePair) -> np.ndarray:
    """Original on the left, annotated on the right, at the original's height."""
    original, annotated = pair.original, pair.working
    if annotated.shape[:2] != original.shape[:2]:
        annotated = cv2.resize(annotated, (original.shape[1], original.shape[0]))
    return np.hstack([original, annotated])


class FrameViewerHandler(QMainWindow):
    """Live viewer window; must be created after the QApplication exists."""

    def __init__(self, title: str = "Clearview | Dehaze + Detection",
                 width: int = DEFAULT_WINDOW_WIDTH, height: int = DEFAULT_WINDOW_HEIGHT,
                 on_close: Optional[Callable[[], None]] = None):
        super().__init__()
        self.viewer_queue: Queue = Queue(maxsize=VIEWER_QUEUE_SIZE)
        self.on_close = on_close
        self.logger = Logger("FrameViewer")

        # ── Window chrome ────────────────────────────────────────────
        self.setWindowTitle(title)
        self.setMinimumSize(640, 240)
        self.resize(width, height)

        # ── Central image label ──────────────────────────────────────
        self.image_label = QLabel("Waiting for frames …")
        self.image_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.image_label.setStyleSheet("background: #111; color: #888; font-size: 16px;")

        central = QWidget()
        layout = QVBoxLayout(central)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.addWidget(self.image_label)
        self.setCentralWidget(central)

        # ── Poll timer (~30 fps) ─────────────────────────────────────
        self._timer = QTimer(self)
        self._timer.timeout.connect(self._poll_queue)
        self._timer.start(33)

        self.logger.info("Frame viewer window created")

    # ── Bus handler (runs on the dispatch thread) ────────────────────

    def handle_event(self, event: Event) -> None:
        if event.type is not EventType.ANNOTATED or event.payload is None:
            return
        try:
            self.viewer_queue.put_nowait(event.payload)
        except Full:
            # Viewer is behind, replace the stalest pair
            try:
                self.viewer_queue.get_nowait()
            except Empty:
                pass
            try:
                self.viewer_queue.put_nowait(event.payload)
            except Full:
                pass

    # ── Internal ─────────────────────────────────────────────────────

    def _poll_queue(self) -> None:
        """Drain the queue and display only the latest pair."""
        latest: Optional[FramePair] = None
        while True:
            try:
                latest = self.viewer_queue.get_nowait()
            except Empty:
                break

        if latest is not None:
            self._display_frame(side_by_side(latest))

    def _display_frame(self, frame: np.ndarray) -> None:
        """Convert a BGR numpy frame to QPixmap and set it on the label."""
        h, w, ch = frame.shape
        rgb = np.ascontiguousarray(frame[..., ::-1])
        q_img = QImage(rgb.data, w, h, ch * w, QImage.Format.Format_RGB888)

        pixmap = QPixmap.fromImage(q_img)
        scaled = pixmap.scaled(
            self.image_label.size(),
            Qt.AspectRatioMode.KeepAspectRatio,
            Qt.TransformationMode.SmoothTransformation,
        )
        self.image_label.setPixmap(scaled)

    # ── Lifecycle ────────────────────────────────────────────────────

    def closeEvent(self, event) -> None:
        self._timer.stop()
        if self.on_close is not None:
            self.on_close()
        super().closeEvent(event)

    def stop(self) -> None:
        """Stop the polling timer and close the window."""
        self._timer.stop()
        self.close()
