"""Video Input Handler - Reads frames from a video file or stream URL.

Implements the FrameSource protocol on top of cv2.VideoCapture.
"""
import re
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from clearview.utils.logger import Logger

URL_PATTERN = re.compile(r"^(https?|rtsp|ftp)://[^\s/$.?#].\S*$", re.IGNORECASE)


def is_stream_url(path: str) -> bool:
    return bool(URL_PATTERN.match(path))


class VideoInputHandler:
    """Handles video file / stream input.

    Implements the FrameSource protocol:
        start() -> bool
        read_frame() -> Optional[np.ndarray]
        fps -> float
        rewind() -> bool
        stop() -> None
    """

    def __init__(self, video_path: str):
        """
        Args:
            video_path: Path to a video file, or an http(s)/rtsp URL.
        """
        self.video_path = str(video_path)
        self.logger = Logger("VideoInputHandler")
        self.cap: Optional[cv2.VideoCapture] = None

    # ── FrameSource protocol ──────────────────────────────────────────

    def start(self) -> bool:
        """Open the video for reading."""
        if not is_stream_url(self.video_path) and not Path(self.video_path).exists():
            self.logger.error(f"Video file not found: {self.video_path}")
            return False

        self.cap = cv2.VideoCapture(self.video_path)
        if not self.cap.isOpened():
            self.logger.error(f"Failed to open video: {self.video_path}")
            self.cap = None
            return False

        self.logger.info(f"Video opened: {self.video_path} ({self.fps:.2f} FPS reported)")
        return True

    @property
    def fps(self) -> float:
        if self.cap is None:
            return 0.0
        return float(self.cap.get(cv2.CAP_PROP_FPS))

    def read_frame(self) -> Optional[np.ndarray]:
        """Read the next frame from the video."""
        if self.cap is None:
            return None

        ret, frame = self.cap.read()
        if not ret:
            return None

        return frame

    def rewind(self) -> bool:
        """Seek back to the first frame."""
        if self.cap is None:
            return False
        return bool(self.cap.set(cv2.CAP_PROP_POS_FRAMES, 0))

    def stop(self) -> None:
        """Release the video capture resources."""
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            self.logger.info("Video capture released")
