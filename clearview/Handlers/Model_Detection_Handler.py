"""Detector backends implementing the Detector protocol.

Both backends return detection rows ``[cx, cy, w, h, objectness, scores...]``
normalized to the input image, so the detect stage does not care which
network produced them.
"""
from pathlib import Path
from typing import List, Sequence

import cv2
import numpy as np
import torch

from clearview.utils.constants import DEFAULT_INPUT_SIZE
from clearview.utils.failures import ModelLoadError
from clearview.utils.logger import Logger


def preferred_device() -> str:
    return "cuda" if torch.cuda.is_available() else "cpu"


class DarknetDetector:
    """YOLO Darknet network (cfg + weights) run through OpenCV's DNN module."""

    def __init__(self, cfg_path: Path, weights_path: Path, input_size: int = DEFAULT_INPUT_SIZE):
        self.cfg_path = Path(cfg_path)
        self.weights_path = Path(weights_path)
        self.input_size = input_size
        self.device = preferred_device()
        self.logger = Logger("DarknetDetector")
        self.net = None
        self.output_names: Sequence[str] = ()

    def load(self) -> None:
        for path in (self.cfg_path, self.weights_path):
            if not path.exists():
                raise ModelLoadError(f"Model file not found: {path}", critical=True)

        try:
            net = cv2.dnn.readNetFromDarknet(str(self.cfg_path), str(self.weights_path))
        except cv2.error as e:
            raise ModelLoadError(f"Error loading Darknet model: {e}", critical=True) from e

        if self.device == "cuda":
            net.setPreferableBackend(cv2.dnn.DNN_BACKEND_CUDA)
            net.setPreferableTarget(cv2.dnn.DNN_TARGET_CUDA)
        else:
            net.setPreferableBackend(cv2.dnn.DNN_BACKEND_OPENCV)
            net.setPreferableTarget(cv2.dnn.DNN_TARGET_CPU)

        self.net = net
        self.output_names = net.getUnconnectedOutLayersNames()
        self.logger.info(f"Darknet model loaded on {self.device}: {self.weights_path.name}")

    def infer(self, image: np.ndarray) -> List[np.ndarray]:
        if self.net is None:
            raise ModelLoadError("Detector used before load()")

        blob = cv2.dnn.blobFromImage(
            image, 1.0 / 255.0, (self.input_size, self.input_size),
            swapRB=True, crop=False,
        )
        self.net.setInput(blob)
        return list(self.net.forward(self.output_names))


class UltralyticsDetector:
    """Ultralytics YOLO model (.pt) re-encoded as detection rows."""

    def __init__(self, model_path: Path, input_size: int = DEFAULT_INPUT_SIZE, min_confidence: float = 0.01):
        self.model_path = Path(model_path)
        self.input_size = input_size
        self.min_confidence = min_confidence
        self.device = preferred_device()
        self.logger = Logger("UltralyticsDetector")
        self.model = None
        self.num_classes = 0

    def load(self) -> None:
        if not self.model_path.exists():
            raise ModelLoadError(f"Model file not found: {self.model_path}", critical=True)

        from ultralytics import YOLO

        try:
            model = YOLO(str(self.model_path))
            model.to(self.device)
        except Exception as e:
            raise ModelLoadError(f"Error loading model: {e}", critical=True) from e

        self.model = model
        self.num_classes = len(model.names)
        self.logger.info(f"Model loaded successfully on {self.device}: {self.model_path}")

    def infer(self, image: np.ndarray) -> List[np.ndarray]:
        if self.model is None:
            raise ModelLoadError("Detector used before load()")

        results = self.model.predict(
            image, imgsz=self.input_size, conf=self.min_confidence,
            device=self.device, verbose=False,
        )
        boxes = results[0].boxes
        if boxes is None or len(boxes) == 0:
            return [np.zeros((0, 5 + self.num_classes), dtype=np.float32)]

        xywhn = boxes.xywhn.cpu().numpy()
        conf = boxes.conf.cpu().numpy()
        cls = boxes.cls.cpu().numpy().astype(int)

        rows = np.zeros((len(conf), 5 + self.num_classes), dtype=np.float32)
        rows[:, :4] = xywhn
        rows[:, 4] = conf
        rows[np.arange(len(conf)), 5 + cls] = conf
        return [rows]
