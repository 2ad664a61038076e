"""
Detect Stage — consumes DEHAZED pairs, runs the neural detector, draws the
hits onto the working image and posts ANNOTATED pairs.

The detector is loaded once on the stage thread before the first frame.
Each output row is ``[cx, cy, w, h, objectness, class scores...]``; the
class is the arg-max score and the confidence is that raw score (optionally
multiplied by objectness). Rows at or below the threshold are discarded,
then class-aware NMS removes duplicate boxes unless disabled.
"""
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

import numpy as np
import supervision as sv

from clearview.core.bus import EventBus
from clearview.core.channel import OverflowPolicy
from clearview.core.events import Detection, EventType, FramePair
from clearview.core.protocols import Detector
from clearview.core.stages.base import TransformStage
from clearview.Handlers.Detection_Visuals_Handler import DetectionVisualsHandler
from clearview.utils.constants import (
    DEFAULT_CONFIDENCE_THRESHOLD, DEFAULT_NMS_IOU, DEFAULT_QUEUE_SIZE,
    ROW_BOX_COLUMNS, ROW_CLASS_OFFSET, ROW_OBJECTNESS_INDEX,
)
from clearview.utils.failures import FailureManager


def decode_rows(
    outputs: Sequence[np.ndarray],
    width: int,
    height: int,
    threshold: float,
    fold_objectness: bool = False,
) -> sv.Detections:
    """
    Convert raw detector rows into pixel-space detections above ``threshold``.

    Box corners are truncated toward zero, matching an integer cast of
    ``cx - w / 2`` and ``cy - h / 2``.
    """
    xyxy: List[np.ndarray] = []
    confidences: List[np.ndarray] = []
    class_ids: List[np.ndarray] = []

    for output in outputs:
        rows = np.asarray(output, dtype=np.float32)
        if rows.size == 0:
            continue
        rows = rows.reshape(-1, rows.shape[-1])
        if rows.shape[1] <= ROW_CLASS_OFFSET:
            continue

        scores = rows[:, ROW_CLASS_OFFSET:]
        best = scores.argmax(axis=1)
        confidence = scores[np.arange(len(rows)), best]
        if fold_objectness:
            confidence = confidence * rows[:, ROW_OBJECTNESS_INDEX]

        keep = confidence > threshold
        if not keep.any():
            continue

        boxes = rows[keep, :ROW_BOX_COLUMNS] * np.array([width, height, width, height], dtype=np.float32)
        cx, cy, bw, bh = boxes.T
        x = np.trunc(cx - bw / 2)
        y = np.trunc(cy - bh / 2)
        w = np.trunc(bw)
        h = np.trunc(bh)

        xyxy.append(np.stack([x, y, x + w, y + h], axis=1))
        confidences.append(confidence[keep])
        class_ids.append(best[keep])

    if not xyxy:
        return sv.Detections.empty()

    return sv.Detections(
        xyxy=np.concatenate(xyxy).astype(np.float32),
        confidence=np.concatenate(confidences).astype(np.float32),
        class_id=np.concatenate(class_ids).astype(int),
    )


class DetectStage(TransformStage):
    """
    Pipeline Stage 2: object detection and annotation.

    Emits (original, annotated) pairs together with a structured tuple of
    ``Detection`` records so consumers need not inspect pixels.
    """

    def __init__(
        self,
        bus: EventBus,
        detector: Detector,
        class_names: Sequence[str],
        colors: Sequence[Tuple[int, int, int]],
        confidence: float = DEFAULT_CONFIDENCE_THRESHOLD,
        fold_objectness: bool = False,
        nms_iou: Optional[float] = DEFAULT_NMS_IOU,
        visuals: Optional[DetectionVisualsHandler] = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
        failures: Optional[FailureManager] = None,
    ):
        """
        Args:
            detector: Inference collaborator; ``load()`` runs on the stage thread.
            class_names: Label per class id.
            colors: RGB triple per class id, index-aligned with ``class_names``.
            confidence: Keep rows whose confidence is strictly above this.
            fold_objectness: Multiply the class score by objectness.
            nms_iou: IoU for class-aware NMS; None keeps duplicate boxes.
        """
        self.detector = detector
        self.class_names = list(class_names)
        self.confidence = confidence
        self.fold_objectness = fold_objectness
        self.nms_iou = nms_iou
        self.visuals = visuals or DetectionVisualsHandler(colors)
        super().__init__(
            name="DetectStage",
            bus=bus,
            accepts=EventType.DEHAZED,
            emits=EventType.ANNOTATED,
            transform=self.process,
            setup=self.load_detector,
            queue_size=queue_size,
            overflow_policy=overflow_policy,
            failures=failures,
        )

    def load_detector(self) -> None:
        self.logger.info("Loading detector")
        self.detector.load()
        self.logger.info(f"Detector ready (threshold {self.confidence}, NMS IoU {self.nms_iou})")

    def label_for(self, class_id: int) -> str:
        if 0 <= class_id < len(self.class_names):
            return self.class_names[class_id]
        return f"class {class_id}"

    def detect(self, image: np.ndarray) -> sv.Detections:
        height, width = image.shape[:2]
        detections = decode_rows(
            self.detector.infer(image), width, height, self.confidence, self.fold_objectness
        )
        if self.nms_iou is not None and len(detections) > 1:
            detections = detections.with_nms(threshold=self.nms_iou, class_agnostic=False)
        return detections

    def process(self, pair: FramePair) -> FramePair:
        detections = self.detect(pair.working)
        if len(detections) == 0:
            return replace(pair, detections=())

        working = pair.working
        if np.shares_memory(working, pair.original):
            working = working.copy()

        labels = [self.label_for(int(c)) for c in detections.class_id]
        working = self.visuals.annotate(working, detections, labels)

        structured = tuple(
            Detection(
                x=int(x1), y=int(y1), width=int(x2 - x1), height=int(y2 - y1),
                class_id=int(class_id), confidence=float(conf), label=label,
            )
            for (x1, y1, x2, y2), class_id, conf, label
            in zip(detections.xyxy, detections.class_id, detections.confidence, labels)
        )
        self.logger.debug(f"Frame {pair.index}: {len(structured)} detection(s)")
        return replace(pair, working=working, detections=structured)
