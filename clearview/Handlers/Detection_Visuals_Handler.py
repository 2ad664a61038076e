"""Detection Visuals Handler — draws bounding boxes and class labels on frames.

Uses supervision's BoxAnnotator + LabelAnnotator with a palette built from
the configured class colors, so class id N is always drawn in colors[N].
Annotators are created once and reused for every frame.
"""
from typing import List, Optional, Sequence, Tuple

import numpy as np
import supervision as sv

from clearview.utils.logger import Logger


def build_palette(colors: Optional[Sequence[Tuple[int, int, int]]]) -> sv.ColorPalette:
    """Turn RGB triples into a supervision palette (default palette when empty)."""
    if not colors:
        return sv.ColorPalette.DEFAULT
    return sv.ColorPalette(colors=[sv.Color(r=r, g=g, b=b) for r, g, b in colors])


class DetectionVisualsHandler:
    """Annotates BGR frames with detection boxes and labels, in place."""

    def __init__(
        self,
        colors: Optional[Sequence[Tuple[int, int, int]]] = None,
        thickness: int = 2,
        text_scale: float = 0.75,
        text_thickness: int = 2,
    ):
        self.logger = Logger("DetectionVisualsHandler")
        self.palette = build_palette(colors)
        self.box_annotator = sv.BoxAnnotator(
            color=self.palette,
            thickness=thickness,
            color_lookup=sv.ColorLookup.CLASS,
        )
        self.label_annotator = sv.LabelAnnotator(
            color=self.palette,
            text_scale=text_scale,
            text_thickness=text_thickness,
            color_lookup=sv.ColorLookup.CLASS,
        )

    def annotate(self, frame: np.ndarray, detections: sv.Detections, labels: List[str]) -> np.ndarray:
        """
        Draw boxes and labels onto ``frame``.

        Args:
            frame: BGR image owned by the caller; it is modified in place.
            detections: Boxes in pixel xyxy with class ids set.
            labels: One label per detection.

        Returns:
            The annotated frame.
        """
        annotated = self.box_annotator.annotate(scene=frame, detections=detections)
        annotated = self.label_annotator.annotate(
            scene=annotated, detections=detections, labels=labels
        )

        self.logger.debug(f"Visualized {len(detections)} detections on frame.")
        return annotated
