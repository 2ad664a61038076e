"""
Typed event definitions for the Clearview pipeline.

Stages never hold references to each other: every frame travels as an
``Event`` through the bus, tagged with one of the ``EventType`` values.
The data types form a linear sequence:

    SOURCE_READY → CAPTURED → DEHAZED → ANNOTATED

SOURCE_UNAVAILABLE is a control event raised by the capture stage when the
video source cannot produce frames. STAGE_FAILED is raised by any stage whose
thread dies (for example a detector that cannot be loaded).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple
import time
import numpy as np


class EventType(Enum):
    SOURCE_READY = "source_ready"
    CAPTURED = "captured"
    DEHAZED = "dehazed"
    ANNOTATED = "annotated"
    SOURCE_UNAVAILABLE = "source_unavailable"
    STAGE_FAILED = "stage_failed"


@dataclass(frozen=True)
class Detection:
    """A single detector hit, in pixel coordinates of the working image."""
    x: int
    y: int
    width: int
    height: int
    class_id: int
    confidence: float
    label: str = ""

    @property
    def xyxy(self) -> Tuple[int, int, int, int]:
        return self.x, self.y, self.x + self.width, self.y + self.height


@dataclass(frozen=True)
class FramePair:
    """
    Ownership-transferred pair of images.

    ``original`` is carried unchanged from capture to render; ``working`` is
    replaced by each stage with its own output. Whoever holds the pair owns
    both buffers until it posts the successor event.
    """
    original: np.ndarray
    working: np.ndarray
    index: int = 0
    timestamp: float = field(default_factory=time.time)
    detections: Tuple[Detection, ...] = ()


@dataclass(frozen=True)
class Event:
    """A tagged value travelling through the bus."""
    type: EventType
    payload: Optional[FramePair] = None
    reason: str = ""
