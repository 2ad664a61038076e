"""
Pipeline stages for Clearview.

Every stage runs on its own thread and talks only to the event bus:

    CaptureStage → CAPTURED → DehazeStage → DEHAZED → DetectStage → ANNOTATED

Transform stages share one generic runner (``TransformStage``) that is
parameterized over the per-frame transform; each has a bounded inbound
channel whose overflow policy is configurable.
"""
from .base import StageState, StageWorker, TransformStage
from .capture import CaptureStage
from .dehaze import DehazeStage
from .detect import DetectStage

__all__ = [
    "StageState", "StageWorker", "TransformStage",
    "CaptureStage", "DehazeStage", "DetectStage",
]
