"""
Protocol definitions (interfaces) for the Clearview pipeline.

These define the contracts that external collaborators must implement,
enabling dependency injection and easy testing/swapping.
"""
from typing import Protocol, Optional, Sequence, runtime_checkable
import numpy as np

from clearview.core.events import FramePair


@runtime_checkable
class FrameSource(Protocol):
    """Interface for the video decoding collaborator."""

    def start(self) -> bool:
        """Open the source. Returns True on success."""
        ...

    def read_frame(self) -> Optional[np.ndarray]:
        """
        Decode the next frame.

        Returns:
            A BGR uint8 array, or None at end of stream.
        """
        ...

    @property
    def fps(self) -> float:
        """Nominal frame rate; 0 or NaN when unknown."""
        ...

    def rewind(self) -> bool:
        """Seek back to the first frame. Returns True on success."""
        ...

    def stop(self) -> None:
        """Release resources."""
        ...


@runtime_checkable
class Detector(Protocol):
    """Interface for the neural inference collaborator."""

    def load(self) -> None:
        """Load network definition and weights. Raises ModelLoadError."""
        ...

    def infer(self, image: np.ndarray) -> Sequence[np.ndarray]:
        """
        Run one forward pass on a BGR image.

        Returns:
            One or more float arrays of rows laid out as
            ``[cx, cy, w, h, objectness, class_score_0, class_score_1, ...]``
            with box values normalized to the image size.
        """
        ...


@runtime_checkable
class FrameTransform(Protocol):
    """A stage transform: one inbound pair in, one outbound pair out."""

    def __call__(self, pair: FramePair) -> FramePair:
        ...
