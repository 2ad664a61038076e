"""
Dehaze Stage — consumes CAPTURED pairs, restores contrast with the dark
channel prior and posts DEHAZED pairs.
"""
from dataclasses import replace
from typing import Optional

from clearview.core.bus import EventBus
from clearview.core.channel import OverflowPolicy
from clearview.core.events import EventType, FramePair
from clearview.core.stages.base import TransformStage
from clearview.Handlers.Dehaze_Handler import DehazeHandler
from clearview.utils.constants import DEFAULT_QUEUE_SIZE
from clearview.utils.failures import FailureManager


class DehazeStage(TransformStage):
    """Pipeline Stage 1: haze removal."""

    def __init__(
        self,
        bus: EventBus,
        dehazer: Optional[DehazeHandler] = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
        failures: Optional[FailureManager] = None,
    ):
        self.dehazer = dehazer or DehazeHandler()
        super().__init__(
            name="DehazeStage",
            bus=bus,
            accepts=EventType.CAPTURED,
            emits=EventType.DEHAZED,
            transform=self.process,
            queue_size=queue_size,
            overflow_policy=overflow_policy,
            failures=failures,
        )

    def process(self, pair: FramePair) -> FramePair:
        """The dehazed image is a fresh buffer; ``original`` is left untouched."""
        return replace(pair, working=self.dehazer.dehaze(pair.working))
