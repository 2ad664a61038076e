"""
Stage contract shared by every pipeline worker.

A stage owns one thread, one cancellation token and (for transform stages)
one inbound ``FrameChannel``. The bus hands it events through
``handle_event``; the stage thread pulls frame pairs off the channel,
transforms them and posts exactly one successor event per pair.

Ownership: once a pair is queued, the stage thread is its only user until
the successor event is posted, at which point the bus owns it again.
"""
import threading
from enum import Enum
from typing import Callable, Optional

from clearview.core.bus import EventBus
from clearview.core.cancellation import CancellationToken
from clearview.core.channel import FrameChannel, OverflowPolicy
from clearview.core.events import Event, EventType, FramePair
from clearview.core.protocols import FrameTransform
from clearview.utils.constants import DEFAULT_QUEUE_SIZE, STAGE_JOIN_TIMEOUT
from clearview.utils.failures import FailureManager
from clearview.utils.logger import Logger


class StageState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


class StageWorker:
    """Lifecycle shared by all stages: Idle → Running → Stopped (or Failed)."""

    accepted_type: Optional[EventType] = None

    def __init__(self, name: str, bus: EventBus, failures: Optional[FailureManager] = None):
        self.name = name
        self.bus = bus
        self.failures = failures or bus.failures
        self.token = CancellationToken()
        self.logger = Logger(name)
        self._thread: Optional[threading.Thread] = None
        self._state = StageState.IDLE
        self._state_lock = threading.Lock()

    @property
    def state(self) -> StageState:
        with self._state_lock:
            return self._state

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Spawn the stage thread. A stage can only be started once."""
        with self._state_lock:
            if self._state is not StageState.IDLE:
                raise RuntimeError(f"{self.name} cannot start from state {self._state.value}")
            self._state = StageState.RUNNING
            self._thread = threading.Thread(target=self._run_guarded, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = STAGE_JOIN_TIMEOUT) -> None:
        """Cancel, wake any blocked wait, and join the stage thread."""
        with self._state_lock:
            if self._state is StageState.STOPPED:
                return
            if self._state is not StageState.FAILED:
                self._state = StageState.STOPPED
            thread = self._thread

        self.token.cancel()
        self._wake()

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                self.logger.warning(f"{self.name} still busy after {timeout}s (mid-transform)")
        self.logger.info(f"{self.name} stopped")

    def handle_event(self, event: Event) -> None:
        """Bus entry point; stages without an inbound channel ignore everything."""
        self.logger.debug(f"{self.name} ignoring {event.type.name}")

    def post(self, event_type: EventType, pair: Optional[FramePair] = None, reason: str = "") -> bool:
        return self.bus.post_event(Event(event_type, pair, reason))

    def _wake(self) -> None:
        """Interrupt the stage's suspension point."""

    def _run_guarded(self) -> None:
        try:
            self.run()
        except Exception as e:
            self.logger.exception(f"{self.name} crashed: {e}")
            self.failures.record_failure(e)
            self._fail(f"{self.name} failed: {e}")

    def _fail(self, reason: str) -> None:
        """Enter the terminal FAILED state and tell the assembling layer."""
        with self._state_lock:
            if self._state is StageState.STOPPED:
                return
            self._state = StageState.FAILED
        self.token.cancel()
        self._wake()
        self.post(EventType.STAGE_FAILED, reason=reason)

    def run(self) -> None:
        raise NotImplementedError


class TransformStage(StageWorker):
    """
    Generic channel-driven stage parameterized over a transform callable.

    Args:
        name: Thread and logger name.
        bus: Shared event bus; successor events are posted here.
        accepts: The only event type queued by ``handle_event``.
        emits: Event type posted for every transformed pair.
        transform: Callable turning one FramePair into its successor.
        setup: Optional hook run once on the stage thread before the loop.
        queue_size: Channel capacity (ignored for UNBOUNDED).
        overflow_policy: What to do when the channel is full.
    """

    def __init__(
        self,
        name: str,
        bus: EventBus,
        accepts: EventType,
        emits: EventType,
        transform: FrameTransform,
        setup: Optional[Callable[[], None]] = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
        failures: Optional[FailureManager] = None,
    ):
        super().__init__(name, bus, failures)
        self.accepted_type = accepts
        self.emitted_type = emits
        self.transform = transform
        self.setup = setup
        self.channel: FrameChannel[FramePair] = FrameChannel(queue_size, overflow_policy, name=name)
        self.processed = 0

    def handle_event(self, event: Event) -> None:
        if event.type is not self.accepted_type or event.payload is None:
            return
        if not self.channel.put(event.payload):
            self.logger.debug(f"{self.name} rejected frame {event.payload.index} (stopped or full)")

    def _wake(self) -> None:
        self.channel.close()

    def run(self) -> None:
        if self.setup is not None:
            self.setup()

        self.logger.info(f"{self.name} running ({self.accepted_type.name} → {self.emitted_type.name})")

        while not self.token.cancelled:
            pair = self.channel.get(self.token)
            if pair is None:
                break

            try:
                result = self.transform(pair)
            except Exception as e:
                self.logger.error(f"{self.name} failed on frame {pair.index}: {e}")
                self.failures.record_failure(e)
                if self.failures.is_threshold_exceeded(type(e).__name__):
                    self._fail(f"{self.name} failed repeatedly: {e}")
                    break
                continue

            self.processed += 1
            self.post(self.emitted_type, result)

        self.logger.info(f"{self.name} loop exited after {self.processed} frame(s)")
