"""
In-process event bus for the Clearview pipeline.

Every stage posts its output here; a single dispatch thread pops events in
FIFO order and synchronously hands each one to the one handler registered
for its type. A slow handler therefore delays every event behind it.

Handlers are registered while the pipeline is being assembled. Starting the
loop freezes the table, so dispatch reads never race with registration.

With ``max_pending`` set, the queue is bounded for producers that post with
``block=True`` (the capture stage under the BLOCK overflow policy). When a
stage channel is full the dispatch thread waits on it, the bus queue fills
up behind it, and the producer is held back. The slowest stage then paces
the whole pipeline. Stage outputs and control events are always accepted;
they are bounded by the stage channels, since a stage emits one event per
queued frame.
"""
import threading
from collections import deque
from types import MappingProxyType
from typing import Callable, Deque, Dict, Mapping, Optional, Set

from clearview.core.cancellation import CancellationToken
from clearview.core.events import Event, EventType
from clearview.utils.failures import BusFrozenError, ConfigError, FailureManager
from clearview.utils.logger import Logger

Handler = Callable[[Event], None]


class EventBus:
    """
    Typed publish/dispatch queue with exactly one handler per event type.

    Usage:
        bus = EventBus()
        bus.register_handler(EventType.CAPTURED, dehaze_stage.handle_event)
        bus.start_event_loop()
        bus.post_event(Event(EventType.CAPTURED, pair))
    """

    def __init__(self, failures: Optional[FailureManager] = None, max_pending: Optional[int] = None):
        if max_pending is not None and max_pending < 1:
            raise ConfigError(f"Event bus needs max_pending >= 1, got {max_pending}")
        self._handlers: Dict[EventType, Handler] = {}
        self._frozen: Optional[Mapping[EventType, Handler]] = None
        self._queue: Deque[Event] = deque()
        self._cond = threading.Condition()
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._warned_types: Set[EventType] = set()
        self.max_pending = max_pending
        self.failures = failures or FailureManager()
        self.logger = Logger("EventBus")

    # ── Assembly ────────────────────────────────────────────────────

    def register_handler(self, event_type: EventType, handler: Handler) -> None:
        """
        Register or replace the handler for an event type.

        Raises:
            BusFrozenError: if the dispatch loop has already started.
        """
        with self._cond:
            if self._frozen is not None:
                raise BusFrozenError(
                    f"Cannot register handler for {event_type.name}: event loop already started"
                )
            self._handlers[event_type] = handler
        self.logger.debug(f"Registered {getattr(handler, '__qualname__', handler)} for {event_type.name}")

    def freeze(self) -> Mapping[EventType, Handler]:
        """Make the handler table read-only. Called automatically by the loop."""
        with self._cond:
            if self._frozen is None:
                self._frozen = MappingProxyType(dict(self._handlers))
            return self._frozen

    # ── Publishing ──────────────────────────────────────────────────

    def post_event(self, event: Event, block: bool = False,
                   token: Optional[CancellationToken] = None) -> bool:
        """
        Append an event and wake the dispatch thread. Never waits on handlers.

        Args:
            event: The event to queue.
            block: Wait while ``max_pending`` events are already queued.
            token: Cancels a blocked wait (call ``wake()`` after cancelling).

        Returns:
            False if a blocked post was cancelled before the event was queued.
        """
        with self._cond:
            if block and self.max_pending is not None:
                self._cond.wait_for(
                    lambda: len(self._queue) < self.max_pending
                    or not self._running
                    or (token is not None and token.cancelled)
                )
                if token is not None and token.cancelled:
                    return False
            self._queue.append(event)
            self._cond.notify_all()
            return True

    def wake(self) -> None:
        """Wake blocked producers so they re-check their cancellation token."""
        with self._cond:
            self._cond.notify_all()

    def pending(self) -> int:
        """Number of events waiting for dispatch."""
        with self._cond:
            return len(self._queue)

    @property
    def is_running(self) -> bool:
        with self._cond:
            return self._running

    # ── Dispatch loop ───────────────────────────────────────────────

    def start_event_loop(self) -> threading.Thread:
        """Freeze the handler table and run the dispatch loop on its own thread."""
        with self._cond:
            if self._thread is not None:
                raise RuntimeError("Event loop already started")
            self._running = True
            self._thread = threading.Thread(target=self._loop, name="EventBus", daemon=True)
        self.freeze()
        self._thread.start()
        self.logger.info("Event loop started")
        return self._thread

    def run_event_loop(self) -> None:
        """Run the dispatch loop on the calling thread until shutdown."""
        with self._cond:
            if self._thread is not None:
                raise RuntimeError("Event loop already started")
            self._running = True
            self._thread = threading.current_thread()
        self.freeze()
        self.logger.info("Event loop running on caller thread")
        self._loop()

    def _loop(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._queue or not self._running)
                if not self._running:
                    break
                event = self._queue.popleft()
                handlers = self._frozen
                self._cond.notify_all()
            self._dispatch(event, handlers)

        self.logger.info("Event loop stopped")

    def _dispatch(self, event: Event, handlers: Optional[Mapping[EventType, Handler]]) -> None:
        handler = handlers.get(event.type) if handlers else None
        if handler is None:
            if event.type not in self._warned_types:
                self._warned_types.add(event.type)
                self.logger.warning(f"No handler registered for {event.type.name}; dropping event")
            else:
                self.logger.debug(f"Dropped unhandled {event.type.name} event")
            return

        try:
            handler(event)
        except Exception as e:
            self.logger.error(
                f"Error in handler {getattr(handler, '__qualname__', handler)} for "
                f"{event.type.name}: {e}"
            )
            self.failures.record_failure(e)

    def shutdown_event_loop(self, timeout: Optional[float] = 5.0) -> None:
        """Clear handlers, stop the loop and wait for the dispatch thread."""
        with self._cond:
            self._handlers.clear()
            self._frozen = MappingProxyType({})
            self._running = False
            self._queue.clear()
            self._cond.notify_all()
            thread = self._thread

        if thread is not None and thread is not threading.current_thread() and thread.is_alive():
            thread.join(timeout)
            if thread.is_alive():
                self.logger.warning("Dispatch thread did not exit in time (handler still busy)")
        self.logger.info("Event loop shut down")
