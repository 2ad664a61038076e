import threading
import time
from typing import Callable, List, Optional, Sequence

import numpy as np
import pytest

from clearview.core.bus import EventBus
from clearview.core.events import Event, EventType


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def synthetic_frames(count: int, height: int = 80, width: int = 80, seed: int = 7) -> List[np.ndarray]:
    """Distinct hazy-looking BGR frames (bright, low-contrast noise)."""
    rng = np.random.default_rng(seed)
    return [
        rng.integers(120, 230, size=(height, width, 3), dtype=np.uint8)
        for _ in range(count)
    ]


class FakeSource:
    """In-memory FrameSource."""

    def __init__(self, frames: Sequence[np.ndarray], fps: float = 500.0,
                 opens: bool = True, can_rewind: bool = True):
        self.frames = list(frames)
        self._fps = fps
        self.opens = opens
        self.can_rewind = can_rewind
        self.position = 0
        self.started = False
        self.stopped = False
        self.rewinds = 0

    def start(self) -> bool:
        self.started = True
        return self.opens

    @property
    def fps(self) -> float:
        return self._fps

    def read_frame(self) -> Optional[np.ndarray]:
        if self.position >= len(self.frames):
            return None
        frame = self.frames[self.position].copy()
        self.position += 1
        return frame

    def rewind(self) -> bool:
        if not self.can_rewind:
            return False
        self.rewinds += 1
        self.position = 0
        return True

    def stop(self) -> None:
        self.stopped = True


class FakeDetector:
    """Detector returning fixed rows for every frame."""

    def __init__(self, rows: Optional[Sequence[Sequence[float]]] = None, num_classes: int = 2):
        if rows:
            self.rows = np.asarray(rows, dtype=np.float32)
        else:
            self.rows = np.zeros((0, 5 + num_classes), dtype=np.float32)
        self.loaded = 0
        self.calls = 0
        self.load_thread: Optional[str] = None

    def load(self) -> None:
        self.loaded += 1
        self.load_thread = threading.current_thread().name

    def infer(self, image: np.ndarray):
        self.calls += 1
        return [self.rows.copy()]


class Recorder:
    """Thread-safe event sink usable as a bus handler."""

    def __init__(self):
        self.events: List[Event] = []
        self._lock = threading.Lock()

    def __call__(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)

    def __len__(self) -> int:
        with self._lock:
            return len(self.events)

    def of_type(self, event_type: EventType) -> List[Event]:
        with self._lock:
            return [e for e in self.events if e.type is event_type]


@pytest.fixture
def bus():
    event_bus = EventBus()
    yield event_bus
    event_bus.shutdown_event_loop(timeout=2.0)
