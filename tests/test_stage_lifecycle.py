import threading
import time
from dataclasses import replace

import numpy as np
import pytest

from clearview.core.bus import EventBus
from clearview.core.channel import OverflowPolicy
from clearview.core.events import Event, EventType, FramePair
from clearview.core.stages import StageState, TransformStage
from clearview.utils.failures import FailureManager

from conftest import Recorder, wait_until


def _pair(index: int) -> FramePair:
    image = np.full((4, 4, 3), index % 256, dtype=np.uint8)
    return FramePair(original=image, working=image, index=index)


def _invert(pair: FramePair) -> FramePair:
    return replace(pair, working=255 - pair.working)


def _stage(bus: EventBus, transform=_invert, **kwargs) -> TransformStage:
    return TransformStage(
        name="TestStage", bus=bus,
        accepts=EventType.CAPTURED, emits=EventType.DEHAZED,
        transform=transform, **kwargs,
    )


def test_one_outbound_event_per_input_in_order(bus: EventBus) -> None:
    out = Recorder()
    stage = _stage(bus, overflow_policy=OverflowPolicy.BLOCK, queue_size=2)
    bus.register_handler(EventType.CAPTURED, stage.handle_event)
    bus.register_handler(EventType.DEHAZED, out)
    bus.start_event_loop()
    stage.start()

    for i in range(20):
        bus.post_event(Event(EventType.CAPTURED, _pair(i)))

    assert wait_until(lambda: len(out) == 20)
    stage.stop()
    assert [e.payload.index for e in out.events] == list(range(20))
    assert all(np.array_equal(e.payload.working, 255 - e.payload.original) for e in out.events)


def test_other_event_types_are_ignored(bus: EventBus) -> None:
    stage = _stage(bus)

    stage.handle_event(Event(EventType.DEHAZED, _pair(0)))
    stage.handle_event(Event(EventType.ANNOTATED, _pair(1)))
    stage.handle_event(Event(EventType.CAPTURED, _pair(2)))

    assert len(stage.channel) == 1


def test_lifecycle_states_and_double_start(bus: EventBus) -> None:
    stage = _stage(bus)
    assert stage.state is StageState.IDLE

    stage.start()
    assert stage.state is StageState.RUNNING
    with pytest.raises(RuntimeError):
        stage.start()

    stage.stop()
    assert stage.state is StageState.STOPPED
    assert not stage.is_alive
    stage.stop()


def test_stop_with_backlog_is_prompt(bus: EventBus) -> None:
    def slow(pair: FramePair) -> FramePair:
        time.sleep(0.05)
        return pair

    stage = _stage(bus, transform=slow, overflow_policy=OverflowPolicy.UNBOUNDED)
    for i in range(100):
        stage.handle_event(Event(EventType.CAPTURED, _pair(i)))
    stage.start()
    assert wait_until(lambda: stage.processed >= 1)

    start = time.monotonic()
    stage.stop(timeout=2.0)

    assert time.monotonic() - start < 1.0
    assert not stage.is_alive
    assert stage.processed < 100


def test_stop_releases_blocked_producer(bus: EventBus) -> None:
    gate = threading.Event()

    def gated(pair: FramePair) -> FramePair:
        gate.wait(5)
        return pair

    stage = _stage(bus, transform=gated, overflow_policy=OverflowPolicy.BLOCK, queue_size=1)
    stage.start()
    stage.handle_event(Event(EventType.CAPTURED, _pair(0)))
    assert wait_until(lambda: len(stage.channel) == 0)
    stage.handle_event(Event(EventType.CAPTURED, _pair(1)))

    producer = threading.Thread(target=stage.handle_event, args=(Event(EventType.CAPTURED, _pair(2)),))
    producer.start()
    time.sleep(0.05)
    assert producer.is_alive()

    stopper = threading.Thread(target=stage.stop)
    stopper.start()
    producer.join(2)
    assert not producer.is_alive()

    gate.set()
    stopper.join(2)
    assert not stage.is_alive


def test_transform_error_drops_frame_and_keeps_running(bus: EventBus) -> None:
    out = Recorder()

    def picky(pair: FramePair) -> FramePair:
        if pair.index == 1:
            raise ValueError("bad frame")
        return pair

    stage = _stage(bus, transform=picky, overflow_policy=OverflowPolicy.BLOCK)
    bus.register_handler(EventType.CAPTURED, stage.handle_event)
    bus.register_handler(EventType.DEHAZED, out)
    bus.start_event_loop()
    stage.start()

    for i in range(3):
        bus.post_event(Event(EventType.CAPTURED, _pair(i)))

    assert wait_until(lambda: len(out) == 2)
    stage.stop()
    assert [e.payload.index for e in out.events] == [0, 2]
    assert stage.failures.count("ValueError") == 1


def test_setup_runs_once_on_stage_thread(bus: EventBus) -> None:
    threads = []
    stage = _stage(bus, setup=lambda: threads.append(threading.current_thread().name))

    stage.start()
    assert wait_until(lambda: len(threads) == 1)
    stage.stop()

    assert threads == ["TestStage"]


def test_crashed_setup_marks_stage_failed_and_announces_it() -> None:
    bus = EventBus()
    failed = Recorder()
    bus.register_handler(EventType.STAGE_FAILED, failed)
    bus.start_event_loop()

    def broken_setup() -> None:
        raise RuntimeError("no weights")

    stage = _stage(bus, setup=broken_setup, overflow_policy=OverflowPolicy.BLOCK, queue_size=1)
    try:
        stage.start()
        assert wait_until(lambda: len(failed) == 1)
        assert stage.state is StageState.FAILED
        assert "no weights" in failed.events[0].reason
        assert stage.channel.closed
        # a dead stage must not hold up whoever feeds it
        assert stage.channel.put(_pair(0), timeout=0.1) is False
    finally:
        stage.stop()
        bus.shutdown_event_loop()

    assert stage.state is StageState.FAILED
    assert not stage.is_alive


def test_repeated_transform_errors_fail_the_stage() -> None:
    bus = EventBus(FailureManager({'threshold': 3, 'window_seconds': 60}))
    failed = Recorder()
    bus.register_handler(EventType.STAGE_FAILED, failed)
    bus.start_event_loop()

    def always_broken(pair: FramePair) -> FramePair:
        raise ValueError("unsupported frame")

    stage = _stage(bus, transform=always_broken, overflow_policy=OverflowPolicy.UNBOUNDED)
    try:
        for i in range(5):
            stage.handle_event(Event(EventType.CAPTURED, _pair(i)))
        stage.start()
        assert wait_until(lambda: len(failed) == 1)
    finally:
        stage.stop()
        bus.shutdown_event_loop()

    assert stage.state is StageState.FAILED
    assert stage.failures.count("ValueError") == 3
    assert stage.processed == 0
