"""Tests for topic routing and per-bin ordered dispatch."""
import threading
import time

import pytest

from alert_engine import AlertEngine
from dispatcher import InboundMessage, MessageDispatcher
from error_handler import UnknownBinError
from metrics import metrics
from presence_tracker import PresenceTracker
from rfid_auth import AuthorizationResolver


class RecordingHandler:
    """Stands in for any of the three handlers."""

    def __init__(self, delay: float = 0.0, fail_with: Exception = None):
        self.calls = []
        self.delay = delay
        self.fail_with = fail_with
        self._lock = threading.Lock()

    def _record(self, bin_id, payload):
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.calls.append((bin_id, payload))
        if self.fail_with is not None:
            raise self.fail_with

    handle = _record
    process_telemetry = _record


@pytest.fixture
def handlers():
    return RecordingHandler(), RecordingHandler(), RecordingHandler()


@pytest.fixture
def router(handlers):
    resolver, engine, tracker = handlers
    return MessageDispatcher(resolver=resolver, engine=engine, tracker=tracker,
                             namespace="smartbin", workers=2, queue_size=100)


def test_routes_by_message_class(router, handlers):
    resolver, engine, tracker = handlers

    assert router.route(InboundMessage("smartbin/B1/data/level", b'{"level": 10, "cm": 180}')) is True
    assert router.route(InboundMessage("smartbin/B1/rfid_check", b'{"uid": "A1B2C3D4"}')) is True
    assert router.route(InboundMessage("smartbin/B1/status", b"online")) is True

    assert engine.calls == [("B1", {"level": 10, "cm": 180})]
    assert resolver.calls == [("B1", {"uid": "A1B2C3D4"})]
    # Status is a raw token, not JSON
    assert tracker.calls == [("B1", b"online")]


@pytest.mark.parametrize("topic", [
    "smartbin/B1",
    "other/B1/status",
    "smartbin/B1/data/temperature",
    "smartbin/B1/cmd",
    "smartbin//status",
])
def test_unknown_topics_dropped(router, handlers, topic):
    assert router.route(InboundMessage(topic, b"online")) is False
    assert all(not h.calls for h in handlers)


def test_malformed_json_dropped(router, handlers):
    _, engine, _ = handlers
    assert router.route(InboundMessage("smartbin/B1/data/level", b"{level: 10")) is False
    assert engine.calls == []
    assert metrics.get_summary()["messages_dropped"] == {"malformed_payload": 1}


def test_handler_errors_never_escape():
    broken = RecordingHandler(fail_with=RuntimeError("db went away"))
    unknown = RecordingHandler(fail_with=UnknownBinError("GHOST"))
    router = MessageDispatcher(resolver=unknown, engine=broken, tracker=broken, namespace="smartbin", workers=1)

    assert router.route(InboundMessage("smartbin/B1/data/level", b'{"level": 1, "cm": 1}')) is False
    assert router.route(InboundMessage("smartbin/GHOST/rfid_check", b'{"uid": "X"}')) is False
    summary = metrics.get_summary()
    assert summary["handler_errors"] == {"smartbin/B1/data/level": 1}
    assert summary["messages_dropped"] == {"unknown_bin": 1}


def test_submit_requires_running(router, handlers):
    assert router.submit(InboundMessage("smartbin/B1/status", b"online")) is False
    assert metrics.get_summary()["messages_dropped"] == {"dispatcher_stopped": 1}


def test_submit_drops_invalid_topic_before_queueing(router):
    router.start()
    try:
        assert router.submit(InboundMessage("garbage", b"")) is False
    finally:
        router.stop()


def test_same_bin_processed_in_arrival_order(router, handlers):
    _, engine, _ = handlers
    router.start()
    try:
        for level in range(10):
            for bin_id in ("B1", "B2", "B3"):
                message = InboundMessage(f"smartbin/{bin_id}/data/level", f'{{"level": {level}, "cm": 1}}'.encode())
                assert router.submit(message) is True
        router.drain()
    finally:
        router.stop()

    for bin_id in ("B1", "B2", "B3"):
        levels = [payload["level"] for b, payload in engine.calls if b == bin_id]
        assert levels == list(range(10))


def test_slow_bin_does_not_block_other_bins():
    slow = RecordingHandler(delay=0.5)
    fast = RecordingHandler()
    router = MessageDispatcher(resolver=slow, engine=fast, tracker=fast, namespace="smartbin", workers=2)

    # Find two bins pinned to different workers
    router.start()
    try:
        bins = [f"B{i}" for i in range(20)]
        slow_bin = bins[0]
        other = next(b for b in bins if router._worker_for(b) is not router._worker_for(slow_bin))

        router.submit(InboundMessage(f"smartbin/{slow_bin}/rfid_check", b'{"uid": "A"}'))
        router.submit(InboundMessage(f"smartbin/{other}/status", b"online"))

        deadline = time.monotonic() + 0.4
        while not fast.calls and time.monotonic() < deadline:
            time.sleep(0.01)
        assert fast.calls == [(other, b"online")]
        assert slow.calls == []
        router.drain()
    finally:
        router.stop()
    assert slow.calls == [(slow_bin, {"uid": "A"})]


def test_full_queue_drops_without_blocking(handlers):
    blocker = threading.Event()

    class Blocking(RecordingHandler):
        def handle(self, bin_id, payload):
            blocker.wait(2)

    router = MessageDispatcher(resolver=Blocking(), engine=handlers[1], tracker=handlers[2],
                               namespace="smartbin", workers=1, queue_size=1)
    router.start()
    try:
        router.submit(InboundMessage("smartbin/B1/rfid_check", b'{"uid": "A"}'))
        time.sleep(0.05)
        assert router.submit(InboundMessage("smartbin/B1/status", b"online")) is True
        assert router.submit(InboundMessage("smartbin/B1/status", b"online")) is False
        assert metrics.get_summary()["messages_dropped"] == {"queue_full": 1}
    finally:
        blocker.set()
        router.stop()


def test_end_to_end_with_real_handlers(store, publisher, mqtt_client):
    router = MessageDispatcher(
        resolver=AuthorizationResolver(store, publisher),
        engine=AlertEngine(store, publisher),
        tracker=PresenceTracker(store),
        namespace="smartbin",
        workers=2,
    )
    router.start()
    try:
        router.submit(InboundMessage("smartbin/B1/status", b"online"))
        router.submit(InboundMessage("smartbin/B1/data/level", b'{"level": 85, "cm": 30}'))
        router.submit(InboundMessage("smartbin/B1/rfid_check", b'{"uid": "DEADBEEF"}'))
        router.drain()
    finally:
        router.stop()

    record = store.get_bin("B1")
    assert record.is_online is True
    assert record.current_level_percent == 85
    assert [p.topic for p in mqtt_client.published] == ["smartbin/B1/alert", "smartbin/B1/alert"]
    assert len(store.get_logs("B1")) == 3
