"""Tests for the device agent loop and its broker session."""
import json
from types import SimpleNamespace

import pytest

from device.actuator import LidActuator
from device.agent import DeviceAgent
from device.config import DeviceSettings
from device.controller import LidState, Mode
from device.sensors import DistanceSensor
from device.simulated import SimulatedEcho, SimulatedLed, SimulatedRfidReader, SimulatedServo

OK = SimpleNamespace(is_failure=False)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def message(topic: str, payload) -> SimpleNamespace:
    raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return SimpleNamespace(topic=topic, payload=raw, qos=1)


@pytest.fixture
def client(mqtt_client):
    return mqtt_client


@pytest.fixture
def echoes():
    return SimpleNamespace(level=SimulatedEcho(110.0), proximity=SimulatedEcho(150.0))


@pytest.fixture
def reader():
    return SimulatedRfidReader()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def agent(client, echoes, reader, clock):
    config = DeviceSettings(
        bin_id="B1",
        mqtt_namespace="smartbin",
        capacity_cm=200,
        mode="AUTO",
        threshold_cm=50,
        config_wait_seconds=0.05,
        telemetry_interval_seconds=10,
        debounce_seconds=2,
        auto_close_seconds=5,
        reconnect_delay_seconds=5,
    )
    return DeviceAgent(
        level_sensor=DistanceSensor(echoes.level, min_cm=0, name="level"),
        proximity_sensor=DistanceSensor(echoes.proximity, name="proximity"),
        actuator=LidActuator(SimulatedServo(), sleep=lambda s: None),
        rfid_reader=reader,
        indicator=SimulatedLed().set,
        config=config,
        client=client,
        clock=clock,
        sleep=lambda s: None,
    )


def test_last_will_and_fixed_backoff(agent, client):
    assert client.will.topic == "smartbin/B1/status"
    assert client.will.payload == "offline"
    assert client.will.qos == 1
    assert client.will.retain is False
    assert client.reconnect_delay == (5, 5)


def test_connect_announces_online_and_subscribes(agent, client):
    agent._on_connect(client, None, {}, OK)

    [status] = client.topics("/status")
    assert status.payload == "online"
    assert status.qos == 1
    assert set(client.subscribed) == {
        ("smartbin/B1/cmd", 1),
        ("smartbin/B1/config", 1),
        ("smartbin/B1/alert", 1),
    }


def test_retained_config_applied_before_other_messages(agent, client):
    agent._on_connect(client, None, {}, OK)
    # Command arrives ahead of the retained config
    agent._on_message(client, None, message("smartbin/B1/cmd", {"action": "open", "reason": "rfid_authorized"}))
    agent._on_message(client, None, message("smartbin/B1/config", {"mode": "AUTH", "threshold": 30}))

    agent.tick()

    ctx = agent.context
    assert ctx.config_received is True
    assert ctx.mode == Mode.AUTH
    assert ctx.threshold_cm == 30
    # Backlogged command applied afterwards
    assert ctx.lid == LidState.OPEN
    assert not agent.backlog


def test_missing_retained_config_keeps_defaults(agent, client):
    agent._on_connect(client, None, {}, OK)
    agent.tick()
    assert agent.context.config_received is False
    assert agent.context.mode == Mode.AUTO


def test_tick_publishes_telemetry_on_schedule(agent, client, clock):
    agent.tick()
    agent.tick()
    levels = client.topics("/data/level")
    assert len(levels) == 1
    assert levels[0].qos == 0
    payload = json.loads(levels[0].payload)
    assert payload["level"] == 45
    assert payload["cm"] == pytest.approx(110.0, abs=0.1)

    clock.now += 10
    agent.tick()
    assert len(client.topics("/data/level")) == 2


def test_proximity_and_auto_close(agent, echoes, clock):
    echoes.proximity.distance_cm = 20.0
    agent.tick()
    assert agent.context.lid == LidState.OPEN

    echoes.proximity.distance_cm = 150.0
    clock.now = 1004.9
    agent.tick()
    assert agent.context.lid == LidState.OPEN

    clock.now = 1005.0
    agent.tick()
    assert agent.context.lid == LidState.CLOSED


def test_rfid_scan_forwarded(agent, client, reader):
    agent.context.mode = Mode.AUTH
    reader.present("DEADBEEF")
    agent.tick()

    [check] = client.topics("/rfid_check")
    assert check.qos == 1
    assert json.loads(check.payload)["uid"] == "DEADBEEF"
    assert agent.context.lid == LidState.CLOSED


@pytest.mark.parametrize("topic,payload", [
    ("smartbin/B2/cmd", b'{"action": "open"}'),
    ("smartbin/B1/cmd", b"open"),
    ("smartbin/B1/cmd", b'{"action": "explode"}'),
    ("smartbin/B1/status", b'"online"'),
    ("smartbin/B1", b'{"action": "open"}'),
    ("smartbin/B1/alert", b'["full"]'),
    ("smartbin/B1/alert", b'"boom"'),
    ("smartbin/B1/alert", b'{"type": "full_warning"}'),
])
def test_bad_inbound_messages_dropped(agent, topic, payload):
    agent.handle_message(topic, payload, now=0.0)
    assert agent.context.lid == LidState.CLOSED


def test_alert_messages_only_logged(agent):
    agent.handle_message("smartbin/B1/alert", b'{"type": "full_warning", "message": "full"}', now=0.0)
    assert agent.context.lid == LidState.CLOSED


def test_full_inbound_queue_drops(agent, client):
    for _ in range(agent.config.inbound_queue_size + 5):
        agent._on_message(client, None, message("smartbin/B1/cmd", {"action": "open"}))
    assert agent.inbound.qsize() == agent.config.inbound_queue_size


def test_shutdown_announces_offline(agent, client):
    agent._on_connect(client, None, {}, OK)
    agent.shutdown()
    assert [p.payload for p in client.topics("/status")] == ["online", "offline"]
    assert client.disconnected is True
    assert agent.is_connected is False


def test_run_loops_until_stopped(agent, client):
    ticks = []

    def stop_after_three(_delay):
        ticks.append(_delay)
        if len(ticks) == 3:
            agent.stop()

    agent.sleep = stop_after_three
    agent.run()

    assert client.connected_to[0] == agent.config.mqtt_broker_host
    assert len(ticks) == 3
    assert client.disconnected is True


def test_non_object_alert_does_not_stop_loop(agent, client):
    agent._on_message(client, None, message("smartbin/B1/alert", b'"boom"'))
    agent._on_message(client, None, message("smartbin/B1/cmd", {"action": "open"}))

    agent.tick()

    # The bad alert is dropped and the next message is still applied
    assert agent.context.lid == LidState.OPEN
    assert agent.inbound.empty()
