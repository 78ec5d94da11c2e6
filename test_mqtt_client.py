"""Tests for the backend broker session."""
from types import SimpleNamespace

import pytest

from config import settings
from error_handler import RetryHandler, TransportError
from mqtt_client import MQTTBinBridge

OK = SimpleNamespace(is_failure=False)
REFUSED = SimpleNamespace(is_failure=True)


class RecordingDispatcher:
    def __init__(self):
        self.submitted = []

    def submit(self, message):
        self.submitted.append(message)
        return True


@pytest.fixture
def bridge(mqtt_client, publisher):
    return MQTTBinBridge(message_dispatcher=RecordingDispatcher(), publisher=publisher, client=mqtt_client)


def test_fixed_reconnect_delay(bridge, mqtt_client):
    delay = settings.mqtt_reconnect_delay_seconds
    assert mqtt_client.reconnect_delay == (delay, delay)


def test_subscribes_on_connect(bridge, mqtt_client):
    bridge._on_connect(mqtt_client, None, {}, OK)

    assert bridge.is_connected is True
    assert set(mqtt_client.subscribed) == {
        ("smartbin/+/data/level", 0),
        ("smartbin/+/rfid_check", 1),
        ("smartbin/+/status", 1),
    }


def test_refused_connect_does_not_subscribe(bridge, mqtt_client):
    bridge._on_connect(mqtt_client, None, {}, REFUSED)
    assert bridge.is_connected is False
    assert mqtt_client.subscribed == []


def test_messages_handed_to_dispatcher(bridge, mqtt_client):
    bridge._on_message(mqtt_client, None, SimpleNamespace(topic="smartbin/B1/status", payload=b"offline", qos=1))

    [message] = bridge.dispatcher.submitted
    assert message.topic == "smartbin/B1/status"
    assert message.payload == b"offline"
    assert message.qos == 1


def test_disconnect_callback_clears_flag(bridge, mqtt_client):
    bridge.is_connected = True
    bridge._on_disconnect(mqtt_client, None, None, REFUSED)
    assert bridge.is_connected is False


def test_connect_binds_publisher_and_starts_loop(bridge, mqtt_client, publisher):
    publisher.client = None
    bridge.connect()
    assert mqtt_client.connected_to == (settings.mqtt_broker_host, settings.mqtt_broker_port, settings.mqtt_keepalive)
    assert mqtt_client.loop_started is True
    assert publisher.client is mqtt_client


def test_connect_retries_then_gives_up(bridge, mqtt_client):
    attempts = []

    def refuse(host, port=1883, keepalive=60):
        attempts.append(host)
        raise ConnectionRefusedError("broker down")

    mqtt_client.connect = refuse
    sleeps = []
    with pytest.raises(TransportError):
        bridge.connect(RetryHandler(max_retries=3, retry_delay=2, sleep=sleeps.append))

    assert len(attempts) == 3
    assert sleeps == [2, 2]
    assert mqtt_client.loop_started is False
