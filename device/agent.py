"""Cooperative main loop and broker session for one bin device."""
import json
import logging
import queue
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Optional, Tuple

import paho.mqtt.client as mqtt

import topics
from device.actuator import LidActuator
from device.config import DeviceSettings, device_settings
from device.controller import AccessController, DeviceContext, LidState, Mode, Timings
from device.sensors import DistanceSensor
from error_handler import (
    MalformedPayloadError,
    RetryHandler,
    SmartBinError,
    TransportError,
    UnknownTopicError,
)
from validators import payload_validator

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"

# Topics the device listens to
DEVICE_SUBSCRIPTIONS = (topics.COMMAND, topics.CONFIG, topics.ALERT)

Inbound = Tuple[str, bytes]


class DeviceAgent:
    """Runs the device side of the protocol.

    paho's network thread only enqueues inbound messages; everything else
    happens in ``tick`` on the caller's thread: drain messages, poll the
    proximity sensor and RFID reader, check the auto-close deadline and
    publish telemetry when due. After every (re)connect the agent first waits
    a bounded time for the retained config, holding other messages back.
    """

    def __init__(
        self,
        level_sensor: DistanceSensor,
        proximity_sensor: DistanceSensor,
        actuator: LidActuator,
        rfid_reader: Optional[Callable[[], Optional[str]]] = None,
        indicator: Optional[Callable[[bool], None]] = None,
        config: Optional[DeviceSettings] = None,
        client: Optional[mqtt.Client] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or device_settings
        self.bin_id = self.config.bin_id
        self.namespace = self.config.mqtt_namespace
        self.level_sensor = level_sensor
        self.proximity_sensor = proximity_sensor
        self.rfid_reader = rfid_reader
        self.clock = clock
        self.sleep = sleep

        self.context = DeviceContext(
            bin_id=self.bin_id,
            mode=Mode(self.config.mode.upper()),
            threshold_cm=self.config.threshold_cm,
            capacity_cm=self.config.capacity_cm,
        )
        self.controller = AccessController(
            actuator,
            Timings(
                debounce_seconds=self.config.debounce_seconds,
                auto_close_seconds=self.config.auto_close_seconds,
                telemetry_interval_seconds=self.config.telemetry_interval_seconds,
            ),
            emit=self.publish,
            indicator=indicator,
        )

        self.inbound: "queue.Queue[Inbound]" = queue.Queue(maxsize=self.config.inbound_queue_size)
        self.backlog: Deque[Inbound] = deque()
        self._resync = threading.Event()
        self._running = threading.Event()
        self.is_connected = False

        self.client = client or mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"smartbin-device-{self.bin_id}",
            clean_session=True,
        )
        if self.config.mqtt_broker_username and self.config.mqtt_broker_password:
            self.client.username_pw_set(
                self.config.mqtt_broker_username,
                self.config.mqtt_broker_password
            )

        # Broker announces us offline if we vanish without a clean disconnect
        self.client.will_set(self.topic(topics.STATUS), OFFLINE, qos=topics.QOS[topics.STATUS], retain=False)

        delay = self.config.reconnect_delay_seconds
        self.client.reconnect_delay_set(min_delay=delay, max_delay=delay)

        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message
        self.client.on_disconnect = self._on_disconnect

    def topic(self, message_class: str) -> str:
        return topics.build(self.namespace, self.bin_id, message_class)

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")
            self.is_connected = False
            return

        self.is_connected = True
        logger.info(f"{self.bin_id} connected to {self.config.mqtt_broker_host}:{self.config.mqtt_broker_port}")
        self.publish(topics.STATUS, ONLINE)
        for message_class in DEVICE_SUBSCRIPTIONS:
            client.subscribe(self.topic(message_class), qos=topics.QOS[message_class])
            logger.info(f"Subscribed to: {self.topic(message_class)}")
        self._resync.set()

    def _on_message(self, client, userdata, msg):
        try:
            self.inbound.put_nowait((msg.topic, msg.payload))
        except queue.Full:
            logger.warning(f"Inbound queue full, dropping message on {msg.topic}")

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        self.is_connected = False
        if reason_code.is_failure:
            logger.warning(f"Unexpected MQTT disconnection: {reason_code}. Reconnecting...")
        else:
            logger.info("Disconnected from MQTT broker")

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def publish(self, message_class: str, payload: Any) -> bool:
        """Publish to this bin's topic; the status class carries a bare token."""
        data = payload if message_class == topics.STATUS else json.dumps(payload)
        result = self.client.publish(
            self.topic(message_class),
            data,
            qos=topics.QOS[message_class],
            retain=False,
        )
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning(f"Failed to publish {message_class}: rc={result.rc}")
            return False
        logger.debug(f"Published {message_class}: {data}")
        return True

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _message_class(self, topic: str) -> str:
        parts = topics.parse(topic, self.namespace)
        if parts.bin_id != self.bin_id:
            raise UnknownTopicError(f"Message for another bin: {topic}")
        return parts.message_class

    def handle_message(self, topic: str, payload: bytes, now: float) -> None:
        """Apply one inbound message; bad messages are logged and dropped."""
        try:
            message_class = self._message_class(topic)
            try:
                data = json.loads(payload)
            except (UnicodeDecodeError, ValueError) as e:
                raise MalformedPayloadError(f"Invalid JSON on {topic}: {e}") from e

            if message_class == topics.COMMAND:
                self.controller.on_command(self.context, data, now)
            elif message_class == topics.CONFIG:
                self.controller.on_config(self.context, data)
            elif message_class == topics.ALERT:
                is_valid, error = payload_validator.validate_payload(topics.ALERT, data)
                if not is_valid:
                    raise MalformedPayloadError(f"Invalid alert: {error}")
                logger.warning(f"{self.bin_id} alert {data['type']}: {data['message']}")
            else:
                raise UnknownTopicError(f"Unhandled message class: {message_class}")
        except SmartBinError as e:
            logger.warning(f"Dropping message on {topic}: {e}")

    def await_config(self) -> bool:
        """Wait up to ``config_wait_seconds`` for the retained config.

        Anything else arriving meanwhile is held in the backlog and applied
        afterwards, in arrival order.
        """
        self.context.config_received = False
        deadline = self.clock() + self.config.config_wait_seconds

        while True:
            remaining = deadline - self.clock()
            if remaining <= 0:
                break
            try:
                topic, payload = self.inbound.get(timeout=remaining)
            except queue.Empty:
                break

            try:
                is_config = self._message_class(topic) == topics.CONFIG
            except UnknownTopicError:
                is_config = False

            if not is_config:
                self.backlog.append((topic, payload))
                continue

            self.handle_message(topic, payload, self.clock())
            if self.context.config_received:
                return True

        logger.warning(
            f"{self.bin_id}: no retained config received, keeping "
            f"mode={self.context.mode.value} threshold={self.context.threshold_cm}cm"
        )
        return False

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def tick(self) -> None:
        """One loop iteration, with a single clock read."""
        if self._resync.is_set():
            self._resync.clear()
            self.await_config()

        now = self.clock()

        while self.backlog:
            topic, payload = self.backlog.popleft()
            self.handle_message(topic, payload, now)
        while True:
            try:
                topic, payload = self.inbound.get_nowait()
            except queue.Empty:
                break
            self.handle_message(topic, payload, now)

        ctx = self.context
        if ctx.mode == Mode.AUTO and ctx.lid == LidState.CLOSED:
            self.controller.on_proximity(ctx, self.proximity_sensor.read_cm(), now)

        if self.rfid_reader is not None:
            uid = self.rfid_reader()
            if uid:
                self.controller.on_credential_scan(ctx, uid)

        self.controller.tick(ctx, now)

        if self.controller.telemetry_due(ctx, now):
            self.controller.publish_telemetry(ctx, self.level_sensor.read_cm(), now)

    def connect(self, retry: Optional[RetryHandler] = None):
        """Connect to the broker, retrying forever on a fixed interval."""
        retry = retry or RetryHandler(max_retries=0, retry_delay=self.config.reconnect_delay_seconds)

        def _connect():
            logger.info(f"Connecting to MQTT broker at {self.config.mqtt_broker_host}:{self.config.mqtt_broker_port}")
            try:
                self.client.connect(
                    self.config.mqtt_broker_host,
                    self.config.mqtt_broker_port,
                    keepalive=self.config.mqtt_keepalive
                )
            except OSError as e:
                raise TransportError(f"Failed to connect to MQTT broker: {e}") from e

        retry.run(_connect, "MQTT connect")
        self.client.loop_start()

    def run(self):
        """Connect and loop until ``stop`` is called."""
        self.connect()
        self._running.set()
        try:
            while self._running.is_set():
                self.tick()
                self.sleep(self.config.loop_delay_seconds)
        finally:
            self.shutdown()

    def stop(self):
        self._running.clear()

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    def shutdown(self):
        """Announce offline explicitly, then leave the broker."""
        if self.is_connected:
            self.publish(topics.STATUS, OFFLINE)
        self.client.disconnect()
        self.client.loop_stop()
        self.is_connected = False
        logger.info(f"{self.bin_id} stopped")
