"""MQTT client connecting the backend to the bin fleet."""
import logging
from typing import Optional

import paho.mqtt.client as mqtt

import topics
from config import settings
from dispatcher import InboundMessage, MessageDispatcher, dispatcher
from error_handler import RetryHandler, TransportError
from mqtt_command_service import MQTTCommandService, mqtt_command_service

logger = logging.getLogger(__name__)


class MQTTBinBridge:
    """Broker session for the backend.

    Subscribes to the inbound bin topics, hands every message to the
    dispatcher without blocking the network loop, and lends its client to
    the command service for outbound publishes. paho reconnects on its own
    with a fixed delay; subscriptions are renewed in ``_on_connect``.
    """

    def __init__(
        self,
        message_dispatcher: Optional[MessageDispatcher] = None,
        publisher: Optional[MQTTCommandService] = None,
        client: Optional[mqtt.Client] = None,
    ):
        """Initialize MQTT client."""
        self.dispatcher = message_dispatcher or dispatcher
        self.publisher = publisher or mqtt_command_service
        self.namespace = settings.mqtt_namespace
        self.client = client or mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=settings.mqtt_client_id,
            clean_session=True,
        )

        # Set credentials if provided
        if settings.mqtt_broker_username and settings.mqtt_broker_password:
            self.client.username_pw_set(
                settings.mqtt_broker_username,
                settings.mqtt_broker_password
            )

        delay = settings.mqtt_reconnect_delay_seconds
        self.client.reconnect_delay_set(min_delay=delay, max_delay=delay)

        # Set callbacks
        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message
        self.client.on_disconnect = self._on_disconnect

        self.is_connected = False

    def subscriptions(self):
        """(topic filter, qos) pairs the backend consumes."""
        return [
            (topics.wildcard(self.namespace, message_class), topics.QOS[message_class])
            for message_class in topics.INBOUND_CLASSES
        ]

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """Callback when MQTT client connects."""
        if reason_code.is_failure:
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")
            self.is_connected = False
            return

        self.is_connected = True
        logger.info(f"Connected to MQTT broker at {settings.mqtt_broker_host}:{settings.mqtt_broker_port}")
        for topic_filter, qos in self.subscriptions():
            client.subscribe(topic_filter, qos=qos)
            logger.info(f"Subscribed to: {topic_filter} (QoS {qos})")

    def _on_message(self, client, userdata, msg):
        """Callback when MQTT message is received."""
        self.dispatcher.submit(InboundMessage(topic=msg.topic, payload=msg.payload, qos=msg.qos))

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        """Callback when MQTT client disconnects."""
        self.is_connected = False
        if reason_code.is_failure:
            logger.warning(f"Unexpected MQTT disconnection: {reason_code}. Reconnecting...")
        else:
            logger.info("Disconnected from MQTT broker")

    def connect(self, retry: Optional[RetryHandler] = None):
        """Connect to MQTT broker, retrying on a fixed interval."""
        retry = retry or RetryHandler(
            max_retries=settings.mqtt_connect_attempts,
            retry_delay=settings.mqtt_reconnect_delay_seconds,
        )

        def _connect():
            logger.info(f"Connecting to MQTT broker at {settings.mqtt_broker_host}:{settings.mqtt_broker_port}")
            try:
                self.client.connect(
                    settings.mqtt_broker_host,
                    settings.mqtt_broker_port,
                    keepalive=settings.mqtt_keepalive
                )
            except OSError as e:
                raise TransportError(f"Failed to connect to MQTT broker: {e}") from e

        retry.run(_connect, "MQTT connect")
        self.publisher.bind(self.client)
        self.client.loop_start()

    def disconnect(self):
        """Disconnect from MQTT broker."""
        self.client.disconnect()
        self.client.loop_stop()
        self.is_connected = False
        logger.info("Disconnected from MQTT broker")


# Global MQTT bridge instance
mqtt_bridge = MQTTBinBridge()
