"""Service for publishing commands, alerts and configuration to bins."""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import paho.mqtt.client as mqtt

import topics
from config import settings
from metrics import metrics
from topics import utc_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboundMessage:
    """Message bound for a device or the operations console."""
    topic: str
    payload: Dict[str, Any]
    qos: int
    retain: bool = False


class MQTTCommandService:
    """Publishes outbound messages through the backend's broker session.

    The service does not own a connection; the MQTT bridge binds its client
    on startup. Tests bind any object exposing ``publish(topic, payload,
    qos=, retain=)``.
    """

    def __init__(self, client=None, namespace: Optional[str] = None):
        """Initialize MQTT command service."""
        self.client = client
        self.namespace = namespace or settings.mqtt_namespace

    def bind(self, client) -> None:
        self.client = client

    def publish(self, message: OutboundMessage) -> bool:
        """Publish a message.

        Returns:
            True if handed to the client successfully, False otherwise
        """
        if self.client is None:
            logger.warning(f"No MQTT client bound, dropping outbound message to {message.topic}")
            return False

        try:
            payload = json.dumps(message.payload)
            result = self.client.publish(message.topic, payload, qos=message.qos, retain=message.retain)
            if result.rc == mqtt.MQTT_ERR_SUCCESS:
                logger.info(f"Published to {message.topic}: {payload}")
                return True
            logger.error(f"Failed to publish to {message.topic}: {result.rc}")
            return False
        except Exception as e:
            logger.error(f"Error publishing to {message.topic}: {e}", exc_info=True)
            return False

    def publish_command(
        self,
        bin_id: str,
        action: str,
        reason: str,
        user: Optional[str] = None
    ) -> OutboundMessage:
        """Send an open/close command to a bin."""
        payload: Dict[str, Any] = {"action": action, "reason": reason}
        if user is not None:
            payload["user"] = user
        payload["ts"] = utc_timestamp()
        message = OutboundMessage(
            topic=topics.build(self.namespace, bin_id, topics.COMMAND),
            payload=payload,
            qos=topics.QOS[topics.COMMAND],
        )
        if self.publish(message):
            metrics.record_command(bin_id)
        return message

    def publish_alert(self, bin_id: str, alert_type: str, message: str, **extra: Any) -> OutboundMessage:
        """Send an alert for a bin. ``extra`` carries type-specific fields (uid, level)."""
        payload: Dict[str, Any] = {"type": alert_type}
        payload.update(extra)
        payload["message"] = message
        payload["ts"] = utc_timestamp()
        outbound = OutboundMessage(
            topic=topics.build(self.namespace, bin_id, topics.ALERT),
            payload=payload,
            qos=topics.QOS[topics.ALERT],
        )
        if self.publish(outbound):
            metrics.record_alert(alert_type)
        return outbound

    def publish_config(self, bin_id: str, mode: str, threshold: float) -> OutboundMessage:
        """Send device configuration, retained so reconnecting devices receive it."""
        outbound = OutboundMessage(
            topic=topics.build(self.namespace, bin_id, topics.CONFIG),
            payload={"mode": mode, "threshold": threshold, "ts": utc_timestamp()},
            qos=topics.QOS[topics.CONFIG],
            retain=True,
        )
        if self.publish(outbound):
            metrics.record_config(bin_id)
        return outbound


# Global instance
mqtt_command_service = MQTTCommandService()
