"""MQTT topic hierarchy: ``<namespace>/<bin_id>/<class>[/<subclass>]``."""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from error_handler import UnknownTopicError

MIN_SEGMENTS = 3

# Message classes
LEVEL = "data/level"
RFID_CHECK = "rfid_check"
STATUS = "status"
COMMAND = "cmd"
CONFIG = "config"
ALERT = "alert"

# QoS per class
QOS = {
    LEVEL: 0,
    RFID_CHECK: 1,
    STATUS: 1,
    COMMAND: 1,
    CONFIG: 1,
    ALERT: 1,
}

# Classes the backend consumes
INBOUND_CLASSES = (LEVEL, RFID_CHECK, STATUS)


@dataclass(frozen=True)
class TopicParts:
    namespace: str
    bin_id: str
    kind: str
    subkind: Optional[str] = None

    @property
    def message_class(self) -> str:
        return f"{self.kind}/{self.subkind}" if self.subkind else self.kind


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp carried in the ``ts`` field of payloads."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def build(namespace: str, bin_id: str, message_class: str) -> str:
    """Build a concrete topic for one bin."""
    return f"{namespace}/{bin_id}/{message_class}"


def wildcard(namespace: str, message_class: str) -> str:
    """Subscription filter matching every bin for a message class."""
    return f"{namespace}/+/{message_class}"


def parse(topic: str, namespace: Optional[str] = None) -> TopicParts:
    """Split a topic into its parts.

    Raises:
        UnknownTopicError: fewer than three segments, empty bin id, or a
            namespace other than the expected one.
    """
    parts = topic.split("/")
    if len(parts) < MIN_SEGMENTS:
        raise UnknownTopicError(f"Invalid topic format: {topic}")
    if namespace is not None and parts[0] != namespace:
        raise UnknownTopicError(f"Foreign namespace in topic: {topic}")
    if not parts[1]:
        raise UnknownTopicError(f"Empty bin id in topic: {topic}")
    subkind = parts[3] if len(parts) > 3 else None
    return TopicParts(namespace=parts[0], bin_id=parts[1], kind=parts[2], subkind=subkind)
