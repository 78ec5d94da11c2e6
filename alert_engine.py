"""Telemetry validation and fill-level alerting."""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import topics
from error_handler import MalformedPayloadError, OutOfRangeReadingError, UnknownBinError
from models import EventType
from mqtt_command_service import MQTTCommandService, mqtt_command_service
from store import BinStore, LogEntry, bin_store
from validators import payload_validator

logger = logging.getLogger(__name__)

# High-water mark, in percent
FULL_LEVEL_PERCENT = 80
FULL_ALERT = "full_warning"


@dataclass(frozen=True)
class LevelReading:
    bin_id: str
    level_percent: int
    distance_cm: float
    alerted: bool


class AlertEngine:
    """Persists fill-level telemetry and raises full-bin alerts.

    Alerts fire on every reading at or above the high-water mark, not only on
    the crossing edge.
    """

    def __init__(self, store: Optional[BinStore] = None, publisher: Optional[MQTTCommandService] = None):
        """Initialize alert engine."""
        self.store = store or bin_store
        self.publisher = publisher or mqtt_command_service

    def process_telemetry(self, bin_id: str, payload: Dict[str, Any]) -> LevelReading:
        """Validate and store one ``data/level`` reading.

        Raises:
            MalformedPayloadError: ``level`` or ``cm`` missing or non-numeric.
            OutOfRangeReadingError: values outside the physical range, including
                a distance beyond the bin's capacity.
            UnknownBinError: the bin is not provisioned.
        """
        is_valid, error = payload_validator.validate_payload(topics.LEVEL, payload)
        if not is_valid:
            raise MalformedPayloadError(f"Invalid level data format: {error}")

        in_range, error = payload_validator.check_level_range(payload)
        if not in_range:
            raise OutOfRangeReadingError(f"Discarding level reading from {bin_id}: {error}")

        level = int(round(payload["level"]))
        distance = payload["cm"]

        record = self.store.get_bin(bin_id)
        if record is None:
            raise UnknownBinError(bin_id)
        if distance > record.capacity_cm:
            raise OutOfRangeReadingError(
                f"Discarding level reading from {bin_id}: {distance}cm exceeds capacity {record.capacity_cm}cm"
            )

        if not self.store.update_bin_telemetry(bin_id, level, distance):
            raise UnknownBinError(bin_id)

        alerted = level >= FULL_LEVEL_PERCENT
        if alerted:
            self._raise_full_alert(bin_id, level, distance)

        logger.info(f"{bin_id}: Level {level}% ({distance}cm) at {payload.get('ts')}")
        return LevelReading(bin_id=bin_id, level_percent=level, distance_cm=distance, alerted=alerted)

    def _raise_full_alert(self, bin_id: str, level: int, distance: float) -> None:
        self.store.append_log(LogEntry(
            bin_id=bin_id,
            event_type=EventType.LEVEL_UPDATE,
            level_percent=level,
            distance_cm=int(round(distance)),
            message="Bin is nearly full!",
        ))
        self.publisher.publish_alert(
            bin_id,
            FULL_ALERT,
            f"Bin {bin_id} is {level}% full",
            level=level,
        )


# Global alert engine instance
alert_engine = AlertEngine()
