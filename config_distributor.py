"""Distribution of retained configuration to bins, plus manual lid commands."""
import logging
from numbers import Number
from typing import Any, Dict, Optional

from error_handler import ConfigRejectedError, UnknownBinError
from models import BinMode, EventType
from mqtt_command_service import MQTTCommandService, OutboundMessage, mqtt_command_service
from store import BinRecord, BinStore, LogEntry, bin_store

logger = logging.getLogger(__name__)

# Accepted input names -> stored column
FIELD_ALIASES = {
    "mode": "mode",
    "threshold": "threshold_cm",
    "threshold_cm": "threshold_cm",
    "capacity": "capacity_cm",
    "capacity_cm": "capacity_cm",
    "name": "name",
    "location": "location",
}

MANUAL_REASON = "manual_control"
LID_ACTIONS = {"open": EventType.LID_OPEN, "close": EventType.LID_CLOSE}


def _normalize(updates: Dict[str, Any]) -> Dict[str, Any]:
    """Keep allow-listed fields that were actually supplied."""
    fields: Dict[str, Any] = {}
    for key, value in updates.items():
        column = FIELD_ALIASES.get(key)
        if column is None or value is None:
            continue
        fields[column] = value
    return fields


def _validate(fields: Dict[str, Any]) -> None:
    if "mode" in fields:
        mode = fields["mode"]
        if isinstance(mode, BinMode):
            fields["mode"] = mode.value
        elif mode not in (BinMode.AUTO.value, BinMode.AUTH.value):
            raise ConfigRejectedError("Invalid mode. Must be AUTO or AUTH")
    for column in ("threshold_cm", "capacity_cm"):
        if column in fields:
            value = fields[column]
            if isinstance(value, bool) or not isinstance(value, Number) or value <= 0:
                raise ConfigRejectedError(f"{column} must be a positive number")
    for column in ("name", "location"):
        if column in fields and not isinstance(fields[column], str):
            raise ConfigRejectedError(f"{column} must be a string")


class ConfigDistributor:
    """Persists admin config changes and republishes the device subset."""

    def __init__(self, store: Optional[BinStore] = None, publisher: Optional[MQTTCommandService] = None):
        self.store = store or bin_store
        self.publisher = publisher or mqtt_command_service

    def apply(self, bin_id: str, updates: Dict[str, Any]) -> BinRecord:
        """Apply a partial config update.

        Raises:
            ConfigRejectedError: no recognized field, or an invalid value.
                Nothing is stored or published.
            UnknownBinError: the bin is not provisioned.
        """
        fields = _normalize(updates)
        if not fields:
            raise ConfigRejectedError("No valid fields to update")
        _validate(fields)

        if self.store.get_bin(bin_id) is None:
            raise UnknownBinError(bin_id)

        self.store.update_bin_config(bin_id, fields)
        updated = self.store.get_bin(bin_id)
        if updated is None:
            raise UnknownBinError(bin_id)

        self.publish(updated)
        self.store.append_log(LogEntry(
            bin_id=bin_id,
            event_type=EventType.CONFIG_CHANGE,
            message="Configuration updated",
        ))
        logger.info(f"{bin_id} config updated: {fields}")
        return updated

    def publish(self, bin_record: BinRecord) -> OutboundMessage:
        """Publish the stored device configuration as a retained message."""
        return self.publisher.publish_config(
            bin_record.bin_id,
            bin_record.mode.value,
            bin_record.threshold_cm,
        )

    def send_command(self, bin_id: str, action: str, operator: str) -> OutboundMessage:
        """Operator-issued open/close.

        Raises:
            ConfigRejectedError: action is not ``open`` or ``close``.
            UnknownBinError: the bin is not provisioned.
        """
        event_type = LID_ACTIONS.get(action)
        if event_type is None:
            raise ConfigRejectedError('Invalid action. Must be "open" or "close"')
        if self.store.get_bin(bin_id) is None:
            raise UnknownBinError(bin_id)

        message = self.publisher.publish_command(bin_id, action, MANUAL_REASON, user=operator)
        self.store.append_log(LogEntry(
            bin_id=bin_id,
            event_type=event_type,
            message=f"Manual {action}",
        ))
        return message


# Global distributor instance
config_distributor = ConfigDistributor()


def get_config_distributor() -> ConfigDistributor:
    """FastAPI dependency returning the config distributor."""
    return config_distributor
