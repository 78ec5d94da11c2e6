"""Schema validation for inbound MQTT payloads."""
import logging
from typing import Dict, Any, Optional, Tuple
from jsonschema import Draft7Validator, SchemaError

import topics

logger = logging.getLogger(__name__)


LEVEL_SCHEMA = {
    "type": "object",
    "properties": {
        "level": {"type": "number"},
        "cm": {"type": "number"},
        "ts": {"type": "string"},
    },
    "required": ["level", "cm"],
}

# Range limits are enforced separately so that a non-numeric value and an
# out-of-range value are reported as different failures.
LEVEL_RANGE_SCHEMA = {
    "type": "object",
    "properties": {
        "level": {"minimum": 0, "maximum": 100},
        "cm": {"minimum": 0},
    },
}

RFID_CHECK_SCHEMA = {
    "type": "object",
    "properties": {
        "uid": {"type": "string", "minLength": 1, "pattern": r"\S"},
        "ts": {"type": "string"},
    },
    "required": ["uid"],
}

COMMAND_SCHEMA = {
    "type": "object",
    "properties": {
        "action": {"type": "string", "enum": ["open", "close"]},
        "reason": {"type": "string"},
        "user": {"type": "string"},
        "ts": {"type": "string"},
    },
    "required": ["action"],
}

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "mode": {"type": "string", "enum": ["AUTO", "AUTH"]},
        "threshold": {"type": "number", "exclusiveMinimum": 0},
        "ts": {"type": "string"},
    },
}

ALERT_SCHEMA = {
    "type": "object",
    "properties": {
        "type": {"type": "string"},
        "message": {"type": "string"},
        "ts": {"type": "string"},
    },
    "required": ["type", "message"],
}


class PayloadValidator:
    """
    Validates payloads against the schema of their message class.
    """

    def __init__(self):
        """Initialize validator."""
        self._validators: Dict[str, Draft7Validator] = {
            topics.LEVEL: Draft7Validator(LEVEL_SCHEMA),
            topics.RFID_CHECK: Draft7Validator(RFID_CHECK_SCHEMA),
            topics.COMMAND: Draft7Validator(COMMAND_SCHEMA),
            topics.CONFIG: Draft7Validator(CONFIG_SCHEMA),
            topics.ALERT: Draft7Validator(ALERT_SCHEMA),
        }
        self._level_range = Draft7Validator(LEVEL_RANGE_SCHEMA)

    def validate_payload(
        self,
        message_class: str,
        payload: Any
    ) -> Tuple[bool, Optional[str]]:
        """
        Validate a payload for a message class.

        Args:
            message_class: Topic message class (e.g., "data/level")
            payload: Parsed JSON payload

        Returns:
            Tuple of (is_valid, error_message)
        """
        validator = self._validators.get(message_class)
        if validator is None:
            return True, None

        try:
            error = next(iter(validator.iter_errors(payload)), None)
        except SchemaError as e:
            logger.error(f"Invalid schema for message class {message_class}: {e}")
            return False, f"Schema error: {str(e)}"

        if error is not None:
            error_msg = f"Validation error: {error.message}"
            if error.path:
                error_msg += f" (path: {'.'.join(str(p) for p in error.path)})"
            return False, error_msg
        return True, None

    def check_level_range(self, payload: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
        """Check a schema-valid level payload is physically plausible."""
        error = next(iter(self._level_range.iter_errors(payload)), None)
        if error is not None:
            return False, f"Out of range: {error.message}"
        return True, None


# Global validator instance
payload_validator = PayloadValidator()
