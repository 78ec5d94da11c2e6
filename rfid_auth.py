"""Authorization resolver for RFID scans reported by bins."""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import topics
from error_handler import MalformedPayloadError, UnknownBinError
from models import EventType
from mqtt_command_service import MQTTCommandService, mqtt_command_service
from store import BinStore, LogEntry, bin_store
from validators import payload_validator

logger = logging.getLogger(__name__)

OPEN_REASON = "rfid_authorized"
UNAUTHORIZED_ALERT = "unauthorized_access"


@dataclass(frozen=True)
class AuthDecision:
    """Outcome of one scan."""
    bin_id: str
    uid: str
    granted: bool
    holder: Optional[str] = None


class AuthorizationResolver:
    """Decides access for a scanned credential.

    Each scan is an independent request: repeated scans of the same code are
    neither rate-limited nor deduplicated.
    """

    def __init__(self, store: Optional[BinStore] = None, publisher: Optional[MQTTCommandService] = None):
        self.store = store or bin_store
        self.publisher = publisher or mqtt_command_service

    def handle(self, bin_id: str, payload: Dict[str, Any]) -> AuthDecision:
        """Resolve an ``rfid_check`` message.

        Raises:
            MalformedPayloadError: missing or blank ``uid``.
            UnknownBinError: the bin is not provisioned; nothing is published.
        """
        is_valid, error = payload_validator.validate_payload(topics.RFID_CHECK, payload)
        if not is_valid:
            raise MalformedPayloadError(f"No UID in RFID check: {error}")

        uid = payload["uid"].strip()
        logger.info(f"RFID check for {bin_id}: UID={uid}")

        if self.store.get_bin(bin_id) is None:
            raise UnknownBinError(bin_id)

        credential = self.store.get_credential(uid)
        if credential is not None and credential.is_active:
            return self._grant(bin_id, uid, credential.name, credential.role)
        return self._deny(bin_id, uid)

    def _grant(self, bin_id: str, uid: str, holder: str, role: str) -> AuthDecision:
        logger.info(f"Access granted on {bin_id}: {holder} ({role})")
        self.store.append_log(LogEntry(
            bin_id=bin_id,
            event_type=EventType.RFID_SCAN,
            rfid_uid=uid,
            user_name=holder,
            success=True,
            message=f"Access granted for {holder}",
        ))
        self.publisher.publish_command(bin_id, "open", OPEN_REASON, user=holder)
        return AuthDecision(bin_id=bin_id, uid=uid, granted=True, holder=holder)

    def _deny(self, bin_id: str, uid: str) -> AuthDecision:
        logger.warning(f"Access denied on {bin_id}: unknown or inactive UID {uid}")
        self.store.append_log(LogEntry(
            bin_id=bin_id,
            event_type=EventType.RFID_SCAN,
            rfid_uid=uid,
            success=False,
            message="Access denied: Unknown RFID",
        ))
        self.publisher.publish_alert(
            bin_id,
            UNAUTHORIZED_ALERT,
            f"Unauthorized RFID attempt: {uid}",
            uid=uid,
        )
        return AuthDecision(bin_id=bin_id, uid=uid, granted=False)


# Global resolver instance
authorization_resolver = AuthorizationResolver()
