"""Presence tracking from device liveness messages (including last-will)."""
import logging
from typing import Optional

from error_handler import MalformedPayloadError, UnknownBinError
from models import EventType
from store import BinStore, LogEntry, bin_store

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"


class PresenceTracker:
    """Updates a bin's online flag from its status topic.

    A graceful ``offline`` and the broker's last-will ``offline`` are the
    same message on the wire and are handled identically.
    """

    def __init__(self, store: Optional[BinStore] = None):
        self.store = store or bin_store

    def handle(self, bin_id: str, raw_payload: bytes) -> bool:
        """Apply a status token. Returns the new online flag.

        Raises:
            MalformedPayloadError: token is neither ``online`` nor ``offline``.
            UnknownBinError: the bin is not provisioned.
        """
        try:
            token = raw_payload.decode("utf-8").strip()
        except UnicodeDecodeError as e:
            raise MalformedPayloadError(f"Undecodable status payload from {bin_id}") from e

        if token not in (ONLINE, OFFLINE):
            raise MalformedPayloadError(f"Unknown status token from {bin_id}: {token!r}")

        is_online = token == ONLINE
        if not self.store.update_bin_presence(bin_id, is_online):
            raise UnknownBinError(bin_id)

        self.store.append_log(LogEntry(
            bin_id=bin_id,
            event_type=EventType.ALERT,
            success=is_online,
            message=f"Device {'connected' if is_online else 'disconnected'}",
        ))
        logger.info(f"{bin_id} is now {token}")
        return is_online


# Global tracker instance
presence_tracker = PresenceTracker()
