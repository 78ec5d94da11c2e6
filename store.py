"""Record store for bins, credentials and the event log.

Every public method runs in its own transaction so that concurrent handlers
for the same bin never interleave a read-modify-write: field updates are a
single ``UPDATE ... WHERE bin_id = ?`` (last writer wins) and log entries are
plain inserts.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from database import Base, SessionLocal, db_session_scope, engine
from error_handler import StoreUnavailableError
from models import Bin, BinMode, EventLog, EventType, User

logger = logging.getLogger(__name__)

# Fields an administrative config update may touch
ALLOWED_CONFIG_FIELDS = ("mode", "threshold_cm", "capacity_cm", "name", "location")


@dataclass(frozen=True)
class BinRecord:
    """Detached snapshot of a bin row."""
    bin_id: str
    name: str
    location: Optional[str]
    capacity_cm: int
    mode: BinMode
    threshold_cm: int
    is_online: bool
    last_seen: Optional[datetime]
    current_level_percent: int
    current_distance_cm: int

    @property
    def status(self) -> str:
        if self.current_level_percent >= 80:
            return "critical"
        if self.current_level_percent >= 60:
            return "warning"
        return "normal"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bin_id": self.bin_id,
            "name": self.name,
            "location": self.location,
            "capacity_cm": self.capacity_cm,
            "mode": self.mode.value,
            "threshold_cm": self.threshold_cm,
            "is_online": self.is_online,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
            "current_level_percent": self.current_level_percent,
            "current_distance_cm": self.current_distance_cm,
            "status": self.status,
        }


@dataclass(frozen=True)
class CredentialRecord:
    """Detached snapshot of an RFID credential."""
    rfid_uid: str
    name: str
    role: str
    is_active: bool
    email: Optional[str] = None


@dataclass
class LogEntry:
    """Event log entry to append. Immutable once written."""
    bin_id: str
    event_type: EventType
    rfid_uid: Optional[str] = None
    user_name: Optional[str] = None
    level_percent: Optional[int] = None
    distance_cm: Optional[int] = None
    success: bool = True
    message: Optional[str] = None
    timestamp: Optional[datetime] = field(default=None)


def _bin_record(row: Bin) -> BinRecord:
    return BinRecord(
        bin_id=row.bin_id,
        name=row.name,
        location=row.location,
        capacity_cm=row.capacity_cm,
        mode=row.mode,
        threshold_cm=row.threshold_cm,
        is_online=bool(row.is_online),
        last_seen=row.last_seen,
        current_level_percent=row.current_level_percent or 0,
        current_distance_cm=row.current_distance_cm or 0,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BinStore:
    """SQLAlchemy-backed record store."""

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    def _scope(self):
        return db_session_scope(self._session_factory)

    def check_connection(self) -> None:
        """Create tables and verify the database is reachable.

        Raises:
            StoreUnavailableError: the database cannot be reached.
        """
        try:
            bind = self._session_factory.kw.get("bind") or engine
            Base.metadata.create_all(bind=bind)
            with self._scope() as db:
                db.query(Bin.id).first()
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Record store unreachable: {e}") from e

    def get_bin(self, bin_id: str) -> Optional[BinRecord]:
        with self._scope() as db:
            row = db.query(Bin).filter(Bin.bin_id == bin_id).one_or_none()
            return _bin_record(row) if row else None

    def list_bins(self) -> List[BinRecord]:
        with self._scope() as db:
            return [_bin_record(row) for row in db.query(Bin).order_by(Bin.bin_id).all()]

    def get_credential(self, rfid_uid: str) -> Optional[CredentialRecord]:
        """Active credential for a scanned code, or None."""
        with self._scope() as db:
            user = db.query(User).filter(
                User.rfid_uid == rfid_uid,
                User.is_active == True
            ).one_or_none()
            if user is None:
                return None
            return CredentialRecord(
                rfid_uid=user.rfid_uid,
                name=user.name,
                role=user.role.value,
                is_active=bool(user.is_active),
                email=user.email,
            )

    def update_bin_telemetry(self, bin_id: str, level_percent: int, distance_cm: float) -> bool:
        with self._scope() as db:
            result = db.execute(
                update(Bin)
                .where(Bin.bin_id == bin_id)
                .values(
                    current_level_percent=int(round(level_percent)),
                    current_distance_cm=int(round(distance_cm)),
                    last_seen=_utcnow(),
                )
            )
            return result.rowcount > 0

    def update_bin_presence(self, bin_id: str, is_online: bool) -> bool:
        with self._scope() as db:
            result = db.execute(
                update(Bin)
                .where(Bin.bin_id == bin_id)
                .values(is_online=is_online, last_seen=_utcnow())
            )
            return result.rowcount > 0

    def update_bin_config(self, bin_id: str, updates: Dict[str, Any]) -> bool:
        """Persist allowed config fields only.

        Raises:
            ValueError: no allowed field present in ``updates``.
        """
        values = {k: v for k, v in updates.items() if k in ALLOWED_CONFIG_FIELDS}
        if not values:
            raise ValueError("No valid fields to update")
        if "mode" in values:
            values["mode"] = BinMode(values["mode"])
        values["updated_at"] = _utcnow()
        with self._scope() as db:
            result = db.execute(update(Bin).where(Bin.bin_id == bin_id).values(**values))
            return result.rowcount > 0

    def append_log(self, entry: LogEntry) -> None:
        with self._scope() as db:
            row = EventLog(
                bin_id=entry.bin_id,
                event_type=entry.event_type,
                rfid_uid=entry.rfid_uid,
                user_name=entry.user_name,
                level_percent=entry.level_percent,
                distance_cm=entry.distance_cm,
                success=entry.success,
                message=entry.message,
            )
            if entry.timestamp is not None:
                row.timestamp = entry.timestamp
            db.add(row)

    def get_logs(self, bin_id: Optional[str] = None, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        """Log entries, newest first."""
        with self._scope() as db:
            query = db.query(EventLog)
            if bin_id:
                query = query.filter(EventLog.bin_id == bin_id)
            rows = (
                query.order_by(EventLog.timestamp.desc(), EventLog.id.desc())
                .limit(limit)
                .offset(offset)
                .all()
            )
            return [
                {
                    "id": row.id,
                    "bin_id": row.bin_id,
                    "event_type": row.event_type.value,
                    "rfid_uid": row.rfid_uid,
                    "user_name": row.user_name,
                    "level_percent": row.level_percent,
                    "distance_cm": row.distance_cm,
                    "success": bool(row.success),
                    "message": row.message,
                    "timestamp": row.timestamp.isoformat() if row.timestamp else None,
                }
                for row in rows
            ]


# Global store instance
bin_store = BinStore()


def get_store() -> BinStore:
    """FastAPI dependency returning the record store."""
    return bin_store
