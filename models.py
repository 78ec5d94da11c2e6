"""Database models for bins, RFID credentials and the event log."""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, ForeignKey, Enum
from sqlalchemy.sql import func
from database import Base
import enum


class BinMode(str, enum.Enum):
    """Lid operating mode."""
    AUTO = "AUTO"  # Proximity opens the lid
    AUTH = "AUTH"  # RFID authorization required


class UserRole(str, enum.Enum):
    """Credential holder roles."""
    ADMIN = "admin"
    USER = "user"


class EventType(str, enum.Enum):
    """Event classes recorded in the audit log."""
    RFID_SCAN = "rfid_scan"
    LID_OPEN = "lid_open"
    LID_CLOSE = "lid_close"
    LEVEL_UPDATE = "level_update"
    ALERT = "alert"
    CONFIG_CHANGE = "config_change"


class Bin(Base):
    """Smart bin device."""
    __tablename__ = "bins"

    id = Column(Integer, primary_key=True, index=True)
    bin_id = Column(String(50), unique=True, nullable=False, index=True)  # MQTT topic identifier e.g. BIN_01
    name = Column(String(100), nullable=False)
    location = Column(String(200), nullable=True)
    capacity_cm = Column(Integer, default=200)  # Total height
    mode = Column(Enum(BinMode), nullable=False, default=BinMode.AUTO)
    threshold_cm = Column(Integer, default=50)  # Proximity threshold for AUTO mode
    is_online = Column(Boolean, default=False)
    last_seen = Column(DateTime(timezone=True), nullable=True)
    current_level_percent = Column(Integer, default=0)
    current_distance_cm = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class User(Base):
    """RFID credential holder."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    rfid_uid = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), nullable=True)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.USER)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class EventLog(Base):
    """Append-only access and event log."""
    __tablename__ = "logs"

    id = Column(Integer, primary_key=True, index=True)
    bin_id = Column(String(50), ForeignKey("bins.bin_id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(Enum(EventType), nullable=False, index=True)
    rfid_uid = Column(String(50), nullable=True, index=True)
    user_name = Column(String(100), nullable=True)  # Resolved holder name
    level_percent = Column(Integer, nullable=True)
    distance_cm = Column(Integer, nullable=True)
    success = Column(Boolean, default=True)
    message = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)
