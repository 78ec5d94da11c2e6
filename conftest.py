"""Shared pytest fixtures: in-memory SQLite store and a recording MQTT client."""
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")

from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, db_session_scope
from metrics import metrics
from models import Bin, BinMode, User, UserRole
from mqtt_command_service import MQTTCommandService
from store import BinStore


class FakeMQTTClient:
    """Records publishes and subscriptions instead of talking to a broker."""

    def __init__(self, rc: int = 0):
        self.rc = rc
        self.published = []
        self.subscribed = []
        self.will = None
        self.connected_to = None
        self.loop_started = False
        self.disconnected = False

    def username_pw_set(self, username, password=None):
        self.credentials = (username, password)

    def will_set(self, topic, payload=None, qos=0, retain=False):
        self.will = SimpleNamespace(topic=topic, payload=payload, qos=qos, retain=retain)

    def reconnect_delay_set(self, min_delay=1, max_delay=120):
        self.reconnect_delay = (min_delay, max_delay)

    def publish(self, topic, payload=None, qos=0, retain=False):
        self.published.append(SimpleNamespace(topic=topic, payload=payload, qos=qos, retain=retain))
        return SimpleNamespace(rc=self.rc, mid=len(self.published))

    def subscribe(self, topic, qos=0):
        self.subscribed.append((topic, qos))
        return (0, len(self.subscribed))

    def connect(self, host, port=1883, keepalive=60):
        self.connected_to = (host, port, keepalive)
        return 0

    def loop_start(self):
        self.loop_started = True

    def loop_stop(self):
        self.loop_started = False

    def disconnect(self):
        self.disconnected = True

    def topics(self, suffix: str):
        return [p for p in self.published if p.topic.endswith(suffix)]


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    """Store seeded with two bins and three credentials (one inactive)."""
    with db_session_scope(session_factory) as db:
        db.add_all([
            Bin(bin_id="B1", name="Lobby Bin", location="Lobby", capacity_cm=200,
                mode=BinMode.AUTO, threshold_cm=50),
            Bin(bin_id="B2", name="Cafeteria Bin", location="Cafeteria", capacity_cm=180,
                mode=BinMode.AUTH, threshold_cm=40),
            User(rfid_uid="A1B2C3D4", name="John Doe", email="john@example.com", role=UserRole.USER),
            User(rfid_uid="04A1B2C3D4E5F6", name="Admin User", role=UserRole.ADMIN),
            User(rfid_uid="CAFEBABE", name="Former Staff", role=UserRole.USER, is_active=False),
        ])
    return BinStore(session_factory)


@pytest.fixture
def mqtt_client():
    return FakeMQTTClient()


@pytest.fixture
def publisher(mqtt_client):
    return MQTTCommandService(client=mqtt_client, namespace="smartbin")
