"""Pytest fixtures."""

import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["RESUME_SESSIONS_ON_STARTUP"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from raksha.core.deps import get_engine
from raksha.core.errors import NotificationError
from raksha.core.ws_manager import ws_manager
from raksha.db.base import Base
from raksha.db.session import get_db
from raksha.main import app
from raksha.models import CheckinSession, Contact, LocationLog, Recording, SosAlert, User  # noqa: F401 - register for create_all
from raksha.services.checkin_engine import CheckinEngine
from raksha.services.location_provider import DeviceLocationProvider, PositionFix
from raksha.services.notification_gateway import DeliveryReport, DeliveryResult
from raksha.services.recording_service import RecordingService

TEST_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeLocationProvider:
    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.position = (12.9716, 77.5946)
        self.error: Exception | None = None
        self.requests = 0
        self.forgotten: list[int] = []

    async def get_current_position(self, owner_id: int) -> PositionFix:
        self.requests += 1
        if self.error is not None:
            raise self.error
        latitude, longitude = self.position
        return PositionFix(latitude=latitude, longitude=longitude, accuracy_m=8.0, captured_at=self.clock())

    def forget(self, owner_id: int) -> None:
        self.forgotten.append(owner_id)


@dataclass
class SentMessage:
    latitude: float
    longitude: float
    phones: list[str]
    sender_name: str
    critical: bool


class FakeGateway:
    def __init__(self) -> None:
        self.sent: list[SentMessage] = []
        self.fail = False
        self.closed = False

    async def send(self, latitude, longitude, recipients, sender_name, critical=False) -> DeliveryReport:
        if self.fail:
            raise NotificationError("gateway down")
        self.sent.append(SentMessage(latitude, longitude, [r.phone for r in recipients], sender_name, critical))
        return DeliveryReport(results=[DeliveryResult(phone=r.phone, success=True) for r in recipients])

    async def aclose(self) -> None:
        self.closed = True


class FakeEvents:
    """Stands in for the WebSocket manager and keeps every pushed event."""

    def __init__(self) -> None:
        self.sent: list[tuple[int, str, dict]] = []
        self.connected = True

    def is_connected(self, owner_id: int) -> bool:
        return self.connected

    async def send_to_user(self, owner_id: int, event: str, data) -> int:
        self.sent.append((owner_id, event, data))
        return 1 if self.connected else 0

    def names(self) -> list[str]:
        return [event for _, event, _ in self.sent]


class FakeScheduler:
    """Records timer requests without starting tasks."""

    def __init__(self) -> None:
        self.scheduled: dict[int, float] = {}
        self.cancelled: list[int] = []

    def schedule(self, session_id: int, interval_seconds: float) -> None:
        self.scheduled.setdefault(session_id, interval_seconds)

    def is_scheduled(self, session_id: int) -> bool:
        return session_id in self.scheduled

    @property
    def scheduled_sessions(self) -> list[int]:
        return list(self.scheduled)

    async def cancel(self, session_id: int) -> None:
        if self.scheduled.pop(session_id, None) is not None:
            self.cancelled.append(session_id)

    async def shutdown(self) -> None:
        for session_id in list(self.scheduled):
            await self.cancel(session_id)


@dataclass
class Harness:
    engine: CheckinEngine
    clock: FakeClock
    location: FakeLocationProvider
    gateway: FakeGateway
    events: FakeEvents
    scheduler: FakeScheduler
    recordings_dir: Path


@pytest.fixture(scope="session")
def setup_db():
    """Create tables once for test session."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_user(setup_db):
    """Insert a user (and optional contacts) directly; returns the user id."""

    def _make(full_name: str = "Asha Rao", phones: tuple[str, ...] = ()) -> int:
        with TestingSessionLocal() as db:
            user = User(email=f"{uuid.uuid4().hex[:12]}@raksha.dev", hashed_password="x", full_name=full_name)
            db.add(user)
            db.flush()
            for i, phone in enumerate(phones, start=1):
                db.add(Contact(owner_id=user.id, name=f"Contact {i}", phone=phone))
            db.commit()
            return user.id

    return _make


@pytest.fixture
def load_session(setup_db):
    def _load(session_id: int) -> CheckinSession:
        with TestingSessionLocal() as db:
            return db.get(CheckinSession, session_id)

    return _load


@pytest.fixture
def harness_factory(setup_db, tmp_path):
    """Builds check-in engines wired to fakes and a manual clock."""

    def _build(abandon_after_seconds: int = 60 * 60 * 24) -> Harness:
        clock = FakeClock()
        location = FakeLocationProvider(clock)
        gateway = FakeGateway()
        events = FakeEvents()
        scheduler = FakeScheduler()
        recordings_dir = tmp_path / "recordings"
        checkin_engine = CheckinEngine(
            TestingSessionLocal,
            location_provider=location,
            gateway=gateway,
            recorder=RecordingService(TestingSessionLocal, recordings_dir, clock=clock),
            events=events,
            clock=clock,
            monitor_period_seconds=30,
            location_timeout_seconds=1,
            abandon_after_seconds=abandon_after_seconds,
            scheduler=scheduler,
        )
        return Harness(checkin_engine, clock, location, gateway, events, scheduler, recordings_dir)

    return _build


@pytest.fixture
def harness(harness_factory):
    """Check-in engine wired to fakes and a manual clock."""
    return harness_factory()


@pytest.fixture
def api_engine(setup_db, tmp_path):
    """Engine used by the HTTP tests: real device location provider, no timers."""
    return CheckinEngine(
        TestingSessionLocal,
        location_provider=DeviceLocationProvider(ws_manager, max_age_seconds=60),
        gateway=FakeGateway(),
        recorder=RecordingService(TestingSessionLocal, tmp_path / "recordings"),
        events=ws_manager,
        scheduler=FakeScheduler(),
    )


@pytest.fixture
def client(setup_db, api_engine):
    """Test client with overridden DB and check-in engine."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_engine] = lambda: api_engine
    with TestClient(app) as c:
        app.state.checkin_engine = api_engine
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def signup(client):
    """Register and log in a fresh user; returns the auth headers."""

    def _signup(full_name: str = "Asha Rao") -> dict[str, str]:
        email = f"{uuid.uuid4().hex[:12]}@raksha.dev"
        client.post("/auth/register", json={"email": email, "password": "pass1234", "full_name": full_name})
        token = client.post("/auth/login", json={"email": email, "password": "pass1234"}).json()["access_token"]
        return {"Authorization": f"Bearer {token}"}

    return _signup


@pytest.fixture
def session_factory(setup_db):
    return TestingSessionLocal
