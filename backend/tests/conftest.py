import os
import threading
from datetime import datetime, timedelta

# Background jobs stay off for the app under test; tests drive ticks directly
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["LIFECYCLE_SCHEDULER_ENABLED"] = "false"
os.environ["CLEANUP_AGENT_ENABLED"] = "false"
os.environ.pop("LIFECYCLE_API_KEY", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session, create_engine  # noqa: E402

from app.config import LifecycleSettings  # noqa: E402
from app.database import get_session, init_db  # noqa: E402
from app.lifecycle import build_runtime, get_runtime  # noqa: E402
from app.main import app  # noqa: E402
from app.models.host_profile import HostProfile  # noqa: E402
from app.models.tournament import Tournament  # noqa: E402
from app.services.host_directory import HostDirectory  # noqa: E402
from app.services.tournament_store import TournamentStore  # noqa: E402

# Fixed reference instant for every lifecycle test (naive UTC)
NOW = datetime(2026, 3, 15, 12, 0, 0)


class FrozenClock:
    """Controllable clock; call it to read the time."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeSender:
    """Stands in for TwilioService; records every send."""

    def __init__(self, fail_for=(), raise_for=()):
        self.fail_for = set(fail_for)
        self.raise_for = set(raise_for)
        self.sent = []
        self._lock = threading.Lock()

    def send_sms(self, to: str, body: str) -> dict:
        if to in self.raise_for:
            raise ConnectionError(f"gateway unreachable for {to}")
        with self._lock:
            self.sent.append((to, body))
        if to in self.fail_for:
            return {"sid": None, "status": "failed", "error": "carrier rejected"}
        return {"sid": f"SM{len(self.sent):04d}", "status": "queued", "error": None}

    @property
    def recipients(self):
        return [to for to, _ in self.sent]


# ============================================================================
# Each test gets its own file-backed SQLite database so worker threads get
# real separate connections (an in-memory StaticPool shares one connection).
# ============================================================================


@pytest.fixture(name="engine")
def engine_fixture(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'lifecycle.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def settings():
    return LifecycleSettings(
        scheduler_enabled=False,
        cleanup_enabled=False,
        notification_max_workers=4,
        # Long intervals: started jobs never fire during a test
        cleanup_normal_seconds=3600,
        cleanup_aggressive_seconds=3600,
        cleanup_ultra_seconds=3600,
        cleanup_backstop_seconds=3600,
    )


@pytest.fixture
def store(engine):
    return TournamentStore(engine)


@pytest.fixture
def directory(engine):
    return HostDirectory(engine)


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def make_tournament(store):
    """Insert a tournament; start_offset is relative to NOW."""

    def _make(name="Sunday Squad Cup", start_offset=timedelta(hours=1), **fields):
        fields.setdefault("host_id", "host-1")
        tournament = Tournament(name=name, start_time=NOW + start_offset, **fields)
        return store.add(tournament)

    return _make


@pytest.fixture
def make_host(session):
    def _make(host_id="host-1", phone="9013593035", **fields):
        profile = HostProfile(id=host_id, phone=phone, **fields)
        session.add(profile)
        session.commit()
        return profile

    return _make


@pytest.fixture
def runtime(engine, settings, sender, clock):
    runtime = build_runtime(engine, settings=settings, sender=sender, clock=clock)
    yield runtime
    runtime.stop()


@pytest.fixture(name="client")
def client_fixture(engine, runtime):
    """Test client wired to the per-test engine and runtime

    Overrides MUST be set BEFORE TestClient() and stay in place
    for the entire duration.
    """

    def override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_runtime] = lambda: runtime

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
