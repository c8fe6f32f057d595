"""
Pytest configuration and fixtures

Tests run against an in-memory SQLite database (one shared connection, see
core.database). The schema is created fresh for every test and dropped
afterwards, so nothing leaks between tests.

Notifications never reach Celery: the dispatcher is swapped for a recording
fake, both for service-level tests and for the FastAPI dependency.
"""
import os
import sys
from datetime import timedelta
from uuid import uuid4

import pytest

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-at-least-32-chars")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["EMAIL_ENABLED"] = "false"
os.environ.setdefault("LOG_FORMAT", "text")

from fastapi.testclient import TestClient

from core.database import Base, SessionLocal, engine
from core.security import create_access_token
from main import app
from models import CareCircleConnection, CheckinResponse, MoodEntry, User, utcnow
from services.care_circle import CareCircleService, SharedDataGateway
from services.care_circle.notifications import NotificationDispatcher, get_notification_dispatcher


class RecordingDispatcher(NotificationDispatcher):
    """Keeps every queued notification in memory instead of publishing it."""

    def __init__(self):
        self.sent = []
        super().__init__(publisher=self._record, timeout_s=5)

    def _record(self, kind, to_email, context, timeout_s):
        self.sent.append({"kind": kind, "to": to_email, "context": context})

    def kinds(self):
        return [notification["kind"] for notification in self.sent]


class StepClock:
    """
    Callable clock for services. Every read moves time on by one second so
    audit entries get distinct timestamps; advance() jumps past invite expiry.
    """

    def __init__(self, now=None, step=timedelta(seconds=1)):
        self.now = now or utcnow()
        self.step = step

    def __call__(self):
        self.now = self.now + self.step
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def service(db_session, dispatcher, clock):
    return CareCircleService(db_session, dispatcher, clock=clock)


@pytest.fixture
def gateway(db_session, service):
    return SharedDataGateway(db_session, audit=service.audit, store=service.store)


@pytest.fixture
def client(dispatcher):
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    def _make(email=None, display_name=None):
        user = User(
            email=email or f"user_{uuid4().hex[:10]}@example.com",
            display_name=display_name,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def patient(make_user):
    return make_user(email="patient@example.com", display_name="Pat Jones")


@pytest.fixture
def trusted_user(make_user):
    return make_user(email="trusted@x.com", display_name="Terry Trusted")


@pytest.fixture
def outsider(make_user):
    return make_user(email="outsider@example.com", display_name="Olive Outsider")


@pytest.fixture
def active_connection(service, patient, trusted_user):
    """A data_only connection already accepted by trusted_user."""

    def _make(tier="data_only", trusted=None):
        trusted = trusted or trusted_user
        connection = service.invitations.invite(patient, trusted.email, name="Terry", tier=tier)
        connection, _ = service.state_machine.accept(connection.invite_token, trusted)
        return connection

    return _make


@pytest.fixture
def add_checkin(db_session):
    def _add(user, created_at=None, **kwargs):
        defaults = dict(
            user_id=user.id,
            check_in_text="Slept badly, work was a lot today.",
            mood_rating="okay",
            stress_level=5,
            selected_emotions=["tired"],
            ai_analysis={
                "sentiment": "neutral",
                "keywords": ["sleep", "work"],
                "suggestions": ["Try a short walk"],
                "risk_level": "low",
            },
            created_at=created_at or utcnow(),
        )
        defaults.update(kwargs)
        checkin = CheckinResponse(**defaults)
        db_session.add(checkin)
        db_session.commit()
        return checkin

    return _add


@pytest.fixture
def add_mood(db_session):
    def _add(user, created_at=None, score=0.5, label="positive"):
        created_at = created_at or utcnow()
        mood = MoodEntry(
            user_id=user.id,
            sentiment_score=score,
            sentiment_label=label,
            check_in_date=created_at.date(),
            created_at=created_at,
        )
        db_session.add(mood)
        db_session.commit()
        return mood

    return _add


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.id), "email": user.email})
    return {"Authorization": f"Bearer {token}"}


def reload_connection(db_session, connection_id) -> CareCircleConnection:
    db_session.expire_all()
    return db_session.get(CareCircleConnection, connection_id)
