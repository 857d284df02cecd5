from datetime import timedelta

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from event_registry.core.clock import utcnow
from event_registry.database.db import Base, get_db, make_engine
from event_registry.main import app
from event_registry.models.events import Event


@pytest.fixture
def engine(tmp_path):
    """A file-backed SQLite database per test, so threads get real separate connections."""
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory) -> Session:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client(session_factory):
    # Override the database dependency
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def fake_redis():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture(autouse=True)
def redis_client(fake_redis, monkeypatch):
    """Route the per-event locks to fakeredis."""
    monkeypatch.setattr("event_registry.services.locks.get_redis_client", lambda: fake_redis)
    return fake_redis


@pytest.fixture
def make_event(db_session: Session):
    """Insert an event row directly, bypassing the directory's validation."""

    def _make(**overrides) -> Event:
        now = utcnow()
        fields = {
            "name": "Tech Conference",
            "location": "Mumbai, India",
            "start_time": now + timedelta(days=7),
            "end_time": now + timedelta(days=7, hours=8),
            "max_capacity": 10,
            "current_attendees": 0,
            "timezone": "UTC",
        }
        fields.update(overrides)
        event = Event(**fields)
        db_session.add(event)
        db_session.commit()
        db_session.refresh(event)
        return event

    return _make
