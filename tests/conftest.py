import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.chats import get_responder
from api.main import app
from api.security import SessionRegistry, get_sessions
from db.models import Base
from db.session import get_db


class FakeResponder:
    """Stands in for AIResponder; records what it was asked."""

    model = "test-model"

    def __init__(self, reply="Hi there!", error=None, healthy=True):
        self.reply = reply
        self.error = error
        self.healthy = healthy
        self.calls = []

    def generate(self, user_message, recent_history=()):
        self.calls.append((user_message, list(recent_history)))
        if self.error is not None:
            raise self.error
        return self.reply

    def test_connection(self):
        if self.healthy:
            return True, None
        return False, "ConnectionError: connection refused"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def responder():
    return FakeResponder()


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def client(session_factory, responder, registry):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_responder] = lambda: responder
    app.dependency_overrides[get_sessions] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_client(client):
    resp = client.post("/auth/register", json={
        "email": "ada@example.com",
        "password": "s3cret-pass",
        "name": "Ada",
        "username": "ada",
    })
    assert resp.status_code == 201
    return client
