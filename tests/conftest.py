import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from echo_admin import auth, marketing
from echo_admin.db import Base, get_db
from echo_admin.exceptions import PushError
from echo_admin.main import app, get_push_client, get_session_factory


class FakePushClient(marketing.PushClient):
    def __init__(self, fail_with=None):
        super().__init__(url="http://push.test/send", api_key="k")
        self.sent = []
        self.fail_with = fail_with

    def send(self, payload):
        if self.fail_with:
            raise PushError(self.fail_with)
        self.sent.append(payload)
        return f"projects/echo/messages/{len(self.sent)}"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autoflush=False, autocommit=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def push_client():
    return FakePushClient()


@pytest.fixture
def client(session_factory, push_client):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_push_client] = lambda: push_client
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login(client, db):
    """Create a staff member with the given role and return auth headers."""
    created = {}

    def _login(role="admin"):
        email = f"{role}@zingfm.com"
        if email not in created:
            auth.create_staff(db, email, role.title(), "secret-pass", role=role)
            created[email] = True
        r = client.post("/auth/login", json={"email": email, "password": "secret-pass"})
        assert r.status_code == 200, r.text
        return {"Authorization": f"Bearer {r.json()['token']}"}

    return _login
