import os

# Must be set before pocketledger.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from pocketledger.core.security import hash_password
from pocketledger.database import get_session, init_db
from pocketledger.main import app
from pocketledger.models.user import User


NOW = datetime(2026, 3, 15, 12, 0, 0)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


def make_user(session, email="ana@example.com", currency="USD"):
    user = User(email=email, hashed_password=hash_password("secret123"), default_currency=currency)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def user(session):
    return make_user(session)


@pytest.fixture
def client(engine):
    def override_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    yield TestClient(app)
    app.dependency_overrides.clear()


def login(client, email="ana@example.com", password="secret123", currency="USD"):
    resp = client.post("/auth/register", json={"email": email, "password": password, "default_currency": currency})
    assert resp.status_code == 201, resp.text
    resp = client.post("/auth/token", data={"username": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest.fixture
def auth_headers(client):
    return login(client)
