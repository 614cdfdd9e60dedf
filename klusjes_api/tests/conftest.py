"""Shared fixtures: in-memory database, temporary photo directory, test client."""

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from klusjes_api import models  # noqa: F401
from klusjes_api.database import get_engine, get_session
from klusjes_api.main import app
from klusjes_api.uploads import PhotoStore, get_photo_store


@pytest.fixture(name="engine")
def engine_fixture():
    """Create a fresh in-memory database for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture(name="photo_store")
def photo_store_fixture(tmp_path):
    return PhotoStore(tmp_path / "uploads")


@pytest.fixture(name="client")
def client_fixture(engine, session: Session, photo_store: PhotoStore):
    """Create a test client with overridden database session and photo directory."""
    def get_session_override():
        yield session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_photo_store] = lambda: photo_store
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="room")
def room_fixture(client: TestClient) -> dict:
    response = client.post("/api/rooms/", json={"name": "Keuken"})
    assert response.status_code == 201
    return response.json()
