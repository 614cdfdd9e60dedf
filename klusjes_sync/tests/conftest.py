"""Fixtures for the sync client: a live in-process API, storage, cache and log."""

import httpx
import pytest
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from klusjes_api import models  # noqa: F401
from klusjes_api.database import get_engine, get_session
from klusjes_api.main import app
from klusjes_api.uploads import PhotoStore, get_photo_store
from klusjes_sync.api_client import KlusjesApi
from klusjes_sync.cache import ClientCache
from klusjes_sync.pending import PendingOperationsLog
from klusjes_sync.storage import MemoryStorage

BASE_URL = "http://klusjes.test"


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="server")
def server_fixture(engine, tmp_path):
    """The real FastAPI app on an in-memory database, one session per request."""
    photo_store = PhotoStore(tmp_path / "uploads")

    def get_session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_photo_store] = lambda: photo_store
    yield app
    app.dependency_overrides.clear()


@pytest.fixture(name="api")
def api_fixture(server):
    return KlusjesApi(BASE_URL, transport=httpx.ASGITransport(app=server))


@pytest.fixture(name="clock")
def clock_fixture():
    return FakeClock()


@pytest.fixture(name="storage")
def storage_fixture():
    return MemoryStorage()


@pytest.fixture(name="cache")
def cache_fixture(storage, clock):
    return ClientCache(storage, clock=clock, pending_ttl=30)


@pytest.fixture(name="pending")
def pending_fixture(storage):
    return PendingOperationsLog(storage)
