import os
import sys
from typing import Generator
from unittest.mock import Mock

import pytest
from _pytest.monkeypatch import MonkeyPatch

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# settings are read when the app modules are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SEED_ON_STARTUP"] = "0"
os.environ["CACHE_BACKEND"] = "memory"
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.engine import Engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from src.weather_api import models  # noqa: E402,F401
from src.weather_api.cache import MemoryCache  # noqa: E402
from src.weather_api.db import Base, get_db  # noqa: E402
from src.weather_api.main import app, get_cache  # noqa: E402
from src.weather_api.seed import seed  # noqa: E402

from tests.factories import T0  # noqa: E402


@pytest.fixture  # type: ignore[misc]
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory SQLite database with the schema created."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)
        eng.dispose()


@pytest.fixture  # type: ignore[misc]
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture  # type: ignore[misc]
def db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture  # type: ignore[misc]
def cache() -> MemoryCache:
    return MemoryCache(ttl_seconds=300)


@pytest.fixture  # type: ignore[misc]
def seeded(db: Session) -> Session:
    """Database holding the demo cities and readings anchored at T0."""
    seed(db, now=T0)
    return db


@pytest.fixture  # type: ignore[misc]
def client(
    session_factory: sessionmaker, cache: MemoryCache
) -> Generator[TestClient, None, None]:
    """API client wired to the test database and cache (lifespan not run)."""

    def _get_db() -> Generator[Session, None, None]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_cache] = lambda: cache
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture  # type: ignore[misc]
def seeded_client(client: TestClient, seeded: Session) -> TestClient:
    return client


@pytest.fixture  # type: ignore[misc]
def mock_redis() -> Mock:
    """Redis client mock exposing the commands the cache uses."""
    r = Mock()
    r.get = Mock(return_value=None)
    r.setex = Mock(return_value=True)
    r.exists = Mock(return_value=0)
    return r


@pytest.fixture  # type: ignore[misc]
def env_vars(monkeypatch: MonkeyPatch):
    """Set environment variables for the duration of a test."""

    def _setter(mapping) -> None:
        for k, v in mapping.items():
            monkeypatch.setenv(k, str(v))

    return _setter
