"""Shared pytest fixtures for Invitely."""

from __future__ import annotations

import os
import sys
import tempfile
from datetime import date, time, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("INVITELY_DATA_DIR", tempfile.mkdtemp(prefix="invitely-tests-"))

from invitely import api, database, storage
from invitely.assets import AssetStore, BlobRegistry
from invitely.gateway import Actor, ChangeFeed, StoreGateway
from invitely.models import Base


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables and wizard sessions between tests."""

    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    api.wizard_sessions.clear()
    yield


@pytest.fixture()
def gateway() -> StoreGateway:
    return StoreGateway(ChangeFeed())


@pytest.fixture()
def owner(gateway: StoreGateway) -> StoreGateway:
    return gateway.for_actor(Actor(id="owner-1"))


@pytest.fixture()
def assets(tmp_path) -> AssetStore:
    return AssetStore(tmp_path / "assets", "http://testserver/assets")


@pytest.fixture()
def blobs() -> BlobRegistry:
    return BlobRegistry()


@pytest.fixture()
def future_day() -> date:
    return date.today() + timedelta(days=30)


def event_values(day: date, **overrides) -> dict:
    values = {
        "title": "Garden Party",
        "description": "Bring a chair.",
        "cover_image": "1700000000000-abcd1234.jpg",
        "date": day,
        "start_time": time(19, 0),
        "end_time": time(21, 30),
        "location": "12 Elm Street",
        "owner_id": "owner-1",
    }
    values.update(overrides)
    return values


@pytest.fixture()
def make_event(owner: StoreGateway, future_day: date):
    def _make(**overrides) -> dict:
        return owner.insert("events", event_values(future_day, **overrides))[0]

    return _make


@pytest.fixture()
def event(make_event) -> dict:
    return make_event()
