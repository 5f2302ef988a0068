"""Pytest configuration and fixtures for counter engine tests."""

import os
import tempfile
from pathlib import Path
from uuid import uuid4

# the app module builds its settings on import; keep its database out of the repo
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{Path(tempfile.mkdtemp()) / 'knitcount-test.db'}",
)
os.environ.setdefault("ENABLE_PROMETHEUS_METRICS", "true")

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from knitcount import models  # noqa: F401
from knitcount.core.config import Settings
from knitcount.db import Base, enable_sqlite_foreign_keys
from knitcount.domain.counters import CounterCreate
from knitcount.domain.projects import ProjectContext, ProjectCreate
from knitcount.services.counter_events import CounterEventBroker
from knitcount.services.engine import CounterEngine


def create_tables(path: Path) -> None:
    """Create the schema with a throwaway sync engine."""
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "counters.db"
    create_tables(path)
    return path


@pytest.fixture
def session_factory(db_path):
    """Async session factory over a temporary SQLite file.

    NullPool opens a fresh connection per session, so the factory is safe to use
    from whichever event loop a test runs in.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    enable_sqlite_foreign_keys(engine)
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def settings():
    return Settings(CASCADE_MAX_DEPTH=32, SYNC_QUEUE_MAXSIZE=256)


@pytest.fixture
def broker(settings):
    return CounterEventBroker(maxsize=settings.sync_queue_maxsize)


@pytest.fixture
def engine(session_factory, broker, settings):
    return CounterEngine(session_factory, broker, settings=settings)


@pytest.fixture
def user_id():
    return uuid4()


@pytest_asyncio.fixture
async def project(engine, user_id):
    """A project owned by ``user_id``, as the context every engine call takes."""
    created = await engine.create_project(user_id, ProjectCreate(name="Cabled Sweater"))
    return ProjectContext(user_id=user_id, project_id=created.id)


@pytest.fixture
def make_counter(engine, project):
    """Factory creating counters in the test project."""

    async def _make(name: str = "Rows", **fields):
        counter, _ = await engine.create_counter(project, CounterCreate(name=name, **fields))
        return counter

    return _make
