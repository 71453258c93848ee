"""Shared pytest fixtures for RSVPDesk."""

from __future__ import annotations

import asyncio
import os
import sys
import tempfile
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Settings load at import time; keep data and media out of the working tree.
os.environ.setdefault("RSVPDESK_BASE_DIR", tempfile.mkdtemp(prefix="rsvpdesk-tests-"))
os.environ["RSVPDESK_ENABLE_SCHEDULER"] = "false"

from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker

from rsvpdesk import database
from rsvpdesk.models import Base


@pytest.fixture(scope="session", autouse=True)
def configure_test_db(tmp_path_factory):
    """Point every module at one throwaway SQLite file.

    A file (not ``:memory:``) so store worker threads each get their own
    connection.
    """

    db_path = tmp_path_factory.mktemp("db") / "rsvpdesk-test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
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
    database.DATABASE_URL = str(engine.url)
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()
    engine.dispose()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Poll until ``predicate()`` holds; snapshots arrive asynchronously."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)
