"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest
from sqlalchemy import text

from command_queue.queue.engine import QueueEngine
from command_queue.storage.common import is_sqlite_url, sqlite_url
from command_queue.storage.database import Database


@pytest.fixture()
def database_url(tmp_path: Path) -> str:
    """SQLite file per test, or the server named by COMMAND_QUEUE_TEST_DATABASE_URL."""

    return os.getenv("COMMAND_QUEUE_TEST_DATABASE_URL") or sqlite_url(tmp_path / "queue.db")


@pytest.fixture()
def database(database_url: str) -> Iterator[Database]:
    db = Database(database_url)
    db.init_schema()
    if not is_sqlite_url(database_url):
        with db.engine.begin() as connection:
            connection.execute(text("TRUNCATE command_logs, commands RESTART IDENTITY CASCADE"))
    yield db
    db.close()


@pytest.fixture()
def engine(database: Database) -> QueueEngine:
    return QueueEngine(database)
