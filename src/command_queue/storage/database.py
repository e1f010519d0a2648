"""Explicit storage handle shared by the engine, the worker and the API."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from command_queue.errors import StorageFailureError
from command_queue.storage.alembic_runner import upgrade_head
from command_queue.storage.common import build_engine

logger = logging.getLogger(__name__)


class Database:
    """Owns the SQLAlchemy engine and hands out transactional sessions."""

    def __init__(self, database_url: str, *, sqlite_busy_timeout_ms: int = 5000) -> None:
        self.database_url = database_url
        self.engine = build_engine(database_url, busy_timeout_ms=sqlite_busy_timeout_ms)

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        upgrade_head(self.database_url)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on any error.

        SQLAlchemy errors are re-raised as ``StorageFailureError`` with the
        original exception chained.
        """

        session = Session(self.engine, expire_on_commit=False)
        try:
            yield session
            session.commit()
        except SQLAlchemyError as error:
            session.rollback()
            logger.warning("Transaction rolled back: %s", error.__class__.__name__)
            raise StorageFailureError(f"Storage failure: {error}") from error
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
