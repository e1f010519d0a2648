"""Runtime configuration for the command queue."""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass, field
from pathlib import Path

from command_queue.storage.common import sqlite_url

DEFAULT_DB_PATH = Path(".command_queue.db")


@dataclass(slots=True)
class WorkerSettings:
    """Reference worker settings."""

    worker_id: str = field(default_factory=lambda: f"{socket.gethostname()}-{os.getpid()}")
    poll_interval_seconds: float = 2.0
    report_attempts: int = 3


@dataclass(slots=True)
class ApiSettings:
    """HTTP surface settings."""

    token: str = ""
    host: str = "127.0.0.1"
    port: int = 3000


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    database_url: str = sqlite_url(DEFAULT_DB_PATH)
    sqlite_busy_timeout_ms: int = 5000
    log_level: str = "INFO"
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    api: ApiSettings = field(default_factory=ApiSettings)

    @classmethod
    def from_env(cls, database_url: str | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        worker_defaults = WorkerSettings()
        settings = cls(
            database_url=database_url or _database_url_from_env(),
            sqlite_busy_timeout_ms=_env_int("COMMAND_QUEUE_SQLITE_BUSY_TIMEOUT_MS", 5000),
            log_level=os.getenv("COMMAND_QUEUE_LOG_LEVEL", "INFO").strip().upper(),
            worker=WorkerSettings(
                worker_id=os.getenv("COMMAND_QUEUE_WORKER_ID", "").strip()
                or worker_defaults.worker_id,
                poll_interval_seconds=_env_float("COMMAND_QUEUE_POLL_INTERVAL_SECONDS", 2.0),
                report_attempts=_env_int("COMMAND_QUEUE_REPORT_ATTEMPTS", 3),
            ),
            api=ApiSettings(
                token=os.getenv("COMMAND_QUEUE_API_TOKEN", ""),
                host=os.getenv("COMMAND_QUEUE_API_HOST", "127.0.0.1"),
                port=_env_int("COMMAND_QUEUE_API_PORT", 3000),
            ),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise ``ValueError`` if any setting is out of range."""

        if not self.database_url.strip():
            raise ValueError("COMMAND_QUEUE_DATABASE_URL must not be empty.")
        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("COMMAND_QUEUE_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"Invalid COMMAND_QUEUE_LOG_LEVEL: {self.log_level!r}")
        if self.worker.poll_interval_seconds < 0:
            raise ValueError("COMMAND_QUEUE_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.worker.report_attempts < 1:
            raise ValueError("COMMAND_QUEUE_REPORT_ATTEMPTS must be >= 1.")
        if not 0 < self.api.port < 65536:
            raise ValueError("COMMAND_QUEUE_API_PORT must be between 1 and 65535.")


def _database_url_from_env() -> str:
    url = os.getenv("COMMAND_QUEUE_DATABASE_URL", "").strip()
    if url:
        return url
    return sqlite_url(Path(os.getenv("COMMAND_QUEUE_DB_PATH", str(DEFAULT_DB_PATH))))


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid numeric value for {name}: {value!r}") from error
