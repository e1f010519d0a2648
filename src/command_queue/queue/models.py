"""Domain models for the command queue."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

DEFAULT_LOG_LEVEL = "INFO"


class CommandStatus(str, Enum):
    """Durable command lifecycle states."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({CommandStatus.DONE, CommandStatus.FAILED})


@dataclass(slots=True, frozen=True)
class CommandView:
    """Readable command record returned by every engine operation."""

    command_id: str
    command_type: str
    payload: Any
    status: CommandStatus
    result: Any | None
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "command_id": self.command_id,
            "type": self.command_type,
            "payload": self.payload,
            "status": self.status.value,
            "result": self.result,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(slots=True, frozen=True)
class LogEntryWrite:
    """One worker-supplied log line attached on completion."""

    level: str = DEFAULT_LOG_LEVEL
    message: str = ""


@dataclass(slots=True, frozen=True)
class LogEntryView:
    """Stored log entry."""

    entry_id: int
    command_id: str
    level: str
    message: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.entry_id,
            "command_id": self.command_id,
            "level": self.level,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class CommandDetails:
    """Command with its log trail in insertion order."""

    command: CommandView
    logs: list[LogEntryView]
