"""Controllers for queue CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from command_queue.config import Settings
from command_queue.errors import InvalidRequestError
from command_queue.queue.engine import QueueEngine
from command_queue.queue.models import CommandStatus, CommandView, LogEntryWrite
from command_queue.queue.worker import CommandWorker, echo_handler
from command_queue.storage.database import Database


@dataclass(slots=True)
class SubmitCommand:
    """CLI input for command submission."""

    database_url: str | None
    command_id: str
    command_type: str
    payload: str | None


@dataclass(slots=True)
class ShowCommand:
    """CLI input for command inspection."""

    database_url: str | None
    command_id: str


@dataclass(slots=True)
class ListCommand:
    """CLI input for command listing."""

    database_url: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class ClaimCommand:
    """CLI input for a single manual claim."""

    database_url: str | None
    worker_id: str | None


@dataclass(slots=True)
class CompleteCommand:
    """CLI input for reporting a terminal result."""

    database_url: str | None
    command_id: str
    status: str
    result: str | None
    logs: tuple[str, ...]


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for worker execution."""

    database_url: str | None
    once: bool
    max_commands: int | None
    max_idle_polls: int | None


class QueueCliController:
    """Coordinates engine and worker operations for the CLI."""

    def init_db(self, database_url: str | None) -> list[str]:
        settings = Settings.from_env(database_url=database_url)
        with _engine(settings):
            pass
        return [f"Schema is up to date: {settings.database_url}"]

    def submit(self, command: SubmitCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        payload = _parse_json("--payload", command.payload)
        with _engine(settings) as engine:
            submitted = engine.submit(command.command_id, command.command_type, payload)
        return [
            "Command submitted: "
            f"command_id={submitted.command_id} type={submitted.command_type} "
            f"status={submitted.status.value}",
        ]

    def show(self, command: ShowCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        with _engine(settings) as engine:
            details = engine.get_details(command.command_id)

        lines = _render_command(details.command)
        lines.append(f"Logs: {len(details.logs)}")
        for entry in details.logs:
            lines.append(f"  {entry.created_at.isoformat()} {entry.level} {entry.message}")
        return lines

    def list_commands(self, command: ListCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        status_filter = _parse_status(command.status)
        with _engine(settings) as engine:
            commands = engine.list_commands(status=status_filter, limit=command.limit)

        lines = [f"Commands: {len(commands)}"]
        for item in commands:
            lines.append(
                f"  {item.command_id} type={item.command_type} status={item.status.value} "
                f"created_at={item.created_at.isoformat()}",
            )
        return lines

    def claim(self, command: ClaimCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        with _engine(settings) as engine:
            claimed = engine.claim(worker_id=command.worker_id)
        if claimed is None:
            return ["Queue is empty."]
        return _render_command(claimed)

    def complete(self, command: CompleteCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        result = _parse_json("--result", command.result)
        logs = [_parse_log_option(value) for value in command.logs]
        with _engine(settings) as engine:
            completed = engine.complete(command.command_id, command.status, result, logs)
        return [
            f"Command completed: command_id={completed.command_id} "
            f"status={completed.status.value}",
        ]

    def delete(self, database_url: str | None, command_id: str) -> list[str]:
        settings = Settings.from_env(database_url=database_url)
        with _engine(settings) as engine:
            engine.delete(command_id)
        return [f"Command deleted: {command_id}"]

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        with _engine(settings) as engine:
            worker = CommandWorker(
                engine=engine,
                handlers={"echo": echo_handler},
                worker_id=settings.worker.worker_id,
                poll_interval_seconds=settings.worker.poll_interval_seconds,
                report_attempts=settings.worker.report_attempts,
            )
            summary = (
                worker.run_once()
                if command.once
                else worker.run_loop(
                    max_commands=command.max_commands,
                    max_idle_polls=command.max_idle_polls,
                )
            )

        return [
            "Worker summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} idle_polls={summary.idle_polls}",
        ]


def _render_command(command: CommandView) -> list[str]:
    return [
        f"Command: {command.command_id}",
        f"Type: {command.command_type}",
        f"Status: {command.status.value}",
        f"Payload: {json.dumps(command.payload, ensure_ascii=False, sort_keys=True)}",
        "Result: "
        + (
            json.dumps(command.result, ensure_ascii=False, sort_keys=True)
            if command.result is not None
            else "-"
        ),
        f"Created: {command.created_at.isoformat()}",
        f"Updated: {command.updated_at.isoformat()}",
    ]


def _parse_json(option: str, raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as error:
        raise InvalidRequestError(f"{option} is not valid JSON: {error.msg}") from error


def _parse_status(raw: str | None) -> CommandStatus | None:
    if raw is None:
        return None
    try:
        return CommandStatus(raw.upper())
    except ValueError as error:
        raise InvalidRequestError(f"Unsupported status filter: {raw}") from error


def _parse_log_option(raw: str) -> LogEntryWrite:
    level, separator, message = raw.partition(":")
    if not separator:
        return LogEntryWrite(message=raw)
    return LogEntryWrite(level=level.strip().upper() or "INFO", message=message.strip())


@contextmanager
def _engine(settings: Settings) -> Iterator[QueueEngine]:
    database = Database(
        settings.database_url,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    database.init_schema()
    try:
        yield QueueEngine(database)
    finally:
        database.close()
