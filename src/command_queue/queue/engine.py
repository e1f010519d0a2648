"""Submission, claim and completion protocols on top of the command store."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy.exc import IntegrityError

from command_queue.errors import (
    CommandNotFoundError,
    InvalidRequestError,
    InvalidTransitionError,
    PayloadConflictError,
    StorageFailureError,
)
from command_queue.queue.log_sink import LogSink
from command_queue.queue.models import (
    DEFAULT_LOG_LEVEL,
    TERMINAL_STATUSES,
    CommandDetails,
    CommandStatus,
    CommandView,
    LogEntryWrite,
)
from command_queue.queue.store import CommandStore, canonical_json, to_command_view
from command_queue.storage.database import Database

logger = logging.getLogger(__name__)

CLAIM_LOG_MESSAGE = "Command claimed by worker"
MAX_IDENTIFIER_LENGTH = 255


class QueueEngine:
    """Idempotent submit, exactly-once claim and guarded completion.

    The engine keeps no state of its own: every guarantee comes from the
    transaction and row-lock semantics of the database behind ``database``.
    """

    def __init__(
        self,
        database: Database,
        *,
        store: CommandStore | None = None,
        log_sink: LogSink | None = None,
    ) -> None:
        self.database = database
        self.store = store or CommandStore()
        self.log_sink = log_sink or LogSink()

    def submit(self, command_id: str, command_type: str, payload: Any = None) -> CommandView:
        """Create a PENDING command, or return the existing one with the same payload.

        Raises:
            InvalidRequestError: ``command_id``/``command_type`` empty or payload not JSON.
            PayloadConflictError: the id is taken by a command with another payload.
            StorageFailureError: the transaction failed and was rolled back.
        """

        _require_identifier("command_id", command_id)
        _require_identifier("type", command_type)
        payload_json = _to_json("payload", payload)

        try:
            return self._submit_once(command_id, command_type, payload_json)
        except StorageFailureError as error:
            if not isinstance(error.__cause__, IntegrityError):
                raise
            logger.info("Concurrent submit won the insert for %s, re-reading", command_id)
        return self._submit_once(command_id, command_type, payload_json)

    def _submit_once(self, command_id: str, command_type: str, payload_json: str) -> CommandView:
        with self.database.transaction() as session:
            row = self.store.get(session, command_id)
            if row is not None:
                if row.payload_json != payload_json:
                    logger.warning("Payload conflict for command %s", command_id)
                    raise PayloadConflictError(command_id)
                return to_command_view(row)

            row = self.store.insert(
                session,
                command_id=command_id,
                command_type=command_type,
                payload_json=payload_json,
            )
            created = to_command_view(row)
        logger.info("Command submitted: command_id=%s type=%s", command_id, command_type)
        return created

    def lookup(self, command_id: str) -> CommandView:
        """Return the command or raise ``CommandNotFoundError``."""

        with self.database.transaction() as session:
            row = self.store.get(session, command_id)
            if row is None:
                raise CommandNotFoundError(command_id)
            return to_command_view(row)

    def get_details(self, command_id: str) -> CommandDetails:
        """Return the command together with its log trail."""

        with self.database.transaction() as session:
            row = self.store.get(session, command_id)
            if row is None:
                raise CommandNotFoundError(command_id)
            return CommandDetails(
                command=to_command_view(row),
                logs=self.log_sink.list_for_command(session, command_id),
            )

    def list_commands(
        self,
        *,
        status: CommandStatus | None = None,
        limit: int = 50,
    ) -> list[CommandView]:
        """List recent commands, newest first, optionally filtered by status."""

        with self.database.transaction() as session:
            rows = self.store.list_recent(session, status=status, limit=limit)
            return [to_command_view(row) for row in rows]

    def claim(self, worker_id: str | None = None) -> CommandView | None:
        """Atomically move the oldest PENDING command to RUNNING and return it.

        Returns ``None`` when nothing is pending. Rows locked by a concurrent
        claim are skipped rather than waited on; if the guarded update still
        loses a race the selection is retried in a fresh transaction.
        """

        message = CLAIM_LOG_MESSAGE if not worker_id else f"{CLAIM_LOG_MESSAGE} {worker_id}"
        while True:
            with self.database.transaction() as session:
                row = self.store.next_pending(session)
                if row is None:
                    return None
                moved = self.store.transition(
                    session,
                    row,
                    from_status=CommandStatus.PENDING,
                    to_status=CommandStatus.RUNNING,
                )
                if not moved:
                    session.rollback()
                    continue
                self.log_sink.append(
                    session,
                    command_id=row.command_id,
                    level=DEFAULT_LOG_LEVEL,
                    message=message,
                )
                claimed = to_command_view(row)
            logger.info("Command claimed: command_id=%s worker=%s", claimed.command_id, worker_id)
            return claimed

    def complete(
        self,
        command_id: str,
        status: CommandStatus | str,
        result: Any = None,
        logs: Iterable[LogEntryWrite | Mapping[str, Any]] | None = None,
    ) -> CommandView:
        """Record the terminal outcome of a RUNNING command and append its logs.

        Completing a command that already holds the same terminal status and
        result is a no-op that returns the stored record, so a worker may
        safely repeat the call after a lost response. Any other source state
        raises ``InvalidTransitionError``.
        """

        _require_identifier("command_id", command_id)
        target = _parse_terminal_status(status)
        result_json = _to_json("result", result)
        entries = _normalize_logs(logs)

        while True:
            with self.database.transaction() as session:
                row = self.store.get(session, command_id, for_update=True)
                if row is None:
                    raise CommandNotFoundError(command_id)

                current = CommandStatus(row.status)
                if current in TERMINAL_STATUSES:
                    if current == target and row.result_json == result_json:
                        logger.info("Completion replayed for command %s", command_id)
                        return to_command_view(row)
                    raise InvalidTransitionError(command_id, current.value, target.value)
                if current != CommandStatus.RUNNING:
                    raise InvalidTransitionError(command_id, current.value, target.value)

                moved = self.store.transition(
                    session,
                    row,
                    from_status=CommandStatus.RUNNING,
                    to_status=target,
                    result_json=result_json,
                )
                if not moved:
                    session.rollback()
                    continue
                for entry in entries:
                    self.log_sink.append(
                        session,
                        command_id=command_id,
                        level=entry.level,
                        message=entry.message,
                    )
                completed = to_command_view(row)
            logger.info(
                "Command completed: command_id=%s status=%s logs=%d",
                command_id,
                target.value,
                len(entries),
            )
            return completed

    def delete(self, command_id: str) -> None:
        """Administrative removal of a command and, by cascade, its logs."""

        with self.database.transaction() as session:
            if not self.store.delete(session, command_id):
                raise CommandNotFoundError(command_id)
        logger.info("Command deleted: command_id=%s", command_id)


def _require_identifier(field: str, value: object) -> None:
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequestError(f"{field} is required and must be a non-empty string.")
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise InvalidRequestError(f"{field} must be at most {MAX_IDENTIFIER_LENGTH} characters.")


def _to_json(field: str, value: Any) -> str:
    try:
        serialized = canonical_json(value)
        # Lone surrogates survive json.dumps but cannot be stored as UTF-8.
        serialized.encode("utf-8")
    except (TypeError, ValueError) as error:
        raise InvalidRequestError(f"{field} must be JSON-serializable: {error}") from error
    return serialized


def _parse_terminal_status(status: CommandStatus | str) -> CommandStatus:
    try:
        parsed = CommandStatus(status)
    except ValueError as error:
        message = f"Invalid status: {status!r}. Expected DONE or FAILED."
        raise InvalidRequestError(message) from error
    if parsed not in TERMINAL_STATUSES:
        raise InvalidRequestError(f"Invalid status: {parsed.value}. Expected DONE or FAILED.")
    return parsed


def _normalize_logs(
    logs: Iterable[LogEntryWrite | Mapping[str, Any]] | None,
) -> list[LogEntryWrite]:
    if logs is None:
        return []
    if isinstance(logs, (str, bytes, Mapping)) or not isinstance(logs, Iterable):
        raise InvalidRequestError("logs must be a list of {level, message} objects.")

    entries: list[LogEntryWrite] = []
    for index, item in enumerate(logs):
        if isinstance(item, LogEntryWrite):
            level, message = item.level, item.message
        elif isinstance(item, Mapping):
            level, message = item.get("level"), item.get("message")
        else:
            raise InvalidRequestError(f"logs[{index}] must be an object with level and message.")
        if level is not None and not isinstance(level, str):
            raise InvalidRequestError(f"logs[{index}].level must be a string.")
        if message is not None and not isinstance(message, str):
            raise InvalidRequestError(f"logs[{index}].message must be a string.")
        entries.append(LogEntryWrite(level=level or DEFAULT_LOG_LEVEL, message=message or ""))
    return entries
