"""Reference polling worker that dispatches claimed commands by type."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from command_queue.errors import (
    CommandNotFoundError,
    InvalidRequestError,
    InvalidTransitionError,
    StorageFailureError,
)
from command_queue.queue.engine import QueueEngine
from command_queue.queue.models import CommandStatus, CommandView, LogEntryWrite

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HandlerOutcome:
    """Explicit handler result when a handler wants to choose status or add logs."""

    status: CommandStatus = CommandStatus.DONE
    result: Any = None
    logs: list[LogEntryWrite] = field(default_factory=list)


CommandHandler = Callable[[CommandView], "HandlerOutcome | Mapping[str, Any] | None"]


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    idle_polls: int = 0


def echo_handler(command: CommandView) -> HandlerOutcome:
    """Return the payload as the result."""

    return HandlerOutcome(
        result=command.payload,
        logs=[LogEntryWrite(message=f"Echoed payload of {command.command_type} command")],
    )


class CommandWorker:
    """Claims commands one at a time, runs the matching handler, reports the outcome."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        engine: QueueEngine,
        handlers: Mapping[str, CommandHandler],
        worker_id: str,
        poll_interval_seconds: float = 2.0,
        report_attempts: int = 3,
        default_handler: CommandHandler | None = None,
    ) -> None:
        self.engine = engine
        self.handlers = dict(handlers)
        self.worker_id = worker_id
        self.poll_interval_seconds = poll_interval_seconds
        self.report_attempts = max(1, report_attempts)
        self.default_handler = default_handler
        self._stop_requested = False

    def run_once(self) -> WorkerRunSummary:
        """Process at most one command from the queue."""

        summary = WorkerRunSummary()
        if self._stop_requested:
            summary.idle_polls = 1
            return summary

        command = self.engine.claim(worker_id=self.worker_id)
        if command is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        status = self._report(command, self._execute(command))
        if status == CommandStatus.DONE:
            summary.succeeded = 1
        else:
            summary.failed = 1
        return summary

    def run_loop(
        self,
        *,
        max_commands: int | None = None,
        max_idle_polls: int | None = 1,
    ) -> WorkerRunSummary:
        """Run until the queue stays idle, ``max_commands`` is reached or a stop signal arrives.

        Args:
            max_commands: Stop after processing this many commands (None = unlimited).
            max_idle_polls: Consecutive empty polls before exiting (None = poll forever).
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while not self._stop_requested:
                if max_commands is not None and aggregate.processed >= max_commands:
                    break

                summary = self.run_once()
                aggregate.processed += summary.processed
                aggregate.succeeded += summary.succeeded
                aggregate.failed += summary.failed
                aggregate.idle_polls += summary.idle_polls

                if summary.processed == 0:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        break
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue
                consecutive_idle = 0
        return aggregate

    def request_stop(self) -> None:
        self._stop_requested = True

    def _execute(self, command: CommandView) -> HandlerOutcome:
        handler = self.handlers.get(command.command_type, self.default_handler)
        if handler is None:
            logger.warning(
                "No handler for command type %s (command_id=%s)",
                command.command_type,
                command.command_id,
            )
            return _failure(f"No handler registered for type {command.command_type!r}")

        try:
            returned = handler(command)
        except Exception as error:  # noqa: BLE001
            logger.warning("Handler failed for command %s: %s", command.command_id, error)
            return _failure(f"{type(error).__name__}: {error}")

        if isinstance(returned, HandlerOutcome):
            return returned
        return HandlerOutcome(result=returned)

    def _report(self, command: CommandView, outcome: HandlerOutcome) -> CommandStatus:
        try:
            self._complete_with_retries(command, outcome)
        except (InvalidTransitionError, CommandNotFoundError) as error:
            # Completed or deleted by someone else while the handler ran.
            logger.warning("Could not report command %s: %s", command.command_id, error)
            return CommandStatus.FAILED
        except InvalidRequestError as error:
            logger.warning("Handler output rejected for command %s: %s", command.command_id, error)
            return self._report(command, _failure(f"Invalid handler output: {error}"))
        return outcome.status

    def _complete_with_retries(self, command: CommandView, outcome: HandlerOutcome) -> None:
        for attempt in range(1, self.report_attempts + 1):
            try:
                self.engine.complete(
                    command.command_id,
                    outcome.status,
                    result=outcome.result,
                    logs=outcome.logs,
                )
                return
            except StorageFailureError:
                if attempt >= self.report_attempts:
                    raise
                logger.warning(
                    "Reporting command %s failed (attempt %d/%d), retrying",
                    command.command_id,
                    attempt,
                    self.report_attempts,
                )
                self._sleep_with_stop(self.poll_interval_seconds)

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            logger.info("Stop requested by signal %s", signal.Signals(signum).name)
            self.request_stop()

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def _failure(message: str) -> HandlerOutcome:
    return HandlerOutcome(
        status=CommandStatus.FAILED,
        result={"error": message},
        logs=[LogEntryWrite(level="ERROR", message=message)],
    )
