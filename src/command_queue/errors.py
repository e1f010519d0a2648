"""Error taxonomy shared by the engine, the CLI and the HTTP surface."""

from __future__ import annotations


class CommandQueueError(Exception):
    """Base class for all queue errors."""

    retryable: bool = False


class InvalidRequestError(CommandQueueError, ValueError):
    """A required field is missing or malformed. Nothing was mutated."""


class InvalidTransitionError(InvalidRequestError):
    """Complete was called on a command that cannot move to the requested state."""

    def __init__(self, command_id: str, current_status: str, requested_status: str) -> None:
        super().__init__(
            f"Command {command_id} cannot be completed as {requested_status} "
            f"from status {current_status}.",
        )
        self.command_id = command_id
        self.current_status = current_status
        self.requested_status = requested_status


class PayloadConflictError(CommandQueueError):
    """A command with this id already exists with a different payload."""

    def __init__(self, command_id: str) -> None:
        super().__init__(
            f"Command {command_id} already exists with a different payload. "
            "Use a new command_id.",
        )
        self.command_id = command_id


class CommandNotFoundError(CommandQueueError, LookupError):
    """No command with the given id exists."""

    def __init__(self, command_id: str) -> None:
        super().__init__(f"Command not found: {command_id}")
        self.command_id = command_id


class StorageFailureError(CommandQueueError):
    """Transaction or connection failure; the transaction was rolled back."""

    retryable = True
