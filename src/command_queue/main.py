"""CLI entrypoint for command-queue."""

from __future__ import annotations

import logging
from collections.abc import Callable

import rich_click as click
import uvicorn

from command_queue import __version__
from command_queue.api.app import create_app
from command_queue.config import Settings
from command_queue.errors import CommandQueueError
from command_queue.queue.controllers import (
    ClaimCommand,
    CompleteCommand,
    ListCommand,
    QueueCliController,
    ShowCommand,
    SubmitCommand,
    WorkerCommand,
)

click.rich_click.USE_MARKDOWN = True
QUEUE_CONTROLLER = QueueCliController()

database_url_option = click.option(
    "--database-url",
    default=None,
    help="SQLAlchemy database URL. Defaults to COMMAND_QUEUE_DATABASE_URL or a local SQLite file.",
)


@click.group()
@click.version_option(version=__version__, prog_name="command-queue")
@click.option(
    "--log-level",
    envvar="COMMAND_QUEUE_LOG_LEVEL",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Log level for diagnostic output on stderr.",
)
def command_queue(log_level: str) -> None:
    """Durable command queue CLI."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@command_queue.command("init-db")
@database_url_option
def init_db(database_url: str | None) -> None:
    """Apply schema migrations."""

    _emit_lines(_run(lambda: QUEUE_CONTROLLER.init_db(database_url)))


@command_queue.command("submit")
@database_url_option
@click.argument("command_id")
@click.argument("command_type")
@click.option("--payload", default=None, help="JSON payload, for example '{\"a\": 1}'.")
def submit(
    database_url: str | None,
    command_id: str,
    command_type: str,
    payload: str | None,
) -> None:
    """Submit a command. Re-submitting the same id and payload is a no-op."""

    _emit_lines(
        _run(
            lambda: QUEUE_CONTROLLER.submit(
                SubmitCommand(
                    database_url=database_url,
                    command_id=command_id,
                    command_type=command_type,
                    payload=payload,
                ),
            ),
        ),
    )


@command_queue.command("show")
@database_url_option
@click.argument("command_id")
def show(database_url: str | None, command_id: str) -> None:
    """Show one command and its log trail."""

    _emit_lines(
        _run(
            lambda: QUEUE_CONTROLLER.show(
                ShowCommand(database_url=database_url, command_id=command_id),
            ),
        ),
    )


@command_queue.command("list")
@database_url_option
@click.option(
    "--status",
    type=click.Choice(["PENDING", "RUNNING", "DONE", "FAILED"], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max number of commands to print.",
)
def list_commands(database_url: str | None, status: str | None, limit: int) -> None:
    """List recent commands, newest first."""

    _emit_lines(
        _run(
            lambda: QUEUE_CONTROLLER.list_commands(
                ListCommand(database_url=database_url, status=status, limit=limit),
            ),
        ),
    )


@command_queue.command("claim")
@database_url_option
@click.option("--worker-id", default=None, help="Worker id recorded in the claim log entry.")
def claim(database_url: str | None, worker_id: str | None) -> None:
    """Claim the oldest pending command and mark it RUNNING."""

    _emit_lines(
        _run(
            lambda: QUEUE_CONTROLLER.claim(
                ClaimCommand(database_url=database_url, worker_id=worker_id),
            ),
        ),
    )


@command_queue.command("complete")
@database_url_option
@click.argument("command_id")
@click.argument("status", type=click.Choice(["DONE", "FAILED"], case_sensitive=False))
@click.option("--result", default=None, help="JSON result.")
@click.option(
    "--log",
    "logs",
    multiple=True,
    help="Log entry as LEVEL:MESSAGE (or just MESSAGE for INFO). Can be repeated.",
)
def complete(
    database_url: str | None,
    command_id: str,
    status: str,
    result: str | None,
    logs: tuple[str, ...],
) -> None:
    """Report the terminal status of a running command."""

    _emit_lines(
        _run(
            lambda: QUEUE_CONTROLLER.complete(
                CompleteCommand(
                    database_url=database_url,
                    command_id=command_id,
                    status=status.upper(),
                    result=result,
                    logs=logs,
                ),
            ),
        ),
    )


@command_queue.command("delete")
@database_url_option
@click.argument("command_id")
def delete(database_url: str | None, command_id: str) -> None:
    """Delete a command and its logs (administrative)."""

    _emit_lines(_run(lambda: QUEUE_CONTROLLER.delete(database_url, command_id)))


@command_queue.command("worker")
@database_url_option
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Process at most one command.",
)
@click.option(
    "--max-commands",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after processing this many commands.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=0),
    default=1,
    show_default=True,
    help="Exit after this many consecutive empty polls (0 = poll forever).",
)
def worker(
    database_url: str | None,
    once: bool,
    max_commands: int | None,
    max_idle_polls: int,
) -> None:
    """Run the reference worker with the built-in `echo` handler."""

    _emit_lines(
        _run(
            lambda: QUEUE_CONTROLLER.run_worker(
                WorkerCommand(
                    database_url=database_url,
                    once=once,
                    max_commands=max_commands,
                    max_idle_polls=max_idle_polls or None,
                ),
            ),
        ),
    )


@command_queue.command("serve")
@database_url_option
@click.option("--host", default=None, help="Bind host. Defaults to COMMAND_QUEUE_API_HOST.")
@click.option("--port", type=click.IntRange(1, 65535), default=None, help="Bind port.")
def serve(database_url: str | None, host: str | None, port: int | None) -> None:
    """Serve the HTTP API with uvicorn."""

    try:
        settings = Settings.from_env(database_url=database_url)
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    if not settings.api.token:
        click.echo(
            "COMMAND_QUEUE_API_TOKEN is not set; every /commands request will be rejected.",
            err=True,
        )
    uvicorn.run(
        create_app(settings),
        host=host or settings.api.host,
        port=port or settings.api.port,
        log_level=logging.getLevelName(logging.getLogger().getEffectiveLevel()).lower(),
    )


def _run(action: Callable[[], list[str]]) -> list[str]:
    try:
        return action()
    except (CommandQueueError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    command_queue()
