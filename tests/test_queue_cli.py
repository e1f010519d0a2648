from __future__ import annotations

from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from command_queue import main
from command_queue.main import command_queue
from command_queue.storage.common import sqlite_url

pytestmark = [
    allure.epic("Command Queue"),
    allure.feature("CLI"),
]


@pytest.fixture()
def cli_db(tmp_path: Path) -> list[str]:
    return ["--database-url", sqlite_url(tmp_path / "cli.db")]


def _invoke(args: list[str]):  # noqa: ANN202
    return CliRunner().invoke(command_queue, args)


def test_init_db_applies_schema(cli_db: list[str]) -> None:
    result = _invoke(["init-db", *cli_db])

    assert result.exit_code == 0, result.output
    assert "Schema is up to date" in result.output


def test_full_command_lifecycle(cli_db: list[str]) -> None:
    submitted = _invoke(["submit", *cli_db, "cmd-1", "render", "--payload", '{"a": 1}'])
    assert submitted.exit_code == 0, submitted.output
    assert "Command submitted: command_id=cmd-1 type=render status=PENDING" in submitted.output

    claimed = _invoke(["claim", *cli_db, "--worker-id", "cli-worker"])
    assert claimed.exit_code == 0, claimed.output
    assert "Command: cmd-1" in claimed.output
    assert "Status: RUNNING" in claimed.output
    assert 'Payload: {"a": 1}' in claimed.output

    completed = _invoke(
        [
            "complete",
            *cli_db,
            "cmd-1",
            "done",
            "--result",
            '{"ok": true}',
            "--log",
            "rendered",
            "--log",
            "warn:slow template",
        ],
    )
    assert completed.exit_code == 0, completed.output
    assert "Command completed: command_id=cmd-1 status=DONE" in completed.output

    shown = _invoke(["show", *cli_db, "cmd-1"])
    assert shown.exit_code == 0, shown.output
    assert "Status: DONE" in shown.output
    assert 'Result: {"ok": true}' in shown.output
    assert "Logs: 3" in shown.output
    assert "INFO Command claimed by worker cli-worker" in shown.output
    assert "INFO rendered" in shown.output
    assert "WARN slow template" in shown.output


def test_claim_on_empty_queue(cli_db: list[str]) -> None:
    result = _invoke(["claim", *cli_db])

    assert result.exit_code == 0, result.output
    assert "Queue is empty." in result.output


def test_submit_payload_conflict_exits_non_zero(cli_db: list[str]) -> None:
    assert _invoke(["submit", *cli_db, "x", "t", "--payload", '{"a": 1}']).exit_code == 0

    result = _invoke(["submit", *cli_db, "x", "t", "--payload", '{"a": 2}'])

    assert result.exit_code != 0
    assert "different payload" in result.output


def test_submit_rejects_invalid_json(cli_db: list[str]) -> None:
    result = _invoke(["submit", *cli_db, "x", "t", "--payload", "{not json"])

    assert result.exit_code != 0
    assert "--payload is not valid JSON" in result.output


def test_complete_of_pending_command_is_rejected(cli_db: list[str]) -> None:
    _invoke(["submit", *cli_db, "x", "t"])

    result = _invoke(["complete", *cli_db, "x", "FAILED"])

    assert result.exit_code != 0
    assert "from status PENDING" in result.output


def test_show_unknown_command(cli_db: list[str]) -> None:
    result = _invoke(["show", *cli_db, "missing"])

    assert result.exit_code != 0
    assert "Command not found: missing" in result.output


def test_list_filters_by_status(cli_db: list[str]) -> None:
    for command_id in ("a", "b", "c"):
        _invoke(["submit", *cli_db, command_id, "t"])
    _invoke(["claim", *cli_db])

    everything = _invoke(["list", *cli_db])
    running = _invoke(["list", *cli_db, "--status", "running"])

    assert "Commands: 3" in everything.output
    assert everything.output.index("  c ") < everything.output.index("  a ")
    assert "Commands: 1" in running.output
    assert "  a type=t status=RUNNING" in running.output


def test_delete_removes_command(cli_db: list[str]) -> None:
    _invoke(["submit", *cli_db, "x", "t"])

    deleted = _invoke(["delete", *cli_db, "x"])
    again = _invoke(["delete", *cli_db, "x"])

    assert deleted.exit_code == 0
    assert "Command deleted: x" in deleted.output
    assert again.exit_code != 0


def test_worker_processes_echo_commands(cli_db: list[str]) -> None:
    _invoke(["submit", *cli_db, "e1", "echo", "--payload", '{"n": 1}'])
    _invoke(["submit", *cli_db, "u1", "unknown"])

    result = _invoke(["worker", *cli_db])

    assert result.exit_code == 0, result.output
    assert "processed=2 succeeded=1 failed=1 idle_polls=1" in result.output
    shown = _invoke(["show", *cli_db, "e1"])
    assert 'Result: {"n": 1}' in shown.output


def test_worker_once_processes_single_command(cli_db: list[str]) -> None:
    _invoke(["submit", *cli_db, "e1", "echo"])
    _invoke(["submit", *cli_db, "e2", "echo"])

    result = _invoke(["worker", *cli_db, "--once"])

    assert "processed=1 succeeded=1" in result.output
    remaining = _invoke(["list", *cli_db, "--status", "PENDING"])
    assert "  e2 " in remaining.output


def test_serve_runs_uvicorn_with_settings(
    cli_db: list[str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    calls: list[dict] = []
    monkeypatch.setenv("COMMAND_QUEUE_API_TOKEN", "secret")
    monkeypatch.delenv("COMMAND_QUEUE_API_HOST", raising=False)
    monkeypatch.setattr(main.uvicorn, "run", lambda app, **kwargs: calls.append(kwargs))

    result = _invoke(["serve", *cli_db, "--port", "8123"])

    assert result.exit_code == 0, result.output
    assert calls[0]["port"] == 8123
    assert calls[0]["host"] == "127.0.0.1"
