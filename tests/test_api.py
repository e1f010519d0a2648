from __future__ import annotations

from collections.abc import Iterator

import allure
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from command_queue.api.app import create_app
from command_queue.config import ApiSettings, Settings
from command_queue.queue.engine import CLAIM_LOG_MESSAGE
from command_queue.queue.log_sink import LogSink
from command_queue.storage.common import sqlite_url
from command_queue.storage.database import Database

pytestmark = [
    allure.epic("Command Queue"),
    allure.feature("HTTP API"),
]

TOKEN = "test-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture()
def client(database: Database) -> Iterator[TestClient]:
    app = create_app(Settings(api=ApiSettings(token=TOKEN)), database=database)
    with TestClient(app) as test_client:
        yield test_client


def _submit(client: TestClient, command_id: str, payload: object = None) -> dict:
    body: dict = {"command_id": command_id, "type": "render"}
    if payload is not None:
        body["payload"] = payload
    response = client.post("/commands", json=body, headers=AUTH)
    assert response.status_code == 200, response.text
    return response.json()


def test_health_needs_no_token(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.parametrize(
    "headers",
    [{}, {"Authorization": "Bearer wrong"}, {"Authorization": TOKEN}, {"Authorization": "Basic x"}],
)
def test_commands_require_bearer_token(client: TestClient, headers: dict) -> None:
    response = client.post("/commands", json={"command_id": "x", "type": "t"}, headers=headers)

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


def test_unset_token_rejects_every_request(database: Database) -> None:
    app = create_app(Settings(api=ApiSettings(token="")), database=database)
    with TestClient(app) as client:
        response = client.get("/commands/x", headers={"Authorization": "Bearer "})

    assert response.status_code == 401


def test_submit_returns_command_and_is_idempotent(client: TestClient) -> None:
    first = _submit(client, "cmd-1", {"a": 1})
    second = _submit(client, "cmd-1", {"a": 1})

    assert first["command_id"] == "cmd-1"
    assert first["type"] == "render"
    assert first["payload"] == {"a": 1}
    assert first["status"] == "PENDING"
    assert first["result"] is None
    assert second == first


def test_submit_payload_conflict_is_409(client: TestClient) -> None:
    _submit(client, "x", {"a": 1})

    response = client.post(
        "/commands",
        json={"command_id": "x", "type": "render", "payload": {"a": 2}},
        headers=AUTH,
    )

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "Payload conflict"
    assert body["retryable"] is False
    assert "different payload" in body["message"]


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"command_id": "x"},
        {"type": "t"},
        {"command_id": "", "type": "t"},
        {"command_id": 5, "type": "t"},
    ],
)
def test_submit_missing_fields_is_400(client: TestClient, body: dict) -> None:
    response = client.post("/commands", json=body, headers=AUTH)

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request"


def test_malformed_json_body_is_400(client: TestClient) -> None:
    response = client.post(
        "/commands",
        content=b"{not json",
        headers={**AUTH, "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["retryable"] is False


def test_submit_with_unstorable_string_is_400(client: TestClient) -> None:
    response = client.post(
        "/commands",
        content=b'{"command_id": "s", "type": "t", "payload": {"a": "\\ud800"}}',
        headers={**AUTH, "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request"


def test_get_unknown_command_is_404(client: TestClient) -> None:
    response = client.get("/commands/missing", headers=AUTH)

    assert response.status_code == 404
    assert response.json()["message"] == "Command not found: missing"


def test_claim_returns_204_when_queue_is_empty(client: TestClient) -> None:
    response = client.post("/commands/next", headers=AUTH)

    assert response.status_code == 204
    assert response.content == b""


def test_claim_complete_and_read_logs(client: TestClient) -> None:
    _submit(client, "cmd-1", {"a": 1})

    claimed = client.post("/commands/next", headers=AUTH)
    assert claimed.status_code == 200
    assert claimed.json()["command_id"] == "cmd-1"
    assert claimed.json()["status"] == "RUNNING"

    completed = client.post(
        "/commands/cmd-1/result",
        json={
            "status": "DONE",
            "result": {"ok": True},
            "logs": [{"level": "INFO", "message": "done"}],
        },
        headers=AUTH,
    )
    assert completed.status_code == 200
    assert completed.json() == {"success": True}

    command = client.get("/commands/cmd-1", headers=AUTH).json()
    assert command["status"] == "DONE"
    assert command["result"] == {"ok": True}

    logs = client.get("/commands/cmd-1/logs", headers=AUTH).json()
    assert [entry["message"] for entry in logs] == [CLAIM_LOG_MESSAGE, "done"]
    assert logs[0]["id"] < logs[1]["id"]
    assert all(entry["command_id"] == "cmd-1" for entry in logs)


def test_complete_with_invalid_status_is_400(client: TestClient) -> None:
    _submit(client, "cmd-1")
    client.post("/commands/next", headers=AUTH)

    response = client.post("/commands/cmd-1/result", json={"status": "BOGUS"}, headers=AUTH)

    assert response.status_code == 400
    assert client.get("/commands/cmd-1", headers=AUTH).json()["status"] == "RUNNING"


def test_complete_of_pending_command_is_409(client: TestClient) -> None:
    _submit(client, "cmd-1")

    response = client.post("/commands/cmd-1/result", json={"status": "DONE"}, headers=AUTH)

    assert response.status_code == 409
    assert response.json()["error"] == "Invalid transition"


def test_complete_unknown_command_is_404(client: TestClient) -> None:
    response = client.post("/commands/missing/result", json={"status": "DONE"}, headers=AUTH)

    assert response.status_code == 404


def test_logs_of_unknown_command_is_404(client: TestClient) -> None:
    assert client.get("/commands/missing/logs", headers=AUTH).status_code == 404


def test_storage_failure_is_503_and_retryable(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _submit(client, "cmd-1")

    def _fail(self, session, *, command_id, level, message):  # noqa: ANN001, ANN202
        raise OperationalError("INSERT INTO command_logs", {}, Exception("database is locked"))

    monkeypatch.setattr(LogSink, "append", _fail)

    response = client.post("/commands/next", headers=AUTH)

    assert response.status_code == 503
    assert response.json()["retryable"] is True
    monkeypatch.undo()
    assert client.get("/commands/cmd-1", headers=AUTH).json()["status"] == "PENDING"


def test_app_owns_database_created_from_settings(tmp_path) -> None:  # noqa: ANN001
    settings = Settings(
        database_url=sqlite_url(tmp_path / "owned.db"),
        api=ApiSettings(token=TOKEN),
    )

    with TestClient(create_app(settings)) as client:
        assert client.post("/commands/next", headers=AUTH).status_code == 204
