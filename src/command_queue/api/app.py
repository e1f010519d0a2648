"""FastAPI application exposing submit, lookup, claim and complete."""

from __future__ import annotations

import hmac
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from command_queue.api.schemas import CompleteRequest, SubmitRequest
from command_queue.config import Settings
from command_queue.errors import (
    CommandNotFoundError,
    CommandQueueError,
    InvalidRequestError,
    InvalidTransitionError,
    PayloadConflictError,
    StorageFailureError,
)
from command_queue.queue.engine import QueueEngine
from command_queue.storage.database import Database

logger = logging.getLogger(__name__)

# Checked in order: InvalidTransitionError must win over its InvalidRequestError base.
_ERROR_RESPONSES: tuple[tuple[type[CommandQueueError], int, str], ...] = (
    (InvalidTransitionError, status.HTTP_409_CONFLICT, "Invalid transition"),
    (InvalidRequestError, status.HTTP_400_BAD_REQUEST, "Invalid request"),
    (PayloadConflictError, status.HTTP_409_CONFLICT, "Payload conflict"),
    (CommandNotFoundError, status.HTTP_404_NOT_FOUND, "Not found"),
    (StorageFailureError, status.HTTP_503_SERVICE_UNAVAILABLE, "Storage failure"),
)


class UnauthorizedError(Exception):
    """Missing or wrong bearer token."""


def create_app(settings: Settings, *, database: Database | None = None) -> FastAPI:
    """Build the API around ``database``, or around one created from ``settings``.

    A database created here is migrated on startup and closed on shutdown; a
    database passed in stays owned by the caller.
    """

    owns_database = database is None
    db = database or Database(
        settings.database_url,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    engine = QueueEngine(db)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if owns_database:
            db.init_schema()
        try:
            yield
        finally:
            if owns_database:
                db.close()

    def require_token(request: Request) -> None:
        expected = settings.api.token
        scheme, _, token = request.headers.get("authorization", "").partition(" ")
        if (
            not expected
            or scheme.lower() != "bearer"
            or not hmac.compare_digest(token.strip().encode(), expected.encode())
        ):
            raise UnauthorizedError

    router = APIRouter(prefix="/commands", dependencies=[Depends(require_token)])

    @router.post("")
    def submit_command(body: SubmitRequest | None = None) -> dict[str, Any]:
        body = body or SubmitRequest()
        return engine.submit(body.command_id, body.type, body.payload).to_dict()

    @router.post("/next", response_model=None)
    def claim_next() -> dict[str, Any] | Response:
        claimed = engine.claim()
        if claimed is None:
            return Response(status_code=status.HTTP_204_NO_CONTENT)
        return claimed.to_dict()

    @router.get("/{command_id}")
    def get_command(command_id: str) -> dict[str, Any]:
        return engine.lookup(command_id).to_dict()

    @router.get("/{command_id}/logs")
    def get_command_logs(command_id: str) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in engine.get_details(command_id).logs]

    @router.post("/{command_id}/result")
    def complete_command(command_id: str, body: CompleteRequest | None = None) -> dict[str, Any]:
        body = body or CompleteRequest()
        logs = (
            [item.model_dump() for item in body.logs] if body.logs is not None else None
        )
        engine.complete(command_id, body.status, body.result, logs)
        return {"success": True}

    app = FastAPI(title="command-queue", lifespan=lifespan)
    app.state.engine = engine

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(router)

    @app.exception_handler(UnauthorizedError)
    async def _unauthorized(_: Request, __: UnauthorizedError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Unauthorized"},
        )

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(_: Request, error: RequestValidationError) -> JSONResponse:
        return _error_response(
            status.HTTP_400_BAD_REQUEST,
            "Invalid request",
            f"Malformed request body: {error.errors()}",
            retryable=False,
        )

    @app.exception_handler(CommandQueueError)
    async def _queue_error(request: Request, error: CommandQueueError) -> JSONResponse:
        for error_type, status_code, label in _ERROR_RESPONSES:
            if isinstance(error, error_type):
                break
        else:
            status_code, label = status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal error"
        if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.warning("%s %s failed: %s", request.method, request.url.path, error)
        return _error_response(status_code, label, str(error), retryable=error.retryable)

    return app


def _error_response(status_code: int, label: str, message: str, *, retryable: bool) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": label, "message": message, "retryable": retryable},
    )
