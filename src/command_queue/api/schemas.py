"""Request bodies for the HTTP API.

Fields are deliberately loose: presence and type checks are done by the
engine so that HTTP and library callers get the same error taxonomy.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class SubmitRequest(BaseModel):
    command_id: Any = None
    type: Any = None
    payload: Any = None


class LogItem(BaseModel):
    level: Any = None
    message: Any = None


class CompleteRequest(BaseModel):
    status: Any = None
    result: Any = None
    logs: list[LogItem] | None = None
