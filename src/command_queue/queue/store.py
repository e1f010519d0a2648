"""Durable command records."""

from __future__ import annotations

import json
from typing import Any

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from command_queue.queue.models import CommandStatus, CommandView
from command_queue.storage.common import to_utc_aware_datetime, utc_now
from command_queue.storage.sqlmodel_models import Command


def canonical_json(value: Any) -> str:
    """Serialize to the canonical form used for storage and payload comparison.

    Keys are sorted and integral floats are written as integers, so ``{"a": 1}``
    and ``{"a": 1.0}`` compare equal while ``1`` and ``true`` stay distinct.
    NaN and infinities are rejected with ``ValueError``.
    """

    return json.dumps(
        _normalize_numbers({} if value is None else value),
        ensure_ascii=False,
        sort_keys=True,
        allow_nan=False,
    )


def _normalize_numbers(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {key: _normalize_numbers(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_numbers(item) for item in value]
    return value


class CommandStore:
    """Point lookups, inserts and guarded status transitions on ``commands``.

    Every method runs inside the caller's session so that the engine decides
    the transaction boundaries.
    """

    def get(self, session: Session, command_id: str, *, for_update: bool = False) -> Command | None:
        statement = select(Command).where(Command.command_id == command_id)
        if for_update:
            statement = statement.with_for_update()
        return session.exec(statement).one_or_none()

    def insert(
        self,
        session: Session,
        *,
        command_id: str,
        command_type: str,
        payload_json: str,
    ) -> Command:
        now = utc_now()
        row = Command(
            command_id=command_id,
            command_type=command_type,
            payload_json=payload_json,
            status=CommandStatus.PENDING.value,
            result_json=None,
            created_at=now,
            updated_at=now,
        )
        session.add(row)
        session.flush()
        return row

    def next_pending(self, session: Session) -> Command | None:
        """Oldest PENDING row, locked; rows locked by a concurrent claim are skipped."""

        return session.exec(
            select(Command)
            .where(Command.status == CommandStatus.PENDING.value)
            .order_by(col(Command.created_at).asc(), col(Command.seq).asc())
            .limit(1)
            .with_for_update(skip_locked=True),
        ).one_or_none()

    def transition(
        self,
        session: Session,
        row: Command,
        *,
        from_status: CommandStatus,
        to_status: CommandStatus,
        result_json: str | None = None,
    ) -> bool:
        """Compare-and-swap the status of ``row``. Returns False if it moved meanwhile."""

        values: dict[str, Any] = {
            "status": to_status.value,
            "updated_at": utc_now(),
        }
        if result_json is not None:
            values["result_json"] = result_json
        result = session.exec(
            sa_update(Command)
            .where(
                col(Command.seq) == row.seq,
                col(Command.status) == from_status.value,
            )
            .values(**values),
        )
        if result.rowcount != 1:
            return False
        session.refresh(row)
        return True

    def delete(self, session: Session, command_id: str) -> bool:
        result = session.exec(sa_delete(Command).where(col(Command.command_id) == command_id))
        return result.rowcount == 1

    def list_recent(
        self,
        session: Session,
        *,
        status: CommandStatus | None = None,
        limit: int = 50,
    ) -> list[Command]:
        statement = select(Command).order_by(col(Command.seq).desc()).limit(limit)
        if status is not None:
            statement = statement.where(Command.status == status.value)
        return list(session.exec(statement).all())


def to_command_view(row: Command) -> CommandView:
    return CommandView(
        command_id=row.command_id,
        command_type=row.command_type,
        payload=json.loads(row.payload_json),
        status=CommandStatus(row.status),
        result=json.loads(row.result_json) if row.result_json is not None else None,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
