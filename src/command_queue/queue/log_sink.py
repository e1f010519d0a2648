"""Append-only per-command log trail."""

from __future__ import annotations

from sqlmodel import Session, col, select

from command_queue.queue.models import LogEntryView
from command_queue.storage.common import to_utc_aware_datetime, utc_now
from command_queue.storage.sqlmodel_models import CommandLog


class LogSink:
    """Writes and reads ``command_logs`` rows inside the caller's session."""

    def append(self, session: Session, *, command_id: str, level: str, message: str) -> None:
        session.add(
            CommandLog(
                command_id=command_id,
                level=level,
                message=message,
                created_at=utc_now(),
            ),
        )

    def list_for_command(self, session: Session, command_id: str) -> list[LogEntryView]:
        rows = session.exec(
            select(CommandLog)
            .where(CommandLog.command_id == command_id)
            .order_by(col(CommandLog.id).asc()),
        ).all()
        return [
            LogEntryView(
                entry_id=row.id or 0,
                command_id=row.command_id,
                level=row.level,
                message=row.message,
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in rows
        ]
