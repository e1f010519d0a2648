"""SQLModel ORM tables for the command queue."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text
from sqlmodel import Field, SQLModel


class Command(SQLModel, table=True):
    __tablename__ = "commands"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_commands_queue", "status", "created_at", "seq"),)

    seq: int | None = Field(default=None, primary_key=True)
    command_id: str = Field(
        sa_column=Column(String(255), nullable=False, unique=True),
    )
    command_type: str = Field(sa_column=Column(String(255), nullable=False, index=True))
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(sa_column=Column(String(16), nullable=False, index=True))
    result_json: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class CommandLog(SQLModel, table=True):
    __tablename__ = "command_logs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_command_logs_command_id", "command_id", "id"),)

    id: int | None = Field(default=None, primary_key=True)
    command_id: str = Field(
        sa_column=Column(
            ForeignKey("commands.command_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    level: str = Field(sa_column=Column(Text, nullable=False))
    message: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
