"""Commands and command log tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "commands",
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("command_id", sa.String(length=255), nullable=False),
        sa.Column("command_type", sa.String(length=255), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("result_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("seq"),
        sa.UniqueConstraint("command_id", name="uq_commands_command_id"),
    )
    op.create_index("ix_commands_command_type", "commands", ["command_type"], unique=False)
    op.create_index("ix_commands_status", "commands", ["status"], unique=False)
    op.create_index(
        "idx_commands_queue",
        "commands",
        ["status", "created_at", "seq"],
        unique=False,
    )

    op.create_table(
        "command_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("command_id", sa.String(length=255), nullable=False),
        sa.Column("level", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["command_id"], ["commands.command_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_command_logs_command_id",
        "command_logs",
        ["command_id", "id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_command_logs_command_id", table_name="command_logs")
    op.drop_table("command_logs")
    op.drop_index("idx_commands_queue", table_name="commands")
    op.drop_index("ix_commands_status", table_name="commands")
    op.drop_index("ix_commands_command_type", table_name="commands")
    op.drop_table("commands")
