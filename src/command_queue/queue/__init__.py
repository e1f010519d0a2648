"""Durable command queue: store, log sink, engine and reference worker.

Why a database-backed queue instead of a broker?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Producers need idempotent submission keyed by their own ids, and operators
need the full lifecycle and log trail of every command to stay queryable after
the fact. Both fall out of two relational tables. Exactly-once claiming is a
``SELECT ... FOR UPDATE SKIP LOCKED`` plus a guarded ``UPDATE``, and workers
simply poll, so no delivery protocol has to be operated next to the database.
"""

from command_queue.queue.engine import QueueEngine
from command_queue.queue.models import (
    CommandDetails,
    CommandStatus,
    CommandView,
    LogEntryView,
    LogEntryWrite,
)

__all__ = [
    "CommandDetails",
    "CommandStatus",
    "CommandView",
    "LogEntryView",
    "LogEntryWrite",
    "QueueEngine",
]
