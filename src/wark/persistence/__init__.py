"""Ticket storage: the store contract, SQLite and in-memory implementations, snapshots."""

from wark.persistence.base import (
    ClaimConflictError,
    ConflictError,
    IntegrityViolationError,
    StaleWriteError,
    StoreError,
    TicketFilter,
    TicketStore,
    sort_tickets,
)
from wark.persistence.memory import MemoryTicketStore
from wark.persistence.snapshot import (
    ImportResult,
    dump_snapshot,
    export_project,
    import_snapshot,
    load_snapshot,
)
from wark.persistence.state_db import (
    StateDB,
    StateDBBusyError,
    StateDBCorruptionError,
    StateDBError,
    StateDBMigrationError,
)
from wark.persistence.store import SQLiteTicketStore

__all__ = [
    "ClaimConflictError",
    "ConflictError",
    "ImportResult",
    "IntegrityViolationError",
    "MemoryTicketStore",
    "SQLiteTicketStore",
    "StaleWriteError",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
    "StoreError",
    "TicketFilter",
    "TicketStore",
    "dump_snapshot",
    "export_project",
    "import_snapshot",
    "load_snapshot",
    "sort_tickets",
]
