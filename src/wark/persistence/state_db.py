"""
wark — SQLite state database

File: src/wark/persistence/state_db.py
Last updated: 2026-10-18

Purpose
- SQLite schema management, migrations, and connection lifecycle.

What should be included in this file
- Schema version table and migration runner design.
- Safe locking strategy and busy timeout handling.
- Backup helper and integrity check.

Functional requirements
- Must support idempotent migration application.
- The one-active-claim-per-ticket rule is a unique partial index, not application logic.
- Activity log rows are append-only at the schema level.

Non-functional requirements
- Must avoid long-lived locks that block status commands.
"""

from __future__ import annotations

import hashlib
import json
import sqlite3
import threading
import time
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Final

from wark.constants import STATE_DB_SCHEMA_VERSION
from wark.domain.models import (
    Action,
    ActorType,
    ClaimStatus,
    Complexity,
    MessageType,
    MilestoneStatus,
    Priority,
    Resolution,
    TicketStatus,
)
from wark.persistence.base import StoreError

try:
    from datetime import UTC
except ImportError:
    UTC = timezone.utc  # noqa: UP017

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
RowValue = str | int | float | bytes | None

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25

ACTIVE_CLAIM_INDEX: Final[str] = "idx_claims_one_active_per_ticket"


def _sql_enum(values: Sequence[str]) -> str:
    return ",".join(f"'{value}'" for value in values)


def _enum_values(values: type[Enum]) -> tuple[str, ...]:
    return tuple(sorted(str(item.value) for item in values))


_TICKET_STATUS_VALUES: Final[tuple[str, ...]] = _enum_values(TicketStatus)
_PRIORITY_VALUES: Final[tuple[str, ...]] = _enum_values(Priority)
_COMPLEXITY_VALUES: Final[tuple[str, ...]] = _enum_values(Complexity)
_RESOLUTION_VALUES: Final[tuple[str, ...]] = _enum_values(Resolution)
_CLAIM_STATUS_VALUES: Final[tuple[str, ...]] = _enum_values(ClaimStatus)
# Migration 1 shipped with this action set; later actions arrive through migration 2.
_V1_ACTION_VALUES: Final[tuple[str, ...]] = (
    "accepted",
    "blocked",
    "cancelled",
    "claimed",
    "closed",
    "comment",
    "completed",
    "created",
    "dependency_added",
    "dependency_removed",
    "escalated",
    "expired",
    "field_changed",
    "flagged",
    "human_responded",
    "rejected",
    "released",
    "reopened",
    "unblocked",
)
_ACTION_VALUES: Final[tuple[str, ...]] = _enum_values(Action)
_MILESTONE_STATUS_VALUES: Final[tuple[str, ...]] = _enum_values(MilestoneStatus)
_ACTOR_TYPE_VALUES: Final[tuple[str, ...]] = _enum_values(ActorType)
_MESSAGE_TYPE_VALUES: Final[tuple[str, ...]] = _enum_values(MessageType)

_SCHEMA_VERSIONS_TABLE_SQL: Final[str] = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version INTEGER PRIMARY KEY CHECK (version > 0),
    name TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""

_MIGRATION_0001_STATEMENTS: Final[tuple[str, ...]] = (
    _SCHEMA_VERSIONS_TABLE_SQL,
    """
    CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        key TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS tickets (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL,
        number INTEGER NOT NULL CHECK (number >= 1),
        title TEXT NOT NULL CHECK (length(title) > 0),
        description TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL CHECK (status IN ({_sql_enum(_TICKET_STATUS_VALUES)})),
        priority TEXT NOT NULL CHECK (priority IN ({_sql_enum(_PRIORITY_VALUES)})),
        complexity TEXT NOT NULL CHECK (complexity IN ({_sql_enum(_COMPLEXITY_VALUES)})),
        resolution TEXT CHECK (resolution IS NULL OR resolution IN ({_sql_enum(_RESOLUTION_VALUES)})),
        human_flag_reason TEXT,
        flagged_from TEXT CHECK (
            flagged_from IS NULL OR flagged_from IN ({_sql_enum(_TICKET_STATUS_VALUES)})
        ),
        branch_name TEXT,
        retry_count INTEGER NOT NULL DEFAULT 0 CHECK (retry_count >= 0),
        max_retries INTEGER NOT NULL CHECK (max_retries >= 0),
        parent_ticket_id TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        completed_at TEXT,
        UNIQUE (project_id, number),
        CHECK ((status IN ('done', 'cancelled')) = (resolution IS NOT NULL)),
        CHECK (parent_ticket_id IS NULL OR parent_ticket_id <> id),
        FOREIGN KEY(project_id) REFERENCES projects(id),
        FOREIGN KEY(parent_ticket_id) REFERENCES tickets(id)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS claims (
        id TEXT PRIMARY KEY,
        ticket_id TEXT NOT NULL,
        worker_id TEXT NOT NULL,
        claimed_at TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        released_at TEXT,
        status TEXT NOT NULL CHECK (status IN ({_sql_enum(_CLAIM_STATUS_VALUES)})),
        CHECK (expires_at > claimed_at),
        CHECK ((status = 'active') = (released_at IS NULL)),
        FOREIGN KEY(ticket_id) REFERENCES tickets(id)
    )
    """,
    f"""
    CREATE UNIQUE INDEX IF NOT EXISTS {ACTIVE_CLAIM_INDEX}
    ON claims(ticket_id) WHERE status = 'active'
    """,
    """
    CREATE TABLE IF NOT EXISTS ticket_dependencies (
        ticket_id TEXT NOT NULL,
        depends_on_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        PRIMARY KEY (ticket_id, depends_on_id),
        CHECK (ticket_id <> depends_on_id),
        FOREIGN KEY(ticket_id) REFERENCES tickets(id),
        FOREIGN KEY(depends_on_id) REFERENCES tickets(id)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS activity_log (
        id TEXT PRIMARY KEY,
        ticket_id TEXT NOT NULL,
        action TEXT NOT NULL CHECK (action IN ({_sql_enum(_V1_ACTION_VALUES)})),
        actor_type TEXT NOT NULL CHECK (actor_type IN ({_sql_enum(_ACTOR_TYPE_VALUES)})),
        actor_id TEXT,
        summary TEXT NOT NULL DEFAULT '',
        details_json TEXT NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY(ticket_id) REFERENCES tickets(id)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS inbox_messages (
        id TEXT PRIMARY KEY,
        ticket_id TEXT NOT NULL,
        message_type TEXT NOT NULL CHECK (message_type IN ({_sql_enum(_MESSAGE_TYPE_VALUES)})),
        content TEXT NOT NULL,
        from_agent TEXT,
        response TEXT,
        responded_at TEXT,
        created_at TEXT NOT NULL,
        CHECK ((response IS NULL) = (responded_at IS NULL)),
        FOREIGN KEY(ticket_id) REFERENCES tickets(id)
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS trg_activity_log_no_update
    BEFORE UPDATE ON activity_log
    BEGIN
        SELECT RAISE(ABORT, 'activity_log is append-only');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS trg_activity_log_no_delete
    BEFORE DELETE ON activity_log
    BEGIN
        SELECT RAISE(ABORT, 'activity_log is append-only');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS trg_tickets_no_delete
    BEFORE DELETE ON tickets
    BEGIN
        SELECT RAISE(ABORT, 'tickets are archived, never deleted');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS trg_claims_final
    BEFORE UPDATE ON claims
    WHEN OLD.status <> 'active'
    BEGIN
        SELECT RAISE(ABORT, 'claims are immutable after leaving active');
    END
    """,
    "CREATE INDEX IF NOT EXISTS idx_tickets_project_status ON tickets(project_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_tickets_parent ON tickets(parent_ticket_id)",
    """
    CREATE INDEX IF NOT EXISTS idx_claims_active_expiry
    ON claims(expires_at) WHERE status = 'active'
    """,
    "CREATE INDEX IF NOT EXISTS idx_claims_ticket ON claims(ticket_id, claimed_at)",
    "CREATE INDEX IF NOT EXISTS idx_dependencies_prerequisite ON ticket_dependencies(depends_on_id)",
    "CREATE INDEX IF NOT EXISTS idx_activity_ticket_created ON activity_log(ticket_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_inbox_ticket ON inbox_messages(ticket_id, created_at)",
)

_MIGRATION_0002_STATEMENTS: Final[tuple[str, ...]] = (
    f"""
    CREATE TABLE IF NOT EXISTS milestones (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL,
        key TEXT NOT NULL,
        name TEXT NOT NULL CHECK (length(name) > 0),
        goal TEXT NOT NULL DEFAULT '',
        target_date TEXT,
        status TEXT NOT NULL CHECK (status IN ({_sql_enum(_MILESTONE_STATUS_VALUES)})),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (project_id, key),
        FOREIGN KEY(project_id) REFERENCES projects(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ticket_tasks (
        id TEXT PRIMARY KEY,
        ticket_id TEXT NOT NULL,
        position INTEGER NOT NULL CHECK (position >= 1),
        description TEXT NOT NULL CHECK (length(description) > 0),
        complete INTEGER NOT NULL DEFAULT 0 CHECK (complete IN (0, 1)),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (ticket_id, position),
        FOREIGN KEY(ticket_id) REFERENCES tickets(id)
    )
    """,
    "ALTER TABLE tickets ADD COLUMN milestone_id TEXT REFERENCES milestones(id)",
    "CREATE INDEX IF NOT EXISTS idx_tickets_milestone ON tickets(milestone_id)",
    # activity_log is rebuilt so its action CHECK admits the task and milestone actions.
    "DROP TRIGGER IF EXISTS trg_activity_log_no_update",
    "DROP TRIGGER IF EXISTS trg_activity_log_no_delete",
    "DROP INDEX IF EXISTS idx_activity_ticket_created",
    f"""
    CREATE TABLE activity_log_v2 (
        id TEXT PRIMARY KEY,
        ticket_id TEXT NOT NULL,
        action TEXT NOT NULL CHECK (action IN ({_sql_enum(_ACTION_VALUES)})),
        actor_type TEXT NOT NULL CHECK (actor_type IN ({_sql_enum(_ACTOR_TYPE_VALUES)})),
        actor_id TEXT,
        summary TEXT NOT NULL DEFAULT '',
        details_json TEXT NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY(ticket_id) REFERENCES tickets(id)
    )
    """,
    """
    INSERT INTO activity_log_v2
        (id, ticket_id, action, actor_type, actor_id, summary, details_json, created_at)
    SELECT id, ticket_id, action, actor_type, actor_id, summary, details_json, created_at
    FROM activity_log
    ORDER BY rowid
    """,
    "DROP TABLE activity_log",
    "ALTER TABLE activity_log_v2 RENAME TO activity_log",
    """
    CREATE TRIGGER IF NOT EXISTS trg_activity_log_no_update
    BEFORE UPDATE ON activity_log
    BEGIN
        SELECT RAISE(ABORT, 'activity_log is append-only');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS trg_activity_log_no_delete
    BEFORE DELETE ON activity_log
    BEGIN
        SELECT RAISE(ABORT, 'activity_log is append-only');
    END
    """,
    "CREATE INDEX IF NOT EXISTS idx_activity_ticket_created ON activity_log(ticket_id, created_at)",
)


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    version: int
    name: str
    checksum: str
    applied_at: str


@dataclass(frozen=True, slots=True)
class _Migration:
    version: int
    name: str
    statements: tuple[str, ...]
    checksum: str


def _migration_checksum(version: int, name: str, statements: Sequence[str]) -> str:
    digest = hashlib.sha256()
    digest.update(f"{version}:{name}\n".encode())
    for statement in statements:
        normalized = "\n".join(line.rstrip() for line in statement.strip().splitlines())
        digest.update(normalized.encode("utf-8"))
        digest.update(b"\n--\n")
    return digest.hexdigest()


_MIGRATIONS: Final[tuple[_Migration, ...]] = (
    _Migration(
        version=1,
        name="initial_ticket_schema",
        statements=_MIGRATION_0001_STATEMENTS,
        checksum=_migration_checksum(1, "initial_ticket_schema", _MIGRATION_0001_STATEMENTS),
    ),
    _Migration(
        version=2,
        name="milestones_and_ticket_tasks",
        statements=_MIGRATION_0002_STATEMENTS,
        checksum=_migration_checksum(
            2, "milestones_and_ticket_tasks", _MIGRATION_0002_STATEMENTS
        ),
    ),
)

_SQLITE_BUSY_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_BUSY", None),
        getattr(sqlite3, "SQLITE_BUSY_RECOVERY", None),
        getattr(sqlite3, "SQLITE_BUSY_SNAPSHOT", None),
        getattr(sqlite3, "SQLITE_LOCKED", None),
        getattr(sqlite3, "SQLITE_LOCKED_SHAREDCACHE", None),
    )
    if isinstance(code, int)
)

_SQLITE_CORRUPTION_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_CORRUPT", None),
        getattr(sqlite3, "SQLITE_NOTADB", None),
    )
    if isinstance(code, int)
)

_BUSY_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database is locked",
    "database table is locked",
    "database schema is locked",
)

_CORRUPTION_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database disk image is malformed",
    "malformed database",
    "file is not a database",
)


class StateDBError(StoreError):
    """Base class for persistence DB errors."""


class StateDBBusyError(StateDBError):
    """Raised when bounded busy retries are exhausted."""


class StateDBMigrationError(StateDBError):
    """Raised when migrations cannot be applied safely."""


class StateDBCorruptionError(StateDBError):
    """Raised when SQLite reports possible corruption."""


class StateDB:
    """SQLite state DB manager with deterministic migrations and safe helpers."""

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        if busy_retry_limit < 0:
            raise ValueError("busy_retry_limit must be >= 0")
        if busy_retry_backoff_ms < 0:
            raise ValueError("busy_retry_backoff_ms must be >= 0")

        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._busy_retry_backoff_ms = busy_retry_backoff_ms
        self._savepoint_counter = 0
        self._savepoint_lock = threading.Lock()
        self._migrated = False

    @property
    def path(self) -> Path:
        return self._path

    def connect(self) -> sqlite3.Connection:
        """Open a configured SQLite connection for the state DB."""

        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        self._configure_connection(conn)
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(
        self,
        *,
        conn: sqlite3.Connection | None = None,
        immediate: bool = True,
    ) -> Iterator[sqlite3.Connection]:
        """Run statements inside an atomic transaction with savepoint support."""

        if conn is None:
            with self.connection() as owned_conn:
                with self.transaction(conn=owned_conn, immediate=immediate) as txn_conn:
                    yield txn_conn
                return

        if conn.in_transaction:
            savepoint = self._next_savepoint_name()
            self._execute_with_retry(conn, f"SAVEPOINT {savepoint}", (), operation="savepoint")
            try:
                yield conn
            except Exception:
                self._execute_with_retry(
                    conn,
                    f"ROLLBACK TO SAVEPOINT {savepoint}",
                    (),
                    operation="rollback to savepoint",
                )
                self._execute_with_retry(
                    conn,
                    f"RELEASE SAVEPOINT {savepoint}",
                    (),
                    operation="release savepoint",
                )
                raise
            else:
                self._execute_with_retry(
                    conn,
                    f"RELEASE SAVEPOINT {savepoint}",
                    (),
                    operation="release savepoint",
                )
            return

        begin_sql = "BEGIN IMMEDIATE" if immediate else "BEGIN"
        self._execute_with_retry(conn, begin_sql, (), operation="begin transaction")
        try:
            yield conn
        except Exception:
            self._execute_with_retry(conn, "ROLLBACK", (), operation="rollback transaction")
            raise
        else:
            self._execute_with_retry(conn, "COMMIT", (), operation="commit transaction")

    def migrate(self) -> int:
        """Apply migrations idempotently and return current schema version."""

        self._validate_migration_chain(STATE_DB_SCHEMA_VERSION)
        with self.connection() as conn:
            self._execute_with_retry(
                conn,
                _SCHEMA_VERSIONS_TABLE_SQL,
                (),
                operation="create schema_versions table",
            )
            applied = self._load_applied_migrations(conn)
            current_version = max(applied, default=0)
            if current_version > STATE_DB_SCHEMA_VERSION:
                raise StateDBMigrationError(
                    "database schema is newer than supported by this binary "
                    f"(db={current_version}, code={STATE_DB_SCHEMA_VERSION})"
                )

            for migration in _MIGRATIONS:
                if migration.version > STATE_DB_SCHEMA_VERSION:
                    continue

                record = applied.get(migration.version)
                if record is not None:
                    if record.checksum != migration.checksum:
                        raise StateDBMigrationError(
                            "migration checksum mismatch for version "
                            f"{migration.version}: db={record.checksum} code={migration.checksum}"
                        )
                    continue

                applied_at = _utc_now_iso()
                with self.transaction(conn=conn, immediate=True) as tx:
                    for statement in migration.statements:
                        self._execute_with_retry(
                            tx,
                            statement,
                            (),
                            operation=f"apply migration {migration.version}",
                        )
                    self._execute_with_retry(
                        tx,
                        """
                        INSERT OR IGNORE INTO schema_versions (version, name, checksum, applied_at)
                        VALUES (?, ?, ?, ?)
                        """,
                        (migration.version, migration.name, migration.checksum, applied_at),
                        operation=f"record migration {migration.version}",
                    )

                applied[migration.version] = MigrationRecord(
                    version=migration.version,
                    name=migration.name,
                    checksum=migration.checksum,
                    applied_at=applied_at,
                )

            self._migrated = True
            return self.schema_version(conn=conn)

    def ensure_migrated(self) -> None:
        """Migrate once per instance; later calls are no-ops."""

        if not self._migrated:
            self.migrate()

    def schema_version(self, *, conn: sqlite3.Connection | None = None) -> int:
        row = self.query_one(
            "SELECT COALESCE(MAX(version), 0) AS version FROM schema_versions",
            conn=conn,
        )
        if row is None:
            return 0
        value = row["version"]
        if not isinstance(value, int):
            raise StateDBMigrationError("schema_versions.version must be an integer")
        return value

    def schema_history(self) -> list[MigrationRecord]:
        with self.connection() as conn:
            return sorted(
                self._load_applied_migrations(conn).values(),
                key=lambda record: record.version,
            )

    def execute(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Execute a parameterized statement and return affected row count."""

        if conn is not None:
            cursor = self._execute_with_retry(conn, sql, params, operation="execute statement")
            return cursor.rowcount

        with self.transaction(immediate=True) as tx:
            cursor = self._execute_with_retry(tx, sql, params, operation="execute statement")
            return cursor.rowcount

    def executemany(
        self,
        sql: str,
        params_iter: Iterable[SQLParams],
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Execute a parameterized statement for a sequence of parameter tuples."""

        params_list = [tuple(params) for params in params_iter]
        if conn is not None:
            return self._executemany_with_retry(conn, sql, params_list, operation="execute many")

        with self.transaction(immediate=True) as tx:
            return self._executemany_with_retry(tx, sql, params_list, operation="execute many")

    def query_all(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> list[dict[str, RowValue]]:
        """Run a query and return rows as typed dictionaries."""

        if conn is not None:
            cursor = self._execute_with_retry(conn, sql, params, operation="query all")
            return [_row_to_dict(row) for row in cursor.fetchall()]

        with self.connection() as owned_conn:
            cursor = self._execute_with_retry(owned_conn, sql, params, operation="query all")
            return [_row_to_dict(row) for row in cursor.fetchall()]

    def query_one(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> dict[str, RowValue] | None:
        """Run a query and return the first row as a typed dictionary."""

        if conn is not None:
            cursor = self._execute_with_retry(conn, sql, params, operation="query one")
            row = cursor.fetchone()
            return None if row is None else _row_to_dict(row)

        with self.connection() as owned_conn:
            cursor = self._execute_with_retry(owned_conn, sql, params, operation="query one")
            row = cursor.fetchone()
            return None if row is None else _row_to_dict(row)

    def backup(self, destination: str | Path) -> Path:
        """Create a consistent snapshot using SQLite backup API."""

        destination_path = Path(destination).expanduser()
        destination_path.parent.mkdir(parents=True, exist_ok=True)

        with self.connection() as source:
            target = sqlite3.connect(
                destination_path,
                timeout=self._busy_timeout_ms / 1000.0,
                isolation_level=None,
                check_same_thread=False,
            )
            try:
                source.backup(target)
                target.execute("PRAGMA journal_mode=WAL")
            finally:
                target.close()

        return destination_path

    def integrity_check(self, *, max_errors: int = 100) -> tuple[str, ...]:
        """Return integrity-check errors; empty tuple means OK."""

        if max_errors <= 0:
            raise ValueError("max_errors must be > 0")
        rows = self.query_all(f"PRAGMA integrity_check({max_errors})")
        messages = tuple(str(row.get("integrity_check", "")) for row in rows)
        if messages == ("ok",):
            return ()
        return messages

    def __enter__(self) -> StateDB:
        self.migrate()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        del exc_type, exc, tb

    def _configure_connection(self, conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
        journal_row = conn.execute("PRAGMA journal_mode=WAL").fetchone()
        if journal_row is None:
            raise StateDBError("failed to configure journal_mode")
        journal_mode = str(journal_row[0]).lower()
        if journal_mode != "wal":
            raise StateDBError(f"journal_mode must be WAL, got {journal_mode!r}")

    def _load_applied_migrations(self, conn: sqlite3.Connection) -> dict[int, MigrationRecord]:
        cursor = self._execute_with_retry(
            conn,
            """
            SELECT version, name, checksum, applied_at
            FROM schema_versions
            ORDER BY version ASC
            """,
            (),
            operation="load schema_versions",
        )
        out: dict[int, MigrationRecord] = {}
        for row in cursor.fetchall():
            if not isinstance(row["version"], int):
                raise StateDBMigrationError("schema_versions.version must be integer")
            if not isinstance(row["name"], str):
                raise StateDBMigrationError("schema_versions.name must be text")
            if not isinstance(row["checksum"], str):
                raise StateDBMigrationError("schema_versions.checksum must be text")
            if not isinstance(row["applied_at"], str):
                raise StateDBMigrationError("schema_versions.applied_at must be text")
            out[row["version"]] = MigrationRecord(
                version=row["version"],
                name=row["name"],
                checksum=row["checksum"],
                applied_at=row["applied_at"],
            )
        return out

    def _validate_migration_chain(self, target_version: int) -> None:
        if target_version < 0:
            raise StateDBMigrationError("target schema version must be >= 0")
        migration_versions = {migration.version for migration in _MIGRATIONS}
        if target_version > max(migration_versions, default=0):
            raise StateDBMigrationError(
                "schema target exceeds known migrations "
                f"(target={target_version}, known={max(migration_versions, default=0)})"
            )
        for version in range(1, target_version + 1):
            if version not in migration_versions:
                raise StateDBMigrationError(f"missing migration for schema version {version}")

    def _next_savepoint_name(self) -> str:
        with self._savepoint_lock:
            self._savepoint_counter += 1
            return f"sp_{self._savepoint_counter}"

    def _execute_with_retry(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: SQLParams,
        *,
        operation: str,
    ) -> sqlite3.Cursor:
        for attempt in range(self._busy_retry_limit + 1):
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                if self._is_busy_error(exc) and attempt < self._busy_retry_limit:
                    time.sleep((self._busy_retry_backoff_ms / 1000.0) * float(2**attempt))
                    continue
                self._raise_actionable_error(exc, operation=operation)
        raise StateDBBusyError(f"{operation} exhausted retries unexpectedly")

    def _executemany_with_retry(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params_list: Sequence[SQLParams],
        *,
        operation: str,
    ) -> int:
        for attempt in range(self._busy_retry_limit + 1):
            try:
                cursor = conn.executemany(sql, params_list)
                return cursor.rowcount
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                if self._is_busy_error(exc) and attempt < self._busy_retry_limit:
                    time.sleep((self._busy_retry_backoff_ms / 1000.0) * float(2**attempt))
                    continue
                self._raise_actionable_error(exc, operation=operation)
        raise StateDBBusyError(f"{operation} exhausted retries unexpectedly")

    def _is_busy_error(self, exc: sqlite3.Error) -> bool:
        code = getattr(exc, "sqlite_errorcode", None)
        if isinstance(code, int) and code in _SQLITE_BUSY_CODES:
            return True
        message = str(exc).lower()
        return any(fragment in message for fragment in _BUSY_SUBSTRINGS)

    def _is_corruption_error(self, exc: sqlite3.Error) -> bool:
        code = getattr(exc, "sqlite_errorcode", None)
        if isinstance(code, int) and code in _SQLITE_CORRUPTION_CODES:
            return True
        message = str(exc).lower()
        return any(fragment in message for fragment in _CORRUPTION_SUBSTRINGS)

    def _raise_actionable_error(self, exc: sqlite3.Error, *, operation: str) -> None:
        if self._is_corruption_error(exc):
            raise StateDBCorruptionError(
                f"{operation} failed for {self._path}: {exc}. "
                "Run `wark check` and restore from a `wark backup` copy if needed."
            ) from exc
        if self._is_busy_error(exc):
            raise StateDBBusyError(
                f"{operation} hit SQLITE_BUSY for {self._path} after "
                f"{self._busy_retry_limit + 1} attempt(s): {exc}"
            ) from exc
        raise StateDBError(f"{operation} failed for {self._path}: {exc}") from exc


def _row_to_dict(row: sqlite3.Row) -> dict[str, RowValue]:
    raw = dict(row)
    return {str(key): raw[key] for key in raw}


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def canonical_json(value: object) -> str:
    """Deterministic JSON for persistence payloads."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


__all__ = [
    "ACTIVE_CLAIM_INDEX",
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "MigrationRecord",
    "RowValue",
    "SQLParams",
    "SQLValue",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
    "canonical_json",
]
