"""StateDB migrations, transactions, backup and integrity checks."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

import pytest

from wark.constants import STATE_DB_SCHEMA_VERSION
from wark.persistence import state_db as state_db_module
from wark.persistence.state_db import StateDB, StateDBMigrationError
from wark.persistence.store import SQLiteTicketStore

from .. import make_project, make_ticket

if TYPE_CHECKING:
    from pathlib import Path


def test_migrate_is_idempotent_and_records_history(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "state" / "wark.sqlite3")

    assert db.migrate() == STATE_DB_SCHEMA_VERSION
    assert db.migrate() == STATE_DB_SCHEMA_VERSION

    history = db.schema_history()
    assert [record.version for record in history] == list(range(1, STATE_DB_SCHEMA_VERSION + 1))
    assert len(history[0].checksum) == 64

    with db.connection() as conn:
        journal_mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        foreign_keys = conn.execute("PRAGMA foreign_keys").fetchone()[0]
    assert str(journal_mode).lower() == "wal"
    assert foreign_keys == 1


def test_newer_database_schema_is_refused(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "state" / "wark.sqlite3")
    db.migrate()
    db.execute(
        "INSERT INTO schema_versions (version, name, checksum, applied_at) VALUES (?, ?, ?, ?)",
        (STATE_DB_SCHEMA_VERSION + 1, "future", "0" * 64, "2030-01-01T00:00:00.000000Z"),
    )

    with pytest.raises(StateDBMigrationError, match="newer"):
        StateDB(db.path).migrate()


def test_nested_transaction_failure_rolls_back_only_savepoint(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "state" / "wark.sqlite3")
    db.migrate()
    first = make_project(1, key="WEB")
    second = make_project(2, key="OPS")

    with db.transaction() as conn:
        db.execute(
            "INSERT INTO projects (id, key, name, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            (first.id, first.key, first.name, "2026-10-01T09:00:00Z", "2026-10-01T09:00:00Z"),
            conn=conn,
        )
        with pytest.raises(sqlite3.IntegrityError):
            with db.transaction(conn=conn):
                db.execute(
                    "INSERT INTO projects (id, key, name, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (second.id, first.key, second.name, "x", "x"),
                    conn=conn,
                )

    rows = db.query_all("SELECT key FROM projects ORDER BY key")
    assert [row["key"] for row in rows] == ["WEB"]


def test_schema_constraints_reject_inconsistent_rows(tmp_path: Path) -> None:
    store = SQLiteTicketStore.open(tmp_path / "state" / "wark.sqlite3")
    project = make_project()
    store.insert_project(project)
    ticket = make_ticket(project, 1)
    store.insert_ticket(ticket)

    with store.db.connection() as conn:
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute("UPDATE tickets SET status = 'done' WHERE id = ?", (ticket.id,))
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute("UPDATE tickets SET priority = 'urgent' WHERE id = ?", (ticket.id,))


def test_backup_produces_a_consistent_copy(tmp_path: Path) -> None:
    store = SQLiteTicketStore.open(tmp_path / "state" / "wark.sqlite3")
    store.db.migrate()
    project = make_project()
    store.insert_project(project)
    store.insert_ticket(make_ticket(project, 1))

    copy_path = store.db.backup(tmp_path / "backups" / "copy.sqlite3")
    restored = SQLiteTicketStore.open(copy_path)

    assert restored.db.integrity_check() == ()
    assert restored.db.schema_version() == STATE_DB_SCHEMA_VERSION
    assert [item.key for item in restored.list_projects()] == ["WEB"]
    assert restored.get_ticket_by_number(project.id, 1) is not None


def test_integrity_check_rejects_non_positive_limits(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "state" / "wark.sqlite3")
    db.migrate()
    with pytest.raises(ValueError):
        db.integrity_check(max_errors=0)


def test_upgrade_from_first_schema_keeps_activity_append_only(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    db = StateDB(tmp_path / "state" / "wark.sqlite3")
    monkeypatch.setattr(state_db_module, "STATE_DB_SCHEMA_VERSION", 1)
    assert db.migrate() == 1
    stamp = "2026-10-01T09:00:00.000000Z"
    db.execute(
        "INSERT INTO projects (id, key, name, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
        ("prj-1", "WEB", "Web", stamp, stamp),
    )
    db.execute(
        "INSERT INTO tickets (id, project_id, number, title, status, priority, complexity, "
        "max_retries, created_at, updated_at) VALUES (?, ?, 1, 'Old', 'ready', 'medium', "
        "'medium', 3, ?, ?)",
        ("tkt-1", "prj-1", stamp, stamp),
    )
    db.execute(
        "INSERT INTO activity_log (id, ticket_id, action, actor_type, details_json, created_at) "
        "VALUES ('act-1', 'tkt-1', 'created', 'human', '{}', ?)",
        (stamp,),
    )
    monkeypatch.undo()

    assert StateDB(db.path).migrate() == STATE_DB_SCHEMA_VERSION

    rows = db.query_all("SELECT id, action FROM activity_log")
    assert [(row["id"], row["action"]) for row in rows] == [("act-1", "created")]
    db.execute(
        "INSERT INTO activity_log (id, ticket_id, action, actor_type, details_json, created_at) "
        "VALUES ('act-2', 'tkt-1', 'task_completed', 'agent', '{}', ?)",
        (stamp,),
    )
    with db.connection() as conn:
        with pytest.raises(sqlite3.IntegrityError, match="append-only"):
            conn.execute("DELETE FROM activity_log WHERE id = 'act-1'")
    upgraded = db.query_one("SELECT milestone_id FROM tickets WHERE id = 'tkt-1'")
    assert upgraded is not None
    assert upgraded["milestone_id"] is None
