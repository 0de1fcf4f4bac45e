"""
wark — repositories

File: src/wark/persistence/repositories.py
Last updated: 2026-10-18

Purpose
- Repository/DAO classes for reading/writing domain entities to the state DB.

What should be included in this file
- Repositories: ProjectRepo, TicketRepo, ClaimRepo, DependencyRepo, ActivityRepo, InboxRepo,
  MilestoneRepo, TaskRepo.
- Query patterns needed by the engine (workable tickets, expired claims, dependents).
- Pagination and indexing considerations.

Functional requirements
- Ticket status writes are compare-and-swap on the previous status.
- A second active claim for a ticket surfaces as ``ClaimConflictError``.

Non-functional requirements
- Every method accepts ``conn=`` so callers can group writes in one transaction.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Final, cast

from wark.constants import MAX_PAGE_SIZE
from wark.domain.models import (
    ActivityEntry,
    Claim,
    ClaimStatus,
    Dependency,
    InboxMessage,
    Milestone,
    Project,
    Ticket,
    TicketStatus,
    TicketTask,
)
from wark.persistence.base import (
    ClaimConflictError,
    IntegrityViolationError,
    StaleWriteError,
    TicketFilter,
)
from wark.persistence.state_db import RowValue, SQLParams, StateDB, canonical_json

try:
    from datetime import UTC
except ImportError:
    UTC = timezone.utc  # noqa: UP017

_TICKET_COLUMNS: Final[tuple[str, ...]] = (
    "id",
    "project_id",
    "number",
    "title",
    "description",
    "status",
    "priority",
    "complexity",
    "resolution",
    "human_flag_reason",
    "flagged_from",
    "branch_name",
    "retry_count",
    "max_retries",
    "parent_ticket_id",
    "created_at",
    "updated_at",
    "completed_at",
    "milestone_id",
)

_IMMUTABLE_TICKET_COLUMNS: Final[frozenset[str]] = frozenset({"id", "project_id", "number", "created_at"})

_TICKET_SELECT: Final[str] = (
    "SELECT "
    + ", ".join(f"t.{column}" for column in _TICKET_COLUMNS)
    + ", p.key AS project_key FROM tickets t JOIN projects p ON p.id = t.project_id"
)

_PRIORITY_ORDER_SQL: Final[str] = """
CASE t.priority
    WHEN 'highest' THEN 1
    WHEN 'high' THEN 2
    WHEN 'medium' THEN 3
    WHEN 'low' THEN 4
    ELSE 5
END
"""

_UNRESOLVED_PREREQUISITE_SQL: Final[str] = """
EXISTS (
    SELECT 1
    FROM ticket_dependencies dep
    JOIN tickets prereq ON prereq.id = dep.depends_on_id
    WHERE dep.ticket_id = t.id
      AND NOT (prereq.status = 'done' AND prereq.resolution = 'completed')
)
"""

_CLAIM_COLUMNS: Final[str] = "id, ticket_id, worker_id, claimed_at, expires_at, released_at, status"

_MILESTONE_COLUMNS: Final[tuple[str, ...]] = (
    "id",
    "project_id",
    "key",
    "name",
    "goal",
    "target_date",
    "status",
    "created_at",
    "updated_at",
)

_TASK_COLUMNS: Final[tuple[str, ...]] = (
    "id",
    "ticket_id",
    "position",
    "description",
    "complete",
    "created_at",
    "updated_at",
)


class _BaseRepo:
    def __init__(self, db: StateDB) -> None:
        self._db = db
        self._db.ensure_migrated()

    @staticmethod
    def _validate_page(limit: int, offset: int) -> None:
        if limit <= 0 or limit > MAX_PAGE_SIZE:
            raise ValueError(f"limit must be in [1, {MAX_PAGE_SIZE}]")
        if offset < 0:
            raise ValueError("offset must be >= 0")


class ProjectRepo(_BaseRepo):
    """Repository for projects (ticket key namespaces)."""

    def add(self, project: Project, *, conn: sqlite3.Connection | None = None) -> Project:
        try:
            self._db.execute(
                """
                INSERT INTO projects (id, key, name, description, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    project.id,
                    project.key,
                    project.name,
                    project.description,
                    _iso8601z(project.created_at),
                    _iso8601z(project.updated_at),
                ),
                conn=conn,
            )
        except sqlite3.IntegrityError as exc:
            raise IntegrityViolationError(f"project {project.key} already exists") from exc
        return project

    def get(self, project_id: str, *, conn: sqlite3.Connection | None = None) -> Project | None:
        row = self._db.query_one("SELECT * FROM projects WHERE id = ?", (project_id,), conn=conn)
        return None if row is None else _project_from_row(row)

    def get_by_key(self, key: str, *, conn: sqlite3.Connection | None = None) -> Project | None:
        row = self._db.query_one(
            "SELECT * FROM projects WHERE key = ?", (key.strip().upper(),), conn=conn
        )
        return None if row is None else _project_from_row(row)

    def list(self, *, conn: sqlite3.Connection | None = None) -> list[Project]:
        rows = self._db.query_all("SELECT * FROM projects ORDER BY key ASC", conn=conn)
        return [_project_from_row(row) for row in rows]


class TicketRepo(_BaseRepo):
    """Repository for tickets and the work-ordering queries over them."""

    def next_number(self, project_id: str, *, conn: sqlite3.Connection | None = None) -> int:
        row = self._db.query_one(
            "SELECT COALESCE(MAX(number), 0) + 1 AS next_number FROM tickets WHERE project_id = ?",
            (project_id,),
            conn=conn,
        )
        if row is None or not isinstance(row["next_number"], int):
            raise IntegrityViolationError("could not compute next ticket number")
        return row["next_number"]

    def add(self, ticket: Ticket, *, conn: sqlite3.Connection | None = None) -> Ticket:
        placeholders = ", ".join("?" for _ in _TICKET_COLUMNS)
        try:
            self._db.execute(
                f"INSERT INTO tickets ({', '.join(_TICKET_COLUMNS)}) VALUES ({placeholders})",
                _ticket_params(ticket),
                conn=conn,
            )
        except sqlite3.IntegrityError as exc:
            raise IntegrityViolationError(f"cannot insert ticket {ticket.key}: {exc}") from exc
        return ticket

    def get(self, ticket_id: str, *, conn: sqlite3.Connection | None = None) -> Ticket | None:
        row = self._db.query_one(f"{_TICKET_SELECT} WHERE t.id = ?", (ticket_id,), conn=conn)
        return None if row is None else _ticket_from_row(row)

    def get_by_number(
        self,
        project_id: str,
        number: int,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> Ticket | None:
        row = self._db.query_one(
            f"{_TICKET_SELECT} WHERE t.project_id = ? AND t.number = ?",
            (project_id, number),
            conn=conn,
        )
        return None if row is None else _ticket_from_row(row)

    def update(
        self,
        ticket: Ticket,
        *,
        expected_status: TicketStatus,
        conn: sqlite3.Connection | None = None,
    ) -> Ticket:
        """Write every mutable column; fails if the stored status moved on."""

        mutable = [column for column in _TICKET_COLUMNS if column not in _IMMUTABLE_TICKET_COLUMNS]
        assignments = ", ".join(f"{column} = ?" for column in mutable)
        values = dict(zip(_TICKET_COLUMNS, _ticket_params(ticket), strict=True))
        params = [values[column] for column in mutable]
        params.extend((ticket.id, TicketStatus(expected_status).value))
        try:
            changed = self._db.execute(
                f"UPDATE tickets SET {assignments} WHERE id = ? AND status = ?",
                cast("SQLParams", tuple(params)),
                conn=conn,
            )
        except sqlite3.IntegrityError as exc:
            raise IntegrityViolationError(f"cannot update ticket {ticket.key}: {exc}") from exc
        if changed != 1:
            raise StaleWriteError(
                f"ticket {ticket.key} is no longer {TicketStatus(expected_status).value}"
            )
        return ticket

    def list(self, query: TicketFilter, *, conn: sqlite3.Connection | None = None) -> list[Ticket]:
        self._validate_page(query.limit, query.offset)
        where, params = _ticket_where(query)
        sql = _TICKET_SELECT + where
        sql += f" ORDER BY {_PRIORITY_ORDER_SQL}, t.created_at ASC, t.number ASC LIMIT ? OFFSET ?"
        params.extend((query.limit, query.offset))
        rows = self._db.query_all(sql, cast("SQLParams", tuple(params)), conn=conn)
        return [_ticket_from_row(row) for row in rows]

    def count(self, query: TicketFilter, *, conn: sqlite3.Connection | None = None) -> int:
        """Number of tickets matching ``query``; paging fields are ignored."""

        where, params = _ticket_where(query)
        row = self._db.query_one(
            "SELECT COUNT(*) AS total FROM tickets t" + where,
            cast("SQLParams", tuple(params)),
            conn=conn,
        )
        if row is None or not isinstance(row["total"], int):
            raise IntegrityViolationError("could not count tickets")
        return row["total"]

    def clear_milestone(
        self, milestone_id: str, *, now: datetime, conn: sqlite3.Connection | None = None
    ) -> int:
        return self._db.execute(
            "UPDATE tickets SET milestone_id = NULL, updated_at = ? WHERE milestone_id = ?",
            (_iso8601z(now), milestone_id),
            conn=conn,
        )

    def list_children(
        self,
        parent_ticket_id: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> list[Ticket]:
        rows = self._db.query_all(
            f"{_TICKET_SELECT} WHERE t.parent_ticket_id = ? ORDER BY t.number ASC",
            (parent_ticket_id,),
            conn=conn,
        )
        return [_ticket_from_row(row) for row in rows]


class ClaimRepo(_BaseRepo):
    """Repository for claim leases."""

    def add(self, claim: Claim, *, conn: sqlite3.Connection | None = None) -> Claim:
        try:
            self._db.execute(
                f"INSERT INTO claims ({_CLAIM_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                _claim_params(claim),
                conn=conn,
            )
        except sqlite3.IntegrityError as exc:
            if "claims.ticket_id" in str(exc):
                raise ClaimConflictError(
                    f"ticket {claim.ticket_id} already has an active claim"
                ) from exc
            raise IntegrityViolationError(f"cannot insert claim {claim.id}: {exc}") from exc
        return claim

    def get_active(self, ticket_id: str, *, conn: sqlite3.Connection | None = None) -> Claim | None:
        row = self._db.query_one(
            f"SELECT {_CLAIM_COLUMNS} FROM claims WHERE ticket_id = ? AND status = 'active'",
            (ticket_id,),
            conn=conn,
        )
        return None if row is None else _claim_from_row(row)

    def finish(self, claim: Claim, *, conn: sqlite3.Connection | None = None) -> Claim:
        """Move an active claim to its final status exactly once."""

        if claim.is_active or claim.released_at is None:
            raise ValueError(f"claim {claim.id} must carry a final status and released_at")
        try:
            changed = self._db.execute(
                """
                UPDATE claims SET status = ?, released_at = ?
                WHERE id = ? AND status = 'active'
                """,
                (claim.status.value, _iso8601z(claim.released_at), claim.id),
                conn=conn,
            )
        except sqlite3.IntegrityError as exc:
            raise IntegrityViolationError(f"cannot update claim {claim.id}: {exc}") from exc
        if changed != 1:
            raise StaleWriteError(f"claim {claim.id} is no longer active")
        return claim

    def list(
        self,
        *,
        ticket_id: str | None = None,
        statuses: Sequence[ClaimStatus] = (),
        conn: sqlite3.Connection | None = None,
    ) -> list[Claim]:
        clauses: list[str] = []
        params: list[object] = []
        if ticket_id is not None:
            clauses.append("ticket_id = ?")
            params.append(ticket_id)
        if statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(ClaimStatus(status).value for status in statuses)
        sql = f"SELECT {_CLAIM_COLUMNS} FROM claims"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY claimed_at ASC, id ASC"
        rows = self._db.query_all(sql, cast("SQLParams", tuple(params)), conn=conn)
        return [_claim_from_row(row) for row in rows]

    def list_expired(self, now: datetime, *, conn: sqlite3.Connection | None = None) -> list[Claim]:
        rows = self._db.query_all(
            f"""
            SELECT {_CLAIM_COLUMNS} FROM claims
            WHERE status = 'active' AND expires_at < ?
            ORDER BY expires_at ASC, id ASC
            """,
            (_iso8601z(now),),
            conn=conn,
        )
        return [_claim_from_row(row) for row in rows]


class DependencyRepo(_BaseRepo):
    """Repository for prerequisite edges."""

    def add(self, dependency: Dependency, *, conn: sqlite3.Connection | None = None) -> Dependency:
        try:
            self._db.execute(
                """
                INSERT INTO ticket_dependencies (ticket_id, depends_on_id, created_at)
                VALUES (?, ?, ?)
                """,
                (dependency.ticket_id, dependency.depends_on_id, _iso8601z(dependency.created_at)),
                conn=conn,
            )
        except sqlite3.IntegrityError as exc:
            raise IntegrityViolationError(
                f"cannot add dependency {dependency.ticket_id} -> {dependency.depends_on_id}: {exc}"
            ) from exc
        return dependency

    def remove(
        self,
        ticket_id: str,
        depends_on_id: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        changed = self._db.execute(
            "DELETE FROM ticket_dependencies WHERE ticket_id = ? AND depends_on_id = ?",
            (ticket_id, depends_on_id),
            conn=conn,
        )
        return changed > 0

    def list_prerequisites(
        self,
        ticket_id: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> list[Dependency]:
        rows = self._db.query_all(
            """
            SELECT ticket_id, depends_on_id, created_at FROM ticket_dependencies
            WHERE ticket_id = ? ORDER BY created_at ASC, depends_on_id ASC
            """,
            (ticket_id,),
            conn=conn,
        )
        return [_dependency_from_row(row) for row in rows]

    def list_dependents(
        self,
        depends_on_id: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> list[Dependency]:
        rows = self._db.query_all(
            """
            SELECT ticket_id, depends_on_id, created_at FROM ticket_dependencies
            WHERE depends_on_id = ? ORDER BY created_at ASC, ticket_id ASC
            """,
            (depends_on_id,),
            conn=conn,
        )
        return [_dependency_from_row(row) for row in rows]

    def list(
        self,
        *,
        project_id: str | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> list[Dependency]:
        sql = "SELECT d.ticket_id, d.depends_on_id, d.created_at FROM ticket_dependencies d"
        params: tuple[object, ...] = ()
        if project_id is not None:
            sql += " JOIN tickets t ON t.id = d.ticket_id WHERE t.project_id = ?"
            params = (project_id,)
        sql += " ORDER BY d.created_at ASC, d.ticket_id ASC, d.depends_on_id ASC"
        rows = self._db.query_all(sql, cast("SQLParams", params), conn=conn)
        return [_dependency_from_row(row) for row in rows]


class ActivityRepo(_BaseRepo):
    """Append-only audit trail."""

    def add(self, entry: ActivityEntry, *, conn: sqlite3.Connection | None = None) -> ActivityEntry:
        try:
            self._db.execute(
                """
                INSERT INTO activity_log (
                    id, ticket_id, action, actor_type, actor_id, summary, details_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.ticket_id,
                    entry.action.value,
                    entry.actor_type.value,
                    entry.actor_id,
                    entry.summary,
                    canonical_json(entry.details),
                    _iso8601z(entry.created_at),
                ),
                conn=conn,
            )
        except sqlite3.IntegrityError as exc:
            raise IntegrityViolationError(f"cannot append activity {entry.id}: {exc}") from exc
        return entry

    def list(
        self,
        *,
        ticket_id: str | None = None,
        project_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
        newest_first: bool = False,
        conn: sqlite3.Connection | None = None,
    ) -> list[ActivityEntry]:
        self._validate_page(limit, offset)
        sql = "SELECT a.* FROM activity_log a"
        clauses: list[str] = []
        params: list[object] = []
        if project_id is not None:
            sql += " JOIN tickets t ON t.id = a.ticket_id"
            clauses.append("t.project_id = ?")
            params.append(project_id)
        if ticket_id is not None:
            clauses.append("a.ticket_id = ?")
            params.append(ticket_id)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        direction = "DESC" if newest_first else "ASC"
        sql += f" ORDER BY a.created_at {direction}, a.rowid {direction} LIMIT ? OFFSET ?"
        params.extend((limit, offset))
        rows = self._db.query_all(sql, cast("SQLParams", tuple(params)), conn=conn)
        return [_activity_from_row(row) for row in rows]


class InboxRepo(_BaseRepo):
    """Questions and escalations routed to humans."""

    def add(self, message: InboxMessage, *, conn: sqlite3.Connection | None = None) -> InboxMessage:
        self._db.execute(
            """
            INSERT INTO inbox_messages (
                id, ticket_id, message_type, content, from_agent, response, responded_at, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            _message_params(message),
            conn=conn,
        )
        return message

    def save(self, message: InboxMessage, *, conn: sqlite3.Connection | None = None) -> InboxMessage:
        self._db.execute(
            "UPDATE inbox_messages SET response = ?, responded_at = ? WHERE id = ?",
            (
                message.response,
                None if message.responded_at is None else _iso8601z(message.responded_at),
                message.id,
            ),
            conn=conn,
        )
        return message

    def list(
        self,
        *,
        ticket_id: str | None = None,
        project_id: str | None = None,
        pending_only: bool = False,
        conn: sqlite3.Connection | None = None,
    ) -> list[InboxMessage]:
        sql = "SELECT m.* FROM inbox_messages m"
        clauses: list[str] = []
        params: list[object] = []
        if project_id is not None:
            sql += " JOIN tickets t ON t.id = m.ticket_id"
            clauses.append("t.project_id = ?")
            params.append(project_id)
        if ticket_id is not None:
            clauses.append("m.ticket_id = ?")
            params.append(ticket_id)
        if pending_only:
            clauses.append("m.response IS NULL")
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY m.created_at ASC, m.rowid ASC"
        rows = self._db.query_all(sql, cast("SQLParams", tuple(params)), conn=conn)
        return [_message_from_row(row) for row in rows]


class MilestoneRepo(_BaseRepo):
    """Per-project milestones; ticket links live on ``tickets.milestone_id``."""

    def add(self, milestone: Milestone, *, conn: sqlite3.Connection | None = None) -> Milestone:
        try:
            self._db.execute(
                f"INSERT INTO milestones ({', '.join(_MILESTONE_COLUMNS)}) "
                f"VALUES ({', '.join('?' for _ in _MILESTONE_COLUMNS)})",
                _milestone_params(milestone),
                conn=conn,
            )
        except sqlite3.IntegrityError as exc:
            raise IntegrityViolationError(
                f"cannot insert milestone {milestone.key}: {exc}"
            ) from exc
        return milestone

    def save(self, milestone: Milestone, *, conn: sqlite3.Connection | None = None) -> Milestone:
        mutable = [column for column in _MILESTONE_COLUMNS if column not in ("id", "project_id")]
        values = dict(zip(_MILESTONE_COLUMNS, _milestone_params(milestone), strict=True))
        params = [values[column] for column in mutable]
        params.append(milestone.id)
        try:
            changed = self._db.execute(
                f"UPDATE milestones SET {', '.join(f'{column} = ?' for column in mutable)} "
                "WHERE id = ?",
                cast("SQLParams", tuple(params)),
                conn=conn,
            )
        except sqlite3.IntegrityError as exc:
            raise IntegrityViolationError(
                f"cannot update milestone {milestone.key}: {exc}"
            ) from exc
        if changed != 1:
            raise StaleWriteError(f"milestone {milestone.key} no longer exists")
        return milestone

    def remove(self, milestone_id: str, *, conn: sqlite3.Connection | None = None) -> bool:
        return self._db.execute(
            "DELETE FROM milestones WHERE id = ?", (milestone_id,), conn=conn
        ) == 1

    def get(self, milestone_id: str, *, conn: sqlite3.Connection | None = None) -> Milestone | None:
        row = self._db.query_one(
            "SELECT * FROM milestones WHERE id = ?", (milestone_id,), conn=conn
        )
        return None if row is None else _milestone_from_row(row)

    def get_by_key(
        self, project_id: str, key: str, *, conn: sqlite3.Connection | None = None
    ) -> Milestone | None:
        row = self._db.query_one(
            "SELECT * FROM milestones WHERE project_id = ? AND key = ?",
            (project_id, key.strip().upper()),
            conn=conn,
        )
        return None if row is None else _milestone_from_row(row)

    def list(
        self, *, project_id: str | None = None, conn: sqlite3.Connection | None = None
    ) -> list[Milestone]:
        sql = "SELECT * FROM milestones"
        params: tuple[object, ...] = ()
        if project_id is not None:
            sql += " WHERE project_id = ?"
            params = (project_id,)
        sql += (
            " ORDER BY CASE status WHEN 'open' THEN 0 WHEN 'achieved' THEN 1 ELSE 2 END,"
            " target_date IS NULL, target_date ASC, name ASC, key ASC"
        )
        rows = self._db.query_all(sql, cast("SQLParams", params), conn=conn)
        return [_milestone_from_row(row) for row in rows]


class TaskRepo(_BaseRepo):
    """Ordered checklist steps attached to a ticket."""

    def add(self, task: TicketTask, *, conn: sqlite3.Connection | None = None) -> TicketTask:
        try:
            self._db.execute(
                f"INSERT INTO ticket_tasks ({', '.join(_TASK_COLUMNS)}) "
                f"VALUES ({', '.join('?' for _ in _TASK_COLUMNS)})",
                _task_params(task),
                conn=conn,
            )
        except sqlite3.IntegrityError as exc:
            raise IntegrityViolationError(f"cannot insert task {task.id}: {exc}") from exc
        return task

    def save(self, task: TicketTask, *, conn: sqlite3.Connection | None = None) -> TicketTask:
        try:
            changed = self._db.execute(
                """
                UPDATE ticket_tasks SET position = ?, description = ?, complete = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    task.position,
                    task.description,
                    int(task.complete),
                    _iso8601z(task.updated_at),
                    task.id,
                ),
                conn=conn,
            )
        except sqlite3.IntegrityError as exc:
            raise IntegrityViolationError(f"cannot update task {task.id}: {exc}") from exc
        if changed != 1:
            raise StaleWriteError(f"task {task.id} no longer exists")
        return task

    def remove(self, task_id: str, *, conn: sqlite3.Connection | None = None) -> bool:
        return self._db.execute("DELETE FROM ticket_tasks WHERE id = ?", (task_id,), conn=conn) == 1

    def list(self, ticket_id: str, *, conn: sqlite3.Connection | None = None) -> list[TicketTask]:
        rows = self._db.query_all(
            f"SELECT {', '.join(_TASK_COLUMNS)} FROM ticket_tasks "
            "WHERE ticket_id = ? ORDER BY position ASC",
            (ticket_id,),
            conn=conn,
        )
        return [_task_from_row(row) for row in rows]


def _ticket_where(query: TicketFilter) -> tuple[str, list[object]]:
    clauses: list[str] = []
    params: list[object] = []
    if query.project_id is not None:
        clauses.append("t.project_id = ?")
        params.append(query.project_id)
    if query.statuses:
        clauses.append(f"t.status IN ({', '.join('?' for _ in query.statuses)})")
        params.extend(status.value for status in query.statuses)
    if query.priority is not None:
        clauses.append("t.priority = ?")
        params.append(query.priority.value)
    if query.parent_ticket_id is not None:
        clauses.append("t.parent_ticket_id = ?")
        params.append(query.parent_ticket_id)
    if query.milestone_id is not None:
        clauses.append("t.milestone_id = ?")
        params.append(query.milestone_id)
    if query.worker_id is not None:
        clauses.append(
            "EXISTS (SELECT 1 FROM claims c WHERE c.ticket_id = t.id "
            "AND c.status = 'active' AND c.worker_id = ?)"
        )
        params.append(query.worker_id)
    if query.workable:
        clauses.append(f"t.status = 'ready' AND NOT {_UNRESOLVED_PREREQUISITE_SQL}")
    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params


def _ticket_params(ticket: Ticket) -> tuple[object, ...]:
    return (
        ticket.id,
        ticket.project_id,
        ticket.number,
        ticket.title,
        ticket.description,
        ticket.status.value,
        ticket.priority.value,
        ticket.complexity.value,
        None if ticket.resolution is None else ticket.resolution.value,
        ticket.human_flag_reason,
        None if ticket.flagged_from is None else ticket.flagged_from.value,
        ticket.branch_name,
        ticket.retry_count,
        ticket.max_retries,
        ticket.parent_ticket_id,
        _iso8601z(ticket.created_at),
        _iso8601z(ticket.updated_at),
        None if ticket.completed_at is None else _iso8601z(ticket.completed_at),
        ticket.milestone_id,
    )


def _claim_params(claim: Claim) -> tuple[object, ...]:
    return (
        claim.id,
        claim.ticket_id,
        claim.worker_id,
        _iso8601z(claim.claimed_at),
        _iso8601z(claim.expires_at),
        None if claim.released_at is None else _iso8601z(claim.released_at),
        claim.status.value,
    )


def _message_params(message: InboxMessage) -> tuple[object, ...]:
    return (
        message.id,
        message.ticket_id,
        message.message_type.value,
        message.content,
        message.from_agent,
        message.response,
        None if message.responded_at is None else _iso8601z(message.responded_at),
        _iso8601z(message.created_at),
    )


def _project_from_row(row: dict[str, RowValue]) -> Project:
    return Project.from_dict(
        {
            column: row[column]
            for column in ("id", "key", "name", "description", "created_at", "updated_at")
        }
    )


def _ticket_from_row(row: dict[str, RowValue]) -> Ticket:
    return Ticket.from_dict({column: row[column] for column in (*_TICKET_COLUMNS, "project_key")})


def _claim_from_row(row: dict[str, RowValue]) -> Claim:
    return Claim.from_dict(
        {
            column: row[column]
            for column in ("id", "ticket_id", "worker_id", "claimed_at", "expires_at", "released_at", "status")
        }
    )


def _dependency_from_row(row: dict[str, RowValue]) -> Dependency:
    return Dependency.from_dict(
        {
            "ticket_id": row["ticket_id"],
            "depends_on_id": row["depends_on_id"],
            "created_at": row["created_at"],
        }
    )


def _activity_from_row(row: dict[str, RowValue]) -> ActivityEntry:
    details = json.loads(_row_text(row, "details_json"))
    return ActivityEntry(
        id=_row_text(row, "id"),
        ticket_id=_row_text(row, "ticket_id"),
        action=_row_text(row, "action"),  # type: ignore[arg-type]
        actor_type=_row_text(row, "actor_type"),  # type: ignore[arg-type]
        actor_id=cast("str | None", row["actor_id"]),
        summary=_row_text(row, "summary"),
        details=details,
        created_at=_row_text(row, "created_at"),  # type: ignore[arg-type]
    )


def _message_from_row(row: dict[str, RowValue]) -> InboxMessage:
    return InboxMessage.from_dict({key: row[key] for key in row})


def _milestone_params(milestone: Milestone) -> tuple[object, ...]:
    return (
        milestone.id,
        milestone.project_id,
        milestone.key,
        milestone.name,
        milestone.goal,
        None if milestone.target_date is None else _iso8601z(milestone.target_date),
        milestone.status.value,
        _iso8601z(milestone.created_at),
        _iso8601z(milestone.updated_at),
    )


def _milestone_from_row(row: dict[str, RowValue]) -> Milestone:
    return Milestone.from_dict({column: row[column] for column in _MILESTONE_COLUMNS})


def _task_params(task: TicketTask) -> tuple[object, ...]:
    return (
        task.id,
        task.ticket_id,
        task.position,
        task.description,
        int(task.complete),
        _iso8601z(task.created_at),
        _iso8601z(task.updated_at),
    )


def _task_from_row(row: dict[str, RowValue]) -> TicketTask:
    values = {column: row[column] for column in _TASK_COLUMNS}
    values["complete"] = bool(values["complete"])
    return TicketTask.from_dict(values)


def _row_text(row: dict[str, RowValue], key: str) -> str:
    value = row.get(key)
    if not isinstance(value, str):
        raise IntegrityViolationError(f"column {key} must be text, got {type(value).__name__}")
    return value


def _iso8601z(value: datetime) -> str:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("datetime must be timezone-aware UTC")
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


__all__ = [
    "ActivityRepo",
    "ClaimRepo",
    "DependencyRepo",
    "InboxRepo",
    "MilestoneRepo",
    "ProjectRepo",
    "TaskRepo",
    "TicketRepo",
]
