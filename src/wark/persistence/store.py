"""SQLite-backed ``TicketStore`` built from the per-table repositories."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

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
from wark.persistence.base import TicketFilter
from wark.persistence.repositories import (
    ActivityRepo,
    ClaimRepo,
    DependencyRepo,
    InboxRepo,
    MilestoneRepo,
    ProjectRepo,
    TaskRepo,
    TicketRepo,
)
from wark.persistence.state_db import (
    DEFAULT_BUSY_RETRY_BACKOFF_MS,
    DEFAULT_BUSY_RETRY_LIMIT,
    DEFAULT_BUSY_TIMEOUT_MS,
    StateDB,
)


class SQLiteTicketStore:
    """Durable ticket store.

    ``transaction()`` opens ``BEGIN IMMEDIATE`` on a connection bound to the calling
    thread; nested calls become savepoints. Calls made outside a transaction use a
    short-lived connection each.
    """

    def __init__(self, db: StateDB) -> None:
        self._db = db
        self._local = threading.local()
        self.projects = ProjectRepo(db)
        self.tickets = TicketRepo(db)
        self.claims = ClaimRepo(db)
        self.dependencies = DependencyRepo(db)
        self.activity = ActivityRepo(db)
        self.inbox = InboxRepo(db)
        self.milestones = MilestoneRepo(db)
        self.tasks = TaskRepo(db)

    @classmethod
    def open(
        cls,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> SQLiteTicketStore:
        return cls(
            StateDB(
                path,
                busy_timeout_ms=busy_timeout_ms,
                busy_retry_limit=busy_retry_limit,
                busy_retry_backoff_ms=busy_retry_backoff_ms,
            )
        )

    @property
    def db(self) -> StateDB:
        return self._db

    @contextmanager
    def transaction(self) -> Iterator[None]:
        current = self._conn()
        if current is not None:
            with self._db.transaction(conn=current):
                yield
            return

        with self._db.connection() as conn:
            self._local.conn = conn
            try:
                with self._db.transaction(conn=conn, immediate=True):
                    yield
            finally:
                self._local.conn = None

    def _conn(self) -> sqlite3.Connection | None:
        return getattr(self._local, "conn", None)

    # Projects

    def insert_project(self, project: Project) -> Project:
        return self.projects.add(project, conn=self._conn())

    def get_project(self, project_id: str) -> Project | None:
        return self.projects.get(project_id, conn=self._conn())

    def get_project_by_key(self, key: str) -> Project | None:
        return self.projects.get_by_key(key, conn=self._conn())

    def list_projects(self) -> list[Project]:
        return self.projects.list(conn=self._conn())

    # Tickets

    def next_ticket_number(self, project_id: str) -> int:
        return self.tickets.next_number(project_id, conn=self._conn())

    def insert_ticket(self, ticket: Ticket) -> Ticket:
        return self.tickets.add(ticket, conn=self._conn())

    def get_ticket(self, ticket_id: str) -> Ticket | None:
        return self.tickets.get(ticket_id, conn=self._conn())

    def get_ticket_by_number(self, project_id: str, number: int) -> Ticket | None:
        return self.tickets.get_by_number(project_id, number, conn=self._conn())

    def update_ticket(self, ticket: Ticket, *, expected_status: TicketStatus) -> Ticket:
        return self.tickets.update(ticket, expected_status=expected_status, conn=self._conn())

    def list_tickets(self, query: TicketFilter) -> list[Ticket]:
        return self.tickets.list(query, conn=self._conn())

    def list_children(self, parent_ticket_id: str) -> list[Ticket]:
        return self.tickets.list_children(parent_ticket_id, conn=self._conn())

    def count_tickets(self, query: TicketFilter) -> int:
        return self.tickets.count(query, conn=self._conn())

    def clear_milestone(self, milestone_id: str, *, now: datetime) -> int:
        return self.tickets.clear_milestone(milestone_id, now=now, conn=self._conn())

    # Claims

    def insert_claim(self, claim: Claim) -> Claim:
        return self.claims.add(claim, conn=self._conn())

    def get_active_claim(self, ticket_id: str) -> Claim | None:
        return self.claims.get_active(ticket_id, conn=self._conn())

    def update_claim(self, claim: Claim) -> Claim:
        return self.claims.finish(claim, conn=self._conn())

    def list_claims(
        self,
        *,
        ticket_id: str | None = None,
        statuses: Sequence[ClaimStatus] = (),
    ) -> list[Claim]:
        return self.claims.list(ticket_id=ticket_id, statuses=statuses, conn=self._conn())

    def list_expired_claims(self, now: datetime) -> list[Claim]:
        return self.claims.list_expired(now, conn=self._conn())

    # Dependencies

    def insert_dependency(self, dependency: Dependency) -> Dependency:
        return self.dependencies.add(dependency, conn=self._conn())

    def delete_dependency(self, ticket_id: str, depends_on_id: str) -> bool:
        return self.dependencies.remove(ticket_id, depends_on_id, conn=self._conn())

    def list_prerequisites(self, ticket_id: str) -> list[Dependency]:
        return self.dependencies.list_prerequisites(ticket_id, conn=self._conn())

    def list_dependents(self, depends_on_id: str) -> list[Dependency]:
        return self.dependencies.list_dependents(depends_on_id, conn=self._conn())

    def list_dependencies(self, *, project_id: str | None = None) -> list[Dependency]:
        return self.dependencies.list(project_id=project_id, conn=self._conn())

    # Activity

    def append_activity(self, entry: ActivityEntry) -> ActivityEntry:
        return self.activity.add(entry, conn=self._conn())

    def list_activity(
        self,
        *,
        ticket_id: str | None = None,
        project_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
        newest_first: bool = False,
    ) -> list[ActivityEntry]:
        return self.activity.list(
            ticket_id=ticket_id,
            project_id=project_id,
            limit=limit,
            offset=offset,
            newest_first=newest_first,
            conn=self._conn(),
        )

    # Inbox

    def insert_message(self, message: InboxMessage) -> InboxMessage:
        return self.inbox.add(message, conn=self._conn())

    def update_message(self, message: InboxMessage) -> InboxMessage:
        return self.inbox.save(message, conn=self._conn())

    def list_messages(
        self,
        *,
        ticket_id: str | None = None,
        project_id: str | None = None,
        pending_only: bool = False,
    ) -> list[InboxMessage]:
        return self.inbox.list(
            ticket_id=ticket_id,
            project_id=project_id,
            pending_only=pending_only,
            conn=self._conn(),
        )

    # Milestones

    def insert_milestone(self, milestone: Milestone) -> Milestone:
        return self.milestones.add(milestone, conn=self._conn())

    def update_milestone(self, milestone: Milestone) -> Milestone:
        return self.milestones.save(milestone, conn=self._conn())

    def delete_milestone(self, milestone_id: str) -> bool:
        return self.milestones.remove(milestone_id, conn=self._conn())

    def get_milestone(self, milestone_id: str) -> Milestone | None:
        return self.milestones.get(milestone_id, conn=self._conn())

    def get_milestone_by_key(self, project_id: str, key: str) -> Milestone | None:
        return self.milestones.get_by_key(project_id, key, conn=self._conn())

    def list_milestones(self, *, project_id: str | None = None) -> list[Milestone]:
        return self.milestones.list(project_id=project_id, conn=self._conn())

    # Ticket tasks

    def insert_task(self, task: TicketTask) -> TicketTask:
        return self.tasks.add(task, conn=self._conn())

    def update_task(self, task: TicketTask) -> TicketTask:
        return self.tasks.save(task, conn=self._conn())

    def delete_task(self, task_id: str) -> bool:
        return self.tasks.remove(task_id, conn=self._conn())

    def list_tasks(self, ticket_id: str) -> list[TicketTask]:
        return self.tasks.list(ticket_id, conn=self._conn())


__all__ = ["SQLiteTicketStore"]
