"""In-memory ``TicketStore`` with the same contract as the SQLite store.

Writers serialize on a re-entrant lock held for the whole outermost transaction.
Every transaction level snapshots the tables and restores them if the block raises,
so nested failures roll back just like SQLite savepoints.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime

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
    sort_milestones,
    sort_tickets,
)


@dataclass(slots=True)
class _Tables:
    projects: dict[str, Project] = field(default_factory=dict)
    tickets: dict[str, Ticket] = field(default_factory=dict)
    claims: dict[str, Claim] = field(default_factory=dict)
    dependencies: dict[tuple[str, str], Dependency] = field(default_factory=dict)
    activity: list[ActivityEntry] = field(default_factory=list)
    messages: dict[str, InboxMessage] = field(default_factory=dict)
    milestones: dict[str, Milestone] = field(default_factory=dict)
    tasks: dict[str, TicketTask] = field(default_factory=dict)


class MemoryTicketStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tables = _Tables()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            snapshot = copy.deepcopy(self._tables)
            try:
                yield
            except Exception:
                self._tables = snapshot
                raise

    # Projects

    def insert_project(self, project: Project) -> Project:
        with self._lock:
            if project.id in self._tables.projects or any(
                item.key == project.key for item in self._tables.projects.values()
            ):
                raise IntegrityViolationError(f"project {project.key} already exists")
            self._tables.projects[project.id] = copy.deepcopy(project)
            return project

    def get_project(self, project_id: str) -> Project | None:
        with self._lock:
            return copy.deepcopy(self._tables.projects.get(project_id))

    def get_project_by_key(self, key: str) -> Project | None:
        normalized = key.strip().upper()
        with self._lock:
            for project in self._tables.projects.values():
                if project.key == normalized:
                    return copy.deepcopy(project)
            return None

    def list_projects(self) -> list[Project]:
        with self._lock:
            return sorted(
                (copy.deepcopy(item) for item in self._tables.projects.values()),
                key=lambda item: item.key,
            )

    # Tickets

    def next_ticket_number(self, project_id: str) -> int:
        with self._lock:
            numbers = [
                item.number for item in self._tables.tickets.values() if item.project_id == project_id
            ]
            return max(numbers, default=0) + 1

    def insert_ticket(self, ticket: Ticket) -> Ticket:
        with self._lock:
            if ticket.project_id not in self._tables.projects:
                raise IntegrityViolationError(f"unknown project {ticket.project_id}")
            if ticket.id in self._tables.tickets:
                raise IntegrityViolationError(f"ticket {ticket.id} already exists")
            if any(
                item.project_id == ticket.project_id and item.number == ticket.number
                for item in self._tables.tickets.values()
            ):
                raise IntegrityViolationError(f"ticket number {ticket.key} already exists")
            if (
                ticket.parent_ticket_id is not None
                and ticket.parent_ticket_id not in self._tables.tickets
            ):
                raise IntegrityViolationError(f"unknown parent ticket {ticket.parent_ticket_id}")
            self._check_milestone(ticket)
            self._tables.tickets[ticket.id] = copy.deepcopy(ticket)
            return ticket

    def get_ticket(self, ticket_id: str) -> Ticket | None:
        with self._lock:
            return copy.deepcopy(self._tables.tickets.get(ticket_id))

    def get_ticket_by_number(self, project_id: str, number: int) -> Ticket | None:
        with self._lock:
            for ticket in self._tables.tickets.values():
                if ticket.project_id == project_id and ticket.number == number:
                    return copy.deepcopy(ticket)
            return None

    def update_ticket(self, ticket: Ticket, *, expected_status: TicketStatus) -> Ticket:
        with self._lock:
            current = self._tables.tickets.get(ticket.id)
            if current is None or current.status is not TicketStatus(expected_status):
                raise StaleWriteError(
                    f"ticket {ticket.key} is no longer {TicketStatus(expected_status).value}"
                )
            self._check_milestone(ticket)
            self._tables.tickets[ticket.id] = replace(
                copy.deepcopy(ticket),
                project_id=current.project_id,
                number=current.number,
                created_at=current.created_at,
            )
            return ticket

    def list_tickets(self, query: TicketFilter) -> list[Ticket]:
        with self._lock:
            selected = [item for item in self._tables.tickets.values() if self._matches(item, query)]
            ordered = sort_tickets(selected)
            page = ordered[query.offset : query.offset + query.limit]
            return [copy.deepcopy(item) for item in page]

    def count_tickets(self, query: TicketFilter) -> int:
        with self._lock:
            return sum(1 for item in self._tables.tickets.values() if self._matches(item, query))

    def clear_milestone(self, milestone_id: str, *, now: datetime) -> int:
        with self._lock:
            linked = [
                item for item in self._tables.tickets.values() if item.milestone_id == milestone_id
            ]
            for ticket in linked:
                self._tables.tickets[ticket.id] = replace(
                    ticket, milestone_id=None, updated_at=now
                )
            return len(linked)

    def _check_milestone(self, ticket: Ticket) -> None:
        if ticket.milestone_id is None:
            return
        milestone = self._tables.milestones.get(ticket.milestone_id)
        if milestone is None:
            raise IntegrityViolationError(f"unknown milestone {ticket.milestone_id}")

    def _matches(self, ticket: Ticket, query: TicketFilter) -> bool:
        if query.project_id is not None and ticket.project_id != query.project_id:
            return False
        if query.statuses and ticket.status not in query.statuses:
            return False
        if query.priority is not None and ticket.priority is not query.priority:
            return False
        if query.parent_ticket_id is not None and ticket.parent_ticket_id != query.parent_ticket_id:
            return False
        if query.milestone_id is not None and ticket.milestone_id != query.milestone_id:
            return False
        if query.worker_id is not None:
            claim = self._active_claim(ticket.id)
            if claim is None or claim.worker_id != query.worker_id:
                return False
        if query.workable:
            if ticket.status is not TicketStatus.READY:
                return False
            if self._has_unresolved_prerequisite(ticket.id):
                return False
        return True

    def _has_unresolved_prerequisite(self, ticket_id: str) -> bool:
        for (dependent_id, prerequisite_id) in self._tables.dependencies:
            if dependent_id != ticket_id:
                continue
            prerequisite = self._tables.tickets.get(prerequisite_id)
            if prerequisite is None or not prerequisite.is_successfully_closed:
                return True
        return False

    def list_children(self, parent_ticket_id: str) -> list[Ticket]:
        with self._lock:
            children = [
                copy.deepcopy(item)
                for item in self._tables.tickets.values()
                if item.parent_ticket_id == parent_ticket_id
            ]
            return sorted(children, key=lambda item: item.number)

    # Claims

    def insert_claim(self, claim: Claim) -> Claim:
        with self._lock:
            if claim.ticket_id not in self._tables.tickets:
                raise IntegrityViolationError(f"unknown ticket {claim.ticket_id}")
            if claim.id in self._tables.claims:
                raise IntegrityViolationError(f"claim {claim.id} already exists")
            if claim.is_active and self._active_claim(claim.ticket_id) is not None:
                raise ClaimConflictError(f"ticket {claim.ticket_id} already has an active claim")
            self._tables.claims[claim.id] = copy.deepcopy(claim)
            return claim

    def _active_claim(self, ticket_id: str) -> Claim | None:
        for claim in self._tables.claims.values():
            if claim.ticket_id == ticket_id and claim.is_active:
                return claim
        return None

    def get_active_claim(self, ticket_id: str) -> Claim | None:
        with self._lock:
            return copy.deepcopy(self._active_claim(ticket_id))

    def update_claim(self, claim: Claim) -> Claim:
        if claim.is_active or claim.released_at is None:
            raise ValueError(f"claim {claim.id} must carry a final status and released_at")
        with self._lock:
            current = self._tables.claims.get(claim.id)
            if current is None or not current.is_active:
                raise StaleWriteError(f"claim {claim.id} is no longer active")
            self._tables.claims[claim.id] = replace(
                current,
                status=claim.status,
                released_at=claim.released_at,
            )
            return claim

    def list_claims(
        self,
        *,
        ticket_id: str | None = None,
        statuses: Sequence[ClaimStatus] = (),
    ) -> list[Claim]:
        wanted = {ClaimStatus(item) for item in statuses}
        with self._lock:
            selected = [
                copy.deepcopy(item)
                for item in self._tables.claims.values()
                if (ticket_id is None or item.ticket_id == ticket_id)
                and (not wanted or item.status in wanted)
            ]
            return sorted(selected, key=lambda item: (item.claimed_at, item.id))

    def list_expired_claims(self, now: datetime) -> list[Claim]:
        with self._lock:
            expired = [copy.deepcopy(item) for item in self._tables.claims.values() if item.is_expired(now)]
            return sorted(expired, key=lambda item: (item.expires_at, item.id))

    # Dependencies

    def insert_dependency(self, dependency: Dependency) -> Dependency:
        key = (dependency.ticket_id, dependency.depends_on_id)
        with self._lock:
            for ticket_id in key:
                if ticket_id not in self._tables.tickets:
                    raise IntegrityViolationError(f"unknown ticket {ticket_id}")
            if key in self._tables.dependencies:
                raise IntegrityViolationError(
                    f"dependency {dependency.ticket_id} -> {dependency.depends_on_id} exists"
                )
            self._tables.dependencies[key] = copy.deepcopy(dependency)
            return dependency

    def delete_dependency(self, ticket_id: str, depends_on_id: str) -> bool:
        with self._lock:
            return self._tables.dependencies.pop((ticket_id, depends_on_id), None) is not None

    def list_prerequisites(self, ticket_id: str) -> list[Dependency]:
        with self._lock:
            selected = [
                copy.deepcopy(item)
                for item in self._tables.dependencies.values()
                if item.ticket_id == ticket_id
            ]
            return sorted(selected, key=lambda item: (item.created_at, item.depends_on_id))

    def list_dependents(self, depends_on_id: str) -> list[Dependency]:
        with self._lock:
            selected = [
                copy.deepcopy(item)
                for item in self._tables.dependencies.values()
                if item.depends_on_id == depends_on_id
            ]
            return sorted(selected, key=lambda item: (item.created_at, item.ticket_id))

    def list_dependencies(self, *, project_id: str | None = None) -> list[Dependency]:
        with self._lock:
            selected = [
                copy.deepcopy(item)
                for item in self._tables.dependencies.values()
                if project_id is None
                or self._tables.tickets[item.ticket_id].project_id == project_id
            ]
            return sorted(
                selected, key=lambda item: (item.created_at, item.ticket_id, item.depends_on_id)
            )

    # Activity

    def append_activity(self, entry: ActivityEntry) -> ActivityEntry:
        with self._lock:
            if entry.ticket_id not in self._tables.tickets:
                raise IntegrityViolationError(f"unknown ticket {entry.ticket_id}")
            if any(item.id == entry.id for item in self._tables.activity):
                raise IntegrityViolationError(f"activity {entry.id} already exists")
            self._tables.activity.append(copy.deepcopy(entry))
            return entry

    def list_activity(
        self,
        *,
        ticket_id: str | None = None,
        project_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
        newest_first: bool = False,
    ) -> list[ActivityEntry]:
        if limit <= 0 or limit > MAX_PAGE_SIZE:
            raise ValueError(f"limit must be in [1, {MAX_PAGE_SIZE}]")
        if offset < 0:
            raise ValueError("offset must be >= 0")
        with self._lock:
            selected = [
                item
                for item in self._tables.activity
                if (ticket_id is None or item.ticket_id == ticket_id)
                and (
                    project_id is None
                    or self._tables.tickets[item.ticket_id].project_id == project_id
                )
            ]
            ordered = sorted(selected, key=lambda item: item.created_at)
            if newest_first:
                ordered.reverse()
            return [copy.deepcopy(item) for item in ordered[offset : offset + limit]]

    # Inbox

    def insert_message(self, message: InboxMessage) -> InboxMessage:
        with self._lock:
            if message.ticket_id not in self._tables.tickets:
                raise IntegrityViolationError(f"unknown ticket {message.ticket_id}")
            self._tables.messages[message.id] = copy.deepcopy(message)
            return message

    def update_message(self, message: InboxMessage) -> InboxMessage:
        with self._lock:
            current = self._tables.messages.get(message.id)
            if current is None:
                raise IntegrityViolationError(f"unknown inbox message {message.id}")
            self._tables.messages[message.id] = replace(
                current,
                response=message.response,
                responded_at=message.responded_at,
            )
            return message

    def list_messages(
        self,
        *,
        ticket_id: str | None = None,
        project_id: str | None = None,
        pending_only: bool = False,
    ) -> list[InboxMessage]:
        with self._lock:
            selected = [
                copy.deepcopy(item)
                for item in self._tables.messages.values()
                if (ticket_id is None or item.ticket_id == ticket_id)
                and (
                    project_id is None
                    or self._tables.tickets[item.ticket_id].project_id == project_id
                )
                and (not pending_only or item.is_pending)
            ]
            return sorted(selected, key=lambda item: item.created_at)

    # Milestones

    def insert_milestone(self, milestone: Milestone) -> Milestone:
        with self._lock:
            if milestone.project_id not in self._tables.projects:
                raise IntegrityViolationError(f"unknown project {milestone.project_id}")
            if milestone.id in self._tables.milestones or any(
                item.project_id == milestone.project_id and item.key == milestone.key
                for item in self._tables.milestones.values()
            ):
                raise IntegrityViolationError(f"milestone {milestone.key} already exists")
            self._tables.milestones[milestone.id] = copy.deepcopy(milestone)
            return milestone

    def update_milestone(self, milestone: Milestone) -> Milestone:
        with self._lock:
            current = self._tables.milestones.get(milestone.id)
            if current is None:
                raise StaleWriteError(f"milestone {milestone.key} no longer exists")
            if any(
                item.id != milestone.id
                and item.project_id == current.project_id
                and item.key == milestone.key
                for item in self._tables.milestones.values()
            ):
                raise IntegrityViolationError(f"milestone {milestone.key} already exists")
            self._tables.milestones[milestone.id] = replace(
                copy.deepcopy(milestone), project_id=current.project_id
            )
            return milestone

    def delete_milestone(self, milestone_id: str) -> bool:
        with self._lock:
            if any(item.milestone_id == milestone_id for item in self._tables.tickets.values()):
                raise IntegrityViolationError(f"milestone {milestone_id} still has tickets")
            return self._tables.milestones.pop(milestone_id, None) is not None

    def get_milestone(self, milestone_id: str) -> Milestone | None:
        with self._lock:
            return copy.deepcopy(self._tables.milestones.get(milestone_id))

    def get_milestone_by_key(self, project_id: str, key: str) -> Milestone | None:
        normalized = key.strip().upper()
        with self._lock:
            for milestone in self._tables.milestones.values():
                if milestone.project_id == project_id and milestone.key == normalized:
                    return copy.deepcopy(milestone)
            return None

    def list_milestones(self, *, project_id: str | None = None) -> list[Milestone]:
        with self._lock:
            return sort_milestones(
                [
                    copy.deepcopy(item)
                    for item in self._tables.milestones.values()
                    if project_id is None or item.project_id == project_id
                ]
            )

    # Ticket tasks

    def insert_task(self, task: TicketTask) -> TicketTask:
        with self._lock:
            if task.ticket_id not in self._tables.tickets:
                raise IntegrityViolationError(f"unknown ticket {task.ticket_id}")
            if task.id in self._tables.tasks:
                raise IntegrityViolationError(f"task {task.id} already exists")
            self._check_task_position(task)
            self._tables.tasks[task.id] = copy.deepcopy(task)
            return task

    def update_task(self, task: TicketTask) -> TicketTask:
        with self._lock:
            current = self._tables.tasks.get(task.id)
            if current is None:
                raise StaleWriteError(f"task {task.id} no longer exists")
            self._check_task_position(task)
            self._tables.tasks[task.id] = replace(
                copy.deepcopy(task), ticket_id=current.ticket_id, created_at=current.created_at
            )
            return task

    def _check_task_position(self, task: TicketTask) -> None:
        if any(
            item.id != task.id
            and item.ticket_id == task.ticket_id
            and item.position == task.position
            for item in self._tables.tasks.values()
        ):
            raise IntegrityViolationError(
                f"ticket {task.ticket_id} already has a task at position {task.position}"
            )

    def delete_task(self, task_id: str) -> bool:
        with self._lock:
            return self._tables.tasks.pop(task_id, None) is not None

    def list_tasks(self, ticket_id: str) -> list[TicketTask]:
        with self._lock:
            selected = [
                copy.deepcopy(item)
                for item in self._tables.tasks.values()
                if item.ticket_id == ticket_id
            ]
            return sorted(selected, key=lambda item: item.position)


__all__ = ["MemoryTicketStore"]
