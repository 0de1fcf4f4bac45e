"""Ticket store contract shared by the SQLite store and the in-memory fake."""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable

from wark.constants import MAX_PAGE_SIZE
from wark.domain.models import (
    ActivityEntry,
    Claim,
    ClaimStatus,
    Dependency,
    InboxMessage,
    Milestone,
    MilestoneStatus,
    Priority,
    Project,
    Ticket,
    TicketStatus,
    TicketTask,
)


class StoreError(RuntimeError):
    """Base class for persistence failures (connectivity, corruption, integrity)."""


class ConflictError(StoreError):
    """A write lost a race against another caller."""


class ClaimConflictError(ConflictError):
    """The store already holds an active claim for the ticket."""


class StaleWriteError(ConflictError):
    """Compare-and-swap update found a different status than expected."""


class IntegrityViolationError(StoreError):
    """A write violated a store constraint other than the active-claim index."""


@dataclass(frozen=True, slots=True)
class TicketFilter:
    project_id: str | None = None
    statuses: tuple[TicketStatus, ...] = ()
    priority: Priority | None = None
    parent_ticket_id: str | None = None
    milestone_id: str | None = None
    worker_id: str | None = None
    workable: bool = False
    limit: int = 100
    offset: int = 0

    def __post_init__(self) -> None:
        if self.limit <= 0 or self.limit > MAX_PAGE_SIZE:
            raise ValueError(f"limit must be in [1, {MAX_PAGE_SIZE}]")
        if self.offset < 0:
            raise ValueError("offset must be >= 0")
        object.__setattr__(
            self, "statuses", tuple(TicketStatus(item) for item in self.statuses)
        )
        if self.priority is not None:
            object.__setattr__(self, "priority", Priority(self.priority))


@runtime_checkable
class TicketStore(Protocol):
    """Operations the engine needs from durable storage.

    Every method joins the caller's open ``transaction()`` when there is one, so a
    ticket update and its claim write commit or roll back together.
    """

    def transaction(self) -> AbstractContextManager[None]: ...

    # Projects
    def insert_project(self, project: Project) -> Project: ...

    def get_project(self, project_id: str) -> Project | None: ...

    def get_project_by_key(self, key: str) -> Project | None: ...

    def list_projects(self) -> list[Project]: ...

    # Tickets
    def next_ticket_number(self, project_id: str) -> int: ...

    def insert_ticket(self, ticket: Ticket) -> Ticket: ...

    def get_ticket(self, ticket_id: str) -> Ticket | None: ...

    def get_ticket_by_number(self, project_id: str, number: int) -> Ticket | None: ...

    def update_ticket(self, ticket: Ticket, *, expected_status: TicketStatus) -> Ticket: ...

    def list_tickets(self, query: TicketFilter) -> list[Ticket]: ...

    def list_children(self, parent_ticket_id: str) -> list[Ticket]: ...

    def count_tickets(self, query: TicketFilter) -> int: ...

    def clear_milestone(self, milestone_id: str, *, now: datetime) -> int: ...

    # Claims
    def insert_claim(self, claim: Claim) -> Claim: ...

    def get_active_claim(self, ticket_id: str) -> Claim | None: ...

    def update_claim(self, claim: Claim) -> Claim: ...

    def list_claims(
        self,
        *,
        ticket_id: str | None = None,
        statuses: Sequence[ClaimStatus] = (),
    ) -> list[Claim]: ...

    def list_expired_claims(self, now: datetime) -> list[Claim]: ...

    # Dependencies
    def insert_dependency(self, dependency: Dependency) -> Dependency: ...

    def delete_dependency(self, ticket_id: str, depends_on_id: str) -> bool: ...

    def list_prerequisites(self, ticket_id: str) -> list[Dependency]: ...

    def list_dependents(self, depends_on_id: str) -> list[Dependency]: ...

    def list_dependencies(self, *, project_id: str | None = None) -> list[Dependency]: ...

    # Activity
    def append_activity(self, entry: ActivityEntry) -> ActivityEntry: ...

    def list_activity(
        self,
        *,
        ticket_id: str | None = None,
        project_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
        newest_first: bool = False,
    ) -> list[ActivityEntry]: ...

    # Inbox
    def insert_message(self, message: InboxMessage) -> InboxMessage: ...

    def update_message(self, message: InboxMessage) -> InboxMessage: ...

    def list_messages(
        self,
        *,
        ticket_id: str | None = None,
        project_id: str | None = None,
        pending_only: bool = False,
    ) -> list[InboxMessage]: ...

    # Milestones
    def insert_milestone(self, milestone: Milestone) -> Milestone: ...

    def update_milestone(self, milestone: Milestone) -> Milestone: ...

    def delete_milestone(self, milestone_id: str) -> bool: ...

    def get_milestone(self, milestone_id: str) -> Milestone | None: ...

    def get_milestone_by_key(self, project_id: str, key: str) -> Milestone | None: ...

    def list_milestones(self, *, project_id: str | None = None) -> list[Milestone]: ...

    # Ticket tasks
    def insert_task(self, task: TicketTask) -> TicketTask: ...

    def update_task(self, task: TicketTask) -> TicketTask: ...

    def delete_task(self, task_id: str) -> bool: ...

    def list_tasks(self, ticket_id: str) -> list[TicketTask]: ...


def sort_tickets(tickets: Sequence[Ticket]) -> list[Ticket]:
    """Work ordering: priority rank, then age, then number."""
    return sorted(tickets, key=lambda item: (item.priority.rank, item.created_at, item.number))


_MILESTONE_STATUS_ORDER = {
    MilestoneStatus.OPEN: 0,
    MilestoneStatus.ACHIEVED: 1,
    MilestoneStatus.ABANDONED: 2,
}


def sort_milestones(milestones: Sequence[Milestone]) -> list[Milestone]:
    """Open first, then by target date (undated last), then by name."""
    return sorted(
        milestones,
        key=lambda item: (
            _MILESTONE_STATUS_ORDER[item.status],
            item.target_date is None,
            item.target_date.timestamp() if item.target_date is not None else 0.0,
            item.name,
            item.key,
        ),
    )


__all__ = [
    "ClaimConflictError",
    "ConflictError",
    "IntegrityViolationError",
    "StaleWriteError",
    "StoreError",
    "TicketFilter",
    "TicketStore",
    "sort_milestones",
    "sort_tickets",
]
