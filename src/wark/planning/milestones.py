"""
wark — milestones

File: src/wark/planning/milestones.py
Last updated: 2026-10-18

Purpose
- Group a project's tickets under named targets and report how far along each one is.

What should be included in this file
- ``MilestonePlanner`` create / update / status changes / delete / assign.
- ``MilestoneProgress`` with ticket, completed and percentage counts.

Functional requirements
- Keys are unique per project and follow ``[A-Z][A-Z0-9_]{0,19}``.
- ``achieve`` and ``abandon`` require an open milestone; ``reopen`` requires a closed one.
- Deleting a milestone unlinks its tickets; tickets are never deleted.
- A ticket can only be assigned to a milestone of its own project.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

import structlog

from wark.activity.recorder import ActivityRecorder
from wark.domain import ids as domain_ids
from wark.domain.models import (
    Action,
    ActorType,
    Milestone,
    MilestoneStatus,
    Project,
    Ticket,
    TicketStatus,
    utc_now,
)
from wark.errors import InvalidArgsError, NotFoundError, StateError
from wark.persistence.base import TicketFilter, TicketStore

_UNSET: Any = object()

_ALLOWED_FROM: dict[MilestoneStatus, frozenset[MilestoneStatus]] = {
    MilestoneStatus.ACHIEVED: frozenset({MilestoneStatus.OPEN}),
    MilestoneStatus.ABANDONED: frozenset({MilestoneStatus.OPEN}),
    MilestoneStatus.OPEN: frozenset({MilestoneStatus.ACHIEVED, MilestoneStatus.ABANDONED}),
}


@dataclass(frozen=True, slots=True)
class MilestoneProgress:
    milestone: Milestone
    ticket_count: int
    completed_count: int

    @property
    def completion_pct(self) -> float:
        if self.ticket_count == 0:
            return 0.0
        return round(100.0 * self.completed_count / self.ticket_count, 1)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = dict(self.milestone.to_dict())
        payload.update(
            ticket_count=self.ticket_count,
            completed_count=self.completed_count,
            completion_pct=self.completion_pct,
        )
        return payload


class MilestonePlanner:
    def __init__(
        self,
        store: TicketStore,
        *,
        recorder: ActivityRecorder,
        clock: Callable[[], datetime] = utc_now,
        logger: Any | None = None,
    ) -> None:
        self._store = store
        self._recorder = recorder
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def create(
        self,
        project: Project,
        key: str,
        name: str,
        *,
        goal: str = "",
        target_date: datetime | None = None,
    ) -> Milestone:
        normalized = domain_ids.normalize_milestone_key(key)
        if not isinstance(name, str) or not name.strip():
            raise InvalidArgsError("a milestone name is required")
        with self._store.transaction():
            if self._store.get_milestone_by_key(project.id, normalized) is not None:
                raise InvalidArgsError(
                    f"milestone {normalized} already exists in {project.key}",
                    suggestion="Pick a different milestone key.",
                    details={"project": project.key, "milestone": normalized},
                )
            now = self._clock()
            milestone = Milestone(
                id=domain_ids.generate_milestone_id(),
                project_id=project.id,
                key=normalized,
                name=name,
                goal=goal,
                target_date=target_date,
                created_at=now,
                updated_at=now,
            )
            self._store.insert_milestone(milestone)
        self._logger.info("milestone_created", project_key=project.key, milestone=normalized)
        return milestone

    def require(self, project: Project, key: str) -> Milestone:
        milestone = self._store.get_milestone_by_key(project.id, str(key).strip().upper())
        if milestone is None:
            raise NotFoundError(
                f"milestone {str(key).strip().upper()} not found in {project.key}",
                suggestion=f"List milestones with `wark milestone list {project.key}`.",
                details={"project": project.key, "milestone": key},
            )
        return milestone

    def progress(self, milestone: Milestone) -> MilestoneProgress:
        linked = TicketFilter(milestone_id=milestone.id)
        return MilestoneProgress(
            milestone=milestone,
            ticket_count=self._store.count_tickets(linked),
            completed_count=self._store.count_tickets(
                replace(linked, statuses=(TicketStatus.DONE,))
            ),
        )

    def list(self, *, project_id: str | None = None) -> list[MilestoneProgress]:
        return [
            self.progress(milestone)
            for milestone in self._store.list_milestones(project_id=project_id)
        ]

    def update(
        self,
        project: Project,
        key: str,
        *,
        name: str | None = None,
        goal: str | None = None,
        target_date: datetime | None = _UNSET,
    ) -> Milestone:
        """Change the given fields; ``target_date=None`` clears the date."""

        changes: dict[str, object] = {}
        if name is not None:
            if not name.strip():
                raise InvalidArgsError("a milestone name is required")
            changes["name"] = name
        if goal is not None:
            changes["goal"] = goal
        if target_date is not _UNSET:
            changes["target_date"] = target_date
        with self._store.transaction():
            milestone = self.require(project, key)
            if not changes:
                return milestone
            updated = replace(milestone, updated_at=self._clock(), **changes)
            self._store.update_milestone(updated)
        return updated

    def set_status(self, project: Project, key: str, status: MilestoneStatus) -> Milestone:
        with self._store.transaction():
            milestone = self.require(project, key)
            if milestone.status not in _ALLOWED_FROM[status]:
                raise StateError(
                    f"cannot mark milestone {milestone.key} {status.value}: "
                    f"it is {milestone.status.value}",
                    details={
                        "milestone": milestone.key,
                        "status": milestone.status.value,
                        "target": status.value,
                    },
                )
            updated = replace(milestone, status=status, updated_at=self._clock())
            self._store.update_milestone(updated)
        self._logger.info(
            "milestone_status_changed",
            project_key=project.key,
            milestone=updated.key,
            status=status.value,
        )
        return updated

    def delete(self, project: Project, key: str) -> int:
        """Remove the milestone and return how many tickets were unlinked."""

        with self._store.transaction():
            milestone = self.require(project, key)
            unlinked = self._store.clear_milestone(milestone.id, now=self._clock())
            self._store.delete_milestone(milestone.id)
        self._logger.info(
            "milestone_deleted", project_key=project.key, milestone=milestone.key, unlinked=unlinked
        )
        return unlinked

    def assign(
        self,
        ticket: Ticket,
        key: str | None,
        *,
        actor_type: ActorType = ActorType.HUMAN,
        actor_id: str | None = None,
    ) -> Ticket:
        """Link ``ticket`` to milestone ``key`` of its project, or unlink it when ``None``."""

        with self._store.transaction():
            current = self._store.get_ticket(ticket.id)
            if current is None:
                raise NotFoundError(
                    f"ticket {ticket.key} not found", details={"ticket": ticket.key}
                )
            previous = (
                self._store.get_milestone(current.milestone_id)
                if current.milestone_id is not None
                else None
            )
            target = None
            if key is not None:
                project = self._store.get_project(current.project_id)
                if project is None:
                    raise NotFoundError(f"project of {current.key} not found")
                target = self.require(project, key)
            target_id = target.id if target is not None else None
            if current.milestone_id == target_id:
                return current
            now = self._clock()
            updated = replace(current, milestone_id=target_id, updated_at=now)
            self._store.update_ticket(updated, expected_status=current.status)
            before = previous.key if previous is not None else None
            after = target.key if target is not None else None
            self._recorder.append(
                updated,
                Action.MILESTONE_CHANGED,
                actor_type=actor_type,
                actor_id=actor_id,
                summary=f"Milestone set to {after}" if after else "Removed from milestone",
                details={"milestone": {"from": before, "to": after}},
                now=now,
            )
        return updated

    def tickets(self, milestone: Milestone, *, limit: int = 100, offset: int = 0) -> list[Ticket]:
        return self._store.list_tickets(
            TicketFilter(milestone_id=milestone.id, limit=limit, offset=offset)
        )


__all__ = ["MilestonePlanner", "MilestoneProgress"]
