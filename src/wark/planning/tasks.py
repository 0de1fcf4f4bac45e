"""
wark — ticket task checklists

File: src/wark/planning/tasks.py
Last updated: 2026-10-18

Purpose
- Keep an ordered checklist of steps on a ticket that workers tick off as they go.

What should be included in this file
- ``TaskChecklist.add`` / ``complete`` / ``uncomplete`` / ``remove`` / ``list``.
- ``TaskProgress`` counts for rendering ``3/5`` style progress.

Functional requirements
- Positions are 1-based and dense per ticket; removing a task renumbers the rest.
- ``complete`` without a position picks the first incomplete task.
- Completing an already complete task is a no-op reported as ``already_complete``.
- Closed tickets keep their checklist read-only.

Non-functional requirements
- Each mutation and its activity entry commit in one store transaction.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

import structlog

from wark.activity.recorder import ActivityRecorder
from wark.domain.ids import generate_task_id
from wark.domain.models import Action, ActorType, Ticket, TicketTask, utc_now
from wark.errors import InvalidArgsError, NotFoundError, StateError
from wark.persistence.base import TicketStore


@dataclass(frozen=True, slots=True)
class TaskProgress:
    total: int
    completed: int

    @classmethod
    def of(cls, tasks: Sequence[TicketTask]) -> TaskProgress:
        return cls(total=len(tasks), completed=sum(1 for task in tasks if task.complete))

    @property
    def remaining(self) -> int:
        return self.total - self.completed

    def to_dict(self) -> dict[str, object]:
        return {"total": self.total, "completed": self.completed, "remaining": self.remaining}


@dataclass(frozen=True, slots=True)
class TaskCompletion:
    task: TicketTask
    already_complete: bool
    progress: TaskProgress

    def to_dict(self) -> dict[str, object]:
        return {
            "task": self.task.to_dict(),
            "already_complete": self.already_complete,
            "progress": self.progress.to_dict(),
        }


class TaskChecklist:
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

    def list(self, ticket_id: str) -> list[TicketTask]:
        return self._store.list_tasks(ticket_id)

    def add(
        self,
        ticket_id: str,
        description: str,
        *,
        actor_type: ActorType = ActorType.HUMAN,
        actor_id: str | None = None,
    ) -> TicketTask:
        """Append a task after the current last position."""

        if not isinstance(description, str) or not description.strip():
            raise InvalidArgsError("a task description is required")
        with self._store.transaction():
            ticket = self._require_open(ticket_id)
            tasks = self._store.list_tasks(ticket.id)
            now = self._clock()
            task = TicketTask(
                id=generate_task_id(),
                ticket_id=ticket.id,
                position=len(tasks) + 1,
                description=description,
                created_at=now,
                updated_at=now,
            )
            self._store.insert_task(task)
            self._recorder.append(
                ticket,
                Action.TASK_ADDED,
                actor_type=actor_type,
                actor_id=actor_id,
                summary=f"Added task {task.position}: {task.description}",
                details={"position": task.position, "task_id": task.id},
                now=now,
            )
        return task

    def complete(
        self,
        ticket_id: str,
        position: int | None = None,
        *,
        actor_type: ActorType = ActorType.AGENT,
        actor_id: str | None = None,
    ) -> TaskCompletion:
        with self._store.transaction():
            ticket = self._require_open(ticket_id)
            tasks = self._store.list_tasks(ticket.id)
            if position is None:
                pending = [task for task in tasks if not task.complete]
                if not tasks:
                    raise InvalidArgsError(
                        f"{ticket.key} has no tasks",
                        suggestion=f"Add one with `wark task add {ticket.key} <description>`.",
                    )
                if not pending:
                    raise StateError(
                        f"every task of {ticket.key} is already complete",
                        details={"ticket": ticket.key, "total": len(tasks)},
                    )
                target = pending[0]
            else:
                target = _at_position(ticket, tasks, position)

            if target.complete:
                return TaskCompletion(
                    task=target, already_complete=True, progress=TaskProgress.of(tasks)
                )

            now = self._clock()
            done = replace(target, complete=True, updated_at=now)
            self._store.update_task(done)
            updated = [done if task.id == done.id else task for task in tasks]
            progress = TaskProgress.of(updated)
            self._recorder.append(
                ticket,
                Action.TASK_COMPLETED,
                actor_type=actor_type,
                actor_id=actor_id,
                summary=f"Completed task {done.position}: {done.description}",
                details={
                    "position": done.position,
                    "task_id": done.id,
                    "completed": progress.completed,
                    "total": progress.total,
                },
                now=now,
            )
        self._logger.info(
            "task_completed",
            ticket_key=ticket.key,
            position=done.position,
            remaining=progress.remaining,
        )
        return TaskCompletion(task=done, already_complete=False, progress=progress)

    def uncomplete(
        self,
        ticket_id: str,
        position: int,
        *,
        actor_id: str | None = None,
    ) -> TicketTask:
        with self._store.transaction():
            ticket = self._require_open(ticket_id)
            target = _at_position(ticket, self._store.list_tasks(ticket.id), position)
            if not target.complete:
                return target
            now = self._clock()
            reopened = replace(target, complete=False, updated_at=now)
            self._store.update_task(reopened)
            self._recorder.append(
                ticket,
                Action.FIELD_CHANGED,
                actor_type=ActorType.HUMAN,
                actor_id=actor_id,
                summary=f"Marked task {position} incomplete",
                details={"task": {"position": position, "complete": {"from": True, "to": False}}},
                now=now,
            )
        return reopened

    def remove(
        self,
        ticket_id: str,
        position: int,
        *,
        actor_id: str | None = None,
    ) -> TicketTask:
        """Delete the task at ``position`` and close the gap it leaves."""

        with self._store.transaction():
            ticket = self._require_open(ticket_id)
            tasks = self._store.list_tasks(ticket.id)
            target = _at_position(ticket, tasks, position)
            self._store.delete_task(target.id)
            now = self._clock()
            for task in tasks:
                if task.position > target.position:
                    self._store.update_task(
                        replace(task, position=task.position - 1, updated_at=now)
                    )
            self._recorder.append(
                ticket,
                Action.FIELD_CHANGED,
                actor_type=ActorType.HUMAN,
                actor_id=actor_id,
                summary=f"Removed task {target.position}: {target.description}",
                details={"task": {"position": target.position, "removed": target.description}},
                now=now,
            )
        return target

    def _require_open(self, ticket_id: str) -> Ticket:
        ticket = self._store.get_ticket(ticket_id)
        if ticket is None:
            raise NotFoundError(f"ticket {ticket_id} not found", details={"ticket": ticket_id})
        if ticket.is_terminal:
            raise StateError(
                f"cannot change tasks of {ticket.key}: status is {ticket.status.value}",
                suggestion="Reopen the ticket first.",
                details={"ticket": ticket.key, "status": ticket.status.value},
            )
        return ticket


def _at_position(ticket: Ticket, tasks: Sequence[TicketTask], position: int) -> TicketTask:
    for task in tasks:
        if task.position == position:
            return task
    raise NotFoundError(
        f"{ticket.key} has no task {position}",
        suggestion=f"List tasks with `wark task list {ticket.key}`.",
        details={"ticket": ticket.key, "position": position, "total": len(tasks)},
    )


__all__ = ["TaskChecklist", "TaskCompletion", "TaskProgress"]
