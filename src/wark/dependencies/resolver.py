"""
wark — dependency resolver

File: src/wark/dependencies/resolver.py
Last updated: 2026-10-18

Purpose
- Maintain the prerequisite DAG and drive the automatic ``validate`` /
  ``add_dependency`` / ``dependency_resolved`` / ``children_*`` transitions.

What should be included in this file
- Edge insertion with cycle rejection, edge removal, initial validation of new or
  reopened tickets.
- ``on_ticket_closed``: dependent propagation and parent propagation.
- ``resolve_all``: batch repair scan over every blocked ticket.

Functional requirements
- Cycle detection is a reachability check from the prerequisite back to the dependent,
  performed before the edge is written. A rejected edge leaves the graph unchanged.
- A blocked ticket is unblocked only after a full re-scan finds every prerequisite
  closed as done/completed.
- An unsuccessful prerequisite never unblocks; open dependents are flagged instead.
- Propagation is idempotent: re-running it for the same closed ticket changes nothing.

Non-functional requirements
- Batch entry points return structured results; a single item's failure is counted,
  never raised. Connectivity/corruption failures of the store still propagate.
- Every decision re-reads the ticket from the store first; nothing is cached.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

import structlog

from wark.activity.recorder import ActivityRecorder
from wark.dependencies.graph import CycleError, DependencyGraph
from wark.domain.models import (
    Action,
    ActorType,
    ClaimStatus,
    Dependency,
    Resolution,
    Ticket,
    TicketStatus,
    utc_now,
)
from wark.errors import InvalidArgsError, NotFoundError, StateError, WarkError
from wark.persistence.base import (
    ConflictError,
    IntegrityViolationError,
    TicketFilter,
    TicketStore,
)
from wark.state.machine import DEFAULT_STATE_MACHINE, Event, StateMachine
from wark.state.transitions import apply_transition, finish_active_claim

_DEPENDENCY_EDITABLE: frozenset[TicketStatus] = frozenset(
    {TicketStatus.CREATED, TicketStatus.READY, TicketStatus.BLOCKED, TicketStatus.IN_PROGRESS}
)

_ITEM_ERRORS = (WarkError, ConflictError, IntegrityViolationError, ValueError)

_PREREQUISITE_FAILURE_PREFIX = "Prerequisite "
_PREREQUISITE_FAILURE_MARKER = " was closed as "


def _prerequisite_failure_reason(failed: Ticket, resolution: Resolution) -> str:
    return f"{_PREREQUISITE_FAILURE_PREFIX}{failed.key}{_PREREQUISITE_FAILURE_MARKER}{resolution.value}"


def _is_prerequisite_failure(reason: str | None) -> bool:
    return (
        reason is not None
        and reason.startswith(_PREREQUISITE_FAILURE_PREFIX)
        and _PREREQUISITE_FAILURE_MARKER in reason
    )


@dataclass(frozen=True, slots=True)
class UnblockResult:
    """Outcome for one dependent of a closed ticket (or one ticket of a repair scan)."""

    ticket_id: str
    ticket_key: str | None
    outcome: str
    previous_status: str | None = None
    new_status: str | None = None
    unresolved: tuple[str, ...] = ()
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "ticket_id": self.ticket_id,
            "ticket_key": self.ticket_key,
            "outcome": self.outcome,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "unresolved": list(self.unresolved),
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class ParentUpdateResult:
    parent_id: str
    parent_key: str | None
    outcome: str
    previous_status: str | None = None
    new_status: str | None = None
    children_done: int = 0
    children_total: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "parent_id": self.parent_id,
            "parent_key": self.parent_key,
            "outcome": self.outcome,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "children_done": self.children_done,
            "children_total": self.children_total,
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class ResolutionResult:
    """Aggregate outcome of ``on_ticket_closed``, including cascaded parents."""

    ticket_id: str
    ticket_key: str
    unblocked: int
    escalated: int
    parents_updated: int
    errors: int
    dependents: tuple[UnblockResult, ...] = ()
    parents: tuple[ParentUpdateResult, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "ticket_id": self.ticket_id,
            "ticket_key": self.ticket_key,
            "unblocked": self.unblocked,
            "escalated": self.escalated,
            "parents_updated": self.parents_updated,
            "errors": self.errors,
            "dependents": [item.to_dict() for item in self.dependents],
            "parents": [item.to_dict() for item in self.parents],
        }


@dataclass(frozen=True, slots=True)
class ResolveAllResult:
    scanned: int
    unblocked: int
    errors: int
    items: tuple[UnblockResult, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "scanned": self.scanned,
            "unblocked": self.unblocked,
            "errors": self.errors,
            "items": [item.to_dict() for item in self.items],
        }


@dataclass(slots=True)
class _Accumulator:
    dependents: list[UnblockResult] = field(default_factory=list)
    parents: list[ParentUpdateResult] = field(default_factory=list)
    visited: set[str] = field(default_factory=set)


class DependencyResolver:
    def __init__(
        self,
        store: TicketStore,
        *,
        machine: StateMachine = DEFAULT_STATE_MACHINE,
        recorder: ActivityRecorder | None = None,
        clock: Callable[[], datetime] = utc_now,
        flag_dependents_on_failed_prerequisite: bool = True,
        allow_parent_completion_with_failed_children: bool = False,
        logger: Any | None = None,
    ) -> None:
        self._store = store
        self._machine = machine
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._recorder = (
            recorder
            if recorder is not None
            else ActivityRecorder(store, clock=clock, logger=self._logger)
        )
        self._flag_dependents = flag_dependents_on_failed_prerequisite
        self._allow_failed_children = allow_parent_completion_with_failed_children

    # Queries

    def unresolved_prerequisites(self, ticket_id: str) -> list[Ticket]:
        """Prerequisites of ``ticket_id`` that are not closed as done/completed."""

        unresolved: list[Ticket] = []
        for edge in self._store.list_prerequisites(ticket_id):
            prerequisite = self._store.get_ticket(edge.depends_on_id)
            if prerequisite is None:
                raise NotFoundError(f"prerequisite {edge.depends_on_id} of {ticket_id} not found")
            if not prerequisite.is_successfully_closed:
                unresolved.append(prerequisite)
        return unresolved

    def graph(self, *, project_id: str | None = None) -> DependencyGraph:
        return DependencyGraph.from_dependencies(
            self._store.list_dependencies(project_id=project_id)
        )

    # Edge maintenance

    def validate_ticket(
        self,
        ticket: Ticket,
        *,
        actor_type: ActorType = ActorType.SYSTEM,
        actor_id: str | None = None,
    ) -> Ticket:
        """Drive a ``created`` ticket to ``ready`` or ``blocked``."""

        now = self._clock()
        unresolved = self.unresolved_prerequisites(ticket.id)
        target = TicketStatus.BLOCKED if unresolved else TicketStatus.READY
        updated = apply_transition(
            self._store, self._machine, ticket, Event.VALIDATE, now=now, target=target
        )
        if unresolved:
            self._recorder.append(
                updated,
                Action.BLOCKED,
                actor_type=actor_type,
                actor_id=actor_id,
                summary=f"Blocked by {', '.join(item.key for item in unresolved)}",
                details={"unresolved": [item.key for item in unresolved]},
                now=now,
            )
        return updated

    def add_dependency(
        self,
        dependent_id: str,
        prerequisite_id: str,
        *,
        actor_type: ActorType = ActorType.HUMAN,
        actor_id: str | None = None,
    ) -> Ticket:
        """Insert ``dependent -> prerequisite`` and block the dependent when needed.

        Raises ``InvalidArgsError`` for a self edge, a duplicate edge, or an edge that
        would close a cycle; the graph is unchanged in each case.
        """

        with self._store.transaction():
            dependent = self._require(dependent_id)
            prerequisite = self._require(prerequisite_id)

            if dependent.id == prerequisite.id:
                raise InvalidArgsError(
                    f"{dependent.key} cannot depend on itself",
                    details={"dependent": dependent.key, "prerequisite": prerequisite.key},
                )
            existing = {item.depends_on_id for item in self._store.list_prerequisites(dependent.id)}
            if prerequisite.id in existing:
                raise InvalidArgsError(
                    f"{dependent.key} already depends on {prerequisite.key}",
                    details={"dependent": dependent.key, "prerequisite": prerequisite.key},
                )
            try:
                self.graph().check_new_edge(dependent.id, prerequisite.id)
            except CycleError as exc:
                raise InvalidArgsError(
                    f"adding {dependent.key} -> {prerequisite.key} would create a dependency cycle",
                    suggestion="Remove one of the existing edges on the cycle first.",
                    details={
                        "dependent": dependent.key,
                        "prerequisite": prerequisite.key,
                        "cycle": [list(cycle) for cycle in exc.cycles],
                    },
                    cause=exc,
                ) from exc

            if dependent.status not in _DEPENDENCY_EDITABLE:
                raise StateError(
                    f"cannot add a dependency to {dependent.key}: "
                    f"status is {dependent.status.value}",
                    suggestion="Dependencies can be added while a ticket is created, ready, "
                    "blocked or in progress.",
                    details={"ticket": dependent.key, "status": dependent.status.value},
                )

            now = self._clock()
            self._store.insert_dependency(
                Dependency(ticket_id=dependent.id, depends_on_id=prerequisite.id, created_at=now)
            )
            self._recorder.append(
                dependent,
                Action.DEPENDENCY_ADDED,
                actor_type=actor_type,
                actor_id=actor_id,
                summary=f"Now depends on {prerequisite.key}",
                details={"depends_on_id": prerequisite.id, "depends_on_key": prerequisite.key},
                now=now,
            )

            if prerequisite.is_successfully_closed or dependent.status not in {
                TicketStatus.READY,
                TicketStatus.IN_PROGRESS,
            }:
                return dependent

            released = None
            if dependent.status is TicketStatus.IN_PROGRESS:
                released = finish_active_claim(
                    self._store, dependent.id, ClaimStatus.RELEASED, now=now
                )
            blocked = apply_transition(
                self._store, self._machine, dependent, Event.ADD_DEPENDENCY, now=now
            )
            details: dict[str, object] = {
                "blocked_by_id": prerequisite.id,
                "blocked_by_key": prerequisite.key,
            }
            if released is not None:
                details["released_claim_id"] = released.id
                details["released_worker_id"] = released.worker_id
            self._recorder.append(
                blocked,
                Action.BLOCKED,
                actor_type=actor_type,
                actor_id=actor_id,
                summary=f"Blocked by {prerequisite.key}",
                details=details,
                now=now,
            )
            self._logger.info(
                "ticket_blocked",
                ticket_key=blocked.key,
                blocked_by=prerequisite.key,
                released_claim=released.id if released is not None else None,
            )
            return blocked

    def remove_dependency(
        self,
        dependent_id: str,
        prerequisite_id: str,
        *,
        actor_type: ActorType = ActorType.HUMAN,
        actor_id: str | None = None,
    ) -> Ticket:
        with self._store.transaction():
            dependent = self._require(dependent_id)
            prerequisite = self._require(prerequisite_id)
            if not self._store.delete_dependency(dependent.id, prerequisite.id):
                raise NotFoundError(
                    f"{dependent.key} does not depend on {prerequisite.key}",
                    details={"dependent": dependent.key, "prerequisite": prerequisite.key},
                )

            now = self._clock()
            self._recorder.append(
                dependent,
                Action.DEPENDENCY_REMOVED,
                actor_type=actor_type,
                actor_id=actor_id,
                summary=f"No longer depends on {prerequisite.key}",
                details={"depends_on_id": prerequisite.id, "depends_on_key": prerequisite.key},
                now=now,
            )
            if dependent.status is not TicketStatus.BLOCKED:
                return dependent
            if self.unresolved_prerequisites(dependent.id):
                return dependent

            unblocked = apply_transition(
                self._store, self._machine, dependent, Event.DEPENDENCY_RESOLVED, now=now
            )
            self._recorder.append(
                unblocked,
                Action.UNBLOCKED,
                summary=f"Unblocked after removing dependency on {prerequisite.key}",
                details={
                    "removed_dependency_id": prerequisite.id,
                    "removed_dependency_key": prerequisite.key,
                },
                now=now,
            )
            return unblocked

    # Propagation

    def on_ticket_closed(
        self,
        ticket_id: str,
        *,
        auto_accept_parent: bool = False,
    ) -> ResolutionResult:
        """Propagate a terminal ticket to its dependents and its parent."""

        closed = self._require(ticket_id)
        if not closed.is_terminal:
            raise StateError(
                f"{closed.key} is not closed: status is {closed.status.value}",
                details={"ticket": closed.key, "status": closed.status.value},
            )

        acc = _Accumulator()
        self._propagate(closed, auto_accept_parent=auto_accept_parent, acc=acc)

        dependents = tuple(acc.dependents)
        parents = tuple(acc.parents)
        result = ResolutionResult(
            ticket_id=closed.id,
            ticket_key=closed.key,
            unblocked=sum(1 for item in dependents if item.outcome == "unblocked"),
            escalated=sum(1 for item in dependents if item.outcome == "escalated"),
            parents_updated=sum(1 for item in parents if item.new_status is not None),
            errors=sum(1 for item in dependents if item.outcome == "error")
            + sum(1 for item in parents if item.outcome == "error"),
            dependents=dependents,
            parents=parents,
        )
        self._logger.info(
            "ticket_closed_propagated",
            ticket_key=closed.key,
            resolution=closed.resolution.value if closed.resolution else None,
            unblocked=result.unblocked,
            escalated=result.escalated,
            parents_updated=result.parents_updated,
            errors=result.errors,
        )
        return result

    def _propagate(self, closed: Ticket, *, auto_accept_parent: bool, acc: _Accumulator) -> None:
        if closed.id in acc.visited:
            return
        acc.visited.add(closed.id)

        for edge in self._store.list_dependents(closed.id):
            acc.dependents.append(self._propagate_to_dependent(closed, edge.ticket_id))

        if closed.parent_ticket_id is None:
            return
        parent_result = self._propagate_to_parent(
            closed.parent_ticket_id, auto_accept=auto_accept_parent
        )
        acc.parents.append(parent_result)
        if parent_result.new_status == TicketStatus.DONE.value:
            parent = self._store.get_ticket(closed.parent_ticket_id)
            if parent is not None and parent.is_terminal:
                self._propagate(parent, auto_accept_parent=auto_accept_parent, acc=acc)

    def _propagate_to_dependent(self, closed: Ticket, dependent_id: str) -> UnblockResult:
        try:
            with self._store.transaction():
                dependent = self._store.get_ticket(dependent_id)
                if dependent is None:
                    raise NotFoundError(f"dependent ticket {dependent_id} not found")
                if closed.is_successfully_closed:
                    return self._try_unblock(dependent, resolved_by=closed)
                return self._flag_failed_prerequisite(dependent, failed=closed)
        except _ITEM_ERRORS as exc:
            self._logger.warning(
                "dependent_update_failed",
                ticket_id=dependent_id,
                closed_ticket=closed.key,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return UnblockResult(
                ticket_id=dependent_id, ticket_key=None, outcome="error", error=str(exc)
            )

    def _try_unblock(self, dependent: Ticket, *, resolved_by: Ticket | None) -> UnblockResult:
        if dependent.status is not TicketStatus.BLOCKED:
            return UnblockResult(
                ticket_id=dependent.id,
                ticket_key=dependent.key,
                outcome="not_blocked",
                previous_status=dependent.status.value,
            )

        unresolved = self.unresolved_prerequisites(dependent.id)
        if unresolved:
            return UnblockResult(
                ticket_id=dependent.id,
                ticket_key=dependent.key,
                outcome="still_blocked",
                previous_status=dependent.status.value,
                unresolved=tuple(item.key for item in unresolved),
            )

        now = self._clock()
        changes: dict[str, Any] = {}
        if _is_prerequisite_failure(dependent.human_flag_reason):
            changes["human_flag_reason"] = None
        unblocked = apply_transition(
            self._store, self._machine, dependent, Event.DEPENDENCY_RESOLVED, now=now, **changes
        )
        details: dict[str, object] = {}
        summary = "All dependencies resolved"
        if resolved_by is not None:
            details = {
                "resolved_dependency_id": resolved_by.id,
                "resolved_dependency_key": resolved_by.key,
            }
            summary = f"Unblocked: {resolved_by.key} completed"
        self._recorder.append(
            unblocked, Action.UNBLOCKED, summary=summary, details=details, now=now
        )
        self._logger.info(
            "ticket_unblocked",
            ticket_key=unblocked.key,
            resolved_by=resolved_by.key if resolved_by is not None else None,
        )
        return UnblockResult(
            ticket_id=unblocked.id,
            ticket_key=unblocked.key,
            outcome="unblocked",
            previous_status=dependent.status.value,
            new_status=unblocked.status.value,
        )

    def _flag_failed_prerequisite(self, dependent: Ticket, *, failed: Ticket) -> UnblockResult:
        skipped = UnblockResult(
            ticket_id=dependent.id,
            ticket_key=dependent.key,
            outcome="skipped",
            previous_status=dependent.status.value,
        )
        if not self._flag_dependents or dependent.is_terminal:
            return skipped

        resolution = failed.resolution or Resolution.WONT_DO
        reason = _prerequisite_failure_reason(failed, resolution)
        if dependent.human_flag_reason == reason:
            return skipped

        now = self._clock()
        flagged = replace(dependent, human_flag_reason=reason, updated_at=now)
        self._store.update_ticket(flagged, expected_status=dependent.status)
        self._recorder.append(
            flagged,
            Action.ESCALATED,
            summary=reason,
            details={
                "failed_dependency_id": failed.id,
                "failed_dependency_key": failed.key,
                "resolution": resolution.value,
            },
            now=now,
        )
        self._logger.warning(
            "dependent_escalated",
            ticket_key=flagged.key,
            failed_prerequisite=failed.key,
            resolution=resolution.value,
        )
        return UnblockResult(
            ticket_id=flagged.id,
            ticket_key=flagged.key,
            outcome="escalated",
            previous_status=dependent.status.value,
            new_status=dependent.status.value,
        )

    def _propagate_to_parent(self, parent_id: str, *, auto_accept: bool) -> ParentUpdateResult:
        try:
            with self._store.transaction():
                return self._update_parent(parent_id, auto_accept=auto_accept)
        except _ITEM_ERRORS as exc:
            self._logger.warning(
                "parent_update_failed",
                ticket_id=parent_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return ParentUpdateResult(
                parent_id=parent_id, parent_key=None, outcome="error", error=str(exc)
            )

    def _update_parent(self, parent_id: str, *, auto_accept: bool) -> ParentUpdateResult:
        parent = self._store.get_ticket(parent_id)
        if parent is None:
            raise NotFoundError(f"parent ticket {parent_id} not found")

        def noop(outcome: str, done: int = 0, total: int = 0) -> ParentUpdateResult:
            return ParentUpdateResult(
                parent_id=parent.id,
                parent_key=parent.key,
                outcome=outcome,
                previous_status=parent.status.value,
                children_done=done,
                children_total=total,
            )

        if parent.is_terminal:
            return noop("parent_closed")
        if parent.status is TicketStatus.NEEDS_HUMAN:
            return noop("parent_needs_human")

        children = self._store.list_children(parent.id)
        total = len(children)
        if total == 0:
            return noop("no_children")
        if self._allow_failed_children:
            done = sum(1 for child in children if child.is_terminal)
        else:
            done = sum(1 for child in children if child.is_successfully_closed)
        if done < total:
            return noop("children_pending", done, total)
        if parent.status is TicketStatus.REVIEW and not auto_accept:
            return noop("already_in_review", done, total)

        now = self._clock()
        if parent.status is TicketStatus.IN_PROGRESS:
            finish_active_claim(self._store, parent.id, ClaimStatus.COMPLETED, now=now)
        if auto_accept:
            updated = apply_transition(
                self._store,
                self._machine,
                parent,
                Event.CHILDREN_ACCEPTED,
                now=now,
                resolution=Resolution.COMPLETED,
                completed_at=now,
            )
            summary = f"All {total} child tickets completed; auto-accepted"
        else:
            updated = apply_transition(
                self._store, self._machine, parent, Event.CHILDREN_COMPLETED, now=now
            )
            summary = f"All {total} child tickets completed; ready for review"

        self._recorder.append(
            updated,
            Action.COMPLETED,
            summary=summary,
            details={"children_done": done, "children_total": total, "auto_accepted": auto_accept},
            now=now,
        )
        self._logger.info(
            "parent_completed",
            ticket_key=updated.key,
            new_status=updated.status.value,
            children_total=total,
            auto_accepted=auto_accept,
        )
        return ParentUpdateResult(
            parent_id=updated.id,
            parent_key=updated.key,
            outcome="updated",
            previous_status=parent.status.value,
            new_status=updated.status.value,
            children_done=done,
            children_total=total,
        )

    def resolve_all(self, *, project_id: str | None = None) -> ResolveAllResult:
        """Re-evaluate every blocked ticket; used for repair after bulk changes."""

        items: list[UnblockResult] = []
        offset = 0
        blocked: list[Ticket] = []
        while True:
            page = self._store.list_tickets(
                TicketFilter(
                    project_id=project_id,
                    statuses=(TicketStatus.BLOCKED,),
                    limit=500,
                    offset=offset,
                )
            )
            blocked.extend(page)
            if len(page) < 500:
                break
            offset += len(page)

        for ticket in blocked:
            try:
                with self._store.transaction():
                    current = self._require(ticket.id)
                    items.append(self._try_unblock(current, resolved_by=None))
            except _ITEM_ERRORS as exc:
                self._logger.warning(
                    "resolve_item_failed",
                    ticket_key=ticket.key,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                items.append(
                    UnblockResult(
                        ticket_id=ticket.id,
                        ticket_key=ticket.key,
                        outcome="error",
                        error=str(exc),
                    )
                )

        result = ResolveAllResult(
            scanned=len(blocked),
            unblocked=sum(1 for item in items if item.outcome == "unblocked"),
            errors=sum(1 for item in items if item.outcome == "error"),
            items=tuple(items),
        )
        self._logger.info(
            "resolve_all_finished",
            scanned=result.scanned,
            unblocked=result.unblocked,
            errors=result.errors,
        )
        return result

    def _require(self, ticket_id: str) -> Ticket:
        ticket = self._store.get_ticket(ticket_id)
        if ticket is None:
            raise NotFoundError(
                f"ticket {ticket_id} not found",
                suggestion="Use `wark ticket list` to see existing tickets.",
            )
        return ticket


__all__ = [
    "DependencyResolver",
    "ParentUpdateResult",
    "ResolutionResult",
    "ResolveAllResult",
    "UnblockResult",
]
