"""
wark — ticket service facade

File: src/wark/service.py
Last updated: 2026-10-18

Purpose
- Expose every ticket operation behind one object that callers (CLI, API handlers,
  the sweeper) share, with errors normalized to ``WarkError`` kinds.

What should be included in this file
- ``ServiceSettings`` derived from the effective config.
- ``TicketService`` wiring the store, state machine, activity recorder, claim manager,
  dependency resolver, task checklist and milestone planner together.
- Project, ticket, workflow, dependency, task, milestone, status, maintenance, history
  and snapshot operations.

Functional requirements
- Every mutation re-reads the ticket inside its own store transaction before validating.
- Closing a ticket (accept, cancel) commits first, then propagates to dependents and parent.
- Store failures surface as ``InternalError``; lost races as ``ConcurrentConflictError``.

Non-functional requirements
- No module-level store; the store is injected so tests can use ``MemoryTicketStore``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from wark.activity.recorder import ActivityRecorder
from wark.claims.manager import ClaimManager, ExpirationItem, ExpirationResult
from wark.claims.sweeper import ClaimSweeper
from wark.constants import (
    DEFAULT_CLAIM_DURATION_MINUTES,
    DEFAULT_MAX_RETRIES,
    EXPIRING_SOON_MINUTES,
    RECENT_ACTIVITY_LIMIT,
)
from wark.dependencies.resolver import DependencyResolver, ResolutionResult, ResolveAllResult
from wark.domain import ids as domain_ids
from wark.domain.models import (
    Action,
    ActivityEntry,
    ActorType,
    Claim,
    ClaimStatus,
    Complexity,
    FlagReason,
    InboxMessage,
    Milestone,
    MilestoneStatus,
    Priority,
    Project,
    Resolution,
    Ticket,
    TicketStatus,
    TicketTask,
    iso8601z,
    utc_now,
)
from wark.errors import (
    ConcurrentConflictError,
    InvalidArgsError,
    NotFoundError,
    StateError,
    translate_errors,
)
from wark.observability.logging import correlation_scope
from wark.persistence.base import TicketFilter, TicketStore
from wark.persistence.snapshot import (
    ImportResult,
    dump_snapshot,
    export_project as build_snapshot,
    import_snapshot,
    load_snapshot,
)
from wark.persistence.store import SQLiteTicketStore
from wark.planning.milestones import MilestonePlanner, MilestoneProgress
from wark.planning.tasks import TaskChecklist, TaskCompletion
from wark.state.machine import DEFAULT_STATE_MACHINE, Event, StateMachine
from wark.state.transitions import apply_transition, finish_active_claim

_EDITABLE_FIELDS = frozenset({"title", "description", "priority", "complexity", "max_retries"})


@dataclass(frozen=True, slots=True)
class ServiceSettings:
    default_claim_minutes: int = DEFAULT_CLAIM_DURATION_MINUTES
    max_retries: int = DEFAULT_MAX_RETRIES
    auto_accept_parent: bool = False
    allow_parent_completion_with_failed_children: bool = False
    flag_dependents_on_failed_prerequisite: bool = True
    sweep_interval_seconds: int = 60
    sweep_dry_run: bool = False

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> ServiceSettings:
        claims = config.get("claims", {})
        dependencies = config.get("dependencies", {})
        sweep = config.get("sweep", {})
        defaults = cls()
        return cls(
            default_claim_minutes=int(
                claims.get("default_duration_minutes", defaults.default_claim_minutes)
            ),
            max_retries=int(claims.get("max_retries", defaults.max_retries)),
            auto_accept_parent=bool(
                dependencies.get("auto_accept_parent", defaults.auto_accept_parent)
            ),
            allow_parent_completion_with_failed_children=bool(
                dependencies.get(
                    "allow_parent_completion_with_failed_children",
                    defaults.allow_parent_completion_with_failed_children,
                )
            ),
            flag_dependents_on_failed_prerequisite=bool(
                dependencies.get(
                    "flag_dependents_on_failed_prerequisite",
                    defaults.flag_dependents_on_failed_prerequisite,
                )
            ),
            sweep_interval_seconds=int(
                sweep.get("interval_seconds", defaults.sweep_interval_seconds)
            ),
            sweep_dry_run=bool(sweep.get("dry_run", defaults.sweep_dry_run)),
        )


@dataclass(frozen=True, slots=True)
class ClosedTicket:
    """A ticket that reached a terminal status plus what its closure propagated to."""

    ticket: Ticket
    resolution: ResolutionResult

    def to_dict(self) -> dict[str, object]:
        return {"ticket": self.ticket.to_dict(), "propagation": self.resolution.to_dict()}


@dataclass(frozen=True, slots=True)
class IntegrityReport:
    ok: bool
    messages: tuple[str, ...] = ()
    schema_version: int | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "ok": self.ok,
            "messages": list(self.messages),
            "schema_version": self.schema_version,
        }


@dataclass(frozen=True, slots=True)
class ExpiringClaim:
    ticket_key: str
    worker_id: str
    expires_at: datetime
    minutes_remaining: int

    def to_dict(self) -> dict[str, object]:
        return {
            "ticket_key": self.ticket_key,
            "worker_id": self.worker_id,
            "expires_at": iso8601z(self.expires_at),
            "minutes_remaining": self.minutes_remaining,
        }


@dataclass(frozen=True, slots=True)
class StatusSummary:
    """Queue health at a glance: what can be picked up, what is stuck, what is expiring."""

    project_key: str | None
    workable: int
    in_progress: int
    review: int
    blocked: int
    needs_human: int
    pending_inbox: int
    expiring_soon: tuple[ExpiringClaim, ...] = ()
    recent_activity: tuple[ActivityEntry, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "project_key": self.project_key,
            "workable": self.workable,
            "in_progress": self.in_progress,
            "review": self.review,
            "blocked": self.blocked,
            "needs_human": self.needs_human,
            "pending_inbox": self.pending_inbox,
            "expiring_soon": [item.to_dict() for item in self.expiring_soon],
            "recent_activity": [entry.to_dict() for entry in self.recent_activity],
        }


class TicketService:
    """Entry point for every ticket operation."""

    def __init__(
        self,
        store: TicketStore,
        *,
        settings: ServiceSettings | None = None,
        machine: StateMachine = DEFAULT_STATE_MACHINE,
        clock: Callable[[], datetime] = utc_now,
        logger: Any | None = None,
    ) -> None:
        self._store = store
        self._settings = settings if settings is not None else ServiceSettings()
        self._machine = machine
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self.recorder = ActivityRecorder(store, clock=clock, logger=self._logger)
        self.claims = ClaimManager(
            store,
            machine=machine,
            recorder=self.recorder,
            clock=clock,
            default_duration=timedelta(minutes=self._settings.default_claim_minutes),
            logger=self._logger,
        )
        self.resolver = DependencyResolver(
            store,
            machine=machine,
            recorder=self.recorder,
            clock=clock,
            flag_dependents_on_failed_prerequisite=(
                self._settings.flag_dependents_on_failed_prerequisite
            ),
            allow_parent_completion_with_failed_children=(
                self._settings.allow_parent_completion_with_failed_children
            ),
            logger=self._logger,
        )
        self.tasks = TaskChecklist(store, recorder=self.recorder, clock=clock, logger=self._logger)
        self.milestones = MilestonePlanner(
            store, recorder=self.recorder, clock=clock, logger=self._logger
        )

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        clock: Callable[[], datetime] = utc_now,
        logger: Any | None = None,
    ) -> TicketService:
        """Open the configured SQLite store and build a service over it."""

        paths = config.get("paths", {})
        database = config.get("database", {})
        with translate_errors("open state database"):
            store = SQLiteTicketStore.open(
                Path(str(paths["state_db"])),
                busy_timeout_ms=int(database.get("busy_timeout_ms", 5000)),
                busy_retry_limit=int(database.get("busy_retry_limit", 4)),
                busy_retry_backoff_ms=int(database.get("busy_retry_backoff_ms", 25)),
            )
            store.db.migrate()
        return cls(store, settings=ServiceSettings.from_config(config), clock=clock, logger=logger)

    @property
    def store(self) -> TicketStore:
        return self._store

    @property
    def settings(self) -> ServiceSettings:
        return self._settings

    # Projects

    def create_project(self, key: str, name: str, *, description: str = "") -> Project:
        with translate_errors("create project"):
            normalized = domain_ids.normalize_project_key(key)
            now = self._clock()
            project = Project(
                id=domain_ids.generate_project_id(),
                key=normalized,
                name=name,
                description=description,
                created_at=now,
                updated_at=now,
            )
            with self._store.transaction():
                if self._store.get_project_by_key(normalized) is not None:
                    raise InvalidArgsError(
                        f"project {normalized} already exists",
                        suggestion="Pick a different project key.",
                        details={"project": normalized},
                    )
                self._store.insert_project(project)
        self._logger.info("project_created", project_key=project.key)
        return project

    def get_project(self, key: str) -> Project:
        with translate_errors("get project"):
            return self._require_project(key)

    def list_projects(self) -> list[Project]:
        with translate_errors("list projects"):
            return self._store.list_projects()

    # Tickets

    def create_ticket(
        self,
        project_key: str,
        title: str,
        *,
        description: str = "",
        priority: Priority | str = Priority.MEDIUM,
        complexity: Complexity | str = Complexity.MEDIUM,
        max_retries: int | None = None,
        parent: str | None = None,
        depends_on: Sequence[str] = (),
        actor_type: ActorType = ActorType.HUMAN,
        actor_id: str | None = None,
    ) -> Ticket:
        """Insert a ticket as ``created`` and validate it to ``ready`` or ``blocked``."""

        with translate_errors("create ticket"):
            if not isinstance(title, str) or not title.strip():
                raise InvalidArgsError("ticket title must not be empty")
            with self._store.transaction():
                project = self._require_project(project_key)
                parent_ticket = None
                if parent is not None:
                    parent_ticket = self._require_ticket(parent)
                    if parent_ticket.project_id != project.id:
                        raise InvalidArgsError(
                            f"parent {parent_ticket.key} belongs to another project",
                            details={"parent": parent_ticket.key, "project": project.key},
                        )
                prerequisites = [self._require_ticket(ref) for ref in depends_on]

                now = self._clock()
                ticket = Ticket(
                    id=domain_ids.generate_ticket_id(),
                    project_id=project.id,
                    project_key=project.key,
                    number=self._store.next_ticket_number(project.id),
                    title=title,
                    description=description,
                    priority=Priority(priority),
                    complexity=Complexity(complexity),
                    max_retries=self._settings.max_retries if max_retries is None else max_retries,
                    parent_ticket_id=parent_ticket.id if parent_ticket is not None else None,
                    created_at=now,
                    updated_at=now,
                )
                self._store.insert_ticket(ticket)
                self.recorder.append(
                    ticket,
                    Action.CREATED,
                    actor_type=actor_type,
                    actor_id=actor_id,
                    summary=f"Created {ticket.key}: {ticket.title}",
                    details={"parent": parent_ticket.key if parent_ticket is not None else None},
                    now=now,
                )
                for prerequisite in prerequisites:
                    self.resolver.add_dependency(
                        ticket.id, prerequisite.id, actor_type=actor_type, actor_id=actor_id
                    )
                created = self.resolver.validate_ticket(
                    ticket, actor_type=actor_type, actor_id=actor_id
                )

        self._logger.info(
            "ticket_created",
            ticket_key=created.key,
            status=created.status.value,
            depends_on=len(prerequisites),
        )
        return created

    def get_ticket(self, ref: str) -> Ticket:
        """Look a ticket up by id or by key (``PROJ-3``)."""

        with translate_errors("get ticket"):
            return self._require_ticket(ref)

    def list_tickets(
        self,
        *,
        project_key: str | None = None,
        statuses: Iterable[TicketStatus | str] = (),
        priority: Priority | str | None = None,
        parent: str | None = None,
        milestone: str | None = None,
        worker_id: str | None = None,
        workable: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Ticket]:
        with translate_errors("list tickets"):
            project_id = self._require_project(project_key).id if project_key else None
            parent_id = self._require_ticket(parent).id if parent else None
            milestone_id = None
            if milestone:
                if not project_key:
                    raise InvalidArgsError("filtering by milestone requires a project key")
                milestone_id = self.milestones.require(
                    self._require_project(project_key), milestone
                ).id
            query = TicketFilter(
                project_id=project_id,
                statuses=tuple(TicketStatus(item) for item in statuses),
                priority=Priority(priority) if priority is not None else None,
                parent_ticket_id=parent_id,
                milestone_id=milestone_id,
                worker_id=worker_id,
                workable=workable,
                limit=limit,
                offset=offset,
            )
            return self._store.list_tickets(query)

    def next_ticket(
        self,
        *,
        project_key: str | None = None,
        worker_id: str | None = None,
        duration_minutes: int | None = None,
    ) -> tuple[Ticket, Claim | None] | None:
        """Return the most urgent workable ticket; claim it when ``worker_id`` is given.

        A candidate lost to a concurrent claimer is skipped in favour of the next one.
        """

        candidates = self.list_tickets(project_key=project_key, workable=True, limit=25)
        if worker_id is None:
            return (candidates[0], None) if candidates else None

        for candidate in candidates:
            try:
                claim = self.claim(candidate.id, worker_id, duration_minutes=duration_minutes)
            except ConcurrentConflictError:
                self._logger.info("next_candidate_taken", ticket_key=candidate.key)
                continue
            return self.get_ticket(candidate.id), claim
        return None

    def edit_ticket(
        self,
        ref: str,
        *,
        actor_id: str | None = None,
        **changes: object,
    ) -> Ticket:
        unknown = sorted(set(changes) - _EDITABLE_FIELDS)
        if unknown:
            raise InvalidArgsError(
                f"cannot edit fields: {', '.join(unknown)}",
                suggestion=f"Editable fields: {', '.join(sorted(_EDITABLE_FIELDS))}",
            )
        with translate_errors("edit ticket"):
            with self._store.transaction():
                ticket = self._require_ticket(ref)
                if ticket.is_terminal:
                    raise StateError(
                        f"cannot edit {ticket.key}: status is {ticket.status.value}",
                        suggestion="Reopen the ticket first.",
                    )
                provided = {key: value for key, value in changes.items() if value is not None}
                if "priority" in provided:
                    provided["priority"] = Priority(provided["priority"])
                if "complexity" in provided:
                    provided["complexity"] = Complexity(provided["complexity"])
                title = provided.get("title")
                if title is not None and (not isinstance(title, str) or not title.strip()):
                    raise InvalidArgsError("ticket title must not be empty")
                if not provided:
                    return ticket
                now = self._clock()
                updated = replace(ticket, updated_at=now, **provided)
                self._store.update_ticket(updated, expected_status=ticket.status)
                changed = {
                    key: {"from": _plain(getattr(ticket, key)), "to": _plain(getattr(updated, key))}
                    for key in sorted(provided)
                    if getattr(ticket, key) != getattr(updated, key)
                }
                if changed:
                    self.recorder.append(
                        updated,
                        Action.FIELD_CHANGED,
                        actor_type=ActorType.HUMAN,
                        actor_id=actor_id,
                        summary=f"Changed {', '.join(changed)}",
                        details=changed,
                        now=now,
                    )
        return updated

    # Workflow

    def claim(
        self,
        ref: str,
        worker_id: str,
        *,
        duration_minutes: int | None = None,
        actor_type: ActorType = ActorType.AGENT,
    ) -> Claim:
        with translate_errors("claim"):
            ticket = self._require_ticket(ref)
            duration = timedelta(minutes=duration_minutes) if duration_minutes else None
            with correlation_scope(ticket_key=ticket.key, worker_id=worker_id):
                return self.claims.claim(
                    ticket.id, worker_id, duration=duration, actor_type=actor_type
                )

    def release(
        self,
        ref: str,
        worker_id: str | None = None,
        *,
        reason: str = "",
        force: bool = False,
    ) -> Ticket:
        with translate_errors("release"):
            ticket = self._require_ticket(ref)
            with correlation_scope(ticket_key=ticket.key, worker_id=worker_id):
                return self.claims.release(ticket.id, worker_id, reason=reason, force=force)

    def complete(
        self,
        ref: str,
        worker_id: str | None = None,
        *,
        summary: str = "",
        auto_accept: bool = False,
    ) -> Ticket:
        """Move an in-progress ticket to review; with ``auto_accept`` also accept it."""

        with translate_errors("complete"):
            with self._store.transaction():
                ticket = self._require_ticket(ref)
                self._machine.validate(ticket.status, Event.COMPLETE, ticket_key=ticket.key)
                claim = self._store.get_active_claim(ticket.id)
                if claim is not None and worker_id is not None and claim.worker_id != worker_id:
                    raise ConcurrentConflictError(
                        f"{ticket.key} is claimed by {claim.worker_id}, not {worker_id}",
                        details={"ticket": ticket.key, "worker_id": claim.worker_id},
                    )
                now = self._clock()
                finish_active_claim(self._store, ticket.id, ClaimStatus.COMPLETED, now=now)
                reviewed = apply_transition(
                    self._store, self._machine, ticket, Event.COMPLETE, now=now
                )
                self.recorder.append(
                    reviewed,
                    Action.COMPLETED,
                    actor_type=ActorType.AGENT,
                    actor_id=worker_id or (claim.worker_id if claim is not None else None),
                    summary=summary or "Work completed; awaiting review",
                    details={
                        "claim_id": claim.id if claim is not None else None,
                        "summary": summary,
                    },
                    now=now,
                )
        self._logger.info("ticket_completed", ticket_key=reviewed.key, auto_accept=auto_accept)
        if auto_accept:
            return self.accept(reviewed.id, actor_type=ActorType.SYSTEM).ticket
        return reviewed

    def accept(
        self,
        ref: str,
        *,
        actor_type: ActorType = ActorType.HUMAN,
        actor_id: str | None = None,
    ) -> ClosedTicket:
        with translate_errors("accept"):
            with self._store.transaction():
                ticket = self._require_ticket(ref)
                now = self._clock()
                done = apply_transition(
                    self._store,
                    self._machine,
                    ticket,
                    Event.ACCEPT,
                    now=now,
                    resolution=Resolution.COMPLETED,
                    completed_at=now,
                    human_flag_reason=None,
                )
                self.recorder.append(
                    done,
                    Action.ACCEPTED,
                    actor_type=actor_type,
                    actor_id=actor_id,
                    summary="Accepted",
                    now=now,
                )
            propagation = self.resolver.on_ticket_closed(
                done.id, auto_accept_parent=self._settings.auto_accept_parent
            )
        return ClosedTicket(ticket=done, resolution=propagation)

    def reject(self, ref: str, reason: str, *, actor_id: str | None = None) -> Ticket:
        """Send a reviewed ticket back to the queue; counts as a retry."""

        if not reason or not reason.strip():
            raise InvalidArgsError(
                "a reason is required to reject a ticket",
                suggestion="Explain what needs to change so the next worker can act on it.",
            )
        with translate_errors("reject"):
            with self._store.transaction():
                ticket = self._require_ticket(ref)
                now = self._clock()
                finish_active_claim(self._store, ticket.id, ClaimStatus.RELEASED, now=now)
                rejected = apply_transition(
                    self._store,
                    self._machine,
                    ticket,
                    Event.REJECT,
                    now=now,
                    retry_count=ticket.retry_count + 1,
                )
                self.recorder.append(
                    rejected,
                    Action.REJECTED,
                    actor_type=ActorType.HUMAN,
                    actor_id=actor_id,
                    summary=f"Rejected: {reason.strip()}",
                    details={"reason": reason.strip(), "retry_count": rejected.retry_count},
                    now=now,
                )
        return rejected

    def flag(
        self,
        ref: str,
        reason: FlagReason | str,
        message: str,
        *,
        actor_type: ActorType = ActorType.AGENT,
        actor_id: str | None = None,
    ) -> tuple[Ticket, InboxMessage]:
        """Route a ticket to ``needs_human`` and open an inbox message for it."""

        if not message or not message.strip():
            raise InvalidArgsError("a message is required to flag a ticket")
        with translate_errors("flag"):
            parsed = FlagReason.parse(reason)
            with self._store.transaction():
                ticket = self._require_ticket(ref)
                self._machine.validate(ticket.status, Event.FLAG, ticket_key=ticket.key)
                now = self._clock()
                released = finish_active_claim(
                    self._store, ticket.id, ClaimStatus.RELEASED, now=now
                )
                sender = actor_id or (released.worker_id if released is not None else None)
                flagged = apply_transition(
                    self._store,
                    self._machine,
                    ticket,
                    Event.FLAG,
                    now=now,
                    human_flag_reason=parsed.value,
                    flagged_from=(
                        ticket.flagged_from
                        if ticket.status is TicketStatus.NEEDS_HUMAN
                        else ticket.status
                    ),
                )
                inbox = InboxMessage(
                    id=domain_ids.generate_message_id(),
                    ticket_id=ticket.id,
                    message_type=parsed.message_type,
                    content=message.strip(),
                    created_at=now,
                    from_agent=sender,
                )
                self._store.insert_message(inbox)
                self.recorder.append(
                    flagged,
                    Action.FLAGGED,
                    actor_type=actor_type,
                    actor_id=sender,
                    summary=f"Flagged: {parsed.value}",
                    details={
                        "reason": parsed.value,
                        "message": message.strip(),
                        "inbox_message_id": inbox.id,
                        "previous_status": ticket.status.value,
                        "released_claim_id": released.id if released is not None else None,
                    },
                    now=now,
                )
        self._logger.info("ticket_flagged", ticket_key=flagged.key, reason=parsed.value)
        return flagged, inbox

    def respond(
        self,
        ref: str,
        response: str,
        *,
        worker_id: str | None = None,
        duration_minutes: int | None = None,
    ) -> Ticket:
        """Answer a flagged ticket and send it back to work.

        A ticket flagged while in progress resumes in progress under a fresh claim when
        ``worker_id`` is given; otherwise it is re-validated to ``ready`` or ``blocked``.
        """

        if not response or not response.strip():
            raise InvalidArgsError("a response is required")
        with translate_errors("respond"):
            with self._store.transaction():
                ticket = self._require_ticket(ref)
                now = self._clock()
                resume = worker_id is not None and ticket.flagged_from is TicketStatus.IN_PROGRESS
                unresolved = self.resolver.unresolved_prerequisites(ticket.id)
                if resume and unresolved:
                    raise StateError(
                        f"cannot resume {ticket.key}: waiting on "
                        f"{', '.join(item.key for item in unresolved)}",
                        details={"ticket": ticket.key},
                    )
                if resume:
                    target = TicketStatus.IN_PROGRESS
                elif unresolved:
                    target = TicketStatus.BLOCKED
                else:
                    target = TicketStatus.READY
                self._machine.validate(
                    ticket.status, Event.RESPOND, target=target, ticket_key=ticket.key
                )

                claim = None
                if target is TicketStatus.IN_PROGRESS:
                    lease = (
                        timedelta(minutes=duration_minutes)
                        if duration_minutes
                        else self.claims.default_duration
                    )
                    claim = Claim(
                        id=domain_ids.generate_claim_id(),
                        ticket_id=ticket.id,
                        worker_id=str(worker_id),
                        claimed_at=now,
                        expires_at=now + lease,
                    )
                    self._store.insert_claim(claim)

                previous_reason = ticket.human_flag_reason
                answered = apply_transition(
                    self._store,
                    self._machine,
                    ticket,
                    Event.RESPOND,
                    now=now,
                    target=target,
                    human_flag_reason=None,
                    flagged_from=None,
                    retry_count=0,
                )
                for message in self._store.list_messages(ticket_id=ticket.id, pending_only=True):
                    self._store.update_message(
                        replace(message, response=response.strip(), responded_at=now)
                    )
                self.recorder.append(
                    answered,
                    Action.HUMAN_RESPONDED,
                    actor_type=ActorType.HUMAN,
                    summary=f"Human responded; now {answered.status.value}",
                    details={
                        "response": response.strip(),
                        "previous_flag_reason": previous_reason,
                        "claim_id": claim.id if claim is not None else None,
                        "worker_id": worker_id,
                    },
                    now=now,
                )
        return answered

    def cancel(
        self,
        ref: str,
        *,
        resolution: Resolution | str = Resolution.WONT_DO,
        reason: str = "",
        actor_id: str | None = None,
    ) -> ClosedTicket:
        with translate_errors("cancel"):
            parsed = Resolution(resolution)
            if parsed is Resolution.COMPLETED:
                raise InvalidArgsError(
                    "cancelled tickets cannot be resolved as completed",
                    suggestion="Use accept to close a ticket as completed.",
                )
            with self._store.transaction():
                ticket = self._require_ticket(ref)
                self._machine.validate(ticket.status, Event.CANCEL, ticket_key=ticket.key)
                now = self._clock()
                released = finish_active_claim(
                    self._store, ticket.id, ClaimStatus.RELEASED, now=now
                )
                cancelled = apply_transition(
                    self._store,
                    self._machine,
                    ticket,
                    Event.CANCEL,
                    now=now,
                    resolution=parsed,
                    completed_at=now,
                )
                summary = f"Cancelled ({parsed.value})"
                self.recorder.append(
                    cancelled,
                    Action.CANCELLED,
                    actor_type=ActorType.HUMAN,
                    actor_id=actor_id,
                    summary=f"{summary}: {reason}" if reason else summary,
                    details={
                        "resolution": parsed.value,
                        "reason": reason,
                        "previous_status": ticket.status.value,
                        "released_claim_id": released.id if released is not None else None,
                    },
                    now=now,
                )
            propagation = self.resolver.on_ticket_closed(
                cancelled.id, auto_accept_parent=self._settings.auto_accept_parent
            )
        return ClosedTicket(ticket=cancelled, resolution=propagation)

    def reopen(self, ref: str, *, actor_id: str | None = None) -> Ticket:
        with translate_errors("reopen"):
            with self._store.transaction():
                ticket = self._require_ticket(ref)
                now = self._clock()
                created = apply_transition(
                    self._store,
                    self._machine,
                    ticket,
                    Event.REOPEN,
                    now=now,
                    target=TicketStatus.CREATED,
                    resolution=None,
                    completed_at=None,
                    human_flag_reason=None,
                    flagged_from=None,
                    retry_count=0,
                )
                self.recorder.append(
                    created,
                    Action.REOPENED,
                    actor_type=ActorType.HUMAN,
                    actor_id=actor_id,
                    summary=f"Reopened from {ticket.status.value}",
                    details={
                        "previous_status": ticket.status.value,
                        "previous_resolution": (
                            ticket.resolution.value if ticket.resolution is not None else None
                        ),
                    },
                    now=now,
                )
                reopened = self.resolver.validate_ticket(
                    created, actor_type=ActorType.HUMAN, actor_id=actor_id
                )
        return reopened

    # Dependencies

    def add_dependency(
        self, dependent: str, prerequisite: str, *, actor_id: str | None = None
    ) -> Ticket:
        with translate_errors("add dependency"):
            return self.resolver.add_dependency(
                self._require_ticket(dependent).id,
                self._require_ticket(prerequisite).id,
                actor_id=actor_id,
            )

    def remove_dependency(
        self, dependent: str, prerequisite: str, *, actor_id: str | None = None
    ) -> Ticket:
        with translate_errors("remove dependency"):
            return self.resolver.remove_dependency(
                self._require_ticket(dependent).id,
                self._require_ticket(prerequisite).id,
                actor_id=actor_id,
            )

    def prerequisites(self, ref: str) -> list[Ticket]:
        with translate_errors("list prerequisites"):
            ticket = self._require_ticket(ref)
            return [
                self._require_ticket(edge.depends_on_id)
                for edge in self._store.list_prerequisites(ticket.id)
            ]

    def dependents(self, ref: str) -> list[Ticket]:
        with translate_errors("list dependents"):
            ticket = self._require_ticket(ref)
            return [
                self._require_ticket(edge.ticket_id)
                for edge in self._store.list_dependents(ticket.id)
            ]

    # Maintenance

    def expire_claims(self, *, dry_run: bool = False) -> ExpirationResult:
        with translate_errors("expire claims"):
            return self.claims.expire_all(dry_run=dry_run)

    def expire_claim(self, ref: str, *, dry_run: bool = False) -> ExpirationItem:
        with translate_errors("expire claim"):
            return self.claims.expire_one(self._require_ticket(ref).id, dry_run=dry_run)

    def resolve_all(self, *, project_key: str | None = None) -> ResolveAllResult:
        with translate_errors("resolve dependencies"):
            project_id = self._require_project(project_key).id if project_key else None
            return self.resolver.resolve_all(project_id=project_id)

    def sweeper(
        self, *, interval_seconds: float | None = None, dry_run: bool | None = None
    ) -> ClaimSweeper:
        return ClaimSweeper(
            self.claims,
            resolver=self.resolver,
            interval_seconds=(
                self._settings.sweep_interval_seconds
                if interval_seconds is None
                else interval_seconds
            ),
            dry_run=self._settings.sweep_dry_run if dry_run is None else dry_run,
            logger=self._logger,
        )

    def backup(self, destination: str | Path) -> Path:
        store = self._require_sqlite("backup")
        with translate_errors("backup"):
            path = store.db.backup(destination)
        self._logger.info("state_db_backed_up", destination=str(path))
        return path

    def integrity_check(self) -> IntegrityReport:
        store = self._require_sqlite("integrity check")
        with translate_errors("integrity check"):
            messages = store.db.integrity_check()
            version = store.db.schema_version()
        return IntegrityReport(ok=not messages, messages=messages, schema_version=version)

    # Tasks

    def list_tasks(self, ref: str) -> list[TicketTask]:
        with translate_errors("list tasks"):
            return self.tasks.list(self._require_ticket(ref).id)

    def add_task(
        self,
        ref: str,
        description: str,
        *,
        actor_type: ActorType = ActorType.HUMAN,
        actor_id: str | None = None,
    ) -> TicketTask:
        with translate_errors("add task"):
            ticket = self._require_ticket(ref)
            return self.tasks.add(
                ticket.id, description, actor_type=actor_type, actor_id=actor_id
            )

    def complete_task(
        self,
        ref: str,
        position: int | None = None,
        *,
        actor_type: ActorType = ActorType.AGENT,
        actor_id: str | None = None,
    ) -> TaskCompletion:
        with translate_errors("complete task"):
            ticket = self._require_ticket(ref)
            with correlation_scope(ticket_key=ticket.key, worker_id=actor_id):
                return self.tasks.complete(
                    ticket.id, position, actor_type=actor_type, actor_id=actor_id
                )

    def uncomplete_task(
        self, ref: str, position: int, *, actor_id: str | None = None
    ) -> TicketTask:
        with translate_errors("uncomplete task"):
            return self.tasks.uncomplete(
                self._require_ticket(ref).id, position, actor_id=actor_id
            )

    def remove_task(self, ref: str, position: int, *, actor_id: str | None = None) -> TicketTask:
        with translate_errors("remove task"):
            return self.tasks.remove(self._require_ticket(ref).id, position, actor_id=actor_id)

    # Milestones

    def create_milestone(
        self,
        project_key: str,
        key: str,
        name: str,
        *,
        goal: str = "",
        target_date: datetime | None = None,
    ) -> Milestone:
        with translate_errors("create milestone"):
            return self.milestones.create(
                self._require_project(project_key),
                key,
                name,
                goal=goal,
                target_date=target_date,
            )

    def get_milestone(self, project_key: str, key: str) -> MilestoneProgress:
        with translate_errors("get milestone"):
            project = self._require_project(project_key)
            return self.milestones.progress(self.milestones.require(project, key))

    def list_milestones(self, project_key: str | None = None) -> list[MilestoneProgress]:
        with translate_errors("list milestones"):
            project_id = self._require_project(project_key).id if project_key else None
            return self.milestones.list(project_id=project_id)

    def update_milestone(self, project_key: str, key: str, **changes: Any) -> Milestone:
        with translate_errors("update milestone"):
            return self.milestones.update(self._require_project(project_key), key, **changes)

    def achieve_milestone(self, project_key: str, key: str) -> Milestone:
        return self._set_milestone_status(project_key, key, MilestoneStatus.ACHIEVED)

    def abandon_milestone(self, project_key: str, key: str) -> Milestone:
        return self._set_milestone_status(project_key, key, MilestoneStatus.ABANDONED)

    def reopen_milestone(self, project_key: str, key: str) -> Milestone:
        return self._set_milestone_status(project_key, key, MilestoneStatus.OPEN)

    def delete_milestone(self, project_key: str, key: str) -> int:
        with translate_errors("delete milestone"):
            return self.milestones.delete(self._require_project(project_key), key)

    def assign_milestone(
        self, ref: str, milestone: str | None, *, actor_id: str | None = None
    ) -> Ticket:
        """Link a ticket to a milestone of its project; ``None`` unlinks it."""

        with translate_errors("assign milestone"):
            return self.milestones.assign(
                self._require_ticket(ref), milestone, actor_id=actor_id
            )

    def milestone_tickets(self, project_key: str, key: str, *, limit: int = 100) -> list[Ticket]:
        with translate_errors("list milestone tickets"):
            project = self._require_project(project_key)
            return self.milestones.tickets(self.milestones.require(project, key), limit=limit)

    def _set_milestone_status(
        self, project_key: str, key: str, status: MilestoneStatus
    ) -> Milestone:
        with translate_errors(f"mark milestone {status.value}"):
            return self.milestones.set_status(self._require_project(project_key), key, status)

    # Status

    def status_summary(
        self,
        project_key: str | None = None,
        *,
        expiring_within_minutes: int = EXPIRING_SOON_MINUTES,
        recent: int = RECENT_ACTIVITY_LIMIT,
    ) -> StatusSummary:
        """Count the queue by state and list claims about to lapse plus the latest activity."""

        with translate_errors("status summary"):
            project = self._require_project(project_key) if project_key else None
            project_id = project.id if project is not None else None

            def count(*statuses: TicketStatus, workable: bool = False) -> int:
                return self._store.count_tickets(
                    TicketFilter(project_id=project_id, statuses=statuses, workable=workable)
                )

            now = self._clock()
            horizon = now + timedelta(minutes=expiring_within_minutes)
            expiring: list[ExpiringClaim] = []
            for claim in self._store.list_claims(statuses=(ClaimStatus.ACTIVE,)):
                if not now < claim.expires_at <= horizon:
                    continue
                ticket = self._store.get_ticket(claim.ticket_id)
                if ticket is None or (project_id is not None and ticket.project_id != project_id):
                    continue
                expiring.append(
                    ExpiringClaim(
                        ticket_key=ticket.key,
                        worker_id=claim.worker_id,
                        expires_at=claim.expires_at,
                        minutes_remaining=int(claim.remaining_seconds(now) // 60),
                    )
                )
            expiring.sort(key=lambda item: item.expires_at)

            return StatusSummary(
                project_key=project.key if project is not None else None,
                workable=count(workable=True),
                in_progress=count(TicketStatus.IN_PROGRESS),
                review=count(TicketStatus.REVIEW),
                blocked=count(TicketStatus.BLOCKED),
                needs_human=count(TicketStatus.NEEDS_HUMAN),
                pending_inbox=len(
                    self._store.list_messages(project_id=project_id, pending_only=True)
                ),
                expiring_soon=tuple(expiring),
                recent_activity=tuple(
                    self._store.list_activity(
                        project_id=project_id, limit=recent, newest_first=True
                    )
                ),
            )

    # History

    def history(self, ref: str, *, limit: int = 100, offset: int = 0) -> list[ActivityEntry]:
        with translate_errors("history"):
            ticket = self._require_ticket(ref)
            return self._store.list_activity(ticket_id=ticket.id, limit=limit, offset=offset)

    def activity(
        self, *, project_key: str | None = None, limit: int = 50, offset: int = 0
    ) -> list[ActivityEntry]:
        with translate_errors("activity"):
            project_id = self._require_project(project_key).id if project_key else None
            return self._store.list_activity(project_id=project_id, limit=limit, offset=offset)

    def inbox(
        self,
        *,
        project_key: str | None = None,
        ticket: str | None = None,
        pending_only: bool = False,
    ) -> list[InboxMessage]:
        with translate_errors("inbox"):
            project_id = self._require_project(project_key).id if project_key else None
            ticket_id = self._require_ticket(ticket).id if ticket else None
            return self._store.list_messages(
                ticket_id=ticket_id, project_id=project_id, pending_only=pending_only
            )

    # Snapshots

    def export_project(self, project_key: str) -> str:
        with translate_errors("export"):
            project = self._require_project(project_key)
            return dump_snapshot(build_snapshot(self._store, project))

    def import_project(self, text: str) -> ImportResult:
        with translate_errors("import"):
            payload = load_snapshot(text)
            with self._store.transaction():
                result = import_snapshot(self._store, payload, now=self._clock())
        self._logger.info(
            "project_imported",
            project_key=result.project_key,
            tickets=result.tickets,
            dependencies=result.dependencies,
        )
        return result

    # Helpers

    def _require_project(self, key: str | None) -> Project:
        if key is None or not str(key).strip():
            raise InvalidArgsError("a project key is required")
        normalized = str(key).strip().upper()
        project = self._store.get_project_by_key(normalized)
        if project is None:
            raise NotFoundError(
                f"project {normalized} not found",
                suggestion="List projects with `wark project list`.",
                details={"project": normalized},
            )
        return project

    def _require_ticket(self, ref: str) -> Ticket:
        raw = (ref or "").strip()
        if not raw:
            raise InvalidArgsError("a ticket id or key is required")
        ticket = self._store.get_ticket(raw)
        if ticket is None and domain_ids.is_ticket_key(raw):
            project_key, number = domain_ids.parse_ticket_key(raw)
            project = self._store.get_project_by_key(project_key)
            ticket = (
                self._store.get_ticket_by_number(project.id, number)
                if project is not None
                else None
            )
        if ticket is None:
            raise NotFoundError(f"ticket {raw} not found", details={"ticket": raw})
        return ticket

    def _require_sqlite(self, operation: str) -> SQLiteTicketStore:
        if not isinstance(self._store, SQLiteTicketStore):
            raise InvalidArgsError(f"{operation} is only available for the SQLite store")
        return self._store


def _plain(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    return value


__all__ = [
    "ClosedTicket",
    "ExpiringClaim",
    "IntegrityReport",
    "ServiceSettings",
    "StatusSummary",
    "TicketService",
]
