"""
wark — claim manager

File: src/wark/claims/manager.py
Last updated: 2026-10-18

Purpose
- Grant, release and expire time-bounded leases that bind one worker to one ticket.

What should be included in this file
- ``ClaimManager.claim`` / ``release`` / ``expire_one`` / ``expire_all``.
- Structured, JSON-serializable expiration results.

Functional requirements
- At most one active claim per ticket. The store's unique index on active claims is
  the final arbiter; losing that race is reported as ``ConcurrentConflict``.
- Claim creation and the ``claim`` transition commit in one transaction.
- Expiry is a pure wall-clock comparison (``expires_at < now``). Each expiration
  increments ``retry_count``; reaching ``max_retries`` escalates to ``needs_human``.
- ``expire_all`` tolerates per-ticket failures, supports dry-run, and checks a
  cooperative cancel flag between tickets.

Non-functional requirements
- Every operation re-reads the ticket and claim immediately before deciding.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog

from wark.activity.recorder import ActivityRecorder
from wark.constants import DEFAULT_CLAIM_DURATION_MINUTES, MAX_CLAIM_DURATION_MINUTES
from wark.domain.ids import generate_branch_name, generate_claim_id, generate_message_id
from wark.domain.models import (
    Action,
    ActorType,
    Claim,
    ClaimStatus,
    FlagReason,
    InboxMessage,
    Ticket,
    TicketStatus,
    utc_now,
)
from wark.errors import (
    ConcurrentConflictError,
    InvalidArgsError,
    NotFoundError,
    StateError,
    WarkError,
)
from wark.persistence.base import ClaimConflictError, StoreError, TicketStore
from wark.state.machine import DEFAULT_STATE_MACHINE, Event, StateMachine
from wark.state.transitions import apply_transition, finish_active_claim

MAX_RETRIES_EXCEEDED = FlagReason.MAX_RETRIES_EXCEEDED.value


@dataclass(frozen=True, slots=True)
class ExpirationItem:
    """Decision for one expired claim. ``action`` is requeued, escalated, skipped or error."""

    claim_id: str
    ticket_id: str
    ticket_key: str | None
    worker_id: str
    action: str
    retry_count: int | None = None
    new_status: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "claim_id": self.claim_id,
            "ticket_id": self.ticket_id,
            "ticket_key": self.ticket_key,
            "worker_id": self.worker_id,
            "action": self.action,
            "retry_count": self.retry_count,
            "new_status": self.new_status,
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class ExpirationResult:
    processed: int
    expired: int
    escalated: int
    errors: int
    items: tuple[ExpirationItem, ...] = ()
    dry_run: bool = False
    cancelled: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "processed": self.processed,
            "expired": self.expired,
            "escalated": self.escalated,
            "errors": self.errors,
            "dry_run": self.dry_run,
            "cancelled": self.cancelled,
            "items": [item.to_dict() for item in self.items],
        }


class ClaimManager:
    def __init__(
        self,
        store: TicketStore,
        *,
        machine: StateMachine = DEFAULT_STATE_MACHINE,
        recorder: ActivityRecorder | None = None,
        clock: Callable[[], datetime] = utc_now,
        default_duration: timedelta = timedelta(minutes=DEFAULT_CLAIM_DURATION_MINUTES),
        logger: Any | None = None,
    ) -> None:
        self._store = store
        self._machine = machine
        self._clock = clock
        self._default_duration = _checked_duration(default_duration)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._recorder = (
            recorder
            if recorder is not None
            else ActivityRecorder(store, clock=clock, logger=self._logger)
        )

    @property
    def default_duration(self) -> timedelta:
        return self._default_duration

    def claim(
        self,
        ticket_id: str,
        worker_id: str,
        *,
        duration: timedelta | None = None,
        actor_type: ActorType = ActorType.AGENT,
    ) -> Claim:
        """Lease ``ticket_id`` to ``worker_id`` and move the ticket to ``in_progress``."""

        lease = self._default_duration if duration is None else _checked_duration(duration)
        worker = (worker_id or "").strip()
        if not worker:
            raise InvalidArgsError("worker_id is required to claim a ticket")

        with self._store.transaction():
            ticket = self._require(ticket_id)
            holder = self._store.get_active_claim(ticket.id)
            if holder is not None:
                raise ConcurrentConflictError(
                    f"{ticket.key} is already claimed by {holder.worker_id}",
                    suggestion="Pick another ticket with `wark ticket next`, or wait for the "
                    "claim to expire.",
                    details={
                        "ticket": ticket.key,
                        "claim_id": holder.id,
                        "worker_id": holder.worker_id,
                        "expires_at": holder.expires_at.isoformat(),
                    },
                )
            self._machine.validate(ticket.status, Event.CLAIM, ticket_key=ticket.key)
            self._reject_unresolved(ticket)

            now = self._clock()
            claim = Claim(
                id=generate_claim_id(),
                ticket_id=ticket.id,
                worker_id=worker,
                claimed_at=now,
                expires_at=now + lease,
            )
            try:
                self._store.insert_claim(claim)
            except ClaimConflictError as exc:
                raise ConcurrentConflictError(
                    f"{ticket.key} was claimed by another worker first",
                    details={"ticket": ticket.key},
                    cause=exc,
                ) from exc

            branch_name = ticket.branch_name or generate_branch_name(
                ticket.project_key, ticket.number, ticket.title
            )
            claimed = apply_transition(
                self._store,
                self._machine,
                ticket,
                Event.CLAIM,
                now=now,
                branch_name=branch_name,
            )
            self._recorder.append(
                claimed,
                Action.CLAIMED,
                actor_type=actor_type,
                actor_id=worker,
                summary=f"Claimed by {worker} for {int(lease.total_seconds() // 60)} minutes",
                details={
                    "claim_id": claim.id,
                    "worker_id": worker,
                    "expires_at": claim.expires_at.isoformat(),
                    "branch_name": branch_name,
                },
                now=now,
            )

        self._logger.info(
            "claim_acquired",
            ticket_key=claimed.key,
            claim_id=claim.id,
            worker_id=worker,
            expires_at=claim.expires_at.isoformat(),
        )
        return claim

    def release(
        self,
        ticket_id: str,
        worker_id: str | None = None,
        *,
        reason: str = "",
        force: bool = False,
        actor_type: ActorType = ActorType.AGENT,
    ) -> Ticket:
        """Give a claimed ticket back to the queue. ``retry_count`` is unchanged."""

        with self._store.transaction():
            ticket = self._require(ticket_id)
            self._machine.validate(ticket.status, Event.RELEASE, ticket_key=ticket.key)
            claim = self._store.get_active_claim(ticket.id)
            if claim is None:
                raise StateError(
                    f"{ticket.key} has no active claim to release",
                    details={"ticket": ticket.key},
                )
            if not force and claim.worker_id != worker_id:
                raise ConcurrentConflictError(
                    f"{ticket.key} is claimed by {claim.worker_id}, not {worker_id}",
                    suggestion="Only the claim holder can release it; use --force as an operator.",
                    details={"ticket": ticket.key, "worker_id": claim.worker_id},
                )

            now = self._clock()
            finish_active_claim(self._store, ticket.id, ClaimStatus.RELEASED, now=now)
            released = apply_transition(self._store, self._machine, ticket, Event.RELEASE, now=now)
            self._recorder.append(
                released,
                Action.RELEASED,
                actor_type=ActorType.HUMAN if force and worker_id is None else actor_type,
                actor_id=worker_id or claim.worker_id,
                summary=reason or f"Released by {worker_id or 'operator'}",
                details={
                    "claim_id": claim.id,
                    "worker_id": claim.worker_id,
                    "reason": reason,
                    "forced": force,
                },
                now=now,
            )

        self._logger.info(
            "claim_released",
            ticket_key=released.key,
            claim_id=claim.id,
            worker_id=claim.worker_id,
            forced=force,
        )
        return released

    def expire_one(self, ticket_id: str, *, dry_run: bool = False) -> ExpirationItem:
        """Expire the ticket's active claim if its lease has run out."""

        now = self._clock()
        ticket = self._require(ticket_id)
        claim = self._store.get_active_claim(ticket.id)
        if claim is None:
            raise NotFoundError(f"{ticket.key} has no active claim", details={"ticket": ticket.key})
        if not claim.is_expired(now):
            raise StateError(
                f"claim {claim.id} on {ticket.key} has not expired yet",
                details={"ticket": ticket.key, "expires_at": claim.expires_at.isoformat()},
            )
        return self._expire(claim, now=now, dry_run=dry_run)

    def expire_all(
        self,
        *,
        dry_run: bool = False,
        cancel: threading.Event | None = None,
    ) -> ExpirationResult:
        """Expire every active claim whose lease ended before now."""

        now = self._clock()
        items: list[ExpirationItem] = []
        cancelled = False
        for claim in self._store.list_expired_claims(now):
            if cancel is not None and cancel.is_set():
                cancelled = True
                break
            items.append(self._expire(claim, now=now, dry_run=dry_run))

        result = ExpirationResult(
            processed=len(items),
            expired=sum(1 for item in items if item.action in {"requeued", "escalated"}),
            escalated=sum(1 for item in items if item.action == "escalated"),
            errors=sum(1 for item in items if item.action == "error"),
            items=tuple(items),
            dry_run=dry_run,
            cancelled=cancelled,
        )
        self._logger.info(
            "claims_expired",
            processed=result.processed,
            expired=result.expired,
            escalated=result.escalated,
            errors=result.errors,
            dry_run=dry_run,
            cancelled=cancelled,
        )
        return result

    def _expire(self, claim: Claim, *, now: datetime, dry_run: bool) -> ExpirationItem:
        try:
            if dry_run:
                return self._decide(claim, now=now, apply=False)
            with self._store.transaction():
                return self._decide(claim, now=now, apply=True)
        except (WarkError, StoreError, ValueError) as exc:
            self._logger.warning(
                "claim_expiry_failed",
                claim_id=claim.id,
                ticket_id=claim.ticket_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return ExpirationItem(
                claim_id=claim.id,
                ticket_id=claim.ticket_id,
                ticket_key=None,
                worker_id=claim.worker_id,
                action="error",
                error=str(exc),
            )

    def _decide(self, claim: Claim, *, now: datetime, apply: bool) -> ExpirationItem:
        ticket = self._require(claim.ticket_id)
        current = self._store.get_active_claim(ticket.id)
        if current is None or current.id != claim.id or not current.is_expired(now):
            return ExpirationItem(
                claim_id=claim.id,
                ticket_id=ticket.id,
                ticket_key=ticket.key,
                worker_id=claim.worker_id,
                action="skipped",
                retry_count=ticket.retry_count,
                new_status=ticket.status.value,
            )
        if ticket.status is not TicketStatus.IN_PROGRESS:
            raise StateError(
                f"{ticket.key} holds an active claim but is {ticket.status.value}",
                suggestion="Release the claim with `wark release --force` after checking the ticket.",
                details={"ticket": ticket.key, "claim_id": claim.id},
            )

        retry_count = ticket.retry_count + 1
        escalate = retry_count >= ticket.max_retries
        new_status = TicketStatus.NEEDS_HUMAN if escalate else TicketStatus.READY
        item = ExpirationItem(
            claim_id=claim.id,
            ticket_id=ticket.id,
            ticket_key=ticket.key,
            worker_id=claim.worker_id,
            action="escalated" if escalate else "requeued",
            retry_count=retry_count,
            new_status=new_status.value,
        )
        if not apply:
            self._machine.validate(
                ticket.status, Event.FLAG if escalate else Event.EXPIRE, ticket_key=ticket.key
            )
            return item

        finish_active_claim(self._store, ticket.id, ClaimStatus.EXPIRED, now=now)
        if escalate:
            updated = apply_transition(
                self._store,
                self._machine,
                ticket,
                Event.FLAG,
                now=now,
                retry_count=retry_count,
                human_flag_reason=MAX_RETRIES_EXCEEDED,
                flagged_from=ticket.status,
            )
            reason = FlagReason.MAX_RETRIES_EXCEEDED
            self._store.insert_message(
                InboxMessage(
                    id=generate_message_id(),
                    ticket_id=ticket.id,
                    message_type=reason.message_type,
                    content=(
                        f"{ticket.key} expired {retry_count} time(s) "
                        f"(max {ticket.max_retries}); needs a human decision"
                    ),
                    created_at=now,
                    from_agent=claim.worker_id,
                )
            )
        else:
            updated = apply_transition(
                self._store,
                self._machine,
                ticket,
                Event.EXPIRE,
                now=now,
                retry_count=retry_count,
            )

        self._recorder.append(
            updated,
            Action.EXPIRED,
            summary=f"Claim by {claim.worker_id} expired (retry {retry_count}/{ticket.max_retries})",
            details={
                "claim_id": claim.id,
                "worker_id": claim.worker_id,
                "expires_at": claim.expires_at.isoformat(),
                "retry_count": retry_count,
            },
            now=now,
        )
        if escalate:
            self._recorder.append(
                updated,
                Action.ESCALATED,
                summary=f"Escalated to human after {retry_count} failed attempts",
                details={"reason": MAX_RETRIES_EXCEEDED, "retry_count": retry_count},
                now=now,
            )
            self._logger.warning(
                "claim_escalated",
                ticket_key=ticket.key,
                claim_id=claim.id,
                retry_count=retry_count,
                max_retries=ticket.max_retries,
            )
        else:
            self._logger.info(
                "claim_expired",
                ticket_key=ticket.key,
                claim_id=claim.id,
                retry_count=retry_count,
            )
        return item

    def _reject_unresolved(self, ticket: Ticket) -> None:
        pending = []
        for edge in self._store.list_prerequisites(ticket.id):
            prerequisite = self._store.get_ticket(edge.depends_on_id)
            if prerequisite is None or not prerequisite.is_successfully_closed:
                pending.append(prerequisite.key if prerequisite is not None else edge.depends_on_id)
        if pending:
            raise StateError(
                f"cannot claim {ticket.key}: waiting on {', '.join(pending)}",
                details={"ticket": ticket.key, "unresolved": pending},
            )

    def _require(self, ticket_id: str) -> Ticket:
        ticket = self._store.get_ticket(ticket_id)
        if ticket is None:
            raise NotFoundError(f"ticket {ticket_id} not found")
        return ticket


def _checked_duration(duration: timedelta) -> timedelta:
    if not isinstance(duration, timedelta):
        raise InvalidArgsError(f"claim duration must be a timedelta, got {type(duration).__name__}")
    if duration <= timedelta(0):
        raise InvalidArgsError("claim duration must be positive")
    if duration > timedelta(minutes=MAX_CLAIM_DURATION_MINUTES):
        raise InvalidArgsError(
            f"claim duration must be at most {MAX_CLAIM_DURATION_MINUTES} minutes"
        )
    return duration


__all__ = [
    "MAX_RETRIES_EXCEEDED",
    "ClaimManager",
    "ExpirationItem",
    "ExpirationResult",
]
