"""Apply a validated state-machine event to a ticket through the store."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from wark.domain.models import Claim, ClaimStatus, Ticket, TicketStatus
from wark.persistence.base import TicketStore
from wark.state.machine import Event, StateMachine


def apply_transition(
    store: TicketStore,
    machine: StateMachine,
    ticket: Ticket,
    event: Event,
    *,
    now: datetime,
    target: TicketStatus | None = None,
    **changes: object,
) -> Ticket:
    """Validate ``event`` against ``ticket.status`` and persist the result.

    The write is a compare-and-swap on the status that was read, so a concurrent
    writer that moved the ticket first surfaces as ``StaleWriteError``.
    """

    destination = machine.validate(ticket.status, event, target=target, ticket_key=ticket.key)
    updated = replace(ticket, status=destination, updated_at=now, **changes)
    store.update_ticket(updated, expected_status=ticket.status)
    return updated


def finish_active_claim(
    store: TicketStore,
    ticket_id: str,
    status: ClaimStatus,
    *,
    now: datetime,
) -> Claim | None:
    """Move the ticket's active claim (if any) to a final ``status``."""

    claim = store.get_active_claim(ticket_id)
    if claim is None:
        return None
    finished = replace(claim, status=ClaimStatus(status), released_at=now)
    store.update_claim(finished)
    return finished


__all__ = ["apply_transition", "finish_active_claim"]
