"""Claim lifecycle tests over both store implementations."""

from __future__ import annotations

import threading
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from wark.claims.manager import ClaimManager
from wark.domain.models import Action, ClaimStatus, FlagReason, MessageType, TicketStatus
from wark.errors import (
    ConcurrentConflictError,
    ErrorKind,
    InvalidArgsError,
    NotFoundError,
    StateError,
)
from wark.persistence.store import SQLiteTicketStore

from .. import STORE_KINDS, FakeClock, close_done, make_service

if TYPE_CHECKING:
    from pathlib import Path

    from wark.service import TicketService


@pytest.fixture(params=STORE_KINDS)
def clock_and_service(
    request: pytest.FixtureRequest, tmp_path: Path
) -> tuple[FakeClock, TicketService]:
    clock = FakeClock()
    service = make_service(request.param, tmp_path, clock=clock)
    service.create_project("WEB", "Web app")
    return clock, service


def test_claim_moves_ticket_in_progress_and_names_branch(
    clock_and_service: tuple[FakeClock, TicketService],
) -> None:
    clock, service = clock_and_service
    ticket = service.create_ticket("WEB", "Add login form")

    claim = service.claim(ticket.key, "agent-1", duration_minutes=30)

    claimed = service.get_ticket(ticket.key)
    assert claimed.status is TicketStatus.IN_PROGRESS
    assert claimed.branch_name == "WEB-1-add-login-form"
    assert claim.status is ClaimStatus.ACTIVE
    assert claim.worker_id == "agent-1"
    assert claim.expires_at == clock.now + timedelta(minutes=30)
    assert service.store.get_active_claim(ticket.id) == claim
    actions = [entry.action for entry in service.history(ticket.key)]
    assert Action.CLAIMED in actions


def test_branch_name_survives_later_claims(
    clock_and_service: tuple[FakeClock, TicketService],
) -> None:
    _, service = clock_and_service
    ticket = service.create_ticket("WEB", "Original title")
    service.claim(ticket.key, "agent-1")
    service.release(ticket.key, "agent-1")
    service.edit_ticket(ticket.key, title="Renamed title")
    service.claim(ticket.key, "agent-2")

    assert service.get_ticket(ticket.key).branch_name == "WEB-1-original-title"


def test_second_claim_is_a_concurrent_conflict(
    clock_and_service: tuple[FakeClock, TicketService],
) -> None:
    _, service = clock_and_service
    ticket = service.create_ticket("WEB", "Contended")
    service.claim(ticket.key, "agent-1")

    with pytest.raises(ConcurrentConflictError) as excinfo:
        service.claim(ticket.key, "agent-2")

    assert excinfo.value.kind is ErrorKind.CONCURRENT_CONFLICT
    assert excinfo.value.details["worker_id"] == "agent-1"
    assert excinfo.value.retryable


def test_claim_requires_ready_status(clock_and_service: tuple[FakeClock, TicketService]) -> None:
    _, service = clock_and_service
    prerequisite = service.create_ticket("WEB", "Schema")
    blocked = service.create_ticket("WEB", "Endpoint", depends_on=[prerequisite.key])
    assert blocked.status is TicketStatus.BLOCKED

    with pytest.raises(StateError):
        service.claim(blocked.key, "agent-1")
    assert service.store.get_active_claim(blocked.id) is None


def test_claim_rejects_ready_ticket_whose_prerequisite_was_reopened(
    clock_and_service: tuple[FakeClock, TicketService],
) -> None:
    _, service = clock_and_service
    prerequisite = service.create_ticket("WEB", "Schema")
    close_done(service, prerequisite.key)
    dependent = service.create_ticket("WEB", "Endpoint", depends_on=[prerequisite.key])
    assert dependent.status is TicketStatus.READY

    service.reopen(prerequisite.key)

    assert service.get_ticket(dependent.key).status is TicketStatus.READY
    with pytest.raises(StateError, match="waiting on WEB-1"):
        service.claim(dependent.key, "agent-1")
    assert service.list_tickets(project_key="WEB", workable=True)[0].key == prerequisite.key


@pytest.mark.parametrize("worker", ["", "   "])
def test_claim_requires_worker_id(
    clock_and_service: tuple[FakeClock, TicketService], worker: str
) -> None:
    _, service = clock_and_service
    ticket = service.create_ticket("WEB", "Needs a worker")
    with pytest.raises(InvalidArgsError):
        service.claim(ticket.key, worker)


def test_claim_duration_is_bounded(clock_and_service: tuple[FakeClock, TicketService]) -> None:
    _, service = clock_and_service
    ticket = service.create_ticket("WEB", "Bounded")
    with pytest.raises(InvalidArgsError):
        service.claim(ticket.key, "agent-1", duration_minutes=-5)
    with pytest.raises(InvalidArgsError):
        service.claim(ticket.key, "agent-1", duration_minutes=8 * 24 * 60)


def test_release_by_holder_keeps_retry_count(
    clock_and_service: tuple[FakeClock, TicketService],
) -> None:
    _, service = clock_and_service
    ticket = service.create_ticket("WEB", "Release me")
    claim = service.claim(ticket.key, "agent-1")

    released = service.release(ticket.key, "agent-1", reason="switching tasks")

    assert released.status is TicketStatus.READY
    assert released.retry_count == 0
    assert service.store.get_active_claim(ticket.id) is None
    finished = service.store.list_claims(ticket_id=ticket.id)
    assert [(item.id, item.status) for item in finished] == [(claim.id, ClaimStatus.RELEASED)]


def test_release_by_other_worker_requires_force(
    clock_and_service: tuple[FakeClock, TicketService],
) -> None:
    _, service = clock_and_service
    ticket = service.create_ticket("WEB", "Owned")
    service.claim(ticket.key, "agent-1")

    with pytest.raises(ConcurrentConflictError):
        service.release(ticket.key, "agent-2")
    assert service.get_ticket(ticket.key).status is TicketStatus.IN_PROGRESS

    forced = service.release(ticket.key, force=True, reason="operator override")
    assert forced.status is TicketStatus.READY


def test_release_without_claim_is_state_error(
    clock_and_service: tuple[FakeClock, TicketService],
) -> None:
    _, service = clock_and_service
    ticket = service.create_ticket("WEB", "Never claimed")
    with pytest.raises(StateError):
        service.release(ticket.key, "agent-1")


def test_expiry_boundary_is_strict(clock_and_service: tuple[FakeClock, TicketService]) -> None:
    clock, service = clock_and_service
    ticket = service.create_ticket("WEB", "Boundary")
    claim = service.claim(ticket.key, "agent-1", duration_minutes=10)

    clock.now = claim.expires_at
    at_boundary = service.expire_claims()
    assert at_boundary.processed == 0
    assert service.get_ticket(ticket.key).status is TicketStatus.IN_PROGRESS

    clock.advance(seconds=1)
    result = service.expire_claims()
    assert result.expired == 1
    assert result.items[0].action == "requeued"
    requeued = service.get_ticket(ticket.key)
    assert requeued.status is TicketStatus.READY
    assert requeued.retry_count == 1
    assert service.store.list_claims(ticket_id=ticket.id)[0].status is ClaimStatus.EXPIRED


def test_repeated_expiry_escalates_at_max_retries(
    clock_and_service: tuple[FakeClock, TicketService],
) -> None:
    clock, service = clock_and_service
    ticket = service.create_ticket("WEB", "Flaky", max_retries=2)

    service.claim(ticket.key, "agent-1", duration_minutes=5)
    clock.advance(minutes=6)
    first = service.expire_claims()
    assert first.escalated == 0

    service.claim(ticket.key, "agent-2", duration_minutes=5)
    clock.advance(minutes=6)
    second = service.expire_claims()

    assert second.escalated == 1
    assert second.items[0].action == "escalated"
    escalated = service.get_ticket(ticket.key)
    assert escalated.status is TicketStatus.NEEDS_HUMAN
    assert escalated.retry_count == 2
    assert escalated.human_flag_reason == FlagReason.MAX_RETRIES_EXCEEDED.value
    assert escalated.flagged_from is TicketStatus.IN_PROGRESS
    messages = service.inbox(ticket=ticket.key, pending_only=True)
    assert len(messages) == 1
    assert messages[0].message_type is MessageType.QUESTION
    assert messages[0].from_agent == "agent-2"
    actions = [entry.action for entry in service.history(ticket.key)]
    assert actions.count(Action.EXPIRED) == 2
    assert Action.ESCALATED in actions


def test_max_retries_zero_escalates_on_first_expiry(
    clock_and_service: tuple[FakeClock, TicketService],
) -> None:
    clock, service = clock_and_service
    ticket = service.create_ticket("WEB", "No second chances", max_retries=0)
    service.claim(ticket.key, "agent-1", duration_minutes=1)
    clock.advance(minutes=2)

    assert service.expire_claims().escalated == 1
    assert service.get_ticket(ticket.key).status is TicketStatus.NEEDS_HUMAN


def test_expire_single_claim(clock_and_service: tuple[FakeClock, TicketService]) -> None:
    clock, service = clock_and_service
    ticket = service.create_ticket("WEB", "Single")
    service.claim(ticket.key, "agent-1", duration_minutes=1)

    with pytest.raises(StateError, match="not expired"):
        service.expire_claim(ticket.key)

    clock.advance(minutes=5)
    item = service.expire_claim(ticket.key)
    assert item.action == "requeued"

    with pytest.raises(NotFoundError):
        service.expire_claim(ticket.key)


def test_dry_run_reports_without_writing(
    clock_and_service: tuple[FakeClock, TicketService],
) -> None:
    clock, service = clock_and_service
    first = service.create_ticket("WEB", "First", max_retries=1)
    second = service.create_ticket("WEB", "Second")
    service.claim(first.key, "agent-1", duration_minutes=1)
    service.claim(second.key, "agent-2", duration_minutes=1)
    clock.advance(minutes=2)

    before = _store_state(service)
    result = service.expire_claims(dry_run=True)
    after = _store_state(service)

    assert result.dry_run
    assert sorted(item.action for item in result.items) == ["escalated", "requeued"]
    assert before == after

    applied = service.expire_claims()

    assert not applied.dry_run
    assert (applied.processed, applied.expired, applied.escalated) == (
        result.processed,
        result.expired,
        result.escalated,
    )
    assert [(item.ticket_key, item.action) for item in applied.items] == [
        (item.ticket_key, item.action) for item in result.items
    ]


def test_cancelled_sweep_stops_between_tickets(
    clock_and_service: tuple[FakeClock, TicketService],
) -> None:
    clock, service = clock_and_service
    for title in ("One", "Two"):
        ticket = service.create_ticket("WEB", title)
        service.claim(ticket.key, "agent-1", duration_minutes=1)
    clock.advance(minutes=2)
    cancel = threading.Event()
    cancel.set()

    result = service.claims.expire_all(cancel=cancel)

    assert result.cancelled
    assert result.processed == 0
    assert len(service.list_tickets(project_key="WEB", statuses=["in_progress"])) == 2


def test_manager_defaults_are_validated(tmp_path: Path) -> None:
    service = make_service("memory", tmp_path)
    with pytest.raises(InvalidArgsError):
        ClaimManager(service.store, default_duration=timedelta(0))


def _store_state(service: TicketService) -> object:
    store = service.store
    if isinstance(store, SQLiteTicketStore):
        with store.db.connection() as conn:
            return list(conn.iterdump())
    tickets = service.list_tickets(limit=1000)
    claims = store.list_claims()
    return (
        [ticket.to_dict() for ticket in tickets],
        [claim.to_dict() for claim in claims],
        [entry.to_dict() for entry in service.activity(limit=1000)],
        [message.to_dict() for message in service.inbox()],
    )
