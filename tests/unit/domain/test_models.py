"""Domain model validation and canonical serialization."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from wark.domain.models import (
    Claim,
    ClaimStatus,
    Dependency,
    FlagReason,
    InboxMessage,
    MessageType,
    Resolution,
    Ticket,
    TicketStatus,
    iso8601z,
)

from .. import fixed_now, make_project, make_ticket


def test_ticket_json_roundtrip_includes_display_key() -> None:
    project = make_project()
    ticket = make_ticket(project, 7, title="Add login form", branch_name="WEB-7-add-login-form")

    payload = ticket.to_dict()

    assert payload["key"] == "WEB-7"
    assert payload["status"] == "ready"
    assert Ticket.from_json(ticket.to_json()) == ticket


def test_enum_fields_serialize_as_plain_strings() -> None:
    project = make_project()
    ticket = make_ticket(project, 3, status=TicketStatus.DONE, resolution=Resolution.COMPLETED)

    payload = ticket.to_dict()

    for name in ("status", "priority", "complexity", "resolution"):
        assert type(payload[name]) is str, name
    assert payload["resolution"] == "completed"


def test_terminal_status_requires_matching_resolution() -> None:
    project = make_project()

    with pytest.raises(ValueError, match="required when status is done"):
        make_ticket(project, 1, status=TicketStatus.DONE)
    with pytest.raises(ValueError, match="completed"):
        make_ticket(project, 1, status=TicketStatus.DONE, resolution=Resolution.WONT_DO)
    with pytest.raises(ValueError, match="cannot be resolved as completed"):
        make_ticket(project, 1, status=TicketStatus.CANCELLED, resolution=Resolution.COMPLETED)
    with pytest.raises(ValueError, match="must be empty"):
        make_ticket(project, 1, status=TicketStatus.READY, resolution=Resolution.OBSOLETE)

    done = make_ticket(project, 1, status=TicketStatus.DONE, resolution="completed")
    assert done.is_successfully_closed
    cancelled = make_ticket(project, 2, status=TicketStatus.CANCELLED, resolution="duplicate")
    assert cancelled.is_terminal
    assert not cancelled.is_successfully_closed


def test_ticket_rejects_bad_fields() -> None:
    project = make_project()
    with pytest.raises(ValueError, match="Ticket.title"):
        make_ticket(project, 1, title="   ")
    with pytest.raises(ValueError, match="Ticket.number"):
        make_ticket(project, 0)
    with pytest.raises(ValueError, match="timezone-aware"):
        make_ticket(project, 1, created_at=datetime(2026, 1, 1))
    with pytest.raises(ValueError, match="unexpected fields"):
        Ticket.from_dict({**make_ticket(project, 1).to_dict(), "assignee": "bob"})


def test_claim_lease_window() -> None:
    start = fixed_now()
    claim = Claim(
        id="claim_0a1b2c3d",
        ticket_id="tkt-x",
        worker_id="agent-1",
        claimed_at=start,
        expires_at=start + timedelta(minutes=30),
    )

    assert claim.is_active
    assert not claim.is_expired(start + timedelta(minutes=30))
    assert claim.is_expired(start + timedelta(minutes=30, microseconds=1))
    assert claim.remaining_seconds(start + timedelta(minutes=10)) == 1200.0
    assert claim.remaining_seconds(start + timedelta(hours=2)) == 0.0


def test_claim_invariants() -> None:
    start = fixed_now()
    with pytest.raises(ValueError, match="must be after"):
        Claim(id="claim_0a1b2c3d", ticket_id="t", worker_id="w", claimed_at=start, expires_at=start)
    with pytest.raises(ValueError, match="required when status is released"):
        Claim(
            id="claim_0a1b2c3d",
            ticket_id="t",
            worker_id="w",
            claimed_at=start,
            expires_at=start + timedelta(minutes=1),
            status=ClaimStatus.RELEASED,
        )
    with pytest.raises(ValueError, match="Claim.id"):
        Claim(
            id="lease-1",
            ticket_id="t",
            worker_id="w",
            claimed_at=start,
            expires_at=start + timedelta(minutes=1),
        )


def test_dependency_cannot_point_at_itself() -> None:
    with pytest.raises(ValueError, match="itself"):
        Dependency(ticket_id="tkt-a", depends_on_id="tkt-a", created_at=fixed_now())


def test_inbox_response_and_timestamp_travel_together() -> None:
    with pytest.raises(ValueError, match="set together"):
        InboxMessage(
            id="msg-1",
            ticket_id="tkt-a",
            message_type=MessageType.QUESTION,
            content="Which API?",
            created_at=fixed_now(),
            response="v2",
        )


@pytest.mark.parametrize(
    ("raw", "reason", "message_type"),
    [
        ("decision_needed", FlagReason.DECISION_NEEDED, MessageType.DECISION),
        ("Risk-Assessment", FlagReason.RISK_ASSESSMENT, MessageType.ESCALATION),
        (" irreconcilable_conflict ", FlagReason.IRRECONCILABLE_CONFLICT, MessageType.ESCALATION),
        ("unclear-requirements", FlagReason.UNCLEAR_REQUIREMENTS, MessageType.QUESTION),
        ("max_retries_exceeded", FlagReason.MAX_RETRIES_EXCEEDED, MessageType.QUESTION),
    ],
)
def test_flag_reason_parse(raw: str, reason: FlagReason, message_type: MessageType) -> None:
    parsed = FlagReason.parse(raw)
    assert parsed is reason
    assert parsed.message_type is message_type


def test_flag_reason_rejects_unknown_values() -> None:
    with pytest.raises(ValueError, match="expected one of"):
        FlagReason.parse("bored")


def test_iso8601z_normalizes_to_utc() -> None:
    assert iso8601z(fixed_now()) == "2026-10-01T09:00:00.000000Z"
