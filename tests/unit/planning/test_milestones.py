"""Milestone grouping, lifecycle and progress over both store implementations."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

from wark.domain.models import Action, MilestoneStatus
from wark.errors import InvalidArgsError, NotFoundError, StateError

from .. import STORE_KINDS, FakeClock, close_done, make_service

if TYPE_CHECKING:
    from pathlib import Path

    from wark.service import TicketService


@pytest.fixture(params=STORE_KINDS)
def service(request: pytest.FixtureRequest, tmp_path: Path) -> TicketService:
    svc = make_service(request.param, tmp_path, clock=FakeClock())
    svc.create_project("WEB", "Web app")
    svc.create_project("API", "Backend")
    return svc


def test_progress_counts_done_tickets(service: TicketService) -> None:
    service.create_milestone("WEB", "beta", "Public beta", goal="Invite first users")
    for title in ("Cart", "Payment", "Receipts"):
        ticket = service.create_ticket("WEB", title)
        service.assign_milestone(ticket.key, "BETA")
    close_done(service, "WEB-1")

    progress = service.get_milestone("WEB", "BETA")

    assert progress.milestone.key == "BETA"
    assert (progress.ticket_count, progress.completed_count) == (3, 1)
    assert progress.completion_pct == 33.3
    assert progress.to_dict()["goal"] == "Invite first users"


def test_empty_milestone_reports_zero_percent(service: TicketService) -> None:
    service.create_milestone("WEB", "GA", "General availability")

    assert service.get_milestone("WEB", "GA").completion_pct == 0.0


def test_keys_are_unique_per_project(service: TicketService) -> None:
    service.create_milestone("WEB", "BETA", "Public beta")
    service.create_milestone("API", "BETA", "API beta")

    with pytest.raises(InvalidArgsError, match="already exists"):
        service.create_milestone("WEB", "beta", "Again")
    with pytest.raises(InvalidArgsError, match="milestone key"):
        service.create_milestone("WEB", "1st", "Bad key")


def test_list_orders_open_dated_milestones_first(service: TicketService) -> None:
    service.create_milestone("WEB", "LATER", "Someday")
    service.create_milestone(
        "WEB", "GA", "Launch", target_date=datetime(2026, 12, 1, tzinfo=UTC)
    )
    service.create_milestone(
        "WEB", "BETA", "Beta", target_date=datetime(2026, 11, 1, tzinfo=UTC)
    )
    service.create_milestone("WEB", "ALPHA", "Alpha")
    service.achieve_milestone("WEB", "ALPHA")

    keys = [item.milestone.key for item in service.list_milestones("WEB")]

    assert keys == ["BETA", "GA", "LATER", "ALPHA"]
    assert len(service.list_milestones()) == 4


def test_status_transitions_are_guarded(service: TicketService) -> None:
    service.create_milestone("WEB", "BETA", "Public beta")

    with pytest.raises(StateError, match="it is open"):
        service.reopen_milestone("WEB", "BETA")
    assert service.achieve_milestone("WEB", "BETA").status is MilestoneStatus.ACHIEVED
    with pytest.raises(StateError, match="it is achieved"):
        service.abandon_milestone("WEB", "BETA")
    assert service.reopen_milestone("WEB", "BETA").status is MilestoneStatus.OPEN
    assert service.abandon_milestone("WEB", "BETA").status is MilestoneStatus.ABANDONED


def test_update_changes_and_clears_fields(service: TicketService) -> None:
    service.create_milestone(
        "WEB", "BETA", "Public beta", target_date=datetime(2026, 11, 1, tzinfo=UTC)
    )

    renamed = service.update_milestone("WEB", "BETA", name="Closed beta", goal="Ten testers")
    cleared = service.update_milestone("WEB", "BETA", target_date=None)

    assert (renamed.name, renamed.goal) == ("Closed beta", "Ten testers")
    assert renamed.target_date == datetime(2026, 11, 1, tzinfo=UTC)
    assert cleared.target_date is None
    assert cleared.name == "Closed beta"


def test_assign_records_history_and_filters_listing(service: TicketService) -> None:
    service.create_milestone("WEB", "BETA", "Public beta")
    service.create_milestone("WEB", "GA", "Launch")
    ticket = service.create_ticket("WEB", "Cart")
    service.create_ticket("WEB", "Unplanned")

    service.assign_milestone(ticket.key, "BETA")
    moved = service.assign_milestone(ticket.key, "GA")
    unchanged = service.assign_milestone(ticket.key, "GA")

    assert moved.milestone_id == unchanged.milestone_id
    changes = [e for e in service.history(ticket.key) if e.action is Action.MILESTONE_CHANGED]
    assert [e.details["milestone"] for e in changes] == [
        {"from": None, "to": "BETA"},
        {"from": "BETA", "to": "GA"},
    ]
    listed = service.list_tickets(project_key="WEB", milestone="GA")
    assert [item.key for item in listed] == ["WEB-1"]
    with pytest.raises(InvalidArgsError, match="requires a project key"):
        service.list_tickets(milestone="GA")


def test_assign_only_sees_milestones_of_the_ticket_project(service: TicketService) -> None:
    service.create_milestone("API", "BETA", "API beta")
    ticket = service.create_ticket("WEB", "Cart")

    with pytest.raises(NotFoundError, match="BETA not found in WEB"):
        service.assign_milestone(ticket.key, "BETA")


def test_delete_unlinks_tickets(service: TicketService) -> None:
    service.create_milestone("WEB", "BETA", "Public beta")
    for title in ("Cart", "Payment"):
        service.assign_milestone(service.create_ticket("WEB", title).key, "BETA")

    assert service.delete_milestone("WEB", "BETA") == 2

    assert service.get_ticket("WEB-1").milestone_id is None
    assert service.get_ticket("WEB-2").title == "Payment"
    with pytest.raises(NotFoundError):
        service.get_milestone("WEB", "BETA")
