"""Ticket task checklists over both store implementations."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from wark.domain.models import Action
from wark.errors import InvalidArgsError, NotFoundError, StateError
from wark.planning import TaskProgress

from .. import STORE_KINDS, FakeClock, close_done, make_service

if TYPE_CHECKING:
    from pathlib import Path

    from wark.service import TicketService


@pytest.fixture(params=STORE_KINDS)
def service(request: pytest.FixtureRequest, tmp_path: Path) -> TicketService:
    svc = make_service(request.param, tmp_path, clock=FakeClock())
    svc.create_project("WEB", "Web app")
    svc.create_ticket("WEB", "Checkout page")
    return svc


def _descriptions(service: TicketService) -> list[tuple[int, str, bool]]:
    return [
        (task.position, task.description, task.complete) for task in service.list_tasks("WEB-1")
    ]


def test_tasks_are_appended_in_order(service: TicketService) -> None:
    service.add_task("WEB-1", "Sketch layout")
    service.add_task("WEB-1", "Wire payment form")

    assert _descriptions(service) == [
        (1, "Sketch layout", False),
        (2, "Wire payment form", False),
    ]
    actions = [entry.action for entry in service.history("WEB-1")]
    assert actions.count(Action.TASK_ADDED) == 2


def test_complete_without_position_takes_first_open_task(service: TicketService) -> None:
    for description in ("Sketch layout", "Wire payment form", "Add tests"):
        service.add_task("WEB-1", description)
    service.complete_task("WEB-1", 2, actor_id="agent-1")

    completion = service.complete_task("WEB-1", actor_id="agent-1")

    assert completion.task.position == 1
    assert completion.already_complete is False
    assert completion.progress == TaskProgress(total=3, completed=2)
    entry = [e for e in service.history("WEB-1") if e.action is Action.TASK_COMPLETED][-1]
    assert entry.actor_id == "agent-1"
    assert entry.details["completed"] == 2
    assert entry.details["total"] == 3


def test_completing_a_done_task_is_reported_not_recorded(service: TicketService) -> None:
    service.add_task("WEB-1", "Sketch layout")
    service.complete_task("WEB-1", 1)

    again = service.complete_task("WEB-1", 1)

    assert again.already_complete is True
    completed = [e for e in service.history("WEB-1") if e.action is Action.TASK_COMPLETED]
    assert len(completed) == 1


def test_complete_next_reports_empty_and_finished_checklists(service: TicketService) -> None:
    with pytest.raises(InvalidArgsError, match="has no tasks"):
        service.complete_task("WEB-1")

    service.add_task("WEB-1", "Sketch layout")
    service.complete_task("WEB-1")

    with pytest.raises(StateError, match="already complete"):
        service.complete_task("WEB-1")


def test_remove_renumbers_later_tasks(service: TicketService) -> None:
    for description in ("Sketch layout", "Wire payment form", "Add tests"):
        service.add_task("WEB-1", description)

    removed = service.remove_task("WEB-1", 1)

    assert removed.description == "Sketch layout"
    assert _descriptions(service) == [
        (1, "Wire payment form", False),
        (2, "Add tests", False),
    ]
    assert service.add_task("WEB-1", "Ship it").position == 3


def test_uncomplete_reopens_a_task(service: TicketService) -> None:
    service.add_task("WEB-1", "Sketch layout")
    service.complete_task("WEB-1", 1)

    reopened = service.uncomplete_task("WEB-1", 1)

    assert reopened.complete is False
    assert _descriptions(service) == [(1, "Sketch layout", False)]


def test_unknown_position_is_not_found(service: TicketService) -> None:
    service.add_task("WEB-1", "Sketch layout")

    with pytest.raises(NotFoundError, match="has no task 4"):
        service.complete_task("WEB-1", 4)


def test_blank_description_is_rejected(service: TicketService) -> None:
    with pytest.raises(InvalidArgsError, match="description is required"):
        service.add_task("WEB-1", "   ")


def test_closed_ticket_checklist_is_read_only(service: TicketService) -> None:
    service.add_task("WEB-1", "Sketch layout")
    close_done(service, "WEB-1")

    with pytest.raises(StateError, match="cannot change tasks"):
        service.add_task("WEB-1", "Late addition")
    with pytest.raises(StateError, match="cannot change tasks"):
        service.complete_task("WEB-1", 1)
    assert _descriptions(service) == [(1, "Sketch layout", False)]
