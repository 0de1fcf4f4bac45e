"""Dependency resolver tests: edge validation, unblocking and parent propagation."""

from __future__ import annotations

import itertools
from dataclasses import replace
from typing import TYPE_CHECKING

import pytest

from wark.domain.models import Action, ClaimStatus, Resolution, TicketStatus
from wark.errors import InvalidArgsError, NotFoundError, StateError
from wark.service import ServiceSettings

from .. import STORE_KINDS, FakeClock, close_done, make_service

if TYPE_CHECKING:
    from pathlib import Path

    from wark.service import TicketService


@pytest.fixture(params=STORE_KINDS)
def service(request: pytest.FixtureRequest, tmp_path: Path) -> TicketService:
    svc = make_service(request.param, tmp_path)
    svc.create_project("API", "Backend")
    return svc


def test_ticket_with_open_prerequisite_starts_blocked(service: TicketService) -> None:
    schema = service.create_ticket("API", "Schema")
    endpoint = service.create_ticket("API", "Endpoint", depends_on=[schema.key])

    assert schema.status is TicketStatus.READY
    assert endpoint.status is TicketStatus.BLOCKED
    assert [item.key for item in service.prerequisites(endpoint.key)] == [schema.key]
    assert [item.key for item in service.dependents(schema.key)] == [endpoint.key]


def test_completing_prerequisite_unblocks_dependent(service: TicketService) -> None:
    schema = service.create_ticket("API", "Schema")
    endpoint = service.create_ticket("API", "Endpoint", depends_on=[schema.key])

    service.claim(schema.key, "agent-1")
    service.complete(schema.key, "agent-1")
    assert service.get_ticket(endpoint.key).status is TicketStatus.BLOCKED

    closed = service.accept(schema.key)

    assert closed.resolution.unblocked == 1
    assert closed.resolution.dependents[0].outcome == "unblocked"
    assert service.get_ticket(endpoint.key).status is TicketStatus.READY
    assert Action.UNBLOCKED in [entry.action for entry in service.history(endpoint.key)]


@pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
def test_dependent_stays_blocked_until_last_prerequisite(
    tmp_path: Path, order: tuple[int, ...]
) -> None:
    service = make_service("memory", tmp_path)
    service.create_project("API", "Backend")
    prerequisites = [service.create_ticket("API", f"Part {index}") for index in range(3)]
    dependent = service.create_ticket(
        "API", "Assemble", depends_on=[item.key for item in prerequisites]
    )

    for step, index in enumerate(order):
        close_done(service, prerequisites[index].key)
        expected = TicketStatus.READY if step == len(order) - 1 else TicketStatus.BLOCKED
        assert service.get_ticket(dependent.key).status is expected


def test_add_dependency_validation_order(service: TicketService) -> None:
    first = service.create_ticket("API", "First")
    second = service.create_ticket("API", "Second")

    with pytest.raises(NotFoundError):
        service.add_dependency(first.key, "API-99")
    with pytest.raises(InvalidArgsError, match="itself"):
        service.add_dependency(first.key, first.key)

    service.add_dependency(second.key, first.key)
    with pytest.raises(InvalidArgsError, match="already depends"):
        service.add_dependency(second.key, first.key)
    with pytest.raises(InvalidArgsError, match="cycle"):
        service.add_dependency(first.key, second.key)

    close_done(service, first.key)
    with pytest.raises(StateError):
        service.add_dependency(first.key, service.create_ticket("API", "Third").key)


def test_transitive_cycle_is_rejected_and_graph_unchanged(service: TicketService) -> None:
    a = service.create_ticket("API", "A")
    b = service.create_ticket("API", "B", depends_on=[a.key])
    c = service.create_ticket("API", "C", depends_on=[b.key])

    with pytest.raises(InvalidArgsError) as excinfo:
        service.add_dependency(a.key, c.key)

    assert excinfo.value.details["cycle"]
    assert service.prerequisites(a.key) == []
    assert service.get_ticket(a.key).status is TicketStatus.READY


def test_adding_dependency_to_in_progress_ticket_releases_its_claim(
    service: TicketService,
) -> None:
    prerequisite = service.create_ticket("API", "Migration")
    worker_ticket = service.create_ticket("API", "Feature")
    claim = service.claim(worker_ticket.key, "agent-1")

    blocked = service.add_dependency(worker_ticket.key, prerequisite.key)

    assert blocked.status is TicketStatus.BLOCKED
    assert service.store.get_active_claim(worker_ticket.id) is None
    [finished] = service.store.list_claims(ticket_id=worker_ticket.id)
    assert finished.id == claim.id
    assert finished.status is ClaimStatus.RELEASED


def test_dependency_on_closed_prerequisite_does_not_block(service: TicketService) -> None:
    prerequisite = service.create_ticket("API", "Done already")
    close_done(service, prerequisite.key)
    dependent = service.create_ticket("API", "Later")

    updated = service.add_dependency(dependent.key, prerequisite.key)

    assert updated.status is TicketStatus.READY


def test_cross_project_dependencies_are_allowed(service: TicketService) -> None:
    service.create_project("WEB", "Frontend")
    backend = service.create_ticket("API", "Endpoint")
    frontend = service.create_ticket("WEB", "Screen", depends_on=[backend.key])

    assert frontend.status is TicketStatus.BLOCKED
    close_done(service, backend.key)
    assert service.get_ticket(frontend.key).status is TicketStatus.READY


def test_removing_last_open_prerequisite_unblocks(service: TicketService) -> None:
    prerequisite = service.create_ticket("API", "Optional")
    dependent = service.create_ticket("API", "Main", depends_on=[prerequisite.key])

    updated = service.remove_dependency(dependent.key, prerequisite.key)

    assert updated.status is TicketStatus.READY
    with pytest.raises(NotFoundError):
        service.remove_dependency(dependent.key, prerequisite.key)


def test_cancelled_prerequisite_flags_dependent_without_unblocking(
    service: TicketService,
) -> None:
    prerequisite = service.create_ticket("API", "Vendor integration")
    dependent = service.create_ticket("API", "Billing", depends_on=[prerequisite.key])

    closed = service.cancel(prerequisite.key, resolution="obsolete")

    assert closed.resolution.escalated == 1
    flagged = service.get_ticket(dependent.key)
    assert flagged.status is TicketStatus.BLOCKED
    assert flagged.human_flag_reason == "Prerequisite API-1 was closed as obsolete"
    assert Action.ESCALATED in [entry.action for entry in service.history(dependent.key)]


def test_unblocking_clears_prerequisite_failure_reason(service: TicketService) -> None:
    prerequisite = service.create_ticket("API", "Vendor integration")
    dependent = service.create_ticket("API", "Billing", depends_on=[prerequisite.key])
    service.cancel(prerequisite.key, resolution="wont_do")
    assert service.get_ticket(dependent.key).human_flag_reason is not None

    service.reopen(prerequisite.key)
    close_done(service, prerequisite.key)

    unblocked = service.get_ticket(dependent.key)
    assert unblocked.status is TicketStatus.READY
    assert unblocked.human_flag_reason is None


def test_failed_prerequisite_flagging_can_be_disabled(tmp_path: Path) -> None:
    service = make_service(
        "memory",
        tmp_path,
        settings=ServiceSettings(flag_dependents_on_failed_prerequisite=False),
    )
    service.create_project("API", "Backend")
    prerequisite = service.create_ticket("API", "Dropped")
    dependent = service.create_ticket("API", "Waiting", depends_on=[prerequisite.key])

    closed = service.cancel(prerequisite.key)

    assert closed.resolution.dependents[0].outcome == "skipped"
    assert service.get_ticket(dependent.key).human_flag_reason is None


def test_parent_moves_to_review_when_all_children_done(service: TicketService) -> None:
    epic = service.create_ticket("API", "Epic")
    children = [service.create_ticket("API", f"Child {n}", parent=epic.key) for n in range(2)]

    close_done(service, children[0].key)
    assert service.get_ticket(epic.key).status is TicketStatus.READY

    close_done(service, children[1].key)
    assert service.get_ticket(epic.key).status is TicketStatus.REVIEW


def test_parent_propagation_is_idempotent(service: TicketService) -> None:
    epic = service.create_ticket("API", "Epic")
    child = service.create_ticket("API", "Only child", parent=epic.key)
    close_done(service, child.key)
    snapshot = service.get_ticket(epic.key)

    again = service.resolver.on_ticket_closed(child.id)

    assert again.parents[0].outcome == "already_in_review"
    assert again.parents_updated == 0
    assert service.get_ticket(epic.key) == snapshot


def test_auto_accepted_parent_cascades_to_grandparent(tmp_path: Path) -> None:
    service = make_service(
        "sqlite", tmp_path, settings=ServiceSettings(auto_accept_parent=True)
    )
    service.create_project("API", "Backend")
    initiative = service.create_ticket("API", "Initiative")
    epic = service.create_ticket("API", "Epic", parent=initiative.key)
    story = service.create_ticket("API", "Story", parent=epic.key)

    closed = close_done(service, story.key)

    assert closed.status is TicketStatus.DONE
    assert service.get_ticket(epic.key).status is TicketStatus.DONE
    assert service.get_ticket(epic.key).resolution is Resolution.COMPLETED
    assert service.get_ticket(initiative.key).status is TicketStatus.DONE


def test_failed_child_holds_parent_unless_allowed(tmp_path: Path) -> None:
    strict = make_service("memory", tmp_path / "strict")
    lenient = make_service(
        "memory",
        tmp_path / "lenient",
        settings=ServiceSettings(allow_parent_completion_with_failed_children=True),
    )
    for service in (strict, lenient):
        service.create_project("API", "Backend")
        epic = service.create_ticket("API", "Epic")
        done_child = service.create_ticket("API", "Shipped", parent=epic.key)
        dropped_child = service.create_ticket("API", "Dropped", parent=epic.key)
        close_done(service, done_child.key)
        service.cancel(dropped_child.key, resolution="wont_do")

    assert strict.get_ticket("API-1").status is TicketStatus.READY
    assert lenient.get_ticket("API-1").status is TicketStatus.REVIEW


def test_flagged_parent_is_left_alone(service: TicketService) -> None:
    epic = service.create_ticket("API", "Epic")
    child = service.create_ticket("API", "Child", parent=epic.key)
    service.flag(epic.key, "decision_needed", "Which vendor?")

    closed = close_done(service, child.key)

    assert closed.status is TicketStatus.DONE
    assert service.get_ticket(epic.key).status is TicketStatus.NEEDS_HUMAN


def test_resolve_all_repairs_stale_blocked_tickets(tmp_path: Path) -> None:
    clock = FakeClock()
    service = make_service("memory", tmp_path, clock=clock)
    service.create_project("API", "Backend")
    prerequisite = service.create_ticket("API", "Closed out of band")
    dependent = service.create_ticket("API", "Stuck", depends_on=[prerequisite.key])
    other = service.create_ticket("API", "Still waiting", depends_on=[dependent.key])

    current = service.get_ticket(prerequisite.key)
    with service.store.transaction():
        service.store.update_ticket(
            replace(
                current,
                status=TicketStatus.DONE,
                resolution=Resolution.COMPLETED,
                completed_at=clock.now,
            ),
            expected_status=current.status,
        )

    result = service.resolve_all(project_key="API")

    assert result.scanned == 2
    assert result.unblocked == 1
    assert service.get_ticket(dependent.key).status is TicketStatus.READY
    assert service.get_ticket(other.key).status is TicketStatus.BLOCKED
