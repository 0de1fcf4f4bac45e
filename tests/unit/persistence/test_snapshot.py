"""Project snapshot export/import through YAML."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import yaml

from wark.domain.models import TicketStatus
from wark.errors import InvalidArgsError
from wark.persistence.base import StoreError
from wark.persistence.snapshot import dump_snapshot, export_project, load_snapshot

from .. import make_service

if TYPE_CHECKING:
    from pathlib import Path

    from wark.service import TicketService


def _seed(service: TicketService) -> None:
    service.create_project("WEB", "Frontend", description="Customer-facing app")
    epic = service.create_ticket("WEB", "Checkout epic")
    cart = service.create_ticket("WEB", "Cart", parent=epic.key, priority="high")
    service.create_ticket("WEB", "Payment", parent=epic.key, depends_on=[cart.key])
    service.claim(cart.key, "agent-1")


def test_export_is_deterministic_and_ordered(tmp_path: Path) -> None:
    service = make_service("sqlite", tmp_path)
    _seed(service)

    first = service.export_project("WEB")
    second = service.export_project("web")
    payload = yaml.safe_load(first)

    assert first == second
    assert payload["schema_version"] == 1
    assert [item["key"] for item in payload["tickets"]] == ["WEB-1", "WEB-2", "WEB-3"]
    assert payload["dependencies"] == [{"ticket": "WEB-3", "depends_on": "WEB-2"}]


def test_import_into_fresh_store_requeues_claimed_work(tmp_path: Path) -> None:
    source = make_service("sqlite", tmp_path / "source")
    _seed(source)
    text = source.export_project("WEB")

    target = make_service("memory", tmp_path / "target")
    result = target.import_project(text)

    assert result.to_dict() == {
        "project_key": "WEB",
        "tickets": 3,
        "dependencies": 1,
        "requeued": ["WEB-2"],
        "milestones": 0,
        "tasks": 0,
    }
    assert target.get_ticket("WEB-2").status is TicketStatus.READY
    assert target.get_ticket("WEB-3").status is TicketStatus.BLOCKED
    assert [item.key for item in target.prerequisites("WEB-3")] == ["WEB-2"]
    assert target.get_ticket("WEB-3").parent_ticket_id == target.get_ticket("WEB-1").id
    assert target.get_project("WEB").description == "Customer-facing app"


def test_import_refuses_existing_project(tmp_path: Path) -> None:
    service = make_service("memory", tmp_path)
    _seed(service)
    text = service.export_project("WEB")

    with pytest.raises(InvalidArgsError, match="already exists"):
        service.import_project(text)


def test_import_is_atomic(tmp_path: Path) -> None:
    source = make_service("memory", tmp_path)
    _seed(source)
    payload = export_project(source.store, source.get_project("WEB"))
    payload["dependencies"].append({"ticket": "WEB-3", "depends_on": "WEB-99"})

    target = make_service("sqlite", tmp_path / "target")
    with pytest.raises(InvalidArgsError, match="unknown ticket WEB-99"):
        target.import_project(dump_snapshot(payload))

    assert target.list_projects() == []


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ("- just\n- a list\n", "top-level mapping"),
        ("schema_version: 9\nproject: {}\n", "unsupported schema_version"),
        ("schema_version: 1\nextra: true\n", "unexpected fields"),
        ("schema_version: 1\ntickets: nope\n", "expected a list"),
        ("schema_version: [1\n", "invalid YAML"),
    ],
)
def test_load_snapshot_rejects_malformed_documents(text: str, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        load_snapshot(text)


@pytest.mark.parametrize("kind", ["memory", "sqlite"])
def test_export_writes_enum_fields_as_plain_scalars(kind: str, tmp_path: Path) -> None:
    service = make_service(kind, tmp_path)
    service.create_project("WEB", "Frontend")
    flagged = service.create_ticket("WEB", "Pick vendor", priority="highest")
    service.flag(flagged.key, "decision_needed", "Stripe or Adyen?")
    dropped = service.create_ticket("WEB", "Old idea")
    service.cancel(dropped.key, resolution="obsolete")

    text = service.export_project("WEB")
    tickets = {item["key"]: item for item in yaml.safe_load(text)["tickets"]}

    assert "!!python" not in text
    assert tickets["WEB-1"]["status"] == "needs_human"
    assert tickets["WEB-1"]["priority"] == "highest"
    assert tickets["WEB-1"]["flagged_from"] == "ready"
    assert tickets["WEB-2"]["resolution"] == "obsolete"


def test_unrenderable_payload_is_a_store_error() -> None:
    with pytest.raises(StoreError, match="rendered as YAML"):
        dump_snapshot({"schema_version": 1, "project": object()})


def test_milestones_and_tasks_travel_with_the_project(tmp_path: Path) -> None:
    source = make_service("sqlite", tmp_path / "source")
    _seed(source)
    source.create_milestone("WEB", "BETA", "Public beta", goal="Checkout works end to end")
    source.assign_milestone("WEB-2", "BETA")
    source.add_task("WEB-2", "Render line items")
    source.add_task("WEB-2", "Persist the cart")
    source.complete_task("WEB-2", 1, actor_id="agent-1")
    text = source.export_project("WEB")

    target = make_service("memory", tmp_path / "target")
    result = target.import_project(text)

    assert (result.milestones, result.tasks) == (1, 2)
    beta = target.get_milestone("WEB", "BETA")
    assert beta.milestone.goal == "Checkout works end to end"
    assert beta.ticket_count == 1
    assert [task.complete for task in target.list_tasks("WEB-2")] == [True, False]
    assert [item.key for item in target.milestone_tickets("WEB", "BETA")] == ["WEB-2"]


def test_import_rejects_ticket_linked_to_missing_milestone(tmp_path: Path) -> None:
    source = make_service("memory", tmp_path)
    _seed(source)
    source.create_milestone("WEB", "BETA", "Public beta")
    source.assign_milestone("WEB-2", "BETA")
    payload = export_project(source.store, source.get_project("WEB"))
    payload["milestones"] = []

    target = make_service("sqlite", tmp_path / "target")
    with pytest.raises(InvalidArgsError, match="unknown milestone"):
        target.import_project(dump_snapshot(payload))

    assert target.list_projects() == []


def test_snapshot_without_planning_sections_still_loads(tmp_path: Path) -> None:
    source = make_service("memory", tmp_path)
    _seed(source)
    payload = export_project(source.store, source.get_project("WEB"))
    del payload["milestones"]
    del payload["tasks"]

    target = make_service("memory", tmp_path / "target")
    result = target.import_project(dump_snapshot(payload))

    assert (result.tickets, result.milestones, result.tasks) == (3, 0, 0)
