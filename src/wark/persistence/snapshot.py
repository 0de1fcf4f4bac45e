"""
wark — project snapshot export/import.

File: src/wark/persistence/snapshot.py
Last updated: 2026-10-18

Purpose
- Move a project's tickets, dependency edges, milestones and task checklists between
  stores as a YAML document.

What should be included in this file
- ``export_project`` building a schema-versioned payload.
- ``dump_snapshot`` / ``load_snapshot`` for deterministic YAML text.
- ``import_snapshot`` writing a payload into an empty project slot.

Functional requirements
- Tickets are ordered by number and edges by key so two exports of the same state are identical.
- Claims are not portable: tickets exported as ``in_progress`` are imported as ``ready``.
- ``milestones`` and ``tasks`` are optional sections; snapshots without them still load.
- Import runs in one store transaction; any invalid record aborts the whole import.

Non-functional requirements
- Parse failures surface as ``ValueError`` with the offending location; render failures as
  ``StoreError``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, cast

import yaml

from wark.constants import MAX_PAGE_SIZE, SNAPSHOT_SCHEMA_VERSION
from wark.domain import ids as domain_ids
from wark.domain.models import Dependency, Milestone, Project, Ticket, TicketStatus, TicketTask
from wark.persistence.base import StoreError, TicketFilter, TicketStore

_TOP_LEVEL_KEYS = frozenset(
    {"schema_version", "project", "milestones", "tickets", "dependencies", "tasks"}
)
_LIST_KEYS = ("milestones", "tickets", "dependencies", "tasks")


@dataclass(frozen=True, slots=True)
class ImportResult:
    project_key: str
    tickets: int
    dependencies: int
    requeued: tuple[str, ...] = ()
    milestones: int = 0
    tasks: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "project_key": self.project_key,
            "tickets": self.tickets,
            "dependencies": self.dependencies,
            "requeued": list(self.requeued),
            "milestones": self.milestones,
            "tasks": self.tasks,
        }


def export_project(store: TicketStore, project: Project) -> dict[str, Any]:
    tickets = _all_tickets(store, project.id)
    keys_by_id = {ticket.id: ticket.key for ticket in tickets}

    edges: list[dict[str, str]] = []
    for dependency in store.list_dependencies(project_id=project.id):
        prerequisite_key = keys_by_id.get(dependency.depends_on_id)
        if prerequisite_key is None:
            prerequisite = store.get_ticket(dependency.depends_on_id)
            if prerequisite is None:
                continue
            prerequisite_key = prerequisite.key
        edges.append({"ticket": keys_by_id[dependency.ticket_id], "depends_on": prerequisite_key})
    edges.sort(key=lambda item: (_key_order(item["ticket"]), _key_order(item["depends_on"])))

    tasks = [task.to_dict() for ticket in tickets for task in store.list_tasks(ticket.id)]

    return {
        "schema_version": SNAPSHOT_SCHEMA_VERSION,
        "project": project.to_dict(),
        "milestones": [
            milestone.to_dict() for milestone in store.list_milestones(project_id=project.id)
        ],
        "tickets": [ticket.to_dict() for ticket in tickets],
        "dependencies": edges,
        "tasks": tasks,
    }


def dump_snapshot(payload: Mapping[str, object]) -> str:
    try:
        rendered = yaml.safe_dump(
            dict(payload),
            sort_keys=False,
            default_flow_style=False,
            allow_unicode=True,
            width=120,
        )
    except yaml.YAMLError as exc:
        raise StoreError(f"snapshot could not be rendered as YAML: {exc}") from exc
    if not rendered.endswith("\n"):
        rendered = rendered + "\n"
    return rendered


def load_snapshot(text: str) -> dict[str, Any]:
    try:
        loaded = cast("object", yaml.safe_load(text))
    except yaml.YAMLError as exc:
        raise ValueError(f"snapshot: invalid YAML ({exc})") from exc

    if not isinstance(loaded, dict):
        raise ValueError(f"snapshot: expected top-level mapping, got {type(loaded).__name__}")
    unknown = sorted(str(key) for key in loaded if key not in _TOP_LEVEL_KEYS)
    if unknown:
        raise ValueError(f"snapshot: unexpected fields: {unknown}")

    version = loaded.get("schema_version")
    if version != SNAPSHOT_SCHEMA_VERSION:
        raise ValueError(
            f"snapshot: unsupported schema_version {version!r}; expected {SNAPSHOT_SCHEMA_VERSION}"
        )
    for key in _LIST_KEYS:
        if not isinstance(loaded.get(key, []), list):
            raise ValueError(f"snapshot.{key}: expected a list")
    return loaded


def import_snapshot(
    store: TicketStore, payload: Mapping[str, Any], *, now: datetime
) -> ImportResult:
    """Insert the project, its milestones, its tickets (parents first), edges and tasks.

    The caller owns the surrounding transaction.
    """

    project = Project.from_dict(cast("Mapping[str, object]", payload.get("project")))
    if store.get_project_by_key(project.key) is not None:
        raise ValueError(f"snapshot.project: project {project.key} already exists")
    store.insert_project(project)

    milestones = payload.get("milestones") or []
    milestone_ids: set[str] = set()
    for index, raw in enumerate(milestones):
        if not isinstance(raw, Mapping):
            raise ValueError(f"snapshot.milestones[{index}]: expected mapping")
        milestone = Milestone.from_dict(raw)
        if milestone.project_id != project.id:
            raise ValueError(
                f"snapshot.milestones[{index}]: milestone {milestone.key} "
                "belongs to another project"
            )
        store.insert_milestone(milestone)
        milestone_ids.add(milestone.id)

    tickets: list[Ticket] = []
    for index, raw in enumerate(payload.get("tickets") or []):
        if not isinstance(raw, Mapping):
            raise ValueError(f"snapshot.tickets[{index}]: expected mapping")
        ticket = Ticket.from_dict(raw)
        if ticket.project_id != project.id or ticket.project_key != project.key:
            raise ValueError(
                f"snapshot.tickets[{index}]: ticket {ticket.key} belongs to another project"
            )
        if ticket.milestone_id is not None and ticket.milestone_id not in milestone_ids:
            raise ValueError(
                f"snapshot.tickets[{index}]: ticket {ticket.key} references an unknown milestone"
            )
        tickets.append(ticket)

    requeued: list[str] = []
    ids_by_key: dict[str, str] = {}
    for ticket in _parents_first(tickets):
        if ticket.status is TicketStatus.IN_PROGRESS:
            ticket = replace(ticket, status=TicketStatus.READY, updated_at=now)
            requeued.append(ticket.key)
        store.insert_ticket(ticket)
        ids_by_key[ticket.key] = ticket.id

    edges = payload.get("dependencies") or []
    for index, raw in enumerate(edges):
        location = f"snapshot.dependencies[{index}]"
        if not isinstance(raw, Mapping):
            raise ValueError(f"{location}: expected mapping")
        dependent_id = _resolve_key(store, ids_by_key, raw.get("ticket"), f"{location}.ticket")
        prerequisite_id = _resolve_key(
            store, ids_by_key, raw.get("depends_on"), f"{location}.depends_on"
        )
        store.insert_dependency(
            Dependency(ticket_id=dependent_id, depends_on_id=prerequisite_id, created_at=now)
        )

    imported = set(ids_by_key.values())
    tasks = payload.get("tasks") or []
    for index, raw in enumerate(tasks):
        if not isinstance(raw, Mapping):
            raise ValueError(f"snapshot.tasks[{index}]: expected mapping")
        task = TicketTask.from_dict(raw)
        if task.ticket_id not in imported:
            raise ValueError(
                f"snapshot.tasks[{index}]: task belongs to a ticket outside the project"
            )
        store.insert_task(task)

    return ImportResult(
        project_key=project.key,
        tickets=len(tickets),
        dependencies=len(edges),
        requeued=tuple(requeued),
        milestones=len(milestones),
        tasks=len(tasks),
    )


def _all_tickets(store: TicketStore, project_id: str) -> list[Ticket]:
    collected: list[Ticket] = []
    offset = 0
    while True:
        page = store.list_tickets(
            TicketFilter(project_id=project_id, limit=MAX_PAGE_SIZE, offset=offset)
        )
        collected.extend(page)
        if len(page) < MAX_PAGE_SIZE:
            break
        offset += MAX_PAGE_SIZE
    return sorted(collected, key=lambda item: item.number)


def _parents_first(tickets: list[Ticket]) -> list[Ticket]:
    known = {ticket.id for ticket in tickets}
    placed: set[str] = set()
    ordered: list[Ticket] = []
    pending = sorted(tickets, key=lambda item: item.number)
    while pending:
        remaining = []
        for ticket in pending:
            parent = ticket.parent_ticket_id
            if parent is not None and parent not in known:
                raise ValueError(f"snapshot: ticket {ticket.key} has a parent outside the project")
            if parent is None or parent in placed:
                ordered.append(ticket)
                placed.add(ticket.id)
            else:
                remaining.append(ticket)
        if len(remaining) == len(pending):
            raise ValueError("snapshot: parent links form a cycle")
        pending = remaining
    return ordered


def _resolve_key(store: TicketStore, ids_by_key: dict[str, str], raw: object, location: str) -> str:
    if not isinstance(raw, str) or not domain_ids.is_ticket_key(raw):
        raise ValueError(f"{location}: expected ticket key like PROJ-1, got {raw!r}")
    if raw in ids_by_key:
        return ids_by_key[raw]
    project_key, number = domain_ids.parse_ticket_key(raw)
    project = store.get_project_by_key(project_key)
    ticket = store.get_ticket_by_number(project.id, number) if project is not None else None
    if ticket is None:
        raise ValueError(f"{location}: unknown ticket {raw}")
    return ticket.id


def _key_order(key: str) -> tuple[str, int]:
    return domain_ids.parse_ticket_key(key)


__all__ = [
    "ImportResult",
    "dump_snapshot",
    "export_project",
    "import_snapshot",
    "load_snapshot",
]
