"""Shared deterministic clocks, stores and builders for wark tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Final

from wark.domain import ids
from wark.domain.models import Project, Ticket, TicketStatus
from wark.persistence.memory import MemoryTicketStore
from wark.persistence.store import SQLiteTicketStore
from wark.service import ServiceSettings, TicketService

if TYPE_CHECKING:
    from pathlib import Path

    from wark.persistence.base import TicketStore

try:
    from datetime import UTC
except ImportError:
    UTC = timezone.utc  # noqa: UP017

_BASE_TS: Final[datetime] = datetime(2026, 10, 1, 9, 0, 0, tzinfo=UTC)

STORE_KINDS: Final[tuple[str, ...]] = ("memory", "sqlite")


def fixed_now(seed: int = 0) -> datetime:
    return _BASE_TS + timedelta(seconds=seed)


class FakeClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start if start is not None else _BASE_TS

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def make_store(kind: str, tmp_path: Path) -> TicketStore:
    if kind == "memory":
        return MemoryTicketStore()
    store = SQLiteTicketStore.open(tmp_path / "state" / "wark.sqlite3")
    store.db.migrate()
    return store


def make_service(
    kind: str,
    tmp_path: Path,
    *,
    clock: FakeClock | None = None,
    settings: ServiceSettings | None = None,
) -> TicketService:
    return TicketService(
        make_store(kind, tmp_path),
        settings=settings,
        clock=clock if clock is not None else FakeClock(),
    )


def make_project(seed: int = 0, *, key: str = "WEB") -> Project:
    return Project(
        id=ids.generate_project_id(timestamp_ms=1_790_000_000_000 + seed),
        key=key,
        name=f"Project {key}",
        created_at=fixed_now(seed),
        updated_at=fixed_now(seed),
    )


def make_ticket(
    project: Project,
    number: int,
    *,
    status: TicketStatus = TicketStatus.READY,
    parent: Ticket | None = None,
    **overrides: object,
) -> Ticket:
    fields: dict[str, object] = {
        "id": ids.generate_ticket_id(timestamp_ms=1_790_000_000_000 + number),
        "project_id": project.id,
        "project_key": project.key,
        "number": number,
        "title": f"Ticket {number}",
        "status": status,
        "parent_ticket_id": parent.id if parent is not None else None,
        "created_at": fixed_now(number),
        "updated_at": fixed_now(number),
    }
    fields.update(overrides)
    return Ticket(**fields)  # type: ignore[arg-type]


def close_done(service: TicketService, ref: str, worker_id: str = "agent-closer") -> Ticket:
    """Drive a ready ticket through claim, complete and accept."""

    service.claim(ref, worker_id)
    service.complete(ref, worker_id)
    return service.accept(ref).ticket


__all__ = [
    "STORE_KINDS",
    "FakeClock",
    "close_done",
    "fixed_now",
    "make_project",
    "make_service",
    "make_store",
    "make_ticket",
]
