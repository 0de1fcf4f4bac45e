"""
wark — concurrent claim integration tests

File: tests/integration/test_concurrent_claims.py
Last updated: 2026-10-18

Purpose
- Exercise the single-active-claim guarantee with real threads racing on one ticket.

What this test file should cover
- Exactly one winner among workers claiming the same ticket.
- ``next_ticket`` handing distinct tickets to workers that race for the queue.
- Separate SQLite connections (one store per worker) agreeing on the outcome.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import pytest

from wark.errors import ConcurrentConflictError
from wark.persistence.store import SQLiteTicketStore
from wark.service import TicketService

from ..unit import STORE_KINDS, FakeClock, make_service

if TYPE_CHECKING:
    from pathlib import Path

    from wark.domain.models import Claim

pytestmark = pytest.mark.integration

_WORKERS = 8


def _race(workers: int, target: object) -> tuple[list[object], list[BaseException]]:
    barrier = threading.Barrier(workers)
    results: list[object] = []
    errors: list[BaseException] = []
    lock = threading.Lock()

    def run(index: int) -> None:
        barrier.wait()
        try:
            outcome = target(index)  # type: ignore[operator]
        except BaseException as exc:  # noqa: BLE001 - collected for assertions.
            with lock:
                errors.append(exc)
            return
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=run, args=(idx,)) for idx in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results, errors


@pytest.mark.parametrize("kind", STORE_KINDS)
def test_exactly_one_worker_wins_a_ticket(kind: str, tmp_path: Path) -> None:
    service = make_service(kind, tmp_path)
    service.create_project("WEB", "Frontend")
    ticket = service.create_ticket("WEB", "Contended")

    results, errors = _race(
        _WORKERS, lambda index: service.claim(ticket.key, f"agent-{index}")
    )

    assert len(results) == 1
    assert len(errors) == _WORKERS - 1
    assert all(isinstance(exc, ConcurrentConflictError) for exc in errors)
    [winner] = results
    active = service.store.get_active_claim(ticket.id)
    assert active is not None
    assert active.id == winner.id  # type: ignore[attr-defined]
    assert [item.action.value for item in service.history(ticket.key)].count("claimed") == 1


@pytest.mark.parametrize("kind", STORE_KINDS)
def test_next_ticket_hands_out_distinct_tickets(kind: str, tmp_path: Path) -> None:
    service = make_service(kind, tmp_path)
    service.create_project("WEB", "Frontend")
    for index in range(_WORKERS):
        service.create_ticket("WEB", f"Task {index}")

    results, errors = _race(
        _WORKERS,
        lambda index: service.next_ticket(project_key="WEB", worker_id=f"agent-{index}"),
    )

    assert errors == []
    picked = [item for item in results if item is not None]
    keys = [ticket.key for ticket, _claim in picked]  # type: ignore[misc]
    assert len(keys) == len(set(keys))
    assert len(keys) == _WORKERS
    assert service.list_tickets(project_key="WEB", workable=True) == []


def test_separate_connections_agree_on_the_winner(tmp_path: Path) -> None:
    db_path = tmp_path / "state" / "wark.sqlite3"
    seed = TicketService(SQLiteTicketStore.open(db_path), clock=FakeClock())
    seed.store.db.migrate()  # type: ignore[attr-defined]
    seed.create_project("WEB", "Frontend")
    ticket = seed.create_ticket("WEB", "Contended")

    def claim(index: int) -> Claim:
        worker_service = TicketService(SQLiteTicketStore.open(db_path), clock=FakeClock())
        return worker_service.claim(ticket.key, f"agent-{index}")

    results, errors = _race(4, claim)

    assert len(results) == 1
    assert all(isinstance(exc, ConcurrentConflictError) for exc in errors)
    claims = seed.store.list_claims(ticket_id=ticket.id)
    assert len(claims) == 1
    assert seed.get_ticket(ticket.key).status.value == "in_progress"
