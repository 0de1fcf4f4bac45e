"""
wark — activity recorder

File: src/wark/activity/recorder.py
Last updated: 2026-10-18

Purpose
- Append one immutable audit entry per state change.

What should be included in this file
- ``ActivityRecorder.append`` used by the claim manager, dependency resolver, and service.

Functional requirements
- Fire-and-forget: a failed append is logged and swallowed, and never rolls back the
  state change that triggered it.
- Each append runs in its own nested transaction (savepoint) so a failed insert leaves
  the caller's transaction usable.

Non-functional requirements
- Entries are never updated or deleted; the SQLite schema enforces this with triggers.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

import structlog

from wark.domain.ids import generate_activity_id
from wark.domain.models import Action, ActivityEntry, ActorType, Ticket, utc_now
from wark.persistence.base import StoreError, TicketStore


class ActivityRecorder:
    def __init__(
        self,
        store: TicketStore,
        *,
        clock: Callable[[], datetime] = utc_now,
        logger: Any | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def append(
        self,
        ticket: Ticket,
        action: Action,
        *,
        actor_type: ActorType = ActorType.SYSTEM,
        actor_id: str | None = None,
        summary: str = "",
        details: Mapping[str, object] | None = None,
        now: datetime | None = None,
    ) -> ActivityEntry | None:
        """Record ``action`` on ``ticket``; return the entry, or ``None`` if it was dropped."""

        try:
            entry = ActivityEntry(
                id=generate_activity_id(),
                ticket_id=ticket.id,
                action=action,
                actor_type=actor_type,
                actor_id=actor_id,
                summary=summary,
                details=dict(details or {}),
                created_at=now if now is not None else self._clock(),
            )
            with self._store.transaction():
                self._store.append_activity(entry)
        except (StoreError, ValueError) as exc:
            self._logger.warning(
                "activity_append_failed",
                ticket_id=ticket.id,
                ticket_key=ticket.key,
                action=Action(action).value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

        self._logger.debug(
            "activity_appended",
            ticket_key=ticket.key,
            action=entry.action.value,
            actor_type=entry.actor_type.value,
        )
        return entry


__all__ = ["ActivityRecorder"]
