"""
wark — ticket state machine

File: src/wark/state/machine.py
Last updated: 2026-10-18

Purpose
- Pure transition function: (current status, event) -> new status, or ``StateError``.

What should be included in this file
- The closed ``Event`` vocabulary and the transition table.
- Exhaustiveness check so a new ``TicketStatus`` cannot silently fall outside the table.

Functional requirements
- Every transition attempt is validated here before any side effect.
- Multi-destination events (validate, respond, reopen) require the caller to name the target.

Non-functional requirements
- No IO; safe to call from any thread.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Final

from wark.domain.models import OPEN_STATUSES, TicketStatus
from wark.errors import InternalError, StateError

if TYPE_CHECKING:
    from enum import StrEnum
else:
    try:
        from enum import StrEnum
    except ImportError:

        class StrEnum(str, Enum):
            """Compatibility fallback for Python < 3.11."""


class Event(StrEnum):
    VALIDATE = "validate"
    CLAIM = "claim"
    RELEASE = "release"
    EXPIRE = "expire"
    COMPLETE = "complete"
    ADD_DEPENDENCY = "add_dependency"
    DEPENDENCY_RESOLVED = "dependency_resolved"
    FLAG = "flag"
    RESPOND = "respond"
    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    REOPEN = "reopen"
    CHILDREN_COMPLETED = "children_completed"
    CHILDREN_ACCEPTED = "children_accepted"


@dataclass(frozen=True, slots=True)
class TransitionRule:
    event: Event
    sources: frozenset[TicketStatus]
    targets: frozenset[TicketStatus]
    automatic: bool = False

    def default_target(self) -> TicketStatus | None:
        if len(self.targets) == 1:
            return next(iter(self.targets))
        return None


def _rule(
    event: Event,
    sources: Iterable[TicketStatus],
    targets: Iterable[TicketStatus],
    *,
    automatic: bool = False,
) -> TransitionRule:
    return TransitionRule(
        event=event,
        sources=frozenset(sources),
        targets=frozenset(targets),
        automatic=automatic,
    )


_S = TicketStatus

DEFAULT_TRANSITIONS: Final[Mapping[Event, TransitionRule]] = MappingProxyType(
    {
        rule.event: rule
        for rule in (
            _rule(Event.VALIDATE, {_S.CREATED}, {_S.READY, _S.BLOCKED}, automatic=True),
            _rule(Event.CLAIM, {_S.READY}, {_S.IN_PROGRESS}),
            _rule(Event.RELEASE, {_S.IN_PROGRESS}, {_S.READY}),
            _rule(Event.EXPIRE, {_S.IN_PROGRESS}, {_S.READY}, automatic=True),
            _rule(Event.COMPLETE, {_S.IN_PROGRESS}, {_S.REVIEW}),
            _rule(Event.ADD_DEPENDENCY, {_S.READY, _S.IN_PROGRESS}, {_S.BLOCKED}),
            _rule(Event.DEPENDENCY_RESOLVED, {_S.BLOCKED}, {_S.READY}, automatic=True),
            _rule(Event.FLAG, OPEN_STATUSES, {_S.NEEDS_HUMAN}),
            _rule(Event.RESPOND, {_S.NEEDS_HUMAN}, {_S.READY, _S.IN_PROGRESS, _S.BLOCKED}),
            _rule(Event.ACCEPT, {_S.REVIEW}, {_S.DONE}),
            _rule(Event.REJECT, {_S.REVIEW}, {_S.READY}),
            _rule(Event.CANCEL, OPEN_STATUSES, {_S.CANCELLED}),
            _rule(Event.REOPEN, {_S.DONE, _S.CANCELLED}, {_S.CREATED, _S.READY}),
            _rule(
                Event.CHILDREN_COMPLETED,
                {_S.CREATED, _S.READY, _S.BLOCKED, _S.IN_PROGRESS},
                {_S.REVIEW},
                automatic=True,
            ),
            _rule(
                Event.CHILDREN_ACCEPTED,
                {_S.CREATED, _S.READY, _S.BLOCKED, _S.IN_PROGRESS, _S.REVIEW},
                {_S.DONE},
                automatic=True,
            ),
        )
    }
)


class StateMachine:
    """Validates transitions against an immutable table."""

    __slots__ = ("_rules",)

    def __init__(self, rules: Mapping[Event, TransitionRule] | None = None) -> None:
        resolved = DEFAULT_TRANSITIONS if rules is None else MappingProxyType(dict(rules))
        _assert_exhaustive(resolved)
        self._rules = resolved

    @property
    def rules(self) -> Mapping[Event, TransitionRule]:
        return self._rules

    def rule(self, event: Event | str) -> TransitionRule:
        return self._rules[Event(event)]

    def can_apply(self, status: TicketStatus | str, event: Event | str) -> bool:
        return TicketStatus(status) in self.rule(event).sources

    def allowed_events(self, status: TicketStatus | str) -> tuple[Event, ...]:
        resolved = TicketStatus(status)
        return tuple(event for event, rule in self._rules.items() if resolved in rule.sources)

    def validate(
        self,
        status: TicketStatus | str,
        event: Event | str,
        *,
        target: TicketStatus | str | None = None,
        ticket_key: str | None = None,
    ) -> TicketStatus:
        """Return the destination status or raise ``StateError`` without side effects."""

        current = TicketStatus(status)
        resolved_event = Event(event)
        rule = self._rules[resolved_event]
        subject = ticket_key or "ticket"

        if current not in rule.sources:
            allowed = ", ".join(sorted(item.value for item in rule.sources))
            raise StateError(
                f"cannot {resolved_event.value.replace('_', ' ')} {subject}: "
                f"status is {current.value}",
                suggestion=f"'{resolved_event.value}' is only allowed from: {allowed}",
                details={
                    "ticket": subject,
                    "event": resolved_event.value,
                    "status": current.value,
                    "allowed_from": sorted(item.value for item in rule.sources),
                },
            )

        if target is None:
            destination = rule.default_target()
            if destination is None:
                raise InternalError(
                    f"event {resolved_event.value!r} has several destinations; target is required",
                    details={"event": resolved_event.value, "status": current.value},
                )
            return destination

        destination = TicketStatus(target)
        if destination not in rule.targets:
            raise StateError(
                f"cannot {resolved_event.value.replace('_', ' ')} {subject} into {destination.value}",
                details={
                    "ticket": subject,
                    "event": resolved_event.value,
                    "status": current.value,
                    "target": destination.value,
                    "allowed_to": sorted(item.value for item in rule.targets),
                },
            )
        return destination


def _assert_exhaustive(rules: Mapping[Event, TransitionRule]) -> None:
    missing_events = [event.value for event in Event if event not in rules]
    if missing_events:
        raise RuntimeError(f"transition table has no rule for events: {missing_events}")

    reachable: set[TicketStatus] = set()
    for rule in rules.values():
        reachable |= rule.sources | rule.targets
    unmapped = sorted(status.value for status in TicketStatus if status not in reachable)
    if unmapped:
        raise RuntimeError(f"transition table does not cover statuses: {unmapped}")

    for status in TicketStatus:
        if status.is_terminal:
            continue
        if not any(status in rule.sources for rule in rules.values()):
            raise RuntimeError(f"open status {status.value!r} has no outgoing transition")


DEFAULT_STATE_MACHINE: Final[StateMachine] = StateMachine()

__all__ = [
    "DEFAULT_STATE_MACHINE",
    "DEFAULT_TRANSITIONS",
    "Event",
    "StateMachine",
    "TransitionRule",
]
