"""Transition table tests: every legal edge, every illegal edge, and table integrity."""

from __future__ import annotations

import pytest

from wark.domain.models import TERMINAL_STATUSES, TicketStatus
from wark.errors import ErrorKind, InternalError, StateError
from wark.state.machine import (
    DEFAULT_STATE_MACHINE,
    DEFAULT_TRANSITIONS,
    Event,
    StateMachine,
    TransitionRule,
)

try:
    from hypothesis import given, settings
    from hypothesis import strategies as st
except ModuleNotFoundError:
    _HYPOTHESIS_AVAILABLE = False
else:
    _HYPOTHESIS_AVAILABLE = True

_S = TicketStatus

_EXPECTED_EDGES: dict[Event, tuple[set[TicketStatus], set[TicketStatus]]] = {
    Event.VALIDATE: ({_S.CREATED}, {_S.READY, _S.BLOCKED}),
    Event.CLAIM: ({_S.READY}, {_S.IN_PROGRESS}),
    Event.RELEASE: ({_S.IN_PROGRESS}, {_S.READY}),
    Event.EXPIRE: ({_S.IN_PROGRESS}, {_S.READY}),
    Event.COMPLETE: ({_S.IN_PROGRESS}, {_S.REVIEW}),
    Event.ADD_DEPENDENCY: ({_S.READY, _S.IN_PROGRESS}, {_S.BLOCKED}),
    Event.DEPENDENCY_RESOLVED: ({_S.BLOCKED}, {_S.READY}),
    Event.FLAG: (set(TicketStatus) - TERMINAL_STATUSES, {_S.NEEDS_HUMAN}),
    Event.RESPOND: ({_S.NEEDS_HUMAN}, {_S.READY, _S.IN_PROGRESS, _S.BLOCKED}),
    Event.ACCEPT: ({_S.REVIEW}, {_S.DONE}),
    Event.REJECT: ({_S.REVIEW}, {_S.READY}),
    Event.CANCEL: (set(TicketStatus) - TERMINAL_STATUSES, {_S.CANCELLED}),
    Event.REOPEN: ({_S.DONE, _S.CANCELLED}, {_S.CREATED, _S.READY}),
}


@pytest.mark.parametrize("event", sorted(_EXPECTED_EDGES, key=lambda item: item.value))
def test_transition_table_matches_documented_edges(event: Event) -> None:
    sources, targets = _EXPECTED_EDGES[event]
    rule = DEFAULT_TRANSITIONS[event]
    assert set(rule.sources) == sources
    assert set(rule.targets) == targets


@pytest.mark.parametrize("status", list(TicketStatus))
@pytest.mark.parametrize("event", list(Event))
def test_validate_accepts_exactly_the_table_sources(status: TicketStatus, event: Event) -> None:
    rule = DEFAULT_STATE_MACHINE.rule(event)
    target = next(iter(sorted(rule.targets, key=lambda item: item.value)))
    if status in rule.sources:
        assert DEFAULT_STATE_MACHINE.validate(status, event, target=target) is target
        return

    with pytest.raises(StateError) as excinfo:
        DEFAULT_STATE_MACHINE.validate(status, event, target=target, ticket_key="WEB-1")
    assert excinfo.value.kind is ErrorKind.STATE_ERROR
    assert excinfo.value.details["status"] == status.value
    assert "WEB-1" in excinfo.value.message


def test_terminal_statuses_only_leave_through_reopen() -> None:
    for status in TERMINAL_STATUSES:
        assert DEFAULT_STATE_MACHINE.allowed_events(status) == (Event.REOPEN,)


def test_single_target_events_default_their_destination() -> None:
    assert DEFAULT_STATE_MACHINE.validate(_S.READY, Event.CLAIM) is _S.IN_PROGRESS
    assert DEFAULT_STATE_MACHINE.validate(_S.REVIEW, "accept") is _S.DONE


def test_multi_target_event_requires_explicit_target() -> None:
    with pytest.raises(InternalError, match="target is required") as excinfo:
        DEFAULT_STATE_MACHINE.validate(_S.CREATED, Event.VALIDATE)

    assert excinfo.value.kind is ErrorKind.INTERNAL
    assert excinfo.value.exit_code == 5


def test_target_outside_rule_is_rejected() -> None:
    with pytest.raises(StateError) as excinfo:
        DEFAULT_STATE_MACHINE.validate(_S.NEEDS_HUMAN, Event.RESPOND, target=_S.DONE)
    assert excinfo.value.details["target"] == "done"


def test_validation_has_no_side_effects_on_rejection() -> None:
    before = dict(DEFAULT_STATE_MACHINE.rules)
    with pytest.raises(StateError):
        DEFAULT_STATE_MACHINE.validate(_S.DONE, Event.CLAIM)
    assert dict(DEFAULT_STATE_MACHINE.rules) == before


def test_incomplete_transition_table_is_rejected_at_construction() -> None:
    partial = {
        event: rule for event, rule in DEFAULT_TRANSITIONS.items() if event is not Event.CLAIM
    }
    with pytest.raises(RuntimeError, match="no rule for events"):
        StateMachine(partial)


def test_table_with_dead_end_open_status_is_rejected() -> None:
    rules = dict(DEFAULT_TRANSITIONS)
    rules[Event.FLAG] = TransitionRule(
        event=Event.FLAG,
        sources=frozenset({_S.READY}),
        targets=frozenset({_S.NEEDS_HUMAN}),
    )
    rules[Event.RESPOND] = TransitionRule(
        event=Event.RESPOND,
        sources=frozenset({_S.BLOCKED}),
        targets=frozenset({_S.READY}),
    )
    rules[Event.CANCEL] = TransitionRule(
        event=Event.CANCEL,
        sources=frozenset(set(TicketStatus) - TERMINAL_STATUSES - {_S.NEEDS_HUMAN}),
        targets=frozenset({_S.CANCELLED}),
    )
    with pytest.raises(RuntimeError, match="needs_human"):
        StateMachine(rules)


if _HYPOTHESIS_AVAILABLE:

    @given(
        path=st.lists(st.sampled_from(list(Event)), min_size=1, max_size=30),
    )
    @settings(max_examples=100, derandomize=True, deadline=None)
    def test_property_random_event_walks_never_escape_the_table(path: list[Event]) -> None:
        status = _S.CREATED
        for event in path:
            rule = DEFAULT_STATE_MACHINE.rule(event)
            if status not in rule.sources:
                with pytest.raises(StateError):
                    DEFAULT_STATE_MACHINE.validate(status, event, target=min(rule.targets))
                continue
            status = DEFAULT_STATE_MACHINE.validate(status, event, target=min(rule.targets))
            assert status in rule.targets
