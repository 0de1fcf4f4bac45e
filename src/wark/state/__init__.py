"""Ticket state machine and transition application."""

from __future__ import annotations

from wark.state.machine import DEFAULT_STATE_MACHINE, Event, StateMachine, TransitionRule
from wark.state.transitions import apply_transition, finish_active_claim

__all__ = [
    "DEFAULT_STATE_MACHINE",
    "Event",
    "StateMachine",
    "TransitionRule",
    "apply_transition",
    "finish_active_claim",
]
