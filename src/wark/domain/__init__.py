"""
wark — domain layer

File: src/wark/domain/__init__.py
Last updated: 2026-10-18

Purpose
- Domain types shared across components: Project, Ticket, Claim, Dependency, ActivityEntry,
  InboxMessage, and the closed enums that classify them.

What should be included in this file
- Re-export of core domain entities for convenience.
- Keep domain layer free of IO side effects.
"""

from __future__ import annotations

from wark.domain.models import (
    Action,
    ActivityEntry,
    ActorType,
    Claim,
    ClaimStatus,
    Complexity,
    Dependency,
    FlagReason,
    InboxMessage,
    MessageType,
    Priority,
    Project,
    Resolution,
    Ticket,
    TicketStatus,
)

__all__ = [
    "Action",
    "ActivityEntry",
    "ActorType",
    "Claim",
    "ClaimStatus",
    "Complexity",
    "Dependency",
    "FlagReason",
    "InboxMessage",
    "MessageType",
    "Priority",
    "Project",
    "Resolution",
    "Ticket",
    "TicketStatus",
]
