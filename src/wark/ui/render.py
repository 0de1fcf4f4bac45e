"""Output rendering for the wark CLI.

File: src/wark/ui/render.py
Last updated: 2026-10-18

Purpose
- Provide a thin rendering layer for CLI output.
- Respect NO_COLOR environment variable and --no-color CLI flag.

What should be included in this file
- CLIRenderer class with methods for common output patterns.
- Ticket, claim, activity and inbox formatters shared by command handlers.
- Task checklist, milestone progress and queue status formatters.

Functional requirements
- Plain-text rendering must always work without external dependencies.
- Errors go to stderr as ``error: ...`` with an optional ``hint: ...`` line.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from collections.abc import Sequence

    from wark.domain.models import (
        ActivityEntry,
        Claim,
        InboxMessage,
        Project,
        Ticket,
        TicketTask,
    )
    from wark.planning import MilestoneProgress
    from wark.service import StatusSummary

_RED = "\x1b[31m"
_RESET = "\x1b[0m"


def _color_allowed(no_color_flag: bool, stream: TextIO) -> bool:
    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class CLIRenderer:
    """Thin CLI output renderer producing deterministic plain text."""

    def __init__(self, *, no_color: bool = False, verbose: bool = False) -> None:
        self.verbose = verbose
        self._no_color = no_color

    def kv(self, key: str, value: object) -> None:
        print(f"{key}: {value}")

    def text(self, line: str) -> None:
        print(line)

    def section(self, title: str) -> None:
        print(f"\n{title}")

    def warning(self, text: str) -> None:
        print(f"  Warning: {text}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            print(f"  {prefix}{entry}")

    def error(self, message: str, *, suggestion: str | None = None) -> None:
        """Print ``error:`` (and ``hint:``) lines to stderr."""

        label = "error:"
        if _color_allowed(self._no_color, sys.stderr):
            label = f"{_RED}{label}{_RESET}"
        print(f"{label} {message}", file=sys.stderr)
        if suggestion:
            print(f"hint: {suggestion}", file=sys.stderr)

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
        empty: str | None = None,
    ) -> None:
        """Print a formatted ASCII table."""

        if not rows:
            if empty:
                print(empty)
            return

        col_count = len(headers)
        widths = [len(h) for h in headers]
        for row in rows:
            for i in range(min(len(row), col_count)):
                widths[i] = max(widths[i], len(str(row[i])))

        def _pad(cells: Sequence[str]) -> str:
            parts: list[str] = []
            for i in range(col_count):
                cell = str(cells[i]) if i < len(cells) else ""
                parts.append(cell.ljust(widths[i]))
            return "  ".join(parts).rstrip()

        if title:
            self.section(title)
        print(_pad(list(headers)))
        print("  ".join("-" * w for w in widths))
        for row in rows:
            print(_pad(list(row)))

    def next_steps(self, steps: Sequence[str]) -> None:
        if not steps:
            return
        self.section("Next steps:")
        for step in steps:
            print(f"  $ {step}")

    # Domain formatters

    def project(self, project: Project) -> None:
        self.kv("Project", f"{project.key} ({project.name})")
        if project.description:
            self.kv("Description", project.description)
        if self.verbose:
            self.kv("ID", project.id)

    def projects(self, projects: Sequence[Project]) -> None:
        self.table(
            ("KEY", "NAME", "CREATED"),
            [(item.key, item.name, _short_time(item.created_at)) for item in projects],
            empty="No projects.",
        )

    def ticket(self, ticket: Ticket, *, claim: Claim | None = None) -> None:
        self.kv("Ticket", f"{ticket.key}: {ticket.title}")
        self.kv("Status", _status_text(ticket))
        self.kv("Priority", ticket.priority.value)
        self.kv("Complexity", ticket.complexity.value)
        self.kv("Retries", f"{ticket.retry_count}/{ticket.max_retries}")
        if ticket.branch_name:
            self.kv("Branch", ticket.branch_name)
        if ticket.human_flag_reason:
            self.kv("Flag", ticket.human_flag_reason)
        if claim is not None:
            self.kv("Claimed by", f"{claim.worker_id} until {_short_time(claim.expires_at)}")
        if ticket.completed_at is not None:
            self.kv("Completed", _short_time(ticket.completed_at))
        if ticket.description:
            self.section("Description:")
            self.text(ticket.description)
        if self.verbose:
            self.kv("ID", ticket.id)

    def tickets(self, tickets: Sequence[Ticket]) -> None:
        self.table(
            ("KEY", "STATUS", "PRIORITY", "RETRIES", "TITLE"),
            [
                (
                    item.key,
                    _status_text(item),
                    item.priority.value,
                    f"{item.retry_count}/{item.max_retries}",
                    _truncate(item.title, 60),
                )
                for item in tickets
            ],
            empty="No tickets.",
        )

    def claim(self, claim: Claim, ticket: Ticket) -> None:
        self.kv("Claimed", f"{ticket.key}: {ticket.title}")
        self.kv("Claim", claim.id)
        self.kv("Worker", claim.worker_id)
        self.kv("Expires", _short_time(claim.expires_at))
        if ticket.branch_name:
            self.kv("Branch", ticket.branch_name)

    def activity(self, entries: Sequence[ActivityEntry], *, keys: dict[str, str]) -> None:
        self.table(
            ("WHEN", "TICKET", "ACTION", "ACTOR", "SUMMARY"),
            [
                (
                    _short_time(entry.created_at),
                    keys.get(entry.ticket_id, entry.ticket_id),
                    entry.action.value,
                    entry.actor_id or entry.actor_type.value,
                    _truncate(entry.summary, 70),
                )
                for entry in entries
            ],
            empty="No activity.",
        )

    def inbox(self, messages: Sequence[InboxMessage], *, keys: dict[str, str]) -> None:
        self.table(
            ("ID", "TICKET", "TYPE", "STATE", "CONTENT"),
            [
                (
                    item.id,
                    keys.get(item.ticket_id, item.ticket_id),
                    item.message_type.value,
                    "pending" if item.is_pending else "answered",
                    _truncate(item.content, 60),
                )
                for item in messages
            ],
            empty="Inbox is empty.",
        )

    def tasks(self, tasks: Sequence[TicketTask]) -> None:
        self.table(
            ("#", "DONE", "DESCRIPTION"),
            [
                (str(item.position), "x" if item.complete else " ", _truncate(item.description, 70))
                for item in tasks
            ],
            empty="No tasks.",
        )

    def milestone(self, progress: MilestoneProgress) -> None:
        milestone = progress.milestone
        self.kv("Milestone", f"{milestone.key}: {milestone.name}")
        self.kv("Status", milestone.status.value)
        self.kv(
            "Progress",
            f"{progress.completed_count}/{progress.ticket_count} ({progress.completion_pct}%)",
        )
        if milestone.target_date is not None:
            self.kv("Target", milestone.target_date.date().isoformat())
        if milestone.goal:
            self.kv("Goal", milestone.goal)
        if self.verbose:
            self.kv("ID", milestone.id)

    def milestones(self, milestones: Sequence[MilestoneProgress]) -> None:
        self.table(
            ("KEY", "STATUS", "TARGET", "DONE", "NAME"),
            [
                (
                    item.milestone.key,
                    item.milestone.status.value,
                    item.milestone.target_date.date().isoformat()
                    if item.milestone.target_date is not None
                    else "-",
                    f"{item.completed_count}/{item.ticket_count}",
                    _truncate(item.milestone.name, 50),
                )
                for item in milestones
            ],
            empty="No milestones.",
        )

    def status(self, summary: StatusSummary, *, keys: dict[str, str]) -> None:
        self.kv("Scope", summary.project_key or "all projects")
        self.kv("Workable", summary.workable)
        self.kv("In progress", summary.in_progress)
        self.kv("In review", summary.review)
        self.kv("Blocked", summary.blocked)
        self.kv("Needs human", summary.needs_human)
        self.kv("Pending inbox", summary.pending_inbox)
        if summary.expiring_soon:
            self.table(
                ("TICKET", "WORKER", "EXPIRES", "MINUTES"),
                [
                    (
                        item.ticket_key,
                        item.worker_id,
                        _short_time(item.expires_at),
                        str(item.minutes_remaining),
                    )
                    for item in summary.expiring_soon
                ],
                title="Claims expiring soon:",
            )
        if summary.recent_activity:
            self.section("Recent activity:")
            self.activity(summary.recent_activity, keys=keys)


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(no_color=no_color, verbose=verbose)


def _status_text(ticket: Ticket) -> str:
    if ticket.resolution is not None:
        return f"{ticket.status.value} ({ticket.resolution.value})"
    return ticket.status.value


def _short_time(value: object) -> str:
    text = value.isoformat(timespec="seconds") if hasattr(value, "isoformat") else str(value)
    return text.replace("+00:00", "Z")


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


__all__ = ["CLIRenderer", "create_renderer"]
