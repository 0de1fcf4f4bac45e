"""Command-line interface router for wark."""

from __future__ import annotations

import argparse
import json
import sys
import threading
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any, Final

from wark.config import (
    ConfigLoadError,
    ConfigValidationError,
    load_config,
    redact_config,
)
from wark.constants import EXPIRING_SOON_MINUTES
from wark.domain.models import (
    Complexity,
    FlagReason,
    Priority,
    Resolution,
    TicketStatus,
)
from wark.errors import ErrorKind, InvalidArgsError, WarkError
from wark.observability import setup_logging, shutdown_logging
from wark.planning import TaskProgress
from wark.service import TicketService
from wark.ui.render import CLIRenderer, create_renderer

Handler = Callable[[argparse.Namespace, TicketService, CLIRenderer], int]

_CONFIG_EXIT_CODE: Final[int] = ErrorKind.INVALID_ARGS.exit_code


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="wark",
        description=(
            "wark — ticket lifecycle and work distribution for humans and agents.\n\n"
            "Common workflows:\n"
            "  wark project create WEB 'Web app'     Create a project\n"
            "  wark ticket create WEB 'Add login'    Create a ticket\n"
            "  wark ticket next --project WEB --worker agent-1\n"
            "                                        Claim the most urgent workable ticket\n"
            "  wark complete WEB-1 --worker agent-1  Hand finished work to review\n"
            "  wark sweep --once                     Expire stale claims now\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to wark TOML config (default: ./wark.toml if present).",
    )
    common.add_argument("--profile", default=None, help="Optional config profile overlay name.")
    common.add_argument(
        "--json", action="store_true", default=False, help="Emit machine-readable JSON."
    )
    common.add_argument(
        "--verbose", "-v", action="store_true", default=False, help="Show detailed output."
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    def add(
        target: argparse._SubParsersAction[argparse.ArgumentParser],
        name: str,
        handler: Handler | None,
        help_text: str,
    ) -> argparse.ArgumentParser:
        sub = target.add_parser(name, parents=[common], help=help_text, description=help_text)
        if handler is not None:
            sub.set_defaults(handler=handler)
        return sub

    # init ----------------------------------------------------------------
    add(subparsers, "init", _cmd_init, "Create or migrate the state database.")

    # config --------------------------------------------------------------
    add(subparsers, "config", None, "Show the effective (redacted) configuration.").set_defaults(
        config_handler=_cmd_config
    )

    # project -------------------------------------------------------------
    project_parser = subparsers.add_parser("project", help="Manage projects.")
    project_sub = project_parser.add_subparsers(dest="project_command", required=True)
    created = add(project_sub, "create", _cmd_project_create, "Create a project.")
    created.add_argument("key", help="Project key, e.g. WEB.")
    created.add_argument("name", help="Human-readable project name.")
    created.add_argument("--description", default="")
    add(project_sub, "list", _cmd_project_list, "List projects.")
    shown = add(project_sub, "show", _cmd_project_show, "Show a project.")
    shown.add_argument("key")

    # ticket --------------------------------------------------------------
    ticket_parser = subparsers.add_parser("ticket", help="Create and inspect tickets.")
    ticket_sub = ticket_parser.add_subparsers(dest="ticket_command", required=True)

    create = add(ticket_sub, "create", _cmd_ticket_create, "Create a ticket.")
    create.add_argument("project", help="Project key.")
    create.add_argument("title")
    create.add_argument("--description", default="")
    create.add_argument("--priority", choices=[item.value for item in Priority], default="medium")
    create.add_argument(
        "--complexity", choices=[item.value for item in Complexity], default="medium"
    )
    create.add_argument("--max-retries", type=_positive_int, default=None)
    create.add_argument("--parent", default=None, help="Parent ticket key.")
    create.add_argument(
        "--depends-on",
        action="append",
        default=[],
        help="Prerequisite ticket key (repeatable).",
    )

    listing = add(ticket_sub, "list", _cmd_ticket_list, "List tickets.")
    listing.add_argument("--project", default=None)
    listing.add_argument(
        "--status",
        action="append",
        default=[],
        choices=[item.value for item in TicketStatus],
        help="Filter by status (repeatable).",
    )
    listing.add_argument("--priority", choices=[item.value for item in Priority], default=None)
    listing.add_argument("--parent", default=None)
    listing.add_argument("--milestone", default=None, help="Milestone key (needs --project).")
    listing.add_argument("--worker", default=None, help="Tickets actively claimed by this worker.")
    listing.add_argument("--workable", action="store_true", default=False)
    listing.add_argument("--limit", type=_positive_int, default=100)
    listing.add_argument("--offset", type=_non_negative_int, default=0)

    show = add(ticket_sub, "show", _cmd_ticket_show, "Show a ticket.")
    show.add_argument("ticket")

    nxt = add(ticket_sub, "next", _cmd_ticket_next, "Show (or claim) the next workable ticket.")
    nxt.add_argument("--project", default=None)
    nxt.add_argument("--worker", default=None, help="Claim the ticket for this worker.")
    nxt.add_argument("--duration", type=_positive_int, default=None, help="Lease in minutes.")

    edit = add(ticket_sub, "edit", _cmd_ticket_edit, "Edit ticket fields.")
    edit.add_argument("ticket")
    edit.add_argument("--title", default=None)
    edit.add_argument("--description", default=None)
    edit.add_argument("--priority", choices=[item.value for item in Priority], default=None)
    edit.add_argument("--complexity", choices=[item.value for item in Complexity], default=None)
    edit.add_argument("--max-retries", type=_positive_int, default=None)

    # workflow ------------------------------------------------------------
    claim = add(subparsers, "claim", _cmd_claim, "Claim a ready ticket.")
    claim.add_argument("ticket")
    claim.add_argument("--worker", required=True)
    claim.add_argument("--duration", type=_positive_int, default=None, help="Lease in minutes.")

    release = add(subparsers, "release", _cmd_release, "Release a claimed ticket.")
    release.add_argument("ticket")
    release.add_argument("--worker", default=None)
    release.add_argument("--reason", default="")
    release.add_argument("--force", action="store_true", default=False)

    complete = add(subparsers, "complete", _cmd_complete, "Hand finished work to review.")
    complete.add_argument("ticket")
    complete.add_argument("--worker", default=None)
    complete.add_argument("--summary", default="")
    complete.add_argument("--auto-accept", action="store_true", default=False)

    accept = add(subparsers, "accept", _cmd_accept, "Accept a reviewed ticket.")
    accept.add_argument("ticket")

    reject = add(subparsers, "reject", _cmd_reject, "Send a reviewed ticket back.")
    reject.add_argument("ticket")
    reject.add_argument("--reason", required=True)

    flag = add(subparsers, "flag", _cmd_flag, "Ask a human for help.")
    flag.add_argument("ticket")
    flag.add_argument(
        "--reason",
        required=True,
        help=f"One of: {', '.join(item.value for item in FlagReason)}",
    )
    flag.add_argument("--message", required=True)
    flag.add_argument("--worker", default=None)

    respond = add(subparsers, "respond", _cmd_respond, "Answer a flagged ticket.")
    respond.add_argument("ticket")
    respond.add_argument("--response", required=True)
    respond.add_argument("--worker", default=None, help="Resume work under this worker.")
    respond.add_argument("--duration", type=_positive_int, default=None)

    cancel = add(subparsers, "cancel", _cmd_cancel, "Cancel a ticket.")
    cancel.add_argument("ticket")
    cancel.add_argument(
        "--resolution",
        choices=[item.value for item in Resolution if item is not Resolution.COMPLETED],
        default=Resolution.WONT_DO.value,
    )
    cancel.add_argument("--reason", default="")

    reopen = add(subparsers, "reopen", _cmd_reopen, "Reopen a closed ticket.")
    reopen.add_argument("ticket")

    # dependencies --------------------------------------------------------
    dep_parser = subparsers.add_parser("dep", help="Manage ticket dependencies.")
    dep_sub = dep_parser.add_subparsers(dest="dep_command", required=True)
    dep_add = add(dep_sub, "add", _cmd_dep_add, "DEPENDENT waits for PREREQUISITE.")
    dep_add.add_argument("dependent")
    dep_add.add_argument("prerequisite")
    dep_remove = add(dep_sub, "remove", _cmd_dep_remove, "Remove a dependency.")
    dep_remove.add_argument("dependent")
    dep_remove.add_argument("prerequisite")
    dep_list = add(dep_sub, "list", _cmd_dep_list, "Show prerequisites and dependents.")
    dep_list.add_argument("ticket")

    # tasks ---------------------------------------------------------------
    task_parser = subparsers.add_parser("task", help="Manage a ticket's task checklist.")
    task_sub = task_parser.add_subparsers(dest="task_command", required=True)
    task_add = add(task_sub, "add", _cmd_task_add, "Append a task to a ticket.")
    task_add.add_argument("ticket")
    task_add.add_argument("description")
    task_list = add(task_sub, "list", _cmd_task_list, "Show a ticket's tasks.")
    task_list.add_argument("ticket")
    task_done = add(
        task_sub, "complete", _cmd_task_complete, "Mark a task complete (default: next open one)."
    )
    task_done.add_argument("ticket")
    task_done.add_argument("position", nargs="?", type=_positive_int, default=None)
    task_done.add_argument("--worker", default=None)
    task_undo = add(task_sub, "uncomplete", _cmd_task_uncomplete, "Mark a task incomplete.")
    task_undo.add_argument("ticket")
    task_undo.add_argument("position", type=_positive_int)
    task_remove = add(task_sub, "remove", _cmd_task_remove, "Delete a task and renumber the rest.")
    task_remove.add_argument("ticket")
    task_remove.add_argument("position", type=_positive_int)

    # milestones ----------------------------------------------------------
    milestone_parser = subparsers.add_parser("milestone", help="Group tickets under milestones.")
    milestone_sub = milestone_parser.add_subparsers(dest="milestone_command", required=True)
    ms_create = add(milestone_sub, "create", _cmd_milestone_create, "Create a milestone.")
    ms_create.add_argument("project")
    ms_create.add_argument("key", help="Milestone key, e.g. BETA.")
    ms_create.add_argument("name")
    ms_create.add_argument("--goal", default="")
    ms_create.add_argument("--target-date", type=_date, default=None, help="YYYY-MM-DD.")
    ms_list = add(milestone_sub, "list", _cmd_milestone_list, "List milestones with progress.")
    ms_list.add_argument("project", nargs="?", default=None)
    ms_show = add(milestone_sub, "show", _cmd_milestone_show, "Show a milestone.")
    ms_show.add_argument("project")
    ms_show.add_argument("key")
    ms_update = add(milestone_sub, "update", _cmd_milestone_update, "Edit a milestone.")
    ms_update.add_argument("project")
    ms_update.add_argument("key")
    ms_update.add_argument("--name", default=None)
    ms_update.add_argument("--goal", default=None)
    dates = ms_update.add_mutually_exclusive_group()
    dates.add_argument("--target-date", type=_date, default=None, help="YYYY-MM-DD.")
    dates.add_argument("--clear-target-date", action="store_true", default=False)
    for name, handler, help_text in (
        ("achieve", _cmd_milestone_achieve, "Mark a milestone achieved."),
        ("abandon", _cmd_milestone_abandon, "Mark a milestone abandoned."),
        ("reopen", _cmd_milestone_reopen, "Reopen a closed milestone."),
        ("delete", _cmd_milestone_delete, "Delete a milestone and unlink its tickets."),
        ("tickets", _cmd_milestone_tickets, "List a milestone's tickets."),
    ):
        lifecycle = add(milestone_sub, name, handler, help_text)
        lifecycle.add_argument("project")
        lifecycle.add_argument("key")
    ms_assign = add(milestone_sub, "assign", _cmd_milestone_assign, "Add a ticket to a milestone.")
    ms_assign.add_argument("ticket")
    ms_assign.add_argument("key")
    ms_unassign = add(
        milestone_sub, "unassign", _cmd_milestone_unassign, "Remove a ticket from its milestone."
    )
    ms_unassign.add_argument("ticket")

    # maintenance ---------------------------------------------------------
    expire = add(subparsers, "expire", _cmd_expire, "Expire claims whose lease has run out.")
    expire.add_argument("--dry-run", action="store_true", default=False)

    resolve = add(subparsers, "resolve", _cmd_resolve, "Re-check every blocked ticket.")
    resolve.add_argument("--project", default=None)

    sweep = add(subparsers, "sweep", _cmd_sweep, "Run the claim sweeper.")
    sweep.add_argument("--once", action="store_true", default=False)
    sweep.add_argument("--interval", type=_positive_int, default=None, help="Seconds.")
    sweep.add_argument("--dry-run", action="store_true", default=None)

    backup = add(subparsers, "backup", _cmd_backup, "Copy the state database.")
    backup.add_argument("destination")

    add(subparsers, "check", _cmd_check, "Run a database integrity check.")

    # history -------------------------------------------------------------
    status = add(subparsers, "status", _cmd_status, "Summarize queue health.")
    status.add_argument("project", nargs="?", default=None)
    status.add_argument(
        "--expiring-within", type=_positive_int, default=None, help="Minutes (default 30)."
    )

    history = add(subparsers, "history", _cmd_history, "Show a ticket's activity log.")
    history.add_argument("ticket")
    history.add_argument("--limit", type=_positive_int, default=100)

    activity = add(subparsers, "activity", _cmd_activity, "Show recent activity.")
    activity.add_argument("--project", default=None)
    activity.add_argument("--limit", type=_positive_int, default=50)

    inbox = add(subparsers, "inbox", _cmd_inbox, "Show human inbox messages.")
    inbox.add_argument("--project", default=None)
    inbox.add_argument("--ticket", default=None)
    inbox.add_argument("--pending", action="store_true", default=False)

    # snapshots -----------------------------------------------------------
    export = add(subparsers, "export", _cmd_export, "Export a project as YAML.")
    export.add_argument("project")
    export.add_argument("--output", default=None, help="File to write (default: stdout).")

    imported = add(subparsers, "import", _cmd_import, "Import a project from YAML.")
    imported.add_argument("file")

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None, *, service: TicketService | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    renderer = _get_renderer(namespace)

    config_handler = getattr(namespace, "config_handler", None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler) and not callable(config_handler):
        parser.print_help(sys.stderr)
        return _CONFIG_EXIT_CODE

    try:
        config = _load_effective_config(namespace) if service is None else {}
    except (ConfigLoadError, ConfigValidationError) as exc:
        return _emit_error(namespace, renderer, ErrorKind.INVALID_ARGS, str(exc), None)

    if callable(config_handler):
        return int(config_handler(namespace, config, renderer))

    owns_logging = service is None
    if owns_logging:
        setup_logging(
            _mapping(config.get("observability")),
            log_dir=str(_mapping(config.get("paths")).get("log_dir", ".wark/logs")),
        )
    try:
        active = service if service is not None else TicketService.from_config(config)
        return int(handler(namespace, active, renderer))
    except WarkError as exc:
        return _emit_error(namespace, renderer, exc.kind, exc.message, exc.suggestion, exc)
    finally:
        if owns_logging:
            shutdown_logging()


def main(argv: Sequence[str] | None = None) -> int:
    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_init(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    report = service.integrity_check()
    if _flag(args, "json"):
        _emit_json({"command": "init", **report.to_dict()})
        return 0
    renderer.kv("Schema version", report.schema_version)
    renderer.next_steps(["wark project create KEY 'Project name'"])
    return 0


def _cmd_config(args: argparse.Namespace, config: Mapping[str, Any], renderer: CLIRenderer) -> int:
    profile = getattr(args, "profile", None)
    redacted = redact_config(config)
    if _flag(args, "json"):
        _emit_json({"command": "config", "active_profile": profile, "config": redacted})
        return 0
    renderer.kv("Active profile", profile or "(default)")
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


def _cmd_project_create(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    project = service.create_project(args.key, args.name, description=args.description)
    if _flag(args, "json"):
        _emit_json({"project": project.to_dict()})
        return 0
    renderer.project(project)
    renderer.next_steps([f"wark ticket create {project.key} 'First ticket'"])
    return 0


def _cmd_project_list(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    projects = service.list_projects()
    if _flag(args, "json"):
        _emit_json({"projects": [item.to_dict() for item in projects]})
        return 0
    renderer.projects(projects)
    return 0


def _cmd_project_show(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    project = service.get_project(args.key)
    if _flag(args, "json"):
        _emit_json({"project": project.to_dict()})
        return 0
    renderer.project(project)
    return 0


def _cmd_ticket_create(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    ticket = service.create_ticket(
        args.project,
        args.title,
        description=args.description,
        priority=args.priority,
        complexity=args.complexity,
        max_retries=args.max_retries,
        parent=args.parent,
        depends_on=tuple(args.depends_on),
    )
    return _emit_ticket(args, service, renderer, ticket.id)


def _cmd_ticket_list(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    tickets = service.list_tickets(
        project_key=args.project,
        statuses=tuple(args.status),
        priority=args.priority,
        parent=args.parent,
        milestone=args.milestone,
        worker_id=args.worker,
        workable=args.workable,
        limit=args.limit,
        offset=args.offset,
    )
    if _flag(args, "json"):
        _emit_json({"tickets": [item.to_dict() for item in tickets]})
        return 0
    renderer.tickets(tickets)
    return 0


def _cmd_ticket_show(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    return _emit_ticket(args, service, renderer, args.ticket)


def _cmd_ticket_next(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    picked = service.next_ticket(
        project_key=args.project, worker_id=args.worker, duration_minutes=args.duration
    )
    if picked is None:
        if _flag(args, "json"):
            _emit_json({"ticket": None, "claim": None})
        else:
            renderer.text("No workable tickets.")
        return 0
    ticket, claim = picked
    if _flag(args, "json"):
        _emit_json(
            {"ticket": ticket.to_dict(), "claim": claim.to_dict() if claim is not None else None}
        )
        return 0
    if claim is not None:
        renderer.claim(claim, ticket)
    else:
        renderer.ticket(ticket)
    return 0


def _cmd_ticket_edit(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    ticket = service.edit_ticket(
        args.ticket,
        title=args.title,
        description=args.description,
        priority=args.priority,
        complexity=args.complexity,
        max_retries=args.max_retries,
    )
    return _emit_ticket(args, service, renderer, ticket.id)


def _cmd_claim(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    claim = service.claim(args.ticket, args.worker, duration_minutes=args.duration)
    ticket = service.get_ticket(claim.ticket_id)
    if _flag(args, "json"):
        _emit_json({"ticket": ticket.to_dict(), "claim": claim.to_dict()})
        return 0
    renderer.claim(claim, ticket)
    renderer.next_steps([f"wark complete {ticket.key} --worker {claim.worker_id}"])
    return 0


def _cmd_release(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    ticket = service.release(args.ticket, args.worker, reason=args.reason, force=args.force)
    return _emit_ticket(args, service, renderer, ticket.id)


def _cmd_complete(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    ticket = service.complete(
        args.ticket, args.worker, summary=args.summary, auto_accept=args.auto_accept
    )
    return _emit_ticket(args, service, renderer, ticket.id)


def _cmd_accept(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    closed = service.accept(args.ticket)
    return _emit_closed(args, renderer, closed.to_dict(), closed.ticket.key)


def _cmd_reject(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    ticket = service.reject(args.ticket, args.reason)
    return _emit_ticket(args, service, renderer, ticket.id)


def _cmd_flag(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    ticket, message = service.flag(args.ticket, args.reason, args.message, actor_id=args.worker)
    if _flag(args, "json"):
        _emit_json({"ticket": ticket.to_dict(), "message": message.to_dict()})
        return 0
    renderer.ticket(ticket)
    renderer.kv("Inbox message", message.id)
    return 0


def _cmd_respond(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    ticket = service.respond(
        args.ticket, args.response, worker_id=args.worker, duration_minutes=args.duration
    )
    return _emit_ticket(args, service, renderer, ticket.id)


def _cmd_cancel(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    closed = service.cancel(args.ticket, resolution=args.resolution, reason=args.reason)
    return _emit_closed(args, renderer, closed.to_dict(), closed.ticket.key)


def _cmd_reopen(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    ticket = service.reopen(args.ticket)
    return _emit_ticket(args, service, renderer, ticket.id)


def _cmd_dep_add(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    ticket = service.add_dependency(args.dependent, args.prerequisite)
    return _emit_ticket(args, service, renderer, ticket.id)


def _cmd_dep_remove(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    ticket = service.remove_dependency(args.dependent, args.prerequisite)
    return _emit_ticket(args, service, renderer, ticket.id)


def _cmd_dep_list(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    prerequisites = service.prerequisites(args.ticket)
    dependents = service.dependents(args.ticket)
    if _flag(args, "json"):
        _emit_json(
            {
                "prerequisites": [item.to_dict() for item in prerequisites],
                "dependents": [item.to_dict() for item in dependents],
            }
        )
        return 0
    renderer.section("Depends on:")
    renderer.tickets(prerequisites)
    renderer.section("Required by:")
    renderer.tickets(dependents)
    return 0


def _cmd_expire(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    result = service.expire_claims(dry_run=args.dry_run)
    if _flag(args, "json"):
        _emit_json(result.to_dict())
        return 0
    prefix = "Would expire" if result.dry_run else "Expired"
    renderer.text(
        f"{prefix} {result.expired} claim(s); {result.escalated} escalated, "
        f"{result.errors} error(s)."
    )
    renderer.table(
        ("TICKET", "WORKER", "ACTION", "RETRIES", "STATUS"),
        [
            (
                item.ticket_key or item.ticket_id,
                item.worker_id,
                item.action,
                str(item.retry_count) if item.retry_count is not None else "-",
                item.new_status or (item.error or "-"),
            )
            for item in result.items
        ],
    )
    return 0


def _cmd_resolve(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    result = service.resolve_all(project_key=args.project)
    if _flag(args, "json"):
        _emit_json(result.to_dict())
        return 0
    renderer.text(
        f"Scanned {result.scanned} blocked ticket(s); unblocked {result.unblocked}, "
        f"{result.errors} error(s)."
    )
    return 0


def _cmd_sweep(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    sweeper = service.sweeper(interval_seconds=args.interval, dry_run=args.dry_run)
    if args.once:
        report = sweeper.run_once()
        if _flag(args, "json"):
            _emit_json(report.to_dict())
        else:
            renderer.kv("Sweep", report.sweep_id)
            renderer.kv("Expired", report.expiration.expired)
            renderer.kv("Escalated", report.expiration.escalated)
            if report.resolution is not None:
                renderer.kv("Unblocked", report.resolution.unblocked)
        return 0

    renderer.text("Sweeper running; press Ctrl-C to stop.")
    sweeper.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        pass
    finally:
        sweeper.stop()
    renderer.kv("Sweeps", sweeper.runs)
    return 0


def _cmd_backup(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    path = service.backup(Path(args.destination))
    if _flag(args, "json"):
        _emit_json({"backup": path.as_posix()})
        return 0
    renderer.kv("Backup written", path.as_posix())
    return 0


def _cmd_check(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    report = service.integrity_check()
    if _flag(args, "json"):
        _emit_json(report.to_dict())
    elif report.ok:
        renderer.text("Integrity check passed.")
    else:
        renderer.text("Integrity check failed:")
        renderer.items(list(report.messages))
    return 0 if report.ok else ErrorKind.INTERNAL.exit_code


def _cmd_history(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    ticket = service.get_ticket(args.ticket)
    entries = service.history(ticket.id, limit=args.limit)
    if _flag(args, "json"):
        _emit_json({"ticket": ticket.key, "activity": [item.to_dict() for item in entries]})
        return 0
    renderer.activity(entries, keys={ticket.id: ticket.key})
    return 0


def _cmd_activity(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    entries = service.activity(project_key=args.project, limit=args.limit)
    if _flag(args, "json"):
        _emit_json({"activity": [item.to_dict() for item in entries]})
        return 0
    renderer.activity(entries, keys=_ticket_keys(service, {item.ticket_id for item in entries}))
    return 0


def _cmd_inbox(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    messages = service.inbox(
        project_key=args.project, ticket=args.ticket, pending_only=args.pending
    )
    if _flag(args, "json"):
        _emit_json({"messages": [item.to_dict() for item in messages]})
        return 0
    renderer.inbox(messages, keys=_ticket_keys(service, {item.ticket_id for item in messages}))
    return 0


def _cmd_export(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    rendered = service.export_project(args.project)
    if args.output is None:
        sys.stdout.write(rendered)
        return 0
    destination = Path(args.output).expanduser()
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(rendered, encoding="utf-8")
    if _flag(args, "json"):
        _emit_json({"export": destination.as_posix()})
    else:
        renderer.kv("Exported", destination.as_posix())
    return 0


def _cmd_import(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    source = Path(args.file).expanduser()
    try:
        text = source.read_text(encoding="utf-8")
    except OSError as exc:
        raise InvalidArgsError(
            f"cannot read snapshot {source}: {exc.strerror or exc}",
            suggestion="Check the file path.",
        ) from exc
    result = service.import_project(text)
    if _flag(args, "json"):
        _emit_json(result.to_dict())
        return 0
    renderer.kv(
        "Imported",
        f"{result.project_key}: {result.tickets} ticket(s), "
        f"{result.dependencies} dependency edge(s)",
    )
    if result.requeued:
        renderer.warning(f"requeued without claims: {', '.join(result.requeued)}")
    return 0


def _cmd_task_add(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    task = service.add_task(args.ticket, args.description)
    if _flag(args, "json"):
        _emit_json({"task": task.to_dict()})
        return 0
    renderer.kv("Added task", f"{task.position}: {task.description}")
    return 0


def _cmd_task_list(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    tasks = service.list_tasks(args.ticket)
    progress = TaskProgress.of(tasks)
    if _flag(args, "json"):
        _emit_json({"tasks": [item.to_dict() for item in tasks], "progress": progress.to_dict()})
        return 0
    renderer.tasks(tasks)
    if tasks:
        renderer.kv("Progress", f"{progress.completed}/{progress.total}")
    return 0


def _cmd_task_complete(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    completion = service.complete_task(args.ticket, args.position, actor_id=args.worker)
    if _flag(args, "json"):
        _emit_json(completion.to_dict())
        return 0
    task = completion.task
    verb = "Already complete" if completion.already_complete else "Completed"
    renderer.kv(verb, f"{task.position}: {task.description}")
    renderer.kv("Progress", f"{completion.progress.completed}/{completion.progress.total}")
    return 0


def _cmd_task_uncomplete(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    task = service.uncomplete_task(args.ticket, args.position)
    if _flag(args, "json"):
        _emit_json({"task": task.to_dict()})
        return 0
    renderer.kv("Reopened task", f"{task.position}: {task.description}")
    return 0


def _cmd_task_remove(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    task = service.remove_task(args.ticket, args.position)
    if _flag(args, "json"):
        _emit_json({"removed": task.to_dict()})
        return 0
    renderer.kv("Removed task", f"{task.position}: {task.description}")
    return 0


def _cmd_milestone_create(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    milestone = service.create_milestone(
        args.project, args.key, args.name, goal=args.goal, target_date=args.target_date
    )
    return _emit_milestone(args, service, renderer, args.project, milestone.key)


def _cmd_milestone_list(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    milestones = service.list_milestones(args.project)
    if _flag(args, "json"):
        _emit_json({"milestones": [item.to_dict() for item in milestones]})
        return 0
    renderer.milestones(milestones)
    return 0


def _cmd_milestone_show(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    return _emit_milestone(args, service, renderer, args.project, args.key)


def _cmd_milestone_update(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    changes: dict[str, Any] = {"name": args.name, "goal": args.goal}
    if args.clear_target_date:
        changes["target_date"] = None
    elif args.target_date is not None:
        changes["target_date"] = args.target_date
    milestone = service.update_milestone(args.project, args.key, **changes)
    return _emit_milestone(args, service, renderer, args.project, milestone.key)


def _cmd_milestone_achieve(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    service.achieve_milestone(args.project, args.key)
    return _emit_milestone(args, service, renderer, args.project, args.key)


def _cmd_milestone_abandon(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    service.abandon_milestone(args.project, args.key)
    return _emit_milestone(args, service, renderer, args.project, args.key)


def _cmd_milestone_reopen(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    service.reopen_milestone(args.project, args.key)
    return _emit_milestone(args, service, renderer, args.project, args.key)


def _cmd_milestone_delete(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    unlinked = service.delete_milestone(args.project, args.key)
    key = args.key.strip().upper()
    if _flag(args, "json"):
        _emit_json({"deleted": key, "unlinked": unlinked})
        return 0
    renderer.kv("Deleted", f"{key} ({unlinked} ticket(s) unlinked)")
    return 0


def _cmd_milestone_assign(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    ticket = service.assign_milestone(args.ticket, args.key)
    return _emit_ticket(args, service, renderer, ticket.id)


def _cmd_milestone_unassign(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    ticket = service.assign_milestone(args.ticket, None)
    return _emit_ticket(args, service, renderer, ticket.id)


def _cmd_milestone_tickets(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer
) -> int:
    tickets = service.milestone_tickets(args.project, args.key)
    if _flag(args, "json"):
        _emit_json({"tickets": [item.to_dict() for item in tickets]})
        return 0
    renderer.tickets(tickets)
    return 0


def _cmd_status(args: argparse.Namespace, service: TicketService, renderer: CLIRenderer) -> int:
    summary = service.status_summary(
        args.project,
        expiring_within_minutes=args.expiring_within or EXPIRING_SOON_MINUTES,
    )
    if _flag(args, "json"):
        _emit_json(summary.to_dict())
        return 0
    keys = _ticket_keys(service, {entry.ticket_id for entry in summary.recent_activity})
    renderer.status(summary, keys=keys)
    return 0


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _emit_error(
    args: argparse.Namespace,
    renderer: CLIRenderer,
    kind: ErrorKind,
    message: str,
    suggestion: str | None,
    exc: WarkError | None = None,
) -> int:
    if _flag(args, "json"):
        payload = (
            exc.to_dict()
            if exc is not None
            else {"kind": kind.value, "message": message, "exit_code": kind.exit_code}
        )
        _emit_json({"error": payload})
    else:
        renderer.error(message, suggestion=suggestion)
    return kind.exit_code


def _emit_ticket(
    args: argparse.Namespace, service: TicketService, renderer: CLIRenderer, ref: str
) -> int:
    ticket = service.get_ticket(ref)
    claim = service.store.get_active_claim(ticket.id)
    if _flag(args, "json"):
        _emit_json(
            {"ticket": ticket.to_dict(), "claim": claim.to_dict() if claim is not None else None}
        )
        return 0
    renderer.ticket(ticket, claim=claim)
    return 0


def _emit_closed(
    args: argparse.Namespace, renderer: CLIRenderer, payload: Mapping[str, Any], key: str
) -> int:
    if _flag(args, "json"):
        _emit_json(payload)
        return 0
    propagation = _mapping(payload.get("propagation"))
    ticket = _mapping(payload.get("ticket"))
    renderer.kv("Closed", f"{key} ({ticket.get('status')}, {ticket.get('resolution')})")
    renderer.kv("Unblocked", propagation.get("unblocked", 0))
    renderer.kv("Escalated", propagation.get("escalated", 0))
    renderer.kv("Parents updated", propagation.get("parents_updated", 0))
    if propagation.get("errors"):
        renderer.warning(f"{propagation.get('errors')} propagation error(s); see logs")
    return 0


def _emit_milestone(
    args: argparse.Namespace,
    service: TicketService,
    renderer: CLIRenderer,
    project_key: str,
    key: str,
) -> int:
    progress = service.get_milestone(project_key, key)
    if _flag(args, "json"):
        _emit_json({"milestone": progress.to_dict()})
        return 0
    renderer.milestone(progress)
    return 0


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _ticket_keys(service: TicketService, ticket_ids: set[str]) -> dict[str, str]:
    keys: dict[str, str] = {}
    for ticket_id in sorted(ticket_ids):
        ticket = service.store.get_ticket(ticket_id)
        if ticket is not None:
            keys[ticket_id] = ticket.key
    return keys


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    return load_config(getattr(args, "config_path", None), profile=getattr(args, "profile", None))


def _mapping(value: object) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


def _positive_int(raw: str) -> int:
    value = _non_negative_int(raw)
    if value == 0:
        raise argparse.ArgumentTypeError("must be > 0")
    return value


def _date(raw: str) -> datetime:
    try:
        day = date.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {raw!r}") from exc
    return datetime(day.year, day.month, day.day, tzinfo=UTC)


def _non_negative_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {raw!r}") from exc
    if value < 0:
        raise argparse.ArgumentTypeError("must be >= 0")
    return value


__all__ = ["build_parser", "main", "run_cli"]
