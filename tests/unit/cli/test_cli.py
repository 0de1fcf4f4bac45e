"""CLI routing, JSON output and exit-code contracts."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from wark.main import ExitCode, cli_entrypoint
from wark.observability.logging import configure_structlog
from wark.ui.cli import run_cli

from .. import FakeClock, make_service

if TYPE_CHECKING:
    from pathlib import Path

    from wark.service import TicketService


@pytest.fixture(autouse=True)
def _route_structlog() -> None:
    configure_structlog()


@pytest.fixture
def service(tmp_path: Path) -> TicketService:
    svc = make_service("sqlite", tmp_path, clock=FakeClock())
    svc.create_project("WEB", "Frontend")
    return svc


def _json_out(capsys: pytest.CaptureFixture[str]) -> dict[str, object]:
    out = capsys.readouterr().out.strip().splitlines()
    assert out, "expected JSON on stdout"
    payload = json.loads(out[-1])
    assert isinstance(payload, dict)
    return payload


def test_ticket_create_and_show_emit_json(
    service: TicketService, capsys: pytest.CaptureFixture[str]
) -> None:
    code = run_cli(
        ["ticket", "create", "WEB", "Add login", "--priority", "high", "--json"],
        service=service,
    )
    created = _json_out(capsys)

    assert code == 0
    ticket = created["ticket"]
    assert isinstance(ticket, dict)
    assert ticket["key"] == "WEB-1"
    assert ticket["status"] == "ready"
    assert created["claim"] is None

    assert run_cli(["ticket", "show", "web-1", "--json"], service=service) == 0
    shown = _json_out(capsys)
    assert shown["ticket"] == ticket


def test_claim_complete_accept_flow(
    service: TicketService, capsys: pytest.CaptureFixture[str]
) -> None:
    service.create_ticket("WEB", "Add login")

    assert run_cli(["claim", "WEB-1", "--worker", "agent-1", "--json"], service=service) == 0
    claimed = _json_out(capsys)
    claim = claimed["claim"]
    assert isinstance(claim, dict)
    assert claim["worker_id"] == "agent-1"

    assert run_cli(["complete", "WEB-1", "--worker", "agent-1", "--json"], service=service) == 0
    assert _json_out(capsys)["ticket"]["status"] == "review"  # type: ignore[index]

    assert run_cli(["accept", "WEB-1", "--json"], service=service) == 0
    accepted = _json_out(capsys)
    assert accepted["ticket"]["status"] == "done"  # type: ignore[index]
    assert accepted["propagation"]["unblocked"] == 0  # type: ignore[index]


@pytest.mark.parametrize(
    ("argv", "exit_code", "kind"),
    [
        (["ticket", "show", "WEB-9"], ExitCode.NOT_FOUND, "not_found"),
        (["accept", "WEB-1"], ExitCode.STATE_ERROR, "state_error"),
        (["claim", "WEB-1", "--worker", "agent-2"], ExitCode.CONCURRENT_CONFLICT, None),
        (["dep", "add", "WEB-1", "WEB-1"], ExitCode.INVALID_ARGS, "invalid_args"),
        (["backup", "copy.sqlite3"], ExitCode.SUCCESS, None),
    ],
)
def test_errors_map_to_exit_codes(
    service: TicketService,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
    argv: list[str],
    exit_code: ExitCode,
    kind: str | None,
) -> None:
    service.create_ticket("WEB", "Add login")
    service.claim("WEB-1", "agent-1")
    capsys.readouterr()
    if argv[0] == "backup":
        argv = ["backup", str(tmp_path / argv[1])]

    code = run_cli([*argv, "--json"], service=service)
    payload = _json_out(capsys)

    assert code == int(exit_code)
    if exit_code is ExitCode.SUCCESS:
        assert "error" not in payload
        return
    error = payload["error"]
    assert isinstance(error, dict)
    assert error["exit_code"] == int(exit_code)
    if kind is not None:
        assert error["kind"] == kind


def test_text_errors_go_to_stderr_with_hint(
    service: TicketService, capsys: pytest.CaptureFixture[str]
) -> None:
    code = run_cli(["project", "show", "NOPE", "--no-color"], service=service)
    captured = capsys.readouterr()

    assert code == ExitCode.NOT_FOUND
    assert captured.out == ""
    assert "error: project NOPE not found" in captured.err
    assert "hint: List projects" in captured.err


def test_flag_and_inbox_commands(
    service: TicketService, capsys: pytest.CaptureFixture[str]
) -> None:
    service.create_ticket("WEB", "Pick vendor")

    code = run_cli(
        ["flag", "WEB-1", "--reason", "decision-needed", "--message", "Which PSP?", "--json"],
        service=service,
    )
    flagged = _json_out(capsys)
    assert code == 0
    assert flagged["ticket"]["status"] == "needs_human"  # type: ignore[index]
    assert flagged["message"]["message_type"] == "decision"  # type: ignore[index]

    assert run_cli(["inbox", "--pending", "--json"], service=service) == 0
    messages = _json_out(capsys)["messages"]
    assert isinstance(messages, list)
    assert [item["content"] for item in messages] == ["Which PSP?"]

    assert run_cli(["respond", "WEB-1", "--response", "Adyen", "--json"], service=service) == 0
    assert _json_out(capsys)["ticket"]["status"] == "ready"  # type: ignore[index]


def test_expire_reports_items(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    clock = FakeClock()
    service = make_service("memory", tmp_path, clock=clock)
    service.create_project("WEB", "Frontend")
    service.create_ticket("WEB", "Slow")
    service.claim("WEB-1", "agent-1", duration_minutes=5)
    clock.advance(minutes=10)

    assert run_cli(["expire", "--dry-run", "--json"], service=service) == 0
    preview = _json_out(capsys)
    assert preview["dry_run"] is True
    assert preview["expired"] == 1
    assert service.get_ticket("WEB-1").status.value == "in_progress"

    assert run_cli(["expire", "--json"], service=service) == 0
    [item] = _json_out(capsys)["items"]  # type: ignore[misc]
    assert item["ticket_key"] == "WEB-1"
    assert item["action"] == "requeued"
    assert service.get_ticket("WEB-1").status.value == "ready"


def test_export_then_import_through_files(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    source = make_service("sqlite", tmp_path / "source")
    source.create_project("WEB", "Frontend")
    source.create_ticket("WEB", "One")
    source.create_ticket("WEB", "Two", depends_on=["WEB-1"])
    snapshot = tmp_path / "exports" / "web.yaml"

    assert run_cli(["export", "WEB", "--output", str(snapshot), "--json"], service=source) == 0
    assert _json_out(capsys) == {"export": snapshot.as_posix()}

    target = make_service("memory", tmp_path / "target")
    assert run_cli(["import", str(snapshot), "--json"], service=target) == 0
    imported = _json_out(capsys)
    assert imported["tickets"] == 2
    assert imported["dependencies"] == 1

    missing = tmp_path / "missing.yaml"
    assert run_cli(["import", str(missing)], service=target) == ExitCode.INVALID_ARGS


def test_argparse_rejects_unknown_choices(service: TicketService) -> None:
    with pytest.raises(SystemExit) as excinfo:
        run_cli(["ticket", "create", "WEB", "x", "--priority", "urgent"], service=service)
    assert excinfo.value.code == 2


def test_config_command_shows_effective_profile(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("WARK_PROFILE", raising=False)
    config_path = tmp_path / "wark.toml"
    config_path.write_text("[claims]\nmax_retries = 5\n", encoding="utf-8")

    code = run_cli(["config", "--config", str(config_path), "--profile", "ci", "--json"])
    payload = _json_out(capsys)

    assert code == 0
    assert payload["active_profile"] == "ci"
    config = payload["config"]
    assert isinstance(config, dict)
    assert config["claims"]["max_retries"] == 5
    assert config["observability"]["log_to_file"] is False


def test_missing_config_file_is_an_invalid_args_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = cli_entrypoint(["project", "list", "--config", str(tmp_path / "absent.toml")])

    assert code == ExitCode.INVALID_ARGS
    assert "error:" in capsys.readouterr().err


def test_entrypoint_normalizes_help_exit(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["--help"]) == ExitCode.SUCCESS
    assert "wark" in capsys.readouterr().out


def test_task_and_milestone_commands(
    service: TicketService, capsys: pytest.CaptureFixture[str]
) -> None:
    service.create_ticket("WEB", "Checkout")

    assert run_cli(["task", "add", "WEB-1", "Render cart"], service=service) == 0
    assert run_cli(["task", "add", "WEB-1", "Take payment"], service=service) == 0
    assert run_cli(["task", "complete", "WEB-1", "--json"], service=service) == 0
    completed = _json_out(capsys)
    assert completed["task"]["position"] == 1  # type: ignore[index]
    assert completed["progress"] == {"total": 2, "completed": 1, "remaining": 1}

    code = run_cli(
        [
            "milestone",
            "create",
            "WEB",
            "beta",
            "Public beta",
            "--target-date",
            "2026-11-01",
            "--json",
        ],
        service=service,
    )
    created = _json_out(capsys)["milestone"]
    assert code == 0
    assert created["key"] == "BETA"  # type: ignore[index]
    assert created["target_date"].startswith("2026-11-01T00:00:00")  # type: ignore[index]

    assert run_cli(["milestone", "assign", "WEB-1", "BETA"], service=service) == 0
    assert run_cli(["milestone", "show", "WEB", "BETA", "--json"], service=service) == 0
    assert _json_out(capsys)["milestone"]["ticket_count"] == 1  # type: ignore[index]

    assert run_cli(["ticket", "list", "--milestone", "BETA", "--json"], service=service) == 2
    assert run_cli(
        ["ticket", "list", "--project", "WEB", "--milestone", "BETA", "--json"], service=service
    ) == 0
    listed = _json_out(capsys)["tickets"]
    assert [item["key"] for item in listed] == ["WEB-1"]  # type: ignore[union-attr]


def test_milestone_bad_date_is_a_usage_error() -> None:
    with pytest.raises(SystemExit) as excinfo:
        run_cli(["milestone", "create", "WEB", "BETA", "Beta", "--target-date", "soon"])

    assert excinfo.value.code == 2


def test_status_prints_queue_counts(
    service: TicketService, capsys: pytest.CaptureFixture[str]
) -> None:
    service.create_ticket("WEB", "Ready work")
    service.claim("WEB-1", "agent-1", duration_minutes=10)

    assert run_cli(["status", "WEB"], service=service) == 0
    out = capsys.readouterr().out

    assert "In progress: 1" in out
    assert "Claims expiring soon:" in out
    assert "agent-1" in out
