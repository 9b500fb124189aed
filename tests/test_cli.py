"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Mapping

import pytest

from timeledger import cli, core_logic, invoicing, reports, time_entries
from timeledger.errors import BusinessRuleViolation, TimeEntryOverlap


WRITE_COMMANDS = {
    "add-client",
    "add-project",
    "log-time",
    "edit-time",
    "delete-time",
    "create-invoice",
    "invoice-status",
    "delete-invoice",
}

READ_COMMANDS = {
    "invoices",
    "summary",
    "detailed",
    "dashboard",
}


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return cli.build_parser()


@pytest.fixture
def subparsers_action(cli_parser: argparse.ArgumentParser) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    """Return the set of registered sub-command names."""

    actions = getattr(parser, "_subparsers", None)
    if not actions:
        return set()
    choices: set[str] = set()
    for action in actions._group_actions:  # type: ignore[attr-defined]
        choices.update(getattr(action, "choices", {}) or {})
    return choices


def _run(config_path: Path, *argv: str) -> int:
    return cli.main(["--config", str(config_path), *argv])


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert parser.prog == "timeledger"
    assert "ledger" in (parser.description or "")


def test_configure_subcommands_registers_every_command(cli_parser):
    """configure_subcommands should wire all read and write sub-commands."""

    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert _registered_choices(cli_parser) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_command_specs(subparsers_action):
    """register_write_commands should return a mapping of CommandSpec objects."""

    specs = cli.register_write_commands(subparsers_action)
    assert set(specs) == WRITE_COMMANDS
    for spec in specs.values():
        assert isinstance(spec, cli.CommandSpec)
        assert callable(spec.execute)


def test_log_time_arguments_are_parsed_as_utc(cli_parser):
    """Timestamps without an offset are read as UTC."""

    cli.configure_subcommands(cli_parser)
    args = cli_parser.parse_args(
        ["log-time", "--project-id", "P1", "--start", "2025-03-03T09:00", "--end", "2025-03-03T10:30+00:00"]
    )

    assert args.start == datetime(2025, 3, 3, 9, tzinfo=UTC)
    assert args.end == datetime(2025, 3, 3, 10, 30, tzinfo=UTC)
    assert args.note is None


def test_invoice_status_choices_are_restricted(cli_parser):
    """Only known statuses are accepted by the parser."""

    cli.configure_subcommands(cli_parser)
    with pytest.raises(SystemExit):
        cli_parser.parse_args(["invoice-status", "--invoice-id", "I1", "--status", "VOID"])


@pytest.mark.parametrize("value", ["nine", "2025-13-01"])
def test_parse_timestamp_rejects_garbage(value):
    """Unparseable timestamps raise an argparse type error."""

    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_timestamp(value)


def test_parse_decimal_keeps_exact_value():
    """Amounts are parsed exactly, never through float."""

    assert cli.parse_decimal("19.99") == Decimal("19.99")
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_decimal("twenty")


# ---------------------------------------------------------------------------
# Dispatch helpers
# ---------------------------------------------------------------------------


def test_load_runtime_context_supports_defaults(monkeypatch, tmp_path):
    """load_runtime_context should resolve config.ini from the working directory."""

    config_path = tmp_path / "config.ini"
    sentinel_context = object()

    def fake_loader(path: Path | None) -> object:
        assert path == config_path
        return sentinel_context

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    monkeypatch.chdir(tmp_path)
    assert cli.load_runtime_context() is sentinel_context


def test_dispatch_command_handles_unknown_commands(runtime_context):
    """dispatch_command should raise a clear error for unknown commands."""

    with pytest.raises(KeyError):
        cli.dispatch_command(runtime_context, argparse.Namespace(command="unknown"), {})


def test_build_command_table_detects_duplicate_commands():
    """build_command_table should guard against duplicate command names."""

    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]
    with pytest.raises(ValueError):
        cli.build_command_table(specs)


def test_resolve_user_prefers_flag(runtime_context):
    """--user overrides the configured default user."""

    assert cli.resolve_user(runtime_context, argparse.Namespace(user="user-bob")) == "user-bob"
    assert cli.resolve_user(runtime_context, argparse.Namespace(user=None)) == "user-alice"


# ---------------------------------------------------------------------------
# Command execution helpers
# ---------------------------------------------------------------------------


def test_run_edit_time_passes_only_supplied_fields(runtime_context, monkeypatch):
    """run_edit_time should forward the parsed options to the workflow."""

    called: dict[str, object] = {}

    def fake_update(context, user_id, entry_id, **fields):
        called.update(context=context, user_id=user_id, entry_id=entry_id, fields=fields)

    monkeypatch.setattr(cli.time_entries, "update_time_entry", fake_update)
    args = argparse.Namespace(user=None, entry_id="E1", project_id=None, start=None, end=None, note="fixed")

    assert cli.run_edit_time(runtime_context, args) == 0
    assert called["context"] is runtime_context
    assert called["user_id"] == "user-alice"
    assert called["fields"] == {"project_id": None, "started_at": None, "ended_at": None, "note": "fixed"}


def test_run_summary_report_prints_totals(runtime_context, monkeypatch, capsys):
    """The summary report prints one line per group plus a total."""

    report = reports.SummaryReport(
        group_by=reports.SummaryGrouping.PROJECT,
        start=datetime(2025, 3, 1, tzinfo=UTC),
        end=datetime(2025, 3, 31, tzinfo=UTC),
        groups=[
            reports.ProjectTotals(
                project_id="P1",
                project_name="Website",
                client_id="C1",
                client_name="Acme",
                hourly_rate=Decimal("50"),
                total_hours=Decimal("3.50"),
                total_amount=Decimal("175.00"),
            )
        ],
        total_hours=Decimal("3.50"),
        total_amount=Decimal("175.00"),
    )
    monkeypatch.setattr(cli.reports, "summarize_time", lambda *args, **kwargs: report)
    args = argparse.Namespace(
        user=None,
        start=report.start,
        end=report.end,
        group_by="project",
        client_id=None,
        project_id=None,
    )

    assert cli.run_summary_report(runtime_context, args) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines == ["Website\t3.5 hours\t$175.00", "Total\t3.5 hours\t$175.00"]


def test_run_dashboard_report_prints_figures(runtime_context, monkeypatch, capsys):
    """The dashboard prints billing figures and per-status counts."""

    board = reports.Dashboard(
        period=reports.DashboardPeriod.MONTH,
        start=datetime(2025, 3, 1, tzinfo=UTC),
        end=datetime(2025, 3, 15, 12, tzinfo=UTC),
        total_hours=Decimal("4.75"),
        total_amount=Decimal("250.00"),
        total_invoiced=Decimal("250.00"),
        total_paid=Decimal("160.00"),
        pending_amount=Decimal("90.00"),
        active_projects=3,
        active_clients=2,
        time_entries_count=4,
        invoices_count=3,
        invoices_by_status={"PAID": 2, "DRAFT": 1},
    )
    requested = {}

    def fake_dashboard(context, user_id, period):
        requested.update(user_id=user_id, period=period)
        return board

    monkeypatch.setattr(cli.reports, "dashboard", fake_dashboard)

    assert cli.run_dashboard_report(runtime_context, argparse.Namespace(user=None, period="month")) == 0
    assert requested == {"user_id": "user-alice", "period": "month"}
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "Period\tmonth from 2025-03-01"
    assert "Pending\t$90.00" in lines
    assert lines[-2:] == ["DRAFT\t1", "PAID\t2"]


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (BusinessRuleViolation("invalid"), 2),
        (FileNotFoundError("missing"), 3),
        (ValueError("bad value"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    """handle_cli_error should convert exceptions into exit codes."""

    caplog.set_level("ERROR")
    assert cli.handle_cli_error(error) == expected
    assert caplog.records


def test_handle_cli_error_logs_error_code(caplog: pytest.LogCaptureFixture):
    """Rule violations are logged with their machine-readable code."""

    caplog.set_level("ERROR")
    cli.handle_cli_error(TimeEntryOverlap("Time entry overlaps with existing entry"))
    assert any("api/time-entry-overlap" in record.getMessage() for record in caplog.records)


def test_main_handles_bll_errors(monkeypatch, runtime_context):
    """main should surface business rule violations through handle_cli_error."""

    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: runtime_context)

    def fake_dispatch(context, args, table: Mapping[str, cli.CommandSpec]) -> int:
        raise BusinessRuleViolation("invalid")

    handled = {}

    def fake_handle(error: Exception) -> int:
        handled["error"] = error
        return 99

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)
    monkeypatch.setattr(cli, "handle_cli_error", fake_handle)

    assert cli.main(["invoices"]) == 99
    assert isinstance(handled["error"], BusinessRuleViolation)


def test_main_reports_missing_config(tmp_path):
    """A missing configuration file exits with code 3."""

    assert _run(tmp_path / "absent.ini", "invoices") == 3


def test_main_rejects_schema_mismatch(config_factory):
    """A config declaring another schema version is refused before dispatch."""

    bundle = config_factory(schema_version="0.9")
    assert _run(bundle.config_path, "invoices") == 1


# ---------------------------------------------------------------------------
# Program entry point, end to end
# ---------------------------------------------------------------------------


def test_main_runs_billing_workflow(config_file, capsys):
    """Clients, projects, time, and invoices can be driven from the CLI."""

    assert _run(config_file, "add-client", "--name", "Acme") == 0
    client_id = capsys.readouterr().out.strip()

    assert _run(config_file, "add-project", "--client-id", client_id, "--name", "Website", "--hourly-rate", "50") == 0
    project_id = capsys.readouterr().out.strip()

    for start, end in (("2025-03-03T09:00", "2025-03-03T11:00"), ("2025-03-03T13:00", "2025-03-03T14:30")):
        assert _run(config_file, "log-time", "--project-id", project_id, "--start", start, "--end", end) == 0
    capsys.readouterr()

    assert _run(config_file, "log-time", "--project-id", project_id,
                "--start", "2025-03-03T10:00", "--end", "2025-03-03T10:30") == 2

    assert _run(
        config_file,
        "create-invoice",
        "--client-id",
        client_id,
        "--date-from",
        "2025-03-01T00:00",
        "--date-to",
        "2025-03-31T23:59",
    ) == 0
    number, invoice_id, total = capsys.readouterr().out.strip().split("\t")
    assert number.startswith("INV-")
    assert total == "$175.00"

    assert _run(config_file, "invoice-status", "--invoice-id", invoice_id, "--status", "SENT") == 0
    assert _run(config_file, "delete-invoice", "--invoice-id", invoice_id) == 2

    assert _run(config_file, "invoices", "--status", "SENT") == 0
    listing = capsys.readouterr().out.strip().split("\t")
    assert listing[1] == "SENT"
    assert listing[2] == "2025-03-01..2025-03-31"

    assert _run(config_file, "detailed", "--start", "2025-03-01T00:00", "--end", "2025-03-31T23:59",
                "--page-size", "1") == 0
    detailed = capsys.readouterr().out.splitlines()
    assert detailed[-2:] == ["Page 1/2 (2 entries)", "Total\t3.5 hours\t$175.00"]

    context = core_logic.load_runtime_context(config_file)
    entries = time_entries.list_time_entries(context, "user-alice")
    assert len(entries) == 2
    assert all(entry.is_locked for entry in entries)
    assert invoicing.get_invoice(context, "user-alice", invoice_id).total_amount == Decimal("175.00")


def test_main_acts_as_another_user(config_file, capsys):
    """--user scopes every workflow to that user."""

    assert _run(config_file, "--user", "user-bob", "add-client", "--name", "Globex") == 0
    capsys.readouterr()

    context = core_logic.load_runtime_context(config_file)
    assert [client.name for client in core_logic.list_clients(context, "user-bob")] == ["Globex"]
    assert core_logic.list_clients(context, "user-alice") == []
