"""Command-line entry points for timeledger.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the command objects consumed by the business
layer. Workflows commit their own transactions, so the CLI never saves the
workbook itself.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, invoicing, log, reports, time_entries
from .calculations import ClientTotals, format_currency, format_hours
from .constants import DEFAULT_PAGE_SIZE, DashboardPeriod, InvoiceStatus, SummaryGrouping
from .data_manager import normalize_timestamp
from .errors import BusinessRuleViolation


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def parse_timestamp(value: str) -> datetime:
    """argparse type for ISO-8601 timestamps; naive values are taken as UTC."""
    try:
        return normalize_timestamp(datetime.fromisoformat(value))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid ISO-8601 timestamp: {value}") from exc


def parse_decimal(value: str) -> Decimal:
    """argparse type for exact decimal amounts."""
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Invalid decimal value: {value}") from exc


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="timeledger",
        description="Track billable time and invoice it from a ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    parser.add_argument(
        "--user",
        default=None,
        help="User id to act as (defaults to [Defaults] DefaultUser).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as logging time and invoicing."""
    specs = {
        "add-client": register_add_client_command(subparsers),
        "add-project": register_add_project_command(subparsers),
        "log-time": register_log_time_command(subparsers),
        "edit-time": register_edit_time_command(subparsers),
        "delete-time": register_delete_time_command(subparsers),
        "create-invoice": register_create_invoice_command(subparsers),
        "invoice-status": register_invoice_status_command(subparsers),
        "delete-invoice": register_delete_invoice_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "invoices": register_invoices_command(subparsers),
        "summary": register_summary_command(subparsers),
        "detailed": register_detailed_command(subparsers),
        "dashboard": register_dashboard_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_client_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-client``."""
    name = "add-client"
    help_text = "Register a new client."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--email", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_client)


def register_add_project_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-project``."""
    name = "add-project"
    help_text = "Register a new project under a client."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--client-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--description", default=None)
        parser.add_argument("--hourly-rate", type=parse_decimal, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_project)


def register_log_time_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log-time``."""
    name = "log-time"
    help_text = "Record a time entry against a project."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--project-id", required=True)
        parser.add_argument("--start", type=parse_timestamp, required=True)
        parser.add_argument("--end", type=parse_timestamp, required=True)
        parser.add_argument("--note", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_log_time)


def register_edit_time_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-time``."""
    name = "edit-time"
    help_text = "Edit an unlocked time entry."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--entry-id", required=True)
        parser.add_argument("--project-id", default=None)
        parser.add_argument("--start", type=parse_timestamp, default=None)
        parser.add_argument("--end", type=parse_timestamp, default=None)
        parser.add_argument("--note", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_time)


def register_delete_time_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-time``."""
    name = "delete-time"
    help_text = "Delete an unlocked time entry."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--entry-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_time)


def register_create_invoice_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``create-invoice``."""
    name = "create-invoice"
    help_text = "Bill a client's unlocked time in a date range as a draft invoice."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--client-id", required=True)
        parser.add_argument("--date-from", type=parse_timestamp, required=True)
        parser.add_argument("--date-to", type=parse_timestamp, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_create_invoice)


def register_invoice_status_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``invoice-status``."""
    name = "invoice-status"
    help_text = "Advance an invoice to SENT or PAID."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--invoice-id", required=True)
        parser.add_argument(
            "--status",
            required=True,
            choices=[status.value for status in InvoiceStatus],
        )
        parser.add_argument("--paid-amount", type=parse_decimal, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_invoice_status)


def register_delete_invoice_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-invoice``."""
    name = "delete-invoice"
    help_text = "Delete a draft invoice and unlock its time entries."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--invoice-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_invoice)


def register_invoices_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``invoices``."""
    name = "invoices"
    help_text = "List invoices with their totals."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--status", choices=[status.value for status in InvoiceStatus], default=None)
        parser.add_argument("--client-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_invoices_report)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Summarize hours and amounts by client or project."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--start", type=parse_timestamp, required=True)
        parser.add_argument("--end", type=parse_timestamp, required=True)
        parser.add_argument(
            "--group-by",
            choices=[grouping.value for grouping in SummaryGrouping],
            default=SummaryGrouping.CLIENT.value,
        )
        parser.add_argument("--client-id", default=None)
        parser.add_argument("--project-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary_report)


def register_detailed_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``detailed``."""
    name = "detailed"
    help_text = "List entries in a range with their hours and amounts."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--start", type=parse_timestamp, required=True)
        parser.add_argument("--end", type=parse_timestamp, required=True)
        parser.add_argument("--client-id", default=None)
        parser.add_argument("--project-id", default=None)
        parser.add_argument("--page", type=int, default=1)
        parser.add_argument("--page-size", type=int, default=DEFAULT_PAGE_SIZE)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_detailed_report)


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Show hours, billing, and payments for the current period."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--period",
            choices=[period.value for period in DashboardPeriod],
            default=DashboardPeriod.MONTH.value,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def resolve_user(context: core_logic.RuntimeContext, args: argparse.Namespace) -> str:
    """Return the acting user id from ``--user`` or the configured default."""
    return getattr(args, "user", None) or context.settings.default_user_id


def translate_add_client(args: argparse.Namespace) -> core_logic.ClientCommand:
    return core_logic.ClientCommand(name=args.name, email=args.email)


def translate_add_project(args: argparse.Namespace) -> core_logic.ProjectCommand:
    return core_logic.ProjectCommand(
        client_id=args.client_id,
        name=args.name,
        description=args.description,
        hourly_rate=args.hourly_rate,
    )


def translate_log_time(args: argparse.Namespace) -> time_entries.TimeEntryCommand:
    return time_entries.TimeEntryCommand(
        project_id=args.project_id,
        started_at=args.start,
        ended_at=args.end,
        note=args.note,
    )


def translate_create_invoice(args: argparse.Namespace) -> invoicing.CreateInvoiceCommand:
    return invoicing.CreateInvoiceCommand(
        client_id=args.client_id,
        date_from=args.date_from,
        date_to=args.date_to,
    )


def run_add_client(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-client workflow in the BLL."""
    client = core_logic.create_client(context, resolve_user(context, args), translate_add_client(args))
    print(client.client_id)
    return 0


def run_add_project(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-project workflow in the BLL."""
    project = core_logic.create_project(context, resolve_user(context, args), translate_add_project(args))
    print(project.project_id)
    return 0


def run_log_time(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the time logging workflow via the BLL."""
    entry = time_entries.create_time_entry(context, resolve_user(context, args), translate_log_time(args))
    print(entry.entry_id)
    return 0


def run_edit_time(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the time entry edit workflow via the BLL."""
    time_entries.update_time_entry(
        context,
        resolve_user(context, args),
        args.entry_id,
        project_id=args.project_id,
        started_at=args.start,
        ended_at=args.end,
        note=args.note,
    )
    return 0


def run_delete_time(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the time entry deletion workflow via the BLL."""
    time_entries.delete_time_entry(context, resolve_user(context, args), args.entry_id)
    return 0


def run_create_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the invoice creation workflow via the BLL."""
    detail = invoicing.create_invoice(context, resolve_user(context, args), translate_create_invoice(args))
    print(f"{detail.invoice.invoice_number}\t{detail.invoice.invoice_id}\t{format_currency(detail.total_amount)}")
    return 0


def run_invoice_status(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the invoice status transition via the BLL."""
    invoicing.update_invoice_status(
        context,
        resolve_user(context, args),
        args.invoice_id,
        args.status,
        paid_amount=args.paid_amount,
    )
    return 0


def run_delete_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the invoice deletion workflow via the BLL."""
    unlocked = invoicing.delete_invoice(context, resolve_user(context, args), args.invoice_id)
    print(f"Unlocked {len(unlocked)} time entries")
    return 0


def run_invoices_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print one line per invoice: number, status, period, and total."""
    details = invoicing.list_invoices(
        context,
        resolve_user(context, args),
        status=args.status,
        client_id=args.client_id,
    )
    for detail in details:
        invoice = detail.invoice
        print(
            f"{invoice.invoice_number}\t{invoice.status}\t"
            f"{invoice.date_from.date().isoformat()}..{invoice.date_to.date().isoformat()}\t"
            f"{format_currency(detail.total_amount)}"
        )
    return 0


def run_summary_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the summary report grouped by client or project."""
    report = reports.summarize_time(
        context,
        resolve_user(context, args),
        args.start,
        args.end,
        args.group_by,
        client_id=args.client_id,
        project_id=args.project_id,
    )
    for group in report.groups:
        if isinstance(group, ClientTotals):
            print(f"{group.client_name}\t{format_hours(group.total_hours)}\t{format_currency(group.total_amount)}")
            for project in group.projects.values():
                print(f"  {project.name}\t{format_hours(project.hours)}\t{format_currency(project.amount)}")
        else:
            print(f"{group.project_name}\t{format_hours(group.total_hours)}\t{format_currency(group.total_amount)}")
    print(f"Total\t{format_hours(report.total_hours)}\t{format_currency(report.total_amount)}")
    return 0


def run_detailed_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print one page of entries followed by the range totals."""
    report = reports.detailed_report(
        context,
        resolve_user(context, args),
        args.start,
        args.end,
        client_id=args.client_id,
        project_id=args.project_id,
        page=args.page,
        page_size=args.page_size,
    )
    for row in report.entries:
        print(
            f"{row.entry.started_at.isoformat()}\t{row.client_name}\t{row.project_name}\t"
            f"{format_hours(row.duration_hours)}\t{format_currency(row.amount)}"
        )
    pagination = report.pagination
    print(f"Page {pagination.page}/{pagination.total_pages} ({pagination.total_count} entries)")
    print(f"Total\t{format_hours(report.total_hours)}\t{format_currency(report.total_amount)}")
    return 0


def run_dashboard_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the dashboard figures as label/value pairs."""
    board = reports.dashboard(context, resolve_user(context, args), args.period)
    print(f"Period\t{board.period.value} from {board.start.date().isoformat()}")
    print(f"Tracked\t{format_hours(board.total_hours)}\t{format_currency(board.total_amount)}")
    print(f"Invoiced\t{format_currency(board.total_invoiced)}")
    print(f"Paid\t{format_currency(board.total_paid)}")
    print(f"Pending\t{format_currency(board.pending_amount)}")
    print(f"Active\t{board.active_projects} projects, {board.active_clients} clients")
    for status, count in sorted(board.invoices_by_status.items()):
        print(f"{status}\t{count}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, BusinessRuleViolation):
        log.error("%s (%s): %s", error.message, error.code, error.detail)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
