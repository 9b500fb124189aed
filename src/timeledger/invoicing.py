"""Invoice lifecycle: creation from time entries, status transitions, lines.

Invoices move forward only, ``DRAFT -> SENT -> PAID``. Creating an invoice
locks the time entries it bills; deleting a draft releases them. Both run
inside a single :func:`~timeledger.core_logic.transaction` so the invoice
header, its lines, and the entry locks never disagree.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, FrozenSet, List, Mapping, Optional, Union

from . import data_manager, log
from .calculations import BillableEntry, group_by_project, line_amount, round2
from .constants import InvoiceStatus
from .core_logic import (
    RuntimeContext,
    _resolve_timestamp,
    generate_id,
    get_client,
    get_project,
    transaction,
)
from .errors import (
    EntityNotFound,
    InvalidDateRange,
    InvalidStatusTransition,
    InvoiceNotDeletable,
    InvoiceNotEditable,
    NoTimeEntries,
)
from .invoice_numbering import next_invoice_number
from .time_entries import entries_for_client
from .validation import require_positive_amount, validate_name


ALLOWED_TRANSITIONS: Mapping[InvoiceStatus, FrozenSet[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.SENT}),
    InvoiceStatus.SENT: frozenset({InvoiceStatus.PAID}),
    InvoiceStatus.PAID: frozenset(),
}

TRANSITION_HINT = "Status can only transition forward: DRAFT → SENT → PAID"


@dataclass(frozen=True)
class CreateInvoiceCommand:
    """User intent for billing a client's unlocked time in a date range."""

    client_id: str
    date_from: datetime
    date_to: datetime
    issued_at: Optional[datetime] = None


@dataclass(frozen=True)
class InvoiceLineCommand:
    """User intent for adding a manual line to a draft invoice."""

    project_id: str
    description: str
    hours: Decimal
    rate: Decimal


@dataclass(frozen=True)
class InvoiceDetail:
    """An invoice header with its lines and their rounded total."""

    invoice: data_manager.InvoiceRow
    lines: List[data_manager.InvoiceLineRow]
    total_amount: Decimal


def _as_status(value: Union[InvoiceStatus, str]) -> InvoiceStatus:
    try:
        return InvoiceStatus(value)
    except ValueError:
        log.warning("Unknown invoice status requested: %s", value)
        raise InvalidStatusTransition(
            f"Unknown invoice status: {value}",
            detail=TRANSITION_HINT,
        ) from None


def validate_transition(current: Union[InvoiceStatus, str], requested: Union[InvoiceStatus, str]) -> None:
    """Allow only the forward edges listed in :data:`ALLOWED_TRANSITIONS`.

    Raises:
        InvalidStatusTransition: For any other pair, including staying put.
    """
    current_status = _as_status(current)
    requested_status = _as_status(requested)
    if requested_status not in ALLOWED_TRANSITIONS[current_status]:
        log.warning("Rejected invoice transition %s -> %s", current_status.value, requested_status.value)
        raise InvalidStatusTransition(
            f"Invalid status transition from {current_status.value} to {requested_status.value}",
            detail=TRANSITION_HINT,
        )


def _validate_date_range(date_from: datetime, date_to: datetime) -> None:
    if date_to <= date_from:
        log.warning("Rejected invoice date range %s to %s", date_from, date_to)
        raise InvalidDateRange(
            "End date must be after start date",
            detail="dateTo must be greater than dateFrom",
        )


def _require_draft(invoice: data_manager.InvoiceRow, *, deleting: bool = False) -> None:
    if invoice.status == InvoiceStatus.DRAFT.value:
        return
    log.warning("Invoice '%s' is %s and cannot be changed", invoice.invoice_id, invoice.status)
    if deleting:
        raise InvoiceNotDeletable(
            "Only draft invoices can be deleted",
            detail="Invoice must be in DRAFT status to be deleted",
        )
    raise InvoiceNotEditable(
        "Only draft invoices can be edited",
        detail="Invoice must be in DRAFT status to be edited",
    )


def _get_invoice_row(context: RuntimeContext, user_id: str, invoice_id: str) -> data_manager.InvoiceRow:
    invoice = data_manager.find_invoice(context.workbook, user_id, invoice_id)
    if invoice is None:
        log.warning("Invoice lookup failed for id '%s' (user '%s')", invoice_id, user_id)
        raise EntityNotFound("Invoice not found", detail=f"Invoice {invoice_id} not found")
    return invoice


def _detail(context: RuntimeContext, invoice: data_manager.InvoiceRow) -> InvoiceDetail:
    lines = data_manager.list_invoice_lines(context.workbook, invoice.invoice_id)
    total = round2(sum((line.amount for line in lines), Decimal("0")))
    return InvoiceDetail(invoice=invoice, lines=lines, total_amount=total)


def get_invoice(context: RuntimeContext, user_id: str, invoice_id: str) -> InvoiceDetail:
    """Return one of the user's invoices with its lines.

    Raises:
        EntityNotFound: If the invoice is absent or belongs to another user.
    """
    return _detail(context, _get_invoice_row(context, user_id, invoice_id))


def list_invoices(
    context: RuntimeContext,
    user_id: str,
    *,
    status: Optional[Union[InvoiceStatus, str]] = None,
    client_id: Optional[str] = None,
) -> List[InvoiceDetail]:
    """Return the user's invoices, newest first, optionally filtered."""

    wanted_status = _as_status(status).value if status is not None else None
    rows = [
        invoice
        for invoice in data_manager.iter_invoices(context.workbook)
        if invoice.user_id == user_id
        and (wanted_status is None or invoice.status == wanted_status)
        and (client_id is None or invoice.client_id == client_id)
    ]
    rows.reverse()
    return [_detail(context, invoice) for invoice in rows]


def _insert_invoice_header(
    context: RuntimeContext,
    user_id: str,
    command: CreateInvoiceCommand,
    date_from: datetime,
    date_to: datetime,
) -> data_manager.InvoiceRow:
    """Allocate a number and append the header, retrying once on a clash."""

    issued_on = _resolve_timestamp(command.issued_at).date()
    invoice = data_manager.InvoiceRow(
        invoice_id=generate_id(),
        user_id=user_id,
        client_id=command.client_id,
        invoice_number=next_invoice_number(context.workbook, user_id, issued_on),
        status=InvoiceStatus.DRAFT.value,
        date_from=date_from,
        date_to=date_to,
    )
    try:
        data_manager.append_invoice(context.workbook, invoice)
        return invoice
    except data_manager.UniqueConstraintError:
        log.warning("Invoice number %s already taken; allocating a new one", invoice.invoice_number)

    invoice = replace(invoice, invoice_number=next_invoice_number(context.workbook, user_id, issued_on))
    try:
        data_manager.append_invoice(context.workbook, invoice)
    except data_manager.UniqueConstraintError:
        log.error("Invoice number %s still taken after retry", invoice.invoice_number)
        raise
    return invoice


def create_invoice(context: RuntimeContext, user_id: str, command: CreateInvoiceCommand) -> InvoiceDetail:
    """Bill the client's unlocked time in ``[date_from, date_to]`` as a draft.

    One line is produced per project: hours are the rounded sum of entry
    durations, the rate is the project's current rate (0 when unset) rounded
    to cents, and the amount is ``round2(hours * rate)``. Every billed entry is
    then locked and linked to the new invoice. Numbering, header, lines, and
    locks commit together or not at all.

    Raises:
        InvalidDateRange: If ``date_to`` is not after ``date_from``.
        EntityNotFound: If the client is not the user's.
        NoTimeEntries: If nothing unlocked falls in the range.
        data_manager.UniqueConstraintError: If the invoice number clashes
            twice in a row.
    """
    date_from = data_manager.normalize_timestamp(command.date_from)
    date_to = data_manager.normalize_timestamp(command.date_to)
    _validate_date_range(date_from, date_to)

    with transaction(context):
        client = get_client(context, user_id, command.client_id)
        entries = entries_for_client(
            context, user_id, command.client_id, date_from, date_to, unlocked_only=True
        )
        if not entries:
            log.warning(
                "No unlocked time entries for client '%s' between %s and %s",
                command.client_id,
                date_from.isoformat(),
                date_to.isoformat(),
            )
            raise NoTimeEntries(
                "No unlocked time entries found for the specified client and date range",
                detail="No billable time entries available for invoicing",
            )

        projects: Dict[str, data_manager.ProjectRow] = {}
        billable = []
        for entry in entries:
            if entry.project_id not in projects:
                projects[entry.project_id] = get_project(context, user_id, entry.project_id)
            billable.append(BillableEntry.from_rows(entry, projects[entry.project_id], client))

        invoice = _insert_invoice_header(context, user_id, command, date_from, date_to)

        for totals in group_by_project(billable).values():
            hours = round2(totals.total_hours)
            rate = round2(totals.hourly_rate)
            data_manager.append_invoice_line(
                context.workbook,
                data_manager.InvoiceLineRow(
                    line_id=generate_id(),
                    invoice_id=invoice.invoice_id,
                    project_id=totals.project_id,
                    description=totals.project_name,
                    hours=hours,
                    rate=rate,
                    amount=line_amount(hours, rate),
                ),
            )

        for entry in entries:
            data_manager.update_record(
                context.workbook,
                data_manager.TIME_ENTRIES_SHEET,
                entry.entry_id,
                field_values={"IsLocked": True, "LockedByInvoiceID": invoice.invoice_id},
            )
        detail = _detail(context, invoice)

    log.info(
        "Created invoice %s ('%s') for client '%s': %s lines, %s entries locked, total %s",
        invoice.invoice_number,
        invoice.invoice_id,
        command.client_id,
        len(detail.lines),
        len(entries),
        detail.total_amount,
    )
    return detail


def update_invoice_status(
    context: RuntimeContext,
    user_id: str,
    invoice_id: str,
    status: Union[InvoiceStatus, str],
    paid_amount: Optional[Decimal] = None,
    now: Optional[datetime] = None,
) -> data_manager.InvoiceRow:
    """Advance an invoice one step along ``DRAFT -> SENT -> PAID``.

    ``SENT`` stamps ``sent_at``; ``PAID`` stamps ``paid_at`` and records
    ``paid_amount`` as given when supplied. The payment is not compared with
    the line total, so partial payments are accepted.

    Raises:
        EntityNotFound: If the invoice is not the user's.
        InvalidStatusTransition: For any backward, skipping, or repeated move.
        InvalidAmount: If ``paid_amount`` is supplied and not positive.
    """
    requested = _as_status(status)
    timestamp = _resolve_timestamp(now)

    with transaction(context):
        invoice = _get_invoice_row(context, user_id, invoice_id)
        validate_transition(invoice.status, requested)

        updates: Dict[str, object] = {"Status": requested}
        if requested is InvoiceStatus.SENT:
            updates["SentAt"] = timestamp
        elif requested is InvoiceStatus.PAID:
            updates["PaidAt"] = timestamp
            if paid_amount is not None:
                require_positive_amount(paid_amount, "paidAmount")
                updates["PaidAmount"] = paid_amount

        data_manager.update_record(
            context.workbook, data_manager.INVOICES_SHEET, invoice_id, field_values=updates
        )
        updated = _get_invoice_row(context, user_id, invoice_id)

    log.info("Invoice '%s' moved %s -> %s", invoice_id, invoice.status, requested.value)
    return updated


def update_invoice(
    context: RuntimeContext,
    user_id: str,
    invoice_id: str,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> data_manager.InvoiceRow:
    """Change the billing period of a draft invoice.

    Lines and locks are left as they are.

    Raises:
        InvoiceNotEditable: If the invoice is no longer a draft.
        InvalidDateRange: If the resulting range is empty or inverted.
    """
    with transaction(context):
        invoice = _get_invoice_row(context, user_id, invoice_id)
        _require_draft(invoice)

        new_from = data_manager.normalize_timestamp(date_from) if date_from is not None else invoice.date_from
        new_to = data_manager.normalize_timestamp(date_to) if date_to is not None else invoice.date_to
        _validate_date_range(new_from, new_to)

        updates: Dict[str, object] = {}
        if date_from is not None:
            updates["DateFrom"] = new_from
        if date_to is not None:
            updates["DateTo"] = new_to
        if not updates:
            return invoice

        data_manager.update_record(
            context.workbook, data_manager.INVOICES_SHEET, invoice_id, field_values=updates
        )
        updated = _get_invoice_row(context, user_id, invoice_id)

    log.info("Updated invoice '%s' period to %s - %s", invoice_id, new_from.isoformat(), new_to.isoformat())
    return updated


def add_invoice_line(
    context: RuntimeContext,
    user_id: str,
    invoice_id: str,
    command: InvoiceLineCommand,
) -> data_manager.InvoiceLineRow:
    """Append a manual line to a draft invoice.

    Raises:
        InvoiceNotEditable: If the invoice is no longer a draft.
        EntityNotFound: If the invoice or project is not the user's.
        InvalidAmount: If hours or rate are not positive.
    """
    with transaction(context):
        invoice = _get_invoice_row(context, user_id, invoice_id)
        _require_draft(invoice)
        get_project(context, user_id, command.project_id)
        description = validate_name(command.description, "description")
        require_positive_amount(command.hours, "hours")
        require_positive_amount(command.rate, "rate")

        line = data_manager.InvoiceLineRow(
            line_id=generate_id(),
            invoice_id=invoice_id,
            project_id=command.project_id,
            description=description,
            hours=command.hours,
            rate=command.rate,
            amount=line_amount(command.hours, command.rate),
        )
        data_manager.append_invoice_line(context.workbook, line)

    log.info("Added line '%s' to invoice '%s' (amount %s)", line.line_id, invoice_id, line.amount)
    return line


def _get_line(context: RuntimeContext, invoice_id: str, line_id: str) -> data_manager.InvoiceLineRow:
    line = data_manager.find_invoice_line(context.workbook, invoice_id, line_id)
    if line is None:
        log.warning("Invoice line '%s' not found on invoice '%s'", line_id, invoice_id)
        raise EntityNotFound("Invoice line not found", detail=f"Invoice line {line_id} not found")
    return line


def update_invoice_line(
    context: RuntimeContext,
    user_id: str,
    invoice_id: str,
    line_id: str,
    *,
    description: Optional[str] = None,
    hours: Optional[Decimal] = None,
    rate: Optional[Decimal] = None,
) -> data_manager.InvoiceLineRow:
    """Edit a line of a draft invoice, recomputing its amount when needed.

    Raises:
        InvoiceNotEditable: If the invoice is no longer a draft.
        EntityNotFound: If the invoice or line is not the user's.
        InvalidAmount: If new hours or rate are not positive.
    """
    with transaction(context):
        invoice = _get_invoice_row(context, user_id, invoice_id)
        _require_draft(invoice)
        line = _get_line(context, invoice_id, line_id)

        updates: Dict[str, object] = {}
        if description is not None:
            updates["Description"] = validate_name(description, "description")
        if hours is not None:
            require_positive_amount(hours, "hours")
            updates["Hours"] = hours
        if rate is not None:
            require_positive_amount(rate, "rate")
            updates["Rate"] = rate
        if hours is not None or rate is not None:
            updates["Amount"] = line_amount(
                hours if hours is not None else line.hours,
                rate if rate is not None else line.rate,
            )
        if not updates:
            return line

        data_manager.update_record(
            context.workbook, data_manager.INVOICE_LINES_SHEET, line_id, field_values=updates
        )
        updated = _get_line(context, invoice_id, line_id)

    log.info("Updated line '%s' on invoice '%s' fields: %s", line_id, invoice_id, ", ".join(updates))
    return updated


def delete_invoice_line(context: RuntimeContext, user_id: str, invoice_id: str, line_id: str) -> None:
    """Remove a line from a draft invoice.

    Raises:
        InvoiceNotEditable: If the invoice is no longer a draft.
        EntityNotFound: If the invoice or line is not the user's.
    """
    with transaction(context):
        invoice = _get_invoice_row(context, user_id, invoice_id)
        _require_draft(invoice)
        _get_line(context, invoice_id, line_id)
        data_manager.delete_records(
            context.workbook, data_manager.INVOICE_LINES_SHEET, "LineID", [line_id]
        )

    log.info("Deleted line '%s' from invoice '%s'", line_id, invoice_id)


def _entries_locked_by(
    context: RuntimeContext,
    user_id: str,
    invoice: data_manager.InvoiceRow,
    project_ids: FrozenSet[str],
) -> List[str]:
    """Ids of entries this invoice locked.

    Linked entries match on ``locked_by_invoice_id``. Locked entries without a
    link fall back to project membership plus the invoice's date range.
    """
    matched = []
    for entry in data_manager.iter_time_entries(context.workbook):
        if entry.user_id != user_id or not entry.is_locked:
            continue
        if entry.locked_by_invoice_id == invoice.invoice_id:
            matched.append(entry.entry_id)
        elif (
            entry.locked_by_invoice_id is None
            and entry.project_id in project_ids
            and invoice.date_from <= entry.started_at <= invoice.date_to
        ):
            matched.append(entry.entry_id)
    return matched


def delete_invoice(context: RuntimeContext, user_id: str, invoice_id: str) -> List[str]:
    """Delete a draft invoice and its lines, unlocking what it billed.

    Returns:
        list[str]: Ids of the time entries that were unlocked.

    Raises:
        EntityNotFound: If the invoice is not the user's.
        InvoiceNotDeletable: If the invoice is no longer a draft.
    """
    with transaction(context):
        invoice = _get_invoice_row(context, user_id, invoice_id)
        _require_draft(invoice, deleting=True)

        lines = data_manager.list_invoice_lines(context.workbook, invoice_id)
        project_ids = frozenset(line.project_id for line in lines)
        unlocked = _entries_locked_by(context, user_id, invoice, project_ids)

        data_manager.delete_records(
            context.workbook, data_manager.INVOICE_LINES_SHEET, "InvoiceID", [invoice_id]
        )
        data_manager.delete_records(
            context.workbook, data_manager.INVOICES_SHEET, "InvoiceID", [invoice_id]
        )
        for entry_id in unlocked:
            data_manager.update_record(
                context.workbook,
                data_manager.TIME_ENTRIES_SHEET,
                entry_id,
                field_values={"IsLocked": False, "LockedByInvoiceID": None},
            )

    log.info("Deleted invoice '%s' and unlocked %s time entries", invoice_id, len(unlocked))
    return unlocked
