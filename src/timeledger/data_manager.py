"""Data access layer for timeledger.

This module provides low-level helpers that read from and write to the
ledger workbook. Business rules belong elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, persisting, snapshotting, and restoring the
   Excel file.
3. Sheet operations: loading structured records and appending, updating, or
   deleting individual rows.
4. Store queries: the scoped lookups the rule engine needs (overlap windows,
   duplicate names, last invoice number).
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import DEFAULT_MAX_BULK_ENTRIES, DEFAULT_MAX_ENTRY_HOURS, INVOICE_NUMBER_PREFIX, SheetName


CONFIG_FILE_NAME = "config.ini"
CLIENTS_SHEET = SheetName.CLIENTS.value
PROJECTS_SHEET = SheetName.PROJECTS.value
TIME_ENTRIES_SHEET = SheetName.TIME_ENTRIES.value
INVOICES_SHEET = SheetName.INVOICES.value
INVOICE_LINES_SHEET = SheetName.INVOICE_LINES.value

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    CLIENTS_SHEET: ["ClientID", "UserID", "Name", "Email"],
    PROJECTS_SHEET: ["ProjectID", "UserID", "ClientID", "Name", "Description", "HourlyRate"],
    TIME_ENTRIES_SHEET: [
        "EntryID",
        "UserID",
        "ProjectID",
        "StartedAt",
        "EndedAt",
        "Note",
        "IsLocked",
        "LockedByInvoiceID",
    ],
    INVOICES_SHEET: [
        "InvoiceID",
        "UserID",
        "ClientID",
        "InvoiceNumber",
        "Status",
        "DateFrom",
        "DateTo",
        "SentAt",
        "PaidAt",
        "PaidAmount",
        "PdfUrl",
    ],
    INVOICE_LINES_SHEET: ["LineID", "InvoiceID", "ProjectID", "Description", "Hours", "Rate", "Amount"],
}

SHEET_KEYS: Mapping[str, str] = {
    sheet_name: columns[0] for sheet_name, columns in SHEET_COLUMNS.items()
}


class UniqueConstraintError(ValueError):
    """Raised when an insert would duplicate a value the store keeps unique."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    schema_version: str
    default_user_id: str
    max_entry_hours: int = DEFAULT_MAX_ENTRY_HOURS
    max_bulk_entries: int = DEFAULT_MAX_BULK_ENTRIES
    business_hours_start: Optional[int] = None
    business_hours_end: Optional[int] = None


@dataclass(frozen=True)
class ClientRow:
    """In-memory view of a row from the ``Clients`` sheet."""

    client_id: str
    user_id: str
    name: str
    email: Optional[str]


@dataclass(frozen=True)
class ProjectRow:
    """In-memory view of a row from the ``Projects`` sheet."""

    project_id: str
    user_id: str
    client_id: str
    name: str
    description: Optional[str]
    hourly_rate: Optional[Decimal]


@dataclass(frozen=True)
class TimeEntryRow:
    """In-memory view of a row from the ``TimeEntries`` sheet."""

    entry_id: str
    user_id: str
    project_id: str
    started_at: datetime
    ended_at: datetime
    note: Optional[str]
    is_locked: bool
    locked_by_invoice_id: Optional[str] = None


@dataclass(frozen=True)
class InvoiceRow:
    """In-memory view of a row from the ``Invoices`` sheet."""

    invoice_id: str
    user_id: str
    client_id: str
    invoice_number: str
    status: str
    date_from: datetime
    date_to: datetime
    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    paid_amount: Optional[Decimal] = None
    pdf_url: Optional[str] = None


@dataclass(frozen=True)
class InvoiceLineRow:
    """In-memory view of a row from the ``InvoiceLines`` sheet."""

    line_id: str
    invoice_id: str
    project_id: str
    description: str
    hours: Decimal
    rate: Decimal
    amount: Decimal


@dataclass(frozen=True)
class TimeEntryDetail:
    """A time entry joined with the project and client it belongs to."""

    entry: TimeEntryRow
    project_name: str
    client_id: Optional[str]
    client_name: Optional[str]


WorkbookSnapshot = Dict[str, List[Tuple[Any, ...]]]


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The ``[System]`` and ``[Defaults]`` sections are mandatory. The ``[Rules]``
    section is optional and falls back to the package defaults; business hours
    are only enabled when both ``BusinessHoursStart`` and ``BusinessHoursEnd``
    are present. Relative ``DataFile`` paths are anchored to ``base_path`` (or
    the current working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If a ``[Rules]`` option is not an integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
        default_user = parser.get("Defaults", "DefaultUser")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    max_hours = parser.getint("Rules", "MaxEntryHours", fallback=DEFAULT_MAX_ENTRY_HOURS)
    max_bulk = parser.getint("Rules", "MaxBulkEntries", fallback=DEFAULT_MAX_BULK_ENTRIES)
    hours_start = parser.getint("Rules", "BusinessHoursStart", fallback=None)
    hours_end = parser.getint("Rules", "BusinessHoursEnd", fallback=None)
    if (hours_start is None) != (hours_end is None):
        log.warning("Ignoring partial business hours configuration (start=%s, end=%s)", hours_start, hours_end)
        hours_start = hours_end = None

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        schema_version=schema_version,
        default_user_id=default_user,
        max_entry_hours=max_hours,
        max_bulk_entries=max_bulk,
        business_hours_start=hours_start,
        business_hours_end=hours_end,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def snapshot_workbook(workbook: Workbook) -> WorkbookSnapshot:
    """Capture the data rows of every managed sheet.

    The snapshot is a plain mapping of sheet name to row tuples (header
    excluded). Together with :func:`restore_workbook` it gives the rule engine
    an in-memory rollback point without touching the file on disk.
    """

    snapshot: WorkbookSnapshot = {}
    for sheet_name in SHEET_COLUMNS:
        sheet = workbook[sheet_name]
        snapshot[sheet_name] = [tuple(row) for row in sheet.iter_rows(min_row=2, values_only=True)]
    return snapshot


def restore_workbook(workbook: Workbook, snapshot: WorkbookSnapshot) -> None:
    """Replace the data rows of every snapshotted sheet with the captured rows."""

    for sheet_name, rows in snapshot.items():
        sheet = workbook[sheet_name]
        if sheet.max_row > 1:
            sheet.delete_rows(2, sheet.max_row - 1)
        for row in rows:
            sheet.append(list(row))


def normalize_timestamp(value: datetime) -> datetime:
    """Return ``value`` as a timezone-aware datetime, treating naive input as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _iter_sheet(workbook: Workbook, sheet_name: str, converter: Callable[[Sequence[object]], Any]) -> Iterable[Any]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield converter(raw)


def iter_clients(workbook: Workbook) -> Iterable[ClientRow]:
    """Iterate over client records stored on the ``Clients`` worksheet."""

    return _iter_sheet(workbook, CLIENTS_SHEET, deserialize_client)


def iter_projects(workbook: Workbook) -> Iterable[ProjectRow]:
    """Iterate over project records stored on the ``Projects`` worksheet."""

    return _iter_sheet(workbook, PROJECTS_SHEET, deserialize_project)


def iter_time_entries(workbook: Workbook) -> Iterable[TimeEntryRow]:
    """Stream time entries from the ``TimeEntries`` worksheet.

    Timestamps come back as timezone-aware datetimes and the lock flag as a
    real ``bool`` regardless of how the spreadsheet encoded it.
    """

    return _iter_sheet(workbook, TIME_ENTRIES_SHEET, deserialize_time_entry)


def iter_invoices(workbook: Workbook) -> Iterable[InvoiceRow]:
    """Iterate over invoice headers stored on the ``Invoices`` worksheet."""

    return _iter_sheet(workbook, INVOICES_SHEET, deserialize_invoice)


def iter_invoice_lines(workbook: Workbook) -> Iterable[InvoiceLineRow]:
    """Iterate over invoice lines stored on the ``InvoiceLines`` worksheet."""

    return _iter_sheet(workbook, INVOICE_LINES_SHEET, deserialize_invoice_line)


def append_client(workbook: Workbook, record: ClientRow) -> None:
    """Append a client record to the ``Clients`` worksheet."""

    workbook[CLIENTS_SHEET].append(serialize_client(record))


def append_project(workbook: Workbook, record: ProjectRow) -> None:
    """Append a project record to the ``Projects`` worksheet."""

    workbook[PROJECTS_SHEET].append(serialize_project(record))


def append_time_entry(workbook: Workbook, record: TimeEntryRow) -> None:
    """Append a time entry to the ``TimeEntries`` worksheet."""

    workbook[TIME_ENTRIES_SHEET].append(serialize_time_entry(record))


def append_invoice(workbook: Workbook, record: InvoiceRow) -> None:
    """Append an invoice header, enforcing ``(UserID, InvoiceNumber)`` uniqueness.

    Raises:
        UniqueConstraintError: If the user already owns an invoice with the
            same number.
    """

    for existing in iter_invoices(workbook):
        if existing.user_id == record.user_id and existing.invoice_number == record.invoice_number:
            raise UniqueConstraintError(
                f"Invoice number already in use for user {record.user_id}: {record.invoice_number}"
            )
    workbook[INVOICES_SHEET].append(serialize_invoice(record))


def append_invoice_line(workbook: Workbook, record: InvoiceLineRow) -> None:
    """Append an invoice line to the ``InvoiceLines`` worksheet."""

    workbook[INVOICE_LINES_SHEET].append(serialize_invoice_line(record))


def update_record(workbook: Workbook, sheet_name: str, key_value: str, *, field_values: Mapping[str, Any]) -> None:
    """Update selected columns for the row identified by its primary key.

    The function locates the row whose key column (the first column of the
    sheet) equals ``key_value``, validates that each requested field exists in
    the header row, and writes the serialized values into the corresponding
    cells. Only the specified fields are modified.

    Args:
        workbook (Workbook): Workbook containing ``sheet_name``.
        sheet_name (str): Worksheet holding the record.
        key_value (str): Primary key used to locate the target row.
        field_values (Mapping[str, Any]): Mapping of column names to
            replacement values.

    Raises:
        KeyError: If the record or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, sheet_name, SHEET_KEYS[sheet_name], key_value)
    if row_index is None:
        raise KeyError(f"Record not found in {sheet_name}: {key_value}")

    sheet = workbook[sheet_name]
    headers = list(sheet[1])
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(headers)}

    for field, value in field_values.items():
        if field not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {field}")
        # openpyxl ignores value=None in sheet.cell(), so assign through the cell.
        sheet.cell(row=row_index, column=header_map[field]).value = _serialize_cell(value)


def delete_records(workbook: Workbook, sheet_name: str, key_column: str, key_values: Iterable[str]) -> int:
    """Delete every row whose ``key_column`` value is in ``key_values``.

    Rows are removed bottom-up so earlier indices stay valid while deleting.

    Returns:
        int: Number of rows removed.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    targets = set(key_values)
    if not targets:
        return 0

    sheet = workbook[sheet_name]
    header_map = {cell.value: idx for idx, cell in enumerate(sheet[1])}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")
    key_index = header_map[key_column]

    matches = [
        row_idx
        for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2)
        if row[key_index] in targets
    ]
    for row_idx in reversed(matches):
        sheet.delete_rows(row_idx)
    return len(matches)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_cells = list(sheet[1])
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(header_cells)}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row[key_col_index - 1] == key_value:
            return row_idx

    return None


# ---------------------------------------------------------------------------
# Store queries
# ---------------------------------------------------------------------------


def find_client(workbook: Workbook, user_id: str, client_id: str) -> Optional[ClientRow]:
    """Return the client owned by ``user_id`` with ``client_id``, if any."""

    for client in iter_clients(workbook):
        if client.client_id == client_id and client.user_id == user_id:
            return client
    return None


def find_project(workbook: Workbook, user_id: str, project_id: str) -> Optional[ProjectRow]:
    """Return the project owned by ``user_id`` with ``project_id``, if any."""

    for project in iter_projects(workbook):
        if project.project_id == project_id and project.user_id == user_id:
            return project
    return None


def find_time_entry(workbook: Workbook, user_id: str, entry_id: str) -> Optional[TimeEntryRow]:
    """Return the time entry owned by ``user_id`` with ``entry_id``, if any."""

    for entry in iter_time_entries(workbook):
        if entry.entry_id == entry_id and entry.user_id == user_id:
            return entry
    return None


def find_invoice(workbook: Workbook, user_id: str, invoice_id: str) -> Optional[InvoiceRow]:
    """Return the invoice owned by ``user_id`` with ``invoice_id``, if any."""

    for invoice in iter_invoices(workbook):
        if invoice.invoice_id == invoice_id and invoice.user_id == user_id:
            return invoice
    return None


def find_invoice_line(workbook: Workbook, invoice_id: str, line_id: str) -> Optional[InvoiceLineRow]:
    """Return the line ``line_id`` when it belongs to ``invoice_id``."""

    for line in iter_invoice_lines(workbook):
        if line.line_id == line_id and line.invoice_id == invoice_id:
            return line
    return None


def list_invoice_lines(workbook: Workbook, invoice_id: str) -> List[InvoiceLineRow]:
    """Return the lines of ``invoice_id`` in sheet order."""

    return [line for line in iter_invoice_lines(workbook) if line.invoice_id == invoice_id]


def find_duplicate_name(
    workbook: Workbook,
    kind: SheetName,
    user_id: str,
    name: str,
    *,
    client_id: Optional[str] = None,
    exclude_id: Optional[str] = None,
) -> Optional[ClientRow | ProjectRow]:
    """Find a client or project whose trimmed name matches case-insensitively.

    Clients are scoped by ``user_id``; projects by ``user_id`` and
    ``client_id``. ``exclude_id`` skips the record being renamed.

    Raises:
        ValueError: If ``kind`` is not the clients or projects sheet.
    """

    wanted = name.strip().casefold()
    candidates: Iterable[ClientRow | ProjectRow]
    if kind is SheetName.CLIENTS:
        candidates = (c for c in iter_clients(workbook) if c.user_id == user_id)
        own_id: Callable[[Any], str] = lambda row: row.client_id
    elif kind is SheetName.PROJECTS:
        candidates = (
            p for p in iter_projects(workbook) if p.user_id == user_id and p.client_id == client_id
        )
        own_id = lambda row: row.project_id
    else:
        raise ValueError(f"Names are not unique-checked for sheet: {kind}")

    for row in candidates:
        if exclude_id is not None and own_id(row) == exclude_id:
            continue
        if row.name.strip().casefold() == wanted:
            return row
    return None


def find_time_entries_overlapping(
    workbook: Workbook,
    user_id: str,
    range_start: datetime,
    range_end: datetime,
    exclude_ids: Iterable[str] = (),
) -> List[TimeEntryDetail]:
    """Return the user's entries overlapping ``[range_start, range_end)``.

    Overlap uses the half-open test ``entry.start < range_end and range_start
    < entry.end``. Results are joined with project and client names and ordered
    by ``started_at`` then ``entry_id`` so the "first" conflict is stable.
    """

    excluded = set(exclude_ids)
    range_start = normalize_timestamp(range_start)
    range_end = normalize_timestamp(range_end)
    matches = [
        entry
        for entry in iter_time_entries(workbook)
        if entry.user_id == user_id
        and entry.entry_id not in excluded
        and entry.started_at < range_end
        and range_start < entry.ended_at
    ]
    if not matches:
        return []

    projects = {project.project_id: project for project in iter_projects(workbook)}
    clients = {client.client_id: client for client in iter_clients(workbook)}
    details: List[TimeEntryDetail] = []
    for entry in sorted(matches, key=lambda item: (item.started_at, item.entry_id)):
        project = projects.get(entry.project_id)
        client = clients.get(project.client_id) if project is not None else None
        details.append(
            TimeEntryDetail(
                entry=entry,
                project_name=project.name if project is not None else "",
                client_id=client.client_id if client is not None else None,
                client_name=client.name if client is not None else None,
            )
        )
    return details


def find_last_invoice_number_for_year(workbook: Workbook, user_id: str, year: int) -> Optional[str]:
    """Return the greatest invoice number the user holds for ``year``.

    The fixed-width ``INV-YYYY-NNNN`` format makes lexicographic order equal
    to numeric order, so a plain ``max`` over matching strings suffices.
    """

    prefix = f"{INVOICE_NUMBER_PREFIX}-{year:04d}-"
    numbers = [
        invoice.invoice_number
        for invoice in iter_invoices(workbook)
        if invoice.user_id == user_id and invoice.invoice_number.startswith(prefix)
    ]
    return max(numbers) if numbers else None


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _serialize_cell(value: Any) -> Any:
    """Convert a Python value into the representation stored in a cell.

    Datetimes become ISO-8601 text, decimals become their exact string form,
    and enums collapse to their values. Everything else passes through.
    """

    if isinstance(value, datetime):
        return normalize_timestamp(value).isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _as_text(raw: object) -> Optional[str]:
    if raw is None:
        return None
    return str(raw)


def _as_decimal(raw: object) -> Optional[Decimal]:
    if raw is None or raw == "":
        return None
    return Decimal(str(raw))


def _as_datetime(raw: object) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return normalize_timestamp(raw)
    return normalize_timestamp(datetime.fromisoformat(str(raw)))


def _as_bool(raw: object) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in {"true", "1", "yes"}
    return bool(raw)


def serialize_client(record: ClientRow) -> list[object]:
    """Convert a client dataclass into the ``Clients`` column ordering."""

    return [record.client_id, record.user_id, record.name, record.email]


def serialize_project(record: ProjectRow) -> list[object]:
    """Convert a project dataclass into the ``Projects`` column ordering."""

    return [
        record.project_id,
        record.user_id,
        record.client_id,
        record.name,
        record.description,
        _serialize_cell(record.hourly_rate),
    ]


def serialize_time_entry(record: TimeEntryRow) -> list[object]:
    """Convert a time entry into the ``TimeEntries`` column ordering."""

    return [
        record.entry_id,
        record.user_id,
        record.project_id,
        _serialize_cell(record.started_at),
        _serialize_cell(record.ended_at),
        record.note,
        record.is_locked,
        record.locked_by_invoice_id,
    ]


def serialize_invoice(record: InvoiceRow) -> list[object]:
    """Convert an invoice header into the ``Invoices`` column ordering."""

    return [
        record.invoice_id,
        record.user_id,
        record.client_id,
        record.invoice_number,
        _serialize_cell(record.status),
        _serialize_cell(record.date_from),
        _serialize_cell(record.date_to),
        _serialize_cell(record.sent_at),
        _serialize_cell(record.paid_at),
        _serialize_cell(record.paid_amount),
        record.pdf_url,
    ]


def serialize_invoice_line(record: InvoiceLineRow) -> list[object]:
    """Convert an invoice line into the ``InvoiceLines`` column ordering."""

    return [
        record.line_id,
        record.invoice_id,
        record.project_id,
        record.description,
        _serialize_cell(record.hours),
        _serialize_cell(record.rate),
        _serialize_cell(record.amount),
    ]


def deserialize_client(raw_row: Sequence[object]) -> ClientRow:
    """Convert a raw ``Clients`` row into a :class:`ClientRow`."""

    client_id, user_id, name, email = raw_row[:4]
    return ClientRow(
        client_id=str(client_id),
        user_id=str(user_id),
        name=str(name) if name is not None else "",
        email=_as_text(email),
    )


def deserialize_project(raw_row: Sequence[object]) -> ProjectRow:
    """Convert a raw ``Projects`` row into a :class:`ProjectRow`."""

    project_id, user_id, client_id, name, description, hourly_rate = raw_row[:6]
    return ProjectRow(
        project_id=str(project_id),
        user_id=str(user_id),
        client_id=str(client_id),
        name=str(name) if name is not None else "",
        description=_as_text(description),
        hourly_rate=_as_decimal(hourly_rate),
    )


def deserialize_time_entry(raw_row: Sequence[object]) -> TimeEntryRow:
    """Convert a raw ``TimeEntries`` row into a :class:`TimeEntryRow`.

    Raises:
        ValueError: If either timestamp cell is blank or not ISO-8601.
    """

    (
        entry_id,
        user_id,
        project_id,
        started_raw,
        ended_raw,
        note,
        is_locked,
        locked_by,
    ) = raw_row[:8]

    started_at = _as_datetime(started_raw)
    ended_at = _as_datetime(ended_raw)
    if started_at is None or ended_at is None:
        raise ValueError(f"Time entry {entry_id} is missing a timestamp")

    return TimeEntryRow(
        entry_id=str(entry_id),
        user_id=str(user_id),
        project_id=str(project_id),
        started_at=started_at,
        ended_at=ended_at,
        note=_as_text(note),
        is_locked=_as_bool(is_locked),
        locked_by_invoice_id=_as_text(locked_by),
    )


def deserialize_invoice(raw_row: Sequence[object]) -> InvoiceRow:
    """Convert a raw ``Invoices`` row into an :class:`InvoiceRow`.

    Raises:
        ValueError: If the date range cells are blank or not ISO-8601.
    """

    (
        invoice_id,
        user_id,
        client_id,
        invoice_number,
        status,
        date_from_raw,
        date_to_raw,
        sent_raw,
        paid_raw,
        paid_amount_raw,
        pdf_url,
    ) = raw_row[:11]

    date_from = _as_datetime(date_from_raw)
    date_to = _as_datetime(date_to_raw)
    if date_from is None or date_to is None:
        raise ValueError(f"Invoice {invoice_id} is missing its date range")

    return InvoiceRow(
        invoice_id=str(invoice_id),
        user_id=str(user_id),
        client_id=str(client_id),
        invoice_number=str(invoice_number),
        status=str(status),
        date_from=date_from,
        date_to=date_to,
        sent_at=_as_datetime(sent_raw),
        paid_at=_as_datetime(paid_raw),
        paid_amount=_as_decimal(paid_amount_raw),
        pdf_url=_as_text(pdf_url),
    )


def deserialize_invoice_line(raw_row: Sequence[object]) -> InvoiceLineRow:
    """Convert a raw ``InvoiceLines`` row into an :class:`InvoiceLineRow`."""

    line_id, invoice_id, project_id, description, hours, rate, amount = raw_row[:7]
    return InvoiceLineRow(
        line_id=str(line_id),
        invoice_id=str(invoice_id),
        project_id=str(project_id),
        description=str(description) if description is not None else "",
        hours=_as_decimal(hours) or Decimal("0"),
        rate=_as_decimal(rate) or Decimal("0"),
        amount=_as_decimal(amount) or Decimal("0"),
    )
