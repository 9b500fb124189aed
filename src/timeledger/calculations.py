"""Pure duration, amount, and aggregation helpers.

Nothing in this module touches the workbook. All arithmetic is done with
:class:`~decimal.Decimal`; sums accumulate unrounded values and only the
outputs pass through :func:`round2`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional

from .constants import CENT, MILLISECONDS_PER_HOUR
from .data_manager import ClientRow, ProjectRow, TimeEntryRow


ZERO = Decimal("0")

_CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£"}


@dataclass(frozen=True)
class BillableEntry:
    """A time entry joined with the rate and names needed for rollups."""

    entry_id: str
    project_id: str
    project_name: str
    client_id: Optional[str]
    client_name: Optional[str]
    started_at: datetime
    ended_at: datetime
    hourly_rate: Optional[Decimal]

    @classmethod
    def from_rows(cls, entry: TimeEntryRow, project: ProjectRow, client: Optional[ClientRow] = None) -> "BillableEntry":
        return cls(
            entry_id=entry.entry_id,
            project_id=project.project_id,
            project_name=project.name,
            client_id=client.client_id if client is not None else project.client_id,
            client_name=client.name if client is not None else None,
            started_at=entry.started_at,
            ended_at=entry.ended_at,
            hourly_rate=project.hourly_rate,
        )

    @property
    def hours(self) -> Decimal:
        return duration_hours(self.started_at, self.ended_at)

    @property
    def amount(self) -> Decimal:
        return entry_amount(self.started_at, self.ended_at, self.hourly_rate or ZERO)


@dataclass(frozen=True)
class Totals:
    total_hours: Decimal
    total_amount: Decimal


@dataclass
class ProjectTotals:
    """Running, unrounded totals for one project."""

    project_id: str
    project_name: str
    client_id: Optional[str]
    client_name: Optional[str]
    hourly_rate: Decimal
    total_hours: Decimal = ZERO
    total_amount: Decimal = ZERO
    entry_ids: List[str] = field(default_factory=list)

    def rounded(self) -> "ProjectTotals":
        return ProjectTotals(
            project_id=self.project_id,
            project_name=self.project_name,
            client_id=self.client_id,
            client_name=self.client_name,
            hourly_rate=self.hourly_rate,
            total_hours=round2(self.total_hours),
            total_amount=round2(self.total_amount),
            entry_ids=list(self.entry_ids),
        )


@dataclass
class ProjectBreakdown:
    project_id: str
    name: str
    hours: Decimal = ZERO
    amount: Decimal = ZERO


@dataclass
class ClientTotals:
    """Running, unrounded totals for one client with a per-project breakdown."""

    client_id: Optional[str]
    client_name: Optional[str]
    total_hours: Decimal = ZERO
    total_amount: Decimal = ZERO
    projects: Dict[str, ProjectBreakdown] = field(default_factory=dict)

    def rounded(self) -> "ClientTotals":
        return ClientTotals(
            client_id=self.client_id,
            client_name=self.client_name,
            total_hours=round2(self.total_hours),
            total_amount=round2(self.total_amount),
            projects={
                key: ProjectBreakdown(
                    project_id=item.project_id,
                    name=item.name,
                    hours=round2(item.hours),
                    amount=round2(item.amount),
                )
                for key, item in self.projects.items()
            },
        )


def duration_hours(start: datetime, end: datetime) -> Decimal:
    """Return the span between ``start`` and ``end`` in hours, unrounded.

    The span is measured in whole milliseconds and divided by 3,600,000, so
    sub-millisecond precision is discarded.
    """

    delta = end - start
    milliseconds = (delta.days * 86_400_000) + (delta.seconds * 1000) + (delta.microseconds // 1000)
    return Decimal(milliseconds) / MILLISECONDS_PER_HOUR


def entry_amount(start: datetime, end: datetime, rate: Decimal) -> Decimal:
    return duration_hours(start, end) * rate


def round2(value: Decimal) -> Decimal:
    """Round half-up to two decimal places.

    >>> round2(Decimal("2.345"))
    Decimal('2.35')
    """

    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def line_amount(hours: Decimal, rate: Decimal) -> Decimal:
    """Amount of an invoice line: ``round2(hours * rate)``."""

    return round2(hours * rate)


def calculate_totals(entries: Iterable[BillableEntry]) -> Totals:
    """Sum hours and amounts across ``entries``, rounding once at the end."""

    hours = ZERO
    amount = ZERO
    for entry in entries:
        hours += entry.hours
        amount += entry.amount
    return Totals(total_hours=round2(hours), total_amount=round2(amount))


def group_by_project(entries: Iterable[BillableEntry]) -> Dict[str, ProjectTotals]:
    """Fold ``entries`` into per-project running totals.

    Keys keep first-seen order. Values are unrounded; call
    :meth:`ProjectTotals.rounded` before presenting them.
    """

    groups: Dict[str, ProjectTotals] = {}
    for entry in entries:
        bucket = groups.get(entry.project_id)
        if bucket is None:
            bucket = ProjectTotals(
                project_id=entry.project_id,
                project_name=entry.project_name,
                client_id=entry.client_id,
                client_name=entry.client_name,
                hourly_rate=entry.hourly_rate or ZERO,
            )
            groups[entry.project_id] = bucket
        bucket.total_hours += entry.hours
        bucket.total_amount += entry.amount
        bucket.entry_ids.append(entry.entry_id)
    return groups


def group_by_client(entries: Iterable[BillableEntry]) -> Dict[Optional[str], ClientTotals]:
    """Fold ``entries`` into per-client running totals with project breakdowns."""

    groups: Dict[Optional[str], ClientTotals] = {}
    for entry in entries:
        bucket = groups.get(entry.client_id)
        if bucket is None:
            bucket = ClientTotals(client_id=entry.client_id, client_name=entry.client_name)
            groups[entry.client_id] = bucket
        hours = entry.hours
        amount = entry.amount
        bucket.total_hours += hours
        bucket.total_amount += amount

        project = bucket.projects.get(entry.project_id)
        if project is None:
            project = ProjectBreakdown(project_id=entry.project_id, name=entry.project_name)
            bucket.projects[entry.project_id] = project
        project.hours += hours
        project.amount += amount
    return groups


def format_hours(hours: Decimal) -> str:
    """Render hours for display, e.g. ``"1 hour"`` or ``"2.5 hours"``."""

    rounded = round2(hours)
    text = format(rounded.normalize(), "f")
    return f"{text} {'hour' if rounded == 1 else 'hours'}"


def format_currency(amount: Decimal, currency: str = "USD") -> str:
    """Render ``amount`` with thousands separators and two decimals.

    Known currencies use their symbol (``$1,234.50``); any other code is
    prefixed verbatim (``CHF 1,234.50``).
    """

    rounded = round2(amount)
    body = f"{abs(rounded):,.2f}"
    symbol = _CURRENCY_SYMBOLS.get(currency.upper())
    text = f"{symbol}{body}" if symbol else f"{currency.upper()} {body}"
    return f"-{text}" if rounded < 0 else text


def calculate_percentage(value: Decimal, total: Decimal) -> Decimal:
    if total == 0:
        return round2(ZERO)
    return round2(Decimal(value) / Decimal(total) * 100)
