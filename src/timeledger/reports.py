"""Read-only reports over a user's time entries and invoices.

Every report works from the same joined view: entries with ``started_at``
inside a closed range, each paired with its project's current hourly rate.
Entries whose project is gone are skipped. Sums accumulate unrounded and
only the figures handed back pass through :func:`round2`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
import math
from typing import Dict, List, Optional, Tuple, Union

from . import data_manager, log
from .calculations import (
    ZERO,
    BillableEntry,
    ClientTotals,
    ProjectTotals,
    calculate_percentage,
    calculate_totals,
    group_by_client,
    group_by_project,
    round2,
)
from .constants import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    PEAK_HOURS_SIZE,
    TOP_RANKING_SIZE,
    AnalyticsGrouping,
    DashboardPeriod,
    InvoiceStatus,
    SummaryGrouping,
)
from .core_logic import RuntimeContext, _resolve_timestamp
from .errors import InvalidDateRange
from .invoicing import list_invoices
from .time_entries import list_time_entries


WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")

JoinedEntry = Tuple[data_manager.TimeEntryRow, BillableEntry]


@dataclass(frozen=True)
class SummaryReport:
    """Rounded totals for a period, grouped by client or project."""

    group_by: SummaryGrouping
    start: datetime
    end: datetime
    groups: List[Union[ClientTotals, ProjectTotals]]
    total_hours: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class DetailedEntry:
    entry: data_manager.TimeEntryRow
    project_name: str
    client_id: Optional[str]
    client_name: Optional[str]
    duration_hours: Decimal
    amount: Decimal


@dataclass(frozen=True)
class Pagination:
    page: int
    page_size: int
    total_count: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size)


@dataclass(frozen=True)
class DetailedReport:
    """One page of entries plus totals over every matching entry."""

    start: datetime
    end: datetime
    entries: List[DetailedEntry]
    pagination: Pagination
    total_hours: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class Dashboard:
    """Headline figures for a window ending at ``end``."""

    period: DashboardPeriod
    start: datetime
    end: datetime
    total_hours: Decimal
    total_amount: Decimal
    total_invoiced: Decimal
    total_paid: Decimal
    pending_amount: Decimal
    active_projects: int
    active_clients: int
    time_entries_count: int
    invoices_count: int
    invoices_by_status: Dict[str, int]


@dataclass(frozen=True)
class PeriodTotals:
    period: str
    total_hours: Decimal
    total_amount: Decimal
    entries_count: int
    projects_count: int
    clients_count: int
    average_hours_per_entry: Decimal


@dataclass(frozen=True)
class TimeAnalytics:
    group_by: AnalyticsGrouping
    start: datetime
    end: datetime
    periods: List[PeriodTotals]
    average_hours_per_period: Decimal
    average_amount_per_period: Decimal
    most_productive: Optional[PeriodTotals]


@dataclass(frozen=True)
class WeekdayHours:
    day: str
    hours: Decimal
    percentage: Decimal


@dataclass(frozen=True)
class RankedProject:
    name: str
    client_name: Optional[str]
    hours: Decimal
    amount: Decimal
    percentage: Decimal


@dataclass(frozen=True)
class RankedClient:
    name: Optional[str]
    hours: Decimal
    amount: Decimal
    projects_count: int
    percentage: Decimal


@dataclass(frozen=True)
class HourLoad:
    hour: int
    hours: Decimal


@dataclass(frozen=True)
class ProductivityReport:
    """Working patterns over a range: weekdays, busiest hours, top work."""

    start: datetime
    end: datetime
    total_days: int
    total_hours: Decimal
    total_amount: Decimal
    average_hours_per_day: Decimal
    average_session_hours: Decimal
    total_sessions: int
    unique_projects: int
    unique_clients: int
    daily_distribution: List[WeekdayHours]
    top_projects: List[RankedProject]
    top_clients: List[RankedClient]
    peak_hours: List[HourLoad]


def _checked_range(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    start = data_manager.normalize_timestamp(start)
    end = data_manager.normalize_timestamp(end)
    if end <= start:
        log.warning("Rejected report range %s to %s", start, end)
        raise InvalidDateRange(
            "End date must be after start date",
            detail="endDate must be greater than startDate",
        )
    return start, end


def _collect(
    context: RuntimeContext,
    user_id: str,
    start: datetime,
    end: datetime,
    *,
    client_id: Optional[str] = None,
    project_id: Optional[str] = None,
) -> List[JoinedEntry]:
    """Join the user's entries in ``[start, end]`` to their projects, newest first."""
    entries = list_time_entries(
        context, user_id, project_id=project_id, client_id=client_id, start=start, end=end
    )
    projects: Dict[str, data_manager.ProjectRow] = {
        project.project_id: project
        for project in data_manager.iter_projects(context.workbook)
        if project.user_id == user_id
    }
    clients: Dict[str, data_manager.ClientRow] = {
        client.client_id: client
        for client in data_manager.iter_clients(context.workbook)
        if client.user_id == user_id
    }

    joined: List[JoinedEntry] = []
    for entry in entries:
        project = projects.get(entry.project_id)
        if project is None:
            log.warning("Skipping time entry '%s' with unknown project '%s'", entry.entry_id, entry.project_id)
            continue
        joined.append((entry, BillableEntry.from_rows(entry, project, clients.get(project.client_id))))
    return joined


def summarize_time(
    context: RuntimeContext,
    user_id: str,
    start: datetime,
    end: datetime,
    group_by: Union[SummaryGrouping, str],
    client_id: Optional[str] = None,
    project_id: Optional[str] = None,
) -> SummaryReport:
    """Summarize the user's time with ``started_at`` in ``[start, end]``.

    Locked and unlocked entries are both counted. Amounts use each project's
    current hourly rate (0 when unset). Sums stay unrounded until the report is
    built, then every figure is rounded half-up to cents.

    Raises:
        InvalidDateRange: If ``end`` is not after ``start``.
        ValueError: If ``group_by`` is neither ``client`` nor ``project``.
    """
    grouping = SummaryGrouping(group_by)
    start, end = _checked_range(start, end)
    joined = _collect(context, user_id, start, end, client_id=client_id, project_id=project_id)
    billable = [item for _, item in reversed(joined)]

    if grouping is SummaryGrouping.CLIENT:
        groups: List[Union[ClientTotals, ProjectTotals]] = [
            totals.rounded() for totals in group_by_client(billable).values()
        ]
    else:
        groups = [totals.rounded() for totals in group_by_project(billable).values()]

    totals = calculate_totals(billable)
    log.debug(
        "Summarized %s entries for user '%s' by %s (%s hours)",
        len(billable),
        user_id,
        grouping.value,
        totals.total_hours,
    )
    return SummaryReport(
        group_by=grouping,
        start=start,
        end=end,
        groups=groups,
        total_hours=totals.total_hours,
        total_amount=totals.total_amount,
    )


def detailed_report(
    context: RuntimeContext,
    user_id: str,
    start: datetime,
    end: datetime,
    *,
    client_id: Optional[str] = None,
    project_id: Optional[str] = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> DetailedReport:
    """Return one page of entries, newest first, each with its hours and amount.

    Totals cover every matching entry, not only the page.

    Raises:
        InvalidDateRange: If ``end`` is not after ``start``.
        ValueError: If ``page`` is below 1 or ``page_size`` is outside 1..100.
    """
    if page < 1:
        raise ValueError(f"page must be at least 1, got {page}")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}, got {page_size}")
    start, end = _checked_range(start, end)

    joined = _collect(context, user_id, start, end, client_id=client_id, project_id=project_id)
    totals = calculate_totals(item for _, item in joined)
    offset = (page - 1) * page_size
    rows = [
        DetailedEntry(
            entry=entry,
            project_name=item.project_name,
            client_id=item.client_id,
            client_name=item.client_name,
            duration_hours=round2(item.hours),
            amount=round2(item.amount),
        )
        for entry, item in joined[offset : offset + page_size]
    ]
    return DetailedReport(
        start=start,
        end=end,
        entries=rows,
        pagination=Pagination(page=page, page_size=page_size, total_count=len(joined)),
        total_hours=totals.total_hours,
        total_amount=totals.total_amount,
    )


def period_start(period: Union[DashboardPeriod, str], now: datetime) -> datetime:
    """First instant of the dashboard window ending at ``now`` (UTC)."""
    window = DashboardPeriod(period)
    now = data_manager.normalize_timestamp(now).astimezone(UTC)
    if window is DashboardPeriod.WEEK:
        return now - timedelta(days=7)
    midnight = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if window is DashboardPeriod.QUARTER:
        return midnight.replace(month=(now.month - 1) // 3 * 3 + 1)
    if window is DashboardPeriod.YEAR:
        return midnight.replace(month=1)
    return midnight


def dashboard(
    context: RuntimeContext,
    user_id: str,
    period: Union[DashboardPeriod, str] = DashboardPeriod.MONTH,
    *,
    now: Optional[datetime] = None,
) -> Dashboard:
    """Collect time and invoice figures for the window ending ``now``.

    Invoices count toward the window when their billing period ends inside
    it. A paid invoice contributes its recorded payment, or its line total
    when no payment amount was recorded.
    """
    window = DashboardPeriod(period)
    end = _resolve_timestamp(now)
    start = period_start(window, end)

    billable = [item for _, item in _collect(context, user_id, start, end)]
    totals = calculate_totals(billable)

    invoiced = ZERO
    paid = ZERO
    by_status: Dict[str, int] = {}
    invoices = [
        detail for detail in list_invoices(context, user_id) if start <= detail.invoice.date_to <= end
    ]
    for detail in invoices:
        invoice = detail.invoice
        invoiced += detail.total_amount
        by_status[invoice.status] = by_status.get(invoice.status, 0) + 1
        if invoice.status == InvoiceStatus.PAID.value:
            paid += invoice.paid_amount if invoice.paid_amount is not None else detail.total_amount

    log.debug("Built %s dashboard for user '%s' from %s", window.value, user_id, start)
    return Dashboard(
        period=window,
        start=start,
        end=end,
        total_hours=totals.total_hours,
        total_amount=totals.total_amount,
        total_invoiced=round2(invoiced),
        total_paid=round2(paid),
        pending_amount=round2(invoiced - paid),
        active_projects=len({item.project_id for item in billable}),
        active_clients=len({item.client_id for item in billable if item.client_id is not None}),
        time_entries_count=len(billable),
        invoices_count=len(invoices),
        invoices_by_status=by_status,
    )


def _period_key(started_at: datetime, grouping: AnalyticsGrouping) -> str:
    day = started_at.astimezone(UTC).date()
    if grouping is AnalyticsGrouping.WEEK:
        # Weeks start on Sunday.
        return (day - timedelta(days=(day.weekday() + 1) % 7)).isoformat()
    if grouping is AnalyticsGrouping.MONTH:
        return f"{day.year}-{day.month:02d}"
    return day.isoformat()


def time_analytics(
    context: RuntimeContext,
    user_id: str,
    start: datetime,
    end: datetime,
    group_by: Union[AnalyticsGrouping, str] = AnalyticsGrouping.DAY,
) -> TimeAnalytics:
    """Bucket the user's time by day, week, or month, oldest first.

    Averages across periods are taken over the rounded period totals. The
    most productive period is the earliest one with the most hours.
    """
    grouping = AnalyticsGrouping(group_by)
    start, end = _checked_range(start, end)
    joined = _collect(context, user_id, start, end)

    buckets: Dict[str, List[BillableEntry]] = {}
    for _, item in reversed(joined):
        buckets.setdefault(_period_key(item.started_at, grouping), []).append(item)

    periods = []
    for key, items in buckets.items():
        hours = sum((item.hours for item in items), ZERO)
        periods.append(
            PeriodTotals(
                period=key,
                total_hours=round2(hours),
                total_amount=round2(sum((item.amount for item in items), ZERO)),
                entries_count=len(items),
                projects_count=len({item.project_id for item in items}),
                clients_count=len({item.client_id for item in items if item.client_id is not None}),
                average_hours_per_entry=round2(hours / len(items)),
            )
        )

    most_productive: Optional[PeriodTotals] = None
    for candidate in periods:
        if most_productive is None or candidate.total_hours > most_productive.total_hours:
            most_productive = candidate

    count = len(periods)
    return TimeAnalytics(
        group_by=grouping,
        start=start,
        end=end,
        periods=periods,
        average_hours_per_period=round2(sum((p.total_hours for p in periods), ZERO) / count) if count else round2(ZERO),
        average_amount_per_period=round2(sum((p.total_amount for p in periods), ZERO) / count) if count else round2(ZERO),
        most_productive=most_productive,
    )


def productivity_report(
    context: RuntimeContext,
    user_id: str,
    start: datetime,
    end: datetime,
) -> ProductivityReport:
    """Describe when and on what the user worked between ``start`` and ``end``.

    Weekdays and hours of day are read in UTC. Percentages are shares of the
    total hours and are 0 when nothing was logged.
    """
    start, end = _checked_range(start, end)
    billable = [item for _, item in reversed(_collect(context, user_id, start, end))]

    total_hours = sum((item.hours for item in billable), ZERO)
    total_amount = sum((item.amount for item in billable), ZERO)
    total_days = math.ceil((end - start) / timedelta(days=1))

    weekday_hours = [ZERO] * 7
    hour_load = [ZERO] * 24
    for item in billable:
        moment = item.started_at.astimezone(UTC)
        weekday_hours[(moment.weekday() + 1) % 7] += item.hours
        hour_load[moment.hour] += item.hours

    project_groups = sorted(
        group_by_project(billable).values(), key=lambda group: group.total_hours, reverse=True
    )
    client_groups = sorted(
        group_by_client(billable).values(), key=lambda group: group.total_hours, reverse=True
    )
    peak = sorted(
        (HourLoad(hour=hour, hours=round2(hours)) for hour, hours in enumerate(hour_load) if hours > 0),
        key=lambda load: load.hours,
        reverse=True,
    )

    return ProductivityReport(
        start=start,
        end=end,
        total_days=total_days,
        total_hours=round2(total_hours),
        total_amount=round2(total_amount),
        average_hours_per_day=round2(total_hours / total_days),
        average_session_hours=round2(total_hours / len(billable)) if billable else round2(ZERO),
        total_sessions=len(billable),
        unique_projects=len(project_groups),
        unique_clients=len(client_groups),
        daily_distribution=[
            WeekdayHours(day=name, hours=round2(hours), percentage=calculate_percentage(hours, total_hours))
            for name, hours in zip(WEEKDAY_NAMES, weekday_hours)
        ],
        top_projects=[
            RankedProject(
                name=group.project_name,
                client_name=group.client_name,
                hours=round2(group.total_hours),
                amount=round2(group.total_amount),
                percentage=calculate_percentage(group.total_hours, total_hours),
            )
            for group in project_groups[:TOP_RANKING_SIZE]
        ],
        top_clients=[
            RankedClient(
                name=group.client_name,
                hours=round2(group.total_hours),
                amount=round2(group.total_amount),
                projects_count=len(group.projects),
                percentage=calculate_percentage(group.total_hours, total_hours),
            )
            for group in client_groups[:TOP_RANKING_SIZE]
        ],
        peak_hours=peak[:PEAK_HOURS_SIZE],
    )
