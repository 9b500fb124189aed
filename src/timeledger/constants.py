"""Enumerations and rule constants shared across timeledger modules.

Centralises domain constants so that the data access layer (DAL), the rule
engine, and the CLI rely on a single source of truth for identifiers and
limits.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

MAX_NAME_LENGTH = 255
DEFAULT_MAX_ENTRY_HOURS = 24
MIN_ENTRY_DURATION = timedelta(minutes=1)
DEFAULT_MAX_BULK_ENTRIES = 50

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
TOP_RANKING_SIZE = 5
PEAK_HOURS_SIZE = 3

MILLISECONDS_PER_HOUR = Decimal(3_600_000)
CENT = Decimal("0.01")

INVOICE_NUMBER_PREFIX = "INV"


class InvoiceStatus(str, Enum):
    """Enumerate the invoice lifecycle states, in forward order."""

    DRAFT = "DRAFT"
    SENT = "SENT"
    PAID = "PAID"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    CLIENTS = "Clients"
    PROJECTS = "Projects"
    TIME_ENTRIES = "TimeEntries"
    INVOICES = "Invoices"
    INVOICE_LINES = "InvoiceLines"


class SummaryGrouping(str, Enum):
    """Enumerate the supported report groupings."""

    CLIENT = "client"
    PROJECT = "project"


class DashboardPeriod(str, Enum):
    """Enumerate the dashboard windows, each ending now."""

    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


class AnalyticsGrouping(str, Enum):
    """Enumerate the calendar buckets used by time analytics."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "MAX_NAME_LENGTH",
    "DEFAULT_MAX_ENTRY_HOURS",
    "MIN_ENTRY_DURATION",
    "DEFAULT_MAX_BULK_ENTRIES",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "TOP_RANKING_SIZE",
    "PEAK_HOURS_SIZE",
    "MILLISECONDS_PER_HOUR",
    "CENT",
    "INVOICE_NUMBER_PREFIX",
    "InvoiceStatus",
    "SheetName",
    "SummaryGrouping",
    "DashboardPeriod",
    "AnalyticsGrouping",
]
