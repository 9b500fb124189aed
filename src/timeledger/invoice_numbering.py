"""Per-user, per-year invoice number sequencing (``INV-YYYY-NNNN``)."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Optional

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import INVOICE_NUMBER_PREFIX


INVOICE_NUMBER_PATTERN = re.compile(rf"^{INVOICE_NUMBER_PREFIX}-(\d{{4}})-(\d{{4}})$")


@dataclass(frozen=True)
class InvoiceNumber:
    year: int
    sequence: int


def format_invoice_number(year: int, sequence: int) -> str:
    """Format ``year`` and ``sequence`` as ``INV-YYYY-NNNN``.

    >>> format_invoice_number(2025, 7)
    'INV-2025-0007'
    """

    return f"{INVOICE_NUMBER_PREFIX}-{year:04d}-{sequence:04d}"


def parse_invoice_number(value: str) -> Optional[InvoiceNumber]:
    """Extract year and sequence from ``value``; ``None`` when it does not match."""

    match = INVOICE_NUMBER_PATTERN.match(value or "")
    if match is None:
        return None
    return InvoiceNumber(year=int(match.group(1)), sequence=int(match.group(2)))


def is_valid_invoice_number(value: str) -> bool:
    return parse_invoice_number(value) is not None


def next_invoice_number(workbook: Workbook, user_id: str, today: Optional[date] = None) -> str:
    """Return the next free invoice number for ``user_id`` in the current year.

    The greatest existing number for the year is incremented; a user with no
    invoice for the year starts again at ``0001``.

    Args:
        workbook (Workbook): Workbook holding the ``Invoices`` sheet.
        user_id (str): Owner whose sequence is advanced.
        today (date | None): Reference date; defaults to the current UTC date.

    Returns:
        str: Formatted invoice number. Nothing is reserved; a concurrent
            caller may compute the same value, which the store's uniqueness
            check on insert rejects.
    """

    year = (today or datetime.now(UTC).date()).year
    last = data_manager.find_last_invoice_number_for_year(workbook, user_id, year)

    sequence = 1
    if last is not None:
        parsed = parse_invoice_number(last)
        if parsed is not None and parsed.year == year:
            sequence = parsed.sequence + 1

    number = format_invoice_number(year, sequence)
    log.debug("Next invoice number for user '%s': %s", user_id, number)
    return number
