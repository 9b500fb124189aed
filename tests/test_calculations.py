"""Unit tests for the pure duration, amount, and rollup helpers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from timeledger import calculations
from timeledger.calculations import BillableEntry
from timeledger.data_manager import ClientRow, ProjectRow, TimeEntryRow


START = datetime(2025, 3, 3, 9, tzinfo=UTC)


def _billable(entry_id, project_id, minutes, rate, *, client_id="C1", offset_hours=0):
    started = START + timedelta(hours=offset_hours)
    return BillableEntry(
        entry_id=entry_id,
        project_id=project_id,
        project_name=f"Project {project_id}",
        client_id=client_id,
        client_name=f"Client {client_id}",
        started_at=started,
        ended_at=started + timedelta(minutes=minutes),
        hourly_rate=None if rate is None else Decimal(rate),
    )


def test_duration_hours_measures_whole_milliseconds():
    """Sub-millisecond precision should be discarded before dividing."""

    end = START + timedelta(minutes=90, microseconds=999)
    assert calculations.duration_hours(START, end) == Decimal("1.5")


def test_entry_amount_is_unrounded():
    """Amounts keep full precision until a caller rounds them."""

    end = START + timedelta(minutes=20)
    amount = calculations.entry_amount(START, end, Decimal("10"))
    assert amount != calculations.round2(amount)
    assert calculations.round2(amount) == Decimal("3.33")


@pytest.mark.parametrize(
    ("value", "expected"),
    [("2.345", "2.35"), ("2.344", "2.34"), ("-1.005", "-1.01"), ("0", "0.00")],
)
def test_round2_rounds_half_up(value, expected):
    """round2 should round half away from zero to two places."""

    assert calculations.round2(Decimal(value)) == Decimal(expected)


def test_line_amount_rounds_product():
    """Line amounts are the rounded product of hours and rate."""

    assert calculations.line_amount(Decimal("3.50"), Decimal("50.00")) == Decimal("175.00")
    assert calculations.line_amount(Decimal("0.33"), Decimal("33.33")) == Decimal("11.00")


def test_calculate_totals_rounds_once_at_the_end():
    """Summing unrounded amounts avoids drift from per-entry rounding."""

    entries = [
        _billable("E1", "P1", 20, "10"),
        _billable("E2", "P1", 20, "10", offset_hours=1),
        _billable("E3", "P1", 20, "10", offset_hours=2),
    ]

    totals = calculations.calculate_totals(entries)
    assert totals.total_hours == Decimal("1.00")
    assert totals.total_amount == Decimal("10.00")


def test_calculate_totals_treats_missing_rate_as_zero():
    """Entries on unbilled projects contribute hours but no money."""

    totals = calculations.calculate_totals([_billable("E1", "P1", 120, None)])
    assert totals.total_hours == Decimal("2.00")
    assert totals.total_amount == Decimal("0.00")


def test_group_by_project_keeps_first_seen_order():
    """Project buckets accumulate hours, amounts, and entry ids."""

    groups = calculations.group_by_project(
        [
            _billable("E1", "P2", 60, "20"),
            _billable("E2", "P1", 120, "50", offset_hours=1),
            _billable("E3", "P2", 30, "20", offset_hours=3),
        ]
    )

    assert list(groups) == ["P2", "P1"]
    p2 = groups["P2"].rounded()
    assert p2.total_hours == Decimal("1.50")
    assert p2.total_amount == Decimal("30.00")
    assert p2.entry_ids == ["E1", "E3"]
    assert groups["P1"].hourly_rate == Decimal("50")


def test_group_by_client_builds_project_breakdown():
    """Client buckets carry a nested per-project breakdown."""

    groups = calculations.group_by_client(
        [
            _billable("E1", "P1", 120, "50"),
            _billable("E2", "P2", 60, "30", offset_hours=2),
            _billable("E3", "P3", 60, "40", client_id="C2", offset_hours=4),
        ]
    )

    acme = groups["C1"].rounded()
    assert acme.total_hours == Decimal("3.00")
    assert acme.total_amount == Decimal("130.00")
    assert set(acme.projects) == {"P1", "P2"}
    assert acme.projects["P2"].amount == Decimal("30.00")
    assert groups["C2"].client_name == "Client C2"


def test_billable_entry_from_rows_falls_back_to_project_client():
    """Without a client row the project's client id is still recorded."""

    entry = TimeEntryRow("E1", "u", "P1", START, START + timedelta(hours=1), None, False)
    project = ProjectRow("P1", "u", "C1", "Website", None, Decimal("50"))

    billable = BillableEntry.from_rows(entry, project)
    assert billable.client_id == "C1"
    assert billable.client_name is None
    assert billable.amount == Decimal("50")

    named = BillableEntry.from_rows(entry, project, ClientRow("C1", "u", "Acme", None))
    assert named.client_name == "Acme"


@pytest.mark.parametrize(
    ("hours", "expected"),
    [("1", "1 hour"), ("2.5", "2.5 hours"), ("0.333", "0.33 hours"), ("3", "3 hours")],
)
def test_format_hours(hours, expected):
    """Hours render without trailing zeros and pluralise correctly."""

    assert calculations.format_hours(Decimal(hours)) == expected


def test_format_currency_uses_symbols_and_codes():
    """Known currencies get a symbol; others are prefixed with their code."""

    assert calculations.format_currency(Decimal("1234.5")) == "$1,234.50"
    assert calculations.format_currency(Decimal("10"), "eur") == "€10.00"
    assert calculations.format_currency(Decimal("10"), "CHF") == "CHF 10.00"
    assert calculations.format_currency(Decimal("-5")) == "-$5.00"


def test_calculate_percentage_handles_zero_total():
    """A zero denominator yields 0.00 instead of dividing."""

    assert calculations.calculate_percentage(Decimal("1"), Decimal("0")) == Decimal("0.00")
    assert calculations.calculate_percentage(Decimal("1"), Decimal("3")) == Decimal("33.33")
