"""Tests for the time-entry workflows against a real ledger workbook."""

from __future__ import annotations

from decimal import Decimal

import pytest

from timeledger import core_logic, data_manager, time_entries
from timeledger.errors import (
    BatchTooLarge,
    DurationTooLong,
    EntityNotFound,
    EntriesNotFound,
    InvalidTimeRange,
    OutsideBusinessHours,
    TimeEntryLocked,
    TimeEntryOverlap,
)
from timeledger.time_entries import TimeEntryCommand


USER_ID = "user-alice"
OTHER_USER_ID = "user-bob"


def _log(ledger, start, end, note=None):
    return time_entries.create_time_entry(
        ledger.context, USER_ID, TimeEntryCommand(ledger.project.project_id, start, end, note)
    )


def _lock(context, entry_id, invoice_id="I-1"):
    data_manager.update_record(
        context.workbook,
        data_manager.TIME_ENTRIES_SHEET,
        entry_id,
        field_values={"IsLocked": True, "LockedByInvoiceID": invoice_id},
    )


def _context_with(config_factory, **overrides):
    bundle = config_factory(**overrides)
    context = core_logic.load_runtime_context(bundle.config_path)
    client = core_logic.create_client(context, USER_ID, core_logic.ClientCommand(name="Acme"))
    project = core_logic.create_project(
        context, USER_ID, core_logic.ProjectCommand(client_id=client.client_id, name="Website")
    )
    return context, project


def test_create_time_entry_persists_unlocked(ledger, at):
    """A valid entry is written unlocked with a trimmed note."""

    entry = _log(ledger, at(9), at(10, 30), note="  kickoff  ")

    assert entry.is_locked is False
    assert entry.note == "kickoff"
    reloaded = data_manager.refresh_workbook(ledger.context.settings.data_file)
    assert data_manager.find_time_entry(reloaded, USER_ID, entry.entry_id) == entry


def test_create_time_entry_treats_naive_input_as_utc(ledger, at):
    """Naive datetimes are stored as UTC instants."""

    entry = _log(ledger, at(9).replace(tzinfo=None), at(10).replace(tzinfo=None))
    assert entry.started_at == at(9)


def test_create_time_entry_rejects_foreign_project(ledger, at):
    """Logging against another user's project is a not-found error."""

    with pytest.raises(EntityNotFound):
        time_entries.create_time_entry(
            ledger.context, OTHER_USER_ID, TimeEntryCommand(ledger.project.project_id, at(9), at(10))
        )


def test_create_time_entry_validates_duration(ledger, at):
    """Reversed and overlong ranges are rejected and nothing is stored."""

    with pytest.raises(InvalidTimeRange):
        _log(ledger, at(10), at(9))
    with pytest.raises(DurationTooLong):
        _log(ledger, at(0), at(1, day=4, minute=1))

    assert time_entries.list_time_entries(ledger.context, USER_ID) == []


def test_create_time_entry_rejects_overlap(ledger, at):
    """A second entry overlapping the first is refused; adjacent is fine."""

    first = _log(ledger, at(9), at(10))
    _log(ledger, at(10), at(11))

    with pytest.raises(TimeEntryOverlap) as excinfo:
        _log(ledger, at(9, 30), at(9, 45))
    assert excinfo.value.extra["conflictingEntry"]["id"] == first.entry_id


def test_business_hours_are_enforced_when_configured(config_factory, at):
    """Configured business hours reject entries outside the window."""

    context, project = _context_with(config_factory, business_hours=(9, 17))

    with pytest.raises(OutsideBusinessHours):
        time_entries.create_time_entry(context, USER_ID, TimeEntryCommand(project.project_id, at(7), at(8)))
    time_entries.create_time_entry(context, USER_ID, TimeEntryCommand(project.project_id, at(9), at(17)))


def test_configured_maximum_duration_applies(config_factory, at):
    """MaxEntryHours in the config caps single entries."""

    context, project = _context_with(config_factory, max_entry_hours=4)

    with pytest.raises(DurationTooLong) as excinfo:
        time_entries.create_time_entry(context, USER_ID, TimeEntryCommand(project.project_id, at(9), at(14)))
    assert excinfo.value.message == "Time entry duration cannot exceed 4 hours"


def test_list_time_entries_filters_and_orders(ledger, at):
    """Entries come back newest first, bounded inclusively on started_at."""

    early = _log(ledger, at(9, day=1), at(10, day=1))
    middle = _log(ledger, at(9, day=2), at(10, day=2))
    late = _log(ledger, at(9, day=3), at(10, day=3))

    assert time_entries.list_time_entries(ledger.context, USER_ID) == [late, middle, early]
    bounded = time_entries.list_time_entries(ledger.context, USER_ID, start=at(9, day=2), end=at(9, day=3))
    assert bounded == [late, middle]
    assert time_entries.list_time_entries(ledger.context, OTHER_USER_ID) == []
    assert time_entries.list_time_entries(ledger.context, USER_ID, client_id="nope") == []


def test_update_time_entry_revalidates_interval(ledger, at):
    """Moving an entry re-runs overlap checks excluding itself."""

    entry = _log(ledger, at(9), at(10))
    _log(ledger, at(11), at(12))

    moved = time_entries.update_time_entry(ledger.context, USER_ID, entry.entry_id, ended_at=at(10, 30))
    assert moved.ended_at == at(10, 30)
    assert moved.started_at == at(9)

    with pytest.raises(TimeEntryOverlap):
        time_entries.update_time_entry(ledger.context, USER_ID, entry.entry_id, ended_at=at(11, 30))

    noted = time_entries.update_time_entry(ledger.context, USER_ID, entry.entry_id, note="review")
    assert noted.note == "review"
    assert noted.ended_at == at(10, 30)


def test_update_time_entry_clears_note(ledger, at):
    """An empty note removes the stored one, also after reloading."""

    entry = _log(ledger, at(9), at(10), note="draft note")

    cleared = time_entries.update_time_entry(ledger.context, USER_ID, entry.entry_id, note="")
    assert cleared.note is None

    reloaded = core_logic.refresh_context(ledger.context)
    assert time_entries.get_time_entry(reloaded, USER_ID, entry.entry_id).note is None


def test_locked_entries_cannot_be_changed(ledger, at):
    """Updates and deletes of a locked entry are refused."""

    entry = _log(ledger, at(9), at(10))
    _lock(ledger.context, entry.entry_id)

    with pytest.raises(TimeEntryLocked) as update_error:
        time_entries.update_time_entry(ledger.context, USER_ID, entry.entry_id, note="late edit")
    assert update_error.value.message == "Time entry is locked and cannot be modified"

    with pytest.raises(TimeEntryLocked) as delete_error:
        time_entries.delete_time_entry(ledger.context, USER_ID, entry.entry_id)
    assert delete_error.value.message == "Time entry is locked and cannot be deleted"

    assert time_entries.get_time_entry(ledger.context, USER_ID, entry.entry_id).note is None


def test_delete_time_entry_removes_row(ledger, at):
    """Deleting an unlocked entry removes it for good."""

    entry = _log(ledger, at(9), at(10))
    time_entries.delete_time_entry(ledger.context, USER_ID, entry.entry_id)

    with pytest.raises(EntityNotFound):
        time_entries.get_time_entry(ledger.context, USER_ID, entry.entry_id)


def test_bulk_create_is_all_or_nothing(ledger, at):
    """A batch with a self-overlap stores nothing."""

    project_id = ledger.project.project_id
    batch = [
        TimeEntryCommand(project_id, at(9), at(10)),
        TimeEntryCommand(project_id, at(11), at(12)),
        TimeEntryCommand(project_id, at(11, 30), at(13)),
    ]

    with pytest.raises(TimeEntryOverlap) as excinfo:
        time_entries.bulk_create_time_entries(ledger.context, USER_ID, batch)

    assert excinfo.value.extra == {"entryIndexes": [1, 2], "scope": "batch"}
    assert time_entries.list_time_entries(ledger.context, USER_ID) == []


def test_bulk_create_checks_history(ledger, at):
    """A batch member that clashes with a stored entry reports its index."""

    _log(ledger, at(14), at(15))
    project_id = ledger.project.project_id

    with pytest.raises(TimeEntryOverlap) as excinfo:
        time_entries.bulk_create_time_entries(
            ledger.context,
            USER_ID,
            [TimeEntryCommand(project_id, at(9), at(10)), TimeEntryCommand(project_id, at(14, 30), at(16))],
        )
    assert excinfo.value.extra["entryIndex"] == 1
    assert len(time_entries.list_time_entries(ledger.context, USER_ID)) == 1


def test_bulk_create_stores_every_entry(ledger, at):
    """A clean batch is written in request order."""

    project_id = ledger.project.project_id
    created = time_entries.bulk_create_time_entries(
        ledger.context,
        USER_ID,
        [TimeEntryCommand(project_id, at(9), at(10)), TimeEntryCommand(project_id, at(10), at(11), "b")],
    )

    assert [entry.started_at for entry in created] == [at(9), at(10)]
    assert len(time_entries.list_time_entries(ledger.context, USER_ID)) == 2
    assert time_entries.bulk_create_time_entries(ledger.context, USER_ID, []) == []


def test_bulk_create_respects_batch_limit(config_factory, at):
    """Batches larger than MaxBulkEntries are rejected up front."""

    context, project = _context_with(config_factory, max_bulk_entries=2)
    batch = [TimeEntryCommand(project.project_id, at(hour), at(hour, 30)) for hour in (9, 10, 11)]

    with pytest.raises(BatchTooLarge):
        time_entries.bulk_create_time_entries(context, USER_ID, batch)


def test_bulk_update_sets_note_and_project(ledger, at):
    """Bulk updates apply the same fields to every entry."""

    other = core_logic.create_project(
        ledger.context,
        USER_ID,
        core_logic.ProjectCommand(client_id=ledger.client.client_id, name="Support", hourly_rate=Decimal("30")),
    )
    first = _log(ledger, at(9), at(10))
    second = _log(ledger, at(10), at(11))

    updated = time_entries.bulk_update_time_entries(
        ledger.context, USER_ID, [first.entry_id, second.entry_id], project_id=other.project_id, note="moved"
    )

    assert {entry.project_id for entry in updated} == {other.project_id}
    assert {entry.note for entry in updated} == {"moved"}


def test_bulk_update_refuses_locked_members(ledger, at):
    """One locked entry blocks the whole batch."""

    first = _log(ledger, at(9), at(10))
    second = _log(ledger, at(10), at(11))
    _lock(ledger.context, second.entry_id)

    with pytest.raises(TimeEntryLocked):
        time_entries.bulk_update_time_entries(
            ledger.context, USER_ID, [first.entry_id, second.entry_id], note="x"
        )
    assert time_entries.get_time_entry(ledger.context, USER_ID, first.entry_id).note is None


def test_bulk_delete_reports_missing_ids(ledger, at):
    """Unknown ids are listed and nothing is removed."""

    entry = _log(ledger, at(9), at(10))

    with pytest.raises(EntriesNotFound) as excinfo:
        time_entries.bulk_delete_time_entries(ledger.context, USER_ID, [entry.entry_id, "ghost"])

    assert excinfo.value.extra == {"missingIds": ["ghost"]}
    assert len(time_entries.list_time_entries(ledger.context, USER_ID)) == 1


def test_bulk_delete_removes_entries(ledger, at):
    """Deleting a clean batch returns the count removed."""

    ids = [_log(ledger, at(hour), at(hour, 30)).entry_id for hour in (9, 10, 11)]

    assert time_entries.bulk_delete_time_entries(ledger.context, USER_ID, ids[:2]) == 2
    assert [entry.entry_id for entry in time_entries.list_time_entries(ledger.context, USER_ID)] == [ids[2]]


def test_entries_for_client_orders_ascending(ledger, at):
    """Client ranges are sorted oldest first and may skip locked rows."""

    late = _log(ledger, at(13), at(14))
    early = _log(ledger, at(9), at(10))
    _lock(ledger.context, late.entry_id)

    rows = time_entries.entries_for_client(ledger.context, USER_ID, ledger.client.client_id, at(0), at(23))
    assert [row.entry_id for row in rows] == [early.entry_id, late.entry_id]

    unlocked = time_entries.entries_for_client(
        ledger.context, USER_ID, ledger.client.client_id, at(0), at(23), unlocked_only=True
    )
    assert [row.entry_id for row in unlocked] == [early.entry_id]

    with pytest.raises(EntityNotFound):
        time_entries.entries_for_client(ledger.context, OTHER_USER_ID, ledger.client.client_id, at(0), at(23))
