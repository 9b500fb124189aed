"""Time-entry workflows and the lock guard tied to invoicing.

Every mutation reads the target entry and checks its lock inside the same
transaction as the write, so an invoice created concurrently in this process
cannot lock an entry between the check and the update.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from . import data_manager, log
from .core_logic import (
    RuntimeContext,
    business_hours,
    generate_id,
    get_client,
    get_project,
    transaction,
)
from .errors import BatchTooLarge, EntityNotFound, EntriesNotFound, TimeEntryLocked
from .validation import (
    OverlapCandidate,
    check_bulk_overlap,
    check_overlap,
    sanitize,
    validate_business_hours,
    validate_duration,
)


@dataclass(frozen=True)
class TimeEntryCommand:
    """User intent for logging a block of time against a project."""

    project_id: str
    started_at: datetime
    ended_at: datetime
    note: Optional[str] = None


def ensure_unlocked(entry: data_manager.TimeEntryRow, *, action: str = "modified") -> None:
    """Reject mutations of an entry that an invoice has locked.

    Raises:
        TimeEntryLocked: If ``entry.is_locked`` is set.
    """
    if entry.is_locked:
        log.warning(
            "Time entry '%s' is locked by invoice '%s' and cannot be %s",
            entry.entry_id,
            entry.locked_by_invoice_id,
            action,
        )
        raise TimeEntryLocked(
            f"Time entry is locked and cannot be {action}",
            detail=f"This time entry is part of a non-draft invoice and cannot be {action}",
        )


def get_time_entry(context: RuntimeContext, user_id: str, entry_id: str) -> data_manager.TimeEntryRow:
    """Resolve a time entry owned by ``user_id``.

    Raises:
        EntityNotFound: If the entry is absent or belongs to another user.
    """
    entry = data_manager.find_time_entry(context.workbook, user_id, entry_id)
    if entry is None:
        log.warning("Time entry lookup failed for id '%s' (user '%s')", entry_id, user_id)
        raise EntityNotFound("Time entry not found", detail=f"Time entry {entry_id} not found")
    return entry


def list_time_entries(
    context: RuntimeContext,
    user_id: str,
    *,
    project_id: Optional[str] = None,
    client_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[data_manager.TimeEntryRow]:
    """Return the user's entries, newest ``started_at`` first.

    ``start`` and ``end`` bound ``started_at`` inclusively; either may be
    omitted. ``client_id`` matches entries whose project belongs to it.
    """
    start = data_manager.normalize_timestamp(start) if start is not None else None
    end = data_manager.normalize_timestamp(end) if end is not None else None
    client_projects = None
    if client_id is not None:
        client_projects = {
            project.project_id
            for project in data_manager.iter_projects(context.workbook)
            if project.user_id == user_id and project.client_id == client_id
        }

    rows = []
    for entry in data_manager.iter_time_entries(context.workbook):
        if entry.user_id != user_id:
            continue
        if project_id is not None and entry.project_id != project_id:
            continue
        if client_projects is not None and entry.project_id not in client_projects:
            continue
        if start is not None and entry.started_at < start:
            continue
        if end is not None and entry.started_at > end:
            continue
        rows.append(entry)

    rows.sort(key=lambda item: (item.started_at, item.entry_id), reverse=True)
    return rows


def _validate_interval(context: RuntimeContext, started_at: datetime, ended_at: datetime) -> None:
    validate_duration(started_at, ended_at, context.settings.max_entry_hours)
    validate_business_hours(started_at, ended_at, business_hours(context))


def create_time_entry(
    context: RuntimeContext,
    user_id: str,
    command: TimeEntryCommand,
) -> data_manager.TimeEntryRow:
    """Validate and store a single time entry.

    Raises:
        EntityNotFound: If the project does not belong to the user.
        InvalidTimeRange: If ``ended_at`` is not after ``started_at``.
        DurationTooLong: If the entry exceeds the configured maximum.
        DurationTooShort: If the entry is shorter than one minute.
        OutsideBusinessHours: When business hours are configured and missed.
        TimeEntryOverlap: If the interval collides with a stored entry.
    """
    started_at = data_manager.normalize_timestamp(command.started_at)
    ended_at = data_manager.normalize_timestamp(command.ended_at)

    with transaction(context):
        get_project(context, user_id, command.project_id)
        _validate_interval(context, started_at, ended_at)
        check_overlap(context.workbook, user_id, started_at, ended_at)

        entry = data_manager.TimeEntryRow(
            entry_id=generate_id(),
            user_id=user_id,
            project_id=command.project_id,
            started_at=started_at,
            ended_at=ended_at,
            note=sanitize(command.note),
            is_locked=False,
        )
        data_manager.append_time_entry(context.workbook, entry)

    log.info(
        "Logged time entry '%s' on project '%s' (%s to %s)",
        entry.entry_id,
        entry.project_id,
        entry.started_at.isoformat(),
        entry.ended_at.isoformat(),
    )
    return entry


def update_time_entry(
    context: RuntimeContext,
    user_id: str,
    entry_id: str,
    *,
    project_id: Optional[str] = None,
    started_at: Optional[datetime] = None,
    ended_at: Optional[datetime] = None,
    note: Optional[str] = None,
) -> data_manager.TimeEntryRow:
    """Edit an unlocked time entry.

    Only supplied fields change. When either timestamp changes, the resulting
    interval is validated again and checked for overlap, excluding the entry
    itself. An empty ``note`` clears it.

    Raises:
        EntityNotFound: If the entry or the new project is not the user's.
        TimeEntryLocked: If an invoice has locked the entry.
    """
    with transaction(context):
        current = get_time_entry(context, user_id, entry_id)
        ensure_unlocked(current, action="modified")

        updates: Dict[str, object] = {}
        if project_id is not None and project_id != current.project_id:
            get_project(context, user_id, project_id)
            updates["ProjectID"] = project_id

        if started_at is not None or ended_at is not None:
            new_start = data_manager.normalize_timestamp(started_at) if started_at is not None else current.started_at
            new_end = data_manager.normalize_timestamp(ended_at) if ended_at is not None else current.ended_at
            _validate_interval(context, new_start, new_end)
            check_overlap(context.workbook, user_id, new_start, new_end, exclude_entry_id=entry_id)
            updates["StartedAt"] = new_start
            updates["EndedAt"] = new_end

        if note is not None:
            updates["Note"] = sanitize(note)

        if not updates:
            return current

        data_manager.update_record(
            context.workbook, data_manager.TIME_ENTRIES_SHEET, entry_id, field_values=updates
        )
        updated = get_time_entry(context, user_id, entry_id)

    log.info("Updated time entry '%s' fields: %s", entry_id, ", ".join(updates))
    return updated


def delete_time_entry(context: RuntimeContext, user_id: str, entry_id: str) -> None:
    """Delete an unlocked time entry.

    Raises:
        EntityNotFound: If the entry is not the user's.
        TimeEntryLocked: If an invoice has locked the entry.
    """
    with transaction(context):
        entry = get_time_entry(context, user_id, entry_id)
        ensure_unlocked(entry, action="deleted")
        data_manager.delete_records(
            context.workbook, data_manager.TIME_ENTRIES_SHEET, "EntryID", [entry_id]
        )

    log.info("Deleted time entry '%s'", entry_id)


def _require_batch_size(context: RuntimeContext, size: int) -> None:
    limit = context.settings.max_bulk_entries
    if size > limit:
        log.warning("Rejected batch of %s time entries (max %s)", size, limit)
        raise BatchTooLarge(
            f"Cannot process more than {limit} time entries at once",
            detail=f"Received {size} entries; the maximum is {limit}",
        )


def _load_owned_entries(
    context: RuntimeContext, user_id: str, entry_ids: Sequence[str]
) -> List[data_manager.TimeEntryRow]:
    """Return the entries for ``entry_ids`` in request order, all or nothing."""

    wanted = list(dict.fromkeys(entry_ids))
    owned = {
        entry.entry_id: entry
        for entry in data_manager.iter_time_entries(context.workbook)
        if entry.user_id == user_id and entry.entry_id in wanted
    }
    missing = [entry_id for entry_id in wanted if entry_id not in owned]
    if missing:
        log.warning("Bulk request referenced unknown time entries: %s", ", ".join(missing))
        raise EntriesNotFound(
            "Some time entries were not found",
            detail=f"{len(missing)} time entries not found",
            extra={"missingIds": missing},
        )
    return [owned[entry_id] for entry_id in wanted]


def bulk_create_time_entries(
    context: RuntimeContext,
    user_id: str,
    commands: Sequence[TimeEntryCommand],
) -> List[data_manager.TimeEntryRow]:
    """Create a batch of time entries atomically.

    Every entry is validated individually first, then the whole batch goes
    through the two-phase overlap check. Rows are only appended once all
    checks pass; any failure leaves the store untouched.

    Raises:
        BatchTooLarge: If the batch exceeds the configured maximum.
        EntityNotFound: If any project is not the user's.
        TimeEntryOverlap: For overlaps within the batch or with history.
    """
    _require_batch_size(context, len(commands))
    if not commands:
        return []

    normalized = [
        (
            command,
            data_manager.normalize_timestamp(command.started_at),
            data_manager.normalize_timestamp(command.ended_at),
        )
        for command in commands
    ]

    with transaction(context):
        checked_projects = set()
        for command, started_at, ended_at in normalized:
            if command.project_id not in checked_projects:
                get_project(context, user_id, command.project_id)
                checked_projects.add(command.project_id)
            _validate_interval(context, started_at, ended_at)

        check_bulk_overlap(
            context.workbook,
            user_id,
            [OverlapCandidate(started_at, ended_at) for _, started_at, ended_at in normalized],
        )

        created = []
        for command, started_at, ended_at in normalized:
            entry = data_manager.TimeEntryRow(
                entry_id=generate_id(),
                user_id=user_id,
                project_id=command.project_id,
                started_at=started_at,
                ended_at=ended_at,
                note=sanitize(command.note),
                is_locked=False,
            )
            data_manager.append_time_entry(context.workbook, entry)
            created.append(entry)

    log.info("Bulk-created %s time entries for user '%s'", len(created), user_id)
    return created


def bulk_update_time_entries(
    context: RuntimeContext,
    user_id: str,
    entry_ids: Sequence[str],
    *,
    project_id: Optional[str] = None,
    note: Optional[str] = None,
) -> List[data_manager.TimeEntryRow]:
    """Apply the same note and/or project to many unlocked entries.

    Raises:
        BatchTooLarge: If more ids are given than the configured maximum.
        EntriesNotFound: If any id is not one of the user's entries.
        TimeEntryLocked: If any entry is locked; nothing is updated.
        EntityNotFound: If ``project_id`` is not the user's.
    """
    _require_batch_size(context, len(entry_ids))

    with transaction(context):
        entries = _load_owned_entries(context, user_id, entry_ids)
        for entry in entries:
            ensure_unlocked(entry, action="modified")

        updates: Dict[str, object] = {}
        if project_id is not None:
            get_project(context, user_id, project_id)
            updates["ProjectID"] = project_id
        if note is not None:
            updates["Note"] = sanitize(note)

        if updates:
            for entry in entries:
                data_manager.update_record(
                    context.workbook, data_manager.TIME_ENTRIES_SHEET, entry.entry_id, field_values=updates
                )
        updated = [get_time_entry(context, user_id, entry.entry_id) for entry in entries]

    log.info("Bulk-updated %s time entries for user '%s'", len(updated), user_id)
    return updated


def bulk_delete_time_entries(context: RuntimeContext, user_id: str, entry_ids: Sequence[str]) -> int:
    """Delete many unlocked entries at once and return how many were removed.

    Raises:
        BatchTooLarge: If more ids are given than the configured maximum.
        EntriesNotFound: If any id is not one of the user's entries.
        TimeEntryLocked: If any entry is locked; nothing is deleted.
    """
    _require_batch_size(context, len(entry_ids))

    with transaction(context):
        entries = _load_owned_entries(context, user_id, entry_ids)
        for entry in entries:
            ensure_unlocked(entry, action="deleted")
        removed = data_manager.delete_records(
            context.workbook,
            data_manager.TIME_ENTRIES_SHEET,
            "EntryID",
            [entry.entry_id for entry in entries],
        )

    log.info("Bulk-deleted %s time entries for user '%s'", removed, user_id)
    return removed


def entries_for_client(
    context: RuntimeContext,
    user_id: str,
    client_id: str,
    start: datetime,
    end: datetime,
    *,
    unlocked_only: bool = False,
) -> List[data_manager.TimeEntryRow]:
    """Return the client's entries with ``started_at`` in ``[start, end]``.

    Raises:
        EntityNotFound: If the client is not the user's.
    """
    get_client(context, user_id, client_id)
    rows = list_time_entries(context, user_id, client_id=client_id, start=start, end=end)
    if unlocked_only:
        rows = [entry for entry in rows if not entry.is_locked]
    rows.sort(key=lambda item: (item.started_at, item.entry_id))
    return rows
