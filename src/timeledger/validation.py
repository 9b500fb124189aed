"""Validation rules shared by the time-entry, client, and project workflows.

Each check raises a :class:`~timeledger.errors.BusinessRuleViolation` subclass
at the first failure and logs the rejection beforehand. Checks that need the
store receive the workbook explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence

from openpyxl.workbook import Workbook

from . import data_manager, log
from .calculations import duration_hours
from .constants import DEFAULT_MAX_ENTRY_HOURS, MAX_NAME_LENGTH, MIN_ENTRY_DURATION, SheetName
from .errors import (
    DuplicateClientName,
    DuplicateProjectName,
    DurationTooLong,
    DurationTooShort,
    FieldRequired,
    FieldTooLong,
    InvalidAmount,
    InvalidTimeRange,
    OutsideBusinessHours,
    TimeEntryOverlap,
)


@dataclass(frozen=True)
class BusinessHours:
    """Optional working-hours window, in whole hours of the day.

    Raises:
        ValueError: Unless ``0 <= start_hour < end_hour <= 24``.
    """

    start_hour: int
    end_hour: int

    def __post_init__(self) -> None:
        if not (0 <= self.start_hour < self.end_hour <= 24):
            raise ValueError(
                f"Invalid business hours: {self.start_hour}:00 - {self.end_hour}:00"
            )

    @classmethod
    def from_settings(cls, settings: data_manager.ConfigSettings) -> Optional["BusinessHours"]:
        if settings.business_hours_start is None or settings.business_hours_end is None:
            return None
        return cls(settings.business_hours_start, settings.business_hours_end)


@dataclass(frozen=True)
class OverlapCandidate:
    """One proposed interval in a bulk overlap check."""

    started_at: datetime
    ended_at: datetime
    exclude_entry_id: Optional[str] = None


def format_timestamp(value: datetime) -> str:
    """Render ``value`` as a UTC ISO-8601 string with a ``Z`` suffix."""

    text = data_manager.normalize_timestamp(value).astimezone(UTC).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def validate_duration(start: datetime, end: datetime, max_hours: int = DEFAULT_MAX_ENTRY_HOURS) -> None:
    """Enforce ``end > start`` and a duration between one minute and ``max_hours``.

    Both bounds are inclusive: exactly one minute and exactly ``max_hours``
    pass.

    Raises:
        InvalidTimeRange: If ``end`` is not after ``start``.
        DurationTooLong: If the span exceeds ``max_hours``.
        DurationTooShort: If the span is below one minute.
    """

    if end <= start:
        log.warning("Rejected time range: end %s is not after start %s", end, start)
        raise InvalidTimeRange(
            "End time must be after start time",
            detail="endedAt must be greater than startedAt",
        )

    span = end - start
    if span > timedelta(hours=max_hours):
        hours = duration_hours(start, end)
        log.warning("Rejected time entry of %s hours (max %s)", hours, max_hours)
        raise DurationTooLong(
            f"Time entry duration cannot exceed {max_hours} hours",
            detail=f"Duration of {hours:.2f} hours exceeds maximum of {max_hours} hours",
        )

    if span < MIN_ENTRY_DURATION:
        log.warning("Rejected time entry shorter than one minute (%s)", span)
        raise DurationTooShort(
            "Time entry must be at least 1 minute long",
            detail="Time entries must have a minimum duration of 1 minute",
        )


def validate_business_hours(start: datetime, end: datetime, business_hours: Optional[BusinessHours] = None) -> None:
    """Check the hour-of-day of ``start`` and ``end`` against ``business_hours``.

    The start hour must fall in ``[start_hour, end_hour)`` and the end hour in
    ``[start_hour, end_hour]``. Passing ``None`` disables the check.
    """

    if business_hours is None:
        return

    detail = f"Business hours are {business_hours.start_hour}:00 - {business_hours.end_hour}:00"
    if not (business_hours.start_hour <= start.hour < business_hours.end_hour):
        log.warning("Start hour %s is outside business hours", start.hour)
        raise OutsideBusinessHours("Time entry start time is outside business hours", detail=detail)

    if not (business_hours.start_hour <= end.hour <= business_hours.end_hour):
        log.warning("End hour %s is outside business hours", end.hour)
        raise OutsideBusinessHours("Time entry end time is outside business hours", detail=detail)


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap test; intervals that merely touch do not overlap."""

    return a_start < b_end and b_start < a_end


def _conflict_payload(detail: data_manager.TimeEntryDetail) -> Dict[str, Any]:
    return {
        "id": detail.entry.entry_id,
        "project": detail.project_name,
        "client": detail.client_name,
        "startedAt": format_timestamp(detail.entry.started_at),
        "endedAt": format_timestamp(detail.entry.ended_at),
    }


def check_overlap(
    workbook: Workbook,
    user_id: str,
    start: datetime,
    end: datetime,
    exclude_entry_id: Optional[str] = None,
) -> None:
    """Reject ``[start, end)`` when it overlaps any of the user's stored entries.

    The entry being edited is skipped through ``exclude_entry_id``. When
    several entries conflict, the one with the earliest ``started_at`` (then
    lowest ``entry_id``) is reported.

    Raises:
        TimeEntryOverlap: Carrying ``conflictingEntry`` in its payload.
    """

    excluded = [exclude_entry_id] if exclude_entry_id else []
    conflicts = data_manager.find_time_entries_overlapping(workbook, user_id, start, end, excluded)
    if not conflicts:
        return

    first = conflicts[0]
    log.warning("Time entry for user '%s' overlaps entry '%s'", user_id, first.entry.entry_id)
    raise TimeEntryOverlap(
        "Time entry overlaps with existing entry",
        detail=(
            f'Overlaps with entry for project "{first.project_name}" ({first.client_name}) '
            f"from {format_timestamp(first.entry.started_at)} to {format_timestamp(first.entry.ended_at)}"
        ),
        extra={"conflictingEntry": _conflict_payload(first), "scope": "existing"},
    )


def check_bulk_overlap(workbook: Workbook, user_id: str, entries: Sequence[OverlapCandidate]) -> None:
    """Two-phase overlap check for a batch, run before anything is written.

    Phase one compares every pair inside the batch. Phase two loads the
    user's stored entries overlapping the batch's covering range with a single
    query, then tests each candidate against them, skipping the candidate's
    own ``exclude_entry_id``.

    Raises:
        TimeEntryOverlap: ``scope="batch"`` with 0-based ``entryIndexes`` for a
            self-overlap, or ``scope="existing"`` with ``entryIndex`` and
            ``conflictingEntry`` for a clash with stored history.
    """

    if not entries:
        return

    for i, first in enumerate(entries):
        for j in range(i + 1, len(entries)):
            second = entries[j]
            if intervals_overlap(first.started_at, first.ended_at, second.started_at, second.ended_at):
                log.warning("Batch entries %s and %s overlap for user '%s'", i, j, user_id)
                raise TimeEntryOverlap(
                    f"Time entries {i + 1} and {j + 1} overlap with each other",
                    detail=(
                        f"Entry {i + 1} ({format_timestamp(first.started_at)} to {format_timestamp(first.ended_at)}) "
                        f"overlaps with entry {j + 1} ({format_timestamp(second.started_at)} to "
                        f"{format_timestamp(second.ended_at)})"
                    ),
                    extra={"entryIndexes": [i, j], "scope": "batch"},
                )

    earliest = min(entry.started_at for entry in entries)
    latest = max(entry.ended_at for entry in entries)
    replaced = [entry.exclude_entry_id for entry in entries if entry.exclude_entry_id]
    existing = data_manager.find_time_entries_overlapping(workbook, user_id, earliest, latest, replaced)

    for index, candidate in enumerate(entries):
        for stored in existing:
            if stored.entry.entry_id == candidate.exclude_entry_id:
                continue
            if intervals_overlap(
                data_manager.normalize_timestamp(candidate.started_at),
                data_manager.normalize_timestamp(candidate.ended_at),
                stored.entry.started_at,
                stored.entry.ended_at,
            ):
                log.warning(
                    "Batch entry %s overlaps stored entry '%s' for user '%s'",
                    index,
                    stored.entry.entry_id,
                    user_id,
                )
                raise TimeEntryOverlap(
                    f"Time entry {index + 1} overlaps with existing entry",
                    detail=(
                        f"Entry {index + 1} ({format_timestamp(candidate.started_at)} to "
                        f"{format_timestamp(candidate.ended_at)}) overlaps with entry for project "
                        f'"{stored.project_name}" ({stored.client_name}) from '
                        f"{format_timestamp(stored.entry.started_at)} to {format_timestamp(stored.entry.ended_at)}"
                    ),
                    extra={
                        "conflictingEntry": _conflict_payload(stored),
                        "entryIndex": index,
                        "scope": "existing",
                    },
                )


def sanitize(value: Optional[str]) -> Optional[str]:
    """Trim ``value``; blank or missing input becomes ``None``."""

    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def validate_name(name: Optional[str], field: str = "name") -> str:
    """Sanitize a name-like field and enforce presence and maximum length.

    Returns:
        str: The trimmed value; callers must store this, not the raw input.
    """

    cleaned = sanitize(name)
    if cleaned is None:
        log.warning("Rejected empty %s", field)
        raise FieldRequired(f"{field} is required", detail=f"{field} cannot be empty")

    if len(cleaned) > MAX_NAME_LENGTH:
        log.warning("Rejected %s of %s characters", field, len(cleaned))
        raise FieldTooLong(
            f"{field} is too long",
            detail=f"{field} cannot exceed {MAX_NAME_LENGTH} characters",
        )

    return cleaned


def check_duplicate_client_name(
    workbook: Workbook,
    user_id: str,
    name: str,
    exclude_id: Optional[str] = None,
) -> None:
    match = data_manager.find_duplicate_name(
        workbook, SheetName.CLIENTS, user_id, name, exclude_id=exclude_id
    )
    if match is not None:
        log.warning("Duplicate client name '%s' for user '%s'", name.strip(), user_id)
        raise DuplicateClientName(
            "Duplicate client name",
            detail=f'Client name "{name.strip()}" already exists for this user.',
        )


def check_duplicate_project_name(
    workbook: Workbook,
    user_id: str,
    client_id: str,
    name: str,
    exclude_id: Optional[str] = None,
) -> None:
    match = data_manager.find_duplicate_name(
        workbook, SheetName.PROJECTS, user_id, name, client_id=client_id, exclude_id=exclude_id
    )
    if match is not None:
        log.warning("Duplicate project name '%s' for client '%s'", name.strip(), client_id)
        raise DuplicateProjectName(
            "Duplicate project name",
            detail=f'Project name "{name.strip()}" already exists for this client.',
        )


def require_positive_amount(value: Decimal, field: str) -> None:
    """Reject zero or negative hours, rates, and payments."""

    if value <= Decimal("0"):
        log.error("%s validation failed: %s", field, value)
        raise InvalidAmount(f"{field} must be greater than zero", detail=f"{field} was {value}")
