"""Business logic layer for timeledger.

This module owns the runtime context shared by every workflow, the
transaction boundary that makes coupled writes atomic, and the client and
project workflows. Time entries, invoices, and reports build on top of it in
their own modules. All I/O goes through the Data Access Layer (DAL).
"""

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, List, Optional, TypeVar

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION
from .errors import EntityNotFound
from .validation import (
    BusinessHours,
    check_duplicate_client_name,
    check_duplicate_project_name,
    require_positive_amount,
    sanitize,
    validate_name,
)


T = TypeVar("T")


@dataclass
class _TransactionState:
    lock: threading.RLock = field(default_factory=threading.RLock)
    depth: int = 0


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _state: _TransactionState = field(default_factory=_TransactionState, repr=False, compare=False)


@dataclass(frozen=True)
class ClientCommand:
    """User intent for creating a client."""

    name: str
    email: Optional[str] = None


@dataclass(frozen=True)
class ProjectCommand:
    """User intent for creating a project under an existing client."""

    client_id: str
    name: str
    description: Optional[str] = None
    hourly_rate: Optional[Decimal] = None


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Resolve optional timestamps into consistent, timezone-aware values.

    Args:
        candidate (datetime | None): Caller-provided timestamp. Naive values
            are interpreted as UTC.

    Returns:
        datetime: ``candidate`` normalized when provided, otherwise the current
            UTC datetime generated via :func:`datetime.now`.
    """

    if candidate is None:
        return datetime.now(UTC)
    return data_manager.normalize_timestamp(candidate)


def generate_id() -> str:
    """Return a new random UUID4 identifier as a string."""

    return str(uuid.uuid4())


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    The helper forms the foundation for all business logic calls by resolving
    ``config.ini``, parsing settings, and opening the Excel workbook that
    stores the ledger. The resulting :class:`RuntimeContext` bundles the
    immutable settings with a mutable workbook handle and a fresh transaction
    lock.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def business_hours(context: RuntimeContext) -> Optional[BusinessHours]:
    """Return the configured business-hours window, or ``None`` when disabled."""

    return BusinessHours.from_settings(context.settings)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to disk.

    The function supplies :attr:`RuntimeContext.settings.data_file` directly to
    the data layer to ensure saves always target the configured workbook path.
    """
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook and
            its own transaction lock.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


@contextmanager
def transaction(context: RuntimeContext, *, persist: bool = True) -> Iterator[RuntimeContext]:
    """Run a block of reads and writes atomically against the workbook.

    The outermost transaction takes the context lock, snapshots every managed
    sheet, and on success saves the workbook (unless ``persist`` is ``False``).
    Any exception restores the snapshot before propagating, so no partial
    write survives. Nested transactions join the outer one; only the outermost
    level commits or rolls back.

    Args:
        context (RuntimeContext): Runtime state owning the workbook and lock.
        persist (bool): Save to ``settings.data_file`` on commit.

    Yields:
        RuntimeContext: The same context, for convenience.
    """
    state = context._state
    with state.lock:
        if state.depth:
            state.depth += 1
            try:
                yield context
            finally:
                state.depth -= 1
            return

        snapshot = data_manager.snapshot_workbook(context.workbook)
        state.depth = 1
        try:
            yield context
            if persist:
                persist_context(context)
        except BaseException:
            data_manager.restore_workbook(context.workbook, snapshot)
            log.warning("Transaction rolled back for workbook '%s'", context.settings.data_file)
            raise
        finally:
            state.depth = 0


def run_transaction(context: RuntimeContext, fn: Callable[[RuntimeContext], T], *, persist: bool = True) -> T:
    """Call ``fn(context)`` inside :func:`transaction` and return its result."""

    with transaction(context, persist=persist):
        return fn(context)


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


def get_client(context: RuntimeContext, user_id: str, client_id: str) -> data_manager.ClientRow:
    """Resolve a client owned by ``user_id``.

    Raises:
        EntityNotFound: If the client is absent or belongs to another user.
    """
    client = data_manager.find_client(context.workbook, user_id, client_id)
    if client is None:
        log.warning("Client lookup failed for id '%s' (user '%s')", client_id, user_id)
        raise EntityNotFound("Client not found", detail=f"Client {client_id} not found")
    return client


def list_clients(context: RuntimeContext, user_id: str) -> List[data_manager.ClientRow]:
    """Return the user's clients, most recently created first."""

    rows = [client for client in data_manager.iter_clients(context.workbook) if client.user_id == user_id]
    rows.reverse()
    return rows


def create_client(context: RuntimeContext, user_id: str, command: ClientCommand) -> data_manager.ClientRow:
    """Validate and store a new client.

    The name is trimmed, length-checked, and must be unique for the user
    regardless of case. A blank email is stored as empty.

    Raises:
        FieldRequired: If the name is blank.
        FieldTooLong: If the name exceeds 255 characters.
        DuplicateClientName: If the user already has a client with that name.
    """
    with transaction(context):
        name = validate_name(command.name, "name")
        check_duplicate_client_name(context.workbook, user_id, name)
        client = data_manager.ClientRow(
            client_id=generate_id(),
            user_id=user_id,
            name=name,
            email=sanitize(command.email),
        )
        data_manager.append_client(context.workbook, client)

    log.info("Created client '%s' (%s) for user '%s'", client.name, client.client_id, user_id)
    return client


def update_client(
    context: RuntimeContext,
    user_id: str,
    client_id: str,
    *,
    name: Optional[str] = None,
    email: Optional[str] = None,
) -> data_manager.ClientRow:
    """Rename a client or change its email.

    ``None`` leaves a field untouched; an empty ``email`` clears it.
    """
    with transaction(context):
        current = get_client(context, user_id, client_id)
        updates = {}
        if name is not None:
            cleaned = validate_name(name, "name")
            check_duplicate_client_name(context.workbook, user_id, cleaned, exclude_id=client_id)
            updates["Name"] = cleaned
        if email is not None:
            updates["Email"] = sanitize(email)
        if updates:
            data_manager.update_record(
                context.workbook, data_manager.CLIENTS_SHEET, client_id, field_values=updates
            )
        updated = data_manager.find_client(context.workbook, user_id, client_id) or current

    log.info("Updated client '%s' fields: %s", client_id, ", ".join(updates) or "none")
    return updated


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def get_project(context: RuntimeContext, user_id: str, project_id: str) -> data_manager.ProjectRow:
    """Resolve a project owned by ``user_id``.

    Raises:
        EntityNotFound: If the project is absent or belongs to another user.
    """
    project = data_manager.find_project(context.workbook, user_id, project_id)
    if project is None:
        log.warning("Project lookup failed for id '%s' (user '%s')", project_id, user_id)
        raise EntityNotFound("Project not found", detail=f"Project {project_id} not found")
    return project


def list_projects(
    context: RuntimeContext,
    user_id: str,
    *,
    client_id: Optional[str] = None,
) -> List[data_manager.ProjectRow]:
    """Return the user's projects, optionally for one client, newest first."""

    rows = [
        project
        for project in data_manager.iter_projects(context.workbook)
        if project.user_id == user_id and (client_id is None or project.client_id == client_id)
    ]
    rows.reverse()
    return rows


def create_project(context: RuntimeContext, user_id: str, command: ProjectCommand) -> data_manager.ProjectRow:
    """Validate and store a new project under one of the user's clients.

    Raises:
        EntityNotFound: If the client does not belong to the user.
        FieldRequired: If the name is blank.
        FieldTooLong: If the name exceeds 255 characters.
        DuplicateProjectName: If the client already has a project with that
            name, compared case-insensitively.
        InvalidAmount: If an hourly rate is given and is not positive.
    """
    with transaction(context):
        get_client(context, user_id, command.client_id)
        name = validate_name(command.name, "name")
        check_duplicate_project_name(context.workbook, user_id, command.client_id, name)
        if command.hourly_rate is not None:
            require_positive_amount(command.hourly_rate, "hourlyRate")

        project = data_manager.ProjectRow(
            project_id=generate_id(),
            user_id=user_id,
            client_id=command.client_id,
            name=name,
            description=sanitize(command.description),
            hourly_rate=command.hourly_rate,
        )
        data_manager.append_project(context.workbook, project)

    log.info(
        "Created project '%s' (%s) for client '%s' (rate=%s)",
        project.name,
        project.project_id,
        project.client_id,
        project.hourly_rate,
    )
    return project


def update_project(
    context: RuntimeContext,
    user_id: str,
    project_id: str,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
    hourly_rate: Optional[Decimal] = None,
) -> data_manager.ProjectRow:
    """Change a project's name, description, or hourly rate.

    Rate changes never touch existing invoice lines; those keep the rate
    captured when they were billed.
    """
    with transaction(context):
        current = get_project(context, user_id, project_id)
        updates = {}
        if name is not None:
            cleaned = validate_name(name, "name")
            check_duplicate_project_name(
                context.workbook, user_id, current.client_id, cleaned, exclude_id=project_id
            )
            updates["Name"] = cleaned
        if description is not None:
            updates["Description"] = sanitize(description)
        if hourly_rate is not None:
            require_positive_amount(hourly_rate, "hourlyRate")
            updates["HourlyRate"] = hourly_rate
        if updates:
            data_manager.update_record(
                context.workbook, data_manager.PROJECTS_SHEET, project_id, field_values=updates
            )
        updated = data_manager.find_project(context.workbook, user_id, project_id) or current

    log.info("Updated project '%s' fields: %s", project_id, ", ".join(updates) or "none")
    return updated
