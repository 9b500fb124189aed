"""Shared pytest fixtures and utilities for timeledger tests."""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, Optional, Tuple
from unittest.mock import MagicMock, Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from timeledger import constants, core_logic, data_manager  # noqa: E402
from timeledger.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
USER_ID = "user-alice"
OTHER_USER_ID = "user-bob"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "DefaultUser = {default_user_id}\n\n"
    "[Rules]\n"
    "MaxEntryHours = {max_entry_hours}\n"
    "MaxBulkEntries = {max_bulk_entries}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    default_user_id: str
    schema_version: str


@dataclass(frozen=True)
class Ledger:
    """A runtime context seeded with one client and one billable project."""

    context: core_logic.RuntimeContext
    client: data_manager.ClientRow
    project: data_manager.ProjectRow


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def at() -> Callable[..., datetime]:
    """Build UTC datetimes in March 2025: ``at(9)``, ``at(9, 30, day=2)``."""

    def _at(hour: int, minute: int = 0, second: int = 0, *, day: int = 3, month: int = 3, year: int = 2025) -> datetime:
        return datetime(year, month, day, hour, minute, second, tzinfo=UTC)

    return _at


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized ledger workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "ledger.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh ledger workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        default_user_id: str = USER_ID,
        max_entry_hours: int = constants.DEFAULT_MAX_ENTRY_HOURS,
        max_bulk_entries: int = constants.DEFAULT_MAX_BULK_ENTRIES,
        business_hours: Optional[Tuple[int, int]] = None,
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        text = _CONFIG_TEMPLATE.format(
            data_file=data_file_entry,
            schema_version=schema_version,
            default_user_id=default_user_id,
            max_entry_hours=max_entry_hours,
            max_bulk_entries=max_bulk_entries,
        )
        if business_hours is not None:
            text += f"BusinessHoursStart = {business_hours[0]}\nBusinessHoursEnd = {business_hours[1]}\n"
        config_path = bundle_dir / "config.ini"
        config_path.write_text(text)
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            default_user_id=default_user_id,
            schema_version=schema_version,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def ledger(runtime_context: core_logic.RuntimeContext) -> Ledger:
    """Seed ``Acme`` with a ``Website`` project billed at 50 per hour."""

    client = core_logic.create_client(runtime_context, USER_ID, core_logic.ClientCommand(name="Acme"))
    project = core_logic.create_project(
        runtime_context,
        USER_ID,
        core_logic.ProjectCommand(client_id=client.client_id, name="Website", hourly_rate=Decimal("50")),
    )
    return Ledger(context=runtime_context, client=client, project=project)


# ---------------------------------------------------------------------------
# Mocked data layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "ledger.xlsx",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_user_id=USER_ID,
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return MagicMock(name="workbook")


@pytest.fixture
def context(
    monkeypatch: pytest.MonkeyPatch,
    settings: data_manager.ConfigSettings,
    workbook: Mock,
) -> core_logic.RuntimeContext:
    """Runtime context over a mock workbook with snapshot and save stubbed out."""

    monkeypatch.setattr(data_manager, "snapshot_workbook", Mock(return_value={}))
    monkeypatch.setattr(data_manager, "restore_workbook", Mock())
    monkeypatch.setattr(data_manager, "save_workbook", Mock())
    return core_logic.RuntimeContext(settings=settings, workbook=workbook)
