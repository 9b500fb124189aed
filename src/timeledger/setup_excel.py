"""Utility for initializing the timeledger workbook.

The module doubles as a script (``timeledger-setup``) and as a library used by
tests or other tooling. The sheet layout comes from
:data:`timeledger.data_manager.SHEET_COLUMNS` so the bootstrap and the data
layer can never drift apart.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log


CONFIG_FILE = "config.ini"


def load_settings(config_path: Path) -> data_manager.ConfigSettings:
    """Read ``config.ini`` and produce :class:`~timeledger.data_manager.ConfigSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory.
    """

    config_path = config_path.expanduser().resolve()
    parser = data_manager.read_config(config_path)
    return data_manager.parse_settings(parser, base_path=config_path.parent)


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = data_manager.SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Write an empty ledger workbook with one bold header row per sheet.

    Raises ``FileExistsError`` when ``destination`` exists and ``overwrite``
    is false.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Ledger workbook already exists: {destination}")
    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    header_font = Font(bold=True)
    for position, (sheet_name, columns) in enumerate(sheet_columns.items()):
        # openpyxl starts with one blank sheet; reuse it for the first entry.
        worksheet = workbook.active if position == 0 else workbook.create_sheet()
        worksheet.title = sheet_name
        worksheet.append(list(columns))
        for cell in worksheet[1]:
            cell.font = header_font

    workbook.save(destination)
    log.info("Created ledger workbook '%s' (%d sheets)", destination, len(sheet_columns))
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``[System] DataFile`` in ``config_path``."""

    settings = load_settings(config_path)
    return create_master_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse ``timeledger-setup`` arguments."""

    parser = argparse.ArgumentParser(description="Initialize the timeledger workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="config.ini whose [System] DataFile names the workbook",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="replace an existing workbook (all rows are lost)",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Create the workbook named in the config; return a process exit code."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()
    print(f"timeledger setup using {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileExistsError as exc:
        print(f"[ERROR] {exc}\nPass --force to replace it.")
        return 1
    except (KeyError, OSError) as exc:
        log.error("Workbook setup failed: %s", exc)
        print(f"[ERROR] {exc}")
        return 1

    print(f"[SUCCESS] Ledger workbook ready at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
