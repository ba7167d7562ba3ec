"""Bootstrap for the Toko ERP master workbook (``toko-setup``).

Creates one worksheet per collection with a bold header row, then seeds the
wallets (each with a zero balance row) and the transaction descriptions the
coordinators look up by name or flag. Also importable, which is how the test
suite builds its throwaway workbooks.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Mapping, Sequence

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log
from .constants import (
    COLLECTION_COLUMNS,
    DEFAULT_REVENUE_WALLET_NAME,
    EXPECTED_SCHEMA_VERSION,
    PURCHASE_DESCRIPTION_NAME,
    SALE_DESCRIPTION_NAME,
    Collection,
    Direction,
)


# name, is_primary, is_change
DEFAULT_WALLETS: Sequence[tuple[str, bool, bool]] = (
    (DEFAULT_REVENUE_WALLET_NAME, False, False),
    ("Kas", True, False),
    ("Kembalian", False, True),
)

DEFAULT_DESCRIPTIONS: Sequence[tuple[str, Direction]] = (
    (SALE_DESCRIPTION_NAME, Direction.IN),
    (PURCHASE_DESCRIPTION_NAME, Direction.OUT),
)


def _write_headers(workbook: openpyxl.Workbook, collection_columns: Mapping[str, Sequence[str]]) -> None:
    bold_font = Font(bold=True)
    for sheet_name, columns in collection_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index, value=column_name)
            cell.font = bold_font
        worksheet.freeze_panes = "A2"


def _seed_wallets(workbook: openpyxl.Workbook, wallets: Sequence[tuple[str, bool, bool]]) -> None:
    primary = [name for name, is_primary, _ in wallets if is_primary]
    change = [name for name, _, is_change in wallets if is_change]
    if len(primary) > 1 or len(change) > 1:
        raise ValueError("At most one seeded wallet may be primary and one may be the change wallet")

    for name, is_primary, is_change in wallets:
        wallet = data_manager.insert_record(
            workbook,
            Collection.FINANCIAL_CATEGORIES,
            {"name": name, "is_primary": is_primary, "is_change": is_change, "is_active": True},
        )
        data_manager.insert_record(
            workbook,
            Collection.CASH_BALANCES,
            {"id_category": wallet["id"], "amount": 0, "updated_at": wallet["created_at"]},
        )


def create_master_workbook(
    destination: Path,
    *,
    collection_columns: Mapping[str, Sequence[str]] = COLLECTION_COLUMNS,
    wallets: Sequence[tuple[str, bool, bool]] = DEFAULT_WALLETS,
    descriptions: Sequence[tuple[str, Direction]] = DEFAULT_DESCRIPTIONS,
    overwrite: bool = False,
) -> Path:
    """Create the master workbook at ``destination`` and return its path.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is false.
        ValueError: If the seeded wallets carry a role flag more than once.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing master workbook: {destination}")

    workbook = openpyxl.Workbook()
    # openpyxl always starts with one blank sheet; ours replace it.
    workbook.remove(workbook.active)

    _write_headers(workbook, collection_columns)
    _seed_wallets(workbook, wallets)
    for name, direction in descriptions:
        data_manager.insert_record(
            workbook,
            Collection.TRANSACTION_DESCRIPTIONS,
            {"descriptionname": name, "type": direction, "is_active": True},
        )

    data_manager.save_workbook(workbook, destination)
    log.info("Created master workbook '%s'", destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> data_manager.ConfigSettings:
    """Create the workbook named by ``config.ini`` and return the settings used.

    Raises:
        ValueError: If the config declares a schema version this package
            does not write.
    """

    config_path = Path(config_path).expanduser().resolve()
    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.parent)
    if settings.schema_version != EXPECTED_SCHEMA_VERSION:
        raise ValueError(
            f"config.ini declares schema {settings.schema_version}, "
            f"this tool writes {EXPECTED_SCHEMA_VERSION}"
        )
    create_master_workbook(settings.data_file, overwrite=overwrite)
    return settings


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="toko-setup", description="Initialize the Toko ERP data file")
    parser.add_argument(
        "--config",
        default=data_manager.CONFIG_FILE_NAME,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for ``toko-setup``."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Toko ERP Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        settings = run_from_config(config_path, overwrite=args.force)
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created master workbook for '{settings.shop_name}' at '{settings.data_file}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
