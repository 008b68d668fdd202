"""Utility for initializing the Petro ERP master workbook.

The module doubles as a script (``petro-setup``) and as a library used by
tests or other tooling. Shared helpers keep the workbook bootstrap logic
consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
import configparser
import sys
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import SHEET_COLUMNS, SheetName, UserRole

CONFIG_FILE = "config.ini"
DEFAULT_ADMIN_ID = "admin-1"


def default_users(admin_id: str) -> Sequence[data_manager.UserRow]:
    return (
        data_manager.UserRow(
            user_id=admin_id,
            username="admin",
            name="System Admin",
            role=UserRole.ADMIN.value,
            pin="1234",
        ),
    )


DEFAULT_FUELS: Sequence[data_manager.FuelRow] = (
    data_manager.FuelRow(
        fuel_id="f1",
        name="Octane 91",
        sale_price=Decimal("2.18"),
        purchase_price=Decimal("1.85"),
        includes_tax=True,
        initial_stock=Decimal("50000"),
        current_stock=Decimal("42000"),
        alert_threshold=Decimal("10000"),
    ),
    data_manager.FuelRow(
        fuel_id="f2",
        name="Octane 95",
        sale_price=Decimal("2.33"),
        purchase_price=Decimal("2.05"),
        includes_tax=True,
        initial_stock=Decimal("30000"),
        current_stock=Decimal("12000"),
        alert_threshold=Decimal("5000"),
    ),
    data_manager.FuelRow(
        fuel_id="f3",
        name="Diesel",
        sale_price=Decimal("1.15"),
        purchase_price=Decimal("0.95"),
        includes_tax=True,
        initial_stock=Decimal("100000"),
        current_stock=Decimal("85000"),
        alert_threshold=Decimal("20000"),
    ),
)

DEFAULT_PUMPS: Sequence[data_manager.PumpRow] = (
    data_manager.PumpRow(
        pump_id="p1",
        pump_code="01",
        name="Nozzle 1 (91)",
        fuel_id="f1",
        last_reading=Decimal("10000"),
        current_reading=Decimal("10000"),
        deficit=Decimal("0"),
    ),
    data_manager.PumpRow(
        pump_id="p2",
        pump_code="02",
        name="Nozzle 2 (95)",
        fuel_id="f2",
        last_reading=Decimal("5000"),
        current_reading=Decimal("5000"),
        deficit=Decimal("0"),
    ),
)

DEFAULT_STATION_SETTINGS = data_manager.StationSettings(
    company_name="Saudi Petro ERP",
    company_name_ar="نظام بترو السعودي",
    tax_number="312345678900003",
)


@dataclass(frozen=True)
class SetupSettings:
    """Type-safe representation of configuration values used during setup."""

    data_file: Path
    default_user_id: str


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory, matching the runtime loader.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")

    try:
        data_file_raw = parser.get("System", "DataFile")
        default_user_id = parser.get("Defaults", "DefaultUser")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (config_path.parent / data_file_path).resolve()

    return SetupSettings(data_file=data_file_path, default_user_id=default_user_id)


def build_master_workbook(
    *,
    default_user_id: str = DEFAULT_ADMIN_ID,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    seed_defaults: bool = True,
) -> Workbook:
    """Build an in-memory workbook with bold headers and optional seed data.

    The seeded administrator takes ``default_user_id`` so audit entries
    written under the configured default user resolve to a real name.
    """

    workbook = openpyxl.Workbook()
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    if seed_defaults:
        data_manager.write_collection(workbook, SheetName.USERS.value, default_users(default_user_id))
        data_manager.write_collection(workbook, SheetName.FUEL_PRODUCTS.value, DEFAULT_FUELS)
        data_manager.write_collection(workbook, SheetName.PUMPS.value, DEFAULT_PUMPS)
        data_manager.write_collection(workbook, SheetName.SETTINGS.value, DEFAULT_STATION_SETTINGS)

    return workbook


def create_master_workbook(
    destination: Path,
    *,
    default_user_id: str = DEFAULT_ADMIN_ID,
    overwrite: bool = False,
    seed_defaults: bool = True,
) -> Path:
    """Create the Petro ERP master workbook at ``destination``.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing master workbook: {destination}")

    workbook = build_master_workbook(default_user_id=default_user_id, seed_defaults=seed_defaults)
    saved = data_manager.save_workbook(workbook, destination)
    log.info("Created master workbook '%s' (seeded=%s)", saved, seed_defaults)
    return saved


def run_from_config(config_path: Path, *, overwrite: bool = False, seed_defaults: bool = True) -> Path:
    """Create the workbook named by ``config.ini``."""

    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        default_user_id=settings.default_user_id,
        overwrite=overwrite,
        seed_defaults=seed_defaults,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(prog="petro-setup", description="Initialize the Petro ERP data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    parser.add_argument(
        "--empty",
        action="store_true",
        help="Create headers only, without the default admin, fuels and pumps.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Petro ERP Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force, seed_defaults=not args.empty)
    except (FileNotFoundError, KeyError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
