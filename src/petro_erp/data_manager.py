"""Data access layer for Petro ERP.

This module provides low-level helpers that read from and write to the
station workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading whole collections as structured records and
   overwriting a collection's sheet wholesale after it changes.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass, fields
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import SHEET_COLUMNS, SheetName


CONFIG_FILE_NAME = "config.ini"
SETTINGS_SHEET = SheetName.SETTINGS.value

SETTINGS_KEYS = {
    "company_name": "CompanyName",
    "company_name_ar": "CompanyNameAr",
    "tax_number": "TaxNumber",
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    station_name: str
    schema_version: str
    default_user_id: str


@dataclass(frozen=True)
class StationSettings:
    """Company identity printed on exports, stored on the ``Settings`` sheet."""

    company_name: str = ""
    company_name_ar: str = ""
    tax_number: str = ""


@dataclass(frozen=True)
class UserRow:
    """In-memory view of a row from the ``Users`` sheet."""

    user_id: str
    username: str
    name: str
    role: str
    pin: str


@dataclass(frozen=True)
class StaffRow:
    """In-memory view of a row from the ``Staff`` sheet."""

    staff_id: str
    full_name: str
    nationality: str
    job_title: str
    phone: str
    email: str
    salary: Decimal


@dataclass(frozen=True)
class DocumentRow:
    """In-memory view of a row from the ``Documents`` sheet."""

    document_id: str
    owner_kind: str
    owner_id: Optional[str]
    doc_type: str
    expiry_date: str
    file_name: Optional[str]


@dataclass(frozen=True)
class FuelRow:
    """In-memory view of a row from the ``FuelProducts`` sheet."""

    fuel_id: str
    name: str
    sale_price: Decimal
    purchase_price: Decimal
    includes_tax: bool
    initial_stock: Decimal
    current_stock: Decimal
    alert_threshold: Decimal


@dataclass(frozen=True)
class PumpRow:
    """In-memory view of a row from the ``Pumps`` sheet."""

    pump_id: str
    pump_code: str
    name: str
    fuel_id: str
    last_reading: Decimal
    current_reading: Decimal
    deficit: Decimal


@dataclass(frozen=True)
class ShiftRow:
    """In-memory view of a row from the ``Shifts`` sheet.

    Reconciliation fields stay ``None`` while the shift is open.
    """

    shift_id: str
    staff_id: str
    staff_name: str
    pump_code: str
    fuel_id: str
    fuel_name: str
    price_at_open: Decimal
    start_reading: Decimal
    end_reading: Optional[Decimal]
    start_time: str
    end_time: Optional[str]
    status: str
    total_liters: Optional[Decimal] = None
    expected_amount: Optional[Decimal] = None
    cash_amount: Optional[Decimal] = None
    card_amount: Optional[Decimal] = None
    shortage: Optional[Decimal] = None


@dataclass(frozen=True)
class ExpenseRow:
    """In-memory view of a row from the ``Expenses`` sheet."""

    expense_id: str
    category: str
    expense_type: str
    recurrence: str
    amount: Decimal
    expense_date: str
    description: str


@dataclass(frozen=True)
class SupplierRow:
    """In-memory view of a row from the ``Suppliers`` sheet."""

    supplier_id: str
    name: str
    contact_person: str
    phone: str
    fuel_ids: Tuple[str, ...]


@dataclass(frozen=True)
class SupplyRow:
    """In-memory view of a row from the ``SupplyTransactions`` sheet."""

    supply_id: str
    supplier_id: str
    supplier_name: str
    fuel_id: str
    fuel_name: str
    quantity: Decimal
    cost: Decimal
    timestamp_iso: str


@dataclass(frozen=True)
class AuditRow:
    """In-memory view of a row from the ``AuditLog`` sheet."""

    entry_id: str
    user_id: str
    user_name: str
    action: str
    details: str
    timestamp_iso: str


@dataclass(frozen=True)
class BackupRow:
    """In-memory view of a row from the ``BackupLog`` sheet."""

    backup_id: str
    timestamp_iso: str
    user_name: str
    file_name: str


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data. Required entries are validated later by
            :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are expanded against ``base_path`` when
    provided, or against the current working directory as a fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container with resolved data file
            path, station name, schema version, and default acting user id.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        station_name = parser.get("System", "StationName")
        schema_version = parser.get("System", "SchemaVersion")
        default_user = parser.get("Defaults", "DefaultUser")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        station_name=station_name,
        schema_version=schema_version,
        default_user_id=default_user,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the station workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook file.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> Path:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand. The resolved destination is
    returned so callers such as the backup routine can report it.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)
    return dest


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def iter_records(workbook: Workbook, sheet_name: str) -> Iterable[Any]:
    """Iterate over the typed records stored on a collection sheet.

    The iterator skips the header row and any fully empty rows. Each remaining
    row is converted by the deserializer registered for ``sheet_name``.

    Args:
        workbook (Workbook): Workbook containing the sheet.
        sheet_name (str): One of the collection sheets from
            :class:`~petro_erp.constants.SheetName` (not ``Settings``).

    Yields:
        Row dataclasses such as :class:`FuelRow` or :class:`ShiftRow`.

    Raises:
        KeyError: If no deserializer is registered for ``sheet_name``.
    """

    try:
        deserializer = DESERIALIZERS[sheet_name]
    except KeyError as exc:
        raise KeyError(f"Unknown collection sheet: {sheet_name}") from exc

    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserializer(raw)


def replace_records(workbook: Workbook, sheet_name: str, records: Sequence[Any]) -> None:
    """Overwrite every data row of ``sheet_name`` with ``records``.

    The header row is preserved. Records are serialized in their dataclass
    field order, which matches :data:`~petro_erp.constants.SHEET_COLUMNS`.
    """

    sheet = workbook[sheet_name]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    for record in records:
        sheet.append(serialize_record(record))


def read_station_settings(workbook: Workbook) -> StationSettings:
    """Read the key/value ``Settings`` sheet into :class:`StationSettings`.

    Unknown keys are ignored and missing keys fall back to empty strings.
    """

    sheet = workbook[SETTINGS_SHEET]
    stored: Dict[str, str] = {}
    for key, value in sheet.iter_rows(min_row=2, max_col=2, values_only=True):
        if key is not None:
            stored[str(key)] = "" if value is None else str(value)
    return StationSettings(
        **{attr: stored.get(column, "") for attr, column in SETTINGS_KEYS.items()}
    )


def write_station_settings(workbook: Workbook, settings: StationSettings) -> None:
    """Overwrite the ``Settings`` sheet with the supplied values."""

    sheet = workbook[SETTINGS_SHEET]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    for attr, column in SETTINGS_KEYS.items():
        sheet.append([column, getattr(settings, attr)])


def load_collection(workbook: Workbook, sheet_name: str) -> Any:
    """Load a collection wholesale.

    Returns :class:`StationSettings` for the ``Settings`` sheet and a list of
    row dataclasses for every other sheet.
    """

    if sheet_name == SETTINGS_SHEET:
        return read_station_settings(workbook)
    records = list(iter_records(workbook, sheet_name))
    log.debug("Loaded %d records from sheet '%s'", len(records), sheet_name)
    return records


def write_collection(workbook: Workbook, sheet_name: str, records: Any) -> None:
    """Overwrite a collection wholesale, dispatching on the sheet kind."""

    if sheet_name == SETTINGS_SHEET:
        write_station_settings(workbook, records)
    else:
        replace_records(workbook, sheet_name, records)
    log.debug("Wrote sheet '%s'", sheet_name)


def ensure_sheets(workbook: Workbook) -> List[str]:
    """Create any collection sheet missing from ``workbook``.

    Returns the names of the sheets that were added, so callers can log
    upgrades of older workbooks.
    """

    added: List[str] = []
    for sheet_name, columns in SHEET_COLUMNS.items():
        if sheet_name not in workbook.sheetnames:
            sheet = workbook.create_sheet(title=sheet_name)
            sheet.append(list(columns))
            added.append(sheet_name)
    return added


def serialize_record(record: Any) -> list[object]:
    """Convert a row dataclass into the worksheet column ordering.

    Values keep their Python types so :class:`~decimal.Decimal` precision
    survives the save. Tuples (supplier fuel lists) are joined with commas.
    """

    values: list[object] = []
    for item in fields(record):
        value = getattr(record, item.name)
        if isinstance(value, tuple):
            value = ",".join(value)
        values.append(value)
    return values


def _decimal(raw: object, default: str = "0") -> Decimal:
    return Decimal(str(raw)) if raw is not None and raw != "" else Decimal(default)


def _optional_decimal(raw: object) -> Optional[Decimal]:
    return Decimal(str(raw)) if raw is not None and raw != "" else None


def _optional_str(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def _text(raw: object) -> str:
    return str(raw) if raw is not None else ""


def _padded(raw_row: Sequence[object], width: int) -> Sequence[object]:
    # openpyxl trims trailing empty cells on some sheets
    if len(raw_row) >= width:
        return raw_row[:width]
    return tuple(raw_row) + (None,) * (width - len(raw_row))


def deserialize_user(raw_row: Sequence[object]) -> UserRow:
    """Convert a raw worksheet row into a :class:`UserRow`.

    PINs are coerced to ``str`` because Excel stores ``1234`` as a number
    when the cell was typed by hand.
    """

    user_id, username, name, role, pin = _padded(raw_row, 5)
    return UserRow(
        user_id=_text(user_id),
        username=_text(username),
        name=_text(name),
        role=_text(role),
        pin=_text(pin),
    )


def deserialize_staff(raw_row: Sequence[object]) -> StaffRow:
    """Convert a raw worksheet row into a :class:`StaffRow`."""

    staff_id, full_name, nationality, job_title, phone, email, salary = _padded(raw_row, 7)
    return StaffRow(
        staff_id=_text(staff_id),
        full_name=_text(full_name),
        nationality=_text(nationality),
        job_title=_text(job_title),
        phone=_text(phone),
        email=_text(email),
        salary=_decimal(salary, "0.00"),
    )


def deserialize_document(raw_row: Sequence[object]) -> DocumentRow:
    """Convert a raw worksheet row into a :class:`DocumentRow`."""

    document_id, owner_kind, owner_id, doc_type, expiry_date, file_name = _padded(raw_row, 6)
    return DocumentRow(
        document_id=_text(document_id),
        owner_kind=_text(owner_kind),
        owner_id=_optional_str(owner_id),
        doc_type=_text(doc_type),
        expiry_date=_text(expiry_date),
        file_name=_optional_str(file_name),
    )


def deserialize_fuel(raw_row: Sequence[object]) -> FuelRow:
    """Convert a raw worksheet row into a strongly typed fuel record.

    Numeric cells become :class:`~decimal.Decimal` instances and identifiers
    are coerced to ``str`` to avoid surprises caused by Excel automatically
    interpreting numbers.
    """

    (
        fuel_id,
        name,
        sale_price,
        purchase_price,
        includes_tax,
        initial_stock,
        current_stock,
        alert_threshold,
    ) = _padded(raw_row, 8)
    return FuelRow(
        fuel_id=_text(fuel_id),
        name=_text(name),
        sale_price=_decimal(sale_price, "0.00"),
        purchase_price=_decimal(purchase_price, "0.00"),
        includes_tax=bool(includes_tax),
        initial_stock=_decimal(initial_stock),
        current_stock=_decimal(current_stock),
        alert_threshold=_decimal(alert_threshold),
    )


def deserialize_pump(raw_row: Sequence[object]) -> PumpRow:
    """Convert a raw worksheet row into a :class:`PumpRow`."""

    pump_id, pump_code, name, fuel_id, last_reading, current_reading, deficit = _padded(raw_row, 7)
    return PumpRow(
        pump_id=_text(pump_id),
        pump_code=_text(pump_code),
        name=_text(name),
        fuel_id=_text(fuel_id),
        last_reading=_decimal(last_reading),
        current_reading=_decimal(current_reading),
        deficit=_decimal(deficit),
    )


def deserialize_shift(raw_row: Sequence[object]) -> ShiftRow:
    """Convert a raw worksheet row into a :class:`ShiftRow`.

    Reconciliation columns of an open shift are blank on the sheet and map
    back to ``None``.
    """

    (
        shift_id,
        staff_id,
        staff_name,
        pump_code,
        fuel_id,
        fuel_name,
        price_at_open,
        start_reading,
        end_reading,
        start_time,
        end_time,
        status,
        total_liters,
        expected_amount,
        cash_amount,
        card_amount,
        shortage,
    ) = _padded(raw_row, 17)
    return ShiftRow(
        shift_id=_text(shift_id),
        staff_id=_text(staff_id),
        staff_name=_text(staff_name),
        pump_code=_text(pump_code),
        fuel_id=_text(fuel_id),
        fuel_name=_text(fuel_name),
        price_at_open=_decimal(price_at_open, "0.00"),
        start_reading=_decimal(start_reading),
        end_reading=_optional_decimal(end_reading),
        start_time=_text(start_time),
        end_time=_optional_str(end_time),
        status=_text(status),
        total_liters=_optional_decimal(total_liters),
        expected_amount=_optional_decimal(expected_amount),
        cash_amount=_optional_decimal(cash_amount),
        card_amount=_optional_decimal(card_amount),
        shortage=_optional_decimal(shortage),
    )


def deserialize_expense(raw_row: Sequence[object]) -> ExpenseRow:
    """Convert a raw worksheet row into an :class:`ExpenseRow`."""

    expense_id, category, expense_type, recurrence, amount, expense_date, description = _padded(raw_row, 7)
    return ExpenseRow(
        expense_id=_text(expense_id),
        category=_text(category),
        expense_type=_text(expense_type),
        recurrence=_text(recurrence),
        amount=_decimal(amount, "0.00"),
        expense_date=_text(expense_date),
        description=_text(description),
    )


def deserialize_supplier(raw_row: Sequence[object]) -> SupplierRow:
    """Convert a raw worksheet row into a :class:`SupplierRow`."""

    supplier_id, name, contact_person, phone, fuel_ids = _padded(raw_row, 5)
    fuel_list = tuple(part.strip() for part in _text(fuel_ids).split(",") if part.strip())
    return SupplierRow(
        supplier_id=_text(supplier_id),
        name=_text(name),
        contact_person=_text(contact_person),
        phone=_text(phone),
        fuel_ids=fuel_list,
    )


def deserialize_supply(raw_row: Sequence[object]) -> SupplyRow:
    """Convert a raw worksheet row into a :class:`SupplyRow`."""

    supply_id, supplier_id, supplier_name, fuel_id, fuel_name, quantity, cost, timestamp_iso = _padded(raw_row, 8)
    return SupplyRow(
        supply_id=_text(supply_id),
        supplier_id=_text(supplier_id),
        supplier_name=_text(supplier_name),
        fuel_id=_text(fuel_id),
        fuel_name=_text(fuel_name),
        quantity=_decimal(quantity),
        cost=_decimal(cost, "0.00"),
        timestamp_iso=_text(timestamp_iso),
    )


def deserialize_audit(raw_row: Sequence[object]) -> AuditRow:
    """Convert a raw worksheet row into an :class:`AuditRow`."""

    entry_id, user_id, user_name, action, details, timestamp_iso = _padded(raw_row, 6)
    return AuditRow(
        entry_id=_text(entry_id),
        user_id=_text(user_id),
        user_name=_text(user_name),
        action=_text(action),
        details=_text(details),
        timestamp_iso=_text(timestamp_iso),
    )


def deserialize_backup(raw_row: Sequence[object]) -> BackupRow:
    """Convert a raw worksheet row into a :class:`BackupRow`."""

    backup_id, timestamp_iso, user_name, file_name = _padded(raw_row, 4)
    return BackupRow(
        backup_id=_text(backup_id),
        timestamp_iso=_text(timestamp_iso),
        user_name=_text(user_name),
        file_name=_text(file_name),
    )


DESERIALIZERS: Dict[str, Callable[[Sequence[object]], Any]] = {
    SheetName.USERS.value: deserialize_user,
    SheetName.STAFF.value: deserialize_staff,
    SheetName.DOCUMENTS.value: deserialize_document,
    SheetName.FUEL_PRODUCTS.value: deserialize_fuel,
    SheetName.PUMPS.value: deserialize_pump,
    SheetName.SHIFTS.value: deserialize_shift,
    SheetName.EXPENSES.value: deserialize_expense,
    SheetName.SUPPLIERS.value: deserialize_supplier,
    SheetName.SUPPLY_TRANSACTIONS.value: deserialize_supply,
    SheetName.AUDIT_LOG.value: deserialize_audit,
    SheetName.BACKUP_LOG.value: deserialize_backup,
}
