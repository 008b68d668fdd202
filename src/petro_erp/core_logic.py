"""Business logic layer for Petro ERP.

This module holds the station's rule engine: the shift state machine, the
fuel ledger, the audit recorder, and the bookkeeping around users, staff,
documents, suppliers, expenses and company settings. It consumes the Data
Access Layer (DAL) for all I/O.

State lives in a :class:`RuntimeContext`. Each collection is loaded once from
the workbook into an immutable tuple; commands build a replacement tuple,
commit it, and notify subscribers with a :class:`ChangeEvent`. The workbook
writer is one such subscriber, so persistence never runs inline with the
rules themselves.
"""

from __future__ import annotations

import itertools
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import (
    AUDIT_LOG_CAP,
    EXPECTED_SCHEMA_VERSION,
    EXPIRY_WARNING_DAYS,
    AuditAction,
    DocumentOwner,
    ExpenseCategory,
    ExpenseType,
    Recurrence,
    SheetName,
    ShiftStatus,
    UserRole,
)


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced fuel, pump, staff member, or record is unknown."""


class StaffShiftConflictError(BusinessRuleViolation):
    """Raised when a staff member already holds an open shift."""


class PumpShiftConflictError(BusinessRuleViolation):
    """Raised when a pump is already attached to an open shift."""


class InvalidReadingError(BusinessRuleViolation):
    """Raised when a closing meter reading is below the opening reading."""


class ShiftStateError(BusinessRuleViolation):
    """Raised when a shift transition is attempted from the wrong state."""


class LastUserError(BusinessRuleViolation):
    """Raised when deleting a user would leave the system without any user."""


IdFactory = Callable[[str], str]


def generate_id(prefix: str) -> str:
    """Return a random identifier such as ``SH-3f9a1c0b2d``."""

    return f"{prefix}-{uuid.uuid4().hex[:10]}"


def sequential_id_factory(start: int = 1) -> IdFactory:
    """Build an id factory that yields ``PREFIX-000001``, ``PREFIX-000002``...

    The counter is shared by every prefix, so ids stay unique across
    collections. Used by tests and data migrations that need reproducible
    identifiers.
    """

    counter = itertools.count(start)

    def _next_id(prefix: str) -> str:
        return f"{prefix}-{next(counter):06d}"

    return _next_id


@dataclass(frozen=True)
class ChangeEvent:
    """Notification emitted after a collection has been replaced."""

    collection: SheetName
    records: Any


Listener = Callable[[ChangeEvent], None]


@dataclass(frozen=True)
class RuntimeContext:
    """Explicit store for configuration, workbook handle, and station state.

    ``actor_id`` names the user recorded on audit entries; when ``None`` the
    ``DefaultUser`` from ``config.ini`` acts. ``id_factory`` is shared by every
    entity constructor.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    actor_id: Optional[str] = None
    id_factory: IdFactory = field(default=generate_id, repr=False, compare=False)
    _state: Dict[SheetName, Any] = field(default_factory=dict, repr=False, compare=False)
    _listeners: List[Listener] = field(default_factory=list, repr=False, compare=False)


@dataclass(frozen=True)
class StartShiftCommand:
    """User intent for opening a shift on a pump."""

    staff_id: str
    pump_id: str
    start_reading: Optional[Decimal] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class CloseShiftCommand:
    """User intent for reconciling and closing an open shift."""

    shift_id: str
    end_reading: Decimal
    cash_amount: Decimal
    card_amount: Decimal
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ReceiveSupplyCommand:
    """User intent for booking a fuel delivery from a supplier."""

    supplier_id: str
    fuel_id: str
    quantity: Decimal
    cost: Decimal
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ExpenseCommand:
    """User intent for recording an expense."""

    category: ExpenseCategory
    expense_type: ExpenseType
    amount: Decimal
    expense_date: date
    recurrence: Recurrence = Recurrence.ONCE
    description: str = ""


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or, when it is ``None``, the current UTC time."""

    return candidate if candidate is not None else datetime.now(UTC)


# ---------------------------------------------------------------------------
# Store plumbing
# ---------------------------------------------------------------------------


def subscribe(context: RuntimeContext, listener: Listener) -> Callable[[], None]:
    """Register ``listener`` for change events and return an unsubscribe hook."""

    context._listeners.append(listener)

    def _unsubscribe() -> None:
        if listener in context._listeners:
            context._listeners.remove(listener)

    return _unsubscribe


def attach_workbook_writer(context: RuntimeContext) -> Callable[[], None]:
    """Mirror every committed collection onto the context's workbook.

    The writer overwrites the changed sheet wholesale. Saving the workbook to
    disk remains the job of :func:`persist_context`.
    """

    def _write(event: ChangeEvent) -> None:
        data_manager.write_collection(context.workbook, event.collection.value, event.records)

    return subscribe(context, _write)


def _collection(context: RuntimeContext, sheet: SheetName) -> Any:
    """Return the current state of a collection, loading it on first access."""

    state = context._state
    if sheet not in state:
        loaded = data_manager.load_collection(context.workbook, sheet.value)
        state[sheet] = loaded if sheet is SheetName.SETTINGS else tuple(loaded)
        log.debug("Loaded collection '%s' into runtime state", sheet.value)
    return state[sheet]


def _commit(context: RuntimeContext, sheet: SheetName, records: Any, *, best_effort: bool = False) -> None:
    """Swap in a new collection value and notify subscribers.

    With ``best_effort`` a failing subscriber is logged and skipped instead of
    propagating. Audit recording uses this so it can never fail the mutation
    that triggered it.
    """

    context._state[sheet] = records
    event = ChangeEvent(collection=sheet, records=records)
    for listener in list(context._listeners):
        try:
            listener(event)
        except Exception:
            if not best_effort:
                raise
            log.exception("Subscriber failed while committing '%s'; continuing", sheet.value)


def _replace_record(records: Sequence[Any], key_attr: str, key: str, updated: Any) -> Tuple[Any, ...]:
    return tuple(updated if getattr(record, key_attr) == key else record for record in records)


def _find(records: Iterable[Any], key_attr: str, key: str) -> Optional[Any]:
    for record in records:
        if getattr(record, key_attr) == key:
            return record
    return None


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    actor_id: Optional[str] = None,
    id_factory: Optional[IdFactory] = None,
) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    The helper resolves ``config.ini``, parses settings, opens the workbook,
    adds any sheet an older workbook lacks, and attaches the workbook writer
    so every committed change is mirrored onto the sheets.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.
        actor_id (str | None): User recorded on audit entries. Defaults to the
            configured ``DefaultUser``.
        id_factory (IdFactory | None): Identifier generator shared by all
            entity constructors. Defaults to :func:`generate_id`.

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
    added = data_manager.ensure_sheets(workbook)
    if added:
        log.warning("Workbook '%s' was missing sheets: %s", settings.data_file, ", ".join(added))
    context = RuntimeContext(
        settings=settings,
        workbook=workbook,
        actor_id=actor_id,
        id_factory=id_factory or generate_id,
    )
    attach_workbook_writer(context)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return context


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


def persist_context(context: RuntimeContext) -> None:
    """Persist the workbook to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    A new :class:`RuntimeContext` is produced with the same settings, actor
    and id factory, an empty state, and a fresh workbook writer.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    fresh = RuntimeContext(
        settings=context.settings,
        workbook=workbook,
        actor_id=context.actor_id,
        id_factory=context.id_factory,
    )
    attach_workbook_writer(fresh)
    return fresh


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Not a number: {value!r}") from exc


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"true", "1", "yes", "y"}:
        return True
    if text in {"false", "0", "no", "n"}:
        return False
    raise ValueError(f"Not a boolean: {value!r}")


def _to_iso_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value).strip()).isoformat()
    except ValueError as exc:
        raise ValueError(f"Not an ISO date: {value!r}") from exc


def _enum_value(enum_type: type) -> Callable[[Any], str]:
    def _convert(value: Any) -> str:
        try:
            return enum_type(value).value
        except ValueError as exc:
            raise ValueError(f"Unsupported {enum_type.__name__}: {value!r}") from exc

    return _convert


FUEL_FIELD_TYPES: Mapping[str, Callable[[Any], Any]] = {
    "name": str,
    "sale_price": _to_decimal,
    "purchase_price": _to_decimal,
    "includes_tax": _to_bool,
    "initial_stock": _to_decimal,
    "current_stock": _to_decimal,
    "alert_threshold": _to_decimal,
}

PUMP_FIELD_TYPES: Mapping[str, Callable[[Any], Any]] = {
    "pump_code": str,
    "name": str,
    "fuel_id": str,
    "last_reading": _to_decimal,
    "current_reading": _to_decimal,
    "deficit": _to_decimal,
}

EXPENSE_FIELD_TYPES: Mapping[str, Callable[[Any], Any]] = {
    "category": _enum_value(ExpenseCategory),
    "expense_type": _enum_value(ExpenseType),
    "recurrence": _enum_value(Recurrence),
    "amount": _to_decimal,
    "expense_date": _to_iso_date,
    "description": str,
}

USER_FIELD_TYPES: Mapping[str, Callable[[Any], Any]] = {
    "username": lambda value: str(value).strip().lower(),
    "name": str,
    "role": _enum_value(UserRole),
    "pin": str,
}


def _apply_field_update(record: Any, field_name: str, value: Any, field_types: Mapping[str, Callable[[Any], Any]]) -> Any:
    """Return ``record`` with one field overwritten by a coerced value.

    Raises:
        BusinessRuleViolation: If ``field_name`` is not editable.
        ValueError: If ``value`` cannot be coerced to the field's type.
    """
    converter = field_types.get(field_name)
    if converter is None:
        log.error("Rejected update of unknown field '%s' on %s", field_name, type(record).__name__)
        raise BusinessRuleViolation(
            f"Unknown field '{field_name}'; expected one of: {', '.join(sorted(field_types))}"
        )
    return replace(record, **{field_name: converter(value)})


# ---------------------------------------------------------------------------
# Audit recorder
# ---------------------------------------------------------------------------


def _actor(context: RuntimeContext, override: Optional[str] = None) -> Tuple[str, str]:
    actor_id = override or context.actor_id or context.settings.default_user_id
    user = _find(_collection(context, SheetName.USERS), "user_id", actor_id)
    return actor_id, (user.name if user is not None else actor_id)


def record_audit(
    context: RuntimeContext,
    action: AuditAction,
    details: str,
    actor_id: Optional[str] = None,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.AuditRow:
    """Prepend an audit entry for the acting user and cap the log.

    The newest entry sits at index 0 and the log never exceeds
    ``AUDIT_LOG_CAP`` entries; the oldest are dropped from the tail. Recording
    is best-effort: a failing subscriber is logged and does not propagate.

    ``actor_id`` overrides the context's acting user for this one entry.
    """
    action = AuditAction(action)
    user_id, user_name = _actor(context, actor_id)
    entry = data_manager.AuditRow(
        entry_id=context.id_factory("A"),
        user_id=user_id,
        user_name=user_name,
        action=action.value,
        details=details,
        timestamp_iso=_resolve_timestamp(timestamp).isoformat(),
    )
    entries = _collection(context, SheetName.AUDIT_LOG)
    _commit(
        context,
        SheetName.AUDIT_LOG,
        ((entry,) + tuple(entries))[:AUDIT_LOG_CAP],
        best_effort=True,
    )
    log.debug("Audit %s by %s: %s", action.value, user_name, details)
    return entry


def list_audit_log(context: RuntimeContext) -> List[data_manager.AuditRow]:
    """Return the audit log, newest entry first."""
    return list(_collection(context, SheetName.AUDIT_LOG))


def search_audit_log(context: RuntimeContext, term: str) -> List[data_manager.AuditRow]:
    """Filter the audit log by a case-insensitive substring.

    An entry matches when ``term`` occurs in its user name, action code, or
    details. An empty term returns the whole log.
    """
    needle = term.lower()
    return [
        entry
        for entry in _collection(context, SheetName.AUDIT_LOG)
        if needle in entry.user_name.lower()
        or needle in entry.action.lower()
        or needle in entry.details.lower()
    ]


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def list_fuels(context: RuntimeContext) -> List[data_manager.FuelRow]:
    """Return every fuel product in sheet order."""
    return list(_collection(context, SheetName.FUEL_PRODUCTS))


def list_pumps(context: RuntimeContext) -> List[data_manager.PumpRow]:
    """Return every pump meter in sheet order."""
    return list(_collection(context, SheetName.PUMPS))


def list_staff(context: RuntimeContext) -> List[data_manager.StaffRow]:
    return list(_collection(context, SheetName.STAFF))


def list_users(context: RuntimeContext) -> List[data_manager.UserRow]:
    return list(_collection(context, SheetName.USERS))


def list_expenses(context: RuntimeContext) -> List[data_manager.ExpenseRow]:
    return list(_collection(context, SheetName.EXPENSES))


def list_suppliers(context: RuntimeContext) -> List[data_manager.SupplierRow]:
    return list(_collection(context, SheetName.SUPPLIERS))


def list_supply_transactions(context: RuntimeContext) -> List[data_manager.SupplyRow]:
    """Return deliveries in the order they were received."""
    return list(_collection(context, SheetName.SUPPLY_TRANSACTIONS))


def list_documents(context: RuntimeContext) -> List[data_manager.DocumentRow]:
    return list(_collection(context, SheetName.DOCUMENTS))


def list_backups(context: RuntimeContext) -> List[data_manager.BackupRow]:
    """Return backup records, newest first."""
    return list(_collection(context, SheetName.BACKUP_LOG))


def list_shifts(
    context: RuntimeContext,
    *,
    status: Optional[ShiftStatus] = None,
    staff_id: Optional[str] = None,
) -> List[data_manager.ShiftRow]:
    """Return shifts in opening order, optionally filtered by status or staff."""
    shifts = _collection(context, SheetName.SHIFTS)
    if status is not None:
        shifts = [shift for shift in shifts if shift.status == ShiftStatus(status).value]
    if staff_id is not None:
        shifts = [shift for shift in shifts if shift.staff_id == staff_id]
    return list(shifts)


def list_open_shifts(context: RuntimeContext) -> List[data_manager.ShiftRow]:
    """Return the shifts currently in progress."""
    return list_shifts(context, status=ShiftStatus.OPEN)


def _get(context: RuntimeContext, sheet: SheetName, key_attr: str, key: str, label: str) -> Any:
    record = _find(_collection(context, sheet), key_attr, key)
    if record is None:
        log.warning("%s lookup failed for id '%s'", label.capitalize(), key)
        raise MissingReferenceError(f"Unknown {label} id: {key}")
    return record


def get_fuel(context: RuntimeContext, fuel_id: str) -> data_manager.FuelRow:
    """Resolve a fuel product by id.

    Raises:
        MissingReferenceError: If ``fuel_id`` is absent from the workbook.
    """
    return _get(context, SheetName.FUEL_PRODUCTS, "fuel_id", fuel_id, "fuel")


def get_pump(context: RuntimeContext, pump_id: str) -> data_manager.PumpRow:
    """Resolve a pump meter by id.

    Raises:
        MissingReferenceError: If ``pump_id`` is absent from the workbook.
    """
    return _get(context, SheetName.PUMPS, "pump_id", pump_id, "pump")


def get_shift(context: RuntimeContext, shift_id: str) -> data_manager.ShiftRow:
    return _get(context, SheetName.SHIFTS, "shift_id", shift_id, "shift")


def get_staff(context: RuntimeContext, staff_id: str) -> data_manager.StaffRow:
    return _get(context, SheetName.STAFF, "staff_id", staff_id, "staff")


def get_user(context: RuntimeContext, user_id: str) -> data_manager.UserRow:
    return _get(context, SheetName.USERS, "user_id", user_id, "user")


def get_supplier(context: RuntimeContext, supplier_id: str) -> data_manager.SupplierRow:
    return _get(context, SheetName.SUPPLIERS, "supplier_id", supplier_id, "supplier")


def get_expense(context: RuntimeContext, expense_id: str) -> data_manager.ExpenseRow:
    return _get(context, SheetName.EXPENSES, "expense_id", expense_id, "expense")


def get_document(context: RuntimeContext, document_id: str) -> data_manager.DocumentRow:
    return _get(context, SheetName.DOCUMENTS, "document_id", document_id, "document")


# ---------------------------------------------------------------------------
# Shift state machine
# ---------------------------------------------------------------------------


def resolve_shift_operator(context: RuntimeContext, staff_id: str) -> Tuple[str, str]:
    """Return ``(id, display name)`` of whoever is allowed to run a shift.

    Staff members qualify, and so do system users holding the ADMIN role so
    the station manager can cover a pump.

    Raises:
        MissingReferenceError: If ``staff_id`` matches neither.
    """
    staff = _find(_collection(context, SheetName.STAFF), "staff_id", staff_id)
    if staff is not None:
        return staff.staff_id, staff.full_name
    user = _find(_collection(context, SheetName.USERS), "user_id", staff_id)
    if user is not None and user.role == UserRole.ADMIN.value:
        return user.user_id, user.name
    log.warning("Shift operator lookup failed for id '%s'", staff_id)
    raise MissingReferenceError(f"Unknown staff id: {staff_id}")


def start_shift(context: RuntimeContext, command: StartShiftCommand) -> data_manager.ShiftRow:
    """Open a shift for a staff member on a pump.

    The fuel's current sale price is frozen on the shift as
    ``price_at_open``; later price changes do not touch it. The opening
    reading is the command override when given, otherwise the pump's current
    reading. Stock is not touched until the shift closes.

    Args:
        context (RuntimeContext): Runtime context providing state access.
        command (StartShiftCommand): Structured intent describing the shift.

    Returns:
        data_manager.ShiftRow: The newly opened shift.

    Raises:
        MissingReferenceError: If the staff member, pump, or the pump's fuel
            is unknown.
        StaffShiftConflictError: If the staff member already has an open
            shift.
        PumpShiftConflictError: If the pump is attached to an open shift.
    """
    operator_id, operator_name = resolve_shift_operator(context, command.staff_id)
    pump = get_pump(context, command.pump_id)
    fuel = get_fuel(context, pump.fuel_id)

    open_shifts = list_open_shifts(context)
    if any(shift.staff_id == operator_id for shift in open_shifts):
        log.warning("Rejected shift open: staff '%s' already has an open shift", operator_id)
        raise StaffShiftConflictError(f"Staff '{operator_name}' already has an open shift")
    if any(shift.pump_code == pump.pump_code for shift in open_shifts):
        log.warning("Rejected shift open: pump '%s' already in use", pump.pump_code)
        raise PumpShiftConflictError(f"Pump '{pump.pump_code}' is already assigned to an open shift")

    start_reading = pump.current_reading if command.start_reading is None else _to_decimal(command.start_reading)
    timestamp = _resolve_timestamp(command.timestamp)
    shift = data_manager.ShiftRow(
        shift_id=context.id_factory("SH"),
        staff_id=operator_id,
        staff_name=operator_name,
        pump_code=pump.pump_code,
        fuel_id=fuel.fuel_id,
        fuel_name=fuel.name,
        price_at_open=fuel.sale_price,
        start_reading=start_reading,
        end_reading=None,
        start_time=timestamp.isoformat(),
        end_time=None,
        status=ShiftStatus.OPEN.value,
    )
    _commit(context, SheetName.SHIFTS, _collection(context, SheetName.SHIFTS) + (shift,))
    log.info(
        "Opened shift '%s' for '%s' on pump '%s' (reading=%s, price=%s)",
        shift.shift_id,
        operator_name,
        pump.pump_code,
        start_reading,
        fuel.sale_price,
    )
    record_audit(
        context,
        AuditAction.OPS_SHIFT_OPEN,
        f"Shift {shift.shift_id} opened by {operator_name} on pump {pump.pump_code} "
        f"({fuel.name}) at reading {start_reading}",
        timestamp=timestamp,
    )
    return shift


def reconcile_shift(
    shift: data_manager.ShiftRow,
    *,
    end_reading: Decimal,
    cash_amount: Decimal,
    card_amount: Decimal,
    end_time: datetime,
) -> data_manager.ShiftRow:
    """Compute the closing figures of ``shift`` without touching any state.

    ``shortage`` is expected minus collected money, so a positive value means
    cash is missing and a negative one is a surplus.

    Raises:
        InvalidReadingError: If ``end_reading`` is below the start reading.
    """
    if end_reading < shift.start_reading:
        log.error(
            "Closing reading %s is below opening reading %s for shift '%s'",
            end_reading,
            shift.start_reading,
            shift.shift_id,
        )
        raise InvalidReadingError("End reading cannot be less than start reading")

    consumption = end_reading - shift.start_reading
    expected = consumption * shift.price_at_open
    shortage = expected - (cash_amount + card_amount)
    return replace(
        shift,
        end_reading=end_reading,
        end_time=end_time.isoformat(),
        status=ShiftStatus.CLOSED.value,
        total_liters=consumption,
        expected_amount=expected,
        cash_amount=cash_amount,
        card_amount=card_amount,
        shortage=shortage,
    )


def close_shift(context: RuntimeContext, command: CloseShiftCommand) -> data_manager.ShiftRow:
    """Reconcile and close an open shift, then deduct the fuel it sold.

    Args:
        context (RuntimeContext): Runtime context providing state access.
        command (CloseShiftCommand): Closing reading and collected amounts.

    Returns:
        data_manager.ShiftRow: The closed shift with its settlement figures.

    Raises:
        MissingReferenceError: If the shift id is unknown.
        ShiftStateError: If the shift is already closed.
        InvalidReadingError: If the closing reading is below the opening one.
    """
    shift = get_shift(context, command.shift_id)
    if shift.status != ShiftStatus.OPEN.value:
        log.error("Attempted to close shift '%s' in state %s", shift.shift_id, shift.status)
        raise ShiftStateError(f"Shift '{shift.shift_id}' is not open")

    timestamp = _resolve_timestamp(command.timestamp)
    closed = reconcile_shift(
        shift,
        end_reading=_to_decimal(command.end_reading),
        cash_amount=_to_decimal(command.cash_amount),
        card_amount=_to_decimal(command.card_amount),
        end_time=timestamp,
    )
    _commit(
        context,
        SheetName.SHIFTS,
        _replace_record(_collection(context, SheetName.SHIFTS), "shift_id", shift.shift_id, closed),
    )
    deduct_for_shift_close(context, closed.fuel_id, closed.total_liters)
    log.info(
        "Closed shift '%s' (liters=%s, expected=%s, shortage=%s)",
        closed.shift_id,
        closed.total_liters,
        closed.expected_amount,
        closed.shortage,
    )
    record_audit(
        context,
        AuditAction.OPS_SHIFT_CLOSE,
        f"Shift {closed.shift_id} closed by {closed.staff_name}: {closed.total_liters}L of "
        f"{closed.fuel_name} deducted, expected {closed.expected_amount}, shortage {closed.shortage}",
        timestamp=timestamp,
    )
    return closed


# ---------------------------------------------------------------------------
# Fuel ledger
# ---------------------------------------------------------------------------


def deduct_for_shift_close(context: RuntimeContext, fuel_id: str, quantity: Decimal) -> Optional[data_manager.FuelRow]:
    """Subtract sold liters from a fuel's stock. No floor at zero.

    A fuel deleted after its shift opened is skipped with a warning, leaving
    the rest of the close intact. Audit is the caller's responsibility.
    """
    fuels = _collection(context, SheetName.FUEL_PRODUCTS)
    fuel = _find(fuels, "fuel_id", fuel_id)
    if fuel is None:
        log.warning("Stock deduction skipped: fuel '%s' no longer exists", fuel_id)
        return None

    updated = replace(fuel, current_stock=fuel.current_stock - quantity)
    if updated.current_stock < 0:
        log.warning("Stock for fuel '%s' is now negative (%s)", fuel_id, updated.current_stock)
    _commit(context, SheetName.FUEL_PRODUCTS, _replace_record(fuels, "fuel_id", fuel_id, updated))
    return updated


def receive_supply(context: RuntimeContext, command: ReceiveSupplyCommand) -> data_manager.SupplyRow:
    """Book a delivery: raise the fuel's stock and append a supply record.

    Quantities are accepted as given. Zero or negative quantities are logged
    as a warning but still applied.

    Raises:
        MissingReferenceError: If the supplier or fuel is unknown.
    """
    supplier = get_supplier(context, command.supplier_id)
    fuel = get_fuel(context, command.fuel_id)
    quantity = _to_decimal(command.quantity)
    cost = _to_decimal(command.cost)
    if quantity <= 0:
        log.warning("Accepted non-positive supply quantity %s for fuel '%s'", quantity, fuel.fuel_id)

    timestamp = _resolve_timestamp(command.timestamp)
    supply = data_manager.SupplyRow(
        supply_id=context.id_factory("SU"),
        supplier_id=supplier.supplier_id,
        supplier_name=supplier.name,
        fuel_id=fuel.fuel_id,
        fuel_name=fuel.name,
        quantity=quantity,
        cost=cost,
        timestamp_iso=timestamp.isoformat(),
    )
    updated = replace(fuel, current_stock=fuel.current_stock + quantity)
    _commit(
        context,
        SheetName.FUEL_PRODUCTS,
        _replace_record(_collection(context, SheetName.FUEL_PRODUCTS), "fuel_id", fuel.fuel_id, updated),
    )
    _commit(context, SheetName.SUPPLY_TRANSACTIONS, _collection(context, SheetName.SUPPLY_TRANSACTIONS) + (supply,))
    log.info(
        "Received %sL of '%s' from '%s' (cost=%s)",
        quantity,
        fuel.fuel_id,
        supplier.supplier_id,
        cost,
    )
    record_audit(
        context,
        AuditAction.PRO_SUPPLY_RECEIVE,
        f"Received {quantity}L of {fuel.name} from {supplier.name}",
        timestamp=timestamp,
    )
    return supply


def add_fuel_product(
    context: RuntimeContext,
    *,
    name: str,
    sale_price: Decimal,
    purchase_price: Decimal,
    initial_stock: Decimal = Decimal("0"),
    alert_threshold: Decimal = Decimal("5000"),
    includes_tax: bool = True,
    current_stock: Optional[Decimal] = None,
) -> data_manager.FuelRow:
    """Register a fuel product. Current stock starts at the initial stock."""
    initial = _to_decimal(initial_stock)
    fuel = data_manager.FuelRow(
        fuel_id=context.id_factory("F"),
        name=name,
        sale_price=_to_decimal(sale_price),
        purchase_price=_to_decimal(purchase_price),
        includes_tax=includes_tax,
        initial_stock=initial,
        current_stock=initial if current_stock is None else _to_decimal(current_stock),
        alert_threshold=_to_decimal(alert_threshold),
    )
    _commit(context, SheetName.FUEL_PRODUCTS, _collection(context, SheetName.FUEL_PRODUCTS) + (fuel,))
    log.info("Added fuel '%s' (%s)", fuel.fuel_id, fuel.name)
    record_audit(context, AuditAction.INV_STOCK_UPDATE, f"Fuel {fuel.name} added with stock {fuel.current_stock}L")
    return fuel


def adjust_fuel_product(context: RuntimeContext, fuel_id: str, field_name: str, value: Any) -> data_manager.FuelRow:
    """Overwrite one field of a fuel product, as an administrator would.

    No derived invariant is re-checked: open shifts keep their frozen price
    and stock may be set to any value.

    Raises:
        MissingReferenceError: If the fuel is unknown.
        BusinessRuleViolation: If ``field_name`` is not editable.
        ValueError: If ``value`` does not match the field type.
    """
    fuel = get_fuel(context, fuel_id)
    updated = _apply_field_update(fuel, field_name, value, FUEL_FIELD_TYPES)
    _commit(
        context,
        SheetName.FUEL_PRODUCTS,
        _replace_record(_collection(context, SheetName.FUEL_PRODUCTS), "fuel_id", fuel_id, updated),
    )
    log.info("Adjusted fuel '%s': %s=%s", fuel_id, field_name, getattr(updated, field_name))
    record_audit(
        context,
        AuditAction.INV_STOCK_UPDATE,
        f"Fuel {fuel.name} {field_name} changed from {getattr(fuel, field_name)} to {getattr(updated, field_name)}",
    )
    return updated


def remove_fuel_product(context: RuntimeContext, fuel_id: str) -> None:
    """Delete a fuel product. Shifts and supplies referencing it are kept."""
    fuel = get_fuel(context, fuel_id)
    remaining = tuple(item for item in _collection(context, SheetName.FUEL_PRODUCTS) if item.fuel_id != fuel_id)
    _commit(context, SheetName.FUEL_PRODUCTS, remaining)
    log.info("Removed fuel '%s'", fuel_id)
    record_audit(context, AuditAction.INV_STOCK_UPDATE, f"Fuel {fuel.name} removed")


def list_low_stock(context: RuntimeContext) -> List[data_manager.FuelRow]:
    """Return fuels whose current stock is below their alert threshold."""
    return [fuel for fuel in _collection(context, SheetName.FUEL_PRODUCTS) if fuel.current_stock < fuel.alert_threshold]


def calculate_stock_value(context: RuntimeContext) -> Decimal:
    """Value the tanks at purchase price."""
    return sum(
        (fuel.current_stock * fuel.purchase_price for fuel in _collection(context, SheetName.FUEL_PRODUCTS)),
        Decimal("0"),
    )


# ---------------------------------------------------------------------------
# Pump registry
# ---------------------------------------------------------------------------


def add_pump(
    context: RuntimeContext,
    *,
    pump_code: str,
    name: str,
    fuel_id: str,
    reading: Decimal = Decimal("0"),
) -> data_manager.PumpRow:
    """Register a pump nozzle linked to an existing fuel.

    Raises:
        MissingReferenceError: If ``fuel_id`` is unknown.
    """
    get_fuel(context, fuel_id)
    start = _to_decimal(reading)
    pump = data_manager.PumpRow(
        pump_id=context.id_factory("P"),
        pump_code=pump_code,
        name=name,
        fuel_id=fuel_id,
        last_reading=start,
        current_reading=start,
        deficit=Decimal("0"),
    )
    _commit(context, SheetName.PUMPS, _collection(context, SheetName.PUMPS) + (pump,))
    log.info("Added pump '%s' (code %s)", pump.pump_id, pump_code)
    record_audit(context, AuditAction.OPS_PUMP_UPDATE, f"Pump {pump_code} ({name}) added")
    return pump


def update_pump(context: RuntimeContext, pump_id: str, field_name: str, value: Any) -> data_manager.PumpRow:
    """Overwrite one field of a pump meter.

    Readings are not validated here; the shift close is where monotonicity is
    enforced. Negative deficits are accepted with a warning.
    """
    pump = get_pump(context, pump_id)
    updated = _apply_field_update(pump, field_name, value, PUMP_FIELD_TYPES)
    if field_name == "fuel_id":
        get_fuel(context, updated.fuel_id)
    if updated.deficit < 0:
        log.warning("Pump '%s' deficit set to a negative value (%s)", pump_id, updated.deficit)
    _commit(context, SheetName.PUMPS, _replace_record(_collection(context, SheetName.PUMPS), "pump_id", pump_id, updated))
    log.info("Updated pump '%s': %s=%s", pump_id, field_name, getattr(updated, field_name))
    record_audit(
        context,
        AuditAction.OPS_PUMP_UPDATE,
        f"Pump {updated.pump_code} {field_name} changed from {getattr(pump, field_name)} to {getattr(updated, field_name)}",
    )
    return updated


# ---------------------------------------------------------------------------
# Staff and documents
# ---------------------------------------------------------------------------


def add_staff(
    context: RuntimeContext,
    *,
    full_name: str,
    nationality: str = "",
    job_title: str = "",
    phone: str = "",
    email: str = "",
    salary: Decimal = Decimal("0.00"),
) -> data_manager.StaffRow:
    """Register a staff member who can operate pumps."""
    staff = data_manager.StaffRow(
        staff_id=context.id_factory("ST"),
        full_name=full_name,
        nationality=nationality,
        job_title=job_title,
        phone=phone,
        email=email,
        salary=_to_decimal(salary),
    )
    _commit(context, SheetName.STAFF, _collection(context, SheetName.STAFF) + (staff,))
    log.info("Added staff member '%s' (%s)", staff.staff_id, full_name)
    record_audit(context, AuditAction.HR_STAFF_MGMT, f"Staff member {full_name} added")
    return staff


def remove_staff(context: RuntimeContext, staff_id: str) -> None:
    """Delete a staff member and their documents. Shift history is kept.

    Raises:
        StaffShiftConflictError: If the staff member still has an open shift.
    """
    staff = get_staff(context, staff_id)
    if any(shift.staff_id == staff_id for shift in list_open_shifts(context)):
        raise StaffShiftConflictError(f"Staff '{staff.full_name}' still has an open shift")
    _commit(context, SheetName.STAFF, tuple(s for s in _collection(context, SheetName.STAFF) if s.staff_id != staff_id))
    documents = _collection(context, SheetName.DOCUMENTS)
    kept = tuple(doc for doc in documents if not (doc.owner_kind == DocumentOwner.STAFF.value and doc.owner_id == staff_id))
    if len(kept) != len(documents):
        _commit(context, SheetName.DOCUMENTS, kept)
    log.info("Removed staff member '%s'", staff_id)
    record_audit(context, AuditAction.HR_STAFF_MGMT, f"Staff member {staff.full_name} removed")


def add_document(
    context: RuntimeContext,
    *,
    owner_kind: DocumentOwner,
    doc_type: str,
    expiry_date: date | str,
    owner_id: Optional[str] = None,
    file_name: Optional[str] = None,
) -> data_manager.DocumentRow:
    """Track a compliance document and its expiry date.

    Staff documents must reference an existing staff member; station
    documents carry no owner id.
    """
    kind = DocumentOwner(owner_kind)
    if kind is DocumentOwner.STAFF:
        if owner_id is None:
            raise BusinessRuleViolation("Staff documents require an owner id")
        get_staff(context, owner_id)
    else:
        owner_id = None
    document = data_manager.DocumentRow(
        document_id=context.id_factory("D"),
        owner_kind=kind.value,
        owner_id=owner_id,
        doc_type=doc_type,
        expiry_date=_to_iso_date(expiry_date),
        file_name=file_name,
    )
    _commit(context, SheetName.DOCUMENTS, _collection(context, SheetName.DOCUMENTS) + (document,))
    log.info("Added %s document '%s' (%s)", kind.value.lower(), document.document_id, doc_type)
    record_audit(
        context,
        AuditAction.GOV_DOC_MGMT,
        f"{kind.value.title()} document {doc_type} added, expires {document.expiry_date}",
    )
    return document


def remove_document(context: RuntimeContext, document_id: str) -> None:
    document = get_document(context, document_id)
    _commit(
        context,
        SheetName.DOCUMENTS,
        tuple(doc for doc in _collection(context, SheetName.DOCUMENTS) if doc.document_id != document_id),
    )
    log.info("Removed document '%s'", document_id)
    record_audit(context, AuditAction.GOV_DOC_MGMT, f"Document {document.doc_type} removed")


def days_remaining(expiry_date: str, *, today: Optional[date] = None) -> int:
    """Whole days until ``expiry_date``; negative once it has passed.

    Raises:
        ValueError: If ``expiry_date`` is blank or not an ISO date.
    """
    today = today or date.today()
    return (date.fromisoformat(_to_iso_date(expiry_date[:10])) - today).days


def list_expiring_documents(
    context: RuntimeContext,
    *,
    within_days: int = EXPIRY_WARNING_DAYS,
    today: Optional[date] = None,
) -> List[Tuple[data_manager.DocumentRow, int]]:
    """Return ``(document, days_remaining)`` pairs expiring within the window.

    Expired documents are included with negative day counts. Results are
    sorted most urgent first. Rows without a readable expiry date are skipped
    with a warning.
    """
    flagged = []
    for document in _collection(context, SheetName.DOCUMENTS):
        try:
            remaining = days_remaining(document.expiry_date, today=today)
        except ValueError:
            log.warning("Skipped document '%s': unreadable expiry date %r", document.document_id, document.expiry_date)
            continue
        if remaining <= within_days:
            flagged.append((document, remaining))
    flagged.sort(key=lambda pair: pair[1])
    return flagged


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def add_user(
    context: RuntimeContext,
    *,
    username: str,
    name: str,
    role: UserRole,
    pin: str,
) -> data_manager.UserRow:
    """Create a system user. Usernames are stored lowercase."""
    user = data_manager.UserRow(
        user_id=context.id_factory("U"),
        username=username.strip().lower(),
        name=name,
        role=UserRole(role).value,
        pin=str(pin),
    )
    _commit(context, SheetName.USERS, _collection(context, SheetName.USERS) + (user,))
    log.info("Added user '%s' (%s)", user.user_id, user.role)
    record_audit(context, AuditAction.SYS_USER_MGMT, f"User {user.username} added with role {user.role}")
    return user


def update_user(context: RuntimeContext, user_id: str, field_name: str, value: Any) -> data_manager.UserRow:
    user = get_user(context, user_id)
    updated = _apply_field_update(user, field_name, value, USER_FIELD_TYPES)
    _commit(context, SheetName.USERS, _replace_record(_collection(context, SheetName.USERS), "user_id", user_id, updated))
    log.info("Updated user '%s' field '%s'", user_id, field_name)
    record_audit(context, AuditAction.SYS_USER_MGMT, f"User {updated.username} {field_name} changed")
    return updated


def delete_user(context: RuntimeContext, user_id: str) -> None:
    """Delete a system user.

    Raises:
        LastUserError: If ``user_id`` is the only remaining user.
        MissingReferenceError: If the user is unknown.
    """
    user = get_user(context, user_id)
    users = _collection(context, SheetName.USERS)
    if len(users) <= 1:
        log.error("Refused to delete user '%s': at least one user must remain", user_id)
        raise LastUserError("At least one user must remain in the system")
    _commit(context, SheetName.USERS, tuple(u for u in users if u.user_id != user_id))
    log.info("Deleted user '%s'", user_id)
    record_audit(context, AuditAction.SYS_USER_MGMT, f"User {user.username} deleted")


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------


def add_supplier(
    context: RuntimeContext,
    *,
    name: str,
    contact_person: str = "",
    phone: str = "",
    fuel_ids: Sequence[str] = (),
) -> data_manager.SupplierRow:
    """Register a supply partner and the fuels they deliver."""
    for fuel_id in fuel_ids:
        get_fuel(context, fuel_id)
    supplier = data_manager.SupplierRow(
        supplier_id=context.id_factory("SP"),
        name=name,
        contact_person=contact_person,
        phone=phone,
        fuel_ids=tuple(fuel_ids),
    )
    _commit(context, SheetName.SUPPLIERS, _collection(context, SheetName.SUPPLIERS) + (supplier,))
    log.info("Added supplier '%s' (%s)", supplier.supplier_id, name)
    record_audit(context, AuditAction.PRO_SUPPLIER_MGMT, f"Supplier {name} added")
    return supplier


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------


def record_expense(context: RuntimeContext, command: ExpenseCommand) -> data_manager.ExpenseRow:
    """Append an expense. Recurrence is stored but never generates entries."""
    expense = data_manager.ExpenseRow(
        expense_id=context.id_factory("EX"),
        category=ExpenseCategory(command.category).value,
        expense_type=ExpenseType(command.expense_type).value,
        recurrence=Recurrence(command.recurrence).value,
        amount=_to_decimal(command.amount),
        expense_date=_to_iso_date(command.expense_date),
        description=command.description,
    )
    _commit(context, SheetName.EXPENSES, _collection(context, SheetName.EXPENSES) + (expense,))
    log.info("Recorded %s expense '%s' (%s)", expense.expense_type, expense.expense_id, expense.amount)
    record_audit(
        context,
        AuditAction.FIN_LEDGER_UPDATE,
        f"{expense.category} expense of {expense.amount} recorded for {expense.expense_date}",
    )
    return expense


def update_expense(context: RuntimeContext, expense_id: str, field_name: str, value: Any) -> data_manager.ExpenseRow:
    expense = get_expense(context, expense_id)
    updated = _apply_field_update(expense, field_name, value, EXPENSE_FIELD_TYPES)
    _commit(
        context,
        SheetName.EXPENSES,
        _replace_record(_collection(context, SheetName.EXPENSES), "expense_id", expense_id, updated),
    )
    log.info("Updated expense '%s': %s=%s", expense_id, field_name, getattr(updated, field_name))
    record_audit(context, AuditAction.FIN_LEDGER_UPDATE, f"Expense {expense_id} {field_name} changed")
    return updated


def delete_expense(context: RuntimeContext, expense_id: str) -> None:
    expense = get_expense(context, expense_id)
    _commit(
        context,
        SheetName.EXPENSES,
        tuple(item for item in _collection(context, SheetName.EXPENSES) if item.expense_id != expense_id),
    )
    log.info("Deleted expense '%s'", expense_id)
    record_audit(context, AuditAction.FIN_LEDGER_UPDATE, f"{expense.category} expense of {expense.amount} deleted")


# ---------------------------------------------------------------------------
# Settings and backups
# ---------------------------------------------------------------------------


def get_station_settings(context: RuntimeContext) -> data_manager.StationSettings:
    return _collection(context, SheetName.SETTINGS)


def update_station_settings(context: RuntimeContext, **changes: str) -> data_manager.StationSettings:
    """Update company identity fields used on exports.

    Raises:
        BusinessRuleViolation: If an unknown setting is supplied.
    """
    unknown = set(changes) - set(data_manager.SETTINGS_KEYS)
    if unknown:
        raise BusinessRuleViolation(f"Unknown settings: {', '.join(sorted(unknown))}")
    updated = replace(get_station_settings(context), **changes)
    _commit(context, SheetName.SETTINGS, updated)
    log.info("Updated station settings: %s", ", ".join(sorted(changes)))
    record_audit(
        context,
        AuditAction.SYS_CONFIG_COMPANY,
        f"Corporate identity and tax settings modified ({', '.join(sorted(changes))})",
    )
    return updated


def create_backup(context: RuntimeContext, destination: Path, *, timestamp: Optional[datetime] = None) -> data_manager.BackupRow:
    """Save a copy of the workbook to ``destination`` and log the backup."""
    moment = _resolve_timestamp(timestamp)
    saved = data_manager.save_workbook(context.workbook, destination)
    _, user_name = _actor(context)
    backup = data_manager.BackupRow(
        backup_id=context.id_factory("B"),
        timestamp_iso=moment.isoformat(),
        user_name=user_name,
        file_name=saved.name,
    )
    _commit(context, SheetName.BACKUP_LOG, (backup,) + _collection(context, SheetName.BACKUP_LOG))
    log.info("Backed up workbook to '%s'", saved)
    record_audit(context, AuditAction.SYS_BACKUP, f"Backup written to {saved.name}", timestamp=moment)
    return backup
