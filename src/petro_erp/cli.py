"""Command-line entry points for the Petro ERP toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing read-only views. Keeping the CLI thin lets the same parser
configuration be reused by tests, scripts, or another front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log, reports
from .constants import DocumentOwner, ExpenseCategory, ExpenseType, Recurrence, ShiftStatus, UserRole

SubParsers = argparse._SubParsersAction  # type: ignore[type-arg]


def decimal_argument(text: str) -> Decimal:
    """Parse a money or meter argument, rejecting anything that is not a number."""
    try:
        return Decimal(text.strip())
    except InvalidOperation as error:
        raise argparse.ArgumentTypeError(f"not a number: {text!r}") from error


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed.

    ``mutates`` tells :func:`main` whether the workbook must be saved after a
    successful run.
    """

    name: str
    help_text: str
    register: Callable[[SubParsers], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="petro-cli",
        description="Command-line tools for the Petro ERP station workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the working directory by default).",
    )
    parser.add_argument(
        "--user",
        dest="user_id",
        default=None,
        help="User id recorded on audit entries (defaults to [Defaults] DefaultUser).",
    )
    return parser


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def _spec(
    name: str,
    help_text: str,
    add_arguments: Callable[[argparse.ArgumentParser], None],
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    *,
    mutates: bool = True,
) -> CommandSpec:
    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, mutates=mutates)


def register_write_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as shifts, deliveries and expenses."""
    specs = {
        "add-fuel": _spec("add-fuel", "Register a fuel product.", _add_fuel_arguments, run_add_fuel),
        "adjust-fuel": _spec(
            "adjust-fuel",
            "Overwrite one field of a fuel product.",
            _field_update_arguments("--fuel-id", core_logic.FUEL_FIELD_TYPES),
            run_adjust_fuel,
        ),
        "remove-fuel": _spec("remove-fuel", "Delete a fuel product.", _id_argument("--fuel-id"), run_remove_fuel),
        "add-pump": _spec("add-pump", "Register a pump nozzle.", _add_pump_arguments, run_add_pump),
        "update-pump": _spec(
            "update-pump",
            "Overwrite one field of a pump meter.",
            _field_update_arguments("--pump-id", core_logic.PUMP_FIELD_TYPES),
            run_update_pump,
        ),
        "add-staff": _spec("add-staff", "Register a staff member.", _add_staff_arguments, run_add_staff),
        "add-document": _spec("add-document", "Track a compliance document.", _add_document_arguments, run_add_document),
        "add-user": _spec("add-user", "Create a system user.", _add_user_arguments, run_add_user),
        "delete-user": _spec("delete-user", "Delete a system user.", _id_argument("--user-id"), run_delete_user),
        "add-supplier": _spec("add-supplier", "Register a fuel supplier.", _add_supplier_arguments, run_add_supplier),
        "receive-supply": _spec(
            "receive-supply", "Book a fuel delivery into stock.", _receive_supply_arguments, run_receive_supply
        ),
        "start-shift": _spec("start-shift", "Open a shift on a pump.", _start_shift_arguments, run_start_shift),
        "close-shift": _spec(
            "close-shift", "Reconcile and close an open shift.", _close_shift_arguments, run_close_shift
        ),
        "add-expense": _spec("add-expense", "Record an expense.", _add_expense_arguments, run_add_expense),
        "update-expense": _spec(
            "update-expense",
            "Overwrite one field of an expense.",
            _field_update_arguments("--expense-id", core_logic.EXPENSE_FIELD_TYPES),
            run_update_expense,
        ),
        "delete-expense": _spec(
            "delete-expense", "Delete an expense.", _id_argument("--expense-id"), run_delete_expense
        ),
        "update-settings": _spec(
            "update-settings", "Update company identity settings.", _update_settings_arguments, run_update_settings
        ),
        "backup": _spec("backup", "Save a backup copy of the workbook.", _backup_arguments, run_backup),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "shifts": _spec("shifts", "List shifts.", _shifts_arguments, run_shifts_report, mutates=False),
        "stock": _spec("stock", "Display fuel stock and its value.", _no_arguments, run_stock_report, mutates=False),
        "low-stock": _spec(
            "low-stock", "List fuels below their alert threshold.", _no_arguments, run_low_stock_report, mutates=False
        ),
        "pumps": _spec("pumps", "Display pump meter throughput.", _no_arguments, run_pumps_report, mutates=False),
        "monthly": _spec(
            "monthly", "Display the monthly profit and loss report.", _no_arguments, run_monthly_report, mutates=False
        ),
        "audit": _spec("audit", "Display or search the audit log.", _audit_arguments, run_audit_report, mutates=False),
        "documents": _spec(
            "documents", "List documents nearing expiry.", _documents_arguments, run_documents_report, mutates=False
        ),
        "export": _spec("export", "Export a collection to CSV.", _export_arguments, run_export, mutates=False),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


# ---------------------------------------------------------------------------
# Argument declarations
# ---------------------------------------------------------------------------


def _no_arguments(parser: argparse.ArgumentParser) -> None:
    return None


def _id_argument(flag: str) -> Callable[[argparse.ArgumentParser], None]:
    def _add(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(flag, required=True)

    return _add


def _field_update_arguments(flag: str, field_types: Mapping[str, Any]) -> Callable[[argparse.ArgumentParser], None]:
    def _add(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(flag, required=True)
        parser.add_argument("--field", required=True, choices=sorted(field_types))
        parser.add_argument("--value", required=True)

    return _add


def _add_fuel_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", required=True)
    parser.add_argument("--sale-price", type=decimal_argument, required=True)
    parser.add_argument("--purchase-price", type=decimal_argument, required=True)
    parser.add_argument("--initial-stock", type=decimal_argument, default="0")
    parser.add_argument("--alert-threshold", type=decimal_argument, default="5000")
    parser.add_argument("--excludes-tax", action="store_true", help="Sale price does not include VAT.")


def _add_pump_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--pump-code", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--fuel-id", required=True)
    parser.add_argument("--reading", type=decimal_argument, default="0", help="Initial meter reading.")


def _add_staff_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--full-name", required=True)
    parser.add_argument("--nationality", default="")
    parser.add_argument("--job-title", default="")
    parser.add_argument("--phone", default="")
    parser.add_argument("--email", default="")
    parser.add_argument("--salary", type=decimal_argument, default="0")


def _add_document_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--owner-kind", required=True, choices=[member.value for member in DocumentOwner])
    parser.add_argument("--owner-id", default=None)
    parser.add_argument("--doc-type", required=True)
    parser.add_argument("--expiry-date", required=True, help="ISO date, e.g. 2026-03-31.")
    parser.add_argument("--file-name", default=None)


def _add_user_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--username", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--role", required=True, choices=[member.value for member in UserRole])
    parser.add_argument("--pin", required=True)


def _add_supplier_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", required=True)
    parser.add_argument("--contact-person", default="")
    parser.add_argument("--phone", default="")
    parser.add_argument("--fuel-id", dest="fuel_ids", action="append", default=[], help="Repeat for each fuel.")


def _receive_supply_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--supplier-id", required=True)
    parser.add_argument("--fuel-id", required=True)
    parser.add_argument("--quantity", type=decimal_argument, required=True)
    parser.add_argument("--cost", type=decimal_argument, required=True)


def _start_shift_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--staff-id", required=True)
    parser.add_argument("--pump-id", required=True)
    parser.add_argument("--start-reading", type=decimal_argument, default=None, help="Override the pump's current reading.")


def _close_shift_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--shift-id", required=True)
    parser.add_argument("--end-reading", type=decimal_argument, required=True)
    parser.add_argument("--cash", type=decimal_argument, required=True)
    parser.add_argument("--card", type=decimal_argument, default="0")


def _add_expense_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--category", required=True, choices=[member.value for member in ExpenseCategory])
    parser.add_argument("--type", dest="expense_type", required=True, choices=[member.value for member in ExpenseType])
    parser.add_argument("--amount", type=decimal_argument, required=True)
    parser.add_argument("--date", dest="expense_date", default=None, help="ISO date (defaults to today).")
    parser.add_argument("--recurrence", default=Recurrence.ONCE.value, choices=[member.value for member in Recurrence])
    parser.add_argument("--description", default="")


def _update_settings_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--company-name", default=None)
    parser.add_argument("--company-name-ar", default=None)
    parser.add_argument("--tax-number", default=None)


def _backup_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--destination", type=Path, required=True)


def _shifts_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--status", default=None, choices=[member.value for member in ShiftStatus])
    parser.add_argument("--staff-id", default=None)


def _audit_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--search", default=None, help="Case-insensitive filter over user, action and details.")


def _documents_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--within-days", type=int, default=30)


def _export_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--collection", required=True, choices=sorted(EXPORTABLE_COLLECTIONS))
    parser.add_argument("--output", type=Path, required=True)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def load_runtime_context(
    config_path: Optional[Path] = None,
    actor_id: Optional[str] = None,
) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(config_path, actor_id=actor_id)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(specs: Iterable[CommandSpec]) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specs keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def translate_start_shift(args: argparse.Namespace) -> core_logic.StartShiftCommand:
    """Translate CLI args into a start-shift command object."""
    return core_logic.StartShiftCommand(
        staff_id=args.staff_id,
        pump_id=args.pump_id,
        start_reading=Decimal(args.start_reading) if args.start_reading is not None else None,
    )


def translate_close_shift(args: argparse.Namespace) -> core_logic.CloseShiftCommand:
    """Translate CLI args into a close-shift command object."""
    return core_logic.CloseShiftCommand(
        shift_id=args.shift_id,
        end_reading=Decimal(args.end_reading),
        cash_amount=Decimal(args.cash),
        card_amount=Decimal(args.card),
    )


def translate_receive_supply(args: argparse.Namespace) -> core_logic.ReceiveSupplyCommand:
    """Translate CLI args into a supply delivery command object."""
    return core_logic.ReceiveSupplyCommand(
        supplier_id=args.supplier_id,
        fuel_id=args.fuel_id,
        quantity=Decimal(args.quantity),
        cost=Decimal(args.cost),
    )


def translate_add_expense(args: argparse.Namespace) -> core_logic.ExpenseCommand:
    """Translate CLI args into an expense command object."""
    expense_date = date.fromisoformat(args.expense_date) if args.expense_date else date.today()
    return core_logic.ExpenseCommand(
        category=ExpenseCategory(args.category),
        expense_type=ExpenseType(args.expense_type),
        amount=Decimal(args.amount),
        expense_date=expense_date,
        recurrence=Recurrence(args.recurrence),
        description=args.description,
    )


def translate_add_fuel(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-fuel request."""
    return {
        "name": args.name,
        "sale_price": Decimal(args.sale_price),
        "purchase_price": Decimal(args.purchase_price),
        "initial_stock": Decimal(args.initial_stock),
        "alert_threshold": Decimal(args.alert_threshold),
        "includes_tax": not getattr(args, "excludes_tax", False),
    }


def translate_update_settings(args: argparse.Namespace) -> Mapping[str, str]:
    """Collect only the settings flags that were actually supplied."""
    candidates = {
        "company_name": args.company_name,
        "company_name_ar": args.company_name_ar,
        "tax_number": args.tax_number,
    }
    changes = {key: value for key, value in candidates.items() if value is not None}
    if not changes:
        raise ValueError("update-settings needs at least one of --company-name, --company-name-ar, --tax-number")
    return changes


# ---------------------------------------------------------------------------
# Write executors
# ---------------------------------------------------------------------------


def run_add_fuel(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    fuel = core_logic.add_fuel_product(context, **translate_add_fuel(args))
    print(f"Added fuel {fuel.fuel_id} ({fuel.name})")
    return 0


def run_adjust_fuel(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.adjust_fuel_product(context, args.fuel_id, args.field, args.value)
    return 0


def run_remove_fuel(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.remove_fuel_product(context, args.fuel_id)
    return 0


def run_add_pump(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    pump = core_logic.add_pump(
        context,
        pump_code=args.pump_code,
        name=args.name,
        fuel_id=args.fuel_id,
        reading=Decimal(args.reading),
    )
    print(f"Added pump {pump.pump_id} (code {pump.pump_code})")
    return 0


def run_update_pump(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.update_pump(context, args.pump_id, args.field, args.value)
    return 0


def run_add_staff(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    staff = core_logic.add_staff(
        context,
        full_name=args.full_name,
        nationality=args.nationality,
        job_title=args.job_title,
        phone=args.phone,
        email=args.email,
        salary=Decimal(args.salary),
    )
    print(f"Added staff member {staff.staff_id} ({staff.full_name})")
    return 0


def run_add_document(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    document = core_logic.add_document(
        context,
        owner_kind=DocumentOwner(args.owner_kind),
        owner_id=args.owner_id,
        doc_type=args.doc_type,
        expiry_date=args.expiry_date,
        file_name=args.file_name,
    )
    print(f"Added document {document.document_id} expiring {document.expiry_date}")
    return 0


def run_add_user(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    user = core_logic.add_user(
        context,
        username=args.username,
        name=args.name,
        role=UserRole(args.role),
        pin=args.pin,
    )
    print(f"Added user {user.user_id} ({user.username})")
    return 0


def run_delete_user(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_user(context, args.user_id)
    return 0


def run_add_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    supplier = core_logic.add_supplier(
        context,
        name=args.name,
        contact_person=args.contact_person,
        phone=args.phone,
        fuel_ids=tuple(args.fuel_ids),
    )
    print(f"Added supplier {supplier.supplier_id} ({supplier.name})")
    return 0


def run_receive_supply(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the supply delivery workflow via the BLL."""
    supply = core_logic.receive_supply(context, translate_receive_supply(args))
    print(f"Received {supply.quantity}L of {supply.fuel_name} ({supply.supply_id})")
    return 0


def run_start_shift(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the shift opening workflow via the BLL."""
    shift = core_logic.start_shift(context, translate_start_shift(args))
    print(f"Opened shift {shift.shift_id} on pump {shift.pump_code} at reading {shift.start_reading}")
    return 0


def run_close_shift(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the shift closing workflow via the BLL."""
    shift = core_logic.close_shift(context, translate_close_shift(args))
    print(
        f"Closed shift {shift.shift_id}: {shift.total_liters}L, expected {shift.expected_amount}, "
        f"shortage {shift.shortage}"
    )
    return 0


def run_add_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    expense = core_logic.record_expense(context, translate_add_expense(args))
    print(f"Recorded expense {expense.expense_id}")
    return 0


def run_update_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.update_expense(context, args.expense_id, args.field, args.value)
    return 0


def run_delete_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_expense(context, args.expense_id)
    return 0


def run_update_settings(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.update_station_settings(context, **translate_update_settings(args))
    return 0


def run_backup(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    backup = core_logic.create_backup(context, args.destination)
    print(f"Backup {backup.backup_id} written to {backup.file_name}")
    return 0


# ---------------------------------------------------------------------------
# Read executors
# ---------------------------------------------------------------------------


def format_table(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Render rows as left-aligned, space-padded columns."""
    body = [["" if cell is None else str(cell) for cell in row] for row in rows]
    widths = [len(header) for header in headers]
    for row in body:
        widths = [max(width, len(cell)) for width, cell in zip(widths, row)]
    lines = ["  ".join(header.ljust(width) for header, width in zip(headers, widths))]
    lines.extend("  ".join(cell.ljust(width) for cell, width in zip(row, widths)) for row in body)
    return "\n".join(line.rstrip() for line in lines)


def run_shifts_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    status = ShiftStatus(args.status) if args.status else None
    shifts = core_logic.list_shifts(context, status=status, staff_id=args.staff_id)
    print(
        format_table(
            ["Shift", "Staff", "Pump", "Fuel", "Start", "End", "Status", "Liters", "Shortage"],
            (
                [s.shift_id, s.staff_name, s.pump_code, s.fuel_name, s.start_reading, s.end_reading, s.status,
                 s.total_liters, s.shortage]
                for s in shifts
            ),
        )
    )
    stats = reports.calculate_shift_audit_stats(shifts)
    print(f"\nTotal shortage: {stats['total_shortage']}  Open shifts: {stats['unreconciled_count']}")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock reporting workflow."""
    fuels = core_logic.list_fuels(context)
    print(
        format_table(
            ["Fuel", "Name", "Sale", "Purchase", "Stock", "Threshold"],
            ([f.fuel_id, f.name, f.sale_price, f.purchase_price, f.current_stock, f.alert_threshold] for f in fuels),
        )
    )
    print(f"\nStock value: {core_logic.calculate_stock_value(context)}")
    return 0


def run_low_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    low = core_logic.list_low_stock(context)
    if not low:
        print("All fuels are above their alert threshold.")
        return 0
    print(format_table(["Fuel", "Name", "Stock", "Threshold"], ([f.fuel_id, f.name, f.current_stock, f.alert_threshold] for f in low)))
    return 0


def run_pumps_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    rows, totals = reports.summarize_pump_readings(core_logic.list_pumps(context), core_logic.list_fuels(context))
    print(
        format_table(
            ["Pump", "Code", "Name", "Fuel", "Liters", "Amount", "Deficit"],
            ([r.pump_id, r.pump_code, r.name, r.fuel_name, r.liters, r.amount, r.deficit] for r in rows),
        )
    )
    print(f"\nTotals: {totals['liters']}L  {totals['amount']}  deficit {totals['deficit']}")
    return 0


def run_monthly_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the monthly profit and loss report."""
    report = reports.build_monthly_report(
        core_logic.list_shifts(context),
        core_logic.list_expenses(context),
        core_logic.list_fuels(context),
    )
    print(
        format_table(
            ["Month", "Revenue", "Cost", "Fixed", "Variable", "VAT", "Gross", "Net"],
            (
                [m.label, m.revenue, m.cost, m.fixed_expense, m.variable_expense, m.vat, m.gross_profit, m.net_profit]
                for m in report
            ),
        )
    )
    totals = reports.summarize_fiscal_totals(report)
    print(f"\nRevenue {totals['revenue']}  Net {totals['net_profit']}  Margin {totals['margin']}%")
    return 0


def run_audit_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    if args.search:
        entries = core_logic.search_audit_log(context, args.search)
    else:
        entries = core_logic.list_audit_log(context)
    print(
        format_table(
            ["Timestamp", "User", "Action", "Details"],
            ([e.timestamp_iso, e.user_name, e.action, e.details] for e in entries),
        )
    )
    return 0


def run_documents_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    flagged = core_logic.list_expiring_documents(context, within_days=args.within_days)
    print(
        format_table(
            ["Document", "Owner", "Type", "Expiry", "Days left"],
            ([doc.document_id, doc.owner_id or doc.owner_kind, doc.doc_type, doc.expiry_date, days] for doc, days in flagged),
        )
    )
    return 0


def _monthly_rows(context: core_logic.RuntimeContext) -> List[reports.MonthlyAggregate]:
    return reports.build_monthly_report(
        core_logic.list_shifts(context),
        core_logic.list_expenses(context),
        core_logic.list_fuels(context),
    )


EXPORTABLE_COLLECTIONS: Mapping[str, Callable[[core_logic.RuntimeContext], Sequence[Any]]] = {
    "shifts": core_logic.list_shifts,
    "fuels": core_logic.list_fuels,
    "pumps": core_logic.list_pumps,
    "staff": core_logic.list_staff,
    "expenses": core_logic.list_expenses,
    "suppliers": core_logic.list_suppliers,
    "supplies": core_logic.list_supply_transactions,
    "audit": core_logic.list_audit_log,
    "monthly": _monthly_rows,
}


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    records = EXPORTABLE_COLLECTIONS[args.collection](context)
    written = reports.export_records(records, args.output, settings=core_logic.get_station_settings(context))
    if written is None:
        print(f"Nothing to export for '{args.collection}'.")
    else:
        print(f"Exported {len(records)} record(s) to {written}")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(f"Workbook is locked or read-only: {error}") from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None), getattr(args, "user_id", None))
        core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
