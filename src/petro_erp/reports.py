"""Read-only reporting helpers for Petro ERP.

Everything here is a pure function of the records handed in: the monthly
profit-and-loss aggregation, fiscal totals, shift audit statistics, pump
meter summaries, and the CSV export used for archiving and accounting.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass, fields, is_dataclass
from datetime import UTC, datetime, tzinfo
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from . import log
from .constants import VAT_RATE, ExpenseType, ShiftStatus
from .data_manager import ExpenseRow, FuelRow, PumpRow, ShiftRow, StationSettings


MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

ZERO = Decimal("0")


@dataclass(frozen=True)
class MonthlyAggregate:
    """Profit and loss figures for one calendar month."""

    year: int
    month: int
    label: str
    revenue: Decimal
    cost: Decimal
    fixed_expense: Decimal
    variable_expense: Decimal
    vat: Decimal
    total_expense: Decimal
    gross_profit: Decimal
    net_profit: Decimal


@dataclass(frozen=True)
class PumpReadingSummary:
    """Liters and money pumped by a nozzle since its last reading."""

    pump_id: str
    pump_code: str
    name: str
    fuel_name: str
    liters: Decimal
    amount: Decimal
    deficit: Decimal


@dataclass
class _MonthBucket:
    revenue: Decimal = ZERO
    cost: Decimal = ZERO
    fixed_expense: Decimal = ZERO
    variable_expense: Decimal = ZERO

    def freeze(self, year: int, month: int) -> MonthlyAggregate:
        vat = self.revenue * VAT_RATE
        total_expense = self.fixed_expense + self.variable_expense
        gross_profit = self.revenue - self.cost - vat
        return MonthlyAggregate(
            year=year,
            month=month,
            label=f"{MONTH_LABELS[month - 1]} {year}",
            revenue=self.revenue,
            cost=self.cost,
            fixed_expense=self.fixed_expense,
            variable_expense=self.variable_expense,
            vat=vat,
            total_expense=total_expense,
            gross_profit=gross_profit,
            net_profit=gross_profit - total_expense,
        )


def _period_of(timestamp: str, tz: Optional[tzinfo] = None) -> Tuple[int, int]:
    moment = datetime.fromisoformat(timestamp)
    # shift times are stored in UTC; expense dates are already local
    if moment.tzinfo is not None:
        moment = moment.astimezone(tz)
    return moment.year, moment.month


def build_monthly_report(
    shifts: Iterable[ShiftRow],
    expenses: Iterable[ExpenseRow],
    fuels: Iterable[FuelRow],
    *,
    tz: Optional[tzinfo] = None,
) -> List[MonthlyAggregate]:
    """Aggregate closed shifts and expenses into calendar months.

    Revenue is the money actually collected (cash plus card). Cost values the
    liters sold at the fuel's *current* purchase price, or zero when the fuel
    no longer exists. VAT is a flat share of revenue. Months are keyed by
    year and month, so the same month of different years never merges, and
    the result is sorted chronologically. Shift start times are converted to
    the station time zone first so a shift opened just after local midnight
    lands in the same month as an expense dated that day.

    Args:
        shifts: All shifts; open ones are ignored.
        expenses: All recorded expenses.
        fuels: Current fuel products, used for purchase prices.
        tz: Station time zone used to place shifts in a month; defaults to
            the local time zone of the machine.

    Returns:
        list[MonthlyAggregate]: One entry per month that had any activity.
    """
    purchase_prices = {fuel.fuel_id: fuel.purchase_price for fuel in fuels}
    buckets: Dict[Tuple[int, int], _MonthBucket] = {}

    for shift in shifts:
        if shift.status != ShiftStatus.CLOSED.value:
            continue
        bucket = buckets.setdefault(_period_of(shift.start_time, tz), _MonthBucket())
        bucket.revenue += (shift.cash_amount or ZERO) + (shift.card_amount or ZERO)
        bucket.cost += (shift.total_liters or ZERO) * purchase_prices.get(shift.fuel_id, ZERO)

    for expense in expenses:
        bucket = buckets.setdefault(_period_of(expense.expense_date), _MonthBucket())
        if expense.expense_type == ExpenseType.FIXED.value:
            bucket.fixed_expense += expense.amount
        else:
            bucket.variable_expense += expense.amount

    report = [bucket.freeze(year, month) for (year, month), bucket in sorted(buckets.items())]
    log.debug("Built monthly report covering %d month(s)", len(report))
    return report


def summarize_fiscal_totals(report: Sequence[MonthlyAggregate]) -> Dict[str, Decimal]:
    """Sum a monthly report into headline totals.

    ``margin`` is net profit as a percentage of revenue, rounded to two
    places, and zero when there was no revenue.
    """
    revenue = sum((month.revenue for month in report), ZERO)
    net_profit = sum((month.net_profit for month in report), ZERO)
    margin = (net_profit / revenue * 100).quantize(Decimal("0.01")) if revenue > 0 else ZERO
    return {
        "revenue": revenue,
        "gross_profit": sum((month.gross_profit for month in report), ZERO),
        "net_profit": net_profit,
        "total_expense": sum((month.total_expense for month in report), ZERO),
        "vat": sum((month.vat for month in report), ZERO),
        "margin": margin,
    }


def calculate_shift_audit_stats(shifts: Iterable[ShiftRow]) -> Dict[str, Any]:
    """Return total shortage over closed shifts and the open shift count."""
    total_shortage = ZERO
    unreconciled = 0
    for shift in shifts:
        if shift.status == ShiftStatus.CLOSED.value:
            total_shortage += shift.shortage or ZERO
        else:
            unreconciled += 1
    return {"total_shortage": total_shortage, "unreconciled_count": unreconciled}


def summarize_expenses(expenses: Iterable[ExpenseRow]) -> Dict[str, Decimal]:
    fixed = ZERO
    variable = ZERO
    for expense in expenses:
        if expense.expense_type == ExpenseType.FIXED.value:
            fixed += expense.amount
        else:
            variable += expense.amount
    return {"fixed": fixed, "variable": variable, "total": fixed + variable}


def summarize_pump_readings(
    pumps: Iterable[PumpRow],
    fuels: Iterable[FuelRow],
) -> Tuple[List[PumpReadingSummary], Dict[str, Decimal]]:
    """Compute per-pump throughput since the last recorded reading.

    Liters never go negative even if a meter was reset. Amounts use the
    fuel's current sale price; pumps whose fuel is gone count zero money.
    """
    fuel_index = {fuel.fuel_id: fuel for fuel in fuels}
    rows: List[PumpReadingSummary] = []
    for pump in pumps:
        fuel = fuel_index.get(pump.fuel_id)
        liters = max(ZERO, pump.current_reading - pump.last_reading)
        rows.append(
            PumpReadingSummary(
                pump_id=pump.pump_id,
                pump_code=pump.pump_code,
                name=pump.name,
                fuel_name=fuel.name if fuel is not None else "",
                liters=liters,
                amount=liters * fuel.sale_price if fuel is not None else ZERO,
                deficit=pump.deficit,
            )
        )
    totals = {
        "liters": sum((row.liters for row in rows), ZERO),
        "amount": sum((row.amount for row in rows), ZERO),
        "deficit": sum((row.deficit for row in rows), ZERO),
    }
    return rows, totals


def _as_mapping(record: Any) -> Mapping[str, Any]:
    if is_dataclass(record):
        return {item.name: getattr(record, item.name) for item in fields(record)}
    return record


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, tuple):
        return ",".join(str(item) for item in value)
    return str(value)


def export_records(
    records: Sequence[Any],
    destination: Path,
    *,
    settings: Optional[StationSettings] = None,
    generated_at: Optional[datetime] = None,
) -> Optional[Path]:
    """Write records to a CSV file with a company header block.

    The file is UTF-8 with a byte-order mark so spreadsheet software detects
    the Arabic company name. The header block names the company, its VAT
    number and the export date, followed by a blank line, the column names
    (taken from the first record) and one line per record.

    Args:
        records: Dataclass rows or plain mappings sharing the same keys.
        destination: Target CSV path; parent folders are created.
        settings: Company identity for the header block.
        generated_at: Export moment, defaults to now in UTC.

    Returns:
        Path | None: The written path, or ``None`` when ``records`` is empty
            and nothing was written.
    """
    if not records:
        log.info("Export to '%s' skipped: no records", destination)
        return None

    settings = settings or StationSettings()
    moment = generated_at or datetime.now(UTC)
    rows = [_as_mapping(record) for record in records]
    columns = list(rows[0].keys())

    target = Path(destination).expanduser().resolve()
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8-sig", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow([f"Company: {settings.company_name} / {settings.company_name_ar}"])
        writer.writerow([f"VAT Number: {settings.tax_number}"])
        writer.writerow([f"Date: {moment.isoformat()}"])
        writer.writerow([])
        writer.writerow(columns)
        for row in rows:
            writer.writerow([_cell(row.get(column)) for column in columns])

    log.info("Exported %d record(s) to '%s'", len(rows), target)
    return target
