"""Enumerations and fixed figures shared across Petro ERP modules.

Centralises domain constants so that the data access layer (DAL), business
logic layer (BLL), reporting helpers, and the CLI rely on a single source of
truth for identifiers, sheet layouts, and rates.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Mapping, Sequence


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Saudi VAT applied to collected shift revenue.
VAT_RATE = Decimal("0.15")

AUDIT_LOG_CAP = 5000

# Documents expiring within this many days are flagged on the dashboard.
EXPIRY_WARNING_DAYS = 30


class ShiftStatus(str, Enum):
    """Lifecycle states of a handover cycle."""

    OPEN = "OPEN"
    CLOSED = "CLOSED"


class ExpenseType(str, Enum):
    """Classify expenses for the monthly fixed/variable split."""

    FIXED = "FIXED"
    VARIABLE = "VARIABLE"


class Recurrence(str, Enum):
    """Recurrence recorded on an expense. Informational only."""

    ONCE = "ONCE"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class ExpenseCategory(str, Enum):
    """Enumerate the accepted expense categories."""

    RENT = "Rent"
    SALARY = "Salary"
    ELECTRICITY = "Electricity"
    WATER = "Water"
    MAINTENANCE = "Maintenance"
    GOVERNMENT = "Government"
    OTHER = "Other"


class UserRole(str, Enum):
    """Enumerate the roles a system user may hold."""

    ADMIN = "ADMIN"
    STAFF = "STAFF"


class DocumentOwner(str, Enum):
    """Who a tracked compliance document belongs to."""

    STAFF = "STAFF"
    STATION = "STATION"


class AuditAction(str, Enum):
    """Closed set of action codes written to the audit log."""

    OPS_SHIFT_OPEN = "OPS_SHIFT_OPEN"
    OPS_SHIFT_CLOSE = "OPS_SHIFT_CLOSE"
    OPS_PUMP_UPDATE = "OPS_PUMP_UPDATE"
    INV_STOCK_UPDATE = "INV_STOCK_UPDATE"
    PRO_SUPPLY_RECEIVE = "PRO_SUPPLY_RECEIVE"
    PRO_SUPPLIER_MGMT = "PRO_SUPPLIER_MGMT"
    FIN_LEDGER_UPDATE = "FIN_LEDGER_UPDATE"
    HR_STAFF_MGMT = "HR_STAFF_MGMT"
    GOV_DOC_MGMT = "GOV_DOC_MGMT"
    SYS_USER_MGMT = "SYS_USER_MGMT"
    SYS_CONFIG_COMPANY = "SYS_CONFIG_COMPANY"
    SYS_BACKUP = "SYS_BACKUP"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    SETTINGS = "Settings"
    USERS = "Users"
    STAFF = "Staff"
    DOCUMENTS = "Documents"
    FUEL_PRODUCTS = "FuelProducts"
    PUMPS = "Pumps"
    SHIFTS = "Shifts"
    EXPENSES = "Expenses"
    SUPPLIERS = "Suppliers"
    SUPPLY_TRANSACTIONS = "SupplyTransactions"
    AUDIT_LOG = "AuditLog"
    BACKUP_LOG = "BackupLog"


# Column layout of every sheet, in the order rows are serialized.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.SETTINGS.value: ["Key", "Value"],
    SheetName.USERS.value: ["UserID", "Username", "Name", "Role", "Pin"],
    SheetName.STAFF.value: [
        "StaffID",
        "FullName",
        "Nationality",
        "JobTitle",
        "Phone",
        "Email",
        "Salary",
    ],
    SheetName.DOCUMENTS.value: [
        "DocumentID",
        "OwnerKind",
        "OwnerID",
        "DocType",
        "ExpiryDate",
        "FileName",
    ],
    SheetName.FUEL_PRODUCTS.value: [
        "FuelID",
        "Name",
        "SalePrice",
        "PurchasePrice",
        "IncludesTax",
        "InitialStock",
        "CurrentStock",
        "AlertThreshold",
    ],
    SheetName.PUMPS.value: [
        "PumpID",
        "PumpCode",
        "Name",
        "FuelID",
        "LastReading",
        "CurrentReading",
        "Deficit",
    ],
    SheetName.SHIFTS.value: [
        "ShiftID",
        "StaffID",
        "StaffName",
        "PumpCode",
        "FuelID",
        "FuelName",
        "PriceAtOpen",
        "StartReading",
        "EndReading",
        "StartTime",
        "EndTime",
        "Status",
        "TotalLiters",
        "ExpectedAmount",
        "CashAmount",
        "CardAmount",
        "Shortage",
    ],
    SheetName.EXPENSES.value: [
        "ExpenseID",
        "Category",
        "ExpenseType",
        "Recurrence",
        "Amount",
        "ExpenseDate",
        "Description",
    ],
    SheetName.SUPPLIERS.value: [
        "SupplierID",
        "Name",
        "ContactPerson",
        "Phone",
        "FuelIDs",
    ],
    SheetName.SUPPLY_TRANSACTIONS.value: [
        "SupplyID",
        "SupplierID",
        "SupplierName",
        "FuelID",
        "FuelName",
        "Quantity",
        "Cost",
        "Timestamp",
    ],
    SheetName.AUDIT_LOG.value: [
        "EntryID",
        "UserID",
        "UserName",
        "Action",
        "Details",
        "Timestamp",
    ],
    SheetName.BACKUP_LOG.value: ["BackupID", "Timestamp", "UserName", "FileName"],
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "VAT_RATE",
    "AUDIT_LOG_CAP",
    "EXPIRY_WARNING_DAYS",
    "ShiftStatus",
    "ExpenseType",
    "Recurrence",
    "ExpenseCategory",
    "UserRole",
    "DocumentOwner",
    "AuditAction",
    "SheetName",
    "SHEET_COLUMNS",
]
