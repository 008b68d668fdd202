"""Unit tests for the business logic layer over an in-memory seeded context."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from petro_erp import constants, core_logic, data_manager
from petro_erp.constants import AuditAction, SheetName, ShiftStatus

from conftest import CLOSING_TIME, OPENING_TIME


def _open(context, staff_id, pump_id="p1", **overrides):
    return core_logic.start_shift(
        context,
        core_logic.StartShiftCommand(staff_id=staff_id, pump_id=pump_id, timestamp=OPENING_TIME, **overrides),
    )


def _close(context, shift_id, end_reading, cash, card="0"):
    return core_logic.close_shift(
        context,
        core_logic.CloseShiftCommand(
            shift_id=shift_id,
            end_reading=Decimal(end_reading),
            cash_amount=Decimal(cash),
            card_amount=Decimal(card),
            timestamp=CLOSING_TIME,
        ),
    )


def _actions(context, action):
    return [entry for entry in core_logic.list_audit_log(context) if entry.action == action.value]


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def test_ensure_schema_version_rejects_mismatch(settings, context):
    stale = core_logic.RuntimeContext(
        settings=replace(settings, schema_version="0.9.0"),
        workbook=context.workbook,
    )

    with pytest.raises(RuntimeError, match="schema mismatch"):
        core_logic.ensure_schema_version(stale)


def test_collections_load_lazily_from_workbook(context):
    assert context._state == {}

    fuels = core_logic.list_fuels(context)

    assert [fuel.fuel_id for fuel in fuels] == ["f1", "f2", "f3"]
    assert set(context._state) == {SheetName.FUEL_PRODUCTS}


def test_commit_notifies_subscribers_in_order(context, staff_member):
    events = []
    core_logic.subscribe(context, events.append)

    _open(context, staff_member.staff_id)

    assert [event.collection for event in events] == [SheetName.SHIFTS, SheetName.AUDIT_LOG]
    assert isinstance(events[0].records, tuple)


def test_unsubscribe_stops_notifications(context, staff_member):
    events = []
    unsubscribe = core_logic.subscribe(context, events.append)
    unsubscribe()

    _open(context, staff_member.staff_id)

    assert events == []


def test_unbound_context_leaves_workbook_untouched(context, staff_member):
    _open(context, staff_member.staff_id)

    assert list(data_manager.iter_records(context.workbook, SheetName.SHIFTS.value)) == []


def test_attached_writer_mirrors_commits_onto_sheets(context, staff_member):
    core_logic.attach_workbook_writer(context)

    shift = _open(context, staff_member.staff_id)

    rows = list(data_manager.iter_records(context.workbook, SheetName.SHIFTS.value))
    assert [row.shift_id for row in rows] == [shift.shift_id]


def test_generate_id_is_unique_across_many_calls():
    ids = {core_logic.generate_id("SH") for _ in range(2000)}

    assert len(ids) == 2000
    assert all(identifier.startswith("SH-") for identifier in ids)


def test_sequential_id_factory_shares_counter_between_prefixes():
    next_id = core_logic.sequential_id_factory()

    assert [next_id("SH"), next_id("A"), next_id("SH")] == ["SH-000001", "A-000002", "SH-000003"]


# ---------------------------------------------------------------------------
# Shift state machine
# ---------------------------------------------------------------------------


def test_start_shift_freezes_price_and_uses_pump_reading(context, staff_member):
    shift = _open(context, staff_member.staff_id)

    assert shift.status == ShiftStatus.OPEN.value
    assert shift.price_at_open == Decimal("2.18")
    assert shift.start_reading == Decimal("10000")
    assert shift.pump_code == "01"
    assert shift.fuel_id == "f1"
    assert shift.staff_name == "Ahmed Ali"
    assert shift.start_time == OPENING_TIME.isoformat()
    assert shift.end_reading is None and shift.shortage is None


def test_start_shift_accepts_zero_reading_override(context, staff_member):
    shift = _open(context, staff_member.staff_id, start_reading=Decimal("0"))

    assert shift.start_reading == Decimal("0")


def test_start_shift_does_not_touch_stock(context, staff_member):
    _open(context, staff_member.staff_id)

    assert core_logic.get_fuel(context, "f1").current_stock == Decimal("42000")


def test_admin_user_can_operate_a_shift(context):
    shift = _open(context, "admin-1")

    assert shift.staff_id == "admin-1"
    assert shift.staff_name == "System Admin"


def test_start_shift_rejects_unknown_staff(context):
    with pytest.raises(core_logic.MissingReferenceError):
        _open(context, "ST-missing")

    assert core_logic.list_shifts(context) == []


def test_start_shift_rejects_unknown_pump(context, staff_member):
    with pytest.raises(core_logic.MissingReferenceError):
        _open(context, staff_member.staff_id, pump_id="p9")


def test_staff_cannot_hold_two_open_shifts(context, staff_member):
    _open(context, staff_member.staff_id, pump_id="p1")

    with pytest.raises(core_logic.StaffShiftConflictError):
        _open(context, staff_member.staff_id, pump_id="p2")

    assert len(core_logic.list_open_shifts(context)) == 1


def test_staff_conflict_is_reported_before_pump_conflict(context, staff_member):
    _open(context, staff_member.staff_id, pump_id="p1")

    with pytest.raises(core_logic.StaffShiftConflictError):
        _open(context, staff_member.staff_id, pump_id="p1")


def test_pump_cannot_host_two_open_shifts(context, staff_member):
    other = core_logic.add_staff(context, full_name="Omar Saleh")
    _open(context, staff_member.staff_id, pump_id="p1")

    with pytest.raises(core_logic.PumpShiftConflictError):
        _open(context, other.staff_id, pump_id="p1")

    assert [shift.staff_id for shift in core_logic.list_open_shifts(context)] == [staff_member.staff_id]


def test_closed_shift_frees_staff_and_pump(context, staff_member):
    first = _open(context, staff_member.staff_id)
    _close(context, first.shift_id, "10010", "21.80")

    second = _open(context, staff_member.staff_id)

    assert second.shift_id != first.shift_id
    assert second.start_reading == Decimal("10000")


def test_close_shift_reconciles_and_deducts_stock(context, staff_member):
    shift = _open(context, staff_member.staff_id)

    closed = _close(context, shift.shift_id, "10500", "1000", "90")

    assert closed.status == ShiftStatus.CLOSED.value
    assert closed.total_liters == Decimal("500")
    assert closed.expected_amount == Decimal("1090.00")
    assert closed.shortage == Decimal("0.00")
    assert closed.end_time == CLOSING_TIME.isoformat()
    assert core_logic.get_fuel(context, "f1").current_stock == Decimal("41500")


def test_shortage_sign_marks_missing_cash_positive(context, staff_member):
    shift = _open(context, staff_member.staff_id)

    closed = _close(context, shift.shift_id, "10100", "200")

    assert closed.expected_amount == Decimal("218.00")
    assert closed.shortage == Decimal("18.00")


def test_close_uses_price_frozen_at_open(context, staff_member):
    shift = _open(context, staff_member.staff_id)
    core_logic.adjust_fuel_product(context, "f1", "sale_price", "3.00")

    closed = _close(context, shift.shift_id, "10100", "218")

    assert closed.price_at_open == Decimal("2.18")
    assert closed.expected_amount == Decimal("218.00")
    assert closed.shortage == Decimal("0.00")


def test_close_rejects_reading_below_start(context, staff_member):
    shift = _open(context, staff_member.staff_id)

    with pytest.raises(core_logic.InvalidReadingError):
        _close(context, shift.shift_id, "9999", "0")

    assert core_logic.get_shift(context, shift.shift_id).status == ShiftStatus.OPEN.value
    assert core_logic.get_fuel(context, "f1").current_stock == Decimal("42000")
    assert _actions(context, AuditAction.OPS_SHIFT_CLOSE) == []


def test_close_accepts_zero_consumption(context, staff_member):
    shift = _open(context, staff_member.staff_id)

    closed = _close(context, shift.shift_id, "10000", "0")

    assert closed.total_liters == Decimal("0")
    assert closed.shortage == Decimal("0.00")


def test_second_close_is_rejected_and_stock_deducted_once(context, staff_member):
    shift = _open(context, staff_member.staff_id)
    _close(context, shift.shift_id, "10200", "436")

    with pytest.raises(core_logic.ShiftStateError):
        _close(context, shift.shift_id, "10400", "436")

    assert core_logic.get_fuel(context, "f1").current_stock == Decimal("41800")
    assert len(_actions(context, AuditAction.OPS_SHIFT_CLOSE)) == 1


def test_close_unknown_shift_raises(context):
    with pytest.raises(core_logic.MissingReferenceError):
        _close(context, "SH-missing", "1", "0")


def test_close_skips_deduction_when_fuel_was_removed(context, staff_member, caplog):
    shift = _open(context, staff_member.staff_id)
    core_logic.remove_fuel_product(context, "f1")
    caplog.set_level(logging.WARNING, logger="petro_erp")

    closed = _close(context, shift.shift_id, "10100", "218")

    assert closed.status == ShiftStatus.CLOSED.value
    assert "no longer exists" in caplog.text
    assert [fuel.fuel_id for fuel in core_logic.list_fuels(context)] == ["f2", "f3"]


def test_shift_audit_entries(context, staff_member):
    shift = _open(context, staff_member.staff_id)
    _close(context, shift.shift_id, "10500", "1090")

    opened = _actions(context, AuditAction.OPS_SHIFT_OPEN)
    closed = _actions(context, AuditAction.OPS_SHIFT_CLOSE)
    assert len(opened) == 1 and len(closed) == 1
    assert shift.shift_id in opened[0].details
    assert core_logic.list_audit_log(context)[0] == closed[0]


def test_list_shifts_filters(context, staff_member):
    other = core_logic.add_staff(context, full_name="Omar Saleh")
    first = _open(context, staff_member.staff_id, pump_id="p1")
    _open(context, other.staff_id, pump_id="p2")
    _close(context, first.shift_id, "10001", "2.18")

    assert [s.staff_id for s in core_logic.list_shifts(context, status=ShiftStatus.OPEN)] == [other.staff_id]
    assert [s.shift_id for s in core_logic.list_shifts(context, staff_id=staff_member.staff_id)] == [first.shift_id]
    assert len(core_logic.list_shifts(context)) == 2


# ---------------------------------------------------------------------------
# Fuel ledger
# ---------------------------------------------------------------------------


def test_receive_supply_raises_stock_and_records_delivery(context, supplier):
    supply = core_logic.receive_supply(
        context,
        core_logic.ReceiveSupplyCommand(
            supplier_id=supplier.supplier_id,
            fuel_id="f2",
            quantity=Decimal("8000"),
            cost=Decimal("16400"),
            timestamp=OPENING_TIME,
        ),
    )

    assert core_logic.get_fuel(context, "f2").current_stock == Decimal("20000")
    assert core_logic.list_supply_transactions(context) == [supply]
    assert supply.supplier_name == "Aramco Supply"
    assert supply.fuel_name == "Octane 95"
    entry = core_logic.list_audit_log(context)[0]
    assert entry.action == AuditAction.PRO_SUPPLY_RECEIVE.value
    assert "8000" in entry.details


def test_receive_supply_accepts_non_positive_quantity_with_warning(context, supplier, caplog):
    caplog.set_level(logging.WARNING, logger="petro_erp")

    core_logic.receive_supply(
        context,
        core_logic.ReceiveSupplyCommand(
            supplier_id=supplier.supplier_id,
            fuel_id="f1",
            quantity=Decimal("-100"),
            cost=Decimal("0"),
        ),
    )

    assert core_logic.get_fuel(context, "f1").current_stock == Decimal("41900")
    assert "non-positive" in caplog.text


def test_receive_supply_validates_references_before_mutating(context, supplier):
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.receive_supply(
            context,
            core_logic.ReceiveSupplyCommand(supplier_id=supplier.supplier_id, fuel_id="f9", quantity=1, cost=1),
        )

    assert core_logic.list_supply_transactions(context) == []


def test_deduction_may_drive_stock_negative(context, caplog):
    caplog.set_level(logging.WARNING, logger="petro_erp")

    updated = core_logic.deduct_for_shift_close(context, "f2", Decimal("12500"))

    assert updated.current_stock == Decimal("-500")
    assert "negative" in caplog.text


def test_deduction_writes_no_audit(context):
    core_logic.deduct_for_shift_close(context, "f1", Decimal("10"))

    assert core_logic.list_audit_log(context) == []


def test_adjust_fuel_coerces_values(context):
    updated = core_logic.adjust_fuel_product(context, "f3", "current_stock", "15000.5")
    flag = core_logic.adjust_fuel_product(context, "f3", "includes_tax", "no")

    assert updated.current_stock == Decimal("15000.5")
    assert flag.includes_tax is False
    assert _actions(context, AuditAction.INV_STOCK_UPDATE)[1].details.startswith("Fuel Diesel current_stock")


def test_adjust_fuel_rejects_unknown_field(context):
    with pytest.raises(core_logic.BusinessRuleViolation, match="Unknown field"):
        core_logic.adjust_fuel_product(context, "f1", "colour", "red")

    assert core_logic.list_audit_log(context) == []


def test_adjust_fuel_rejects_non_numeric_value(context):
    with pytest.raises(ValueError):
        core_logic.adjust_fuel_product(context, "f1", "sale_price", "cheap")


def test_add_fuel_starts_current_stock_at_initial(context):
    fuel = core_logic.add_fuel_product(
        context,
        name="Kerosene",
        sale_price=Decimal("1.50"),
        purchase_price=Decimal("1.10"),
        initial_stock=Decimal("2000"),
    )

    assert fuel.current_stock == Decimal("2000")
    assert core_logic.list_fuels(context)[-1] == fuel


def test_low_stock_is_strictly_below_threshold(context):
    assert core_logic.list_low_stock(context) == []

    core_logic.adjust_fuel_product(context, "f2", "current_stock", "5000")
    assert core_logic.list_low_stock(context) == []

    core_logic.adjust_fuel_product(context, "f2", "current_stock", "4999")
    assert [fuel.fuel_id for fuel in core_logic.list_low_stock(context)] == ["f2"]


def test_stock_value_uses_purchase_price(context):
    assert core_logic.calculate_stock_value(context) == Decimal("183050.00")


# ---------------------------------------------------------------------------
# Pumps, staff, documents
# ---------------------------------------------------------------------------


def test_add_pump_requires_known_fuel(context):
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.add_pump(context, pump_code="03", name="Nozzle 3", fuel_id="f9")


def test_add_pump_starts_both_readings_equal(context):
    pump = core_logic.add_pump(context, pump_code="03", name="Nozzle 3 (Diesel)", fuel_id="f3", reading=Decimal("750"))

    assert pump.last_reading == pump.current_reading == Decimal("750")
    assert _actions(context, AuditAction.OPS_PUMP_UPDATE)


def test_update_pump_accepts_negative_deficit_with_warning(context, caplog):
    caplog.set_level(logging.WARNING, logger="petro_erp")

    updated = core_logic.update_pump(context, "p1", "deficit", "-3")

    assert updated.deficit == Decimal("-3")
    assert "negative" in caplog.text


def test_remove_staff_drops_their_documents(context, staff_member):
    core_logic.add_document(
        context,
        owner_kind=constants.DocumentOwner.STAFF,
        owner_id=staff_member.staff_id,
        doc_type="Iqama",
        expiry_date=date(2026, 1, 1),
    )
    core_logic.add_document(
        context,
        owner_kind=constants.DocumentOwner.STATION,
        doc_type="Civil Defense License",
        expiry_date="2026-06-30",
    )

    core_logic.remove_staff(context, staff_member.staff_id)

    assert core_logic.list_staff(context) == []
    assert [doc.doc_type for doc in core_logic.list_documents(context)] == ["Civil Defense License"]


def test_remove_staff_with_open_shift_is_rejected(context, staff_member):
    _open(context, staff_member.staff_id)

    with pytest.raises(core_logic.StaffShiftConflictError):
        core_logic.remove_staff(context, staff_member.staff_id)


def test_staff_document_requires_known_owner(context):
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.add_document(
            context,
            owner_kind=constants.DocumentOwner.STAFF,
            owner_id="ST-ghost",
            doc_type="Passport",
            expiry_date="2026-01-01",
        )


def test_station_document_drops_owner_id(context):
    document = core_logic.add_document(
        context,
        owner_kind=constants.DocumentOwner.STATION,
        owner_id="whatever",
        doc_type="Commercial Register",
        expiry_date="2026-01-01",
    )

    assert document.owner_id is None


def test_days_remaining_is_negative_after_expiry():
    today = date(2025, 1, 5)

    assert core_logic.days_remaining("2025-01-10", today=today) == 5
    assert core_logic.days_remaining("2025-01-02", today=today) == -3


def test_list_expiring_documents_orders_most_urgent_first(context):
    for doc_type, expiry in (("Far", "2025-06-01"), ("Soon", "2025-01-15"), ("Expired", "2025-01-02")):
        core_logic.add_document(
            context,
            owner_kind=constants.DocumentOwner.STATION,
            doc_type=doc_type,
            expiry_date=expiry,
        )

    flagged = core_logic.list_expiring_documents(context, today=date(2025, 1, 5))

    assert [(doc.doc_type, days) for doc, days in flagged] == [("Expired", -3), ("Soon", 10)]


def test_days_remaining_rejects_blank_expiry():
    with pytest.raises(ValueError, match="Not an ISO date"):
        core_logic.days_remaining("", today=date(2025, 1, 5))


def test_expiring_documents_skip_rows_without_expiry(context, caplog):
    blank = data_manager.DocumentRow("D-blank", "STATION", None, "Civil Defense", "", None)
    data_manager.write_collection(context.workbook, SheetName.DOCUMENTS.value, (blank,))
    core_logic.add_document(
        context,
        owner_kind=constants.DocumentOwner.STATION,
        doc_type="Municipality License",
        expiry_date="2025-01-20",
    )
    caplog.set_level(logging.WARNING, logger="petro_erp")

    flagged = core_logic.list_expiring_documents(context, today=date(2025, 1, 5))

    assert [(doc.doc_type, days) for doc, days in flagged] == [("Municipality License", 15)]
    assert "D-blank" in caplog.text


# ---------------------------------------------------------------------------
# Users, suppliers, expenses, settings
# ---------------------------------------------------------------------------


def test_add_user_lowercases_username(context):
    user = core_logic.add_user(context, username="  Cashier ", name="Front Cashier", role=constants.UserRole.STAFF, pin="0000")

    assert user.username == "cashier"
    assert user.role == "STAFF"


def test_last_user_cannot_be_deleted(context):
    with pytest.raises(core_logic.LastUserError):
        core_logic.delete_user(context, "admin-1")

    assert [user.user_id for user in core_logic.list_users(context)] == ["admin-1"]


def test_delete_unknown_user_reports_missing_reference(context):
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.delete_user(context, "nobody")

    assert [user.user_id for user in core_logic.list_users(context)] == ["admin-1"]


def test_delete_user_when_another_remains(context):
    other = core_logic.add_user(context, username="manager", name="Manager", role="ADMIN", pin="4321")

    core_logic.delete_user(context, "admin-1")

    assert core_logic.list_users(context) == [other]


def test_update_user_rejects_unknown_role(context):
    with pytest.raises(ValueError):
        core_logic.update_user(context, "admin-1", "role", "OWNER")


def test_add_supplier_validates_fuels(context):
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.add_supplier(context, name="Ghost Oil", fuel_ids=("f1", "f9"))

    assert core_logic.list_suppliers(context) == []


def test_expense_lifecycle_is_audited(context):
    expense = core_logic.record_expense(
        context,
        core_logic.ExpenseCommand(
            category=constants.ExpenseCategory.RENT,
            expense_type=constants.ExpenseType.FIXED,
            amount=Decimal("5000"),
            expense_date=date(2025, 1, 1),
            recurrence=constants.Recurrence.MONTHLY,
        ),
    )
    updated = core_logic.update_expense(context, expense.expense_id, "amount", "5500")
    core_logic.delete_expense(context, expense.expense_id)

    assert expense.expense_date == "2025-01-01"
    assert expense.recurrence == "MONTHLY"
    assert updated.amount == Decimal("5500")
    assert core_logic.list_expenses(context) == []
    assert len(_actions(context, AuditAction.FIN_LEDGER_UPDATE)) == 3


def test_update_expense_validates_enum_fields(context):
    expense = core_logic.record_expense(
        context,
        core_logic.ExpenseCommand(
            category="Water",
            expense_type="VARIABLE",
            amount=Decimal("120"),
            expense_date=date(2025, 2, 1),
        ),
    )

    with pytest.raises(ValueError):
        core_logic.update_expense(context, expense.expense_id, "expense_type", "SOMETIMES")


def test_update_station_settings(context):
    updated = core_logic.update_station_settings(context, tax_number="300000000000003")

    assert updated.tax_number == "300000000000003"
    assert updated.company_name == "Saudi Petro ERP"
    assert _actions(context, AuditAction.SYS_CONFIG_COMPANY)


def test_update_station_settings_rejects_unknown_keys(context):
    with pytest.raises(core_logic.BusinessRuleViolation):
        core_logic.update_station_settings(context, logo="x.png")


def test_create_backup_writes_copy_and_logs(context, tmp_path):
    backup = core_logic.create_backup(context, tmp_path / "backups" / "petro-backup.xlsx")

    assert (tmp_path / "backups" / "petro-backup.xlsx").exists()
    assert backup.file_name == "petro-backup.xlsx"
    assert backup.user_name == "System Admin"
    assert core_logic.list_backups(context) == [backup]
    assert core_logic.list_audit_log(context)[0].action == AuditAction.SYS_BACKUP.value


# ---------------------------------------------------------------------------
# Audit recorder
# ---------------------------------------------------------------------------


def test_audit_entries_name_the_acting_user(settings, context):
    acting = core_logic.RuntimeContext(settings=settings, workbook=context.workbook, actor_id="ghost")

    entry = core_logic.record_audit(acting, AuditAction.SYS_BACKUP, "manual")

    assert entry.user_id == "ghost"
    assert entry.user_name == "ghost"


def test_audit_actor_can_be_overridden_per_entry(context):
    entry = core_logic.record_audit(context, AuditAction.SYS_BACKUP, "manual", actor_id="admin-1")
    stranger = core_logic.record_audit(context, AuditAction.SYS_BACKUP, "manual", actor_id="ST-9")

    assert (entry.user_id, entry.user_name) == ("admin-1", "System Admin")
    assert (stranger.user_id, stranger.user_name) == ("ST-9", "ST-9")


def test_audit_log_is_capped_newest_first(context):
    moment = datetime(2025, 1, 1, tzinfo=UTC)
    for index in range(constants.AUDIT_LOG_CAP + 1):
        core_logic.record_audit(context, AuditAction.INV_STOCK_UPDATE, f"entry {index}", timestamp=moment)

    entries = core_logic.list_audit_log(context)

    assert len(entries) == constants.AUDIT_LOG_CAP
    assert entries[0].details == f"entry {constants.AUDIT_LOG_CAP}"
    assert entries[-1].details == "entry 1"


def test_search_audit_log_is_case_insensitive(context, staff_member):
    _open(context, staff_member.staff_id)

    by_action = core_logic.search_audit_log(context, "ops_shift")
    by_user = core_logic.search_audit_log(context, "SYSTEM ADMIN")
    by_details = core_logic.search_audit_log(context, "ahmed")

    assert [entry.action for entry in by_action] == [AuditAction.OPS_SHIFT_OPEN.value]
    assert len(by_user) == len(core_logic.list_audit_log(context))
    assert {entry.action for entry in by_details} == {
        AuditAction.OPS_SHIFT_OPEN.value,
        AuditAction.HR_STAFF_MGMT.value,
    }
    assert core_logic.search_audit_log(context, "no-such-thing") == []


def test_audit_failure_never_fails_the_mutation(context, staff_member, caplog):
    def _explode_on_audit(event):
        if event.collection is SheetName.AUDIT_LOG:
            raise OSError("disk full")

    core_logic.subscribe(context, _explode_on_audit)
    caplog.set_level(logging.ERROR, logger="petro_erp")

    shift = _open(context, staff_member.staff_id)

    assert core_logic.get_shift(context, shift.shift_id).status == ShiftStatus.OPEN.value
    assert core_logic.list_audit_log(context)[0].action == AuditAction.OPS_SHIFT_OPEN.value
    assert "continuing" in caplog.text


def test_subscriber_failure_on_data_commit_propagates(context, staff_member):
    def _explode_on_shifts(event):
        if event.collection is SheetName.SHIFTS:
            raise OSError("disk full")

    core_logic.subscribe(context, _explode_on_shifts)

    with pytest.raises(OSError):
        _open(context, staff_member.staff_id)
