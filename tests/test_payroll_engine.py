"""Tests for the payroll item engine."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from hr_payroll_engine.calculators.adjustment_ledger import AdjustmentLedger
from hr_payroll_engine.calculators.payroll_engine import PayrollItemEngine
from hr_payroll_engine.calculators.types import PayrollSelections
from hr_payroll_engine.errors import ItemLocked, RateResolutionError, ValidationError
from hr_payroll_engine.models import PayrollItem, PayrollItemLine

from .conftest import hide_first_lookup, make_employee


def select_types(allowances=(), deductions=(), manual=None):
    return PayrollSelections(
        allowance_type_ids=[a.allowance_type_id for a in allowances],
        deduction_type_ids=[d.deduction_type_id for d in deductions],
        manual_amounts={k.rate_type_id: Decimal(v) for k, v in (manual or {}).items()},
    )


class TestPayrollComputation:
    """Test computing a payroll item end to end."""

    async def test_fixed_allowance_and_deduction(
        self, session, employee, period, allowance_types, deduction_types
    ):
        """Daily rate 1500 for 15 days with a 2000 allowance and a 500 deduction."""
        selections = select_types([allowance_types["PERA"]], [deduction_types["GSIS"]])

        item = await PayrollItemEngine(session).compute(employee, period, 15, selections)

        assert item.status == "processed"
        assert item.daily_rate == Decimal("1500.00")
        assert item.basic_pay == Decimal("22500.00")
        assert item.total_allowances == Decimal("2000.00")
        assert item.total_deductions == Decimal("500.00")
        assert item.gross_pay == Decimal("24500.00")
        assert item.net_pay == Decimal("24000.00")
        assert [(line.line_type, line.rate_code) for line in item.lines] == [
            ("allowance", "PERA"),
            ("deduction", "GSIS"),
        ]
        assert len(item.calculation_hash) == 32

    async def test_totals_are_sums_of_lines(
        self, session, employee, period, allowance_types, deduction_types
    ):
        selections = select_types(
            [allowance_types["PERA"], allowance_types["RATA"], allowance_types["HAZARD"]],
            [deduction_types["GSIS"], deduction_types["WTAX"]],
        )

        item = await PayrollItemEngine(session).compute(employee, period, 15, selections)

        allowances = sum(l.amount for l in item.lines if l.line_type == "allowance")
        deductions = sum(l.amount for l in item.lines if l.line_type == "deduction")
        assert item.total_allowances == allowances
        assert item.total_deductions == deductions
        assert item.gross_pay == item.basic_pay + item.total_allowances
        assert item.net_pay == item.gross_pay - item.total_deductions

    async def test_percentage_bases(
        self, session, employee, period, allowance_types, deduction_types
    ):
        """Allowances see basic pay; deductions also see gross pay."""
        selections = select_types([allowance_types["RATA"]], [deduction_types["WTAX"]])

        item = await PayrollItemEngine(session).compute(employee, period, 15, selections)

        lines = {line.rate_code: line for line in item.lines}
        assert lines["RATA"].amount == Decimal("2250.00")
        assert lines["WTAX"].amount == Decimal("1237.50")

    async def test_formula_allowance(self, session, employee, period, allowance_types):
        selections = select_types([allowance_types["HAZARD"]])

        item = await PayrollItemEngine(session).compute(employee, period, 15, selections)

        assert item.lines[0].amount == Decimal("1125.00")
        assert item.lines[0].calculation_basis.startswith("Formula:")

    async def test_prorated_allowance(self, session, employee, period, allowance_types):
        selections = select_types([allowance_types["TRANSPO"]])

        item = await PayrollItemEngine(session).compute(employee, period, "5.5", selections)

        assert item.lines[0].amount == Decimal("550.00")
        assert "prorated 5.50/11.00 days" in item.lines[0].calculation_basis

    async def test_manual_amount(self, session, employee, period, allowance_types, deduction_types):
        ot = allowance_types["OT"]
        selections = select_types([ot], [deduction_types["LOAN"]], {ot: "1000"})

        item = await PayrollItemEngine(session).compute(employee, period, 10, selections)

        # LOAN has no amount supplied and is left out
        assert len(item.lines) == 1
        assert item.lines[0].source == "manual_amount"
        assert item.lines[0].amount == Decimal("1000.00")
        assert item.manual_amounts == {str(ot.allowance_type_id): "1000"}

    async def test_daily_rate_from_monthly_salary(self, session, period):
        employee = make_employee("EMP-M", current_daily_rate=None)
        session.add(employee)
        await session.flush()

        item = await PayrollItemEngine(session).compute(
            employee, period, 10, PayrollSelections()
        )

        assert item.daily_rate == Decimal("3000.00")
        assert item.basic_pay == Decimal("30000.00")

    async def test_zero_working_days(self, session, employee, period, allowance_types):
        item = await PayrollItemEngine(session).compute(
            employee, period, 0, select_types([allowance_types["PERA"]])
        )

        assert item.basic_pay == Decimal("0.00")
        assert item.net_pay == Decimal("2000.00")


class TestPayrollValidation:
    """Test rejected inputs."""

    @pytest.mark.parametrize("working_days", [-1, 32, "abc", "NaN"])
    async def test_invalid_working_days(self, session, employee, period, working_days):
        with pytest.raises(ValidationError):
            await PayrollItemEngine(session).compute(
                employee, period, working_days, PayrollSelections()
            )

    async def test_missing_rates(self, session, period):
        employee = make_employee(
            "EMP-X", current_daily_rate=None, current_monthly_salary=None
        )
        session.add(employee)
        await session.flush()

        with pytest.raises(ValidationError, match="neither a daily rate"):
            await PayrollItemEngine(session).compute(employee, period, 10, PayrollSelections())

    async def test_inactive_type(self, session, employee, period, allowance_types):
        with pytest.raises(ValidationError, match="OLD"):
            await PayrollItemEngine(session).compute(
                employee, period, 10, select_types([allowance_types["OLD"]])
            )

    async def test_manual_amount_for_computed_type(
        self, session, employee, period, allowance_types
    ):
        pera = allowance_types["PERA"]

        with pytest.raises(ValidationError, match="not a manual type"):
            await PayrollItemEngine(session).compute(
                employee, period, 10, select_types([pera], manual={pera: "10"})
            )

    async def test_manual_amount_for_unselected_type(
        self, session, employee, period, allowance_types
    ):
        with pytest.raises(ValidationError, match="unselected"):
            await PayrollItemEngine(session).compute(
                employee, period, 10, select_types(manual={allowance_types["OT"]: "10"})
            )

    async def test_negative_manual_amount(self, session, employee, period, allowance_types):
        ot = allowance_types["OT"]

        with pytest.raises(ValidationError, match="negative"):
            await PayrollItemEngine(session).compute(
                employee, period, 10, select_types([ot], manual={ot: "-5"})
            )

    async def test_unresolvable_formula(self, session, employee, period, deduction_types):
        with pytest.raises(RateResolutionError) as exc_info:
            await PayrollItemEngine(session).compute(
                employee, period, 10, select_types(deductions=[deduction_types["BROKEN"]])
            )

        assert exc_info.value.rate_code == "BROKEN"

    async def test_negative_net_pay(self, session, employee, period, deduction_types):
        loan = deduction_types["LOAN"]

        with pytest.raises(ValidationError, match="Negative net pay"):
            await PayrollItemEngine(session).compute(
                employee, period, 1, select_types(deductions=[loan], manual={loan: "99999"})
            )

    async def test_failed_computation_persists_nothing(
        self, session, employee, period, deduction_types
    ):
        with pytest.raises(RateResolutionError):
            await PayrollItemEngine(session).compute(
                employee, period, 10, select_types(deductions=[deduction_types["BROKEN"]])
            )

        count = await session.scalar(select(func.count()).select_from(PayrollItem))
        assert count == 0


class TestRecomputation:
    """Test idempotency and in-place recomputation."""

    async def test_same_inputs_same_hash(
        self, session, employee, period, allowance_types, deduction_types
    ):
        engine = PayrollItemEngine(session)
        selections = select_types([allowance_types["PERA"]], [deduction_types["GSIS"]])

        first = await engine.compute(employee, period, 15, selections)
        first_hash = first.calculation_hash
        second = await engine.compute(employee, period, 15, selections)

        assert second.payroll_item_id == first.payroll_item_id
        assert second.calculation_hash == first_hash

        items = await session.scalar(select(func.count()).select_from(PayrollItem))
        lines = await session.scalar(select(func.count()).select_from(PayrollItemLine))
        assert items == 1
        assert lines == 2

    async def test_changed_inputs_change_hash(self, session, employee, period, allowance_types):
        engine = PayrollItemEngine(session)
        selections = select_types([allowance_types["PERA"]])

        item = await engine.compute(employee, period, 15, selections)
        first_hash = item.calculation_hash
        item = await engine.compute(employee, period, 14, selections)

        assert item.calculation_hash != first_hash
        assert item.basic_pay == Decimal("21000.00")

    async def test_recompute_replaces_lines(
        self, session, employee, period, allowance_types, deduction_types
    ):
        engine = PayrollItemEngine(session)
        await engine.compute(
            employee, period, 15, select_types([allowance_types["PERA"]], [deduction_types["GSIS"]])
        )

        item = await engine.compute(employee, period, 15, select_types([allowance_types["RATA"]]))

        assert [line.rate_code for line in item.lines] == ["RATA"]
        assert item.total_deductions == Decimal("0")
        lines = await session.scalar(select(func.count()).select_from(PayrollItemLine))
        assert lines == 1

    @pytest.mark.parametrize("status", ["finalized", "paid"])
    async def test_frozen_item_is_locked(self, session, employee, period, allowance_types, status):
        engine = PayrollItemEngine(session)
        selections = select_types([allowance_types["PERA"]])
        item = await engine.compute(employee, period, 15, selections)
        frozen_hash = item.calculation_hash
        item.status = status
        await session.flush()

        with pytest.raises(ItemLocked) as exc_info:
            await engine.compute(employee, period, 10, selections)

        assert exc_info.value.status == status
        assert item.calculation_hash == frozen_hash

    async def test_ledger_adjustments_become_lines(
        self, session, employee, period, allowance_types
    ):
        engine = PayrollItemEngine(session)
        ledger = AdjustmentLedger(session)
        selections = select_types([allowance_types["PERA"]])
        item = await engine.compute(employee, period, 15, selections)

        await ledger.append_payroll_adjustment(item, "allowance", Decimal("500"), "Retro pay")
        await ledger.append_payroll_adjustment(
            item, "deduction", Decimal("200"), "Cash advance", reason="Approved by HR"
        )
        item = await engine.compute(employee, period, 15, selections)

        adjustment_lines = [line for line in item.lines if line.source == "adjustment"]
        assert [(l.line_type, l.description) for l in adjustment_lines] == [
            ("allowance", "Retro pay"),
            ("deduction", "Cash advance"),
        ]
        assert adjustment_lines[1].calculation_basis == "Manual adjustment: Approved by HR"
        assert item.total_allowances == Decimal("2500.00")
        assert item.total_deductions == Decimal("200.00")
        assert item.net_pay == Decimal("24800.00")


class TestConcurrentInsert:
    """Test an insert that loses the race on the (period, employee) key."""

    async def test_conflicting_insert_updates_existing_row(
        self, session, employee, period, allowance_types, monkeypatch
    ):
        engine = PayrollItemEngine(session)
        selections = select_types([allowance_types["PERA"]])
        first = await engine.compute(employee, period, 10, selections)
        hide_first_lookup(monkeypatch, engine)

        item = await engine.compute(employee, period, 15, selections)

        assert item.payroll_item_id == first.payroll_item_id
        assert item.basic_pay == Decimal("22500.00")
        assert [line.rate_code for line in item.lines] == ["PERA"]
        count = await session.scalar(
            select(func.count()).select_from(PayrollItem).where(
                PayrollItem.employee_id == employee.employee_id
            )
        )
        assert count == 1

    async def test_conflicting_frozen_row_is_locked(
        self, session, employee, period, allowance_types, monkeypatch
    ):
        engine = PayrollItemEngine(session)
        selections = select_types([allowance_types["PERA"]])
        first = await engine.compute(employee, period, 10, selections)
        first.status = "finalized"
        await session.flush()
        hide_first_lookup(monkeypatch, engine)

        with pytest.raises(ItemLocked):
            await engine.compute(employee, period, 15, selections)
