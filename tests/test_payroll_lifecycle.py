"""Tests for the payroll item and period lifecycle."""

from decimal import Decimal
from uuid import uuid4

import pytest

from hr_payroll_engine.calculators.types import PayrollSelections
from hr_payroll_engine.errors import (
    AuthorizationRequired,
    InvalidTransition,
    ItemLocked,
    NotFoundError,
    ValidationError,
)
from hr_payroll_engine.services.payroll_lifecycle import PayrollEntry, PayrollLifecycle


def pera_selection(allowance_types):
    return PayrollSelections(allowance_type_ids=[allowance_types["PERA"].allowance_type_id])


@pytest.fixture
async def processed(session, period, employees, allowance_types):
    """Five processed items in a processing period."""
    lifecycle = PayrollLifecycle(session)
    entries = [
        PayrollEntry(e.employee_id, Decimal("10"), pera_selection(allowance_types))
        for e in employees
    ]
    result = await lifecycle.process(period.payroll_period_id, entries)
    assert not result.failed
    items = await lifecycle.get_period_items(period.payroll_period_id)
    return lifecycle, items


class TestProcessPeriod:
    """Test batch computation of a period."""

    async def test_process_moves_period_to_processing(self, session, period, processed):
        lifecycle, items = processed

        assert period.status == "processing"
        assert len(items) == 5
        assert {i.status for i in items} == {"processed"}

    async def test_process_is_best_effort(self, session, period, employees, allowance_types):
        lifecycle = PayrollLifecycle(session)
        entries = [
            PayrollEntry(employees[0].employee_id, Decimal("10")),
            PayrollEntry(employees[1].employee_id, Decimal("-3")),
            PayrollEntry(uuid4(), Decimal("10")),
            PayrollEntry(employees[2].employee_id, Decimal("10")),
        ]

        result = await lifecycle.process(period.payroll_period_id, entries)

        assert result.succeeded == [employees[0].employee_id, employees[2].employee_id]
        assert [f.code for f in result.failed] == ["VALIDATION_ERROR", "NOT_FOUND"]
        items = await lifecycle.get_period_items(period.payroll_period_id)
        assert len(items) == 2

    async def test_failed_batch_leaves_period_draft(self, session, period, employees):
        lifecycle = PayrollLifecycle(session)

        result = await lifecycle.process(
            period.payroll_period_id,
            [PayrollEntry(employees[0].employee_id, Decimal("-1")), PayrollEntry(uuid4(), 10)],
        )
        empty = await lifecycle.process(period.payroll_period_id, [])

        assert result.affected_rows == 0
        assert empty.affected_rows == 0
        assert period.status == "draft"

    async def test_compute_item(self, session, period, employee, allowance_types):
        lifecycle = PayrollLifecycle(session)

        item = await lifecycle.compute_item(
            period.payroll_period_id, employee.employee_id, 15, pera_selection(allowance_types)
        )

        assert item.net_pay == Decimal("24500.00")
        assert period.status == "processing"

    async def test_unknown_period(self, session, employee):
        with pytest.raises(NotFoundError):
            await PayrollLifecycle(session).compute_item(uuid4(), employee.employee_id, 10)


class TestItemTransitions:
    """Test finalize, mark paid and reopen."""

    async def test_finalize_requires_authorization(self, session, processed):
        lifecycle, items = processed

        with pytest.raises(AuthorizationRequired):
            await lifecycle.finalize(items[0].payroll_item_id, authorized=False)

        assert items[0].status == "processed"

    async def test_finalize(self, session, processed):
        lifecycle, items = processed
        approver = uuid4()

        item = await lifecycle.finalize(items[0].payroll_item_id, True, finalized_by=approver)

        assert item.status == "finalized"
        assert item.finalized_by == approver
        assert item.finalized_at is not None

    async def test_finalize_twice(self, session, processed):
        lifecycle, items = processed
        await lifecycle.finalize(items[0].payroll_item_id, True)

        with pytest.raises(InvalidTransition) as exc_info:
            await lifecycle.finalize(items[0].payroll_item_id, True)

        assert exc_info.value.from_status == "finalized"

    async def test_finalized_item_cannot_be_recalculated(self, session, processed):
        lifecycle, items = processed
        await lifecycle.finalize(items[0].payroll_item_id, True)

        with pytest.raises(ItemLocked):
            await lifecycle.recalculate(items[0].payroll_item_id)

    async def test_mark_paid_requires_reference(self, session, processed):
        lifecycle, items = processed
        await lifecycle.finalize(items[0].payroll_item_id, True)

        with pytest.raises(ValidationError):
            await lifecycle.mark_paid(items[0].payroll_item_id, "  ")

    async def test_mark_paid_from_processed(self, session, processed):
        lifecycle, items = processed

        with pytest.raises(InvalidTransition):
            await lifecycle.mark_paid(items[0].payroll_item_id, "REF-1")

    async def test_mark_paid(self, session, processed):
        lifecycle, items = processed
        await lifecycle.finalize(items[0].payroll_item_id, True)

        item = await lifecycle.mark_paid(items[0].payroll_item_id, " REF-1 ")

        assert item.status == "paid"
        assert item.payment_reference == "REF-1"
        assert item.paid_at is not None

    async def test_reopen(self, session, processed):
        lifecycle, items = processed
        item_id = items[0].payroll_item_id
        await lifecycle.finalize(item_id, True, finalized_by=uuid4())

        item = await lifecycle.reopen(item_id, True, reason="Wrong working days")

        assert item.status == "draft"
        assert item.finalized_at is None
        assert item.finalized_by is None
        assert item.notes == "Wrong working days"

        item = await lifecycle.adjust_working_days(item_id, 12)
        assert item.status == "processed"
        assert item.working_days == Decimal("12")
        assert item.basic_pay == item.daily_rate * 12

    async def test_reopen_requires_authorization(self, session, processed):
        lifecycle, items = processed
        await lifecycle.finalize(items[0].payroll_item_id, True)

        with pytest.raises(AuthorizationRequired):
            await lifecycle.reopen(items[0].payroll_item_id, False)

    async def test_paid_item_cannot_be_reopened(self, session, processed):
        lifecycle, items = processed
        await lifecycle.finalize(items[0].payroll_item_id, True)
        await lifecycle.mark_paid(items[0].payroll_item_id, "REF-1")

        with pytest.raises(InvalidTransition):
            await lifecycle.reopen(items[0].payroll_item_id, True)


class TestBulkOperations:
    """Test bulk finalize and mark paid."""

    async def test_bulk_mark_paid_skips_already_paid(self, session, processed):
        """Five items, one already paid: four succeed, the paid one keeps its reference."""
        lifecycle, items = processed
        ids = [i.payroll_item_id for i in items]
        await lifecycle.bulk_finalize(ids, authorized=True)
        await lifecycle.mark_paid(ids[0], "REF-EARLY")

        result = await lifecycle.bulk_mark_paid(ids, "REF-BATCH")

        assert result.affected_rows == 4
        assert set(result.succeeded) == set(ids[1:])
        assert len(result.failed) == 1
        assert result.failed[0].id == ids[0]
        assert result.failed[0].code == "INVALID_TRANSITION"

        early = await lifecycle.get_item(ids[0])
        assert early.payment_reference == "REF-EARLY"
        for item_id in ids[1:]:
            item = await lifecycle.get_item(item_id)
            assert item.status == "paid"
            assert item.payment_reference == "REF-BATCH"

    async def test_bulk_finalize_requires_authorization(self, session, processed):
        lifecycle, items = processed

        with pytest.raises(AuthorizationRequired):
            await lifecycle.bulk_finalize([i.payroll_item_id for i in items], authorized=False)

    async def test_bulk_finalize_reports_missing(self, session, processed):
        lifecycle, items = processed
        missing = uuid4()

        result = await lifecycle.bulk_finalize(
            [items[0].payroll_item_id, missing, items[0].payroll_item_id], authorized=True
        )

        assert result.succeeded == [items[0].payroll_item_id]
        assert [(f.id, f.code) for f in result.failed] == [(missing, "NOT_FOUND")]

    async def test_bulk_mark_paid_requires_reference(self, session, processed):
        lifecycle, items = processed

        with pytest.raises(ValidationError):
            await lifecycle.bulk_mark_paid([i.payroll_item_id for i in items], "")


class TestManualAdjustments:
    """Test ledger adjustments through the lifecycle."""

    async def test_adjustment_recomputes_item(self, session, processed):
        lifecycle, items = processed
        item_id = items[0].payroll_item_id
        net_before = items[0].net_pay

        item = await lifecycle.add_manual_adjustment(
            item_id, "deduction", "Cash advance", Decimal("300"), reason="Advance on 06-03"
        )

        assert item.net_pay == net_before - Decimal("300")
        assert item.lines[-1].source == "adjustment"

    async def test_adjustment_on_finalized_item(self, session, processed):
        lifecycle, items = processed
        await lifecycle.finalize(items[0].payroll_item_id, True)

        with pytest.raises(ItemLocked):
            await lifecycle.add_manual_adjustment(
                items[0].payroll_item_id, "allowance", "Late OT", Decimal("100")
            )

    async def test_recalculate_replays_selections(self, session, processed):
        lifecycle, items = processed
        hash_before = items[0].calculation_hash

        item = await lifecycle.recalculate(items[0].payroll_item_id)

        assert item.calculation_hash == hash_before
        assert [line.rate_code for line in item.lines] == ["PERA"]


class TestPeriodTransitions:
    """Test completing, paying and deleting a period."""

    async def test_complete_requires_finalized_items(self, session, period, processed):
        lifecycle, items = processed

        with pytest.raises(InvalidTransition, match="not finalized"):
            await lifecycle.complete_period(period.payroll_period_id)

    async def test_full_period_lifecycle(self, session, period, processed):
        lifecycle, items = processed
        ids = [i.payroll_item_id for i in items]
        await lifecycle.bulk_finalize(ids, authorized=True)

        await lifecycle.complete_period(period.payroll_period_id)
        assert period.status == "completed"
        assert period.completed_at is not None

        with pytest.raises(InvalidTransition, match="not paid"):
            await lifecycle.mark_period_paid(period.payroll_period_id)

        await lifecycle.bulk_mark_paid(ids, "REF-JUNE-1")
        await lifecycle.mark_period_paid(period.payroll_period_id)
        assert period.status == "paid"

    async def test_reopen_moves_completed_period_back(self, session, period, processed):
        lifecycle, items = processed
        await lifecycle.bulk_finalize([i.payroll_item_id for i in items], authorized=True)
        await lifecycle.complete_period(period.payroll_period_id)

        await lifecycle.reopen(items[0].payroll_item_id, True)

        assert period.status == "processing"
        assert period.completed_at is None

    async def test_completed_period_rejects_computation(
        self, session, period, processed, employee
    ):
        lifecycle, items = processed
        await lifecycle.bulk_finalize([i.payroll_item_id for i in items], authorized=True)
        await lifecycle.complete_period(period.payroll_period_id)

        with pytest.raises(InvalidTransition):
            await lifecycle.compute_item(period.payroll_period_id, employee.employee_id, 10)

    async def test_delete_requires_completed(self, session, period, processed):
        lifecycle, _ = processed

        with pytest.raises(ValidationError):
            await lifecycle.delete_period(period.payroll_period_id)

    async def test_delete_completed_period(self, session, period, processed):
        lifecycle, items = processed
        await lifecycle.bulk_finalize([i.payroll_item_id for i in items], authorized=True)
        await lifecycle.complete_period(period.payroll_period_id)

        await lifecycle.delete_period(period.payroll_period_id)

        with pytest.raises(NotFoundError):
            await lifecycle.get_period(period.payroll_period_id)
