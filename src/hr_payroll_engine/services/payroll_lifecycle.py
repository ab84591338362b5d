"""Payroll item and period lifecycle."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_payroll_engine.calculators.adjustment_ledger import AdjustmentLedger
from hr_payroll_engine.calculators.payroll_engine import PayrollItemEngine
from hr_payroll_engine.calculators.types import PayrollSelections
from hr_payroll_engine.errors import (
    AuthorizationRequired,
    InvalidTransition,
    ItemLocked,
    NotFoundError,
    ValidationError,
)
from hr_payroll_engine.models import Employee, PayrollItem, PayrollPeriod
from hr_payroll_engine.services.batch import BatchResult, run_batch
from hr_payroll_engine.services.transitions import advance_status
from hr_payroll_engine.state_machine import (
    PayrollItemStateMachine,
    PayrollItemStatus,
    PayrollPeriodStateMachine,
    PayrollPeriodStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class PayrollEntry:
    """One employee's inputs for a period computation."""

    employee_id: UUID
    working_days: Decimal
    selections: PayrollSelections = field(default_factory=PayrollSelections)


class PayrollLifecycle:
    """Service for managing payroll item and period lifecycles.

    Item operations:
    - process / compute_item: compute items, draft → processed
    - recalculate: replay stored inputs while draft/processed
    - finalize: processed → finalized (authorized)
    - mark_paid: finalized → paid (payment reference required)
    - reopen: finalized → draft (authorized, period not paid)

    Period operations:
    - complete_period: processing → completed
    - mark_period_paid: completed → paid
    - delete_period: soft delete of a completed period
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.engine = PayrollItemEngine(session)
        self.ledger = AdjustmentLedger(session)

    # === Item computation ===

    async def process(self, period_id: UUID, entries: list[PayrollEntry]) -> BatchResult:
        """Compute every entry independently; failures do not stop the batch."""
        period = await self._get_computable_period(period_id)
        by_employee = {entry.employee_id: entry for entry in entries}

        async def compute(employee_id: UUID) -> None:
            entry = by_employee[employee_id]
            employee = await self.get_employee(employee_id)
            await self.engine.compute(employee, period, entry.working_days, entry.selections)

        result = await run_batch(self.session, [e.employee_id for e in entries], compute)
        if result.succeeded:
            await self._start_processing(period)
        logger.info(
            "Processed period %s: %d succeeded, %d failed",
            period_id,
            len(result.succeeded),
            len(result.failed),
        )
        return result

    async def compute_item(
        self,
        period_id: UUID,
        employee_id: UUID,
        working_days: Decimal | int | str,
        selections: PayrollSelections | None = None,
    ) -> PayrollItem:
        period = await self._get_computable_period(period_id)
        employee = await self.get_employee(employee_id)
        item = await self.engine.compute(
            employee, period, working_days, selections or PayrollSelections()
        )
        await self._start_processing(period)
        return item

    async def recalculate(self, item_id: UUID) -> PayrollItem:
        """Recompute an item from its stored working days and selections."""
        item = await self.get_item(item_id)
        return await self._recompute(item, item.working_days)

    async def adjust_working_days(
        self,
        item_id: UUID,
        working_days: Decimal | int | str,
        reason: str | None = None,
    ) -> PayrollItem:
        item = await self.get_item(item_id)
        previous = item.working_days
        item = await self._recompute(item, working_days)
        if reason:
            item.notes = reason
        logger.info(
            "Working days of payroll item %s changed from %s to %s",
            item_id,
            previous,
            item.working_days,
        )
        return item

    async def add_manual_adjustment(
        self,
        item_id: UUID,
        adjustment_type: str,
        description: str,
        amount: Decimal,
        reason: str | None = None,
        created_by: UUID | None = None,
    ) -> PayrollItem:
        """Record a ledger adjustment and recompute the item with it."""
        item = await self.get_item(item_id)
        await self.ledger.append_payroll_adjustment(
            item, adjustment_type, amount, description, reason, created_by
        )
        return await self._recompute(item, item.working_days)

    async def _recompute(self, item: PayrollItem, working_days: Decimal | int | str) -> PayrollItem:
        if not PayrollItemStateMachine.can_calculate(item.status):
            raise ItemLocked(item.payroll_item_id, item.status)
        period = await self._get_computable_period(item.payroll_period_id)
        employee = await self.get_employee(item.employee_id)
        selections = PayrollSelections.from_storage(
            item.selected_allowance_type_ids,
            item.selected_deduction_type_ids,
            item.manual_amounts,
        )
        return await self.engine.compute(employee, period, working_days, selections)

    # === Item transitions ===

    async def finalize(
        self,
        item_id: UUID,
        authorized: bool,
        finalized_by: UUID | None = None,
    ) -> PayrollItem:
        if not authorized:
            raise AuthorizationRequired("finalize")
        item = await self.get_item(item_id)
        await advance_status(
            self.session,
            item,
            "payroll_item_id",
            PayrollItemStateMachine.sources_for(PayrollItemStatus.FINALIZED),
            PayrollItemStatus.FINALIZED.value,
            finalized_at=datetime.now(timezone.utc),
            finalized_by=finalized_by,
        )
        return item

    async def mark_paid(
        self,
        item_id: UUID,
        payment_reference: str,
        paid_at: datetime | None = None,
    ) -> PayrollItem:
        reference = self._require_reference(payment_reference)
        item = await self.get_item(item_id)
        await advance_status(
            self.session,
            item,
            "payroll_item_id",
            [PayrollItemStatus.FINALIZED.value],
            PayrollItemStatus.PAID.value,
            paid_at=paid_at or datetime.now(timezone.utc),
            payment_reference=reference,
        )
        return item

    async def reopen(
        self,
        item_id: UUID,
        authorized: bool,
        reason: str | None = None,
    ) -> PayrollItem:
        """Return a finalized item to draft so it can be recomputed."""
        if not authorized:
            raise AuthorizationRequired("reopen")
        item = await self.get_item(item_id)
        period = await self.get_period(item.payroll_period_id)
        if period.status == PayrollPeriodStatus.PAID.value:
            raise InvalidTransition(
                item.status,
                PayrollItemStatus.DRAFT.value,
                f"period {period.payroll_period_id} is already paid",
                entity_id=item.payroll_item_id,
            )

        await advance_status(
            self.session,
            item,
            "payroll_item_id",
            [PayrollItemStatus.FINALIZED.value],
            PayrollItemStatus.DRAFT.value,
            finalized_at=None,
            finalized_by=None,
            **({"notes": reason} if reason else {}),
        )

        if period.status == PayrollPeriodStatus.COMPLETED.value:
            await advance_status(
                self.session,
                period,
                "payroll_period_id",
                [PayrollPeriodStatus.COMPLETED.value],
                PayrollPeriodStatus.PROCESSING.value,
                completed_at=None,
            )
        return item

    async def bulk_finalize(
        self,
        item_ids: list[UUID],
        authorized: bool,
        finalized_by: UUID | None = None,
    ) -> BatchResult:
        if not authorized:
            raise AuthorizationRequired("bulk_finalize")

        async def finalize(item_id: UUID) -> None:
            await self.finalize(item_id, authorized=True, finalized_by=finalized_by)

        return await run_batch(self.session, item_ids, finalize)

    async def bulk_mark_paid(
        self,
        item_ids: list[UUID],
        payment_reference: str,
        paid_at: datetime | None = None,
    ) -> BatchResult:
        reference = self._require_reference(payment_reference)
        paid_at = paid_at or datetime.now(timezone.utc)

        async def mark_paid(item_id: UUID) -> None:
            await self.mark_paid(item_id, reference, paid_at)

        return await run_batch(self.session, item_ids, mark_paid)

    # === Period transitions ===

    async def complete_period(self, period_id: UUID) -> PayrollPeriod:
        """processing → completed once every item is finalized or paid."""
        period = await self.get_period(period_id)
        items = await self.get_period_items(period_id)
        if not items:
            raise InvalidTransition(
                period.status, PayrollPeriodStatus.COMPLETED.value, "period has no items"
            )
        open_items = [
            i.payroll_item_id
            for i in items
            if not PayrollItemStateMachine.are_results_immutable(i.status)
        ]
        if open_items:
            raise InvalidTransition(
                period.status,
                PayrollPeriodStatus.COMPLETED.value,
                f"{len(open_items)} item(s) are not finalized",
                entity_id=period_id,
            )
        await advance_status(
            self.session,
            period,
            "payroll_period_id",
            [PayrollPeriodStatus.PROCESSING.value],
            PayrollPeriodStatus.COMPLETED.value,
            completed_at=datetime.now(timezone.utc),
        )
        return period

    async def mark_period_paid(self, period_id: UUID) -> PayrollPeriod:
        period = await self.get_period(period_id)
        items = await self.get_period_items(period_id)
        unpaid = [i.payroll_item_id for i in items if i.status != PayrollItemStatus.PAID.value]
        if unpaid:
            raise InvalidTransition(
                period.status,
                PayrollPeriodStatus.PAID.value,
                f"{len(unpaid)} item(s) are not paid",
                entity_id=period_id,
            )
        await advance_status(
            self.session,
            period,
            "payroll_period_id",
            [PayrollPeriodStatus.COMPLETED.value],
            PayrollPeriodStatus.PAID.value,
        )
        return period

    async def delete_period(self, period_id: UUID) -> PayrollPeriod:
        """Soft delete; only completed periods can be deleted."""
        period = await self.get_period(period_id)
        if period.status != PayrollPeriodStatus.COMPLETED.value:
            raise ValidationError(
                f"Only completed periods can be deleted (current: {period.status})"
            )
        period.deleted_at = datetime.now(timezone.utc)
        await self.session.flush()
        logger.info("Soft-deleted payroll period %s", period_id)
        return period

    async def _start_processing(self, period: PayrollPeriod) -> None:
        if period.status == PayrollPeriodStatus.DRAFT.value:
            await advance_status(
                self.session,
                period,
                "payroll_period_id",
                [PayrollPeriodStatus.DRAFT.value],
                PayrollPeriodStatus.PROCESSING.value,
            )

    async def _get_computable_period(self, period_id: UUID) -> PayrollPeriod:
        period = await self.get_period(period_id)
        if not PayrollPeriodStateMachine.can_compute(period.status):
            raise InvalidTransition(
                period.status,
                PayrollPeriodStatus.PROCESSING.value,
                "period no longer accepts computation",
                entity_id=period_id,
            )
        return period

    @staticmethod
    def _require_reference(payment_reference: str | None) -> str:
        if not payment_reference or not payment_reference.strip():
            raise ValidationError("Payment reference is required")
        return payment_reference.strip()

    # === Data loading methods ===

    async def get_item(self, item_id: UUID) -> PayrollItem:
        item = await self.session.get(PayrollItem, item_id)
        if item is None:
            raise NotFoundError("PayrollItem", item_id)
        return item

    async def get_period(self, period_id: UUID) -> PayrollPeriod:
        result = await self.session.execute(
            select(PayrollPeriod).where(
                PayrollPeriod.payroll_period_id == period_id,
                PayrollPeriod.deleted_at.is_(None),
            )
        )
        period = result.scalar_one_or_none()
        if period is None:
            raise NotFoundError("PayrollPeriod", period_id)
        return period

    async def get_employee(self, employee_id: UUID) -> Employee:
        employee = await self.session.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        return employee

    async def get_period_items(self, period_id: UUID) -> list[PayrollItem]:
        result = await self.session.execute(
            select(PayrollItem)
            .where(PayrollItem.payroll_period_id == period_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
