"""Benefit cycle and benefit item lifecycle."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hr_payroll_engine.calculators.benefit_engine import BenefitItemEngine
from hr_payroll_engine.calculators.rules import ZERO, round2
from hr_payroll_engine.errors import (
    AuthorizationRequired,
    HasPaidItems,
    IncompleteChildren,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from hr_payroll_engine.models import BenefitAdjustment, BenefitCycle, BenefitItem, Employee
from hr_payroll_engine.services.batch import BatchResult, run_batch
from hr_payroll_engine.services.transitions import advance_status
from hr_payroll_engine.state_machine import (
    BenefitCycleStateMachine,
    BenefitCycleStatus,
    BenefitItemStateMachine,
    BenefitItemStatus,
)

logger = logging.getLogger(__name__)


class BenefitCycleLifecycle:
    """Service for managing benefit cycles and their items.

    Cycle operations:
    - calculate: compute items for the cycle's employees (draft/processing)
    - process: draft → processing
    - finalize: processing → completed
    - release: completed → released
    - cancel: draft/processing/completed → cancelled

    Item operations:
    - approve / bulk_approve: calculated → approved (authorized)
    - mark_paid / bulk_mark_paid: approved → paid
    - cancel_item: draft/calculated/approved → cancelled
    - add_adjustment: ledger adjustment on an open item

    Cycle aggregates are recomputed from the items on every transition.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.engine = BenefitItemEngine(session)

    # === Cycle operations ===

    async def calculate(
        self,
        cycle_id: UUID,
        employee_ids: Iterable[UUID] | None = None,
        service_months_cap: int | None = None,
    ) -> BatchResult:
        """Compute items for the given employees, or every employee.

        Items of employees outside a given set are left as they are.
        """
        ids = list(employee_ids) if employee_ids is not None else None
        cycle = await self.get_cycle(cycle_id)
        if not BenefitCycleStateMachine.can_calculate(cycle.status):
            raise InvalidTransition(
                cycle.status,
                BenefitCycleStatus.PROCESSING.value,
                "cycle no longer accepts calculation",
                entity_id=cycle_id,
            )
        if cycle.status == BenefitCycleStatus.DRAFT.value:
            await self._advance_cycle(
                cycle, [BenefitCycleStatus.DRAFT.value], BenefitCycleStatus.PROCESSING.value,
                processed_at=datetime.now(timezone.utc),
            )

        if ids is None:
            employees = await self._get_all_employees()
        else:
            employees = await self._get_employees(ids)
        by_id = {e.employee_id: e for e in employees}

        async def compute(employee_id: UUID) -> None:
            await self.engine.compute(by_id[employee_id], cycle, service_months_cap)

        result = BatchResult()
        if ids is not None:
            for missing in sorted(set(ids) - set(by_id), key=str):
                result.record_failure(missing, NotFoundError("Employee", missing))
        await run_batch(self.session, list(by_id), compute, result)

        await self._refresh_aggregates(cycle)
        result.summary = await self.summarize(cycle_id)
        logger.info(
            "Calculated cycle %s: %d succeeded, %d failed",
            cycle_id,
            len(result.succeeded),
            len(result.failed),
        )
        return result

    async def process(self, cycle_id: UUID) -> BenefitCycle:
        cycle = await self.get_cycle(cycle_id)
        await self._advance_cycle(
            cycle, [BenefitCycleStatus.DRAFT.value], BenefitCycleStatus.PROCESSING.value,
            processed_at=datetime.now(timezone.utc),
        )
        return cycle

    async def finalize(self, cycle_id: UUID) -> BenefitCycle:
        """processing → completed once every eligible item is calculated."""
        cycle = await self.get_cycle(cycle_id)
        items = await self.get_cycle_items(cycle_id)
        if not items:
            raise IncompleteChildren(cycle_id, BenefitCycleStatus.COMPLETED.value, [])
        self._check_children(cycle, items, BenefitCycleStatus.COMPLETED.value)
        await self._advance_cycle(
            cycle, [BenefitCycleStatus.PROCESSING.value], BenefitCycleStatus.COMPLETED.value,
            finalized_at=datetime.now(timezone.utc),
        )
        return cycle

    async def release(self, cycle_id: UUID) -> BenefitCycle:
        """completed → released once every eligible item is approved or paid."""
        cycle = await self.get_cycle(cycle_id)
        items = await self.get_cycle_items(cycle_id)
        self._check_children(cycle, items, BenefitCycleStatus.RELEASED.value)
        await self._advance_cycle(
            cycle, [BenefitCycleStatus.COMPLETED.value], BenefitCycleStatus.RELEASED.value,
            released_at=datetime.now(timezone.utc),
        )
        return cycle

    async def cancel(
        self,
        cycle_id: UUID,
        reason: str,
        acknowledge_partial: bool = False,
    ) -> BenefitCycle:
        """Cancel the cycle and every unpaid item.

        Paid items stay paid; cancelling over them needs acknowledge_partial.
        """
        if not reason or not reason.strip():
            raise ValidationError("Cancellation reason is required")
        cycle = await self.get_cycle(cycle_id)
        BenefitCycleStateMachine.validate_transition(cycle.status, BenefitCycleStatus.CANCELLED)

        items = await self.get_cycle_items(cycle_id)
        paid = [i.benefit_item_id for i in items if i.status == BenefitItemStatus.PAID.value]
        if paid and not acknowledge_partial:
            raise HasPaidItems(cycle_id, paid)

        result = await self.session.execute(
            update(BenefitItem)
            .where(
                BenefitItem.benefit_cycle_id == cycle_id,
                BenefitItem.status.in_(
                    BenefitItemStateMachine.sources_for(BenefitItemStatus.CANCELLED)
                ),
            )
            .values(status=BenefitItemStatus.CANCELLED.value)
            .execution_options(synchronize_session=False)
        )
        await self._advance_cycle(
            cycle,
            BenefitCycleStateMachine.sources_for(BenefitCycleStatus.CANCELLED),
            BenefitCycleStatus.CANCELLED.value,
            cancelled_at=datetime.now(timezone.utc),
            notes=reason,
        )
        logger.info(
            "Cancelled cycle %s: %d item(s) cancelled, %d paid item(s) kept",
            cycle_id,
            result.rowcount,
            len(paid),
        )
        return cycle

    async def summarize(self, cycle_id: UUID) -> dict[str, Any]:
        items = await self.get_cycle_items(cycle_id)
        active = [i for i in items if i.status != BenefitItemStatus.CANCELLED.value]
        eligible = [i for i in active if i.is_eligible]
        total = sum((i.final_amount for i in eligible), ZERO)
        return {
            "total_employees": len(active),
            "eligible_employees": len(eligible),
            "ineligible_employees": len(active) - len(eligible),
            "total_amount": str(total),
            "average_benefit": str(round2(total / len(eligible)) if eligible else ZERO),
        }

    # === Item operations ===

    async def approve(
        self,
        item_id: UUID,
        authorized: bool,
        approved_by: UUID | None = None,
    ) -> BenefitItem:
        if not authorized:
            raise AuthorizationRequired("approve")
        item = await self.get_item(item_id)
        if not item.is_eligible:
            raise InvalidTransition(
                item.status,
                BenefitItemStatus.APPROVED.value,
                "employee is not eligible",
                entity_id=item_id,
            )
        await advance_status(
            self.session,
            item,
            "benefit_item_id",
            [BenefitItemStatus.CALCULATED.value],
            BenefitItemStatus.APPROVED.value,
            approved_at=datetime.now(timezone.utc),
            approved_by=approved_by,
        )
        return item

    async def bulk_approve(
        self,
        item_ids: list[UUID],
        authorized: bool,
        approved_by: UUID | None = None,
    ) -> BatchResult:
        if not authorized:
            raise AuthorizationRequired("bulk_approve")

        async def approve(item_id: UUID) -> None:
            await self.approve(item_id, authorized=True, approved_by=approved_by)

        return await run_batch(self.session, item_ids, approve)

    async def mark_paid(
        self,
        item_id: UUID,
        payment_reference: str,
        paid_at: datetime | None = None,
    ) -> BenefitItem:
        reference = self._require_reference(payment_reference)
        item = await self.get_item(item_id)
        await advance_status(
            self.session,
            item,
            "benefit_item_id",
            [BenefitItemStatus.APPROVED.value],
            BenefitItemStatus.PAID.value,
            paid_at=paid_at or datetime.now(timezone.utc),
            payment_reference=reference,
        )
        return item

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

    async def cancel_item(self, item_id: UUID, reason: str | None = None) -> BenefitItem:
        item = await self.get_item(item_id)
        await advance_status(
            self.session,
            item,
            "benefit_item_id",
            BenefitItemStateMachine.sources_for(BenefitItemStatus.CANCELLED),
            BenefitItemStatus.CANCELLED.value,
            **({"notes": reason} if reason else {}),
        )
        return item

    async def add_adjustment(
        self,
        item_id: UUID,
        adjustment_type: str,
        amount: Decimal,
        reason: str,
        description: str | None = None,
        adjusted_by: UUID | None = None,
    ) -> BenefitAdjustment:
        item = await self.get_item(item_id)
        return await self.engine.add_adjustment(
            item, adjustment_type, amount, reason, description, adjusted_by
        )

    # === Helpers ===

    def _check_children(
        self, cycle: BenefitCycle, items: list[BenefitItem], to_status: str
    ) -> None:
        """Every eligible, non-cancelled item must have reached the required status."""
        required = BenefitItemStateMachine.REQUIRED_FOR_CYCLE[to_status]
        offending = [
            i.benefit_item_id
            for i in items
            if i.is_eligible
            and i.status != BenefitItemStatus.CANCELLED.value
            and i.status not in required
        ]
        if offending:
            raise IncompleteChildren(cycle.benefit_cycle_id, to_status, offending)

    async def _advance_cycle(
        self,
        cycle: BenefitCycle,
        from_statuses: list[str],
        to_status: str,
        **values: Any,
    ) -> None:
        total, count = await self._aggregate(cycle.benefit_cycle_id)
        await advance_status(
            self.session,
            cycle,
            "benefit_cycle_id",
            from_statuses,
            to_status,
            total_amount=total,
            employee_count=count,
            **values,
        )

    async def _refresh_aggregates(self, cycle: BenefitCycle) -> None:
        total, count = await self._aggregate(cycle.benefit_cycle_id)
        cycle.total_amount = total
        cycle.employee_count = count
        await self.session.flush()

    async def _aggregate(self, cycle_id: UUID) -> tuple[Decimal, int]:
        """Total final amount and head count of eligible, non-cancelled items."""
        await self.session.flush()
        result = await self.session.execute(
            select(
                func.coalesce(func.sum(BenefitItem.final_amount), 0),
                func.count(BenefitItem.benefit_item_id),
            ).where(
                BenefitItem.benefit_cycle_id == cycle_id,
                BenefitItem.is_eligible.is_(True),
                BenefitItem.status != BenefitItemStatus.CANCELLED.value,
            )
        )
        total, count = result.one()
        return round2(Decimal(str(total))), int(count)

    @staticmethod
    def _require_reference(payment_reference: str | None) -> str:
        if not payment_reference or not payment_reference.strip():
            raise ValidationError("Payment reference is required")
        return payment_reference.strip()

    # === Data loading methods ===

    async def get_cycle(self, cycle_id: UUID) -> BenefitCycle:
        cycle = await self.session.get(BenefitCycle, cycle_id)
        if cycle is None:
            raise NotFoundError("BenefitCycle", cycle_id)
        return cycle

    async def get_item(self, item_id: UUID) -> BenefitItem:
        await self.session.flush()
        item = await self.session.get(BenefitItem, item_id, populate_existing=True)
        if item is None:
            raise NotFoundError("BenefitItem", item_id)
        return item

    async def get_cycle_items(self, cycle_id: UUID) -> list[BenefitItem]:
        await self.session.flush()
        result = await self.session.execute(
            select(BenefitItem)
            .where(BenefitItem.benefit_cycle_id == cycle_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def _get_all_employees(self) -> list[Employee]:
        result = await self.session.execute(select(Employee).order_by(Employee.employee_number))
        return list(result.scalars().all())

    async def _get_employees(self, employee_ids: list[UUID]) -> list[Employee]:
        if not employee_ids:
            return []
        result = await self.session.execute(
            select(Employee)
            .where(Employee.employee_id.in_(employee_ids))
            .order_by(Employee.employee_number)
        )
        return list(result.scalars().all())
