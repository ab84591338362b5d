"""Append-only ledger of manual adjustments to payroll and benefit items."""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hr_payroll_engine.calculators.rules import ZERO, fold_adjustments, round2
from hr_payroll_engine.errors import AlreadyPaid, ItemLocked, ValidationError
from hr_payroll_engine.models import BenefitAdjustment, BenefitItem, PayrollAdjustment, PayrollItem
from hr_payroll_engine.state_machine import BenefitItemStateMachine, PayrollItemStateMachine

logger = logging.getLogger(__name__)

BENEFIT_ADJUSTMENT_TYPES = ("increase", "decrease", "override")
PAYROLL_ADJUSTMENT_TYPES = ("allowance", "deduction")


class AdjustmentLedger:
    """Records adjustments; entries are never updated or deleted.

    Sequence numbers are unique per item, so two concurrent appends to the
    same item cannot both claim the same position.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def final_amount(item: BenefitItem) -> Decimal:
        """Calculated amount with every recorded adjustment folded in."""
        return fold_adjustments(
            item.calculated_amount,
            ((a.adjustment_type, a.amount) for a in item.adjustments),
        )

    async def append_benefit_adjustment(
        self,
        item: BenefitItem,
        adjustment_type: str,
        amount: Decimal,
        reason: str,
        description: str | None = None,
        adjusted_by: UUID | None = None,
    ) -> BenefitAdjustment:
        if not BenefitItemStateMachine.can_adjust(item.status):
            raise AlreadyPaid(item.benefit_item_id, item.status)
        if adjustment_type not in BENEFIT_ADJUSTMENT_TYPES:
            raise ValidationError(f"Unknown adjustment type '{adjustment_type}'")
        if not reason or not reason.strip():
            raise ValidationError("Adjustment reason is required")

        amount = round2(amount)
        if adjustment_type == "override":
            if amount < 0:
                raise ValidationError("Override amount must not be negative")
        elif amount <= 0:
            raise ValidationError(f"{adjustment_type.capitalize()} amount must be positive")

        entries = [(a.adjustment_type, a.amount) for a in item.adjustments]
        prospective = fold_adjustments(item.calculated_amount, entries + [(adjustment_type, amount)])
        if prospective < ZERO:
            raise ValidationError(
                f"Adjustment would make the final amount negative ({prospective})"
            )

        adjustment = BenefitAdjustment(
            benefit_item_id=item.benefit_item_id,
            sequence=await self._next_sequence(
                BenefitAdjustment, BenefitAdjustment.benefit_item_id, item.benefit_item_id
            ),
            adjustment_type=adjustment_type,
            amount=amount,
            reason=reason,
            description=description,
            item_status_at_entry=item.status,
            adjusted_by=adjusted_by,
        )
        await self._insert(adjustment)
        await self.session.refresh(item, ["adjustments"])
        logger.info(
            "Recorded %s adjustment of %s on benefit item %s",
            adjustment_type,
            amount,
            item.benefit_item_id,
        )
        return adjustment

    async def append_payroll_adjustment(
        self,
        item: PayrollItem,
        adjustment_type: str,
        amount: Decimal,
        description: str,
        reason: str | None = None,
        created_by: UUID | None = None,
    ) -> PayrollAdjustment:
        if not PayrollItemStateMachine.can_calculate(item.status):
            raise ItemLocked(item.payroll_item_id, item.status)
        if adjustment_type not in PAYROLL_ADJUSTMENT_TYPES:
            raise ValidationError(f"Unknown adjustment type '{adjustment_type}'")
        if not description or not description.strip():
            raise ValidationError("Adjustment description is required")
        amount = round2(amount)
        if amount <= 0:
            raise ValidationError("Adjustment amount must be positive")

        adjustment = PayrollAdjustment(
            payroll_item_id=item.payroll_item_id,
            sequence=await self._next_sequence(
                PayrollAdjustment, PayrollAdjustment.payroll_item_id, item.payroll_item_id
            ),
            adjustment_type=adjustment_type,
            description=description,
            amount=amount,
            reason=reason,
            created_by=created_by,
        )
        await self._insert(adjustment)
        logger.info(
            "Recorded %s adjustment of %s on payroll item %s",
            adjustment_type,
            amount,
            item.payroll_item_id,
        )
        return adjustment

    async def _insert(self, adjustment: BenefitAdjustment | PayrollAdjustment) -> None:
        try:
            async with self.session.begin_nested():
                self.session.add(adjustment)
        except IntegrityError as e:
            raise ValidationError("Concurrent adjustment on the same item; retry") from e

    async def _next_sequence(self, model, owner_column, owner_id: UUID) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.max(model.sequence), 0)).where(owner_column == owner_id)
        )
        return int(result.scalar_one()) + 1
