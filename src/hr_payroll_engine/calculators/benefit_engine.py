"""Benefit item engine: eligibility, amount and tax for one employee in one cycle."""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hr_payroll_engine.calculators.adjustment_ledger import AdjustmentLedger
from hr_payroll_engine.calculators.rate_resolver import RateResolver
from hr_payroll_engine.calculators.rules import (
    ZERO,
    benefit_tax,
    check_eligibility,
    fold_adjustments,
    months_between,
    prorate,
    round2,
)
from hr_payroll_engine.calculators.types import BenefitCalculation, RateKind
from hr_payroll_engine.config import get_settings
from hr_payroll_engine.errors import DuplicateItem, ItemLocked, ValidationError
from hr_payroll_engine.models import (
    BenefitAdjustment,
    BenefitCycle,
    BenefitItem,
    BenefitType,
    Employee,
)
from hr_payroll_engine.state_machine import BenefitItemStateMachine, BenefitItemStatus

logger = logging.getLogger(__name__)


class BenefitItemEngine:
    """Computes benefit items.

    Pipeline per employee:
    1) Service months from appointment to the cycle's applicable date,
       optionally capped
    2) Eligibility by employment status and minimum service
    3) Amount from override or rule, prorated by service months where flagged
    4) Final amount from the adjustment ledger, then withholding tax and net

    Ineligible employees still get an item, with a zero amount and notes.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.rate_resolver = RateResolver(session)
        self.ledger = AdjustmentLedger(session)
        self.settings = get_settings()

    async def compute(
        self,
        employee: Employee,
        cycle: BenefitCycle,
        service_months_cap: int | None = None,
    ) -> BenefitItem:
        """Compute and persist the item for (cycle, employee).

        Approved and paid items raise ItemLocked.
        """
        existing = await self._get_item(cycle.benefit_cycle_id, employee.employee_id)
        if existing is not None and BenefitItemStateMachine.are_results_immutable(existing.status):
            raise ItemLocked(existing.benefit_item_id, existing.status)

        calculation = await self.calculate(employee, cycle, service_months_cap)

        if existing is None:
            try:
                return await self._insert_item(cycle, calculation)
            except DuplicateItem:
                logger.info(
                    "Concurrent insert for employee %s in cycle %s; updating existing item",
                    employee.employee_id,
                    cycle.benefit_cycle_id,
                )
                existing = await self._get_item(
                    cycle.benefit_cycle_id, employee.employee_id, refresh=True
                )
                if existing is None:
                    raise
                if BenefitItemStateMachine.are_results_immutable(existing.status):
                    raise ItemLocked(existing.benefit_item_id, existing.status)

        self._check_final_amount(existing, calculation)
        self._set_fields(existing, calculation)
        self.refresh_totals(existing, cycle.benefit_type)
        await self.session.flush()
        return existing

    async def calculate(
        self,
        employee: Employee,
        cycle: BenefitCycle,
        service_months_cap: int | None = None,
    ) -> BenefitCalculation:
        """Calculate without persisting anything."""
        benefit_type = cycle.benefit_type

        service_months = 0
        if employee.appointment_date is not None:
            service_months = months_between(employee.appointment_date, cycle.applicable_date)
        if service_months_cap is not None:
            service_months = min(service_months, service_months_cap)

        base_salary = employee.current_monthly_salary or ZERO
        eligibility = check_eligibility(
            employee.employment_status,
            service_months,
            benefit_type.category,
            benefit_type.minimum_service_months,
        )

        if not eligibility.is_eligible:
            logger.debug(
                "Employee %s not eligible for %s: %s",
                employee.employee_id,
                benefit_type.code,
                eligibility.notes,
            )
            return BenefitCalculation(
                employee_id=employee.employee_id,
                base_salary=base_salary,
                service_months=service_months,
                is_eligible=False,
                eligibility_notes=eligibility.notes,
                calculated_amount=ZERO,
                calculation_basis="Not eligible",
            )

        resolved = await self.rate_resolver.resolve(
            employee.employee_id,
            benefit_type,
            RateKind.BENEFIT,
            cycle.applicable_date,
            self._variables(employee, service_months),
        )

        if resolved.is_manual:
            amount = ZERO
            basis = resolved.basis
        else:
            amount = round2(prorate(resolved.amount, service_months, benefit_type.is_prorated))
            basis = resolved.basis
            if benefit_type.is_prorated and service_months < 12:
                basis += f" (prorated for {service_months} months)"

        return BenefitCalculation(
            employee_id=employee.employee_id,
            base_salary=base_salary,
            service_months=service_months,
            is_eligible=True,
            eligibility_notes=None,
            calculated_amount=amount,
            calculation_basis=basis,
        )

    async def add_adjustment(
        self,
        item: BenefitItem,
        adjustment_type: str,
        amount: Decimal,
        reason: str,
        description: str | None = None,
        adjusted_by: UUID | None = None,
    ) -> BenefitAdjustment:
        """Append a ledger adjustment and recompute final, tax and net amounts."""
        adjustment = await self.ledger.append_benefit_adjustment(
            item, adjustment_type, amount, reason, description, adjusted_by
        )
        benefit_type = await self._get_benefit_type(item.benefit_cycle_id)
        self.refresh_totals(item, benefit_type)
        await self.session.flush()
        return adjustment

    def refresh_totals(self, item: BenefitItem, benefit_type: BenefitType) -> None:
        """Derive final, adjustment, tax and net amounts from the ledger."""
        final = self.ledger.final_amount(item)
        tax = ZERO
        if item.is_eligible:
            tax = benefit_tax(
                final,
                benefit_type.is_taxable,
                self.settings.benefit_tax_rate,
                self.settings.benefit_tax_annual_exemption,
            )
        item.final_amount = final
        item.adjustment_amount = final - item.calculated_amount
        item.tax_amount = tax
        item.net_amount = final - tax

    def _variables(self, employee: Employee, service_months: int) -> dict[str, Decimal]:
        variables: dict[str, Decimal] = {
            "service_months": Decimal(service_months),
            "leave_days": employee.leave_credits or ZERO,
        }
        monthly = employee.current_monthly_salary
        if monthly is not None:
            variables["basic_salary"] = monthly
            variables["monthly_salary"] = monthly
            variables["annual_salary"] = monthly * 12
        if employee.current_daily_rate is not None:
            variables["daily_rate"] = employee.current_daily_rate
        elif monthly is not None:
            variables["daily_rate"] = round2(monthly / self.settings.standard_working_days)
        return variables

    @staticmethod
    def _check_final_amount(item: BenefitItem, calculation: BenefitCalculation) -> None:
        """Recorded adjustments must not take the recomputed amount below zero."""
        final = fold_adjustments(
            calculation.calculated_amount,
            ((a.adjustment_type, a.amount) for a in item.adjustments),
        )
        if final < ZERO:
            raise ValidationError(
                f"Recalculated amount {calculation.calculated_amount} with recorded "
                f"adjustments makes benefit item {item.benefit_item_id} negative ({final})"
            )

    @staticmethod
    def _set_fields(item: BenefitItem, calculation: BenefitCalculation) -> None:
        item.base_salary = calculation.base_salary
        item.service_months = calculation.service_months
        item.calculated_amount = calculation.calculated_amount
        item.calculation_basis = calculation.calculation_basis
        item.is_eligible = calculation.is_eligible
        item.eligibility_notes = calculation.eligibility_notes
        item.status = BenefitItemStatus.CALCULATED.value

    async def _insert_item(
        self, cycle: BenefitCycle, calculation: BenefitCalculation
    ) -> BenefitItem:
        item = BenefitItem(
            benefit_cycle_id=cycle.benefit_cycle_id,
            employee_id=calculation.employee_id,
            adjustments=[],
        )
        self._set_fields(item, calculation)
        self.refresh_totals(item, cycle.benefit_type)
        try:
            async with self.session.begin_nested():
                self.session.add(item)
        except IntegrityError as e:
            raise DuplicateItem(cycle.benefit_cycle_id, calculation.employee_id) from e
        logger.info(
            "Created benefit item %s for employee %s (final %s)",
            item.benefit_item_id,
            calculation.employee_id,
            item.final_amount,
        )
        return item

    # === Data loading methods ===

    async def _get_item(
        self, cycle_id: UUID, employee_id: UUID, refresh: bool = False
    ) -> BenefitItem | None:
        stmt = select(BenefitItem).where(
            BenefitItem.benefit_cycle_id == cycle_id,
            BenefitItem.employee_id == employee_id,
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_benefit_type(self, cycle_id: UUID) -> BenefitType:
        result = await self.session.execute(
            select(BenefitType)
            .join(BenefitCycle, BenefitCycle.benefit_type_id == BenefitType.benefit_type_id)
            .where(BenefitCycle.benefit_cycle_id == cycle_id)
        )
        return result.scalar_one()
