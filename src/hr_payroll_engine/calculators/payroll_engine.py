"""Payroll item engine: computes one employee's pay for one period."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hr_payroll_engine.calculators.line_builder import LineItemBuilder
from hr_payroll_engine.calculators.rate_resolver import RateResolver
from hr_payroll_engine.calculators.rules import (
    ZERO,
    basic_pay,
    months_between,
    prorate_by_days,
    round2,
)
from hr_payroll_engine.calculators.types import (
    CalculationType,
    LineCandidate,
    LineSource,
    LineType,
    PayrollCalculation,
    PayrollSelections,
    RateKind,
)
from hr_payroll_engine.config import get_settings
from hr_payroll_engine.errors import DuplicateItem, ItemLocked, ValidationError
from hr_payroll_engine.models import (
    AllowanceType,
    DeductionType,
    Employee,
    PayrollAdjustment,
    PayrollItem,
    PayrollItemLine,
    PayrollPeriod,
)
from hr_payroll_engine.state_machine import PayrollItemStateMachine, PayrollItemStatus

logger = logging.getLogger(__name__)

MAX_WORKING_DAYS = Decimal("31")


class PayrollItemEngine:
    """Computes payroll items.

    Calculation pipeline (stable order per employee):
    1) Validate working days, derive daily rate and basic pay
    2) Allowance lines, in rate code order, prorated by days where flagged
    3) Deduction lines, in rate code order, with gross pay available
    4) Ledger adjustments as allowance/deduction lines, in entry order
    5) Totals as exact sums of rounded lines, then the calculation hash

    Identical inputs produce an identical calculation hash.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.rate_resolver = RateResolver(session)
        self.settings = get_settings()

    async def compute(
        self,
        employee: Employee,
        period: PayrollPeriod,
        working_days: Decimal | int | str,
        selections: PayrollSelections,
    ) -> PayrollItem:
        """Compute and persist the item for (period, employee).

        Creates the item, or rebuilds it in place while it is draft or
        processed. Finalized and paid items raise ItemLocked.
        """
        existing = await self._get_item(period.payroll_period_id, employee.employee_id)
        if existing is None:
            calculation = await self.calculate(employee, period, working_days, selections)
            try:
                return await self._insert_item(calculation, selections)
            except DuplicateItem:
                logger.info(
                    "Concurrent insert for employee %s in period %s; updating existing item",
                    employee.employee_id,
                    period.payroll_period_id,
                )
                existing = await self._get_item(
                    period.payroll_period_id, employee.employee_id, refresh=True
                )
                if existing is None:
                    raise

        if PayrollItemStateMachine.are_results_immutable(existing.status):
            raise ItemLocked(existing.payroll_item_id, existing.status)

        adjustments = await self._get_adjustments(existing.payroll_item_id)
        calculation = await self.calculate(
            employee, period, working_days, selections, adjustments
        )
        await self._apply(existing, calculation, selections)
        return existing

    async def calculate(
        self,
        employee: Employee,
        period: PayrollPeriod,
        working_days: Decimal | int | str,
        selections: PayrollSelections,
        adjustments: Iterable[PayrollAdjustment] = (),
    ) -> PayrollCalculation:
        """Calculate without persisting anything."""
        days = self._validate_working_days(working_days)
        standard_days = self._standard_days(period)
        daily_rate = self._daily_rate(employee, standard_days)
        pay = basic_pay(daily_rate, days)

        variables: dict[str, Decimal] = {
            "daily_rate": daily_rate,
            "working_days": days,
            "basic_pay": pay,
            "leave_days": employee.leave_credits or ZERO,
        }
        if employee.current_monthly_salary is not None:
            variables["basic_salary"] = employee.current_monthly_salary
            variables["monthly_salary"] = employee.current_monthly_salary
            variables["annual_salary"] = employee.current_monthly_salary * 12
        if employee.appointment_date is not None:
            variables["service_months"] = Decimal(
                months_between(employee.appointment_date, period.end_date)
            )

        manual_amounts = {k: round2(v) for k, v in selections.manual_amounts.items()}

        # 2) Allowances
        lines: list[LineCandidate] = []
        allowance_types = await self._get_allowance_types(selections.allowance_type_ids)
        self._check_manual_amounts(manual_amounts, allowance_types, selections)
        for rate_type in allowance_types:
            line = await self._build_rate_line(
                employee, period, rate_type, RateKind.ALLOWANCE, variables, manual_amounts,
                days, standard_days,
            )
            if line is not None:
                lines.append(line)

        allowance_total = sum((line.amount for line in lines), ZERO)
        variables["gross_pay"] = pay + allowance_total

        # 3) Deductions
        deduction_types = await self._get_deduction_types(selections.deduction_type_ids)
        self._check_manual_amounts(manual_amounts, deduction_types, selections)
        for rate_type in deduction_types:
            line = await self._build_rate_line(
                employee, period, rate_type, RateKind.DEDUCTION, variables, manual_amounts,
                days, standard_days,
            )
            if line is not None:
                lines.append(line)

        # 4) Ledger adjustments
        for adj in sorted(adjustments, key=lambda a: a.sequence):
            lines.append(
                LineItemBuilder.create_adjustment_line(
                    adj.adjustment_type, adj.description, adj.amount, adj.reason
                )
            )

        # 5) Totals
        errors = LineItemBuilder.validate_lines(lines)
        if errors:
            raise ValidationError("; ".join(errors))

        totals = LineItemBuilder.sum_by_type(lines)
        total_allowances = totals[LineType.ALLOWANCE]
        total_deductions = totals[LineType.DEDUCTION]
        gross = pay + total_allowances
        net = gross - total_deductions
        if net < 0:
            raise ValidationError(
                f"Negative net pay {net} for employee {employee.employee_id}"
            )

        payload: dict[str, Any] = {
            "employee_id": str(employee.employee_id),
            "payroll_period_id": str(period.payroll_period_id),
            "working_days": str(days),
            "daily_rate": str(daily_rate),
            "basic_pay": str(pay),
            "total_allowances": str(total_allowances),
            "total_deductions": str(total_deductions),
            "gross_pay": str(gross),
            "net_pay": str(net),
            "engine_version": self.settings.engine_version,
        }

        return PayrollCalculation(
            employee_id=employee.employee_id,
            payroll_period_id=period.payroll_period_id,
            working_days=days,
            daily_rate=daily_rate,
            basic_pay=pay,
            lines=lines,
            total_allowances=total_allowances,
            total_deductions=total_deductions,
            gross_pay=gross,
            net_pay=net,
            calculation_hash=LineItemBuilder.compute_calculation_hash(payload, lines),
        )

    async def _build_rate_line(
        self,
        employee: Employee,
        period: PayrollPeriod,
        rate_type: AllowanceType | DeductionType,
        rate_kind: RateKind,
        variables: dict[str, Decimal],
        manual_amounts: dict[UUID, Decimal],
        working_days: Decimal,
        standard_days: Decimal,
    ) -> LineCandidate | None:
        resolved = await self.rate_resolver.resolve(
            employee.employee_id, rate_type, rate_kind, period.end_date, variables
        )

        source = LineSource.RATE
        basis = resolved.basis
        if resolved.is_manual:
            amount = manual_amounts.get(rate_type.rate_type_id)
            if amount is None:
                logger.debug(
                    "Skipping manual %s %s for employee %s: no amount supplied",
                    rate_kind.value,
                    rate_type.code,
                    employee.employee_id,
                )
                return None
            source = LineSource.MANUAL_AMOUNT
            basis = f"Manual amount: {amount}"
        else:
            amount = resolved.amount
            if rate_kind == RateKind.ALLOWANCE and rate_type.is_prorated:
                prorated = prorate_by_days(amount, working_days, standard_days, True)
                if prorated != amount:
                    basis += f" (prorated {working_days}/{standard_days} days)"
                amount = prorated

        build = (
            LineItemBuilder.create_allowance_line
            if rate_kind == RateKind.ALLOWANCE
            else LineItemBuilder.create_deduction_line
        )
        return build(
            rate_type_id=rate_type.rate_type_id,
            rate_code=rate_type.code,
            description=rate_type.name,
            amount=amount,
            calculation_basis=basis,
            source=source,
        )

    async def _insert_item(
        self, calculation: PayrollCalculation, selections: PayrollSelections
    ) -> PayrollItem:
        item = PayrollItem(
            payroll_period_id=calculation.payroll_period_id,
            employee_id=calculation.employee_id,
            lines=self._to_line_rows(calculation.lines),
        )
        self._set_fields(item, calculation, selections)
        try:
            async with self.session.begin_nested():
                self.session.add(item)
        except IntegrityError as e:
            raise DuplicateItem(calculation.payroll_period_id, calculation.employee_id) from e
        logger.info(
            "Created payroll item %s for employee %s (net %s)",
            item.payroll_item_id,
            calculation.employee_id,
            calculation.net_pay,
        )
        return item

    async def _apply(
        self,
        item: PayrollItem,
        calculation: PayrollCalculation,
        selections: PayrollSelections,
    ) -> None:
        """Replace the item's lines and totals with a new calculation."""
        item.lines.clear()
        await self.session.flush()
        item.lines.extend(self._to_line_rows(calculation.lines))
        self._set_fields(item, calculation, selections)
        await self.session.flush()
        logger.info(
            "Recomputed payroll item %s for employee %s (net %s)",
            item.payroll_item_id,
            calculation.employee_id,
            calculation.net_pay,
        )

    @staticmethod
    def _set_fields(
        item: PayrollItem, calculation: PayrollCalculation, selections: PayrollSelections
    ) -> None:
        stored = selections.to_storage()
        item.working_days = calculation.working_days
        item.daily_rate = calculation.daily_rate
        item.basic_pay = calculation.basic_pay
        item.total_allowances = calculation.total_allowances
        item.total_deductions = calculation.total_deductions
        item.gross_pay = calculation.gross_pay
        item.net_pay = calculation.net_pay
        item.calculation_hash = calculation.calculation_hash
        item.calculated_at = datetime.now(timezone.utc)
        item.status = PayrollItemStatus.PROCESSED.value
        item.selected_allowance_type_ids = stored["selected_allowance_type_ids"]
        item.selected_deduction_type_ids = stored["selected_deduction_type_ids"]
        item.manual_amounts = stored["manual_amounts"]

    @staticmethod
    def _to_line_rows(lines: list[LineCandidate]) -> list[PayrollItemLine]:
        return [
            PayrollItemLine(
                sequence=i,
                line_type=line.line_type.value,
                source=line.source.value,
                rate_type_id=line.rate_type_id,
                rate_code=line.rate_code,
                description=line.description,
                amount=line.amount,
                calculation_basis=line.calculation_basis,
                line_hash=LineItemBuilder.compute_line_hash(line),
            )
            for i, line in enumerate(lines, start=1)
        ]

    def _validate_working_days(self, working_days: Decimal | int | str) -> Decimal:
        try:
            days = Decimal(str(working_days))
        except InvalidOperation as e:
            raise ValidationError(f"Working days '{working_days}' is not a number") from e
        if not days.is_finite() or days < 0 or days > MAX_WORKING_DAYS:
            raise ValidationError(
                f"Working days must be between 0 and {MAX_WORKING_DAYS}, got {working_days}"
            )
        return round2(days)

    def _standard_days(self, period: PayrollPeriod) -> Decimal:
        return round2(period.standard_working_days or self.settings.standard_working_days)

    @staticmethod
    def _daily_rate(employee: Employee, standard_days: Decimal) -> Decimal:
        if employee.current_daily_rate is not None:
            return round2(employee.current_daily_rate)
        if employee.current_monthly_salary is not None:
            return round2(employee.current_monthly_salary / standard_days)
        raise ValidationError(
            f"Employee {employee.employee_id} has neither a daily rate nor a monthly salary"
        )

    @staticmethod
    def _check_manual_amounts(
        manual_amounts: dict[UUID, Decimal],
        rate_types: list[AllowanceType] | list[DeductionType],
        selections: PayrollSelections,
    ) -> None:
        for rate_type in rate_types:
            amount = manual_amounts.get(rate_type.rate_type_id)
            if amount is None:
                continue
            if CalculationType(rate_type.calculation_type) != CalculationType.MANUAL:
                raise ValidationError(
                    f"Manual amount given for {rate_type.code}, which is not a manual type"
                )
            if amount < 0:
                raise ValidationError(f"Manual amount for {rate_type.code} must not be negative")

        selected = set(selections.allowance_type_ids) | set(selections.deduction_type_ids)
        unselected = [str(k) for k in manual_amounts if k not in selected]
        if unselected:
            raise ValidationError(
                f"Manual amounts given for unselected types: {', '.join(sorted(unselected))}"
            )

    # === Data loading methods ===

    async def _get_item(
        self, period_id: UUID, employee_id: UUID, refresh: bool = False
    ) -> PayrollItem | None:
        stmt = select(PayrollItem).where(
            PayrollItem.payroll_period_id == period_id,
            PayrollItem.employee_id == employee_id,
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_adjustments(self, item_id: UUID) -> list[PayrollAdjustment]:
        result = await self.session.execute(
            select(PayrollAdjustment)
            .where(PayrollAdjustment.payroll_item_id == item_id)
            .order_by(PayrollAdjustment.sequence)
        )
        return list(result.scalars().all())

    async def _get_allowance_types(self, type_ids: list[UUID]) -> list[AllowanceType]:
        return await self._get_rate_types(AllowanceType, AllowanceType.allowance_type_id, type_ids)

    async def _get_deduction_types(self, type_ids: list[UUID]) -> list[DeductionType]:
        return await self._get_rate_types(DeductionType, DeductionType.deduction_type_id, type_ids)

    async def _get_rate_types(self, model: Any, pk: Any, type_ids: list[UUID]) -> list[Any]:
        """Load selected rate types in code order; every id must exist and be active."""
        wanted = set(type_ids)
        if not wanted:
            return []
        result = await self.session.execute(
            select(model).where(pk.in_(wanted)).order_by(model.code)
        )
        rate_types = list(result.scalars().all())

        missing = wanted - {rt.rate_type_id for rt in rate_types}
        if missing:
            raise ValidationError(
                f"Unknown {model.__tablename__} ids: {', '.join(sorted(str(m) for m in missing))}"
            )
        inactive = [rt.code for rt in rate_types if not rt.is_active]
        if inactive:
            raise ValidationError(f"Inactive {model.__tablename__}: {', '.join(inactive)}")
        return rate_types
