"""Rate resolution: employee overrides first, then the rate type's rule."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from typing import Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_payroll_engine.calculators.types import (
    CalculationType,
    FixedRule,
    FormulaRule,
    ManualRule,
    PercentageRule,
    RateKind,
    RateRule,
    ResolvedRate,
)
from hr_payroll_engine.errors import RateResolutionError
from hr_payroll_engine.models import AllowanceType, BenefitType, DeductionType, RateOverride

logger = logging.getLogger(__name__)

RateType = Union[AllowanceType, DeductionType, BenefitType]


def build_rule(rate_type: RateType) -> RateRule:
    """Build the calculation rule for a configured rate type."""
    code = rate_type.code
    try:
        calc_type = CalculationType(rate_type.calculation_type)
    except ValueError as e:
        raise RateResolutionError(
            code, f"unknown calculation type '{rate_type.calculation_type}'"
        ) from e

    if calc_type == CalculationType.FIXED:
        if rate_type.default_amount is None:
            raise RateResolutionError(code, "fixed rate has no default amount")
        return FixedRule(code=code, amount=rate_type.default_amount)

    if calc_type == CalculationType.PERCENTAGE:
        if rate_type.percentage_rate is None:
            raise RateResolutionError(code, "percentage rate is not set")
        if not rate_type.percentage_base:
            raise RateResolutionError(code, "percentage type has no percentage base")
        return PercentageRule(
            code=code, rate=rate_type.percentage_rate, base=rate_type.percentage_base
        )

    if calc_type == CalculationType.FORMULA:
        if not rate_type.formula:
            raise RateResolutionError(code, "formula type has no formula")
        return FormulaRule(code=code, expression=rate_type.formula)

    return ManualRule(code=code)


class RateResolver:
    """Resolves the effective amount of a rate type for one employee.

    Resolution order:
    1. An active employee override covering the as-of date wins
       (the latest effective date if several overlap)
    2. Otherwise the rate type's calculation rule is evaluated against the
       computation variables

    Manual types without an override resolve to ``amount=None``.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self._rules: dict[tuple[str, UUID], RateRule] = {}

    async def resolve(
        self,
        employee_id: UUID,
        rate_type: RateType,
        rate_kind: RateKind,
        as_of_date: date,
        variables: Mapping[str, Decimal],
    ) -> ResolvedRate:
        override = await self._get_active_override(
            employee_id, rate_kind, rate_type.rate_type_id, as_of_date
        )
        if override is not None:
            logger.debug(
                "Override %s applies to %s for employee %s",
                override.rate_override_id,
                rate_type.code,
                employee_id,
            )
            return ResolvedRate(
                amount=override.amount,
                basis=f"Employee override: {override.amount} (effective {override.effective_date})",
                source="override",
            )

        return self.rule_for(rate_kind, rate_type).evaluate(variables)

    def rule_for(self, rate_kind: RateKind, rate_type: RateType) -> RateRule:
        """Build (once per resolver) the rule for a rate type."""
        key = (rate_kind.value, rate_type.rate_type_id)
        if key not in self._rules:
            self._rules[key] = build_rule(rate_type)
        return self._rules[key]

    async def _get_active_override(
        self,
        employee_id: UUID,
        rate_kind: RateKind,
        rate_type_id: UUID,
        as_of_date: date,
    ) -> RateOverride | None:
        result = await self.session.execute(
            select(RateOverride)
            .where(
                RateOverride.employee_id == employee_id,
                RateOverride.rate_kind == rate_kind.value,
                RateOverride.rate_type_id == rate_type_id,
                RateOverride.is_active.is_(True),
                RateOverride.effective_date <= as_of_date,
                (RateOverride.end_date.is_(None) | (RateOverride.end_date >= as_of_date)),
            )
            .order_by(RateOverride.effective_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()
