"""Employee rate overrides with overlap validation."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_payroll_engine.calculators.rules import round2
from hr_payroll_engine.calculators.types import RateKind
from hr_payroll_engine.errors import NotFoundError, ValidationError
from hr_payroll_engine.models import RateOverride

logger = logging.getLogger(__name__)


class OverrideService:
    """Keeps at most one active override per (employee, kind, rate type) on any date."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_override(
        self,
        employee_id: UUID,
        rate_kind: RateKind | str,
        rate_type_id: UUID,
        amount: Decimal,
        effective_date: date,
        end_date: date | None = None,
        created_by: UUID | None = None,
    ) -> RateOverride:
        kind = RateKind(rate_kind)
        amount = round2(amount)
        if amount < 0:
            raise ValidationError("Override amount must not be negative")
        if end_date is not None and end_date < effective_date:
            raise ValidationError("Override end date is before its effective date")

        overlapping = await self._get_overlapping(
            employee_id, kind, rate_type_id, effective_date, end_date
        )
        if overlapping:
            raise ValidationError(
                f"Override overlaps active override(s): "
                f"{', '.join(str(o.rate_override_id) for o in overlapping)}"
            )

        override = RateOverride(
            employee_id=employee_id,
            rate_kind=kind.value,
            rate_type_id=rate_type_id,
            amount=amount,
            effective_date=effective_date,
            end_date=end_date,
            created_by=created_by,
        )
        self.session.add(override)
        await self.session.flush()
        logger.info(
            "Added %s override %s for employee %s from %s",
            kind.value,
            override.rate_override_id,
            employee_id,
            effective_date,
        )
        return override

    async def end_override(self, override_id: UUID, end_date: date) -> RateOverride:
        override = await self._get(override_id)
        if end_date < override.effective_date:
            raise ValidationError("Override end date is before its effective date")
        override.end_date = end_date
        await self.session.flush()
        return override

    async def deactivate(self, override_id: UUID) -> RateOverride:
        override = await self._get(override_id)
        override.is_active = False
        await self.session.flush()
        logger.info("Deactivated override %s", override_id)
        return override

    async def _get(self, override_id: UUID) -> RateOverride:
        override = await self.session.get(RateOverride, override_id)
        if override is None:
            raise NotFoundError("RateOverride", override_id)
        return override

    async def _get_overlapping(
        self,
        employee_id: UUID,
        kind: RateKind,
        rate_type_id: UUID,
        start: date,
        end: date | None,
    ) -> list[RateOverride]:
        stmt = select(RateOverride).where(
            RateOverride.employee_id == employee_id,
            RateOverride.rate_kind == kind.value,
            RateOverride.rate_type_id == rate_type_id,
            RateOverride.is_active.is_(True),
            (RateOverride.end_date.is_(None) | (RateOverride.end_date >= start)),
        )
        if end is not None:
            stmt = stmt.where(RateOverride.effective_date <= end)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
