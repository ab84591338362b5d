"""Allowance, deduction and benefit rate type definitions and overrides."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from hr_payroll_engine.models.base import Base, TimestampMixin


class RateTypeMixin:
    """Columns shared by every configured rate type."""

    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    calculation_type: Mapped[str] = mapped_column(String, nullable=False, default="fixed")
    default_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    percentage_rate: Mapped[Decimal | None] = mapped_column(Numeric(7, 4), nullable=True)
    percentage_base: Mapped[str | None] = mapped_column(String, nullable=True)
    formula: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_prorated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    frequency: Mapped[str] = mapped_column(String, nullable=False, default="monthly")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


_CALC_TYPE_CHECK = "calculation_type IN ('fixed', 'percentage', 'formula', 'manual')"


class AllowanceType(Base, RateTypeMixin, TimestampMixin):
    """Configured allowance (added to gross pay)."""

    __tablename__ = "allowance_type"

    allowance_type_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    __table_args__ = (
        CheckConstraint(_CALC_TYPE_CHECK, name="allowance_type_calc_check"),
    )

    @property
    def rate_type_id(self) -> UUID:
        return self.allowance_type_id


class DeductionType(Base, RateTypeMixin, TimestampMixin):
    """Configured deduction (subtracted from gross pay)."""

    __tablename__ = "deduction_type"

    deduction_type_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    __table_args__ = (
        CheckConstraint(_CALC_TYPE_CHECK, name="deduction_type_calc_check"),
    )

    @property
    def rate_type_id(self) -> UUID:
        return self.deduction_type_id


class BenefitType(Base, RateTypeMixin, TimestampMixin):
    """Configured benefit (bonus, loyalty award, terminal benefit, ...)."""

    __tablename__ = "benefit_type"

    benefit_type_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    category: Mapped[str] = mapped_column(String, nullable=False, default="annual")
    minimum_service_months: Mapped[int] = mapped_column(Integer, nullable=False, default=4)

    __table_args__ = (
        CheckConstraint(_CALC_TYPE_CHECK, name="benefit_type_calc_check"),
        CheckConstraint(
            "category IN ('annual', 'special', 'terminal', 'performance', 'loyalty')",
            name="benefit_type_category_check",
        ),
        CheckConstraint("minimum_service_months >= 0", name="benefit_type_min_service_check"),
    )

    @property
    def rate_type_id(self) -> UUID:
        return self.benefit_type_id


class RateOverride(Base, TimestampMixin):
    """Employee-specific amount superseding a rate type default for a date range."""

    __tablename__ = "rate_override"

    rate_override_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    rate_kind: Mapped[str] = mapped_column(String, nullable=False)
    rate_type_id: Mapped[UUID] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "rate_kind IN ('allowance', 'deduction', 'benefit')",
            name="rate_override_kind_check",
        ),
        CheckConstraint(
            "end_date IS NULL OR end_date >= effective_date",
            name="rate_override_dates_check",
        ),
        CheckConstraint("amount >= 0", name="rate_override_amount_check"),
    )

    def is_active_on(self, as_of_date: date) -> bool:
        """Check if this override covers the given date."""
        if not self.is_active or self.effective_date > as_of_date:
            return False
        return self.end_date is None or self.end_date >= as_of_date
