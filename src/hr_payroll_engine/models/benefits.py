"""Benefit cycle, item and adjustment models."""

from __future__ import annotations

from datetime import date, datetime
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
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hr_payroll_engine.models.base import Base, TimestampMixin
from hr_payroll_engine.models.rates import BenefitType


class BenefitCycle(Base, TimestampMixin):
    """A named run of one benefit type for one year."""

    __tablename__ = "benefit_cycle"

    benefit_cycle_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    benefit_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("benefit_type.benefit_type_id"),
        nullable=False,
    )
    cycle_year: Mapped[int] = mapped_column(Integer, nullable=False)
    cycle_name: Mapped[str] = mapped_column(String, nullable=False)
    applicable_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )
    employee_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "benefit_type_id", "cycle_year", "cycle_name", name="benefit_cycle_unique"
        ),
        CheckConstraint(
            "status IN ('draft', 'processing', 'completed', 'released', 'cancelled')",
            name="benefit_cycle_status_check",
        ),
    )

    benefit_type: Mapped[BenefitType] = relationship(lazy="selectin")


class BenefitItem(Base, TimestampMixin):
    """One employee's computed benefit for one cycle."""

    __tablename__ = "benefit_item"

    benefit_item_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    benefit_cycle_id: Mapped[UUID] = mapped_column(
        ForeignKey("benefit_cycle.benefit_cycle_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id"),
        nullable=False,
    )
    base_salary: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    service_months: Mapped[int] = mapped_column(Integer, nullable=False)
    calculated_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    adjustment_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    final_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    net_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    calculation_basis: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    is_eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    eligibility_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("benefit_cycle_id", "employee_id", name="benefit_item_unique"),
        CheckConstraint(
            "status IN ('draft', 'calculated', 'approved', 'paid', 'cancelled')",
            name="benefit_item_status_check",
        ),
        CheckConstraint("final_amount >= 0", name="benefit_item_final_check"),
    )

    adjustments: Mapped[list[BenefitAdjustment]] = relationship(
        back_populates="benefit_item",
        cascade="all, delete-orphan",
        order_by="BenefitAdjustment.sequence",
        lazy="selectin",
    )


class BenefitAdjustment(Base, TimestampMixin):
    """Append-only adjustment to a benefit item."""

    __tablename__ = "benefit_adjustment"

    benefit_adjustment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    benefit_item_id: Mapped[UUID] = mapped_column(
        ForeignKey("benefit_item.benefit_item_id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    adjustment_type: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    item_status_at_entry: Mapped[str] = mapped_column(String, nullable=False)
    adjusted_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("benefit_item_id", "sequence", name="benefit_adjustment_seq_unique"),
        CheckConstraint(
            "adjustment_type IN ('increase', 'decrease', 'override')",
            name="benefit_adjustment_type_check",
        ),
        CheckConstraint("amount >= 0", name="benefit_adjustment_amount_check"),
    )

    benefit_item: Mapped[BenefitItem] = relationship(back_populates="adjustments")
