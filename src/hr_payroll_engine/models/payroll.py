"""Payroll period, item, line and adjustment models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
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


class PayrollPeriod(Base, TimestampMixin):
    """Payroll period (half-month) instance."""

    __tablename__ = "payroll_period"

    payroll_period_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    period_number: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    standard_working_days: Mapped[Decimal | None] = mapped_column(
        Numeric(5, 2), nullable=True
    )
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("year", "month", "period_number", name="payroll_period_unique"),
        CheckConstraint(
            "status IN ('draft', 'processing', 'completed', 'paid')",
            name="payroll_period_status_check",
        ),
        CheckConstraint("month BETWEEN 1 AND 12", name="payroll_period_month_check"),
        CheckConstraint("period_number IN (1, 2)", name="payroll_period_number_check"),
        CheckConstraint("end_date >= start_date", name="payroll_period_dates_check"),
    )

    @property
    def period_name(self) -> str:
        suffix = "1st Half" if self.period_number == 1 else "2nd Half"
        return f"{date(self.year, self.month, 1):%B} {self.year} - {suffix}"


class PayrollItem(Base, TimestampMixin):
    """One employee's computed pay for one period."""

    __tablename__ = "payroll_item"

    payroll_item_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.payroll_period_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id"),
        nullable=False,
    )
    working_days: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    daily_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    basic_pay: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_allowances: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    gross_pay: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    net_pay: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")

    # Replayed by recalculate
    selected_allowance_type_ids: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list
    )
    selected_deduction_type_ids: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list
    )
    manual_amounts: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    calculation_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    calculated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(nullable=True)
    finalized_by: Mapped[UUID | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("payroll_period_id", "employee_id", name="payroll_item_unique"),
        CheckConstraint(
            "status IN ('draft', 'processed', 'finalized', 'paid')",
            name="payroll_item_status_check",
        ),
        CheckConstraint("working_days >= 0", name="payroll_item_working_days_check"),
    )

    lines: Mapped[list[PayrollItemLine]] = relationship(
        back_populates="payroll_item",
        cascade="all, delete-orphan",
        order_by="PayrollItemLine.sequence",
        lazy="selectin",
    )


class PayrollItemLine(Base):
    """One allowance or deduction applied to a payroll item."""

    __tablename__ = "payroll_item_line"

    payroll_item_line_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_item_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_item.payroll_item_id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    line_type: Mapped[str] = mapped_column(String, nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False, default="rate")
    rate_type_id: Mapped[UUID | None] = mapped_column(nullable=True)
    rate_code: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    calculation_basis: Mapped[str] = mapped_column(Text, nullable=False)
    line_hash: Mapped[str] = mapped_column(String(32), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "line_type IN ('allowance', 'deduction')",
            name="payroll_item_line_type_check",
        ),
        CheckConstraint(
            "source IN ('rate', 'manual_amount', 'adjustment')",
            name="payroll_item_line_source_check",
        ),
        CheckConstraint("amount >= 0", name="payroll_item_line_amount_check"),
    )

    payroll_item: Mapped[PayrollItem] = relationship(back_populates="lines")


class PayrollAdjustment(Base, TimestampMixin):
    """Append-only manual adjustment to a payroll item."""

    __tablename__ = "payroll_adjustment"

    payroll_adjustment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_item_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_item.payroll_item_id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    adjustment_type: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("payroll_item_id", "sequence", name="payroll_adjustment_seq_unique"),
        CheckConstraint(
            "adjustment_type IN ('allowance', 'deduction')",
            name="payroll_adjustment_type_check",
        ),
        CheckConstraint("amount > 0", name="payroll_adjustment_amount_check"),
    )
