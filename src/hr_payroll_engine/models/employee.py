"""Employee model as read by the calculation engines."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from hr_payroll_engine.models.base import Base, TimestampMixin


class Employee(Base, TimestampMixin):
    """Employee record.

    Owned by the HR side of the system; the engines only read it.
    """

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    appointment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    employment_status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    current_daily_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    current_monthly_salary: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    leave_credits: Mapped[Decimal] = mapped_column(
        Numeric(8, 3), nullable=False, default=Decimal("0")
    )

    __table_args__ = (
        CheckConstraint(
            "employment_status IN ('active', 'resigned', 'retired', 'separated', 'terminated')",
            name="employee_status_check",
        ),
    )
