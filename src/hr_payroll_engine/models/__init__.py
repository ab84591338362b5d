"""ORM models."""

from hr_payroll_engine.models.base import Base, TimestampMixin
from hr_payroll_engine.models.benefits import BenefitAdjustment, BenefitCycle, BenefitItem
from hr_payroll_engine.models.employee import Employee
from hr_payroll_engine.models.payroll import (
    PayrollAdjustment,
    PayrollItem,
    PayrollItemLine,
    PayrollPeriod,
)
from hr_payroll_engine.models.rates import (
    AllowanceType,
    BenefitType,
    DeductionType,
    RateOverride,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "Employee",
    "AllowanceType",
    "DeductionType",
    "BenefitType",
    "RateOverride",
    "PayrollPeriod",
    "PayrollItem",
    "PayrollItemLine",
    "PayrollAdjustment",
    "BenefitCycle",
    "BenefitItem",
    "BenefitAdjustment",
]
