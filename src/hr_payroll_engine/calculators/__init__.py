"""Payroll and benefit calculation engines."""

from hr_payroll_engine.calculators.adjustment_ledger import AdjustmentLedger
from hr_payroll_engine.calculators.benefit_engine import BenefitItemEngine
from hr_payroll_engine.calculators.line_builder import LineItemBuilder
from hr_payroll_engine.calculators.payroll_engine import PayrollItemEngine
from hr_payroll_engine.calculators.rate_resolver import RateResolver, build_rule

__all__ = [
    "AdjustmentLedger",
    "BenefitItemEngine",
    "LineItemBuilder",
    "PayrollItemEngine",
    "RateResolver",
    "build_rule",
]
