"""Lifecycle services."""

from hr_payroll_engine.services.batch import BatchFailure, BatchResult, run_batch
from hr_payroll_engine.services.benefit_lifecycle import BenefitCycleLifecycle
from hr_payroll_engine.services.override_service import OverrideService
from hr_payroll_engine.services.payroll_lifecycle import PayrollEntry, PayrollLifecycle

__all__ = [
    "BatchFailure",
    "BatchResult",
    "run_batch",
    "BenefitCycleLifecycle",
    "OverrideService",
    "PayrollEntry",
    "PayrollLifecycle",
]
