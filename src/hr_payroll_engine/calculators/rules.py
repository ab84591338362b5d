"""Pure calculation rules shared by the payroll and benefit engines.

Rounding: every persisted amount is rounded to 2 decimals with
ROUND_HALF_EVEN. Aggregates are exact sums of already-rounded values.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from decimal import ROUND_HALF_EVEN, Decimal

from hr_payroll_engine.calculators.types import Eligibility

CENTS = Decimal("0.01")
ZERO = Decimal("0")
MONTHS_PER_YEAR = 12

# Employment statuses accepted per benefit category; others require "active"
ALLOWED_STATUSES_BY_CATEGORY: dict[str, frozenset[str]] = {
    "terminal": frozenset({"resigned", "retired", "separated"}),
}
DEFAULT_ALLOWED_STATUSES = frozenset({"active"})


def round2(amount: Decimal | int | str) -> Decimal:
    """Round to cents using banker's rounding."""
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_EVEN)


def prorate(amount: Decimal, service_months: int, is_prorated: bool) -> Decimal:
    """Scale a yearly amount by service months, capped at a full year."""
    if not is_prorated or service_months >= MONTHS_PER_YEAR:
        return amount
    return amount * Decimal(max(service_months, 0)) / Decimal(MONTHS_PER_YEAR)


def prorate_by_days(
    amount: Decimal,
    working_days: Decimal,
    standard_days: Decimal,
    is_prorated: bool,
) -> Decimal:
    """Scale a period amount by min(working_days / standard_days, 1)."""
    if not is_prorated or standard_days <= 0:
        return amount
    factor = min(working_days / standard_days, Decimal(1))
    return amount * factor


def basic_pay(daily_rate: Decimal, working_days: Decimal) -> Decimal:
    return round2(daily_rate * working_days)


def months_between(start: date, end: date) -> int:
    """Whole months of service from start to end.

    A partial month counts when at least 15 days of it have elapsed; the
    result is never negative.
    """
    months = (end.year - start.year) * 12 + (end.month - start.month)
    day_diff = end.day - start.day
    if day_diff >= 15:
        months += 1
    elif day_diff < 0:
        months -= 1
    return max(0, months)


def check_eligibility(
    employment_status: str,
    service_months: int,
    category: str,
    minimum_service_months: int,
) -> Eligibility:
    allowed = ALLOWED_STATUSES_BY_CATEGORY.get(category, DEFAULT_ALLOWED_STATUSES)
    reasons: list[str] = []

    if employment_status not in allowed:
        reasons.append(
            f"Employment status '{employment_status}' is not eligible "
            f"(requires {', '.join(sorted(allowed))})"
        )
    if service_months < minimum_service_months:
        reasons.append(
            f"Service of {service_months} months is below the "
            f"{minimum_service_months} month minimum"
        )
    return Eligibility(is_eligible=not reasons, reasons=reasons)


def benefit_tax(
    amount: Decimal,
    is_taxable: bool,
    rate: Decimal,
    annual_exemption: Decimal,
) -> Decimal:
    """Withholding on a benefit amount.

    Zero when the type is not taxable or the amount does not exceed the
    monthly share of the annual exemption.
    """
    if not is_taxable:
        return ZERO
    if amount <= annual_exemption / Decimal(MONTHS_PER_YEAR):
        return ZERO
    return round2(amount * rate)


def fold_adjustments(
    calculated_amount: Decimal,
    adjustments: Iterable[tuple[str, Decimal]],
) -> Decimal:
    """Fold (adjustment_type, amount) pairs, in entry order, onto an amount.

    An override replaces everything before it; increases and decreases
    entered after the latest override apply on top of it.
    """
    total = calculated_amount
    for adjustment_type, amount in adjustments:
        if adjustment_type == "override":
            total = amount
        elif adjustment_type == "increase":
            total += amount
        elif adjustment_type == "decrease":
            total -= amount
        else:
            raise ValueError(f"Unknown adjustment type: {adjustment_type}")
    return total
