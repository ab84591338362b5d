"""Type definitions for the calculation pipeline."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Union
from uuid import UUID

from hr_payroll_engine.calculators.formula import FormulaError, evaluate_formula
from hr_payroll_engine.errors import RateResolutionError


class CalculationType(str, Enum):
    """How a rate type produces its amount."""

    FIXED = "fixed"
    PERCENTAGE = "percentage"
    FORMULA = "formula"
    MANUAL = "manual"


class RateKind(str, Enum):
    """Which table a rate type (and its overrides) belongs to."""

    ALLOWANCE = "allowance"
    DEDUCTION = "deduction"
    BENEFIT = "benefit"


class LineType(str, Enum):
    """Payroll line item types."""

    ALLOWANCE = "allowance"
    DEDUCTION = "deduction"


class LineSource(str, Enum):
    """Where a payroll line amount came from."""

    RATE = "rate"
    MANUAL_AMOUNT = "manual_amount"
    ADJUSTMENT = "adjustment"


@dataclass(frozen=True)
class ResolvedRate:
    """Outcome of resolving a rate type for one employee.

    ``amount`` is None for Manual types without an override: the caller
    must supply the amount, and the line is omitted otherwise.
    """

    amount: Decimal | None
    basis: str
    source: str

    @property
    def is_manual(self) -> bool:
        return self.amount is None


# === Calculation strategies ===
#
# One rule class per calculation type. Each rule is built once from a rate
# type and evaluated against the variables of one employee computation.


@dataclass(frozen=True)
class FixedRule:
    code: str
    amount: Decimal

    def evaluate(self, variables: Mapping[str, Decimal]) -> ResolvedRate:
        return ResolvedRate(
            amount=self.amount,
            basis=f"Fixed amount: {self.amount}",
            source=CalculationType.FIXED.value,
        )


@dataclass(frozen=True)
class PercentageRule:
    code: str
    rate: Decimal  # in percent, 10 = 10%
    base: str

    def evaluate(self, variables: Mapping[str, Decimal]) -> ResolvedRate:
        base_value = variables.get(self.base)
        if base_value is None:
            raise RateResolutionError(
                self.code, f"percentage base '{self.base}' is not available"
            )
        return ResolvedRate(
            amount=base_value * self.rate / Decimal(100),
            basis=f"{self.rate}% of {self.base} ({base_value})",
            source=CalculationType.PERCENTAGE.value,
        )


@dataclass(frozen=True)
class FormulaRule:
    code: str
    expression: str

    def evaluate(self, variables: Mapping[str, Decimal]) -> ResolvedRate:
        try:
            amount = evaluate_formula(self.expression, variables)
        except FormulaError as e:
            raise RateResolutionError(self.code, str(e)) from e

        basis = f"Formula: {self.expression} = {amount}"
        if amount < 0:
            basis += " (negative result floored at 0)"
            amount = Decimal("0")
        return ResolvedRate(
            amount=amount,
            basis=basis,
            source=CalculationType.FORMULA.value,
        )


@dataclass(frozen=True)
class ManualRule:
    code: str

    def evaluate(self, variables: Mapping[str, Decimal]) -> ResolvedRate:
        return ResolvedRate(
            amount=None,
            basis="Manual entry required - amount to be set by administrator",
            source=CalculationType.MANUAL.value,
        )


RateRule = Union[FixedRule, PercentageRule, FormulaRule, ManualRule]


# === Payroll pipeline ===


@dataclass
class LineCandidate:
    """A payroll line before persistence."""

    line_type: LineType
    description: str
    amount: Decimal  # Always non-negative; line_type decides the effect
    calculation_basis: str
    source: LineSource = LineSource.RATE
    rate_type_id: UUID | None = None
    rate_code: str | None = None

    def to_canonical_dict(self) -> dict[str, Any]:
        """Return canonical dict for hashing (deterministic ordering)."""
        return {
            "line_type": self.line_type.value,
            "source": self.source.value,
            "rate_type_id": str(self.rate_type_id) if self.rate_type_id else None,
            "rate_code": self.rate_code,
            "description": self.description,
            "amount": str(self.amount),
            "calculation_basis": self.calculation_basis,
        }


@dataclass
class PayrollSelections:
    """Allowance/deduction types selected for one employee's computation."""

    allowance_type_ids: list[UUID] = field(default_factory=list)
    deduction_type_ids: list[UUID] = field(default_factory=list)
    manual_amounts: dict[UUID, Decimal] = field(default_factory=dict)

    def to_storage(self) -> dict[str, Any]:
        """JSON-safe form stored on the payroll item."""
        return {
            "selected_allowance_type_ids": sorted(str(i) for i in set(self.allowance_type_ids)),
            "selected_deduction_type_ids": sorted(str(i) for i in set(self.deduction_type_ids)),
            "manual_amounts": {str(k): str(v) for k, v in sorted(self.manual_amounts.items(), key=lambda kv: str(kv[0]))},
        }

    @classmethod
    def from_storage(
        cls,
        allowance_ids: list[str],
        deduction_ids: list[str],
        manual_amounts: Mapping[str, Any],
    ) -> PayrollSelections:
        return cls(
            allowance_type_ids=[UUID(i) for i in allowance_ids],
            deduction_type_ids=[UUID(i) for i in deduction_ids],
            manual_amounts={UUID(k): Decimal(str(v)) for k, v in manual_amounts.items()},
        )


@dataclass
class PayrollCalculation:
    """Result of calculating one employee's pay for one period."""

    employee_id: UUID
    payroll_period_id: UUID
    working_days: Decimal
    daily_rate: Decimal
    basic_pay: Decimal
    lines: list[LineCandidate]
    total_allowances: Decimal
    total_deductions: Decimal
    gross_pay: Decimal
    net_pay: Decimal
    calculation_hash: str


# === Benefit pipeline ===


@dataclass
class Eligibility:
    """Benefit eligibility decision with the reasons behind it."""

    is_eligible: bool
    reasons: list[str] = field(default_factory=list)

    @property
    def notes(self) -> str | None:
        return "; ".join(self.reasons) if self.reasons else None


@dataclass
class BenefitCalculation:
    """Result of calculating one employee's benefit for one cycle."""

    employee_id: UUID
    base_salary: Decimal
    service_months: int
    is_eligible: bool
    eligibility_notes: str | None
    calculated_amount: Decimal
    calculation_basis: str
