"""Line item builder with idempotent hashing."""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from typing import Any
from uuid import UUID

from hr_payroll_engine.calculators.rules import ZERO, round2
from hr_payroll_engine.calculators.types import LineCandidate, LineSource, LineType


class LineItemBuilder:
    """Builds payroll line items with deterministic hashing for idempotency.

    Amount conventions:
    - Every line amount is non-negative and rounded to cents
    - ALLOWANCE adds to gross pay
    - DEDUCTION subtracts from gross pay
    """

    @staticmethod
    def round_to_cents(amount: Decimal) -> Decimal:
        return round2(amount)

    @staticmethod
    def compute_line_hash(line: LineCandidate) -> str:
        """Compute deterministic hash for a line item.

        The hash is based on the canonical representation of defining fields,
        ensuring identical inputs produce identical hashes.
        """
        canonical = line.to_canonical_dict()
        json_str = json.dumps(canonical, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    @staticmethod
    def compute_calculation_hash(payload: dict[str, Any], lines: list[LineCandidate]) -> str:
        """Fingerprint a whole computation: inputs, totals and every line."""
        canonical = {
            **payload,
            "lines": [LineItemBuilder.compute_line_hash(line) for line in lines],
        }
        json_str = json.dumps(canonical, sort_keys=True, default=str)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    @staticmethod
    def create_allowance_line(
        rate_type_id: UUID | None,
        rate_code: str | None,
        description: str,
        amount: Decimal,
        calculation_basis: str,
        source: LineSource = LineSource.RATE,
    ) -> LineCandidate:
        return LineCandidate(
            line_type=LineType.ALLOWANCE,
            description=description,
            amount=LineItemBuilder.round_to_cents(abs(amount)),
            calculation_basis=calculation_basis,
            source=source,
            rate_type_id=rate_type_id,
            rate_code=rate_code,
        )

    @staticmethod
    def create_deduction_line(
        rate_type_id: UUID | None,
        rate_code: str | None,
        description: str,
        amount: Decimal,
        calculation_basis: str,
        source: LineSource = LineSource.RATE,
    ) -> LineCandidate:
        return LineCandidate(
            line_type=LineType.DEDUCTION,
            description=description,
            amount=LineItemBuilder.round_to_cents(abs(amount)),
            calculation_basis=calculation_basis,
            source=source,
            rate_type_id=rate_type_id,
            rate_code=rate_code,
        )

    @staticmethod
    def create_adjustment_line(
        adjustment_type: str,
        description: str,
        amount: Decimal,
        reason: str | None = None,
    ) -> LineCandidate:
        """Materialize a ledger adjustment as an allowance or deduction line."""
        line_type = LineType(adjustment_type)
        basis = f"Manual adjustment: {reason}" if reason else "Manual adjustment"
        return LineCandidate(
            line_type=line_type,
            description=description,
            amount=LineItemBuilder.round_to_cents(abs(amount)),
            calculation_basis=basis,
            source=LineSource.ADJUSTMENT,
        )

    @staticmethod
    def sum_by_type(lines: list[LineCandidate]) -> dict[LineType, Decimal]:
        """Sum line amounts by type."""
        totals: dict[LineType, Decimal] = {lt: ZERO for lt in LineType}
        for line in lines:
            totals[line.line_type] += line.amount
        return totals

    @staticmethod
    def validate_lines(lines: list[LineCandidate]) -> list[str]:
        """Return error messages for lines that break the amount conventions."""
        errors: list[str] = []
        for i, line in enumerate(lines):
            if line.amount < 0:
                errors.append(f"Line {i} ({line.line_type.value}) has negative amount {line.amount}")
            if line.amount != round2(line.amount):
                errors.append(f"Line {i} ({line.line_type.value}) is not rounded to cents")
        return errors
