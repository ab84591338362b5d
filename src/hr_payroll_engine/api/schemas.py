"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from hr_payroll_engine.services.batch import BatchResult


# ============================================================================
# Payroll schemas
# ============================================================================


class PayrollEntryRequest(BaseModel):
    """One employee's inputs for a payroll computation."""

    employee_id: UUID
    working_days: Decimal
    allowance_type_ids: list[UUID] = Field(default_factory=list)
    deduction_type_ids: list[UUID] = Field(default_factory=list)
    manual_amounts: dict[UUID, Decimal] = Field(default_factory=dict)


class ComputeItemRequest(PayrollEntryRequest):
    """Schema for computing a single payroll item."""

    payroll_period_id: UUID


class ProcessPeriodRequest(BaseModel):
    entries: list[PayrollEntryRequest]


class PayrollItemLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    line_type: str
    source: str
    rate_type_id: UUID | None = None
    rate_code: str | None = None
    description: str
    amount: Decimal
    calculation_basis: str
    line_hash: str


class PayrollItemResponse(BaseModel):
    """Schema for payroll item response."""

    model_config = ConfigDict(from_attributes=True)

    payroll_item_id: UUID
    payroll_period_id: UUID
    employee_id: UUID
    working_days: Decimal
    daily_rate: Decimal
    basic_pay: Decimal
    total_allowances: Decimal
    total_deductions: Decimal
    gross_pay: Decimal
    net_pay: Decimal
    status: str
    calculation_hash: str
    finalized_at: datetime | None = None
    finalized_by: UUID | None = None
    paid_at: datetime | None = None
    payment_reference: str | None = None
    notes: str | None = None
    lines: list[PayrollItemLineResponse] = Field(default_factory=list)


class PayrollPeriodResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payroll_period_id: UUID
    year: int
    month: int
    period_number: int
    period_name: str
    start_date: date
    end_date: date
    pay_date: date | None = None
    status: str
    completed_at: datetime | None = None
    deleted_at: datetime | None = None


class MarkPaidRequest(BaseModel):
    payment_reference: str
    paid_at: datetime | None = None


class BulkItemsRequest(BaseModel):
    item_ids: list[UUID]


class BulkMarkPaidRequest(BulkItemsRequest):
    payment_reference: str
    paid_at: datetime | None = None


class ReopenRequest(BaseModel):
    reason: str | None = None


class WorkingDaysRequest(BaseModel):
    working_days: Decimal
    reason: str | None = None


class PayrollAdjustmentRequest(BaseModel):
    adjustment_type: Literal["allowance", "deduction"]
    description: str
    amount: Decimal
    reason: str | None = None


# ============================================================================
# Benefit schemas
# ============================================================================


class CalculateCycleRequest(BaseModel):
    """Schema for calculating a benefit cycle (all employees when ids omitted)."""

    employee_ids: list[UUID] | None = None
    service_months_cap: int | None = Field(default=None, ge=0)


class CancelCycleRequest(BaseModel):
    reason: str
    acknowledge_partial: bool = False


class CancelItemRequest(BaseModel):
    reason: str | None = None


class BenefitAdjustmentRequest(BaseModel):
    adjustment_type: Literal["increase", "decrease", "override"]
    amount: Decimal
    reason: str
    description: str | None = None


class BenefitAdjustmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    benefit_adjustment_id: UUID
    sequence: int
    adjustment_type: str
    amount: Decimal
    reason: str
    description: str | None = None
    item_status_at_entry: str
    adjusted_by: UUID | None = None


class BenefitItemResponse(BaseModel):
    """Schema for benefit item response."""

    model_config = ConfigDict(from_attributes=True)

    benefit_item_id: UUID
    benefit_cycle_id: UUID
    employee_id: UUID
    base_salary: Decimal
    service_months: int
    calculated_amount: Decimal
    adjustment_amount: Decimal
    final_amount: Decimal
    tax_amount: Decimal
    net_amount: Decimal
    calculation_basis: str | None = None
    status: str
    is_eligible: bool
    eligibility_notes: str | None = None
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    paid_at: datetime | None = None
    payment_reference: str | None = None
    adjustments: list[BenefitAdjustmentResponse] = Field(default_factory=list)


class BenefitCycleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    benefit_cycle_id: UUID
    benefit_type_id: UUID
    cycle_year: int
    cycle_name: str
    applicable_date: date
    payment_date: date | None = None
    status: str
    total_amount: Decimal
    employee_count: int
    notes: str | None = None


# ============================================================================
# Shared schemas
# ============================================================================


class BatchFailureResponse(BaseModel):
    id: UUID
    error: str
    code: str


class BatchResultResponse(BaseModel):
    """Schema for best-effort bulk operation results."""

    succeeded: list[UUID]
    failed: list[BatchFailureResponse]
    affected_rows: int
    summary: dict[str, Any] | None = None

    @classmethod
    def from_result(cls, result: BatchResult) -> "BatchResultResponse":
        return cls(
            succeeded=result.succeeded,
            failed=[
                BatchFailureResponse(id=f.id, error=f.error, code=f.code) for f in result.failed
            ],
            affected_rows=result.affected_rows,
            summary=result.summary or None,
        )


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None
