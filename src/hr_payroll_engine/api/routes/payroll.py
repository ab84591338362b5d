"""Payroll period and item endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from hr_payroll_engine.api.dependencies import CurrentActor, DbSession
from hr_payroll_engine.api.schemas import (
    BatchResultResponse,
    BulkItemsRequest,
    BulkMarkPaidRequest,
    ComputeItemRequest,
    ErrorResponse,
    MarkPaidRequest,
    PayrollAdjustmentRequest,
    PayrollEntryRequest,
    PayrollItemResponse,
    PayrollPeriodResponse,
    ProcessPeriodRequest,
    ReopenRequest,
    WorkingDaysRequest,
)
from hr_payroll_engine.calculators.types import PayrollSelections
from hr_payroll_engine.services.payroll_lifecycle import PayrollEntry, PayrollLifecycle

router = APIRouter(tags=["payroll"])

ItemId = Annotated[UUID, Path()]
PeriodId = Annotated[UUID, Path()]

_errors = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


def _selections(entry: PayrollEntryRequest) -> PayrollSelections:
    return PayrollSelections(
        allowance_type_ids=entry.allowance_type_ids,
        deduction_type_ids=entry.deduction_type_ids,
        manual_amounts=entry.manual_amounts,
    )


# ============================================================================
# Periods
# ============================================================================


@router.get(
    "/payroll-periods/{period_id}",
    response_model=PayrollPeriodResponse,
    responses=_errors,
)
async def get_period(db: DbSession, period_id: PeriodId) -> PayrollPeriodResponse:
    period = await PayrollLifecycle(db).get_period(period_id)
    return PayrollPeriodResponse.model_validate(period)


@router.post(
    "/payroll-periods/{period_id}/process",
    response_model=BatchResultResponse,
    responses=_errors,
)
async def process_period(
    db: DbSession, period_id: PeriodId, payload: ProcessPeriodRequest
) -> BatchResultResponse:
    """Compute payroll items for every entry; failures are reported per employee."""
    entries = [
        PayrollEntry(
            employee_id=e.employee_id,
            working_days=e.working_days,
            selections=_selections(e),
        )
        for e in payload.entries
    ]
    result = await PayrollLifecycle(db).process(period_id, entries)
    await db.commit()
    return BatchResultResponse.from_result(result)


@router.post(
    "/payroll-periods/{period_id}/complete",
    response_model=PayrollPeriodResponse,
    responses=_errors,
)
async def complete_period(db: DbSession, period_id: PeriodId) -> PayrollPeriodResponse:
    period = await PayrollLifecycle(db).complete_period(period_id)
    await db.commit()
    return PayrollPeriodResponse.model_validate(period)


@router.post(
    "/payroll-periods/{period_id}/mark-paid",
    response_model=PayrollPeriodResponse,
    responses=_errors,
)
async def mark_period_paid(db: DbSession, period_id: PeriodId) -> PayrollPeriodResponse:
    period = await PayrollLifecycle(db).mark_period_paid(period_id)
    await db.commit()
    return PayrollPeriodResponse.model_validate(period)


@router.delete(
    "/payroll-periods/{period_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=_errors,
)
async def delete_period(db: DbSession, period_id: PeriodId) -> None:
    await PayrollLifecycle(db).delete_period(period_id)
    await db.commit()


# ============================================================================
# Items
# ============================================================================


@router.post(
    "/payroll-items",
    response_model=PayrollItemResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_errors,
)
async def compute_item(db: DbSession, payload: ComputeItemRequest) -> PayrollItemResponse:
    """Compute (or recompute in place) one employee's payroll item."""
    item = await PayrollLifecycle(db).compute_item(
        payload.payroll_period_id,
        payload.employee_id,
        payload.working_days,
        _selections(payload),
    )
    await db.commit()
    return PayrollItemResponse.model_validate(item)


@router.get(
    "/payroll-items/{item_id}",
    response_model=PayrollItemResponse,
    responses=_errors,
)
async def get_item(db: DbSession, item_id: ItemId) -> PayrollItemResponse:
    item = await PayrollLifecycle(db).get_item(item_id)
    return PayrollItemResponse.model_validate(item)


@router.post(
    "/payroll-items/{item_id}/recalculate",
    response_model=PayrollItemResponse,
    responses=_errors,
)
async def recalculate_item(db: DbSession, item_id: ItemId) -> PayrollItemResponse:
    item = await PayrollLifecycle(db).recalculate(item_id)
    await db.commit()
    return PayrollItemResponse.model_validate(item)


@router.post(
    "/payroll-items/{item_id}/finalize",
    response_model=PayrollItemResponse,
    responses=_errors,
)
async def finalize_item(db: DbSession, actor: CurrentActor, item_id: ItemId) -> PayrollItemResponse:
    item = await PayrollLifecycle(db).finalize(
        item_id, authorized=actor.is_approver, finalized_by=actor.user_id
    )
    await db.commit()
    return PayrollItemResponse.model_validate(item)


@router.post(
    "/payroll-items/{item_id}/mark-paid",
    response_model=PayrollItemResponse,
    responses=_errors,
)
async def mark_item_paid(
    db: DbSession, item_id: ItemId, payload: MarkPaidRequest
) -> PayrollItemResponse:
    item = await PayrollLifecycle(db).mark_paid(item_id, payload.payment_reference, payload.paid_at)
    await db.commit()
    return PayrollItemResponse.model_validate(item)


@router.post(
    "/payroll-items/{item_id}/reopen",
    response_model=PayrollItemResponse,
    responses=_errors,
)
async def reopen_item(
    db: DbSession, actor: CurrentActor, item_id: ItemId, payload: ReopenRequest
) -> PayrollItemResponse:
    item = await PayrollLifecycle(db).reopen(
        item_id, authorized=actor.is_approver, reason=payload.reason
    )
    await db.commit()
    return PayrollItemResponse.model_validate(item)


@router.post(
    "/payroll-items/{item_id}/working-days",
    response_model=PayrollItemResponse,
    responses=_errors,
)
async def adjust_working_days(
    db: DbSession, item_id: ItemId, payload: WorkingDaysRequest
) -> PayrollItemResponse:
    item = await PayrollLifecycle(db).adjust_working_days(
        item_id, payload.working_days, payload.reason
    )
    await db.commit()
    return PayrollItemResponse.model_validate(item)


@router.post(
    "/payroll-items/{item_id}/adjustments",
    response_model=PayrollItemResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_errors,
)
async def add_adjustment(
    db: DbSession, actor: CurrentActor, item_id: ItemId, payload: PayrollAdjustmentRequest
) -> PayrollItemResponse:
    item = await PayrollLifecycle(db).add_manual_adjustment(
        item_id,
        payload.adjustment_type,
        payload.description,
        payload.amount,
        payload.reason,
        created_by=actor.user_id,
    )
    await db.commit()
    return PayrollItemResponse.model_validate(item)


@router.post(
    "/payroll-items/bulk-finalize",
    response_model=BatchResultResponse,
    responses=_errors,
)
async def bulk_finalize(
    db: DbSession, actor: CurrentActor, payload: BulkItemsRequest
) -> BatchResultResponse:
    result = await PayrollLifecycle(db).bulk_finalize(
        payload.item_ids, authorized=actor.is_approver, finalized_by=actor.user_id
    )
    await db.commit()
    return BatchResultResponse.from_result(result)


@router.post(
    "/payroll-items/bulk-mark-paid",
    response_model=BatchResultResponse,
    responses=_errors,
)
async def bulk_mark_paid(db: DbSession, payload: BulkMarkPaidRequest) -> BatchResultResponse:
    result = await PayrollLifecycle(db).bulk_mark_paid(
        payload.item_ids, payload.payment_reference, payload.paid_at
    )
    await db.commit()
    return BatchResultResponse.from_result(result)
