"""Benefit cycle and item endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from hr_payroll_engine.api.dependencies import CurrentActor, DbSession
from hr_payroll_engine.api.schemas import (
    BatchResultResponse,
    BenefitAdjustmentRequest,
    BenefitAdjustmentResponse,
    BenefitCycleResponse,
    BenefitItemResponse,
    BulkItemsRequest,
    BulkMarkPaidRequest,
    CalculateCycleRequest,
    CancelCycleRequest,
    CancelItemRequest,
    ErrorResponse,
    MarkPaidRequest,
)
from hr_payroll_engine.services.benefit_lifecycle import BenefitCycleLifecycle

router = APIRouter(tags=["benefits"])

CycleId = Annotated[UUID, Path()]
ItemId = Annotated[UUID, Path()]

_errors = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


# ============================================================================
# Cycles
# ============================================================================


@router.get(
    "/benefit-cycles/{cycle_id}",
    response_model=BenefitCycleResponse,
    responses=_errors,
)
async def get_cycle(db: DbSession, cycle_id: CycleId) -> BenefitCycleResponse:
    cycle = await BenefitCycleLifecycle(db).get_cycle(cycle_id)
    return BenefitCycleResponse.model_validate(cycle)


@router.post(
    "/benefit-cycles/{cycle_id}/calculate",
    response_model=BatchResultResponse,
    responses=_errors,
)
async def calculate_cycle(
    db: DbSession, cycle_id: CycleId, payload: CalculateCycleRequest
) -> BatchResultResponse:
    """Compute benefit items; the summary carries cycle totals."""
    result = await BenefitCycleLifecycle(db).calculate(
        cycle_id, payload.employee_ids, payload.service_months_cap
    )
    await db.commit()
    return BatchResultResponse.from_result(result)


@router.post(
    "/benefit-cycles/{cycle_id}/process",
    response_model=BenefitCycleResponse,
    responses=_errors,
)
async def process_cycle(db: DbSession, cycle_id: CycleId) -> BenefitCycleResponse:
    cycle = await BenefitCycleLifecycle(db).process(cycle_id)
    await db.commit()
    return BenefitCycleResponse.model_validate(cycle)


@router.post(
    "/benefit-cycles/{cycle_id}/finalize",
    response_model=BenefitCycleResponse,
    responses=_errors,
)
async def finalize_cycle(db: DbSession, cycle_id: CycleId) -> BenefitCycleResponse:
    cycle = await BenefitCycleLifecycle(db).finalize(cycle_id)
    await db.commit()
    return BenefitCycleResponse.model_validate(cycle)


@router.post(
    "/benefit-cycles/{cycle_id}/release",
    response_model=BenefitCycleResponse,
    responses=_errors,
)
async def release_cycle(db: DbSession, cycle_id: CycleId) -> BenefitCycleResponse:
    cycle = await BenefitCycleLifecycle(db).release(cycle_id)
    await db.commit()
    return BenefitCycleResponse.model_validate(cycle)


@router.post(
    "/benefit-cycles/{cycle_id}/cancel",
    response_model=BenefitCycleResponse,
    responses=_errors,
)
async def cancel_cycle(
    db: DbSession, cycle_id: CycleId, payload: CancelCycleRequest
) -> BenefitCycleResponse:
    cycle = await BenefitCycleLifecycle(db).cancel(
        cycle_id, payload.reason, payload.acknowledge_partial
    )
    await db.commit()
    return BenefitCycleResponse.model_validate(cycle)


# ============================================================================
# Items
# ============================================================================


@router.get(
    "/benefit-items/{item_id}",
    response_model=BenefitItemResponse,
    responses=_errors,
)
async def get_item(db: DbSession, item_id: ItemId) -> BenefitItemResponse:
    item = await BenefitCycleLifecycle(db).get_item(item_id)
    return BenefitItemResponse.model_validate(item)


@router.post(
    "/benefit-items/{item_id}/approve",
    response_model=BenefitItemResponse,
    responses=_errors,
)
async def approve_item(db: DbSession, actor: CurrentActor, item_id: ItemId) -> BenefitItemResponse:
    item = await BenefitCycleLifecycle(db).approve(
        item_id, authorized=actor.is_approver, approved_by=actor.user_id
    )
    await db.commit()
    return BenefitItemResponse.model_validate(item)


@router.post(
    "/benefit-items/{item_id}/mark-paid",
    response_model=BenefitItemResponse,
    responses=_errors,
)
async def mark_item_paid(
    db: DbSession, item_id: ItemId, payload: MarkPaidRequest
) -> BenefitItemResponse:
    item = await BenefitCycleLifecycle(db).mark_paid(
        item_id, payload.payment_reference, payload.paid_at
    )
    await db.commit()
    return BenefitItemResponse.model_validate(item)


@router.post(
    "/benefit-items/{item_id}/cancel",
    response_model=BenefitItemResponse,
    responses=_errors,
)
async def cancel_item(
    db: DbSession, item_id: ItemId, payload: CancelItemRequest
) -> BenefitItemResponse:
    item = await BenefitCycleLifecycle(db).cancel_item(item_id, payload.reason)
    await db.commit()
    return BenefitItemResponse.model_validate(item)


@router.post(
    "/benefit-items/{item_id}/adjustments",
    response_model=BenefitAdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_errors,
)
async def add_adjustment(
    db: DbSession, actor: CurrentActor, item_id: ItemId, payload: BenefitAdjustmentRequest
) -> BenefitAdjustmentResponse:
    adjustment = await BenefitCycleLifecycle(db).add_adjustment(
        item_id,
        payload.adjustment_type,
        payload.amount,
        payload.reason,
        payload.description,
        adjusted_by=actor.user_id,
    )
    await db.commit()
    return BenefitAdjustmentResponse.model_validate(adjustment)


@router.post(
    "/benefit-items/bulk-approve",
    response_model=BatchResultResponse,
    responses=_errors,
)
async def bulk_approve(
    db: DbSession, actor: CurrentActor, payload: BulkItemsRequest
) -> BatchResultResponse:
    result = await BenefitCycleLifecycle(db).bulk_approve(
        payload.item_ids, authorized=actor.is_approver, approved_by=actor.user_id
    )
    await db.commit()
    return BatchResultResponse.from_result(result)


@router.post(
    "/benefit-items/bulk-mark-paid",
    response_model=BatchResultResponse,
    responses=_errors,
)
async def bulk_mark_paid(db: DbSession, payload: BulkMarkPaidRequest) -> BatchResultResponse:
    result = await BenefitCycleLifecycle(db).bulk_mark_paid(
        payload.item_ids, payload.payment_reference, payload.paid_at
    )
    await db.commit()
    return BatchResultResponse.from_result(result)
