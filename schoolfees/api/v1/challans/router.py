"""Challans router: generation (single, bulk, first, regenerate), edit, cancel, bulk actions, listing."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.auth.dependencies import get_current_user
from schoolfees.auth.rbac import check_permission
from schoolfees.auth.schemas import CurrentUser
from schoolfees.core.enums import ChallanStatus
from schoolfees.core.exceptions import ServiceError
from schoolfees.core.schemas import BulkActionResult
from schoolfees.db.session import get_db

from .schemas import (
    BulkEditRequest,
    BulkGenerateRequest,
    BulkMarkPaidRequest,
    BulkReminderRequest,
    ChallanGenerateRequest,
    ChallanIdsRequest,
    ChallanResponse,
    ChallanUpdate,
    FirstChallanRequest,
    RegenerateRequest,
    RegenerationResult,
)
from . import bulk_actions, service

router = APIRouter(prefix="/api/v1/challans", tags=["challans"])


@router.post(
    "/generate",
    response_model=ChallanResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("challans", "create"))],
)
async def generate_challan(
    payload: ChallanGenerateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ChallanResponse:
    try:
        return await service.create_challan(
            db,
            current_user.tenant_id,
            payload.student_id,
            payload.month,
            operator_id=current_user.id,
            include_exam_fee=payload.include_exam_fee,
            include_admission_fee=payload.include_admission_fee,
            due_date=payload.due_date,
            notes=payload.notes,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/generate/bulk",
    response_model=BulkActionResult,
    dependencies=[Depends(check_permission("challans", "create"))],
)
async def generate_challans_bulk(
    payload: BulkGenerateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BulkActionResult:
    return await service.generate_challans_bulk(
        db,
        current_user.tenant_id,
        payload.month,
        operator_id=current_user.id,
        student_ids=payload.student_ids,
        class_ids=payload.class_ids,
        include_exam_fee=payload.include_exam_fee,
        skip_existing=payload.skip_existing,
    )


@router.post(
    "/generate/first",
    response_model=ChallanResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("challans", "create"))],
)
async def generate_first_challan(
    payload: FirstChallanRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ChallanResponse:
    try:
        return await service.generate_first_challan(
            db, current_user.tenant_id, payload.student_id, operator_id=current_user.id, month=payload.month
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/regenerate",
    response_model=RegenerationResult,
    dependencies=[Depends(check_permission("challans", "create"))],
)
async def regenerate_challans(
    payload: RegenerateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> RegenerationResult:
    try:
        return await service.regenerate_challans_with_new_fees(
            db,
            current_user.tenant_id,
            payload.student_ids,
            payload.month,
            payload.due_date,
            payload.fee_structure_id,
            operator_id=current_user.id,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/bulk/edit",
    response_model=BulkActionResult,
    dependencies=[Depends(check_permission("challans", "update"))],
)
async def bulk_edit_challans(
    payload: BulkEditRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BulkActionResult:
    return await bulk_actions.bulk_edit_challans(db, current_user.tenant_id, payload, operator_id=current_user.id)


@router.post(
    "/bulk/delete",
    response_model=BulkActionResult,
    dependencies=[Depends(check_permission("challans", "delete"))],
)
async def bulk_delete_challans(
    payload: ChallanIdsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BulkActionResult:
    return await bulk_actions.bulk_delete_challans(
        db, current_user.tenant_id, payload.challan_ids, operator_id=current_user.id
    )


@router.post(
    "/bulk/mark-paid",
    response_model=BulkActionResult,
    dependencies=[Depends(check_permission("challans", "update"))],
)
async def bulk_mark_as_paid(
    payload: BulkMarkPaidRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BulkActionResult:
    return await bulk_actions.bulk_mark_as_paid(
        db,
        current_user.tenant_id,
        payload.challan_ids,
        operator_id=current_user.id,
        payment_method=payload.payment_method,
    )


@router.post(
    "/bulk/reminders",
    response_model=BulkActionResult,
    dependencies=[Depends(check_permission("challans", "update"))],
)
async def bulk_send_reminders(
    payload: BulkReminderRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BulkActionResult:
    return await bulk_actions.bulk_send_reminders(
        db,
        current_user.tenant_id,
        payload.challan_ids,
        operator_id=current_user.id,
        reminder_type=payload.reminder_type,
    )


@router.get(
    "",
    response_model=List[ChallanResponse],
    dependencies=[Depends(check_permission("challans", "read"))],
)
async def list_challans(
    month: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}$"),
    status_filter: Optional[ChallanStatus] = Query(None, alias="status"),
    student_id: Optional[UUID] = Query(None),
    class_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[ChallanResponse]:
    return await service.list_challans(
        db,
        current_user.tenant_id,
        month=month,
        status_filter=status_filter.value if status_filter else None,
        student_id=student_id,
        class_id=class_id,
    )


@router.get(
    "/{challan_id}",
    response_model=ChallanResponse,
    dependencies=[Depends(check_permission("challans", "read"))],
)
async def get_challan(
    challan_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ChallanResponse:
    result = await service.get_challan(db, current_user.tenant_id, challan_id)
    if not result:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Challan not found")
    return result


@router.patch(
    "/{challan_id}",
    response_model=ChallanResponse,
    dependencies=[Depends(check_permission("challans", "update"))],
)
async def update_challan(
    challan_id: UUID,
    payload: ChallanUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ChallanResponse:
    try:
        return await service.update_challan(db, current_user.tenant_id, challan_id, payload, operator_id=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{challan_id}/cancel",
    response_model=ChallanResponse,
    dependencies=[Depends(check_permission("challans", "update"))],
)
async def cancel_challan(
    challan_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ChallanResponse:
    try:
        return await service.cancel_challan(db, current_user.tenant_id, challan_id, operator_id=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
