"""Fees router: resolved breakdown, student fee settings, bulk fee update."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.auth.dependencies import get_current_user
from schoolfees.auth.rbac import check_permission
from schoolfees.auth.schemas import CurrentUser
from schoolfees.core.exceptions import ServiceError
from schoolfees.core.schemas import BulkActionResult
from schoolfees.db.session import get_db

from .resolver import resolve_student_fees
from .schemas import BulkStudentFeeUpdate, FeeBreakdown, StudentFeeResponse, StudentFeeUpdate
from . import service

router = APIRouter(prefix="/api/v1/fees", tags=["fees"])


@router.get(
    "/student/{student_id}/breakdown",
    response_model=FeeBreakdown,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_student_fee_breakdown(
    student_id: UUID,
    use_structure_fallback: bool = Query(True, description="Fall back to the class fee structure when no tuition is set"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeBreakdown:
    try:
        return await resolve_student_fees(
            db, current_user.tenant_id, student_id, use_structure_fallback=use_structure_fallback
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch(
    "/student/{student_id}",
    response_model=StudentFeeResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def update_student_fees(
    student_id: UUID,
    payload: StudentFeeUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentFeeResponse:
    try:
        return await service.update_student_fees(
            db, current_user.tenant_id, student_id, payload, changed_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/student/{student_id}/class-defaults",
    response_model=StudentFeeResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def populate_fees_from_class(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentFeeResponse:
    try:
        return await service.populate_fees_from_class(
            db, current_user.tenant_id, student_id, changed_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/bulk-update",
    response_model=BulkActionResult,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def bulk_update_student_fees(
    payload: BulkStudentFeeUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BulkActionResult:
    return await service.bulk_update_student_fees(
        db, current_user.tenant_id, payload, changed_by=current_user.id
    )
