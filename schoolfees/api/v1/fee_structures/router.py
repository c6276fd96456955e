"""Fee structure router: versions, active lookup, history, computed fees."""

from decimal import Decimal
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.api.v1.fees.calculations import calculate_fees_from_structure
from schoolfees.api.v1.fees.schemas import ChallanFees
from schoolfees.auth.dependencies import get_current_user
from schoolfees.auth.rbac import check_permission
from schoolfees.auth.schemas import CurrentUser
from schoolfees.core.exceptions import ServiceError
from schoolfees.db.session import get_db

from .schemas import FeeStructureCreate, FeeStructureResponse
from . import service

router = APIRouter(prefix="/api/v1/fee-structures", tags=["fee-structures"])


@router.post(
    "",
    response_model=FeeStructureResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def create_fee_structure_version(
    payload: FeeStructureCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeStructureResponse:
    try:
        return await service.create_fee_structure_version(
            db, current_user.tenant_id, payload, created_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/class/{class_id}/active",
    response_model=FeeStructureResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_active_fee_structure(
    class_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeStructureResponse:
    result = await service.get_active_fee_structure(db, current_user.tenant_id, class_id)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active fee structure found for this class. Please set up the fee structure first.",
        )
    return result


@router.get(
    "/class/{class_id}/history",
    response_model=List[FeeStructureResponse],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_fee_structure_history(
    class_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[FeeStructureResponse]:
    return await service.get_fee_structure_history(db, current_user.tenant_id, class_id)


@router.get(
    "/{fee_structure_id}",
    response_model=FeeStructureResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_fee_structure(
    fee_structure_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeStructureResponse:
    result = await service.get_fee_structure(db, current_user.tenant_id, fee_structure_id)
    if not result:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Fee structure not found")
    return result


@router.get(
    "/{fee_structure_id}/fees",
    response_model=ChallanFees,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def calculate_structure_fees(
    fee_structure_id: UUID,
    discount: Decimal = Query(Decimal("0"), ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ChallanFees:
    result = await service.get_fee_structure(db, current_user.tenant_id, fee_structure_id)
    if not result:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Fee structure not found")
    return calculate_fees_from_structure(result, discount)
