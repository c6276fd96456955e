"""Payments router: receipts, payment history, overdue sweep, defaulter report."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.auth.dependencies import get_current_user
from schoolfees.auth.rbac import check_permission
from schoolfees.auth.schemas import CurrentUser
from schoolfees.core.exceptions import ServiceError
from schoolfees.db.session import get_db

from .schemas import (
    MarkStudentPaidResult,
    OverdueUpdateResult,
    PaymentCreate,
    PaymentResponse,
    StudentPaymentSummary,
    UnpaidStudentsReport,
)
from . import service

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


@router.post(
    "/challan/{challan_id}",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("payments", "create"))],
)
async def record_payment(
    challan_id: UUID,
    payload: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentResponse:
    try:
        return await service.record_payment(
            db, current_user.tenant_id, challan_id, payload, received_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/student/{student_id}",
    response_model=StudentPaymentSummary,
    dependencies=[Depends(check_permission("payments", "read"))],
)
async def get_student_payments(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentPaymentSummary:
    payments = await service.get_payment_history(db, current_user.tenant_id, student_id)
    total_paid = await service.get_total_paid(db, current_user.tenant_id, student_id)
    return StudentPaymentSummary(student_id=student_id, total_paid=total_paid, payments=payments)


@router.post(
    "/student/{student_id}/mark-paid",
    response_model=MarkStudentPaidResult,
    dependencies=[Depends(check_permission("payments", "create"))],
)
async def mark_student_paid(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MarkStudentPaidResult:
    try:
        return await service.mark_student_paid(db, current_user.tenant_id, student_id, received_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/mark-overdue",
    response_model=OverdueUpdateResult,
    dependencies=[Depends(check_permission("challans", "update"))],
)
async def mark_overdue_challans(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> OverdueUpdateResult:
    updated = await service.mark_overdue_challans(db, current_user.tenant_id)
    return OverdueUpdateResult(updated=updated)


@router.get(
    "/unpaid-students",
    response_model=UnpaidStudentsReport,
    dependencies=[Depends(check_permission("payments", "read"))],
)
async def get_unpaid_students(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> UnpaidStudentsReport:
    return await service.get_unpaid_students(db, current_user.tenant_id)
