"""Payments service: receipts against challans, overdue sweep, defaulter report."""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.api.v1.fees.audit_service import log_fee_audit
from schoolfees.api.v1.fees.calculations import ZERO, to_decimal
from schoolfees.core.config import settings
from schoolfees.core.enums import ChallanStatus, PaymentMethod
from schoolfees.core.exceptions import NotAuthenticatedError, ServiceError
from schoolfees.core.models import FeeChallan, FeePayment, SchoolClass, Student

from .schemas import (
    MarkStudentPaidResult,
    PaymentCreate,
    PaymentResponse,
    UnpaidStudent,
    UnpaidStudentsReport,
)

logger = logging.getLogger(__name__)

_UNPAID = (ChallanStatus.pending.value, ChallanStatus.overdue.value)


def _payment_to_response(p: FeePayment) -> PaymentResponse:
    return PaymentResponse(
        id=p.id,
        tenant_id=p.tenant_id,
        challan_id=p.challan_id,
        student_id=p.student_id,
        amount=to_decimal(p.amount),
        payment_date=p.payment_date,
        payment_method=p.payment_method,
        notes=p.notes,
        received_by=p.received_by,
        created_at=p.created_at,
    )


async def settle_challan(
    db: AsyncSession,
    tenant_id: UUID,
    challan: FeeChallan,
    payment_method: PaymentMethod,
    received_by: UUID,
    notes: Optional[str] = None,
    paid_at: Optional[datetime] = None,
) -> Decimal:
    """
    Mark a challan paid in full, adding a receipt for whatever is still outstanding.
    Returns the receipt amount (0 when nothing was owed). Caller commits.
    """
    paid_at = paid_at or datetime.now(timezone.utc)
    outstanding = max(ZERO, to_decimal(challan.total_amount) - to_decimal(challan.amount_paid))
    old = {"status": challan.status, "amount_paid": str(challan.amount_paid)}
    if outstanding > 0:
        db.add(
            FeePayment(
                tenant_id=tenant_id,
                challan_id=challan.id,
                student_id=challan.student_id,
                amount=outstanding,
                payment_date=paid_at,
                payment_method=payment_method.value,
                notes=notes,
                received_by=received_by,
            )
        )
    challan.amount_paid = to_decimal(challan.total_amount)
    challan.status = ChallanStatus.paid.value
    challan.paid_date = paid_at
    await log_fee_audit(
        db, tenant_id, "fee_challans", challan.id,
        "PAYMENT",
        old,
        {"status": challan.status, "amount_paid": str(challan.amount_paid), "payment_method": payment_method.value},
        received_by,
    )
    return outstanding


async def record_payment(
    db: AsyncSession,
    tenant_id: UUID,
    challan_id: UUID,
    payload: PaymentCreate,
    received_by: Optional[UUID],
) -> PaymentResponse:
    """Append a receipt against a pending or overdue challan; the challan turns paid once fully covered."""
    if received_by is None:
        raise NotAuthenticatedError()
    challan = (
        await db.execute(
            select(FeeChallan).where(FeeChallan.id == challan_id, FeeChallan.tenant_id == tenant_id)
        )
    ).scalar_one_or_none()
    if not challan:
        raise ServiceError("Challan not found", status.HTTP_404_NOT_FOUND)
    if challan.status not in _UNPAID:
        raise ServiceError(f"Cannot record payment on {challan.status} challan", status.HTTP_400_BAD_REQUEST)

    outstanding = to_decimal(challan.total_amount) - to_decimal(challan.amount_paid)
    if payload.amount > outstanding:
        raise ServiceError(
            f"Payment of {payload.amount} exceeds outstanding balance {outstanding}",
            status.HTTP_400_BAD_REQUEST,
        )

    paid_at = payload.payment_date or datetime.now(timezone.utc)
    payment = FeePayment(
        tenant_id=tenant_id,
        challan_id=challan.id,
        student_id=challan.student_id,
        amount=payload.amount,
        payment_date=paid_at,
        payment_method=payload.payment_method.value,
        notes=payload.notes,
        received_by=received_by,
    )
    db.add(payment)
    old = {"status": challan.status, "amount_paid": str(challan.amount_paid)}
    challan.amount_paid = to_decimal(challan.amount_paid) + payload.amount
    if challan.amount_paid >= to_decimal(challan.total_amount):
        challan.status = ChallanStatus.paid.value
        challan.paid_date = paid_at
    await db.flush()
    await log_fee_audit(
        db, tenant_id, "fee_challans", challan.id,
        "PAYMENT",
        old,
        {"status": challan.status, "amount_paid": str(challan.amount_paid), "payment_id": str(payment.id)},
        received_by,
    )
    await db.commit()
    await db.refresh(payment)
    logger.info("Recorded payment %s of %s on challan %s", payment.id, payload.amount, challan.challan_number)
    return _payment_to_response(payment)


async def get_payment_history(db: AsyncSession, tenant_id: UUID, student_id: UUID) -> List[PaymentResponse]:
    rows = (
        await db.execute(
            select(FeePayment)
            .where(FeePayment.tenant_id == tenant_id, FeePayment.student_id == student_id)
            .order_by(FeePayment.payment_date.desc())
        )
    ).scalars().all()
    return [_payment_to_response(p) for p in rows]


async def get_total_paid(db: AsyncSession, tenant_id: UUID, student_id: UUID) -> Decimal:
    total = (
        await db.execute(
            select(func.coalesce(func.sum(FeePayment.amount), 0)).where(
                FeePayment.tenant_id == tenant_id, FeePayment.student_id == student_id
            )
        )
    ).scalar_one()
    return to_decimal(total)


async def mark_overdue_challans(db: AsyncSession, tenant_id: UUID, today: Optional[date] = None) -> int:
    """Flip pending challans past their due date to overdue. Returns the number of rows changed."""
    today = today or date.today()
    result = await db.execute(
        update(FeeChallan)
        .where(
            FeeChallan.tenant_id == tenant_id,
            FeeChallan.status == ChallanStatus.pending.value,
            FeeChallan.due_date < today,
        )
        .values(status=ChallanStatus.overdue.value)
        .execution_options(synchronize_session="fetch")
    )
    await db.commit()
    count = result.rowcount or 0
    if count:
        logger.info("Marked %d challan(s) overdue for tenant %s", count, tenant_id)
    return count


async def get_unpaid_students(db: AsyncSession, tenant_id: UUID, today: Optional[date] = None) -> UnpaidStudentsReport:
    """
    Students with pending or overdue challans, grouped per student.
    Most overdue first; is_defaulter once the oldest unpaid challan is past due.
    """
    today = today or date.today()
    rows = (
        await db.execute(
            select(
                FeeChallan.student_id,
                FeeChallan.total_amount,
                FeeChallan.amount_paid,
                FeeChallan.due_date,
                Student.name,
                Student.roll_number,
                Student.father_phone,
                SchoolClass.name.label("class_name"),
            )
            .join(Student, FeeChallan.student_id == Student.id)
            .outerjoin(SchoolClass, Student.class_id == SchoolClass.id)
            .where(FeeChallan.tenant_id == tenant_id, FeeChallan.status.in_(_UNPAID))
        )
    ).all()

    grouped: Dict[UUID, dict] = {}
    for r in rows:
        entry = grouped.setdefault(
            r.student_id,
            {
                "student_id": r.student_id,
                "name": r.name,
                "roll_number": r.roll_number,
                "class_name": r.class_name,
                "father_phone": r.father_phone,
                "total_unpaid": ZERO,
                "pending_challans_count": 0,
                "oldest_due_date": r.due_date,
            },
        )
        entry["total_unpaid"] += max(ZERO, to_decimal(r.total_amount) - to_decimal(r.amount_paid))
        entry["pending_challans_count"] += 1
        if r.due_date < entry["oldest_due_date"]:
            entry["oldest_due_date"] = r.due_date

    students = []
    for entry in grouped.values():
        days_overdue = max(0, (today - entry["oldest_due_date"]).days)
        students.append(UnpaidStudent(**entry, days_overdue=days_overdue, is_defaulter=days_overdue > 0))
    students.sort(key=lambda s: s.days_overdue, reverse=True)

    return UnpaidStudentsReport(
        students=students,
        total_students=len(students),
        total_unpaid=sum((s.total_unpaid for s in students), ZERO),
        critical_count=sum(1 for s in students if s.days_overdue > settings.critical_overdue_days),
    )


async def mark_student_paid(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    received_by: Optional[UUID],
    payment_method: PaymentMethod = PaymentMethod.CASH,
) -> MarkStudentPaidResult:
    """Settle every pending or overdue challan of one student in a single commit."""
    if received_by is None:
        raise NotAuthenticatedError()
    student = (
        await db.execute(select(Student.id).where(Student.id == student_id, Student.tenant_id == tenant_id))
    ).scalar_one_or_none()
    if student is None:
        raise ServiceError("Student not found", status.HTTP_404_NOT_FOUND)

    challans = (
        await db.execute(
            select(FeeChallan).where(
                FeeChallan.tenant_id == tenant_id,
                FeeChallan.student_id == student_id,
                FeeChallan.status.in_(_UNPAID),
            )
        )
    ).scalars().all()
    amount = ZERO
    for challan in challans:
        amount += await settle_challan(db, tenant_id, challan, payment_method, received_by)
    await db.commit()
    logger.info("Marked %d challan(s) paid for student %s", len(challans), student_id)
    return MarkStudentPaidResult(student_id=student_id, challans_paid=len(challans), amount=amount)
