"""Challan service: single, bulk, first-admission and regenerated challans; edit, cancel, listing."""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.api.v1.fees.audit_service import log_fee_audit
from schoolfees.api.v1.fees.calculations import (
    ZERO,
    calculate_challan_total,
    calculate_fees_from_structure,
    month_end_date,
    month_key,
    parse_month,
    to_decimal,
)
from schoolfees.api.v1.fees.resolver import resolve_fees_for_student
from schoolfees.api.v1.fees.schemas import FeeBreakdown
from schoolfees.core.config import settings
from schoolfees.core.enums import ChallanStatus, ChallanType, StudentStatus
from schoolfees.core.exceptions import NotAuthenticatedError, ServiceError
from schoolfees.core.models import FeeChallan, FeeStructure, Student
from schoolfees.core.schemas import BulkActionResult

from .numbering import next_challan_number
from .schemas import (
    ChallanGenerationResult,
    ChallanResponse,
    ChallanUpdate,
    RegenerationResult,
)

logger = logging.getLogger(__name__)


def _challan_to_response(c: FeeChallan, student_name: Optional[str] = None) -> ChallanResponse:
    return ChallanResponse(
        id=c.id,
        tenant_id=c.tenant_id,
        challan_number=c.challan_number,
        student_id=c.student_id,
        student_name=student_name,
        month=c.month,
        monthly_fee=to_decimal(c.monthly_fee),
        exam_fee=to_decimal(c.exam_fee),
        admission_fee=to_decimal(c.admission_fee),
        other_fees=to_decimal(c.other_fees),
        discount=to_decimal(c.discount),
        total_amount=to_decimal(c.total_amount),
        amount_paid=to_decimal(c.amount_paid),
        status=c.status,
        challan_type=c.challan_type,
        due_date=c.due_date,
        paid_date=c.paid_date,
        notes=c.notes,
        fee_structure_id=c.fee_structure_id,
        generated_by=c.generated_by,
        last_edited_by=c.last_edited_by,
        last_edited_at=c.last_edited_at,
        edit_count=c.edit_count or 0,
        created_at=c.created_at,
        updated_at=c.updated_at,
    )


def _amounts(c: FeeChallan) -> dict:
    return {
        "monthly_fee": str(c.monthly_fee),
        "exam_fee": str(c.exam_fee),
        "admission_fee": str(c.admission_fee),
        "other_fees": str(c.other_fees),
        "discount": str(c.discount),
        "total_amount": str(c.total_amount),
        "month": c.month,
        "due_date": c.due_date.isoformat() if c.due_date else None,
        "status": c.status,
    }


async def _get_student(db: AsyncSession, tenant_id: UUID, student_id: UUID) -> Student:
    student = (
        await db.execute(select(Student).where(Student.id == student_id, Student.tenant_id == tenant_id))
    ).scalar_one_or_none()
    if not student:
        raise ServiceError("Student not found", status.HTTP_404_NOT_FOUND)
    return student


def _require_billable(student: Student) -> None:
    if student.status != StudentStatus.ACTIVE.value:
        raise ServiceError(f"Student {student.name} is not active", status.HTTP_400_BAD_REQUEST)
    if student.class_id is None:
        raise ServiceError(f"Student {student.name} has no class assigned", status.HTTP_400_BAD_REQUEST)


async def get_challan_row(db: AsyncSession, tenant_id: UUID, challan_id: UUID) -> FeeChallan:
    challan = (
        await db.execute(
            select(FeeChallan).where(FeeChallan.id == challan_id, FeeChallan.tenant_id == tenant_id)
        )
    ).scalar_one_or_none()
    if not challan:
        raise ServiceError("Challan not found", status.HTTP_404_NOT_FOUND)
    return challan


async def challan_exists(db: AsyncSession, tenant_id: UUID, student_id: UUID, month: str) -> bool:
    """True if the student already has a non-cancelled challan for the month."""
    stmt = (
        select(FeeChallan.id)
        .where(
            FeeChallan.tenant_id == tenant_id,
            FeeChallan.student_id == student_id,
            FeeChallan.month == month,
            FeeChallan.status != ChallanStatus.cancelled.value,
        )
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none() is not None


async def _insert_challan(
    db: AsyncSession,
    tenant_id: UUID,
    student: Student,
    fees: FeeBreakdown,
    month: str,
    operator_id: UUID,
    *,
    include_exam_fee: bool,
    include_admission_fee: bool,
    due_date: date,
    notes: Optional[str],
    challan_type: ChallanType,
) -> FeeChallan:
    exam_fee = fees.exam_fee if include_exam_fee else ZERO
    admission_fee = fees.admission_fee if include_admission_fee else ZERO
    other_fees = fees.other_fee
    challan = FeeChallan(
        tenant_id=tenant_id,
        challan_number=await next_challan_number(db, tenant_id, month),
        student_id=student.id,
        month=month,
        monthly_fee=fees.tuition_fee,
        exam_fee=exam_fee,
        admission_fee=admission_fee,
        other_fees=other_fees,
        discount=fees.discount,
        total_amount=calculate_challan_total(fees.tuition_fee, exam_fee, admission_fee, other_fees, fees.discount),
        amount_paid=ZERO,
        status=ChallanStatus.pending.value,
        challan_type=challan_type.value,
        due_date=due_date,
        notes=notes,
        generated_by=operator_id,
        edit_count=0,
    )
    db.add(challan)
    await db.flush()
    await log_fee_audit(
        db, tenant_id, "fee_challans", challan.id,
        "CREATE",
        None,
        {**_amounts(challan), "challan_number": challan.challan_number, "fee_source": fees.source.value},
        operator_id,
    )
    return challan


async def _commit_new_challan(db: AsyncSession, challan: FeeChallan, student_name: str) -> ChallanResponse:
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Challan number already in use, retry", status.HTTP_409_CONFLICT)
    await db.refresh(challan)
    return _challan_to_response(challan, student_name)


async def create_challan(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    month: str,
    operator_id: Optional[UUID],
    include_exam_fee: bool = False,
    include_admission_fee: bool = False,
    due_date: Optional[date] = None,
    notes: Optional[str] = None,
) -> ChallanResponse:
    """Generate one pending challan for a student and month. Raises ServiceError on any precondition failure."""
    if operator_id is None:
        raise NotAuthenticatedError()
    parse_month(month)
    student = await _get_student(db, tenant_id, student_id)
    _require_billable(student)
    fees = await resolve_fees_for_student(db, student)
    challan = await _insert_challan(
        db, tenant_id, student, fees, month, operator_id,
        include_exam_fee=include_exam_fee,
        include_admission_fee=include_admission_fee,
        due_date=due_date or month_end_date(month),
        notes=notes,
        challan_type=ChallanType.monthly,
    )
    return await _commit_new_challan(db, challan, student.name)


async def generate_challan(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    month: str,
    operator_id: Optional[UUID],
    include_exam_fee: bool = False,
    include_admission_fee: bool = False,
    due_date: Optional[date] = None,
    notes: Optional[str] = None,
) -> ChallanGenerationResult:
    """Same as create_challan but never raises: failures come back as success=False with the error."""
    try:
        challan = await create_challan(
            db, tenant_id, student_id, month, operator_id,
            include_exam_fee=include_exam_fee,
            include_admission_fee=include_admission_fee,
            due_date=due_date,
            notes=notes,
        )
    except ServiceError as e:
        await db.rollback()
        logger.warning("Challan generation failed for student %s (%s): %s", student_id, month, e.message)
        return ChallanGenerationResult(success=False, error=e.message)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Database error generating challan for student %s (%s): %s", student_id, month, e)
        return ChallanGenerationResult(success=False, error=f"Database error: {e}")
    return ChallanGenerationResult(success=True, data=challan)


async def _bulk_targets(
    db: AsyncSession,
    tenant_id: UUID,
    student_ids: List[UUID],
    class_ids: List[UUID],
) -> Tuple[List[Tuple[UUID, str]], List[UUID]]:
    """(id, name) pairs to bill, in caller order for explicit ids, plus ids that were not found."""
    if student_ids:
        ids = list(dict.fromkeys(student_ids))
        rows = (
            await db.execute(
                select(Student.id, Student.name).where(Student.id.in_(ids), Student.tenant_id == tenant_id)
            )
        ).all()
        names = {r.id: r.name for r in rows}
        return [(i, names[i]) for i in ids if i in names], [i for i in ids if i not in names]

    stmt = select(Student.id, Student.name).where(
        Student.tenant_id == tenant_id,
        Student.status == StudentStatus.ACTIVE.value,
    )
    if class_ids:
        stmt = stmt.where(Student.class_id.in_(class_ids))
    rows = (await db.execute(stmt.order_by(Student.name))).all()
    return [(r.id, r.name) for r in rows], []


async def generate_challans_bulk(
    db: AsyncSession,
    tenant_id: UUID,
    month: str,
    operator_id: Optional[UUID],
    student_ids: Optional[List[UUID]] = None,
    class_ids: Optional[List[UUID]] = None,
    include_exam_fee: bool = False,
    skip_existing: bool = False,
) -> BulkActionResult:
    """
    Generate challans one student at a time. Best effort: a failed student is recorded and the loop continues.
    Without skip_existing nothing stops a second challan for the same student and month.
    """
    result = BulkActionResult()
    if operator_id is None:
        result.errors.append("User not authenticated")
        return result
    try:
        parse_month(month)
    except ServiceError as e:
        result.errors.append(e.message)
        return result

    targets, missing = await _bulk_targets(db, tenant_id, student_ids or [], class_ids or [])
    for sid in missing:
        result.record_failure(f"Student {sid} not found")

    for sid, name in targets:
        if skip_existing and await challan_exists(db, tenant_id, sid, month):
            result.record_failure(f"Challan already exists for {name}")
            continue
        outcome = await generate_challan(
            db, tenant_id, sid, month, operator_id, include_exam_fee=include_exam_fee
        )
        if outcome.success:
            result.record_success()
        else:
            result.record_failure(f"{name}: {outcome.error}")

    logger.info(
        "Bulk challan generation for %s: %d succeeded, %d failed",
        month, result.success, result.failed,
    )
    return result


async def generate_first_challan(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    operator_id: Optional[UUID],
    month: Optional[str] = None,
    today: Optional[date] = None,
) -> ChallanResponse:
    """
    First challan after admission approval: tuition + admission + exam + other fees, less discount.
    Due FIRST_CHALLAN_DUE_DAYS after today. Refused when any live challan exists for the month.
    """
    if operator_id is None:
        raise NotAuthenticatedError()
    today = today or date.today()
    month = month or month_key(today)
    parse_month(month)
    student = await _get_student(db, tenant_id, student_id)
    _require_billable(student)
    if await challan_exists(db, tenant_id, student_id, month):
        raise ServiceError("Challan already exists for this month", status.HTTP_409_CONFLICT)

    fees = await resolve_fees_for_student(db, student)
    year, mon = parse_month(month)
    challan = await _insert_challan(
        db, tenant_id, student, fees, month, operator_id,
        include_exam_fee=True,
        include_admission_fee=True,
        due_date=today + timedelta(days=settings.first_challan_due_days),
        notes=f"First challan - New admission for {date(year, mon, 1):%B %Y}",
        challan_type=ChallanType.first_admission,
    )
    return await _commit_new_challan(db, challan, student.name)


async def regenerate_challans_with_new_fees(
    db: AsyncSession,
    tenant_id: UUID,
    student_ids: List[UUID],
    month: str,
    due_date: date,
    fee_structure_id: UUID,
    operator_id: Optional[UUID],
) -> RegenerationResult:
    """
    Replace the students' pending challans for a month with ones computed from the given fee structure.
    Delete and insert share one transaction: either every student gets a fresh challan or nothing changes.
    Students whose challan for the month is paid, overdue or partly paid are skipped and keep it; cancelled challans are ignored.
    """
    if operator_id is None:
        raise NotAuthenticatedError()
    parse_month(month)
    if not student_ids:
        raise ServiceError("No students selected", status.HTTP_400_BAD_REQUEST)
    structure = (
        await db.execute(
            select(FeeStructure).where(FeeStructure.id == fee_structure_id, FeeStructure.tenant_id == tenant_id)
        )
    ).scalar_one_or_none()
    if not structure:
        raise ServiceError("Fee structure not found", status.HTTP_404_NOT_FOUND)

    ids = list(dict.fromkeys(student_ids))
    result = RegenerationResult()
    try:
        students = (
            await db.execute(select(Student).where(Student.id.in_(ids), Student.tenant_id == tenant_id))
        ).scalars().all()
        found = {s.id for s in students}
        result.missing = [i for i in ids if i not in found]

        live = (
            await db.execute(
                select(FeeChallan.id, FeeChallan.student_id, FeeChallan.status, FeeChallan.amount_paid).where(
                    FeeChallan.tenant_id == tenant_id,
                    FeeChallan.student_id.in_(list(found)),
                    FeeChallan.month == month,
                    FeeChallan.status != ChallanStatus.cancelled.value,
                )
            )
        ).all()
        # paid, overdue or partly paid: the month is already billed and money may be owed against it
        settled = {
            c.student_id
            for c in live
            if c.status != ChallanStatus.pending.value or to_decimal(c.amount_paid) > 0
        }
        result.skipped = [s.id for s in students if s.id in settled]
        deletable = [c.id for c in live if c.student_id not in settled]

        if deletable:
            deleted = await db.execute(
                delete(FeeChallan)
                .where(
                    FeeChallan.id.in_(deletable),
                    FeeChallan.status == ChallanStatus.pending.value,
                )
                .execution_options(synchronize_session="fetch")
            )
            result.deleted = deleted.rowcount or 0

        for student in students:
            if student.id in settled:
                continue
            fees = calculate_fees_from_structure(structure, discount=to_decimal(student.fee_discount))
            challan = FeeChallan(
                tenant_id=tenant_id,
                challan_number=await next_challan_number(db, tenant_id, month),
                student_id=student.id,
                month=month,
                monthly_fee=fees.tuition_fee,
                exam_fee=fees.exam_fee,
                admission_fee=fees.admission_fee,
                other_fees=fees.other_fee,
                discount=fees.discount,
                total_amount=fees.total,
                amount_paid=ZERO,
                status=ChallanStatus.pending.value,
                challan_type=ChallanType.regenerated.value,
                due_date=due_date,
                fee_structure_id=structure.id,
                generated_by=operator_id,
                edit_count=0,
            )
            db.add(challan)
            await db.flush()
            await log_fee_audit(
                db, tenant_id, "fee_challans", challan.id,
                "REGENERATE",
                None,
                {**_amounts(challan), "challan_number": challan.challan_number, "fee_structure_id": str(structure.id)},
                operator_id,
            )
            result.count += 1
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Error regenerating challans for %s: %s", month, e)
        raise ServiceError(f"Failed to regenerate challans: {e}", status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.info(
        "Regenerated %d challan(s) for %s from fee structure %s (deleted %d, skipped %d)",
        result.count, month, fee_structure_id, result.deleted, len(result.skipped),
    )
    return result


async def update_challan(
    db: AsyncSession,
    tenant_id: UUID,
    challan_id: UUID,
    payload: ChallanUpdate,
    operator_id: Optional[UUID],
) -> ChallanResponse:
    """Edit a pending challan; unspecified fields keep their current value and the total is recomputed."""
    if operator_id is None:
        raise NotAuthenticatedError()
    challan = await get_challan_row(db, tenant_id, challan_id)
    if challan.status != ChallanStatus.pending.value:
        raise ServiceError(
            f"Cannot edit {challan.status} challan. Only pending challans can be edited.",
            status.HTTP_400_BAD_REQUEST,
        )
    if payload.month is not None:
        parse_month(payload.month)

    old = {**_amounts(challan), "challan_number": challan.challan_number}
    if payload.month is not None and payload.month != challan.month:
        # challan numbers carry the billing month
        challan.challan_number = await next_challan_number(db, tenant_id, payload.month)
    for field in ("monthly_fee", "admission_fee", "exam_fee", "other_fees", "discount", "month", "due_date"):
        value = getattr(payload, field)
        if value is not None:
            setattr(challan, field, value)
    if "notes" in payload.model_fields_set:
        challan.notes = payload.notes
    challan.total_amount = calculate_challan_total(
        challan.monthly_fee, challan.exam_fee, challan.admission_fee, challan.other_fees, challan.discount
    )
    challan.last_edited_by = operator_id
    challan.last_edited_at = datetime.now(timezone.utc)
    challan.edit_count = (challan.edit_count or 0) + 1
    new = {**_amounts(challan), "challan_number": challan.challan_number}
    await log_fee_audit(db, tenant_id, "fee_challans", challan.id, "UPDATE", old, new, operator_id)
    await db.commit()
    await db.refresh(challan)
    return _challan_to_response(challan)


async def cancel_challan(
    db: AsyncSession,
    tenant_id: UUID,
    challan_id: UUID,
    operator_id: Optional[UUID],
) -> ChallanResponse:
    if operator_id is None:
        raise NotAuthenticatedError()
    challan = await get_challan_row(db, tenant_id, challan_id)
    if challan.status != ChallanStatus.pending.value:
        raise ServiceError(
            f"Cannot cancel {challan.status} challan. Only pending challans can be cancelled.",
            status.HTTP_400_BAD_REQUEST,
        )
    challan.status = ChallanStatus.cancelled.value
    await log_fee_audit(
        db, tenant_id, "fee_challans", challan.id,
        "CANCEL",
        {"status": ChallanStatus.pending.value},
        {"status": ChallanStatus.cancelled.value},
        operator_id,
    )
    await db.commit()
    await db.refresh(challan)
    return _challan_to_response(challan)


async def get_challan(
    db: AsyncSession,
    tenant_id: UUID,
    challan_id: UUID,
) -> Optional[ChallanResponse]:
    row = (
        await db.execute(
            select(FeeChallan, Student.name)
            .join(Student, FeeChallan.student_id == Student.id)
            .where(FeeChallan.id == challan_id, FeeChallan.tenant_id == tenant_id)
        )
    ).first()
    if not row:
        return None
    challan, student_name = row
    return _challan_to_response(challan, student_name)


async def list_challans(
    db: AsyncSession,
    tenant_id: UUID,
    month: Optional[str] = None,
    status_filter: Optional[str] = None,
    student_id: Optional[UUID] = None,
    class_id: Optional[UUID] = None,
) -> List[ChallanResponse]:
    stmt = (
        select(FeeChallan, Student.name)
        .join(Student, FeeChallan.student_id == Student.id)
        .where(FeeChallan.tenant_id == tenant_id)
    )
    if month is not None:
        stmt = stmt.where(FeeChallan.month == month)
    if status_filter:
        stmt = stmt.where(FeeChallan.status == status_filter)
    if student_id is not None:
        stmt = stmt.where(FeeChallan.student_id == student_id)
    if class_id is not None:
        stmt = stmt.where(Student.class_id == class_id)
    stmt = stmt.order_by(FeeChallan.month.desc(), FeeChallan.challan_number)
    rows = (await db.execute(stmt)).all()
    return [_challan_to_response(c, name) for c, name in rows]
