"""Fees service: student fee settings, bulk fee update, class-default snapshots. Financial logic with audit."""

import logging
from decimal import Decimal
from typing import Dict, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.api.v1.fee_structures.service import get_active_structure_row
from schoolfees.core.enums import StudentStatus
from schoolfees.core.exceptions import NotAuthenticatedError, ServiceError
from schoolfees.core.models import SchoolClass, Student
from schoolfees.core.schemas import BulkActionResult

from .audit_service import log_fee_audit
from .calculations import to_decimal
from .schemas import BulkStudentFeeUpdate, StudentFeeResponse, StudentFeeUpdate

logger = logging.getLogger(__name__)

_FEE_FIELDS = ("custom_tuition_fee", "use_custom_fees", "fee_discount", "custom_fee")


def _student_to_response(s: Student) -> StudentFeeResponse:
    return StudentFeeResponse(
        id=s.id,
        tenant_id=s.tenant_id,
        name=s.name,
        class_id=s.class_id,
        status=s.status,
        original_tuition_fee=to_decimal(s.original_tuition_fee),
        original_admission_fee=to_decimal(s.original_admission_fee),
        original_exam_fee=to_decimal(s.original_exam_fee),
        original_other_fee=to_decimal(s.original_other_fee),
        custom_tuition_fee=None if s.custom_tuition_fee is None else to_decimal(s.custom_tuition_fee),
        use_custom_fees=bool(s.use_custom_fees),
        custom_fee=None if s.custom_fee is None else to_decimal(s.custom_fee),
        fee_discount=to_decimal(s.fee_discount),
        updated_at=s.updated_at,
    )


def _fee_snapshot(s: Student) -> Dict[str, Optional[str]]:
    out: Dict[str, Optional[str]] = {}
    for field in _FEE_FIELDS:
        val = getattr(s, field)
        out[field] = None if val is None else str(val)
    return out


async def _get_student(db: AsyncSession, tenant_id: UUID, student_id: UUID) -> Student:
    student = (
        await db.execute(select(Student).where(Student.id == student_id, Student.tenant_id == tenant_id))
    ).scalar_one_or_none()
    if not student:
        raise ServiceError("Student not found", status.HTTP_404_NOT_FOUND)
    return student


def _apply_fee_updates(student: Student, changes: dict) -> None:
    for field, value in changes.items():
        if field == "fee_discount" and value is None:
            value = Decimal("0")
        if field == "use_custom_fees" and value is None:
            value = False
        setattr(student, field, value)


async def update_student_fees(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    payload: StudentFeeUpdate,
    changed_by: Optional[UUID],
) -> StudentFeeResponse:
    if changed_by is None:
        raise NotAuthenticatedError()
    student = await _get_student(db, tenant_id, student_id)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return _student_to_response(student)
    old = _fee_snapshot(student)
    _apply_fee_updates(student, changes)
    await log_fee_audit(db, tenant_id, "students", student.id, "UPDATE", old, _fee_snapshot(student), changed_by)
    await db.commit()
    await db.refresh(student)
    return _student_to_response(student)


async def bulk_update_student_fees(
    db: AsyncSession,
    tenant_id: UUID,
    payload: BulkStudentFeeUpdate,
    changed_by: Optional[UUID],
) -> BulkActionResult:
    """Apply one fee settings change to many students. Inactive and unknown students are reported as failed."""
    result = BulkActionResult()
    if changed_by is None:
        result.errors.append("User not authenticated")
        return result
    changes = payload.updates.model_dump(exclude_unset=True)
    if not changes:
        result.errors.append("No fee changes supplied")
        return result

    ids = list(dict.fromkeys(payload.student_ids))
    students = (
        await db.execute(select(Student).where(Student.id.in_(ids), Student.tenant_id == tenant_id))
    ).scalars().all()
    by_id = {s.id: s for s in students}

    missing = [i for i in ids if i not in by_id]
    if missing:
        result.record_failure(f"{len(missing)} student(s) not found", len(missing))
    inactive = [s for s in students if s.status != StudentStatus.ACTIVE.value]
    if inactive:
        result.record_failure(f"{len(inactive)} student(s) are not active and cannot be updated", len(inactive))

    eligible = [s for s in students if s.status == StudentStatus.ACTIVE.value]
    if not eligible:
        return result

    for student in eligible:
        old = _fee_snapshot(student)
        _apply_fee_updates(student, changes)
        await log_fee_audit(db, tenant_id, "students", student.id, "UPDATE", old, _fee_snapshot(student), changed_by)
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Bulk fee update failed for %d student(s): %s", len(eligible), e)
        result.record_failure(f"Failed to update fees: {e}", len(eligible))
        return result
    result.record_success(len(eligible))
    logger.info("Bulk fee update: %d updated, %d failed", result.success, result.failed)
    return result


async def populate_fees_from_class(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    changed_by: Optional[UUID],
) -> StudentFeeResponse:
    """
    Snapshot the class defaults onto the student's original_* fee fields (admission approval).
    Active fee structure wins; the class's own monthly/exam fee is the fallback.
    """
    if changed_by is None:
        raise NotAuthenticatedError()
    student = await _get_student(db, tenant_id, student_id)
    if student.class_id is None:
        raise ServiceError("Student has no class assigned", status.HTTP_400_BAD_REQUEST)
    school_class = await db.get(SchoolClass, student.class_id)
    structure = await get_active_structure_row(db, tenant_id, student.class_id)
    if structure is None and (school_class is None or school_class.monthly_fee is None):
        raise ServiceError(
            "No active fee structure found for this class. Please set up the fee structure first.",
            status.HTTP_400_BAD_REQUEST,
        )

    old = {
        "original_tuition_fee": str(student.original_tuition_fee),
        "original_admission_fee": str(student.original_admission_fee),
        "original_exam_fee": str(student.original_exam_fee),
        "original_other_fee": str(student.original_other_fee),
    }
    if structure is not None:
        student.original_tuition_fee = to_decimal(structure.tuition_fee)
        student.original_admission_fee = to_decimal(structure.admission_fee)
        student.original_exam_fee = to_decimal(structure.exam_fee)
        student.original_other_fee = to_decimal(structure.other_fee)
    else:
        student.original_tuition_fee = to_decimal(school_class.monthly_fee)
        student.original_exam_fee = to_decimal(school_class.exam_fee)
    await log_fee_audit(
        db, tenant_id, "students", student.id,
        "UPDATE",
        old,
        {
            "original_tuition_fee": str(student.original_tuition_fee),
            "original_admission_fee": str(student.original_admission_fee),
            "original_exam_fee": str(student.original_exam_fee),
            "original_other_fee": str(student.original_other_fee),
            "fee_structure_id": str(structure.id) if structure is not None else None,
        },
        changed_by,
    )
    await db.commit()
    await db.refresh(student)
    return _student_to_response(student)
