"""
Resolve the effective fees for a student.
Tuition: custom override -> legacy custom_fee -> class default -> active fee structure.
Admission / exam / other fees always come from the student's admission-time snapshot.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.api.v1.fee_structures.service import get_active_structure_row
from schoolfees.core.enums import FeeSource
from schoolfees.core.exceptions import FeeResolutionError
from schoolfees.core.models import FeeStructure, SchoolClass, Student

from .calculations import ZERO, resolve_tuition, to_decimal
from .schemas import FeeBreakdown

logger = logging.getLogger(__name__)


def build_fee_breakdown(
    student: Student,
    school_class: Optional[SchoolClass] = None,
    structure: Optional[FeeStructure] = None,
) -> FeeBreakdown:
    tuition_fee, source = resolve_tuition(student, school_class, structure)
    discount = to_decimal(student.fee_discount)
    monthly_fee = max(ZERO, tuition_fee - discount)
    return FeeBreakdown(
        student_id=student.id,
        tuition_fee=tuition_fee,
        admission_fee=to_decimal(student.original_admission_fee),
        exam_fee=to_decimal(student.original_exam_fee),
        other_fee=to_decimal(student.original_other_fee),
        discount=discount,
        monthly_fee=monthly_fee,
        total=monthly_fee,
        source=source,
        use_custom_fees=bool(student.use_custom_fees),
    )


async def resolve_fees_for_student(
    db: AsyncSession,
    student: Student,
    use_structure_fallback: bool = True,
) -> FeeBreakdown:
    """Resolve fees for an already-loaded student. Reads the class and, only if needed, the active fee structure."""
    try:
        school_class = await db.get(SchoolClass, student.class_id) if student.class_id else None
        breakdown = build_fee_breakdown(student, school_class)
        if (
            breakdown.source == FeeSource.STRUCTURE
            and use_structure_fallback
            and student.class_id is not None
        ):
            structure = await get_active_structure_row(db, student.tenant_id, student.class_id)
            if structure is not None:
                breakdown = build_fee_breakdown(student, school_class, structure)
    except SQLAlchemyError as e:
        logger.error("Error resolving fees for student %s: %s", student.id, e)
        raise FeeResolutionError(f"Failed to fetch student fees: {e}", 500) from e
    return breakdown


async def resolve_student_fees(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    use_structure_fallback: bool = True,
) -> FeeBreakdown:
    """
    Return the fee breakdown for a student.
    Raises FeeResolutionError when the student is missing or the read fails, so an all-zero
    breakdown always means no fee is configured.
    """
    try:
        student = (
            await db.execute(
                select(Student).where(Student.id == student_id, Student.tenant_id == tenant_id)
            )
        ).scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error("Error fetching student %s for fee breakdown: %s", student_id, e)
        raise FeeResolutionError(f"Failed to fetch student fees: {e}", 500) from e
    if not student:
        logger.warning("Fee breakdown requested for unknown student %s", student_id)
        raise FeeResolutionError(f"Student not found with ID: {student_id}")
    return await resolve_fees_for_student(db, student, use_structure_fallback)
