"""Fee structure service: versioned class fee schedules."""

import logging
from datetime import date, datetime
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.api.v1.fees.audit_service import log_fee_audit
from schoolfees.api.v1.fees.calculations import to_decimal
from schoolfees.core.exceptions import NotAuthenticatedError, ServiceError
from schoolfees.core.models import FeeStructure, SchoolClass

from .schemas import FeeStructureCreate, FeeStructureResponse

logger = logging.getLogger(__name__)


def _fs_to_response(fs: FeeStructure, class_name: Optional[str] = None) -> FeeStructureResponse:
    return FeeStructureResponse(
        id=fs.id,
        tenant_id=fs.tenant_id,
        class_id=fs.class_id,
        class_name=class_name,
        tuition_fee=to_decimal(fs.tuition_fee),
        admission_fee=to_decimal(fs.admission_fee),
        exam_fee=to_decimal(fs.exam_fee),
        other_fee=to_decimal(fs.other_fee),
        version=fs.version,
        is_active=fs.is_active,
        effective_from=fs.effective_from,
        created_by=fs.created_by,
        created_at=fs.created_at,
        updated_at=fs.updated_at,
    )


async def get_active_structure_row(
    db: AsyncSession,
    tenant_id: UUID,
    class_id: UUID,
) -> Optional[FeeStructure]:
    # Newest version first in case the one-active-row rule was ever broken
    stmt = (
        select(FeeStructure)
        .where(
            FeeStructure.tenant_id == tenant_id,
            FeeStructure.class_id == class_id,
            FeeStructure.is_active.is_(True),
        )
        .order_by(FeeStructure.version.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def create_fee_structure_version(
    db: AsyncSession,
    tenant_id: UUID,
    payload: FeeStructureCreate,
    created_by: Optional[UUID],
) -> FeeStructureResponse:
    """Copy the class fee schedule forward: deactivate the active version and insert version + 1."""
    if created_by is None:
        raise NotAuthenticatedError()
    cl = await db.get(SchoolClass, payload.class_id)
    if not cl or cl.tenant_id != tenant_id:
        raise ServiceError("Invalid class", status.HTTP_400_BAD_REQUEST)

    latest_version = (
        await db.execute(
            select(func.coalesce(func.max(FeeStructure.version), 0)).where(
                FeeStructure.tenant_id == tenant_id,
                FeeStructure.class_id == payload.class_id,
            )
        )
    ).scalar() or 0

    previous = await get_active_structure_row(db, tenant_id, payload.class_id)
    try:
        active_rows = (
            await db.execute(
                select(FeeStructure).where(
                    FeeStructure.tenant_id == tenant_id,
                    FeeStructure.class_id == payload.class_id,
                    FeeStructure.is_active.is_(True),
                )
            )
        ).scalars().all()
        for row in active_rows:
            row.is_active = False

        fs = FeeStructure(
            tenant_id=tenant_id,
            class_id=payload.class_id,
            tuition_fee=payload.tuition_fee,
            admission_fee=payload.admission_fee,
            exam_fee=payload.exam_fee,
            other_fee=payload.other_fee,
            version=latest_version + 1,
            is_active=True,
            effective_from=payload.effective_from or date.today(),
            created_by=created_by,
        )
        db.add(fs)
        await db.flush()
        await log_fee_audit(
            db, tenant_id, "fee_structures", fs.id,
            "CREATE",
            {"previous_id": str(previous.id), "version": previous.version} if previous else None,
            {
                "class_id": str(payload.class_id),
                "version": fs.version,
                "tuition_fee": str(payload.tuition_fee),
                "admission_fee": str(payload.admission_fee),
                "exam_fee": str(payload.exam_fee),
                "other_fee": str(payload.other_fee),
            },
            created_by,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError(
            "Another fee structure version was created concurrently, retry",
            status.HTTP_409_CONFLICT,
        )
    await db.refresh(fs)
    logger.info("Fee structure v%s created for class %s", fs.version, payload.class_id)
    return _fs_to_response(fs, cl.name)


async def get_active_fee_structure(
    db: AsyncSession,
    tenant_id: UUID,
    class_id: UUID,
) -> Optional[FeeStructureResponse]:
    fs = await get_active_structure_row(db, tenant_id, class_id)
    if not fs:
        return None
    cl = await db.get(SchoolClass, class_id)
    return _fs_to_response(fs, cl.name if cl else None)


async def get_fee_structure(
    db: AsyncSession,
    tenant_id: UUID,
    fee_structure_id: UUID,
) -> Optional[FeeStructureResponse]:
    row = (
        await db.execute(
            select(FeeStructure, SchoolClass.name)
            .outerjoin(SchoolClass, FeeStructure.class_id == SchoolClass.id)
            .where(FeeStructure.id == fee_structure_id, FeeStructure.tenant_id == tenant_id)
        )
    ).first()
    if not row:
        return None
    fs, class_name = row
    return _fs_to_response(fs, class_name)


async def get_fee_structure_history(
    db: AsyncSession,
    tenant_id: UUID,
    class_id: UUID,
) -> List[FeeStructureResponse]:
    stmt = (
        select(FeeStructure, SchoolClass.name)
        .outerjoin(SchoolClass, FeeStructure.class_id == SchoolClass.id)
        .where(FeeStructure.tenant_id == tenant_id, FeeStructure.class_id == class_id)
        .order_by(FeeStructure.version.desc())
    )
    rows = (await db.execute(stmt)).all()
    return [_fs_to_response(fs, class_name) for fs, class_name in rows]


async def get_active_fee_structures_by_classes(
    db: AsyncSession,
    tenant_id: UUID,
    class_ids: List[UUID],
) -> Dict[UUID, FeeStructureResponse]:
    if not class_ids:
        return {}
    stmt = (
        select(FeeStructure, SchoolClass.name)
        .outerjoin(SchoolClass, FeeStructure.class_id == SchoolClass.id)
        .where(
            FeeStructure.tenant_id == tenant_id,
            FeeStructure.class_id.in_(class_ids),
            FeeStructure.is_active.is_(True),
        )
        .order_by(FeeStructure.version)
    )
    rows = (await db.execute(stmt)).all()
    # Ascending order: the newest active version wins if more than one exists
    return {fs.class_id: _fs_to_response(fs, class_name) for fs, class_name in rows}


async def has_fee_structure_changed(
    db: AsyncSession,
    tenant_id: UUID,
    class_id: UUID,
    since: datetime,
) -> bool:
    stmt = (
        select(FeeStructure.id)
        .where(
            FeeStructure.tenant_id == tenant_id,
            FeeStructure.class_id == class_id,
            FeeStructure.updated_at >= since,
        )
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none() is not None
