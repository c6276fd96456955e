"""
Bulk challan actions: edit, delete, mark paid, reminders.
Each action partitions the requested ids into eligible and ineligible rows, reports the ineligible
and unknown ones as failed, and applies the change to eligible rows in one commit.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.api.v1.fees.audit_service import log_fee_audit
from schoolfees.api.v1.fees.calculations import calculate_challan_total
from schoolfees.api.v1.payments.service import settle_challan
from schoolfees.core.config import settings
from schoolfees.core.enums import ChallanStatus, PaymentMethod, ReminderType
from schoolfees.core.models import FeeChallan, ReminderHistory
from schoolfees.core.schemas import BulkActionResult

from .schemas import BulkEditRequest

logger = logging.getLogger(__name__)


async def _partition_challans(
    db: AsyncSession,
    tenant_id: UUID,
    challan_ids: Sequence[UUID],
    allowed_statuses: Iterable[str],
) -> Tuple[List[FeeChallan], List[FeeChallan], int]:
    """Return (eligible, ineligible, missing_count) for the requested ids within the tenant."""
    ids = list(dict.fromkeys(challan_ids))
    rows = (
        await db.execute(
            select(FeeChallan).where(FeeChallan.id.in_(ids), FeeChallan.tenant_id == tenant_id)
        )
    ).scalars().all()
    allowed = set(allowed_statuses)
    eligible = [c for c in rows if c.status in allowed]
    ineligible = [c for c in rows if c.status not in allowed]
    return eligible, ineligible, len(ids) - len(rows)


def _start(result: BulkActionResult, operator_id: Optional[UUID]) -> bool:
    if operator_id is None:
        result.errors.append("User not authenticated")
        return False
    return True


def _report_rejects(result: BulkActionResult, ineligible: List[FeeChallan], missing: int, reason: str) -> None:
    if missing:
        result.record_failure(f"{missing} challan(s) not found", missing)
    if ineligible:
        result.record_failure(f"{len(ineligible)} challan(s) {reason}", len(ineligible))


async def _fail_bulk(
    db: AsyncSession, result: BulkActionResult, count: int, action: str, error: SQLAlchemyError
) -> BulkActionResult:
    await db.rollback()
    logger.error("Bulk %s failed for %d challan(s): %s", action, count, error)
    result.record_failure(f"Failed to {action} challans: {error}", count)
    return result


async def _commit_bulk(db: AsyncSession, result: BulkActionResult, count: int, action: str) -> BulkActionResult:
    try:
        await db.commit()
    except SQLAlchemyError as e:
        return await _fail_bulk(db, result, count, action, e)
    result.record_success(count)
    logger.info("Bulk %s: %d succeeded, %d failed", action, result.success, result.failed)
    return result


async def bulk_edit_challans(
    db: AsyncSession,
    tenant_id: UUID,
    payload: BulkEditRequest,
    operator_id: Optional[UUID],
) -> BulkActionResult:
    """
    Apply discount / due date / notes to pending challans.
    A discount change recomputes each challan's total from its own components.
    """
    result = BulkActionResult()
    if not _start(result, operator_id):
        return result
    changes = {
        field: value
        for field, value in payload.model_dump(include={"discount", "due_date", "notes"}, exclude_unset=True).items()
        # discount and due_date are NOT NULL; an explicit null means "leave unchanged"
        if value is not None or field == "notes"
    }
    if not changes:
        result.errors.append("No changes supplied")
        return result

    eligible, ineligible, missing = await _partition_challans(
        db, tenant_id, payload.challan_ids, [ChallanStatus.pending.value]
    )
    _report_rejects(result, ineligible, missing, "are not pending and cannot be edited")
    if not eligible:
        return result

    now = datetime.now(timezone.utc)
    if "discount" not in changes:
        try:
            await db.execute(
                update(FeeChallan)
                .where(
                    FeeChallan.id.in_([c.id for c in eligible]),
                    FeeChallan.status == ChallanStatus.pending.value,
                )
                .values(
                    **changes,
                    last_edited_by=operator_id,
                    last_edited_at=now,
                    edit_count=FeeChallan.edit_count + 1,
                )
                .execution_options(synchronize_session="fetch")
            )
        except SQLAlchemyError as e:
            return await _fail_bulk(db, result, len(eligible), "edit", e)
        for c in eligible:
            await log_fee_audit(db, tenant_id, "fee_challans", c.id, "BULK_EDIT", None, _jsonable(changes), operator_id)
    else:
        for c in eligible:
            old = {"discount": str(c.discount), "total_amount": str(c.total_amount)}
            for field, value in changes.items():
                setattr(c, field, value)
            c.total_amount = calculate_challan_total(
                c.monthly_fee, c.exam_fee, c.admission_fee, c.other_fees, c.discount
            )
            c.last_edited_by = operator_id
            c.last_edited_at = now
            c.edit_count = (c.edit_count or 0) + 1
            await log_fee_audit(
                db, tenant_id, "fee_challans", c.id,
                "BULK_EDIT",
                old,
                {**_jsonable(changes), "total_amount": str(c.total_amount)},
                operator_id,
            )
    return await _commit_bulk(db, result, len(eligible), "edit")


def _jsonable(changes: dict) -> dict:
    out = {}
    for key, value in changes.items():
        if value is None:
            out[key] = None
        elif hasattr(value, "isoformat"):
            out[key] = value.isoformat()
        else:
            out[key] = str(value)
    return out


async def bulk_delete_challans(
    db: AsyncSession,
    tenant_id: UUID,
    challan_ids: Sequence[UUID],
    operator_id: Optional[UUID],
) -> BulkActionResult:
    """Delete pending challans without payments. Paid and partially paid challans are kept."""
    result = BulkActionResult()
    if not _start(result, operator_id):
        return result
    pending, ineligible, missing = await _partition_challans(
        db, tenant_id, challan_ids, [ChallanStatus.pending.value]
    )
    with_payments = [c for c in pending if c.amount_paid and c.amount_paid > 0]
    eligible = [c for c in pending if not (c.amount_paid and c.amount_paid > 0)]
    _report_rejects(result, ineligible, missing, "are not pending and cannot be deleted")
    if with_payments:
        result.record_failure(
            f"{len(with_payments)} challan(s) have payments and cannot be deleted", len(with_payments)
        )
    if not eligible:
        return result

    for c in eligible:
        await log_fee_audit(
            db, tenant_id, "fee_challans", c.id,
            "DELETE",
            {"challan_number": c.challan_number, "total_amount": str(c.total_amount), "month": c.month},
            None,
            operator_id,
        )
    try:
        await db.execute(
            delete(FeeChallan)
            .where(
                FeeChallan.id.in_([c.id for c in eligible]),
                FeeChallan.status == ChallanStatus.pending.value,
            )
            .execution_options(synchronize_session="fetch")
        )
    except SQLAlchemyError as e:
        return await _fail_bulk(db, result, len(eligible), "delete", e)
    return await _commit_bulk(db, result, len(eligible), "delete")


async def bulk_mark_as_paid(
    db: AsyncSession,
    tenant_id: UUID,
    challan_ids: Sequence[UUID],
    operator_id: Optional[UUID],
    payment_method: PaymentMethod = PaymentMethod.CASH,
) -> BulkActionResult:
    """Settle pending challans in full; each gets a receipt for its outstanding balance."""
    result = BulkActionResult()
    if not _start(result, operator_id):
        return result
    eligible, ineligible, missing = await _partition_challans(
        db, tenant_id, challan_ids, [ChallanStatus.pending.value]
    )
    _report_rejects(result, ineligible, missing, "are not pending and cannot be marked as paid")
    if not eligible:
        return result

    paid_at = datetime.now(timezone.utc)
    for c in eligible:
        await settle_challan(db, tenant_id, c, payment_method, operator_id, notes="Bulk mark as paid", paid_at=paid_at)
    return await _commit_bulk(db, result, len(eligible), "mark as paid")


async def bulk_send_reminders(
    db: AsyncSession,
    tenant_id: UUID,
    challan_ids: Sequence[UUID],
    operator_id: Optional[UUID],
    reminder_type: ReminderType = ReminderType.sms,
) -> BulkActionResult:
    """Record a reminder for each pending or overdue challan. Delivery is outside this service."""
    result = BulkActionResult()
    if not _start(result, operator_id):
        return result
    eligible, ineligible, missing = await _partition_challans(
        db, tenant_id, challan_ids, [ChallanStatus.pending.value, ChallanStatus.overdue.value]
    )
    _report_rejects(result, ineligible, missing, "are not pending or overdue")
    if not eligible:
        return result

    template = settings.default_reminder_template
    for c in eligible:
        db.add(
            ReminderHistory(
                tenant_id=tenant_id,
                challan_id=c.id,
                student_id=c.student_id,
                reminder_type=reminder_type.value,
                template_used=template.format(challan_number=c.challan_number) if template else None,
                sent_by=operator_id,
                status="sent",
            )
        )
    return await _commit_bulk(db, result, len(eligible), "send reminders for")
