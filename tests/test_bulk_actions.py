import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import Delete, select
from sqlalchemy.exc import OperationalError

from schoolfees.api.v1.challans import bulk_actions, service
from schoolfees.api.v1.challans.schemas import BulkEditRequest
from schoolfees.core.enums import ChallanStatus, ReminderType
from schoolfees.core.models import FeeChallan, FeePayment, ReminderHistory


async def _seed_challans(db, tenant, operator, school_class, make_student, count=3):
    ids = []
    for i in range(count):
        student = await make_student(name=f"Student {i}", class_id=school_class.id, fee_discount=Decimal("100"))
        challan = await service.create_challan(db, tenant.id, student.id, "2025-03", operator.id)
        ids.append(challan.id)
    return ids


async def _load(db, challan_id):
    stmt = select(FeeChallan).where(FeeChallan.id == challan_id).execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one_or_none()


async def _set_status(db, challan_id, status):
    row = await _load(db, challan_id)
    row.status = status
    if status == ChallanStatus.paid.value:
        row.amount_paid = row.total_amount
    await db.commit()


async def test_mark_paid_skips_already_paid(db_session, tenant, operator, school_class, make_student):
    ids = await _seed_challans(db_session, tenant, operator, school_class, make_student)
    await _set_status(db_session, ids[0], ChallanStatus.paid.value)

    result = await bulk_actions.bulk_mark_as_paid(db_session, tenant.id, ids, operator.id)

    assert result.success == 2
    assert result.failed == 1
    assert result.errors == ["1 challan(s) are not pending and cannot be marked as paid"]
    for challan_id in ids[1:]:
        row = await _load(db_session, challan_id)
        assert row.status == ChallanStatus.paid.value
        assert row.amount_paid == Decimal("2900")
        assert row.paid_date is not None
    payments = (await db_session.execute(select(FeePayment))).scalars().all()
    assert sorted(p.challan_id for p in payments) == sorted(ids[1:])


async def test_delete_never_touches_non_pending(db_session, tenant, operator, school_class, make_student):
    ids = await _seed_challans(db_session, tenant, operator, school_class, make_student)
    await _set_status(db_session, ids[1], ChallanStatus.paid.value)
    await _set_status(db_session, ids[2], ChallanStatus.overdue.value)

    result = await bulk_actions.bulk_delete_challans(db_session, tenant.id, ids, operator.id)

    assert result.success == 1
    assert result.failed == 2
    assert await _load(db_session, ids[0]) is None
    assert (await _load(db_session, ids[1])).status == ChallanStatus.paid.value
    assert (await _load(db_session, ids[2])).status == ChallanStatus.overdue.value


async def test_delete_keeps_partially_paid_challans(db_session, tenant, operator, school_class, make_student):
    (challan_id,) = await _seed_challans(db_session, tenant, operator, school_class, make_student, count=1)
    row = await _load(db_session, challan_id)
    row.amount_paid = Decimal("1000")
    await db_session.commit()

    result = await bulk_actions.bulk_delete_challans(db_session, tenant.id, [challan_id], operator.id)

    assert result.success == 0
    assert result.errors == ["1 challan(s) have payments and cannot be deleted"]
    assert await _load(db_session, challan_id) is not None


async def test_edit_with_discount_recomputes_each_total(db_session, tenant, operator, school_class, make_student):
    ids = await _seed_challans(db_session, tenant, operator, school_class, make_student)
    row = await _load(db_session, ids[0])
    row.exam_fee = Decimal("500")
    await db_session.commit()
    await _set_status(db_session, ids[2], ChallanStatus.paid.value)

    result = await bulk_actions.bulk_edit_challans(
        db_session, tenant.id, BulkEditRequest(challan_ids=ids, discount=Decimal("250")), operator.id
    )

    assert result.success == 2
    assert result.errors == ["1 challan(s) are not pending and cannot be edited"]
    first = await _load(db_session, ids[0])
    assert first.total_amount == Decimal("3250")
    assert first.edit_count == 1
    assert (await _load(db_session, ids[1])).total_amount == Decimal("2750")
    paid = await _load(db_session, ids[2])
    assert paid.discount == Decimal("100")
    assert paid.total_amount == Decimal("2900")


async def test_edit_without_discount_updates_in_one_statement(db_session, tenant, operator, school_class, make_student):
    ids = await _seed_challans(db_session, tenant, operator, school_class, make_student, count=2)

    result = await bulk_actions.bulk_edit_challans(
        db_session,
        tenant.id,
        BulkEditRequest(challan_ids=ids, due_date=date(2025, 4, 10), notes="Extended"),
        operator.id,
    )

    assert result.success == 2
    for challan_id in ids:
        row = await _load(db_session, challan_id)
        assert row.due_date == date(2025, 4, 10)
        assert row.notes == "Extended"
        assert row.total_amount == Decimal("2900")
        assert row.edit_count == 1
        assert row.last_edited_by == operator.id


async def test_edit_with_nothing_to_change(db_session, tenant, operator, school_class, make_student):
    ids = await _seed_challans(db_session, tenant, operator, school_class, make_student, count=1)

    result = await bulk_actions.bulk_edit_challans(db_session, tenant.id, BulkEditRequest(challan_ids=ids), operator.id)

    assert result.success == 0
    assert result.errors == ["No changes supplied"]


async def test_reminders_logged_for_pending_and_overdue(db_session, tenant, operator, school_class, make_student):
    ids = await _seed_challans(db_session, tenant, operator, school_class, make_student)
    await _set_status(db_session, ids[1], ChallanStatus.overdue.value)
    await _set_status(db_session, ids[2], ChallanStatus.paid.value)
    unknown = uuid.uuid4()

    result = await bulk_actions.bulk_send_reminders(
        db_session, tenant.id, ids + [unknown], operator.id, reminder_type=ReminderType.both
    )

    assert result.success == 2
    assert result.failed == 2
    assert "1 challan(s) not found" in result.errors
    reminders = (await db_session.execute(select(ReminderHistory))).scalars().all()
    assert sorted(r.challan_id for r in reminders) == sorted(ids[:2])
    assert all(r.reminder_type == "both" and r.sent_by == operator.id for r in reminders)
    first = await _load(db_session, ids[0])
    assert first.challan_number in next(r.template_used for r in reminders if r.challan_id == ids[0])


async def test_bulk_actions_require_operator(db_session, tenant, operator, school_class, make_student):
    ids = await _seed_challans(db_session, tenant, operator, school_class, make_student, count=1)

    result = await bulk_actions.bulk_mark_as_paid(db_session, tenant.id, ids, None)

    assert result.success == 0
    assert result.errors == ["User not authenticated"]
    assert (await _load(db_session, ids[0])).status == ChallanStatus.pending.value


async def test_edit_ignores_null_discount_and_due_date(db_session, tenant, operator, school_class, make_student):
    ids = await _seed_challans(db_session, tenant, operator, school_class, make_student, count=2)

    result = await bulk_actions.bulk_edit_challans(
        db_session,
        tenant.id,
        BulkEditRequest(challan_ids=ids, discount=None, due_date=None, notes="Called parent"),
        operator.id,
    )

    assert result.success == 2
    assert result.failed == 0
    for challan_id in ids:
        row = await _load(db_session, challan_id)
        assert row.discount == Decimal("100")
        assert row.due_date == date(2025, 3, 31)
        assert row.total_amount == Decimal("2900")
        assert row.notes == "Called parent"


async def test_edit_clears_notes_with_null(db_session, tenant, operator, school_class, make_student):
    ids = await _seed_challans(db_session, tenant, operator, school_class, make_student, count=1)
    row = await _load(db_session, ids[0])
    row.notes = "Old note"
    await db_session.commit()

    result = await bulk_actions.bulk_edit_challans(
        db_session, tenant.id, BulkEditRequest(challan_ids=ids, notes=None), operator.id
    )

    assert result.success == 1
    assert (await _load(db_session, ids[0])).notes is None


async def test_delete_reports_database_error_as_failure(
    db_session, tenant, operator, school_class, make_student, monkeypatch
):
    ids = await _seed_challans(db_session, tenant, operator, school_class, make_student, count=2)
    execute = db_session.execute

    async def failing_execute(statement, *args, **kwargs):
        if isinstance(statement, Delete):
            raise OperationalError("DELETE FROM fee_challans", {}, Exception("database is locked"))
        return await execute(statement, *args, **kwargs)

    monkeypatch.setattr(db_session, "execute", failing_execute)
    result = await bulk_actions.bulk_delete_challans(db_session, tenant.id, ids, operator.id)
    monkeypatch.undo()

    assert result.success == 0
    assert result.failed == 2
    assert result.errors[0].startswith("Failed to delete challans:")
    for challan_id in ids:
        assert await _load(db_session, challan_id) is not None
