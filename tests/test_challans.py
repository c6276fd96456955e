import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from schoolfees.api.v1.challans import service
from schoolfees.api.v1.challans.schemas import ChallanUpdate
from schoolfees.core.enums import ChallanStatus, ChallanType, StudentStatus
from schoolfees.core.exceptions import ServiceError
from schoolfees.core.models import ChallanSequence, FeeAuditLog, FeeChallan, FeeStructure


async def _challans_for(db, student_id, month=None):
    stmt = select(FeeChallan).where(FeeChallan.student_id == student_id).execution_options(populate_existing=True)
    if month:
        stmt = stmt.where(FeeChallan.month == month)
    return (await db.execute(stmt)).scalars().all()


async def test_discount_applied_once_on_monthly_challan(db_session, tenant, operator, school_class, make_student):
    student = await make_student(
        class_id=school_class.id,
        original_tuition_fee=Decimal("3000"),
        original_exam_fee=Decimal("500"),
        fee_discount=Decimal("200"),
    )

    challan = await service.create_challan(db_session, tenant.id, student.id, "2025-03", operator.id)

    assert challan.monthly_fee == Decimal("3000")
    assert challan.discount == Decimal("200")
    assert challan.exam_fee == Decimal("0")
    assert challan.total_amount == Decimal("2800")
    assert challan.status == ChallanStatus.pending
    assert challan.challan_type == ChallanType.monthly
    assert challan.due_date == date(2025, 3, 31)
    assert challan.challan_number == "CH-202503-001"
    assert challan.generated_by == operator.id


async def test_exam_fee_included_on_request(db_session, tenant, operator, school_class, make_student):
    student = await make_student(
        class_id=school_class.id,
        original_tuition_fee=Decimal("3000"),
        original_exam_fee=Decimal("500"),
        original_other_fee=Decimal("150"),
    )

    challan = await service.create_challan(
        db_session, tenant.id, student.id, "2025-03", operator.id, include_exam_fee=True
    )

    assert challan.exam_fee == Decimal("500")
    assert challan.other_fees == Decimal("150")
    assert challan.total_amount == Decimal("3650")


async def test_challan_numbers_increase_per_month(db_session, tenant, operator, school_class, make_student):
    a = await make_student(name="A", class_id=school_class.id)
    b = await make_student(name="B", class_id=school_class.id)

    first = await service.create_challan(db_session, tenant.id, a.id, "2025-03", operator.id)
    second = await service.create_challan(db_session, tenant.id, b.id, "2025-03", operator.id)
    april = await service.create_challan(db_session, tenant.id, a.id, "2025-04", operator.id)

    assert first.challan_number == "CH-202503-001"
    assert second.challan_number == "CH-202503-002"
    assert april.challan_number == "CH-202504-001"


async def test_generation_writes_audit_entry(db_session, tenant, operator, school_class, make_student):
    student = await make_student(class_id=school_class.id)

    challan = await service.create_challan(db_session, tenant.id, student.id, "2025-03", operator.id)

    logs = (
        await db_session.execute(select(FeeAuditLog).where(FeeAuditLog.reference_id == challan.id))
    ).scalars().all()
    assert [log.action_type for log in logs] == ["CREATE"]
    assert logs[0].new_value["fee_source"] == "class"


async def test_generate_challan_reports_failure_instead_of_raising(db_session, tenant, operator, make_student):
    student = await make_student(class_id=None)

    result = await service.generate_challan(db_session, tenant.id, student.id, "2025-03", operator.id)

    assert result.success is False
    assert result.data is None
    assert "no class" in result.error


async def test_generate_challan_requires_operator(db_session, tenant, school_class, make_student):
    student = await make_student(class_id=school_class.id)
    student_id = student.id

    result = await service.generate_challan(db_session, tenant.id, student_id, "2025-03", None)

    assert result.success is False
    assert result.error == "User not authenticated"
    assert await _challans_for(db_session, student_id) == []


async def test_inactive_student_is_not_billed(db_session, tenant, operator, school_class, make_student):
    student = await make_student(class_id=school_class.id, status=StudentStatus.INACTIVE.value)

    with pytest.raises(ServiceError) as exc:
        await service.create_challan(db_session, tenant.id, student.id, "2025-03", operator.id)

    assert exc.value.status_code == 400


async def test_bulk_generation_continues_past_failures(db_session, tenant, operator, school_class, make_student):
    students = []
    for i in range(1, 6):
        class_id = None if i == 3 else school_class.id
        students.append(await make_student(name=f"Student {i}", class_id=class_id))
    ids = [s.id for s in students]

    # a failed item rolls the session back, so only plain ids are used afterwards
    result = await service.generate_challans_bulk(db_session, tenant.id, "2025-03", operator.id, student_ids=ids)

    assert result.success == 4
    assert result.failed == 1
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Student 3:")
    assert await _challans_for(db_session, ids[2]) == []
    assert len(await _challans_for(db_session, ids[4])) == 1


async def test_bulk_generation_by_class_and_skip_existing(db_session, tenant, operator, school_class, make_student):
    a = await make_student(name="A", class_id=school_class.id)
    await make_student(name="B", class_id=school_class.id)
    await make_student(name="Gone", class_id=school_class.id, status=StudentStatus.INACTIVE.value)
    await service.create_challan(db_session, tenant.id, a.id, "2025-03", operator.id)

    result = await service.generate_challans_bulk(
        db_session, tenant.id, "2025-03", operator.id, class_ids=[school_class.id], skip_existing=True
    )

    assert result.success == 1
    assert result.failed == 1
    assert result.errors == ["Challan already exists for A"]


async def test_bulk_generation_reports_unknown_students(db_session, tenant, operator, school_class, make_student):
    student = await make_student(class_id=school_class.id)
    ghost = uuid.uuid4()

    result = await service.generate_challans_bulk(
        db_session, tenant.id, "2025-03", operator.id, student_ids=[student.id, ghost]
    )

    assert result.success == 1
    assert result.failed == 1
    assert result.errors == [f"Student {ghost} not found"]


async def test_first_challan_bills_every_component(db_session, tenant, operator, school_class, make_student):
    student = await make_student(
        class_id=school_class.id,
        original_tuition_fee=Decimal("3000"),
        original_admission_fee=Decimal("5000"),
        original_exam_fee=Decimal("500"),
        original_other_fee=Decimal("100"),
        fee_discount=Decimal("600"),
    )
    today = date(2025, 3, 10)

    challan = await service.generate_first_challan(db_session, tenant.id, student.id, operator.id, today=today)

    assert challan.month == "2025-03"
    assert challan.challan_type == ChallanType.first_admission
    assert challan.admission_fee == Decimal("5000")
    assert challan.exam_fee == Decimal("500")
    assert challan.total_amount == Decimal("8000")
    assert challan.due_date == today + timedelta(days=15)
    assert challan.notes == "First challan - New admission for March 2025"


async def test_first_challan_refused_when_month_already_billed(db_session, tenant, operator, school_class, make_student):
    student = await make_student(class_id=school_class.id)
    await service.create_challan(db_session, tenant.id, student.id, "2025-03", operator.id)

    with pytest.raises(ServiceError) as exc:
        await service.generate_first_challan(db_session, tenant.id, student.id, operator.id, month="2025-03")

    assert exc.value.status_code == 409


async def test_regeneration_replaces_only_unpaid_pending_challans(db_session, tenant, operator, school_class, make_student):
    fresh = await make_student(name="Fresh", class_id=school_class.id, fee_discount=Decimal("100"))
    settled = await make_student(name="Settled", class_id=school_class.id)
    partial = await make_student(name="Partial", class_id=school_class.id)
    for s in (fresh, settled, partial):
        await service.create_challan(db_session, tenant.id, s.id, "2025-03", operator.id)

    (settled_challan,) = await _challans_for(db_session, settled.id)
    settled_challan.status = ChallanStatus.paid.value
    settled_challan.amount_paid = settled_challan.total_amount
    (partial_challan,) = await _challans_for(db_session, partial.id)
    partial_challan.amount_paid = Decimal("500")
    structure = FeeStructure(
        tenant_id=tenant.id,
        class_id=school_class.id,
        tuition_fee=Decimal("3500"),
        exam_fee=Decimal("400"),
        version=1,
        is_active=True,
    )
    db_session.add(structure)
    await db_session.commit()
    ghost = uuid.uuid4()

    result = await service.regenerate_challans_with_new_fees(
        db_session,
        tenant.id,
        [fresh.id, settled.id, partial.id, ghost],
        "2025-03",
        date(2025, 3, 25),
        structure.id,
        operator.id,
    )

    assert result.deleted == 1
    assert set(result.skipped) == {settled.id, partial.id}
    assert result.missing == [ghost]

    (regenerated,) = await _challans_for(db_session, fresh.id)
    assert regenerated.challan_type == ChallanType.regenerated.value
    assert regenerated.fee_structure_id == structure.id
    assert regenerated.total_amount == Decimal("3800")
    assert regenerated.due_date == date(2025, 3, 25)

    assert result.count == 1
    (kept_paid,) = await _challans_for(db_session, settled.id)
    assert kept_paid.id == settled_challan.id
    assert kept_paid.status == ChallanStatus.paid.value
    assert kept_paid.total_amount == Decimal("3000")

    (kept,) = await _challans_for(db_session, partial.id)
    assert kept.id == partial_challan.id
    assert kept.amount_paid == Decimal("500")

async def _active_structure(db, tenant, school_class, tuition="3500"):
    structure = FeeStructure(
        tenant_id=tenant.id,
        class_id=school_class.id,
        tuition_fee=Decimal(tuition),
        version=1,
        is_active=True,
    )
    db.add(structure)
    await db.commit()
    return structure.id


async def test_regeneration_skips_overdue_month(db_session, tenant, operator, school_class, make_student):
    student = await make_student(class_id=school_class.id)
    challan = await service.create_challan(db_session, tenant.id, student.id, "2025-03", operator.id)
    (row,) = await _challans_for(db_session, student.id)
    row.status = ChallanStatus.overdue.value
    await db_session.commit()
    structure_id = await _active_structure(db_session, tenant, school_class)

    result = await service.regenerate_challans_with_new_fees(
        db_session, tenant.id, [student.id], "2025-03", date(2025, 3, 25), structure_id, operator.id
    )

    assert (result.count, result.deleted) == (0, 0)
    assert result.skipped == [student.id]
    (kept,) = await _challans_for(db_session, student.id)
    assert kept.id == challan.id
    assert kept.status == ChallanStatus.overdue.value


async def test_regeneration_rolls_back_when_an_insert_fails(
    db_session, tenant, operator, school_class, make_student, monkeypatch
):
    first = await make_student(name="First", class_id=school_class.id)
    second = await make_student(name="Second", class_id=school_class.id)
    student_ids = [first.id, second.id]
    original_ids = set()
    for student_id in student_ids:
        challan = await service.create_challan(db_session, tenant.id, student_id, "2025-03", operator.id)
        original_ids.add(challan.id)
    structure_id = await _active_structure(db_session, tenant, school_class)

    calls = []
    real_next_number = service.next_challan_number

    async def next_number_failing_on_second(db, tenant_id, month):
        calls.append(month)
        if len(calls) == 2:
            raise OperationalError("UPDATE challan_sequences", {}, Exception("database is locked"))
        return await real_next_number(db, tenant_id, month)

    monkeypatch.setattr(service, "next_challan_number", next_number_failing_on_second)
    tenant_id, operator_id = tenant.id, operator.id

    # the rollback expires every loaded row, so only plain ids are used afterwards
    with pytest.raises(ServiceError) as exc:
        await service.regenerate_challans_with_new_fees(
            db_session, tenant_id, student_ids, "2025-03", date(2025, 3, 25), structure_id, operator_id
        )

    assert exc.value.status_code == 500
    assert len(calls) == 2
    remaining = []
    for student_id in student_ids:
        remaining.extend(await _challans_for(db_session, student_id))
    assert {c.id for c in remaining} == original_ids
    assert all(c.challan_type == ChallanType.monthly.value for c in remaining)
    sequence = (
        await db_session.execute(
            select(ChallanSequence)
            .where(ChallanSequence.tenant_id == tenant_id, ChallanSequence.month == "2025-03")
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert sequence.current_value == 2



async def test_update_recomputes_total_and_tracks_edits(db_session, tenant, operator, school_class, make_student):
    student = await make_student(class_id=school_class.id)
    challan = await service.create_challan(db_session, tenant.id, student.id, "2025-03", operator.id)

    updated = await service.update_challan(
        db_session, tenant.id, challan.id, ChallanUpdate(exam_fee=Decimal("500"), discount=Decimal("300")), operator.id
    )

    assert updated.total_amount == Decimal("3200")
    assert updated.edit_count == 1
    assert updated.last_edited_by == operator.id

async def test_moving_challan_to_another_month_renumbers_it(db_session, tenant, operator, school_class, make_student):
    a = await make_student(name="A", class_id=school_class.id)
    b = await make_student(name="B", class_id=school_class.id)
    await service.create_challan(db_session, tenant.id, a.id, "2025-04", operator.id)
    challan = await service.create_challan(db_session, tenant.id, b.id, "2025-03", operator.id)

    moved = await service.update_challan(
        db_session, tenant.id, challan.id, ChallanUpdate(month="2025-04"), operator.id
    )

    assert moved.month == "2025-04"
    assert moved.challan_number == "CH-202504-002"
    log = (
        await db_session.execute(
            select(FeeAuditLog).where(FeeAuditLog.reference_id == challan.id, FeeAuditLog.action_type == "UPDATE")
        )
    ).scalar_one()
    assert log.old_value["challan_number"] == "CH-202503-001"
    assert log.new_value["challan_number"] == "CH-202504-002"

    same_month = await service.update_challan(
        db_session, tenant.id, challan.id, ChallanUpdate(month="2025-04", notes="Moved"), operator.id
    )
    assert same_month.challan_number == "CH-202504-002"



async def test_paid_challan_cannot_be_edited_or_cancelled(db_session, tenant, operator, school_class, make_student):
    student = await make_student(class_id=school_class.id)
    challan = await service.create_challan(db_session, tenant.id, student.id, "2025-03", operator.id)
    (row,) = await _challans_for(db_session, student.id)
    row.status = ChallanStatus.paid.value
    await db_session.commit()

    with pytest.raises(ServiceError) as exc:
        await service.update_challan(db_session, tenant.id, challan.id, ChallanUpdate(discount=Decimal("1")), operator.id)
    assert exc.value.message == "Cannot edit paid challan. Only pending challans can be edited."

    with pytest.raises(ServiceError):
        await service.cancel_challan(db_session, tenant.id, challan.id, operator.id)


async def test_cancelled_month_can_be_billed_again(db_session, tenant, operator, school_class, make_student):
    student = await make_student(class_id=school_class.id)
    challan = await service.create_challan(db_session, tenant.id, student.id, "2025-03", operator.id)

    cancelled = await service.cancel_challan(db_session, tenant.id, challan.id, operator.id)
    assert cancelled.status == ChallanStatus.cancelled
    assert await service.challan_exists(db_session, tenant.id, student.id, "2025-03") is False

    again = await service.generate_first_challan(db_session, tenant.id, student.id, operator.id, month="2025-03")
    assert again.challan_number == "CH-202503-002"


async def test_list_challans_filters(db_session, tenant, operator, school_class, make_student):
    a = await make_student(name="A", class_id=school_class.id)
    b = await make_student(name="B", class_id=school_class.id)
    await service.create_challan(db_session, tenant.id, a.id, "2025-03", operator.id)
    await service.create_challan(db_session, tenant.id, b.id, "2025-03", operator.id)
    await service.create_challan(db_session, tenant.id, a.id, "2025-04", operator.id)

    march = await service.list_challans(db_session, tenant.id, month="2025-03")
    assert {c.student_name for c in march} == {"A", "B"}

    for_a = await service.list_challans(db_session, tenant.id, student_id=a.id)
    assert [c.month for c in for_a] == ["2025-04", "2025-03"]

    by_class = await service.list_challans(db_session, tenant.id, class_id=school_class.id, status_filter="pending")
    assert len(by_class) == 3
