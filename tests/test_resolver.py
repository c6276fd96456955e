import uuid
from decimal import Decimal

import pytest

from schoolfees.api.v1.fees.resolver import resolve_student_fees
from schoolfees.core.enums import FeeSource
from schoolfees.core.exceptions import FeeResolutionError
from schoolfees.core.models import FeeStructure, SchoolClass


async def test_snapshot_tuition_with_discount(db_session, tenant, school_class, make_student):
    student = await make_student(
        class_id=school_class.id,
        original_tuition_fee=Decimal("3000"),
        original_exam_fee=Decimal("500"),
        fee_discount=Decimal("200"),
    )

    fees = await resolve_student_fees(db_session, tenant.id, student.id)

    assert fees.source == FeeSource.CLASS
    assert fees.tuition_fee == Decimal("3000")
    assert fees.monthly_fee == Decimal("2800")
    assert fees.total == Decimal("2800")
    assert fees.exam_fee == Decimal("500")


async def test_custom_override(db_session, tenant, school_class, make_student):
    student = await make_student(
        class_id=school_class.id,
        original_tuition_fee=Decimal("3000"),
        custom_tuition_fee=Decimal("1800"),
        use_custom_fees=True,
    )

    fees = await resolve_student_fees(db_session, tenant.id, student.id)

    assert fees.source == FeeSource.CUSTOM
    assert fees.monthly_fee == Decimal("1800")
    assert fees.use_custom_fees is True


async def test_falls_back_to_active_fee_structure(db_session, tenant, make_student):
    cl = SchoolClass(tenant_id=tenant.id, name="Nursery")
    db_session.add(cl)
    await db_session.flush()
    db_session.add_all(
        [
            FeeStructure(tenant_id=tenant.id, class_id=cl.id, tuition_fee=Decimal("1000"), version=1, is_active=False),
            FeeStructure(tenant_id=tenant.id, class_id=cl.id, tuition_fee=Decimal("1200"), version=2, is_active=True),
        ]
    )
    await db_session.commit()
    student = await make_student(class_id=cl.id)

    fees = await resolve_student_fees(db_session, tenant.id, student.id)
    assert fees.source == FeeSource.STRUCTURE
    assert fees.tuition_fee == Decimal("1200")

    without_fallback = await resolve_student_fees(db_session, tenant.id, student.id, use_structure_fallback=False)
    assert without_fallback.tuition_fee == Decimal("0")


async def test_missing_student_raises(db_session, tenant):
    missing = uuid.uuid4()

    with pytest.raises(FeeResolutionError) as exc:
        await resolve_student_fees(db_session, tenant.id, missing)

    assert exc.value.status_code == 404
    assert str(missing) in exc.value.message


async def test_student_of_another_tenant_is_not_visible(db_session, school_class, make_student):
    student = await make_student(class_id=school_class.id)

    with pytest.raises(FeeResolutionError):
        await resolve_student_fees(db_session, uuid.uuid4(), student.id)
