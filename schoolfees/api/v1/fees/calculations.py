"""Fee arithmetic shared by the resolver, challan generator and bulk actions. No database access."""

import calendar
import re
from datetime import date
from decimal import Decimal
from typing import Optional, Tuple

from fastapi import status

from schoolfees.core.enums import FeeSource
from schoolfees.core.exceptions import ServiceError

from .schemas import ChallanFees

ZERO = Decimal("0")

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


def to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


def parse_month(month: str) -> Tuple[int, int]:
    """Split a YYYY-MM key into (year, month)."""
    m = _MONTH_RE.match(month or "")
    if not m or not 1 <= int(m.group(2)) <= 12:
        raise ServiceError("Invalid month, expected YYYY-MM", status.HTTP_400_BAD_REQUEST)
    return int(m.group(1)), int(m.group(2))


def month_key(d: date) -> str:
    return d.strftime("%Y-%m")


def month_end_date(month: str) -> date:
    """Last calendar day of a YYYY-MM month; the default challan due date."""
    year, mon = parse_month(month)
    return date(year, mon, calendar.monthrange(year, mon)[1])


def calculate_challan_total(
    monthly_fee,
    exam_fee,
    admission_fee,
    other_fees,
    discount,
) -> Decimal:
    subtotal = to_decimal(monthly_fee) + to_decimal(exam_fee) + to_decimal(admission_fee) + to_decimal(other_fees)
    return max(ZERO, subtotal - to_decimal(discount))


def resolve_tuition(student, school_class=None, structure=None) -> Tuple[Decimal, FeeSource]:
    """
    Pick the effective monthly tuition for a student, first match wins:
    custom override, legacy custom_fee, class default (admission snapshot, then live class fee),
    then the active fee structure. Nothing configured resolves to 0 from the structure tier.
    """
    if student.use_custom_fees and student.custom_tuition_fee is not None:
        return to_decimal(student.custom_tuition_fee), FeeSource.CUSTOM

    legacy = to_decimal(getattr(student, "custom_fee", None))
    if legacy > 0:
        return legacy, FeeSource.CUSTOM

    snapshot = to_decimal(student.original_tuition_fee)
    if snapshot > 0:
        return snapshot, FeeSource.CLASS

    if school_class is not None:
        class_fee = to_decimal(school_class.monthly_fee)
        if class_fee > 0:
            return class_fee, FeeSource.CLASS

    if structure is not None:
        return to_decimal(structure.tuition_fee), FeeSource.STRUCTURE
    return ZERO, FeeSource.STRUCTURE


def calculate_fees_from_structure(structure, discount: Optional[Decimal] = None) -> ChallanFees:
    tuition_fee = to_decimal(structure.tuition_fee)
    admission_fee = to_decimal(structure.admission_fee)
    exam_fee = to_decimal(structure.exam_fee)
    other_fee = to_decimal(structure.other_fee)
    discount = to_decimal(discount)
    return ChallanFees(
        tuition_fee=tuition_fee,
        admission_fee=admission_fee,
        exam_fee=exam_fee,
        other_fee=other_fee,
        discount=discount,
        total=calculate_challan_total(tuition_fee, exam_fee, admission_fee, other_fee, discount),
    )
