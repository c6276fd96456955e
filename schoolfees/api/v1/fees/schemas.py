"""Fees schemas: resolved breakdown and student fee settings."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from schoolfees.core.enums import FeeSource


class FeeBreakdown(BaseModel):
    """
    Effective fees for one student.
    monthly_fee is the tuition after discount; total is the monthly-only figure (same value).
    Challan totals are computed separately and also add exam/admission/other fees.
    """

    student_id: UUID
    tuition_fee: Decimal
    admission_fee: Decimal
    exam_fee: Decimal
    other_fee: Decimal
    discount: Decimal
    monthly_fee: Decimal
    total: Decimal
    source: FeeSource
    use_custom_fees: bool = False


class ChallanFees(BaseModel):
    """Fee components computed from a fee structure."""

    tuition_fee: Decimal
    admission_fee: Decimal
    exam_fee: Decimal
    other_fee: Decimal
    discount: Decimal = Decimal("0")
    total: Decimal


class StudentFeeUpdate(BaseModel):
    """Partial update; only fields present in the request body are written (custom_tuition_fee may be set to null)."""

    custom_tuition_fee: Optional[Decimal] = Field(None, ge=0)
    use_custom_fees: Optional[bool] = None
    fee_discount: Optional[Decimal] = Field(None, ge=0)
    custom_fee: Optional[Decimal] = Field(None, ge=0)


class BulkStudentFeeUpdate(BaseModel):
    student_ids: List[UUID] = Field(..., min_length=1)
    updates: StudentFeeUpdate


class StudentFeeResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    name: str
    class_id: Optional[UUID] = None
    status: str
    original_tuition_fee: Decimal
    original_admission_fee: Decimal
    original_exam_fee: Decimal
    original_other_fee: Decimal
    custom_tuition_fee: Optional[Decimal] = None
    use_custom_fees: bool
    custom_fee: Optional[Decimal] = None
    fee_discount: Decimal
    updated_at: datetime

    class Config:
        from_attributes = True
