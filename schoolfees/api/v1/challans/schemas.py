"""Challan schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from schoolfees.core.enums import ChallanStatus, ChallanType, PaymentMethod, ReminderType

MONTH_PATTERN = r"^\d{4}-\d{2}$"


class ChallanResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    challan_number: str
    student_id: UUID
    student_name: Optional[str] = None
    month: str
    monthly_fee: Decimal
    exam_fee: Decimal
    admission_fee: Decimal
    other_fees: Decimal
    discount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    status: ChallanStatus
    challan_type: ChallanType
    due_date: date
    paid_date: Optional[datetime] = None
    notes: Optional[str] = None
    fee_structure_id: Optional[UUID] = None
    generated_by: Optional[UUID] = None
    last_edited_by: Optional[UUID] = None
    last_edited_at: Optional[datetime] = None
    edit_count: int = 0
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ChallanGenerateRequest(BaseModel):
    student_id: UUID
    month: str = Field(..., pattern=MONTH_PATTERN)
    include_exam_fee: bool = False
    include_admission_fee: bool = False
    due_date: Optional[date] = None
    notes: Optional[str] = None


class ChallanGenerationResult(BaseModel):
    """Outcome of one generation attempt; data on success, error otherwise."""

    success: bool
    data: Optional[ChallanResponse] = None
    error: Optional[str] = None


class BulkGenerateRequest(BaseModel):
    """Target explicit students, or every active student of the given classes (all classes when both are empty)."""

    month: str = Field(..., pattern=MONTH_PATTERN)
    student_ids: List[UUID] = Field(default_factory=list)
    class_ids: List[UUID] = Field(default_factory=list)
    include_exam_fee: bool = False
    skip_existing: bool = False


class FirstChallanRequest(BaseModel):
    student_id: UUID
    month: Optional[str] = Field(None, pattern=MONTH_PATTERN)


class RegenerateRequest(BaseModel):
    student_ids: List[UUID] = Field(..., min_length=1)
    month: str = Field(..., pattern=MONTH_PATTERN)
    due_date: date
    fee_structure_id: UUID


class RegenerationResult(BaseModel):
    success: bool = True
    count: int = 0
    deleted: int = 0
    skipped: List[UUID] = Field(default_factory=list, description="Students whose challan for the month is paid, overdue or partly paid")
    missing: List[UUID] = Field(default_factory=list)


class ChallanUpdate(BaseModel):
    monthly_fee: Optional[Decimal] = Field(None, ge=0)
    admission_fee: Optional[Decimal] = Field(None, ge=0)
    exam_fee: Optional[Decimal] = Field(None, ge=0)
    other_fees: Optional[Decimal] = Field(None, ge=0)
    discount: Optional[Decimal] = Field(None, ge=0)
    month: Optional[str] = Field(None, pattern=MONTH_PATTERN)
    due_date: Optional[date] = None
    notes: Optional[str] = None


class ChallanIdsRequest(BaseModel):
    challan_ids: List[UUID] = Field(..., min_length=1)


class BulkEditRequest(ChallanIdsRequest):
    discount: Optional[Decimal] = Field(None, ge=0)
    due_date: Optional[date] = None
    notes: Optional[str] = None


class BulkMarkPaidRequest(ChallanIdsRequest):
    payment_method: PaymentMethod = PaymentMethod.CASH


class BulkReminderRequest(ChallanIdsRequest):
    reminder_type: ReminderType = ReminderType.sms
