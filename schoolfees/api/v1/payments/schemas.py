from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from schoolfees.core.enums import PaymentMethod


class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_date: Optional[datetime] = None
    notes: Optional[str] = None


class PaymentResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    challan_id: UUID
    student_id: UUID
    amount: Decimal
    payment_date: datetime
    payment_method: PaymentMethod
    notes: Optional[str] = None
    received_by: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class StudentPaymentSummary(BaseModel):
    student_id: UUID
    total_paid: Decimal
    payments: List[PaymentResponse] = []


class UnpaidStudent(BaseModel):
    student_id: UUID
    name: str
    roll_number: Optional[str] = None
    class_name: Optional[str] = None
    father_phone: Optional[str] = None
    total_unpaid: Decimal
    pending_challans_count: int
    oldest_due_date: date
    days_overdue: int
    is_defaulter: bool


class UnpaidStudentsReport(BaseModel):
    students: List[UnpaidStudent] = []
    total_students: int = 0
    total_unpaid: Decimal = Decimal("0")
    critical_count: int = Field(0, description="Students more than CRITICAL_OVERDUE_DAYS past due")


class OverdueUpdateResult(BaseModel):
    updated: int


class MarkStudentPaidResult(BaseModel):
    student_id: UUID
    challans_paid: int
    amount: Decimal
