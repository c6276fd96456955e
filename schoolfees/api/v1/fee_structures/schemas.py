"""Fee structure schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class FeeStructureCreate(BaseModel):
    """Fees for a new version of a class fee structure."""

    class_id: UUID
    tuition_fee: Decimal = Field(..., ge=0)
    admission_fee: Decimal = Field(Decimal("0"), ge=0)
    exam_fee: Decimal = Field(Decimal("0"), ge=0)
    other_fee: Decimal = Field(Decimal("0"), ge=0)
    effective_from: Optional[date] = None


class FeeStructureResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    class_id: UUID
    class_name: Optional[str] = None
    tuition_fee: Decimal
    admission_fee: Decimal
    exam_fee: Decimal
    other_fee: Decimal
    version: int
    is_active: bool
    effective_from: date
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
