"""Student: enrolled person with per-student fee snapshot and override fields."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from schoolfees.core.enums import StudentStatus
from schoolfees.db.session import Base


class Student(Base):
    """
    Student enrolled in a class. Never deleted; status flips to INACTIVE instead.

    original_* fees are snapshots of the class defaults taken when the admission was approved.
    custom_tuition_fee only applies while use_custom_fees is true.
    custom_fee is the legacy single-value override kept for older records.
    """

    __tablename__ = "students"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    roll_number = Column(String(50), nullable=True)
    father_phone = Column(String(50), nullable=True)
    class_id = Column(UUID(as_uuid=True), ForeignKey("classes.id"), nullable=True)
    status = Column(String(20), nullable=False, default=StudentStatus.ACTIVE.value)  # ACTIVE | INACTIVE

    original_tuition_fee = Column(Numeric(12, 2), nullable=False, default=0)
    original_admission_fee = Column(Numeric(12, 2), nullable=False, default=0)
    original_exam_fee = Column(Numeric(12, 2), nullable=False, default=0)
    original_other_fee = Column(Numeric(12, 2), nullable=False, default=0)
    custom_tuition_fee = Column(Numeric(12, 2), nullable=True)
    use_custom_fees = Column(Boolean, nullable=False, default=False)
    custom_fee = Column(Numeric(12, 2), nullable=True)
    fee_discount = Column(Numeric(12, 2), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant")
    school_class = relationship("SchoolClass", foreign_keys=[class_id])
