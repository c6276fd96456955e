"""Fee challan: billing document for one student for one month."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from schoolfees.core.enums import ChallanStatus, ChallanType
from schoolfees.db.session import Base


class FeeChallan(Base):
    """
    One student, one month. total_amount = max(0, monthly_fee + exam_fee + admission_fee + other_fees - discount).
    Only pending challans may be edited or deleted; paid challans are immutable.
    """

    __tablename__ = "fee_challans"
    __table_args__ = (
        UniqueConstraint("tenant_id", "challan_number", name="uq_fee_challan_tenant_number"),
        CheckConstraint(
            "status IN ('pending','paid','overdue','cancelled')",
            name="chk_fee_challan_status",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    challan_number = Column(String(30), nullable=False)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    month = Column(String(7), nullable=False, index=True)  # YYYY-MM

    monthly_fee = Column(Numeric(12, 2), nullable=False, default=0)
    exam_fee = Column(Numeric(12, 2), nullable=False, default=0)
    admission_fee = Column(Numeric(12, 2), nullable=False, default=0)
    other_fees = Column(Numeric(12, 2), nullable=False, default=0)
    discount = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)

    status = Column(String(20), nullable=False, default=ChallanStatus.pending.value)
    challan_type = Column(String(30), nullable=False, default=ChallanType.monthly.value)
    due_date = Column(Date, nullable=False)
    paid_date = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    fee_structure_id = Column(
        UUID(as_uuid=True),
        ForeignKey("fee_structures.id", ondelete="SET NULL"),
        nullable=True,
    )

    generated_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    last_edited_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    last_edited_at = Column(DateTime(timezone=True), nullable=True)
    edit_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant")
    student = relationship("Student", foreign_keys=[student_id])
    fee_structure = relationship("FeeStructure")
