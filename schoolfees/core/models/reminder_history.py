import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID

from schoolfees.db.session import Base


class ReminderHistory(Base):
    """Log of payment reminders sent for a challan. No transport; the row is the record."""

    __tablename__ = "reminder_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    challan_id = Column(UUID(as_uuid=True), ForeignKey("fee_challans.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    reminder_type = Column(String(10), nullable=False)  # sms, email, both
    template_used = Column(Text, nullable=True)
    sent_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = Column(String(20), nullable=False, default="sent")
    sent_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
