import uuid

from sqlalchemy import Column, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from schoolfees.db.session import Base


class ChallanSequence(Base):
    """Monotonic challan counter per tenant per month. Backs CH-YYYYMM-NNN numbering."""

    __tablename__ = "challan_sequences"
    __table_args__ = (UniqueConstraint("tenant_id", "month", name="uq_challan_sequence_tenant_month"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    month = Column(String(7), nullable=False)  # YYYY-MM
    current_value = Column(Integer, nullable=False, default=0)
