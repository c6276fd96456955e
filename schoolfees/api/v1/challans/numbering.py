"""
Challan number generation.
Format: CH-YYYYMM-NNN, NNN from a monotonic per-tenant, per-month counter (challan_sequences).
Uniqueness per tenant is also enforced by uq_fee_challan_tenant_number.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.api.v1.fees.calculations import parse_month
from schoolfees.core.config import settings
from schoolfees.core.models import ChallanSequence


def format_challan_number(
    month: str,
    sequence: int,
    prefix: Optional[str] = None,
    padding: Optional[int] = None,
) -> str:
    """
    Examples:
        ("2025-03", 1)    -> CH-202503-001
        ("2025-03", 1234) -> CH-202503-1234
    """
    year, mon = parse_month(month)
    prefix = prefix if prefix is not None else settings.challan_number_prefix
    padding = padding if padding is not None else settings.challan_number_padding
    return f"{prefix}-{year:04d}{mon:02d}-{str(sequence).zfill(padding)}"


async def next_challan_number(db: AsyncSession, tenant_id: UUID, month: str) -> str:
    """Increment the tenant/month counter and return the next number. Caller must commit."""
    parse_month(month)
    seq = (
        await db.execute(
            select(ChallanSequence)
            .where(ChallanSequence.tenant_id == tenant_id, ChallanSequence.month == month)
            .with_for_update()
        )
    ).scalar_one_or_none()
    if seq is None:
        seq = ChallanSequence(tenant_id=tenant_id, month=month, current_value=0)
        db.add(seq)
    seq.current_value = (seq.current_value or 0) + 1
    await db.flush()
    return format_challan_number(month, seq.current_value)
