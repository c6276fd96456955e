from typing import Dict, Optional, Tuple
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.auth.models import Role, User
from schoolfees.auth.schemas import CurrentUser
from schoolfees.auth.security import decode_access_token
from schoolfees.db.session import get_db


# Tokens are issued by the hosted auth provider; this service only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


def _unauthenticated() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="User not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


def _operator_ids(token: str) -> Optional[Tuple[UUID, UUID]]:
    """(user_id, tenant_id) from a valid token, None when the token is bad or incomplete."""
    try:
        claims = decode_access_token(token)
        return UUID(str(claims["user_id"])), UUID(str(claims["tenant_id"]))
    except (JWTError, KeyError, ValueError):
        return None


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """The operator behind the request; role and permissions are read from the tenant's rows, not the token."""
    ids = _operator_ids(token)
    if ids is None:
        raise _unauthenticated()
    user_id, tenant_id = ids

    user = (
        await db.execute(select(User).where(User.id == user_id, User.tenant_id == tenant_id))
    ).scalar_one_or_none()
    if not user or user.status != "ACTIVE":
        raise _unauthenticated()

    role = (
        await db.execute(select(Role).where(Role.tenant_id == tenant_id, Role.name == user.role))
    ).scalar_one_or_none()
    permissions: Dict[str, Dict[str, bool]] = dict(role.permissions or {}) if role else {}

    return CurrentUser(id=user.id, tenant_id=user.tenant_id, role=user.role, permissions=permissions)
