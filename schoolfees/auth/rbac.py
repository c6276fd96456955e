from fastapi import Depends, HTTPException, status

from schoolfees.auth.dependencies import get_current_user
from schoolfees.auth.schemas import CurrentUser

# School owners and platform staff see every fee screen
ADMIN_ROLES = frozenset({"SUPER_ADMIN", "PLATFORM_ADMIN", "OWNER"})


def has_permission(user: CurrentUser, module: str, action: str) -> bool:
    if user.role in ADMIN_ROLES:
        return True
    return bool(user.permissions.get(module, {}).get(action, False))


def check_permission(module: str, action: str):
    """Route dependency, e.g. ``Depends(check_permission("challans", "create"))``."""

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> None:
        if not has_permission(current_user, module, action):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")

    return _checker
