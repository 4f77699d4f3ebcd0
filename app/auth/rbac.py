from typing import Dict

from fastapi import Depends, HTTPException, status

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser

# module -> action -> allowed. Admin is not listed: it can do everything.
ROLE_PERMISSIONS: Dict[str, Dict[str, Dict[str, bool]]] = {
    "faculty": {
        "attendance": {"create": True, "read": True},
        "subjects": {"read": True},
    },
    "student": {
        "registrations": {"create": True, "read": True, "delete": True},
        "attendance": {"read": True},
        "subjects": {"read": True},
    },
}


def has_permission(role: str, module: str, action: str) -> bool:
    if role == "admin":
        return True
    return ROLE_PERMISSIONS.get(role, {}).get(module, {}).get(action, False)


async def require_admin(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Require the admin role. Used for registration approval and bulk actions."""
    if current_user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only an administrator can perform this action",
        )
    return current_user


def check_permission(module: str, action: str):
    """
    Dependency factory to enforce a specific permission.

    Example:
        Depends(check_permission("attendance", "create"))
    """

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> None:
        if not has_permission(current_user.role, module, action):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )

    return _checker
