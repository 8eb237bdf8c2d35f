from fastapi import Depends, HTTPException, status

from schoolfees.auth.dependencies import get_current_user
from schoolfees.auth.schemas import CurrentUser
from schoolfees.core.enums import UserRole


def require_roles(*roles: UserRole):
    """
    Dependency factory to restrict an endpoint to the given roles. Admin always passes.

    Example:
        Depends(require_roles(UserRole.ADMIN, UserRole.EMPLOYEE))
    """
    allowed = {r.value for r in roles} | {UserRole.ADMIN.value}

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return _checker
