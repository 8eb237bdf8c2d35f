from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolfees.auth.models import User
from schoolfees.auth.schemas import CurrentUser
from schoolfees.core.config import settings
from schoolfees.db.session import get_db


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Resolve the authenticated user and their tenant/campus context from the access token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise credentials_exception

    user_id_str = payload.get("user_id") or payload.get("sub")
    tenant_id_str = payload.get("tenant_id")
    role_name = payload.get("role")
    if not user_id_str or not tenant_id_str or not role_name:
        raise credentials_exception

    try:
        user_id = UUID(user_id_str)
        tenant_id = UUID(tenant_id_str)
    except ValueError:
        raise credentials_exception

    campus_id: Optional[int] = None
    campus_claim = payload.get("campus_id")
    if campus_claim is not None:
        try:
            campus_id = int(campus_claim)
        except (TypeError, ValueError):
            raise credentials_exception

    stmt = select(User).where(User.id == user_id, User.tenant_id == tenant_id)
    result = await db.execute(stmt)
    user = result.scalar_one_or_none()
    if not user or user.status != "ACTIVE":
        raise credentials_exception

    return CurrentUser(
        id=user.id,
        tenant_id=user.tenant_id,
        role=role_name,
        username=user.username,
        campus_id=campus_id if campus_id is not None else user.campus_id,
    )


async def get_campus_id(
    current_user: CurrentUser = Depends(get_current_user),
) -> int:
    """Dependency: campus-scoped endpoints need a campus in the session."""
    if current_user.campus_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Campus context missing",
        )
    return current_user.campus_id
