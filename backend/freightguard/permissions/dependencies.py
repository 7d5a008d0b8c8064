from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from freightguard.core.logging import api_logger
from freightguard.db.database import get_db
from freightguard.db.models import User
from freightguard.permissions import repository
from freightguard.permissions.exceptions import NotAuthenticated, PermissionDenied
from freightguard.permissions.resolver import has_permission


async def get_current_user(
    x_user_id: Optional[int] = Header(None, alias="X-User-Id"),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Acting user; identity is established upstream and passed in a header."""
    if x_user_id is None:
        raise NotAuthenticated()
    user = await repository.get_user(db, x_user_id)
    if user is None:
        raise NotAuthenticated(f"Unknown user {x_user_id}")
    return user


def require_permission(permission: str):
    async def dependency(
        db: AsyncSession = Depends(get_db),
        user: User = Depends(get_current_user),
    ) -> User:
        if not await has_permission(db, user, permission):
            api_logger.warning("permission_denied", user_id=user.id, permission=permission)
            raise PermissionDenied(permission)
        return user

    return dependency
