from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freightguard.core.errors import NotFound
from freightguard.db.models import Role, User


async def get_user(db: AsyncSession, user_id: int) -> Optional[User]:
    return await db.get(User, user_id)


async def get_role(db: AsyncSession, role_id: int) -> Optional[Role]:
    return await db.get(Role, role_id)


async def get_user_or_404(db: AsyncSession, user_id: int) -> User:
    user = await get_user(db, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found")
    return user


async def get_role_or_404(db: AsyncSession, role_id: int) -> Role:
    role = await get_role(db, role_id)
    if role is None:
        raise NotFound(f"Role {role_id} not found")
    return role


async def list_roles_by_organization(db: AsyncSession, organization_id: str) -> List[Role]:
    # System roles first, then alphabetical
    result = await db.execute(
        select(Role)
        .where(Role.organization_id == organization_id)
        .order_by(Role.is_custom, Role.name)
    )
    return list(result.scalars().all())


async def first_user_with_role(db: AsyncSession, role_id: int) -> Optional[int]:
    """Id of any user still pointing at ``role_id``; stops at the first match."""
    result = await db.execute(
        select(User.id).where(User.role_id == role_id).limit(1)
    )
    return result.scalar_one_or_none()


async def list_users_by_role(db: AsyncSession, role_id: int) -> List[User]:
    result = await db.execute(
        select(User).where(User.role_id == role_id).order_by(User.id)
    )
    return list(result.scalars().all())
