"""
Role Resolver

Single place that decides what a user may do. The precedence rule lives in
``resolve_subject`` and nowhere else:

    role_id set              -> CustomRole (Unprivileged if the row is gone)
    legacy_role == "admin"   -> LegacyAdmin
    anything else            -> Unprivileged

Permission checks never fail: a missing role means no permissions.
"""
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from freightguard.core.logging import roles_logger
from freightguard.db.enums import LegacyRole
from freightguard.db.models import Role, User
from freightguard.permissions.catalog import WILDCARD, PermissionCatalog, get_catalog
from freightguard.permissions.dashboard import DashboardConfig, merge_dashboard_config
from freightguard.permissions import repository


@dataclass(frozen=True)
class LegacyAdmin:
    """Pre-roles admin account: always fully privileged."""


@dataclass(frozen=True)
class CustomRole:
    role_id: int
    permissions: frozenset


@dataclass(frozen=True)
class Unprivileged:
    """No role and no legacy admin flag."""


AuthSubject = Union[LegacyAdmin, CustomRole, Unprivileged]


def resolve_subject(user: User, role: Optional[Role]) -> AuthSubject:
    if user.role_id is not None:
        if role is None:
            return Unprivileged()
        return CustomRole(role_id=role.id, permissions=role.permission_names)
    if user.legacy_role == LegacyRole.admin.value:
        return LegacyAdmin()
    return Unprivileged()


def effective_permissions(subject: AuthSubject, catalog: PermissionCatalog) -> frozenset:
    if isinstance(subject, LegacyAdmin):
        return catalog.names
    if isinstance(subject, CustomRole):
        if WILDCARD in subject.permissions:
            return catalog.names | subject.permissions
        return subject.permissions
    return frozenset()


def subject_has_permission(subject: AuthSubject, permission: str, catalog: PermissionCatalog) -> bool:
    if isinstance(subject, CustomRole) and WILDCARD in subject.permissions:
        return True
    return permission in effective_permissions(subject, catalog)


async def load_subject(db: AsyncSession, user: User) -> AuthSubject:
    role = None
    if user.role_id is not None:
        role = await repository.get_role(db, user.role_id)
        if role is None:
            roles_logger.warning("dangling_role_reference", user_id=user.id, role_id=user.role_id)
    return resolve_subject(user, role)


async def resolve_effective_permissions(
    db: AsyncSession,
    user: User,
    catalog: Optional[PermissionCatalog] = None,
) -> frozenset:
    subject = await load_subject(db, user)
    return effective_permissions(subject, catalog or get_catalog())


async def has_permission(
    db: AsyncSession,
    user: User,
    permission: str,
    catalog: Optional[PermissionCatalog] = None,
) -> bool:
    subject = await load_subject(db, user)
    allowed = subject_has_permission(subject, permission, catalog or get_catalog())
    roles_logger.debug(
        "permission_checked",
        user_id=user.id,
        permission=permission,
        subject=type(subject).__name__,
        allowed=allowed,
    )
    return allowed


async def check_user_permission(
    db: AsyncSession,
    user_id: int,
    permission: str,
    catalog: Optional[PermissionCatalog] = None,
) -> bool:
    """Id-based check; an unknown user is simply not allowed."""
    user = await repository.get_user(db, user_id)
    if user is None:
        return False
    return await has_permission(db, user, permission, catalog)


async def resolve_dashboard_config(db: AsyncSession, user: User) -> DashboardConfig:
    role_config = None
    if user.dashboard_config is None and user.role_id is not None:
        role = await repository.get_role(db, user.role_id)
        if role is not None:
            role_config = role.dashboard_config_data
    return merge_dashboard_config(user.dashboard_config_data, role_config)
