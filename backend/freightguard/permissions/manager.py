"""
Role Manager

Create, edit and delete organization roles and move users between them.
Every successful mutation leaves an audit_logs row in the same transaction.

Name uniqueness is enforced by ``uq_roles_by_organization_name``; a losing
concurrent insert surfaces as ``DuplicateRole``.
"""
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from freightguard.audit.constants import AuditActions, AuditTargetTypes
from freightguard.audit.history import log_audit_event
from freightguard.core.errors import (
    DuplicateRole, InvalidPermission, RoleInUse, SystemRoleImmutable, ValidationError,
)
from freightguard.core.logging import roles_logger
from freightguard.db.database import utcnow
from freightguard.db.models import Role, User, _dumps
from freightguard.permissions import repository
from freightguard.permissions.catalog import WILDCARD, PermissionCatalog, get_catalog
from freightguard.permissions.dashboard import DEFAULT_DASHBOARD_CONFIG, validate_dashboard_config
from freightguard.permissions.schemas import RoleCreate, RoleUpdate


# Platform roles seeded per organization; these are never editable.
SYSTEM_ROLES: Dict[str, Dict[str, Any]] = {
    "admin": {
        "description": "Full access to every feature",
        "permissions": [WILDCARD],
        "dashboard_config": {
            "visible_tabs": ["loads", "analytics", "users", "settings"],
            "default_tab": "loads",
            "widgets": ["activeLoads", "completedLoads", "totalLoads", "revenue"],
        },
    },
    "shipper": {
        "description": "Creates and tracks loads",
        "permissions": ["read:loads", "create:loads", "update:loads", "track:loads",
                        "read:documents", "upload:documents", "view:invoices"],
        "dashboard_config": None,
    },
    "carrier": {
        "description": "Moves loads with its own fleet and drivers",
        "permissions": ["read:loads", "track:loads", "assign:drivers", "read:drivers",
                        "read:fleet", "read:documents", "upload:documents"],
        "dashboard_config": None,
    },
    "driver": {
        "description": "Drives assigned loads",
        "permissions": ["read:loads", "track:loads", "read:documents", "upload:documents"],
        "dashboard_config": {
            "visible_tabs": ["loads"],
            "default_tab": "loads",
            "widgets": ["activeLoads"],
        },
    },
}


def _normalize_permissions(names: Iterable[str], catalog: PermissionCatalog) -> List[str]:
    ordered = list(dict.fromkeys(names))
    invalid = catalog.unknown(ordered)
    if invalid:
        raise InvalidPermission(invalid)
    return ordered


def _role_snapshot(role: Role) -> Dict[str, Any]:
    return {
        "name": role.name,
        "description": role.description,
        "permissions": sorted(role.permission_names),
        "dashboard_config": role.dashboard_config_data,
    }


async def get_role(db: AsyncSession, role_id: int) -> Role:
    return await repository.get_role_or_404(db, role_id)


async def list_roles_by_organization(db: AsyncSession, organization_id: str) -> List[Role]:
    return await repository.list_roles_by_organization(db, organization_id)


async def get_users_by_role(db: AsyncSession, role_id: int) -> List[User]:
    await repository.get_role_or_404(db, role_id)
    return await repository.list_users_by_role(db, role_id)


async def create_role(
    db: AsyncSession,
    data: RoleCreate,
    created_by: Optional[int] = None,
    catalog: Optional[PermissionCatalog] = None,
) -> Role:
    """
    Create a custom role.

    Rules:
    - Every permission must exist in the catalog ('all' is allowed)
    - System roles are seeded, never created through this call
    - The dashboard config, when given, must be consistent; otherwise the
      default config is stored
    """
    permissions = _normalize_permissions(data.permissions, catalog or get_catalog())
    if not data.is_custom:
        raise ValidationError("System roles cannot be created; only custom roles are allowed")

    config = validate_dashboard_config(data.dashboard_config) or DEFAULT_DASHBOARD_CONFIG

    now = utcnow()
    role = Role(
        name=data.name,
        description=data.description,
        permissions=_dumps(permissions),
        organization_id=data.organization_id,
        is_custom=True,
        dashboard_config=_dumps(config.to_data()),
        created_by=created_by,
        updated_by=created_by,
        created_at=now,
        updated_at=now,
    )
    db.add(role)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        roles_logger.warning("role_name_conflict", organization_id=data.organization_id, name=data.name)
        raise DuplicateRole(data.name)

    await log_audit_event(
        db,
        action=AuditActions.ROLE_CREATE,
        target_type=AuditTargetTypes.ROLE,
        target_id=role.id,
        description=f"Created role '{role.name}'",
        actor_id=created_by,
        meta={"after": _role_snapshot(role), "organization_id": role.organization_id},
        commit=False,
    )
    await db.commit()
    await db.refresh(role)

    roles_logger.info("role_created", role_id=role.id, name=role.name, organization_id=role.organization_id)
    return role


async def update_role(
    db: AsyncSession,
    role_id: int,
    data: RoleUpdate,
    updated_by: Optional[int] = None,
    catalog: Optional[PermissionCatalog] = None,
) -> Role:
    role = await repository.get_role_or_404(db, role_id)
    if not role.is_custom:
        raise SystemRoleImmutable(role.name)

    patch = data.model_dump(exclude_unset=True)
    before = _role_snapshot(role)

    if patch.get("name") is not None:
        role.name = patch["name"]
    if patch.get("description") is not None:
        role.description = patch["description"]
    if patch.get("permissions") is not None:
        role.permissions = _dumps(_normalize_permissions(patch["permissions"], catalog or get_catalog()))
    if "dashboard_config" in patch:
        config = validate_dashboard_config(patch["dashboard_config"])
        role.dashboard_config = _dumps(config.to_data()) if config else None

    role.updated_by = updated_by
    role.updated_at = utcnow()

    new_name = role.name
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise DuplicateRole(new_name)

    after = _role_snapshot(role)
    added = sorted(set(after["permissions"]) - set(before["permissions"]))
    removed = sorted(set(before["permissions"]) - set(after["permissions"]))
    await log_audit_event(
        db,
        action=AuditActions.ROLE_UPDATE,
        target_type=AuditTargetTypes.ROLE,
        target_id=role.id,
        description=f"Updated role '{role.name}'",
        actor_id=updated_by,
        meta={
            "before": before,
            "after": after,
            "added": added,
            "removed": removed,
            "fields": sorted(patch),
        },
        commit=False,
    )
    await db.commit()
    await db.refresh(role)

    roles_logger.info("role_updated", role_id=role.id, fields=sorted(patch))
    return role


async def delete_role(db: AsyncSession, role_id: int, deleted_by: Optional[int] = None) -> None:
    """
    Delete a custom role.

    Rules:
    - System roles cannot be deleted
    - A role still assigned to any user cannot be deleted; nothing is
      reassigned on the caller's behalf
    """
    role = await repository.get_role_or_404(db, role_id)
    if not role.is_custom:
        raise SystemRoleImmutable(role.name, action="delete")

    if await repository.first_user_with_role(db, role_id) is not None:
        raise RoleInUse(role.name)

    snapshot = _role_snapshot(role)
    await db.delete(role)
    await log_audit_event(
        db,
        action=AuditActions.ROLE_DELETE,
        target_type=AuditTargetTypes.ROLE,
        target_id=role_id,
        description=f"Deleted role '{snapshot['name']}'",
        actor_id=deleted_by,
        meta={"before": snapshot},
        commit=False,
    )
    await db.commit()

    roles_logger.info("role_deleted", role_id=role_id, name=snapshot["name"])


async def assign_role_to_user(
    db: AsyncSession,
    user_id: int,
    role_id: int,
    assigned_by: Optional[int] = None,
) -> User:
    """Point a user at a role. Callers gate this on 'manage:roles'."""
    user = await repository.get_user_or_404(db, user_id)
    role = await repository.get_role_or_404(db, role_id)

    previous = user.role_id
    user.role_id = role.id
    user.updated_at = utcnow()

    await log_audit_event(
        db,
        action=AuditActions.USER_ROLE_ASSIGN,
        target_type=AuditTargetTypes.USER,
        target_id=user.id,
        description=f"Assigned role '{role.name}' to user {user.id}",
        actor_id=assigned_by,
        meta={"before": {"role_id": previous}, "after": {"role_id": role.id}},
        commit=False,
    )
    await db.commit()
    await db.refresh(user)

    roles_logger.info("role_assigned", user_id=user.id, role_id=role.id, previous_role_id=previous)
    return user


async def unassign_role_from_user(
    db: AsyncSession,
    user_id: int,
    unassigned_by: Optional[int] = None,
) -> User:
    """Clear a user's role; the legacy role (if any) applies again."""
    user = await repository.get_user_or_404(db, user_id)

    previous = user.role_id
    user.role_id = None
    user.updated_at = utcnow()

    await log_audit_event(
        db,
        action=AuditActions.USER_ROLE_UNASSIGN,
        target_type=AuditTargetTypes.USER,
        target_id=user.id,
        description=f"Removed role from user {user.id}",
        actor_id=unassigned_by,
        meta={"before": {"role_id": previous}, "after": {"role_id": None}},
        commit=False,
    )
    await db.commit()
    await db.refresh(user)

    roles_logger.info("role_unassigned", user_id=user.id, previous_role_id=previous)
    return user


async def update_user_dashboard_config(
    db: AsyncSession,
    user_id: int,
    config: Optional[Dict[str, Any]],
    updated_by: Optional[int] = None,
) -> User:
    """Set the user's own dashboard override; ``None`` falls back to the role config."""
    user = await repository.get_user_or_404(db, user_id)
    parsed = validate_dashboard_config(config)

    previous = user.dashboard_config_data
    user.dashboard_config = _dumps(parsed.to_data()) if parsed else None
    user.updated_at = utcnow()

    await log_audit_event(
        db,
        action=AuditActions.USER_DASHBOARD_UPDATE,
        target_type=AuditTargetTypes.USER,
        target_id=user.id,
        description=f"Updated dashboard for user {user.id}",
        actor_id=updated_by if updated_by is not None else user.id,
        meta={"before": previous, "after": parsed.to_data() if parsed else None},
        commit=False,
    )
    await db.commit()
    await db.refresh(user)
    return user


async def seed_system_roles(db: AsyncSession, organization_id: str) -> List[Role]:
    """
    Ensure the platform roles exist for an organization. Idempotent: only
    missing roles are inserted and the session is committed once.
    """
    result = await db.execute(
        select(Role.name).where(
            Role.organization_id == organization_id,
            Role.name.in_(list(SYSTEM_ROLES)),
        )
    )
    existing = {row[0] for row in result.fetchall()}

    now = utcnow()
    created = []
    for name, defaults in SYSTEM_ROLES.items():
        if name in existing:
            continue
        role = Role(
            name=name,
            description=defaults["description"],
            permissions=_dumps(defaults["permissions"]),
            organization_id=organization_id,
            is_custom=False,
            dashboard_config=_dumps(defaults["dashboard_config"]),
            created_at=now,
            updated_at=now,
        )
        db.add(role)
        created.append(role)

    if created:
        await db.commit()
        roles_logger.info(
            "system_roles_seeded",
            organization_id=organization_id,
            roles=[r.name for r in created],
        )
    return created
