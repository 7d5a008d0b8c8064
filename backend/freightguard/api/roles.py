"""
Role & permission management endpoints.
Every route requires 'manage:roles'.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from freightguard.core.errors import ValidationError
from freightguard.db.database import get_db
from freightguard.db.models import User
from freightguard.permissions import manager
from freightguard.permissions.catalog import get_catalog
from freightguard.permissions.dependencies import require_permission
from freightguard.permissions.schemas import (
    PermissionListResponse,
    PermissionOut,
    RoleCreate,
    RoleListResponse,
    RoleOut,
    RoleUpdate,
    UserRoleOut,
)

router = APIRouter()

require_manage_roles = require_permission("manage:roles")


@router.get("/permissions", response_model=PermissionListResponse)
async def list_permissions(
    category: Optional[str] = Query(None, description="Only permissions in this category"),
    user: User = Depends(require_manage_roles),
):
    catalog = get_catalog()
    entries = catalog.by_category(category) if category else list(catalog.entries)
    return PermissionListResponse(
        permissions=[PermissionOut(name=e.name, description=e.description, category=e.category) for e in entries],
        total=len(entries),
    )


@router.get("/roles", response_model=RoleListResponse)
async def list_roles(
    organization_id: Optional[str] = Query(None, description="Defaults to the caller's organization"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_manage_roles),
):
    org = organization_id or user.organization_id
    if not org:
        raise ValidationError("organization_id is required")
    roles = await manager.list_roles_by_organization(db, org)
    return RoleListResponse(roles=[RoleOut.from_role(r) for r in roles], total=len(roles))


@router.post("/roles", response_model=RoleOut, status_code=201)
async def create_role(
    request: RoleCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_manage_roles),
):
    role = await manager.create_role(db, request, created_by=user.id)
    return RoleOut.from_role(role)


@router.get("/roles/{role_id}", response_model=RoleOut)
async def get_role(
    role_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_manage_roles),
):
    return RoleOut.from_role(await manager.get_role(db, role_id))


@router.patch("/roles/{role_id}", response_model=RoleOut)
async def update_role(
    role_id: int,
    request: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_manage_roles),
):
    role = await manager.update_role(db, role_id, request, updated_by=user.id)
    return RoleOut.from_role(role)


@router.delete("/roles/{role_id}")
async def delete_role(
    role_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_manage_roles),
):
    await manager.delete_role(db, role_id, deleted_by=user.id)
    return {"message": f"Role {role_id} deleted successfully", "deleted": True}


@router.get("/roles/{role_id}/users", response_model=List[UserRoleOut])
async def list_role_users(
    role_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_manage_roles),
):
    return await manager.get_users_by_role(db, role_id)
