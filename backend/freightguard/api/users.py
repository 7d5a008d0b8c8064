from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from freightguard.db.database import get_db
from freightguard.db.models import User
from freightguard.permissions import manager
from freightguard.permissions.catalog import get_catalog
from freightguard.permissions.dependencies import get_current_user, require_permission
from freightguard.permissions.resolver import effective_permissions, load_subject, resolve_dashboard_config
from freightguard.permissions.schemas import (
    AssignRoleRequest,
    DashboardConfigIn,
    DashboardConfigOut,
    EffectivePermissionsOut,
    UserRoleOut,
)
from freightguard.services.notifications import get_user_notifications

router = APIRouter()

require_manage_roles = require_permission("manage:roles")


class NotificationOut(BaseModel):
    id: int
    type: str
    title: str
    message: str
    related_id: Optional[str] = None
    related_type: Optional[str] = None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("/me/permissions", response_model=EffectivePermissionsOut)
async def my_permissions(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    subject = await load_subject(db, user)
    return EffectivePermissionsOut(
        user_id=user.id,
        subject=type(subject).__name__,
        permissions=sorted(effective_permissions(subject, get_catalog())),
    )


@router.get("/me/dashboard", response_model=DashboardConfigOut)
async def my_dashboard(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    config = await resolve_dashboard_config(db, user)
    return DashboardConfigOut(**config.to_data())


@router.get("/me/notifications", response_model=List[NotificationOut])
async def my_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await get_user_notifications(db, user.id, unread_only=unread_only, limit=limit)


@router.put("/me/dashboard", response_model=DashboardConfigOut)
async def update_my_dashboard(
    request: Optional[DashboardConfigIn] = Body(None),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Save a personal dashboard; an empty body clears it back to the role's."""
    user = await manager.update_user_dashboard_config(
        db, user.id, request.model_dump() if request else None, updated_by=user.id
    )
    config = await resolve_dashboard_config(db, user)
    return DashboardConfigOut(**config.to_data())


@router.put("/{user_id}/role", response_model=UserRoleOut)
async def assign_role(
    user_id: int,
    request: AssignRoleRequest,
    db: AsyncSession = Depends(get_db),
    actor: User = Depends(require_manage_roles),
):
    return await manager.assign_role_to_user(db, user_id, request.role_id, assigned_by=actor.id)


@router.delete("/{user_id}/role", response_model=UserRoleOut)
async def unassign_role(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    actor: User = Depends(require_manage_roles),
):
    return await manager.unassign_role_from_user(db, user_id, unassigned_by=actor.id)
