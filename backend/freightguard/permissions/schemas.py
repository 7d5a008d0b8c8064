from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from freightguard.db.models import Role


class DashboardConfigIn(BaseModel):
    visible_tabs: List[str] = Field(..., min_length=1)
    default_tab: str = Field(..., min_length=1)
    widgets: List[str] = Field(default_factory=list)


class DashboardConfigOut(BaseModel):
    visible_tabs: List[str]
    default_tab: str
    widgets: List[str]


class RoleCreate(BaseModel):
    """Request body for creating a custom role."""
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    permissions: List[str] = Field(default_factory=list, description="Permission names, or 'all'")
    organization_id: str = Field(..., min_length=1, max_length=64)
    is_custom: bool = True
    dashboard_config: Optional[Dict[str, Any]] = None


class RoleUpdate(BaseModel):
    """Partial update; only fields present in the request body are applied."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    permissions: Optional[List[str]] = None
    dashboard_config: Optional[Dict[str, Any]] = None


class RoleOut(BaseModel):
    id: int
    name: str
    description: str
    permissions: List[str]
    organization_id: str
    is_custom: bool
    dashboard_config: Optional[Dict[str, Any]]
    created_by: Optional[int]
    updated_by: Optional[int]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_role(cls, role: Role) -> "RoleOut":
        return cls(
            id=role.id,
            name=role.name,
            description=role.description or "",
            permissions=sorted(role.permission_names),
            organization_id=role.organization_id,
            is_custom=role.is_custom,
            dashboard_config=role.dashboard_config_data,
            created_by=role.created_by,
            updated_by=role.updated_by,
            created_at=role.created_at,
            updated_at=role.updated_at,
        )


class RoleListResponse(BaseModel):
    roles: List[RoleOut]
    total: int


class PermissionOut(BaseModel):
    name: str
    description: str
    category: str

    class Config:
        from_attributes = True


class PermissionListResponse(BaseModel):
    permissions: List[PermissionOut]
    total: int


class AssignRoleRequest(BaseModel):
    role_id: int = Field(..., description="ID of the role to assign")


class UserRoleOut(BaseModel):
    id: int
    email: str
    name: str
    legacy_role: Optional[str]
    role_id: Optional[int]
    organization_id: Optional[str]

    class Config:
        from_attributes = True


class EffectivePermissionsOut(BaseModel):
    user_id: int
    subject: str
    permissions: List[str]
