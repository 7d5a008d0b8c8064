"""
Permission Catalog

The static universe of permission identifiers, grouped by category. The
catalog is read from the permissions table once at startup and then handed
to the resolver as a read-only value; it is only replaced by a restart or
an explicit ``invalidate_catalog()`` followed by a reload.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freightguard.core.logging import roles_logger
from freightguard.db.models import PermissionModel

# A role holding this name is granted every permission in the catalog,
# including ones added after the role was created.
WILDCARD = "all"

PERMISSION_CATEGORIES: Tuple[str, ...] = (
    "Load Management",
    "Driver Management",
    "Fleet Management",
    "Document Management",
    "User Management",
    "Analytics",
    "Billing",
    "System Settings",
)

SEED_PERMISSIONS: Dict[str, List[Tuple[str, str]]] = {
    "Load Management": [
        ("read:loads", "View load information"),
        ("create:loads", "Create new loads"),
        ("update:loads", "Update load details"),
        ("delete:loads", "Delete loads"),
        ("assign:loads", "Assign loads to carriers/drivers"),
        ("track:loads", "Track load status and location"),
    ],
    "Driver Management": [
        ("read:drivers", "View driver information"),
        ("create:drivers", "Create new driver profiles"),
        ("update:drivers", "Update driver details"),
        ("delete:drivers", "Delete driver profiles"),
        ("assign:drivers", "Assign drivers to loads"),
        ("track:drivers", "Track driver location and status"),
    ],
    "Fleet Management": [
        ("read:fleet", "View fleet information"),
        ("create:vehicles", "Add vehicles to the fleet"),
        ("update:vehicles", "Update vehicle details"),
        ("delete:vehicles", "Remove vehicles from the fleet"),
        ("manage:maintenance", "Schedule and track vehicle maintenance"),
    ],
    "Document Management": [
        ("read:documents", "View documents"),
        ("upload:documents", "Upload new documents"),
        ("update:documents", "Update document details"),
        ("delete:documents", "Delete documents"),
        ("verify:documents", "Verify document authenticity"),
    ],
    "User Management": [
        ("read:users", "View user information"),
        ("create:users", "Create new user accounts"),
        ("update:users", "Update user details"),
        ("delete:users", "Delete user accounts"),
        ("manage:roles", "Assign and manage user roles"),
    ],
    "Analytics": [
        ("view:analytics", "Access analytics dashboards"),
        ("export:reports", "Export data reports"),
        ("create:reports", "Create custom reports"),
    ],
    "Billing": [
        ("view:invoices", "View invoice information"),
        ("create:invoices", "Create new invoices"),
        ("update:invoices", "Update invoice details"),
        ("process:payments", "Process payments"),
    ],
    "System Settings": [
        ("manage:settings", "Change system settings and run maintenance"),
        ("view:audit", "View audit and history trails"),
        ("manage:integrations", "Configure third-party integrations"),
    ],
}


@dataclass(frozen=True)
class PermissionEntry:
    name: str
    description: str
    category: str


@dataclass(frozen=True)
class PermissionCatalog:
    entries: Tuple[PermissionEntry, ...] = field(default_factory=tuple)

    @property
    def names(self) -> frozenset:
        return frozenset(e.name for e in self.entries)

    def __contains__(self, name: str) -> bool:
        return any(e.name == name for e in self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def by_category(self, category: str) -> List[PermissionEntry]:
        return [e for e in self.entries if e.category == category]

    def unknown(self, names: Iterable[str]) -> set:
        """Names that are neither in the catalog nor the wildcard."""
        known = self.names
        return {n for n in names if n != WILDCARD and n not in known}

    def with_permission(self, name: str, description: str = "", category: str = "System Settings") -> "PermissionCatalog":
        """Return a new catalog that also contains ``name``."""
        if name in self:
            return self
        return PermissionCatalog(self.entries + (PermissionEntry(name, description, category),))

    @classmethod
    def from_seed(cls) -> "PermissionCatalog":
        return cls(tuple(
            PermissionEntry(name, description, category)
            for category, perms in SEED_PERMISSIONS.items()
            for name, description in perms
        ))


_catalog: Optional[PermissionCatalog] = None


def get_catalog() -> PermissionCatalog:
    """Process-wide catalog; falls back to the seed set if nothing was loaded yet."""
    global _catalog
    if _catalog is None:
        _catalog = PermissionCatalog.from_seed()
    return _catalog


def set_catalog(catalog: PermissionCatalog) -> None:
    global _catalog
    _catalog = catalog


def invalidate_catalog() -> None:
    global _catalog
    _catalog = None


async def seed_permissions(db: AsyncSession) -> int:
    """Insert any seed permissions missing from the table. Idempotent."""
    result = await db.execute(select(PermissionModel.name))
    existing = {row[0] for row in result.fetchall()}

    added = 0
    for category, perms in SEED_PERMISSIONS.items():
        for name, description in perms:
            if name not in existing:
                db.add(PermissionModel(name=name, description=description, category=category))
                added += 1

    if added:
        await db.commit()
        roles_logger.info("permissions_seeded", added=added)
    return added


async def load_catalog(db: AsyncSession) -> PermissionCatalog:
    """Read the permissions table and install it as the process-wide catalog."""
    result = await db.execute(
        select(PermissionModel).order_by(PermissionModel.category, PermissionModel.name)
    )
    catalog = PermissionCatalog(tuple(
        PermissionEntry(p.name, p.description, p.category)
        for p in result.scalars().all()
    ))
    set_catalog(catalog)
    roles_logger.info("permission_catalog_loaded", size=len(catalog))
    return catalog
