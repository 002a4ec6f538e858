"""
Permission resolution service.

An operator's effective permissions are the role defaults, overridden by
per-role rows in role_permissions, plus any permissions granted directly
on the user.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.models.role_permission import DEFAULT_ROLE_PERMISSIONS, RolePermission
from backoffice.models.user import User


async def get_role_permissions(db: AsyncSession, role: str) -> dict[str, bool]:
    """Get all permissions for a role, with defaults applied."""
    # Start with defaults
    permissions = dict(DEFAULT_ROLE_PERMISSIONS.get(role, {}))

    # Override with any customizations from database
    result = await db.execute(
        select(RolePermission).where(RolePermission.role == role)
    )
    for perm in result.scalars():
        permissions[perm.permission] = perm.granted

    return permissions


async def get_effective_permissions(db: AsyncSession, user: User) -> frozenset[str]:
    """Permission names granted to the user by role or directly."""
    role_permissions = await get_role_permissions(db, user.role)
    granted = {name for name, allowed in role_permissions.items() if allowed}
    granted.update(user.permissions or [])
    return frozenset(granted)

