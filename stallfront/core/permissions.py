"""
Role-Based Permissions

Predefined roles map to fixed permission sets. Businesses may add custom
roles, stored as ``RolePermission`` rows scoped to the business (or
platform-wide when ``business_id`` is NULL).
"""

import logging
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.exceptions import PermissionDeniedError
from stallfront.core.security import SessionData
from stallfront.models import RolePermission

logger = logging.getLogger(__name__)


ALL_PERMISSIONS: frozenset[str] = frozenset({
    "business:read",
    "business:update",
    "business:disable",
    "stall:create",
    "stall:read",
    "stall:update",
    "stall:delete",
    "product:create",
    "product:update",
    "product:delete",
    "product:approve",
    "orders:create",
    "orders:view",
    "orders:fulfil",
    "orders:export",
    "users:invite",
    "users:role:update",
    "manage_webhooks",
})

PREDEFINED_ROLES: dict[str, frozenset[str]] = {
    "business_owner": frozenset({
        "business:read",
        "business:update",
        "stall:create",
        "stall:read",
        "stall:update",
        "stall:delete",
        "product:create",
        "product:update",
        "product:delete",
        "product:approve",
        "orders:view",
        "orders:fulfil",
        "orders:export",
        "users:invite",
        "users:role:update",
        "manage_webhooks",
    }),
    "stall_manager": frozenset({
        "stall:read",
        "stall:update",
        "product:create",
        "product:update",
        "product:approve",
        "orders:view",
        "orders:fulfil",
        "users:invite",
    }),
    "menu_editor": frozenset({"product:create", "product:update", "orders:view"}),
    "order_viewer": frozenset({"orders:view"}),
    "customer": frozenset({"orders:create", "orders:view"}),
}

SUPER_ADMIN = "super_admin"
KNOWN_ROLES = frozenset(PREDEFINED_ROLES) | {SUPER_ADMIN, "admin"}

# Roles allowed to drive an order through its lifecycle
ORDER_MANAGER_ROLES = ("business_owner", "stall_manager", "admin")


async def get_user_permissions(db: AsyncSession, session: SessionData) -> set[str]:
    """Union of predefined-role permissions and matching custom role rows."""
    if session.is_super_admin:
        return set(ALL_PERMISSIONS)

    permissions: set[str] = set()
    for role in session.roles:
        permissions |= PREDEFINED_ROLES.get(role, frozenset())

    if session.roles:
        scope = [RolePermission.business_id.is_(None)]
        if session.business_id:
            scope.append(RolePermission.business_id == session.business_id)
        result = await db.execute(
            select(RolePermission).where(
                RolePermission.role_name.in_(session.roles),
                or_(*scope),
            )
        )
        for row in result.scalars():
            permissions.update(row.permissions)

    return permissions


async def check_permission(db: AsyncSession, session: SessionData, permission: str) -> bool:
    if session.is_super_admin:
        return True
    return permission in await get_user_permissions(db, session)


async def require_permission(db: AsyncSession, session: SessionData, permission: str) -> None:
    if not await check_permission(db, session, permission):
        logger.info(f"Permission denied: user={session.user_id} permission={permission}")
        raise PermissionDeniedError(f"Missing permission: {permission}")


def ensure_business_access(session: SessionData, business_id: Optional[str]) -> None:
    """Staff may only act inside their own business."""
    if session.is_super_admin:
        return
    if not business_id or session.business_id != business_id:
        raise PermissionDeniedError("You do not have access to this business")


def invalid_permissions(names: list[str]) -> list[str]:
    return sorted(name for name in names if name not in ALL_PERMISSIONS)
