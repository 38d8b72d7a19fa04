"""
User & Role Administration

Super admins manage every user; business owners manage the users of their
own business. Custom roles are stored as ``RolePermission`` rows.
"""

import logging
from typing import Any, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.exceptions import NotFoundError, PermissionDeniedError, ValidationFailedError
from stallfront.core.permissions import (
    PREDEFINED_ROLES,
    SUPER_ADMIN,
    ensure_business_access,
    invalid_permissions,
    require_permission,
)
from stallfront.core.security import SessionData
from stallfront.models import MagicLinkPurpose, RolePermission, User, UserStatus, utcnow
from stallfront.services.accounts import check_roles_grantable, create_magic_link, magic_link_url
from stallfront.services.activity import ActivityAction, log_activity
from stallfront.services.notifications import get_notification_service

logger = logging.getLogger(__name__)


async def list_users(
    db: AsyncSession,
    session: SessionData,
    business_id: Optional[str] = None,
    role: Optional[str] = None,
    status: Optional[str] = None,
) -> list[User]:
    query = select(User)
    if session.is_super_admin:
        if business_id:
            query = query.where(User.business_id == business_id)
    else:
        await require_permission(db, session, "users:invite")
        ensure_business_access(session, business_id or session.business_id)
        query = query.where(User.business_id == session.business_id)
    if status:
        query = query.where(User.status == status)
    result = await db.execute(query.order_by(User.created_at.desc()))
    users = list(result.scalars().all())
    if role:
        users = [u for u in users if role in u.roles]
    return users


async def get_user(db: AsyncSession, session: SessionData, user_id: str) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if user.id != session.user_id and not session.is_super_admin:
        ensure_business_access(session, user.business_id)
    return user


async def update_roles(db: AsyncSession, session: SessionData, user_id: str, roles: list[str]) -> User:
    await require_permission(db, session, "users:role:update")
    user = await get_user(db, session, user_id)
    if SUPER_ADMIN in user.roles and not session.is_super_admin:
        raise PermissionDeniedError("Only a super admin can change a super admin's roles")
    await check_roles_grantable(db, session, roles, user.business_id)

    previous = user.roles
    user.roles = roles
    user.updated_at = utcnow()
    log_activity(db, ActivityAction.USER_ROLES_UPDATED, user_id=session.user_id, entity_type="user",
                 entity_id=user.id, details={"from": previous, "to": user.roles})
    await db.commit()
    logger.info(f"Roles of {user.email} changed {previous} -> {user.roles}")
    return user


async def set_user_status(db: AsyncSession, session: SessionData, user_id: str, status: str) -> User:
    await require_permission(db, session, "users:role:update")
    user = await get_user(db, session, user_id)
    if user.id == session.user_id:
        raise ValidationFailedError("You cannot change your own status")
    if SUPER_ADMIN in user.roles and not session.is_super_admin:
        raise PermissionDeniedError("Only a super admin can change a super admin")

    previous = user.status
    user.status = UserStatus(status).value
    user.updated_at = utcnow()
    log_activity(db, ActivityAction.USER_STATUS_UPDATED, user_id=session.user_id, entity_type="user",
                 entity_id=user.id, details={"from": previous, "to": user.status})
    await db.commit()
    return user


async def send_password_reset(db: AsyncSession, session: SessionData, user_id: str) -> User:
    """Admin-triggered reset: the user gets a link and must choose a new password."""
    await require_permission(db, session, "users:role:update")
    user = await get_user(db, session, user_id)
    user.password_change_required = True
    link = create_magic_link(db, user.email, MagicLinkPurpose.PASSWORD_RESET, user.id)
    log_activity(db, ActivityAction.PASSWORD_RESET_REQUEST, user_id=session.user_id, entity_type="user",
                 entity_id=user.id, details={"by_admin": True})
    await db.commit()
    await get_notification_service().notify_password_reset(user.email, magic_link_url(link))
    return user


async def delete_user(db: AsyncSession, session: SessionData, user_id: str) -> None:
    if not session.is_super_admin:
        raise PermissionDeniedError("Only a super admin can delete users")
    if user_id == session.user_id:
        raise ValidationFailedError("You cannot delete your own account")
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    log_activity(db, ActivityAction.USER_DELETED, user_id=session.user_id, entity_type="user",
                 entity_id=user.id, details={"email": user.email})
    await db.delete(user)
    await db.commit()
    logger.info(f"User {user.email} deleted by {session.email}")


# =============================================================================
# ROLES
# =============================================================================

async def list_roles(db: AsyncSession, session: SessionData, business_id: Optional[str] = None) -> dict[str, Any]:
    """Predefined roles plus the custom roles visible to the business."""
    business_id = business_id or session.business_id
    scope = [RolePermission.business_id.is_(None)]
    if business_id:
        if not session.is_super_admin:
            ensure_business_access(session, business_id)
        scope.append(RolePermission.business_id == business_id)

    result = await db.execute(select(RolePermission).where(or_(*scope)).order_by(RolePermission.role_name))
    return {
        "predefined": {name: sorted(perms) for name, perms in PREDEFINED_ROLES.items()},
        "custom": [
            {
                "id": row.id,
                "role_name": row.role_name,
                "business_id": row.business_id,
                "permissions": row.permissions,
            }
            for row in result.scalars()
        ],
    }


async def save_custom_role(
    db: AsyncSession,
    session: SessionData,
    role_name: str,
    permissions: list[str],
    business_id: Optional[str] = None,
) -> RolePermission:
    """Create or replace a custom role. Platform-wide roles need a super admin."""
    await require_permission(db, session, "users:role:update")
    if role_name in PREDEFINED_ROLES or role_name == SUPER_ADMIN:
        raise ValidationFailedError(f"'{role_name}' is a predefined role")

    unknown = invalid_permissions(permissions)
    if unknown:
        raise ValidationFailedError("Unknown permissions", details=unknown)

    if not session.is_super_admin:
        business_id = business_id or session.business_id
        ensure_business_access(session, business_id)

    query = select(RolePermission).where(RolePermission.role_name == role_name)
    if business_id:
        query = query.where(RolePermission.business_id == business_id)
    else:
        query = query.where(RolePermission.business_id.is_(None))
    role = (await db.execute(query)).scalar_one_or_none()

    csv = ",".join(sorted(set(permissions)))
    if role is None:
        role = RolePermission(business_id=business_id, role_name=role_name, permissions_csv=csv)
        db.add(role)
    else:
        role.permissions_csv = csv

    await db.flush()
    log_activity(db, ActivityAction.ROLE_SAVED, user_id=session.user_id, entity_type="role",
                 entity_id=role.id, details={"role_name": role_name, "permissions": role.permissions})
    await db.commit()
    return role
