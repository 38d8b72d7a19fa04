"""
User & Role Management Endpoints
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.dependencies import get_current_session, require_super_admin
from stallfront.core.permissions import ALL_PERMISSIONS
from stallfront.core.security import SessionData
from stallfront.database import get_db
from stallfront.schemas import CustomRoleCreate, RolesUpdate, UserOut, UserStatusUpdate
from stallfront.services import users

router = APIRouter(prefix="/api/users", tags=["Users"])
roles_router = APIRouter(prefix="/api/roles", tags=["Roles"])


@router.get("", summary="List users")
async def list_users(
    business_id: Optional[str] = Query(None),
    role: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows = await users.list_users(db, session, business_id, role, status_filter)
    return {"success": True, "users": [UserOut.model_validate(u) for u in rows], "count": len(rows)}


@router.get("/{user_id}", summary="Get a user")
async def get_user(
    user_id: str,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return {"success": True, "user": UserOut.model_validate(await users.get_user(db, session, user_id))}


@router.put("/{user_id}/roles", summary="Replace a user's roles")
async def update_roles(
    user_id: str,
    body: RolesUpdate,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    user = await users.update_roles(db, session, user_id, body.roles)
    return {"success": True, "user": UserOut.model_validate(user)}


@router.put("/{user_id}/status", summary="Activate or disable a user")
async def update_status(
    user_id: str,
    body: UserStatusUpdate,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    user = await users.set_user_status(db, session, user_id, body.status)
    return {"success": True, "user": UserOut.model_validate(user)}


@router.post("/{user_id}/reset-password", summary="Email the user a reset link")
async def reset_password(
    user_id: str,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    user = await users.send_password_reset(db, session, user_id)
    return {"success": True, "message": f"Password reset link sent to {user.email}"}


@router.delete("/{user_id}", summary="Delete a user")
async def delete_user(
    user_id: str,
    session: SessionData = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await users.delete_user(db, session, user_id)
    return {"success": True, "message": "User deleted"}


# =============================================================================
# ROLES
# =============================================================================

@roles_router.get("", summary="Predefined and custom roles")
async def list_roles(
    business_id: Optional[str] = Query(None),
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    roles = await users.list_roles(db, session, business_id)
    return {"success": True, **roles, "permissions": sorted(ALL_PERMISSIONS)}


@roles_router.post("", status_code=status.HTTP_201_CREATED, summary="Create or update a custom role")
async def save_role(
    body: CustomRoleCreate,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    role = await users.save_custom_role(db, session, body.role_name, body.permissions, body.business_id)
    return {
        "success": True,
        "role": {
            "id": role.id,
            "role_name": role.role_name,
            "business_id": role.business_id,
            "permissions": role.permissions,
        },
    }
