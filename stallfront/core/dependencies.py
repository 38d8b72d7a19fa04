"""
Request Dependencies

Resolve the caller's session from the ``stallfront_session`` cookie or an
``Authorization: Bearer`` header, and guard routes by role or permission.
"""

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.exceptions import AuthenticationError, PermissionDeniedError
from stallfront.core.permissions import require_permission as _require_permission
from stallfront.core.security import (
    SESSION_COOKIE,
    SessionData,
    decode_session_token,
    session_from_payload,
)
from stallfront.database import get_db


def _extract_token(request: Request) -> Optional[str]:
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return None


async def get_optional_session(request: Request) -> Optional[SessionData]:
    token = _extract_token(request)
    if not token:
        return None
    payload = decode_session_token(token)
    if payload is None:
        return None
    session = session_from_payload(payload)
    request.state.user_id = session.user_id
    return session


async def get_current_session(
    session: Optional[SessionData] = Depends(get_optional_session),
) -> SessionData:
    if session is None:
        raise AuthenticationError("Not authenticated")
    return session


def require_roles(*roles: str):
    """Allow the listed roles; super_admin always passes."""

    async def dependency(session: SessionData = Depends(get_current_session)) -> SessionData:
        if not session.has_role(*roles):
            raise PermissionDeniedError("Insufficient role for this action")
        return session

    return dependency


async def require_super_admin(session: SessionData = Depends(get_current_session)) -> SessionData:
    if not session.is_super_admin:
        raise PermissionDeniedError("Super admin access required")
    return session


def require_permission(permission: str):
    async def dependency(
        session: SessionData = Depends(get_current_session),
        db: AsyncSession = Depends(get_db),
    ) -> SessionData:
        await _require_permission(db, session, permission)
        return session

    return dependency


require_customer = require_roles("customer")
