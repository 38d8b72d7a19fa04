"""
Authentication Endpoints

Customer signup via magic link, password and one-time-code login,
session refresh, invitations and password resets. Successful logins set
the ``stallfront_session`` and ``stallfront_refresh`` cookies and also
return the session token for API clients.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.dependencies import get_current_session, get_optional_session
from stallfront.core.exceptions import AuthenticationError
from stallfront.core.rate_limiter import RateLimitRules, get_client_ip, rate_limit
from stallfront.core.security import (
    REFRESH_COOKIE,
    SessionData,
    clear_session_cookies,
    decode_refresh_token,
    set_session_cookies,
)
from stallfront.database import get_db
from stallfront.models import User
from stallfront.schemas import (
    CustomerSignupRequest,
    EmailOnlyRequest,
    InviteRequest,
    LoginRequest,
    OtpVerifyRequest,
    ProfileUpdate,
    SetPasswordRequest,
    UserOut,
)
from stallfront.services import accounts
from stallfront.services.activity import ActivityAction, log_activity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


def _signed_in(response: Response, user: User, **extra: Any) -> dict[str, Any]:
    session_token, refresh_token = accounts.issue_session(user)
    set_session_cookies(response, session_token, refresh_token)
    return {
        "success": True,
        "user": UserOut.model_validate(user),
        "access_token": session_token,
        "token_type": "bearer",
        **extra,
    }


# =============================================================================
# CUSTOMER SIGNUP
# =============================================================================

@router.post(
    "/customer/signup",
    status_code=status.HTTP_201_CREATED,
    summary="Customer signup",
    dependencies=[Depends(rate_limit(RateLimitRules.AUTH))],
)
async def customer_signup(
    body: CustomerSignupRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Create a pending customer account and email a link to set a password."""
    user = await accounts.signup_customer(db, body, get_client_ip(request))
    return {
        "success": True,
        "message": "Account created. Check your email to set your password.",
        "user_id": user.id,
    }


@router.get("/customer/verify-magic", summary="Check a magic link")
async def verify_magic(
    token: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    link, user = await accounts.verify_magic_link(db, token)
    return {
        "success": True,
        "purpose": link.purpose,
        "user": {"id": user.id, "email": user.email, "name": user.name, "status": user.status},
    }


@router.post("/set-password", summary="Set a password with a magic link")
@router.post("/customer/set-password", include_in_schema=False)
async def set_password(
    body: SetPasswordRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Consume a signup, invitation or reset link, activate the account and sign in."""
    user = await accounts.set_password_with_token(db, body.token, body.password, get_client_ip(request))
    return _signed_in(response, user, message="Password set successfully")


# =============================================================================
# LOGIN
# =============================================================================

@router.post(
    "/customer/login",
    summary="Customer login",
    dependencies=[Depends(rate_limit(RateLimitRules.AUTH))],
)
async def customer_login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    ip = get_client_ip(request)
    user = await accounts.authenticate(db, body.email, body.password, ip, customer=True)
    await accounts.record_login(db, user, ip)
    return _signed_in(response, user)


@router.post(
    "/login",
    summary="Staff login",
    dependencies=[Depends(rate_limit(RateLimitRules.AUTH))],
)
async def staff_login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Password login; accounts with MFA get a one-time code by email instead of a session."""
    ip = get_client_ip(request)
    user = await accounts.authenticate(db, body.email, body.password, ip)
    if user.mfa_enabled:
        await accounts.send_otp(db, user.email)
        return {"success": True, "mfa_required": True, "message": "A verification code was sent to your email"}
    await accounts.record_login(db, user, ip)
    return _signed_in(response, user, mfa_required=False)


@router.post(
    "/send-otp",
    summary="Email a one-time code",
    dependencies=[Depends(rate_limit(RateLimitRules.AUTH))],
)
async def send_otp(body: EmailOnlyRequest, db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    await accounts.send_otp(db, body.email)
    return {"success": True, "message": "If the account exists, a code has been sent"}


@router.post(
    "/verify-otp",
    summary="Sign in with a one-time code",
    dependencies=[Depends(rate_limit(RateLimitRules.AUTH))],
)
async def verify_otp(
    body: OtpVerifyRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    user = await accounts.verify_otp(db, body.email, body.code, get_client_ip(request))
    return _signed_in(response, user)


@router.post(
    "/magic-link",
    summary="Email a passwordless login link",
    dependencies=[Depends(rate_limit(RateLimitRules.AUTH))],
)
async def request_magic_link(body: EmailOnlyRequest, db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    await accounts.request_login_link(db, body.email)
    return {"success": True, "message": "If the account exists, a login link has been sent"}


@router.get("/magic", summary="Sign in with a login link")
async def magic_login(
    request: Request,
    response: Response,
    token: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    user = await accounts.consume_login_link(db, token, get_client_ip(request))
    return _signed_in(response, user)


# =============================================================================
# SESSION
# =============================================================================

@router.post("/refresh", summary="Refresh the session")
async def refresh(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    token = request.cookies.get(REFRESH_COOKIE)
    payload = decode_refresh_token(token) if token else None
    if payload is None:
        raise AuthenticationError("Refresh token missing or invalid")
    user = await accounts.refresh_user(db, payload["sub"])
    return _signed_in(response, user)


@router.post("/logout", summary="Log out")
async def logout(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    session: Optional[SessionData] = Depends(get_optional_session),
) -> dict[str, Any]:
    clear_session_cookies(response)
    if session is not None:
        log_activity(db, ActivityAction.USER_LOGOUT, user_id=session.user_id, entity_type="user",
                     entity_id=session.user_id, ip_address=get_client_ip(request))
        await db.commit()
    return {"success": True, "message": "Logged out"}


@router.get("/verify-session", summary="Current session")
@router.get("/me", summary="Current user")
async def me(
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    user = await accounts.get_current_user(db, session)
    return {"success": True, "user": UserOut.model_validate(user), "session_id": session.session_id}


@router.patch("/me", summary="Update own profile")
async def update_me(
    body: ProfileUpdate,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    user = await accounts.update_profile(db, session, body)
    return {"success": True, "user": UserOut.model_validate(user)}


# =============================================================================
# INVITATIONS & RESETS
# =============================================================================

@router.post("/invite", status_code=status.HTTP_201_CREATED, summary="Invite a user")
async def invite(
    body: InviteRequest,
    request: Request,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    user = await accounts.invite_user(db, session, body, get_client_ip(request))
    return {"success": True, "message": f"Invitation sent to {user.email}", "user": UserOut.model_validate(user)}


@router.post(
    "/password-reset/request",
    summary="Request a password reset",
    dependencies=[Depends(rate_limit(RateLimitRules.AUTH))],
)
async def password_reset_request(
    body: EmailOnlyRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await accounts.request_password_reset(db, body.email, get_client_ip(request))
    return {"success": True, "message": "If the account exists, a reset link has been sent"}


@router.post("/password-reset/confirm", summary="Choose a new password")
async def password_reset_confirm(
    body: SetPasswordRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    user = await accounts.set_password_with_token(db, body.token, body.password, get_client_ip(request))
    return _signed_in(response, user, message="Password updated")
