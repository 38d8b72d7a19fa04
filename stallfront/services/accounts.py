"""
Account Flows

Signup, magic links, password login, one-time codes and invitations.
Routers turn the returned ``User`` into session cookies with
``issue_session``.

Magic links are single use. A link is consumed when the password is set
(signup, invite, reset) or when a login link is followed.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.config import get_settings
from stallfront.core.exceptions import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitExceededError,
    ValidationFailedError,
)
from stallfront.core.permissions import (
    KNOWN_ROLES,
    PREDEFINED_ROLES,
    SUPER_ADMIN,
    ensure_business_access,
    get_user_permissions,
    require_permission,
)
from stallfront.core.security import (
    SessionData,
    create_refresh_token,
    create_session_token,
    generate_otp,
    generate_secure_token,
    generate_session_id,
    hash_password,
    hash_token,
    validate_password_strength,
    verify_password,
)
from stallfront.models import (
    Business,
    MagicLink,
    MagicLinkPurpose,
    OtpCode,
    RolePermission,
    User,
    UserStatus,
    as_utc,
    utcnow,
)
from stallfront.schemas import CustomerSignupRequest, InviteRequest, ProfileUpdate
from stallfront.services.activity import ActivityAction, log_activity
from stallfront.services.notifications import get_notification_service

logger = logging.getLogger(__name__)

PASSWORD_PURPOSES = (
    MagicLinkPurpose.SIGNUP.value,
    MagicLinkPurpose.INVITE.value,
    MagicLinkPurpose.PASSWORD_RESET.value,
)

GENERIC_LOGIN_ERROR = "Invalid email or password"


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


def issue_session(user: User) -> tuple[str, str]:
    """Return a fresh (session token, refresh token) pair for ``user``."""
    session_id = generate_session_id()
    return (
        create_session_token(user.id, user.email, user.roles, user.business_id, session_id),
        create_refresh_token(user.id, session_id),
    )


# =============================================================================
# MAGIC LINKS
# =============================================================================

def create_magic_link(db: AsyncSession, email: str, purpose: MagicLinkPurpose, user_id: Optional[str] = None) -> MagicLink:
    """Stage a new link on ``db``; the caller commits."""
    link = MagicLink(
        email=normalize_email(email),
        user_id=user_id,
        token=generate_secure_token(),
        purpose=purpose.value,
        expires_at=utcnow() + timedelta(hours=get_settings().magic_link_hours),
        used=False,
    )
    db.add(link)
    return link


def magic_link_url(link: MagicLink) -> str:
    base = get_settings().app_base_url.rstrip("/")
    if link.purpose == MagicLinkPurpose.LOGIN.value:
        return f"{base}/auth/magic?token={link.token}"
    return f"{base}/auth/set-password?token={link.token}"


async def _find_link(db: AsyncSession, token: str) -> MagicLink:
    result = await db.execute(select(MagicLink).where(MagicLink.token == token))
    link = result.scalar_one_or_none()
    if link is None or link.used:
        raise ValidationFailedError("Invalid or already used link")
    if link.is_expired():
        raise ValidationFailedError("This link has expired. Please request a new one")
    return link


async def _link_user(db: AsyncSession, link: MagicLink) -> User:
    user = await db.get(User, link.user_id) if link.user_id else None
    if user is None:
        user = await get_user_by_email(db, link.email)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def verify_magic_link(db: AsyncSession, token: str) -> tuple[MagicLink, User]:
    """Check a link without consuming it."""
    link = await _find_link(db, token)
    return link, await _link_user(db, link)


# =============================================================================
# CUSTOMER SIGNUP & PASSWORDS
# =============================================================================

async def signup_customer(db: AsyncSession, request: CustomerSignupRequest, ip_address: Optional[str] = None) -> User:
    email = normalize_email(request.email)
    if await get_user_by_email(db, email) is not None:
        raise ConflictError("An account with this email already exists")

    user = User(
        email=email,
        name=request.name.strip(),
        phone=request.phone,
        status=UserStatus.PENDING.value,
    )
    user.roles = ["customer"]
    db.add(user)
    await db.flush()

    link = create_magic_link(db, email, MagicLinkPurpose.SIGNUP, user.id)
    log_activity(db, ActivityAction.USER_SIGNUP, user_id=user.id, entity_type="user",
                 entity_id=user.id, ip_address=ip_address)
    await db.commit()

    logger.info(f"Customer signup: {email}")
    await get_notification_service().notify_signup(email, user.name, magic_link_url(link))
    return user


async def set_password_with_token(
    db: AsyncSession, token: str, password: str, ip_address: Optional[str] = None
) -> User:
    """Consume a signup, invite or reset link and activate the account."""
    link = await _find_link(db, token)
    if link.purpose not in PASSWORD_PURPOSES:
        raise ValidationFailedError("This link cannot be used to set a password")

    problems = validate_password_strength(password)
    if problems:
        raise ValidationFailedError("Password does not meet requirements", details=problems)

    user = await _link_user(db, link)
    if user.status == UserStatus.DISABLED.value:
        raise AuthenticationError("Account is disabled")

    now = utcnow()
    user.hashed_password = hash_password(password)
    user.status = UserStatus.ACTIVE.value
    user.password_change_required = False
    user.last_login = now
    link.used = True
    link.used_at = now

    action = (
        ActivityAction.PASSWORD_RESET_CONFIRM
        if link.purpose == MagicLinkPurpose.PASSWORD_RESET.value
        else ActivityAction.USER_ACTIVATED
    )
    log_activity(db, action, user_id=user.id, entity_type="user", entity_id=user.id, ip_address=ip_address)
    await db.commit()
    logger.info(f"Password set for {user.email} via {link.purpose} link")
    return user


async def request_password_reset(db: AsyncSession, email: str, ip_address: Optional[str] = None) -> None:
    """Email a reset link if the account exists. Never reveals whether it does."""
    user = await get_user_by_email(db, email)
    if user is None or user.status == UserStatus.DISABLED.value:
        logger.info(f"Password reset requested for unknown or disabled account {email}")
        return
    link = create_magic_link(db, user.email, MagicLinkPurpose.PASSWORD_RESET, user.id)
    log_activity(db, ActivityAction.PASSWORD_RESET_REQUEST, user_id=user.id, entity_type="user",
                 entity_id=user.id, ip_address=ip_address)
    await db.commit()
    await get_notification_service().notify_password_reset(user.email, magic_link_url(link))


# =============================================================================
# LOGIN
# =============================================================================

async def _login_failed(db: AsyncSession, email: str, reason: str, user_id: Optional[str], ip_address: Optional[str]) -> None:
    log_activity(db, ActivityAction.USER_LOGIN_FAILED, user_id=user_id, entity_type="user",
                 entity_id=user_id, details={"email": email, "reason": reason},
                 ip_address=ip_address, success=False)
    await db.commit()


async def authenticate(
    db: AsyncSession,
    email: str,
    password: str,
    ip_address: Optional[str] = None,
    customer: bool = False,
) -> User:
    """
    Check credentials and return the user.

    Unknown emails and wrong passwords get the same message.

    Raises:
        AuthenticationError: credentials rejected or account unusable
    """
    user = await get_user_by_email(db, email)
    if user is None:
        await _login_failed(db, email, "unknown_user", None, ip_address)
        raise AuthenticationError(GENERIC_LOGIN_ERROR)

    if not user.hashed_password:
        await _login_failed(db, email, "no_password", user.id, ip_address)
        raise AuthenticationError("Password not set. Check your email for the setup link")

    if not verify_password(password, user.hashed_password):
        await _login_failed(db, email, "bad_password", user.id, ip_address)
        raise AuthenticationError(GENERIC_LOGIN_ERROR)

    if user.status != UserStatus.ACTIVE.value:
        await _login_failed(db, email, f"status_{user.status}", user.id, ip_address)
        raise AuthenticationError("Account is not active")

    if customer and not user.has_role("customer"):
        await _login_failed(db, email, "not_customer", user.id, ip_address)
        raise AuthenticationError("This is not a customer account")

    return user


async def record_login(db: AsyncSession, user: User, ip_address: Optional[str] = None, method: str = "password") -> None:
    user.last_login = utcnow()
    log_activity(db, ActivityAction.USER_LOGIN, user_id=user.id, entity_type="user",
                 entity_id=user.id, details={"method": method}, ip_address=ip_address)
    await db.commit()
    logger.info(f"Login: {user.email} ({method})")


async def refresh_user(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if user is None or user.status != UserStatus.ACTIVE.value:
        raise AuthenticationError("Session is no longer valid")
    return user


async def request_login_link(db: AsyncSession, email: str) -> None:
    """Passwordless sign-in for active customers; silent for anyone else."""
    user = await get_user_by_email(db, email)
    if user is None or user.status != UserStatus.ACTIVE.value or not user.has_role("customer"):
        logger.info(f"Login link not sent to {email}")
        return
    link = create_magic_link(db, user.email, MagicLinkPurpose.LOGIN, user.id)
    await db.commit()
    await get_notification_service().notify_login_link(user.email, magic_link_url(link))


async def consume_login_link(db: AsyncSession, token: str, ip_address: Optional[str] = None) -> User:
    link = await _find_link(db, token)
    if link.purpose != MagicLinkPurpose.LOGIN.value:
        raise ValidationFailedError("This link cannot be used to sign in")
    user = await _link_user(db, link)
    if user.status != UserStatus.ACTIVE.value:
        raise AuthenticationError("Account is not active")
    link.used = True
    link.used_at = utcnow()
    await record_login(db, user, ip_address, method="magic_link")
    return user


# =============================================================================
# ONE-TIME CODES
# =============================================================================

async def send_otp(db: AsyncSession, email: str) -> None:
    """
    Email a fresh one-time code, replacing any earlier one.

    Raises:
        RateLimitExceededError: a code was sent within the resend cooldown
    """
    settings = get_settings()
    email = normalize_email(email)
    now = utcnow()

    result = await db.execute(
        select(OtpCode).where(OtpCode.email == email).order_by(OtpCode.created_at.desc()).limit(1)
    )
    latest = result.scalar_one_or_none()
    if latest is not None:
        elapsed = (now - as_utc(latest.created_at)).total_seconds()
        if elapsed < settings.otp_resend_cooldown_seconds:
            wait = int(settings.otp_resend_cooldown_seconds - elapsed) + 1
            raise RateLimitExceededError(f"Please wait {wait} seconds before requesting a new code", retry_after=wait)

    user = await get_user_by_email(db, email)
    if user is None or user.status != UserStatus.ACTIVE.value:
        logger.info(f"OTP requested for unknown or inactive account {email}")
        return

    code = generate_otp(settings.otp_length)
    await db.execute(delete(OtpCode).where(OtpCode.email == email))
    db.add(OtpCode(
        email=email,
        code_hash=hash_token(code),
        attempts=0,
        expires_at=now + timedelta(minutes=settings.otp_expiry_minutes),
        created_at=now,
    ))
    await db.commit()
    await get_notification_service().notify_otp(email, code)


async def verify_otp(db: AsyncSession, email: str, code: str, ip_address: Optional[str] = None) -> User:
    settings = get_settings()
    email = normalize_email(email)

    result = await db.execute(
        select(OtpCode).where(OtpCode.email == email).order_by(OtpCode.created_at.desc()).limit(1)
    )
    otp = result.scalar_one_or_none()
    if otp is None:
        raise AuthenticationError("No verification code found. Please request a new one")

    if as_utc(otp.expires_at) <= utcnow():
        await db.delete(otp)
        await db.commit()
        raise AuthenticationError("Verification code has expired")

    if otp.attempts >= settings.otp_max_attempts:
        await db.delete(otp)
        await db.commit()
        raise AuthenticationError("Too many failed attempts. Please request a new code")

    if hash_token(code.strip()) != otp.code_hash:
        otp.attempts += 1
        await db.commit()
        remaining = max(0, settings.otp_max_attempts - otp.attempts)
        raise AuthenticationError(f"Invalid verification code ({remaining} attempts remaining)")

    await db.delete(otp)
    user = await get_user_by_email(db, email)
    if user is None or user.status != UserStatus.ACTIVE.value:
        await db.commit()
        raise AuthenticationError("Account is not active")
    log_activity(db, ActivityAction.OTP_VERIFIED, user_id=user.id, entity_type="user",
                 entity_id=user.id, ip_address=ip_address)
    await record_login(db, user, ip_address, method="otp")
    return user


# =============================================================================
# PROFILE & INVITATIONS
# =============================================================================

async def get_current_user(db: AsyncSession, session: SessionData) -> User:
    user = await db.get(User, session.user_id)
    if user is None:
        raise AuthenticationError("Session is no longer valid")
    return user


async def update_profile(db: AsyncSession, session: SessionData, request: ProfileUpdate) -> User:
    user = await get_current_user(db, session)
    if request.name is not None:
        user.name = request.name.strip()
    if request.phone is not None:
        user.phone = request.phone or None
    user.updated_at = utcnow()
    log_activity(db, ActivityAction.USER_UPDATED, user_id=user.id, entity_type="user",
                 entity_id=user.id, details={"fields": sorted(request.model_dump(exclude_none=True))})
    await db.commit()
    return user


async def check_roles_grantable(
    db: AsyncSession, session: SessionData, roles: list[str], business_id: Optional[str]
) -> None:
    """
    Roles must be predefined or a custom role visible to the business, and
    a caller other than a super admin may only hand out permissions they
    hold themselves.
    """
    if SUPER_ADMIN in roles and not session.is_super_admin:
        raise PermissionDeniedError("Only a super admin can grant super_admin")

    custom: dict[str, set[str]] = {}
    unknown = [r for r in roles if r not in KNOWN_ROLES]
    if unknown:
        scope = [RolePermission.business_id.is_(None)]
        if business_id:
            scope.append(RolePermission.business_id == business_id)
        result = await db.execute(
            select(RolePermission).where(RolePermission.role_name.in_(unknown), or_(*scope))
        )
        for row in result.scalars():
            custom.setdefault(row.role_name, set()).update(row.permissions)
        unknown = [r for r in unknown if r not in custom]
    if unknown:
        raise ValidationFailedError("Unknown roles", details=sorted(unknown))

    if session.is_super_admin:
        return
    if "admin" in roles:
        raise PermissionDeniedError("Only a super admin can grant admin")

    held = await get_user_permissions(db, session)
    for role in roles:
        granted = PREDEFINED_ROLES.get(role) or custom.get(role, set())
        if not set(granted) <= held:
            logger.info(f"{session.email} tried to grant '{role}' beyond their own permissions")
            raise PermissionDeniedError(f"You cannot grant the role '{role}'")


async def invite_user(
    db: AsyncSession, session: SessionData, request: InviteRequest, ip_address: Optional[str] = None
) -> User:
    await require_permission(db, session, "users:invite")

    business_id = request.business_id or session.business_id
    if not session.is_super_admin:
        ensure_business_access(session, business_id)
    await check_roles_grantable(db, session, request.roles, business_id)

    email = normalize_email(request.email)
    if await get_user_by_email(db, email) is not None:
        raise ConflictError("A user with this email already exists")

    business = await db.get(Business, business_id) if business_id else None
    if business_id and business is None:
        raise NotFoundError("Business not found")

    user = User(
        email=email,
        name=request.name.strip(),
        business_id=business_id,
        status=UserStatus.INVITED.value,
        invited_by=session.user_id,
        password_change_required=True,
    )
    user.roles = request.roles
    db.add(user)
    await db.flush()

    link = create_magic_link(db, email, MagicLinkPurpose.INVITE, user.id)
    log_activity(db, ActivityAction.USER_INVITED, user_id=session.user_id, entity_type="user",
                 entity_id=user.id, details={"email": email, "roles": user.roles, "business_id": business_id},
                 ip_address=ip_address)
    await db.commit()

    logger.info(f"{session.email} invited {email} as {user.roles}")
    await get_notification_service().notify_invite(
        email,
        user.name,
        business.name if business else get_settings().app_name,
        user.roles,
        magic_link_url(link),
    )
    return user
