"""
Security Utilities

Password hashing (bcrypt), session and refresh tokens (JWT), random tokens
for magic links and webhook secrets, OTP codes and the session cookies.
"""

import hashlib
import logging
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import bcrypt
import jwt
from fastapi import Response
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from stallfront.core.config import get_settings

logger = logging.getLogger(__name__)

SESSION_COOKIE = "stallfront_session"
REFRESH_COOKIE = "stallfront_refresh"


@dataclass
class SessionData:
    """Decoded session attached to an authenticated request."""
    user_id: str
    email: str
    roles: list[str] = field(default_factory=list)
    business_id: Optional[str] = None
    session_id: Optional[str] = None

    @property
    def is_super_admin(self) -> bool:
        return "super_admin" in self.roles

    def has_role(self, *names: str) -> bool:
        return self.is_super_admin or any(name in self.roles for name in names)


# =============================================================================
# PASSWORDS
# =============================================================================

def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=get_settings().password_hash_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed_password: Optional[str]) -> bool:
    """Check a password against a stored bcrypt hash. Malformed hashes never match."""
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError as e:
        logger.error(f"Password verification failed: {e}")
        return False


def validate_password_strength(password: str) -> list[str]:
    """
    Return the list of unmet password rules (empty when the password is ok).

    Rules: at least 8 characters, one uppercase letter, one lowercase
    letter and one digit.
    """
    errors = []
    if len(password) < 8:
        errors.append("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    return errors


# =============================================================================
# RANDOM TOKENS
# =============================================================================

def generate_session_id() -> str:
    return secrets.token_hex(16)


def generate_secure_token(nbytes: int = 32) -> str:
    return secrets.token_hex(nbytes)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_otp(length: int = 6) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


# =============================================================================
# JWT
# =============================================================================

def create_session_token(
    user_id: str,
    email: str,
    roles: list[str],
    business_id: Optional[str] = None,
    session_id: Optional[str] = None,
) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "roles": list(roles),
        "business_id": business_id,
        "sid": session_id or generate_session_id(),
        "type": "access",
        "iat": now,
        "exp": now + timedelta(minutes=settings.session_minutes),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_refresh_token(user_id: str, session_id: str) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "sid": session_id,
        "type": "refresh",
        "iat": now,
        "exp": now + timedelta(days=settings.refresh_days),
    }
    return jwt.encode(payload, settings.refresh_secret, algorithm=settings.jwt_algorithm)


def _decode(token: str, secret: str, expected_type: str) -> Optional[dict[str, Any]]:
    try:
        payload = jwt.decode(token, secret, algorithms=[get_settings().jwt_algorithm])
    except ExpiredSignatureError:
        logger.debug(f"Expired {expected_type} token")
        return None
    except InvalidTokenError as e:
        logger.debug(f"Invalid {expected_type} token: {e}")
        return None

    if payload.get("type") != expected_type:
        return None
    return payload


def decode_session_token(token: str) -> Optional[dict[str, Any]]:
    return _decode(token, get_settings().jwt_secret, "access")


def decode_refresh_token(token: str) -> Optional[dict[str, Any]]:
    return _decode(token, get_settings().refresh_secret, "refresh")


def session_from_payload(payload: dict[str, Any]) -> SessionData:
    return SessionData(
        user_id=payload["sub"],
        email=payload.get("email", ""),
        roles=list(payload.get("roles") or []),
        business_id=payload.get("business_id"),
        session_id=payload.get("sid"),
    )


# =============================================================================
# COOKIES
# =============================================================================

def set_session_cookies(response: Response, session_token: str, refresh_token: str) -> None:
    settings = get_settings()
    secure = not settings.is_development
    response.set_cookie(
        SESSION_COOKIE,
        session_token,
        max_age=settings.session_minutes * 60,
        httponly=True,
        secure=secure,
        samesite="strict",
        path="/",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        refresh_token,
        max_age=settings.refresh_days * 24 * 3600,
        httponly=True,
        secure=secure,
        samesite="strict",
        path="/",
    )


def clear_session_cookies(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/")
    response.delete_cookie(REFRESH_COOKIE, path="/")
