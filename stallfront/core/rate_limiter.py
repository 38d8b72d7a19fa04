"""
Rate Limiting

In-memory fixed-window rate limiter for the public API. Each rule counts
requests per client key (IP address, or user id for cart/order calls)
inside a window and rejects the overflow with 429.

Clients that keep hitting limits are tracked as suspicious; ten violations
within an hour block the IP for an hour.

Note: state is per process. Multiple API instances each keep their own
counters.
"""

import logging
import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional

from fastapi import Request

from stallfront.core.exceptions import RateLimitExceededError
from stallfront.core.security import SESSION_COOKIE, decode_session_token

logger = logging.getLogger(__name__)

SUSPICIOUS_THRESHOLD = 10
SUSPICIOUS_WINDOW_SECONDS = 3600
AUTO_BLOCK_SECONDS = 3600


@dataclass(frozen=True)
class RateLimitRule:
    """A named limit: ``max_requests`` per ``window_seconds``."""
    name: str
    max_requests: int
    window_seconds: int
    per_user: bool = False  # key by user id when the caller is signed in


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: Optional[int] = None


@dataclass
class _Window:
    count: int
    reset_at: float


@dataclass
class _Suspicion:
    count: int
    first_seen: float
    last_seen: float


class RateLimitRules:
    AUTH = RateLimitRule("auth", max_requests=5, window_seconds=15 * 60)
    BROWSE = RateLimitRule("browse", max_requests=100, window_seconds=60)
    ORDER = RateLimitRule("order", max_requests=10, window_seconds=60, per_user=True)
    CART = RateLimitRule("cart", max_requests=30, window_seconds=60, per_user=True)
    API = RateLimitRule("api", max_requests=60, window_seconds=60)


class RateLimiter:
    """
    Fixed-window counters keyed by ``"<rule>:<client>"``.

    Thread-safe; every public method takes the instance lock.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._blocked: dict[str, float] = {}  # ip -> blocked until
        self._suspicious: dict[str, _Suspicion] = {}
        self._lock = Lock()

    # =========================================================================
    # CHECKS
    # =========================================================================

    def check(self, key: str, rule: RateLimitRule, ip: Optional[str] = None) -> RateLimitResult:
        """Count one request for ``key`` and report whether it is allowed."""
        now = self._clock()
        ip = ip or key

        with self._lock:
            blocked_until = self._blocked.get(ip)
            if blocked_until is not None:
                if blocked_until > now:
                    if math.isinf(blocked_until):
                        retry_after = AUTO_BLOCK_SECONDS
                    else:
                        retry_after = int(blocked_until - now) + 1
                    return RateLimitResult(
                        allowed=False,
                        remaining=0,
                        reset_at=blocked_until,
                        retry_after=retry_after,
                    )
                del self._blocked[ip]

            window_key = f"{rule.name}:{key}"
            window = self._windows.get(window_key)
            if window is None or now >= window.reset_at:
                window = _Window(count=0, reset_at=now + rule.window_seconds)
                self._windows[window_key] = window

            window.count += 1
            allowed = window.count <= rule.max_requests
            remaining = max(0, rule.max_requests - window.count)

            if allowed:
                return RateLimitResult(allowed=True, remaining=remaining, reset_at=window.reset_at)

            self._track_suspicious(ip, now)
            retry_after = max(1, math.ceil(window.reset_at - now))
            logger.warning(
                f"Rate limit exceeded: rule={rule.name} key={key} "
                f"count={window.count}/{rule.max_requests} retry_after={retry_after}s"
            )
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_at=window.reset_at,
                retry_after=retry_after,
            )

    def _track_suspicious(self, ip: str, now: float) -> None:
        entry = self._suspicious.get(ip)
        if entry is None or now - entry.first_seen > SUSPICIOUS_WINDOW_SECONDS:
            self._suspicious[ip] = _Suspicion(count=1, first_seen=now, last_seen=now)
            return

        entry.count += 1
        entry.last_seen = now
        if entry.count >= SUSPICIOUS_THRESHOLD and ip not in self._blocked:
            self._blocked[ip] = now + AUTO_BLOCK_SECONDS
            logger.warning(f"Auto-blocked IP {ip} after {entry.count} rate limit violations")

    # =========================================================================
    # IP BLOCKING
    # =========================================================================

    def block_ip(self, ip: str, duration_seconds: Optional[int] = None) -> None:
        with self._lock:
            until = self._clock() + duration_seconds if duration_seconds else float("inf")
            self._blocked[ip] = until
        logger.info(f"Blocked IP {ip}")

    def unblock_ip(self, ip: str) -> None:
        with self._lock:
            self._blocked.pop(ip, None)
            self._suspicious.pop(ip, None)
        logger.info(f"Unblocked IP {ip}")

    def is_blocked(self, ip: str) -> bool:
        with self._lock:
            until = self._blocked.get(ip)
            return until is not None and until > self._clock()

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def cleanup(self) -> int:
        """Drop expired windows and stale suspicion entries. Returns windows removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, window in self._windows.items() if now >= window.reset_at]
            for key in expired:
                del self._windows[key]
            for ip in [ip for ip, s in self._suspicious.items() if now - s.last_seen > SUSPICIOUS_WINDOW_SECONDS]:
                del self._suspicious[ip]
            for ip in [ip for ip, until in self._blocked.items() if until <= now]:
                del self._blocked[ip]
        if expired:
            logger.debug(f"Cleaned up {len(expired)} expired rate limit windows")
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._blocked.clear()
            self._suspicious.clear()

    def stats(self) -> dict:
        with self._lock:
            return {
                "active_windows": len(self._windows),
                "blocked_ips": sorted(self._blocked),
                "suspicious_ips": [
                    {"ip": ip, "count": s.count, "last_seen": s.last_seen}
                    for ip, s in sorted(self._suspicious.items())
                ],
            }


rate_limiter = RateLimiter()


# =============================================================================
# FASTAPI INTEGRATION
# =============================================================================

def get_client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    if request.client:
        return request.client.host
    return "unknown"


def _request_user_id(request: Request) -> Optional[str]:
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        auth = request.headers.get("Authorization", "")
        if auth.lower().startswith("bearer "):
            token = auth[7:].strip()
    if not token:
        return None
    payload = decode_session_token(token)
    return payload.get("sub") if payload else None


def rate_limit(rule: RateLimitRule):
    """Route dependency enforcing ``rule``; raises 429 with Retry-After."""

    async def dependency(request: Request) -> RateLimitResult:
        ip = get_client_ip(request)
        key = ip
        if rule.per_user:
            key = _request_user_id(request) or ip
        result = rate_limiter.check(key, rule, ip=ip)
        if not result.allowed:
            raise RateLimitExceededError(
                "Too many requests. Please try again later.",
                retry_after=result.retry_after or 1,
            )
        return result

    return dependency
