"""
Activity Log

Audit trail for authentication, catalog and order events. Entries are added
to the caller's session and committed with the caller's own changes.
"""

import json
import logging
from enum import Enum
from typing import Any, Optional

from prometheus_client import Counter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.models import ActivityLog

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = {"password", "token", "secret", "code", "hashed_password"}


class ActivityAction(str, Enum):
    USER_SIGNUP = "user.signup"
    USER_LOGIN = "user.login"
    USER_LOGIN_FAILED = "user.login.failed"
    USER_LOGOUT = "user.logout"
    USER_INVITED = "user.invited"
    USER_ACTIVATED = "user.activated"
    USER_UPDATED = "user.updated"
    USER_ROLES_UPDATED = "user.roles.updated"
    USER_STATUS_UPDATED = "user.status.updated"
    USER_DELETED = "user.deleted"
    PASSWORD_RESET_REQUEST = "password.reset.request"
    PASSWORD_RESET_CONFIRM = "password.reset.confirm"
    OTP_VERIFIED = "otp.verified"

    BUSINESS_CREATED = "business.created"
    BUSINESS_UPDATED = "business.updated"
    BUSINESS_STATUS = "business.status"
    STALL_CREATED = "stall.created"
    STALL_UPDATED = "stall.updated"
    STALL_DISABLED = "stall.disabled"
    PRODUCT_CREATED = "product.created"
    PRODUCT_UPDATED = "product.updated"
    PRODUCT_ARCHIVED = "product.archived"
    PRODUCT_STATUS = "product.status"
    ROLE_SAVED = "role.saved"
    WEBHOOK_SAVED = "webhook.saved"
    WEBHOOK_DELETED = "webhook.deleted"

    ORDER_CREATED = "order.created"
    ORDER_STATUS = "order.status"
    ORDER_UPDATED = "order.updated"
    ORDER_RESCHEDULED = "order.rescheduled"
    ORDER_RATED = "order.rated"
    ORDER_REFUND_FAILED = "order.refund.failed"
    ORDERS_EXPORTED = "orders.exported"


activity_events_total = Counter(
    "stallfront_activity_events_total",
    "Activity log entries written",
    ["action", "success"],
)


def _sanitize(details: dict[str, Any]) -> dict[str, Any]:
    return {
        key: "***" if key.lower() in SENSITIVE_KEYS else value
        for key, value in details.items()
    }


def log_activity(
    db: AsyncSession,
    action: ActivityAction | str,
    user_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    success: bool = True,
) -> ActivityLog:
    """Stage an activity entry on ``db``; the caller commits."""
    action_value = action.value if isinstance(action, ActivityAction) else action
    entry = ActivityLog(
        action=action_value,
        user_id=user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        details_json=json.dumps(_sanitize(details or {}), default=str),
        ip_address=ip_address,
        success=success,
    )
    db.add(entry)
    activity_events_total.labels(action=action_value, success=str(success).lower()).inc()
    logger.debug(f"Activity: {action_value} user={user_id} {entity_type}={entity_id}")
    return entry


async def list_activity(
    db: AsyncSession,
    action: Optional[str] = None,
    user_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: int = 100,
) -> list[ActivityLog]:
    """Newest entries first, optionally filtered."""
    query = select(ActivityLog)
    if action:
        query = query.where(ActivityLog.action == action)
    if user_id:
        query = query.where(ActivityLog.user_id == user_id)
    if entity_type:
        query = query.where(ActivityLog.entity_type == entity_type)
    if entity_id:
        query = query.where(ActivityLog.entity_id == entity_id)
    query = query.order_by(ActivityLog.created_at.desc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())
