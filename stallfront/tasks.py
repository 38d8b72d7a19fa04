"""
Celery Tasks
Background work that should not hold up an API request: webhook delivery,
order exports and housekeeping.
"""

import logging
import time
from typing import Any

from sqlalchemy import delete, or_

from stallfront.celery_worker import celery_app
from stallfront.database import get_sync_session_maker
from stallfront.models import Cart, MagicLink, OtpCode, utcnow
from stallfront.services.delivery import deliver
from stallfront.services.export_manager import ExportManager

logger = logging.getLogger(__name__)

WEBHOOK_MAX_RETRIES = 3


@celery_app.task(bind=True, max_retries=WEBHOOK_MAX_RETRIES)
def deliver_webhook(self, webhook: dict[str, Any], event: str, data: dict[str, Any]) -> dict:
    """
    POST one event to one webhook endpoint.

    Failed deliveries are retried with exponential backoff (2s, 4s, 8s)
    when running on a worker. Every attempt is written to webhook_logs.
    """
    result = deliver(webhook, event, data)
    if result.success or self.request.is_eager:
        return {"success": result.success, "status": result.status}

    countdown = 2 ** (self.request.retries + 1)
    logger.info(
        f"Task {self.request.id}: webhook {webhook.get('id')} {event} "
        f"retry {self.request.retries + 1}/{WEBHOOK_MAX_RETRIES} in {countdown}s"
    )
    raise self.retry(countdown=countdown, exc=RuntimeError(result.error or result.status))


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(OSError,),
    retry_backoff=True,
)
def export_business_orders(self, business_id: str, days: int = 30, fmt: str = "xlsx") -> dict:
    """Export the last ``days`` days of a business's orders to a file."""
    start_time = time.time()

    with get_sync_session_maker()() as session:
        rows = ExportManager.collect_rows(session, business_id, days)

    result = ExportManager.export_orders(business_id, rows, fmt)
    result["task_id"] = self.request.id
    result["processing_time_seconds"] = round(time.time() - start_time, 3)
    return result


@celery_app.task
def cleanup_expired() -> dict:
    """Delete expired carts, magic links and OTP codes."""
    now = utcnow()
    with get_sync_session_maker()() as session:
        carts = session.execute(delete(Cart).where(Cart.expires_at < now)).rowcount
        links = session.execute(
            delete(MagicLink).where(or_(MagicLink.expires_at < now, MagicLink.used.is_(True)))
        ).rowcount
        codes = session.execute(delete(OtpCode).where(OtpCode.expires_at < now)).rowcount
        session.commit()

    logger.info(f"Cleanup removed {carts} carts, {links} magic links, {codes} OTP codes")
    return {"carts": carts, "magic_links": links, "otp_codes": codes, "timestamp": now.isoformat()}


@celery_app.task
def health_check() -> dict:
    """Verify the worker is picking up tasks."""
    return {
        "status": "healthy",
        "worker": "celery",
        "timestamp": utcnow().isoformat(),
    }
