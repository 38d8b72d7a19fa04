"""
Outbound Webhooks

Businesses register URLs for order events (``order.created``,
``order.confirmed``, ... or ``*`` for everything). Deliveries are queued on
the Celery worker; see ``stallfront.services.delivery`` for signing.
"""

import asyncio
import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.exceptions import NotFoundError, ValidationFailedError
from stallfront.core.permissions import ensure_business_access
from stallfront.core.security import SessionData, generate_secure_token
from stallfront.models import OrderStatus, Webhook, WebhookLog
from stallfront.celery_worker import celery_app
from stallfront.tasks import deliver_webhook

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = frozenset(
    {"order.created", "order.updated", "*"} | {f"order.{status.value}" for status in OrderStatus}
)


def _check_events(events: list[str]) -> str:
    unknown = sorted(set(events) - WEBHOOK_EVENTS)
    if unknown:
        raise ValidationFailedError("Unknown webhook events", details=unknown)
    return ",".join(sorted(set(events)))


async def list_webhooks(db: AsyncSession, business_id: str) -> list[Webhook]:
    result = await db.execute(
        select(Webhook).where(Webhook.business_id == business_id).order_by(Webhook.created_at)
    )
    return list(result.scalars().all())


async def get_webhook(db: AsyncSession, session: SessionData, webhook_id: str) -> Webhook:
    webhook = await db.get(Webhook, webhook_id)
    if webhook is None:
        raise NotFoundError("Webhook not found")
    ensure_business_access(session, webhook.business_id)
    return webhook


async def create_webhook(db: AsyncSession, business_id: str, url: str, events: list[str]) -> Webhook:
    webhook = Webhook(
        business_id=business_id,
        url=url,
        events_csv=_check_events(events),
        secret=generate_secure_token(),
        active=True,
    )
    db.add(webhook)
    await db.commit()
    logger.info(f"Webhook {webhook.id} registered for business {business_id}: {url}")
    return webhook


async def update_webhook(
    db: AsyncSession,
    webhook: Webhook,
    url: Optional[str] = None,
    events: Optional[list[str]] = None,
    active: Optional[bool] = None,
) -> Webhook:
    if url is not None:
        webhook.url = url
    if events is not None:
        webhook.events_csv = _check_events(events)
    if active is not None:
        webhook.active = active
    await db.commit()
    return webhook


async def delete_webhook(db: AsyncSession, webhook: Webhook) -> None:
    await db.delete(webhook)
    await db.commit()
    logger.info(f"Webhook {webhook.id} deleted")


async def list_webhook_logs(db: AsyncSession, business_id: str, limit: int = 100) -> list[WebhookLog]:
    result = await db.execute(
        select(WebhookLog)
        .where(WebhookLog.business_id == business_id)
        .order_by(WebhookLog.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def trigger_webhooks(db: AsyncSession, business_id: str, event: str, data: dict[str, Any]) -> int:
    """
    Queue ``event`` for every active webhook of the business subscribed to it.

    Returns the number of deliveries queued. Queueing problems are logged
    and never raised to the caller.
    """
    result = await db.execute(
        select(Webhook).where(Webhook.business_id == business_id, Webhook.active.is_(True))
    )
    targets = [w for w in result.scalars() if w.subscribes_to(event)]

    queued = 0
    for webhook in targets:
        payload = {
            "id": webhook.id,
            "business_id": webhook.business_id,
            "url": webhook.url,
            "secret": webhook.secret,
        }
        try:
            if celery_app.conf.task_always_eager:
                # Eager tasks run inline; keep the blocking POST off the event loop
                await asyncio.to_thread(deliver_webhook.delay, payload, event, data)
            else:
                deliver_webhook.delay(payload, event, data)
            queued += 1
        except Exception as e:
            logger.error(f"Could not queue webhook {webhook.id} for {event}: {e}")

    if queued:
        logger.info(f"Queued {queued} webhook deliveries for {event} (business {business_id})")
    return queued
