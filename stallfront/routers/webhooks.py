"""
Webhook Endpoints

Businesses register endpoints for order events. The signing secret is
returned once, when the webhook is created.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.dependencies import require_permission
from stallfront.core.exceptions import ValidationFailedError
from stallfront.core.permissions import ensure_business_access
from stallfront.core.security import SessionData
from stallfront.database import get_db
from stallfront.schemas import WebhookCreate, WebhookLogOut, WebhookOut, WebhookUpdate
from stallfront.services import webhooks
from stallfront.services.activity import ActivityAction, log_activity

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])

require_webhooks = require_permission("manage_webhooks")


def _business_id(session: SessionData, business_id: Optional[str]) -> str:
    business_id = business_id or session.business_id
    if not business_id:
        raise ValidationFailedError("business_id is required")
    ensure_business_access(session, business_id)
    return business_id


@router.get("", summary="List webhooks")
async def list_webhooks(
    business_id: Optional[str] = Query(None),
    session: SessionData = Depends(require_webhooks),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows = await webhooks.list_webhooks(db, _business_id(session, business_id))
    return {
        "success": True,
        "webhooks": [WebhookOut.model_validate(w) for w in rows],
        "events": sorted(webhooks.WEBHOOK_EVENTS),
    }


@router.post("", status_code=status.HTTP_201_CREATED, summary="Register a webhook")
async def create_webhook(
    body: WebhookCreate,
    session: SessionData = Depends(require_webhooks),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    business_id = _business_id(session, body.business_id)
    webhook = await webhooks.create_webhook(db, business_id, body.url, body.events)
    log_activity(db, ActivityAction.WEBHOOK_SAVED, user_id=session.user_id, entity_type="webhook",
                 entity_id=webhook.id, details={"url": webhook.url, "events": webhook.events})
    await db.commit()
    return {"success": True, "webhook": WebhookOut.model_validate(webhook), "secret": webhook.secret}


@router.get("/logs", summary="Recent deliveries")
async def webhook_logs(
    business_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    session: SessionData = Depends(require_webhooks),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows = await webhooks.list_webhook_logs(db, _business_id(session, business_id), limit)
    return {"success": True, "logs": [WebhookLogOut.model_validate(r) for r in rows]}


@router.patch("/{webhook_id}", summary="Update a webhook")
async def update_webhook(
    webhook_id: str,
    body: WebhookUpdate,
    session: SessionData = Depends(require_webhooks),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    webhook = await webhooks.get_webhook(db, session, webhook_id)
    webhook = await webhooks.update_webhook(db, webhook, body.url, body.events, body.active)
    log_activity(db, ActivityAction.WEBHOOK_SAVED, user_id=session.user_id, entity_type="webhook",
                 entity_id=webhook.id, details={"url": webhook.url, "active": webhook.active})
    await db.commit()
    return {"success": True, "webhook": WebhookOut.model_validate(webhook)}


@router.delete("/{webhook_id}", summary="Delete a webhook")
async def delete_webhook(
    webhook_id: str,
    session: SessionData = Depends(require_webhooks),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    webhook = await webhooks.get_webhook(db, session, webhook_id)
    await webhooks.delete_webhook(db, webhook)
    log_activity(db, ActivityAction.WEBHOOK_DELETED, user_id=session.user_id, entity_type="webhook",
                 entity_id=webhook_id)
    await db.commit()
    return {"success": True, "message": "Webhook deleted"}
