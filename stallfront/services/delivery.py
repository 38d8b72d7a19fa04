"""
Webhook Delivery

Signs and POSTs one webhook event, then records the attempt in
``webhook_logs``. Runs inside the Celery worker, so everything here is
blocking (httpx sync client, sync SQLAlchemy session).

Receivers verify ``X-Webhook-Signature``: the hex HMAC-SHA256 of the raw
request body keyed with the webhook's secret.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from stallfront.database import get_sync_session_maker
from stallfront.models import WebhookLog, utcnow

logger = logging.getLogger(__name__)

DELIVERY_TIMEOUT_SECONDS = 10.0
SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"


def encode_payload(event: str, data: dict[str, Any]) -> bytes:
    body = {"event": event, "timestamp": utcnow().isoformat(), "data": data}
    return json.dumps(body, default=str, separators=(",", ":")).encode("utf-8")


def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    return hmac.compare_digest(sign_payload(body, secret), signature or "")


@dataclass
class DeliveryResult:
    success: bool
    status: str  # HTTP status code or "failed"
    error: Optional[str] = None


def post_webhook(
    url: str,
    secret: str,
    event: str,
    data: dict[str, Any],
    client: Optional[httpx.Client] = None,
) -> DeliveryResult:
    """POST a signed event. Non-2xx responses count as failures."""
    body = encode_payload(event, data)
    headers = {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: sign_payload(body, secret),
        EVENT_HEADER: event,
        "User-Agent": "StallFront-Webhooks/1.0",
    }

    owns_client = client is None
    client = client or httpx.Client(timeout=DELIVERY_TIMEOUT_SECONDS)
    try:
        response = client.post(url, content=body, headers=headers)
    except httpx.HTTPError as e:
        logger.warning(f"Webhook {event} to {url} failed: {e}")
        return DeliveryResult(success=False, status="failed", error=str(e))
    finally:
        if owns_client:
            client.close()

    ok = response.is_success
    if not ok:
        logger.warning(f"Webhook {event} to {url} returned {response.status_code}")
    return DeliveryResult(success=ok, status=str(response.status_code))


def record_delivery(
    webhook_id: Optional[str],
    business_id: str,
    url: str,
    event: str,
    data: dict[str, Any],
    result: DeliveryResult,
) -> None:
    session_maker = get_sync_session_maker()
    with session_maker() as session:
        session.add(
            WebhookLog(
                webhook_id=webhook_id,
                business_id=business_id,
                url=url,
                event=event,
                status=result.status,
                payload_json=json.dumps(data, default=str),
            )
        )
        session.commit()


def deliver(webhook: dict[str, Any], event: str, data: dict[str, Any]) -> DeliveryResult:
    """Send one event to one webhook and log the attempt."""
    result = post_webhook(webhook["url"], webhook["secret"], event, data)
    record_delivery(webhook.get("id"), webhook["business_id"], webhook["url"], event, data, result)
    return result
