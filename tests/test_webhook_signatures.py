import json
import threading

import httpx
import pytest

from stallfront import tasks
from stallfront.celery_worker import celery_app
from stallfront.core.exceptions import ValidationFailedError
from stallfront.models import Webhook
from stallfront.services.delivery import (
    EVENT_HEADER,
    SIGNATURE_HEADER,
    encode_payload,
    post_webhook,
    sign_payload,
    verify_signature,
)
from stallfront.services.webhooks import create_webhook, trigger_webhooks


def test_signature_verifies_only_with_the_right_secret_and_body():
    body = encode_payload("order.created", {"order_id": "o1"})
    signature = sign_payload(body, "s3cret")
    assert verify_signature(body, signature, "s3cret")
    assert not verify_signature(body, signature, "other")
    assert not verify_signature(body + b" ", signature, "s3cret")
    assert not verify_signature(body, "", "s3cret")


def test_payload_envelope():
    body = json.loads(encode_payload("order.ready", {"order_id": "o1"}))
    assert body["event"] == "order.ready"
    assert body["data"] == {"order_id": "o1"}
    assert "timestamp" in body


def test_post_webhook_sends_signed_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = request.content
        seen["signature"] = request.headers[SIGNATURE_HEADER]
        seen["event"] = request.headers[EVENT_HEADER]
        return httpx.Response(204)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    result = post_webhook("https://hooks.example.com/x", "s3cret", "order.created", {"a": 1}, client=client)

    assert result.success
    assert result.status == "204"
    assert seen["event"] == "order.created"
    assert verify_signature(seen["body"], seen["signature"], "s3cret")


def test_non_2xx_and_transport_errors_are_failures():
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    assert post_webhook("https://hooks.example.com/x", "s", "order.created", {}, client=client).status == "500"

    def boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = httpx.Client(transport=httpx.MockTransport(boom))
    result = post_webhook("https://hooks.example.com/x", "s", "order.created", {}, client=client)
    assert not result.success
    assert result.status == "failed"


async def test_unknown_events_are_rejected(db):
    with pytest.raises(ValidationFailedError):
        await create_webhook(db, "b1", "https://hooks.example.com/x", ["order.exploded"])


async def test_trigger_queues_only_subscribed_active_hooks(db, webhook_calls):
    await create_webhook(db, "b1", "https://a.example.com", ["order.created"])
    await create_webhook(db, "b1", "https://b.example.com", ["*"])
    await create_webhook(db, "b1", "https://c.example.com", ["order.cancelled"])
    db.add(Webhook(business_id="b1", url="https://d.example.com", events_csv="*", secret="x", active=False))
    await create_webhook(db, "b2", "https://e.example.com", ["*"])
    await db.commit()

    queued = await trigger_webhooks(db, "b1", "order.created", {"order_id": "o1"})

    assert queued == 2
    assert sorted(call[0]["url"] for call in webhook_calls) == ["https://a.example.com", "https://b.example.com"]
    assert all(call[1] == "order.created" for call in webhook_calls)


async def test_eager_delivery_runs_off_the_event_loop(db, monkeypatch):
    threads = []
    monkeypatch.setattr(celery_app.conf, "task_always_eager", True)
    monkeypatch.setattr(tasks.deliver_webhook, "delay", lambda webhook, event, data: threads.append(threading.get_ident()))
    await create_webhook(db, "b1", "https://a.example.com", ["*"])

    assert await trigger_webhooks(db, "b1", "order.ready", {"order_id": "o1"}) == 1
    assert threads and threads[0] != threading.get_ident()
