from sqlalchemy import select

from stallfront.models import ActivityLog, Order
from stallfront.services.activity import ActivityAction
from stallfront.services.payment import RefundResult, get_payment_service
from stallfront.services.webhooks import create_webhook
from tests.conftest import auth_headers, in_hours, make_business, make_stall, make_user


async def _customer_order(client, shop, hours=4, **extra) -> str:
    response = await client.post(
        "/api/customer/orders",
        json={
            "items": [{"product_id": shop["grill"].id, "quantity": 1}],
            "scheduled_for": in_hours(hours).isoformat(),
            **extra,
        },
        headers=auth_headers(shop["customer"]),
    )
    assert response.status_code == 201
    return response.json()["order"]["id"]


async def _stored(db, order_id) -> Order:
    result = await db.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


# =============================================================================
# LISTING
# =============================================================================

async def test_staff_see_only_their_business(client, db, shop):
    order_id = await _customer_order(client, shop)
    other = await make_business(db, "Kibanda Kitchen")
    other_owner = await make_user(db, "kibanda@example.com", ["business_owner"], business_id=other.id)

    mine = await client.get("/api/orders", headers=auth_headers(shop["owner"]))
    assert [o["id"] for o in mine.json()["orders"]] == [order_id]
    assert mine.json()["orders"][0]["items"][0]["product_title"] == "Nyama Choma"

    theirs = await client.get("/api/orders", headers=auth_headers(other_owner))
    assert theirs.json()["orders"] == []

    admin = await client.get("/api/orders", params={"business_id": shop["business"].id},
                             headers=auth_headers(shop["admin"]))
    assert admin.json()["count"] == 1

    detail = await client.get(f"/api/orders/{order_id}", headers=auth_headers(other_owner))
    assert detail.status_code == 403


async def test_list_filters(client, shop):
    early = await _customer_order(client, shop, hours=3)
    late = await _customer_order(client, shop, hours=26)
    headers = auth_headers(shop["owner"])
    await client.post(f"/api/orders/{late}/confirm", headers=headers)

    confirmed = await client.get("/api/orders", params={"status": "confirmed"}, headers=headers)
    assert [o["id"] for o in confirmed.json()["orders"]] == [late]

    window = await client.get(
        "/api/orders",
        params={"scheduled_to": in_hours(12).isoformat()},
        headers=headers,
    )
    assert [o["id"] for o in window.json()["orders"]] == [early]


async def test_order_viewer_can_list_but_not_act(client, db, shop):
    order_id = await _customer_order(client, shop)
    viewer = await make_user(db, "viewer@example.com", ["order_viewer"], business_id=shop["business"].id)
    headers = auth_headers(viewer)

    assert (await client.get("/api/orders", headers=headers)).json()["count"] == 1
    assert (await client.post(f"/api/orders/{order_id}/confirm", headers=headers)).status_code == 403
    patch = await client.patch(f"/api/orders/{order_id}", json={"status": "confirmed"}, headers=headers)
    assert patch.status_code == 403


# =============================================================================
# LIFECYCLE
# =============================================================================

async def test_full_lifecycle_with_webhooks(client, db, shop, outbox, webhook_calls):
    await create_webhook(db, shop["business"].id, "https://pos.example.com/hook", ["*"])
    order_id = await _customer_order(client, shop)
    headers = auth_headers(shop["owner"])

    confirmed = await client.post(f"/api/orders/{order_id}/confirm", headers=headers)
    assert confirmed.json()["status"] == "confirmed"
    assert confirmed.json()["allowed_next"] == ["cancelled", "fulfilled", "preparing", "ready"]

    preparing = await client.patch(
        f"/api/orders/{order_id}",
        json={"status": "preparing", "notes": "On the grill", "estimated_ready_time": in_hours(3).isoformat()},
        headers=headers,
    )
    assert preparing.json()["status"] == "preparing"

    ready = await client.patch(f"/api/orders/{order_id}", json={"status": "ready"}, headers=headers)
    assert ready.json()["allowed_next"] == ["cancelled", "fulfilled"]

    fulfilled = await client.post(f"/api/orders/{order_id}/fulfil", headers=headers)
    body = fulfilled.json()
    assert body["status"] == "fulfilled"
    assert body["payment_status"] == "paid"
    assert body["allowed_next"] == []

    stored = await _stored(db, order_id)
    assert stored.status_notes == "On the grill"
    assert stored.actual_ready_time is not None
    assert stored.estimated_ready_time is not None

    assert [call[1] for call in webhook_calls] == [
        "order.created",
        "order.confirmed",
        "order.preparing",
        "order.ready",
        "order.fulfilled",
    ]
    assert webhook_calls[-1][2]["previous_status"] == "ready"
    assert len([m for m in outbox if m.to == shop["customer"].email]) >= 5


async def test_invalid_transition_is_rejected(client, db, shop):
    order_id = await _customer_order(client, shop)
    response = await client.post(f"/api/orders/{order_id}/fulfil", headers=auth_headers(shop["owner"]))

    assert response.status_code == 400
    assert response.json()["error"] == "Cannot change order status from 'pending' to 'fulfilled'"
    assert (await _stored(db, order_id)).status == "pending"


async def test_staff_cancel_refunds_card_payment(client, db, shop):
    order_id = await _customer_order(client, shop, payment_method="card")
    intent = (await _stored(db, order_id)).payment_intent_id

    response = await client.post(
        f"/api/orders/{order_id}/cancel",
        json={"reason": "Out of charcoal"},
        headers=auth_headers(shop["owner"]),
    )

    assert response.json()["status"] == "cancelled"
    assert response.json()["payment_status"] == "refunded"
    assert intent in get_payment_service().refunds
    assert (await _stored(db, order_id)).cancelled_reason == "Out of charcoal"

    again = await client.post(f"/api/orders/{order_id}/cancel", headers=auth_headers(shop["owner"]))
    assert again.status_code == 400


async def test_failed_refund_leaves_order_paid(client, db, shop, outbox, monkeypatch):
    order_id = await _customer_order(client, shop, payment_method="card")

    async def declined(payment_intent_id, amount_cents=None, reason=None):
        return RefundResult(success=False, status="failed", error_message="charge_already_disputed")

    monkeypatch.setattr(get_payment_service(), "refund_payment", declined)
    outbox.clear()

    response = await client.post(f"/api/orders/{order_id}/cancel", headers=auth_headers(shop["owner"]))

    assert response.json()["status"] == "cancelled"
    assert response.json()["payment_status"] == "paid"
    assert (await _stored(db, order_id)).payment_status == "paid"

    failures = (await db.execute(
        select(ActivityLog).where(ActivityLog.action == ActivityAction.ORDER_REFUND_FAILED.value)
    )).scalars().all()
    assert [entry.entity_id for entry in failures] == [order_id]
    assert failures[0].success is False

    cancelled = [m for m in outbox if m.to == shop["customer"].email]
    assert cancelled and "refunded" not in cancelled[-1].body


async def test_other_business_cannot_drive_orders(client, db, shop):
    order_id = await _customer_order(client, shop)
    other = await make_business(db, "Kibanda Kitchen")
    other_owner = await make_user(db, "kibanda@example.com", ["business_owner"], business_id=other.id)

    response = await client.post(f"/api/orders/{order_id}/confirm", headers=auth_headers(other_owner))
    assert response.status_code == 403


# =============================================================================
# STAFF-ENTERED ORDERS
# =============================================================================

async def test_admin_enters_order_for_customer(client, db, shop):
    response = await client.post(
        "/api/orders",
        json={
            "business_id": shop["business"].id,
            "stall_id": shop["stall"].id,
            "scheduled_for": in_hours(5).isoformat(),
            "customer_user_id": shop["customer"].id,
            "items": [{"product_id": shop["grill"].id, "qty": 2}, {"product_id": shop["chapati"].id, "qty": 4}],
        },
        headers=auth_headers(shop["admin"]),
    )

    assert response.status_code == 201
    order = response.json()["order"]
    assert order["customer_user_id"] == shop["customer"].id
    assert order["total_cents"] == 2 * 1000 + 4 * 150
    assert order["tax_cents"] == 0
    assert order["currency"] == "KES"


async def test_business_owner_cannot_enter_orders(client, shop):
    response = await client.post(
        "/api/orders",
        json={
            "business_id": shop["business"].id,
            "stall_id": shop["stall"].id,
            "scheduled_for": in_hours(5).isoformat(),
            "items": [{"product_id": shop["grill"].id, "qty": 1}],
        },
        headers=auth_headers(shop["owner"]),
    )
    assert response.status_code == 403


async def test_staff_order_rejects_foreign_stall(client, db, shop):
    other = await make_business(db, "Kibanda Kitchen")
    foreign = await make_stall(db, other, "Kibanda")
    response = await client.post(
        "/api/orders",
        json={
            "business_id": shop["business"].id,
            "stall_id": foreign.id,
            "scheduled_for": in_hours(5).isoformat(),
            "items": [{"product_id": shop["grill"].id, "qty": 1}],
        },
        headers=auth_headers(shop["admin"]),
    )
    assert response.status_code == 400


async def test_customer_cannot_use_staff_order_entry(client, db, shop):
    victim = await make_user(db, "victim@example.com", ["customer"])
    response = await client.post(
        "/api/orders",
        json={
            "business_id": shop["business"].id,
            "stall_id": shop["stall"].id,
            "scheduled_for": in_hours(5).isoformat(),
            "customer_user_id": victim.id,
            "items": [{"product_id": shop["grill"].id, "qty": 1}],
        },
        headers=auth_headers(shop["customer"]),
    )

    assert response.status_code == 403
    placed = (await db.execute(select(Order).where(Order.customer_user_id == victim.id))).scalars().all()
    assert placed == []


async def test_staff_order_for_unknown_customer_is_rejected(client, shop):
    response = await client.post(
        "/api/orders",
        json={
            "business_id": shop["business"].id,
            "stall_id": shop["stall"].id,
            "scheduled_for": in_hours(5).isoformat(),
            "customer_user_id": "nobody",
            "items": [{"product_id": shop["grill"].id, "qty": 1}],
        },
        headers=auth_headers(shop["admin"]),
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Customer not found"


async def test_staff_order_accepts_catering_quantities(client, shop):
    response = await client.post(
        "/api/orders",
        json={
            "business_id": shop["business"].id,
            "stall_id": shop["stall"].id,
            "scheduled_for": in_hours(30).isoformat(),
            "items": [{"product_id": shop["grill"].id, "qty": 150}],
        },
        headers=auth_headers(shop["admin"]),
    )

    assert response.status_code == 201
    order = response.json()["order"]
    assert order["items"][0]["qty"] == 150
    assert order["total_cents"] == 150 * 1000
    assert order["customer_user_id"] == shop["admin"].id
