from sqlalchemy import select

from stallfront.models import Order, Product
from stallfront.services.orders import calculate_totals
from stallfront.services.payment import get_payment_service
from stallfront.services.webhooks import create_webhook
from tests.conftest import auth_headers, in_hours, make_product, make_stall, make_user


def _line(product, quantity, **extra):
    return {"product_id": product.id, "quantity": quantity, **extra}


async def _place(client, user, lines, hours=4, **extra):
    body = {"items": lines, "scheduled_for": in_hours(hours).isoformat(), **extra}
    return await client.post("/api/customer/orders", json=body, headers=auth_headers(user))


async def _fresh(db, model, entity_id):
    result = await db.execute(
        select(model).where(model.id == entity_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


# =============================================================================
# PLACING
# =============================================================================

async def test_place_pickup_order(client, db, shop, outbox, webhook_calls):
    customer = shop["customer"]
    await create_webhook(db, shop["business"].id, "https://pos.example.com/hook", ["order.created"])
    headers = auth_headers(customer)
    await client.post("/api/customer/cart", json=_line(shop["grill"], 1), headers=headers)

    response = await _place(client, customer, [_line(shop["grill"], 2), _line(shop["chapati"], 3)])

    assert response.status_code == 201
    order = response.json()["order"]
    expected = calculate_totals(2 * 1000 + 3 * 150, "pickup")
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["subtotal_cents"] == expected.subtotal_cents
    assert order["total_cents"] == expected.total_cents
    assert order["currency"] == "KES"
    assert {item["product_title"] for item in order["items"]} == {"Nyama Choma", "Chapati"}

    chapati = await _fresh(db, Product, shop["chapati"].id)
    assert chapati.inventory_qty == 17

    cart = await client.get("/api/customer/cart", headers=headers)
    assert cart.json()["cart"]["items"] == []

    assert any(m.to == customer.email for m in outbox)
    assert len(webhook_calls) == 1
    assert webhook_calls[0][1] == "order.created"
    assert webhook_calls[0][2]["order_id"] == order["id"]


async def test_delivery_order_needs_address_and_pays_fee(client, shop):
    customer = shop["customer"]
    missing = await _place(client, customer, [_line(shop["grill"], 1)], delivery_option="delivery")
    assert missing.status_code == 400

    response = await _place(
        client, customer, [_line(shop["grill"], 1)],
        delivery_option="delivery", delivery_address="Moi Avenue 12",
    )
    assert response.status_code == 201
    order = response.json()["order"]
    assert order["delivery_fee_cents"] == calculate_totals(1000, "delivery").delivery_fee_cents
    assert order["delivery_address"] == "Moi Avenue 12"


async def test_items_from_two_stalls_are_rejected(client, db, shop):
    other_stall = await make_stall(db, shop["business"], "Juice Bar")
    juice = await make_product(db, other_stall, "Passion Juice", 200)

    response = await _place(client, shop["customer"], [_line(shop["grill"], 1), _line(juice, 1)])

    assert response.status_code == 400
    assert response.json()["error"] == "All items in an order must come from the same stall"


async def test_validation_errors_are_listed(client, db, shop):
    response = await _place(
        client, shop["customer"],
        [_line(shop["chapati"], 25), _line(shop["grill"], 1, unit_price_cents=1)],
    )
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Order validation failed"
    assert len(body["details"]) == 2

    chapati = await _fresh(db, Product, shop["chapati"].id)
    assert chapati.inventory_qty == 20


async def test_past_time_is_rejected(client, shop):
    response = await _place(client, shop["customer"], [_line(shop["grill"], 1)], hours=-1)
    assert response.status_code == 400


async def test_only_customers_can_place_orders(client, shop):
    anonymous = await client.post("/api/customer/orders", json={"items": []})
    assert anonymous.status_code == 401

    staff = await _place(client, shop["owner"], [_line(shop["grill"], 1)])
    assert staff.status_code == 403


async def test_card_order_is_paid_then_refunded_on_cancel(client, db, shop):
    customer = shop["customer"]
    response = await _place(client, customer, [_line(shop["grill"], 1)], payment_method="card")
    assert response.status_code == 201
    order_id = response.json()["order"]["id"]
    assert response.json()["order"]["payment_status"] == "paid"

    stored = await _fresh(db, Order, order_id)
    assert stored.payment_intent_id

    cancel = await client.post(
        f"/api/customer/orders/{order_id}/cancel",
        json={"reason": "Plans changed"},
        headers=auth_headers(customer),
    )
    assert cancel.status_code == 200
    assert cancel.json()["status"] == "cancelled"
    assert cancel.json()["payment_status"] == "refunded"
    assert stored.payment_intent_id in get_payment_service().refunds


# =============================================================================
# SELF-SERVICE
# =============================================================================

async def test_order_history_pagination_and_stats(client, shop):
    customer = shop["customer"]
    headers = auth_headers(customer)
    ids = []
    for hours in (3, 5, 7):
        response = await _place(client, customer, [_line(shop["grill"], 1)], hours=hours)
        ids.append(response.json()["order"]["id"])
    await client.post(f"/api/customer/orders/{ids[0]}/cancel", headers=headers)

    page = await client.get(
        "/api/customer/orders",
        params={"limit": 2, "sort_by": "scheduled_for", "sort_order": "asc"},
        headers=headers,
    )
    body = page.json()
    assert [o["id"] for o in body["orders"]] == ids[:2]
    assert body["orders"][0]["stall_name"] == "Grill Corner"
    assert body["pagination"] == {"total": 3, "limit": 2, "offset": 0, "has_more": True}
    assert body["stats"]["pending"] == 2
    assert body["stats"]["cancelled"] == 1
    assert body["stats"]["total"] == 3

    filtered = await client.get("/api/customer/orders", params={"status": "cancelled"}, headers=headers)
    assert [o["id"] for o in filtered.json()["orders"]] == [ids[0]]

    bad_sort = await client.get("/api/customer/orders", params={"sort_by": "secret"}, headers=headers)
    assert bad_sort.status_code == 400


async def test_only_pending_orders_can_be_cancelled(client, shop):
    customer = shop["customer"]
    order_id = (await _place(client, customer, [_line(shop["grill"], 1)])).json()["order"]["id"]
    await client.post(f"/api/orders/{order_id}/confirm", headers=auth_headers(shop["owner"]))

    response = await client.post(f"/api/customer/orders/{order_id}/cancel", headers=auth_headers(customer))
    assert response.status_code == 400
    assert "Only pending orders" in response.json()["error"]


async def test_reschedule(client, db, shop, webhook_calls):
    customer = shop["customer"]
    await create_webhook(db, shop["business"].id, "https://pos.example.com/hook", ["*"])
    order_id = (await _place(client, customer, [_line(shop["grill"], 1)])).json()["order"]["id"]
    webhook_calls.clear()

    moved = await client.post(
        f"/api/customer/orders/{order_id}/reschedule",
        json={"scheduled_for": in_hours(30).isoformat()},
        headers=auth_headers(customer),
    )
    assert moved.status_code == 200
    assert [call[1] for call in webhook_calls] == ["order.updated"]

    past = await client.post(
        f"/api/customer/orders/{order_id}/reschedule",
        json={"scheduled_for": in_hours(-2).isoformat()},
        headers=auth_headers(customer),
    )
    assert past.status_code == 400
    assert past.json()["error"] == "Cannot reschedule order"


async def test_modify_pending_order_recomputes_totals(client, db, shop):
    customer = shop["customer"]
    placed = await _place(client, customer, [_line(shop["chapati"], 3)])
    order_id = placed.json()["order"]["id"]

    response = await client.patch(
        f"/api/customer/orders/{order_id}",
        json={"items": [_line(shop["grill"], 2)], "notes": "No onions"},
        headers=auth_headers(customer),
    )

    assert response.status_code == 200
    order = response.json()["order"]
    assert order["subtotal_cents"] == 2000
    assert order["total_cents"] == calculate_totals(2000, "pickup").total_cents
    assert order["notes"] == "No onions"
    assert [item["product_title"] for item in order["items"]] == ["Nyama Choma"]

    chapati = await _fresh(db, Product, shop["chapati"].id)
    assert chapati.inventory_qty == 20


async def test_paid_order_items_are_locked(client, shop):
    customer = shop["customer"]
    placed = await _place(client, customer, [_line(shop["grill"], 1)], payment_method="card")
    order_id = placed.json()["order"]["id"]

    response = await client.patch(
        f"/api/customer/orders/{order_id}",
        json={"items": [_line(shop["grill"], 3)]},
        headers=auth_headers(customer),
    )
    assert response.status_code == 400

    notes_only = await client.patch(
        f"/api/customer/orders/{order_id}", json={"notes": "Call on arrival"}, headers=auth_headers(customer)
    )
    assert notes_only.status_code == 200


async def test_rating_needs_a_fulfilled_order(client, shop):
    customer = shop["customer"]
    order_id = (await _place(client, customer, [_line(shop["grill"], 1)])).json()["order"]["id"]
    url = f"/api/customer/orders/{order_id}/rate"

    early = await client.post(url, json={"rating": 5}, headers=auth_headers(customer))
    assert early.status_code == 400

    owner = auth_headers(shop["owner"])
    await client.post(f"/api/orders/{order_id}/confirm", headers=owner)
    await client.post(f"/api/orders/{order_id}/fulfil", headers=owner)

    out_of_range = await client.post(url, json={"rating": 6}, headers=auth_headers(customer))
    assert out_of_range.status_code == 400
    assert out_of_range.json()["error"] == "Invalid request"
    assert out_of_range.json()["details"][0].startswith("rating:")

    rated = await client.post(url, json={"rating": 5, "review": "Best choma in town"}, headers=auth_headers(customer))
    assert rated.status_code == 200
    assert rated.json() == {"success": True, "rating": 5, "review": "Best choma in town"}


async def test_orders_of_other_customers_are_invisible(client, db, shop):
    order_id = (await _place(client, shop["customer"], [_line(shop["grill"], 1)])).json()["order"]["id"]
    stranger = await make_user(db, "stranger@example.com", ["customer"])
    headers = auth_headers(stranger)

    assert (await client.get(f"/api/customer/orders/{order_id}", headers=headers)).status_code == 404
    assert (await client.post(f"/api/customer/orders/{order_id}/cancel", headers=headers)).status_code == 404
    listing = await client.get("/api/customer/orders", headers=headers)
    assert listing.json()["orders"] == []


async def test_dashboard(client, shop):
    customer = shop["customer"]
    first = (await _place(client, customer, [_line(shop["grill"], 1)], hours=3)).json()["order"]
    second = (await _place(client, customer, [_line(shop["grill"], 2)], hours=6)).json()["order"]
    await client.post(f"/api/customer/orders/{first['id']}/cancel", headers=auth_headers(customer))

    response = await client.get("/api/customer/dashboard", headers=auth_headers(customer))

    body = response.json()
    assert body["total_orders"] == 2
    assert body["total_spent_cents"] == second["total_cents"]
    assert body["active_orders"] == 1
    assert [o["id"] for o in body["upcoming_orders"]] == [second["id"]]
    assert body["favourite_stalls"] == [{"stall_id": shop["stall"].id, "name": "Grill Corner", "order_count": 1}]
