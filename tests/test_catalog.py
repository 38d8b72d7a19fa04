from stallfront.models import ProductStatus, Stall
from tests.conftest import auth_headers, make_business, make_product, make_user


# =============================================================================
# BUSINESSES
# =============================================================================

async def test_admin_onboards_business_and_invites_owner(client, shop, outbox):
    body = {"name": "Soko Bites", "owner_email": "Soko@Example.com", "owner_name": "Achieng", "currency": "ugx"}

    response = await client.post("/api/businesses", json=body, headers=auth_headers(shop["admin"]))

    assert response.status_code == 201
    data = response.json()
    assert data["business"]["currency"] == "UGX"
    assert data["business"]["owner_user_id"] == data["owner"]["id"]
    assert data["owner"]["status"] == "invited"
    assert data["owner"]["roles"] == ["business_owner"]
    assert any(m.to == "soko@example.com" for m in outbox)

    again = await client.post("/api/businesses", json=body, headers=auth_headers(shop["admin"]))
    assert again.status_code == 409

    not_admin = await client.post("/api/businesses", json={**body, "owner_email": "x@example.com"},
                                  headers=auth_headers(shop["owner"]))
    assert not_admin.status_code == 403


async def test_owner_sees_and_updates_own_business(client, db, shop):
    business_id = shop["business"].id
    headers = auth_headers(shop["owner"])
    await make_business(db, "Someone Else")

    listing = await client.get("/api/businesses", headers=headers)
    assert [b["id"] for b in listing.json()["businesses"]] == [business_id]

    mine = await client.get("/api/businesses/my-business", headers=headers)
    assert mine.json()["business"]["name"] == "Mama Oliech Foods"

    await client.patch(f"/api/businesses/{business_id}", json={"settings": {"auto_confirm": True}}, headers=headers)
    updated = await client.patch(f"/api/businesses/{business_id}", json={"settings": {"sms": False}}, headers=headers)
    assert updated.json()["business"]["settings"] == {"auto_confirm": True, "sms": False}

    stats = await client.get("/api/businesses/dashboard-stats", headers=headers)
    assert stats.json()["stats"]["stall_count"] == 1
    assert stats.json()["stats"]["product_count"] == 2
    assert stats.json()["stats"]["total_orders"] == 0


async def test_owner_cannot_touch_another_business(client, db, shop):
    other = await make_business(db, "Kibanda Kitchen")
    headers = auth_headers(shop["owner"])

    assert (await client.get(f"/api/businesses/{other.id}", headers=headers)).status_code == 403
    assert (await client.patch(f"/api/businesses/{other.id}", json={"name": "Mine now"}, headers=headers)).status_code == 403


async def test_disabled_business_disappears_from_public_listing(client, shop):
    before = await client.get("/api/customer/stalls")
    assert before.json()["count"] == 1
    assert before.json()["stalls"][0]["product_count"] == 2

    await client.put(
        f"/api/businesses/{shop['business'].id}/status",
        json={"status": "disabled"},
        headers=auth_headers(shop["admin"]),
    )

    after = await client.get("/api/customer/stalls")
    assert after.json()["count"] == 0
    assert (await client.get(f"/api/customer/stalls/{shop['stall'].id}")).status_code == 404


# =============================================================================
# STALLS
# =============================================================================

async def test_stall_create_update_disable(client, shop):
    headers = auth_headers(shop["owner"])
    created = await client.post(
        "/api/stalls",
        json={
            "business_id": shop["business"].id,
            "name": "Juice Bar",
            "cuisine_type": "Drinks",
            "open_hours": {"Monday": {"open": "09:00", "close": "17:00"}},
            "capacity_per_day": 40,
        },
        headers=headers,
    )
    assert created.status_code == 201
    stall = created.json()["stall"]
    assert stall["open_hours"] == {"monday": {"open": "09:00", "close": "17:00", "closed": False}}

    drinks = await client.get("/api/customer/stalls", params={"cuisine": "drinks"})
    assert [s["name"] for s in drinks.json()["stalls"]] == ["Juice Bar"]

    updated = await client.patch(f"/api/stalls/{stall['id']}", json={"capacity_per_day": 60}, headers=headers)
    assert updated.json()["stall"]["capacity_per_day"] == 60

    disabled = await client.delete(f"/api/stalls/{stall['id']}", headers=headers)
    assert disabled.json()["stall"]["status"] == "disabled"
    listing = await client.get("/api/customer/stalls")
    assert [s["name"] for s in listing.json()["stalls"]] == ["Grill Corner"]


async def test_stall_permissions(client, db, shop):
    other = await make_business(db, "Kibanda Kitchen")
    outsider = await make_user(db, "kibanda@example.com", ["business_owner"], business_id=other.id)
    viewer = await make_user(db, "viewer@example.com", ["order_viewer"], business_id=shop["business"].id)
    body = {"business_id": shop["business"].id, "name": "Sneaky Stall"}

    assert (await client.post("/api/stalls", json=body, headers=auth_headers(outsider))).status_code == 403
    assert (await client.post("/api/stalls", json=body, headers=auth_headers(viewer))).status_code == 403

    staff_view = await client.get(f"/api/stalls/{shop['stall'].id}", headers=auth_headers(shop["owner"]))
    assert len(staff_view.json()["products"]) == 2
    assert (await client.get(f"/api/stalls/{shop['stall'].id}", headers=auth_headers(outsider))).status_code == 403


async def test_public_listing_is_cached_until_a_write(client, db, shop):
    first = await client.get("/api/customer/stalls")
    assert first.json()["stalls"][0]["name"] == "Grill Corner"

    stall = await db.get(Stall, shop["stall"].id)
    stall.name = "Renamed Behind The Cache"
    await db.commit()
    cached = await client.get("/api/customer/stalls")
    assert cached.json()["stalls"][0]["name"] == "Grill Corner"

    await client.patch(f"/api/stalls/{stall.id}", json={"name": "Grill Corner II"}, headers=auth_headers(shop["owner"]))
    fresh = await client.get("/api/customer/stalls")
    assert fresh.json()["stalls"][0]["name"] == "Grill Corner II"


async def test_public_stall_search(client, shop):
    hit = await client.get("/api/customer/stalls", params={"search": "GRILL"})
    miss = await client.get("/api/customer/stalls", params={"search": "sushi"})
    assert hit.json()["count"] == 1
    assert miss.json()["count"] == 0


# =============================================================================
# PRODUCTS
# =============================================================================

async def test_editor_drafts_and_owner_approves(client, db, shop):
    editor = await make_user(db, "editor@example.com", ["menu_editor"], business_id=shop["business"].id)
    editor_headers = auth_headers(editor)
    owner_headers = auth_headers(shop["owner"])

    created = await client.post(
        "/api/products",
        json={"stall_id": shop["stall"].id, "title": "Mutura", "price_cents": 300, "tags": ["street", " grill "]},
        headers=editor_headers,
    )
    assert created.status_code == 201
    product = created.json()["product"]
    assert product["status"] == "draft"
    assert product["currency"] == "KES"
    assert product["tags"] == ["street", "grill"]

    published = await client.post(f"/api/products/{product['id']}/publish", headers=editor_headers)
    assert published.json()["product"]["status"] == "pending"

    denied = await client.post(f"/api/products/{product['id']}/approve", headers=editor_headers)
    assert denied.status_code == 403

    approved = await client.post(f"/api/products/{product['id']}/approve", headers=owner_headers)
    assert approved.json()["product"]["status"] == "active"
    assert approved.json()["product"]["approved_by"] == shop["owner"].id

    menu = await client.get(f"/api/customer/stalls/{shop['stall'].id}")
    assert "Mutura" in [p["title"] for p in menu.json()["products"]]

    resubmit = await client.post(f"/api/products/{product['id']}/submit", headers=editor_headers)
    assert resubmit.status_code == 400

    back = await client.post(f"/api/products/{product['id']}/unpublish", headers=editor_headers)
    assert back.json()["product"]["status"] == "draft"
    menu = await client.get(f"/api/customer/stalls/{shop['stall'].id}")
    assert "Mutura" not in [p["title"] for p in menu.json()["products"]]


async def test_owner_publishes_draft_directly(client, db, shop):
    draft = await make_product(db, shop["stall"], "Githeri", 250, status=ProductStatus.DRAFT)
    response = await client.post(f"/api/products/{draft.id}/publish", headers=auth_headers(shop["owner"]))
    assert response.json()["product"]["status"] == "active"


async def test_update_and_archive(client, shop):
    headers = auth_headers(shop["owner"])
    chapati_id = shop["chapati"].id

    updated = await client.patch(
        f"/api/products/{chapati_id}",
        json={"price_cents": 180, "inventory_qty": None},
        headers=headers,
    )
    assert updated.json()["product"]["price_cents"] == 180
    assert updated.json()["product"]["inventory_qty"] is None

    search = await client.get("/api/products", params={"search": "chap"}, headers=headers)
    assert [p["id"] for p in search.json()["products"]] == [chapati_id]

    archived = await client.delete(f"/api/products/{chapati_id}", headers=headers)
    assert archived.json()["product"]["status"] == "archived"
    active = await client.get("/api/products", params={"status": "active"}, headers=headers)
    assert [p["title"] for p in active.json()["products"]] == ["Nyama Choma"]


async def test_product_images(client, shop):
    headers = auth_headers(shop["owner"])
    url = f"/api/products/{shop['grill'].id}/images"

    await client.post(url, json={"url": "https://cdn.example.com/a.jpg"}, headers=headers)
    twice = await client.post(url, json={"url": "https://cdn.example.com/a.jpg"}, headers=headers)
    assert twice.json()["product"]["image_urls"] == ["https://cdn.example.com/a.jpg"]

    removed = await client.delete(url, params={"url": "https://cdn.example.com/a.jpg"}, headers=headers)
    assert removed.json()["product"]["image_urls"] == []
    missing = await client.delete(url, params={"url": "https://cdn.example.com/a.jpg"}, headers=headers)
    assert missing.status_code == 404

    for i in range(10):
        await client.post(url, json={"url": f"https://cdn.example.com/{i}.jpg"}, headers=headers)
    full = await client.post(url, json={"url": "https://cdn.example.com/11.jpg"}, headers=headers)
    assert full.status_code == 400
