from sqlalchemy import select

from stallfront.core.security import REFRESH_COOKIE, SESSION_COOKIE
from stallfront.models import ActivityLog, MagicLink, RolePermission, User
from stallfront.services import accounts
from stallfront.services.activity import ActivityAction
from tests.conftest import PASSWORD, auth_headers, make_business, make_user


async def _link(db, email: str, purpose: str) -> MagicLink:
    result = await db.execute(
        select(MagicLink)
        .where(MagicLink.email == email, MagicLink.purpose == purpose)
        .order_by(MagicLink.created_at.desc())
    )
    return result.scalars().first()


async def _fresh_user(db, email: str) -> User:
    result = await db.execute(select(User).where(User.email == email).execution_options(populate_existing=True))
    return result.scalar_one()


# =============================================================================
# SIGNUP
# =============================================================================

async def test_customer_signup_to_first_login(client, db, outbox):
    response = await client.post(
        "/api/auth/customer/signup",
        json={"email": "Akinyi@Example.com", "name": "Akinyi", "phone": "+254700000001"},
    )
    assert response.status_code == 201

    user = await _fresh_user(db, "akinyi@example.com")
    assert user.status == "pending"
    assert user.roles == ["customer"]
    assert any(m.to == "akinyi@example.com" for m in outbox)

    link = await _link(db, "akinyi@example.com", "signup")
    check = await client.get("/api/auth/customer/verify-magic", params={"token": link.token})
    assert check.json()["purpose"] == "signup"

    response = await client.post("/api/auth/set-password", json={"token": link.token, "password": PASSWORD})
    assert response.status_code == 200
    body = response.json()
    assert body["user"]["status"] == "active"
    assert body["access_token"]
    assert SESSION_COOKIE in response.cookies

    # Links are single use
    again = await client.post("/api/auth/set-password", json={"token": link.token, "password": PASSWORD})
    assert again.status_code == 400
    assert again.json()["error"] == "Invalid or already used link"

    client.cookies.clear()
    login = await client.post("/api/auth/customer/login", json={"email": "akinyi@example.com", "password": PASSWORD})
    assert login.status_code == 200


async def test_duplicate_signup_conflicts(client, db):
    await make_user(db, "taken@example.com", ["customer"])
    response = await client.post("/api/auth/customer/signup", json={"email": "taken@example.com", "name": "X"})
    assert response.status_code == 409
    assert response.json()["success"] is False


async def test_weak_password_lists_problems(client, db):
    await make_user(db, "new@example.com", ["customer"], password=None, status=accounts.UserStatus.PENDING)
    user = await _fresh_user(db, "new@example.com")
    link = accounts.create_magic_link(db, user.email, accounts.MagicLinkPurpose.SIGNUP, user.id)
    await db.commit()

    response = await client.post("/api/auth/set-password", json={"token": link.token, "password": "short"})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Password does not meet requirements"
    assert len(body["details"]) >= 2


# =============================================================================
# LOGIN
# =============================================================================

async def test_login_failures_share_one_message(client, db):
    owner = await make_user(db, "owner@example.com", ["business_owner"], business_id="b1")

    wrong = await client.post("/api/auth/customer/login", json={"email": owner.email, "password": "Wrong1234"})
    unknown = await client.post("/api/auth/customer/login", json={"email": "nobody@example.com", "password": "Wrong1234"})
    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json()["error"] == unknown.json()["error"] == accounts.GENERIC_LOGIN_ERROR

    not_customer = await client.post("/api/auth/customer/login", json={"email": owner.email, "password": PASSWORD})
    assert not_customer.status_code == 401

    staff = await client.post("/api/auth/login", json={"email": owner.email, "password": PASSWORD})
    assert staff.status_code == 200
    assert staff.json()["mfa_required"] is False

    result = await db.execute(select(ActivityLog).where(ActivityLog.action == ActivityAction.USER_LOGIN_FAILED.value))
    assert len(result.scalars().all()) == 3


async def test_disabled_account_cannot_log_in(client, db):
    await make_user(db, "gone@example.com", ["customer"], status=accounts.UserStatus.DISABLED)
    response = await client.post("/api/auth/customer/login", json={"email": "gone@example.com", "password": PASSWORD})
    assert response.status_code == 401
    assert response.json()["error"] == "Account is not active"


async def test_auth_endpoints_are_rate_limited(client):
    for _ in range(5):
        response = await client.post("/api/auth/login", json={"email": "x@example.com", "password": "nope"})
        assert response.status_code == 401

    blocked = await client.post("/api/auth/login", json={"email": "x@example.com", "password": "nope"})
    assert blocked.status_code == 429
    assert int(blocked.headers["Retry-After"]) > 0


async def test_mfa_login_with_one_time_code(client, db, monkeypatch):
    user = await make_user(db, "chef@example.com", ["stall_manager"], business_id="b1")
    user.mfa_enabled = True
    await db.commit()
    monkeypatch.setattr(accounts, "generate_otp", lambda length=6: "482913")

    first = await client.post("/api/auth/login", json={"email": user.email, "password": PASSWORD})
    assert first.json()["mfa_required"] is True
    assert "access_token" not in first.json()

    wrong = await client.post("/api/auth/verify-otp", json={"email": user.email, "code": "000000"})
    assert wrong.status_code == 401
    assert "2 attempts remaining" in wrong.json()["error"]

    right = await client.post("/api/auth/verify-otp", json={"email": user.email, "code": "482913"})
    assert right.status_code == 200
    assert right.json()["user"]["email"] == user.email

    # The code is gone once used
    reuse = await client.post("/api/auth/verify-otp", json={"email": user.email, "code": "482913"})
    assert reuse.status_code == 401


async def test_otp_resend_cooldown(client, db):
    await make_user(db, "cook@example.com", ["customer"])
    assert (await client.post("/api/auth/send-otp", json={"email": "cook@example.com"})).status_code == 200
    again = await client.post("/api/auth/send-otp", json={"email": "cook@example.com"})
    assert again.status_code == 429
    assert "Retry-After" in again.headers


async def test_magic_link_login(client, db):
    await make_user(db, "regular@example.com", ["customer"])
    response = await client.post("/api/auth/magic-link", json={"email": "regular@example.com"})
    assert response.status_code == 200

    link = await _link(db, "regular@example.com", "login")
    signed_in = await client.get("/api/auth/magic", params={"token": link.token})
    assert signed_in.status_code == 200
    assert (await client.get("/api/auth/magic", params={"token": link.token})).status_code == 400


# =============================================================================
# SESSION
# =============================================================================

async def test_refresh_and_logout(client, db):
    await make_user(db, "r@example.com", ["customer"])
    login = await client.post("/api/auth/customer/login", json={"email": "r@example.com", "password": PASSWORD})
    assert REFRESH_COOKIE in login.cookies

    refreshed = await client.post("/api/auth/refresh")
    assert refreshed.status_code == 200
    assert refreshed.json()["access_token"]

    me = await client.get("/api/auth/me")
    assert me.json()["user"]["email"] == "r@example.com"

    await client.post("/api/auth/logout")
    client.cookies.clear()
    assert (await client.get("/api/auth/me")).status_code == 401
    assert (await client.post("/api/auth/refresh")).status_code == 401


async def test_profile_update(client, db):
    user = await make_user(db, "p@example.com", ["customer"], name="Old Name")
    response = await client.patch("/api/auth/me", json={"name": "New Name"}, headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json()["user"]["name"] == "New Name"


# =============================================================================
# INVITES & RESETS
# =============================================================================

async def test_owner_invites_staff(client, db, shop, outbox):
    headers = auth_headers(shop["owner"])
    response = await client.post(
        "/api/auth/invite",
        json={"email": "cook@example.com", "name": "Cook", "roles": ["stall_manager"]},
        headers=headers,
    )
    assert response.status_code == 201
    invited = response.json()["user"]
    assert invited["status"] == "invited"
    assert invited["business_id"] == shop["business"].id
    assert await _link(db, "cook@example.com", "invite") is not None
    assert any(m.to == "cook@example.com" for m in outbox)

    escalate = await client.post(
        "/api/auth/invite",
        json={"email": "boss@example.com", "name": "Boss", "roles": ["super_admin"]},
        headers=headers,
    )
    assert escalate.status_code == 403

    unknown = await client.post(
        "/api/auth/invite",
        json={"email": "odd@example.com", "name": "Odd", "roles": ["wizard"]},
        headers=headers,
    )
    assert unknown.status_code == 400
    assert unknown.json()["details"] == ["wizard"]


async def test_invites_cannot_grant_more_than_the_inviter_holds(client, db, shop):
    manager = await make_user(db, "manager@example.com", ["stall_manager"], business_id=shop["business"].id)
    headers = auth_headers(manager)

    for role in ("business_owner", "admin"):
        response = await client.post(
            "/api/auth/invite",
            json={"email": f"{role}@example.com", "name": "Sneaky", "roles": [role]},
            headers=headers,
        )
        assert response.status_code == 403, role

    editor = await client.post(
        "/api/auth/invite",
        json={"email": "editor@example.com", "name": "Editor", "roles": ["menu_editor"]},
        headers=headers,
    )
    assert editor.status_code == 201
    assert editor.json()["user"]["roles"] == ["menu_editor"]


async def test_invites_only_see_custom_roles_of_the_business(client, db, shop):
    other = await make_business(db, "Kibanda Kitchen")
    db.add(RolePermission(business_id=other.id, role_name="grillmaster", permissions_csv="orders:view"))
    await db.commit()

    response = await client.post(
        "/api/auth/invite",
        json={"email": "chef@example.com", "name": "Chef", "roles": ["grillmaster"]},
        headers=auth_headers(shop["owner"]),
    )
    assert response.status_code == 400
    assert response.json()["details"] == ["grillmaster"]


async def test_password_reset(client, db):
    await make_user(db, "forgetful@example.com", ["customer"])

    silent = await client.post("/api/auth/password-reset/request", json={"email": "ghost@example.com"})
    assert silent.status_code == 200

    await client.post("/api/auth/password-reset/request", json={"email": "forgetful@example.com"})
    link = await _link(db, "forgetful@example.com", "password_reset")

    confirm = await client.post("/api/auth/password-reset/confirm", json={"token": link.token, "password": "N3wPassword"})
    assert confirm.status_code == 200

    client.cookies.clear()
    login = await client.post("/api/auth/customer/login", json={"email": "forgetful@example.com", "password": "N3wPassword"})
    assert login.status_code == 200
