"""
Shared fixtures.

The environment is set before anything from ``stallfront`` is imported so
the cached settings pick it up.
"""

import os
import tempfile

os.environ["ENV_MODE"] = "development"
os.environ["DEBUG"] = "false"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["PASSWORD_HASH_ROUNDS"] = "4"
os.environ["MOCK_FAILURE_RATE"] = "0"
os.environ["MOCK_LATENCY_SECONDS"] = "0"
os.environ["CELERY_EAGER"] = "true"
os.environ["JWT_SECRET"] = "test-session-secret-0123456789abcdef0123456789"
os.environ["REFRESH_SECRET"] = "test-refresh-secret-0123456789abcdef0123456789"
os.environ["REDIS_URL"] = "redis://127.0.0.1:1/0"
os.environ["EXPORT_DIRECTORY"] = os.path.join(tempfile.gettempdir(), "stallfront-test-exports")

from datetime import timedelta
from typing import Optional

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from stallfront import tasks
from stallfront.core.cache import admin_cache, product_cache, stall_cache
from stallfront.core.monitoring import performance_monitor
from stallfront.core.rate_limiter import rate_limiter
from stallfront.core.security import hash_password
from stallfront.database import Base, get_db
from stallfront.main import app
from stallfront.models import Business, Product, ProductStatus, Stall, User, UserStatus, utcnow
from stallfront.services.accounts import issue_session
from stallfront.services.notifications import get_notification_service

PASSWORD = "Sup3rSecret"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def isolate_globals(monkeypatch):
    """Fresh limiter, caches and outbox per test; webhook deliveries are captured."""
    rate_limiter.reset()
    for cache in (stall_cache, product_cache, admin_cache):
        cache.clear()
    performance_monitor.clear()
    get_notification_service().clear()

    queued: list[tuple[dict, str, dict]] = []
    monkeypatch.setattr(tasks.deliver_webhook, "delay", lambda webhook, event, data: queued.append((webhook, event, data)))
    yield queued


@pytest.fixture
def webhook_calls(isolate_globals):
    return isolate_globals


@pytest.fixture
def outbox():
    return get_notification_service().outbox


# =============================================================================
# FACTORIES
# =============================================================================

async def make_user(
    db: AsyncSession,
    email: str,
    roles: list[str],
    business_id: Optional[str] = None,
    password: Optional[str] = PASSWORD,
    status: UserStatus = UserStatus.ACTIVE,
    name: str = "Test User",
) -> User:
    user = User(
        email=email,
        name=name,
        business_id=business_id,
        status=status.value,
        hashed_password=hash_password(password) if password else None,
    )
    user.roles = roles
    db.add(user)
    await db.commit()
    return user


async def make_business(db: AsyncSession, name: str = "Mama Oliech Foods", **fields) -> Business:
    business = Business(name=name, **fields)
    db.add(business)
    await db.commit()
    return business


async def make_stall(db: AsyncSession, business: Business, name: str = "Grill Corner", **fields) -> Stall:
    stall = Stall(business_id=business.id, name=name, **fields)
    db.add(stall)
    await db.commit()
    return stall


async def make_product(
    db: AsyncSession,
    stall: Stall,
    title: str = "Nyama Choma",
    price_cents: int = 1000,
    status: ProductStatus = ProductStatus.ACTIVE,
    **fields,
) -> Product:
    product = Product(
        stall_id=stall.id,
        business_id=stall.business_id,
        title=title,
        price_cents=price_cents,
        status=status.value,
        **fields,
    )
    db.add(product)
    await db.commit()
    return product


def auth_headers(user: User) -> dict[str, str]:
    token, _ = issue_session(user)
    return {"Authorization": f"Bearer {token}"}


def in_hours(hours: float):
    return utcnow() + timedelta(hours=hours)


@pytest.fixture
async def shop(db):
    """A business with an owner, one stall with two active products, and a customer."""
    business = await make_business(db)
    owner = await make_user(db, "owner@example.com", ["business_owner"], business_id=business.id)
    business.owner_user_id = owner.id
    await db.commit()
    stall = await make_stall(db, business)
    grill = await make_product(db, stall, "Nyama Choma", 1000)
    chapati = await make_product(db, stall, "Chapati", 150, inventory_qty=20)
    customer = await make_user(db, "wanjiru@example.com", ["customer"], name="Wanjiru")
    admin = await make_user(db, "ops@example.com", ["super_admin"])
    return {
        "business": business,
        "owner": owner,
        "stall": stall,
        "grill": grill,
        "chapati": chapati,
        "customer": customer,
        "admin": admin,
    }
