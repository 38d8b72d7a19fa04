from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from stallfront.models import Order, ProductStatus, StallStatus, utcnow
from stallfront.services.order_validation import (
    ItemCheck,
    is_stall_accepting_orders,
    is_stall_open,
    validate_complete_order,
    validate_order_items,
    validate_order_scheduling,
)
from tests.conftest import in_hours, make_product

NAIROBI = ZoneInfo("Africa/Nairobi")
ALL_DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def tomorrow_at(hour: int, minute: int = 0) -> datetime:
    local = datetime.now(NAIROBI) + timedelta(days=1)
    return local.replace(hour=hour, minute=minute, second=0, microsecond=0).astimezone(timezone.utc)


def add_order(db, stall, scheduled_for, status="pending") -> Order:
    order = Order(
        business_id=stall.business_id,
        stall_id=stall.id,
        customer_user_id="someone",
        status=status,
        scheduled_for=scheduled_for,
    )
    db.add(order)
    return order


# =============================================================================
# ITEMS
# =============================================================================

async def test_valid_items_pass(db, shop):
    result = await validate_order_items(db, [ItemCheck(shop["grill"].id, shop["stall"].id, 2)])
    assert result.valid
    assert result.errors == []


async def test_item_errors(db, shop):
    draft = await make_product(db, shop["stall"], "Mandazi", 50, status=ProductStatus.DRAFT)
    result = await validate_order_items(db, [
        ItemCheck("missing", shop["stall"].id, 1),
        ItemCheck(draft.id, shop["stall"].id, 1),
        ItemCheck(shop["grill"].id, "another-stall", 1),
        ItemCheck(shop["chapati"].id, shop["stall"].id, 25),
        ItemCheck(shop["grill"].id, shop["stall"].id, 1, unit_price_cents=900),
    ])
    assert not result.valid
    assert len(result.errors) == 5
    assert "not found" in result.errors[0]
    assert "not available" in result.errors[1]
    assert "does not belong" in result.errors[2]
    assert "Insufficient inventory" in result.errors[3]
    assert "Price mismatch" in result.errors[4]


async def test_item_warnings(db, shop):
    result = await validate_order_items(db, [
        ItemCheck(shop["chapati"].id, shop["stall"].id, 12),
        ItemCheck(shop["grill"].id, shop["stall"].id, 11),
    ])
    assert result.valid
    assert any("Low inventory" in w for w in result.warnings)
    assert any("Large quantity" in w for w in result.warnings)


# =============================================================================
# SCHEDULING
# =============================================================================

async def test_past_and_far_future_times_are_rejected(db, shop):
    stall_id = shop["stall"].id
    past = await validate_order_scheduling(db, stall_id, utcnow() - timedelta(minutes=1))
    assert past.errors == ["Order must be scheduled for a future time"]

    far = await validate_order_scheduling(db, stall_id, utcnow() + timedelta(days=31))
    assert "30 days" in far.errors[0]


async def test_disabled_stall_is_rejected(db, shop):
    shop["stall"].status = StallStatus.DISABLED.value
    await db.commit()
    result = await validate_order_scheduling(db, shop["stall"].id, in_hours(5))
    assert result.errors == ["Stall is not currently accepting orders"]


async def test_closed_day_is_rejected(db, shop):
    shop["stall"].open_hours = {day: {"open": "08:00", "close": "20:00", "closed": True} for day in ALL_DAYS}
    await db.commit()
    result = await validate_order_scheduling(db, shop["stall"].id, tomorrow_at(12))
    assert not result.valid
    assert result.errors[0].startswith("Stall is closed on")


async def test_outside_hours_is_only_a_warning(db, shop):
    shop["stall"].open_hours = {day: {"open": "08:00", "close": "20:00", "closed": False} for day in ALL_DAYS}
    await db.commit()
    result = await validate_order_scheduling(db, shop["stall"].id, tomorrow_at(22, 30))
    assert result.valid
    assert any("outside normal operating hours" in w for w in result.warnings)


async def test_capacity_is_counted_per_local_day(db, shop):
    stall = shop["stall"]
    stall.capacity_per_day = 1
    existing = add_order(db, stall, tomorrow_at(12))
    add_order(db, stall, tomorrow_at(13), status="cancelled")
    await db.commit()

    full = await validate_order_scheduling(db, stall.id, tomorrow_at(18))
    assert not full.valid
    assert "reached capacity" in full.errors[0]

    moving = await validate_order_scheduling(db, stall.id, tomorrow_at(18), exclude_order_id=existing.id)
    assert moving.valid


async def test_nearby_orders_raise_a_conflict_warning(db, shop):
    stall = shop["stall"]
    slot = tomorrow_at(12)
    add_order(db, stall, slot)
    await db.commit()

    result = await validate_order_scheduling(db, stall.id, slot + timedelta(minutes=10))
    assert result.valid
    assert any("1 other orders" in w for w in result.warnings)


async def test_complete_order_merges_item_and_schedule_results(db, shop):
    result = await validate_complete_order(
        db,
        [ItemCheck("missing", shop["stall"].id, 1)],
        shop["stall"].id,
        utcnow() - timedelta(hours=1),
    )
    assert not result.valid
    assert len(result.errors) == 2


def test_is_stall_open_uses_local_time(shop):
    stall = shop["stall"]
    stall.open_hours = {day: {"open": "08:00", "close": "20:00", "closed": False} for day in ALL_DAYS}
    assert is_stall_open(stall, "Africa/Nairobi", now=tomorrow_at(9))
    assert not is_stall_open(stall, "Africa/Nairobi", now=tomorrow_at(21))
    stall.status = StallStatus.DISABLED.value
    assert not is_stall_open(stall, "Africa/Nairobi", now=tomorrow_at(9))


async def test_stall_accepting_orders(db, shop):
    stall = shop["stall"]
    stall.open_hours = {day: {"open": "08:00", "close": "20:00", "closed": False} for day in ALL_DAYS}
    await db.commit()

    assert await is_stall_accepting_orders(db, stall.id, now=tomorrow_at(9))
    assert not await is_stall_accepting_orders(db, stall.id, now=tomorrow_at(21))
    assert not await is_stall_accepting_orders(db, "no-such-stall")
