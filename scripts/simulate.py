"""
Checkout Load Simulation

Fires concurrent customer checkouts at a running API to exercise the
capacity checks, the rate limiter and background webhook delivery.
Run from project root: python scripts/simulate.py --email you@example.com --password ...

The customer account must already exist and be active.

Version: 1.0.0
"""

import argparse
import asyncio
import random
import sys
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

API_BASE_URL = "http://localhost:8000"
TOTAL_ORDERS = 20


# =============================================================================
# HELPERS
# =============================================================================

async def login(client: httpx.AsyncClient, email: str, password: str) -> Optional[str]:
    response = await client.post(
        f"{API_BASE_URL}/api/auth/customer/login",
        json={"email": email, "password": password},
    )
    if response.status_code != 200:
        print(f"   ❌ Login failed: {response.text[:200]}")
        return None
    return response.json()["access_token"]


async def load_menu(client: httpx.AsyncClient) -> list[dict[str, Any]]:
    """Active products of every open stall, grouped per stall."""
    response = await client.get(f"{API_BASE_URL}/api/customer/stalls")
    response.raise_for_status()

    menus = []
    for stall in response.json()["stalls"]:
        detail = await client.get(f"{API_BASE_URL}/api/customer/stalls/{stall['id']}")
        if detail.status_code != 200:
            continue
        products = detail.json()["products"]
        if products:
            menus.append({"stall": stall, "products": products})
    return menus


def generate_order_payload(menu: dict[str, Any]) -> dict[str, Any]:
    stall = menu["stall"]
    lead = stall.get("lead_time_minutes") or 30
    scheduled = datetime.now(timezone.utc) + timedelta(minutes=lead + random.randint(15, 240))
    picks = random.sample(menu["products"], k=min(len(menu["products"]), random.randint(1, 3)))

    delivery = random.random() < 0.3
    return {
        "items": [{"product_id": p["id"], "quantity": random.randint(1, 3)} for p in picks],
        "scheduled_for": scheduled.isoformat(),
        "delivery_option": "delivery" if delivery else "pickup",
        "delivery_address": f"{random.randint(1, 999)} Market St" if delivery else None,
        "payment_method": random.choice(["cash", "card"]),
    }


async def place_order(
    client: httpx.AsyncClient,
    token: str,
    menu: dict[str, Any],
    order_num: int,
) -> dict[str, Any]:
    payload = generate_order_payload(menu)
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/customer/orders",
            json=payload,
            headers={"Authorization": f"Bearer {token}"},
            timeout=30.0,
        )
        elapsed = round(time.time() - start_time, 3)
        body = response.json()

        if response.status_code == 201:
            order = body["order"]
            return {
                "order_num": order_num,
                "success": True,
                "order_id": order["id"],
                "total_cents": order["total_cents"],
                "time": elapsed,
            }
        return {
            "order_num": order_num,
            "success": False,
            "status": response.status_code,
            "error": body.get("error", response.text[:100]),
            "time": elapsed,
        }
    except httpx.HTTPError as e:
        return {
            "order_num": order_num,
            "success": False,
            "status": None,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


# =============================================================================
# SIMULATION
# =============================================================================

async def run_simulation(email: str, password: str, num_orders: int = TOTAL_ORDERS) -> dict[str, Any]:
    print("=" * 70)
    print("🔥 CHECKOUT SIMULATION")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        health = await client.get(f"{API_BASE_URL}/health")
        print(f"\n🩺 Health: {health.json().get('status')}")

        token = await login(client, email, password)
        if not token:
            return {"total": num_orders, "successful": 0, "failed": num_orders}

        menus = await load_menu(client)
        if not menus:
            print("   ❌ No open stall has active products")
            return {"total": num_orders, "successful": 0, "failed": num_orders}
        print(f"🍽️  Stalls with products: {len(menus)}")

        start_time = time.time()
        tasks = [place_order(client, token, random.choice(menus), i + 1) for i in range(num_orders)]
        results = await asyncio.gather(*tasks)
        total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    rate_limited = [r for r in failed if r.get("status") == 429]

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Successful Orders: {len(successful)}/{num_orders}")
    print(f"❌ Failed Orders: {len(failed)}/{num_orders} ({len(rate_limited)} rate limited)")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        revenue = sum(r["total_cents"] for r in successful) / 100
        print("\n📈 Performance Metrics:")
        print(f"   Average Response: {avg_time}s")
        print(f"   Fastest: {min(r['time'] for r in successful)}s")
        print(f"   Slowest: {max(r['time'] for r in successful)}s")
        print(f"   💰 Total Revenue: {revenue:.2f}")

    if failed:
        print("\n⚠️  Failed Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']} [{f.get('status')}]: {f.get('error', 'Unknown error')}")

    print("=" * 70)
    return {
        "total": num_orders,
        "successful": len(successful),
        "failed": len(failed),
        "total_time": total_time,
        "results": results,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Checkout Load Simulation")
    parser.add_argument("--email", required=True, help="Customer email")
    parser.add_argument("--password", required=True, help="Customer password")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url.rstrip("/")
    summary = asyncio.run(run_simulation(args.email, args.password, args.orders))
    sys.exit(0 if summary["successful"] else 1)
