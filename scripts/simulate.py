"""
Callback Race Simulation Script

Opens many checkout sessions, then fires overlapping success and cancel
callbacks (plus duplicates) at each order and checks that every order
ends in exactly one terminal status that no later callback changes.

Intended for a local server in development mode (mock gateway).
Run from project root: python scripts/simulate.py
"""

import asyncio
import random
import sys
import time
import argparse
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 50
ORIGIN = "http://localhost:3000"
TERMINAL = {"completed", "cancelled"}

# Sample data for random orders
FIRST_NAMES = ["Anna", "Lukas", "Sophie", "Jonas", "Lena", "Felix", "Marie", "Paul", "Laura", "David"]
LAST_NAMES = ["Gruber", "Huber", "Wagner", "Mueller", "Pichler", "Steiner", "Moser", "Bauer"]
MENU_ITEMS = [
    {"id": 9001, "name": "Pizza Margherita", "price": 9.50, "originalPrice": 11.00},
    {"id": 9002, "name": "Pizza Diavola", "price": 12.00, "originalPrice": 12.00},
    {"id": 9003, "name": "Caesar Salad", "price": 8.90, "originalPrice": 8.90},
    {"id": 9004, "name": "Tiramisu", "price": 5.50, "originalPrice": 6.00},
    {"id": 9005, "name": "Lemonade", "price": 3.20, "originalPrice": 3.20},
]


def generate_pickup_order() -> dict[str, Any]:
    """Random pickup order; catalog-free item ids so no option rules apply."""
    items = []
    for menu_item in random.sample(MENU_ITEMS, k=random.randint(1, 3)):
        item = dict(menu_item)
        item["quantity"] = random.randint(1, 3)
        items.append(item)

    first = random.choice(FIRST_NAMES)
    last = random.choice(LAST_NAMES)
    return {
        "items": items,
        "customerInfo": {
            "firstName": first,
            "lastName": last,
            "email": f"{first}.{last}@example.com".lower(),
            "phone": f"+43 660 {random.randint(1000000, 9999999)}",
        },
        "orderMethod": "pickup",
        "paymentMethod": "stripe",
        "status": "pending",
        "totalAmount": round(sum(i["price"] * i["quantity"] for i in items), 2),
    }


# =============================================================================
# SINGLE ORDER RACE
# =============================================================================

async def fire_callback(
    client: httpx.AsyncClient,
    kind: str,
    session_id: str,
) -> tuple[str, int, str]:
    """Send one success or cancel callback; returns (kind, HTTP status, order status)."""
    await asyncio.sleep(random.uniform(0, 0.05))
    path = "payment-success" if kind == "success" else "payment-cancel"
    response = await client.get(
        f"{API_BASE_URL}/api/stripe/{path}",
        params={"session_id": session_id},
        timeout=30.0,
    )
    status = response.json().get("status") if response.status_code == 200 else None
    return kind, response.status_code, status


async def race_order(
    client: httpx.AsyncClient,
    order_num: int,
    duplicates: int,
) -> dict[str, Any]:
    """Create one order, race its callbacks, verify the outcome is stable."""
    start_time = time.time()

    response = await client.post(
        f"{API_BASE_URL}/api/stripe/create-checkout-session",
        json=generate_pickup_order(),
        headers={"Origin": ORIGIN},
        timeout=30.0,
    )
    if response.status_code != 200:
        return {
            "order_num": order_num,
            "success": False,
            "error": f"checkout failed: {response.text[:100]}",
        }

    checkout = response.json()
    kinds = ["success", "cancel"] * duplicates
    random.shuffle(kinds)
    outcomes = await asyncio.gather(
        *(fire_callback(client, kind, checkout["sessionId"]) for kind in kinds)
    )

    # Every callback after the first transition must report the same status
    first = await client.get(f"{API_BASE_URL}/api/orders/{checkout['orderId']}")
    second = await client.get(f"{API_BASE_URL}/api/orders/{checkout['orderId']}")
    final = first.json().get("status")
    elapsed = round(time.time() - start_time, 3)

    errors = [f"{kind} -> HTTP {code}" for kind, code, _ in outcomes if code != 200]
    if final not in TERMINAL:
        errors.append(f"final status {final!r} is not terminal")
    if second.json() != first.json():
        errors.append("projection changed between two reads")
    if any(s in TERMINAL and s != final for _, _, s in outcomes):
        errors.append(f"a callback reported a terminal status other than {final}")

    return {
        "order_num": order_num,
        "order_number": checkout["orderNumber"],
        "success": not errors,
        "final": final,
        "error": "; ".join(errors),
        "time": elapsed,
    }


async def run_simulation(
    num_orders: int = TOTAL_ORDERS,
    duplicates: int = 2,
) -> dict[str, Any]:
    """
    Run the callback race.

    Args:
        num_orders: Number of orders to create
        duplicates: How many success and how many cancel callbacks per order
    """
    print("=" * 70)
    print("CALLBACK RACE SIMULATION")
    print("=" * 70)
    print(f"Orders: {num_orders}  (x{duplicates} success + x{duplicates} cancel each)")
    print(f"Target: {API_BASE_URL}")
    print(f"Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient() as client:
        health = await client.get(f"{API_BASE_URL}/health")
        if health.status_code != 200:
            print(f"Health check failed: {health.text}")
            sys.exit(1)

        results = await asyncio.gather(
            *(race_order(client, i + 1, duplicates) for i in range(num_orders))
        )

    total_time = round(time.time() - start_time, 2)

    consistent = [r for r in results if r["success"]]
    broken = [r for r in results if not r["success"]]
    completed = [r for r in consistent if r["final"] == "completed"]

    print("\n" + "=" * 70)
    print("RESULTS")
    print("=" * 70)
    print(f"Consistent orders: {len(consistent)}/{num_orders}")
    print(f"   completed: {len(completed)}")
    print(f"   cancelled: {len(consistent) - len(completed)}")
    print(f"Inconsistent orders: {len(broken)}/{num_orders}")
    print(f"Total Time: {total_time}s")

    if consistent:
        avg_time = round(sum(r["time"] for r in consistent) / len(consistent), 3)
        print(f"Average order round trip: {avg_time}s")

    if broken:
        print("\nInconsistent order details (showing first 5):")
        for r in broken[:5]:
            print(f"   Order #{r['order_num']} {r.get('order_number', '')}: {r['error']}")

    print("=" * 70)

    return {
        "total": num_orders,
        "consistent": len(consistent),
        "inconsistent": len(broken),
        "total_time": total_time,
        "results": results,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Callback Race Simulation Script")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--duplicates", type=int, default=2, help="Callbacks of each kind per order")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url.rstrip("/")

    summary = asyncio.run(run_simulation(args.orders, args.duplicates))
    sys.exit(0 if summary["inconsistent"] == 0 else 1)
