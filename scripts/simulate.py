"""
Rush Hour Simulation Script

Fires many concurrent booking requests at one slot to check that no table
is ever handed out twice and that the overflow lands on the waiting list.
Run from project root: python scripts/simulate.py
"""

import asyncio
import sys
import random
import time
import argparse
from datetime import date, datetime, timedelta
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_REQUESTS = 50

FIRST_NAMES = ["John", "Jane", "Mike", "Sarah", "Tom", "Emma", "David", "Lisa", "Chris", "Amy"]
LAST_NAMES = ["Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia", "Miller", "Davis", "Wilson", "Taylor"]

# (table_number, capacity)
FLOOR_PLAN = [("T1", 2), ("T2", 2), ("T3", 4), ("T4", 4), ("T5", 6), ("T6", 8)]


def generate_booking_payload(booking_date: date, booking_time: str) -> dict[str, Any]:
    first = random.choice(FIRST_NAMES)
    last = random.choice(LAST_NAMES)
    return {
        "customer_name": f"{first} {last}",
        "customer_phone": f"555-{random.randint(100, 999)}-{random.randint(1000, 9999)}",
        "booking_date": booking_date.isoformat(),
        "booking_time": booking_time,
        "party_size": random.choice([1, 2, 2, 3, 4, 4, 5, 6, 8, 10]),
    }


# =============================================================================
# SETUP
# =============================================================================

async def setup_restaurant(client: httpx.AsyncClient) -> int:
    """Create a restaurant open every day 18:00-23:00 with the floor plan."""
    response = await client.post(
        f"{API_BASE_URL}/api/restaurants",
        json={"name": f"Rush Hour Bistro {datetime.now():%H%M%S}"},
    )
    response.raise_for_status()
    restaurant_id = response.json()["id"]

    for day in range(7):
        response = await client.put(
            f"{API_BASE_URL}/api/restaurants/{restaurant_id}/hours",
            json={"day_of_week": day, "opening_time": "18:00", "closing_time": "23:00"},
        )
        response.raise_for_status()

    for table_number, capacity in FLOOR_PLAN:
        response = await client.post(
            f"{API_BASE_URL}/api/restaurants/{restaurant_id}/tables",
            json={"table_number": table_number, "capacity": capacity},
        )
        response.raise_for_status()

    print(f"🏠 Restaurant #{restaurant_id} ready with {len(FLOOR_PLAN)} tables")
    return restaurant_id


# =============================================================================
# LOAD
# =============================================================================

async def send_booking(
    client: httpx.AsyncClient,
    restaurant_id: int,
    request_num: int,
    booking_date: date,
    booking_time: str,
) -> dict[str, Any]:
    payload = generate_booking_payload(booking_date, booking_time)
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/restaurants/{restaurant_id}/bookings",
            json=payload,
            timeout=30.0,
        )
        elapsed = round(time.time() - start_time, 3)

        if response.status_code == 201:
            data = response.json()
            booking = data.get("booking")
            return {
                "request_num": request_num,
                "success": True,
                "party_size": payload["party_size"],
                "method": data["assignment_method"],
                "table_id": booking["table_id"] if booking else None,
                "time": elapsed,
            }
        return {
            "request_num": request_num,
            "success": False,
            "status_code": response.status_code,
            "error": response.text[:100],
            "time": elapsed,
        }
    except Exception as e:
        elapsed = round(time.time() - start_time, 3)
        return {
            "request_num": request_num,
            "success": False,
            "error": str(e)[:100],
            "time": elapsed,
        }


async def run_simulation(num_requests: int = TOTAL_REQUESTS) -> dict[str, Any]:
    booking_date = date.today() + timedelta(days=1)
    booking_time = "19:30"

    print("=" * 70)
    print("🔥 RUSH HOUR SIMULATION - ONE SLOT, MANY GUESTS")
    print("=" * 70)
    print(f"📋 Requests: {num_requests}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"🕖 Slot: {booking_date.isoformat()} {booking_time}")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        restaurant_id = await setup_restaurant(client)

        start_time = time.time()
        print("\n🚀 Firing booking requests...\n")
        tasks = [
            send_booking(client, restaurant_id, i + 1, booking_date, booking_time)
            for i in range(num_requests)
        ]
        results = await asyncio.gather(*tasks)
        total_time = round(time.time() - start_time, 2)

        response = await client.get(
            f"{API_BASE_URL}/api/restaurants/{restaurant_id}/availability",
            params={"date": booking_date.isoformat(), "time": booking_time},
        )
        availability = response.json()

    booked = [r for r in results if r["success"] and r["method"] != "waitlist"]
    waitlisted = [r for r in results if r["success"] and r["method"] == "waitlist"]
    failed = [r for r in results if not r["success"]]

    table_ids = [r["table_id"] for r in booked]
    double_booked = len(table_ids) - len(set(table_ids))

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Booked: {len(booked)}/{num_requests} (tables: {len(FLOOR_PLAN)})")
    print(f"⏳ Waitlisted: {len(waitlisted)}/{num_requests}")
    print(f"❌ Failed: {len(failed)}/{num_requests}")
    print(f"⏱️  Total Time: {total_time}s")

    if double_booked:
        print(f"\n🚨 {double_booked} table(s) handed out more than once!")
    else:
        print("\n✅ No table handed out twice")

    print(f"\n📈 Slot after the rush:")
    for key in ("total_capacity", "booked_capacity", "available_capacity", "waiting_count"):
        print(f"   {key}: {availability.get(key)}")

    if failed:
        print(f"\n⚠️  Failed Request Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Request #{f['request_num']}: {f.get('status_code', '-')} {f.get('error', 'Unknown error')}")

    print("\n" + "=" * 70)
    print("🔍 VERIFICATION STEPS")
    print("=" * 70)
    print("1. Check Celery terminal - all export tasks should complete")
    print("2. Run: python scripts/verify.py")
    print("=" * 70)

    return {
        "total": num_requests,
        "booked": len(booked),
        "waitlisted": len(waitlisted),
        "failed": len(failed),
        "double_booked": double_booked,
        "total_time": total_time,
        "results": results,
    }


async def check_health() -> bool:
    async with httpx.AsyncClient() as client:
        print("\n1️⃣ Health Check...")
        response = await client.get(f"{API_BASE_URL}/health")
        if response.status_code != 200:
            print(f"   ❌ Failed: {response.text}")
            return False
        data = response.json()
        print(f"   ✅ Status: {data.get('status')}")
        print(f"   Database: {data.get('database')}")
        print(f"   Redis: {data.get('redis')}")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Rush Hour Simulation Script")
    parser.add_argument("--requests", type=int, default=TOTAL_REQUESTS, help="Number of booking requests")
    parser.add_argument("--skip-health", action="store_true", help="Skip the health check")
    args = parser.parse_args()

    if not args.skip_health and not asyncio.run(check_health()):
        print("\n❌ Health check failed. Fix issues before running simulation.")
        sys.exit(1)

    summary = asyncio.run(run_simulation(num_requests=args.requests))
    sys.exit(1 if summary["double_booked"] else 0)
