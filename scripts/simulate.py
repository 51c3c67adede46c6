"""
Delivery Load Simulation Script

Fires concurrent fee-estimate and quote requests at a running API and
replays signed provider webhooks, to exercise caching, token reuse and
webhook verification under load.
Run from project root: python scripts/simulate.py --slug demo

Requires a site with the given slug (pickup address + Uber customer id).
"""

import asyncio
import sys
import os
import json
import random
import time
import argparse
import uuid
from datetime import datetime
from typing import Any, Optional

import httpx
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.services.delivery.webhooks import compute_signature  # noqa: E402

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:4000"
TOTAL_REQUESTS = 50

# Sample drop-off addresses around downtown Toronto
STREETS = ["Queen St W", "King St E", "Spadina Ave", "Bloor St W", "Yonge St", "Dundas St W", "College St"]
POSTAL_CODES = ["M5H 2N2", "M5V 3L9", "M5T 1R5", "M5S 1A1", "M4Y 1Y5", "M6J 1V1", "M5G 1Z8"]
NAMES = ["Jane Doe", "Sam Lee", "Ana Silva", "Omar Haddad", "Chris Wong", "Emma Roy"]
STATUSES = ["pending", "pickup", "pickup_complete", "dropoff", "delivered"]


def generate_dropoff() -> dict[str, Any]:
    """Generate a random drop-off contact."""
    return {
        "name": random.choice(NAMES),
        "phone": f"+1416555{random.randint(1000, 9999)}",
        "address": {
            "streetAddress": [f"{random.randint(1, 999)} {random.choice(STREETS)}"],
            "city": "Toronto",
            "province": "Ontario",
            "postalCode": random.choice(POSTAL_CODES),
            "country": "CA",
        },
    }


async def send_request(
    client: httpx.AsyncClient,
    request_num: int,
    mode: str,
    slug: str,
) -> dict[str, Any]:
    """Send one fee-estimate or quote request."""
    path = "fee-estimate" if mode == "fee" else "quote"
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/delivery/{slug}/{path}",
            json={"dropoff": generate_dropoff()},
            timeout=30.0
        )
        elapsed = round(time.time() - start_time, 3)
        data = response.json()

        if response.status_code == 200:
            return {
                "request_num": request_num,
                "success": True,
                "fee": data.get("feeCents", data.get("fee")),
                "simulated": data.get("simulated", False),
                "time": elapsed,
                "mode": mode
            }
        return {
            "request_num": request_num,
            "success": False,
            "error": str(data.get("error") or data.get("detail"))[:100],
            "time": elapsed,
            "mode": mode
        }
    except Exception as e:
        elapsed = round(time.time() - start_time, 3)
        return {
            "request_num": request_num,
            "success": False,
            "error": str(e)[:100],
            "time": elapsed,
            "mode": mode
        }


async def send_webhook(
    client: httpx.AsyncClient,
    external_id: str,
    status: str,
    signing_key: Optional[str],
) -> httpx.Response:
    """Post a provider-style status event, signed when a key is given."""
    body = json.dumps({
        "event_type": "event.delivery_status",
        "data": {
            "external_id": external_id,
            "status": status,
            "tracking_url": f"https://track.example.com/{external_id}",
        },
    }).encode("utf-8")

    headers = {"Content-Type": "application/json"}
    if signing_key:
        headers["X-Uber-Signature"] = compute_signature(body, signing_key)

    return await client.post(f"{API_BASE_URL}/webhook/uber", content=body, headers=headers)


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(
    slug: str,
    mode: str = "both",
    num_requests: int = TOTAL_REQUESTS
) -> dict[str, Any]:
    """
    Run the load simulation.

    Args:
        slug: Site slug to target
        mode: "fee", "quote", or "both"
        num_requests: Number of requests to send
    """
    print("=" * 70)
    print("🔥 DELIVERY SIMULATION - HIGH CONCURRENCY TEST")
    print("=" * 70)
    print(f"📋 Total Requests: {num_requests}")
    print(f"🎯 Target: {API_BASE_URL} (site '{slug}')")
    print(f"🔧 Mode: {mode}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient() as client:
        tasks = []
        for i in range(num_requests):
            if mode == "both":
                request_mode = "fee" if i % 2 == 0 else "quote"
            else:
                request_mode = mode
            tasks.append(send_request(client, i + 1, request_mode, slug))
        results = await asyncio.gather(*tasks)

    total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Successful: {len(successful)}/{num_requests}")
    print(f"❌ Failed: {len(failed)}/{num_requests}")
    print(f"⏱️  Total Time: {total_time}s")

    for request_mode in ("fee", "quote"):
        subset = [r for r in results if r["mode"] == request_mode]
        if subset:
            ok = len([r for r in subset if r["success"]])
            simulated = len([r for r in subset if r.get("simulated")])
            print(f"   {request_mode}: {ok}/{len(subset)} successful ({simulated} simulated)")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        print("\n📈 Performance Metrics:")
        print(f"   Average Response: {avg_time}s")
        print(f"   Fastest: {min(r['time'] for r in successful)}s")
        print(f"   Slowest: {max(r['time'] for r in successful)}s")

    if failed:
        print("\n⚠️  Failed Request Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Request #{f['request_num']} [{f['mode']}]: {f.get('error', 'Unknown error')}")

    print("=" * 70)

    return {
        "total": num_requests,
        "successful": len(successful),
        "failed": len(failed),
        "total_time": total_time,
        "results": results
    }


async def test_webhook_flow(signing_key: Optional[str]) -> bool:
    """Replay a full status progression for one external id."""
    print("\n" + "=" * 70)
    print("🧪 WEBHOOK FLOW")
    print("=" * 70)

    external_id = f"sim-{uuid.uuid4().hex[:8]}"
    async with httpx.AsyncClient() as client:
        for status in STATUSES:
            response = await send_webhook(client, external_id, status, signing_key)
            if response.status_code != 200:
                print(f"   ❌ {status}: {response.text[:100]}")
                return False
            print(f"   ✅ {status}: {response.json()}")

        if signing_key:
            response = await send_webhook(client, external_id, "delivered", "wrong-key")
            rejected = response.status_code == 400
            print(f"   {'✅' if rejected else '❌'} Bad signature rejected: {response.status_code}")
            if not rejected:
                return False

    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Delivery Simulation Script")
    parser.add_argument("--slug", default="demo", help="Site slug")
    parser.add_argument("--fee", action="store_true", help="Fee estimates only")
    parser.add_argument("--quote", action="store_true", help="Provider quotes only")
    parser.add_argument("--requests", type=int, default=TOTAL_REQUESTS, help="Number of requests")
    parser.add_argument("--signing-key", default=os.getenv("UBER_SIGNING_KEY"), help="Webhook signing key")
    parser.add_argument("--skip-webhooks", action="store_true", help="Skip the webhook flow")
    args = parser.parse_args()

    if args.fee:
        mode = "fee"
    elif args.quote:
        mode = "quote"
    else:
        mode = "both"

    if not args.skip_webhooks:
        if not asyncio.run(test_webhook_flow(args.signing_key)):
            print("\n❌ Webhook flow failed. Fix issues before running simulation.")
            sys.exit(1)

    asyncio.run(run_simulation(args.slug, mode, args.requests))
