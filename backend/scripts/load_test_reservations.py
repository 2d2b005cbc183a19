"""Race many guests for the same items and check each item has one reserver."""
import argparse
import asyncio
import json
import random
import time

import httpx

from wishsync.core.telegram_auth import build_init_data


async def login(client: httpx.AsyncClient, bot_token: str, user_id: int) -> str:
    init_data = build_init_data(
        {
            "auth_date": str(int(time.time())),
            "user": json.dumps({"id": user_id, "first_name": f"Load {user_id}"}, separators=(",", ":")),
        },
        bot_token,
    )
    res = await client.post("/auth/telegram", json={"initData": init_data})
    res.raise_for_status()
    return res.json()["token"]


async def run(base_url: str, bot_token: str, items: int, guests: int) -> None:
    async with httpx.AsyncClient(base_url=base_url, timeout=30.0) as client:
        owner_id = random.randint(10**9, 2 * 10**9)
        owner_token = await login(client, bot_token, owner_id)
        owner_headers = {"Authorization": f"Bearer {owner_token}"}

        await client.get("/wishlist", headers=owner_headers)
        res = await client.put(
            "/wishlist/items",
            headers=owner_headers,
            json={"items": [{"text": f"Item {i}"} for i in range(items)]},
        )
        res.raise_for_status()
        wishlist = res.json()

        guest_tokens = [await login(client, bot_token, owner_id + i + 1) for i in range(guests)]
        statuses: dict[int, list[int]] = {}
        latencies: list[float] = []

        async def reserve(item_id: int, token: str) -> None:
            start = time.perf_counter()
            r = await client.post(
                f"/wishlist/items/{item_id}/reserve",
                headers={"Authorization": f"Bearer {token}"},
            )
            latencies.append((time.perf_counter() - start) * 1000.0)
            statuses.setdefault(item_id, []).append(r.status_code)

        await asyncio.gather(
            *[reserve(item["id"], token) for item in wishlist["items"] for token in guest_tokens]
        )

        bad = [item_id for item_id, codes in statuses.items() if codes.count(200) != 1]
        lat_sorted = sorted(latencies)
        p50 = lat_sorted[len(lat_sorted) // 2]
        p95 = lat_sorted[max(int(len(lat_sorted) * 0.95) - 1, 0)]
        print(f"items={items} guests={guests} p50_ms={p50:.2f} p95_ms={p95:.2f} violations={len(bad)}")


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--base-url", default="http://127.0.0.1:8000")
    parser.add_argument("--bot-token", required=True)
    parser.add_argument("--items", type=int, default=20)
    parser.add_argument("--guests", type=int, default=10)
    args = parser.parse_args()
    asyncio.run(run(args.base_url, args.bot_token, args.items, args.guests))


if __name__ == "__main__":
    main()
