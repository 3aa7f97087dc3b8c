import argparse
import asyncio
import random
import string
import time

import httpx


def _rand_email() -> str:
    return "loadtest_" + "".join(random.choice(string.ascii_lowercase) for _ in range(8)) + "@example.com"


async def run(base_url: str, items: int, contributions: int, requests: int, concurrency: int) -> None:
    async with httpx.AsyncClient(base_url=base_url, timeout=30.0) as client:
        email = _rand_email()
        res = await client.post("/auth/register", json={"email": email, "password": "LoadTest1234!", "full_name": "Load Test"})
        res.raise_for_status()
        registry = (await client.post("/api/registries", json={"title": "Load Test"})).json()
        registry_id = registry["id"]

        item_ids: list[int] = []
        for i in range(items):
            item = await client.post(
                "/api/gift-items",
                json={"registry_id": registry_id, "name": f"Item {i}", "price": random.randint(10, 500)},
            )
            item_ids.append(item.json()["id"])

        async with httpx.AsyncClient(base_url=base_url, timeout=30.0) as guest:
            for i in range(contributions):
                await guest.post(
                    "/api/contributions",
                    json={
                        "registry_id": registry_id,
                        "gift_item_id": random.choice(item_ids),
                        "amount": random.randint(1, 50),
                        "contributor_name": f"Guest {i}",
                    },
                )

        latencies: list[float] = []

        async def hit() -> None:
            start = time.perf_counter()
            res = await client.get(f"/api/registries/{registry_id}")
            latencies.append((time.perf_counter() - start) * 1000.0)
            if res.status_code != 200:
                raise RuntimeError(f"status {res.status_code}")

        pending = requests
        while pending > 0:
            batch = min(concurrency, pending)
            await asyncio.gather(*[hit() for _ in range(batch)])
            pending -= batch

        lat_sorted = sorted(latencies)
        p50 = lat_sorted[len(lat_sorted) // 2]
        p95 = lat_sorted[max(int(len(lat_sorted) * 0.95) - 1, 0)]
        print(
            f"requests={requests} concurrency={concurrency} items={items} "
            f"contributions={contributions} p50_ms={p50:.2f} p95_ms={p95:.2f}"
        )


def main() -> None:
    parser = argparse.ArgumentParser(description="Measure registry page latency under concurrent reads")
    parser.add_argument("--base-url", default="http://127.0.0.1:8000")
    parser.add_argument("--items", type=int, default=40)
    parser.add_argument("--contributions", type=int, default=200)
    parser.add_argument("--requests", type=int, default=50)
    parser.add_argument("--concurrency", type=int, default=10)
    args = parser.parse_args()
    asyncio.run(run(args.base_url, args.items, args.contributions, args.requests, args.concurrency))


if __name__ == "__main__":
    main()
