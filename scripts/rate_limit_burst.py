"""Fire a burst of entry writes for one owner to watch the rate limiter trip."""

import argparse
import asyncio
from datetime import datetime, timezone
from uuid import uuid4

import httpx


async def main() -> None:
    """CLI entrypoint for burst submission smoke tests."""

    parser = argparse.ArgumentParser(description="Send many entries for the same owner.")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--api-key", default="dev-secret")
    parser.add_argument("--owner-id", default="burst-owner-1")
    parser.add_argument("--impact", type=float, default=5.0)
    parser.add_argument("--count", type=int, default=10)
    args = parser.parse_args()

    statuses: dict[int, int] = {}
    async with httpx.AsyncClient(timeout=10.0) as client:
        for _ in range(args.count):
            payload = {
                "id": str(uuid4()),
                "category": "other",
                "impact": args.impact,
                "note": "burst",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            resp = await client.post(
                f"{args.base_url}/entries",
                json=payload,
                headers={"x-api-key": args.api_key, "x-owner-id": args.owner_id, "x-correlation-id": str(uuid4())},
            )
            statuses[resp.status_code] = statuses.get(resp.status_code, 0) + 1
            print(resp.status_code, resp.text)

    # With the default policy expect 5 x 200 then 429.
    print("status_counts=", statuses)


if __name__ == "__main__":
    asyncio.run(main())
