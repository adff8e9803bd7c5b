"""Compare an owner's aggregate buckets with the ledger's committed entries.

Every bucket's `total_count` must equal the number of ledger entries with that
local day; any mismatch is printed and the exit code is 1.
"""

import argparse
import json
import sys

import httpx


def main() -> None:
    parser = argparse.ArgumentParser(description="Reconcile aggregate bucket counts against the ledger.")
    parser.add_argument("--ledger-url", default="http://localhost:8001")
    parser.add_argument("--aggregator-url", default="http://localhost:8002")
    parser.add_argument("--owner-id", required=True)
    args = parser.parse_args()

    ledger = httpx.get(f"{args.ledger_url}/internal/owners/{args.owner_id}/daily-counts", timeout=10.0)
    ledger.raise_for_status()
    buckets = httpx.get(f"{args.aggregator_url}/owners/{args.owner_id}/aggregates", timeout=10.0)
    buckets.raise_for_status()

    expected = ledger.json()["days"]
    actual = {b["day"]: b["total_count"] for b in buckets.json()}
    mismatches = {
        day: {"ledger": expected.get(day, 0), "bucket": actual.get(day, 0)}
        for day in sorted(set(expected) | set(actual))
        if expected.get(day, 0) != actual.get(day, 0)
    }
    print(json.dumps({"owner_id": args.owner_id, "days": len(expected), "mismatches": mismatches}, indent=2))
    sys.exit(1 if mismatches else 0)


if __name__ == "__main__":
    main()
