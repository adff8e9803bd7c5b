"""Publish an event envelope directly to a Kafka topic.

Useful for duplicate-delivery testing: publishing the same `entries.created`
envelope twice must leave the aggregate bucket counted once.
"""

import argparse
import asyncio
import json
from pathlib import Path

from aiokafka import AIOKafkaProducer


async def publish(bootstrap_servers: str, topic: str, payload: dict, copies: int) -> None:
    """Open producer, publish the envelope `copies` times keyed by owner, close producer."""

    producer = AIOKafkaProducer(bootstrap_servers=bootstrap_servers)
    await producer.start()
    try:
        key = str(payload.get("owner_id", "")).encode("utf-8") or None
        for _ in range(copies):
            await producer.send_and_wait(topic, json.dumps(payload).encode("utf-8"), key=key)
    finally:
        await producer.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Publish a JSON event envelope to a Kafka topic.")
    parser.add_argument("--bootstrap-servers", default="localhost:9092")
    parser.add_argument("--topic", required=True, help="e.g. entries.created or notifications.requested")
    parser.add_argument("--json", dest="json_inline", default=None, help="Inline JSON envelope")
    parser.add_argument("--file", dest="json_file", default=None, help="Path to JSON envelope file")
    parser.add_argument("--copies", type=int, default=1, help="Publish the same envelope N times")
    args = parser.parse_args()

    if bool(args.json_inline) == bool(args.json_file):
        raise SystemExit("Provide exactly one of --json or --file")

    if args.json_inline:
        payload = json.loads(args.json_inline)
    else:
        payload = json.loads(Path(args.json_file).read_text())

    asyncio.run(publish(args.bootstrap_servers, args.topic, payload, args.copies))
    print(f"Published topic={args.topic} copies={args.copies}")


if __name__ == "__main__":
    main()
