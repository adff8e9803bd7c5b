"""Kafka envelope + producer/consumer helpers.

This module standardizes event structure, metadata propagation, and resilient
consumer loops used by every service.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from uuid import uuid4

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from pydantic import BaseModel, Field

from resilientme.common.config import settings
from resilientme.common.logging import log_context, logger
from resilientme.common.metrics import event_queue_delay_seconds

ENTRIES_CREATED = "entries.created"
NOTIFICATIONS_REQUESTED = "notifications.requested"

Handler = Callable[["EventEnvelope"], Awaitable[None]]


class EventEnvelope(BaseModel):
    """Canonical event shape sent across Kafka topics.

    `aggregate_id` names the record the event is about (entry id, task id);
    `owner_id` is the user that owns it and doubles as the partition key.
    """

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    owner_id: str
    aggregate_id: str
    occurred_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    trace_id: str = ""
    payload: dict[str, Any]


class KafkaBus:
    """Lazy Kafka producer wrapper used by service outbox publishers."""

    def __init__(self) -> None:
        self._producer: AIOKafkaProducer | None = None

    async def producer(self) -> AIOKafkaProducer:
        if self._producer is None:
            self._producer = AIOKafkaProducer(bootstrap_servers=settings.kafka_bootstrap_servers)
            await self._producer.start()
        return self._producer

    async def publish(self, topic: str, event: EventEnvelope) -> None:
        producer = await self.producer()
        # Keyed by owner so one owner's events stay ordered within a partition.
        await producer.send_and_wait(
            topic,
            json.dumps(event.model_dump()).encode("utf-8"),
            key=event.owner_id.encode("utf-8"),
        )

    async def close(self) -> None:
        if self._producer:
            await self._producer.stop()


async def make_consumer(topic: str, group_id: str) -> AIOKafkaConsumer:
    """Create a configured Kafka consumer for one topic/group."""

    consumer = AIOKafkaConsumer(
        topic,
        bootstrap_servers=settings.kafka_bootstrap_servers,
        group_id=group_id,
        auto_offset_reset="earliest",
        enable_auto_commit=False,
    )
    await consumer.start()
    return consumer


async def deliver_message(topic: str, group_id: str, raw: bytes, handler: Handler) -> bool:
    """Parse one record and run `handler` with correlation context bound.

    Returns False when parsing or the handler failed; the failure is logged
    and never raised so one poison record cannot stall the partition.
    """

    try:
        event = EventEnvelope(**json.loads(raw.decode("utf-8")))
    except Exception as exc:
        logger.error("event_parse_error topic=%s group=%s error=%s", topic, group_id, exc)
        return False

    occurred_at = datetime.fromisoformat(event.occurred_at.replace("Z", "+00:00"))
    if occurred_at.tzinfo is None:
        occurred_at = occurred_at.replace(tzinfo=timezone.utc)
    delay_seconds = max(0.0, (datetime.now(timezone.utc) - occurred_at).total_seconds())
    event_queue_delay_seconds.labels(service=settings.service_name, topic=topic).observe(delay_seconds)

    with log_context(trace_id=event.trace_id, event_id=event.event_id, owner_id=event.owner_id):
        try:
            logger.info(
                "event_received topic=%s group=%s event_type=%s aggregate_id=%s",
                topic,
                group_id,
                event.event_type,
                event.aggregate_id,
            )
            await handler(event)
            return True
        except Exception as exc:
            logger.error("handler_error topic=%s group=%s event_id=%s error=%s", topic, group_id, event.event_id, exc)
            return False


async def consume_forever(topic: str, group_id: str, handler: Handler) -> None:
    """Continuously consume one topic and pass parsed envelopes to `handler`.

    Errors in individual messages are logged and processing continues; commit is
    done in batches to keep throughput reasonable.
    """

    while True:
        consumer = None
        try:
            consumer = await make_consumer(topic, group_id)
            while True:
                results = await consumer.getmany(timeout_ms=500, max_records=50)
                for _, messages in results.items():
                    for msg in messages:
                        await deliver_message(topic, group_id, msg.value, handler)
                await consumer.commit()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("consumer_loop_error topic=%s group=%s error=%s", topic, group_id, exc)
            await asyncio.sleep(2)
        finally:
            if consumer is not None:
                await consumer.stop()
            await asyncio.sleep(0)
