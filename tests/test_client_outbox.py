"""Durable client outbox: ordering, backoff and restart."""

import asyncio
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from resilientme.client.outbox import DurableOutbox, OutboxStore
from resilientme.common.errors import InvalidArgument


def raw_entry(impact=5):
    return {
        "id": str(uuid4()),
        "category": "social",
        "impact": impact,
        "note": None,
        "timestamp": datetime(2024, 3, 4, 12, tzinfo=timezone.utc).isoformat(),
    }


class FlakySender:
    """Fails the first `failures` attempts, then accepts everything."""

    def __init__(self, failures=0):
        self.failures = failures
        self.attempts = []
        self.delivered = []

    async def __call__(self, entry):
        self.attempts.append(str(entry.id))
        if self.failures:
            self.failures -= 1
            raise ConnectionError("offline")
        self.delivered.append(str(entry.id))


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def store(tmp_path):
    return OutboxStore(str(tmp_path / "outbox.db"))


async def test_items_drain_in_fifo_order_despite_failures(store):
    """Failures keep the head in place, so delivery order is enqueue order."""

    sender, sleep = FlakySender(failures=3), RecordingSleep()
    outbox = DurableOutbox(store, sender, sleep=sleep)
    ids = [str(outbox.enqueue(raw_entry()).id) for _ in range(3)]

    while outbox.pending_count:
        await outbox.drain_once()

    assert sender.delivered == ids
    # The head was retried while it failed; nothing behind it jumped the queue.
    assert sender.attempts[:4] == [ids[0]] * 4
    assert sleep.delays == [1.0, 2.0, 4.0]


async def test_backoff_caps_and_resets(store):
    """Backoff doubles up to the cap and resets after a success."""

    sender, sleep = FlakySender(failures=8), RecordingSleep()
    outbox = DurableOutbox(store, sender, sleep=sleep)
    outbox.enqueue(raw_entry())

    while outbox.pending_count:
        await outbox.drain_once()

    assert sleep.delays == [1.0, 2.0, 4.0, 8.0, 16.0, 32.0, 60.0, 60.0]
    assert outbox.delay == 1.0


def test_invalid_entries_are_never_queued(store):
    """Validation happens before anything is persisted."""

    outbox = DurableOutbox(store, FlakySender())

    with pytest.raises(InvalidArgument):
        outbox.enqueue(raw_entry(impact=11))
    with pytest.raises(InvalidArgument):
        outbox.enqueue({**raw_entry(), "timestamp": "2024-03-04T12:00:00"})

    assert outbox.pending_count == 0


async def test_restart_resumes_pending_items(tmp_path):
    """A new outbox over the same file picks up where the old one stopped."""

    path = str(tmp_path / "outbox.db")
    first = DurableOutbox(OutboxStore(path), FlakySender(failures=1), sleep=RecordingSleep())
    ids = [str(first.enqueue(raw_entry()).id) for _ in range(2)]
    await first.drain_once()

    sender = FlakySender()
    second = DurableOutbox(OutboxStore(path), sender, sleep=RecordingSleep())
    assert second.store.entry_ids() == ids
    while second.pending_count:
        await second.drain_once()

    assert sender.delivered == ids


async def test_subscribers_see_pending_count(store):
    """Listeners get the pending count after each change."""

    outbox = DurableOutbox(store, FlakySender())
    seen = []
    outbox.subscribe(seen.append)
    outbox.enqueue(raw_entry())
    outbox.enqueue(raw_entry())
    await outbox.drain_once()
    outbox.unsubscribe(seen.append)
    await outbox.drain_once()

    assert seen == [1, 2, 1]


async def test_run_drains_and_stops(store):
    """The worker empties the queue and exits on stop."""

    sender = FlakySender()
    outbox = DurableOutbox(store, sender)
    worker = asyncio.create_task(outbox.run())
    entry = outbox.enqueue(raw_entry())

    for _ in range(50):
        if outbox.pending_count == 0:
            break
        await asyncio.sleep(0.01)
    outbox.stop()
    await asyncio.wait_for(worker, timeout=1)

    assert sender.delivered == [str(entry.id)]
