"""Device-side durable outbox for entry writes.

`enqueue` validates and persists an entry and returns at once; a single
background worker drains the queue head-first into the remote ledger. A failed
upsert leaves the item at the head and backs off exponentially, so items are
never reordered and a restart over the same SQLite file resumes where the last
process stopped. The entry id is generated on the device, which makes every
replay an idempotent upsert on the server.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx
from pydantic import ValidationError
from sqlalchemy import JSON, DateTime, Integer, String, create_engine, delete, func, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from resilientme.common.errors import InvalidArgument
from resilientme.common.schemas import EntryCreate

logger = logging.getLogger("resilientme.client")

Sender = Callable[[EntryCreate], Awaitable[Any]]
Listener = Callable[[int], None]

BASE_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 60.0


class ClientBase(DeclarativeBase):
    """Declarative base for the local store; kept apart from the service schema."""

    pass


class PendingWrite(ClientBase):
    __tablename__ = "pending_writes"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[str] = mapped_column(String, index=True)
    payload: Mapped[dict] = mapped_column(JSON)
    enqueued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class OutboxStore:
    """FIFO of pending entry writes persisted in SQLite."""

    def __init__(self, path: str) -> None:
        url = path if "://" in path else f"sqlite:///{path}"
        self.engine = create_engine(url)
        ClientBase.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def append(self, entry: EntryCreate) -> None:
        with self.session_factory() as db:
            db.add(
                PendingWrite(
                    entry_id=str(entry.id),
                    payload=entry.model_dump(mode="json"),
                    enqueued_at=datetime.now(timezone.utc),
                )
            )
            db.commit()

    def head(self) -> tuple[int, EntryCreate] | None:
        with self.session_factory() as db:
            row = db.execute(select(PendingWrite).order_by(PendingWrite.seq).limit(1)).scalar_one_or_none()
        if row is None:
            return None
        return row.seq, EntryCreate.model_validate(row.payload)

    def remove(self, seq: int) -> None:
        with self.session_factory() as db:
            db.execute(delete(PendingWrite).where(PendingWrite.seq == seq))
            db.commit()

    def count(self) -> int:
        with self.session_factory() as db:
            return db.execute(select(func.count()).select_from(PendingWrite)).scalar_one()

    def entry_ids(self) -> list[str]:
        with self.session_factory() as db:
            return list(db.execute(select(PendingWrite.entry_id).order_by(PendingWrite.seq)).scalars().all())


class DurableOutbox:
    """Persisted queue with one cooperative drain worker."""

    def __init__(
        self,
        store: OutboxStore,
        send: Sender,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        base_delay: float = BASE_DELAY_SECONDS,
        max_delay: float = MAX_DELAY_SECONDS,
    ) -> None:
        self.store = store
        self.send = send
        self.sleep = sleep
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.delay = base_delay
        self._listeners: list[Listener] = []
        self._wake = asyncio.Event()
        self._stopped = False

    @property
    def pending_count(self) -> int:
        return self.store.count()

    def subscribe(self, listener: Listener) -> None:
        """`listener(pending_count)` runs after every enqueue and successful drain."""

        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        count = self.pending_count
        for listener in list(self._listeners):
            listener(count)

    def enqueue(self, entry: EntryCreate | dict) -> EntryCreate:
        """Validate and persist; invalid entries are rejected and never queued."""

        try:
            validated = entry if isinstance(entry, EntryCreate) else EntryCreate.model_validate(entry)
        except ValidationError as exc:
            raise InvalidArgument(str(exc)) from exc
        self.store.append(validated)
        logger.info("outbox_enqueued entry_id=%s", validated.id)
        self._notify()
        self._wake.set()
        return validated

    async def drain_once(self) -> bool:
        """Try the head item once; True when it was delivered and removed."""

        head = self.store.head()
        if head is None:
            return False
        seq, entry = head
        try:
            await self.send(entry)
        except Exception as exc:
            logger.warning("outbox_send_failed entry_id=%s retry_in=%.0fs error=%s", entry.id, self.delay, exc)
            await self.sleep(self.delay)
            self.delay = min(self.delay * 2, self.max_delay)
            return False
        self.store.remove(seq)
        self.delay = self.base_delay
        logger.info("outbox_delivered entry_id=%s", entry.id)
        self._notify()
        return True

    async def run(self) -> None:
        """Drain until `stop()`; idles while the queue is empty."""

        self._stopped = False
        while not self._stopped:
            if self.pending_count == 0:
                self._wake.clear()
                await self._wake.wait()
                continue
            await self.drain_once()

    def stop(self) -> None:
        """End `run()` once the in-flight attempt finishes."""

        self._stopped = True
        self._wake.set()


class GatewayEntryWriter:
    """Sender posting entries to the public gateway; any non-2xx is a failure."""

    def __init__(self, base_url: str, api_key: str, owner_id: str, timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = {"x-api-key": api_key, "x-owner-id": owner_id}
        self.timeout = timeout

    async def __call__(self, entry: EntryCreate) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(f"{self.base_url}/entries", json=entry.model_dump(mode="json"), headers=self.headers)
            resp.raise_for_status()
        return resp.json()
