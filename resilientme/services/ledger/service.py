"""Entry ledger: idempotent upserts with an `entries.created` outbox."""

from datetime import datetime

from sqlalchemy import delete, func, select

from resilientme.common.db import as_utc
from resilientme.common.errors import AlreadyExists
from resilientme.common.events import ENTRIES_CREATED, EventEnvelope
from resilientme.common.logging import logger
from resilientme.common.metrics import entries_committed_total
from resilientme.common.outbox import OutboxPublisher, add_outbox_event
from resilientme.common.schemas import EntryCreate
from resilientme.common.transactions import run_optimistic
from resilientme.services.ledger.models import Entry, OutboxEvent, Owner


def entry_event_id(entry_id: str) -> str:
    """Deterministic envelope id, so every replay of one entry dedupes downstream."""

    return f"{ENTRIES_CREATED}:{entry_id}"


def entry_to_dict(entry: Entry) -> dict:
    return {
        "id": entry.id,
        "owner_id": entry.owner_id,
        "category": entry.category,
        "impact": entry.impact,
        "note": entry.note,
        "image_path": entry.image_path,
        "timestamp": as_utc(entry.timestamp).isoformat(),
        "local_day": entry.local_day,
    }


class LedgerService:
    """Stores owner-scoped entries and announces each new one exactly once."""

    def __init__(self, session_factory, service_name: str = "ledger") -> None:
        self.session_factory = session_factory
        self.service_name = service_name
        self.publisher = OutboxPublisher(session_factory, OutboxEvent, service_name)

    def upsert_entry(self, owner_id: str, req: EntryCreate, trace_id: str = "") -> tuple[Entry, bool]:
        """Insert the entry once per id; a repeated write returns the stored row.

        The outbox row is written in the same transaction as the first insert
        only, so client retries never announce the entry twice.
        """

        entry_id = str(req.id)

        def work(db) -> tuple[Entry, bool]:
            existing = db.get(Entry, entry_id)
            if existing is not None:
                if existing.owner_id != owner_id:
                    raise AlreadyExists(f"entry {entry_id} belongs to another owner")
                return existing, False

            if db.get(Owner, owner_id) is None:
                db.add(Owner(owner_id=owner_id))
            entry = Entry(
                id=entry_id,
                owner_id=owner_id,
                category=req.category.value,
                impact=req.impact,
                note=req.note,
                image_path=req.image_path,
                timestamp=as_utc(req.timestamp),
                local_day=req.local_day,
            )
            db.add(entry)
            add_outbox_event(
                db,
                OutboxEvent,
                ENTRIES_CREATED,
                EventEnvelope(
                    event_id=entry_event_id(entry_id),
                    event_type=ENTRIES_CREATED,
                    owner_id=owner_id,
                    aggregate_id=entry_id,
                    trace_id=trace_id,
                    payload=entry_to_dict(entry),
                ),
            )
            db.flush()
            return entry, True

        entry, created = run_optimistic(self.session_factory, work, operation="entry_upsert")
        outcome = "created" if created else "duplicate"
        entries_committed_total.labels(service=self.service_name, outcome=outcome).inc()
        logger.info("entry_upserted entry_id=%s outcome=%s local_day=%s", entry_id, outcome, entry.local_day)
        return entry, created

    def list_entries(self, owner_id: str, since: datetime | None = None, limit: int | None = None) -> list[Entry]:
        """Newest-first entries for one owner, optionally bounded by time and count."""

        stmt = select(Entry).where(Entry.owner_id == owner_id)
        if since is not None:
            stmt = stmt.where(Entry.timestamp >= since)
        stmt = stmt.order_by(Entry.timestamp.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.session_factory() as db:
            return list(db.execute(stmt).scalars().all())

    def daily_counts(self, owner_id: str) -> dict[str, int]:
        """Committed entries per local day, the ground truth for aggregate buckets."""

        with self.session_factory() as db:
            rows = db.execute(
                select(Entry.local_day, func.count(Entry.id))
                .where(Entry.owner_id == owner_id)
                .group_by(Entry.local_day)
                .order_by(Entry.local_day)
            ).all()
        return {day: int(count) for day, count in rows}

    def delete_entries(self, owner_id: str) -> list[str]:
        """Delete every entry of an owner and return the deleted ids."""

        with self.session_factory() as db:
            ids = list(db.execute(select(Entry.id).where(Entry.owner_id == owner_id)).scalars().all())
            db.execute(delete(Entry).where(Entry.owner_id == owner_id))
            db.commit()
        logger.info("entries_deleted count=%s", len(ids))
        return ids

    def delete_owner(self, owner_id: str) -> bool:
        with self.session_factory() as db:
            owner = db.get(Owner, owner_id)
            if owner is None:
                return False
            db.delete(owner)
            db.commit()
            return True

    async def outbox_publisher(self) -> None:
        """Continuously publish ledger outbox rows to Kafka."""

        await self.publisher.run_forever()
