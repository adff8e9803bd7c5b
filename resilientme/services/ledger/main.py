"""Ledger service API + lifecycle.

Accepts idempotent entry upserts from the gateway, serves owner entry windows
to the aggregator, and publishes `entries.created` through its outbox.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Header, Query

from resilientme.common.db import SessionLocal
from resilientme.common.errors import InvalidArgument
from resilientme.common.logging import bind_context
from resilientme.common.schemas import EntryCreate, EntryRecord, EntryWriteResponse
from resilientme.common.startup import bootstrap, create_service_app
from resilientme.services.ledger.service import LedgerService, entry_to_dict

bootstrap(["POSTGRES_DSN", "KAFKA_BOOTSTRAP_SERVERS"])
service = LedgerService(SessionLocal)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run the outbox publisher with the application lifecycle."""

    publisher_task = asyncio.create_task(service.outbox_publisher())
    yield
    publisher_task.cancel()
    await service.publisher.kafka.close()


app = create_service_app("ResilientMe Ledger", lifespan=lifespan)


@app.put("/internal/owners/{owner_id}/entries/{entry_id}", response_model=EntryWriteResponse)
def put_entry(owner_id: str, entry_id: str, req: EntryCreate, x_trace_id: str | None = Header(default=None)):
    """Idempotent upsert keyed by the client-generated entry id."""

    if str(req.id) != entry_id:
        raise InvalidArgument("entry id in path and body differ")
    bind_context(owner_id=owner_id, trace_id=x_trace_id)
    entry, created = service.upsert_entry(owner_id, req, trace_id=x_trace_id or "")
    return EntryWriteResponse(entry=EntryRecord(**entry_to_dict(entry)), created=created)


@app.get("/internal/owners/{owner_id}/entries", response_model=list[EntryRecord])
def get_entries(owner_id: str, since: datetime | None = None, limit: int | None = Query(default=None, ge=1, le=1000)):
    """Newest-first entry window used by score, insight and challenge jobs."""

    return [EntryRecord(**entry_to_dict(e)) for e in service.list_entries(owner_id, since=since, limit=limit)]


@app.get("/internal/owners/{owner_id}/daily-counts")
def get_daily_counts(owner_id: str):
    """Entries per local day; compared against aggregate buckets by reconciliation."""

    return {"owner_id": owner_id, "days": service.daily_counts(owner_id)}


@app.delete("/internal/owners/{owner_id}/entries")
def delete_entries(owner_id: str):
    """Delete an owner's entries; returns their ids so callers can clean up images."""

    ids = service.delete_entries(owner_id)
    return {"deleted": len(ids), "entry_ids": ids}


@app.delete("/internal/owners/{owner_id}")
def delete_owner(owner_id: str):
    """Delete the identity record; the last step of account deletion."""

    return {"deleted": service.delete_owner(owner_id)}
