"""Aggregator service API + lifecycle."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from resilientme.common.db import SessionLocal, as_utc
from resilientme.common.startup import bootstrap, create_service_app
from resilientme.services.aggregator.service import AggregatorService

bootstrap(["POSTGRES_DSN", "KAFKA_BOOTSTRAP_SERVERS", "LEDGER_URL"])
service = AggregatorService(SessionLocal)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run consumers, outbox publisher and the daily challenge job with the app."""

    tasks = [
        asyncio.create_task(service.start_consumers()),
        asyncio.create_task(service.publisher.run_forever()),
        asyncio.create_task(service.run_daily_challenges()),
    ]
    yield
    for task in tasks:
        task.cancel()
    await service.publisher.kafka.close()


app = create_service_app("ResilientMe Aggregator", lifespan=lifespan)


@app.get("/owners/{owner_id}/aggregates")
def get_aggregates(owner_id: str, start: str | None = None, end: str | None = None):
    """Day buckets between `start` and `end` (inclusive, YYYY-MM-DD)."""

    return [
        {
            "day": b.day,
            "total_count": b.total_count,
            "sum_impact": b.sum_impact,
            "version": b.version,
        }
        for b in service.get_buckets(owner_id, start=start, end=end)
    ]


@app.get("/owners/{owner_id}/score")
def get_score(owner_id: str):
    row = service.get_score(owner_id)
    if row is None:
        return {"owner_id": owner_id, "score": None}
    return {
        "owner_id": owner_id,
        "score": row.score,
        "average_impact": row.average_impact,
        "window_count": row.window_count,
        "updated_at": as_utc(row.updated_at).isoformat() if row.updated_at else None,
    }


@app.get("/owners/{owner_id}/insights")
def get_insights(owner_id: str):
    return {"owner_id": owner_id, "insights": service.get_insights(owner_id)}


@app.get("/internal/owners/{owner_id}/challenges")
def get_challenges(owner_id: str):
    """Challenge history; also bundled into data exports."""

    return [
        {
            "day": c.day,
            "title": c.title,
            "description": c.description,
            "category": c.category,
            "difficulty": c.difficulty,
            "points": c.points,
            "time_estimate": c.time_estimate,
        }
        for c in service.get_challenges(owner_id)
    ]


@app.delete("/internal/owners/{owner_id}")
def delete_owner(owner_id: str):
    return {"deleted": service.delete_owner_data(owner_id)}
