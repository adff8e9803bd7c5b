"""Community service API + retention lifecycle."""

import asyncio
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI, Query

from resilientme.common.config import settings
from resilientme.common.db import SessionLocal
from resilientme.common.ratelimit import RateLimiter
from resilientme.common.schemas import PostCreate, ReactionCreate
from resilientme.common.startup import bootstrap, create_service_app
from resilientme.services.community.service import CommunityService, post_to_dict

bootstrap(["POSTGRES_DSN", "REDIS_URL"])
rdb = redis.Redis.from_url(settings.redis_url, decode_responses=True)
service = CommunityService(SessionLocal, limiter=RateLimiter(rdb))


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run the hourly retention sweep with the app."""

    sweep_task = asyncio.create_task(service.run_retention_sweeps())
    yield
    sweep_task.cancel()


app = create_service_app("ResilientMe Community", lifespan=lifespan)


@app.get("/posts")
def list_posts(limit: int = Query(default=50, ge=1, le=200)):
    return [post_to_dict(p) for p in service.list_posts(limit=limit)]


@app.post("/internal/owners/{owner_id}/posts")
def create_post(owner_id: str, req: PostCreate):
    post = service.create_post(owner_id, req)
    return {"id": post.id}


@app.post("/internal/owners/{owner_id}/posts/{post_id}/reactions")
def react(owner_id: str, post_id: str, req: ReactionCreate):
    return {"ok": True, "added": service.react(owner_id, post_id, req.reaction)}


@app.post("/internal/owners/{owner_id}/posts/{post_id}/reports")
def report(owner_id: str, post_id: str):
    return {"ok": True, "status": service.report(owner_id, post_id)}


@app.post("/internal/admin/backfill-status")
def backfill_status():
    return {"updated": service.backfill_status()}


@app.delete("/internal/owners/{owner_id}")
def delete_owner(owner_id: str):
    return {"deleted": service.delete_owner_data(owner_id)}
