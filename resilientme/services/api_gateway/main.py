"""Public entrypoint for every client mutation.

The gateway enforces API key auth and per-owner rate limits before
forwarding requests to the internal services.
"""

from uuid import uuid4

import redis
from fastapi import Depends, Header, Query

from resilientme.common.config import settings
from resilientme.common.errors import PermissionDenied, Unauthenticated
from resilientme.common.logging import bind_context
from resilientme.common.ratelimit import RateLimiter
from resilientme.common.schemas import EntryCreate, PostCreate, ReactionCreate, RecoveryPlan, RecoveryPlanRequest
from resilientme.common.startup import bootstrap, create_service_app
from resilientme.services.api_gateway.service import GatewayService

bootstrap(["REDIS_URL", "LEDGER_URL", "AGGREGATOR_URL", "NOTIFICATION_URL", "COMMUNITY_URL", "EXPORT_BUCKET"])
app = create_service_app("ResilientMe API Gateway")
rdb = redis.Redis.from_url(settings.redis_url, decode_responses=True)
gateway = GatewayService(RateLimiter(rdb))


def authenticate(
    x_api_key: str | None = Header(default=None),
    x_owner_id: str | None = Header(default=None),
    x_correlation_id: str | None = Header(default=None),
) -> str:
    """Resolve the calling owner; binds trace and owner ids for logging."""

    if x_api_key != settings.api_key:
        raise Unauthenticated("invalid API key")
    if not x_owner_id:
        raise Unauthenticated("Authentication required")
    bind_context(trace_id=x_correlation_id or str(uuid4()), owner_id=x_owner_id)
    return x_owner_id


def require_admin(owner_id: str = Depends(authenticate), x_admin_key: str | None = Header(default=None)) -> str:
    if not settings.admin_api_key or x_admin_key != settings.admin_api_key:
        raise PermissionDenied("Admin only")
    return owner_id


@app.post("/entries")
async def create_entry(req: EntryCreate, owner_id: str = Depends(authenticate)):
    """Idempotent entry write; replaying the same `id` returns the stored entry."""

    return await gateway.create_entry(owner_id, req)


@app.get("/community/posts")
async def list_posts(limit: int = Query(default=50, ge=1, le=200), owner_id: str = Depends(authenticate)):
    del owner_id
    return await gateway.list_posts(limit)


@app.post("/community/posts")
async def create_post(req: PostCreate, owner_id: str = Depends(authenticate)):
    return await gateway.create_post(owner_id, req)


@app.post("/community/posts/{post_id}/reactions")
async def react(post_id: str, req: ReactionCreate, owner_id: str = Depends(authenticate)):
    return await gateway.react(owner_id, post_id, req)


@app.post("/community/posts/{post_id}/reports")
async def report(post_id: str, owner_id: str = Depends(authenticate)):
    return await gateway.report(owner_id, post_id)


@app.post("/exports")
async def request_export(owner_id: str = Depends(authenticate)):
    return await gateway.request_export(owner_id)


@app.delete("/account")
async def delete_account(owner_id: str = Depends(authenticate)):
    return await gateway.delete_account(owner_id)


@app.post("/recovery-plan", response_model=RecoveryPlan)
async def recovery_plan(req: RecoveryPlanRequest, owner_id: str = Depends(authenticate)):
    return await gateway.recovery_plan(owner_id, req)


@app.post("/admin/community/backfill-status")
async def backfill_status(owner_id: str = Depends(require_admin)):
    del owner_id
    return await gateway.backfill_community_status()
