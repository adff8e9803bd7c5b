"""Gateway operations behind the public routes.

Every mutation is rate limited before anything is written. Entry, post and
deletion requests are forwarded to the owning service; exports and the
account deletion cascade also talk to S3.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import boto3
from botocore.exceptions import ClientError

from resilientme.common.config import settings
from resilientme.common.errors import Internal
from resilientme.common.http import call_service
from resilientme.common.logging import logger
from resilientme.common.metrics import entries_received_total, side_effect_failures_total
from resilientme.common.ratelimit import RateLimiter
from resilientme.common.schemas import EntryCreate, PostCreate, ReactionCreate, RecoveryPlan, RecoveryPlanRequest

CallService = Callable[..., Awaitable[Any]]

_MISSING_OBJECT_CODES = {"404", "NoSuchKey", "NotFound"}


def export_key(owner_id: str, millis: int) -> str:
    return f"exports/{owner_id}/{millis}.json"


def image_prefix(owner_id: str) -> str:
    return f"rejection_images/{owner_id}/"


def image_key(owner_id: str, entry_id: str) -> str:
    return f"{image_prefix(owner_id)}{entry_id}.jpg"


class GatewayService:
    """Stateless apart from its collaborators; one instance per process."""

    def __init__(self, limiter: RateLimiter, s3=None, call: CallService = call_service) -> None:
        self.limiter = limiter
        self.s3 = s3
        self.call = call

    def _s3(self):
        if self.s3 is None:
            self.s3 = boto3.client("s3", region_name=settings.aws_region)
        return self.s3

    async def create_entry(self, owner_id: str, req: EntryCreate) -> dict:
        self.limiter.enforce(owner_id, "create-entry")
        entries_received_total.labels(service=settings.service_name).inc()
        return await self.call(
            "PUT",
            f"{settings.ledger_url}/internal/owners/{owner_id}/entries/{req.id}",
            json=req.model_dump(mode="json"),
        )

    async def create_post(self, owner_id: str, req: PostCreate) -> dict:
        self.limiter.enforce(owner_id, "create-post")
        return await self.call(
            "POST",
            f"{settings.community_url}/internal/owners/{owner_id}/posts",
            json=req.model_dump(mode="json"),
        )

    async def react(self, owner_id: str, post_id: str, req: ReactionCreate) -> dict:
        self.limiter.enforce(owner_id, "react")
        return await self.call(
            "POST",
            f"{settings.community_url}/internal/owners/{owner_id}/posts/{post_id}/reactions",
            json=req.model_dump(mode="json"),
        )

    async def report(self, owner_id: str, post_id: str) -> dict:
        self.limiter.enforce(owner_id, "report")
        return await self.call("POST", f"{settings.community_url}/internal/owners/{owner_id}/posts/{post_id}/reports")

    async def request_export(self, owner_id: str, now: datetime | None = None) -> dict:
        """Bundle entries and challenges into S3 and hand back a presigned URL."""

        self.limiter.enforce(owner_id, "export")
        now = now or datetime.now(timezone.utc)
        entries, challenges = await asyncio.gather(
            self.call("GET", f"{settings.ledger_url}/internal/owners/{owner_id}/entries"),
            self.call("GET", f"{settings.aggregator_url}/internal/owners/{owner_id}/challenges"),
        )
        body = json.dumps(
            {"entries": entries, "challenges": challenges, "generated_at": now.isoformat()},
            indent=2,
            ensure_ascii=False,
        ).encode("utf-8")
        key = export_key(owner_id, int(now.timestamp() * 1000))
        s3 = self._s3()
        await asyncio.to_thread(
            s3.put_object,
            Bucket=settings.export_bucket,
            Key=key,
            Body=body,
            ContentType="application/json",
        )
        url = await asyncio.to_thread(
            s3.generate_presigned_url,
            "get_object",
            Params={"Bucket": settings.export_bucket, "Key": key},
            ExpiresIn=settings.export_url_ttl_seconds,
        )
        logger.info("export_written key=%s entries=%s challenges=%s", key, len(entries), len(challenges))
        return {"url": url, "key": key}

    async def _delete_image(self, owner_id: str, entry: dict) -> None:
        # A stored path outside the owner's prefix is never trusted.
        key = entry.get("image_path") or ""
        if not key.startswith(image_prefix(owner_id)):
            key = image_key(owner_id, entry["id"])
        try:
            await asyncio.to_thread(self._s3().delete_object, Bucket=settings.image_bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_OBJECT_CODES:
                return
            logger.error("image_delete_failed key=%s error=%s", key, exc)
            side_effect_failures_total.labels(service=settings.service_name, side_effect="image_delete").inc()

    async def delete_account(self, owner_id: str) -> dict:
        """Cascade: images, derived data, notifications, community, entries, identity last."""

        entries = await self.call("GET", f"{settings.ledger_url}/internal/owners/{owner_id}/entries")
        for entry in entries:
            await self._delete_image(owner_id, entry)
        await self.call("DELETE", f"{settings.aggregator_url}/internal/owners/{owner_id}")
        await self.call("DELETE", f"{settings.notification_url}/internal/owners/{owner_id}")
        await self.call("DELETE", f"{settings.community_url}/internal/owners/{owner_id}")
        await self.call("DELETE", f"{settings.ledger_url}/internal/owners/{owner_id}/entries")
        await self.call("DELETE", f"{settings.ledger_url}/internal/owners/{owner_id}")
        logger.info("account_deleted entries=%s", len(entries))
        return {"ok": True, "entries_deleted": len(entries)}

    async def recovery_plan(self, owner_id: str, req: RecoveryPlanRequest) -> RecoveryPlan:
        """Ask the text generator for a plan and keep only a well-formed answer."""

        self.limiter.enforce(owner_id, "recovery-plan")
        raw = await self.call(
            "POST",
            settings.text_generator_url,
            json={"category": req.category.value, "impact": req.impact, "note": req.note or "", "tone": req.tone},
            timeout=30.0,
        )
        try:
            return RecoveryPlan.model_validate(raw)
        except ValueError as exc:
            logger.error("recovery_plan_malformed error=%s", exc)
            raise Internal("text generator returned a malformed plan") from exc

    async def backfill_community_status(self) -> dict:
        return await self.call("POST", f"{settings.community_url}/internal/admin/backfill-status")

    async def list_posts(self, limit: int) -> list[dict]:
        return await self.call("GET", f"{settings.community_url}/posts", params={"limit": limit})
