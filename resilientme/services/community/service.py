"""Community posts with deduplicated reactions, report-driven hiding and retention."""

import asyncio
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update

from resilientme.common.config import settings
from resilientme.common.db import as_utc, utcnow
from resilientme.common.errors import NotFound
from resilientme.common.logging import logger
from resilientme.common.ratelimit import RateLimiter
from resilientme.common.schemas import PostCreate, Reaction
from resilientme.common.tracing import get_tracer
from resilientme.common.transactions import guarded_update, run_optimistic
from resilientme.services.community.models import HIDDEN, VISIBLE, CommunityPost, PostReport, ReactionMarker

REPORTS_TO_HIDE = 3
BACKFILL_SCAN_LIMIT = 1000

tracer = get_tracer("community")


def post_to_dict(post: CommunityPost) -> dict:
    return {
        "id": post.id,
        "category": post.category,
        "content": post.content,
        "status": post.status,
        "reactions": dict(post.reactions or {}),
        "created_at": as_utc(post.created_at).isoformat() if post.created_at else None,
    }


class CommunityService:
    """Post counters change only through version-guarded updates."""

    def __init__(self, session_factory, limiter: RateLimiter | None = None, service_name: str = "community") -> None:
        self.session_factory = session_factory
        self.limiter = limiter
        self.service_name = service_name

    def create_post(self, owner_id: str, req: PostCreate, now: datetime | None = None) -> CommunityPost:
        post = CommunityPost(
            author_id=owner_id,
            category=req.category.value,
            content=req.content,
            status=VISIBLE,
            reports=0,
            reactions={},
            version=1,
            created_at=now or utcnow(),
        )
        with self.session_factory() as db:
            db.add(post)
            db.commit()
        logger.info("post_created post_id=%s category=%s", post.id, post.category)
        return post

    def list_posts(self, limit: int = 50) -> list[CommunityPost]:
        """Newest visible posts; legacy rows without a status are shown too."""

        with self.session_factory() as db:
            return list(
                db.execute(
                    select(CommunityPost)
                    .where((CommunityPost.status == VISIBLE) | CommunityPost.status.is_(None))
                    .order_by(CommunityPost.created_at.desc())
                    .limit(limit)
                )
                .scalars()
                .all()
            )

    def react(self, owner_id: str, post_id: str, reaction: Reaction, now: datetime | None = None) -> bool:
        """Add one reaction; False when this owner already reacted to the post."""

        now = now or utcnow()

        def work(db) -> bool:
            if db.get(ReactionMarker, (owner_id, post_id)) is not None:
                return False
            post = db.get(CommunityPost, post_id)
            if post is None:
                raise NotFound("Post not found")
            reactions = dict(post.reactions or {})
            reactions[reaction.value] = reactions.get(reaction.value, 0) + 1
            guarded_update(
                db,
                update(CommunityPost)
                .where(CommunityPost.id == post_id, CommunityPost.version == post.version)
                .values(reactions=reactions, version=post.version + 1)
                .execution_options(synchronize_session=False),
            )
            db.add(ReactionMarker(owner_id=owner_id, post_id=post_id, reaction=reaction.value, created_at=now))
            db.flush()
            return True

        added = run_optimistic(self.session_factory, work, operation="post_react")
        logger.info("post_reacted post_id=%s reaction=%s added=%s", post_id, reaction.value, added)
        return added

    def report(self, owner_id: str, post_id: str, now: datetime | None = None) -> str:
        """Count one report; the post is hidden from the third report on. Returns the new status."""

        now = now or utcnow()

        def work(db) -> str:
            post = db.get(CommunityPost, post_id)
            if post is None:
                raise NotFound("Post not found")
            reports = post.reports + 1
            status = HIDDEN if reports >= REPORTS_TO_HIDE else post.status
            guarded_update(
                db,
                update(CommunityPost)
                .where(CommunityPost.id == post_id, CommunityPost.version == post.version)
                .values(reports=reports, status=status, version=post.version + 1)
                .execution_options(synchronize_session=False),
            )
            db.add(PostReport(owner_id=owner_id, post_id=post_id, created_at=now))
            db.flush()
            return status

        status = run_optimistic(self.session_factory, work, operation="post_report")
        logger.info("post_reported post_id=%s status=%s", post_id, status)
        return status

    def backfill_status(self) -> int:
        """Mark recent legacy posts without a status as visible."""

        with self.session_factory() as db:
            recent = (
                select(CommunityPost.id)
                .order_by(CommunityPost.created_at.desc())
                .limit(BACKFILL_SCAN_LIMIT)
            )
            updated = db.execute(
                update(CommunityPost)
                .where(CommunityPost.id.in_(recent), CommunityPost.status.is_(None))
                .values(status=VISIBLE)
                .execution_options(synchronize_session=False)
            ).rowcount
            db.commit()
        logger.info("community_status_backfilled updated=%s", updated)
        return updated

    def sweep_retention(self, now: datetime | None = None) -> dict[str, int]:
        """Delete reaction markers and rate-limit buckets past the retention period."""

        now = now or utcnow()
        cutoff = now - timedelta(days=settings.retention_days)
        with tracer.start_as_current_span("community.sweep_retention"):
            with self.session_factory() as db:
                markers = db.execute(delete(ReactionMarker).where(ReactionMarker.created_at < cutoff)).rowcount
                db.commit()
            buckets = self.limiter.sweep(now=now.timestamp()) if self.limiter is not None else 0
        logger.info("retention_sweep markers=%s rate_limit_buckets=%s", markers, buckets)
        return {"markers": markers, "rate_limit_buckets": buckets}

    async def run_retention_sweeps(self) -> None:
        while True:
            try:
                self.sweep_retention()
            except Exception as exc:
                logger.exception("retention_sweep_failed error=%s", exc)
            await asyncio.sleep(settings.retention_sweep_interval_seconds)

    def delete_owner_data(self, owner_id: str) -> dict[str, int]:
        """Remove an owner's posts, markers and reports (account deletion)."""

        with self.session_factory() as db:
            posts = db.execute(delete(CommunityPost).where(CommunityPost.author_id == owner_id)).rowcount
            markers = db.execute(delete(ReactionMarker).where(ReactionMarker.owner_id == owner_id)).rowcount
            reports = db.execute(delete(PostReport).where(PostReport.owner_id == owner_id)).rowcount
            db.commit()
        logger.info("community_data_deleted posts=%s markers=%s reports=%s", posts, markers, reports)
        return {"posts": posts, "markers": markers, "reports": reports}
