"""Aggregator: folds entries into day buckets and derives score, insights, challenges.

The bucket increment is the only strongly consistent write here. It runs as an
optimistic transaction together with the inbox row for the triggering event
and, for high-impact entries, the follow-up notification request, so one
entry moves each of those exactly once no matter how often Kafka redelivers.
Score and insights are recomputed afterwards on a best-effort basis.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select, update

from resilientme.common.config import settings
from resilientme.common.db import as_utc, utcnow
from resilientme.common.errors import PipelineError
from resilientme.common.events import ENTRIES_CREATED, NOTIFICATIONS_REQUESTED, EventEnvelope, consume_forever
from resilientme.common.http import call_service
from resilientme.common.logging import logger
from resilientme.common.metrics import duplicate_events_skipped_total, side_effect_failures_total
from resilientme.common.outbox import OutboxPublisher, add_outbox_event
from resilientme.common.tracing import get_tracer
from resilientme.common.transactions import guarded_update, run_optimistic
from resilientme.services.aggregator.challenges import pick_challenge
from resilientme.services.aggregator.models import (
    AggregateBucket,
    Challenge,
    DerivedScore,
    InboxEvent,
    InsightSet,
    OutboxEvent,
)
from resilientme.services.aggregator.patterns import EntrySample, analyze_patterns

FOLLOWUP_KIND = "recovery-followup"
FOLLOWUP_TITLE = "How are you doing?"
FOLLOWUP_BODY = "Yesterday was tough. You're stronger than you know."

tracer = get_tracer("aggregator")


def compute_score(impacts: list[float]) -> tuple[float, float]:
    """Return `(score, average)`; an empty window averages 0 and scores 100."""

    average = sum(impacts) / max(1, len(impacts))
    return max(5.0, 100.0 - average * 7), average


def followup_task_id(entry_id: str) -> str:
    return f"{FOLLOWUP_KIND}:{entry_id}"


class LedgerClient:
    """Reads owner entry windows from the ledger service."""

    def __init__(self, base_url: str | None = None) -> None:
        self.base_url = base_url or settings.ledger_url

    async def recent_entries(
        self, owner_id: str, since: datetime | None = None, limit: int | None = None
    ) -> list[EntrySample]:
        params = {}
        if since is not None:
            params["since"] = since.isoformat()
        if limit is not None:
            params["limit"] = limit
        rows = await call_service("GET", f"{self.base_url}/internal/owners/{owner_id}/entries", params=params)
        return [EntrySample.from_record(row) for row in rows]


class AggregatorService:
    """Consumes `entries.created` and maintains every owner-level aggregate."""

    def __init__(self, session_factory, ledger: LedgerClient | None = None, service_name: str = "aggregator") -> None:
        self.session_factory = session_factory
        self.ledger = ledger or LedgerClient()
        self.service_name = service_name
        self.publisher = OutboxPublisher(session_factory, OutboxEvent, service_name)

    def _inbox_seen(self, db, event_id: str) -> bool:
        return db.get(InboxEvent, (event_id, self.service_name)) is not None

    def _mark_inbox(self, db, event_id: str) -> None:
        db.add(InboxEvent(event_id=event_id, consumed_by_service=self.service_name))

    def apply_entry(self, event: EventEnvelope, now: datetime | None = None) -> bool:
        """Fold one entry into its day bucket; False when the event was already applied."""

        now = now or utcnow()
        payload = event.payload
        day = payload["local_day"]
        impact = float(payload["impact"])

        def work(db) -> bool:
            if self._inbox_seen(db, event.event_id):
                return False
            bucket = db.get(AggregateBucket, (event.owner_id, day))
            if bucket is None:
                db.add(
                    AggregateBucket(
                        owner_id=event.owner_id,
                        day=day,
                        total_count=1,
                        sum_impact=impact,
                        version=1,
                        updated_at=now,
                    )
                )
            else:
                guarded_update(
                    db,
                    update(AggregateBucket)
                    .where(
                        AggregateBucket.owner_id == event.owner_id,
                        AggregateBucket.day == day,
                        AggregateBucket.version == bucket.version,
                    )
                    .values(
                        total_count=bucket.total_count + 1,
                        sum_impact=bucket.sum_impact + impact,
                        version=bucket.version + 1,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False),
                )
            self._mark_inbox(db, event.event_id)
            if impact >= settings.high_impact_threshold:
                self._request_followup(db, event, now)
            db.flush()
            return True

        applied = run_optimistic(self.session_factory, work, operation="bucket_increment")
        if not applied:
            logger.info("duplicate event skipped topic=%s event_id=%s", ENTRIES_CREATED, event.event_id)
            duplicate_events_skipped_total.labels(service=self.service_name, topic=ENTRIES_CREATED).inc()
        return applied

    def _request_followup(self, db, event: EventEnvelope, now: datetime) -> None:
        task_id = followup_task_id(event.aggregate_id)
        run_at = now + timedelta(hours=settings.followup_delay_hours)
        add_outbox_event(
            db,
            OutboxEvent,
            NOTIFICATIONS_REQUESTED,
            EventEnvelope(
                event_id=f"{NOTIFICATIONS_REQUESTED}:{task_id}",
                event_type=NOTIFICATIONS_REQUESTED,
                owner_id=event.owner_id,
                aggregate_id=task_id,
                trace_id=event.trace_id,
                payload={
                    "task_id": task_id,
                    "kind": FOLLOWUP_KIND,
                    "run_at": run_at.isoformat(),
                    "title": FOLLOWUP_TITLE,
                    "body": FOLLOWUP_BODY,
                    "data": {"type": FOLLOWUP_KIND},
                },
            ),
        )
        logger.info("followup_requested task_id=%s run_at=%s", task_id, run_at.isoformat())

    async def handle_entry_created(self, event: EventEnvelope) -> None:
        """Bucket increment, then best-effort score refresh."""

        with tracer.start_as_current_span("aggregator.apply_entry"):
            try:
                applied = self.apply_entry(event)
            except PipelineError as exc:
                # The entry stays committed in the ledger; only its aggregate is lost.
                logger.error("bucket_increment_failed event_id=%s error=%s", event.event_id, exc)
                side_effect_failures_total.labels(service=self.service_name, side_effect="bucket").inc()
                return
        if applied:
            await self._best_effort("score", self.refresh_score(event.owner_id))

    async def handle_entry_for_insights(self, event: EventEnvelope) -> None:
        await self._best_effort("insights", self.refresh_insights(event.owner_id))

    async def _best_effort(self, name: str, work) -> None:
        try:
            await work
        except Exception as exc:
            logger.exception("side_effect_failed side_effect=%s error=%s", name, exc)
            side_effect_failures_total.labels(service=self.service_name, side_effect=name).inc()

    async def refresh_score(self, owner_id: str, now: datetime | None = None) -> DerivedScore:
        """Recompute the score from the trailing window and overwrite it."""

        now = now or utcnow()
        window = await self.ledger.recent_entries(owner_id, since=now - timedelta(days=settings.score_window_days))
        score, average = compute_score([e.impact for e in window])

        def work(db) -> DerivedScore:
            row = db.get(DerivedScore, owner_id)
            if row is None:
                row = DerivedScore(owner_id=owner_id)
                db.add(row)
            row.score = score
            row.average_impact = average
            row.window_count = len(window)
            row.updated_at = now
            db.flush()
            return row

        row = run_optimistic(self.session_factory, work, operation="score_overwrite")
        logger.info("score_refreshed score=%.1f window_count=%s", score, len(window))
        return row

    async def refresh_insights(self, owner_id: str, now: datetime | None = None) -> list[dict]:
        """Run the pattern detectors over the latest window and replace the owner's set."""

        now = now or utcnow()
        window = await self.ledger.recent_entries(owner_id, limit=settings.insight_window_size)
        insights = [insight.to_dict() for insight in analyze_patterns(window)]

        def work(db) -> None:
            row = db.get(InsightSet, owner_id)
            if row is None:
                db.add(InsightSet(owner_id=owner_id, insights=insights, updated_at=now))
            else:
                row.insights = insights
                row.updated_at = now
            db.flush()

        run_optimistic(self.session_factory, work, operation="insights_overwrite")
        logger.info("insights_refreshed count=%s", len(insights))
        return insights

    async def generate_daily_challenges(self, now: datetime | None = None) -> int:
        """Write today's challenge for every owner with a score; one failure skips one owner."""

        now = now or utcnow()
        day = now.date().isoformat()
        with self.session_factory() as db:
            owner_ids = list(db.execute(select(DerivedScore.owner_id)).scalars().all())
        written = 0
        for owner_id in owner_ids:
            try:
                fortnight = await self.ledger.recent_entries(owner_id, since=now - timedelta(days=14))
            except PipelineError as exc:
                logger.warning("challenge_skipped owner_id=%s error=%s", owner_id, exc)
                continue
            week_start = now - timedelta(days=7)
            week = [e for e in fortnight if as_utc(e.timestamp) >= week_start]
            fields = pick_challenge(week, fortnight)
            with self.session_factory() as db:
                row = db.get(Challenge, (owner_id, day))
                if row is None:
                    db.add(Challenge(owner_id=owner_id, day=day, **fields))
                else:
                    for key, value in fields.items():
                        setattr(row, key, value)
                db.commit()
            written += 1
        logger.info("daily_challenges_generated day=%s count=%s", day, written)
        return written

    async def run_daily_challenges(self) -> None:
        """Sleep until the next configured UTC hour, generate, repeat."""

        while True:
            now = datetime.now(timezone.utc)
            next_run = now.replace(hour=settings.challenge_hour_utc, minute=0, second=0, microsecond=0)
            if next_run <= now:
                next_run += timedelta(days=1)
            await asyncio.sleep((next_run - now).total_seconds())
            try:
                await self.generate_daily_challenges()
            except Exception as exc:
                logger.exception("daily_challenges_failed error=%s", exc)

    def get_buckets(self, owner_id: str, start: str | None = None, end: str | None = None) -> list[AggregateBucket]:
        stmt = select(AggregateBucket).where(AggregateBucket.owner_id == owner_id)
        if start is not None:
            stmt = stmt.where(AggregateBucket.day >= start)
        if end is not None:
            stmt = stmt.where(AggregateBucket.day <= end)
        with self.session_factory() as db:
            return list(db.execute(stmt.order_by(AggregateBucket.day)).scalars().all())

    def get_score(self, owner_id: str) -> DerivedScore | None:
        with self.session_factory() as db:
            return db.get(DerivedScore, owner_id)

    def get_insights(self, owner_id: str) -> list[dict]:
        with self.session_factory() as db:
            row = db.get(InsightSet, owner_id)
            return list(row.insights) if row is not None else []

    def get_challenges(self, owner_id: str) -> list[Challenge]:
        with self.session_factory() as db:
            return list(
                db.execute(select(Challenge).where(Challenge.owner_id == owner_id).order_by(Challenge.day))
                .scalars()
                .all()
            )

    def delete_owner_data(self, owner_id: str) -> dict[str, int]:
        """Drop every aggregate row of an owner (account deletion)."""

        deleted = {}
        with self.session_factory() as db:
            for name, model in (
                ("aggregates", AggregateBucket),
                ("scores", DerivedScore),
                ("insights", InsightSet),
                ("challenges", Challenge),
            ):
                deleted[name] = db.execute(delete(model).where(model.owner_id == owner_id)).rowcount
            db.commit()
        logger.info("aggregates_deleted counts=%s", deleted)
        return deleted

    async def start_consumers(self) -> None:
        """Bucket and insight consumers run in separate groups so neither blocks the other."""

        await asyncio.gather(
            consume_forever(ENTRIES_CREATED, "aggregator-buckets", self.handle_entry_created),
            consume_forever(ENTRIES_CREATED, "aggregator-insights", self.handle_entry_for_insights),
        )
